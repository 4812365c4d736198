"""Tenant models: owner profiles and their horses."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stablemate.config import ist_now_naive
from stablemate.models.database import Base


class OwnerProfile(Base):
    """An owner account linked to a TJK owner id."""

    __tablename__ = "owner_profiles"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), unique=True)
    name: Mapped[str] = mapped_column(String(200))
    official_ref: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)  # TJK SahipId
    created_at: Mapped[datetime] = mapped_column(DateTime, default=ist_now_naive)

    horses: Mapped[list["Horse"]] = relationship(
        "Horse", back_populates="owner", cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "name": self.name,
            "officialRef": self.official_ref,
        }


class Horse(Base):
    """A horse in an owner's stable."""

    __tablename__ = "horses"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("owner_profiles.id", ondelete="CASCADE"), index=True,
    )
    name: Mapped[str] = mapped_column(String(100))
    external_ref: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)  # TJK AtId
    status: Mapped[str] = mapped_column(String(20), default="RACING")

    # Filled by the TJK detail fetch
    handicap_points: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    total_races: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    first_places: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    second_places: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    third_places: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    prize_money: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    total_earnings: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    sire_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    dam_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    sire_sire: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    sire_dam: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    dam_sire: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    dam_dam: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    data_fetched_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    data_fetch_error: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    owner: Mapped["OwnerProfile"] = relationship("OwnerProfile", back_populates="horses")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "externalRef": self.external_ref,
            "status": self.status,
            "handicapPoints": self.handicap_points,
            "totalRaces": self.total_races,
            "firstPlaces": self.first_places,
            "secondPlaces": self.second_places,
            "thirdPlaces": self.third_places,
            "prizeMoney": self.prize_money,
            "totalEarnings": self.total_earnings,
            "sireName": self.sire_name,
            "damName": self.dam_name,
            "sireSire": self.sire_sire,
            "sireDam": self.sire_dam,
            "damSire": self.dam_sire,
            "damDam": self.dam_dam,
            "dataFetchedAt": self.data_fetched_at.isoformat() if self.data_fetched_at else None,
            "dataFetchError": self.data_fetch_error,
        }
