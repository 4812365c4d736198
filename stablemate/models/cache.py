"""Cached TJK scrape results, one row per owner and resource kind."""

import json
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stablemate.config import ist_now_naive
from stablemate.models.database import Base

KIND_RACES = "races"
KIND_REGISTRATIONS = "registrations"
KIND_GALLOPS = "gallops"
CACHE_KINDS = (KIND_RACES, KIND_REGISTRATIONS, KIND_GALLOPS)


class CacheEntry(Base):
    """Normalized records for one (owner, kind), replaced wholesale on refresh."""

    __tablename__ = "cache_entries"
    __table_args__ = (UniqueConstraint("owner_id", "kind", name="uq_cache_owner_kind"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("owner_profiles.id", ondelete="CASCADE"), index=True,
    )
    kind: Mapped[str] = mapped_column(String(20))
    records_json: Mapped[str] = mapped_column(Text, default="[]")
    cached_at: Mapped[datetime] = mapped_column(DateTime, default=ist_now_naive)

    @property
    def records(self) -> list[dict]:
        return json.loads(self.records_json or "[]")

    def to_dict(self) -> dict:
        return {
            "ownerId": self.owner_id,
            "kind": self.kind,
            "records": self.records,
            "cachedAt": self.cached_at.isoformat() if self.cached_at else None,
        }
