"""Database setup, engine routing and session management."""

import asyncio
import logging
import re
from collections import OrderedDict
from typing import AsyncGenerator, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from stablemate.config import settings

logger = logging.getLogger(__name__)

TARGET_LOCAL = "local"
TARGET_PROD = "prod"
DB_PREFERENCE_COOKIE = "admin-db-preference"


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


def mask_url(url: str) -> str:
    """Hide the password part of a database URL."""
    if not url:
        return "Not configured"
    return re.sub(r":[^:@/]+@", ":****@", url)


def describe_url(url: str) -> dict:
    """Classify a database URL for the admin status display."""
    info = {"type": "unknown", "name": "Unknown", "projectRef": None, "url": mask_url(url)}
    if "supabase.co" in url or "pooler.supabase.com" in url:
        match = re.search(r"postgres\.([^.:@]+)", url)
        info.update(type="production", name="Supabase", projectRef=match.group(1) if match else None)
    elif "neon.tech" in url:
        info.update(type="production", name="Neon")
    elif "localhost" in url or "127.0.0.1" in url or "postgres:postgres@" in url:
        info.update(type="local", name="Local PostgreSQL")
    elif url.startswith("sqlite"):
        info.update(type="local", name="Local SQLite")
    return info


class DatabaseRouter:
    """Live engines keyed by target ("local" / "prod").

    Engines are created on first use and kept in a small LRU; evicted or
    cleared engines are disposed so their pools are closed.
    """

    def __init__(self, urls: dict[str, str], max_engines: int = 4, echo: bool = False):
        self.urls = {k: v for k, v in urls.items() if v}
        self.max_engines = max_engines
        self.echo = echo
        self._engines: "OrderedDict[str, AsyncEngine]" = OrderedDict()
        self._sessionmakers: dict[str, async_sessionmaker] = {}
        self._disposing: set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls) -> "DatabaseRouter":
        return cls(
            {TARGET_LOCAL: settings.default_database_url, TARGET_PROD: settings.prod_url},
            echo=settings.debug,
        )

    def available(self) -> dict[str, bool]:
        return {TARGET_LOCAL: TARGET_LOCAL in self.urls, TARGET_PROD: TARGET_PROD in self.urls}

    def resolve(self, target: Optional[str]) -> str:
        """Fall back to the local target when the requested one isn't configured."""
        if target in self.urls:
            return target
        return TARGET_LOCAL

    def url_for(self, target: Optional[str]) -> str:
        return self.urls.get(self.resolve(target), "")

    def engine(self, target: Optional[str] = TARGET_LOCAL) -> AsyncEngine:
        """Get or create the engine for a target."""
        target = self.resolve(target)
        if target in self._engines:
            self._engines.move_to_end(target)
            return self._engines[target]

        url = self.urls.get(target)
        if not url:
            raise RuntimeError(f"No database URL configured for target '{target}'")

        connect_args = {"timeout": 30} if url.startswith("sqlite") else {}
        engine = create_async_engine(url, echo=self.echo, connect_args=connect_args)
        self._engines[target] = engine
        self._sessionmakers[target] = async_sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False,
        )
        logger.info(f"Created database engine for '{target}' ({describe_url(url)['type']})")

        while len(self._engines) > self.max_engines:
            old_target, old_engine = self._engines.popitem(last=False)
            self._sessionmakers.pop(old_target, None)
            logger.info(f"Evicting database engine for '{old_target}'")
            self._schedule_dispose(old_engine)
        return engine

    def session(self, target: Optional[str] = TARGET_LOCAL) -> AsyncSession:
        """Open a new session against a target."""
        self.engine(target)
        return self._sessionmakers[self.resolve(target)]()

    def _schedule_dispose(self, engine: AsyncEngine) -> None:
        try:
            task = asyncio.get_running_loop().create_task(engine.dispose())
        except RuntimeError:
            logger.debug("No running loop, evicted engine dropped without dispose")
            return
        self._disposing.add(task)
        task.add_done_callback(self._disposing.discard)

    async def clear(self) -> int:
        """Dispose every live engine (used when an admin switches database)."""
        count = len(self._engines)
        logger.info(f"Disposing {count} database engines")
        engines = list(self._engines.values())
        self._engines.clear()
        self._sessionmakers.clear()
        for engine in engines:
            try:
                await engine.dispose()
            except Exception as e:
                logger.error(f"Error disposing engine: {e}")
        if self._disposing:
            await asyncio.gather(*self._disposing, return_exceptions=True)
        return count

    def live_targets(self) -> list[str]:
        return list(self._engines)


async def init_db(router: DatabaseRouter, target: str = TARGET_LOCAL) -> None:
    """Create all tables on a target."""
    # Import models to ensure they're registered with Base
    from stablemate.models import cache, owner  # noqa: F401

    engine = router.engine(target)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def get_router(request: Request) -> DatabaseRouter:
    router: Optional[DatabaseRouter] = getattr(request.app.state, "db_router", None)
    if router is None:
        raise RuntimeError("Database router not initialised (app lifespan not run)")
    return router


def get_db_target(request: Request) -> str:
    """Which database this request should use.

    Only admin sessions may pick the production database via the
    preference cookie; everyone else gets the default target.
    """
    user = request.session.get("user") or {}
    if user.get("role") == "ADMIN" and request.cookies.get(DB_PREFERENCE_COOKIE) == TARGET_PROD:
        return TARGET_PROD
    return TARGET_LOCAL


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get a database session for the request's target."""
    router = get_router(request)
    async with router.session(get_db_target(request)) as session:
        try:
            yield session
        finally:
            await session.close()
