from __future__ import annotations

from typing import AsyncIterator, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine


def create_session_factory(raw_url: str) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    url = normalize_database_url(raw_url)
    if not url:
        raise RuntimeError("Database not configured")
    engine = create_async_engine(url, future=True, pool_pre_ping=True)
    return engine, async_sessionmaker(engine, expire_on_commit=False)


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """Yield a session from the factory the app was built with."""
    factory: Optional[async_sessionmaker[AsyncSession]] = getattr(request.app.state, "session_factory", None)
    if factory is None:
        raise RuntimeError("Database not configured")
    async with factory() as session:
        yield session


def normalize_database_url(raw_url: Optional[str]) -> Optional[str]:
    """Force the asyncpg driver and translate libpq ``sslmode`` into asyncpg's ``ssl``.

    Hosted Postgres connection strings are usually handed out as
    ``postgres://...?sslmode=require``; asyncpg understands neither the scheme
    nor the query parameter.
    """
    if not raw_url:
        return raw_url

    url = raw_url
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

    parsed = urlparse(url)
    if not parsed.scheme.startswith("postgresql+asyncpg"):
        return url

    query = dict(parse_qsl(parsed.query, keep_blank_values=True))
    sslmode = query.pop("sslmode", None)
    if sslmode and "ssl" not in query:
        query["ssl"] = sslmode
    if "ssl" in query:
        allowed = {"disable", "allow", "prefer", "require", "verify-ca", "verify-full"}
        query["ssl"] = query["ssl"].lower()
        if query["ssl"] not in allowed:
            query["ssl"] = "require"

    return urlunparse(parsed._replace(query=urlencode(query)))
