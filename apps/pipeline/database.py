"""
Database engine and session factory.

The engine is built once per run and handed down explicitly; there is no
module-level connection pool.
"""

from __future__ import annotations

import logging
import ssl
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from config import Settings, normalize_database_url, resolve_ssl_ca_path
from services.errors import ConfigurationError

logger = logging.getLogger(__name__)

Base = declarative_base()


def build_ssl_context(current: Settings) -> ssl.SSLContext:
    """TLS context for asyncpg from the DATABASE_SSL_* settings."""
    context = ssl.create_default_context()
    ca_path = resolve_ssl_ca_path(current.DATABASE_SSL_CA_PATH)
    if ca_path is not None:
        if not ca_path.is_file():
            raise ConfigurationError(f"DATABASE_SSL_CA_PATH not found: {ca_path}")
        context.load_verify_locations(cafile=str(ca_path))
        logger.info("SSL certificate loaded from %s", ca_path)
    if not current.DATABASE_SSL_REJECT_UNAUTHORIZED:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


def build_engine(current: Settings) -> AsyncEngine:
    """Create the async engine with a small bounded pool."""
    url, requires_ssl = normalize_database_url(current.DATABASE_URL)
    engine_kwargs: Dict[str, Any] = {}
    if not url.startswith("sqlite"):
        connect_args: Dict[str, Any] = {"timeout": current.DATABASE_CONNECT_TIMEOUT_SECONDS}
        if current.DATABASE_SSL or requires_ssl:
            connect_args["ssl"] = build_ssl_context(current)
        engine_kwargs.update(
            pool_size=max(int(current.DATABASE_POOL_SIZE), 1),
            max_overflow=0,
            pool_pre_ping=True,
            connect_args=connect_args,
        )
    return create_async_engine(url, **engine_kwargs)


def make_session_maker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@asynccontextmanager
async def open_database(
    current: Settings,
    *,
    engine: Optional[AsyncEngine] = None,
) -> AsyncIterator[async_sessionmaker]:
    """Yield a session factory bound to a fresh engine; dispose it on exit."""
    engine = engine or build_engine(current)
    try:
        yield make_session_maker(engine)
    finally:
        await engine.dispose()


async def check_database_connection(session_maker: async_sessionmaker) -> None:
    """Round-trip a trivial query so an unreachable database fails before any work."""
    async with session_maker() as db:
        await db.execute(text("SELECT 1"))
