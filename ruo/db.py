# ruo/db.py: moteur async + sessions; Postgres (asyncpg, SSL optionnel) ou SQLite (aiosqlite)
import logging
import socket
import ssl
from typing import AsyncIterator, Optional
from urllib.parse import urlparse

import asyncpg
import certifi
from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine,
)
from sqlalchemy.pool import NullPool

from ruo import config
from ruo.models import metadata

logger = logging.getLogger(__name__)


# Résolution IPv4 (A record)
def resolve_ipv4(host, port):
    for fam, _, _, _, sockaddr in socket.getaddrinfo(host, port, socket.AF_INET, socket.SOCK_STREAM):
        return sockaddr[0]
    return host  # fallback (laisser asyncpg gérer)


def _ssl_context() -> ssl.SSLContext:
    ctx = ssl.create_default_context()
    ctx.load_verify_locations(certifi.where())
    ctx.check_hostname = True
    ctx.verify_mode = ssl.CERT_REQUIRED
    return ctx


def _postgres_engine(url: str) -> AsyncEngine:
    parsed = urlparse(url.replace("postgresql+asyncpg://", "postgresql://"))
    port = parsed.port or 5432
    host = resolve_ipv4(parsed.hostname, port)
    ssl_ctx = _ssl_context()

    async def _asyncpg_connect():
        return await asyncpg.connect(
            host=host,                 # IPv4
            port=port,
            user=parsed.username,
            password=parsed.password,
            database=parsed.path.lstrip("/") or "postgres",
            ssl=ssl_ctx,
            timeout=10.0,
        )

    return create_async_engine(
        url,
        poolclass=NullPool,
        pool_pre_ping=True,
        async_creator=_asyncpg_connect,   # impose notre connecteur (IPv4 + SSL)
    )


def make_engine(url: Optional[str] = None) -> AsyncEngine:
    url = url or config.DATABASE_URL
    if url.startswith("postgresql") and config.DB_SSL:
        logger.info("[db] postgres with SSL (IPv4)")
        return _postgres_engine(url.split("?")[0])
    return create_async_engine(url, pool_pre_ping=True)


def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False)


async def init_models(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    async with request.app.state.sessionmaker() as session:
        yield session
