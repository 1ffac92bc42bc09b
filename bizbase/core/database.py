# bizbase/core/database.py
"""Async engine and per-request connections."""

from typing import AsyncIterator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from bizbase.core.config import Settings


def create_engine(settings: Settings) -> AsyncEngine:
    """Engine shared by the process; connections are checked out per request."""
    connect_args = {}
    if settings.database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    return create_async_engine(settings.database_url, connect_args=connect_args, pool_pre_ping=True)


async def get_connection(request: Request) -> AsyncIterator[AsyncConnection]:
    """One connection for all statements of a request."""
    engine: AsyncEngine = request.app.state.engine
    async with engine.connect() as connection:
        yield connection
