"""
FastAPI dependency injection module for the fieldops backend.

Key Dependencies Provided:
- get_db_session: Async generator yielding a pooled database connection
- DBSessionDep: Annotated alias for get_db_session
- TenantDep / require_roles: Re-exported from fieldops.core.security

Tests swap any of these with ``app.dependency_overrides``.

Usage Examples:
    @app.get("/health/db")
    async def database_health(conn: DBSessionDep):
        return await conn.fetchval("SELECT 1")
"""

from typing import Annotated, AsyncGenerator

from asyncpg import Connection
from fastapi import Depends

from fieldops.core.database import get_db_pool
from fieldops.core.security import TenantContext, TenantDep, get_tenant, require_roles


async def get_db_session() -> AsyncGenerator[Connection, None]:
    """
    Yield a pooled database connection for the lifetime of one request.

    The connection is released back to the pool when the endpoint returns
    or raises.
    """
    pool = await get_db_pool()
    async with pool.acquire() as connection:
        yield connection


DBSessionDep = Annotated[Connection, Depends(get_db_session)]


__all__ = [
    "get_db_session",
    "DBSessionDep",
    "TenantContext",
    "TenantDep",
    "get_tenant",
    "require_roles",
]
