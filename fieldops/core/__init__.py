"""
Core infrastructure package for the fieldops backend.

Provides:
- Configuration management via pydantic-settings
- Async PostgreSQL connectivity via asyncpg
- TTL cache for read paths
- JWT tenant context and role guards
- FastAPI dependency injection utilities

Re-exports allow short imports:

    from fieldops.core import get_settings, get_db_pool, get_cache, TenantDep
"""

from fieldops.core.config import Settings, get_settings
from fieldops.core.database import init_db, close_db, get_db_pool
from fieldops.core.cache import TTLCache, get_cache
from fieldops.core.security import TenantContext, TenantDep, get_tenant, require_roles
from fieldops.core.dependencies import get_db_session, DBSessionDep

__all__ = [
    "Settings",
    "get_settings",
    "init_db",
    "close_db",
    "get_db_pool",
    "TTLCache",
    "get_cache",
    "TenantContext",
    "TenantDep",
    "get_tenant",
    "require_roles",
    "get_db_session",
    "DBSessionDep",
]
