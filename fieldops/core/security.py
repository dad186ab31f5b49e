"""
Bearer-token authentication and multi-tenant request context.

Every protected endpoint reads the caller's identity and tenancy from a
signed JWT. The token carries:

- ``uid``: the authenticated user id
- ``role`` (or ``accessLevel``): the caller's access level
- ``organisationRef`` (or ``orgId``): the organisation the caller acts for
- ``branchId`` (or ``branch.uid``): optional branch scope

The decoded claims are exposed to handlers as a ``TenantContext`` via the
``TenantDep`` annotated dependency. ``require_roles`` builds a dependency
that rejects callers whose access level is not in the allowed set.

Usage:
    @router.get("/", dependencies=[Depends(require_roles(AccessLevel.ADMIN))])
    async def list_items(tenant: TenantDep):
        ...
"""

import logging
from dataclasses import dataclass
from typing import Annotated, Any, Dict, Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from fieldops.core.config import get_settings
from fieldops.models.enums import AccessLevel, ELEVATED_ACCESS_LEVELS

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class TenantContext:
    """Identity and tenancy scope of the current request."""

    user_id: int
    org_id: Optional[int]
    branch_id: Optional[int]
    access_level: AccessLevel

    @property
    def is_elevated(self) -> bool:
        """True for access levels allowed to see every record in the org."""
        return self.access_level in ELEVATED_ACCESS_LEVELS


def _as_int(value: Any) -> Optional[int]:
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def context_from_claims(claims: Dict[str, Any]) -> TenantContext:
    """
    Build a TenantContext from decoded token claims.

    Raises:
        HTTPException 401: If the token carries no usable user id.
    """
    user_id = _as_int(claims.get('uid'))
    if user_id is None:
        raise HTTPException(status_code=401, detail="Token is missing the user id")

    org_id = _as_int(claims.get('organisationRef', claims.get('orgId')))

    branch = claims.get('branch')
    branch_id = _as_int(branch.get('uid')) if isinstance(branch, dict) else None
    if branch_id is None:
        branch_id = _as_int(claims.get('branchId'))

    raw_role = str(claims.get('role') or claims.get('accessLevel') or AccessLevel.USER.value).lower()
    try:
        access_level = AccessLevel(raw_role)
    except ValueError:
        logger.warning(f"Unknown access level '{raw_role}' in token for user {user_id}")
        access_level = AccessLevel.USER

    return TenantContext(
        user_id=user_id,
        org_id=org_id,
        branch_id=branch_id,
        access_level=access_level,
    )


def decode_token(token: str) -> Dict[str, Any]:
    """
    Verify a bearer token signature and expiry and return its claims.

    Raises:
        HTTPException 401: Expired or otherwise invalid token.
    """
    settings = get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired")
    except jwt.InvalidTokenError as e:
        logger.warning(f"Rejected bearer token: {e}")
        raise HTTPException(status_code=401, detail="Invalid authentication token")


async def get_tenant(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> TenantContext:
    """FastAPI dependency resolving the caller's TenantContext."""
    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")

    return context_from_claims(decode_token(credentials.credentials))


TenantDep = Annotated[TenantContext, Depends(get_tenant)]


def require_roles(*allowed: AccessLevel):
    """
    Dependency factory restricting an endpoint to the given access levels.

    Usage:
        @router.delete("/{id}", dependencies=[Depends(require_roles(AccessLevel.ADMIN))])
    """
    allowed_levels = set(allowed)

    async def _check(tenant: TenantDep) -> TenantContext:
        if tenant.access_level not in allowed_levels:
            logger.warning(
                f"[PERMISSION_DENIED] user={tenant.user_id} role={tenant.access_level.value} "
                f"allowed={sorted(level.value for level in allowed_levels)}"
            )
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return tenant

    return _check
