"""
FastAPI router for expense claims.

Key Endpoints:
- POST /claims - Raise a claim
- GET /claims - Paginated claims visible to the caller
- GET /claims/report - Claims in a window grouped by status
- GET /claims/me - The caller's own claims
- GET /claims/{ref} - One claim with its owner's stats
- PATCH /claims/{ref} - Update a claim
- PATCH /claims/restore/{ref} - Restore a deleted claim
- GET /claims/for/{ref} - Claims of one user
- GET /claims/share/{token} - Public view through a share token
- POST /claims/{ref}/generate-share-token - Create a share link
- DELETE /claims/{ref} - Soft-delete a claim
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Query

from fieldops.core.security import TenantDep
from fieldops.models.enums import ClaimStatus
from fieldops.models.schemas import ClaimCreate, ClaimUpdate
from fieldops.services import claims as claim_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/")
async def create_claim(payload: ClaimCreate, tenant: TenantDep) -> Dict[str, Any]:
    try:
        return await claim_service.create_claim(payload, tenant)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating claim for user {tenant.user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create claim")


@router.get("/")
async def list_claims(
    tenant: TenantDep,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=500),
    status: Optional[ClaimStatus] = None,
    startDate: Optional[datetime] = None,
    endDate: Optional[datetime] = None,
    search: Optional[str] = None,
) -> Dict[str, Any]:
    try:
        return await claim_service.find_all_claims(tenant, page, limit, status, startDate, endDate, search)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error listing claims: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch claims")


@router.get("/report")
async def claims_report(
    tenant: TenantDep,
    startDate: datetime = Query(...),
    endDate: datetime = Query(...),
) -> Dict[str, Any]:
    """Claims created between ``startDate`` and ``endDate`` grouped by status."""
    if startDate > endDate:
        raise HTTPException(status_code=400, detail="startDate must be before endDate")
    try:
        return await claim_service.claims_report(startDate, endDate, tenant)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error building claims report: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to build claims report")


@router.get("/me")
async def my_claims(tenant: TenantDep) -> Dict[str, Any]:
    return await claim_service.claims_by_user(tenant.user_id, tenant)


@router.get("/share/{token}")
async def shared_claim(token: str) -> Dict[str, Any]:
    """Public: no bearer token required."""
    return await claim_service.find_by_share_token(token)


@router.get("/for/{ref}")
async def claims_for_user(ref: int, tenant: TenantDep) -> Dict[str, Any]:
    return await claim_service.claims_by_user(ref, tenant)


@router.patch("/restore/{ref}")
async def restore_claim(ref: int, tenant: TenantDep) -> Dict[str, Any]:
    return await claim_service.restore_claim(ref, tenant)


@router.post("/{ref}/generate-share-token")
async def generate_share_token(ref: int, tenant: TenantDep) -> Dict[str, Any]:
    return await claim_service.generate_share_token(ref, tenant)


@router.get("/{ref}")
async def get_claim(ref: int, tenant: TenantDep) -> Dict[str, Any]:
    return await claim_service.find_one_claim(ref, tenant)


@router.patch("/{ref}")
async def update_claim(ref: int, payload: ClaimUpdate, tenant: TenantDep) -> Dict[str, Any]:
    try:
        return await claim_service.update_claim(ref, payload, tenant)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating claim {ref}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to update claim")


@router.delete("/{ref}")
async def delete_claim(ref: int, tenant: TenantDep) -> Dict[str, Any]:
    return await claim_service.remove_claim(ref, tenant)
