"""
FastAPI router for competitor intelligence.

Key Endpoints:
- POST /competitors - Create one competitor
- POST /competitors/batch - Create many in chunked transactions
- POST /competitors/bulk - Create up to 50 with per-item results
- PATCH /competitors/bulk - Update up to 50 by uid
- GET /competitors - Paginated, filtered list
- GET /competitors/analytics - Totals, threat ranking, industry counts
- GET /competitors/by-industry - Counts per industry
- GET /competitors/by-threat - Competitors at or above a threat level
- GET /competitors/by-name - Name search
- GET /competitors/map-data - Located competitors as map markers
- GET /competitors/{id} / GET /competitors/ref/{ref} - One competitor
- PATCH /competitors/{id} - Update
- DELETE /competitors/{id} - Soft delete
- DELETE /competitors/hard/{id} - Permanent delete (admins)

Reads and writes are scoped to the organisation and branch from the token.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from fieldops.core.security import TenantContext, TenantDep, require_roles
from fieldops.models.enums import AccessLevel, CompetitorStatus
from fieldops.models.schemas import (
    CompetitorBatchCreate,
    CompetitorBulkCreate,
    CompetitorBulkUpdate,
    CompetitorCreate,
    CompetitorUpdate,
)
from fieldops.services import competitors as competitor_service

logger = logging.getLogger(__name__)

router = APIRouter()

MANAGEMENT_ROLES = (AccessLevel.OWNER, AccessLevel.ADMIN, AccessLevel.MANAGER, AccessLevel.DEVELOPER)


# =============================================================================
# Create
# =============================================================================

@router.post("/")
async def create_competitor(payload: CompetitorCreate, tenant: TenantDep) -> Dict[str, Any]:
    try:
        return await competitor_service.create_competitor(payload, tenant.user_id, tenant.org_id, tenant.branch_id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating competitor: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create competitor")


@router.post("/batch")
async def create_competitors_batch(
    payload: CompetitorBatchCreate,
    tenant: TenantContext = Depends(require_roles(*MANAGEMENT_ROLES)),
) -> Dict[str, Any]:
    """Create competitors in chunks; failures are reported per item."""
    try:
        return await competitor_service.create_competitors_batch(
            payload.competitors, tenant.user_id, tenant.org_id, tenant.branch_id
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error in batch competitor creation: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create competitors")


@router.post("/bulk")
async def create_bulk_competitors(
    payload: CompetitorBulkCreate,
    tenant: TenantContext = Depends(require_roles(*MANAGEMENT_ROLES)),
) -> Dict[str, Any]:
    """Create up to 50 competitors; duplicates and invalid items fail individually."""
    try:
        return await competitor_service.create_bulk_competitors(
            payload, tenant.user_id, tenant.org_id, tenant.branch_id
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error in bulk competitor creation: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create competitors")


@router.patch("/bulk")
async def update_bulk_competitors(
    payload: CompetitorBulkUpdate,
    tenant: TenantContext = Depends(require_roles(*MANAGEMENT_ROLES)),
) -> Dict[str, Any]:
    try:
        return await competitor_service.update_bulk_competitors(payload, tenant.org_id, tenant.branch_id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error in bulk competitor update: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to update competitors")


# =============================================================================
# Read
# =============================================================================

@router.get("/")
async def list_competitors(
    tenant: TenantDep,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=500),
    status: Optional[CompetitorStatus] = None,
    industry: Optional[str] = None,
    isDirect: Optional[bool] = None,
    name: Optional[str] = None,
    minThreatLevel: Optional[int] = Query(None, ge=1, le=5),
    organisationId: Optional[int] = None,
    branchId: Optional[int] = None,
) -> Dict[str, Any]:
    try:
        return await competitor_service.find_all_competitors(
            tenant.org_id,
            tenant.branch_id,
            page=page,
            limit=limit,
            status=status,
            industry=industry,
            is_direct=isDirect,
            name=name,
            min_threat_level=minThreatLevel,
            organisation_filter=organisationId,
            branch_filter=branchId,
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error listing competitors: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch competitors")


@router.get("/analytics")
async def competitor_analytics(tenant: TenantDep) -> Dict[str, Any]:
    return await competitor_service.competitor_analytics(tenant.org_id, tenant.branch_id)


@router.get("/by-industry")
async def competitors_by_industry(tenant: TenantDep) -> Dict[str, Any]:
    return await competitor_service.competitors_by_industry(tenant.org_id, tenant.branch_id)


@router.get("/by-threat")
async def competitors_by_threat(
    tenant: TenantDep,
    minThreatLevel: int = Query(3),
) -> Dict[str, Any]:
    return await competitor_service.find_competitors_by_threat_level(
        minThreatLevel, tenant.org_id, tenant.branch_id
    )


@router.get("/by-name")
async def competitors_by_name(tenant: TenantDep, name: str = Query("")) -> Dict[str, Any]:
    return await competitor_service.find_competitors_by_name(name, tenant.org_id, tenant.branch_id)


@router.get("/map-data")
async def competitor_map_data(tenant: TenantDep) -> Dict[str, Any]:
    return await competitor_service.competitor_map_data(tenant.org_id, tenant.branch_id)


@router.get("/ref/{ref}")
async def get_competitor_by_ref(ref: str, tenant: TenantDep) -> Dict[str, Any]:
    return await competitor_service.find_one_competitor_by_ref(ref, tenant.org_id, tenant.branch_id)


@router.get("/{competitor_id}")
async def get_competitor(competitor_id: int, tenant: TenantDep) -> Dict[str, Any]:
    return await competitor_service.find_one_competitor(competitor_id, tenant.org_id, tenant.branch_id)


# =============================================================================
# Update / delete
# =============================================================================

@router.patch("/{competitor_id}")
async def update_competitor(competitor_id: int, payload: CompetitorUpdate, tenant: TenantDep) -> Dict[str, Any]:
    try:
        return await competitor_service.update_competitor(
            competitor_id, payload, tenant.org_id, tenant.branch_id
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating competitor {competitor_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to update competitor")


@router.delete("/hard/{competitor_id}")
async def hard_delete_competitor(
    competitor_id: int,
    tenant: TenantContext = Depends(require_roles(AccessLevel.OWNER, AccessLevel.ADMIN, AccessLevel.DEVELOPER)),
) -> Dict[str, Any]:
    return await competitor_service.hard_remove_competitor(competitor_id, tenant.org_id, tenant.branch_id)


@router.delete("/{competitor_id}")
async def delete_competitor(competitor_id: int, tenant: TenantDep) -> Dict[str, Any]:
    return await competitor_service.remove_competitor(competitor_id, tenant.org_id, tenant.branch_id)
