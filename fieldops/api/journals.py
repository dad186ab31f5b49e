"""
FastAPI router for journals and scored inspections.

Key Endpoints:
- POST /journal - Create a journal entry (scored when it carries inspection data)
- GET /journal - Paginated journals visible to the caller
- GET /journal/report - Entries in a window with activity metrics
- GET /journal/{ref} / GET /journal/for/{ref} - One entry / one user's entries
- PATCH /journal/{ref}, PATCH /journal/restore/{ref}, DELETE /journal/{ref}
- POST /journal/inspection - Create an inspection and award XP
- GET /journal/inspections, GET /journal/inspection/{ref}
- GET /journal/templates - Inspection form templates
- POST /journal/calculate-score/{ref} - Re-score a stored inspection
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Query

from fieldops.core.security import TenantDep
from fieldops.models.enums import JournalStatus, JournalType
from fieldops.models.schemas import JournalCreate, JournalUpdate
from fieldops.services import journals as journal_service

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Journals
# =============================================================================

@router.post("/")
async def create_journal(payload: JournalCreate, tenant: TenantDep) -> Dict[str, Any]:
    try:
        return await journal_service.create_journal(payload, tenant)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating journal: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create journal")


@router.get("/")
async def list_journals(
    tenant: TenantDep,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=500),
    status: Optional[JournalStatus] = None,
    type: Optional[JournalType] = None,
    startDate: Optional[datetime] = None,
    endDate: Optional[datetime] = None,
    search: Optional[str] = None,
) -> Dict[str, Any]:
    try:
        return await journal_service.find_all_journals(
            tenant, page, limit, status, type, startDate, endDate, search
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error listing journals: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch journals")


@router.get("/report")
async def journal_report(
    tenant: TenantDep,
    startDate: Optional[datetime] = None,
    endDate: Optional[datetime] = None,
    userId: Optional[int] = None,
) -> Dict[str, Any]:
    try:
        return await journal_service.journal_report(tenant, startDate, endDate, userId)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error building journal report: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to build journal report")


# =============================================================================
# Inspections
# =============================================================================

@router.post("/inspection")
async def create_inspection(payload: JournalCreate, tenant: TenantDep) -> Dict[str, Any]:
    return await journal_service.create_inspection(payload, tenant)


@router.get("/inspections")
async def list_inspections(tenant: TenantDep) -> Dict[str, Any]:
    return await journal_service.get_all_inspections(tenant)


@router.get("/inspection/{ref}")
async def get_inspection(ref: int, tenant: TenantDep) -> Dict[str, Any]:
    return await journal_service.get_inspection_detail(ref, tenant)


@router.get("/templates")
async def inspection_templates(tenant: TenantDep) -> Dict[str, Any]:
    return journal_service.get_inspection_templates()


@router.post("/calculate-score/{ref}")
async def calculate_score(ref: int, tenant: TenantDep) -> Dict[str, Any]:
    return await journal_service.recalculate_score(ref, tenant)


# =============================================================================
# Single journal
# =============================================================================

@router.get("/for/{ref}")
async def journals_for_user(ref: int, tenant: TenantDep) -> Dict[str, Any]:
    return await journal_service.journals_by_user(ref, tenant)


@router.patch("/restore/{ref}")
async def restore_journal(ref: int, tenant: TenantDep) -> Dict[str, Any]:
    return await journal_service.restore_journal(ref, tenant)


@router.get("/{ref}")
async def get_journal(ref: int, tenant: TenantDep) -> Dict[str, Any]:
    return await journal_service.find_one_journal(ref, tenant)


@router.patch("/{ref}")
async def update_journal(ref: int, payload: JournalUpdate, tenant: TenantDep) -> Dict[str, Any]:
    try:
        return await journal_service.update_journal(ref, payload, tenant)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating journal {ref}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to update journal")


@router.delete("/{ref}")
async def delete_journal(ref: int, tenant: TenantDep) -> Dict[str, Any]:
    return await journal_service.remove_journal(ref, tenant)
