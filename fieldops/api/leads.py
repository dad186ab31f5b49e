"""
FastAPI router for sales leads.

Key Endpoints:
- POST /leads - Create a lead
- POST /leads/import - Bulk import from a CSV upload with round-robin assignment
- GET /leads - Paginated leads visible to the caller
- GET /leads/{ref} / GET /leads/for/{ref} - One lead / one user's leads
- PATCH /leads/{ref} - Update (status changes are recorded in the history)
- PATCH /leads/{ref}/restore - Restore a deleted lead
- PATCH /leads/{ref}/reactivate - Move a declined or cancelled lead back to pending
- DELETE /leads/{ref} - Soft delete
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, File, Form, HTTPException, Query, UploadFile

from fieldops.core.security import TenantDep
from fieldops.models.enums import LeadStatus, LeadTemperature
from fieldops.models.schemas import LeadCreate, LeadUpdate
from fieldops.services import lead_csv
from fieldops.services import leads as lead_service

logger = logging.getLogger(__name__)

router = APIRouter()

CSV_CONTENT_TYPES = frozenset({"text/csv", "application/vnd.ms-excel", "application/csv", "text/plain"})


def _parse_user_ids(raw: Optional[str]) -> Optional[List[int]]:
    """``"3,5,8"`` -> ``[3, 5, 8]``; blank -> None."""
    if not raw or not raw.strip():
        return None
    try:
        return [int(part) for part in raw.split(",") if part.strip()]
    except ValueError:
        raise HTTPException(status_code=400, detail="assignedUserIds must be a comma separated list of ids")


@router.post("/")
async def create_lead(payload: LeadCreate, tenant: TenantDep) -> Dict[str, Any]:
    try:
        return await lead_service.create_lead(payload, tenant)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating lead: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create lead")


@router.post("/import")
async def import_leads(
    tenant: TenantDep,
    file: UploadFile = File(...),
    branchId: Optional[int] = Form(None),
    assignedUserIds: Optional[str] = Form(None),
) -> Dict[str, Any]:
    """Import a CSV of leads; rows are validated individually."""
    if file.content_type and file.content_type not in CSV_CONTENT_TYPES and not (
        file.filename or ""
    ).lower().endswith(".csv"):
        raise HTTPException(status_code=400, detail="Only CSV files are supported")

    user_ids = _parse_user_ids(assignedUserIds)
    try:
        content = await file.read()
        return await lead_csv.import_leads_csv(content, tenant, branchId, user_ids)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error importing leads from {file.filename}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to import leads")


@router.get("/")
async def list_leads(
    tenant: TenantDep,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=500),
    status: Optional[LeadStatus] = None,
    search: Optional[str] = None,
    startDate: Optional[datetime] = None,
    endDate: Optional[datetime] = None,
    temperature: Optional[LeadTemperature] = None,
) -> Dict[str, Any]:
    try:
        return await lead_service.find_all_leads(
            tenant, page, limit, status, search, startDate, endDate, temperature
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error listing leads: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch leads")


@router.get("/for/{ref}")
async def leads_for_user(ref: int, tenant: TenantDep) -> Dict[str, Any]:
    return await lead_service.leads_by_user(ref, tenant)


@router.get("/{ref}")
async def get_lead(ref: int, tenant: TenantDep) -> Dict[str, Any]:
    return await lead_service.find_one_lead(ref, tenant)


@router.patch("/{ref}/restore")
async def restore_lead(ref: int, tenant: TenantDep) -> Dict[str, Any]:
    return await lead_service.restore_lead(ref, tenant)


@router.patch("/{ref}/reactivate")
async def reactivate_lead(
    ref: int,
    tenant: TenantDep,
    reason: Optional[str] = Body(None, embed=True),
) -> Dict[str, Any]:
    return await lead_service.reactivate_lead(ref, tenant, reason)


@router.patch("/{ref}")
async def update_lead(ref: int, payload: LeadUpdate, tenant: TenantDep) -> Dict[str, Any]:
    try:
        return await lead_service.update_lead(ref, payload, tenant)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating lead {ref}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to update lead")


@router.delete("/{ref}")
async def delete_lead(ref: int, tenant: TenantDep) -> Dict[str, Any]:
    return await lead_service.remove_lead(ref, tenant)
