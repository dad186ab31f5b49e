"""
FastAPI router for client visit check-ins.

Key Endpoints:
- GET /check-ins - All check-ins in the caller's organisation
- GET /check-ins/user/{user_uid} - One user's check-ins
- POST /check-ins - Check in
- GET /check-ins/status/{reference} - Whether a user is checked in
- PATCH /check-ins/{reference} - Check out of the latest visit
- POST /check-ins/client/{client_id} - Check in at a specific client

The check-in service reports failures as ``{"message": ...}`` envelopes, so
these handlers only turn unexpected errors into a 500.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, HTTPException

from fieldops.core.security import TenantDep
from fieldops.models.schemas import CheckInCreate, CheckOutCreate
from fieldops.services import check_ins as check_in_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/")
async def list_check_ins(tenant: TenantDep) -> Dict[str, Any]:
    return await check_in_service.get_all_check_ins(tenant.org_id)


@router.get("/user/{user_uid}")
async def list_user_check_ins(user_uid: int, tenant: TenantDep) -> Dict[str, Any]:
    return await check_in_service.get_user_check_ins(user_uid, tenant.org_id)


@router.post("/")
async def create_check_in(
    payload: CheckInCreate,
    tenant: TenantDep,
) -> Dict[str, Any]:
    """Check the caller (or ``owner``) in at the given location."""
    try:
        return await check_in_service.check_in(payload, tenant.org_id, tenant.branch_id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating check-in for user {tenant.user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to record check-in")


@router.get("/status/{reference}")
async def get_check_in_status(reference: int, tenant: TenantDep) -> Dict[str, Any]:
    return await check_in_service.check_in_status(reference)


@router.patch("/{reference}")
async def check_out(
    reference: int,
    payload: CheckOutCreate,
    tenant: TenantDep,
) -> Dict[str, Any]:
    """Close the owner's latest open check-in."""
    try:
        return await check_in_service.check_out(payload, tenant.org_id, tenant.branch_id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error checking out {reference} for user {tenant.user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to record check-out")


@router.post("/client/{client_id}")
async def check_in_at_client(
    client_id: int,
    payload: CheckInCreate,
    tenant: TenantDep,
) -> Dict[str, Any]:
    try:
        return await check_in_service.check_in_at_client(client_id, payload, tenant.org_id, tenant.branch_id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error checking in at client {client_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to record check-in")
