"""
Lead service: sales leads captured in the field.

Status changes are appended to the lead's ``change_history`` JSON array so
the lead keeps an audit trail of who moved it where and why. Declined or
cancelled leads can be reactivated back to PENDING.

Restricted callers see leads they own or are assigned to; elevated callers
see every lead in the organisation.

Every write also drops the organisation's cached reports, which count leads.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import HTTPException

from fieldops.core.cache import get_cache
from fieldops.core.config import get_settings
from fieldops.core.database import (
    affected_rows,
    execute_command,
    execute_query,
    execute_query_one,
    execute_value,
)
from fieldops.core.errors import bad_request, not_found
from fieldops.core.security import TenantContext
from fieldops.models.enums import LeadLifecycleStage, LeadStatus, LeadTemperature
from fieldops.models.schemas import (
    LeadCreate,
    LeadUpdate,
    paginated_response,
    serialize_record,
    to_snake,
)
from fieldops.services import reports as report_service
from fieldops.sql import lead_queries
from fieldops.sql.common import build_insert_query, build_update_query

logger = logging.getLogger(__name__)

CACHE_PREFIX = "leads:"

REACTIVATABLE_STATUSES = frozenset({LeadStatus.DECLINED.value, LeadStatus.CANCELLED.value})

_UPDATABLE_FIELDS: List[str] = [
    "name",
    "email",
    "phone",
    "companyName",
    "notes",
    "estimatedValue",
    "industry",
    "jobTitle",
    "painPoints",
    "customFields",
]

_UPDATABLE_ENUM_FIELDS: List[str] = ["temperature", "priority", "source", "intent"]


def _enum_value(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value


def status_change_entry(
    previous: Optional[str],
    new: str,
    changed_by: Optional[int],
    reason: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "type": "STATUS_CHANGE",
        "from": previous,
        "to": new,
        "reason": reason,
        "changedBy": changed_by,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def lead_columns(
    payload: LeadCreate,
    owner_id: int,
    org_id: int,
    branch_id: Optional[int],
) -> Dict[str, Any]:
    """Insert columns for a new lead; shared with the CSV import."""
    assignees = [{"uid": assignee.uid} for assignee in payload.assignees or []]
    return {
        "name": payload.name,
        "email": payload.email,
        "phone": payload.phone,
        "company_name": payload.companyName,
        "notes": payload.notes,
        "image": payload.image,
        "latitude": payload.latitude,
        "longitude": payload.longitude,
        "status": payload.status.value,
        "temperature": _enum_value(payload.temperature),
        "priority": _enum_value(payload.priority),
        "source": _enum_value(payload.source),
        "intent": _enum_value(payload.intent),
        "lifecycle_stage": LeadLifecycleStage.LEAD.value,
        "estimated_value": payload.estimatedValue,
        "budget_range": payload.budgetRange,
        "industry": payload.industry,
        "job_title": payload.jobTitle,
        "pain_points": payload.painPoints,
        "custom_fields": payload.customFields,
        "change_history": [],
        "assignees": assignees,
        "owner_uid": owner_id,
        "organisation_uid": org_id,
        "branch_uid": branch_id,
        "is_deleted": False,
    }


def _lead_response(row: Any) -> Dict[str, Any]:
    lead = serialize_record(row)
    lead["owner"] = {
        "uid": lead.get("ownerUid"),
        "name": lead.pop("ownerName", None),
        "surname": lead.pop("ownerSurname", None),
        "email": lead.pop("ownerEmail", None),
        "photoURL": lead.pop("ownerPhotoUrl", None),
    }
    return lead


def _can_access(lead: Dict[str, Any], tenant: TenantContext) -> bool:
    if tenant.is_elevated or lead["owner_uid"] == tenant.user_id:
        return True
    return any(
        isinstance(assignee, dict) and assignee.get("uid") == tenant.user_id
        for assignee in lead.get("assignees") or []
    )


async def _load_lead(
    lead_id: int,
    tenant: TenantContext,
    include_deleted: bool = False,
) -> Dict[str, Any]:
    sql, args = lead_queries.get_lead_query(lead_id, tenant.org_id, include_deleted)
    row = await execute_query_one(sql, *args)
    if not row or not _can_access(dict(row), tenant):
        raise not_found(get_settings().not_found_message)
    return dict(row)


async def _invalidate(tenant: TenantContext) -> None:
    await get_cache().delete_prefix(CACHE_PREFIX)
    if tenant.org_id:
        await report_service.clear_organisation_report_cache(tenant.org_id)


# =============================================================================
# CRUD
# =============================================================================

async def create_lead(payload: LeadCreate, tenant: TenantContext) -> Dict[str, Any]:
    if not tenant.org_id:
        raise bad_request("Organization ID is required")

    owner_id = payload.owner.uid if payload.owner else tenant.user_id
    sql, args = build_insert_query(
        "leads", lead_columns(payload, owner_id, tenant.org_id, tenant.branch_id)
    )
    row = await execute_query_one(sql, *args)
    await _invalidate(tenant)
    logger.info(f"Created lead {row['uid']} for user {owner_id} in org {tenant.org_id}")
    return {"message": get_settings().success_message, "data": serialize_record(row)}


async def find_all_leads(
    tenant: TenantContext,
    page: int = 1,
    limit: Optional[int] = None,
    status: Optional[LeadStatus] = None,
    search: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    temperature: Optional[LeadTemperature] = None,
) -> Dict[str, Any]:
    settings = get_settings()
    limit = limit or settings.default_page_limit
    page = max(page, 1)
    owner_id = None if tenant.is_elevated else tenant.user_id

    cache = get_cache()
    cache_key = (
        f"{CACHE_PREFIX}list:{tenant.org_id}:{owner_id}:{_enum_value(status)}:{search}:"
        f"{start_date}:{end_date}:{_enum_value(temperature)}:{page}:{limit}"
    )
    cached = await cache.get(cache_key)
    if cached is not None:
        return cached

    select_sql, count_sql, args = lead_queries.find_leads_query(
        tenant.org_id,
        None,
        owner_id=owner_id,
        status=_enum_value(status),
        temperature=_enum_value(temperature),
        start_date=start_date,
        end_date=end_date,
        search=search,
    )
    rows = await execute_query(select_sql, *args, limit, (page - 1) * limit)
    total = await execute_value(count_sql, *args)

    response = paginated_response(
        [_lead_response(row) for row in rows], int(total or 0), page, limit, settings.success_message
    )
    await cache.set(cache_key, response)
    return response


async def find_one_lead(lead_id: int, tenant: TenantContext) -> Dict[str, Any]:
    lead = await _load_lead(lead_id, tenant)
    return {"message": get_settings().success_message, "lead": _lead_response(lead)}


async def leads_by_user(user_id: int, tenant: TenantContext) -> Dict[str, Any]:
    if not tenant.is_elevated and user_id != tenant.user_id:
        raise HTTPException(status_code=403, detail="You can only view your own leads")
    sql, args = lead_queries.leads_by_user_query(user_id, tenant.org_id)
    rows = await execute_query(sql, *args)
    return {
        "message": get_settings().success_message,
        "leads": [_lead_response(row) for row in rows],
    }


async def update_lead(lead_id: int, payload: LeadUpdate, tenant: TenantContext) -> Dict[str, Any]:
    """Partial update; a status change is appended to ``change_history``."""
    lead = await _load_lead(lead_id, tenant)

    fields: Dict[str, Any] = {}
    for field in _UPDATABLE_FIELDS:
        if field in payload.model_fields_set:
            fields[to_snake(field)] = getattr(payload, field)
    for field in _UPDATABLE_ENUM_FIELDS:
        if field in payload.model_fields_set:
            fields[field] = _enum_value(getattr(payload, field))

    if payload.status is not None and payload.status.value != lead["status"]:
        history = list(lead.get("change_history") or [])
        history.append(status_change_entry(
            lead["status"], payload.status.value, tenant.user_id, payload.statusChangeReason
        ))
        fields["status"] = payload.status.value
        fields["change_history"] = history
        if payload.status is LeadStatus.CONVERTED:
            fields["lifecycle_stage"] = LeadLifecycleStage.CUSTOMER.value

    if not fields:
        raise bad_request("No fields to update")

    sql, args = build_update_query("leads", fields, {"uid": lead_id})
    await execute_query_one(sql, *args)
    await _invalidate(tenant)
    return {"message": get_settings().success_message}


async def remove_lead(lead_id: int, tenant: TenantContext) -> Dict[str, Any]:
    await _load_lead(lead_id, tenant)
    status = await execute_command(lead_queries.SOFT_DELETE_LEAD, lead_id)
    if affected_rows(status) == 0:
        raise not_found(get_settings().not_found_message)
    await _invalidate(tenant)
    return {"message": get_settings().success_message}


async def restore_lead(lead_id: int, tenant: TenantContext) -> Dict[str, Any]:
    await _load_lead(lead_id, tenant, include_deleted=True)
    status = await execute_command(lead_queries.RESTORE_LEAD, lead_id)
    if affected_rows(status) == 0:
        raise not_found(get_settings().not_found_message)
    await _invalidate(tenant)
    return {"message": get_settings().success_message}


async def reactivate_lead(
    lead_id: int,
    tenant: TenantContext,
    reason: Optional[str] = None,
) -> Dict[str, Any]:
    """Move a DECLINED or CANCELLED lead back to PENDING."""
    lead = await _load_lead(lead_id, tenant)
    if lead["status"] not in REACTIVATABLE_STATUSES:
        return {"message": "Only declined or cancelled leads can be reactivated"}

    history = list(lead.get("change_history") or [])
    history.append(status_change_entry(
        lead["status"], LeadStatus.PENDING.value, tenant.user_id, reason or "Lead reactivated"
    ))
    sql, args = build_update_query(
        "leads",
        {"status": LeadStatus.PENDING.value, "change_history": history},
        {"uid": lead_id},
    )
    await execute_query_one(sql, *args)
    await _invalidate(tenant)
    logger.info(f"Reactivated lead {lead_id} from {lead['status']} by user {tenant.user_id}")
    return {"message": get_settings().success_message}
