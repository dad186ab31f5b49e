"""
Journal service: field journals and scored store inspections.

Journals are notes a field user files against a client (``clientRef``),
optionally with an attached file. An inspection is a journal of type
INSPECTION carrying an inspection form: categories of items each scored
1-5.

Inspection scoring:
- Category score is the sum of its item scores; category max is 5 per item.
- Weighted percentage = sum(score / max * weight) / sum(weight) * 100,
  rounded to 2 dp. Weight defaults to 1; categories without items are skipped.
- Rating bands: EXCELLENT >= 95, GOOD >= 85, AVERAGE >= 70, POOR >= 50,
  otherwise CRITICAL. XP for an inspection follows the same bands.

Journal report metrics categorise entries from their comments (meeting,
call, report, follow-up) and measure completion as entries that have a
file and comments longer than 10 characters.
"""

import logging
from collections import Counter
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
from fieldops.core.errors import bad_request, error_message, not_found
from fieldops.core.security import TenantContext
from fieldops.models.enums import InspectionRating, JournalStatus, JournalType, XPAction
from fieldops.models.schemas import (
    JournalCreate,
    JournalUpdate,
    paginated_response,
    serialize_record,
    serialize_records,
    to_snake,
)
from fieldops.services.rewards import award_xp, inspection_xp
from fieldops.sql import journal_queries
from fieldops.sql.common import build_insert_query, build_update_query

logger = logging.getLogger(__name__)

CACHE_PREFIX = "journal:"

ITEM_MAX_SCORE: int = 5


# =============================================================================
# Inspection template
# =============================================================================

def _template_category(category_id: str, name: str, weight: int, items: List[tuple]) -> Dict[str, Any]:
    return {
        "id": category_id,
        "name": name,
        "weight": weight,
        "items": [
            {"id": item_id, "name": item_name, "required": required}
            for item_id, item_name, required in items
        ],
    }


STORE_INSPECTION_TEMPLATE: Dict[str, Any] = {
    "id": "store_comprehensive",
    "name": "Comprehensive Store Inspection",
    "description": "Complete store inspection covering all operational areas",
    "categories": [
        _template_category("fresh_produce", "Fresh Produce, Meat & Bakery", 20, [
            ("fruits_vegetables", "Fruits & vegetables freshness", True),
            ("meat_hygiene", "Meat & fish hygiene standards", True),
            ("bakery_freshness", "Bakery freshness & labeling", True),
            ("temp_compliance", "Refrigerated product temp compliance", True),
            ("storage_rotation", "Storage/rotation practices", True),
        ]),
        _template_category("cold_storage", "Cold Storage & Freezers", 15, [
            ("temperature_control", "Temperature control", True),
            ("temp_logs", "Temperature logs maintained", True),
            ("freezer_cleanliness", "Freezers clean, no ice/leakage", True),
            ("items_sealed", "Items sealed & labeled", True),
        ]),
        _template_category("health_safety", "Health & Safety", 25, [
            ("fire_extinguishers", "Fire extinguishers serviced & accessible", True),
            ("emergency_exits", "Emergency exits clear & marked", True),
            ("first_aid", "First aid kit stocked", True),
            ("electrical_safety", "Electrical & structural safety", True),
            ("pest_control", "Pest control records", True),
        ]),
        _template_category("customer_service", "Customer Service", 15, [
            ("staff_availability", "Staff availability & presence", True),
            ("staff_attitude", "Staff attitude & training", True),
            ("queue_management", "Queue management", True),
            ("feedback_handling", "Feedback/complaints handling", False),
            ("pa_system", "PA system functionality", False),
        ]),
        _template_category("cashier_checkout", "Cashier & Checkout Area", 15, [
            ("pos_system", "POS system functionality", True),
            ("transaction_efficiency", "Transaction efficiency", True),
            ("queue_barriers", "Queue barriers & order", True),
            ("bag_availability", "Bag availability", True),
            ("till_cleanliness", "Till area cleanliness", True),
        ]),
        _template_category("warehouse", "Back of House (Warehouse/Storage)", 10, [
            ("stock_organization", "Stock organization & labeling", True),
            ("temp_sensitive_storage", "Temperature-sensitive storage", True),
            ("security_measures", "Security measures", True),
        ]),
        _template_category("compliance", "Compliance & Documentation", 20, [
            ("business_licenses", "Business licenses & certificates", True),
            ("staff_training", "Staff hygiene training records", True),
            ("cleaning_logs", "Cleaning/temperature logs", True),
            ("promo_approvals", "Promo & discount approvals", False),
        ]),
    ],
}


# =============================================================================
# Scoring
# =============================================================================

def rating_for_percentage(percentage: float) -> InspectionRating:
    if percentage >= 95:
        return InspectionRating.EXCELLENT
    if percentage >= 85:
        return InspectionRating.GOOD
    if percentage >= 70:
        return InspectionRating.AVERAGE
    if percentage >= 50:
        return InspectionRating.POOR
    return InspectionRating.CRITICAL


def calculate_inspection_score(form: Any) -> Dict[str, Any]:
    """
    Score an inspection form.

    Args:
        form: Dict (or pydantic model) with ``categories``, each holding
            ``items`` with a 1-5 ``score`` and an optional ``weight``.

    Returns:
        Dict with totalScore, maxScore, percentage and overallRating.
    """
    if hasattr(form, "model_dump"):
        form = form.model_dump()

    total_score = 0
    max_score = 0
    weighted_sum = 0.0
    weight_total = 0.0

    for category in (form or {}).get("categories") or []:
        items = category.get("items") or []
        if not items:
            continue
        category_score = sum(item.get("score") or 0 for item in items)
        category_max = ITEM_MAX_SCORE * len(items)
        weight = category.get("weight") or 1

        total_score += category_score
        max_score += category_max
        weighted_sum += (category_score / category_max) * weight
        weight_total += weight

    percentage = round(weighted_sum / weight_total * 100, 2) if weight_total else 0.0

    return {
        "totalScore": total_score,
        "maxScore": max_score,
        "percentage": percentage,
        "overallRating": rating_for_percentage(percentage).value,
    }


# =============================================================================
# Report metrics
# =============================================================================

def categorize_entry(comments: Optional[str]) -> str:
    text = (comments or "").lower()
    if "meeting" in text:
        return "Meeting"
    if "call" in text:
        return "Call"
    if "report" in text:
        return "Report"
    if "follow" in text:
        return "Follow-up"
    return "Other"


def calculate_journal_metrics(entries: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    totalEntries, averageEntriesPerDay (1 dp over distinct days),
    topCategories (top 5) and completionRate as ``"x%"``.
    """
    total = len(entries)
    if total == 0:
        return {
            "totalEntries": 0,
            "averageEntriesPerDay": 0,
            "topCategories": [],
            "completionRate": "0%",
        }

    days = {
        entry["timestamp"].date() if isinstance(entry.get("timestamp"), datetime) else entry.get("timestamp")
        for entry in entries
    }
    days.discard(None)
    per_day = round(total / len(days), 1) if days else float(total)

    counts = Counter(categorize_entry(entry.get("comments")) for entry in entries)
    top_categories = [
        {"category": category, "count": count}
        for category, count in sorted(counts.items(), key=lambda pair: pair[1], reverse=True)[:5]
    ]

    complete = sum(
        1 for entry in entries
        if entry.get("file_url") and len(entry.get("comments") or "") > 10
    )
    completion = round(complete / total * 100, 1)

    return {
        "totalEntries": total,
        "averageEntriesPerDay": per_day,
        "topCategories": top_categories,
        "completionRate": f"{completion}%",
    }


# =============================================================================
# Helpers
# =============================================================================

_UPDATABLE_FIELDS: List[str] = [
    "clientRef",
    "fileURL",
    "comments",
    "title",
    "description",
    "inspectorComments",
    "attachments",
    "metadata",
]


def _journal_response(row: Any) -> Dict[str, Any]:
    journal = serialize_record(row)
    journal["owner"] = {
        "uid": journal.get("ownerUid"),
        "name": journal.pop("ownerName", None),
        "surname": journal.pop("ownerSurname", None),
        "email": journal.pop("ownerEmail", None),
        "photoURL": journal.pop("ownerPhotoUrl", None),
    }
    return journal


async def _load_journal(
    journal_id: int,
    tenant: TenantContext,
    include_deleted: bool = False,
) -> Dict[str, Any]:
    sql, args = journal_queries.get_journal_query(journal_id, tenant.org_id, include_deleted)
    row = await execute_query_one(sql, *args)
    if not row:
        raise not_found(get_settings().not_found_message)
    journal = dict(row)
    if not tenant.is_elevated and journal["owner_uid"] != tenant.user_id:
        raise not_found(get_settings().not_found_message)
    return journal


def _journal_columns(payload: JournalCreate, owner_id: int, tenant: TenantContext) -> Dict[str, Any]:
    now = datetime.now(timezone.utc)
    return {
        "client_ref": payload.clientRef,
        "file_url": payload.fileURL,
        "comments": payload.comments,
        "title": payload.title,
        "description": payload.description,
        "type": payload.type.value,
        "status": payload.status.value,
        "inspection_data": payload.inspectionData.model_dump() if payload.inspectionData else None,
        "inspector_comments": payload.inspectorComments,
        "store_manager_signature": payload.storeManagerSignature,
        "qc_inspector_signature": payload.qcInspectorSignature,
        "inspection_date": payload.inspectionDate,
        "inspection_location": payload.inspectionLocation,
        "attachments": payload.attachments,
        "metadata": payload.metadata,
        "timestamp": now,
        "owner_uid": owner_id,
        "organisation_uid": tenant.org_id,
        "branch_uid": tenant.branch_id,
        "is_deleted": False,
    }


# =============================================================================
# CRUD
# =============================================================================

async def create_journal(payload: JournalCreate, tenant: TenantContext) -> Dict[str, Any]:
    """Create a journal; an attached inspection form is scored before saving."""
    owner_id = payload.owner.uid if payload.owner else tenant.user_id
    if not owner_id:
        raise bad_request("Owner is required")

    fields = _journal_columns(payload, owner_id, tenant)
    if payload.inspectionData is not None:
        score = calculate_inspection_score(payload.inspectionData)
        fields.update({
            "total_score": score["totalScore"],
            "max_score": score["maxScore"],
            "percentage": score["percentage"],
            "overall_rating": score["overallRating"],
        })

    sql, args = build_insert_query("journals", fields)
    row = await execute_query_one(sql, *args)
    await get_cache().delete_prefix(CACHE_PREFIX)
    logger.info(f"Created journal {row['uid']} for user {owner_id}")
    return {"message": get_settings().success_message, "data": serialize_record(row)}


async def find_all_journals(
    tenant: TenantContext,
    page: int = 1,
    limit: Optional[int] = None,
    status: Optional[JournalStatus] = None,
    journal_type: Optional[JournalType] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    search: Optional[str] = None,
) -> Dict[str, Any]:
    settings = get_settings()
    limit = limit or settings.default_page_limit
    page = max(page, 1)
    owner_id = None if tenant.is_elevated else tenant.user_id

    cache = get_cache()
    cache_key = (
        f"{CACHE_PREFIX}list:{tenant.org_id}:{owner_id}:{status.value if status else None}:"
        f"{journal_type.value if journal_type else None}:{start_date}:{end_date}:{search}:{page}:{limit}"
    )
    cached = await cache.get(cache_key)
    if cached is not None:
        return cached

    select_sql, count_sql, args = journal_queries.find_journals_query(
        tenant.org_id,
        None,
        owner_id=owner_id,
        status=status.value if status else None,
        journal_type=journal_type.value if journal_type else None,
        start_date=start_date,
        end_date=end_date,
        search=search,
    )
    rows = await execute_query(select_sql, *args, limit, (page - 1) * limit)
    total = await execute_value(count_sql, *args)

    response = paginated_response(
        [_journal_response(row) for row in rows], int(total or 0), page, limit, settings.success_message
    )
    await cache.set(cache_key, response)
    return response


async def journal_stats(org_id: Optional[int]) -> Dict[str, Any]:
    by_status_sql, by_type_sql, average_sql, args = journal_queries.journal_stats_queries(org_id)
    by_status = await execute_query(by_status_sql, *args)
    by_type = await execute_query(by_type_sql, *args)
    average = await execute_value(average_sql, *args)
    return {
        "byStatus": {row["status"]: int(row["count"]) for row in by_status},
        "byType": {row["type"]: int(row["count"]) for row in by_type},
        "averageScore": round(float(average), 2) if average is not None else None,
    }


async def find_one_journal(journal_id: int, tenant: TenantContext) -> Dict[str, Any]:
    journal = await _load_journal(journal_id, tenant)
    stats = await journal_stats(tenant.org_id)
    return {
        "message": get_settings().success_message,
        "journal": _journal_response(journal),
        "stats": stats,
    }


async def journals_by_user(user_id: int, tenant: TenantContext) -> Dict[str, Any]:
    if not tenant.is_elevated and user_id != tenant.user_id:
        raise HTTPException(status_code=403, detail="You can only view your own journals")
    sql, args = journal_queries.journals_by_user_query(user_id, tenant.org_id)
    rows = await execute_query(sql, *args)
    return {
        "message": get_settings().success_message,
        "journals": [_journal_response(row) for row in rows],
    }


async def update_journal(journal_id: int, payload: JournalUpdate, tenant: TenantContext) -> Dict[str, Any]:
    await _load_journal(journal_id, tenant)

    fields: Dict[str, Any] = {}
    for field in _UPDATABLE_FIELDS:
        if field in payload.model_fields_set:
            fields[to_snake(field)] = getattr(payload, field)
    if payload.type is not None:
        fields["type"] = payload.type.value
    if payload.status is not None:
        fields["status"] = payload.status.value
    if not fields:
        raise bad_request("No fields to update")

    sql, args = build_update_query("journals", fields, {"uid": journal_id})
    await execute_query_one(sql, *args)
    await get_cache().delete_prefix(CACHE_PREFIX)
    return {"message": get_settings().success_message}


async def remove_journal(journal_id: int, tenant: TenantContext) -> Dict[str, Any]:
    await _load_journal(journal_id, tenant)
    status = await execute_command(journal_queries.SOFT_DELETE_JOURNAL, journal_id)
    if affected_rows(status) == 0:
        raise not_found(get_settings().not_found_message)
    await get_cache().delete_prefix(CACHE_PREFIX)
    return {"message": get_settings().success_message}


async def restore_journal(journal_id: int, tenant: TenantContext) -> Dict[str, Any]:
    await _load_journal(journal_id, tenant, include_deleted=True)
    status = await execute_command(journal_queries.RESTORE_JOURNAL, journal_id)
    if affected_rows(status) == 0:
        raise not_found(get_settings().not_found_message)
    await get_cache().delete_prefix(CACHE_PREFIX)
    return {"message": get_settings().success_message}


# =============================================================================
# Inspections
# =============================================================================

async def create_inspection(payload: JournalCreate, tenant: TenantContext) -> Dict[str, Any]:
    """
    Create an inspection journal and award XP by rating.

    Returns:
        ``{"message", "data": {uid, totalScore, percentage, overallRating}}``
        or ``{"message": <error>}``.
    """
    settings = get_settings()
    try:
        if payload.inspectionData is None:
            raise bad_request("Inspection data is required")

        payload = payload.model_copy(update={"type": JournalType.INSPECTION})
        created = await create_journal(payload, tenant)
        journal = created["data"]

        try:
            await award_xp(
                journal["ownerUid"],
                inspection_xp(journal["overallRating"]),
                XPAction.INSPECTION,
                source_id=journal["uid"],
                source_type="journal",
                org_id=tenant.org_id,
                branch_id=tenant.branch_id,
            )
        except Exception as e:
            logger.warning(f"Failed to award inspection XP for journal {journal['uid']}: {e}")

        return {
            "message": settings.success_message,
            "data": {
                "uid": journal["uid"],
                "totalScore": journal["totalScore"],
                "percentage": journal["percentage"],
                "overallRating": journal["overallRating"],
            },
        }
    except Exception as e:
        logger.error(f"Failed to create inspection: {error_message(e)}")
        return {"message": error_message(e)}


async def get_all_inspections(tenant: TenantContext) -> Dict[str, Any]:
    owner_id = None if tenant.is_elevated else tenant.user_id
    sql, args = journal_queries.inspections_query(tenant.org_id, None, owner_id)
    rows = await execute_query(sql, *args)
    return {
        "message": get_settings().success_message,
        "inspections": [_journal_response(row) for row in rows],
    }


async def get_inspection_detail(journal_id: int, tenant: TenantContext) -> Dict[str, Any]:
    journal = await _load_journal(journal_id, tenant)
    if journal.get("type") != JournalType.INSPECTION.value:
        raise not_found(get_settings().not_found_message)
    return {"message": get_settings().success_message, "inspection": _journal_response(journal)}


def get_inspection_templates() -> Dict[str, Any]:
    return {"message": get_settings().success_message, "templates": [STORE_INSPECTION_TEMPLATE]}


async def recalculate_score(journal_id: int, tenant: TenantContext) -> Dict[str, Any]:
    """Re-score a stored inspection form; errors come back as the message."""
    settings = get_settings()
    try:
        journal = await _load_journal(journal_id, tenant)
        if not journal.get("inspection_data"):
            return {"message": "No inspection data found to recalculate"}

        score = calculate_inspection_score(journal["inspection_data"])
        await execute_command(
            journal_queries.UPDATE_INSPECTION_SCORE,
            journal_id,
            score["totalScore"],
            score["maxScore"],
            score["percentage"],
            score["overallRating"],
        )
        await get_cache().delete_prefix(CACHE_PREFIX)
        return {"message": settings.success_message, "data": score}
    except Exception as e:
        logger.error(f"Failed to recalculate score for journal {journal_id}: {error_message(e)}")
        return {"message": error_message(e)}


# =============================================================================
# Report
# =============================================================================

async def journal_report(
    tenant: TenantContext,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    owner_id: Optional[int] = None,
) -> Dict[str, Any]:
    """Journal entries in the window with activity metrics."""
    if not tenant.is_elevated:
        owner_id = tenant.user_id
    sql, args = journal_queries.journal_report_query(
        tenant.org_id, None, owner_id, start_date, end_date
    )
    rows = [dict(row) for row in await execute_query(sql, *args)]
    return {"entries": serialize_records(rows), "metrics": calculate_journal_metrics(rows)}
