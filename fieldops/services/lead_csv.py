"""
Lead CSV Import Service

Bulk lead import from an uploaded CSV file. Rows are validated one by one;
invalid rows are reported with their spreadsheet row number (the header is
row 1) and skipped, valid rows are created as leads and handed out
round-robin to the active users of the organisation/branch.

Row rules:
- ``companyName`` is required.
- At least one of ``name``, ``email`` or ``phone`` is required.
- An ``email`` that is present but malformed rejects the row.
- Enum columns are normalised (upper-case, whitespace -> ``_``); values that
  are not members of the enum are dropped, not rejected.
- Numeric columns are parsed leniently; unparseable values are dropped.
- ``painPoints`` is a comma separated list, ``customFields`` a JSON object.
"""

import io
import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type

import pandas as pd

from fieldops.core.cache import get_cache
from fieldops.core.database import execute_query, execute_query_one
from fieldops.core.errors import bad_request
from fieldops.core.security import TenantContext
from fieldops.models.enums import (
    LeadIntent,
    LeadPriority,
    LeadSource,
    LeadStatus,
    LeadTemperature,
)
from fieldops.models.schemas import EntityRef, LeadCreate
from fieldops.services.leads import CACHE_PREFIX, lead_columns
from fieldops.sql import lead_queries
from fieldops.sql.common import build_insert_query

logger = logging.getLogger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

FIRST_DATA_ROW: int = 2

TEXT_COLUMNS: List[str] = [
    "name",
    "email",
    "phone",
    "notes",
    "image",
    "budgetRange",
    "industry",
    "jobTitle",
]

ENUM_COLUMNS: Dict[str, Type] = {
    "status": LeadStatus,
    "temperature": LeadTemperature,
    "priority": LeadPriority,
    "source": LeadSource,
    "intent": LeadIntent,
}

NUMERIC_COLUMNS: List[str] = ["latitude", "longitude", "estimatedValue"]


# =============================================================================
# FIELD PARSERS
# =============================================================================

def normalize_enum(value: str, enum_cls: Type) -> Optional[Any]:
    """
    Map free text onto an enum member, or None when it is not one.

    >>> normalize_enum("social media", LeadSource)
    <LeadSource.SOCIAL_MEDIA: 'SOCIAL_MEDIA'>
    """
    if not value:
        return None
    normalized = re.sub(r"\s+", "_", value.strip().upper())
    try:
        return enum_cls(normalized)
    except ValueError:
        return None


def parse_number(value: str) -> Optional[float]:
    if not value:
        return None
    number = pd.to_numeric(value.strip(), errors="coerce")
    if pd.isna(number):
        return None
    return float(number)


def parse_comma_list(value: str) -> Optional[List[str]]:
    items = [item.strip() for item in (value or "").split(",") if item.strip()]
    return items or None


def parse_json_object(value: str) -> Optional[Dict[str, Any]]:
    if not value:
        return None
    try:
        parsed = json.loads(value)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


# =============================================================================
# CSV PARSING
# =============================================================================

def _parse_row(record: Dict[str, str]) -> Dict[str, Any]:
    """
    Validate one CSV record and turn it into ``LeadCreate`` fields.

    Raises:
        ValueError: The row must be rejected; the message is reported.
    """
    company_name = record.get("companyName", "")
    if not company_name:
        raise ValueError("Missing required field: companyName")

    if not (record.get("name") or record.get("email") or record.get("phone")):
        raise ValueError("Missing required field: name OR (email OR phone)")

    email = record.get("email")
    if email and not EMAIL_PATTERN.match(email):
        raise ValueError(f"Invalid email format: {email}")

    lead: Dict[str, Any] = {"companyName": company_name}

    for column in TEXT_COLUMNS:
        if record.get(column):
            lead[column] = record[column]

    for column, enum_cls in ENUM_COLUMNS.items():
        value = normalize_enum(record.get(column, ""), enum_cls)
        if value is not None:
            lead[column] = value

    for column in NUMERIC_COLUMNS:
        value = parse_number(record.get(column, ""))
        if value is not None:
            lead[column] = value

    pain_points = parse_comma_list(record.get("painPoints", ""))
    if pain_points:
        lead["painPoints"] = pain_points

    custom_fields = parse_json_object(record.get("customFields", ""))
    if custom_fields:
        lead["customFields"] = custom_fields

    return lead


def parse_lead_csv(content: bytes) -> Tuple[List[Tuple[int, Dict[str, Any]]], List[Dict[str, Any]]]:
    """
    Parse CSV bytes into lead field dicts.

    Args:
        content: Raw bytes of the uploaded CSV file.

    Returns:
        ``(leads, errors)`` where ``leads`` is a list of ``(row_number, fields)``
        and ``errors`` is a list of ``{"row", "error"}`` dicts.
    """
    df = pd.read_csv(
        io.BytesIO(content),
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
    )
    df.columns = [str(column).strip() for column in df.columns]

    leads: List[Tuple[int, Dict[str, Any]]] = []
    errors: List[Dict[str, Any]] = []

    for position, record in enumerate(df.to_dict(orient="records")):
        row_number = position + FIRST_DATA_ROW
        cleaned = {key: str(value).strip() for key, value in record.items()}
        try:
            leads.append((row_number, _parse_row(cleaned)))
        except ValueError as e:
            errors.append({"row": row_number, "error": str(e)})

    logger.info(f"Parsed lead CSV: {len(leads)} valid rows, {len(errors)} rejected")
    return leads, errors


# =============================================================================
# IMPORT
# =============================================================================

def _display_name(user: Dict[str, Any]) -> str:
    full_name = f"{user.get('name') or ''} {user.get('surname') or ''}".strip()
    return full_name or user.get("email") or ""


async def import_leads_csv(
    content: bytes,
    tenant: TenantContext,
    branch_id: Optional[int] = None,
    assigned_user_ids: Optional[Sequence[int]] = None,
) -> Dict[str, Any]:
    """
    Import leads from a CSV file with round-robin assignment.

    Args:
        content: Raw CSV bytes.
        tenant: Caller's tenant context; the organisation is required.
        branch_id: Branch to import into (defaults to the caller's branch).
        assigned_user_ids: Restrict assignment to these active users.

    Returns:
        ``{"success", "imported", "failed", "errors", "assignments"}``.
    """
    if not tenant.org_id:
        raise bad_request("Organization ID is required to import leads")

    branch_id = branch_id or tenant.branch_id
    result: Dict[str, Any] = {
        "success": False,
        "imported": 0,
        "failed": 0,
        "errors": [],
        "assignments": [],
    }

    try:
        leads, parse_errors = parse_lead_csv(content)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        logger.warning(f"Unreadable lead CSV for org {tenant.org_id}: {e}")
        result["errors"] = [{"row": 0, "error": f"Could not parse CSV file: {e}"}]
        return result

    result["errors"].extend(parse_errors)
    result["failed"] = len(parse_errors)

    if not leads:
        if not result["errors"]:
            result["errors"] = [{"row": 0, "error": "No valid leads found in CSV"}]
        return result

    sql, args = lead_queries.active_users_for_assignment_query(
        tenant.org_id, branch_id, assigned_user_ids
    )
    users = [dict(row) for row in await execute_query(sql, *args)]
    if not users:
        message = (
            "No active users found for the selected users."
            if assigned_user_ids
            else "No active users found in the organization. Add users before importing leads."
        )
        result["errors"] = [{"row": 0, "error": message}]
        return result

    for index, (row_number, fields) in enumerate(leads):
        user = users[index % len(users)]
        try:
            payload = LeadCreate(
                **fields,
                owner=EntityRef(uid=user["uid"]),
                assignees=[EntityRef(uid=user["uid"])],
            )
            insert_sql, insert_args = build_insert_query(
                "leads", lead_columns(payload, user["uid"], tenant.org_id, branch_id)
            )
            row = await execute_query_one(insert_sql, *insert_args)
        except Exception as e:
            logger.error(f"Failed to import lead from row {row_number}: {e}")
            result["failed"] += 1
            result["errors"].append({"row": row_number, "error": f"Failed to create lead: {e}"})
            continue

        result["imported"] += 1
        result["assignments"].append({
            "leadId": row["uid"],
            "userId": user["uid"],
            "userName": _display_name(user),
        })

    if result["imported"]:
        await get_cache().delete_prefix(CACHE_PREFIX)

    result["success"] = result["imported"] > 0
    logger.info(
        f"Lead CSV import for org {tenant.org_id}: {result['imported']} imported, "
        f"{result['failed']} failed across {len(users)} users"
    )
    return result
