"""
Claims service: expense claims raised by field users.

Ownership always comes from the bearer token. Elevated callers (owner,
admin, manager, developer, technician) see every claim in their
organisation; everyone else only sees claims they own.

Claim references follow ``CLM-{year}-{sequence:06d}`` where the sequence
continues from the latest reference of the year.

Claim lists are cached under ``claims:``; every write drops the prefix.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException

from fieldops.core.cache import get_cache
from fieldops.core.config import get_settings
from fieldops.core.database import (
    affected_rows,
    execute_command,
    execute_query,
    execute_query_one,
    execute_value,
    get_db_pool,
)
from fieldops.core.errors import bad_request, error_message, not_found
from fieldops.core.security import TenantContext
from fieldops.models.enums import ClaimStatus, Currency
from fieldops.models.schemas import ClaimCreate, ClaimUpdate, paginated_response, serialize_record
from fieldops.sql import claim_queries
from fieldops.sql.common import GET_ORGANISATION, build_insert_query, build_update_query

logger = logging.getLogger(__name__)

CACHE_PREFIX = "claims:"

SHARE_TOKEN_TTL_DAYS: int = 30

CURRENCY_SYMBOLS: Dict[str, str] = {
    Currency.ZAR.value: "R",
    Currency.USD.value: "$",
    Currency.EUR.value: "€",
    Currency.GBP.value: "£",
    Currency.AUD.value: "A$",
    Currency.CAD.value: "C$",
    Currency.CHF.value: "CHF",
    Currency.JPY.value: "¥",
    Currency.CNY.value: "¥",
    Currency.INR.value: "₹",
    Currency.BWP.value: "P",
    Currency.ZMW.value: "ZK",
    Currency.MZN.value: "MT",
    Currency.NGN.value: "₦",
    Currency.KES.value: "KSh",
    Currency.TZS.value: "TSh",
}


# =============================================================================
# Helpers
# =============================================================================

def format_claim_amount(amount: Any, currency: Optional[str] = None) -> str:
    """
    Amount with its currency symbol; unknown or missing currencies use ZAR.

    >>> format_claim_amount(1250.5, "USD")
    '$1,250.50'
    """
    code = currency.value if isinstance(currency, Currency) else currency
    symbol = CURRENCY_SYMBOLS.get(code or Currency.ZAR.value, CURRENCY_SYMBOLS[Currency.ZAR.value])
    return f"{symbol}{float(amount or 0):,.2f}"


def next_claim_ref(latest_ref: Optional[str], year: int) -> str:
    """
    Reference following ``latest_ref`` within ``year``.

    >>> next_claim_ref("CLM-2026-000041", 2026)
    'CLM-2026-000042'
    >>> next_claim_ref(None, 2026)
    'CLM-2026-000001'
    """
    sequence = 1
    if latest_ref:
        try:
            sequence = int(latest_ref.rsplit("-", 1)[-1]) + 1
        except ValueError:
            logger.warning(f"Unparseable claim ref {latest_ref}; restarting sequence")
    return f"CLM-{year}-{sequence:06d}"


def _claim_response(row: Any) -> Dict[str, Any]:
    claim = serialize_record(row)
    claim["formattedAmount"] = format_claim_amount(claim.get("amount"), claim.get("currency"))
    claim["owner"] = {
        "uid": claim.get("ownerUid"),
        "name": claim.pop("ownerName", None),
        "surname": claim.pop("ownerSurname", None),
        "email": claim.pop("ownerEmail", None),
        "photoURL": claim.pop("ownerPhotoUrl", None),
    }
    return claim


def _check_can_view(claim: Dict[str, Any], tenant: TenantContext) -> None:
    if not tenant.is_elevated and claim["owner_uid"] != tenant.user_id:
        raise not_found(get_settings().not_found_message)


async def _load_claim(
    claim_id: int,
    tenant: TenantContext,
    include_deleted: bool = False,
) -> Dict[str, Any]:
    sql, args = claim_queries.get_claim_query(claim_id, tenant.org_id, include_deleted)
    row = await execute_query_one(sql, *args)
    if not row:
        raise not_found(get_settings().not_found_message)
    claim = dict(row)
    _check_can_view(claim, tenant)
    return claim


async def _owner_stats(owner_id: int) -> Dict[str, int]:
    row = await execute_query_one(claim_queries.CLAIM_STATS_FOR_OWNER, owner_id)
    if not row:
        return {"total": 0, "pending": 0, "approved": 0, "declined": 0, "paid": 0}
    return {key: int(row[key] or 0) for key in ("total", "pending", "approved", "declined", "paid")}


# =============================================================================
# Create / read
# =============================================================================

async def create_claim(payload: ClaimCreate, tenant: TenantContext) -> Dict[str, Any]:
    """
    Create a pending claim owned by the caller.

    Raises:
        HTTPException 401: No authenticated user.
        HTTPException 400: Missing or non-positive amount, or no organisation.
        HTTPException 404: Organisation does not exist.
    """
    settings = get_settings()
    if not tenant.user_id:
        raise HTTPException(status_code=401, detail="User authentication is required")
    if payload.amount is None or payload.amount <= 0:
        raise bad_request("Valid claim amount is required")
    if not tenant.org_id:
        raise bad_request("Organization ID is required")

    organisation = await execute_query_one(GET_ORGANISATION, tenant.org_id)
    if not organisation:
        raise not_found("Organisation not found")

    year = datetime.now(timezone.utc).year
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            prefix = f"CLM-{year}-"
            await conn.execute(claim_queries.LOCK_CLAIM_REF_PREFIX, prefix)
            latest_ref = await conn.fetchval(claim_queries.GET_LATEST_CLAIM_REF_FOR_PREFIX, f"{prefix}%")
            claim_ref = next_claim_ref(latest_ref, year)
            sql, args = build_insert_query("claims", {
                "claim_ref": claim_ref,
                "amount": payload.amount,
                "category": payload.category.value,
                "currency": payload.currency.value,
                "status": ClaimStatus.PENDING.value,
                "comments": payload.comments,
                "document_url": payload.documentUrl,
                "owner_uid": tenant.user_id,
                "organisation_uid": tenant.org_id,
                "branch_uid": tenant.branch_id,
                "is_deleted": False,
            })
            row = await conn.fetchrow(sql, *args)

    await get_cache().delete_prefix(CACHE_PREFIX)
    logger.info(f"Created claim {claim_ref} for user {tenant.user_id}")

    claim = serialize_record(row)
    claim["formattedAmount"] = format_claim_amount(payload.amount, payload.currency)
    return {"message": settings.success_message, "claim": claim}


async def find_all_claims(
    tenant: TenantContext,
    page: int = 1,
    limit: Optional[int] = None,
    status: Optional[ClaimStatus] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    search: Optional[str] = None,
) -> Dict[str, Any]:
    """Paginated claims visible to the caller, newest first."""
    settings = get_settings()
    limit = limit or settings.default_page_limit
    page = max(page, 1)

    if not tenant.is_elevated and not tenant.user_id:
        raise HTTPException(status_code=403, detail="Access denied")
    owner_id = None if tenant.is_elevated else tenant.user_id

    cache = get_cache()
    cache_key = (
        f"{CACHE_PREFIX}list:{tenant.org_id}:{owner_id}:{status.value if status else None}:"
        f"{start_date}:{end_date}:{search}:{page}:{limit}"
    )
    cached = await cache.get(cache_key)
    if cached is not None:
        return cached

    select_sql, count_sql, args = claim_queries.find_claims_query(
        org_id=tenant.org_id,
        branch_id=None,
        owner_id=owner_id,
        status=status.value if status else None,
        start_date=start_date,
        end_date=end_date,
        search=search,
    )
    rows = await execute_query(select_sql, *args, limit, (page - 1) * limit)
    total = await execute_value(count_sql, *args)

    response = paginated_response(
        [_claim_response(row) for row in rows], int(total or 0), page, limit, settings.success_message
    )
    await cache.set(cache_key, response)
    return response


async def find_one_claim(claim_id: int, tenant: TenantContext) -> Dict[str, Any]:
    """Single claim with the owner's claim counts by status."""
    settings = get_settings()
    claim = await _load_claim(claim_id, tenant)
    stats = await _owner_stats(claim["owner_uid"])
    return {"message": settings.success_message, "claim": _claim_response(claim), "stats": stats}


async def claims_by_user(user_id: int, tenant: TenantContext) -> Dict[str, Any]:
    settings = get_settings()
    if not tenant.is_elevated and user_id != tenant.user_id:
        raise HTTPException(status_code=403, detail="You can only view your own claims")

    sql, args = claim_queries.claims_by_user_query(user_id, tenant.org_id)
    rows = await execute_query(sql, *args)
    stats = await _owner_stats(user_id)
    return {
        "message": settings.success_message,
        "claims": [_claim_response(row) for row in rows],
        "stats": stats,
    }


# =============================================================================
# Update / delete / restore
# =============================================================================

async def update_claim(claim_id: int, payload: ClaimUpdate, tenant: TenantContext) -> Dict[str, Any]:
    """
    Update a claim's amount, category, currency, comments, document or status.

    Only elevated callers may change the status.
    """
    settings = get_settings()
    await _load_claim(claim_id, tenant)

    fields: Dict[str, Any] = {}
    if payload.amount is not None:
        if payload.amount <= 0:
            raise bad_request("Valid claim amount is required")
        fields["amount"] = payload.amount
    if payload.category is not None:
        fields["category"] = payload.category.value
    if payload.currency is not None:
        fields["currency"] = payload.currency.value
    comments = payload.comments if payload.comments is not None else payload.comment
    if comments is not None:
        fields["comments"] = comments
    if payload.documentUrl is not None:
        fields["document_url"] = payload.documentUrl
    if payload.status is not None:
        if not tenant.is_elevated:
            raise HTTPException(status_code=403, detail="Insufficient permissions to change claim status")
        fields["status"] = payload.status.value

    if not fields:
        raise bad_request("No fields to update")

    sql, args = build_update_query("claims", fields, {"uid": claim_id})
    await execute_query_one(sql, *args)
    await get_cache().delete_prefix(CACHE_PREFIX)
    logger.info(f"Updated claim {claim_id} fields={sorted(fields)} by user {tenant.user_id}")
    return {"message": settings.success_message}


async def remove_claim(claim_id: int, tenant: TenantContext) -> Dict[str, Any]:
    """Soft delete; errors come back as the message."""
    settings = get_settings()
    try:
        await _load_claim(claim_id, tenant)
        status = await execute_command(claim_queries.SOFT_DELETE_CLAIM, claim_id)
        if affected_rows(status) == 0:
            raise not_found(settings.not_found_message)
        await get_cache().delete_prefix(CACHE_PREFIX)
        return {"message": settings.success_message}
    except Exception as e:
        logger.error(f"Failed to delete claim {claim_id}: {error_message(e)}")
        return {"message": error_message(e)}


async def restore_claim(claim_id: int, tenant: TenantContext) -> Dict[str, Any]:
    """Undo a soft delete; only deleted claims can be restored."""
    settings = get_settings()
    try:
        claim = await _load_claim(claim_id, tenant, include_deleted=True)
        if not claim.get("is_deleted"):
            raise not_found(settings.not_found_message)
        status = await execute_command(claim_queries.RESTORE_CLAIM, claim_id)
        if affected_rows(status) == 0:
            raise not_found(settings.not_found_message)
        await get_cache().delete_prefix(CACHE_PREFIX)
        return {"message": settings.success_message}
    except Exception as e:
        logger.error(f"Failed to restore claim {claim_id}: {error_message(e)}")
        return {"message": error_message(e)}


# =============================================================================
# Share links
# =============================================================================

async def generate_share_token(claim_id: int, tenant: TenantContext) -> Dict[str, Any]:
    """Create a 30-day public share link for a claim."""
    settings = get_settings()
    await _load_claim(claim_id, tenant)

    token = secrets.token_hex(32)
    expires_at = datetime.now(timezone.utc) + timedelta(days=SHARE_TOKEN_TTL_DAYS)
    await execute_command(claim_queries.SET_SHARE_TOKEN, claim_id, token, expires_at)

    return {
        "message": settings.success_message,
        "shareToken": token,
        "shareLink": f"{settings.app_url.rstrip('/')}/claims/share/{token}",
        "expiresAt": expires_at.isoformat(),
    }


async def find_by_share_token(token: str) -> Dict[str, Any]:
    settings = get_settings()
    row = await execute_query_one(claim_queries.GET_CLAIM_BY_SHARE_TOKEN, token)
    if not row:
        raise not_found(settings.not_found_message)

    expires_at = row["share_token_expires_at"]
    if expires_at is not None:
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if expires_at < datetime.now(timezone.utc):
            raise bad_request("Share link has expired")

    claim = _claim_response(row)
    claim.pop("shareToken", None)
    return {"message": settings.success_message, "claim": claim}


# =============================================================================
# Report
# =============================================================================

async def claims_report(
    start_date: datetime,
    end_date: datetime,
    tenant: TenantContext,
) -> Dict[str, Any]:
    """Claims created in the window grouped by status, with per-status totals."""
    settings = get_settings()
    sql, args = claim_queries.claims_report_query(tenant.org_id, None, start_date, end_date)
    rows = await execute_query(sql, *args)

    groups: Dict[str, Dict[str, Any]] = {
        status.value: {"count": 0, "totalAmount": 0.0, "claims": []}
        for status in ClaimStatus
        if status is not ClaimStatus.DELETED
    }
    total_amount = 0.0
    for row in rows:
        claim = _claim_response(row)
        group = groups.setdefault(row["status"], {"count": 0, "totalAmount": 0.0, "claims": []})
        amount = float(row["amount"] or 0)
        group["count"] += 1
        group["totalAmount"] = round(group["totalAmount"] + amount, 2)
        group["claims"].append(claim)
        total_amount += amount

    return {
        "message": settings.success_message,
        "report": {
            "period": {"start": start_date.isoformat(), "end": end_date.isoformat()},
            "totalClaims": len(rows),
            "totalAmount": round(total_amount, 2),
            "totalAmountFormatted": format_claim_amount(total_amount),
            "byStatus": groups,
        },
    }
