"""
Check-in service: visit check-in / check-out for field users.

A check-in records where and when a user arrived (optionally at a client),
with contact and sales details captured on the visit. Check-out closes the
user's most recent check-in and stores the visit duration.

Every public operation here returns a message envelope instead of raising:
failures are logged and reported as ``{"message": <error text>}``. Updating
the client's GPS coordinates and awarding XP are side effects whose failure
is logged without failing the check-in.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fieldops.core.cache import get_cache
from fieldops.core.config import get_settings
from fieldops.core.database import execute_command, execute_query, execute_query_one, execute_value
from fieldops.core.errors import bad_request, error_message, not_found
from fieldops.models.enums import XPAction
from fieldops.models.schemas import (
    CheckInCreate,
    CheckOutCreate,
    EntityRef,
    serialize_record,
    serialize_records,
)
from fieldops.services.rewards import CHECK_IN_CLIENT_XP, CHECK_OUT_XP, award_xp
from fieldops.sql import check_in_queries

logger = logging.getLogger(__name__)

CACHE_PREFIX = "checkins:"

NEXT_ACTION_CHECK_IN = "checkIn"
NEXT_ACTION_CHECK_OUT = "checkOut"


# =============================================================================
# Helpers
# =============================================================================

def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def format_visit_duration(start: datetime, end: datetime) -> str:
    """
    Whole-minute visit length as ``"{hours}h {minutes}m"``.

    >>> format_visit_duration(datetime(2026, 1, 1, 8, 0), datetime(2026, 1, 1, 9, 35))
    '1h 35m'
    """
    minutes = int((_as_utc(end) - _as_utc(start)).total_seconds() // 60)
    hours = minutes // 60
    return f"{hours}h {minutes % 60}m"


def _owner_summary(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "uid": row.get("owner_uid"),
        "name": row.get("owner_name"),
        "surname": row.get("owner_surname"),
        "email": row.get("owner_email"),
        "photoURL": row.get("owner_photo_url"),
    }


# =============================================================================
# Check-in / check-out
# =============================================================================

async def check_in(
    payload: CheckInCreate,
    org_id: Optional[int],
    branch_id: Optional[int],
) -> Dict[str, Any]:
    """
    Record a check-in for ``payload.owner``.

    Returns:
        ``{"message": success_message}`` or ``{"message": <error>}``.
    """
    settings = get_settings()
    owner_id = payload.owner.uid if payload.owner else None
    logger.info(f"[CHECK_IN] start user={owner_id} org={org_id} branch={branch_id}")

    try:
        if not owner_id:
            raise bad_request("User ID is required for check-in")
        if not org_id:
            raise bad_request("Organization ID is required")

        user = await execute_query_one(check_in_queries.GET_USER_WITH_ORG, owner_id)
        if not user:
            raise not_found("User not found")
        if user["organisation_uid"] != org_id:
            raise bad_request("User does not belong to the specified organization")

        body_branch = payload.branch.uid if payload.branch else None
        if not body_branch:
            raise bad_request("Branch information is required")
        resolved_branch = branch_id or body_branch

        client_id = payload.client.uid if payload.client else None

        check_in_id = await execute_value(
            check_in_queries.INSERT_CHECK_IN,
            payload.checkInTime,
            payload.checkInPhoto,
            payload.checkInLocation,
            payload.fullAddress,
            payload.notes,
            owner_id,
            org_id,
            resolved_branch,
            client_id,
            payload.contactFullName,
            payload.contactImage,
            payload.contactCellPhone,
            payload.contactLandline,
            payload.contactAddress,
            payload.companyName,
            payload.businessType,
            payload.personSeenPosition,
            payload.meetingLink,
            payload.salesValue,
            payload.quotationNumber,
            payload.quotationUid,
            payload.methodOfContact,
            payload.followUp,
        )
        logger.info(f"[CHECK_IN] saved check-in {check_in_id} for user {owner_id}")

        if client_id:
            try:
                await execute_command(
                    check_in_queries.UPDATE_CLIENT_GPS, client_id, payload.checkInLocation
                )
            except Exception as e:
                logger.error(f"[CHECK_IN] failed to update GPS for client {client_id}: {e}")

        try:
            await award_xp(
                owner_id,
                CHECK_IN_CLIENT_XP,
                XPAction.CHECK_IN_CLIENT,
                source_id=check_in_id,
                source_type="check-in",
                org_id=org_id,
                branch_id=resolved_branch,
            )
        except Exception as e:
            logger.error(f"[CHECK_IN] failed to award XP to user {owner_id}: {e}")

        await get_cache().delete_prefix(CACHE_PREFIX)
        return {"message": settings.success_message}

    except Exception as e:
        logger.error(f"[CHECK_IN] failed for user {owner_id}: {error_message(e)}")
        return {"message": error_message(e)}


async def check_in_at_client(
    client_id: int,
    payload: CheckInCreate,
    org_id: Optional[int],
    branch_id: Optional[int],
) -> Dict[str, Any]:
    """Check in at a specific client; the path client wins over the body."""
    payload = payload.model_copy(update={"client": EntityRef(uid=client_id)})
    return await check_in(payload, org_id, branch_id)


async def check_out(
    payload: CheckOutCreate,
    org_id: Optional[int],
    branch_id: Optional[int],
) -> Dict[str, Any]:
    """
    Close the owner's most recent check-in.

    Returns:
        ``{"message", "duration"}`` on success, ``{"message": <error>}`` otherwise.
    """
    settings = get_settings()
    owner_id = payload.owner.uid if payload.owner else None

    try:
        if not owner_id:
            raise bad_request(settings.not_found_message)
        body_branch = payload.branch.uid if payload.branch else None
        if not body_branch:
            raise bad_request(settings.not_found_message)
        resolved_branch = branch_id or body_branch

        latest = await execute_query_one(check_in_queries.GET_LATEST_CHECK_IN_FOR_OWNER, owner_id)
        if not latest:
            raise not_found(settings.not_found_message)

        check_out_time = _as_utc(payload.checkOutTime or datetime.now(timezone.utc))
        duration = format_visit_duration(latest["check_in_time"], check_out_time)

        await execute_command(
            check_in_queries.UPDATE_CHECK_OUT,
            latest["uid"],
            check_out_time,
            payload.checkOutPhoto,
            payload.checkOutLocation,
            duration,
        )
        logger.info(f"[CHECK_OUT] user={owner_id} check-in={latest['uid']} duration={duration}")

        try:
            await award_xp(
                owner_id,
                CHECK_OUT_XP,
                XPAction.CHECK_OUT,
                source_id=latest["uid"],
                source_type="check-in",
                org_id=org_id,
                branch_id=resolved_branch,
            )
        except Exception as e:
            logger.error(f"[CHECK_OUT] failed to award XP to user {owner_id}: {e}")

        await get_cache().delete_prefix(CACHE_PREFIX)
        return {"message": settings.success_message, "duration": duration}

    except Exception as e:
        logger.error(f"[CHECK_OUT] failed for user {owner_id}: {error_message(e)}")
        return {"message": error_message(e)}


# =============================================================================
# Reads
# =============================================================================

async def check_in_status(user_id: int) -> Dict[str, Any]:
    """
    Whether the user is currently checked in and what they should do next.

    ``nextAction`` is ``checkOut`` when the latest check-in has a time and a
    location but no check-out time; otherwise ``checkIn``.
    """
    settings = get_settings()
    try:
        latest = await execute_query_one(check_in_queries.GET_LATEST_CHECK_IN_FOR_OWNER, user_id)
        if not latest:
            raise not_found("Check-in not found")

        open_visit = bool(
            latest["check_in_time"] and latest["check_in_location"] and not latest["check_out_time"]
        )
        next_action = NEXT_ACTION_CHECK_OUT if open_visit else NEXT_ACTION_CHECK_IN

        return {
            "message": settings.success_message,
            "nextAction": next_action,
            "checkedIn": next_action == NEXT_ACTION_CHECK_OUT,
            **serialize_record(latest),
        }
    except Exception as e:
        return {"message": error_message(e), "nextAction": "Check In", "checkedIn": False}


async def get_all_check_ins(org_id: Optional[int] = None) -> Dict[str, Any]:
    settings = get_settings()
    cache = get_cache()
    cache_key = f"{CACHE_PREFIX}all:{org_id}"

    try:
        cached = await cache.get(cache_key)
        if cached is not None:
            return {"message": settings.success_message, "checkIns": cached}

        sql, args = check_in_queries.get_all_check_ins_query(org_id)
        check_ins = serialize_records(await execute_query(sql, *args))
        await cache.set(cache_key, check_ins)
        return {"message": settings.success_message, "checkIns": check_ins}
    except Exception as e:
        logger.error(f"Error fetching check-ins for org {org_id}: {e}", exc_info=True)
        return {"message": error_message(e), "checkIns": []}


async def get_user_check_ins(user_id: int, org_id: Optional[int] = None) -> Dict[str, Any]:
    """Check-ins of one user plus that user's summary (None when there are none)."""
    settings = get_settings()
    try:
        sql, args = check_in_queries.get_user_check_ins_query(user_id, org_id)
        rows: List[Any] = await execute_query(sql, *args)
        user = _owner_summary(dict(rows[0])) if rows else None
        return {
            "message": settings.success_message,
            "checkIns": serialize_records(rows),
            "user": user,
        }
    except Exception as e:
        logger.error(f"Error fetching check-ins for user {user_id}: {e}", exc_info=True)
        return {"message": error_message(e), "checkIns": [], "user": None}
