"""
Reports service: dispatch, caching and persistence of generated reports.

``generate_report`` routes a report type to its generator and caches the
shaped response under ``reports:``. The user daily report is also persisted
to the ``reports`` table so the end-of-day job can tell which users already
have one.

Sales dashboards share the ``reports:`` namespace, so clearing an
organisation's report cache drops them together with the generated reports
and the live map payloads.
"""

import logging
import re
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from fastapi import HTTPException

from fieldops.core.cache import get_cache
from fieldops.core.database import execute_query_one
from fieldops.core.errors import bad_request, error_message
from fieldops.models.enums import ReportGranularity, ReportType, SalesDashboard
from fieldops.models.schemas import serialize_record
from fieldops.services import map_data, org_activity, sales_analytics, user_daily
from fieldops.sql import report_queries

logger = logging.getLogger(__name__)

CACHE_PREFIX = "reports:"

UNIMPLEMENTED_TYPES = frozenset({ReportType.MAIN.value, ReportType.QUOTATION.value})


def report_cache_key(
    report_type: str,
    organisation_id: int,
    branch_id: Optional[int] = None,
    date_range: Optional[Tuple[datetime, datetime]] = None,
    filters: Optional[Dict[str, Any]] = None,
) -> str:
    """
    >>> report_cache_key("org_activity", 1, 2, filters={"granularity": "weekly"})
    'reports:org_activity_org1_branch2_granularityweekly'
    """
    key = f"{CACHE_PREFIX}{report_type}_org{organisation_id}"
    if branch_id:
        key += f"_branch{branch_id}"
    if date_range:
        start, end = date_range
        key += f"_{start.isoformat()}_{end.isoformat()}"
    for name in ("userId", "granularity"):
        if filters and filters.get(name):
            key += f"_{name}{filters[name]}"
    return key


def _type_value(report_type: Any) -> str:
    return report_type.value if isinstance(report_type, ReportType) else str(report_type)


async def _run_generator(
    report_type: str,
    organisation_id: int,
    branch_id: Optional[int],
    date_range: Optional[Tuple[datetime, datetime]],
    filters: Dict[str, Any],
) -> Dict[str, Any]:
    if report_type == ReportType.USER_DAILY.value:
        return await user_daily.generate(filters.get("userId"), date_range=date_range)
    if report_type == ReportType.ORG_ACTIVITY.value:
        return await org_activity.generate(
            organisation_id,
            branch_id,
            granularity=filters.get("granularity") or ReportGranularity.DAILY.value,
            date_range=date_range,
        )
    if report_type == ReportType.MAP_DATA.value:
        return await map_data.generate(organisation_id, branch_id, filters.get("userId"))
    if report_type in UNIMPLEMENTED_TYPES:
        raise ValueError(f"Report type {report_type} is not implemented yet")
    raise ValueError(f"Unsupported report type: {report_type}")


async def generate_report(
    report_type: Any,
    organisation_id: int,
    branch_id: Optional[int] = None,
    date_range: Optional[Tuple[datetime, datetime]] = None,
    filters: Optional[Dict[str, Any]] = None,
    generated_by: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Generate (or serve from cache) a report of the given type.

    Raises:
        HTTPException 400: Unsupported type or generator failure.
    """
    type_value = _type_value(report_type)
    filters = filters or {}
    cache = get_cache()
    cache_key = report_cache_key(type_value, organisation_id, branch_id, date_range, filters)

    cached = await cache.get(cache_key)
    if cached is not None:
        logger.debug(f"Serving {type_value} report from cache: {cache_key}")
        return {
            **cached,
            "fromCache": True,
            "cachedAt": cached.get("generatedAt"),
            "currentTime": datetime.now(timezone.utc).isoformat(),
        }

    try:
        data = await _run_generator(type_value, organisation_id, branch_id, date_range, filters)
    except Exception as e:
        logger.error(f"Error generating {type_value} report for organisation {organisation_id}: {e}", exc_info=True)
        raise bad_request(error_message(e))

    report = {
        "name": f"{type_value} report",
        "type": type_value,
        "generatedAt": datetime.now(timezone.utc).isoformat(),
        "filters": {
            "organisationId": organisation_id,
            "branchId": branch_id,
            "dateRange": [d.isoformat() for d in date_range] if date_range else None,
            **filters,
        },
        "generatedBy": {"uid": generated_by} if generated_by else None,
        **data,
    }
    await cache.set(cache_key, report)
    return report


async def generate_user_daily_report(
    user_id: int,
    date_range: Optional[Tuple[datetime, datetime]] = None,
    triggered_by_activity: bool = False,
    attendance_id: Optional[int] = None,
    organisation_id: Optional[int] = None,
    report_day: Optional[date] = None,
) -> Optional[Dict[str, Any]]:
    """
    Generate the daily report for ``user_id`` and persist it.

    When ``organisation_id`` is given the user must belong to it; users of
    other organisations are reported as not found. Closed days are not
    persisted; the metadata-only report is returned as is.

    Raises:
        HTTPException 404: User not found (or outside ``organisation_id``).
        HTTPException 400: User id missing.
        HTTPException 500: Generation or persistence failed.
    """
    user = await execute_query_one(report_queries.GET_USER_WITH_ORGANISATION, user_id) if user_id else None
    if user_id and (not user or (organisation_id and user["organisation_uid"] != organisation_id)):
        if user:
            logger.warning(
                f"Daily report for user {user_id} refused: organisation {user['organisation_uid']} "
                f"is not {organisation_id}"
            )
        raise HTTPException(status_code=404, detail=f"User with ID {user_id} not found")

    try:
        report = await user_daily.generate(
            user_id,
            date_range=date_range,
            triggered_by_activity=triggered_by_activity,
            attendance_id=attendance_id,
            report_day=report_day,
        )
    except ValueError as e:
        message = str(e)
        if "not found" in message:
            raise HTTPException(status_code=404, detail=message)
        raise bad_request(message)
    except RuntimeError as e:
        raise HTTPException(status_code=500, detail=str(e))

    metadata = report["metadata"]
    if not metadata.get("isWorkingDay", True):
        logger.info(f"Daily report for user {user_id} not saved: {metadata.get('skipReason')}")
        return report

    user_name = metadata["userName"]
    row = await execute_query_one(
        report_queries.INSERT_REPORT,
        f"Daily Report - {user_name} - {metadata['date']}",
        f"Daily activity report for {user_name}",
        ReportType.USER_DAILY.value,
        {"userId": user_id, "date": metadata["date"]},
        report,
        user_id,
        user["organisation_uid"] if user else None,
        user["branch_uid"] if user else None,
    )
    logger.info(f"Saved daily report {row['uid']} for user {user_id} ({metadata['date']})")
    return serialize_record(row)


async def generate_map_data(
    organisation_id: int,
    branch_id: Optional[int] = None,
    user_id: Optional[int] = None,
) -> Dict[str, Any]:
    """Map payload plus entity counts, cached per organisation and branch."""
    cache = get_cache()
    cache_key = f"{CACHE_PREFIX}mapdata_org{organisation_id}_{branch_id or 'all'}"
    if user_id:
        cache_key += f"_user{user_id}"

    cached = await cache.get(cache_key)
    if cached is not None:
        return cached

    data = await map_data.generate(organisation_id, branch_id, user_id)
    result = {
        "data": data,
        "summary": {
            "totalWorkers": len(data.get("workers", [])),
            "totalClients": len(data.get("clients", [])),
            "totalCompetitors": len(data.get("competitors", [])),
            "totalQuotations": len(data.get("quotations", [])),
        },
    }
    await cache.set(cache_key, result)
    return result


async def generate_org_activity(
    organisation_id: int,
    branch_id: Optional[int] = None,
    granularity: str = ReportGranularity.DAILY.value,
    date_range: Optional[Tuple[datetime, datetime]] = None,
) -> Dict[str, Any]:
    """Organisation activity report through the cached dispatcher."""
    return await generate_report(
        ReportType.ORG_ACTIVITY,
        organisation_id,
        branch_id,
        date_range,
        filters={"granularity": granularity},
    )


async def generate_sales_dashboard(
    dashboard: Any,
    organisation_id: int,
    branch_id: Optional[int] = None,
) -> Dict[str, Any]:
    """
    One sales dashboard, cached per organisation and branch.

    Raises:
        HTTPException 400: Unknown dashboard.
        HTTPException 500: Quotations could not be loaded.
    """
    name = dashboard.value if isinstance(dashboard, SalesDashboard) else str(dashboard)
    cache = get_cache()
    cache_key = report_cache_key(name, organisation_id, branch_id)

    cached = await cache.get(cache_key)
    if cached is not None:
        return {**cached, "fromCache": True}

    try:
        result = await sales_analytics.generate(name, organisation_id, branch_id)
    except ValueError as e:
        raise bad_request(str(e))
    except RuntimeError as e:
        raise HTTPException(status_code=500, detail=str(e))

    await cache.set(cache_key, result)
    return {**result, "fromCache": False}


def _organisation_key_matcher(organisation_id: int, report_type: Optional[str]) -> Callable[[str], bool]:
    org = f"_org{organisation_id}(_|$)"
    patterns = [rf"{re.escape(CACHE_PREFIX)}{re.escape(report_type) if report_type else '[a-z_]+'}{org}"]
    if report_type in (None, ReportType.MAP_DATA.value):
        patterns.append(rf"{re.escape(CACHE_PREFIX)}mapdata{org}")
        patterns.append(rf"{re.escape(map_data.CACHE_PREFIX)}org{organisation_id}_")
    matcher = re.compile("|".join(f"(?:{pattern})" for pattern in patterns))
    return lambda key: matcher.match(key) is not None


async def clear_organisation_report_cache(organisation_id: int, report_type: Any = None) -> int:
    """
    Drop cached reports of one organisation, optionally of one type only.

    Live map payloads count as ``map_data`` reports. Returns the number of
    entries removed.
    """
    type_value = _type_value(report_type) if report_type else None
    cleared = await get_cache().delete_where(
        _organisation_key_matcher(organisation_id, type_value),
        f"organisation {organisation_id} reports",
    )
    logger.info(f"Cleared {cleared} cached reports for organisation {organisation_id} (type={type_value or 'all'})")
    return cleared
