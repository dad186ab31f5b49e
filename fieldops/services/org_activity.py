"""
Organisation Activity Report Generator

Summarises a period of field activity for every active user of an
organisation (optionally one branch): visits, hours, claims, leads,
quotations and distance travelled, rolled up into totals, growth against the
previous period, a per-branch breakdown, insights and email data.

Periods by granularity:
    - daily: today
    - weekly: the current Monday-Sunday week
    - end-of-day: yesterday
    - end-of-week: the previous Monday-Sunday week

Users run concurrently; within a user the collectors run sequentially on the
shared pool.
"""

import asyncio
import logging
from datetime import datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from fieldops.core.database import execute_query, execute_query_one
from fieldops.models.enums import ReportGranularity, ReportType
from fieldops.services import report_utils
from fieldops.services.location import trip_summary
from fieldops.sql import report_queries
from fieldops.sql.common import GET_ORGANISATION

logger = logging.getLogger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_SALES_TARGET: float = 10000.0

TOP_PERFORMERS: int = 5
ALERT_USERS: int = 5

# Hours below which a user is flagged in the email summary.
WEEKLY_ALERT_HOURS: float = 10.0
DAILY_ALERT_HOURS: float = 1.0

WEEKLY_GRANULARITIES = report_utils.WEEK_GRANULARITIES


# =============================================================================
# Periods
# =============================================================================

def _day_bounds(day: datetime) -> Tuple[datetime, datetime]:
    start = datetime.combine(day.date(), time.min, tzinfo=day.tzinfo)
    return start, datetime.combine(day.date(), time.max, tzinfo=day.tzinfo)


def _week_bounds(day: datetime) -> Tuple[datetime, datetime]:
    monday = day - timedelta(days=day.weekday())
    start, _ = _day_bounds(monday)
    _, end = _day_bounds(monday + timedelta(days=6))
    return start, end


def resolve_period(
    granularity: str,
    date_range: Optional[Tuple[datetime, datetime]] = None,
    now: Optional[datetime] = None,
) -> Tuple[datetime, datetime]:
    """
    Start and end of the reporting window.

    An explicit ``date_range`` wins; otherwise the window follows the
    granularity, with weeks starting on Monday.
    """
    if date_range:
        return date_range

    now = now or datetime.now(timezone.utc)
    if granularity == ReportGranularity.WEEKLY.value:
        return _week_bounds(now)
    if granularity == ReportGranularity.END_OF_DAY.value:
        return _day_bounds(now - timedelta(days=1))
    if granularity == ReportGranularity.END_OF_WEEK.value:
        return _week_bounds(now - timedelta(days=7))
    return _day_bounds(now)


def previous_period(granularity: str, start: datetime, end: datetime) -> Tuple[datetime, datetime]:
    shift = timedelta(days=7) if granularity == ReportGranularity.WEEKLY.value else timedelta(days=1)
    return start - shift, end - shift


# =============================================================================
# Per-user collection
# =============================================================================

async def _distance_km(user_id: int, start: datetime, end: datetime, per_day: bool) -> float:
    """Tracked distance; weekly periods sum each day separately."""
    if per_day:
        windows = []
        day = start
        while day <= end:
            windows.append(_day_bounds(day))
            day += timedelta(days=1)
    else:
        windows = [(start, end)]

    total = 0.0
    for window_start, window_end in windows:
        points = await execute_query(report_queries.USER_TRACKING_BETWEEN, user_id, window_start, window_end)
        total += trip_summary([dict(p) for p in points], stops=[])["totalDistanceKm"]
    return total


async def collect_user_metrics(
    user: Dict[str, Any],
    start: datetime,
    end: datetime,
    granularity: str,
) -> Dict[str, Any]:
    user_id = user["uid"]
    attendance = await report_utils.collect_attendance_data(user_id, start, end)
    check_ins = await report_utils.collect_check_in_data(user_id, start, end)
    leads = await report_utils.collect_lead_data(user_id, start, end)
    quotations = await report_utils.collect_quotation_data(user_id, start, end)
    claims = await report_utils.collect_claim_data(user_id, start, end)

    try:
        distance = await _distance_km(user_id, start, end, per_day=granularity in WEEKLY_GRANULARITIES)
    except Exception as e:
        logger.warning(f"Distance unavailable for user {user_id}: {e}")
        distance = 0.0

    minutes = attendance["totalWorkMinutes"]
    revenue = quotations["totalRevenue"]
    return {
        "uid": user_id,
        "fullName": f"{user.get('name') or ''} {user.get('surname') or ''}".strip(),
        "email": user.get("email"),
        "branch": {"uid": user["branch_uid"], "name": user.get("branch_name")} if user.get("branch_uid") else None,
        "visits": check_ins["count"],
        "hoursWorked": round(minutes / 60, 1),
        "claims": claims["count"],
        "leads": {
            "new": leads["newLeadsCount"],
            "converted": leads["convertedCount"],
            "conversionRate": leads["conversionRate"],
        },
        "quotations": {"count": quotations["count"], "revenue": revenue},
        "leave": {"events": 0},
        "calls": {"count": 0},
        "distanceKm": round(distance, 1),
        "totalWorkingMinutes": minutes,
        "efficiency": round(revenue / (minutes / 60), 2) if minutes > 0 else 0,
    }


# =============================================================================
# Aggregation
# =============================================================================

def calculate_totals(users: List[Dict[str, Any]]) -> Dict[str, Any]:
    totals = {
        "visits": 0,
        "hoursWorked": 0.0,
        "claims": 0,
        "leadsNew": 0,
        "leadsConverted": 0,
        "quotationsCount": 0,
        "quotationRevenue": 0.0,
        "distanceKm": 0.0,
    }
    for user in users:
        totals["visits"] += user["visits"]
        totals["hoursWorked"] += user["hoursWorked"]
        totals["claims"] += user["claims"]
        totals["leadsNew"] += user["leads"]["new"]
        totals["leadsConverted"] += user["leads"]["converted"]
        totals["quotationsCount"] += user["quotations"]["count"]
        totals["quotationRevenue"] += user["quotations"]["revenue"]
        totals["distanceKm"] += user["distanceKm"]
    return totals


def branch_breakdown(users: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Users grouped by branch; users without one land in 'Unassigned'."""
    branches: Dict[str, Dict[str, Any]] = {}
    for user in users:
        branch = user.get("branch") or {}
        key = str(branch["uid"]) if branch.get("uid") else "unassigned"
        entry = branches.setdefault(key, {
            "uid": branch.get("uid") or 0,
            "name": branch.get("name") or "Unassigned",
            "totalEmployees": 0,
            "presentEmployees": 0,
            "averageWorkingHours": 0,
            "users": [],
        })
        entry["totalEmployees"] += 1
        if user["hoursWorked"] > 0:
            entry["presentEmployees"] += 1
        hours = user["hoursWorked"]
        entry["users"].append({
            "uid": user["uid"],
            "fullName": user["fullName"],
            "totalWorkingMinutes": user["totalWorkingMinutes"],
            "efficiency": min(100, user["quotations"]["revenue"] / hours / 100) if hours > 0 else None,
        })

    for entry in branches.values():
        members = entry["users"]
        if members:
            average_minutes = sum(u["totalWorkingMinutes"] or 0 for u in members) / len(members)
            entry["averageWorkingHours"] = round(average_minutes / 60, 1)
    return list(branches.values())


def generate_recommendations(granularity: str, users: List[Dict[str, Any]]) -> List[str]:
    recommendations: List[str] = []
    total_users = len(users)
    if not total_users:
        return recommendations

    active_users = sum(1 for u in users if u["hoursWorked"] > 0)
    if active_users / total_users < 0.8:
        recommendations.append("Consider team engagement initiatives - less than 80% of staff are active")

    average_revenue = sum(u["quotations"]["revenue"] for u in users) / total_users
    if average_revenue < 1000:
        recommendations.append("Focus on sales training and quotation generation strategies")

    leads_new = sum(u["leads"]["new"] for u in users)
    leads_converted = sum(u["leads"]["converted"] for u in users)
    conversion_rate = leads_converted / leads_new * 100 if leads_new else 0
    if conversion_rate < 20:
        recommendations.append(
            "Improve lead qualification and follow-up processes - conversion rate below 20%"
        )

    average_hours = sum(u["hoursWorked"] for u in users) / total_users
    if granularity == ReportGranularity.WEEKLY.value and average_hours > 50:
        recommendations.append("Monitor work-life balance - average weekly hours exceeding 50")
    elif granularity == ReportGranularity.DAILY.value and average_hours > 10:
        recommendations.append("Monitor work-life balance - average daily hours exceeding 10")

    total_distance = sum(u["distanceKm"] for u in users)
    if granularity == ReportGranularity.WEEKLY.value and total_distance > 1000:
        recommendations.append("Consider route optimization to reduce travel distance and costs")

    if granularity == ReportGranularity.END_OF_DAY.value:
        recommendations.append("Review daily achievements and prepare tomorrow's priorities")
    elif granularity == ReportGranularity.END_OF_WEEK.value:
        recommendations.append("Analyze weekly performance trends and plan next week's focus areas")

    return recommendations


def top_performers(users: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    active = [u for u in users if u["hoursWorked"] > 0]
    active.sort(key=lambda u: u["quotations"]["revenue"] or 0, reverse=True)
    return [
        {
            "name": u["fullName"],
            "email": u["email"],
            "revenue": u["quotations"]["revenue"],
            "hours": u["hoursWorked"],
            "efficiency": u["efficiency"],
        }
        for u in active[:TOP_PERFORMERS]
    ]


def alert_users(users: List[Dict[str, Any]], granularity: str) -> List[Dict[str, Any]]:
    threshold = WEEKLY_ALERT_HOURS if granularity == ReportGranularity.WEEKLY.value else DAILY_ALERT_HOURS
    return [
        {"name": u["fullName"], "email": u["email"], "hours": u["hoursWorked"], "lastActivity": "N/A"}
        for u in users
        if u["hoursWorked"] < threshold
    ][:ALERT_USERS]


# =============================================================================
# Entry point
# =============================================================================

async def generate(
    organisation_id: int,
    branch_id: Optional[int] = None,
    granularity: str = ReportGranularity.DAILY.value,
    date_range: Optional[Tuple[datetime, datetime]] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Build the organisation activity report.

    Args:
        organisation_id: Organisation to report on.
        branch_id: Restrict to one branch.
        granularity: ``daily``, ``weekly``, ``end-of-day`` or ``end-of-week``.
        date_range: Explicit ``(start, end)`` overriding the granularity window.
        now: Reference time for the granularity window.

    Returns:
        ``{metadata, summary, branchBreakdown, users, insights, emailData}``.
    """
    granularity = report_utils.granularity_value(granularity or ReportGranularity.DAILY.value)
    start, end = resolve_period(granularity, date_range, now)
    previous_start, previous_end = previous_period(granularity, start, end)

    logger.info(
        f"Generating org activity report for organisation {organisation_id}"
        f" branch={branch_id or 'all'} {granularity} {start:%Y-%m-%d}..{end:%Y-%m-%d}"
    )

    try:
        sql, args = report_queries.organisation_users_query(organisation_id, branch_id)
        users = [dict(row) for row in await execute_query(sql, *args)]
        organisation = await execute_query_one(GET_ORGANISATION, organisation_id)

        per_user = list(await asyncio.gather(*[
            collect_user_metrics(user, start, end, granularity) for user in users
        ]))

        counts_sql, counts_args = report_queries.org_period_counts_query(
            organisation_id, branch_id, previous_start, previous_end
        )
        previous = await execute_query_one(counts_sql, *counts_args)
        previous_quotations = int(previous["quotations"]) if previous else 0
        previous_leads = int(previous["leads"]) if previous else 0
        previous_check_ins = int(previous["check_ins"]) if previous else 0
    except Exception as e:
        logger.error(f"Error generating org activity report: {e}", exc_info=True)
        raise

    totals = calculate_totals(per_user)
    growth = {
        "visits": report_utils.calculate_growth(totals["visits"], previous_check_ins),
        "quotations": report_utils.calculate_growth(totals["quotationsCount"], previous_quotations),
        "leads": report_utils.calculate_growth(totals["leadsNew"], previous_leads),
    }
    branches = branch_breakdown(per_user)
    performance = report_utils.generate_performance_insights({
        "hoursWorked": totals["hoursWorked"],
        "quotationsRevenue": totals["quotationRevenue"],
        "leadsNew": totals["leadsNew"],
        "leadsConverted": totals["leadsConverted"],
        "targetSalesAmount": DEFAULT_SALES_TARGET,
    })

    email_metrics = {
        "summary": {
            "totalEmployees": len(users),
            "activeEmployees": sum(1 for u in per_user if u["hoursWorked"] > 0),
            **totals,
        },
        "growth": growth,
        "branches": branches,
        "topPerformers": top_performers(per_user),
        "alertUsers": alert_users(per_user, granularity),
        "organizationName": organisation["name"] if organisation else "Organization",
        "reportPeriod": report_utils.format_date_range(start, end, granularity),
    }

    leads_new = totals["leadsNew"]
    return {
        "metadata": {
            "reportType": ReportType.ORG_ACTIVITY.value,
            "organisationId": organisation_id,
            "branchId": branch_id,
            "granularity": granularity,
            "dateRange": {"start": start.isoformat(), "end": end.isoformat()},
            "generatedAt": datetime.now(timezone.utc).isoformat(),
        },
        "summary": {
            "totalEmployees": len(users),
            "visits": totals["visits"],
            "hoursWorked": round(totals["hoursWorked"], 1),
            "claims": totals["claims"],
            "leads": {
                "new": leads_new,
                "converted": totals["leadsConverted"],
                "conversionRate": round(totals["leadsConverted"] / leads_new * 100, 1) if leads_new else 0,
            },
            "quotations": {"count": totals["quotationsCount"], "revenue": totals["quotationRevenue"]},
            "leave": {"events": 0},
            "calls": {"count": 0},
            "distanceKm": round(totals["distanceKm"], 1),
            "growth": growth,
        },
        "branchBreakdown": branches,
        "users": per_user,
        "insights": {
            **report_utils.calculate_team_metrics(per_user),
            "performance": performance,
            "recommendations": generate_recommendations(granularity, per_user),
        },
        "emailData": report_utils.generate_email_report_data(
            ReportType.ORG_ACTIVITY.value, granularity, start, end, email_metrics, performance
        ),
    }
