"""
Shared helpers for the report generators.

Formatting (titles, period labels, currency, growth strings), per-user data
collectors over a date window, performance insights and team metrics. The
collectors each run one or two queries from ``fieldops.sql.report_queries``
and return plain dicts so the generators can combine them freely.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from fieldops.core.config import get_settings
from fieldops.core.database import execute_query
from fieldops.models.enums import ReportGranularity
from fieldops.models.schemas import serialize_records
from fieldops.sql import report_queries

logger = logging.getLogger(__name__)

REPORT_TITLES: Dict[str, str] = {
    ReportGranularity.END_OF_DAY.value: "Daily Activity Summary",
    ReportGranularity.END_OF_WEEK.value: "Weekly Activity Summary",
    ReportGranularity.WEEKLY.value: "Weekly Organisation Report",
    ReportGranularity.DAILY.value: "Daily Organisation Report",
}

EMAIL_PERIOD_LABELS: Dict[str, str] = {
    ReportGranularity.END_OF_DAY.value: "Yesterday",
    ReportGranularity.END_OF_WEEK.value: "Last Week",
    ReportGranularity.WEEKLY.value: "This Week",
    ReportGranularity.DAILY.value: "Today",
}

WEEK_GRANULARITIES = frozenset({ReportGranularity.WEEKLY.value, ReportGranularity.END_OF_WEEK.value})

MAX_TEAM_LIST: int = 5


def granularity_value(value: Any) -> str:
    return value.value if hasattr(value, "value") else str(value)


def _to_float(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def assignee_filter(user_id: int) -> List[Dict[str, int]]:
    """JSON containment value matching ``assignees`` arrays that include the user."""
    return [{"uid": user_id}]


# =============================================================================
# Formatting
# =============================================================================

def calculate_growth(current: float, previous: float) -> str:
    """
    Signed growth percentage string.

    >>> calculate_growth(15, 10)
    '+50.0%'
    >>> calculate_growth(5, 0)
    '+100%'
    """
    if previous == 0:
        return "+100%" if current > 0 else "0%"
    growth = round((current - previous) / previous * 100, 1)
    sign = "+" if growth >= 0 else ""
    return f"{sign}{growth}%"


def format_report_title(granularity: Any) -> str:
    return REPORT_TITLES.get(granularity_value(granularity), REPORT_TITLES[ReportGranularity.DAILY.value])


def get_email_period_label(granularity: Any) -> str:
    return EMAIL_PERIOD_LABELS.get(
        granularity_value(granularity), EMAIL_PERIOD_LABELS[ReportGranularity.DAILY.value]
    )


def format_currency(amount: float, currency: str = "ZAR") -> str:
    """
    South African style currency: space grouping, comma decimals.

    >>> format_currency(1234567.5)
    'R 1 234 567,50'
    """
    symbol = "R" if currency == "ZAR" else currency
    grouped = f"{abs(amount):,.2f}".replace(",", " ").replace(".", ",")
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol} {grouped}"


def calculate_progress(current: float, target: float) -> int:
    if not target:
        return 0
    return round(current / target * 100)


def calculate_remaining(current: float, target: float) -> float:
    return max(0, target - current)


def format_date_range(start: datetime, end: datetime, granularity: Any) -> str:
    if granularity_value(granularity) in WEEK_GRANULARITIES:
        return f"{start:%Y-%m-%d} - {end:%Y-%m-%d}"
    return f"{start:%Y-%m-%d}"


def truncate_text(text: Optional[str], max_length: int) -> str:
    if not text:
        return ""
    return text[:max_length] + "..." if len(text) > max_length else text


# =============================================================================
# Insights
# =============================================================================

def generate_performance_insights(metrics: Dict[str, Any]) -> List[str]:
    """
    Rule-based insights from a user's or team's period metrics.

    Expected keys: hoursWorked, quotationsRevenue, targetSalesAmount,
    leadsConverted, leadsNew.
    """
    insights: List[str] = []

    if _to_float(metrics.get("hoursWorked")) > 40:
        insights.append("High work hours detected - consider work-life balance")

    target = _to_float(metrics.get("targetSalesAmount"))
    if _to_float(metrics.get("quotationsRevenue")) > target * 1.2:
        insights.append("Excellent sales performance - above target by 20%")

    leads_new = _to_float(metrics.get("leadsNew"))
    if leads_new > 0 and _to_float(metrics.get("leadsConverted")) / leads_new < 0.1:
        insights.append("Lead conversion rate needs improvement")

    return insights


def calculate_team_metrics(users: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Team totals, top and low performers, and per-user averages.

    Each user dict carries ``hoursWorked``, ``visits`` and
    ``quotations: {"count", "revenue"}``.
    """
    total_users = len(users)

    def revenue(user: Dict[str, Any]) -> float:
        return _to_float((user.get("quotations") or {}).get("revenue"))

    top_performers = sorted(
        (user for user in users if revenue(user) > 0), key=revenue, reverse=True
    )[:MAX_TEAM_LIST]

    low_performers = [
        user for user in users
        if _to_float(user.get("hoursWorked")) < 2 and (user.get("quotations") or {}).get("count", 0) == 0
    ][:MAX_TEAM_LIST]

    def average(values: List[float]) -> float:
        return sum(values) / total_users if total_users else 0.0

    return {
        "totalUsers": total_users,
        "activeUsers": sum(1 for user in users if _to_float(user.get("hoursWorked")) > 0),
        "topPerformers": top_performers,
        "lowPerformers": low_performers,
        "averageMetrics": {
            "hoursWorked": round(average([_to_float(u.get("hoursWorked")) for u in users]), 1),
            "visits": round(average([_to_float(u.get("visits")) for u in users]), 1),
            "revenue": round(average([revenue(u) for u in users]), 2),
        },
    }


def generate_email_report_data(
    report_type: str,
    granularity: Any,
    start: datetime,
    end: datetime,
    metrics: Dict[str, Any],
    insights: Optional[List[Any]] = None,
) -> Dict[str, Any]:
    return {
        "reportType": report_type,
        "title": format_report_title(granularity),
        "period": granularity_value(granularity),
        "date": format_date_range(start, end, granularity),
        "summaryLabel": get_email_period_label(granularity),
        "metrics": metrics,
        "insights": insights or [],
        "dashboardUrl": get_settings().website_domain,
        "generatedAt": datetime.now(timezone.utc).isoformat(),
    }


# =============================================================================
# Collectors
# =============================================================================

def attendance_minutes(records: Sequence[Any]) -> int:
    """Whole minutes between check-in and check-out; open shifts count as 0."""
    total = 0
    for record in records:
        check_in = record["check_in"]
        check_out = record["check_out"] or check_in
        if check_in is None:
            continue
        total += max(0, int((check_out - check_in).total_seconds() // 60))
    return total


async def collect_attendance_data(user_id: int, start: datetime, end: datetime) -> Dict[str, Any]:
    records = await execute_query(report_queries.USER_ATTENDANCE_BETWEEN, user_id, start, end)
    return {"records": records, "totalWorkMinutes": attendance_minutes(records)}


async def collect_lead_data(user_id: int, start: datetime, end: datetime) -> Dict[str, Any]:
    new_leads = await execute_query(report_queries.USER_NEW_LEADS_BETWEEN, user_id, start, end)
    converted = await execute_query(report_queries.USER_CONVERTED_LEADS_BETWEEN, user_id, start, end)
    conversion_rate = len(converted) / len(new_leads) * 100 if new_leads else 0.0
    return {
        "newLeads": serialize_records(new_leads),
        "convertedLeads": serialize_records(converted),
        "newLeadsCount": len(new_leads),
        "convertedCount": len(converted),
        "conversionRate": round(conversion_rate, 1),
    }


async def collect_task_data(user_id: int, start: datetime, end: datetime) -> Dict[str, Any]:
    completed = await execute_query(
        report_queries.USER_COMPLETED_TASKS_BETWEEN, user_id, start, end, assignee_filter(user_id)
    )
    created = await execute_query(report_queries.USER_CREATED_TASKS_BETWEEN, user_id, start, end)
    return {
        "completedTasks": serialize_records(completed),
        "createdTasks": serialize_records(created),
        "completedCount": len(completed),
        "createdCount": len(created),
        "completionRate": 100 if completed else 0,
    }


async def collect_quotation_data(user_id: int, start: datetime, end: datetime) -> Dict[str, Any]:
    quotations = await execute_query(report_queries.USER_QUOTATIONS_BETWEEN, user_id, start, end)
    total_revenue = sum(_to_float(q["total_amount"]) for q in quotations)
    return {
        "quotations": serialize_records(quotations),
        "count": len(quotations),
        "totalRevenue": total_revenue,
    }


async def collect_check_in_data(user_id: int, start: datetime, end: datetime) -> Dict[str, Any]:
    check_ins = await execute_query(report_queries.USER_CHECK_INS_BETWEEN, user_id, start, end)
    return {"checkIns": serialize_records(check_ins), "count": len(check_ins)}


async def collect_claim_data(user_id: int, start: datetime, end: datetime) -> Dict[str, Any]:
    claims = await execute_query(report_queries.USER_CLAIMS_BETWEEN, user_id, start, end)
    return {"claims": serialize_records(claims), "count": len(claims)}
