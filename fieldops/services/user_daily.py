"""
User Daily Report Generator

One user's day: attendance, tasks, leads, journals, client visits, location,
quotations, claims, rewards and targets, plus derived analytics
(performance score, productivity, weekly comparison, target predictions and
wellness) and the data block consumed by the daily email.

Days on which the organisation is closed produce a metadata-only report with
``isWorkingDay = False`` unless the report was triggered by the user's own
activity (e.g. checking out).

Times are rendered in the organisation's timezone (``organisation_hours``),
falling back to ``DEFAULT_TIMEZONE``.

Performance score weights:
    - task efficiency 0.3
    - lead conversion 0.3
    - revenue per hour 0.3
    - punctuality 0.1
"""

import asyncio
import copy
import logging
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Awaitable, Dict, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import numpy as np

from fieldops.core.config import get_settings
from fieldops.core.database import execute_query, execute_query_one
from fieldops.models.enums import AttendanceStatus, ReportType
from fieldops.services import report_utils, rewards
from fieldops.services.location import analyze_tracking, format_distance, format_duration, optimize_route
from fieldops.sql import report_queries

logger = logging.getLogger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

DAY_NAMES = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

ACTIVE_SHIFT_STATUSES = frozenset({AttendanceStatus.PRESENT.value, AttendanceStatus.ON_BREAK.value})

TASK_PRIORITIES = ["LOW", "MEDIUM", "HIGH", "URGENT"]

PERFORMANCE_WEIGHTS: Dict[str, float] = {
    "taskEfficiency": 0.3,
    "leadConversionEfficiency": 0.3,
    "revenuePerHour": 0.3,
    "punctuality": 0.1,
}

STANDARD_DAY_HOURS: float = 8.0
LONG_DAY_HOURS: float = 10.0

PRODUCTIVITY_LOOKBACK_DAYS: int = 30
WELLNESS_LOOKBACK_DAYS: int = 7
DEFAULT_TARGET_PERIOD_DAYS: int = 30

EMPTY_XP_BREAKDOWN: Dict[str, int] = {
    "tasks": 0,
    "leads": 0,
    "sales": 0,
    "attendance": 0,
    "collaboration": 0,
    "other": 0,
}

DISTANCE_BANDS: List[Tuple[float, Dict[str, str]]] = [
    (0.5, {
        "category": "minimal",
        "message": "Minimal movement detected - likely just walking around the workplace",
        "recommendation": "Great job staying active even with minimal travel! Every step counts.",
    }),
    (2.0, {
        "category": "local",
        "message": "Local movement - short trips within the work area or nearby locations",
        "recommendation": "Good local mobility! Consider if some short trips could be combined for efficiency.",
    }),
    (10.0, {
        "category": "moderate",
        "message": "Moderate travel distance - covering good ground for work activities",
        "recommendation": "Solid travel efficiency! You're covering good distance for productive work.",
    }),
]

EXTENSIVE_DISTANCE = {
    "category": "extensive",
    "message": "Extensive travel - significant movement across multiple locations",
    "recommendation": "High mobility day! Consider route optimization for even better efficiency.",
}


# =============================================================================
# Time helpers
# =============================================================================

def organisation_zone(hours: Optional[Dict[str, Any]]) -> ZoneInfo:
    name = (hours or {}).get("timezone") or get_settings().default_timezone
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone '{name}', using {get_settings().default_timezone}")
        return ZoneInfo(get_settings().default_timezone)


def _local(moment: datetime, tz: ZoneInfo) -> datetime:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(tz)


def _clock(moment: Optional[datetime], tz: ZoneInfo, fmt: str = "%H:%M:%S") -> Optional[str]:
    return _local(moment, tz).strftime(fmt) if moment else None


def _day_window(day: date, tz: ZoneInfo) -> Tuple[datetime, datetime]:
    return datetime.combine(day, time.min, tzinfo=tz), datetime.combine(day, time.max, tzinfo=tz)


def report_window(
    tz: ZoneInfo,
    now: datetime,
    date_range: Optional[Tuple[datetime, datetime]] = None,
    report_day: Optional[date] = None,
) -> Tuple[datetime, datetime]:
    """
    Window a daily report covers: ``date_range`` as given, else the whole of
    ``report_day`` (or today) in the organisation's timezone.
    """
    if date_range:
        return date_range
    return _day_window(report_day or _local(now, tz).date(), tz)


def parse_time_string(text: Optional[str]) -> int:
    """
    Minutes in an ``"Xh Ym"`` duration string.

    >>> parse_time_string("2h 30m")
    150
    """
    if not text:
        return 0
    hours = re.search(r"(\d+)h", text)
    minutes = re.search(r"(\d+)m", text)
    return (int(hours.group(1)) if hours else 0) * 60 + (int(minutes.group(1)) if minutes else 0)


def _minutes(start: Optional[datetime], end: Optional[datetime]) -> float:
    if not start or not end:
        return 0.0
    return max(0.0, (end - start).total_seconds() / 60)


def is_organisation_open(hours: Optional[Dict[str, Any]], day: date) -> bool:
    """
    Whether the organisation works on ``day``.

    ``weekly_schedule`` maps lower-case day names to booleans; a day counts
    as open only when it is flagged and opening/closing times are set.
    Missing hours mean always open.
    """
    if not hours:
        return True
    schedule = hours.get("weekly_schedule") or {}
    return bool(schedule.get(DAY_NAMES[day.weekday()]) is True and hours.get("open_time") and hours.get("close_time"))


async def _safe(awaitable: Awaitable[Any], default: Any, label: str, user_id: int) -> Any:
    """Await a report section, substituting a fresh copy of ``default`` when it fails."""
    try:
        return await awaitable
    except Exception as e:
        logger.error(f"Error collecting {label} for user {user_id}: {e}", exc_info=True)
        return copy.deepcopy(default)


# =============================================================================
# Attendance
# =============================================================================

def shift_work_minutes(record: Dict[str, Any], now: datetime) -> int:
    """Worked minutes of one shift, open shifts measured to ``now``, breaks excluded."""
    end = record.get("check_out") or now
    worked = _minutes(record.get("check_in"), end) - parse_time_string(record.get("total_break_time"))
    return max(0, int(worked))


def format_break_details(records: Sequence[Dict[str, Any]], tz: ZoneInfo) -> List[Dict[str, Any]]:
    breaks = []
    for record in records:
        for item in record.get("break_details") or []:
            if not item.get("startTime") or not item.get("endTime"):
                continue
            started = datetime.fromisoformat(str(item["startTime"]).replace("Z", "+00:00"))
            ended = datetime.fromisoformat(str(item["endTime"]).replace("Z", "+00:00"))
            breaks.append({
                "startTime": _clock(started, tz),
                "endTime": _clock(ended, tz),
                "duration": item.get("duration") or format_duration(_minutes(started, ended)),
                "notes": item.get("notes") or "",
            })
    return breaks


def _coordinates(record: Optional[Dict[str, Any]], prefix: str) -> Optional[Dict[str, Any]]:
    if not record or not record.get(f"{prefix}_latitude") or not record.get(f"{prefix}_longitude"):
        return None
    return {
        "latitude": float(record[f"{prefix}_latitude"]),
        "longitude": float(record[f"{prefix}_longitude"]),
        "notes": record.get(f"{prefix}_notes") or "",
    }


async def collect_attendance(
    user_id: int,
    start: datetime,
    end: datetime,
    tz: ZoneInfo,
    attendance_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    records = [dict(r) for r in await execute_query(report_queries.USER_ATTENDANCE_BETWEEN, user_id, start, end)]
    first = records[0] if records else None
    last = records[-1] if records else None
    active = next(
        (r for r in records if r.get("status") in ACTIVE_SHIFT_STATUSES and not r.get("check_out")),
        None,
    )

    triggering = None
    if attendance_id:
        triggering = next((r for r in records if r["uid"] == attendance_id), None)
        if not triggering:
            logger.warning(f"Triggering attendance record {attendance_id} not found for user {user_id}")

    work_minutes = sum(shift_work_minutes(r, min(now, end)) for r in records)
    break_minutes = sum(parse_time_string(r.get("total_break_time")) for r in records)
    overtime_minutes = sum(parse_time_string(r.get("overtime")) for r in records)

    if active:
        status = active["status"]
    elif last:
        status = last.get("status")
    else:
        status = "NOT_PRESENT"

    return {
        "status": status,
        "firstCheckIn": _clock(first.get("check_in"), tz) if first else None,
        "lastCheckOut": _clock(last.get("check_out"), tz) if last else None,
        "totalWorkMinutes": work_minutes,
        "totalBreakMinutes": break_minutes,
        "totalOvertimeMinutes": overtime_minutes,
        "overtime": f"{overtime_minutes // 60}h {overtime_minutes % 60}m",
        "totalShifts": len(records),
        "firstCheckInLocation": _coordinates(first, "check_in"),
        "lastCheckOutLocation": _coordinates(last, "check_out"),
        "onBreak": bool(active and active["status"] == AttendanceStatus.ON_BREAK.value),
        "breakDetails": format_break_details(records, tz),
        "isCurrentlyWorking": active is not None,
        "triggeringRecord": {
            "uid": triggering["uid"],
            "checkIn": _clock(triggering.get("check_in"), tz),
            "checkOut": _clock(triggering.get("check_out"), tz),
            "duration": triggering.get("duration"),
            "overtime": triggering.get("overtime"),
            "status": triggering.get("status"),
        } if triggering else None,
    }


# =============================================================================
# Tasks, leads, journals, clients, claims, quotations
# =============================================================================

def priority_breakdown(tasks: Sequence[Dict[str, Any]]) -> Dict[str, int]:
    counts = {priority: 0 for priority in TASK_PRIORITIES}
    for task in tasks:
        if task.get("priority") in counts:
            counts[task["priority"]] += 1
    return counts


async def collect_tasks(
    user_id: int,
    start: datetime,
    end: datetime,
    tz: ZoneInfo,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    assignee = report_utils.assignee_filter(user_id)
    tomorrow_start, tomorrow_end = _day_window(_local(now, tz).date() + timedelta(days=1), tz)

    completed = [dict(t) for t in await execute_query(
        report_queries.USER_COMPLETED_TASKS_BETWEEN, user_id, start, end, assignee)]
    created = await execute_query(report_queries.USER_CREATED_TASKS_BETWEEN, user_id, start, end)
    due_tomorrow = [dict(t) for t in await execute_query(
        report_queries.USER_TASKS_DUE_BETWEEN, user_id, tomorrow_start, tomorrow_end, assignee)]
    overdue = [dict(t) for t in await execute_query(report_queries.USER_OVERDUE_TASKS, user_id, assignee)]

    assigned = len(completed) + len(overdue)
    completion_rate = len(completed) / assigned * 100 if assigned else 0

    def summary(task: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "id": task["uid"],
            "title": task.get("title"),
            "description": report_utils.truncate_text(task.get("description"), 100),
            "priority": task.get("priority"),
        }

    return {
        "completedCount": len(completed),
        "createdCount": len(created),
        "dueTomorrowCount": len(due_tomorrow),
        "overdueCount": len(overdue),
        "completionRate": round(completion_rate, 1),
        "completedTasks": [
            {**summary(t), "completedAt": _clock(t.get("completion_date"), tz)} for t in completed
        ],
        "dueTomorrowTasks": [
            {**summary(t), "deadline": _clock(t.get("deadline"), tz, "%Y-%m-%d %H:%M")} for t in due_tomorrow
        ],
        "overdueTasks": [
            {
                **summary(t),
                "deadline": _clock(t.get("deadline"), tz, "%Y-%m-%d %H:%M"),
                "daysOverdue": (now - t["deadline"]).days if t.get("deadline") else 0,
            }
            for t in overdue
        ],
        "priorityBreakdown": priority_breakdown(completed + due_tomorrow + overdue),
    }


async def collect_leads(user_id: int, start: datetime, end: datetime, tz: ZoneInfo) -> Dict[str, Any]:
    new_leads = await execute_query(report_queries.USER_NEW_LEADS_BETWEEN, user_id, start, end)
    converted = await execute_query(report_queries.USER_CONVERTED_LEADS_BETWEEN, user_id, start, end)
    conversion_rate = len(converted) / len(new_leads) * 100 if new_leads else 0

    return {
        "newLeadsCount": len(new_leads),
        "convertedCount": len(converted),
        "conversionRate": round(conversion_rate, 1),
        "newLeads": [
            {
                "id": lead["uid"],
                "name": lead["name"] or "Unnamed Lead",
                "email": lead["email"] or "N/A",
                "phone": lead["phone"] or "N/A",
                "createdAt": _clock(lead["created_at"], tz),
                "hasImage": bool(lead["image"]),
                "hasLocation": bool(lead["latitude"] and lead["longitude"]),
            }
            for lead in new_leads
        ],
        "convertedLeads": [
            {
                "id": lead["uid"],
                "name": lead["name"] or "Unnamed Lead",
                "email": lead["email"] or "N/A",
                "phone": lead["phone"] or "N/A",
                "convertedAt": _clock(lead["updated_at"], tz),
            }
            for lead in converted
        ],
    }


async def collect_journals(user_id: int, start: datetime, end: datetime, tz: ZoneInfo) -> Dict[str, Any]:
    entries = await execute_query(report_queries.USER_JOURNALS_BETWEEN, user_id, start, end)
    listed = [
        {
            "id": entry["uid"],
            "title": entry["client_ref"] or "Untitled Entry",
            "content": report_utils.truncate_text(entry["comments"] or "", 150),
            "createdAt": _clock(entry["created_at"], tz),
            "hasAttachments": bool(entry["file_url"]),
            "fileURL": entry["file_url"],
        }
        for entry in reversed(entries)
    ]
    return {"count": len(entries), "entries": listed, "hasEntries": bool(entries)}


async def collect_clients(user_id: int, start: datetime, end: datetime, tz: ZoneInfo) -> Dict[str, Any]:
    new_clients = await execute_query(report_queries.USER_NEW_CLIENTS_BETWEEN, user_id, start, end)
    check_ins = await execute_query(report_queries.USER_CHECK_INS_BETWEEN, user_id, start, end)

    by_client: Dict[int, Dict[str, Any]] = {}
    for check_in in check_ins:
        if not check_in["client_uid"]:
            continue
        entry = by_client.setdefault(check_in["client_uid"], {
            "clientId": check_in["client_uid"],
            "clientName": check_in["client_name"],
            "interactionCount": 0,
            "interactions": [],
        })
        entry["interactionCount"] += 1
        entry["interactions"].append({
            "id": check_in["uid"],
            "type": "check-in",
            "timestamp": _clock(check_in["check_in_time"], tz),
            "location": check_in["check_in_location"] or "Unknown location",
        })

    return {
        "newClients": len(new_clients),
        "totalInteractions": len(check_ins),
        "clientsInteractedWith": len(by_client),
        "clientInteractions": list(by_client.values()),
    }


async def collect_claims(user_id: int, start: datetime, end: datetime, tz: ZoneInfo) -> Dict[str, Any]:
    claims = await execute_query(report_queries.USER_CLAIMS_BETWEEN, user_id, start, end)
    return {
        "count": len(claims),
        "claims": [
            {
                "id": claim["uid"],
                "title": claim["claim_ref"] or str(claim["uid"]),
                "category": claim["category"],
                "amount": float(claim["amount"]) if claim["amount"] is not None else None,
                "status": claim["status"],
                "createdAt": _clock(claim["created_at"], tz),
            }
            for claim in reversed(claims)
        ],
        "hasClaims": bool(claims),
    }


EMPTY_CLAIMS: Dict[str, Any] = {"count": 0, "claims": [], "hasClaims": False}


async def collect_quotations(user_id: int, start: datetime, end: datetime, tz: ZoneInfo) -> Dict[str, Any]:
    quotations = await execute_query(report_queries.USER_QUOTATIONS_BETWEEN, user_id, start, end)
    details = []
    total_revenue = 0.0
    for q in quotations:
        amount = float(q["total_amount"]) if q["total_amount"] is not None else 0.0
        total_revenue += amount
        details.append({
            "id": q["uid"],
            "quotationNumber": q["quotation_number"],
            "clientName": q["client_name"] or "Unknown",
            "totalAmount": amount,
            "totalItems": q["total_items"],
            "status": q["status"],
            "createdAt": _clock(q["created_at"], tz),
        })
    return {
        "totalQuotations": len(quotations),
        "totalRevenue": total_revenue,
        "totalRevenueFormatted": report_utils.format_currency(total_revenue),
        "quotationDetails": details,
    }


EMPTY_QUOTATIONS: Dict[str, Any] = {
    "totalQuotations": 0,
    "totalRevenue": 0,
    "totalRevenueFormatted": report_utils.format_currency(0),
    "quotationDetails": [],
}


# =============================================================================
# Location
# =============================================================================

def distance_insights(distance_km: float) -> Dict[str, str]:
    for limit, insight in DISTANCE_BANDS:
        if distance_km < limit:
            return dict(insight)
    return dict(EXTENSIVE_DISTANCE)


def default_location_data(distance_km: float = 0.0) -> Dict[str, Any]:
    formatted = f"{distance_km:.1f} km"
    return {
        "locations": [],
        "totalDistance": formatted,
        "totalDistanceKm": distance_km,
        "totalLocations": 0,
        "trackingData": {
            "totalDistance": formatted,
            "totalDistanceKm": distance_km,
            "locations": [],
            "averageTimePerLocation": "~",
            "visits": {
                "totalDistance": formatted,
                "totalDistanceKm": distance_km,
                "completedVisits": 0,
                "totalVisits": 0,
                "avgDuration": "~",
                "topLocations": [],
            },
        },
        "tripMetrics": {"totalDistanceKm": distance_km, "totalDistance": formatted},
        "stops": [],
        "distanceInsights": distance_insights(distance_km),
        "routeOptimization": None,
    }


async def collect_location(user_id: int, start: datetime, end: datetime, tz: ZoneInfo) -> Dict[str, Any]:
    points = [dict(p) for p in await execute_query(report_queries.USER_TRACKING_BETWEEN, user_id, start, end)]
    if not points:
        logger.info(f"No tracking points for user {user_id} on {_local(start, tz):%Y-%m-%d}")
        return default_location_data()

    analysis = analyze_tracking(points)
    summary = analysis["tripSummary"]
    stops = analysis["stops"]
    distance_km = summary["totalDistanceKm"]
    formatted = format_distance(distance_km)

    for stop in stops:
        if not stop.get("address"):
            stop["address"] = f"{stop['latitude']:.4f}, {stop['longitude']:.4f}"

    average_stop = (
        format_duration(sum(s["durationMinutes"] for s in stops) / len(stops)) if stops else "~"
    )
    locations = [
        {
            "type": "tracking-point",
            "timestamp": _clock(p.get("created_at"), tz),
            "latitude": float(p["latitude"]),
            "longitude": float(p["longitude"]),
            "address": p.get("address") or f"{float(p['latitude']):.4f}, {float(p['longitude']):.4f}",
            "speed": p.get("speed"),
        }
        for p in points
    ]

    return {
        "locations": locations,
        "totalDistance": formatted,
        "totalDistanceKm": distance_km,
        "totalLocations": len(locations),
        "trackingData": {
            "totalDistance": formatted,
            "totalDistanceKm": distance_km,
            "locations": [s["address"] for s in stops],
            "averageTimePerLocation": average_stop,
            "visits": {
                "totalDistance": formatted,
                "totalDistanceKm": distance_km,
                "completedVisits": len(stops),
                "totalVisits": len(stops),
                "avgDuration": average_stop,
                "topLocations": [s["address"] for s in stops[:3]],
            },
        },
        "tripMetrics": {**summary, "totalDistance": formatted},
        "stops": stops,
        "distanceInsights": distance_insights(distance_km),
        "routeOptimization": optimize_route(stops, distance_km),
    }


# =============================================================================
# Rewards and targets
# =============================================================================

DEFAULT_REWARDS: Dict[str, Any] = {
    "dailyXPEarned": 0,
    "xpEvents": 0,
    "currentLevel": 1,
    "currentRank": "ROOKIE",
    "totalXP": 0,
    "currentXP": 0,
}


async def collect_rewards(user_id: int, start: datetime, end: datetime) -> Dict[str, Any]:
    summary = await rewards.get_rewards_summary(user_id, start, end)
    return {**summary, "xpBreakdown": dict(EMPTY_XP_BREAKDOWN)}


NO_TARGETS: Dict[str, Any] = {
    "hasTargets": False,
    "targetPeriod": None,
    "periodStartDate": None,
    "periodEndDate": None,
    "salesTarget": None,
    "hoursTarget": None,
    "leadsTarget": None,
    "clientsTarget": None,
    "checkInsTarget": None,
    "callsTarget": None,
    "targetProgress": {},
}

TARGET_FIELDS: Dict[str, str] = {
    "sales": "sales_amount",
    "hours": "hours_worked",
    "leads": "new_leads",
    "clients": "new_clients",
    "checkIns": "check_ins",
    "calls": "calls",
}


def target_progress(current: float, target: float) -> int:
    """Percent of target reached, capped at 100."""
    if not target or target <= 0:
        return 0
    return min(report_utils.calculate_progress(current, target), 100)


async def collect_targets(user_id: int) -> Dict[str, Any]:
    row = await execute_query_one(report_queries.USER_TARGETS, user_id)
    if not row:
        return copy.deepcopy(NO_TARGETS)

    currency = row["target_currency"] or "ZAR"
    pairs = {
        key: (float(row[f"current_{column}"] or 0), float(row[f"target_{column}"] or 0))
        for key, column in TARGET_FIELDS.items()
    }
    progress = {
        key: {"current": current, "target": target, "progress": target_progress(current, target)}
        for key, (current, target) in pairs.items()
    }
    progress["sales"]["currency"] = currency

    sales_current, sales_target = pairs["sales"]
    result = {
        "hasTargets": True,
        "targetPeriod": row["target_period"] or "Monthly",
        "periodStartDate": row["period_start_date"].strftime("%Y-%m-%d") if row["period_start_date"] else None,
        "periodEndDate": row["period_end_date"].strftime("%Y-%m-%d") if row["period_end_date"] else None,
        "salesTarget": {
            "current": sales_current,
            "target": sales_target,
            "currency": currency,
            "formatted": report_utils.format_currency(sales_current, currency),
            "targetFormatted": report_utils.format_currency(sales_target, currency),
        },
        "targetProgress": progress,
    }
    for key in ("hours", "leads", "clients", "checkIns", "calls"):
        current, target = pairs[key]
        result[f"{key}Target"] = {"current": current, "target": target}
    return result


# =============================================================================
# Analytics
# =============================================================================

def overall_performance_score(metrics: Dict[str, float]) -> float:
    return sum((metrics.get(key) or 0) * weight for key, weight in PERFORMANCE_WEIGHTS.items()) / 100


def identify_strengths(metrics: Dict[str, float]) -> List[str]:
    strengths = []
    if metrics["taskEfficiency"] > 80:
        strengths.append("Excellent task completion rate")
    if metrics["leadConversionEfficiency"] > 15:
        strengths.append("Strong lead conversion")
    if metrics["revenuePerHour"] > 100:
        strengths.append("High revenue productivity")
    return strengths


def identify_improvement_areas(metrics: Dict[str, float]) -> List[str]:
    areas = []
    if metrics["taskEfficiency"] < 60:
        areas.append("Task completion efficiency")
    if metrics["leadConversionEfficiency"] < 10:
        areas.append("Lead conversion rate")
    if metrics["revenuePerHour"] < 50:
        areas.append("Revenue per hour")
    return areas


async def collect_performance(user_id: int, start: datetime) -> Dict[str, Any]:
    """Efficiency scores over the seven days before the report day."""
    week_start = start - timedelta(days=7)
    quotations = await report_utils.collect_quotation_data(user_id, week_start, start)
    tasks = await report_utils.collect_task_data(user_id, week_start, start)
    leads = await report_utils.collect_lead_data(user_id, week_start, start)
    attendance = await report_utils.collect_attendance_data(user_id, week_start, start)

    hours = attendance["totalWorkMinutes"] / 60
    metrics = {
        "taskEfficiency": tasks["completedCount"] / max(tasks["createdCount"], 1) * 100,
        "leadConversionEfficiency": leads["convertedCount"] / max(leads["newLeadsCount"], 1) * 100,
        "revenuePerHour": quotations["totalRevenue"] / max(hours, 1),
        "punctuality": 100 if attendance["records"] else 0,
    }

    return {
        "overallScore": round(overall_performance_score(metrics), 1),
        "taskEfficiency": round(metrics["taskEfficiency"], 1),
        "leadConversionRate": round(metrics["leadConversionEfficiency"], 1),
        "revenuePerHour": round(metrics["revenuePerHour"], 2),
        "weeklyTrends": {
            "quotations": quotations["count"],
            "revenue": report_utils.format_currency(quotations["totalRevenue"]),
            "tasksCompleted": tasks["completedCount"],
            "leadsGenerated": leads["newLeadsCount"],
            "hoursWorked": round(hours, 1),
        },
        "strengths": identify_strengths(metrics),
        "improvementAreas": identify_improvement_areas(metrics),
    }


EMPTY_PERFORMANCE: Dict[str, Any] = {
    "overallScore": 0,
    "taskEfficiency": 0,
    "leadConversionRate": 0,
    "revenuePerHour": 0,
    "weeklyTrends": {},
    "strengths": [],
    "improvementAreas": [],
}


def closed_shift_hours(records: Sequence[Dict[str, Any]]) -> List[float]:
    return [
        _minutes(r["check_in"], r["check_out"]) / 60
        for r in records
        if r.get("check_in") and r.get("check_out")
    ]


def work_patterns(records: Sequence[Dict[str, Any]], tz: ZoneInfo) -> Dict[str, Any]:
    """
    Typical start/end hour and a consistency score.

    Consistency drops 10 points per hour of standard deviation in start time.
    """
    starts = np.array([_local(r["check_in"], tz).hour for r in records if r.get("check_in")], dtype=np.float64)
    ends = np.array([_local(r["check_out"], tz).hour for r in records if r.get("check_out")], dtype=np.float64)
    consistency = float(max(0.0, 100.0 - float(np.std(starts)) * 10)) if starts.size else 0.0
    return {
        "preferredStartTime": int(round(float(np.mean(starts)))) if starts.size else 9,
        "preferredEndTime": int(round(float(np.mean(ends)))) if ends.size else 17,
        "consistencyScore": round(consistency),
    }


async def collect_productivity(
    user_id: int,
    start: datetime,
    recent_attendance: Sequence[Dict[str, Any]],
    tz: ZoneInfo,
) -> Dict[str, Any]:
    since = start - timedelta(days=PRODUCTIVITY_LOOKBACK_DAYS)
    rows = await execute_query(
        report_queries.USER_TASK_COMPLETIONS_BY_HOUR, user_id, since, report_utils.assignee_filter(user_id)
    )
    hourly = np.zeros(24, dtype=np.float64)
    for row in rows:
        hourly[int(row["hour"])] = float(row["count"])

    peak_hour = int(np.argmax(hourly))
    shifts = closed_shift_hours(recent_attendance)
    focus_minutes = sum(shifts) * 60 / len(recent_attendance) if recent_attendance else 0.0
    patterns = work_patterns(recent_attendance, tz)
    focus_score = min(100.0, focus_minutes / 4)

    recommendations = []
    if peak_hour < 10:
        recommendations.append("Consider scheduling important tasks in the morning")
    if focus_minutes < 120:
        recommendations.append("Try to extend focus periods with time-blocking")
    if patterns["consistencyScore"] < 70:
        recommendations.append("Work on maintaining consistent work patterns")

    return {
        "peakProductivityHour": peak_hour,
        "averageFocusTime": format_duration(focus_minutes),
        "productivityScore": round((float(hourly.max()) * 10 + focus_score) / 2),
        "workPatterns": patterns,
        "recommendations": recommendations,
    }


EMPTY_PRODUCTIVITY: Dict[str, Any] = {
    "peakProductivityHour": 9,
    "averageFocusTime": "0m",
    "productivityScore": 0,
    "workPatterns": {},
    "recommendations": [],
}


async def weekly_metrics(user_id: int, start: datetime, end: datetime) -> Dict[str, Any]:
    attendance = await report_utils.collect_attendance_data(user_id, start, end)
    tasks = await report_utils.collect_task_data(user_id, start, end)
    quotations = await report_utils.collect_quotation_data(user_id, start, end)
    leads = await report_utils.collect_lead_data(user_id, start, end)
    return {
        "hoursWorked": round(attendance["totalWorkMinutes"] / 60, 1),
        "tasksCompleted": tasks["completedCount"],
        "revenue": quotations["totalRevenue"],
        "leads": leads["newLeadsCount"],
    }


def determine_trend(current: Dict[str, Any], previous: Dict[str, Any]) -> str:
    improvements = sum(1 for key in current if (current[key] or 0) > (previous.get(key) or 0))
    declines = sum(1 for key in current if (current[key] or 0) < (previous.get(key) or 0))
    if improvements > declines:
        return "improving"
    if declines > improvements:
        return "declining"
    return "stable"


async def collect_weekly_comparison(user_id: int, start: datetime, end: datetime) -> Dict[str, Any]:
    """The seven days ending with the report day against the seven before."""
    current_start = start - timedelta(days=6)
    previous_start = current_start - timedelta(days=7)
    previous_end = current_start - timedelta(microseconds=1)

    current = await weekly_metrics(user_id, current_start, end)
    previous = await weekly_metrics(user_id, previous_start, previous_end)
    return {
        "current": current,
        "previous": previous,
        "changes": {
            key: report_utils.calculate_growth(current[key], previous[key])
            for key in ("hoursWorked", "tasksCompleted", "revenue", "leads")
        },
        "trend": determine_trend(current, previous),
    }


EMPTY_WEEKLY_COMPARISON: Dict[str, Any] = {"current": {}, "previous": {}, "changes": {}, "trend": "stable"}


def predict_targets(targets: Dict[str, Any], start: datetime) -> Dict[str, Any]:
    """
    Project target completion from the pace so far in the target period.

    Pace is ``current / days elapsed``; the projection extends it over the
    whole period (30 days when the period has no end date).
    """
    if not targets.get("hasTargets"):
        return {"targetAchievementProbability": 0, "projectedCompletion": {}, "recommendations": [], "riskFactors": []}

    report_day = start.date()
    period_start = (
        date.fromisoformat(targets["periodStartDate"]) if targets.get("periodStartDate")
        else report_day - timedelta(days=DEFAULT_TARGET_PERIOD_DAYS)
    )
    elapsed = max(1, (report_day - period_start).days)
    total_days = (
        (date.fromisoformat(targets["periodEndDate"]) - period_start).days if targets.get("periodEndDate")
        else DEFAULT_TARGET_PERIOD_DAYS
    )

    projected: Dict[str, Any] = {}
    probabilities: Dict[str, float] = {}
    for key in ("sales", "hours", "leads"):
        target = targets.get(f"{key}Target")
        if not target:
            projected[key] = None
            probabilities[key] = 0.0
            continue
        value = target["current"] / elapsed * total_days
        probability = min(100.0, value / target["target"] * 100) if target["target"] else 0.0
        probabilities[key] = probability
        projected[key] = {"projected": value, "target": target["target"], "probability": round(probability)}

    recommendations = []
    if probabilities["sales"] < 80:
        recommendations.append("Focus on higher-value deals to improve sales target achievement")
    if probabilities["hours"] < 80:
        recommendations.append("Consider optimizing work schedule to meet hours target")
    if probabilities["leads"] < 80:
        recommendations.append("Increase lead generation activities and networking")

    risks = []
    if probabilities["sales"] < 60:
        risks.append("Sales target at risk")
    if probabilities["hours"] < 60:
        risks.append("Hours target may not be met")
    if probabilities["leads"] < 60:
        risks.append("Lead generation below expected pace")

    return {
        "targetAchievementProbability": round(sum(probabilities.values()) / 3),
        "projectedCompletion": projected,
        "daysRemaining": total_days - elapsed,
        "recommendations": recommendations,
        "riskFactors": risks,
    }


def wellness_metrics(records: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    """Work-life balance and stress from the last week of shifts."""
    shifts = closed_shift_hours(records)
    average_hours = sum(shifts) / len(records) if records else 0.0
    overtime_days = sum(1 for hours in shifts if hours > STANDARD_DAY_HOURS)
    long_days = sum(1 for hours in shifts if hours > LONG_DAY_HOURS)

    balance = max(0.0, 100 - (average_hours - STANDARD_DAY_HOURS) * 10 - overtime_days * 5)
    stress = "high" if long_days > 3 else "moderate" if long_days > 1 else "low"

    score = balance
    if stress == "high":
        score -= 20
    elif stress == "moderate":
        score -= 10
    score = max(0.0, min(100.0, score))

    recommendations = []
    if score < 60:
        recommendations.append("Consider implementing better work-life balance practices")
    if overtime_days > 2:
        recommendations.append("Try to reduce overtime frequency")
    if stress == "high":
        recommendations.append("Take regular breaks and consider stress management techniques")
    if average_hours > 9:
        recommendations.append("Aim for more reasonable daily working hours")

    return {
        "wellnessScore": round(score),
        "workLifeBalance": {
            "score": round(balance),
            "averageHoursPerDay": round(average_hours, 1),
            "overtimeDays": overtime_days,
            "recommendedBreaks": max(0, int(average_hours // 4)),
        },
        "stressLevel": stress,
        "recommendations": recommendations,
    }


# =============================================================================
# Entry point
# =============================================================================

def _email_data(
    user: Dict[str, Any],
    report_date: str,
    attendance: Dict[str, Any],
    quotations: Dict[str, Any],
    previous_quotations: Dict[str, Any],
    clients: Dict[str, Any],
    previous_clients: Dict[str, Any],
    leads: Dict[str, Any],
    claims: Dict[str, Any],
    tasks: Dict[str, Any],
    reward: Dict[str, Any],
    targets: Dict[str, Any],
    performance: Dict[str, Any],
    productivity: Dict[str, Any],
    weekly: Dict[str, Any],
    predictions: Dict[str, Any],
    wellness: Dict[str, Any],
    location: Dict[str, Any],
) -> Dict[str, Any]:
    minutes = attendance["totalWorkMinutes"]
    return {
        "name": user["name"],
        "date": report_date,
        "metrics": {
            "attendance": {
                "status": attendance["status"],
                "startTime": attendance["firstCheckIn"],
                "endTime": attendance["lastCheckOut"],
                "totalHours": round(minutes / 60, 2),
                "duration": format_duration(minutes),
                "overtime": attendance["overtime"],
                "checkInLocation": attendance["firstCheckInLocation"],
                "checkOutLocation": attendance["lastCheckOutLocation"],
            },
            "totalQuotations": quotations["totalQuotations"],
            "totalRevenue": quotations["totalRevenueFormatted"],
            "newCustomers": clients["newClients"],
            "quotationGrowth": report_utils.calculate_growth(
                quotations["totalQuotations"], previous_quotations["totalQuotations"]
            ),
            "revenueGrowth": report_utils.calculate_growth(
                quotations["totalRevenue"], previous_quotations["totalRevenue"]
            ),
            "customerGrowth": report_utils.calculate_growth(clients["newClients"], previous_clients["newClients"]),
            "userSpecific": {
                "todayLeads": leads["newLeadsCount"],
                "todayClaims": claims["count"],
                "todayTasks": tasks["completedCount"],
                "todayQuotations": quotations["totalQuotations"],
                "hoursWorked": round(minutes / 60, 1),
                "xpEarned": reward["dailyXPEarned"],
                "currentLevel": reward["currentLevel"],
                "currentRank": reward["currentRank"],
            },
            "targets": targets,
            "performance": {
                key: performance[key]
                for key in ("overallScore", "taskEfficiency", "leadConversionRate",
                            "revenuePerHour", "strengths", "improvementAreas")
            },
            "productivity": {
                "score": productivity["productivityScore"],
                "peakHour": productivity["peakProductivityHour"],
                "focusTime": productivity["averageFocusTime"],
                "recommendations": productivity["recommendations"],
                "workPatterns": productivity["workPatterns"],
            },
            "weeklyComparison": weekly,
            "predictions": {
                key: predictions[key]
                for key in ("targetAchievementProbability", "projectedCompletion", "recommendations", "riskFactors")
            },
            "wellness": {
                "score": wellness["wellnessScore"],
                "workLifeBalance": wellness["workLifeBalance"],
                "stressLevel": wellness["stressLevel"],
                "recommendations": wellness["recommendations"],
            },
        },
        "tracking": location["trackingData"],
        "dashboardUrl": get_settings().website_domain,
    }


async def generate(
    user_id: Optional[int],
    date_range: Optional[Tuple[datetime, datetime]] = None,
    triggered_by_activity: bool = False,
    attendance_id: Optional[int] = None,
    now: Optional[datetime] = None,
    report_day: Optional[date] = None,
) -> Dict[str, Any]:
    """
    Build the daily report for one user.

    Args:
        user_id: User to report on (required).
        date_range: Explicit window; defaults to ``report_day`` (or today) in
            the organisation's timezone.
        triggered_by_activity: Generate even when the organisation is closed.
        attendance_id: Attendance row that triggered the report, if any.
        now: Reference time.
        report_day: Calendar day to report on, read in the organisation's timezone.

    Raises:
        ValueError: ``user_id`` missing or the user does not exist.
        RuntimeError: Data collection failed.
    """
    if not user_id:
        raise ValueError("User ID is required for generating a daily user report")

    user_row = await execute_query_one(report_queries.GET_USER_WITH_ORGANISATION, user_id)
    if not user_row:
        raise ValueError(f"User with ID {user_id} not found")
    user = dict(user_row)

    now = now or datetime.now(timezone.utc)
    organisation_id = user.get("organisation_uid")
    hours = await execute_query_one(report_queries.ORGANISATION_HOURS, organisation_id) if organisation_id else None
    hours = dict(hours) if hours else None
    tz = organisation_zone(hours)

    start, end = report_window(tz, now, date_range, report_day)

    report_date = _local(start, tz).strftime("%Y-%m-%d")
    user_name = f"{user['name']} {user.get('surname') or ''}".strip()
    generated_at = _local(now, tz).strftime("%Y-%m-%d %H:%M:%S")

    if not is_organisation_open(hours, _local(start, tz).date()):
        if not triggered_by_activity:
            logger.info(f"Skipping daily report for user {user_id} on {report_date}: organisation closed")
            return {
                "metadata": {
                    "reportType": ReportType.USER_DAILY.value,
                    "userId": user_id,
                    "userName": user_name,
                    "date": report_date,
                    "generatedAt": generated_at,
                    "isWorkingDay": False,
                    "skipReason": "Organization closed on this date (scheduled report)",
                },
                "summary": None,
                "details": None,
                "emailData": None,
            }
        logger.info(f"Generating activity-triggered report for user {user_id} on closed day {report_date}")

    previous_start = start - timedelta(days=1)
    previous_end = end - timedelta(days=1)

    try:
        recent_attendance = [
            dict(r) for r in await execute_query(
                report_queries.USER_ATTENDANCE_BETWEEN, user_id,
                start - timedelta(days=WELLNESS_LOOKBACK_DAYS), end,
            )
        ]
        (
            attendance, tasks, leads, journals, clients, location, quotations, claims,
            previous_quotations, previous_clients, reward, targets, performance,
            productivity, weekly,
        ) = await asyncio.gather(
            collect_attendance(user_id, start, end, tz, attendance_id, now),
            collect_tasks(user_id, start, end, tz, now),
            collect_leads(user_id, start, end, tz),
            collect_journals(user_id, start, end, tz),
            collect_clients(user_id, start, end, tz),
            _safe(collect_location(user_id, start, end, tz), default_location_data(), "location data", user_id),
            _safe(collect_quotations(user_id, start, end, tz), EMPTY_QUOTATIONS, "quotation data", user_id),
            _safe(collect_claims(user_id, start, end, tz), EMPTY_CLAIMS, "claim data", user_id),
            _safe(collect_quotations(user_id, previous_start, previous_end, tz), EMPTY_QUOTATIONS,
                  "previous quotation data", user_id),
            collect_clients(user_id, previous_start, previous_end, tz),
            _safe(collect_rewards(user_id, start, end), {**DEFAULT_REWARDS, "xpBreakdown": EMPTY_XP_BREAKDOWN},
                  "rewards data", user_id),
            _safe(collect_targets(user_id), NO_TARGETS, "targets data", user_id),
            _safe(collect_performance(user_id, start), EMPTY_PERFORMANCE, "performance analytics", user_id),
            _safe(collect_productivity(user_id, start, recent_attendance, tz), EMPTY_PRODUCTIVITY,
                  "productivity insights", user_id),
            _safe(collect_weekly_comparison(user_id, start, end), EMPTY_WEEKLY_COMPARISON,
                  "weekly comparison", user_id),
        )
    except Exception as e:
        logger.error(f"Failed to generate daily report for user {user_id}: {e}", exc_info=True)
        raise RuntimeError(f"Failed to generate daily report: {e}") from e

    predictions = predict_targets(targets, start)
    wellness = wellness_metrics(recent_attendance)
    hours_worked = round(attendance["totalWorkMinutes"] / 60, 1)

    return {
        "metadata": {
            "reportType": ReportType.USER_DAILY.value,
            "userId": user_id,
            "userName": user_name,
            "date": report_date,
            "generatedAt": generated_at,
            "isWorkingDay": True,
            "organizationName": user.get("organisation_name") or "Unknown Organization",
            "organizationId": organisation_id,
            "timezone": tz.key,
        },
        "summary": {
            "hoursWorked": hours_worked,
            "tasksCompleted": tasks["completedCount"],
            "newLeads": leads["newLeadsCount"],
            "clientInteractions": clients["totalInteractions"],
            "totalEntries": journals["count"],
            "totalQuotations": quotations["totalQuotations"],
            "totalRevenue": quotations["totalRevenueFormatted"],
            "totalClaims": claims["count"],
            "xpEarned": reward["dailyXPEarned"],
            "currentLevel": reward["currentLevel"],
            "currentRank": reward["currentRank"],
        },
        "details": {
            "attendance": attendance,
            "tasks": tasks,
            "leads": leads,
            "journal": journals,
            "clients": clients,
            "location": location,
            "quotations": quotations,
            "claims": claims,
            "rewards": reward,
            "targets": targets,
            "performance": performance,
            "productivity": productivity,
            "weeklyComparison": weekly,
            "predictions": predictions,
            "wellness": wellness,
        },
        "emailData": _email_data(
            user, report_date, attendance, quotations, previous_quotations, clients, previous_clients,
            leads, claims, tasks, reward, targets, performance, productivity, weekly, predictions,
            wellness, location,
        ),
    }
