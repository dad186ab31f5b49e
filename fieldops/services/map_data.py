"""
Map Data Report Generator

Builds the live operations map for an organisation: every located entity
becomes a marker, recent activity becomes a timeline of events, and active
workers' GPS tracks are analysed for stops and route savings.

Pipeline:
    1. Validate the organisation (exists, active) and optional branch.
    2. Fetch attendance, clients, competitors, quotations, leads, journals,
       check-ins, tasks and claims concurrently with ``asyncio.gather``.
    3. Build markers; coordinates are reverse-geocoded through the shared
       geocoding cache where the source has no address of its own.
    4. Build the events timeline (latest 20), the map config and, when
       requested, GPS analysis and route optimisation per active worker.

Marker types:
    check-in (active worker), shift-start, shift-end, break-start, break-end,
    client, competitor, lead, journal, check-in-visit, task, quotation, claim

Errors are mapped onto HTTP statuses:
    - 403 "Access denied: ..." for missing or foreign organisations/branches
    - 400 "Bad request: ..." for invalid ids or inactive organisations
    - 500 "Failed to generate map data. Please try again later." otherwise

Results are cached under ``mapdata:org{org}_{branch|all}_{user|all}``.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
from fastapi import HTTPException

from fieldops.core.cache import get_cache
from fieldops.core.config import get_settings
from fieldops.core.database import execute_query, execute_query_one
from fieldops.models.enums import AttendanceStatus, GeneralStatus, MarkerType
from fieldops.models.schemas import serialize_record
from fieldops.services.geocoding import reverse_geocode
from fieldops.services.location import analyze_tracking, optimize_route
from fieldops.sql import competitor_queries, report_queries
from fieldops.sql.common import GET_BRANCH_IN_ORGANISATION, GET_ORGANISATION

logger = logging.getLogger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

CACHE_PREFIX = "mapdata:"

DEFAULT_CENTER: Dict[str, float] = {"lat": -26.2041, "lng": 28.0473}

MAX_EVENTS: int = 20
EVENTS_PER_SOURCE: int = 10
RECENT_CHECK_IN_EVENTS: int = 10
RECENT_ATTENDANCE_EVENTS: int = 50

GPS_STOP_RADIUS_METERS: float = 100.0
GPS_MIN_STOP_MINUTES: float = 5.0
TOP_STOPS: int = 3

MARKER_GROUPS: Dict[str, str] = {
    "workers": MarkerType.CHECK_IN.value,
    "clients": MarkerType.CLIENT.value,
    "competitors": MarkerType.COMPETITOR.value,
    "quotations": MarkerType.QUOTATION.value,
    "leads": MarkerType.LEAD.value,
    "journals": MarkerType.JOURNAL.value,
    "tasks": MarkerType.TASK.value,
    "checkIns": MarkerType.CHECK_IN_VISIT.value,
    "shiftStarts": MarkerType.SHIFT_START.value,
    "shiftEnds": MarkerType.SHIFT_END.value,
    "breakStarts": MarkerType.BREAK_START.value,
    "breakEnds": MarkerType.BREAK_END.value,
    "claims": MarkerType.CLAIM.value,
}

ACCESS_DENIED_HINTS = ("not found", "access denied", "does not belong")
BAD_REQUEST_HINTS = ("Invalid", "not active")


def map_data_cache_key(organisation_id: int, branch_id: Optional[int], user_id: Optional[int]) -> str:
    return f"{CACHE_PREFIX}org{organisation_id}_{branch_id or 'all'}_{user_id or 'all'}"


# =============================================================================
# Formatting helpers
# =============================================================================

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _located(lat: Any, lng: Any) -> bool:
    return lat is not None and lng is not None and (float(lat) != 0 or float(lng) != 0)


def _position(lat: Any, lng: Any) -> Dict[str, Any]:
    lat, lng = float(lat), float(lng)
    return {"position": [lat, lng], "latitude": lat, "longitude": lng}


def format_event_time(moment: datetime, now: Optional[datetime] = None) -> str:
    """
    Relative time for the events timeline.

    >>> now = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
    >>> format_event_time(now - timedelta(minutes=25), now)
    '25 minutes ago'
    >>> format_event_time(now - timedelta(hours=3), now)
    '3 hours ago'
    """
    now = now or datetime.now(timezone.utc)
    hours = (now - moment).total_seconds() / 3600
    if hours < 1:
        return f"{int(hours * 60)} minutes ago"
    if hours < 24:
        whole = int(hours)
        return f"{whole} hour{'s' if whole > 1 else ''} ago"
    days = int(hours // 24)
    if days == 1:
        return f"Yesterday, {moment:%H:%M}"
    return f"{days} days ago"


def worker_status_display(status: Optional[str]) -> str:
    if status == AttendanceStatus.PRESENT.value:
        return "Work in progress"
    if status == AttendanceStatus.ON_BREAK.value:
        return "On break"
    return status or "Unknown"


def format_working_hours(check_in: Optional[datetime], now: Optional[datetime] = None) -> str:
    if not check_in:
        return "Unknown"
    now = now or datetime.now(timezone.utc)
    minutes = int((now - check_in).total_seconds() // 60)
    return f"{check_in:%H:%M} - Present ({minutes // 60}h {minutes % 60}m)"


def _owner(row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    if not row.get("owner_uid"):
        return None
    return {
        "uid": row["owner_uid"],
        "name": row.get("owner_name"),
        "phone": row.get("owner_phone"),
        "photoURL": row.get("owner_photo_url"),
    }


def _branch(row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    if not row.get("branch_uid"):
        return None
    return {"uid": row["branch_uid"], "name": row.get("branch_name")}


def _client_ref(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _first_task_client(task: Dict[str, Any]) -> Optional[int]:
    clients = task.get("clients") or []
    if clients and isinstance(clients[0], dict):
        return _client_ref(clients[0].get("uid"))
    return None


# =============================================================================
# Validation and data access
# =============================================================================

async def _validate_scope(organisation_id: int, branch_id: Optional[int]) -> Dict[str, Any]:
    if not organisation_id or organisation_id <= 0:
        raise ValueError("Invalid organisation ID provided")
    if branch_id is not None and branch_id <= 0:
        raise ValueError("Invalid branch ID provided")

    organisation = await execute_query_one(GET_ORGANISATION, organisation_id)
    if not organisation:
        raise ValueError("Organisation not found or access denied")
    if organisation["status"] != GeneralStatus.ACTIVE.value:
        raise ValueError("Organisation is not active")

    if branch_id:
        branch = await execute_query_one(GET_BRANCH_IN_ORGANISATION, branch_id, organisation_id)
        if not branch:
            raise ValueError("Branch not found or does not belong to the specified organisation")

    return dict(organisation)


async def _fetch(builder: Tuple[str, List[Any]]) -> List[Dict[str, Any]]:
    sql, args = builder
    return [dict(row) for row in await execute_query(sql, *args)]


async def _fetch_sources(
    organisation_id: int,
    branch_id: Optional[int],
    user_id: Optional[int],
) -> Dict[str, List[Dict[str, Any]]]:
    names = [
        "activeAttendance", "recentAttendance", "clients", "competitors", "quotations",
        "leads", "journals", "checkIns", "tasks", "claims",
    ]
    results = await asyncio.gather(
        _fetch(report_queries.map_active_attendance_query(organisation_id, branch_id, user_id)),
        _fetch(report_queries.map_recent_attendance_query(organisation_id, branch_id, user_id)),
        _fetch(report_queries.map_clients_query(organisation_id, branch_id)),
        _fetch(competitor_queries.all_competitors_query(organisation_id, branch_id, with_coordinates=True)),
        _fetch(report_queries.map_quotations_query(organisation_id, branch_id, user_id)),
        _fetch(report_queries.map_leads_query(organisation_id, branch_id, user_id)),
        _fetch(report_queries.map_journals_query(organisation_id, branch_id, user_id)),
        _fetch(report_queries.map_check_ins_query(organisation_id, branch_id, user_id)),
        _fetch(report_queries.map_tasks_query(organisation_id, branch_id, user_id)),
        _fetch(report_queries.map_claims_query(organisation_id, branch_id, user_id)),
    )
    return dict(zip(names, results))


async def _client_locations(client_ids: Sequence[int]) -> Dict[int, Dict[str, Any]]:
    if not client_ids:
        return {}
    rows = await _fetch(report_queries.client_locations_query(sorted(set(client_ids))))
    return {row["uid"]: row for row in rows if _located(row.get("latitude"), row.get("longitude"))}


async def _owner_locations(owner_ids: Sequence[int]) -> Dict[int, Dict[str, Any]]:
    if not owner_ids:
        return {}
    rows = await _fetch(report_queries.latest_attendance_locations_query(sorted(set(owner_ids))))
    return {row["owner_uid"]: row for row in rows}


# =============================================================================
# Marker builders
# =============================================================================

async def _geocode(
    client: httpx.AsyncClient,
    lat: Any,
    lng: Any,
    fallback: str,
) -> str:
    if not _located(lat, lng):
        return fallback
    return await reverse_geocode(float(lat), float(lng), client=client, fallback=fallback)


async def build_worker_markers(
    active: List[Dict[str, Any]],
    client: httpx.AsyncClient,
) -> List[Dict[str, Any]]:
    located = [a for a in active if _located(a.get("check_in_latitude"), a.get("check_in_longitude"))]
    addresses = await asyncio.gather(*[
        _geocode(client, a["check_in_latitude"], a["check_in_longitude"],
                 a.get("check_in_notes") or "Unknown Location")
        for a in located
    ])
    markers = []
    for a, address in zip(located, addresses):
        markers.append({
            "id": f"attendance-{a['uid']}",
            "name": a.get("owner_name") or "Unknown Worker",
            **_position(a["check_in_latitude"], a["check_in_longitude"]),
            "markerType": MarkerType.CHECK_IN.value,
            "status": worker_status_display(a.get("status")),
            "checkInTime": _iso(a.get("check_in")),
            "checkOutTime": _iso(a.get("check_out")),
            "duration": a.get("duration"),
            "image": a.get("owner_photo_url"),
            "phone": a.get("owner_phone"),
            "location": {"address": address, "imageUrl": None},
            "schedule": {"current": format_working_hours(a.get("check_in")), "next": "TBD"},
            "canAddTask": True,
            "activity": {"claims": 0, "journals": 0, "leads": 0, "checkIns": 1, "tasks": 0, "quotations": 0},
            "attendanceData": {
                "uid": a["uid"],
                "status": a.get("status"),
                "checkInNotes": a.get("check_in_notes"),
                "breakStartTime": _iso(a.get("break_start_time")),
                "breakEndTime": _iso(a.get("break_end_time")),
                "totalBreakTime": a.get("total_break_time"),
                "breakCount": a.get("break_count"),
                "branch": _branch(a),
            },
            "owner": _owner(a),
        })
    return markers


async def build_shift_markers(
    recent: List[Dict[str, Any]],
    since: datetime,
    client: httpx.AsyncClient,
) -> Dict[str, List[Dict[str, Any]]]:
    """Shift start/end and break start/end markers from recent attendance."""
    specs = []
    for a in recent:
        if (_located(a.get("check_in_latitude"), a.get("check_in_longitude"))
                and a.get("check_in") and a["check_in"] >= since and not a.get("check_out")):
            specs.append((MarkerType.SHIFT_START, a, "check_in_latitude", "check_in_longitude",
                          a.get("check_in_notes") or "Shift Start Location",
                          "Shift Start", "Shift Started", a.get("check_in")))
        if _located(a.get("check_out_latitude"), a.get("check_out_longitude")) and a.get("check_out"):
            specs.append((MarkerType.SHIFT_END, a, "check_out_latitude", "check_out_longitude",
                          a.get("check_out_notes") or "Shift End Location",
                          "Shift End", "Shift Ended", a.get("check_out")))
        on_break_location = _located(a.get("break_latitude"), a.get("break_longitude"))
        if on_break_location and a.get("break_start_time") and not a.get("break_end_time"):
            specs.append((MarkerType.BREAK_START, a, "break_latitude", "break_longitude",
                          a.get("break_notes") or "Break Location",
                          "Break Start", "On Break", a.get("break_start_time")))
        if on_break_location and a.get("break_end_time"):
            specs.append((MarkerType.BREAK_END, a, "break_latitude", "break_longitude",
                          a.get("break_notes") or "Break End Location",
                          "Break End", "Break Ended", a.get("break_end_time")))

    addresses = await asyncio.gather(*[
        _geocode(client, a[lat_key], a[lng_key], fallback)
        for _, a, lat_key, lng_key, fallback, _, _, _ in specs
    ])

    grouped: Dict[str, List[Dict[str, Any]]] = {
        MarkerType.SHIFT_START.value: [],
        MarkerType.SHIFT_END.value: [],
        MarkerType.BREAK_START.value: [],
        MarkerType.BREAK_END.value: [],
    }
    for (marker_type, a, lat_key, lng_key, _, label, status, moment), address in zip(specs, addresses):
        grouped[marker_type.value].append({
            "id": f"{marker_type.value}-{a['uid']}",
            "name": f"{a.get('owner_name') or 'Unknown'} - {label}",
            **_position(a[lat_key], a[lng_key]),
            "markerType": marker_type.value,
            "status": status,
            "timestamp": _iso(moment),
            "duration": a.get("duration"),
            "totalBreakTime": a.get("total_break_time"),
            "image": a.get("owner_photo_url"),
            "phone": a.get("owner_phone"),
            "location": {"address": address, "imageUrl": None},
            "attendanceData": {
                "uid": a["uid"],
                "status": a.get("status"),
                "checkInTime": _iso(a.get("check_in")),
                "checkOutTime": _iso(a.get("check_out")),
                "breakCount": a.get("break_count"),
                "branch": _branch(a),
            },
            "owner": _owner(a),
        })
    return grouped


def _geofencing(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "enabled": row.get("enable_geofence"),
        "type": row.get("geofence_type"),
        "radius": row.get("geofence_radius"),
    }


def build_client_markers(clients: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    markers = []
    for c in clients:
        if not _located(c.get("latitude"), c.get("longitude")):
            continue
        markers.append({
            "id": c["uid"],
            "name": c.get("name"),
            **_position(c["latitude"], c["longitude"]),
            "address": c.get("address"),
            "clientRef": str(c["uid"]),
            "status": c.get("status") or "active",
            "markerType": MarkerType.CLIENT.value,
            "contactName": c.get("contact_person"),
            "phone": c.get("phone"),
            "email": c.get("email"),
            "website": c.get("website"),
            "logoUrl": c.get("logo"),
            "industry": c.get("industry"),
            "geofencing": _geofencing(c),
            "createdAt": _iso(c.get("created_at")),
            "updatedAt": _iso(c.get("updated_at")),
        })
    return markers


def build_competitor_markers(competitors: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    markers = []
    for c in competitors:
        if not _located(c.get("latitude"), c.get("longitude")):
            continue
        markers.append({
            "id": c["uid"],
            "name": c.get("name"),
            **_position(c["latitude"], c["longitude"]),
            "address": c.get("address"),
            "industry": c.get("industry"),
            "competitorRef": c.get("competitor_ref") or str(c["uid"]),
            "status": c.get("status") or "active",
            "markerType": MarkerType.COMPETITOR.value,
            "website": c.get("website"),
            "logoUrl": c.get("logo_url"),
            "threatLevel": c.get("threat_level"),
            "isDirect": c.get("is_direct"),
            "geofencing": _geofencing(c),
            "createdBy": {"uid": c["created_by_uid"], "name": c.get("created_by_name")}
            if c.get("created_by_uid") else None,
        })
    return markers


def build_lead_markers(leads: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    markers = []
    for lead in leads:
        if not _located(lead.get("latitude"), lead.get("longitude")):
            continue
        markers.append({
            "id": f"lead-{lead['uid']}",
            "name": lead.get("company_name") or lead.get("name") or "Unknown Lead",
            **_position(lead["latitude"], lead["longitude"]),
            "markerType": MarkerType.LEAD.value,
            "status": lead.get("status") or "PENDING",
            "timestamp": _iso(lead.get("created_at")),
            "leadData": serialize_record({
                key: value for key, value in lead.items()
                if key not in ("owner_name", "owner_surname")
            }),
            "location": {"address": lead.get("notes") or "Lead Location", "imageUrl": lead.get("image")},
            "owner": {"uid": lead["owner_uid"], "name": lead.get("owner_name")} if lead.get("owner_uid") else None,
        })
    return markers


def build_journal_markers(
    journals: List[Dict[str, Any]],
    client_locations: Dict[int, Dict[str, Any]],
) -> List[Dict[str, Any]]:
    markers = []
    for journal in journals:
        location = client_locations.get(_client_ref(journal.get("client_ref")))
        if not location:
            continue
        markers.append({
            "id": f"journal-{journal['uid']}",
            "name": f"Journal - {location['name']}",
            **_position(location["latitude"], location["longitude"]),
            "markerType": MarkerType.JOURNAL.value,
            "status": journal.get("status") or "PENDING_REVIEW",
            "timestamp": _iso(journal.get("created_at")),
            "location": {"address": location.get("address") or "Client Location", "imageUrl": None},
            "journalData": {
                "uid": journal["uid"],
                "clientRef": journal.get("client_ref"),
                "fileURL": journal.get("file_url"),
                "comments": journal.get("comments"),
                "status": journal.get("status"),
                "createdAt": _iso(journal.get("created_at")),
            },
            "owner": {"uid": journal["owner_uid"], "name": journal.get("owner_name")}
            if journal.get("owner_uid") else None,
            "clientName": location["name"],
        })
    return markers


def build_check_in_markers(check_ins: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    markers = []
    for check_in in check_ins:
        if not _located(check_in.get("client_latitude"), check_in.get("client_longitude")):
            continue
        markers.append({
            "id": f"checkin-{check_in['uid']}",
            "name": f"Check-in - {check_in.get('client_name') or 'Site Visit'}",
            **_position(check_in["client_latitude"], check_in["client_longitude"]),
            "markerType": MarkerType.CHECK_IN_VISIT.value,
            "status": "Completed" if check_in.get("check_out_time") else "In Progress",
            "timestamp": _iso(check_in.get("check_in_time")),
            "location": {
                "address": check_in.get("check_in_location") or "Check-in Location",
                "imageUrl": check_in.get("check_in_photo"),
            },
            "checkInData": {
                "uid": check_in["uid"],
                "checkInTime": _iso(check_in.get("check_in_time")),
                "checkOutTime": _iso(check_in.get("check_out_time")),
                "duration": check_in.get("duration"),
                "checkInLocation": check_in.get("check_in_location"),
                "checkOutLocation": check_in.get("check_out_location"),
            },
            "owner": {"uid": check_in["owner_uid"], "name": check_in.get("owner_name")}
            if check_in.get("owner_uid") else None,
            "client": {"uid": check_in["client_uid"], "name": check_in.get("client_name")}
            if check_in.get("client_uid") else None,
        })
    return markers


def build_task_markers(
    tasks: List[Dict[str, Any]],
    client_locations: Dict[int, Dict[str, Any]],
) -> List[Dict[str, Any]]:
    markers = []
    for task in tasks:
        location = client_locations.get(_first_task_client(task))
        if not location:
            continue
        markers.append({
            "id": f"task-{task['uid']}",
            "name": f"Task - {task.get('title')}",
            **_position(location["latitude"], location["longitude"]),
            "markerType": MarkerType.TASK.value,
            "status": task.get("status") or "PENDING",
            "timestamp": _iso(task.get("updated_at")),
            "location": {"address": location.get("address") or "Task Location", "imageUrl": None},
            "taskData": serialize_record(task),
            "client": {"uid": location["uid"], "name": location["name"]},
        })
    return markers


def build_quotation_markers(quotations: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    markers = []
    for q in quotations:
        if not _located(q.get("client_latitude"), q.get("client_longitude")):
            continue
        markers.append({
            "id": q["uid"],
            "quotationNumber": q.get("quotation_number") or str(q["uid"]),
            "clientName": q.get("client_name"),
            **_position(q["client_latitude"], q["client_longitude"]),
            "totalAmount": float(q["total_amount"]) if q.get("total_amount") is not None else None,
            "status": q.get("status"),
            "quotationDate": _iso(q.get("created_at")),
            "validUntil": _iso(q.get("expiry_date")),
            "markerType": MarkerType.QUOTATION.value,
            "placedBy": "System",
            "isConverted": False,
        })
    return markers


async def build_claim_markers(
    claims: List[Dict[str, Any]],
    owner_locations: Dict[int, Dict[str, Any]],
    client: httpx.AsyncClient,
) -> List[Dict[str, Any]]:
    located = [(claim, owner_locations[claim["owner_uid"]])
               for claim in claims if claim.get("owner_uid") in owner_locations]
    addresses = await asyncio.gather(*[
        _geocode(client, loc["check_in_latitude"], loc["check_in_longitude"], "Claim Location")
        for _, loc in located
    ])
    markers = []
    for (claim, loc), address in zip(located, addresses):
        amount = float(claim["amount"]) if claim.get("amount") is not None else None
        markers.append({
            "id": f"claim-{claim['uid']}",
            "name": f"Claim - {claim.get('claim_ref') or claim['uid']}",
            **_position(loc["check_in_latitude"], loc["check_in_longitude"]),
            "markerType": MarkerType.CLAIM.value,
            "status": claim.get("status"),
            "amount": amount,
            "location": {"address": address},
            "claimData": {
                "uid": claim["uid"],
                "claimRef": claim.get("claim_ref"),
                "amount": amount,
                "status": claim.get("status"),
                "category": claim.get("category"),
                "currency": claim.get("currency"),
                "createdAt": _iso(claim.get("created_at")),
            },
            "owner": {"uid": claim["owner_uid"], "name": claim.get("owner_name")},
        })
    return markers


# =============================================================================
# Events timeline
# =============================================================================

def _event(
    event_id: str,
    event_type: str,
    title: str,
    moment: Optional[datetime],
    user: Optional[str],
    lat: Any,
    lng: Any,
    address: str,
    details: str,
    now: datetime,
) -> Dict[str, Any]:
    moment = moment or now
    user = user or "Unknown User"
    return {
        "id": event_id,
        "type": event_type,
        "title": title,
        "time": format_event_time(moment, now),
        "timestamp": moment.isoformat(),
        "user": user,
        "userName": user,
        "location": {"lat": float(lat), "lng": float(lng), "address": address},
        "details": details,
    }


def build_events(
    sources: Dict[str, List[Dict[str, Any]]],
    client_locations: Dict[int, Dict[str, Any]],
    since: datetime,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """Latest activity across check-ins, tasks, journals, leads and shifts, newest first."""
    now = now or datetime.now(timezone.utc)
    events: List[Dict[str, Any]] = []

    for c in sources["checkIns"][:RECENT_CHECK_IN_EVENTS]:
        if _located(c.get("client_latitude"), c.get("client_longitude")):
            place = c.get("client_name")
            events.append(_event(
                f"checkin-{c['uid']}", "check-in", f"Check-in at {place or 'Location'}",
                c.get("check_in_time"), c.get("owner_name"),
                c["client_latitude"], c["client_longitude"],
                c.get("check_in_location") or c.get("client_address") or "Unknown Location",
                f"Check-in recorded at {place or 'client location'}", now,
            ))

    recent_tasks = [t for t in sources["tasks"] if t.get("updated_at") and t["updated_at"] >= since]
    for task in recent_tasks[:EVENTS_PER_SOURCE]:
        location = client_locations.get(_first_task_client(task))
        if not location:
            continue
        assignees = task.get("assignees") or []
        if not assignees:
            assignee = "Unassigned"
        elif len(assignees) == 1:
            assignee = f"Assignee (ID: {assignees[0].get('uid')})"
        else:
            assignee = f"{len(assignees)} assignees"
        events.append(_event(
            f"task-{task['uid']}", "task", task.get("title") or "Task Activity",
            task["updated_at"], assignee, location["latitude"], location["longitude"],
            location.get("address") or "Client Location",
            task.get("description") or "Task activity", now,
        ))

    recent_journals = [j for j in sources["journals"] if j.get("created_at") and j["created_at"] >= since]
    for journal in recent_journals[:EVENTS_PER_SOURCE]:
        location = client_locations.get(_client_ref(journal.get("client_ref")))
        if not location:
            continue
        events.append(_event(
            f"journal-{journal['uid']}", "journal", f"Journal Entry #{journal['uid']}",
            journal["created_at"], journal.get("owner_name"),
            location["latitude"], location["longitude"],
            location.get("address") or "Client Location",
            (journal.get("comments") or "")[:100] or "Journal entry created", now,
        ))

    recent_leads = [lead for lead in sources["leads"] if lead.get("created_at") and lead["created_at"] >= since]
    for lead in recent_leads[:EVENTS_PER_SOURCE]:
        if not _located(lead.get("latitude"), lead.get("longitude")):
            continue
        label = lead.get("company_name") or lead.get("name")
        events.append(_event(
            f"lead-{lead['uid']}", "lead", f"New Lead: {label or 'Prospect'}",
            lead["created_at"], lead.get("owner_name"), lead["latitude"], lead["longitude"],
            lead.get("notes") or "Lead Location", f"New lead captured: {label}", now,
        ))

    shifts = [a for a in sources["recentAttendance"] if a.get("check_in") and a["check_in"] >= since]
    for a in shifts[:RECENT_ATTENDANCE_EVENTS]:
        worker = a.get("owner_name") or "Worker"
        if _located(a.get("check_in_latitude"), a.get("check_in_longitude")):
            events.append(_event(
                f"shift-start-{a['uid']}", "shift-start", f"Shift Started - {worker}",
                a["check_in"], a.get("owner_name"), a["check_in_latitude"], a["check_in_longitude"],
                a.get("check_in_notes") or "Shift Start Location",
                f"Shift started at {a.get('check_in_notes') or 'location'}", now,
            ))
        if a.get("check_out") and _located(a.get("check_out_latitude"), a.get("check_out_longitude")):
            events.append(_event(
                f"shift-end-{a['uid']}", "shift-end", f"Shift Ended - {worker}",
                a["check_out"], a.get("owner_name"), a["check_out_latitude"], a["check_out_longitude"],
                a.get("check_out_notes") or "Shift End Location",
                f"Shift ended at {a.get('check_out_notes') or 'location'}", now,
            ))

    events.sort(key=lambda event: event["timestamp"], reverse=True)
    return events[:MAX_EVENTS]


def default_center(
    workers: List[Dict[str, Any]],
    clients: List[Dict[str, Any]],
    all_markers: List[Dict[str, Any]],
) -> Dict[str, float]:
    for group in (workers, clients, all_markers):
        if group:
            return {"lat": group[0]["latitude"], "lng": group[0]["longitude"]}
    return dict(DEFAULT_CENTER)


# =============================================================================
# GPS analysis
# =============================================================================

async def _analyse_worker(
    worker: Dict[str, Any],
    start: datetime,
    end: datetime,
    include_gps_analysis: bool,
    include_route_optimization: bool,
) -> Optional[Dict[str, Any]]:
    owner_id = worker["owner_uid"]
    points = [
        dict(row)
        for row in await execute_query(report_queries.USER_TRACKING_BETWEEN, owner_id, start, end)
    ]
    if len(points) < 2:
        return None

    analysis = analyze_tracking(points, GPS_STOP_RADIUS_METERS, GPS_MIN_STOP_MINUTES)
    route = None
    if include_route_optimization:
        route = optimize_route(analysis["stops"], analysis["tripSummary"]["totalDistanceKm"])

    if not include_gps_analysis and route is None:
        return None
    return {
        "workerId": owner_id,
        "workerName": worker.get("owner_name"),
        "analysis": analysis if include_gps_analysis else None,
        "routes": route,
    }


async def analyse_workers(
    active: List[Dict[str, Any]],
    analysis_date: datetime,
    include_gps_analysis: bool,
    include_route_optimization: bool,
) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """
    GPS analysis and route optimisation across active workers.

    A failing worker is logged and skipped.

    Returns:
        ``(gps_analysis, route_optimizations)``; either is ``{}`` when there
        is nothing to report.
    """
    workers = [a for a in active if a.get("owner_uid")]
    if not workers:
        return {}, {}

    start = analysis_date.replace(hour=0, minute=0, second=0, microsecond=0)
    end = start + timedelta(days=1)
    outcomes = await asyncio.gather(
        *[
            _analyse_worker(worker, start, end, include_gps_analysis, include_route_optimization)
            for worker in workers
        ],
        return_exceptions=True,
    )

    results = []
    for worker, outcome in zip(workers, outcomes):
        if isinstance(outcome, Exception):
            logger.warning(f"GPS analysis failed for worker {worker['owner_uid']}: {outcome}")
        elif outcome:
            results.append(outcome)
    if not results:
        return {}, {}

    gps_analysis: Dict[str, Any] = {}
    analysed = [r for r in results if r["analysis"]]
    if analysed:
        summaries = [r["analysis"]["tripSummary"] for r in analysed]
        total_stops = sum(s["numberOfStops"] for s in summaries)
        gps_analysis = {
            "totalWorkersAnalyzed": len(analysed),
            "totalDistanceCovered": round(sum(s["totalDistanceKm"] for s in summaries), 2),
            "totalStopsDetected": total_stops,
            "averageStopsPerWorker": round(total_stops / len(analysed), 1),
            "averageSpeedKmh": round(sum(s["averageSpeedKmh"] for s in summaries) / len(analysed), 1),
            "maxSpeedRecorded": max(s["maxSpeedKmh"] for s in summaries),
            "workersData": [
                {
                    "workerId": r["workerId"],
                    "workerName": r["workerName"],
                    "tripSummary": r["analysis"]["tripSummary"],
                    "stopsCount": len(r["analysis"]["stops"]),
                    "topStops": r["analysis"]["stops"][:TOP_STOPS],
                }
                for r in analysed
            ],
        }

    route_optimizations: Dict[str, Any] = {}
    routed = [r for r in results if r["routes"]]
    if routed:
        total_saving = sum(r["routes"]["potentialSaving"] for r in routed)
        route_optimizations = {
            "totalWorkersOptimized": len(routed),
            "totalPotentialSaving": round(total_saving, 2),
            "averagePotentialSaving": round(total_saving / len(routed), 2),
            "workersWithOptimizations": [
                {"workerId": r["workerId"], "workerName": r["workerName"], "optimization": r["routes"]}
                for r in routed
            ],
        }

    return gps_analysis, route_optimizations


# =============================================================================
# Entry point
# =============================================================================

def _raise_mapped(error: Exception) -> None:
    message = str(error)
    if any(hint in message for hint in ACCESS_DENIED_HINTS):
        raise HTTPException(status_code=403, detail=f"Access denied: {message}")
    if any(hint in message for hint in BAD_REQUEST_HINTS):
        raise HTTPException(status_code=400, detail=f"Bad request: {message}")
    raise HTTPException(status_code=500, detail="Failed to generate map data. Please try again later.")


async def generate(
    organisation_id: int,
    branch_id: Optional[int] = None,
    user_id: Optional[int] = None,
    include_gps_analysis: bool = True,
    include_route_optimization: bool = True,
    gps_analysis_date: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Generate the map payload for an organisation (optionally one branch/user).

    Raises:
        HTTPException: 403, 400 or 500 as described in the module docstring.
    """
    cache = get_cache()
    cache_key = map_data_cache_key(organisation_id, branch_id, user_id)
    cached = await cache.get(cache_key)
    if cached is not None:
        logger.debug(f"Cache hit for map data: {cache_key}")
        return cached

    started = time.monotonic()
    logger.info(
        f"Generating map data for organisation {organisation_id}"
        f" branch={branch_id or 'all'} user={user_id or 'all'}"
    )

    try:
        await _validate_scope(organisation_id, branch_id)

        now = datetime.now(timezone.utc)
        yesterday_start = (now - timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)

        sources = await _fetch_sources(organisation_id, branch_id, user_id)

        client_ids = [
            ref for ref in (
                [_client_ref(j.get("client_ref")) for j in sources["journals"]]
                + [_first_task_client(t) for t in sources["tasks"]]
            ) if ref is not None
        ]
        client_locations, owner_locations = await asyncio.gather(
            _client_locations(client_ids),
            _owner_locations([c["owner_uid"] for c in sources["claims"] if c.get("owner_uid")]),
        )

        async with httpx.AsyncClient(timeout=get_settings().geocode_timeout_seconds) as http_client:
            workers = await build_worker_markers(sources["activeAttendance"], http_client)
            shift_markers = await build_shift_markers(sources["recentAttendance"], yesterday_start, http_client)
            claim_markers = await build_claim_markers(sources["claims"], owner_locations, http_client)

        client_markers = build_client_markers(sources["clients"])
        all_markers: List[Dict[str, Any]] = (
            workers
            + shift_markers[MarkerType.SHIFT_START.value]
            + shift_markers[MarkerType.SHIFT_END.value]
            + shift_markers[MarkerType.BREAK_START.value]
            + shift_markers[MarkerType.BREAK_END.value]
            + client_markers
            + build_lead_markers(sources["leads"])
            + build_competitor_markers(sources["competitors"])
            + build_journal_markers(sources["journals"], client_locations)
            + build_check_in_markers(sources["checkIns"])
            + build_task_markers(sources["tasks"], client_locations)
            + build_quotation_markers(sources["quotations"])
            + claim_markers
        )

        markers_by_type = {
            group: [m for m in all_markers if m["markerType"] == marker_type]
            for group, marker_type in MARKER_GROUPS.items()
        }

        events = build_events(sources, client_locations, yesterday_start, now)

        gps_analysis: Dict[str, Any] = {}
        route_optimizations: Dict[str, Any] = {}
        if include_gps_analysis or include_route_optimization:
            try:
                gps_analysis, route_optimizations = await analyse_workers(
                    sources["activeAttendance"],
                    gps_analysis_date or now,
                    include_gps_analysis,
                    include_route_optimization,
                )
            except Exception as e:
                logger.error(f"GPS analysis failed for organisation {organisation_id}: {e}")

        payload = {
            **markers_by_type,
            "allMarkers": all_markers,
            "events": events,
            "mapConfig": {
                "defaultCenter": default_center(workers, client_markers, all_markers),
                "orgRegions": [],
            },
            "gpsAnalysis": gps_analysis,
            "routeOptimizations": route_optimizations,
            "analytics": {
                "totalMarkers": len(all_markers),
                "markerBreakdown": {group: len(items) for group, items in markers_by_type.items()},
                "gpsInsights": gps_analysis,
                "routeInsights": route_optimizations,
            },
        }
    except Exception as e:
        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.error(
            f"Error generating map data for organisation {organisation_id}"
            f"{f' and branch {branch_id}' if branch_id else ''} after {elapsed_ms}ms: {e}",
            exc_info=True,
        )
        _raise_mapped(e)

    elapsed_ms = int((time.monotonic() - started) * 1000)
    logger.info(f"Map data generated in {elapsed_ms}ms: {len(all_markers)} markers, {len(events)} events")
    await cache.set(cache_key, payload)
    return payload
