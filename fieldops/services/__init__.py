"""
Business logic services for the fieldops backend.

Services are stateless module-level functions over the shared asyncpg pool
and TTL cache; routers in ``fieldops.api`` call them and shape nothing
beyond the HTTP layer.

Services:
- check_ins: client visits, check-out, check-in status
- claims: expense claims, share tokens, claim reports
- competitors: competitor records, batch create, analytics, map data
- journals: journal entries and scored inspections
- leads / lead_csv: leads and CSV bulk import with round-robin assignment
- rewards: XP awards and rewards summaries
- geocoding: cached reverse geocoding
- location: GPS stop detection, trip summaries, route optimisation
- report_utils: shared report formatting and collectors
- map_data / org_activity / user_daily: report generators
- reports: report dispatch, caching and persistence
"""

from fieldops.services import (
    report_utils,
    rewards,
    geocoding,
    location,
    check_ins,
    claims,
    competitors,
    journals,
    leads,
    lead_csv,
    map_data,
    org_activity,
    user_daily,
    reports,
)

__all__ = [
    "check_ins",
    "claims",
    "competitors",
    "geocoding",
    "journals",
    "lead_csv",
    "leads",
    "location",
    "map_data",
    "org_activity",
    "report_utils",
    "reports",
    "rewards",
    "user_daily",
]
