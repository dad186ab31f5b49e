"""
FastAPI router for generated reports.

Key Endpoints:
- GET /reports/map - Live operations map (markers, events, GPS analysis)
- GET /reports/org-activity - Organisation activity summary for a period
- POST /reports/user-daily/{user_id} - Generate and save a user's daily report
- GET /reports/sales/{dashboard} - Quotation-driven sales dashboards
- DELETE /reports/cache - Drop the organisation's cached reports

The organisation always comes from the bearer token; branch and user scope
may be narrowed with query parameters.
"""

import logging
from datetime import date, datetime, time, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from fieldops.core.security import TenantContext, TenantDep, require_roles
from fieldops.models.enums import AccessLevel, ReportGranularity, ReportType, SalesDashboard
from fieldops.services import reports as report_service

logger = logging.getLogger(__name__)

router = APIRouter()

REPORT_ROLES = (
    AccessLevel.OWNER,
    AccessLevel.ADMIN,
    AccessLevel.MANAGER,
    AccessLevel.SUPERVISOR,
    AccessLevel.DEVELOPER,
    AccessLevel.TECHNICIAN,
)


def _require_org(tenant: TenantContext) -> int:
    if not tenant.org_id:
        raise HTTPException(status_code=400, detail="Organization ID is required")
    return tenant.org_id


@router.get("/map")
async def get_map_data(
    tenant: TenantContext = Depends(require_roles(*REPORT_ROLES)),
    branchId: Optional[int] = Query(None),
    userId: Optional[int] = Query(None),
) -> Dict[str, Any]:
    """Map markers, events and analytics for the caller's organisation."""
    organisation_id = _require_org(tenant)
    try:
        return await report_service.generate_map_data(organisation_id, branchId or tenant.branch_id, userId)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error generating map data for organisation {organisation_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to generate map data. Please try again later.")


@router.get("/org-activity")
async def get_org_activity(
    tenant: TenantContext = Depends(require_roles(*REPORT_ROLES)),
    granularity: ReportGranularity = Query(ReportGranularity.DAILY),
    branchId: Optional[int] = Query(None),
    startDate: Optional[date] = Query(None),
    endDate: Optional[date] = Query(None),
) -> Dict[str, Any]:
    """
    Organisation activity for a period.

    ``startDate``/``endDate`` (inclusive days) override the window implied by
    ``granularity``; both must be given together.
    """
    organisation_id = _require_org(tenant)
    if (startDate is None) != (endDate is None):
        raise HTTPException(status_code=400, detail="startDate and endDate must be provided together")

    date_range = None
    if startDate and endDate:
        if startDate > endDate:
            raise HTTPException(status_code=400, detail="startDate must be before endDate")
        date_range = (
            datetime.combine(startDate, time.min, tzinfo=timezone.utc),
            datetime.combine(endDate, time.max, tzinfo=timezone.utc),
        )

    try:
        return await report_service.generate_org_activity(
            organisation_id, branchId, granularity.value, date_range
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error generating org activity for organisation {organisation_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to generate organisation activity report")


@router.post("/user-daily/{user_id}")
async def generate_user_daily(
    user_id: int,
    tenant: TenantDep,
    reportDate: Optional[date] = Query(None),
) -> Dict[str, Any]:
    """
    Generate and save the daily report for ``user_id``.

    Non-elevated callers may only report on themselves, and the user must
    belong to the caller's organisation. ``reportDate`` is read in the
    organisation's timezone.
    """
    organisation_id = _require_org(tenant)
    if not tenant.is_elevated and user_id != tenant.user_id:
        raise HTTPException(status_code=403, detail="You can only generate your own daily report")

    try:
        report = await report_service.generate_user_daily_report(
            user_id,
            triggered_by_activity=True,
            organisation_id=organisation_id,
            report_day=reportDate,
        )
        return {"message": "Daily report generated", "report": report}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error generating daily report for user {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to generate daily report")


@router.get("/sales/{dashboard}")
async def get_sales_dashboard(
    dashboard: SalesDashboard,
    tenant: TenantContext = Depends(require_roles(*REPORT_ROLES)),
    branchId: Optional[int] = Query(None),
) -> Dict[str, Any]:
    organisation_id = _require_org(tenant)
    return await report_service.generate_sales_dashboard(dashboard, organisation_id, branchId)


@router.delete("/cache")
async def clear_report_cache(
    tenant: TenantContext = Depends(require_roles(AccessLevel.OWNER, AccessLevel.ADMIN, AccessLevel.DEVELOPER)),
    reportType: Optional[ReportType] = Query(None),
) -> Dict[str, Any]:
    """Drop cached reports of the caller's organisation, optionally of one type."""
    organisation_id = _require_org(tenant)
    cleared = await report_service.clear_organisation_report_cache(organisation_id, reportType)
    return {"message": "Report cache cleared", "cleared": cleared}
