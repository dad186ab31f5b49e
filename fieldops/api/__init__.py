"""
HTTP routers for the fieldops backend.

- check_ins: client visit check-in and check-out
- claims: expense claims and share links
- competitors: competitor records, analytics and map data
- journals: journal entries and inspections
- leads: leads and CSV import
- reports: map data, organisation activity and user daily reports
"""

from fastapi import APIRouter

from fieldops.api.check_ins import router as check_ins_router
from fieldops.api.claims import router as claims_router
from fieldops.api.competitors import router as competitors_router
from fieldops.api.journals import router as journals_router
from fieldops.api.leads import router as leads_router
from fieldops.api.reports import router as reports_router

api_router = APIRouter()

api_router.include_router(check_ins_router, prefix="/check-ins", tags=["check-ins"])
api_router.include_router(claims_router, prefix="/claims", tags=["claims"])
api_router.include_router(competitors_router, prefix="/competitors", tags=["competitors"])
api_router.include_router(journals_router, prefix="/journal", tags=["journal"])
api_router.include_router(leads_router, prefix="/leads", tags=["leads"])
api_router.include_router(reports_router, prefix="/reports", tags=["reports"])

__all__ = [
    "api_router",
    "check_ins_router",
    "claims_router",
    "competitors_router",
    "journals_router",
    "leads_router",
    "reports_router",
]
