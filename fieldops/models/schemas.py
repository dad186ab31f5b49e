"""
Pydantic request models and response envelope helpers for the fieldops backend.

Request bodies keep the camelCase field names the mobile and web clients send,
so handlers read ``payload.checkInLocation`` the same way clients write it.
Only fields the services act on are declared; extra keys are tolerated and
ignored.

Response envelopes:
- Single resource: ``{"message": ..., "<resource>": {...}}``
- Lists: ``{"data": [...], "meta": {"total", "page", "limit", "totalPages"},
  "message": ...}``

Database rows come back from asyncpg with snake_case column names;
``serialize_record`` turns them into camelCase dicts with ISO timestamps.
"""

import math
import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from fieldops.models.enums import (
    ClaimCategory,
    ClaimStatus,
    CompetitorStatus,
    Currency,
    GeofenceType,
    JournalStatus,
    JournalType,
    LeadIntent,
    LeadPriority,
    LeadSource,
    LeadStatus,
    LeadTemperature,
)


class RequestModel(BaseModel):
    """Base for request bodies: trims strings and ignores unknown keys."""
    model_config = ConfigDict(str_strip_whitespace=True, extra='ignore')


class EntityRef(RequestModel):
    """Reference to a related row, sent by clients as ``{"uid": 12}``."""
    uid: int


# =============================================================================
# Check-ins
# =============================================================================


class CheckInCreate(RequestModel):
    """
    Body of POST /check-ins and POST /check-ins/client/{client_id}.

    ``checkInLocation`` is a "lat,lng" string; when a client is attached the
    same string becomes the client's GPS coordinates.
    """
    checkInTime: Optional[datetime] = None
    checkInPhoto: Optional[str] = None
    checkInLocation: str
    owner: Optional[EntityRef] = None
    branch: Optional[EntityRef] = None
    client: Optional[EntityRef] = None
    fullAddress: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None

    contactFullName: Optional[str] = None
    contactImage: Optional[str] = None
    contactCellPhone: Optional[str] = None
    contactLandline: Optional[str] = None
    contactAddress: Optional[Dict[str, Any]] = None
    companyName: Optional[str] = None
    businessType: Optional[str] = None
    personSeenPosition: Optional[str] = None
    meetingLink: Optional[str] = None
    salesValue: Optional[float] = None
    quotationNumber: Optional[str] = None
    quotationUid: Optional[int] = None
    methodOfContact: Optional[str] = None
    followUp: Optional[str] = None


class CheckOutCreate(RequestModel):
    """Body of PATCH /check-ins/{reference}."""
    checkOutTime: Optional[datetime] = None
    checkOutPhoto: Optional[str] = None
    checkOutLocation: Optional[str] = None
    owner: Optional[EntityRef] = None
    branch: Optional[EntityRef] = None
    client: Optional[EntityRef] = None
    notes: Optional[str] = None
    resolution: Optional[str] = None


# =============================================================================
# Claims
# =============================================================================


class ClaimCreate(RequestModel):
    amount: Optional[float] = None
    category: ClaimCategory = ClaimCategory.GENERAL
    currency: Currency = Currency.ZAR
    comments: Optional[str] = None
    documentUrl: Optional[str] = None
    # Ignored: the owner always comes from the bearer token.
    owner: Optional[EntityRef] = None


class ClaimUpdate(RequestModel):
    amount: Optional[float] = None
    category: Optional[ClaimCategory] = None
    currency: Optional[Currency] = None
    status: Optional[ClaimStatus] = None
    comment: Optional[str] = None
    comments: Optional[str] = None
    documentUrl: Optional[str] = None


# =============================================================================
# Competitors
# =============================================================================


class AddressPayload(RequestModel):
    street: Optional[str] = None
    suburb: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    postalCode: Optional[str] = None


class CompetitorCreate(RequestModel):
    """
    Body of POST /competitors (and each element of POST /competitors/batch).

    ``name`` and ``address`` are optional here so the service can report the
    exact missing field instead of a generic validation error.
    """
    name: Optional[str] = None
    description: Optional[str] = None
    website: Optional[str] = None
    logoUrl: Optional[str] = None
    contactEmail: Optional[str] = None
    contactPhone: Optional[str] = None
    address: Optional[AddressPayload] = None
    industry: Optional[str] = None
    marketSharePercentage: Optional[float] = None
    estimatedAnnualRevenue: Optional[float] = None
    threatLevel: Optional[int] = Field(default=None, ge=1, le=5)
    competitiveAdvantage: Optional[int] = None
    isDirect: bool = False
    status: CompetitorStatus = CompetitorStatus.ACTIVE
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    enableGeofence: Optional[bool] = None
    geofenceType: Optional[GeofenceType] = None
    geofenceRadius: Optional[int] = None
    socialMedia: Optional[Dict[str, Any]] = None
    pricingData: Optional[Dict[str, Any]] = None
    keyProducts: Optional[List[str]] = None
    keyStrengths: Optional[List[str]] = None
    keyWeaknesses: Optional[List[str]] = None


class CompetitorUpdate(CompetitorCreate):
    isDirect: Optional[bool] = None
    status: Optional[CompetitorStatus] = None


class CompetitorBatchCreate(RequestModel):
    """Body of POST /competitors/batch."""
    competitors: List[CompetitorCreate] = Field(min_length=1)


BULK_COMPETITOR_LIMIT = 50


class CompetitorBulkCreate(RequestModel):
    """
    Body of POST /competitors/bulk.

    ``autoCalculateThreat`` scores items sent without a threat level;
    ``enableGeofencing`` turns geofencing on for items that carry coordinates.
    """
    competitors: List[CompetitorCreate] = Field(min_length=1, max_length=BULK_COMPETITOR_LIMIT)
    autoCalculateThreat: bool = False
    enableGeofencing: bool = False


class CompetitorBulkUpdateItem(RequestModel):
    ref: int
    data: CompetitorUpdate


class CompetitorBulkUpdate(RequestModel):
    """Body of PATCH /competitors/bulk; ``ref`` is the competitor uid."""
    updates: List[CompetitorBulkUpdateItem] = Field(min_length=1, max_length=BULK_COMPETITOR_LIMIT)
    recalculateThreatLevels: bool = False


# =============================================================================
# Journals and inspections
# =============================================================================


class InspectionItemPayload(RequestModel):
    id: str
    name: str
    score: Optional[int] = Field(default=None, ge=1, le=5)
    notes: Optional[str] = None
    required: bool = True


class InspectionCategoryPayload(RequestModel):
    id: str
    name: str
    weight: Optional[float] = None
    items: List[InspectionItemPayload] = []


class InspectionFormPayload(RequestModel):
    categories: List[InspectionCategoryPayload] = []


class JournalCreate(RequestModel):
    clientRef: Optional[str] = None
    fileURL: Optional[str] = None
    comments: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    type: JournalType = JournalType.GENERAL
    status: JournalStatus = JournalStatus.PENDING_REVIEW
    owner: Optional[EntityRef] = None
    inspectionData: Optional[InspectionFormPayload] = None
    inspectorComments: Optional[str] = None
    storeManagerSignature: Optional[str] = None
    qcInspectorSignature: Optional[str] = None
    inspectionDate: Optional[datetime] = None
    inspectionLocation: Optional[str] = None
    attachments: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None


class JournalUpdate(RequestModel):
    clientRef: Optional[str] = None
    fileURL: Optional[str] = None
    comments: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    type: Optional[JournalType] = None
    status: Optional[JournalStatus] = None
    inspectorComments: Optional[str] = None
    attachments: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None


# =============================================================================
# Leads
# =============================================================================


class LeadCreate(RequestModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    companyName: Optional[str] = None
    notes: Optional[str] = None
    image: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    status: LeadStatus = LeadStatus.PENDING
    temperature: Optional[LeadTemperature] = None
    priority: Optional[LeadPriority] = None
    source: Optional[LeadSource] = None
    intent: Optional[LeadIntent] = None
    estimatedValue: Optional[float] = None
    budgetRange: Optional[str] = None
    industry: Optional[str] = None
    jobTitle: Optional[str] = None
    painPoints: Optional[List[str]] = None
    customFields: Optional[Dict[str, Any]] = None
    owner: Optional[EntityRef] = None
    assignees: Optional[List[EntityRef]] = None


class LeadUpdate(RequestModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    companyName: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[LeadStatus] = None
    statusChangeReason: Optional[str] = None
    temperature: Optional[LeadTemperature] = None
    priority: Optional[LeadPriority] = None
    source: Optional[LeadSource] = None
    intent: Optional[LeadIntent] = None
    estimatedValue: Optional[float] = None
    industry: Optional[str] = None
    jobTitle: Optional[str] = None
    painPoints: Optional[List[str]] = None
    customFields: Optional[Dict[str, Any]] = None


# =============================================================================
# Response envelope helpers
# =============================================================================


def to_camel(name: str) -> str:
    """snake_case column name to camelCase key (``check_in_time`` -> ``checkInTime``)."""
    head, *tail = name.split('_')
    return head + ''.join(part[:1].upper() + part[1:] for part in tail)


def to_snake(name: str) -> str:
    """camelCase request field to snake_case column (``fileURL`` -> ``file_url``)."""
    return re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", name).lower()


def _serialize_value(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {key: _serialize_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_serialize_value(item) for item in value]
    return value


def serialize_record(record: Any) -> Optional[Dict[str, Any]]:
    """
    Convert an asyncpg Record (or plain dict) to a camelCase JSON-ready dict.

    Returns None for a missing record so callers can pass lookups straight through.
    """
    if record is None:
        return None
    return {to_camel(key): _serialize_value(value) for key, value in dict(record).items()}


def serialize_records(records: List[Any]) -> List[Dict[str, Any]]:
    return [serialize_record(record) for record in records]


def paginated_response(
    data: List[Any],
    total: int,
    page: int,
    limit: int,
    message: str,
) -> Dict[str, Any]:
    """Build the list envelope: ``totalPages = ceil(total / limit)``."""
    return {
        "data": data,
        "meta": {
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": math.ceil(total / limit) if limit else 0,
        },
        "message": message,
    }
