"""
Package initialization file for fieldops models.

Re-exports the enumerations and request schemas so other modules can import
them from ``fieldops.models`` directly.

Usage:
    from fieldops.models import ClaimStatus, CompetitorCreate, paginated_response
"""

from fieldops.models.enums import (
    AccessLevel,
    ELEVATED_ACCESS_LEVELS,
    GeneralStatus,
    AttendanceStatus,
    TaskStatus,
    ClaimStatus,
    ClaimCategory,
    Currency,
    CompetitorStatus,
    GeofenceType,
    JournalStatus,
    JournalType,
    InspectionRating,
    LeadStatus,
    LeadTemperature,
    LeadPriority,
    LeadSource,
    LeadIntent,
    LeadLifecycleStage,
    ReportType,
    ReportGranularity,
    MarkerType,
    XPAction,
)

from fieldops.models.schemas import (
    EntityRef,
    CheckInCreate,
    CheckOutCreate,
    ClaimCreate,
    ClaimUpdate,
    AddressPayload,
    CompetitorCreate,
    CompetitorUpdate,
    InspectionItemPayload,
    InspectionCategoryPayload,
    InspectionFormPayload,
    JournalCreate,
    JournalUpdate,
    LeadCreate,
    LeadUpdate,
    to_camel,
    to_snake,
    serialize_record,
    serialize_records,
    paginated_response,
)

__all__ = [
    "AccessLevel",
    "ELEVATED_ACCESS_LEVELS",
    "GeneralStatus",
    "AttendanceStatus",
    "TaskStatus",
    "ClaimStatus",
    "ClaimCategory",
    "Currency",
    "CompetitorStatus",
    "GeofenceType",
    "JournalStatus",
    "JournalType",
    "InspectionRating",
    "LeadStatus",
    "LeadTemperature",
    "LeadPriority",
    "LeadSource",
    "LeadIntent",
    "LeadLifecycleStage",
    "ReportType",
    "ReportGranularity",
    "MarkerType",
    "XPAction",
    "EntityRef",
    "CheckInCreate",
    "CheckOutCreate",
    "ClaimCreate",
    "ClaimUpdate",
    "AddressPayload",
    "CompetitorCreate",
    "CompetitorUpdate",
    "InspectionItemPayload",
    "InspectionCategoryPayload",
    "InspectionFormPayload",
    "JournalCreate",
    "JournalUpdate",
    "LeadCreate",
    "LeadUpdate",
    "to_camel",
    "to_snake",
    "serialize_record",
    "serialize_records",
    "paginated_response",
]
