"""
Enumeration definitions for the fieldops backend.

All enums inherit from both `str` and `Enum` so they serialize as their plain
values in JSON responses and can be compared directly with database text.
"""

from enum import Enum


# =============================================================================
# Tenancy and access
# =============================================================================

class AccessLevel(str, Enum):
    """
    Caller access level carried in the bearer token.

    Elevated levels (see ELEVATED_ACCESS_LEVELS) see every record in their
    organisation; the others only see records they own.
    """
    OWNER = "owner"
    ADMIN = "admin"
    MANAGER = "manager"
    SUPERVISOR = "supervisor"
    DEVELOPER = "developer"
    TECHNICIAN = "technician"
    USER = "user"


ELEVATED_ACCESS_LEVELS = frozenset({
    AccessLevel.OWNER,
    AccessLevel.ADMIN,
    AccessLevel.MANAGER,
    AccessLevel.DEVELOPER,
    AccessLevel.TECHNICIAN,
})


class GeneralStatus(str, Enum):
    """Lifecycle status shared by organisations, branches and clients."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    DELETED = "deleted"


# =============================================================================
# Attendance and tasks
# =============================================================================

class AttendanceStatus(str, Enum):
    PRESENT = "present"
    ON_BREAK = "on break"
    COMPLETED = "completed"
    ABSENT = "absent"


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    OVERDUE = "OVERDUE"


# =============================================================================
# Claims
# =============================================================================

class ClaimStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"
    CANCELLED = "cancelled"
    DECLINED = "declined"
    DELETED = "deleted"


class ClaimCategory(str, Enum):
    GENERAL = "general"
    TRAVEL = "travel"
    TRANSPORT = "transport"
    ACCOMMODATION = "accommodation"
    MEALS = "meals"
    ENTERTAINMENT = "entertainment"
    HOTEL = "hotel"
    OTHER = "other"
    PROMOTION = "promotion"
    EVENT = "event"
    ANNOUNCEMENT = "announcement"
    TRANSPORTATION = "transportation"
    OTHER_EXPENSES = "other expenses"


class Currency(str, Enum):
    ZAR = "ZAR"
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    AUD = "AUD"
    CAD = "CAD"
    CHF = "CHF"
    JPY = "JPY"
    CNY = "CNY"
    INR = "INR"
    BWP = "BWP"
    ZMW = "ZMW"
    MZN = "MZN"
    NGN = "NGN"
    KES = "KES"
    TZS = "TZS"


# =============================================================================
# Competitors
# =============================================================================

class CompetitorStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ACQUIRED = "acquired"
    DEFUNCT = "defunct"


class GeofenceType(str, Enum):
    NONE = "none"
    NOTIFY = "notify"
    ALERT = "alert"
    RESTRICTED = "restricted"


# =============================================================================
# Journals and inspections
# =============================================================================

class JournalStatus(str, Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"
    PENDING_REVIEW = "PENDING_REVIEW"
    REJECTED = "REJECTED"


class JournalType(str, Enum):
    GENERAL = "GENERAL"
    INSPECTION = "INSPECTION"
    AUDIT = "AUDIT"
    CHECKLIST = "CHECKLIST"
    REPORT = "REPORT"


class InspectionRating(str, Enum):
    """
    Overall inspection band derived from the weighted percentage.

    EXCELLENT >= 95, GOOD >= 85, AVERAGE >= 70, POOR >= 50, else CRITICAL.
    """
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    AVERAGE = "AVERAGE"
    POOR = "POOR"
    CRITICAL = "CRITICAL"


# =============================================================================
# Leads
# =============================================================================

class LeadStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REVIEW = "REVIEW"
    DECLINED = "DECLINED"
    CANCELLED = "CANCELLED"
    CONVERTED = "CONVERTED"


class LeadTemperature(str, Enum):
    HOT = "HOT"
    WARM = "WARM"
    COLD = "COLD"
    FROZEN = "FROZEN"


class LeadPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class LeadSource(str, Enum):
    WEBSITE = "WEBSITE"
    REFERRAL = "REFERRAL"
    SOCIAL_MEDIA = "SOCIAL_MEDIA"
    EMAIL_CAMPAIGN = "EMAIL_CAMPAIGN"
    COLD_CALL = "COLD_CALL"
    TRADE_SHOW = "TRADE_SHOW"
    WALK_IN = "WALK_IN"
    PARTNER = "PARTNER"
    OTHER = "OTHER"


class LeadIntent(str, Enum):
    PURCHASE = "PURCHASE"
    ENQUIRY = "ENQUIRY"
    SERVICES = "SERVICES"
    LOST = "LOST"
    CONVERSION = "CONVERSION"


class LeadLifecycleStage(str, Enum):
    LEAD = "LEAD"
    MARKETING_QUALIFIED_LEAD = "MARKETING_QUALIFIED_LEAD"
    SALES_QUALIFIED_LEAD = "SALES_QUALIFIED_LEAD"
    OPPORTUNITY = "OPPORTUNITY"
    CUSTOMER = "CUSTOMER"
    CHURNED = "CHURNED"


# =============================================================================
# Reports and map data
# =============================================================================

class ReportType(str, Enum):
    MAIN = "main"
    QUOTATION = "quotation"
    USER_DAILY = "user_daily"
    ORG_ACTIVITY = "org_activity"
    MAP_DATA = "map_data"
    USER = "user"
    SHIFT = "shift"


class ReportGranularity(str, Enum):
    """Reporting window; end-of-* variants look back at the closed period."""
    DAILY = "daily"
    WEEKLY = "weekly"
    END_OF_DAY = "end-of-day"
    END_OF_WEEK = "end-of-week"


class SalesDashboard(str, Enum):
    SALES_OVERVIEW = "sales_overview"
    QUOTATION_ANALYTICS = "quotation_analytics"
    REVENUE_ANALYTICS = "revenue_analytics"
    SALES_PERFORMANCE = "sales_performance"
    CUSTOMER_ANALYTICS = "customer_analytics"


class MarkerType(str, Enum):
    CHECK_IN = "check-in"
    SHIFT_START = "shift-start"
    SHIFT_END = "shift-end"
    BREAK_START = "break-start"
    BREAK_END = "break-end"
    CLIENT = "client"
    COMPETITOR = "competitor"
    LEAD = "lead"
    JOURNAL = "journal"
    CHECK_IN_VISIT = "check-in-visit"
    TASK = "task"
    QUOTATION = "quotation"
    CLAIM = "claim"


class XPAction(str, Enum):
    CHECK_IN_CLIENT = "CHECK_IN_CLIENT"
    CHECK_OUT = "CHECK_OUT"
    INSPECTION = "INSPECTION"
