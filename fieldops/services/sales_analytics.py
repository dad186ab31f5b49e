"""
Sales Analytics Generator

Quotation-driven dashboards for an organisation (optionally one branch):

    - sales_overview: revenue, conversion, 30-day revenue trend, status mix
      and top products
    - quotation_analytics: pipeline value, time to convert, status and
      price list breakdowns
    - revenue_analytics: revenue per customer, daily time series, product
      share and a simple forecast
    - sales_performance: per sales rep conversion and revenue
    - customer_analytics: lifetime value, new customers, top customers and
      value segments

Revenue counts quotations in ``approved`` or ``completed`` status; a
quotation is converted once ``approved``. Every builder is a pure function of
the loaded rows so the dashboards can be tested without a database.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from fieldops.core.database import execute_query
from fieldops.sql import report_queries

logger = logging.getLogger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

CONVERTED_STATUS = "approved"
REVENUE_STATUSES = frozenset({"approved", "completed"})
PIPELINE_STATUSES = frozenset({"pending", "draft"})

TREND_DAYS: int = 30
TOP_PRODUCTS: int = 10
TOP_CUSTOMERS: int = 10

# Flat month-on-month growth assumed by the revenue forecast.
FORECAST_MONTHLY_GROWTH: float = 1.08
FORECAST_CONFIDENCE: float = 75.0

PRICE_LIST_KEYWORDS: Tuple[str, ...] = ("premium", "local", "foreign")


# =============================================================================
# Helpers
# =============================================================================

def _amount(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _percent(part: float, whole: float) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


def _aware(moment: Optional[datetime]) -> Optional[datetime]:
    if moment is not None and moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def _status(quotation: Dict[str, Any]) -> str:
    return quotation.get("status") or "draft"


def _is_revenue(quotation: Dict[str, Any]) -> bool:
    return _status(quotation) in REVENUE_STATUSES


def _is_converted(quotation: Dict[str, Any]) -> bool:
    return _status(quotation) == CONVERTED_STATUS


def _created_since(quotation: Dict[str, Any], since: datetime) -> bool:
    created = _aware(quotation.get("created_at"))
    return created is not None and created >= since


def _items_by_quotation(items: List[Dict[str, Any]]) -> Dict[int, List[Dict[str, Any]]]:
    grouped: Dict[int, List[Dict[str, Any]]] = {}
    for item in items:
        grouped.setdefault(item["quotation_uid"], []).append(item)
    return grouped


def _product_totals(
    quotations: List[Dict[str, Any]],
    items: List[Dict[str, Any]],
) -> Dict[str, Dict[str, float]]:
    """Revenue and units per product name across the given quotations."""
    grouped = _items_by_quotation(items)
    products: Dict[str, Dict[str, float]] = {}
    for quotation in quotations:
        for item in grouped.get(quotation["uid"], []):
            name = item.get("product_name")
            if not name:
                continue
            product = products.setdefault(name, {"revenue": 0.0, "units": 0.0})
            product["revenue"] += _amount(item.get("total_price"))
            product["units"] += _amount(item.get("quantity"))
    return products


def _daily_revenue(quotations: List[Dict[str, Any]], since: datetime) -> List[Dict[str, Any]]:
    days: Dict[str, Dict[str, Any]] = {}
    for quotation in quotations:
        if not _is_revenue(quotation) or not _created_since(quotation, since):
            continue
        day = _aware(quotation["created_at"]).astimezone(timezone.utc).date().isoformat()
        entry = days.setdefault(day, {"date": day, "amount": 0.0, "quotations": 0})
        entry["amount"] += _amount(quotation.get("total_amount"))
        entry["quotations"] += 1
    return [days[day] for day in sorted(days)]


def _status_breakdown(quotations: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    statuses: Dict[str, Dict[str, Any]] = {}
    for quotation in quotations:
        status = _status(quotation)
        entry = statuses.setdefault(status, {"status": status, "count": 0, "value": 0.0})
        entry["count"] += 1
        entry["value"] += _amount(quotation.get("total_amount"))
    return list(statuses.values())


def revenue_growth(quotations: List[Dict[str, Any]], now: datetime) -> float:
    """
    Revenue of the last ``TREND_DAYS`` against the ``TREND_DAYS`` before, in
    percent (2 dp). No earlier revenue counts as 100% growth when there is
    revenue now.
    """
    current_start = now - timedelta(days=TREND_DAYS)
    previous_start = current_start - timedelta(days=TREND_DAYS)
    current = previous = 0.0
    for quotation in quotations:
        created = _aware(quotation.get("created_at"))
        if not _is_revenue(quotation) or created is None:
            continue
        if created >= current_start:
            current += _amount(quotation.get("total_amount"))
        elif created >= previous_start:
            previous += _amount(quotation.get("total_amount"))
    if not previous:
        return 100.0 if current else 0.0
    return round((current - previous) / previous * 100, 2)


def price_list(quotation: Dict[str, Any]) -> str:
    """Price list named in the quotation notes, ``standard`` when none is."""
    notes = quotation.get("notes") or ""
    for keyword in PRICE_LIST_KEYWORDS:
        if keyword in notes:
            return keyword
    return "standard"


def is_blank_quotation(quotation: Dict[str, Any]) -> bool:
    return "blank" in (quotation.get("notes") or "") or "BLQ" in (quotation.get("quotation_number") or "")


# =============================================================================
# Dashboards
# =============================================================================

def build_sales_overview(
    quotations: List[Dict[str, Any]],
    items: List[Dict[str, Any]],
    now: datetime,
) -> Dict[str, Any]:
    total_revenue = sum(_amount(q.get("total_amount")) for q in quotations if _is_revenue(q))
    converted = sum(1 for q in quotations if _is_converted(q))

    products = _product_totals(quotations, items)
    top_products = sorted(
        ({"name": name, "revenue": totals["revenue"], "units": totals["units"]} for name, totals in products.items()),
        key=lambda product: product["revenue"],
        reverse=True,
    )[:TOP_PRODUCTS]

    trend = _daily_revenue(quotations, now - timedelta(days=TREND_DAYS))
    statuses = _status_breakdown(quotations)

    return {
        "summary": {
            "totalRevenue": total_revenue,
            "revenueGrowth": revenue_growth(quotations, now),
            "totalQuotations": len(quotations),
            "conversionRate": _percent(converted, len(quotations)),
            "averageOrderValue": round(total_revenue / converted, 2) if converted else 0.0,
            "topPerformingProduct": top_products[0]["name"] if top_products else "N/A",
        },
        "trends": {
            "revenue": trend,
            "quotationsByStatus": statuses,
            "topProducts": top_products,
        },
        "chartData": {
            "revenueTimeSeries": trend,
            "quotationDistribution": statuses,
            "performanceComparison": top_products,
            "correlationData": [
                {
                    "x": _amount(q.get("total_amount")),
                    "y": 1 if _is_converted(q) else 0,
                    "quotationId": q.get("quotation_number"),
                }
                for q in quotations
            ],
        },
    }


def build_quotation_analytics(quotations: List[Dict[str, Any]]) -> Dict[str, Any]:
    total = len(quotations)
    converted = [q for q in quotations if _is_converted(q)]

    convert_days = [
        (_aware(q["updated_at"]) - _aware(q["created_at"])).total_seconds() / 86400
        for q in converted
        if q.get("created_at") and q.get("updated_at")
    ]

    statuses = _status_breakdown(quotations)
    for entry in statuses:
        entry["percentage"] = _percent(entry["count"], total)

    price_lists: Dict[str, Dict[str, Any]] = {}
    for quotation in quotations:
        name = price_list(quotation)
        entry = price_lists.setdefault(
            name, {"priceList": name, "quotations": 0, "conversions": 0, "conversionRate": 0.0, "revenue": 0.0}
        )
        entry["quotations"] += 1
        if _is_converted(quotation):
            entry["conversions"] += 1
            entry["revenue"] += _amount(quotation.get("total_amount"))
    for entry in price_lists.values():
        entry["conversionRate"] = _percent(entry["conversions"], entry["quotations"])

    return {
        "summary": {
            "totalQuotations": total,
            "blankQuotations": sum(1 for q in quotations if is_blank_quotation(q)),
            "conversionRate": _percent(len(converted), total),
            "averageValue": round(sum(_amount(q.get("total_amount")) for q in quotations) / total, 2) if total else 0.0,
            "averageTimeToConvert": round(sum(convert_days) / len(convert_days), 2) if convert_days else 0.0,
            "pipelineValue": sum(
                _amount(q.get("total_amount")) for q in quotations if _status(q) in PIPELINE_STATUSES
            ),
        },
        "statusBreakdown": statuses,
        "priceListPerformance": list(price_lists.values()),
    }


def build_revenue_analytics(
    quotations: List[Dict[str, Any]],
    items: List[Dict[str, Any]],
    now: datetime,
) -> Dict[str, Any]:
    earning = [q for q in quotations if _is_revenue(q)]
    total_revenue = sum(_amount(q.get("total_amount")) for q in earning)
    customers = {q["client_uid"] for q in earning if q.get("client_uid")}

    series = [
        {
            "date": day["date"],
            "revenue": day["amount"],
            "transactions": day["quotations"],
            "averageValue": round(day["amount"] / day["quotations"], 2),
        }
        for day in _daily_revenue(earning, now - timedelta(days=TREND_DAYS))
    ]

    products = _product_totals(earning, items)
    breakdown = sorted(
        (
            {"product": name, "revenue": totals["revenue"], "percentage": _percent(totals["revenue"], total_revenue)}
            for name, totals in products.items()
        ),
        key=lambda product: product["revenue"],
        reverse=True,
    )[:TOP_PRODUCTS]

    return {
        "summary": {
            "totalRevenue": total_revenue,
            "revenueGrowth": revenue_growth(quotations, now),
            "revenuePerCustomer": round(total_revenue / len(customers), 2) if customers else 0.0,
        },
        "timeSeries": series,
        "productBreakdown": breakdown,
        "forecast": {
            "nextMonth": round(total_revenue * FORECAST_MONTHLY_GROWTH, 2),
            "nextQuarter": round(total_revenue * 3 * FORECAST_MONTHLY_GROWTH, 2),
            "confidence": FORECAST_CONFIDENCE,
        },
    }


def build_sales_performance(quotations: List[Dict[str, Any]]) -> Dict[str, Any]:
    reps: Dict[int, Dict[str, Any]] = {}
    for quotation in quotations:
        rep_id = quotation.get("placed_by_uid")
        if not rep_id:
            continue
        rep = reps.setdefault(rep_id, {
            "uid": rep_id,
            "name": quotation.get("placed_by_name") or quotation.get("placed_by_username") or "Unknown",
            "revenue": 0.0,
            "quotations": 0,
            "conversions": 0,
            "conversionRate": 0.0,
        })
        rep["quotations"] += 1
        if _is_converted(quotation):
            rep["conversions"] += 1
            rep["revenue"] += _amount(quotation.get("total_amount"))

    individual = sorted(reps.values(), key=lambda rep: rep["revenue"], reverse=True)
    for rep in individual:
        rep["conversionRate"] = _percent(rep["conversions"], rep["quotations"])

    average = round(sum(rep["conversionRate"] for rep in individual) / len(individual), 2) if individual else 0.0
    converted = [q for q in quotations if _is_converted(q)]
    converted_revenue = sum(_amount(q.get("total_amount")) for q in converted)

    return {
        "teamSummary": {
            "totalSalesReps": len(individual),
            "averagePerformance": average,
            "topPerformer": individual[0]["name"] if individual else "N/A",
        },
        "individualPerformance": individual,
        "metrics": {
            "averageDealSize": round(converted_revenue / len(converted), 2) if converted else 0.0,
            "winRate": average,
            "pipelineValue": sum(
                _amount(q.get("total_amount")) for q in quotations if _status(q) in PIPELINE_STATUSES
            ),
        },
    }


def _segment(name: str, members: List[Dict[str, Any]], total_revenue: float) -> Dict[str, Any]:
    revenue = sum(member["revenue"] for member in members)
    return {
        "segment": name,
        "customers": len(members),
        "revenue": revenue,
        "percentage": _percent(revenue, total_revenue),
    }


def build_customer_analytics(quotations: List[Dict[str, Any]], now: datetime) -> Dict[str, Any]:
    """
    Per-client revenue and orders from approved quotations; first and last
    order span every quotation of the client. Clients above twice the
    average lifetime value are high value, above the average medium value.
    """
    clients: Dict[int, Dict[str, Any]] = {}
    for quotation in quotations:
        client_id = quotation.get("client_uid")
        if not client_id:
            continue
        created = _aware(quotation.get("created_at"))
        client = clients.setdefault(client_id, {
            "uid": client_id,
            "name": quotation.get("client_name") or "Unknown Client",
            "revenue": 0.0,
            "orders": 0,
            "firstOrder": created,
            "lastOrder": created,
        })
        if _is_converted(quotation):
            client["revenue"] += _amount(quotation.get("total_amount"))
            client["orders"] += 1
        if created is not None:
            if client["firstOrder"] is None or created < client["firstOrder"]:
                client["firstOrder"] = created
            if client["lastOrder"] is None or created > client["lastOrder"]:
                client["lastOrder"] = created

    members = list(clients.values())
    total_revenue = sum(client["revenue"] for client in members)
    average_value = total_revenue / len(members) if members else 0.0
    since = now - timedelta(days=TREND_DAYS)

    high = [c for c in members if c["revenue"] > average_value * 2]
    medium = [c for c in members if average_value < c["revenue"] <= average_value * 2]
    low = [c for c in members if c["revenue"] <= average_value]

    top = sorted(members, key=lambda client: client["revenue"], reverse=True)[:TOP_CUSTOMERS]

    return {
        "summary": {
            "totalCustomers": len(members),
            "newCustomers": sum(1 for c in members if c["firstOrder"] is not None and c["firstOrder"] >= since),
            "averageLifetimeValue": round(average_value, 2),
            "averagePurchaseFrequency": round(sum(c["orders"] for c in members) / len(members), 2) if members else 0.0,
        },
        "topCustomers": [
            {
                **client,
                "firstOrder": client["firstOrder"].isoformat() if client["firstOrder"] else None,
                "lastOrder": client["lastOrder"].isoformat() if client["lastOrder"] else None,
            }
            for client in top
        ],
        "segments": [
            _segment("High Value", high, total_revenue),
            _segment("Medium Value", medium, total_revenue),
            _segment("Low Value", low, total_revenue),
        ],
    }


# =============================================================================
# Entry point
# =============================================================================

async def load_quotations(
    organisation_id: int,
    branch_id: Optional[int] = None,
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    sql, args = report_queries.sales_quotations_query(organisation_id, branch_id)
    quotations = [dict(row) for row in await execute_query(sql, *args)]
    if not quotations:
        return quotations, []
    sql, args = report_queries.sales_quotation_items_query(organisation_id, branch_id)
    items = [dict(row) for row in await execute_query(sql, *args)]
    return quotations, items


DASHBOARDS: Dict[str, Callable[..., Dict[str, Any]]] = {
    "sales_overview": lambda quotations, items, now: build_sales_overview(quotations, items, now),
    "quotation_analytics": lambda quotations, items, now: build_quotation_analytics(quotations),
    "revenue_analytics": lambda quotations, items, now: build_revenue_analytics(quotations, items, now),
    "sales_performance": lambda quotations, items, now: build_sales_performance(quotations),
    "customer_analytics": lambda quotations, items, now: build_customer_analytics(quotations, now),
}


async def generate(
    dashboard: str,
    organisation_id: int,
    branch_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Build one sales dashboard.

    Raises:
        ValueError: Unknown dashboard name.
        RuntimeError: Loading the quotations failed.
    """
    builder = DASHBOARDS.get(dashboard)
    if builder is None:
        raise ValueError(f"Unsupported sales dashboard: {dashboard}")

    now = now or datetime.now(timezone.utc)
    try:
        quotations, items = await load_quotations(organisation_id, branch_id)
    except Exception as e:
        logger.error(f"Failed to load quotations for {dashboard} (organisation {organisation_id}): {e}", exc_info=True)
        raise RuntimeError(f"Failed to generate {dashboard.replace('_', ' ')}: {e}") from e

    logger.debug(f"Building {dashboard} for organisation {organisation_id} from {len(quotations)} quotations")
    return builder(quotations, items, now)
