"""
Competitor service: competitor intelligence records per organisation/branch.

Key Features:
- Create with address and geofence validation (``COMP-XXXXXXXX`` refs)
- Chunked batch creation with per-chunk transactions and per-item savepoints
- Bulk create and update (up to 50 items) on the same chunked path, with
  optional threat level scoring from market data
- Filtered, paginated listing and lookups by id, ref, name and threat level
- Industry breakdown, threat analytics and map data
- Soft and hard delete

Geofence rules:
- Enabling geofencing requires coordinates (from the payload or the stored
  record). The type defaults to ``notify`` and the radius to the
  organisation's ``geofence_default_radius`` (500 m when unset).
- Explicitly disabling geofencing sets the type to ``none``.

Batch creation:
Payloads are processed in chunks of ``batch_chunk_size``. Each chunk runs in
its own transaction and each item in a nested savepoint, so a failing item
rolls back alone. A chunk commits when at least one item succeeded and rolls
back otherwise. An error outside the items fails the whole chunk.
Bulk create and update reuse this path and report totals, a success rate and
per-item results instead of chunk counts.
"""

import logging
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from asyncpg import Connection
from fastapi import HTTPException

from fieldops.core.cache import get_cache
from fieldops.core.config import get_settings
from fieldops.core.database import (
    affected_rows,
    execute_command,
    execute_query,
    execute_query_one,
    execute_value,
    get_db_pool,
)
from fieldops.core.errors import bad_request, error_message, not_found
from fieldops.models.enums import CompetitorStatus, GeofenceType
from fieldops.models.schemas import (
    CompetitorBulkCreate,
    CompetitorBulkUpdate,
    CompetitorBulkUpdateItem,
    CompetitorCreate,
    CompetitorUpdate,
    paginated_response,
    serialize_record,
    to_camel,
    to_snake,
)
from fieldops.sql import competitor_queries
from fieldops.sql.common import GET_USER, build_insert_query, build_update_query

logger = logging.getLogger(__name__)

CACHE_PREFIX = "competitor:"

DEFAULT_GEOFENCE_RADIUS: int = 500

REQUIRED_ADDRESS_FIELDS: List[str] = ["street", "suburb", "city", "state", "country", "postalCode"]

# Update fields that trigger a threat level rescore in bulk updates.
THREAT_INPUTS = frozenset({"estimatedAnnualRevenue", "marketSharePercentage", "competitiveAdvantage"})

# Request fields stored as-is (column name is the snake_case field name).
_PLAIN_FIELDS: List[str] = [
    "description",
    "website",
    "logoUrl",
    "contactEmail",
    "contactPhone",
    "industry",
    "marketSharePercentage",
    "estimatedAnnualRevenue",
    "threatLevel",
    "competitiveAdvantage",
    "latitude",
    "longitude",
    "socialMedia",
    "pricingData",
    "keyProducts",
    "keyStrengths",
    "keyWeaknesses",
]


class _ChunkRejected(Exception):
    """Every item of a batch chunk failed; the chunk transaction rolls back."""


# =============================================================================
# Validation and field mapping
# =============================================================================

def generate_competitor_ref() -> str:
    return f"COMP-{uuid.uuid4().hex[:8].upper()}"


def validate_competitor_payload(payload: CompetitorCreate) -> None:
    """
    Raise 400 for a missing name or an incomplete address.
    """
    if not payload.name or not payload.name.strip():
        raise bad_request("Competitor name is required")
    if payload.address is None:
        raise bad_request("Competitor address is required")
    for field in REQUIRED_ADDRESS_FIELDS:
        value = getattr(payload.address, field)
        if value is None or not str(value).strip():
            raise bad_request(f"Address field '{field}' is required")


async def _org_default_radius(conn: Connection, org_id: Optional[int]) -> int:
    if not org_id:
        return DEFAULT_GEOFENCE_RADIUS
    radius = await conn.fetchval(competitor_queries.GET_ORG_GEOFENCE_RADIUS, org_id)
    return int(radius) if radius else DEFAULT_GEOFENCE_RADIUS


async def resolve_geofence(
    conn: Connection,
    payload: CompetitorCreate,
    org_id: Optional[int],
    existing: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Geofence columns implied by the payload.

    Returns an empty dict when the payload does not touch geofencing.
    """
    if payload.enableGeofence is None:
        if payload.geofenceType is None and payload.geofenceRadius is None:
            return {}
        fields: Dict[str, Any] = {}
        if payload.geofenceType is not None:
            fields["geofence_type"] = payload.geofenceType.value
        if payload.geofenceRadius is not None:
            fields["geofence_radius"] = payload.geofenceRadius
        return fields

    if not payload.enableGeofence:
        return {"enable_geofence": False, "geofence_type": GeofenceType.NONE.value}

    latitude = payload.latitude if payload.latitude is not None else (existing or {}).get("latitude")
    longitude = payload.longitude if payload.longitude is not None else (existing or {}).get("longitude")
    if latitude is None or longitude is None:
        raise bad_request("Latitude and longitude are required when geofencing is enabled")

    geofence_type = payload.geofenceType or GeofenceType.NOTIFY
    if geofence_type is GeofenceType.NONE:
        geofence_type = GeofenceType.NOTIFY

    radius = payload.geofenceRadius
    if not radius:
        radius = (existing or {}).get("geofence_radius") or await _org_default_radius(conn, org_id)

    return {
        "enable_geofence": True,
        "geofence_type": geofence_type.value,
        "geofence_radius": radius,
    }


def _payload_columns(payload: CompetitorCreate, only_set: bool) -> Dict[str, Any]:
    provided = payload.model_fields_set if only_set else set(type(payload).model_fields)
    fields: Dict[str, Any] = {}
    for field in _PLAIN_FIELDS:
        if field in provided:
            fields[to_snake(field)] = getattr(payload, field)
    if "name" in provided and payload.name is not None:
        fields["name"] = payload.name.strip()
    if "address" in provided and payload.address is not None:
        fields["address"] = payload.address.model_dump()
    if "isDirect" in provided and payload.isDirect is not None:
        fields["is_direct"] = payload.isDirect
    if "status" in provided and payload.status is not None:
        fields["status"] = payload.status.value
    return fields


async def _prepare_competitor(
    conn: Connection,
    payload: CompetitorCreate,
    creator_id: int,
    org_id: Optional[int],
    branch_id: Optional[int],
) -> Dict[str, Any]:
    validate_competitor_payload(payload)

    creator = await conn.fetchrow(GET_USER, creator_id)
    if not creator:
        raise not_found("Creator not found")
    if org_id and creator["organisation_uid"] != org_id:
        raise bad_request("Creator does not belong to the specified organisation")

    fields = _payload_columns(payload, only_set=False)
    fields.update({
        "enable_geofence": False,
        "geofence_type": GeofenceType.NONE.value,
    })
    fields.update(await resolve_geofence(conn, payload, org_id))
    fields.update({
        "competitor_ref": generate_competitor_ref(),
        "created_by_uid": creator_id,
        "organisation_uid": org_id,
        "branch_uid": branch_id,
        "is_deleted": False,
    })
    return fields


def _competitor_response(row: Any) -> Dict[str, Any]:
    competitor = serialize_record(row)
    competitor["createdBy"] = {
        "uid": competitor.get("createdByUid"),
        "name": competitor.pop("createdByName", None),
        "surname": competitor.pop("createdBySurname", None),
        "email": competitor.pop("createdByEmail", None),
    }
    return competitor


# =============================================================================
# Create
# =============================================================================

async def create_competitor(
    payload: CompetitorCreate,
    creator_id: int,
    org_id: Optional[int],
    branch_id: Optional[int],
) -> Dict[str, Any]:
    """
    Create one competitor.

    Raises:
        HTTPException 400: ``{"message": "Error creating competitor", "error": ...}``
    """
    settings = get_settings()
    try:
        pool = await get_db_pool()
        async with pool.acquire() as conn:
            fields = await _prepare_competitor(conn, payload, creator_id, org_id, branch_id)
            sql, args = build_insert_query("competitors", fields)
            row = await conn.fetchrow(sql, *args)
    except Exception as e:
        logger.error(f"Error creating competitor '{payload.name}': {error_message(e)}")
        raise HTTPException(
            status_code=400,
            detail={"message": "Error creating competitor", "error": error_message(e)},
        )

    await get_cache().delete_prefix(CACHE_PREFIX)
    logger.info(f"Created competitor {fields['competitor_ref']} ({fields['name']}) in org {org_id}")
    return {"message": settings.success_message, "competitor": serialize_record(row)}


async def _run_in_chunks(
    items: Sequence[Any],
    process: Callable[[Connection, Any], Awaitable[Dict[str, Any]]],
    identify: Callable[[Any], Dict[str, Any]],
) -> Tuple[List[Dict[str, Any]], int]:
    """
    Run ``process`` for every item in chunked transactions.

    Each result carries ``index`` (position in ``items``), ``success`` and the
    fields from ``identify``; successes add what ``process`` returned and
    failures an ``error``. Returns the results and the number of chunks.
    """
    settings = get_settings()
    chunk_size = max(settings.batch_chunk_size, 1)
    chunks = [items[start:start + chunk_size] for start in range(0, len(items), chunk_size)]
    results: List[Dict[str, Any]] = []

    pool = await get_db_pool()
    for chunk_number, chunk in enumerate(chunks):
        offset = chunk_number * chunk_size
        chunk_results: List[Dict[str, Any]] = []

        async with pool.acquire() as conn:
            try:
                async with conn.transaction():
                    for position, item in enumerate(chunk):
                        index = offset + position
                        try:
                            async with conn.transaction():
                                outcome = await process(conn, item)
                            chunk_results.append({"index": index, "success": True, **identify(item), **outcome})
                        except Exception as e:
                            logger.warning(f"Batch item {index} {identify(item)} failed: {error_message(e)}")
                            chunk_results.append({
                                "index": index,
                                "success": False,
                                **identify(item),
                                "error": error_message(e),
                            })

                    if not any(result["success"] for result in chunk_results):
                        raise _ChunkRejected()
            except _ChunkRejected:
                logger.warning(f"Chunk {chunk_number + 1}/{len(chunks)}: every item failed, rolled back")
            except Exception as e:
                logger.error(f"Chunk {chunk_number + 1}/{len(chunks)} failed: {e}", exc_info=True)
                chunk_results = [
                    {
                        "index": offset + position,
                        "success": False,
                        **identify(item),
                        "error": f"Chunk processing failed: {error_message(e)}",
                    }
                    for position, item in enumerate(chunk)
                ]

        results.extend(chunk_results)

    if any(result["success"] for result in results):
        await get_cache().delete_prefix(CACHE_PREFIX)
    return results, len(chunks)


def _by_name(payload: CompetitorCreate) -> Dict[str, Any]:
    return {"name": payload.name}


async def create_competitors_batch(
    payloads: List[CompetitorCreate],
    creator_id: int,
    org_id: Optional[int],
    branch_id: Optional[int],
) -> Dict[str, Any]:
    """
    Create many competitors in chunked transactions.

    Returns:
        Dict with message, totalProcessed, successful, failed,
        chunksProcessed and per-item results (``index`` is the position in
        the submitted list).
    """
    async def insert(conn: Connection, payload: CompetitorCreate) -> Dict[str, Any]:
        fields = await _prepare_competitor(conn, payload, creator_id, org_id, branch_id)
        sql, args = build_insert_query("competitors", fields)
        return {"competitor": serialize_record(await conn.fetchrow(sql, *args))}

    results, chunk_count = await _run_in_chunks(payloads, insert, _by_name)
    successful = sum(1 for result in results if result["success"])
    failed = len(results) - successful

    logger.info(
        f"Batch competitor creation: {successful} successful, {failed} failed, {chunk_count} chunks"
    )
    return {
        "message": (
            f"Batch competitor creation completed. {successful} successful, "
            f"{failed} failed across {chunk_count} chunks."
        ),
        "totalProcessed": len(payloads),
        "successful": successful,
        "failed": failed,
        "chunksProcessed": chunk_count,
        "results": results,
    }


def calculate_threat_level(
    estimated_annual_revenue: Optional[float] = None,
    market_share_percentage: Optional[float] = None,
    competitive_advantage: Optional[int] = None,
) -> int:
    """
    Threat level 1-5 from market data.

    >>> calculate_threat_level(150_000_000, 12, 4)
    5
    >>> calculate_threat_level(20_000_000)
    2
    """
    level = 1
    revenue = float(estimated_annual_revenue or 0)
    if revenue > 100_000_000:
        level += 2
    elif revenue > 10_000_000:
        level += 1

    share = float(market_share_percentage or 0)
    if share > 20:
        level += 2
    elif share > 10:
        level += 1

    if competitive_advantage and competitive_advantage >= 4:
        level += 1
    return min(level, 5)


def _bulk_label(result: Dict[str, Any]) -> str:
    if "ref" in result:
        return f"ID {result['ref']}"
    return f"{result['index'] + 1} ({result.get('name')})"


def _bulk_summary(
    action: str,
    results: List[Dict[str, Any]],
    started: float,
    ids: List[int],
    counters: Dict[str, int],
) -> Dict[str, Any]:
    requested = len(results)
    succeeded = sum(1 for result in results if result["success"])
    errors = [
        f"Competitor {_bulk_label(result)}: {result['error']}"
        for result in results
        if not result["success"]
    ]
    past = "created" if action == "creation" else "updated"
    key = "Created" if action == "creation" else "Updated"

    summary: Dict[str, Any] = {
        "totalRequested": requested,
        f"total{key}": succeeded,
        "totalFailed": requested - succeeded,
        "successRate": round(succeeded / requested * 100, 2) if requested else 0.0,
        "results": results,
        "message": (
            f"Bulk {action} completed: {succeeded} competitors {past}, {requested - succeeded} failed"
            if succeeded
            else f"Bulk {action} failed: No competitors were {past}"
        ),
        "duration": int((time.monotonic() - started) * 1000),
    }
    if errors:
        summary["errors"] = errors
    if ids:
        summary[f"{past}CompetitorIds"] = ids
    summary.update({name: count for name, count in counters.items() if count})
    return summary


async def create_bulk_competitors(
    payload: CompetitorBulkCreate,
    creator_id: int,
    org_id: Optional[int],
    branch_id: Optional[int],
) -> Dict[str, Any]:
    """
    Create up to 50 competitors through the chunked batch path.

    Names already used by a live competitor of the organisation are rejected
    per item. Returns totals, ``successRate`` (percent, 2 dp), per-item
    results and the created ids.
    """
    started = time.monotonic()

    def with_options(item: CompetitorCreate) -> CompetitorCreate:
        updates: Dict[str, Any] = {}
        if payload.autoCalculateThreat and item.threatLevel is None:
            updates["threatLevel"] = calculate_threat_level(
                item.estimatedAnnualRevenue, item.marketSharePercentage, item.competitiveAdvantage
            )
        if payload.enableGeofencing and item.latitude is not None and item.longitude is not None:
            updates["enableGeofence"] = True
        return item.model_copy(update=updates) if updates else item

    async def insert(conn: Connection, item: CompetitorCreate) -> Dict[str, Any]:
        validate_competitor_payload(item)
        if await conn.fetchval(competitor_queries.COMPETITOR_NAME_TAKEN, item.name.strip(), org_id):
            raise bad_request(f"Competitor name '{item.name}' already exists")
        fields = await _prepare_competitor(conn, with_options(item), creator_id, org_id, branch_id)
        sql, args = build_insert_query("competitors", fields)
        return {"competitor": serialize_record(await conn.fetchrow(sql, *args))}

    results, _ = await _run_in_chunks(
        payload.competitors, insert, lambda item: {"name": item.name, "website": item.website}
    )
    created = [result for result in results if result["success"]]
    created_items = [payload.competitors[result["index"]] for result in created]

    summary = _bulk_summary(
        "creation",
        results,
        started,
        [result["competitor"]["uid"] for result in created],
        {
            "threatLevelsCalculated": sum(
                1 for item in created_items if payload.autoCalculateThreat and item.threatLevel is None
            ),
            "geofencesEnabled": sum(
                1 for item in created_items
                if payload.enableGeofencing and item.latitude is not None and item.longitude is not None
            ),
        },
    )
    logger.info(
        f"Bulk competitor creation in org {org_id}: {summary['totalCreated']} created, "
        f"{summary['totalFailed']} failed in {summary['duration']}ms"
    )
    return summary


async def update_bulk_competitors(
    payload: CompetitorBulkUpdate,
    org_id: Optional[int],
    branch_id: Optional[int],
) -> Dict[str, Any]:
    """
    Apply up to 50 partial updates through the chunked batch path.

    Each ``ref`` must be a live competitor in the caller's scope. With
    ``recalculateThreatLevels`` the threat level is rescored when revenue,
    market share or competitive advantage change. Results list the
    ``updatedFields`` (camelCase) whose stored value changed.
    """
    started = time.monotonic()
    rescored: List[int] = []

    async def update(conn: Connection, item: CompetitorBulkUpdateItem) -> Dict[str, Any]:
        sql, args = competitor_queries.get_competitor_query("uid", item.ref, org_id, branch_id)
        row = await conn.fetchrow(sql, *args)
        if not row:
            raise not_found(f"Competitor with ID {item.ref} not found")
        existing = dict(row)

        data = item.data
        if "name" in data.model_fields_set and (not data.name or not data.name.strip()):
            raise bad_request("Competitor name is required")

        fields = _payload_columns(data, only_set=True)
        if payload.recalculateThreatLevels and data.model_fields_set & THREAT_INPUTS:
            merged = {**existing, **fields}
            fields["threat_level"] = calculate_threat_level(
                merged.get("estimated_annual_revenue"),
                merged.get("market_share_percentage"),
                merged.get("competitive_advantage"),
            )
            rescored.append(item.ref)
        fields.update(await resolve_geofence(conn, data, org_id, existing))
        if not fields:
            raise bad_request("No fields to update")

        sql, args = build_update_query("competitors", fields, {"uid": item.ref})
        await conn.fetchrow(sql, *args)
        return {
            "name": existing.get("name"),
            "website": existing.get("website"),
            "updatedFields": [to_camel(column) for column, value in fields.items() if existing.get(column) != value],
        }

    results, _ = await _run_in_chunks(payload.updates, update, lambda item: {"ref": item.ref})
    updated_ids = [result["ref"] for result in results if result["success"]]

    summary = _bulk_summary(
        "update",
        results,
        started,
        updated_ids,
        {"threatLevelsRecalculated": sum(1 for ref in rescored if ref in updated_ids)},
    )
    logger.info(
        f"Bulk competitor update in org {org_id}: {summary['totalUpdated']} updated, "
        f"{summary['totalFailed']} failed in {summary['duration']}ms"
    )
    return summary


# =============================================================================
# Reads
# =============================================================================

async def find_all_competitors(
    org_id: Optional[int],
    branch_id: Optional[int],
    page: int = 1,
    limit: Optional[int] = None,
    status: Optional[CompetitorStatus] = None,
    industry: Optional[str] = None,
    is_direct: Optional[bool] = None,
    name: Optional[str] = None,
    min_threat_level: Optional[int] = None,
    organisation_filter: Optional[int] = None,
    branch_filter: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Paginated competitors ordered by name.

    Explicit ``organisation_filter`` / ``branch_filter`` override the token
    scope.
    """
    settings = get_settings()
    limit = limit or settings.default_page_limit
    page = max(page, 1)
    if min_threat_level is not None and not 1 <= min_threat_level <= 5:
        raise bad_request("minThreatLevel must be between 1 and 5")

    scope_org = organisation_filter if organisation_filter is not None else org_id
    scope_branch = branch_filter if branch_filter is not None else branch_id

    cache = get_cache()
    cache_key = (
        f"{CACHE_PREFIX}list:{scope_org}:{scope_branch}:{status.value if status else None}:"
        f"{industry}:{is_direct}:{name}:{min_threat_level}:{page}:{limit}"
    )
    cached = await cache.get(cache_key)
    if cached is not None:
        return cached

    select_sql, count_sql, args = competitor_queries.find_competitors_query(
        scope_org,
        scope_branch,
        status=status.value if status else None,
        industry=industry,
        is_direct=is_direct,
        name=name,
        min_threat_level=min_threat_level,
    )
    rows = await execute_query(select_sql, *args, limit, (page - 1) * limit)
    total = await execute_value(count_sql, *args)

    response = paginated_response(
        [_competitor_response(row) for row in rows],
        int(total or 0),
        page,
        limit,
        settings.success_message,
    )
    await cache.set(cache_key, response)
    return response


async def _load_competitor(
    column: str,
    value: Any,
    org_id: Optional[int],
    branch_id: Optional[int],
) -> Dict[str, Any]:
    sql, args = competitor_queries.get_competitor_query(column, value, org_id, branch_id)
    row = await execute_query_one(sql, *args)
    if not row:
        raise not_found(get_settings().not_found_message)
    return dict(row)


async def find_one_competitor(
    competitor_id: int,
    org_id: Optional[int],
    branch_id: Optional[int],
) -> Dict[str, Any]:
    competitor = await _load_competitor("uid", competitor_id, org_id, branch_id)
    return {"message": get_settings().success_message, "competitor": _competitor_response(competitor)}


async def find_one_competitor_by_ref(
    competitor_ref: str,
    org_id: Optional[int],
    branch_id: Optional[int],
) -> Dict[str, Any]:
    competitor = await _load_competitor("competitor_ref", competitor_ref, org_id, branch_id)
    return {"message": get_settings().success_message, "competitor": _competitor_response(competitor)}


async def find_competitors_by_name(
    name: str,
    org_id: Optional[int],
    branch_id: Optional[int],
) -> Dict[str, Any]:
    if not name or not name.strip():
        raise bad_request("Name is required")
    sql, args = competitor_queries.competitors_by_name_query(name.strip(), org_id, branch_id)
    rows = await execute_query(sql, *args)
    return {
        "message": get_settings().success_message,
        "competitors": [_competitor_response(row) for row in rows],
    }


async def find_competitors_by_threat_level(
    min_level: int,
    org_id: Optional[int],
    branch_id: Optional[int],
) -> Dict[str, Any]:
    if not 1 <= min_level <= 5:
        raise bad_request("Threat level must be between 1 and 5")
    sql, args = competitor_queries.competitors_by_threat_query(min_level, org_id, branch_id)
    rows = await execute_query(sql, *args)
    return {
        "message": get_settings().success_message,
        "competitors": [_competitor_response(row) for row in rows],
    }


async def competitors_by_industry(org_id: Optional[int], branch_id: Optional[int]) -> Dict[str, Any]:
    sql, args = competitor_queries.competitors_by_industry_query(org_id, branch_id)
    rows = await execute_query(sql, *args)
    return {
        "message": get_settings().success_message,
        "industries": {row["industry"]: int(row["count"]) for row in rows},
    }


def build_competitor_analytics(competitors: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Totals, direct/indirect split, average threat (2 dp), top 5 threats and
    counts by industry.
    """
    total = len(competitors)
    direct = sum(1 for competitor in competitors if competitor.get("is_direct"))
    threat_levels = [c["threat_level"] for c in competitors if c.get("threat_level") is not None]
    average_threat = round(sum(threat_levels) / len(threat_levels), 2) if threat_levels else 0

    ranked = sorted(
        (c for c in competitors if c.get("threat_level") is not None),
        key=lambda c: c["threat_level"],
        reverse=True,
    )
    top_threats = [
        {
            "uid": c["uid"],
            "name": c["name"],
            "threatLevel": c["threat_level"],
            "industry": c.get("industry"),
            "isDirect": bool(c.get("is_direct")),
        }
        for c in ranked[:5]
    ]

    by_industry: Dict[str, int] = {}
    for competitor in competitors:
        industry = competitor.get("industry") or "Unknown"
        by_industry[industry] = by_industry.get(industry, 0) + 1

    return {
        "totalCompetitors": total,
        "directCompetitors": direct,
        "indirectCompetitors": total - direct,
        "averageThreatLevel": average_threat,
        "topThreats": top_threats,
        "byIndustry": by_industry,
    }


async def competitor_analytics(org_id: Optional[int], branch_id: Optional[int]) -> Dict[str, Any]:
    cache = get_cache()
    cache_key = f"{CACHE_PREFIX}analytics:{org_id}:{branch_id}"
    cached = await cache.get(cache_key)
    if cached is not None:
        return cached

    sql, args = competitor_queries.all_competitors_query(org_id, branch_id)
    competitors = [dict(row) for row in await execute_query(sql, *args)]
    analytics = build_competitor_analytics(competitors)
    updated = [c["updated_at"] for c in competitors if c.get("updated_at")]
    analytics["lastUpdated"] = max(updated).isoformat() if updated else None

    response = {"message": get_settings().success_message, "analytics": analytics}
    await cache.set(cache_key, response)
    return response


async def competitor_map_data(org_id: Optional[int], branch_id: Optional[int]) -> Dict[str, Any]:
    """Competitors that have coordinates, shaped for map markers."""
    sql, args = competitor_queries.all_competitors_query(org_id, branch_id, with_coordinates=True)
    rows = await execute_query(sql, *args)
    markers = [
        {
            "id": row["uid"],
            "competitorRef": row["competitor_ref"],
            "name": row["name"],
            "position": [float(row["latitude"]), float(row["longitude"])],
            "threatLevel": row["threat_level"],
            "isDirect": bool(row["is_direct"]),
            "industry": row["industry"],
            "status": row["status"],
            "address": row["address"],
            "geofencing": {
                "enabled": bool(row["enable_geofence"]),
                "type": row["geofence_type"],
                "radius": row["geofence_radius"],
            },
        }
        for row in rows
    ]
    return {"message": get_settings().success_message, "competitors": markers}


# =============================================================================
# Update / delete
# =============================================================================

async def update_competitor(
    competitor_id: int,
    payload: CompetitorUpdate,
    org_id: Optional[int],
    branch_id: Optional[int],
) -> Dict[str, Any]:
    """Partial update; geofence rules are re-checked against the stored row."""
    existing = await _load_competitor("uid", competitor_id, org_id, branch_id)

    if "name" in payload.model_fields_set and (not payload.name or not payload.name.strip()):
        raise bad_request("Competitor name is required")

    fields = _payload_columns(payload, only_set=True)
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        fields.update(await resolve_geofence(conn, payload, org_id, existing))
        if not fields:
            raise bad_request("No fields to update")
        sql, args = build_update_query("competitors", fields, {"uid": competitor_id})
        row = await conn.fetchrow(sql, *args)

    await get_cache().delete_prefix(CACHE_PREFIX)
    logger.info(f"Updated competitor {competitor_id} fields={sorted(fields)}")
    return {"message": get_settings().success_message, "competitor": serialize_record(row)}


async def remove_competitor(
    competitor_id: int,
    org_id: Optional[int],
    branch_id: Optional[int],
) -> Dict[str, Any]:
    await _load_competitor("uid", competitor_id, org_id, branch_id)
    status = await execute_command(competitor_queries.SOFT_DELETE_COMPETITOR, competitor_id)
    if affected_rows(status) == 0:
        raise not_found(get_settings().not_found_message)
    await get_cache().delete_prefix(CACHE_PREFIX)
    return {"message": get_settings().success_message}


async def hard_remove_competitor(
    competitor_id: int,
    org_id: Optional[int],
    branch_id: Optional[int],
) -> Dict[str, Any]:
    await _load_competitor("uid", competitor_id, org_id, branch_id)
    status = await execute_command(competitor_queries.HARD_DELETE_COMPETITOR, competitor_id)
    if affected_rows(status) == 0:
        raise not_found(get_settings().not_found_message)
    await get_cache().delete_prefix(CACHE_PREFIX)
    logger.info(f"Permanently deleted competitor {competitor_id}")
    return {"message": get_settings().success_message}


__all__ = [
    "create_competitor",
    "create_competitors_batch",
    "create_bulk_competitors",
    "update_bulk_competitors",
    "find_all_competitors",
    "find_one_competitor",
    "find_one_competitor_by_ref",
    "find_competitors_by_name",
    "find_competitors_by_threat_level",
    "competitors_by_industry",
    "competitor_analytics",
    "competitor_map_data",
    "update_competitor",
    "remove_competitor",
    "hard_remove_competitor",
    "build_competitor_analytics",
    "calculate_threat_level",
    "validate_competitor_payload",
    "resolve_geofence",
]
