"""
Competitor SQL query module.

Competitor rows carry JSON columns (address, social_media, pricing_data,
key_products, key_strengths, key_weaknesses) that the pool codec decodes to
Python objects. Deleted competitors are hidden from every read below.
"""

from typing import Any, List, Optional, Tuple

from fieldops.sql.common import WhereBuilder, paginate


GET_ORG_GEOFENCE_RADIUS = """
SELECT s.geofence_default_radius
FROM organisation_settings s
WHERE s.organisation_uid = $1
"""


COMPETITOR_NAME_TAKEN = """
SELECT c.uid
FROM competitors c
WHERE c.name = $1 AND c.is_deleted = FALSE AND c.organisation_uid IS NOT DISTINCT FROM $2
LIMIT 1
"""


_COMPETITOR_SELECT = """
SELECT
    c.*,
    u.name AS created_by_name,
    u.surname AS created_by_surname,
    u.email AS created_by_email
FROM competitors c
LEFT JOIN users u ON u.uid = c.created_by_uid
"""


def _scope(where: WhereBuilder, org_id: Optional[int], branch_id: Optional[int]) -> WhereBuilder:
    where.add_if("c.organisation_uid = {p}", org_id)
    where.add_if("c.branch_uid = {p}", branch_id)
    return where


def find_competitors_query(
    org_id: Optional[int],
    branch_id: Optional[int],
    status: Optional[str] = None,
    industry: Optional[str] = None,
    is_direct: Optional[bool] = None,
    name: Optional[str] = None,
    min_threat_level: Optional[int] = None,
) -> Tuple[str, str, List[Any]]:
    """
    Paginated competitor listing ordered by name.

    Returns:
        (select_sql, count_sql, args); ``select_sql`` expects limit and offset
        as two extra trailing arguments.
    """
    where = _scope(WhereBuilder(["c.is_deleted = FALSE"]), org_id, branch_id)
    where.add_if("c.status = {p}", status)
    where.add_if("c.industry = {p}", industry)
    where.add_if("c.is_direct = {p}", is_direct)
    if name:
        where.add("c.name ILIKE {p}", f"%{name}%")
    where.add_if("c.threat_level >= {p}", min_threat_level)

    select_sql = paginate(f"{_COMPETITOR_SELECT} {where.clause} ORDER BY c.name ASC", where)
    count_sql = f"SELECT COUNT(*) FROM competitors c {where.clause}"
    return select_sql, count_sql, where.args


def get_competitor_query(
    column: str,
    value: Any,
    org_id: Optional[int] = None,
    branch_id: Optional[int] = None,
) -> Tuple[str, List[Any]]:
    """Single competitor by ``uid`` or ``competitor_ref``."""
    if column not in ("uid", "competitor_ref"):
        raise ValueError(f"Unsupported competitor lookup column: {column}")
    where = WhereBuilder(["c.is_deleted = FALSE"])
    where.add(f"c.{column} = {{p}}", value)
    _scope(where, org_id, branch_id)
    return f"{_COMPETITOR_SELECT} {where.clause}", where.args


def competitors_by_name_query(
    name: str,
    org_id: Optional[int],
    branch_id: Optional[int],
) -> Tuple[str, List[Any]]:
    where = _scope(WhereBuilder(["c.is_deleted = FALSE"]), org_id, branch_id)
    where.add("c.name ILIKE {p}", f"%{name}%")
    return f"{_COMPETITOR_SELECT} {where.clause} ORDER BY c.name ASC", where.args


def competitors_by_threat_query(
    min_level: int,
    org_id: Optional[int],
    branch_id: Optional[int],
) -> Tuple[str, List[Any]]:
    where = _scope(WhereBuilder(["c.is_deleted = FALSE"]), org_id, branch_id)
    where.add("c.threat_level >= {p}", min_level)
    return (
        f"{_COMPETITOR_SELECT} {where.clause} ORDER BY c.threat_level DESC, c.name ASC",
        where.args,
    )


def competitors_by_industry_query(
    org_id: Optional[int],
    branch_id: Optional[int],
) -> Tuple[str, List[Any]]:
    where = _scope(WhereBuilder(["c.is_deleted = FALSE"]), org_id, branch_id)
    return (
        f"""
        SELECT COALESCE(c.industry, 'Unknown') AS industry, COUNT(*) AS count
        FROM competitors c
        {where.clause}
        GROUP BY COALESCE(c.industry, 'Unknown')
        ORDER BY count DESC
        """,
        where.args,
    )


def all_competitors_query(
    org_id: Optional[int],
    branch_id: Optional[int],
    with_coordinates: bool = False,
) -> Tuple[str, List[Any]]:
    """Every live competitor in scope; analytics and map data work from this."""
    where = _scope(WhereBuilder(["c.is_deleted = FALSE"]), org_id, branch_id)
    if with_coordinates:
        where.conditions.append("c.latitude IS NOT NULL AND c.longitude IS NOT NULL")
    return f"{_COMPETITOR_SELECT} {where.clause} ORDER BY c.name ASC", where.args


SOFT_DELETE_COMPETITOR = """
UPDATE competitors
SET is_deleted = TRUE, updated_at = NOW()
WHERE uid = $1 AND is_deleted = FALSE
"""


HARD_DELETE_COMPETITOR = """
DELETE FROM competitors
WHERE uid = $1
"""
