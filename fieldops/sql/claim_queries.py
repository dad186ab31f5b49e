"""
Claim SQL query module.

Claims are expense claims raised by field users. Every list query excludes
soft-deleted rows unless it is explicitly looking for them (restore).
"""

from datetime import datetime
from typing import Any, List, Optional, Tuple

from fieldops.sql.common import WhereBuilder, paginate


# Serialises ref allocation for one CLM-{year}- prefix until the transaction ends.
LOCK_CLAIM_REF_PREFIX = """
SELECT pg_advisory_xact_lock(hashtext($1))
"""


GET_LATEST_CLAIM_REF_FOR_PREFIX = """
SELECT claim_ref
FROM claims
WHERE claim_ref LIKE $1
ORDER BY claim_ref DESC
LIMIT 1
"""


_CLAIM_SELECT = """
SELECT
    c.*,
    u.name AS owner_name,
    u.surname AS owner_surname,
    u.email AS owner_email,
    u.photo_url AS owner_photo_url,
    b.name AS branch_name
FROM claims c
LEFT JOIN users u ON u.uid = c.owner_uid
LEFT JOIN branches b ON b.uid = c.branch_uid
"""


def find_claims_query(
    org_id: Optional[int],
    branch_id: Optional[int],
    owner_id: Optional[int],
    status: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    search: Optional[str] = None,
) -> Tuple[str, str, List[Any]]:
    """
    Paginated claim listing.

    ``owner_id`` is set for callers that may only see their own claims.
    Search matches owner name/surname, category, or the amount as text.

    Returns:
        (select_sql, count_sql, args). ``select_sql`` takes two extra
        trailing arguments: limit and offset.
    """
    where = WhereBuilder(["c.is_deleted = FALSE"])
    where.add_if("c.organisation_uid = {p}", org_id)
    where.add_if("c.branch_uid = {p}", branch_id)
    where.add_if("c.owner_uid = {p}", owner_id)
    where.add_if("c.status = {p}", status)
    where.add_between("c.created_at", start_date, end_date)
    if search:
        where.add(
            "(u.name ILIKE {p} OR u.surname ILIKE {p} OR c.category::text ILIKE {p} "
            "OR c.amount::text ILIKE {p})",
            f"%{search}%",
        )

    select_sql = paginate(f"{_CLAIM_SELECT} {where.clause} ORDER BY c.created_at DESC", where)
    count_sql = (
        "SELECT COUNT(*) FROM claims c LEFT JOIN users u ON u.uid = c.owner_uid "
        f"{where.clause}"
    )
    return select_sql, count_sql, where.args


def get_claim_query(
    claim_id: int,
    org_id: Optional[int] = None,
    include_deleted: bool = False,
) -> Tuple[str, List[Any]]:
    where = WhereBuilder()
    where.add("c.uid = {p}", claim_id)
    where.add_if("c.organisation_uid = {p}", org_id)
    if not include_deleted:
        where.conditions.append("c.is_deleted = FALSE")
    return f"{_CLAIM_SELECT} {where.clause}", where.args


def claims_by_user_query(user_id: int, org_id: Optional[int] = None) -> Tuple[str, List[Any]]:
    where = WhereBuilder(["c.is_deleted = FALSE"])
    where.add("c.owner_uid = {p}", user_id)
    where.add_if("c.organisation_uid = {p}", org_id)
    return f"{_CLAIM_SELECT} {where.clause} ORDER BY c.created_at DESC", where.args


CLAIM_STATS_FOR_OWNER = """
SELECT
    COUNT(*) AS total,
    COUNT(*) FILTER (WHERE status = 'pending') AS pending,
    COUNT(*) FILTER (WHERE status = 'approved') AS approved,
    COUNT(*) FILTER (WHERE status = 'declined') AS declined,
    COUNT(*) FILTER (WHERE status = 'paid') AS paid
FROM claims
WHERE owner_uid = $1 AND is_deleted = FALSE
"""


SOFT_DELETE_CLAIM = """
UPDATE claims
SET is_deleted = TRUE, deleted_at = NOW(), updated_at = NOW()
WHERE uid = $1 AND is_deleted = FALSE
"""


RESTORE_CLAIM = """
UPDATE claims
SET is_deleted = FALSE, deleted_at = NULL, updated_at = NOW()
WHERE uid = $1 AND is_deleted = TRUE
"""


SET_SHARE_TOKEN = """
UPDATE claims
SET share_token = $2, share_token_expires_at = $3, updated_at = NOW()
WHERE uid = $1
"""


GET_CLAIM_BY_SHARE_TOKEN = f"""
{_CLAIM_SELECT}
WHERE c.share_token = $1 AND c.is_deleted = FALSE
"""


def claims_report_query(
    org_id: Optional[int],
    branch_id: Optional[int],
    start_date: datetime,
    end_date: datetime,
) -> Tuple[str, List[Any]]:
    """Claims in a creation-date window, for grouping by status."""
    where = WhereBuilder(["c.is_deleted = FALSE"])
    where.add_if("c.organisation_uid = {p}", org_id)
    where.add_if("c.branch_uid = {p}", branch_id)
    where.add_between("c.created_at", start_date, end_date)
    return f"{_CLAIM_SELECT} {where.clause} ORDER BY c.created_at DESC", where.args
