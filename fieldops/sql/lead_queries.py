"""
Lead SQL query module.

``change_history`` and ``assignees`` are JSON arrays; ``assignees`` holds
``{"uid": n}`` objects so containment (``@>``) finds leads assigned to a user.
"""

from datetime import datetime
from typing import Any, List, Optional, Sequence, Tuple

from fieldops.sql.common import WhereBuilder, paginate


_LEAD_SELECT = """
SELECT
    l.*,
    u.name AS owner_name,
    u.surname AS owner_surname,
    u.email AS owner_email,
    u.photo_url AS owner_photo_url,
    b.name AS branch_name
FROM leads l
LEFT JOIN users u ON u.uid = l.owner_uid
LEFT JOIN branches b ON b.uid = l.branch_uid
"""


def find_leads_query(
    org_id: Optional[int],
    branch_id: Optional[int],
    owner_id: Optional[int] = None,
    status: Optional[str] = None,
    temperature: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    search: Optional[str] = None,
) -> Tuple[str, str, List[Any]]:
    """
    Paginated lead listing, newest first.

    A restricted caller (``owner_id`` set) sees leads they own or are
    assigned to.

    Returns:
        (select_sql, count_sql, args); ``select_sql`` expects limit and offset
        as two extra trailing arguments.
    """
    where = WhereBuilder(["l.is_deleted = FALSE"])
    where.add_if("l.organisation_uid = {p}", org_id)
    where.add_if("l.branch_uid = {p}", branch_id)
    if owner_id is not None:
        owner = where.param(owner_id)
        assigned = where.param([{"uid": owner_id}])
        where.conditions.append(f"(l.owner_uid = {owner} OR l.assignees @> {assigned}::jsonb)")
    where.add_if("l.status = {p}", status)
    where.add_if("l.temperature = {p}", temperature)
    where.add_between("l.created_at", start_date, end_date)
    if search:
        where.add(
            "(l.name ILIKE {p} OR l.email ILIKE {p} OR l.phone ILIKE {p} "
            "OR l.company_name ILIKE {p} OR l.notes ILIKE {p})",
            f"%{search}%",
        )

    select_sql = paginate(f"{_LEAD_SELECT} {where.clause} ORDER BY l.created_at DESC", where)
    count_sql = f"SELECT COUNT(*) FROM leads l {where.clause}"
    return select_sql, count_sql, where.args


def get_lead_query(
    lead_id: int,
    org_id: Optional[int] = None,
    include_deleted: bool = False,
) -> Tuple[str, List[Any]]:
    where = WhereBuilder()
    where.add("l.uid = {p}", lead_id)
    where.add_if("l.organisation_uid = {p}", org_id)
    if not include_deleted:
        where.conditions.append("l.is_deleted = FALSE")
    return f"{_LEAD_SELECT} {where.clause}", where.args


def leads_by_user_query(user_id: int, org_id: Optional[int] = None) -> Tuple[str, List[Any]]:
    where = WhereBuilder(["l.is_deleted = FALSE"])
    owner = where.param(user_id)
    assigned = where.param([{"uid": user_id}])
    where.conditions.append(f"(l.owner_uid = {owner} OR l.assignees @> {assigned}::jsonb)")
    where.add_if("l.organisation_uid = {p}", org_id)
    return f"{_LEAD_SELECT} {where.clause} ORDER BY l.created_at DESC", where.args


def active_users_for_assignment_query(
    org_id: int,
    branch_id: Optional[int] = None,
    user_ids: Optional[Sequence[int]] = None,
) -> Tuple[str, List[Any]]:
    """Active users of the org (and branch) in a stable order for round-robin."""
    where = WhereBuilder(["u.status = 'active'"])
    where.add("u.organisation_uid = {p}", org_id)
    where.add_if("u.branch_uid = {p}", branch_id)
    if user_ids:
        where.add("u.uid = ANY({p}::int[])", list(user_ids))
    return (
        f"SELECT u.uid, u.name, u.surname, u.email FROM users u {where.clause} ORDER BY u.uid ASC",
        where.args,
    )


SOFT_DELETE_LEAD = """
UPDATE leads
SET is_deleted = TRUE, updated_at = NOW()
WHERE uid = $1 AND is_deleted = FALSE
"""


RESTORE_LEAD = """
UPDATE leads
SET is_deleted = FALSE, updated_at = NOW()
WHERE uid = $1 AND is_deleted = TRUE
"""
