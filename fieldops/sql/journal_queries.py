"""
Journal SQL query module.

Journals are free-form field notes; inspections are journals of type
INSPECTION whose ``inspection_data`` JSON column holds the scored form.
"""

from datetime import datetime
from typing import Any, List, Optional, Tuple

from fieldops.sql.common import WhereBuilder, paginate


_JOURNAL_SELECT = """
SELECT
    j.*,
    u.name AS owner_name,
    u.surname AS owner_surname,
    u.email AS owner_email,
    u.photo_url AS owner_photo_url,
    b.name AS branch_name
FROM journals j
LEFT JOIN users u ON u.uid = j.owner_uid
LEFT JOIN branches b ON b.uid = j.branch_uid
"""


def find_journals_query(
    org_id: Optional[int],
    branch_id: Optional[int],
    owner_id: Optional[int] = None,
    status: Optional[str] = None,
    journal_type: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    search: Optional[str] = None,
) -> Tuple[str, str, List[Any]]:
    """
    Paginated journal listing, newest first.

    Returns:
        (select_sql, count_sql, args); ``select_sql`` expects limit and offset
        as two extra trailing arguments.
    """
    where = WhereBuilder(["j.is_deleted = FALSE"])
    where.add_if("j.organisation_uid = {p}", org_id)
    where.add_if("j.branch_uid = {p}", branch_id)
    where.add_if("j.owner_uid = {p}", owner_id)
    where.add_if("j.status = {p}", status)
    where.add_if("j.type = {p}", journal_type)
    where.add_between("j.created_at", start_date, end_date)
    if search:
        where.add(
            "(j.client_ref ILIKE {p} OR j.comments ILIKE {p} OR j.title ILIKE {p} "
            "OR u.name ILIKE {p} OR u.surname ILIKE {p})",
            f"%{search}%",
        )

    select_sql = paginate(f"{_JOURNAL_SELECT} {where.clause} ORDER BY j.created_at DESC", where)
    count_sql = (
        "SELECT COUNT(*) FROM journals j LEFT JOIN users u ON u.uid = j.owner_uid "
        f"{where.clause}"
    )
    return select_sql, count_sql, where.args


def get_journal_query(
    journal_id: int,
    org_id: Optional[int] = None,
    include_deleted: bool = False,
) -> Tuple[str, List[Any]]:
    where = WhereBuilder()
    where.add("j.uid = {p}", journal_id)
    where.add_if("j.organisation_uid = {p}", org_id)
    if not include_deleted:
        where.conditions.append("j.is_deleted = FALSE")
    return f"{_JOURNAL_SELECT} {where.clause}", where.args


def journals_by_user_query(
    user_id: int,
    org_id: Optional[int] = None,
    journal_type: Optional[str] = None,
) -> Tuple[str, List[Any]]:
    where = WhereBuilder(["j.is_deleted = FALSE"])
    where.add("j.owner_uid = {p}", user_id)
    where.add_if("j.organisation_uid = {p}", org_id)
    where.add_if("j.type = {p}", journal_type)
    return f"{_JOURNAL_SELECT} {where.clause} ORDER BY j.created_at DESC", where.args


def inspections_query(
    org_id: Optional[int],
    branch_id: Optional[int],
    owner_id: Optional[int] = None,
) -> Tuple[str, List[Any]]:
    where = WhereBuilder(["j.is_deleted = FALSE", "j.type = 'INSPECTION'"])
    where.add_if("j.organisation_uid = {p}", org_id)
    where.add_if("j.branch_uid = {p}", branch_id)
    where.add_if("j.owner_uid = {p}", owner_id)
    return f"{_JOURNAL_SELECT} {where.clause} ORDER BY j.created_at DESC", where.args


def journal_stats_queries(org_id: Optional[int]) -> Tuple[str, str, str, List[Any]]:
    """
    Aggregates shown next to a single journal.

    Returns:
        (by_status_sql, by_type_sql, average_score_sql, args)
    """
    where = WhereBuilder(["is_deleted = FALSE"])
    where.add_if("organisation_uid = {p}", org_id)
    by_status = f"SELECT status, COUNT(*) AS count FROM journals {where.clause} GROUP BY status"
    by_type = f"SELECT type, COUNT(*) AS count FROM journals {where.clause} GROUP BY type"
    average = (
        f"SELECT AVG(percentage) FROM journals {where.clause} "
        "AND type = 'INSPECTION' AND percentage IS NOT NULL"
    )
    return by_status, by_type, average, where.args


def journal_report_query(
    org_id: Optional[int],
    branch_id: Optional[int],
    owner_id: Optional[int],
    start_date: Optional[datetime],
    end_date: Optional[datetime],
) -> Tuple[str, List[Any]]:
    where = WhereBuilder(["j.is_deleted = FALSE"])
    where.add_if("j.organisation_uid = {p}", org_id)
    where.add_if("j.branch_uid = {p}", branch_id)
    where.add_if("j.owner_uid = {p}", owner_id)
    where.add_between("j.timestamp", start_date, end_date)
    return f"{_JOURNAL_SELECT} {where.clause} ORDER BY j.timestamp DESC", where.args


UPDATE_INSPECTION_SCORE = """
UPDATE journals
SET total_score = $2,
    max_score = $3,
    percentage = $4,
    overall_rating = $5,
    updated_at = NOW()
WHERE uid = $1
"""


SOFT_DELETE_JOURNAL = """
UPDATE journals
SET is_deleted = TRUE, updated_at = NOW()
WHERE uid = $1 AND is_deleted = FALSE
"""


RESTORE_JOURNAL = """
UPDATE journals
SET is_deleted = FALSE, updated_at = NOW()
WHERE uid = $1 AND is_deleted = TRUE
"""
