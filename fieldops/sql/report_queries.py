"""
Report SQL query module.

Four groups of statements feed the report generators:

- Per-user collectors: ``$1`` is the user id, ``$2``/``$3`` the window
  bounds. Task statements that match assignees take the JSON containment
  value ``[{"uid": user_id}]`` as ``$4``.
- Organisation scope: users, hours and branch lookups.
- Map data: the fan-out reads behind the live operations map. Each builder
  takes the organisation and optional branch/user scope and returns
  ``(sql, args)``.
- Sales analytics: every quotation of an organisation (optionally one branch)
  and its product line items.

Persisted reports live in the ``reports`` table.
"""

from typing import Any, List, Optional, Sequence, Tuple

from fieldops.sql.common import WhereBuilder


# =============================================================================
# Per-user collectors
# =============================================================================

USER_ATTENDANCE_BETWEEN = """
SELECT a.*
FROM attendance a
WHERE a.owner_uid = $1 AND a.check_in BETWEEN $2 AND $3
ORDER BY a.check_in ASC
"""


USER_NEW_LEADS_BETWEEN = """
SELECT l.uid, l.name, l.company_name, l.email, l.phone, l.image, l.latitude, l.longitude,
       l.status, l.temperature, l.estimated_value, l.created_at
FROM leads l
WHERE l.owner_uid = $1 AND l.is_deleted = FALSE AND l.created_at BETWEEN $2 AND $3
ORDER BY l.created_at ASC
"""


USER_CONVERTED_LEADS_BETWEEN = """
SELECT l.uid, l.name, l.company_name, l.email, l.phone, l.status, l.estimated_value, l.updated_at
FROM leads l
WHERE l.owner_uid = $1 AND l.is_deleted = FALSE AND l.status = 'CONVERTED'
  AND l.updated_at BETWEEN $2 AND $3
ORDER BY l.updated_at ASC
"""


USER_COMPLETED_TASKS_BETWEEN = """
SELECT t.uid, t.title, t.description, t.priority, t.status, t.completion_date, t.created_at
FROM tasks t
WHERE t.status = 'COMPLETED'
  AND t.completion_date BETWEEN $2 AND $3
  AND (t.assignees @> $4::jsonb OR t.creator_uid = $1)
ORDER BY t.completion_date ASC
"""


USER_CREATED_TASKS_BETWEEN = """
SELECT t.uid, t.title, t.priority, t.status, t.created_at
FROM tasks t
WHERE t.creator_uid = $1 AND t.created_at BETWEEN $2 AND $3
ORDER BY t.created_at ASC
"""


USER_TASKS_DUE_BETWEEN = """
SELECT t.uid, t.title, t.description, t.priority, t.status, t.deadline
FROM tasks t
WHERE t.deadline BETWEEN $2 AND $3
  AND t.status NOT IN ('COMPLETED', 'CANCELLED')
  AND (t.assignees @> $4::jsonb OR t.creator_uid = $1)
ORDER BY t.deadline ASC
"""


USER_OVERDUE_TASKS = """
SELECT t.uid, t.title, t.description, t.priority, t.status, t.deadline
FROM tasks t
WHERE t.status = 'OVERDUE'
  AND (t.assignees @> $2::jsonb OR t.creator_uid = $1)
ORDER BY t.deadline ASC
"""


USER_TASK_COMPLETIONS_BY_HOUR = """
SELECT EXTRACT(HOUR FROM t.completion_date)::int AS hour, COUNT(*) AS count
FROM tasks t
WHERE t.status = 'COMPLETED'
  AND t.completion_date >= $2
  AND (t.assignees @> $3::jsonb OR t.creator_uid = $1)
GROUP BY hour
ORDER BY hour
"""


USER_QUOTATIONS_BETWEEN = """
SELECT q.uid, q.quotation_number, q.total_amount, q.total_items, q.status, q.created_at,
       cl.name AS client_name
FROM quotations q
LEFT JOIN clients cl ON cl.uid = q.client_uid
WHERE q.placed_by_uid = $1 AND q.created_at BETWEEN $2 AND $3
ORDER BY q.created_at ASC
"""


USER_CHECK_INS_BETWEEN = """
SELECT c.uid, c.check_in_time, c.check_out_time, c.check_in_location, c.duration,
       c.client_uid, cl.name AS client_name
FROM check_ins c
LEFT JOIN clients cl ON cl.uid = c.client_uid
WHERE c.owner_uid = $1 AND c.check_in_time BETWEEN $2 AND $3
ORDER BY c.check_in_time ASC
"""


USER_CLAIMS_BETWEEN = """
SELECT c.uid, c.claim_ref, c.amount, c.category, c.currency, c.status, c.created_at
FROM claims c
WHERE c.owner_uid = $1 AND c.is_deleted = FALSE AND c.created_at BETWEEN $2 AND $3
ORDER BY c.created_at ASC
"""


USER_JOURNALS_BETWEEN = """
SELECT j.uid, j.client_ref, j.comments, j.file_url, j.attachments, j.created_at
FROM journals j
WHERE j.owner_uid = $1 AND j.is_deleted = FALSE AND j.created_at BETWEEN $2 AND $3
ORDER BY j.created_at ASC
"""


USER_NEW_CLIENTS_BETWEEN = """
SELECT cl.uid, cl.name, cl.created_at
FROM clients cl
WHERE cl.assigned_sales_rep_uid = $1 AND cl.created_at BETWEEN $2 AND $3
ORDER BY cl.created_at ASC
"""


USER_TRACKING_BETWEEN = """
SELECT t.latitude, t.longitude, t.address, t.speed, t.created_at
FROM tracking t
WHERE t.owner_uid = $1 AND t.created_at BETWEEN $2 AND $3
ORDER BY t.created_at ASC
"""


USER_TARGETS = """
SELECT *
FROM user_targets
WHERE owner_uid = $1
"""


# =============================================================================
# Organisation scope
# =============================================================================

GET_USER_WITH_ORGANISATION = """
SELECT u.uid, u.name, u.surname, u.email, u.organisation_uid, u.branch_uid,
       o.name AS organisation_name, b.name AS branch_name
FROM users u
LEFT JOIN organisations o ON o.uid = u.organisation_uid
LEFT JOIN branches b ON b.uid = u.branch_uid
WHERE u.uid = $1
"""


ORGANISATION_HOURS = """
SELECT h.weekly_schedule, h.open_time, h.close_time, h.timezone
FROM organisation_hours h
WHERE h.organisation_uid = $1
"""


def organisation_users_query(org_id: int, branch_id: Optional[int] = None) -> Tuple[str, List[Any]]:
    where = WhereBuilder(["u.status = 'active'"])
    where.add("u.organisation_uid = {p}", org_id)
    where.add_if("u.branch_uid = {p}", branch_id)
    return (
        f"""
        SELECT u.uid, u.name, u.surname, u.email, u.branch_uid, b.name AS branch_name
        FROM users u
        LEFT JOIN branches b ON b.uid = u.branch_uid
        {where.clause}
        ORDER BY u.uid ASC
        """,
        where.args,
    )


def org_period_counts_query(
    org_id: int,
    branch_id: Optional[int],
    start: Any,
    end: Any,
) -> Tuple[str, List[Any]]:
    """Quotation, new-lead and check-in counts for an organisation window."""
    args: List[Any] = [org_id, start, end]
    branch_filter = ""
    if branch_id:
        args.append(branch_id)
        branch_filter = "AND x.branch_uid = $4"

    return (
        f"""
        SELECT
            (SELECT COUNT(*) FROM quotations x
             WHERE x.organisation_uid = $1 AND x.created_at BETWEEN $2 AND $3
             {branch_filter}) AS quotations,
            (SELECT COUNT(*) FROM leads x
             WHERE x.organisation_uid = $1 AND x.is_deleted = FALSE
               AND x.created_at BETWEEN $2 AND $3
             {branch_filter}) AS leads,
            (SELECT COUNT(*) FROM check_ins x
             WHERE x.organisation_uid = $1 AND x.check_in_time BETWEEN $2 AND $3
             {branch_filter}) AS check_ins
        """,
        args,
    )


# =============================================================================
# Persisted reports and the end-of-day job
# =============================================================================

REPORT_GENERATED_SINCE = """
SELECT r.uid
FROM reports r
WHERE r.owner_uid = $1 AND r.report_type = $2 AND r.generated_at >= $3
LIMIT 1
"""


INSERT_REPORT = """
INSERT INTO reports (
    name, description, report_type, filters, report_data,
    owner_uid, organisation_uid, branch_uid, generated_at
) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, NOW())
RETURNING uid, name, description, report_type, filters, report_data,
          owner_uid, organisation_uid, branch_uid, generated_at
"""


OPEN_SHIFT_USERS = """
SELECT DISTINCT ON (a.owner_uid) a.owner_uid, u.organisation_uid, u.branch_uid
FROM attendance a
JOIN users u ON u.uid = a.owner_uid
WHERE a.status IN ('present', 'on break') AND a.check_out IS NULL
ORDER BY a.owner_uid, a.check_in DESC
"""


# =============================================================================
# Map data
# =============================================================================

def _scoped(
    alias: str,
    org_id: int,
    branch_id: Optional[int],
    user_id: Optional[int] = None,
    owner_column: str = "owner_uid",
    conditions: Optional[List[str]] = None,
) -> WhereBuilder:
    where = WhereBuilder(conditions)
    where.add(f"{alias}.organisation_uid = {{p}}", org_id)
    where.add_if(f"{alias}.branch_uid = {{p}}", branch_id)
    where.add_if(f"{alias}.{owner_column} = {{p}}", user_id)
    return where


_ATTENDANCE_SELECT = """
SELECT a.*, u.name AS owner_name, u.surname AS owner_surname, u.email AS owner_email,
       u.photo_url AS owner_photo_url, u.phone AS owner_phone, b.name AS branch_name
FROM attendance a
LEFT JOIN users u ON u.uid = a.owner_uid
LEFT JOIN branches b ON b.uid = a.branch_uid
"""


def map_active_attendance_query(
    org_id: int,
    branch_id: Optional[int] = None,
    user_id: Optional[int] = None,
) -> Tuple[str, List[Any]]:
    where = _scoped(
        "a", org_id, branch_id, user_id,
        conditions=["a.status IN ('present', 'on break')", "a.check_out IS NULL"],
    )
    return f"{_ATTENDANCE_SELECT} {where.clause} ORDER BY a.check_in DESC", where.args


def map_recent_attendance_query(
    org_id: int,
    branch_id: Optional[int] = None,
    user_id: Optional[int] = None,
) -> Tuple[str, List[Any]]:
    where = _scoped(
        "a", org_id, branch_id, user_id,
        conditions=["a.check_in >= NOW() - INTERVAL '7 days'"],
    )
    return f"{_ATTENDANCE_SELECT} {where.clause} ORDER BY a.check_in DESC LIMIT 100", where.args


def map_clients_query(org_id: int, branch_id: Optional[int] = None) -> Tuple[str, List[Any]]:
    where = _scoped(
        "cl", org_id, branch_id,
        conditions=["cl.latitude IS NOT NULL", "cl.longitude IS NOT NULL"],
    )
    return f"SELECT cl.* FROM clients cl {where.clause} ORDER BY cl.name ASC", where.args


def map_quotations_query(
    org_id: int,
    branch_id: Optional[int] = None,
    user_id: Optional[int] = None,
) -> Tuple[str, List[Any]]:
    where = _scoped("q", org_id, branch_id, user_id, owner_column="placed_by_uid")
    return (
        f"""
        SELECT q.*, cl.name AS client_name, cl.latitude AS client_latitude,
               cl.longitude AS client_longitude, cl.address AS client_address
        FROM quotations q
        LEFT JOIN clients cl ON cl.uid = q.client_uid
        {where.clause}
        ORDER BY q.created_at DESC
        LIMIT 1000
        """,
        where.args,
    )


def map_leads_query(
    org_id: int,
    branch_id: Optional[int] = None,
    user_id: Optional[int] = None,
) -> Tuple[str, List[Any]]:
    where = _scoped("l", org_id, branch_id, user_id, conditions=["l.is_deleted = FALSE"])
    return (
        f"""
        SELECT l.*, u.name AS owner_name, u.surname AS owner_surname
        FROM leads l
        LEFT JOIN users u ON u.uid = l.owner_uid
        {where.clause}
        ORDER BY l.created_at DESC
        """,
        where.args,
    )


def map_journals_query(
    org_id: int,
    branch_id: Optional[int] = None,
    user_id: Optional[int] = None,
) -> Tuple[str, List[Any]]:
    where = _scoped(
        "j", org_id, branch_id, user_id,
        conditions=["j.is_deleted = FALSE", "j.created_at >= NOW() - INTERVAL '30 days'"],
    )
    return (
        f"""
        SELECT j.*, u.name AS owner_name, u.surname AS owner_surname
        FROM journals j
        LEFT JOIN users u ON u.uid = j.owner_uid
        {where.clause}
        ORDER BY j.created_at DESC
        LIMIT 200
        """,
        where.args,
    )


def map_check_ins_query(
    org_id: int,
    branch_id: Optional[int] = None,
    user_id: Optional[int] = None,
) -> Tuple[str, List[Any]]:
    where = _scoped("c", org_id, branch_id, user_id)
    return (
        f"""
        SELECT c.*, u.name AS owner_name, u.surname AS owner_surname,
               cl.name AS client_name, cl.latitude AS client_latitude,
               cl.longitude AS client_longitude, cl.address AS client_address
        FROM check_ins c
        LEFT JOIN users u ON u.uid = c.owner_uid
        LEFT JOIN clients cl ON cl.uid = c.client_uid
        {where.clause}
        ORDER BY c.check_in_time DESC
        LIMIT 200
        """,
        where.args,
    )


def map_tasks_query(
    org_id: int,
    branch_id: Optional[int] = None,
    user_id: Optional[int] = None,
) -> Tuple[str, List[Any]]:
    where = _scoped(
        "t", org_id, branch_id, user_id, owner_column="creator_uid",
        conditions=["t.updated_at >= NOW() - INTERVAL '30 days'"],
    )
    return f"SELECT t.* FROM tasks t {where.clause} ORDER BY t.updated_at DESC LIMIT 200", where.args


def map_claims_query(
    org_id: int,
    branch_id: Optional[int] = None,
    user_id: Optional[int] = None,
) -> Tuple[str, List[Any]]:
    where = _scoped("c", org_id, branch_id, user_id, conditions=["c.is_deleted = FALSE"])
    return (
        f"""
        SELECT c.*, u.name AS owner_name, u.surname AS owner_surname
        FROM claims c
        LEFT JOIN users u ON u.uid = c.owner_uid
        {where.clause}
        ORDER BY c.created_at DESC
        LIMIT 200
        """,
        where.args,
    )


def client_locations_query(client_ids: Sequence[int]) -> Tuple[str, List[Any]]:
    return (
        "SELECT cl.uid, cl.name, cl.latitude, cl.longitude, cl.address "
        "FROM clients cl WHERE cl.uid = ANY($1::int[])",
        [list(client_ids)],
    )


def latest_attendance_locations_query(owner_ids: Sequence[int]) -> Tuple[str, List[Any]]:
    """Most recent check-in coordinates per owner."""
    return (
        """
        SELECT DISTINCT ON (a.owner_uid)
               a.owner_uid, a.check_in_latitude, a.check_in_longitude, a.check_in
        FROM attendance a
        WHERE a.owner_uid = ANY($1::int[])
          AND a.check_in_latitude IS NOT NULL AND a.check_in_longitude IS NOT NULL
        ORDER BY a.owner_uid, a.check_in DESC
        """,
        [list(owner_ids)],
    )


# =============================================================================
# Sales analytics
# =============================================================================

def sales_quotations_query(org_id: int, branch_id: Optional[int] = None) -> Tuple[str, List[Any]]:
    """Every quotation of the organisation (or branch) with client and sales rep names."""
    where = _scoped("q", org_id, branch_id)
    return (
        f"""
        SELECT q.uid, q.quotation_number, q.total_amount, q.status, q.notes,
               q.created_at, q.updated_at, q.client_uid, q.placed_by_uid,
               cl.name AS client_name,
               u.name AS placed_by_name, u.username AS placed_by_username
        FROM quotations q
        LEFT JOIN clients cl ON cl.uid = q.client_uid
        LEFT JOIN users u ON u.uid = q.placed_by_uid
        {where.clause}
        ORDER BY q.created_at DESC
        """,
        where.args,
    )


def sales_quotation_items_query(org_id: int, branch_id: Optional[int] = None) -> Tuple[str, List[Any]]:
    """Line items of the same quotations; items without a product are left out."""
    where = _scoped("q", org_id, branch_id)
    return (
        f"""
        SELECT qi.quotation_uid, qi.quantity, qi.total_price, p.name AS product_name
        FROM quotation_items qi
        JOIN quotations q ON q.uid = qi.quotation_uid
        JOIN products p ON p.uid = qi.product_uid
        {where.clause}
        """,
        where.args,
    )
