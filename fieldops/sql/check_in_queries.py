"""
Check-in SQL query module.

Parameterized statements for the check_ins table and the lookups the check-in
service needs (owning user, client GPS update). Every statement uses asyncpg
``$n`` placeholders; callers pass values positionally.
"""

from typing import Any, List, Optional, Tuple


GET_USER_WITH_ORG = """
SELECT u.uid, u.name, u.surname, u.email, u.organisation_uid
FROM users u
WHERE u.uid = $1
"""


INSERT_CHECK_IN = """
INSERT INTO check_ins (
    check_in_time, check_in_photo, check_in_location, full_address, notes,
    owner_uid, organisation_uid, branch_uid, client_uid,
    contact_full_name, contact_image, contact_cell_phone, contact_landline,
    contact_address, company_name, business_type, person_seen_position,
    meeting_link, sales_value, quotation_number, quotation_uid,
    method_of_contact, follow_up
) VALUES (
    COALESCE($1, NOW()), $2, $3, $4, $5,
    $6, $7, $8, $9,
    $10, $11, $12, $13,
    $14, $15, $16, $17,
    $18, $19, $20, $21,
    $22, $23
)
RETURNING uid
"""


UPDATE_CLIENT_GPS = """
UPDATE clients
SET gps_coordinates = $2, updated_at = NOW()
WHERE uid = $1
"""


GET_LATEST_CHECK_IN_FOR_OWNER = """
SELECT c.*
FROM check_ins c
WHERE c.owner_uid = $1
ORDER BY c.check_in_time DESC
LIMIT 1
"""


UPDATE_CHECK_OUT = """
UPDATE check_ins
SET check_out_time = $2,
    check_out_photo = $3,
    check_out_location = $4,
    duration = $5,
    updated_at = NOW()
WHERE uid = $1
"""


_CHECK_IN_SELECT = """
SELECT
    c.*,
    u.name AS owner_name,
    u.surname AS owner_surname,
    u.email AS owner_email,
    u.photo_url AS owner_photo_url,
    cl.name AS client_name,
    b.name AS branch_name
FROM check_ins c
LEFT JOIN users u ON u.uid = c.owner_uid
LEFT JOIN clients cl ON cl.uid = c.client_uid
LEFT JOIN branches b ON b.uid = c.branch_uid
"""


def get_all_check_ins_query(org_id: Optional[int] = None) -> Tuple[str, List[Any]]:
    """
    Every check-in, newest first, optionally scoped to one organisation.

    Returns:
        (sql, args) tuple.
    """
    if org_id is None:
        return f"{_CHECK_IN_SELECT} ORDER BY c.check_in_time DESC", []
    return (
        f"{_CHECK_IN_SELECT} WHERE c.organisation_uid = $1 ORDER BY c.check_in_time DESC",
        [org_id],
    )


def get_user_check_ins_query(user_id: int, org_id: Optional[int] = None) -> Tuple[str, List[Any]]:
    """Check-ins of one user, newest first."""
    args: List[Any] = [user_id]
    where = "WHERE c.owner_uid = $1"
    if org_id is not None:
        args.append(org_id)
        where += " AND c.organisation_uid = $2"
    return f"{_CHECK_IN_SELECT} {where} ORDER BY c.check_in_time DESC", args
