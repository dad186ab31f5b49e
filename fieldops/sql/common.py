"""
Shared SQL building blocks.

``WhereBuilder`` accumulates filter conditions and their positional asyncpg
arguments so list queries can add optional filters without hand-numbering
``$n`` placeholders. ``build_insert_query`` and ``build_update_query`` turn a
column->value mapping into a parameterised statement.

Column names passed to the builders always come from code, never from
request input.
"""

from typing import Any, Dict, List, Optional, Tuple


class WhereBuilder:
    """
    Collect WHERE conditions with positional parameters.

    Templates reference the parameter as ``{p}``; the same placeholder may
    appear more than once in a template:

        where = WhereBuilder(["c.is_deleted = FALSE"])
        where.add("c.organisation_uid = {p}", org_id)
        where.add("(u.name ILIKE {p} OR u.surname ILIKE {p})", f"%{search}%")
        sql = f"SELECT ... {where.clause}"
        rows = await execute_query(sql, *where.args)
    """

    def __init__(self, conditions: Optional[List[str]] = None):
        self.conditions: List[str] = list(conditions or [])
        self.args: List[Any] = []

    def param(self, value: Any) -> str:
        """Register a value and return its placeholder."""
        self.args.append(value)
        return f"${len(self.args)}"

    def add(self, template: str, value: Any) -> "WhereBuilder":
        self.conditions.append(template.format(p=self.param(value)))
        return self

    def add_if(self, template: str, value: Any) -> "WhereBuilder":
        """Add the condition only when ``value`` is not None."""
        if value is not None:
            self.add(template, value)
        return self

    def add_between(self, column: str, start: Any, end: Any) -> "WhereBuilder":
        """``column BETWEEN start AND end``; skipped unless both bounds are set."""
        if start is not None and end is not None:
            low = self.param(start)
            high = self.param(end)
            self.conditions.append(f"{column} BETWEEN {low} AND {high}")
        return self

    @property
    def clause(self) -> str:
        if not self.conditions:
            return ""
        return "WHERE " + " AND ".join(self.conditions)


def paginate(sql: str, where: WhereBuilder) -> str:
    """Append LIMIT/OFFSET placeholders that follow the filter arguments."""
    count = len(where.args)
    return f"{sql} LIMIT ${count + 1} OFFSET ${count + 2}"


def build_insert_query(table: str, fields: Dict[str, Any]) -> Tuple[str, List[Any]]:
    """
    INSERT ... RETURNING * for the given column->value mapping.

    >>> build_insert_query("claims", {"amount": 10, "status": "pending"})[0]
    'INSERT INTO claims (amount, status) VALUES ($1, $2) RETURNING *'
    """
    columns = list(fields.keys())
    placeholders = ", ".join(f"${index}" for index in range(1, len(columns) + 1))
    sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) RETURNING *"
    return sql, [fields[column] for column in columns]


def build_update_query(
    table: str,
    fields: Dict[str, Any],
    conditions: Dict[str, Any],
) -> Tuple[str, List[Any]]:
    """
    UPDATE ... SET <fields>, updated_at = NOW() WHERE <conditions> RETURNING *.

    Raises:
        ValueError: If ``fields`` is empty.
    """
    if not fields:
        raise ValueError("No fields to update")

    args: List[Any] = []
    assignments = []
    for column, value in fields.items():
        args.append(value)
        assignments.append(f"{column} = ${len(args)}")
    assignments.append("updated_at = NOW()")

    where = []
    for column, value in conditions.items():
        args.append(value)
        where.append(f"{column} = ${len(args)}")

    sql = f"UPDATE {table} SET {', '.join(assignments)} WHERE {' AND '.join(where)} RETURNING *"
    return sql, args


GET_USER = """
SELECT u.uid, u.name, u.surname, u.email, u.phone, u.photo_url,
       u.access_level, u.status, u.organisation_uid, u.branch_uid
FROM users u
WHERE u.uid = $1
"""


GET_ORGANISATION = """
SELECT o.uid, o.name, o.status
FROM organisations o
WHERE o.uid = $1
"""


GET_BRANCH_IN_ORGANISATION = """
SELECT b.uid, b.name, b.organisation_uid
FROM branches b
WHERE b.uid = $1 AND b.organisation_uid = $2
"""
