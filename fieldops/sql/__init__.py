"""
SQL query layer for the fieldops backend.

Every statement uses asyncpg positional placeholders (``$1``, ``$2``...).
Fixed statements are module constants; statements with optional filters are
functions returning ``(sql, args)`` (or ``(select_sql, count_sql, args)`` for
paginated lists) built with ``common.WhereBuilder``.

Submodules:
    common: WhereBuilder, INSERT/UPDATE builders, user/org/branch lookups
    check_in_queries: check-in persistence and listings
    claim_queries: claim listing, stats, soft delete, share tokens
    competitor_queries: competitor filters, analytics inputs, deletes
    journal_queries: journals, inspections and journal statistics
    lead_queries: leads, assignment candidates
    reward_queries: XP transactions and rewards summary
    report_queries: per-user collectors, org scope and map-data fan-out

Example usage:
    from fieldops.sql import claim_queries

    select_sql, count_sql, args = claim_queries.find_claims_query(
        org_id=1, branch_id=None, owner_id=None, status='pending'
    )
    rows = await execute_query(select_sql, *args, limit, offset)
"""

from fieldops.sql import (
    check_in_queries,
    claim_queries,
    common,
    competitor_queries,
    journal_queries,
    lead_queries,
    report_queries,
    reward_queries,
)
from fieldops.sql.common import (
    WhereBuilder,
    build_insert_query,
    build_update_query,
    paginate,
)

__all__ = [
    "check_in_queries",
    "claim_queries",
    "common",
    "competitor_queries",
    "journal_queries",
    "lead_queries",
    "report_queries",
    "reward_queries",
    "WhereBuilder",
    "build_insert_query",
    "build_update_query",
    "paginate",
]
