"""
End-of-day user report job.

Finds every user whose attendance shift is still open (present or on break,
no check-out) and saves their daily report. A user who already has a
``user_daily`` report generated today is skipped, so the job can be re-run
safely; ``force=True`` regenerates regardless.

Usage:
    result = await generate_end_of_day_reports()
    print(result['summary'])
"""

import logging
from datetime import datetime, time, timezone
from typing import Any, Dict, Optional

from fieldops.core.database import execute_query, execute_query_one
from fieldops.models.enums import ReportType
from fieldops.services import reports as report_service
from fieldops.sql import report_queries

logger = logging.getLogger(__name__)


async def report_exists_since(user_id: int, since: datetime) -> bool:
    row = await execute_query_one(
        report_queries.REPORT_GENERATED_SINCE, user_id, ReportType.USER_DAILY.value, since
    )
    return row is not None


async def generate_user_report(user_id: int, since: datetime, force: bool = False) -> Dict[str, Any]:
    """Generate one user's report; failures are captured in the result."""
    if not force:
        try:
            if await report_exists_since(user_id, since):
                return {
                    'success': True,
                    'skipped': True,
                    'userId': user_id,
                    'reason': 'Daily report already generated today',
                }
        except Exception as e:
            logger.warning(f"Could not check existing reports for user {user_id}: {e}")

    try:
        report = await report_service.generate_user_daily_report(user_id, triggered_by_activity=False)
    except Exception as e:
        detail = getattr(e, 'detail', None) or str(e)
        logger.error(f"End-of-day report failed for user {user_id}: {detail}")
        return {'success': False, 'userId': user_id, 'error': detail}

    # Closed days come back unsaved, as the bare report
    metadata = report.get('metadata') or {}
    if metadata.get('isWorkingDay') is False:
        return {
            'success': True,
            'skipped': True,
            'userId': user_id,
            'reason': metadata.get('skipReason') or 'Organization closed',
        }

    return {'success': True, 'userId': user_id, 'reportId': report.get('uid')}


async def generate_end_of_day_reports(
    now: Optional[datetime] = None,
    force: bool = False,
) -> Dict[str, Any]:
    """
    Save daily reports for all users with an open shift.

    Args:
        now: Reference time; "today" starts at its UTC midnight.
        force: Regenerate even when a report exists for today.

    Returns:
        Dict with ``success`` (no failures), ``date``, per-user ``results``
        and a ``summary`` of processed/generated/skipped/failed counts.
    """
    now = now or datetime.now(timezone.utc)
    since = datetime.combine(now.date(), time.min, tzinfo=timezone.utc)

    rows = await execute_query(report_queries.OPEN_SHIFT_USERS)
    logger.info(f"End-of-day reports: {len(rows)} users with open shifts")

    results = []
    generated_count = 0
    skipped_count = 0
    failed_count = 0

    for row in rows:
        result = await generate_user_report(row['owner_uid'], since, force)
        results.append(result)

        if result.get('success'):
            if result.get('skipped'):
                skipped_count += 1
            else:
                generated_count += 1
        else:
            failed_count += 1

    logger.info(
        f"End-of-day reports done: {generated_count} generated, "
        f"{skipped_count} skipped, {failed_count} failed"
    )
    return {
        'success': failed_count == 0,
        'date': str(now.date()),
        'results': results,
        'summary': {
            'processed': len(rows),
            'generated_count': generated_count,
            'skipped_count': skipped_count,
            'failed_count': failed_count,
        },
    }
