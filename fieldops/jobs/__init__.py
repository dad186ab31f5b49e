"""
Scheduled jobs for fieldops.

- End-of-day user reports (end_of_day_reports.py): saves the daily report of
  every user still on shift, skipping users who already have one today.
- Slack report digest (report_digest.py): posts an organisation's daily
  activity summary to Slack once per organisation and date.

Both jobs accept ``force=True`` to re-run intentionally.

Environment:
- DATABASE_URL: report and digest state storage
- SLACK_WEBHOOK_URL: Slack incoming webhook for the digest

Usage:

    from fieldops.jobs import generate_end_of_day_reports, send_report_digest

    summary = await generate_end_of_day_reports()
    result = await send_report_digest(organisation_id=1)
"""

from fieldops.jobs.end_of_day_reports import (
    generate_end_of_day_reports,
    generate_user_report,
)
from fieldops.jobs.report_digest import (
    check_already_sent,
    get_digest_status,
    send_report_digest,
)

__all__ = [
    'generate_end_of_day_reports',  # Save daily reports for users on shift
    'generate_user_report',         # Save one user's report unless already done
    'send_report_digest',           # Post an organisation digest to Slack
    'check_already_sent',           # Digest idempotency check
    'get_digest_status',            # Digest send history
]
