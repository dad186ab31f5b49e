"""
Slack digest of an organisation's daily field activity.

Posts the organisation activity report for one day (yesterday by default) to
Slack as a Block Kit message through ``slack_sdk``'s ``WebhookClient``.

Idempotency:
- One digest per organisation and date, tracked in ``report_digest_state``
  keyed by ``(organisation_uid, digest_date)``
- ``force=True`` re-sends and bumps ``digest_count``

Environment:
- SLACK_WEBHOOK_URL: Slack incoming webhook URL

Usage:
    result = await send_report_digest(organisation_id=1)
    result = await send_report_digest(1, digest_date=date(2026, 3, 2), force=True)
    status = await get_digest_status(1)
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional

from slack_sdk.webhook import WebhookClient

from fieldops.core.config import get_settings
from fieldops.core.database import get_db_pool
from fieldops.models.enums import ReportGranularity
from fieldops.services import org_activity, report_utils

logger = logging.getLogger(__name__)

MAX_LISTED_USERS: int = 5


# =============================================================================
# State tracking
# =============================================================================

@dataclass
class DigestState:
    """Persisted digest state for one organisation."""
    organisation_id: int
    last_successful_date: date
    digest_count: int


async def check_already_sent(organisation_id: int, digest_date: date) -> bool:
    pool = await get_db_pool()

    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            """
            SELECT digest_date, sent_at
            FROM report_digest_state
            WHERE organisation_uid = $1
              AND digest_date = $2
            """,
            organisation_id,
            digest_date,
        )

        return row is not None


async def mark_digest_sent(organisation_id: int, digest_date: date) -> None:
    """Record a successful send; a forced re-send increments ``digest_count``."""
    pool = await get_db_pool()

    async with pool.acquire() as conn:
        await conn.execute(
            """
            INSERT INTO report_digest_state (organisation_uid, digest_date, sent_at, digest_count)
            VALUES ($1, $2, $3, 1)
            ON CONFLICT (organisation_uid, digest_date)
            DO UPDATE SET
                sent_at = EXCLUDED.sent_at,
                digest_count = report_digest_state.digest_count + 1
            """,
            organisation_id,
            digest_date,
            datetime.now(timezone.utc),
        )


# =============================================================================
# Slack message formatting
# =============================================================================

def format_slack_message(
    digest_date: date,
    organisation_name: str,
    report: Dict[str, Any],
) -> List[Dict[str, Any]]:
    """
    Build the Block Kit blocks for one organisation activity report.

    Sections: header, team summary, top performers, users needing attention
    and a generated-at footer.
    """
    summary = report["summary"]
    email_metrics = report["emailData"]["metrics"]
    growth = summary.get("growth", {})

    blocks: List[Dict[str, Any]] = [
        {
            "type": "header",
            "text": {
                "type": "plain_text",
                "text": f"{organisation_name} daily activity - {digest_date.strftime('%B %d, %Y')}",
                "emoji": True,
            },
        },
        {"type": "divider"},
    ]

    summary_text = (
        f"*Team Summary*\n\n"
        f"Employees: *{summary['totalEmployees']}*  |  "
        f"Hours worked: *{summary['hoursWorked']}*  |  "
        f"Distance: *{summary['distanceKm']} km*\n"
        f"Visits: *{summary['visits']}* ({growth.get('visits', '0%')})  |  "
        f"Claims: *{summary['claims']}*\n"
        f"Leads: *{summary['leads']['new']}* new, *{summary['leads']['converted']}* converted "
        f"({growth.get('leads', '0%')})\n"
        f"Quotations: *{summary['quotations']['count']}* "
        f"worth *{report_utils.format_currency(summary['quotations']['revenue'])}* "
        f"({growth.get('quotations', '0%')})"
    )
    blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": summary_text}})

    performers = email_metrics.get("topPerformers") or []
    if performers:
        lines = [
            f"{i}. *{p['name']}* - {report_utils.format_currency(p['revenue'])}, {p['hours']} h"
            for i, p in enumerate(performers[:MAX_LISTED_USERS], 1)
        ]
        blocks.append({
            "type": "section",
            "text": {"type": "mrkdwn", "text": "*Top Performers*\n\n" + "\n".join(lines)},
        })

    blocks.append({"type": "divider"})

    alerts = email_metrics.get("alertUsers") or []
    if alerts:
        lines = [f"- *{a['name']}*: {a['hours']} h logged" for a in alerts[:MAX_LISTED_USERS]]
        alert_text = "*Needs Attention*\n\n" + "\n".join(lines)
    else:
        alert_text = "*No Alerts*\n\nEveryone logged enough working hours."
    blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": alert_text}})

    blocks.append({"type": "divider"})

    timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
    blocks.append({
        "type": "context",
        "elements": [{"type": "mrkdwn", "text": f"Generated at {timestamp} | {get_settings().website_domain}"}],
    })

    return blocks


# =============================================================================
# Entry points
# =============================================================================

async def send_report_digest(
    organisation_id: int,
    digest_date: Optional[date] = None,
    force: bool = False,
) -> Dict[str, Any]:
    """
    Send the daily activity digest for one organisation.

    Args:
        organisation_id: Organisation to report on.
        digest_date: Day to summarise (default: yesterday, UTC).
        force: Send even if a digest already went out for this date.

    Returns:
        ``{"success", "skipped"?, "reason"?, "date", "error"?}``; errors are
        captured in the result rather than raised.
    """
    settings = get_settings()

    if not settings.slack_webhook_url:
        return {
            'success': False,
            'error': 'SLACK_WEBHOOK_URL not configured. Set this environment variable to enable report digests.',
        }

    target_date = digest_date or (datetime.now(timezone.utc).date() - timedelta(days=1))

    if not force:
        try:
            if await check_already_sent(organisation_id, target_date):
                return {
                    'success': True,
                    'skipped': True,
                    'reason': f'Digest already sent for {target_date}',
                    'date': str(target_date),
                }
        except Exception as e:
            logger.warning(f"Could not read digest state for organisation {organisation_id}: {e}")

    date_range = (
        datetime.combine(target_date, time.min, tzinfo=timezone.utc),
        datetime.combine(target_date, time.max, tzinfo=timezone.utc),
    )
    try:
        report = await org_activity.generate(
            organisation_id,
            granularity=ReportGranularity.END_OF_DAY.value,
            date_range=date_range,
        )
    except Exception as e:
        logger.error(f"Failed to build activity report for organisation {organisation_id}: {e}", exc_info=True)
        return {
            'success': False,
            'error': f'Failed to build activity report: {e}',
            'date': str(target_date),
        }

    if report["summary"]["totalEmployees"] == 0:
        return {
            'success': True,
            'skipped': True,
            'reason': f'No active users for organisation {organisation_id}',
            'date': str(target_date),
        }

    organisation_name = report["emailData"]["metrics"].get("organizationName") or "Organization"
    blocks = format_slack_message(target_date, organisation_name, report)

    try:
        client = WebhookClient(settings.slack_webhook_url)
        response = client.send(blocks=blocks)
    except Exception as e:
        logger.error(f"Failed to send Slack digest for organisation {organisation_id}: {e}")
        return {
            'success': False,
            'error': f'Failed to send Slack message: {e}',
            'date': str(target_date),
        }

    if response.status_code != 200:
        return {
            'success': False,
            'error': f'Slack API returned status {response.status_code}: {response.body}',
            'date': str(target_date),
        }

    try:
        await mark_digest_sent(organisation_id, target_date)
    except Exception as e:
        logger.warning(f"Digest sent but state not recorded for organisation {organisation_id}: {e}")

    logger.info(f"Sent activity digest for organisation {organisation_id} ({target_date})")
    return {
        'success': True,
        'date': str(target_date),
        'total_employees': report["summary"]["totalEmployees"],
        'hours_worked': report["summary"]["hoursWorked"],
    }


async def get_digest_status(organisation_id: int) -> Dict[str, Any]:
    """Latest digest date, send count and the last seven dates for an organisation."""
    configured = bool(get_settings().slack_webhook_url)

    try:
        pool = await get_db_pool()

        async with pool.acquire() as conn:
            recent = await conn.fetch(
                """
                SELECT digest_date, sent_at, digest_count
                FROM report_digest_state
                WHERE organisation_uid = $1
                ORDER BY digest_date DESC
                LIMIT 7
                """,
                organisation_id,
            )
            count_row = await conn.fetchrow(
                """
                SELECT COALESCE(SUM(digest_count), 0) AS total
                FROM report_digest_state
                WHERE organisation_uid = $1
                """,
                organisation_id,
            )
    except Exception as e:
        logger.warning(f"Could not read digest state for organisation {organisation_id}: {e}")
        return {
            'last_successful_date': None,
            'total_digest_count': 0,
            'recent_dates': [],
            'configured': configured,
            'note': 'Digest state table may not be initialized yet',
        }

    return {
        'last_successful_date': str(recent[0]['digest_date']) if recent else None,
        'total_digest_count': int(count_row['total']) if count_row else 0,
        'recent_dates': [
            {
                'date': str(row['digest_date']),
                'sent_at': row['sent_at'].isoformat() if row['sent_at'] else None,
            }
            for row in recent
        ],
        'configured': configured,
    }
