"""
Tests for the organisation activity report.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from unittest.mock import AsyncMock, patch

import pytest

from fieldops.services import org_activity
from fieldops.services.org_activity import (
    alert_users,
    branch_breakdown,
    calculate_totals,
    generate_recommendations,
    previous_period,
    resolve_period,
    top_performers,
)

MODULE = 'fieldops.services.org_activity'
UTILS = 'fieldops.services.report_utils'

# Wednesday
NOW = datetime(2026, 3, 4, 15, 30, tzinfo=timezone.utc)


def _metrics(
    uid: int,
    hours: float,
    revenue: float = 0.0,
    branch: Optional[Dict[str, Any]] = None,
    leads_new: int = 0,
    leads_converted: int = 0,
    distance: float = 0.0,
) -> Dict[str, Any]:
    return {
        'uid': uid,
        'fullName': f'User {uid}',
        'email': f'user{uid}@loro.co.za',
        'branch': branch,
        'visits': 2,
        'hoursWorked': hours,
        'claims': 1,
        'leads': {'new': leads_new, 'converted': leads_converted, 'conversionRate': 0},
        'quotations': {'count': 1 if revenue else 0, 'revenue': revenue},
        'distanceKm': distance,
        'totalWorkingMinutes': int(hours * 60),
        'efficiency': round(revenue / hours, 2) if hours else 0,
    }


class TestPeriods:

    def test_daily_is_today(self) -> None:
        start, end = resolve_period('daily', now=NOW)

        assert start == datetime(2026, 3, 4, tzinfo=timezone.utc)
        assert end.date() == NOW.date()
        assert end.hour == 23 and end.minute == 59

    def test_weekly_starts_on_monday(self) -> None:
        start, end = resolve_period('weekly', now=NOW)

        assert start == datetime(2026, 3, 2, tzinfo=timezone.utc)
        assert end.date() == datetime(2026, 3, 8).date()

    def test_end_of_day_is_yesterday(self) -> None:
        start, end = resolve_period('end-of-day', now=NOW)

        assert start == datetime(2026, 3, 3, tzinfo=timezone.utc)
        assert end.date() == start.date()

    def test_end_of_week_is_last_week(self) -> None:
        start, end = resolve_period('end-of-week', now=NOW)

        assert start == datetime(2026, 2, 23, tzinfo=timezone.utc)
        assert end.date() == datetime(2026, 3, 1).date()

    def test_explicit_range_wins(self) -> None:
        window = (NOW - timedelta(days=3), NOW)

        assert resolve_period('weekly', window, NOW) == window

    def test_previous_period(self) -> None:
        start, end = resolve_period('weekly', now=NOW)

        assert previous_period('weekly', start, end) == (start - timedelta(days=7), end - timedelta(days=7))
        assert previous_period('daily', start, end)[0] == start - timedelta(days=1)


class TestAggregation:

    def test_totals(self) -> None:
        users = [_metrics(1, 8, 5000, leads_new=3, distance=12.5), _metrics(2, 4.5, 0, leads_new=1)]

        totals = calculate_totals(users)

        assert totals['visits'] == 4
        assert totals['hoursWorked'] == 12.5
        assert totals['leadsNew'] == 4
        assert totals['quotationsCount'] == 1
        assert totals['quotationRevenue'] == 5000
        assert totals['distanceKm'] == 12.5

    def test_branch_breakdown(self) -> None:
        sandton = {'uid': 100, 'name': 'Sandton'}
        users = [_metrics(1, 8, 4000, branch=sandton), _metrics(2, 0, branch=sandton), _metrics(3, 6)]

        branches = branch_breakdown(users)

        assert [b['name'] for b in branches] == ['Sandton', 'Unassigned']
        assert branches[0]['totalEmployees'] == 2
        assert branches[0]['presentEmployees'] == 1
        assert branches[0]['averageWorkingHours'] == 4.0
        assert branches[0]['users'][0]['efficiency'] == 5.0
        assert branches[0]['users'][1]['efficiency'] is None
        assert branches[1]['uid'] == 0

    def test_recommendations_for_quiet_day(self) -> None:
        users = [_metrics(1, 0), _metrics(2, 0), _metrics(3, 5, leads_new=10, leads_converted=1)]

        recommendations = generate_recommendations('end-of-day', users)

        assert recommendations == [
            'Consider team engagement initiatives - less than 80% of staff are active',
            'Focus on sales training and quotation generation strategies',
            'Improve lead qualification and follow-up processes - conversion rate below 20%',
            "Review daily achievements and prepare tomorrow's priorities",
        ]

    def test_recommendations_for_long_week(self) -> None:
        users = [_metrics(1, 55, 20000, leads_new=5, leads_converted=2, distance=1200)]

        recommendations = generate_recommendations('weekly', users)

        assert recommendations == [
            'Monitor work-life balance - average weekly hours exceeding 50',
            'Consider route optimization to reduce travel distance and costs',
        ]

    def test_no_users_no_recommendations(self) -> None:
        assert generate_recommendations('daily', []) == []

    def test_top_performers_and_alerts(self) -> None:
        users = [_metrics(1, 8, 1000), _metrics(2, 0.5, 9000), _metrics(3, 0, 50000), _metrics(4, 6, 3000)]

        top = top_performers(users)
        daily_alerts = alert_users(users, 'daily')
        weekly_alerts = alert_users(users, 'weekly')

        assert [p['name'] for p in top] == ['User 2', 'User 4', 'User 1']
        assert top[0] == {
            'name': 'User 2', 'email': 'user2@loro.co.za', 'revenue': 9000, 'hours': 0.5, 'efficiency': 18000.0,
        }
        assert [a['name'] for a in daily_alerts] == ['User 2', 'User 3']
        assert len(weekly_alerts) == 4
        assert daily_alerts[0]['lastActivity'] == 'N/A'


class TestCollectUserMetrics:

    async def test_distance_failure_is_tolerated(self) -> None:
        # Arrange
        user = {'uid': 2, 'name': 'Thandi', 'surname': 'Mokoena', 'email': 't@loro.co.za',
                'branch_uid': 100, 'branch_name': 'Sandton'}
        start, end = resolve_period('daily', now=NOW)

        # Act
        with patch(f'{UTILS}.collect_attendance_data', new=AsyncMock(return_value={'totalWorkMinutes': 450})), \
                patch(f'{UTILS}.collect_check_in_data', new=AsyncMock(return_value={'count': 3})), \
                patch(f'{UTILS}.collect_lead_data', new=AsyncMock(return_value={
                    'newLeadsCount': 2, 'convertedCount': 1, 'conversionRate': 50.0})), \
                patch(f'{UTILS}.collect_quotation_data', new=AsyncMock(return_value={'count': 1, 'totalRevenue': 3000.0})), \
                patch(f'{UTILS}.collect_claim_data', new=AsyncMock(return_value={'count': 0})), \
                patch(f'{MODULE}._distance_km', new=AsyncMock(side_effect=RuntimeError('no tracking'))):
            metrics = await org_activity.collect_user_metrics(user, start, end, 'daily')

        # Assert
        assert metrics['fullName'] == 'Thandi Mokoena'
        assert metrics['branch'] == {'uid': 100, 'name': 'Sandton'}
        assert metrics['hoursWorked'] == 7.5
        assert metrics['visits'] == 3
        assert metrics['distanceKm'] == 0.0
        assert metrics['efficiency'] == 400.0
        assert metrics['leads'] == {'new': 2, 'converted': 1, 'conversionRate': 50.0}

    async def test_weekly_distance_is_summed_per_day(self) -> None:
        query = AsyncMock(return_value=[])
        start, end = resolve_period('weekly', now=NOW)

        with patch(f'{MODULE}.execute_query', new=query):
            distance = await org_activity._distance_km(2, start, end, per_day=True)

        assert distance == 0.0
        assert query.await_count == 7


class TestGenerate:

    async def test_report_shape_and_growth(self) -> None:
        # Arrange
        users = [{'uid': 1, 'name': 'A'}, {'uid': 2, 'name': 'B'}]
        per_user = [_metrics(1, 8, 12000, leads_new=4, leads_converted=1), _metrics(2, 0)]
        previous = {'quotations': 2, 'leads': 0, 'check_ins': 8}

        # Act
        with patch(f'{MODULE}.execute_query', new=AsyncMock(return_value=users)), \
                patch(f'{MODULE}.execute_query_one', new=AsyncMock(side_effect=[{'name': 'Loro'}, previous])), \
                patch(f'{MODULE}.collect_user_metrics', new=AsyncMock(side_effect=per_user)):
            report = await org_activity.generate(10, granularity='daily', now=NOW)

        # Assert
        assert report['metadata']['reportType'] == 'org_activity'
        assert report['metadata']['dateRange']['start'] == '2026-03-04T00:00:00+00:00'
        summary = report['summary']
        assert summary['totalEmployees'] == 2
        assert summary['visits'] == 4
        assert summary['leads']['conversionRate'] == 25.0
        assert summary['growth'] == {'visits': '-50.0%', 'quotations': '-50.0%', 'leads': '+100%'}
        metrics = report['emailData']['metrics']
        assert metrics['organizationName'] == 'Loro'
        assert metrics['summary']['activeEmployees'] == 1
        assert [a['name'] for a in metrics['alertUsers']] == ['User 2']
        assert report['emailData']['title'] == 'Daily Organisation Report'

    async def test_missing_organisation_uses_placeholder(self) -> None:
        with patch(f'{MODULE}.execute_query', new=AsyncMock(return_value=[])), \
                patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=None)):
            report = await org_activity.generate(10, granularity='end-of-day', now=NOW)

        assert report['emailData']['metrics']['organizationName'] == 'Organization'
        assert report['summary']['totalEmployees'] == 0
        assert report['insights']['recommendations'] == []

    async def test_query_errors_propagate(self) -> None:
        with patch(f'{MODULE}.execute_query', new=AsyncMock(side_effect=RuntimeError('db down'))):
            with pytest.raises(RuntimeError):
                await org_activity.generate(10, now=NOW)
