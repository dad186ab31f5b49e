"""
Tests for the shared report helpers.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from fieldops.models.enums import ReportGranularity
from fieldops.services import report_utils
from fieldops.services.report_utils import (
    attendance_minutes,
    calculate_growth,
    calculate_progress,
    calculate_remaining,
    calculate_team_metrics,
    format_currency,
    format_date_range,
    format_report_title,
    generate_email_report_data,
    generate_performance_insights,
    get_email_period_label,
    truncate_text,
)

MODULE = 'fieldops.services.report_utils'


class TestFormatting:

    @pytest.mark.parametrize('current,previous,expected', [
        (15, 10, '+50.0%'),
        (5, 10, '-50.0%'),
        (10, 10, '+0.0%'),
        (5, 0, '+100%'),
        (0, 0, '0%'),
    ])
    def test_calculate_growth(self, current: float, previous: float, expected: str) -> None:
        assert calculate_growth(current, previous) == expected

    def test_titles_and_labels(self) -> None:
        assert format_report_title(ReportGranularity.END_OF_DAY) == 'Daily Activity Summary'
        assert format_report_title('weekly') == 'Weekly Organisation Report'
        assert format_report_title('monthly') == 'Daily Organisation Report'
        assert get_email_period_label('end-of-week') == 'Last Week'
        assert get_email_period_label(ReportGranularity.DAILY) == 'Today'

    @pytest.mark.parametrize('amount,expected', [
        (1234567.5, 'R 1 234 567,50'),
        (0, 'R 0,00'),
        (-42.1, '-R 42,10'),
    ])
    def test_format_currency(self, amount: float, expected: str) -> None:
        assert format_currency(amount) == expected

    def test_format_currency_other_code(self) -> None:
        assert format_currency(10, 'USD') == 'USD 10,00'

    def test_progress_and_remaining(self) -> None:
        assert calculate_progress(50, 200) == 25
        assert calculate_progress(10, 0) == 0
        assert calculate_remaining(50, 200) == 150
        assert calculate_remaining(250, 200) == 0

    def test_date_range(self) -> None:
        start = datetime(2026, 3, 2, tzinfo=timezone.utc)
        end = datetime(2026, 3, 8, tzinfo=timezone.utc)

        assert format_date_range(start, end, 'weekly') == '2026-03-02 - 2026-03-08'
        assert format_date_range(start, end, 'daily') == '2026-03-02'

    def test_truncate_text(self) -> None:
        assert truncate_text('abcdef', 3) == 'abc...'
        assert truncate_text('abc', 3) == 'abc'
        assert truncate_text(None, 3) == ''


class TestInsights:

    def test_all_rules_fire(self) -> None:
        insights = generate_performance_insights({
            'hoursWorked': 45,
            'quotationsRevenue': 13000,
            'targetSalesAmount': 10000,
            'leadsNew': 20,
            'leadsConverted': 1,
        })

        assert insights == [
            'High work hours detected - consider work-life balance',
            'Excellent sales performance - above target by 20%',
            'Lead conversion rate needs improvement',
        ]

    def test_quiet_period(self) -> None:
        insights = generate_performance_insights({
            'hoursWorked': 8,
            'quotationsRevenue': 0,
            'targetSalesAmount': 10000,
            'leadsNew': 0,
        })

        assert insights == []

    def test_team_metrics(self) -> None:
        users = [
            {'uid': 1, 'hoursWorked': 8, 'visits': 4, 'quotations': {'count': 2, 'revenue': 5000}},
            {'uid': 2, 'hoursWorked': 1, 'visits': 0, 'quotations': {'count': 0, 'revenue': 0}},
            {'uid': 3, 'hoursWorked': 6, 'visits': 2, 'quotations': {'count': 1, 'revenue': 9000}},
            {'uid': 4, 'hoursWorked': 0, 'visits': 0, 'quotations': None},
        ]

        metrics = calculate_team_metrics(users)

        assert metrics['totalUsers'] == 4
        assert metrics['activeUsers'] == 3
        assert [u['uid'] for u in metrics['topPerformers']] == [3, 1]
        assert [u['uid'] for u in metrics['lowPerformers']] == [2, 4]
        assert metrics['averageMetrics'] == {'hoursWorked': 3.8, 'visits': 1.5, 'revenue': 3500.0}

    def test_team_metrics_empty(self) -> None:
        metrics = calculate_team_metrics([])

        assert metrics['totalUsers'] == 0
        assert metrics['averageMetrics']['revenue'] == 0.0

    def test_email_report_data(self, settings) -> None:
        start = datetime(2026, 3, 3, tzinfo=timezone.utc)

        data = generate_email_report_data(
            'user_daily', ReportGranularity.END_OF_DAY, start, start, {'hoursWorked': 7}
        )

        assert data['title'] == 'Daily Activity Summary'
        assert data['period'] == 'end-of-day'
        assert data['date'] == '2026-03-03'
        assert data['summaryLabel'] == 'Yesterday'
        assert data['insights'] == []
        assert data['dashboardUrl'] == settings.website_domain


class TestCollectors:

    def test_attendance_minutes(self) -> None:
        start = datetime(2026, 3, 3, 8, tzinfo=timezone.utc)
        records = [
            {'check_in': start, 'check_out': start + timedelta(hours=4, minutes=30, seconds=59)},
            {'check_in': start + timedelta(hours=5), 'check_out': None},
            {'check_in': None, 'check_out': None},
        ]

        assert attendance_minutes(records) == 270

    async def test_lead_conversion_rate(self) -> None:
        new = [{'uid': i, 'status': 'PENDING'} for i in range(4)]
        converted = [{'uid': 0, 'status': 'CONVERTED'}]
        start = datetime(2026, 3, 3, tzinfo=timezone.utc)

        with patch(f'{MODULE}.execute_query', new=AsyncMock(side_effect=[new, converted])):
            data = await report_utils.collect_lead_data(2, start, start + timedelta(days=1))

        assert data['newLeadsCount'] == 4
        assert data['convertedCount'] == 1
        assert data['conversionRate'] == 25.0

    async def test_completed_tasks_filter_by_assignee(self) -> None:
        query = AsyncMock(side_effect=[[{'uid': 1}], []])
        start = datetime(2026, 3, 3, tzinfo=timezone.utc)

        with patch(f'{MODULE}.execute_query', new=query):
            data = await report_utils.collect_task_data(2, start, start + timedelta(days=1))

        assert data['completedCount'] == 1
        assert data['completionRate'] == 100
        assert query.call_args_list[0].args[-1] == [{'uid': 2}]

    async def test_quotation_revenue(self) -> None:
        rows = [{'uid': 1, 'total_amount': '1500.50'}, {'uid': 2, 'total_amount': None}]
        start = datetime(2026, 3, 3, tzinfo=timezone.utc)

        with patch(f'{MODULE}.execute_query', new=AsyncMock(return_value=rows)):
            data = await report_utils.collect_quotation_data(2, start, start + timedelta(days=1))

        assert data['count'] == 2
        assert data['totalRevenue'] == 1500.5
        assert data['quotations'][0]['totalAmount'] == '1500.50'
