"""
Tests for report dispatch, caching and daily report persistence.
"""

from datetime import date, datetime, timezone
from typing import Any, Dict, List
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import HTTPException

from fieldops.core.cache import get_cache
from fieldops.models.enums import ReportType, SalesDashboard
from fieldops.services import reports
from fieldops.services.reports import report_cache_key

MODULE = 'fieldops.services.reports'


@pytest.fixture
def daily_report() -> Dict[str, Any]:
    return {
        'metadata': {
            'reportType': 'user_daily',
            'userId': 2,
            'userName': 'Thandi Mokoena',
            'date': '2026-03-04',
            'isWorkingDay': True,
        },
        'summary': {'hoursWorked': 7.5},
    }


class TestCacheKey:

    def test_minimal_key(self) -> None:
        assert report_cache_key('map_data', 10) == 'reports:map_data_org10'

    def test_full_key(self) -> None:
        start = datetime(2026, 3, 1, tzinfo=timezone.utc)
        end = datetime(2026, 3, 7, tzinfo=timezone.utc)

        key = report_cache_key('user_daily', 10, 100, (start, end), {'userId': 2, 'granularity': 'daily'})

        assert key == (
            'reports:user_daily_org10_branch100'
            '_2026-03-01T00:00:00+00:00_2026-03-07T00:00:00+00:00'
            '_userId2_granularitydaily'
        )


class TestGenerateReport:

    async def test_dispatches_org_activity(self) -> None:
        generator = AsyncMock(return_value={'summary': {'visits': 3}})

        with patch(f'{MODULE}.org_activity.generate', new=generator):
            report = await reports.generate_report(
                ReportType.ORG_ACTIVITY, 10, 100, filters={'granularity': 'weekly'}, generated_by=1
            )

        assert report['type'] == 'org_activity'
        assert report['name'] == 'org_activity report'
        assert report['summary'] == {'visits': 3}
        assert report['generatedBy'] == {'uid': 1}
        assert report['filters']['granularity'] == 'weekly'
        generator.assert_awaited_once_with(10, 100, granularity='weekly', date_range=None)

    async def test_second_call_is_served_from_cache(self) -> None:
        generator = AsyncMock(return_value={'summary': {}})

        with patch(f'{MODULE}.org_activity.generate', new=generator):
            first = await reports.generate_report('org_activity', 10)
            second = await reports.generate_report('org_activity', 10)

        generator.assert_awaited_once()
        assert 'fromCache' not in first
        assert second['fromCache'] is True
        assert second['cachedAt'] == first['generatedAt']

    async def test_user_daily_uses_user_filter(self) -> None:
        generator = AsyncMock(return_value={'metadata': {}})

        with patch(f'{MODULE}.user_daily.generate', new=generator):
            await reports.generate_report('user_daily', 10, filters={'userId': 2})

        assert generator.call_args.args == (2,)

    @pytest.mark.parametrize('report_type,message', [
        ('main', 'Report type main is not implemented yet'),
        ('quotation', 'Report type quotation is not implemented yet'),
        ('forecast', 'Unsupported report type: forecast'),
    ])
    async def test_unsupported_types_are_400(self, report_type: str, message: str) -> None:
        with pytest.raises(HTTPException) as exc_info:
            await reports.generate_report(report_type, 10)

        assert exc_info.value.status_code == 400
        assert exc_info.value.detail == message

    async def test_generator_failure_is_400(self) -> None:
        with patch(f'{MODULE}.org_activity.generate', new=AsyncMock(side_effect=RuntimeError('db down'))):
            with pytest.raises(HTTPException) as exc_info:
                await reports.generate_report('org_activity', 10)

        assert exc_info.value.detail == 'db down'


class TestUserDailyReport:

    async def test_report_is_persisted(self, daily_report: Dict[str, Any], sample_user_row: Dict[str, Any]) -> None:
        # Arrange
        saved = {'uid': 900, 'report_type': 'user_daily', 'owner_uid': 2}
        lookup = AsyncMock(side_effect=[sample_user_row, saved])

        # Act
        with patch(f'{MODULE}.user_daily.generate', new=AsyncMock(return_value=daily_report)), \
                patch(f'{MODULE}.execute_query_one', new=lookup):
            result = await reports.generate_user_daily_report(2, triggered_by_activity=True)

        # Assert
        assert result == {'uid': 900, 'reportType': 'user_daily', 'ownerUid': 2}
        args = lookup.call_args.args
        assert args[1] == 'Daily Report - Thandi Mokoena - 2026-03-04'
        assert args[3] == 'user_daily'
        assert args[4] == {'userId': 2, 'date': '2026-03-04'}
        assert args[5] is daily_report
        assert args[6:] == (2, sample_user_row['organisation_uid'], sample_user_row['branch_uid'])

    async def test_closed_day_is_not_persisted(
        self, daily_report: Dict[str, Any], sample_user_row: Dict[str, Any]
    ) -> None:
        closed = {**daily_report, 'metadata': {**daily_report['metadata'], 'isWorkingDay': False}}
        lookup = AsyncMock(return_value=sample_user_row)

        with patch(f'{MODULE}.user_daily.generate', new=AsyncMock(return_value=closed)), \
                patch(f'{MODULE}.execute_query_one', new=lookup):
            result = await reports.generate_user_daily_report(2)

        assert result is closed
        # Only the user lookup; nothing is inserted.
        lookup.assert_awaited_once()

    @pytest.mark.parametrize('error,status', [
        (ValueError('User with ID 2 not found'), 404),
        (ValueError('User ID is required for generating a daily user report'), 400),
        (RuntimeError('Failed to generate daily report: boom'), 500),
    ])
    async def test_errors_map_to_status(
        self, error: Exception, status: int, sample_user_row: Dict[str, Any]
    ) -> None:
        with patch(f'{MODULE}.user_daily.generate', new=AsyncMock(side_effect=error)), \
                patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=sample_user_row)):
            with pytest.raises(HTTPException) as exc_info:
                await reports.generate_user_daily_report(2)

        assert exc_info.value.status_code == status
        assert exc_info.value.detail == str(error)

    async def test_missing_user_is_404_before_generating(self) -> None:
        generator = AsyncMock()

        with patch(f'{MODULE}.user_daily.generate', new=generator), \
                patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=None)):
            with pytest.raises(HTTPException) as exc_info:
                await reports.generate_user_daily_report(7, organisation_id=10)

        assert exc_info.value.status_code == 404
        assert exc_info.value.detail == 'User with ID 7 not found'
        generator.assert_not_awaited()

    async def test_user_of_another_organisation_is_404(self, sample_user_row: Dict[str, Any]) -> None:
        # Arrange
        outsider = {**sample_user_row, 'uid': 5, 'organisation_uid': 99}
        generator = AsyncMock()
        lookup = AsyncMock(return_value=outsider)

        # Act
        with patch(f'{MODULE}.user_daily.generate', new=generator), \
                patch(f'{MODULE}.execute_query_one', new=lookup):
            with pytest.raises(HTTPException) as exc_info:
                await reports.generate_user_daily_report(5, organisation_id=10)

        # Assert
        assert exc_info.value.status_code == 404
        generator.assert_not_awaited()
        lookup.assert_awaited_once()

    async def test_report_day_is_handed_to_generator(
        self, daily_report: Dict[str, Any], sample_user_row: Dict[str, Any]
    ) -> None:
        generator = AsyncMock(return_value=daily_report)
        saved = {'uid': 900}

        with patch(f'{MODULE}.user_daily.generate', new=generator), \
                patch(f'{MODULE}.execute_query_one', new=AsyncMock(side_effect=[sample_user_row, saved])):
            await reports.generate_user_daily_report(2, organisation_id=10, report_day=date(2026, 3, 4))

        assert generator.call_args.kwargs['report_day'] == date(2026, 3, 4)
        assert generator.call_args.kwargs['date_range'] is None


class TestMapAndOrgActivity:

    async def test_map_summary_counts(self) -> None:
        data = {'workers': [{}, {}], 'clients': [{}], 'competitors': [], 'quotations': [{}, {}, {}]}
        generator = AsyncMock(return_value=data)

        with patch(f'{MODULE}.map_data.generate', new=generator):
            result = await reports.generate_map_data(10, user_id=2)
            await reports.generate_map_data(10, user_id=2)

        generator.assert_awaited_once_with(10, None, 2)
        assert result['summary'] == {
            'totalWorkers': 2, 'totalClients': 1, 'totalCompetitors': 0, 'totalQuotations': 3,
        }

    async def test_org_activity_goes_through_dispatcher(self) -> None:
        with patch(f'{MODULE}.org_activity.generate', new=AsyncMock(return_value={'summary': {}})) as generator:
            report = await reports.generate_org_activity(10, granularity='end-of-week')

        assert report['type'] == 'org_activity'
        assert generator.call_args.kwargs['granularity'] == 'end-of-week'


class TestSalesDashboards:

    async def test_second_call_is_served_from_cache(self) -> None:
        generator = AsyncMock(return_value={'summary': {'totalRevenue': 1700.0}})

        with patch(f'{MODULE}.sales_analytics.generate', new=generator):
            first = await reports.generate_sales_dashboard(SalesDashboard.REVENUE_ANALYTICS, 10, 100)
            second = await reports.generate_sales_dashboard('revenue_analytics', 10, 100)

        generator.assert_awaited_once_with('revenue_analytics', 10, 100)
        assert first['fromCache'] is False
        assert second == {'summary': {'totalRevenue': 1700.0}, 'fromCache': True}

    @pytest.mark.parametrize('error,status', [
        (ValueError('Unsupported sales dashboard: forecast'), 400),
        (RuntimeError('Failed to generate sales overview: pool closed'), 500),
    ])
    async def test_errors_map_to_status(self, error: Exception, status: int) -> None:
        with patch(f'{MODULE}.sales_analytics.generate', new=AsyncMock(side_effect=error)):
            with pytest.raises(HTTPException) as exc_info:
                await reports.generate_sales_dashboard('sales_overview', 10)

        assert exc_info.value.status_code == status
        assert exc_info.value.detail == str(error)


class TestClearOrganisationReportCache:

    KEYS = [
        'reports:org_activity_org10',
        'reports:org_activity_org10_branch100_granularityweekly',
        'reports:sales_overview_org10_branch100',
        'reports:mapdata_org10_all',
        'mapdata:org10_all_all',
        'reports:org_activity_org100',
        'reports:mapdata_org100_all',
        'mapdata:org100_all_all',
        'competitor:list:10:None',
    ]

    async def _fill(self) -> None:
        cache = get_cache()
        for key in self.KEYS:
            await cache.set(key, {'key': key})

    async def _remaining(self) -> List[str]:
        cache = get_cache()
        return [key for key in self.KEYS if await cache.get(key) is not None]

    async def test_clears_only_that_organisation(self) -> None:
        await self._fill()

        cleared = await reports.clear_organisation_report_cache(10)

        assert cleared == 5
        assert await self._remaining() == [
            'reports:org_activity_org100',
            'reports:mapdata_org100_all',
            'mapdata:org100_all_all',
            'competitor:list:10:None',
        ]

    async def test_clears_one_report_type(self) -> None:
        await self._fill()

        cleared = await reports.clear_organisation_report_cache(10, ReportType.ORG_ACTIVITY)

        assert cleared == 2
        assert 'reports:sales_overview_org10_branch100' in await self._remaining()

    async def test_map_data_covers_live_map_payloads(self) -> None:
        await self._fill()

        cleared = await reports.clear_organisation_report_cache(10, 'map_data')

        assert cleared == 2
        remaining = await self._remaining()
        assert 'reports:mapdata_org10_all' not in remaining
        assert 'mapdata:org10_all_all' not in remaining
        assert 'reports:org_activity_org10' in remaining
