"""
Tests for the sales dashboards built from an organisation's quotations.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List
from unittest.mock import AsyncMock, patch

import pytest

from fieldops.services import sales_analytics
from fieldops.services.sales_analytics import (
    build_customer_analytics,
    build_quotation_analytics,
    build_revenue_analytics,
    build_sales_overview,
    build_sales_performance,
    price_list,
    revenue_growth,
)

MODULE = 'fieldops.services.sales_analytics'

NOW = datetime(2026, 3, 10, 12, tzinfo=timezone.utc)


def _at(month: int, day: int, hour: int = 9) -> datetime:
    return datetime(2026, month, day, hour, tzinfo=timezone.utc)


@pytest.fixture
def quotations() -> List[Dict[str, Any]]:
    return [
        {'uid': 1, 'quotation_number': 'QUO-1', 'status': 'approved', 'total_amount': 1000, 'notes': 'premium pricing',
         'client_uid': 7, 'client_name': 'Acme', 'placed_by_uid': 2, 'placed_by_name': 'Thandi',
         'created_at': _at(3, 5), 'updated_at': _at(3, 7)},
        {'uid': 2, 'quotation_number': 'QUO-2', 'status': 'completed', 'total_amount': 500, 'notes': None,
         'client_uid': 7, 'client_name': 'Acme', 'placed_by_uid': 2, 'placed_by_name': 'Thandi',
         'created_at': _at(3, 5, 15), 'updated_at': _at(3, 6)},
        {'uid': 3, 'quotation_number': 'BLQ-3', 'status': 'pending', 'total_amount': 300, 'notes': 'blank quote',
         'client_uid': 8, 'client_name': 'Beta', 'placed_by_uid': 3, 'placed_by_name': 'Sipho',
         'created_at': _at(3, 8), 'updated_at': _at(3, 8)},
        {'uid': 4, 'quotation_number': 'QUO-4', 'status': 'approved', 'total_amount': 200, 'notes': 'local',
         'client_uid': 8, 'client_name': 'Beta', 'placed_by_uid': 3, 'placed_by_name': 'Sipho',
         'created_at': _at(1, 20), 'updated_at': _at(1, 21)},
        {'uid': 5, 'quotation_number': 'QUO-5', 'status': 'draft', 'total_amount': 100, 'notes': None,
         'client_uid': None, 'client_name': None, 'placed_by_uid': None, 'placed_by_name': None,
         'created_at': _at(3, 9), 'updated_at': None},
    ]


@pytest.fixture
def items() -> List[Dict[str, Any]]:
    return [
        {'quotation_uid': 1, 'product_name': 'Widget', 'quantity': 2, 'total_price': 800},
        {'quotation_uid': 1, 'product_name': 'Gadget', 'quantity': 1, 'total_price': 200},
        {'quotation_uid': 2, 'product_name': 'Widget', 'quantity': 1, 'total_price': 500},
        {'quotation_uid': 3, 'product_name': 'Widget', 'quantity': 3, 'total_price': 300},
        {'quotation_uid': 4, 'product_name': 'Gadget', 'quantity': 1, 'total_price': 200},
    ]


class TestHelpers:

    @pytest.mark.parametrize('notes,expected', [
        ('premium pricing', 'premium'),
        ('local rates', 'local'),
        ('foreign currency', 'foreign'),
        (None, 'standard'),
    ])
    def test_price_list(self, notes: Any, expected: str) -> None:
        assert price_list({'notes': notes}) == expected

    def test_revenue_growth_against_previous_month(self, quotations: List[Dict[str, Any]]) -> None:
        # 1500 in the last 30 days against 200 in the 30 days before.
        assert revenue_growth(quotations, NOW) == 650.0

    def test_revenue_growth_without_history(self) -> None:
        assert revenue_growth([], NOW) == 0.0
        assert revenue_growth([{'status': 'approved', 'total_amount': 10, 'created_at': _at(3, 9)}], NOW) == 100.0


class TestDashboards:

    def test_sales_overview(self, quotations: List[Dict[str, Any]], items: List[Dict[str, Any]]) -> None:
        overview = build_sales_overview(quotations, items, NOW)

        assert overview['summary'] == {
            'totalRevenue': 1700.0,
            'revenueGrowth': 650.0,
            'totalQuotations': 5,
            'conversionRate': 40.0,
            'averageOrderValue': 850.0,
            'topPerformingProduct': 'Widget',
        }
        assert overview['trends']['revenue'] == [{'date': '2026-03-05', 'amount': 1500.0, 'quotations': 2}]
        assert overview['trends']['topProducts'][0] == {'name': 'Widget', 'revenue': 1600.0, 'units': 6.0}
        approved = next(s for s in overview['trends']['quotationsByStatus'] if s['status'] == 'approved')
        assert approved == {'status': 'approved', 'count': 2, 'value': 1200.0}
        assert overview['chartData']['correlationData'][0] == {'x': 1000.0, 'y': 1, 'quotationId': 'QUO-1'}

    def test_quotation_analytics(self, quotations: List[Dict[str, Any]]) -> None:
        analytics = build_quotation_analytics(quotations)

        assert analytics['summary'] == {
            'totalQuotations': 5,
            'blankQuotations': 1,
            'conversionRate': 40.0,
            'averageValue': 420.0,
            'averageTimeToConvert': 1.5,
            'pipelineValue': 400.0,
        }
        price_lists = {entry['priceList']: entry for entry in analytics['priceListPerformance']}
        assert price_lists['premium'] == {
            'priceList': 'premium', 'quotations': 1, 'conversions': 1, 'conversionRate': 100.0, 'revenue': 1000.0,
        }
        assert price_lists['standard']['quotations'] == 3
        assert price_lists['standard']['conversionRate'] == 0.0

    def test_revenue_analytics(self, quotations: List[Dict[str, Any]], items: List[Dict[str, Any]]) -> None:
        revenue = build_revenue_analytics(quotations, items, NOW)

        assert revenue['summary'] == {'totalRevenue': 1700.0, 'revenueGrowth': 650.0, 'revenuePerCustomer': 850.0}
        assert revenue['timeSeries'] == [
            {'date': '2026-03-05', 'revenue': 1500.0, 'transactions': 2, 'averageValue': 750.0},
        ]
        assert revenue['productBreakdown'] == [
            {'product': 'Widget', 'revenue': 1300.0, 'percentage': 76.47},
            {'product': 'Gadget', 'revenue': 400.0, 'percentage': 23.53},
        ]
        assert revenue['forecast'] == {'nextMonth': 1836.0, 'nextQuarter': 5508.0, 'confidence': 75.0}

    def test_sales_performance(self, quotations: List[Dict[str, Any]]) -> None:
        performance = build_sales_performance(quotations)

        assert performance['teamSummary'] == {'totalSalesReps': 2, 'averagePerformance': 50.0, 'topPerformer': 'Thandi'}
        assert [rep['uid'] for rep in performance['individualPerformance']] == [2, 3]
        assert performance['individualPerformance'][0]['revenue'] == 1000.0
        assert performance['metrics'] == {'averageDealSize': 600.0, 'winRate': 50.0, 'pipelineValue': 400.0}

    def test_customer_analytics(self, quotations: List[Dict[str, Any]]) -> None:
        customers = build_customer_analytics(quotations, NOW)

        assert customers['summary'] == {
            'totalCustomers': 2,
            'newCustomers': 1,
            'averageLifetimeValue': 600.0,
            'averagePurchaseFrequency': 1.0,
        }
        acme = customers['topCustomers'][0]
        assert acme['name'] == 'Acme'
        assert acme['firstOrder'] == '2026-03-05T09:00:00+00:00'
        assert acme['lastOrder'] == '2026-03-05T15:00:00+00:00'
        assert customers['segments'] == [
            {'segment': 'High Value', 'customers': 0, 'revenue': 0, 'percentage': 0.0},
            {'segment': 'Medium Value', 'customers': 1, 'revenue': 1000.0, 'percentage': 83.33},
            {'segment': 'Low Value', 'customers': 1, 'revenue': 200.0, 'percentage': 16.67},
        ]

    def test_empty_organisation(self) -> None:
        assert build_sales_overview([], [], NOW)['summary']['topPerformingProduct'] == 'N/A'
        assert build_customer_analytics([], NOW)['summary']['averageLifetimeValue'] == 0.0
        assert build_sales_performance([])['teamSummary']['topPerformer'] == 'N/A'


class TestGenerate:

    async def test_loads_quotations_and_items(
        self, quotations: List[Dict[str, Any]], items: List[Dict[str, Any]]
    ) -> None:
        query = AsyncMock(side_effect=[quotations, items])

        with patch(f'{MODULE}.execute_query', new=query):
            result = await sales_analytics.generate('revenue_analytics', 10, 100, now=NOW)

        assert result['summary']['totalRevenue'] == 1700.0
        quotation_sql, *quotation_args = query.await_args_list[0].args
        assert 'FROM quotations q' in quotation_sql
        assert quotation_args == [10, 100]

    async def test_no_quotations_skips_items(self) -> None:
        query = AsyncMock(return_value=[])

        with patch(f'{MODULE}.execute_query', new=query):
            result = await sales_analytics.generate('sales_performance', 10)

        query.assert_awaited_once()
        assert result['individualPerformance'] == []

    async def test_unknown_dashboard(self) -> None:
        with pytest.raises(ValueError, match='Unsupported sales dashboard: forecast'):
            await sales_analytics.generate('forecast', 10)

    async def test_load_failure_is_runtime_error(self) -> None:
        with patch(f'{MODULE}.execute_query', new=AsyncMock(side_effect=OSError('pool closed'))):
            with pytest.raises(RuntimeError, match='Failed to generate sales overview: pool closed'):
                await sales_analytics.generate('sales_overview', 10)
