"""
Tests for the competitor service.

Covers payload validation, geofence resolution, chunked batch creation with
per-item isolation, bulk create and update, threat scoring, analytics and
threat-level lookups.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from fieldops.models.enums import GeofenceType
from fieldops.models.schemas import CompetitorBulkCreate, CompetitorBulkUpdate, CompetitorCreate, CompetitorUpdate
from fieldops.services import competitors
from fieldops.services.competitors import (
    build_competitor_analytics,
    calculate_threat_level,
    generate_competitor_ref,
    resolve_geofence,
    validate_competitor_payload,
)
from fieldops.sql import competitor_queries

MODULE = 'fieldops.services.competitors'

ADDRESS = {
    'street': '1 Main Rd',
    'suburb': 'Rosebank',
    'city': 'Johannesburg',
    'state': 'Gauteng',
    'country': 'South Africa',
    'postalCode': '2196',
}

CREATOR = {'uid': 1, 'organisation_uid': 10}


def _competitor(**overrides: Any) -> CompetitorCreate:
    data: Dict[str, Any] = {'name': 'Rival Co', 'address': ADDRESS}
    data.update(overrides)
    return CompetitorCreate(**data)


def _route_fetchrow(conn: AsyncMock, fail_names: List[str] = ()) -> None:
    """Creator lookups return CREATOR; inserts echo their columns, failing for ``fail_names``."""
    async def fetchrow(sql: str, *args: Any) -> Dict[str, Any]:
        if sql.lstrip().startswith('INSERT'):
            columns = sql[sql.index('(') + 1:sql.index(')')].split(', ')
            row = dict(zip(columns, args))
            if row['name'] in fail_names:
                raise RuntimeError(f"duplicate {row['name']}")
            return {'uid': 1, **row}
        return CREATOR
    conn.fetchrow.side_effect = fetchrow


class TestValidation:

    def test_ref_format(self) -> None:
        ref = generate_competitor_ref()

        assert ref.startswith('COMP-')
        assert len(ref) == 13
        assert ref[5:] == ref[5:].upper()

    def test_name_required(self) -> None:
        with pytest.raises(HTTPException) as exc_info:
            validate_competitor_payload(_competitor(name='  '))

        assert exc_info.value.detail == 'Competitor name is required'

    def test_address_required(self) -> None:
        with pytest.raises(HTTPException) as exc_info:
            validate_competitor_payload(_competitor(address=None))

        assert exc_info.value.detail == 'Competitor address is required'

    def test_each_address_field_required(self) -> None:
        with pytest.raises(HTTPException) as exc_info:
            validate_competitor_payload(_competitor(address={**ADDRESS, 'postalCode': ''}))

        assert exc_info.value.detail == "Address field 'postalCode' is required"


class TestResolveGeofence:

    async def test_untouched_payload_returns_nothing(self, mock_db_pool: AsyncMock) -> None:
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value

        assert await resolve_geofence(conn, _competitor(), 10) == {}

    async def test_disable_sets_type_none(self, mock_db_pool: AsyncMock) -> None:
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value

        fields = await resolve_geofence(conn, _competitor(enableGeofence=False), 10)

        assert fields == {'enable_geofence': False, 'geofence_type': 'none'}

    async def test_enable_requires_coordinates(self, mock_db_pool: AsyncMock) -> None:
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value

        with pytest.raises(HTTPException) as exc_info:
            await resolve_geofence(conn, _competitor(enableGeofence=True), 10)

        assert exc_info.value.status_code == 400

    async def test_enable_uses_org_default_radius(self, mock_db_pool: AsyncMock) -> None:
        # Arrange
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value
        conn.fetchval.return_value = 750
        payload = _competitor(enableGeofence=True, latitude=-26.1, longitude=28.0)

        # Act
        fields = await resolve_geofence(conn, payload, 10)

        # Assert
        assert fields == {'enable_geofence': True, 'geofence_type': 'notify', 'geofence_radius': 750}

    async def test_enable_falls_back_to_500m(self, mock_db_pool: AsyncMock) -> None:
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value
        conn.fetchval.return_value = None
        payload = _competitor(enableGeofence=True, latitude=-26.1, longitude=28.0)

        fields = await resolve_geofence(conn, payload, 10)

        assert fields['geofence_radius'] == 500

    async def test_enable_with_stored_coordinates(self, mock_db_pool: AsyncMock) -> None:
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value
        existing = {'latitude': -26.1, 'longitude': 28.0, 'geofence_radius': 300}
        payload = CompetitorUpdate(enableGeofence=True, geofenceType=GeofenceType.ALERT)

        fields = await resolve_geofence(conn, payload, 10, existing)

        assert fields == {'enable_geofence': True, 'geofence_type': 'alert', 'geofence_radius': 300}
        conn.fetchval.assert_not_called()


class TestCreateCompetitor:

    async def test_create(self, mock_db_pool: AsyncMock) -> None:
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value
        _route_fetchrow(conn)

        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            result = await competitors.create_competitor(_competitor(), 1, 10, 100)

        assert result['message'] == 'Success'
        assert result['competitor']['name'] == 'Rival Co'

    async def test_invalid_payload_is_400_with_error(self, mock_db_pool: AsyncMock) -> None:
        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            with pytest.raises(HTTPException) as exc_info:
                await competitors.create_competitor(_competitor(name=None), 1, 10, 100)

        assert exc_info.value.status_code == 400
        assert exc_info.value.detail == {
            'message': 'Error creating competitor',
            'error': 'Competitor name is required',
        }

    async def test_creator_from_other_organisation(self, mock_db_pool: AsyncMock) -> None:
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value
        conn.fetchrow.return_value = {'uid': 1, 'organisation_uid': 99}

        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            with pytest.raises(HTTPException) as exc_info:
                await competitors.create_competitor(_competitor(), 1, 10, 100)

        assert exc_info.value.detail['error'] == 'Creator does not belong to the specified organisation'


class TestBatchCreate:

    async def test_chunks_and_isolates_failures(self, mock_db_pool: AsyncMock, settings) -> None:
        # Arrange: 12 items with the default chunk size of 10, one bad name
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value
        _route_fetchrow(conn, fail_names=['Rival 3'])
        payloads = [_competitor(name=f'Rival {i}') for i in range(12)]

        # Act
        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            result = await competitors.create_competitors_batch(payloads, 1, 10, 100)

        # Assert
        assert settings.batch_chunk_size == 10
        assert result['totalProcessed'] == 12
        assert result['chunksProcessed'] == 2
        assert result['successful'] == 11
        assert result['failed'] == 1
        failed = [r for r in result['results'] if not r['success']]
        assert failed == [{'index': 3, 'success': False, 'name': 'Rival 3', 'error': 'duplicate Rival 3'}]
        assert result['message'] == (
            'Batch competitor creation completed. 11 successful, 1 failed across 2 chunks.'
        )

    async def test_chunk_with_only_failures_is_reported(self, mock_db_pool: AsyncMock) -> None:
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value
        _route_fetchrow(conn)
        payloads = [_competitor(name=None), _competitor(address=None)]

        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            result = await competitors.create_competitors_batch(payloads, 1, 10, 100)

        assert result['successful'] == 0
        assert [r['error'] for r in result['results']] == [
            'Competitor name is required',
            'Competitor address is required',
        ]

    async def test_chunk_level_error_fails_whole_chunk(self, mock_db_pool: AsyncMock) -> None:
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value
        _route_fetchrow(conn)
        conn.transaction.side_effect = RuntimeError('connection lost')
        payloads = [_competitor(name='A'), _competitor(name='B')]

        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            result = await competitors.create_competitors_batch(payloads, 1, 10, 100)

        assert result['failed'] == 2
        assert all(r['error'] == 'Chunk processing failed: connection lost' for r in result['results'])


class TestThreatLevel:

    @pytest.mark.parametrize('revenue,share,advantage,level', [
        (None, None, None, 1),
        (20_000_000, None, None, 2),
        (150_000_000, 12, None, 4),
        (150_000_000, 25, 4, 5),
        (5_000_000, 15, 3, 2),
    ])
    def test_calculate_threat_level(self, revenue: Any, share: Any, advantage: Any, level: int) -> None:
        assert calculate_threat_level(revenue, share, advantage) == level


def _taken_names(conn: AsyncMock, names: List[str]) -> None:
    """Duplicate-name checks report ``names`` as taken; other scalar reads return None."""
    async def fetchval(sql: str, *args: Any) -> Any:
        if sql == competitor_queries.COMPETITOR_NAME_TAKEN and args[0] in names:
            return 42
        return None
    conn.fetchval.side_effect = fetchval


class TestBulkCreate:

    async def test_duplicate_name_fails_alone(self, mock_db_pool: AsyncMock) -> None:
        # Arrange
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value
        _route_fetchrow(conn)
        _taken_names(conn, ['Rival 1'])
        payload = CompetitorBulkCreate(competitors=[
            {'name': f'Rival {i}', 'address': ADDRESS, 'website': f'https://rival{i}.co.za'} for i in range(3)
        ])

        # Act
        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            result = await competitors.create_bulk_competitors(payload, 1, 10, 100)

        # Assert
        assert result['totalRequested'] == 3
        assert result['totalCreated'] == 2
        assert result['totalFailed'] == 1
        assert result['successRate'] == 66.67
        assert result['message'] == 'Bulk creation completed: 2 competitors created, 1 failed'
        assert result['results'][1] == {
            'index': 1,
            'success': False,
            'name': 'Rival 1',
            'website': 'https://rival1.co.za',
            'error': "Competitor name 'Rival 1' already exists",
        }
        assert result['errors'] == ["Competitor 2 (Rival 1): Competitor name 'Rival 1' already exists"]
        assert len(result['createdCompetitorIds']) == 2
        assert 'threatLevelsCalculated' not in result

    async def test_scores_threat_and_enables_geofence(self, mock_db_pool: AsyncMock) -> None:
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value
        _route_fetchrow(conn)
        _taken_names(conn, [])
        payload = CompetitorBulkCreate(
            competitors=[
                {'name': 'Big Rival', 'address': ADDRESS, 'estimatedAnnualRevenue': 150_000_000,
                 'latitude': -26.1, 'longitude': 28.0},
                {'name': 'Scored Rival', 'address': ADDRESS, 'threatLevel': 2},
            ],
            autoCalculateThreat=True,
            enableGeofencing=True,
        )

        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            result = await competitors.create_bulk_competitors(payload, 1, 10, 100)

        big, scored = (r['competitor'] for r in result['results'])
        assert big['threatLevel'] == 3
        assert big['enableGeofence'] is True
        assert big['geofenceRadius'] == 500
        assert scored['threatLevel'] == 2
        assert scored['enableGeofence'] is False
        assert result['threatLevelsCalculated'] == 1
        assert result['geofencesEnabled'] == 1

    async def test_nothing_created(self, mock_db_pool: AsyncMock) -> None:
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value
        _route_fetchrow(conn)
        payload = CompetitorBulkCreate(competitors=[{'name': 'No Address'}])

        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            result = await competitors.create_bulk_competitors(payload, 1, 10, 100)

        assert result['message'] == 'Bulk creation failed: No competitors were created'
        assert result['successRate'] == 0.0
        assert 'createdCompetitorIds' not in result
        assert result['results'][0]['error'] == 'Competitor address is required'

    def test_more_than_fifty_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            CompetitorBulkCreate(competitors=[{'name': f'Rival {i}'} for i in range(51)])


class TestBulkUpdate:

    EXISTING = {
        'uid': 5,
        'name': 'Rival Co',
        'website': 'https://rival.co.za',
        'estimated_annual_revenue': 1000,
        'market_share_percentage': 25,
        'competitive_advantage': 2,
        'threat_level': 2,
        'organisation_uid': 10,
    }

    def _route(self, conn: AsyncMock, updates: List[Any]) -> None:
        async def fetchrow(sql: str, *args: Any) -> Any:
            if sql.lstrip().startswith('UPDATE'):
                updates.append((sql, args))
                return {'uid': args[-1]}
            return self.EXISTING if args[0] == 5 else None
        conn.fetchrow.side_effect = fetchrow

    async def test_updates_and_reports_missing_refs(self, mock_db_pool: AsyncMock) -> None:
        # Arrange
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value
        updates: List[Any] = []
        self._route(conn, updates)
        payload = CompetitorBulkUpdate(
            updates=[
                {'ref': 5, 'data': {'name': 'Rival Renamed', 'estimatedAnnualRevenue': 200_000_000}},
                {'ref': 6, 'data': {'name': 'Ghost'}},
            ],
            recalculateThreatLevels=True,
        )

        # Act
        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            result = await competitors.update_bulk_competitors(payload, 10, None)

        # Assert
        assert result['totalUpdated'] == 1
        assert result['totalFailed'] == 1
        assert result['updatedCompetitorIds'] == [5]
        assert result['threatLevelsRecalculated'] == 1
        updated, missing = result['results']
        assert updated['name'] == 'Rival Co'
        assert sorted(updated['updatedFields']) == ['estimatedAnnualRevenue', 'name', 'threatLevel']
        assert missing == {'index': 1, 'success': False, 'ref': 6, 'error': 'Competitor with ID 6 not found'}
        assert result['errors'] == ['Competitor ID 6: Competitor with ID 6 not found']
        (sql, args), = updates
        assert 'threat_level = $3' in sql
        assert args[:3] == (200_000_000, 'Rival Renamed', 5)

    async def test_threat_level_kept_without_market_changes(self, mock_db_pool: AsyncMock) -> None:
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value
        updates: List[Any] = []
        self._route(conn, updates)
        payload = CompetitorBulkUpdate(updates=[{'ref': 5, 'data': {'industry': 'Retail'}}], recalculateThreatLevels=True)

        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            result = await competitors.update_bulk_competitors(payload, 10, None)

        assert result['results'][0]['updatedFields'] == ['industry']
        assert 'threatLevelsRecalculated' not in result
        assert 'threat_level' not in updates[0][0]

    async def test_blank_name_fails_item(self, mock_db_pool: AsyncMock) -> None:
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value
        self._route(conn, [])
        payload = CompetitorBulkUpdate(updates=[{'ref': 5, 'data': {'name': '  '}}])

        with patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            result = await competitors.update_bulk_competitors(payload, 10, None)

        assert result['message'] == 'Bulk update failed: No competitors were updated'
        assert result['results'][0]['error'] == 'Competitor name is required'


class TestAnalytics:

    def test_build_competitor_analytics(self) -> None:
        rows = [
            {'uid': 1, 'name': 'A', 'threat_level': 5, 'industry': 'Retail', 'is_direct': True},
            {'uid': 2, 'name': 'B', 'threat_level': 2, 'industry': 'Retail', 'is_direct': False},
            {'uid': 3, 'name': 'C', 'threat_level': None, 'industry': None, 'is_direct': True},
            {'uid': 4, 'name': 'D', 'threat_level': 4, 'industry': 'Mining', 'is_direct': False},
        ]

        analytics = build_competitor_analytics(rows)

        assert analytics['totalCompetitors'] == 4
        assert analytics['directCompetitors'] == 2
        assert analytics['indirectCompetitors'] == 2
        assert analytics['averageThreatLevel'] == 3.67
        assert [t['uid'] for t in analytics['topThreats']] == [1, 4, 2]
        assert analytics['byIndustry'] == {'Retail': 2, 'Unknown': 1, 'Mining': 1}

    def test_empty_analytics(self) -> None:
        analytics = build_competitor_analytics([])

        assert analytics['averageThreatLevel'] == 0
        assert analytics['topThreats'] == []

    async def test_competitor_analytics_reports_last_update(self) -> None:
        updated = datetime(2026, 3, 1, tzinfo=timezone.utc)
        rows = [{'uid': 1, 'name': 'A', 'threat_level': 3, 'updated_at': updated}]
        with patch(f'{MODULE}.execute_query', new=AsyncMock(return_value=rows)):
            result = await competitors.competitor_analytics(10, None)

        assert result['analytics']['lastUpdated'] == updated.isoformat()

    @pytest.mark.parametrize('level', [0, 6])
    async def test_threat_level_out_of_range(self, level: int) -> None:
        with pytest.raises(HTTPException) as exc_info:
            await competitors.find_competitors_by_threat_level(level, 10, None)

        assert exc_info.value.status_code == 400

    async def test_list_rejects_bad_min_threat(self) -> None:
        with pytest.raises(HTTPException):
            await competitors.find_all_competitors(10, None, min_threat_level=9)


class TestDelete:

    async def test_soft_delete_missing_competitor(self) -> None:
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=None)):
            with pytest.raises(HTTPException) as exc_info:
                await competitors.remove_competitor(5, 10, None)

        assert exc_info.value.status_code == 404

    async def test_hard_delete(self) -> None:
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value={'uid': 5})), \
                patch(f'{MODULE}.execute_command', new=AsyncMock(return_value='DELETE 1')) as command:
            result = await competitors.hard_remove_competitor(5, 10, None)

        assert result == {'message': 'Success'}
        assert command.call_args.args[1] == 5
