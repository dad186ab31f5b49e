"""
Tests for the claims service: references, amounts, visibility, status
changes, soft delete and share links.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import HTTPException

from fieldops.core.security import TenantContext
from fieldops.models.enums import ClaimStatus, Currency
from fieldops.models.schemas import ClaimCreate, ClaimUpdate
from fieldops.services import claims
from fieldops.services.claims import format_claim_amount, next_claim_ref
from fieldops.sql import claim_queries

MODULE = 'fieldops.services.claims'


class TestHelpers:

    def test_next_claim_ref_continues_sequence(self) -> None:
        assert next_claim_ref('CLM-2026-000041', 2026) == 'CLM-2026-000042'

    def test_next_claim_ref_starts_at_one(self) -> None:
        assert next_claim_ref(None, 2026) == 'CLM-2026-000001'

    def test_next_claim_ref_restarts_on_garbage(self) -> None:
        assert next_claim_ref('CLM-2026-abc', 2026) == 'CLM-2026-000001'

    @pytest.mark.parametrize('amount,currency,expected', [
        (1250.5, 'USD', '$1,250.50'),
        (99, Currency.GBP, '£99.00'),
        ('10', None, 'R10.00'),
        (5, 'XYZ', 'R5.00'),
    ])
    def test_format_claim_amount(self, amount: Any, currency: Any, expected: str) -> None:
        assert format_claim_amount(amount, currency) == expected


class TestCreateClaim:

    async def test_creates_pending_claim_with_next_ref(
        self, mock_db_pool: AsyncMock, user_tenant: TenantContext
    ) -> None:
        # Arrange
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value
        year = datetime.now(timezone.utc).year
        conn.fetchval.return_value = f'CLM-{year}-000007'
        conn.fetchrow.return_value = {'uid': 9, 'claim_ref': f'CLM-{year}-000008', 'amount': 100.0}

        # Act
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value={'uid': 10})), \
                patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            result = await claims.create_claim(ClaimCreate(amount=100, currency='USD'), user_tenant)

        # Assert
        assert result['message'] == 'Success'
        assert result['claim']['claimRef'] == f'CLM-{year}-000008'
        assert result['claim']['formattedAmount'] == '$100.00'
        insert_args = conn.fetchrow.call_args.args[1:]
        assert f'CLM-{year}-000008' in insert_args
        assert ClaimStatus.PENDING.value in insert_args
        assert user_tenant.user_id in insert_args

    async def test_ref_prefix_is_locked_before_reading_latest_ref(
        self, mock_db_pool: AsyncMock, user_tenant: TenantContext
    ) -> None:
        # Arrange
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value
        year = datetime.now(timezone.utc).year
        order = []

        def lock(sql, *args):
            order.append(('lock', args))
            return 'SELECT 1'

        def latest(sql, *args):
            order.append(('latest', args))
            return None

        conn.execute.side_effect = lock
        conn.fetchval.side_effect = latest
        conn.fetchrow.return_value = {'uid': 9, 'claim_ref': f'CLM-{year}-000001', 'amount': 50.0}

        # Act
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value={'uid': 10})), \
                patch(f'{MODULE}.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            await claims.create_claim(ClaimCreate(amount=50), user_tenant)

        # Assert
        assert order == [('lock', (f'CLM-{year}-',)), ('latest', (f'CLM-{year}-%',))]
        assert conn.execute.call_args.args[0] == claim_queries.LOCK_CLAIM_REF_PREFIX
        conn.transaction.assert_called_once()

    @pytest.mark.parametrize('amount', [None, 0, -5])
    async def test_rejects_invalid_amount(self, user_tenant: TenantContext, amount: Any) -> None:
        with pytest.raises(HTTPException) as exc_info:
            await claims.create_claim(ClaimCreate(amount=amount), user_tenant)

        assert exc_info.value.status_code == 400
        assert exc_info.value.detail == 'Valid claim amount is required'

    async def test_unknown_organisation(self, user_tenant: TenantContext) -> None:
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=None)):
            with pytest.raises(HTTPException) as exc_info:
                await claims.create_claim(ClaimCreate(amount=10), user_tenant)

        assert exc_info.value.status_code == 404


class TestVisibility:

    async def test_regular_user_cannot_see_others_claim(
        self, user_tenant: TenantContext, sample_claim_row: Dict[str, Any]
    ) -> None:
        row = {**sample_claim_row, 'owner_uid': 99}
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=row)):
            with pytest.raises(HTTPException) as exc_info:
                await claims.find_one_claim(31, user_tenant)

        assert exc_info.value.status_code == 404

    async def test_elevated_user_sees_any_claim_with_stats(
        self, admin_tenant: TenantContext, sample_claim_row: Dict[str, Any]
    ) -> None:
        stats = {'total': 3, 'pending': 1, 'approved': 1, 'declined': 0, 'paid': 1}
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(side_effect=[sample_claim_row, stats])):
            result = await claims.find_one_claim(31, admin_tenant)

        assert result['claim']['formattedAmount'] == 'R1,250.50'
        assert result['stats'] == stats

    async def test_list_scopes_regular_user_to_own_claims(
        self, user_tenant: TenantContext, sample_claim_row: Dict[str, Any]
    ) -> None:
        # Arrange
        query = AsyncMock(return_value=[sample_claim_row])
        with patch(f'{MODULE}.execute_query', new=query), \
                patch(f'{MODULE}.execute_value', new=AsyncMock(return_value=1)), \
                patch(f'{MODULE}.claim_queries.find_claims_query', wraps=claims.claim_queries.find_claims_query) as builder:
            # Act
            result = await claims.find_all_claims(user_tenant, page=1, limit=10)

        # Assert
        assert builder.call_args.kwargs['owner_id'] == user_tenant.user_id
        assert result['meta'] == {'total': 1, 'page': 1, 'limit': 10, 'totalPages': 1}
        assert result['data'][0]['owner']['uid'] == 2

    async def test_list_is_cached(self, admin_tenant: TenantContext) -> None:
        query = AsyncMock(return_value=[])
        with patch(f'{MODULE}.execute_query', new=query), \
                patch(f'{MODULE}.execute_value', new=AsyncMock(return_value=0)):
            await claims.find_all_claims(admin_tenant)
            await claims.find_all_claims(admin_tenant)

        query.assert_awaited_once()

    async def test_claims_by_other_user_forbidden(self, user_tenant: TenantContext) -> None:
        with pytest.raises(HTTPException) as exc_info:
            await claims.claims_by_user(99, user_tenant)

        assert exc_info.value.status_code == 403


class TestUpdateClaim:

    async def test_regular_user_cannot_change_status(
        self, user_tenant: TenantContext, sample_claim_row: Dict[str, Any]
    ) -> None:
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=sample_claim_row)):
            with pytest.raises(HTTPException) as exc_info:
                await claims.update_claim(31, ClaimUpdate(status=ClaimStatus.APPROVED), user_tenant)

        assert exc_info.value.status_code == 403

    async def test_elevated_user_approves(
        self, admin_tenant: TenantContext, sample_claim_row: Dict[str, Any]
    ) -> None:
        lookup = AsyncMock(side_effect=[sample_claim_row, {'uid': 31}])
        with patch(f'{MODULE}.execute_query_one', new=lookup):
            result = await claims.update_claim(31, ClaimUpdate(status=ClaimStatus.APPROVED), admin_tenant)

        assert result == {'message': 'Success'}
        assert 'approved' in lookup.call_args.args[1:]

    async def test_comment_alias_is_accepted(
        self, user_tenant: TenantContext, sample_claim_row: Dict[str, Any]
    ) -> None:
        lookup = AsyncMock(side_effect=[sample_claim_row, {'uid': 31}])
        with patch(f'{MODULE}.execute_query_one', new=lookup):
            await claims.update_claim(31, ClaimUpdate(comment='Receipt attached'), user_tenant)

        assert 'Receipt attached' in lookup.call_args.args[1:]

    async def test_empty_update_rejected(
        self, user_tenant: TenantContext, sample_claim_row: Dict[str, Any]
    ) -> None:
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=sample_claim_row)):
            with pytest.raises(HTTPException) as exc_info:
                await claims.update_claim(31, ClaimUpdate(), user_tenant)

        assert exc_info.value.detail == 'No fields to update'


class TestDeleteRestore:

    async def test_remove_claim(self, user_tenant: TenantContext, sample_claim_row: Dict[str, Any]) -> None:
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=sample_claim_row)), \
                patch(f'{MODULE}.execute_command', new=AsyncMock(return_value='UPDATE 1')):
            result = await claims.remove_claim(31, user_tenant)

        assert result == {'message': 'Success'}

    async def test_remove_missing_claim_reports_message(self, user_tenant: TenantContext) -> None:
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=None)):
            result = await claims.remove_claim(31, user_tenant)

        assert result == {'message': 'Not found'}

    async def test_restore_requires_deleted_claim(
        self, user_tenant: TenantContext, sample_claim_row: Dict[str, Any]
    ) -> None:
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=sample_claim_row)):
            result = await claims.restore_claim(31, user_tenant)

        assert result == {'message': 'Not found'}

    async def test_restore_deleted_claim(
        self, user_tenant: TenantContext, sample_claim_row: Dict[str, Any]
    ) -> None:
        deleted = {**sample_claim_row, 'is_deleted': True}
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=deleted)), \
                patch(f'{MODULE}.execute_command', new=AsyncMock(return_value='UPDATE 1')):
            result = await claims.restore_claim(31, user_tenant)

        assert result == {'message': 'Success'}


class TestShareLinks:

    async def test_generate_share_token(
        self, user_tenant: TenantContext, sample_claim_row: Dict[str, Any]
    ) -> None:
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=sample_claim_row)), \
                patch(f'{MODULE}.execute_command', new=AsyncMock()):
            result = await claims.generate_share_token(31, user_tenant)

        assert len(result['shareToken']) == 64
        assert result['shareLink'].endswith(f"/claims/share/{result['shareToken']}")
        expires = datetime.fromisoformat(result['expiresAt'])
        assert timedelta(days=29) < expires - datetime.now(timezone.utc) <= timedelta(days=30)

    async def test_expired_share_token(self, sample_claim_row: Dict[str, Any]) -> None:
        row = {
            **sample_claim_row,
            'share_token': 'abc',
            'share_token_expires_at': datetime.now(timezone.utc) - timedelta(minutes=1),
        }
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=row)):
            with pytest.raises(HTTPException) as exc_info:
                await claims.find_by_share_token('abc')

        assert exc_info.value.detail == 'Share link has expired'

    async def test_valid_share_token_hides_token(self, sample_claim_row: Dict[str, Any]) -> None:
        row = {
            **sample_claim_row,
            'share_token': 'abc',
            'share_token_expires_at': datetime.now(timezone.utc) + timedelta(days=1),
        }
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=row)):
            result = await claims.find_by_share_token('abc')

        assert 'shareToken' not in result['claim']
        assert result['claim']['uid'] == 31


class TestClaimsReport:

    async def test_groups_by_status(self, admin_tenant: TenantContext, sample_claim_row: Dict[str, Any]) -> None:
        rows = [
            sample_claim_row,
            {**sample_claim_row, 'uid': 32, 'amount': 100, 'status': 'approved'},
            {**sample_claim_row, 'uid': 33, 'amount': 49.5, 'status': 'pending'},
        ]
        start = datetime(2026, 3, 1, tzinfo=timezone.utc)
        end = datetime(2026, 3, 31, tzinfo=timezone.utc)
        with patch(f'{MODULE}.execute_query', new=AsyncMock(return_value=rows)):
            result = await claims.claims_report(start, end, admin_tenant)

        report = result['report']
        assert report['totalClaims'] == 3
        assert report['totalAmount'] == 1400.0
        assert report['byStatus']['pending']['count'] == 2
        assert report['byStatus']['pending']['totalAmount'] == 1300.0
        assert report['byStatus']['paid']['count'] == 0
        assert 'deleted' not in report['byStatus']
