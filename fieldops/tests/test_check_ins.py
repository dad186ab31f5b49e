"""
Tests for the check-in service.

Covers:
- Visit duration formatting
- Check-in validation, persistence and XP side effects
- Check-out of the latest visit
- Check-in status (next action)
- Cached organisation listings
"""

from datetime import datetime, timezone
from typing import Any, Dict
from unittest.mock import AsyncMock, patch

import pytest

from fieldops.models.enums import XPAction
from fieldops.models.schemas import CheckInCreate, CheckOutCreate, EntityRef
from fieldops.services import check_ins
from fieldops.services.check_ins import format_visit_duration

MODULE = 'fieldops.services.check_ins'


def _payload(**overrides: Any) -> CheckInCreate:
    data: Dict[str, Any] = {
        'checkInLocation': '-26.1076,28.0567',
        'owner': {'uid': 2},
        'branch': {'uid': 100},
    }
    data.update(overrides)
    return CheckInCreate(**data)


class TestFormatVisitDuration:

    def test_hours_and_minutes(self) -> None:
        start = datetime(2026, 1, 1, 8, 0, tzinfo=timezone.utc)
        end = datetime(2026, 1, 1, 9, 35, tzinfo=timezone.utc)

        assert format_visit_duration(start, end) == '1h 35m'

    def test_naive_datetimes_are_treated_as_utc(self) -> None:
        start = datetime(2026, 1, 1, 8, 0)
        end = datetime(2026, 1, 1, 8, 59, 59, tzinfo=timezone.utc)

        assert format_visit_duration(start, end) == '0h 59m'


class TestCheckIn:

    async def test_check_in_saves_and_awards_xp(self, sample_user_row: Dict[str, Any]) -> None:
        # Arrange
        award = AsyncMock(return_value=77)
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=sample_user_row)), \
                patch(f'{MODULE}.execute_value', new=AsyncMock(return_value=501)), \
                patch(f'{MODULE}.execute_command', new=AsyncMock()) as command, \
                patch(f'{MODULE}.award_xp', new=award):
            # Act
            result = await check_ins.check_in(_payload(), org_id=10, branch_id=100)

        # Assert
        assert result == {'message': 'Success'}
        command.assert_not_called()
        award.assert_awaited_once()
        args, kwargs = award.call_args
        assert args[:3] == (2, 10, XPAction.CHECK_IN_CLIENT)
        assert kwargs['source_id'] == 501

    async def test_client_gps_updated_when_client_attached(self, sample_user_row: Dict[str, Any]) -> None:
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=sample_user_row)), \
                patch(f'{MODULE}.execute_value', new=AsyncMock(return_value=501)), \
                patch(f'{MODULE}.execute_command', new=AsyncMock()) as command, \
                patch(f'{MODULE}.award_xp', new=AsyncMock()):
            result = await check_ins.check_in(_payload(client={'uid': 44}), org_id=10, branch_id=100)

        assert result == {'message': 'Success'}
        command.assert_awaited_once()
        assert command.call_args.args[1:] == (44, '-26.1076,28.0567')

    async def test_xp_failure_does_not_fail_check_in(self, sample_user_row: Dict[str, Any]) -> None:
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=sample_user_row)), \
                patch(f'{MODULE}.execute_value', new=AsyncMock(return_value=501)), \
                patch(f'{MODULE}.award_xp', new=AsyncMock(side_effect=RuntimeError('db down'))):
            result = await check_ins.check_in(_payload(), org_id=10, branch_id=100)

        assert result == {'message': 'Success'}

    async def test_missing_owner_returns_message(self) -> None:
        result = await check_ins.check_in(_payload(owner=None), org_id=10, branch_id=100)

        assert result == {'message': 'User ID is required for check-in'}

    async def test_missing_organisation_returns_message(self) -> None:
        result = await check_ins.check_in(_payload(), org_id=None, branch_id=100)

        assert result == {'message': 'Organization ID is required'}

    async def test_user_from_other_organisation_rejected(self, sample_user_row: Dict[str, Any]) -> None:
        other = {**sample_user_row, 'organisation_uid': 99}
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=other)):
            result = await check_ins.check_in(_payload(), org_id=10, branch_id=100)

        assert result == {'message': 'User does not belong to the specified organization'}

    async def test_unknown_user(self) -> None:
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=None)):
            result = await check_ins.check_in(_payload(), org_id=10, branch_id=100)

        assert result == {'message': 'User not found'}

    async def test_branch_required(self, sample_user_row: Dict[str, Any]) -> None:
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=sample_user_row)):
            result = await check_ins.check_in(_payload(branch=None), org_id=10, branch_id=None)

        assert result == {'message': 'Branch information is required'}

    async def test_token_branch_does_not_replace_body_branch(self, sample_user_row: Dict[str, Any]) -> None:
        insert = AsyncMock()

        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=sample_user_row)), \
                patch(f'{MODULE}.execute_value', new=insert):
            result = await check_ins.check_in(_payload(branch=None), org_id=10, branch_id=100)

        assert result == {'message': 'Branch information is required'}
        insert.assert_not_awaited()

    async def test_token_branch_wins_when_body_branch_given(self, sample_user_row: Dict[str, Any]) -> None:
        insert = AsyncMock(return_value=501)

        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=sample_user_row)), \
                patch(f'{MODULE}.execute_value', new=insert), \
                patch(f'{MODULE}.award_xp', new=AsyncMock()):
            result = await check_ins.check_in(_payload(branch={'uid': 300}), org_id=10, branch_id=100)

        assert result == {'message': 'Success'}
        assert 100 in insert.call_args.args
        assert 300 not in insert.call_args.args

    async def test_check_in_at_client_overrides_body_client(self) -> None:
        captured = AsyncMock(return_value={'message': 'Success'})
        with patch(f'{MODULE}.check_in', new=captured):
            await check_ins.check_in_at_client(44, _payload(client={'uid': 7}), 10, 100)

        payload = captured.call_args.args[0]
        assert payload.client == EntityRef(uid=44)


class TestCheckOut:

    async def test_check_out_returns_duration(self, sample_check_in_row: Dict[str, Any], now: datetime) -> None:
        # Arrange
        payload = CheckOutCreate(checkOutTime=now, owner={'uid': 2}, branch={'uid': 100})
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=sample_check_in_row)), \
                patch(f'{MODULE}.execute_command', new=AsyncMock()) as command, \
                patch(f'{MODULE}.award_xp', new=AsyncMock()) as award:
            # Act
            result = await check_ins.check_out(payload, org_id=10, branch_id=None)

        # Assert
        assert result == {'message': 'Success', 'duration': '1h 35m'}
        assert command.call_args.args[1] == 501
        assert award.call_args.args[2] == XPAction.CHECK_OUT

    async def test_no_previous_check_in(self) -> None:
        payload = CheckOutCreate(owner={'uid': 2}, branch={'uid': 100})
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=None)):
            result = await check_ins.check_out(payload, org_id=10, branch_id=100)

        assert result == {'message': 'Not found'}

    async def test_missing_owner(self) -> None:
        result = await check_ins.check_out(CheckOutCreate(), org_id=10, branch_id=100)

        assert result == {'message': 'Not found'}

    async def test_check_out_requires_body_branch(self) -> None:
        lookup = AsyncMock()

        with patch(f'{MODULE}.execute_query_one', new=lookup):
            result = await check_ins.check_out(CheckOutCreate(owner={'uid': 2}), org_id=10, branch_id=100)

        assert result == {'message': 'Not found'}
        lookup.assert_not_awaited()


class TestCheckInStatus:

    async def test_open_visit_means_check_out_next(self, sample_check_in_row: Dict[str, Any]) -> None:
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=sample_check_in_row)):
            result = await check_ins.check_in_status(2)

        assert result['nextAction'] == 'checkOut'
        assert result['checkedIn'] is True
        assert result['uid'] == 501

    async def test_closed_visit_means_check_in_next(
        self, sample_check_in_row: Dict[str, Any], now: datetime
    ) -> None:
        closed = {**sample_check_in_row, 'check_out_time': now}
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=closed)):
            result = await check_ins.check_in_status(2)

        assert result['nextAction'] == 'checkIn'
        assert result['checkedIn'] is False

    async def test_no_check_in_found(self) -> None:
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=None)):
            result = await check_ins.check_in_status(2)

        assert result == {'message': 'Check-in not found', 'nextAction': 'Check In', 'checkedIn': False}


class TestListings:

    async def test_all_check_ins_are_cached(self, sample_check_in_row: Dict[str, Any]) -> None:
        query = AsyncMock(return_value=[sample_check_in_row])
        with patch(f'{MODULE}.execute_query', new=query):
            first = await check_ins.get_all_check_ins(10)
            second = await check_ins.get_all_check_ins(10)

        assert first == second
        assert first['checkIns'][0]['checkInLocation'] == '-26.1076,28.0567'
        query.assert_awaited_once()

    async def test_user_check_ins_include_owner_summary(self, sample_check_in_row: Dict[str, Any]) -> None:
        with patch(f'{MODULE}.execute_query', new=AsyncMock(return_value=[sample_check_in_row])):
            result = await check_ins.get_user_check_ins(2, 10)

        assert result['user']['name'] == 'Thandi'
        assert len(result['checkIns']) == 1

    async def test_user_without_check_ins(self) -> None:
        with patch(f'{MODULE}.execute_query', new=AsyncMock(return_value=[])):
            result = await check_ins.get_user_check_ins(2, 10)

        assert result == {'message': 'Success', 'checkIns': [], 'user': None}
