"""
Tests for journals and inspection scoring.
"""

from datetime import datetime, timezone
from typing import Any, Dict
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import HTTPException

from fieldops.core.security import TenantContext
from fieldops.models.enums import InspectionRating, XPAction
from fieldops.models.schemas import JournalCreate, JournalUpdate
from fieldops.services import journals
from fieldops.services.journals import (
    calculate_inspection_score,
    calculate_journal_metrics,
    categorize_entry,
    rating_for_percentage,
)

MODULE = 'fieldops.services.journals'


def _form(*categories: Dict[str, Any]) -> Dict[str, Any]:
    return {'categories': list(categories)}


def _category(scores, weight=None) -> Dict[str, Any]:
    category = {
        'id': 'c',
        'name': 'Category',
        'items': [{'id': f'i{n}', 'name': f'Item {n}', 'score': s} for n, s in enumerate(scores)],
    }
    if weight is not None:
        category['weight'] = weight
    return category


async def _echo_insert(sql: str, *args: Any) -> Dict[str, Any]:
    columns = sql[sql.index('(') + 1:sql.index(')')].split(', ')
    return {'uid': 70, **dict(zip(columns, args))}


class TestInspectionScoring:

    def test_perfect_form_is_excellent(self) -> None:
        score = calculate_inspection_score(_form(_category([5, 5, 5])))

        assert score == {'totalScore': 15, 'maxScore': 15, 'percentage': 100.0, 'overallRating': 'EXCELLENT'}

    def test_weighted_percentage(self) -> None:
        # 100% at weight 3 and 40% at weight 1 -> (3 + 0.4) / 4 = 85%
        form = _form(_category([5, 5], weight=3), _category([2, 2], weight=1))

        score = calculate_inspection_score(form)

        assert score['totalScore'] == 14
        assert score['maxScore'] == 20
        assert score['percentage'] == 85.0
        assert score['overallRating'] == 'GOOD'

    def test_empty_categories_are_skipped(self) -> None:
        form = _form(_category([4, 4]), {'id': 'empty', 'name': 'Empty', 'items': [], 'weight': 10})

        score = calculate_inspection_score(form)

        assert score['percentage'] == 80.0
        assert score['maxScore'] == 10

    def test_unscored_items_count_as_zero(self) -> None:
        score = calculate_inspection_score(_form(_category([5, None])))

        assert score['totalScore'] == 5
        assert score['percentage'] == 50.0
        assert score['overallRating'] == 'POOR'

    def test_no_categories(self) -> None:
        score = calculate_inspection_score({})

        assert score['percentage'] == 0.0
        assert score['overallRating'] == 'CRITICAL'

    @pytest.mark.parametrize('percentage,rating', [
        (95, InspectionRating.EXCELLENT),
        (94.99, InspectionRating.GOOD),
        (85, InspectionRating.GOOD),
        (70, InspectionRating.AVERAGE),
        (50, InspectionRating.POOR),
        (49.99, InspectionRating.CRITICAL),
    ])
    def test_rating_bands(self, percentage: float, rating: InspectionRating) -> None:
        assert rating_for_percentage(percentage) is rating


class TestJournalMetrics:

    @pytest.mark.parametrize('comments,category', [
        ('Client meeting about renewals', 'Meeting'),
        ('Called the buyer', 'Call'),
        ('Weekly report filed', 'Report'),
        ('Follow up next week', 'Follow-up'),
        (None, 'Other'),
    ])
    def test_categorize_entry(self, comments: Any, category: str) -> None:
        assert categorize_entry(comments) == category

    def test_metrics(self) -> None:
        day_one = datetime(2026, 3, 2, 9, tzinfo=timezone.utc)
        day_two = datetime(2026, 3, 3, 9, tzinfo=timezone.utc)
        entries = [
            {'timestamp': day_one, 'comments': 'Meeting with store manager', 'file_url': 'a.pdf'},
            {'timestamp': day_one, 'comments': 'Meeting', 'file_url': 'b.pdf'},
            {'timestamp': day_two, 'comments': 'call back', 'file_url': None},
        ]

        metrics = calculate_journal_metrics(entries)

        assert metrics['totalEntries'] == 3
        assert metrics['averageEntriesPerDay'] == 1.5
        assert metrics['topCategories'][0] == {'category': 'Meeting', 'count': 2}
        assert metrics['completionRate'] == '33.3%'

    def test_no_entries(self) -> None:
        assert calculate_journal_metrics([])['completionRate'] == '0%'


class TestJournalCrud:

    async def test_create_scores_inspection_data(self, user_tenant: TenantContext) -> None:
        # Arrange
        payload = JournalCreate(
            clientRef='CL-1',
            inspectionData=_form(_category([5, 4])),
        )
        insert = AsyncMock(side_effect=_echo_insert)

        # Act
        with patch(f'{MODULE}.execute_query_one', new=insert):
            result = await journals.create_journal(payload, user_tenant)

        # Assert
        data = result['data']
        assert data['ownerUid'] == user_tenant.user_id
        assert data['totalScore'] == 9
        assert data['percentage'] == 90.0
        assert data['overallRating'] == 'GOOD'

    async def test_regular_user_cannot_read_others_journal(self, user_tenant: TenantContext) -> None:
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value={'uid': 1, 'owner_uid': 99})):
            with pytest.raises(HTTPException) as exc_info:
                await journals.find_one_journal(1, user_tenant)

        assert exc_info.value.status_code == 404

    async def test_journals_by_other_user_forbidden(self, user_tenant: TenantContext) -> None:
        with pytest.raises(HTTPException) as exc_info:
            await journals.journals_by_user(99, user_tenant)

        assert exc_info.value.status_code == 403

    async def test_update_only_sent_fields(self, user_tenant: TenantContext) -> None:
        lookup = AsyncMock(side_effect=[{'uid': 1, 'owner_uid': 2}, {'uid': 1}])
        with patch(f'{MODULE}.execute_query_one', new=lookup):
            result = await journals.update_journal(1, JournalUpdate(comments='Updated'), user_tenant)

        assert result == {'message': 'Success'}
        sql = lookup.call_args.args[0]
        assert 'comments = $1' in sql
        assert 'title' not in sql

    async def test_empty_update_rejected(self, user_tenant: TenantContext) -> None:
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value={'uid': 1, 'owner_uid': 2})):
            with pytest.raises(HTTPException):
                await journals.update_journal(1, JournalUpdate(), user_tenant)


class TestInspections:

    async def test_create_inspection_awards_xp_by_rating(self, user_tenant: TenantContext) -> None:
        payload = JournalCreate(inspectionData=_form(_category([5, 5])))
        award = AsyncMock()
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(side_effect=_echo_insert)), \
                patch(f'{MODULE}.award_xp', new=award):
            result = await journals.create_inspection(payload, user_tenant)

        assert result['data'] == {'uid': 70, 'totalScore': 10, 'percentage': 100.0, 'overallRating': 'EXCELLENT'}
        args = award.call_args.args
        assert args == (user_tenant.user_id, 50, XPAction.INSPECTION)

    async def test_inspection_requires_form(self, user_tenant: TenantContext) -> None:
        result = await journals.create_inspection(JournalCreate(), user_tenant)

        assert result == {'message': 'Inspection data is required'}

    async def test_recalculate_without_data(self, user_tenant: TenantContext) -> None:
        row = {'uid': 1, 'owner_uid': 2, 'inspection_data': None}
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=row)):
            result = await journals.recalculate_score(1, user_tenant)

        assert result == {'message': 'No inspection data found to recalculate'}

    async def test_recalculate_updates_score(self, user_tenant: TenantContext) -> None:
        row = {'uid': 1, 'owner_uid': 2, 'inspection_data': _form(_category([3, 3]))}
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=row)), \
                patch(f'{MODULE}.execute_command', new=AsyncMock()) as command:
            result = await journals.recalculate_score(1, user_tenant)

        assert result['data']['percentage'] == 60.0
        assert command.call_args.args[1:] == (1, 6, 10, 60.0, 'POOR')

    async def test_inspection_detail_rejects_plain_journal(self, admin_tenant: TenantContext) -> None:
        row = {'uid': 1, 'owner_uid': 2, 'type': 'GENERAL'}
        with patch(f'{MODULE}.execute_query_one', new=AsyncMock(return_value=row)):
            with pytest.raises(HTTPException) as exc_info:
                await journals.get_inspection_detail(1, admin_tenant)

        assert exc_info.value.status_code == 404

    def test_template_has_seven_categories(self) -> None:
        templates = journals.get_inspection_templates()['templates']

        assert len(templates[0]['categories']) == 7
        assert sum(c['weight'] for c in templates[0]['categories']) == 120
