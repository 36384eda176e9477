"""
Tests for the Opportunity Store.

The Postgres store is exercised against the mocked asyncpg pool (query
arguments and row mapping); the upsert/transition rules themselves are checked
through the in-memory store, which applies the same should_replace_live rule.
"""

import json
from datetime import timedelta

import pytest

from revenue_agent.models import (
    ActionStatus,
    ActionType,
    OpportunityStatus,
    OpportunityType,
)
from revenue_agent.services.opportunity_store import (
    PostgresOpportunityStore,
    _affected_rows,
    should_replace_live,
)
from revenue_agent.sql.opportunity_queries import (
    DELETE_PENDING_ACTIONS_QUERY,
    EXPIRE_PENDING_QUERY,
    INSERT_ACTION_QUERY,
    INSERT_OPPORTUNITY_QUERY,
    LIVE_KEY_INDEX_DDL,
    SET_ACTION_STATUS_QUERY,
    SET_OPPORTUNITY_STATUS_QUERY,
    UPDATE_OPPORTUNITY_QUERY,
)
from revenue_agent.tests.conftest import NOW, FakeOpportunityStore, make_candidate


def _opportunity_row(**overrides):
    row = {
        'id': 'opp-1',
        'opportunity_type': 'affiliate_placement',
        'page_url': '/mods/abc',
        'content_id': 'abc',
        'title': 'Add affiliate links',
        'description': 'test',
        'confidence': 0.6,
        'estimated_impact': 1.05,
        'priority': 5,
        'estimated_rpm_increase': None,
        'status': 'pending',
        'created_at': NOW,
        'expires_at': NOW + timedelta(days=30),
    }
    row.update(overrides)
    return row


def _action_row(**overrides):
    row = {
        'id': 'act-1',
        'opportunity_id': 'opp-1',
        'action_type': 'add_affiliate_link',
        'parameters': json.dumps({
            'action_type': 'add_affiliate_link',
            'target_programs': ['patreon'],
            'placement_type': 'inline',
            'reason': 'test',
        }),
        'status': 'pending',
        'estimated_impact': 1.05,
        'execution_attempts': 0,
        'executed_at': None,
        'error': None,
    }
    row.update(overrides)
    return row


class TestReplaceRule:

    def test_pending_with_higher_confidence_is_replaced(self) -> None:
        assert should_replace_live(OpportunityStatus.PENDING, 0.5, 0.6) is True

    def test_tie_keeps_existing(self) -> None:
        assert should_replace_live(OpportunityStatus.PENDING, 0.6, 0.6) is False

    @pytest.mark.parametrize('status', [OpportunityStatus.APPROVED, OpportunityStatus.IMPLEMENTED])
    def test_approved_and_implemented_are_never_rewritten(self, status) -> None:
        assert should_replace_live(status, 0.1, 0.99) is False

    @pytest.mark.parametrize('status, expected', [
        ('UPDATE 3', 3),
        ('UPDATE 0', 0),
        ('', 0),
        (None, 0),
    ])
    def test_affected_rows(self, status, expected) -> None:
        assert _affected_rows(status) == expected


@pytest.mark.asyncio
class TestPostgresUpsert:

    async def test_inserts_new_opportunity_with_action(self, mock_db_pool) -> None:
        conn = mock_db_pool.conn
        conn.fetchrow.return_value = None
        conn.fetchval.return_value = 'opp-new'
        store = PostgresOpportunityStore(mock_db_pool, expiry_days=30)

        opportunity_id = await store.upsert_opportunity(make_candidate('/mods/abc'), now=NOW)

        assert opportunity_id == 'opp-new'
        insert_args = conn.fetchval.call_args[0]
        assert insert_args[0] == INSERT_OPPORTUNITY_QUERY
        assert insert_args[2] == 'affiliate_placement'
        assert insert_args[3] == '/mods/abc'
        assert insert_args[-2] == NOW
        assert insert_args[-1] == NOW + timedelta(days=30)

        action_args = conn.execute.call_args[0]
        assert action_args[0] == INSERT_ACTION_QUERY
        assert action_args[2] == 'opp-new'
        assert action_args[3] == 'add_affiliate_link'
        assert json.loads(action_args[4])['target_programs'] == ['patreon']

    async def test_higher_confidence_overwrites_pending(self, mock_db_pool) -> None:
        conn = mock_db_pool.conn
        conn.fetchrow.return_value = {'id': 'opp-1', 'status': 'pending', 'confidence': 0.5}
        store = PostgresOpportunityStore(mock_db_pool)

        opportunity_id = await store.upsert_opportunity(make_candidate(confidence=0.8), now=NOW)

        assert opportunity_id == 'opp-1'
        queries = [c[0][0] for c in conn.execute.call_args_list]
        assert queries[0] == UPDATE_OPPORTUNITY_QUERY
        assert queries[-1] == INSERT_ACTION_QUERY
        conn.fetchval.assert_not_called()

    async def test_lower_confidence_leaves_row_untouched(self, mock_db_pool) -> None:
        conn = mock_db_pool.conn
        conn.fetchrow.return_value = {'id': 'opp-1', 'status': 'pending', 'confidence': 0.9}
        store = PostgresOpportunityStore(mock_db_pool)

        opportunity_id = await store.upsert_opportunity(make_candidate(confidence=0.8), now=NOW)

        assert opportunity_id == 'opp-1'
        conn.execute.assert_not_called()
        conn.fetchval.assert_not_called()

    async def test_approved_row_is_returned_unchanged(self, mock_db_pool) -> None:
        conn = mock_db_pool.conn
        conn.fetchrow.return_value = {'id': 'opp-1', 'status': 'approved', 'confidence': 0.1}
        store = PostgresOpportunityStore(mock_db_pool)

        assert await store.upsert_opportunity(make_candidate(confidence=0.99)) == 'opp-1'
        conn.execute.assert_not_called()

    async def test_insert_conflicts_on_live_key(self) -> None:
        assert 'ON CONFLICT (opportunity_type, page_url)' in INSERT_OPPORTUNITY_QUERY
        assert 'DO NOTHING' in INSERT_OPPORTUNITY_QUERY
        assert "WHERE status IN ('pending', 'approved', 'implemented')" in LIVE_KEY_INDEX_DDL

    async def test_lost_insert_race_folds_into_concurrent_row(self, mock_db_pool) -> None:
        conn = mock_db_pool.conn
        conn.fetchrow.side_effect = [
            None,
            {'id': 'opp-other', 'status': 'pending', 'confidence': 0.5},
        ]
        conn.fetchval.return_value = None
        store = PostgresOpportunityStore(mock_db_pool)

        opportunity_id = await store.upsert_opportunity(make_candidate(confidence=0.8), now=NOW)

        assert opportunity_id == 'opp-other'
        assert conn.fetchrow.await_count == 2
        queries = [c[0][0] for c in conn.execute.call_args_list]
        assert queries == [UPDATE_OPPORTUNITY_QUERY, DELETE_PENDING_ACTIONS_QUERY, INSERT_ACTION_QUERY]
        assert conn.execute.call_args_list[0][0][1] == 'opp-other'

    async def test_lost_insert_race_keeps_stronger_concurrent_row(self, mock_db_pool) -> None:
        conn = mock_db_pool.conn
        conn.fetchrow.side_effect = [
            None,
            {'id': 'opp-other', 'status': 'pending', 'confidence': 0.9},
        ]
        conn.fetchval.return_value = None
        store = PostgresOpportunityStore(mock_db_pool)

        opportunity_id = await store.upsert_opportunity(make_candidate(confidence=0.8), now=NOW)

        assert opportunity_id == 'opp-other'
        conn.execute.assert_not_called()

    async def test_ensure_live_key_index(self, mock_db_pool) -> None:
        await PostgresOpportunityStore(mock_db_pool).ensure_live_key_index()

        mock_db_pool.conn.execute.assert_awaited_once_with(LIVE_KEY_INDEX_DDL)


@pytest.mark.asyncio
class TestPostgresQueries:

    async def test_get_maps_rows_and_actions(self, mock_db_pool) -> None:
        conn = mock_db_pool.conn
        conn.fetchrow.return_value = _opportunity_row()
        conn.fetch.return_value = [_action_row()]
        store = PostgresOpportunityStore(mock_db_pool)

        opportunity = await store.get('opp-1')

        assert opportunity.id == 'opp-1'
        assert opportunity.opportunity_type == OpportunityType.AFFILIATE_PLACEMENT
        assert opportunity.status == OpportunityStatus.PENDING
        assert len(opportunity.actions) == 1
        action = opportunity.actions[0]
        assert action.action_type == ActionType.ADD_AFFILIATE_LINK
        assert action.parameters.target_programs == ['patreon']

    async def test_get_missing(self, mock_db_pool) -> None:
        store = PostgresOpportunityStore(mock_db_pool)
        assert await store.get('nope') is None

    async def test_list_by_status(self, mock_db_pool) -> None:
        conn = mock_db_pool.conn
        conn.fetch.side_effect = [
            [_opportunity_row(id='opp-1'), _opportunity_row(id='opp-2', priority=8)],
            [_action_row(opportunity_id='opp-2')],
        ]
        store = PostgresOpportunityStore(mock_db_pool)

        opportunities = await store.list_by_status(OpportunityStatus.PENDING, limit=10)

        assert [o.id for o in opportunities] == ['opp-1', 'opp-2']
        assert opportunities[0].actions == []
        assert len(opportunities[1].actions) == 1
        assert conn.fetch.call_args_list[0][0][1:] == ('pending', 10)

    async def test_approve_cascades_to_actions(self, mock_db_pool) -> None:
        conn = mock_db_pool.conn
        conn.execute.return_value = 'UPDATE 1'
        store = PostgresOpportunityStore(mock_db_pool)

        assert await store.approve('opp-1') is True

        calls = conn.execute.call_args_list
        assert calls[0][0] == (SET_OPPORTUNITY_STATUS_QUERY, 'opp-1', 'approved', 'pending')
        assert calls[1][0] == (SET_ACTION_STATUS_QUERY, 'opp-1', 'approved', 'pending')

    async def test_reject_non_pending_is_refused(self, mock_db_pool) -> None:
        conn = mock_db_pool.conn
        conn.execute.return_value = 'UPDATE 0'
        store = PostgresOpportunityStore(mock_db_pool)

        assert await store.reject('opp-1') is False
        assert conn.execute.call_count == 1

    async def test_successful_last_action_implements_opportunity(self, mock_db_pool) -> None:
        conn = mock_db_pool.conn
        conn.fetchval.side_effect = ['opp-1', 0]
        store = PostgresOpportunityStore(mock_db_pool)

        await store.mark_action_executed('act-1', success=True, now=NOW)

        conn.execute.assert_called_once_with(
            SET_OPPORTUNITY_STATUS_QUERY, 'opp-1', 'implemented', 'approved'
        )

    async def test_failed_action_leaves_opportunity(self, mock_db_pool) -> None:
        conn = mock_db_pool.conn
        conn.fetchval.return_value = 'opp-1'
        store = PostgresOpportunityStore(mock_db_pool)

        await store.mark_action_executed('act-1', success=False, error='boom', now=NOW)

        args = conn.fetchval.call_args[0]
        assert args[1:] == ('act-1', 'failed', None, 'boom')
        conn.execute.assert_not_called()

    async def test_expire_uses_cutoff(self, mock_db_pool) -> None:
        conn = mock_db_pool.conn
        conn.execute.return_value = 'UPDATE 4'
        store = PostgresOpportunityStore(mock_db_pool)

        expired = await store.expire_older_than(30, now=NOW)

        assert expired == 4
        conn.execute.assert_called_once_with(EXPIRE_PENDING_QUERY, NOW - timedelta(days=30), NOW)

    async def test_queue_stats(self, mock_db_pool) -> None:
        mock_db_pool.conn.fetch.return_value = [
            {'status': 'pending', 'opportunity_count': 3, 'impact': 12.5},
            {'status': 'approved', 'opportunity_count': 1, 'impact': 4.0},
            {'status': 'unknown', 'opportunity_count': 9, 'impact': 0},
        ]
        store = PostgresOpportunityStore(mock_db_pool)

        stats = await store.queue_stats()

        assert stats.pending == 3
        assert stats.approved == 1
        assert stats.rejected == 0
        assert stats.total_estimated_impact == 12.5


@pytest.mark.asyncio
class TestUpsertSemantics:

    async def test_replay_in_any_order_converges(self) -> None:
        candidates = [
            make_candidate('/a', confidence=0.5),
            make_candidate('/a', confidence=0.8),
            make_candidate('/b', confidence=0.6),
            make_candidate('/a', confidence=0.7),
        ]
        forward, backward = FakeOpportunityStore(), FakeOpportunityStore()

        for candidate in candidates:
            await forward.upsert_opportunity(candidate)
        for candidate in reversed(candidates):
            await backward.upsert_opportunity(candidate)

        assert forward.snapshot() == backward.snapshot()
        assert {o.confidence for o in forward.opportunities.values() if o.page_url == '/a'} == {0.8}

    async def test_one_live_opportunity_per_key(self) -> None:
        store = FakeOpportunityStore()
        first = await store.upsert_opportunity(make_candidate('/a', confidence=0.5))
        await store.approve(first)

        second = await store.upsert_opportunity(make_candidate('/a', confidence=0.9))

        assert second == first
        assert len(store.opportunities) == 1
        assert store.opportunities[first].confidence == 0.5
        assert store.opportunities[first].actions[0].status == ActionStatus.APPROVED

    async def test_rejected_row_allows_new_opportunity(self) -> None:
        store = FakeOpportunityStore()
        first = await store.upsert_opportunity(make_candidate('/a'))
        await store.reject(first)

        second = await store.upsert_opportunity(make_candidate('/a'))

        assert second != first
        assert store.opportunities[second].status == OpportunityStatus.PENDING

    async def test_different_types_on_same_page_coexist(self) -> None:
        store = FakeOpportunityStore()

        await store.upsert_opportunity(make_candidate('/a'))
        await store.upsert_opportunity(
            make_candidate('/a', opportunity_type=OpportunityType.COLLECTION_CREATION)
        )

        assert len(store.opportunities) == 2

    async def test_list_by_status_triage_order(self) -> None:
        store = FakeOpportunityStore()
        await store.upsert_opportunity(make_candidate('/low', priority=2), now=NOW)
        await store.upsert_opportunity(make_candidate('/high', priority=9, estimated_impact=1.0), now=NOW)
        await store.upsert_opportunity(make_candidate('/high2', priority=9, estimated_impact=3.0), now=NOW)

        listed = await store.list_by_status(OpportunityStatus.PENDING)

        assert [o.page_url for o in listed] == ['/high2', '/high', '/low']
