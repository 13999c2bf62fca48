"""
Tests for resource hooks and mutations.
"""
import pytest

from league import services
from league.errors import NotFound, Unavailable, ValidationError
from league.hooks import ERROR, IDLE, SUCCESS, Mutation, RESOURCE_READERS
from league.models import Insight, Settings, Team


class TestReads:
    """Tests for cached resource reads."""

    def test_use_teams_success(self, hooks, league):
        result = hooks.use_teams()
        assert result.is_success
        assert {t.name for t in result.data} == {'alpha', 'Bravo'}

    def test_empty_collection_is_empty_success(self, hooks):
        result = hooks.use_teams()
        assert result.is_success
        assert result.is_empty

    def test_missing_team_is_not_found_error(self, hooks):
        result = hooks.use_team('ghost')
        assert result.is_error
        assert isinstance(result.error, NotFound)

    def test_reads_are_cached(self, hooks, store, league):
        hooks.use_teams()
        store.add('teams', {'name': 'Charlie'})
        assert len(hooks.use_teams().data) == 2

    def test_store_failure_surfaces_as_error(self, hooks, store, monkeypatch):
        def down(*args, **kwargs):
            raise Unavailable('store offline')

        monkeypatch.setattr(store, 'query', down)
        result = hooks.use_matches()
        assert result.is_error
        assert result.reason == 'store offline'

    def test_future_matches_keyed_by_day(self, hooks, league):
        assert len(hooks.use_future_matches('2025-01-01').data) == 2
        assert len(hooks.use_future_matches('2025-06-01').data) == 1

    def test_non_blocking_read(self, hooks, executor, league):
        assert hooks.use_standings(wait=False).is_loading
        executor.run_all()
        assert hooks.use_standings(wait=False).is_success

    def test_resource_readers_exist(self, hooks):
        for name in RESOURCE_READERS.values():
            assert callable(getattr(hooks, name))
        assert 'settings' not in RESOURCE_READERS


class TestInsightReads:
    """Insight reads respect the settings flag."""

    def test_insights_hidden_when_disabled(self, hooks, store):
        services.add_insight(store, Insight(type='team', related_id='t1', content='x',
                                             created_at='2025-01-01T00:00:00'))
        assert len(hooks.use_insights('team', 't1').data) == 1

        services.update_settings(store, Settings(enable_ai_insights=False))
        hooks.cache.clear()
        assert hooks.use_insights('team', 't1').data == []
        assert hooks.use_latest_insights().data == []

    def test_no_related_id(self, hooks):
        assert hooks.use_insights('team', '').data == []


class TestMutation:
    """Tests for the mutation state machine."""

    def test_success_invalidates(self, cache):
        cache.read(('teams', '[]'), lambda: ['old'])
        mutation = Mutation(cache, lambda: 'done', invalidates=['teams'])
        assert mutation.state == IDLE
        result = mutation.run()
        assert result.is_success
        assert mutation.state == SUCCESS
        assert cache.peek(('teams', '[]')) is None

    def test_failure_keeps_cache(self, cache):
        cache.read(('teams', '[]'), lambda: ['old'])

        def fail():
            raise Unavailable('offline')

        mutation = Mutation(cache, fail, invalidates=['teams'])
        result = mutation.run()
        assert result.is_error
        assert mutation.state == ERROR
        assert isinstance(mutation.error, Unavailable)
        assert cache.peek(('teams', '[]')) == ['old']

    def test_reset(self, cache):
        mutation = Mutation(cache, lambda: 1)
        mutation.run()
        mutation.reset()
        assert mutation.state == IDLE
        assert mutation.data is None

    def test_programming_errors_propagate(self, cache):
        def broken():
            raise KeyError('bug')

        with pytest.raises(KeyError):
            Mutation(cache, broken).run()


class TestWriteThenRead:
    """A read after a successful mutation sees the write."""

    def test_create_team(self, hooks):
        assert hooks.use_teams().is_empty
        result = hooks.create_team().run({'name': 'Charlie'})
        assert result.is_success
        assert [t.name for t in hooks.use_teams().data] == ['Charlie']

    def test_invalid_team_rejected(self, hooks):
        result = hooks.create_team().run({'name': ''})
        assert result.is_error
        assert isinstance(result.error, ValidationError)

    def test_recording_a_result_updates_standings(self, hooks, league):
        hooks.recalculate_standings().run()
        before = {s.team_id: s.points for s in hooks.use_standings().data}
        assert before[league['bravo']] == 0

        upcoming = services.get_match(hooks.store, league['upcoming'])
        data = upcoming.to_document()
        data.update({'completed': True, 'score1': 3, 'score2': 0})
        assert hooks.update_match().run(league['upcoming'], data).is_success

        after = {s.team_id: s.points for s in hooks.use_standings().data}
        assert after[league['bravo']] == 3
        assert after[league['alpha']] == 3

    def test_moving_a_match_recalculates_old_team(self, hooks, store, league):
        charlie = services.create_team(store, Team(name='Charlie'))
        hooks.recalculate_standings().run()
        played = services.get_match(store, league['played']).to_document()
        played.update({'team2Id': charlie, 'team2Name': 'Charlie'})
        hooks.update_match().run(league['played'], played)

        table = {s.team_id: s for s in hooks.use_standings().data}
        assert table[league['bravo']].played == 0
        assert table[charlie].played == 1

    def test_delete_match_recalculates(self, hooks, league):
        hooks.recalculate_standings().run()
        hooks.delete_match().run(league['played'])
        table = {s.team_id: s.points for s in hooks.use_standings().data}
        assert table[league['alpha']] == 0

    def test_update_user_role_rejects_unknown_role(self, hooks, make_user):
        user_id = make_user('someone@example.com')
        result = hooks.update_user_role().run(user_id, 'superuser')
        assert isinstance(result.error, ValidationError)

    def test_update_user_active(self, hooks, make_user):
        user_id = make_user('someone@example.com')
        hooks.use_user(user_id)
        hooks.update_user_active().run(user_id, False)
        assert hooks.use_user(user_id).data.active is False

    def test_settings_change_refreshes_insights(self, hooks, store):
        services.add_insight(store, Insight(type='match', related_id='m1', content='x',
                                             created_at='2025-01-01T00:00:00'))
        assert len(hooks.use_insights('match', 'm1').data) == 1
        hooks.update_settings().run({'enableAIInsights': False})
        assert hooks.use_insights('match', 'm1').data == []

    def test_manual_ranking(self, hooks, league):
        hooks.recalculate_standings().run()
        hooks.use_standings()
        hooks.update_manual_ranking().run(league['bravo'], True, 1)
        assert hooks.use_standings().data[0].team_id == league['bravo']

    def test_players(self, hooks, league):
        result = hooks.add_player().run({'name': 'New Kid', 'teamId': league['alpha'],
                                         'stats': {'goals': 9}})
        player_id = result.data
        assert hooks.use_top_scorers().data[0].name == 'New Kid'
        hooks.delete_player().run(player_id)
        assert hooks.use_top_scorers().data[0].name == 'Sam Striker'

    def test_update_player_refreshes_top_scorers(self, hooks, league):
        assert hooks.use_top_scorers().data[0].stats.goals == 5
        hooks.update_player().run(league['keeper'], {'name': 'Kim Keeper', 'teamId': league['bravo'],
                                                     'position': 'Goalkeeper', 'stats': {'goals': 6}})
        assert hooks.use_top_scorers().data[0].name == 'Kim Keeper'

    def test_batch_goals(self, hooks, league):
        hooks.use_top_scorers()
        result = hooks.batch_update_goals().run('Kim Keeper,9\nsam striker,2')
        assert result.data == 2
        assert [p.stats.goals for p in hooks.use_top_scorers().data] == [9, 2]

    def test_batch_goals_bad_line_writes_nothing(self, hooks, league):
        result = hooks.batch_update_goals().run('Kim Keeper,9\nNobody,1')
        assert isinstance(result.error, ValidationError)
        assert 'Line 2' in result.reason
        assert [p.name for p in hooks.use_top_scorers().data] == ['Sam Striker']

    def test_batch_goalkeeper_stats(self, hooks, league):
        hooks.batch_update_goalkeeper_stats().run('Kim Keeper,4,3')
        keeper = [p for p in hooks.use_players().data if p.id == league['keeper']][0]
        assert (keeper.stats.goals_allowed, keeper.stats.games_played) == (4, 3)

    def test_playoffs(self, hooks, league):
        result = hooks.create_playoff_match().run({'team1Id': league['alpha'], 'date': '2025-05-01',
                                                   'round': 'final', 'matchNumber': 1})
        final = hooks.use_playoff_matches().data[0]
        assert final.team1_name == 'alpha'
        assert final.team2_name == 'TBD'
        hooks.delete_playoff_match().run(result.data)
        assert hooks.use_playoff_matches().is_empty


class TestMatchInsightsRead:
    """A match without insights reads as an empty list."""

    def test_zero_insights(self, hooks, league):
        result = hooks.use_insights('match', league['played'])
        assert result.is_success
        assert result.data == []
