"""
Tests for per-collection data access.
"""
import pytest

from league import services
from league.errors import NotFound
from league.models import Insight, Match, PlayoffMatch, Settings, Team


class TestTeams:
    """Tests for teams and players."""

    def test_get_team_with_empty_id(self, store):
        with pytest.raises(NotFound):
            services.get_team(store, '')

    def test_delete_team_removes_standing(self, store, league):
        from league.standings import recalculate_all_standings
        recalculate_all_standings(store)
        services.delete_team(store, league['alpha'])
        assert store.count('standings', where=[('teamId', '==', league['alpha'])]) == 0

    def test_players_by_team(self, store, league):
        players = services.get_players_by_team(store, league['alpha'])
        assert [p.name for p in players] == ['Sam Striker']

    def test_top_scorers(self, store, league):
        scorers = services.get_top_scorers(store, limit=1)
        assert [p.name for p in scorers] == ['Sam Striker']


class TestMatches:
    """Tests for match queries."""

    def test_future_and_past_split_on_today(self, store, league):
        future = services.get_future_matches(store, '2025-06-01')
        past = services.get_past_matches(store, '2025-06-01')
        assert [m.id for m in future] == [league['upcoming']]
        assert [m.id for m in past] == [league['played']]

    def test_match_on_today_counts_as_future(self, store, league):
        future = services.get_future_matches(store, '2025-01-10')
        assert league['played'] in [m.id for m in future]

    def test_past_matches_newest_first(self, store, league):
        services.create_match(store, Match(team1_id=league['alpha'], team2_id=league['bravo'],
                                           date='2025-02-01', completed=True, score1=0, score2=0))
        past = services.get_past_matches(store, '2025-06-01')
        assert [m.date for m in past] == ['2025-02-01', '2025-01-10']

    def test_missing_team_names_filled_in(self, store, league):
        match_id = services.create_match(store, Match(team1_id=league['alpha'], team2_id=league['bravo'],
                                                      date='2025-03-01'))
        match = services.get_match(store, match_id)
        assert (match.team1_name, match.team2_name) == ('alpha', 'Bravo')

    def test_matches_for_team(self, store, league):
        assert len(services.get_matches_for_team(store, league['bravo'])) == 2

    def test_update_match_replaces_document(self, store, league):
        match = services.get_match(store, league['played'])
        match.completed = False
        match.score1 = match.score2 = None
        services.update_match(store, league['played'], match)
        assert 'score1' not in store.get('matches', league['played'])

    def test_get_match_missing(self, store):
        with pytest.raises(NotFound):
            services.get_match(store, 'ghost')


class TestPlayoffs:
    """Tests for the playoff bracket."""

    def test_bracket_order(self, store):
        for round_name, number in [('final', 1), ('quarterfinal', 2), ('semifinal', 1), ('quarterfinal', 1)]:
            services.create_playoff_match(store, PlayoffMatch(round=round_name, match_number=number,
                                                              date='2025-05-01'))
        matches = services.get_all_playoff_matches(store)
        assert [(m.round, m.match_number) for m in matches] == [
            ('quarterfinal', 1), ('quarterfinal', 2), ('semifinal', 1), ('final', 1)]

    def test_undecided_teams_shown_as_tbd(self, store):
        services.create_playoff_match(store, PlayoffMatch(round='final', match_number=1, date='2025-05-01'))
        final = services.get_playoff_matches_by_round(store, 'final')[0]
        assert final.team1_name == services.TBD_TEAM


class TestSettings:
    """Tests for league settings."""

    def test_defaults_created_on_first_read(self, store):
        settings = services.get_settings(store)
        assert settings.league_name == 'HCI Soccer League'
        assert store.get('settings', services.SETTINGS_DOC_ID)['pointsForWin'] == 3

    def test_update_settings(self, store):
        services.update_settings(store, Settings(points_for_win=2))
        assert services.get_settings(store).points_for_win == 2


class TestUsers:
    """Tests for users and admin bookkeeping."""

    def test_find_user_by_email_is_case_insensitive(self, store, make_user):
        user_id = make_user('coach@example.com')
        assert services.find_user_by_email(store, ' Coach@Example.com ').id == user_id

    def test_count_admins(self, store, make_user):
        make_user('a@example.com', role='admin')
        make_user('b@example.com')
        assert services.count_admin_users(store) == 1

    def test_admin_limit(self, store, make_user):
        services.update_settings(store, Settings(max_admin_users=1))
        assert not services.is_admin_limit_reached(store)
        make_user('a@example.com', role='admin')
        assert services.is_admin_limit_reached(store)

    def test_secret_code_is_exact(self, store):
        assert services.verify_admin_secret_code(store, 'admin123')
        assert not services.verify_admin_secret_code(store, 'ADMIN123')
        assert not services.verify_admin_secret_code(store, 'admin123 ')


class TestInsights:
    """Tests for stored insights."""

    def test_newest_first_and_limited(self, store):
        for i in range(7):
            services.add_insight(store, Insight(type='team', related_id='t1', content=f'note {i}',
                                                created_at=f'2025-01-0{i + 1}T00:00:00'))
        services.add_insight(store, Insight(type='team', related_id='t2', content='other',
                                            created_at='2025-02-01T00:00:00'))
        insights = services.get_insights(store, 'team', 't1')
        assert len(insights) == services.INSIGHTS_PER_SUBJECT
        assert insights[0].content == 'note 6'

    def test_add_insight_sets_id(self, store):
        insight = services.add_insight(store, Insight(type='match', related_id='m1', content='x',
                                                      created_at='2025-01-01T00:00:00'))
        assert insight.id
        services.delete_insight(store, insight.id)
        assert services.get_all_insights(store) == []
