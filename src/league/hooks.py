"""
Resource hooks: one read function per resource shape, each going through the
query cache, and mutation objects that write to the store and invalidate the
affected resource types on success.

Reads return a ``QueryResult`` (loading / error / success). Mutations move
through ``idle -> pending -> success | error``.
"""
import logging

from league import player_stats, services, standings
from league.admin import AdminPromotion, set_user_role
from league.cache import QueryResult, make_key
from league.errors import StoreError
from league.models import Match, Player, PlayoffMatch, Settings, Team

logger = logging.getLogger(__name__)

TEAMS = 'teams'
PLAYERS = 'players'
MATCHES = 'matches'
PLAYOFFS = 'playoffMatches'
STANDINGS = 'standings'
SETTINGS = 'settings'
USERS = 'users'
INSIGHTS = 'insights'

IDLE = 'idle'
PENDING = 'pending'
SUCCESS = 'success'
ERROR = 'error'


class Mutation:
    """A single write action with an explicit state machine."""

    def __init__(self, cache, fn, invalidates=(), name: str = None):
        self.cache = cache
        self.fn = fn
        self.invalidates = tuple(invalidates)
        self.name = name or getattr(fn, '__name__', 'mutation')
        self.state = IDLE
        self.data = None
        self.error = None

    @property
    def is_pending(self) -> bool:
        return self.state == PENDING

    @property
    def is_success(self) -> bool:
        return self.state == SUCCESS

    @property
    def is_error(self) -> bool:
        return self.state == ERROR

    def run(self, *args, **kwargs) -> QueryResult:
        if self.state == PENDING:
            raise RuntimeError(f'{self.name} is already running')
        self.state = PENDING
        self.data = None
        self.error = None
        try:
            data = self.fn(*args, **kwargs)
        except StoreError as e:
            self.state = ERROR
            self.error = e
            logger.warning(f'{self.name} failed: {e}')
            return QueryResult.failure(e)

        for resource_type in self.invalidates:
            self.cache.invalidate(resource_type)
        self.state = SUCCESS
        self.data = data
        return QueryResult.success(data)

    def reset(self):
        self.state = IDLE
        self.data = None
        self.error = None


class ResourceHooks:
    def __init__(self, store, cache, generator=None):
        self.store = store
        self.cache = cache
        self.generator = generator

    def _read(self, resource_type: str, params: tuple, fetcher, wait: bool) -> QueryResult:
        return self.cache.read(make_key(resource_type, *params), fetcher, wait=wait)

    # Reads

    def use_teams(self, wait: bool = True) -> QueryResult:
        return self._read(TEAMS, (), lambda: services.get_all_teams(self.store), wait)

    def use_team(self, team_id: str, wait: bool = True) -> QueryResult:
        return self._read(TEAMS, (team_id,), lambda: services.get_team(self.store, team_id), wait)

    def use_team_players(self, team_id: str, wait: bool = True) -> QueryResult:
        return self._read(PLAYERS, ('team', team_id),
                          lambda: services.get_players_by_team(self.store, team_id), wait)

    def use_players(self, wait: bool = True) -> QueryResult:
        return self._read(PLAYERS, ('all',), lambda: services.get_all_players(self.store), wait)

    def use_top_scorers(self, limit: int = 10, wait: bool = True) -> QueryResult:
        return self._read(PLAYERS, ('top', limit), lambda: services.get_top_scorers(self.store, limit), wait)

    def use_matches(self, wait: bool = True) -> QueryResult:
        return self._read(MATCHES, (), lambda: services.get_all_matches(self.store), wait)

    def use_future_matches(self, today: str = None, wait: bool = True) -> QueryResult:
        today = today or services.today_iso()
        return self._read(MATCHES, ('future', today),
                          lambda: services.get_future_matches(self.store, today), wait)

    def use_past_matches(self, today: str = None, wait: bool = True) -> QueryResult:
        today = today or services.today_iso()
        return self._read(MATCHES, ('past', today),
                          lambda: services.get_past_matches(self.store, today), wait)

    def use_match(self, match_id: str, wait: bool = True) -> QueryResult:
        return self._read(MATCHES, (match_id,), lambda: services.get_match(self.store, match_id), wait)

    def use_playoff_matches(self, wait: bool = True) -> QueryResult:
        return self._read(PLAYOFFS, (), lambda: services.get_all_playoff_matches(self.store), wait)

    def use_standings(self, wait: bool = True) -> QueryResult:
        return self._read(STANDINGS, (), lambda: standings.get_all_standings(self.store), wait)

    def use_team_standing(self, team_id: str, wait: bool = True) -> QueryResult:
        return self._read(STANDINGS, (team_id,),
                          lambda: standings.get_team_standing(self.store, team_id), wait)

    def use_settings(self, wait: bool = True) -> QueryResult:
        return self._read(SETTINGS, (), lambda: services.get_settings(self.store), wait)

    def use_users(self, wait: bool = True) -> QueryResult:
        return self._read(USERS, (), lambda: services.get_all_users(self.store), wait)

    def use_user(self, user_id: str, wait: bool = True) -> QueryResult:
        return self._read(USERS, (user_id,), lambda: services.get_user(self.store, user_id), wait)

    def insights_enabled(self) -> bool:
        result = self.use_settings()
        # Unknown settings do not hide insights; the read itself will report errors
        return result.data.enable_ai_insights if result.data is not None else True

    def use_insights(self, insight_type: str, related_id: str, wait: bool = True) -> QueryResult:
        if not related_id or not self.insights_enabled():
            return QueryResult.success([])
        return self._read(INSIGHTS, (insight_type, related_id),
                          lambda: services.get_insights(self.store, insight_type, related_id), wait)

    def use_latest_insights(self, limit: int = 5, wait: bool = True) -> QueryResult:
        if not self.insights_enabled():
            return QueryResult.success([])
        return self._read(INSIGHTS, ('latest', limit),
                          lambda: services.get_latest_insights(self.store, limit), wait)

    def use_all_insights(self, wait: bool = True) -> QueryResult:
        return self._read(INSIGHTS, ('all',), lambda: services.get_all_insights(self.store), wait)

    # Mutations

    def _mutation(self, fn, *invalidates) -> Mutation:
        return Mutation(self.cache, fn, invalidates)

    def generate_match_insight(self) -> Mutation:
        return self._mutation(self.generator.generate_match_insight, INSIGHTS)

    def generate_team_insight(self) -> Mutation:
        return self._mutation(self.generator.generate_team_insight, INSIGHTS)

    def generate_player_insight(self) -> Mutation:
        return self._mutation(self.generator.generate_player_insight, INSIGHTS)

    def delete_insight(self) -> Mutation:
        return self._mutation(lambda insight_id: services.delete_insight(self.store, insight_id), INSIGHTS)

    def update_user_role(self) -> Mutation:
        return self._mutation(lambda user_id, role: set_user_role(self.store, user_id, role), USERS)

    def update_user_active(self) -> Mutation:
        return self._mutation(lambda user_id, active: services.update_user_active(self.store, user_id, active),
                              USERS)

    def promote_to_admin(self) -> Mutation:
        def run(user_id, code):
            promotion = AdminPromotion(self.store, user_id)
            promotion.run(code)
            promotion.raise_for_failure()
            return promotion
        return self._mutation(run, USERS)

    def create_team(self) -> Mutation:
        def run(data):
            return services.create_team(self.store, Team.parse_input(data))
        return self._mutation(run, TEAMS)

    def update_team(self) -> Mutation:
        def run(team_id, data):
            services.update_team(self.store, team_id, Team.parse_input(data))
            standings.update_standings_for_teams(self.store, [team_id])
        return self._mutation(run, TEAMS, STANDINGS)

    def delete_team(self) -> Mutation:
        return self._mutation(lambda team_id: services.delete_team(self.store, team_id), TEAMS, STANDINGS)

    def add_player(self) -> Mutation:
        def run(data):
            return services.add_player(self.store, Player.parse_input(data))
        return self._mutation(run, PLAYERS)

    def update_player(self) -> Mutation:
        def run(player_id, data):
            services.update_player(self.store, player_id, Player.parse_input(data))
        return self._mutation(run, PLAYERS)

    def delete_player(self) -> Mutation:
        return self._mutation(lambda player_id: services.delete_player(self.store, player_id), PLAYERS)

    def batch_update_goals(self) -> Mutation:
        def run(text):
            players = services.get_all_players(self.store)
            return player_stats.apply_stat_updates(self.store, player_stats.parse_goal_lines(text, players))
        return self._mutation(run, PLAYERS)

    def batch_update_goalkeeper_stats(self) -> Mutation:
        def run(text):
            players = services.get_all_players(self.store)
            updates = player_stats.parse_goalkeeper_lines(text, players)
            return player_stats.apply_stat_updates(self.store, updates)
        return self._mutation(run, PLAYERS)

    def create_match(self) -> Mutation:
        def run(data):
            match = Match.parse_input(data)
            match_id = services.create_match(self.store, match)
            standings.update_standings_for_teams(self.store, match.team_ids)
            return match_id
        return self._mutation(run, MATCHES, STANDINGS)

    def update_match(self) -> Mutation:
        def run(match_id, data):
            match = Match.parse_input(data)
            previous = services.get_match(self.store, match_id)
            services.update_match(self.store, match_id, match)
            # Teams that were swapped out of the fixture need recomputing too
            standings.update_standings_for_teams(self.store, previous.team_ids + match.team_ids)
        return self._mutation(run, MATCHES, STANDINGS)

    def delete_match(self) -> Mutation:
        def run(match_id):
            previous = services.get_match(self.store, match_id)
            services.delete_match(self.store, match_id)
            standings.update_standings_for_teams(self.store, previous.team_ids)
        return self._mutation(run, MATCHES, STANDINGS)

    def create_playoff_match(self) -> Mutation:
        def run(data):
            return services.create_playoff_match(self.store, PlayoffMatch.parse_input(data))
        return self._mutation(run, PLAYOFFS)

    def update_playoff_match(self) -> Mutation:
        def run(match_id, data):
            services.update_playoff_match(self.store, match_id, PlayoffMatch.parse_input(data))
        return self._mutation(run, PLAYOFFS)

    def delete_playoff_match(self) -> Mutation:
        return self._mutation(lambda match_id: services.delete_playoff_match(self.store, match_id), PLAYOFFS)

    def update_settings(self) -> Mutation:
        def run(data):
            services.update_settings(self.store, Settings.parse_input(data))
        return self._mutation(run, SETTINGS, INSIGHTS)

    def recalculate_standings(self) -> Mutation:
        return self._mutation(lambda: standings.recalculate_all_standings(self.store), STANDINGS)

    def update_manual_ranking(self) -> Mutation:
        def run(team_id, manually_ranked, manual_rank=None):
            standings.update_manual_ranking(self.store, team_id, manually_ranked, manual_rank)
        return self._mutation(run, STANDINGS)


# Parameterless reads exposed through the JSON resource endpoint
RESOURCE_READERS = {
    TEAMS: 'use_teams',
    MATCHES: 'use_matches',
    PLAYOFFS: 'use_playoff_matches',
    STANDINGS: 'use_standings',
}
