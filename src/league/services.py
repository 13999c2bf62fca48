"""
Per-collection data access for the league.

Each function takes a ``DocumentStore`` and returns validated models. Store
errors propagate unchanged; callers (hooks and routes) decide how to show them.
"""
import hmac
import logging
from datetime import date, datetime, timezone

from league.errors import NotFound
from league.models import (ROUND_ORDER, Insight, Match, Player, PlayoffMatch, Settings,
                           Team, User)
from league.store import (INSIGHTS, MATCHES, PLAYERS, PLAYOFF_MATCHES, SETTINGS, STANDINGS,
                          TEAMS, USERS)

logger = logging.getLogger(__name__)

SETTINGS_DOC_ID = 'league_settings'
UNKNOWN_TEAM = 'Unknown Team'
TBD_TEAM = 'TBD'
INSIGHTS_PER_SUBJECT = 5


def today_iso() -> str:
    return date.today().isoformat()


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# Teams and players

def get_all_teams(store) -> list:
    return Team.from_documents(store.query(TEAMS))


def get_team(store, team_id: str) -> Team:
    if not team_id:
        raise NotFound('Invalid team id', collection=TEAMS)
    return Team.from_document(store.get(TEAMS, team_id))


def create_team(store, team: Team) -> str:
    team_id = store.add(TEAMS, team.to_document())
    logger.info(f'Created team {team.name} ({team_id})')
    return team_id


def update_team(store, team_id: str, team: Team):
    store.update(TEAMS, team_id, team.to_document())


def delete_team(store, team_id: str):
    store.delete(TEAMS, team_id)
    for standing in store.query(STANDINGS, where=[('teamId', '==', team_id)]):
        store.delete(STANDINGS, standing['id'])
    logger.info(f'Deleted team {team_id}')


def get_players_by_team(store, team_id: str) -> list:
    players = Player.from_documents(store.query(PLAYERS, where=[('teamId', '==', team_id)]))
    return sorted(players, key=lambda p: p.name.casefold())


def get_all_players(store) -> list:
    return Player.from_documents(store.query(PLAYERS))


def add_player(store, player: Player) -> str:
    return store.add(PLAYERS, player.to_document())


def update_player(store, player_id: str, player: Player):
    store.update(PLAYERS, player_id, player.to_document())


def delete_player(store, player_id: str):
    store.delete(PLAYERS, player_id)


def get_top_scorers(store, limit: int = 10) -> list:
    players = [p for p in get_all_players(store) if p.stats.goals > 0]
    players.sort(key=lambda p: (-p.stats.goals, -p.stats.assists, p.name.casefold()))
    return players[:limit]


# Matches

def _with_team_names(store, matches: list, missing_name: str) -> list:
    """Fill in team names that were not stored on the match documents."""
    if all(m.team1_name and m.team2_name for m in matches):
        return matches
    names = {t.id: t.name for t in get_all_teams(store)}
    for match in matches:
        if not match.team1_name:
            match.team1_name = names.get(match.team1_id, missing_name)
        if not match.team2_name:
            match.team2_name = names.get(match.team2_id, missing_name)
    return matches


def get_all_matches(store) -> list:
    matches = Match.from_documents(store.query(MATCHES, order_by=[('date', 'asc')]))
    return _with_team_names(store, matches, UNKNOWN_TEAM)


def get_future_matches(store, today: str = None) -> list:
    today = today or today_iso()
    docs = store.query(MATCHES, where=[('date', '>=', today)], order_by=[('date', 'asc')])
    return _with_team_names(store, Match.from_documents(docs), UNKNOWN_TEAM)


def get_past_matches(store, today: str = None) -> list:
    today = today or today_iso()
    docs = store.query(MATCHES, where=[('date', '<', today)], order_by=[('date', 'desc')])
    return _with_team_names(store, Match.from_documents(docs), UNKNOWN_TEAM)


def get_matches_for_team(store, team_id: str) -> list:
    docs = store.query(MATCHES, where=[('team1Id', '==', team_id)])
    docs += store.query(MATCHES, where=[('team2Id', '==', team_id)])
    matches = Match.from_documents(docs)
    return sorted(matches, key=lambda m: m.date)


def get_match(store, match_id: str) -> Match:
    if not match_id:
        raise NotFound('Invalid match id', collection=MATCHES)
    match = Match.from_document(store.get(MATCHES, match_id))
    return _with_team_names(store, [match], UNKNOWN_TEAM)[0]


def create_match(store, match: Match) -> str:
    return store.add(MATCHES, match.to_document())


def update_match(store, match_id: str, match: Match):
    # Full replacement so clearing a result also clears the scores
    store.get(MATCHES, match_id)
    store.set(MATCHES, match_id, match.to_document())


def delete_match(store, match_id: str):
    store.delete(MATCHES, match_id)


# Playoffs

def get_all_playoff_matches(store) -> list:
    docs = store.query(PLAYOFF_MATCHES, order_by=[('round', 'asc'), ('matchNumber', 'asc')])
    matches = PlayoffMatch.from_documents(docs)
    # The stored round names do not sort in bracket order
    matches.sort(key=lambda m: (ROUND_ORDER[m.round], m.match_number))
    return _with_team_names(store, matches, TBD_TEAM)


def get_playoff_matches_by_round(store, round_name: str) -> list:
    docs = store.query(PLAYOFF_MATCHES, where=[('round', '==', round_name)],
                       order_by=[('matchNumber', 'asc')])
    return _with_team_names(store, PlayoffMatch.from_documents(docs), TBD_TEAM)


def get_playoff_match(store, match_id: str) -> PlayoffMatch:
    return PlayoffMatch.from_document(store.get(PLAYOFF_MATCHES, match_id))


def create_playoff_match(store, match: PlayoffMatch) -> str:
    return store.add(PLAYOFF_MATCHES, match.to_document())


def update_playoff_match(store, match_id: str, match: PlayoffMatch):
    store.get(PLAYOFF_MATCHES, match_id)
    store.set(PLAYOFF_MATCHES, match_id, match.to_document())


def delete_playoff_match(store, match_id: str):
    store.delete(PLAYOFF_MATCHES, match_id)


# Settings

def get_settings(store) -> Settings:
    """Return the league settings, creating the defaults on first use."""
    try:
        return Settings.from_document(store.get(SETTINGS, SETTINGS_DOC_ID))
    except NotFound:
        settings = Settings(id=SETTINGS_DOC_ID)
        store.set(SETTINGS, SETTINGS_DOC_ID, settings.to_document())
        logger.info('Created default league settings')
        return settings


def update_settings(store, settings: Settings):
    store.set(SETTINGS, SETTINGS_DOC_ID, settings.to_document())


# Users

def get_all_users(store) -> list:
    users = User.from_documents(store.query(USERS))
    return sorted(users, key=lambda u: u.email.casefold())


def get_user(store, user_id: str) -> User:
    return User.from_document(store.get(USERS, user_id))


def find_user_by_email(store, email: str):
    docs = store.query(USERS, where=[('email', '==', email.strip().lower())], limit=1)
    return User.from_document(docs[0]) if docs else None


def create_user(store, user: User) -> str:
    return store.add(USERS, user.to_document())


def update_user_role(store, user_id: str, role: str):
    store.update(USERS, user_id, {'role': role})


def update_user_active(store, user_id: str, active: bool):
    store.update(USERS, user_id, {'active': active})


def count_admin_users(store) -> int:
    return store.count(USERS, where=[('role', '==', 'admin')])


def is_admin_limit_reached(store) -> bool:
    return count_admin_users(store) >= get_settings(store).max_admin_users


def verify_admin_secret_code(store, code: str) -> bool:
    """Exact, case-sensitive comparison against the stored secret."""
    secret = get_settings(store).admin_secret_code
    return hmac.compare_digest(code.encode('utf-8'), secret.encode('utf-8'))


# Insights

def get_insights(store, insight_type: str, related_id: str, limit: int = INSIGHTS_PER_SUBJECT) -> list:
    docs = store.query(INSIGHTS,
                       where=[('type', '==', insight_type), ('relatedId', '==', related_id)],
                       order_by=[('createdAt', 'desc')], limit=limit)
    return Insight.from_documents(docs)


def get_latest_insights(store, limit: int = 5) -> list:
    return Insight.from_documents(store.query(INSIGHTS, order_by=[('createdAt', 'desc')], limit=limit))


def get_all_insights(store) -> list:
    return Insight.from_documents(store.query(INSIGHTS, order_by=[('createdAt', 'desc')]))


def add_insight(store, insight: Insight) -> Insight:
    insight.id = store.add(INSIGHTS, insight.to_document())
    return insight


def delete_insight(store, insight_id: str):
    store.delete(INSIGHTS, insight_id)
