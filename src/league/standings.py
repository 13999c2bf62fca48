"""
League table computation.

A team's standing is rebuilt from scratch from every completed match it took
part in, using the points configured in the league settings.

Ranking: points -> goal difference -> goals scored -> team name.
Teams flagged as manually ranked are pinned at their manual rank and the
automatically ranked teams fill the remaining positions in order.
"""
import logging

from league import services
from league.errors import NotFound, ValidationError
from league.models import Standing
from league.store import STANDINGS

logger = logging.getLogger(__name__)


def calculate_standing(team_id: str, team_name: str, matches: list, settings) -> Standing:
    """Build a standing for ``team_id`` from the given matches.

    Matches that are not completed or miss a score are ignored, as are
    matches the team did not play in.
    """
    standing = Standing(team_id=team_id, team_name=team_name)
    for match in matches:
        if not match.has_result:
            continue
        if match.team1_id == team_id:
            scored, conceded = match.score1, match.score2
        elif match.team2_id == team_id:
            scored, conceded = match.score2, match.score1
        else:
            continue

        standing.played += 1
        standing.goals_for += scored
        standing.goals_against += conceded
        if scored > conceded:
            standing.won += 1
            standing.points += settings.points_for_win
        elif scored == conceded:
            standing.drawn += 1
            standing.points += settings.points_for_draw
        else:
            standing.lost += 1
            standing.points += settings.points_for_loss
    return standing


def rank_standings(standings: list) -> list:
    """Order a league table, honouring manual ranks."""
    automatic = sorted(
        (s for s in standings if not s.manually_ranked),
        key=lambda s: (-s.points, -s.goal_difference, -s.goals_for, s.team_name.casefold())
    )
    manual = sorted((s for s in standings if s.manually_ranked),
                    key=lambda s: (s.manual_rank or 0, s.team_name.casefold()))
    if not manual:
        return automatic

    pinned = {}
    unplaced = []
    for s in manual:
        if s.manual_rank and s.manual_rank not in pinned and s.manual_rank <= len(standings):
            pinned[s.manual_rank] = s
        else:
            unplaced.append(s)

    ranked = []
    auto_iter = iter(automatic + unplaced)
    for position in range(1, len(standings) + 1):
        if position in pinned:
            ranked.append(pinned[position])
        else:
            ranked.append(next(auto_iter))
    return ranked


def _find_standing_doc(store, team_id: str):
    docs = store.query(STANDINGS, where=[('teamId', '==', team_id)], limit=1)
    return docs[0] if docs else None


def recalculate_team_standing(store, team_id: str, settings=None) -> Standing:
    """Recompute and persist one team's standing, keeping its manual rank."""
    settings = settings or services.get_settings(store)
    try:
        team_name = services.get_team(store, team_id).name
    except NotFound:
        team_name = services.UNKNOWN_TEAM
    matches = services.get_matches_for_team(store, team_id)
    standing = calculate_standing(team_id, team_name, matches, settings)
    standing.season = settings.current_season

    existing = _find_standing_doc(store, team_id)
    if existing is None:
        standing.id = store.add(STANDINGS, standing.to_document())
    else:
        standing.id = existing['id']
        standing.manually_ranked = existing.get('manuallyRanked', False)
        standing.manual_rank = existing.get('manualRank')
        store.set(STANDINGS, standing.id, standing.to_document())
    logger.info(f'Recalculated standing for {team_name}: {standing.points} pts from {standing.played} matches')
    return standing


def recalculate_all_standings(store) -> list:
    settings = services.get_settings(store)
    teams = services.get_all_teams(store)
    logger.info(f'Recalculating standings for {len(teams)} teams')
    return [recalculate_team_standing(store, team.id, settings) for team in teams]


def update_standings_for_teams(store, team_ids) -> list:
    settings = services.get_settings(store)
    seen = []
    for team_id in team_ids:
        if team_id and team_id not in seen:
            seen.append(team_id)
    return [recalculate_team_standing(store, team_id, settings) for team_id in seen]


def get_all_standings(store) -> list:
    return rank_standings(Standing.from_documents(store.query(STANDINGS)))


def get_team_standing(store, team_id: str):
    doc = _find_standing_doc(store, team_id)
    return Standing.from_document(doc) if doc else None


def update_manual_ranking(store, team_id: str, manually_ranked: bool, manual_rank: int = None):
    if manually_ranked and (manual_rank is None or manual_rank < 1):
        raise ValidationError('Manual rank must be 1 or greater')
    doc = _find_standing_doc(store, team_id)
    if doc is None:
        raise NotFound('No standing for team', collection=STANDINGS, doc_id=team_id)
    store.update(STANDINGS, doc['id'], {
        'manuallyRanked': manually_ranked,
        'manualRank': manual_rank if manually_ranked else None,
    })
