"""
League-wide batch updates of player statistics, pasted as comma separated lines.

    Player Name,Goals
    Goalkeeper Name,Goals Allowed,Games Played

Names match any player in the league, ignoring case. Every line is checked
before anything is written, so a batch with one bad line changes nothing.
A first line equal to the column header is skipped.
"""
import logging

from league import services
from league.errors import ValidationError

logger = logging.getLogger(__name__)

GOALS_HEADER = 'Player Name,Goals'
GOALKEEPER_HEADER = 'Goalkeeper Name,Goals Allowed,Games Played'

GOALS_COLUMNS = (('goals', 'goal'),)
GOALKEEPER_COLUMNS = (('goals_allowed', 'goals allowed'), ('games_played', 'games played'))


def _count(value: str):
    try:
        count = int(value)
    except ValueError:
        return None
    return count if count >= 0 else None


def _parse(text: str, players: list, header: str, columns: tuple, subject: str) -> list:
    if not text or not text.strip():
        raise ValidationError(f'Please enter {subject.lower()} data')

    by_name = {p.name.casefold(): p for p in players}
    updates = []
    errors = []
    for number, line in enumerate(text.strip().splitlines(), start=1):
        if not line.strip():
            continue
        parts = [part.strip() for part in line.split(',')]
        if number == 1 and ','.join(parts).casefold() == header.casefold():
            continue
        if len(parts) != len(columns) + 1:
            errors.append(f'Line {number}: Invalid format. Expected "{header}"')
            continue

        name = parts[0]
        counts = {}
        for (field, label), value in zip(columns, parts[1:]):
            count = _count(value)
            if count is None:
                errors.append(f'Line {number}: Invalid {label} count for {name}')
                break
            counts[field] = count
        else:
            player = by_name.get(name.casefold())
            if player is None:
                errors.append(f'Line {number}: {subject} "{name}" not found')
            else:
                updates.append((player, counts))

    if errors:
        raise ValidationError('; '.join(errors))
    return updates


def parse_goal_lines(text: str, players: list) -> list:
    """Return (player, changes) pairs for ``Player Name,Goals`` lines."""
    return _parse(text, players, GOALS_HEADER, GOALS_COLUMNS, 'Player')


def parse_goalkeeper_lines(text: str, players: list) -> list:
    """Return (player, changes) pairs for ``Goalkeeper Name,Goals Allowed,Games Played`` lines."""
    return _parse(text, players, GOALKEEPER_HEADER, GOALKEEPER_COLUMNS, 'Goalkeeper')


def apply_stat_updates(store, updates: list) -> int:
    for player, counts in updates:
        stats = player.stats.model_copy(update=counts)
        services.update_player(store, player.id, player.model_copy(update={'stats': stats}))
    logger.info(f'Updated stats for {len(updates)} players')
    return len(updates)


def goal_lines(players: list) -> str:
    """Current goals in the batch format, for editing in place."""
    lines = [GOALS_HEADER] + [f'{p.name},{p.stats.goals}' for p in players]
    return '\n'.join(lines)


def goalkeeper_lines(players: list) -> str:
    lines = [GOALKEEPER_HEADER] + [f'{p.name},{p.stats.goals_allowed},{p.stats.games_played}'
                                   for p in players]
    return '\n'.join(lines)
