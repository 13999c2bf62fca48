"""
Display helpers shared by the pages and templates.
"""
import locale
import unicodedata
from datetime import datetime

UPCOMING_LABEL = 'Upcoming Match'
FINAL_LABEL = 'Final Score'
ROUND_TITLES = {'quarterfinal': 'Quarterfinals', 'semifinal': 'Semifinals', 'final': 'Final'}
DATE_FORMATS = (('%Y-%m-%dT%H:%M:%S', 19), ('%Y-%m-%dT%H:%M', 16), ('%Y-%m-%d', 10))


def _collation_key(name: str):
    """Case-insensitive, accent-insensitive key for ordering names."""
    normalized = unicodedata.normalize('NFKD', name or '')
    stripped = ''.join(c for c in normalized if not unicodedata.combining(c))
    try:
        collated = locale.strxfrm(stripped.casefold())
    except (OSError, ValueError):
        collated = stripped.casefold()
    return (collated, name or '')


def sort_teams(teams: list) -> list:
    """Teams in alphabetical order, ignoring case: alpha before Bravo."""
    return sorted(teams, key=lambda t: _collation_key(t.name if hasattr(t, 'name') else t['name']))


def score_line(match) -> tuple:
    """Return (center text, label) for a match header."""
    if match.completed and match.score1 is not None and match.score2 is not None:
        return f'{match.score1} - {match.score2}', FINAL_LABEL
    return 'vs', UPCOMING_LABEL


def can_generate_summary(is_admin: bool, match) -> bool:
    return bool(is_admin and match is not None and match.completed)


def format_match_date(value: str) -> str:
    """'2025-03-01' -> 'Saturday, March 1, 2025'; unparseable dates pass through."""
    if not value:
        return ''
    for fmt, width in DATE_FORMATS:
        try:
            parsed = datetime.strptime(value[:width], fmt)
        except ValueError:
            continue
        text = f'{parsed:%A}, {parsed:%B} {parsed.day}, {parsed.year}'
        if 'T' in fmt:
            text += f' at {parsed:%H:%M}'
        return text
    return value


def group_playoffs(matches: list) -> list:
    """[(round title, [matches...]), ...] in bracket order."""
    grouped = []
    for round_name, title in ROUND_TITLES.items():
        in_round = [m for m in matches if m.round == round_name]
        if in_round:
            grouped.append((title, in_round))
    return grouped
