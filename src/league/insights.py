"""
AI-generated summaries for matches, teams and players.

The text comes from an OpenAI-compatible chat completions endpoint. When the
league settings disable insights, or no API key is configured, a fallback
insight explaining why is stored instead so the admin sees what happened.
"""
import logging

import httpx

from league import services
from league.errors import NotFound, Unavailable, ValidationError
from league.models import Insight

logger = logging.getLogger(__name__)

DISABLED_MESSAGE = 'AI insights are currently disabled in the system settings.'
NO_KEY_MESSAGE = 'AI insights are not available. Please add an OpenAI API key to your environment variables.'
EMPTY_COMPLETION = 'No insight available.'


class InsightGenerator:
    def __init__(self, store, api_key: str = None, base_url: str = 'https://api.openai.com/v1',
                 model: str = 'gpt-3.5-turbo', timeout: float = 30.0, client: httpx.Client = None):
        self.store = store
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.model = model
        self.timeout = timeout
        self._client = client

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    def _complete(self, prompt: str) -> str:
        client = self._client or httpx.Client(timeout=self.timeout)
        try:
            response = client.post(
                f'{self.base_url}/chat/completions',
                headers={'Authorization': f'Bearer {self.api_key}'},
                json={
                    'model': self.model,
                    'messages': [{'role': 'user', 'content': prompt}],
                },
            )
            response.raise_for_status()
            result = response.json()
        except httpx.HTTPStatusError as e:
            raise Unavailable(f'Insight service returned {e.response.status_code}') from e
        except httpx.HTTPError as e:
            raise Unavailable(f'Insight service unreachable: {e}') from e
        finally:
            if self._client is None:
                client.close()

        try:
            content = result['choices'][0]['message']['content']
        except (KeyError, IndexError, TypeError):
            content = None
        return (content or '').strip() or EMPTY_COMPLETION

    def _store(self, insight_type: str, related_id: str, content: str) -> Insight:
        insight = Insight(type=insight_type, related_id=related_id, content=content,
                          created_at=services.now_iso())
        services.add_insight(self.store, insight)
        logger.info(f'Stored {insight_type} insight {insight.id} for {related_id}')
        return insight

    def _generate(self, insight_type: str, related_id: str, build_prompt) -> Insight:
        # Fallbacks are only stored for subjects that exist
        prompt = build_prompt()
        if not services.get_settings(self.store).enable_ai_insights:
            return self._store(insight_type, related_id, DISABLED_MESSAGE)
        if not self.available:
            return self._store(insight_type, related_id, NO_KEY_MESSAGE)
        return self._store(insight_type, related_id, self._complete(prompt))

    def generate_match_insight(self, match_id: str) -> Insight:
        def build_prompt():
            match = services.get_match(self.store, match_id)
            if not match.completed:
                raise ValidationError('Summaries can only be generated for completed matches')
            return (
                f'Generate a brief, insightful match summary for the soccer game between '
                f'{match.team1_name} and {match.team2_name} that ended with a score of '
                f'{match.score1}-{match.score2}.\n\n'
                f'The match was played at {match.location or "an unknown venue"} on {match.date}.\n\n'
                f'Focus on key moments, team performances, and the significance of the result. '
                f'Keep it concise (3-4 sentences).'
            )
        return self._generate('match', match_id, build_prompt)

    def generate_team_insight(self, team_id: str) -> Insight:
        def build_prompt():
            team = services.get_team(self.store, team_id)
            players = services.get_players_by_team(self.store, team_id)
            lines = '\n'.join(
                f'- {p.name} ({p.position or "unknown position"}): {p.stats.goals} goals, '
                f'{p.stats.assists} assists, {p.stats.games_played} games played'
                for p in players
            ) or '- No players registered yet'
            return (
                f'Generate a brief, insightful analysis of the soccer team "{team.name}" based on the '
                f'following player information:\n\n{lines}\n\n'
                f'Focus on team strengths, areas for improvement, and any notable player performances. '
                f'Keep it concise (2-3 sentences).'
            )
        return self._generate('team', team_id, build_prompt)

    def generate_player_insight(self, player_id: str, team_id: str) -> Insight:
        def build_prompt():
            player = next((p for p in services.get_players_by_team(self.store, team_id)
                           if p.id == player_id), None)
            if player is None:
                raise NotFound('Player not found', collection='players', doc_id=player_id)
            try:
                team_name = services.get_team(self.store, team_id).name
            except NotFound:
                team_name = 'their team'
            s = player.stats
            return (
                f'Generate a brief, insightful analysis of the soccer player "{player.name}" who plays as a '
                f'{player.position or "player"} for {team_name} based on the following stats:\n\n'
                f'- Goals: {s.goals}\n- Assists: {s.assists}\n- Yellow Cards: {s.yellow_cards}\n'
                f'- Red Cards: {s.red_cards}\n- Games Played: {s.games_played}\n\n'
                f'Focus on the player\'s strengths, areas for improvement, and contribution to the team. '
                f'Keep it concise (2-3 sentences).'
            )
        return self._generate('player', player_id, build_prompt)
