"""
Document schemas for the league collections.

Documents are stored with camelCase field names; the Python side uses
snake_case attributes through pydantic aliases. Every read from the store
goes through ``from_document`` so malformed documents fail loudly with
``ValidationError`` instead of leaking into the pages.
"""
from typing import Literal, Optional

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from league.errors import ValidationError

ROUND_ORDER = {'quarterfinal': 1, 'semifinal': 2, 'final': 3}


class LeagueModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    id: Optional[str] = None

    @classmethod
    def from_document(cls, doc: dict):
        """Validate a raw store document."""
        try:
            return cls.model_validate(doc)
        except pydantic.ValidationError as e:
            doc_id = doc.get('id') if isinstance(doc, dict) else None
            raise ValidationError(f'Malformed {cls.__name__} document: {e.errors()[0]["msg"]}',
                                  doc_id=doc_id) from e

    @classmethod
    def from_documents(cls, docs) -> list:
        return [cls.from_document(doc) for doc in docs]

    @classmethod
    def parse_input(cls, data: dict):
        """Validate user-submitted data before it is written."""
        try:
            return cls.model_validate(data)
        except pydantic.ValidationError as e:
            first = e.errors()[0]
            field_name = '.'.join(str(p) for p in first['loc']) or cls.__name__
            raise ValidationError(f'{field_name}: {first["msg"]}') from e

    def to_document(self) -> dict:
        """Serialize for writing; the id lives outside the document body."""
        return self.model_dump(by_alias=True, exclude={'id'}, exclude_none=True)


class Team(LeagueModel):
    name: str
    logo: Optional[str] = None
    description: Optional[str] = None

    @field_validator('name')
    @classmethod
    def _name_not_empty(cls, value):
        value = value.strip()
        if not value:
            raise ValueError('team name must not be empty')
        return value


class PlayerStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    goals: int = Field(0, ge=0)
    assists: int = Field(0, ge=0)
    yellow_cards: int = Field(0, ge=0, alias='yellowCards')
    red_cards: int = Field(0, ge=0, alias='redCards')
    games_played: int = Field(0, ge=0, alias='gamesPlayed')
    goals_allowed: int = Field(0, ge=0, alias='goalsAllowed')


class Player(LeagueModel):
    name: str
    position: str = ''
    number: Optional[str] = None
    team_id: str = Field(alias='teamId')
    stats: PlayerStats = Field(default_factory=PlayerStats)

    @field_validator('number', mode='before')
    @classmethod
    def _number_as_text(cls, value):
        if value is None or value == '':
            return None
        return str(value)


class Match(LeagueModel):
    team1_id: str = Field(alias='team1Id')
    team2_id: str = Field(alias='team2Id')
    team1_name: str = Field('', alias='team1Name')
    team2_name: str = Field('', alias='team2Name')
    date: str
    location: str = ''
    completed: bool = False
    score1: Optional[int] = Field(None, ge=0)
    score2: Optional[int] = Field(None, ge=0)

    @model_validator(mode='after')
    def _check_result(self):
        if self.team1_id and self.team1_id == self.team2_id:
            raise ValueError('a team cannot play against itself')
        if self.completed and (self.score1 is None or self.score2 is None):
            raise ValueError('a completed match needs both scores')
        return self

    @property
    def team_ids(self) -> tuple:
        return (self.team1_id, self.team2_id)

    @property
    def has_result(self) -> bool:
        return self.completed and self.score1 is not None and self.score2 is not None


class PlayoffMatch(Match):
    team1_id: str = Field('', alias='team1Id')
    team2_id: str = Field('', alias='team2Id')
    round: Literal['quarterfinal', 'semifinal', 'final']
    match_number: int = Field(alias='matchNumber', ge=1)

    @property
    def round_order(self) -> int:
        return ROUND_ORDER[self.round]


class Insight(LeagueModel):
    type: Literal['team', 'player', 'match']
    related_id: str = Field(alias='relatedId')
    content: str
    created_at: str = Field(alias='createdAt')


class Settings(LeagueModel):
    league_name: str = Field('HCI Soccer League', alias='leagueName')
    current_season: str = Field('Winter 2025', alias='currentSeason')
    points_for_win: int = Field(3, alias='pointsForWin')
    points_for_draw: int = Field(1, alias='pointsForDraw')
    points_for_loss: int = Field(0, alias='pointsForLoss')
    enable_ai_insights: bool = Field(True, alias='enableAIInsights')
    max_admin_users: int = Field(8, ge=0, alias='maxAdminUsers')
    signup_enabled: bool = Field(True, alias='signupEnabled')
    admin_secret_code: str = Field('admin123', alias='adminSecretCode')


class User(LeagueModel):
    email: str
    role: Literal['admin', 'user'] = 'user'
    active: bool = True
    display_name: Optional[str] = Field(None, alias='displayName')
    password_hash: Optional[str] = Field(None, alias='passwordHash', repr=False)

    @property
    def is_admin(self) -> bool:
        return self.role == 'admin'


class Standing(LeagueModel):
    team_id: str = Field(alias='teamId')
    team_name: str = Field('Unknown Team', alias='teamName')
    played: int = 0
    won: int = 0
    drawn: int = 0
    lost: int = 0
    goals_for: int = Field(0, alias='goalsFor')
    goals_against: int = Field(0, alias='goalsAgainst')
    points: int = 0
    manually_ranked: bool = Field(False, alias='manuallyRanked')
    manual_rank: Optional[int] = Field(None, ge=1, alias='manualRank')
    season: Optional[str] = None

    @property
    def goal_difference(self) -> int:
        return self.goals_for - self.goals_against

