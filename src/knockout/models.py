from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from knockout.errors import InvalidMatchState, InvalidSchedule, MatchNotReady
from knockout.scoring import Score, Side, parse_progress, validate_score_text


def generate_id():
    import uuid
    return str(uuid.uuid4())[:8]


class MatchStatus(str, Enum):
    UNSCHEDULED = "unscheduled"
    SCHEDULED = "scheduled"
    LIVE = "live"
    COMPLETED = "completed"
    BYE = "bye"


@dataclass(frozen=True)
class Player:
    id: str
    name: str


@dataclass(frozen=True)
class Team:
    id: str
    players: Tuple[Player, Player]
    name: Optional[str] = None
    seed: Optional[int] = None  # explicit seed, registration order otherwise

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        return " / ".join(p.name for p in self.players)


def advancement_target(round_index: int, slot: int) -> Tuple[int, int, Side]:
    """Where the winner of (round, slot) plays next."""
    return round_index + 1, slot // 2, Side.HOME if slot % 2 == 0 else Side.AWAY


def feeder_slot(slot: int, side: Side) -> int:
    """Previous-round slot whose winner fills ``side`` of ``slot``."""
    return slot * 2 if side == Side.HOME else slot * 2 + 1


@dataclass
class Match:
    id: str
    tournament_id: str
    round: int
    slot: int
    home_team_id: Optional[str] = None
    away_team_id: Optional[str] = None
    status: MatchStatus = MatchStatus.UNSCHEDULED
    score: Optional[Score] = None
    winner_id: Optional[str] = None
    court: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in (MatchStatus.COMPLETED, MatchStatus.BYE)

    @property
    def winner_side(self) -> Optional[Side]:
        if self.winner_id is None:
            return None
        return Side.HOME if self.winner_id == self.home_team_id else Side.AWAY

    def team_id(self, side: Side) -> Optional[str]:
        return self.home_team_id if side == Side.HOME else self.away_team_id

    def assign(self, side: Side, team_id: Optional[str]):
        if side == Side.HOME:
            self.home_team_id = team_id
        else:
            self.away_team_id = team_id

    def resolve_bye(self, team_id: str):
        self.status = MatchStatus.BYE
        self.winner_id = team_id
        self.score = None

    def schedule(self, court: Optional[str], when: Optional[datetime]):
        if self.is_terminal:
            raise InvalidMatchState(f"Match {self.id} is {self.status.value} and cannot be rescheduled")
        if not court or not str(court).strip() or when is None:
            raise InvalidSchedule("Court and time must be set together")
        self.court = str(court).strip()
        self.scheduled_at = when
        if self.status != MatchStatus.LIVE:
            self.status = MatchStatus.SCHEDULED

    def _require_teams(self):
        if self.status == MatchStatus.BYE:
            raise InvalidMatchState(f"Match {self.id} is a bye and takes no score")
        if self.home_team_id is None or self.away_team_id is None:
            raise MatchNotReady(f"Match {self.id} is still waiting for its teams")

    def record_progress(self, score_text: str):
        """Store a partial score and mark the match live."""
        self._require_teams()
        if self.status == MatchStatus.COMPLETED:
            raise InvalidMatchState(f"Match {self.id} is already completed")
        self.score = parse_progress(score_text)
        self.status = MatchStatus.LIVE

    def complete(self, score_text: str) -> Optional[str]:
        """Validate and record a final result, returning the previous winner.

        Also used for corrections of a completed match. Nothing changes when
        validation fails.
        """
        self._require_teams()
        result = validate_score_text(score_text)
        previous = self.winner_id
        self.score = result.score
        self.winner_id = self.team_id(result.winner)
        self.status = MatchStatus.COMPLETED
        return previous
