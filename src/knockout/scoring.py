"""Padel score rules: two regular sets plus a super tie-break when they split.

A set is won 6-0..6-4, 7-5 or 7-6. The super tie-break is won at 10 or more
points with a two point lead. Scores travel as text, ``"6-4,3-6,10-8"``.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from knockout.errors import (
    IncompleteTiebreak,
    InvalidSetScore,
    InvalidTiebreakMargin,
    MalformedScore,
    MissingThirdSet,
    UnexpectedThirdSet,
)

TIEBREAK_TARGET = 10
TIEBREAK_MARGIN = 2
MAX_SET_GAMES = 7


class Side(str, Enum):
    HOME = "home"
    AWAY = "away"


@dataclass(frozen=True)
class SetScore:
    home: int
    away: int

    def __str__(self) -> str:
        return f"{self.home}-{self.away}"


@dataclass(frozen=True)
class Score:
    sets: Tuple[SetScore, ...]
    super_tiebreak: Optional[SetScore] = None

    def __str__(self) -> str:
        parts = [str(s) for s in self.sets]
        if self.super_tiebreak is not None:
            parts.append(str(self.super_tiebreak))
        return ",".join(parts)


@dataclass(frozen=True)
class ScoreResult:
    winner: Side
    score: Score

    @property
    def text(self) -> str:
        return str(self.score)


def _parse_pair(part: str) -> SetScore:
    pieces = [p.strip() for p in part.split("-")]
    if len(pieces) != 2 or not all(p.isascii() and p.isdigit() for p in pieces):
        raise MalformedScore(f"Cannot read '{part.strip()}', expected home-away")
    return SetScore(int(pieces[0]), int(pieces[1]))


def parse_score(text: str) -> Score:
    """Read wire text into a Score without applying any set rule.

    One to three pairs are accepted so that partial (live) scores parse too;
    the third pair is the super tie-break.
    """
    if text is None or not text.strip():
        raise MalformedScore("Score is empty")
    parts = text.split(",")
    if len(parts) > 3:
        raise MalformedScore("At most two sets and a super tie-break")
    pairs = [_parse_pair(p) for p in parts]
    return Score(sets=tuple(pairs[:2]), super_tiebreak=pairs[2] if len(pairs) == 3 else None)


def set_winner(home: int, away: int) -> Optional[Side]:
    if (home == 6 and away <= 4) or (home == 7 and away in (5, 6)):
        return Side.HOME
    if (away == 6 and home <= 4) or (away == 7 and home in (5, 6)):
        return Side.AWAY
    return None


def tiebreak_winner(home: int, away: int) -> Side:
    if home < TIEBREAK_TARGET and away < TIEBREAK_TARGET:
        raise IncompleteTiebreak(f"Super tie-break {home}-{away}: nobody reached {TIEBREAK_TARGET} points")
    if abs(home - away) < TIEBREAK_MARGIN:
        raise InvalidTiebreakMargin(
            f"Super tie-break {home}-{away}: needs a {TIEBREAK_MARGIN} point lead (e.g. 10-8, 11-9)"
        )
    return Side.HOME if home > away else Side.AWAY


def validate_score(score: Score) -> ScoreResult:
    """Accept a complete result and tell who won it, or raise the rule broken."""
    if len(score.sets) != 2:
        raise MalformedScore("A result needs exactly two sets")

    winners = []
    for number, s in enumerate(score.sets, start=1):
        if s.home < 0 or s.away < 0:
            raise MalformedScore(f"Negative games in set {number}")
        side = set_winner(s.home, s.away)
        if side is None:
            raise InvalidSetScore(number, s.home, s.away)
        winners.append(side)

    tb = score.super_tiebreak
    if winners[0] == winners[1]:
        if tb is not None:
            raise UnexpectedThirdSet("The match ended in two sets, no third set expected")
        return ScoreResult(winner=winners[0], score=score)

    if tb is None:
        raise MissingThirdSet("Sets are split one-all, a super tie-break is required")
    if tb.home < 0 or tb.away < 0:
        raise MalformedScore("Negative points in super tie-break")
    return ScoreResult(winner=tiebreak_winner(tb.home, tb.away), score=score)


def validate_score_text(text: str) -> ScoreResult:
    return validate_score(parse_score(text))


def parse_progress(text: str) -> Score:
    """Read a partial score, rejecting set counts no set can reach."""
    score = parse_score(text)
    for number, s in enumerate(score.sets, start=1):
        if s.home > MAX_SET_GAMES or s.away > MAX_SET_GAMES:
            raise InvalidSetScore(number, s.home, s.away)
    return score
