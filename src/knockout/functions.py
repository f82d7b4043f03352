import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from knockout.errors import DuplicateTeamEntry, InsufficientTeams, InvalidSeed
from knockout.models import (
    Match, Side, Team,
    advancement_target, feeder_slot, generate_id,
)

logger = logging.getLogger(__name__)


def bracket_size(num_teams: int) -> int:
    """Smallest power of two holding every team."""
    if num_teams <= 1:
        return num_teams
    return 2 ** math.ceil(math.log2(num_teams))


def seeding_order(size: int) -> List[int]:
    """Standard single-elimination seed table, e.g. 8 -> 1, 8, 4, 5, 2, 7, 3, 6.

    Adjacent pairs are first-round matches; seeds 1 and 2 land in opposite
    halves and the highest seeds face the largest seed numbers, so byes go
    to them first.
    """
    order = [1]
    while len(order) < size:
        total = len(order) * 2 + 1
        order = [s for seed in order for s in (seed, total - seed)]
    return order


def seed_teams(teams: List[Team]) -> List[Team]:
    """Explicitly seeded teams first by seed, then the rest in registration order.

    Seed numbers only order the seeded teams; gaps are closed, so seeds 1 and
    5 take bracket positions 1 and 2.
    """
    seeded = [t for t in teams if t.seed is not None]
    seeds = [t.seed for t in seeded]
    if any(s < 1 for s in seeds):
        raise InvalidSeed("Seeds must be positive")
    if len(set(seeds)) != len(seeds):
        raise InvalidSeed("Two teams share the same seed")
    unseeded = [t for t in teams if t.seed is None]
    return sorted(seeded, key=lambda t: t.seed) + unseeded


def round_name(round_index: int, num_rounds: int) -> str:
    teams_in_round = 2 ** (num_rounds - round_index)
    if teams_in_round == 2:
        return "Final"
    elif teams_in_round == 4:
        return "Semifinal"
    elif teams_in_round == 8:
        return "Quarterfinal"
    return f"Round of {teams_in_round}"


@dataclass
class Bracket:
    """Rounds of match slots; ``rounds[r][s]`` is None for an omitted slot.

    Matches are linked only through (round, slot) coordinates.
    """
    tournament_id: str
    rounds: List[List[Optional[Match]]] = field(default_factory=list)
    teams: List[Team] = field(default_factory=list)  # set when built from a roster

    @classmethod
    def from_matches(cls, tournament_id: str, matches: Iterable[Match]) -> "Bracket":
        matches = list(matches)
        num_rounds = max((m.round for m in matches), default=-1) + 1
        rounds: List[List[Optional[Match]]] = [
            [None] * 2 ** (num_rounds - 1 - r) for r in range(num_rounds)
        ]
        for m in matches:
            rounds[m.round][m.slot] = m
        return cls(tournament_id=tournament_id, rounds=rounds)

    @property
    def size(self) -> int:
        return 2 ** len(self.rounds) if self.rounds else 0

    @property
    def final(self) -> Optional[Match]:
        return self.rounds[-1][0] if self.rounds else None

    def at(self, round_index: int, slot: int) -> Optional[Match]:
        if round_index < 0 or round_index >= len(self.rounds):
            return None
        slots = self.rounds[round_index]
        if slot < 0 or slot >= len(slots):
            return None
        return slots[slot]

    def next_match(self, match: Match) -> Optional[Match]:
        nxt_round, nxt_slot, _ = advancement_target(match.round, match.slot)
        return self.at(nxt_round, nxt_slot)

    def feeder(self, match: Match, side: Side) -> Optional[Match]:
        return self.at(match.round - 1, feeder_slot(match.slot, side))

    def feeds_from_empty_slot(self, match: Match, side: Side) -> bool:
        """True when ``side`` of a later-round match can never be filled."""
        return match.round > 0 and self.feeder(match, side) is None

    def matches(self) -> List[Match]:
        return [m for rnd in self.rounds for m in rnd if m is not None]

    def round_name(self, round_index: int) -> str:
        return round_name(round_index, len(self.rounds))


def _first_round(tournament_id: str, slots: List[Optional[Team]]) -> List[Optional[Match]]:
    matches: List[Optional[Match]] = []
    for slot in range(len(slots) // 2):
        home, away = slots[slot * 2], slots[slot * 2 + 1]
        if home is None and away is None:
            matches.append(None)
            continue
        match = Match(
            id=generate_id(),
            tournament_id=tournament_id,
            round=0,
            slot=slot,
            home_team_id=home.id if home else None,
            away_team_id=away.id if away else None,
        )
        if home is None or away is None:
            match.resolve_bye((home or away).id)
        matches.append(match)
    return matches


def _next_round(tournament_id: str, round_index: int, previous: List[Optional[Match]]) -> List[Optional[Match]]:
    matches: List[Optional[Match]] = []
    for slot in range(len(previous) // 2):
        feeders = {Side.HOME: previous[slot * 2], Side.AWAY: previous[slot * 2 + 1]}
        if all(f is None for f in feeders.values()):
            matches.append(None)
            continue
        match = Match(id=generate_id(), tournament_id=tournament_id, round=round_index, slot=slot)
        for side, feeder in feeders.items():
            if feeder is not None and feeder.winner_id is not None:
                match.assign(side, feeder.winner_id)
        # one empty feeder: the other side walks over as soon as it is known
        empty = [side for side, f in feeders.items() if f is None]
        if empty:
            live_side = Side.AWAY if empty[0] == Side.HOME else Side.HOME
            team_id = match.team_id(live_side)
            if team_id is not None:
                match.resolve_bye(team_id)
        matches.append(match)
    return matches


def generate_knockout_bracket(teams: List[Team], tournament_id: str) -> Bracket:
    """Seeded single-elimination bracket with byes resolved and cascaded."""
    if len(teams) < 2:
        raise InsufficientTeams(f"A knockout draw needs at least 2 teams, got {len(teams)}")
    ids = [t.id for t in teams]
    if len(set(ids)) != len(ids):
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        raise DuplicateTeamEntry(f"Teams registered more than once: {', '.join(duplicates)}")

    ordered = seed_teams(teams)
    size = bracket_size(len(ordered))
    slots: List[Optional[Team]] = [
        ordered[seed - 1] if seed <= len(ordered) else None
        for seed in seeding_order(size)
    ]

    rounds = [_first_round(tournament_id, slots)]
    while len(rounds[-1]) > 1:
        rounds.append(_next_round(tournament_id, len(rounds), rounds[-1]))

    bracket = Bracket(tournament_id=tournament_id, rounds=rounds, teams=list(teams))
    logger.debug(
        "BRACKET_BUILT tournament=%s teams=%d size=%d byes=%d rounds=%d",
        tournament_id, len(teams), size, size - len(teams), len(rounds),
    )
    return bracket
