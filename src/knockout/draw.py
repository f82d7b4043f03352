"""Draw orchestration: create/preview draws, schedule matches, record results.

Every operation receives its ports (``roster``, ``store``) explicitly and
takes an optional ``timeout`` in seconds applied to each external call.
"""
import asyncio
import logging
from datetime import datetime
from dataclasses import dataclass, field
from typing import Callable, Awaitable, List, Optional, Sequence, Tuple

import config
from knockout.errors import (
    DependencyError, DownstreamAlreadyPlayed, DrawAlreadyExists,
    DrawNotFound, InvalidMatchState, KnockoutError, MatchNotFound,
)
from knockout.functions import Bracket, generate_knockout_bracket
from knockout.models import Match, MatchStatus, Side, Team, advancement_target
from knockout.scoring import validate_score_text
from knockout.store import MatchStore, RosterProvider, SlotAssignment

logger = logging.getLogger(__name__)


async def _call(awaitable: Awaitable, timeout: Optional[float], operation: str):
    timeout = config.STORE_TIMEOUT if timeout is None else timeout
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as exc:
        logger.warning("DEPENDENCY_TIMEOUT op=%s timeout=%s", operation, timeout)
        raise DependencyError(f"{operation} timed out after {timeout}s", operation=operation) from exc


async def _read(factory: Callable[[], Awaitable], timeout: Optional[float], operation: str):
    """Idempotent read with bounded retries and exponential backoff."""
    attempts = config.READ_RETRIES + 1
    for attempt in range(attempts):
        try:
            return await _call(factory(), timeout, operation)
        except DependencyError:
            if attempt == attempts - 1:
                logger.error("READ_FAILED op=%s attempts=%d", operation, attempts, exc_info=True)
                raise
            delay = config.RETRY_BACKOFF * 2 ** attempt
            logger.warning("READ_RETRY op=%s attempt=%d delay=%.2f", operation, attempt + 1, delay)
            await asyncio.sleep(delay)


async def _load_bracket(store: MatchStore, tournament_id: str, timeout: Optional[float]) -> Bracket:
    matches = await _read(lambda: store.list_by_tournament(tournament_id), timeout, "list_by_tournament")
    if not matches:
        raise DrawNotFound(f"Tournament {tournament_id} has no draw")
    return Bracket.from_matches(tournament_id, matches)


def _advance(bracket: Bracket, match: Match, previous_winner: Optional[str] = None) -> List[SlotAssignment]:
    """Slot writes carrying the winner forward, through any walkover it causes."""
    assignments = []
    current = match
    while True:
        nxt_round, nxt_slot, side = advancement_target(current.round, current.slot)
        target = bracket.at(nxt_round, nxt_slot)
        if target is None:
            break
        other = Side.AWAY if side == Side.HOME else Side.HOME
        walkover = bracket.feeds_from_empty_slot(target, other)
        assignments.append(SlotAssignment(
            match_id=target.id, side=side, team_id=match.winner_id,
            expected_team_id=previous_winner, resolve_bye=walkover,
        ))
        if not walkover:
            break
        logger.info("BYE_RESOLVED match=%s round=%d slot=%d team=%s",
                    target.id, target.round, target.slot, match.winner_id)
        current = target
    return assignments


def _check_downstream(bracket: Bracket, match: Match):
    target = bracket.next_match(match)
    while target is not None:
        if target.status in (MatchStatus.LIVE, MatchStatus.COMPLETED):
            logger.warning("CORRECTION_REJECTED match=%s downstream=%s status=%s",
                           match.id, target.id, target.status.value)
            raise DownstreamAlreadyPlayed(
                f"Match {target.id} already played with the previous winner of match {match.id}"
            )
        if target.status != MatchStatus.BYE:
            break
        target = bracket.next_match(target)


# -- Draws ---------------------------------------------------------------------

async def preview_draw(tournament_id: str, *, roster: RosterProvider, timeout: Optional[float] = None) -> Bracket:
    """Build the bracket from the current roster without storing it."""
    teams = await list_teams(tournament_id, roster=roster, timeout=timeout)
    return generate_knockout_bracket(teams, tournament_id)


async def create_draw(
    tournament_id: str, *,
    roster: RosterProvider, store: MatchStore,
    timeout: Optional[float] = None,
) -> Bracket:
    teams = await list_teams(tournament_id, roster=roster, timeout=timeout)
    existing = await _read(lambda: store.list_by_tournament(tournament_id), timeout, "list_by_tournament")
    if existing:
        logger.warning("DRAW_REJECTED tournament=%s reason=exists", tournament_id)
        raise DrawAlreadyExists(f"Tournament {tournament_id} already has a draw")

    bracket = generate_knockout_bracket(teams, tournament_id)
    await _call(store.save_all(tournament_id, bracket.matches()), timeout, "save_all")
    logger.info("DRAW_CREATED tournament=%s teams=%d matches=%d",
                tournament_id, len(teams), len(bracket.matches()))
    return bracket


async def list_teams(tournament_id: str, *, roster: RosterProvider, timeout: Optional[float] = None) -> List[Team]:
    return await _read(lambda: roster.list_teams(tournament_id), timeout, "list_teams")


async def get_draw(tournament_id: str, *, store: MatchStore, timeout: Optional[float] = None) -> Bracket:
    return await _load_bracket(store, tournament_id, timeout)


async def list_matches(tournament_id: str, *, store: MatchStore, timeout: Optional[float] = None) -> List[Match]:
    return await _read(lambda: store.list_by_tournament(tournament_id), timeout, "list_by_tournament")


async def get_match_details(
    match_id: str, *,
    store: MatchStore, tournament_id: Optional[str] = None,
    timeout: Optional[float] = None,
) -> Match:
    """Fetch one match; with ``tournament_id`` it must also belong to that tournament."""
    match = await _read(lambda: store.get(match_id), timeout, "get")
    if tournament_id is not None and match.tournament_id != tournament_id:
        raise MatchNotFound(f"Match {match_id} not found in tournament {tournament_id}")
    return match


# -- Matches -------------------------------------------------------------------

@dataclass
class ScheduleReport:
    scheduled: List[Match] = field(default_factory=list)
    failed: List[Tuple[str, KnockoutError]] = field(default_factory=list)


async def schedule_match(
    match_id: str, court: Optional[str], when: Optional[datetime], *,
    store: MatchStore, tournament_id: Optional[str] = None,
    timeout: Optional[float] = None,
) -> Match:
    match = await get_match_details(match_id, store=store, tournament_id=tournament_id, timeout=timeout)
    match.schedule(court, when)
    updated = await _call(store.update(match), timeout, "update")
    logger.info("MATCH_SCHEDULED match=%s court=%s at=%s", match_id, updated.court, updated.scheduled_at)
    return updated


async def schedule_matches(
    tournament_id: str, entries: Sequence[Tuple[str, Optional[str], Optional[datetime]]], *,
    store: MatchStore, timeout: Optional[float] = None,
) -> ScheduleReport:
    """Schedule several matches of one tournament; each entry succeeds or fails on its own."""
    report = ScheduleReport()
    for match_id, court, when in entries:
        try:
            report.scheduled.append(await schedule_match(
                match_id, court, when, store=store, tournament_id=tournament_id, timeout=timeout,
            ))
        except KnockoutError as exc:
            logger.warning("MATCH_SCHEDULE_FAILED match=%s code=%s", match_id, exc.code)
            report.failed.append((match_id, exc))
    return report


async def record_live_score(
    match_id: str, score_text: str, *,
    store: MatchStore, timeout: Optional[float] = None,
) -> Match:
    match = await _read(lambda: store.get(match_id), timeout, "get")
    match.record_progress(score_text)
    return await _call(store.update(match), timeout, "update")


async def _correct(match: Match, score_text: str, store: MatchStore, timeout: Optional[float]) -> Match:
    bracket = await _load_bracket(store, match.tournament_id, timeout)
    previous_winner = match.complete(score_text)
    assignments = []
    if match.winner_id != previous_winner:
        _check_downstream(bracket, match)
        assignments = _advance(bracket, match, previous_winner=previous_winner)
    updated = await _call(store.update_with_advancement(match, assignments), timeout, "update_with_advancement")
    logger.info("SCORE_CORRECTED match=%s score=%s winner_changed=%s",
                match.id, updated.score, match.winner_id != previous_winner)
    return updated


async def submit_score(
    match_id: str, score_text: str, *,
    store: MatchStore, timeout: Optional[float] = None,
) -> Match:
    """Record a final result and move the winner into the next round.

    The result and the advancement commit together. Submitting the same
    result again changes nothing; a different result for a completed match
    goes through the correction rules.
    """
    match = await _read(lambda: store.get(match_id), timeout, "get")
    if match.status == MatchStatus.COMPLETED:
        result = validate_score_text(score_text)
        if result.text == str(match.score):
            return match
        return await _correct(match, score_text, store, timeout)

    bracket = await _load_bracket(store, match.tournament_id, timeout)
    match.complete(score_text)
    assignments = _advance(bracket, match)
    updated = await _call(store.update_with_advancement(match, assignments), timeout, "update_with_advancement")
    logger.info("SCORE_SUBMITTED match=%s score=%s winner=%s", match.id, updated.score, updated.winner_id)
    return updated


async def correct_score(
    match_id: str, score_text: str, *,
    store: MatchStore, timeout: Optional[float] = None,
) -> Match:
    match = await _read(lambda: store.get(match_id), timeout, "get")
    if match.status != MatchStatus.COMPLETED:
        raise InvalidMatchState(f"Match {match_id} has no result to correct")
    return await _correct(match, score_text, store, timeout)
