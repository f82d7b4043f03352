"""Roster and match persistence ports with in-memory and SQLAlchemy adapters.

Every write is optimistic: a match is updated only if its stored version
still equals the version the caller read, and the version is bumped on
success. Advancement writes touch one side of the next match and only if
that side still holds what the caller expects, so results of the two
matches feeding the same slot pair do not step on each other.
"""
import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Protocol, Sequence

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from database import MatchORM, TeamORM, TournamentORM
from knockout.errors import (
    ConcurrentModification, DependencyError, DrawAlreadyExists,
    MatchNotFound, TournamentNotFound,
)
from knockout.models import Match, MatchStatus, Player, Side, Team
from knockout.scoring import parse_score

logger = logging.getLogger(__name__)

_PLAYED = (MatchStatus.LIVE, MatchStatus.COMPLETED)


@dataclass(frozen=True)
class SlotAssignment:
    """Write ``team_id`` into one side of a later-round match."""
    match_id: str
    side: Side
    team_id: str
    expected_team_id: Optional[str] = None  # what the side holds before the write
    resolve_bye: bool = False


class RosterProvider(Protocol):
    async def list_teams(self, tournament_id: str) -> List[Team]: ...


class MatchStore(Protocol):
    async def save_all(self, tournament_id: str, matches: Sequence[Match]) -> None: ...

    async def get(self, match_id: str) -> Match: ...

    async def list_by_tournament(self, tournament_id: str) -> List[Match]: ...

    async def update(self, match: Match) -> Match: ...

    async def update_with_advancement(self, match: Match, assignments: Sequence[SlotAssignment]) -> Match: ...


# -- In memory -----------------------------------------------------------------

class InMemoryRoster:
    def __init__(self, teams: Optional[Dict[str, List[Team]]] = None):
        self.teams = dict(teams or {})

    async def list_teams(self, tournament_id: str) -> List[Team]:
        if tournament_id not in self.teams:
            raise TournamentNotFound(f"Tournament {tournament_id} not found")
        return list(self.teams[tournament_id])


class InMemoryMatchStore:
    """Dict backed store. Each call runs without awaiting, so it is atomic on the event loop."""

    def __init__(self):
        self._matches: Dict[str, Match] = {}

    async def save_all(self, tournament_id: str, matches: Sequence[Match]) -> None:
        if any(m.tournament_id == tournament_id for m in self._matches.values()):
            raise DrawAlreadyExists(f"Tournament {tournament_id} already has a draw")
        for m in matches:
            self._matches[m.id] = replace(m)

    async def get(self, match_id: str) -> Match:
        if match_id not in self._matches:
            raise MatchNotFound(f"Match {match_id} not found")
        return replace(self._matches[match_id])

    async def list_by_tournament(self, tournament_id: str) -> List[Match]:
        rows = [replace(m) for m in self._matches.values() if m.tournament_id == tournament_id]
        return sorted(rows, key=lambda m: (m.round, m.slot))

    def _check_version(self, match: Match):
        stored = self._matches.get(match.id)
        if stored is None:
            raise MatchNotFound(f"Match {match.id} not found")
        if stored.version != match.version:
            raise ConcurrentModification(f"Match {match.id} changed since it was read")

    def _check_assignment(self, a: SlotAssignment):
        target = self._matches.get(a.match_id)
        if target is None:
            raise MatchNotFound(f"Match {a.match_id} not found")
        if target.status in _PLAYED or target.team_id(a.side) not in (a.expected_team_id, a.team_id):
            raise ConcurrentModification(f"Match {a.match_id} changed since it was read")

    async def update(self, match: Match) -> Match:
        return await self.update_with_advancement(match, [])

    async def update_with_advancement(self, match: Match, assignments: Sequence[SlotAssignment]) -> Match:
        self._check_version(match)
        for a in assignments:
            self._check_assignment(a)

        stored = replace(match, version=match.version + 1)
        self._matches[match.id] = stored
        for a in assignments:
            target = replace(self._matches[a.match_id])
            target.assign(a.side, a.team_id)
            if a.resolve_bye:
                target.resolve_bye(a.team_id)
            target.version += 1
            self._matches[a.match_id] = target
        return replace(stored)


# -- SQLAlchemy ----------------------------------------------------------------

def _orm_to_team(row: TeamORM) -> Team:
    players = tuple(Player(id=p.id, name=p.name) for p in row.players)
    return Team(id=row.id, players=players, name=row.name, seed=row.seed)


def _orm_to_match(row: MatchORM) -> Match:
    return Match(
        id=row.id, tournament_id=row.tournament_id,
        round=row.round, slot=row.slot,
        home_team_id=row.home_team_id, away_team_id=row.away_team_id,
        status=MatchStatus(row.status),
        score=parse_score(row.score) if row.score else None,
        winner_id=row.winner_id,
        court=row.court, scheduled_at=row.scheduled_at,
        version=row.version,
    )


def _match_values(m: Match) -> dict:
    return dict(
        home_team_id=m.home_team_id, away_team_id=m.away_team_id,
        status=m.status.value,
        score=str(m.score) if m.score is not None else None,
        winner_id=m.winner_id,
        court=m.court, scheduled_at=m.scheduled_at,
    )


class SqlRosterProvider:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_teams(self, tournament_id: str) -> List[Team]:
        try:
            tournament = await self.session.get(TournamentORM, tournament_id)
            if tournament is None:
                raise TournamentNotFound(f"Tournament {tournament_id} not found")
            rows = await self.session.scalars(
                select(TeamORM)
                .where(TeamORM.tournament_id == tournament_id)
                .order_by(TeamORM.registration_order, TeamORM.id)
            )
            return [_orm_to_team(r) for r in rows]
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise DependencyError(str(exc), operation="list_teams") from exc
        except asyncio.CancelledError:
            await self.session.rollback()
            raise


class SqlMatchStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _fail(self, exc: SQLAlchemyError, operation: str):
        await self.session.rollback()
        logger.warning("MATCH_STORE_FAILED op=%s", operation, exc_info=True)
        raise DependencyError(str(exc), operation=operation) from exc

    async def save_all(self, tournament_id: str, matches: Sequence[Match]) -> None:
        try:
            existing = await self.session.scalar(
                select(func.count()).select_from(MatchORM).where(MatchORM.tournament_id == tournament_id)
            )
            if existing:
                raise DrawAlreadyExists(f"Tournament {tournament_id} already has a draw")
            self.session.add_all([
                MatchORM(id=m.id, tournament_id=tournament_id, round=m.round, slot=m.slot,
                         version=m.version, **_match_values(m))
                for m in matches
            ])
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            raise DrawAlreadyExists(f"Tournament {tournament_id} already has a draw") from exc
        except SQLAlchemyError as exc:
            await self._fail(exc, "save_all")

    async def get(self, match_id: str) -> Match:
        try:
            row = await self.session.scalar(
                select(MatchORM).where(MatchORM.id == match_id)
                .execution_options(populate_existing=True)
            )
        except SQLAlchemyError as exc:
            await self._fail(exc, "get")
        except asyncio.CancelledError:
            await self.session.rollback()
            raise
        if row is None:
            raise MatchNotFound(f"Match {match_id} not found")
        return _orm_to_match(row)

    async def list_by_tournament(self, tournament_id: str) -> List[Match]:
        try:
            rows = await self.session.scalars(
                select(MatchORM).where(MatchORM.tournament_id == tournament_id)
                .order_by(MatchORM.round, MatchORM.slot)
                .execution_options(populate_existing=True)
            )
            return [_orm_to_match(r) for r in rows]
        except SQLAlchemyError as exc:
            await self._fail(exc, "list_by_tournament")
        except asyncio.CancelledError:
            await self.session.rollback()
            raise

    async def update(self, match: Match) -> Match:
        return await self.update_with_advancement(match, [])

    async def update_with_advancement(self, match: Match, assignments: Sequence[SlotAssignment]) -> Match:
        try:
            result = await self.session.execute(
                update(MatchORM)
                .where(MatchORM.id == match.id, MatchORM.version == match.version)
                .values(version=MatchORM.version + 1, **_match_values(match))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.session.rollback()
                await self.get(match.id)
                raise ConcurrentModification(f"Match {match.id} changed since it was read")

            for a in assignments:
                column = MatchORM.home_team_id if a.side == Side.HOME else MatchORM.away_team_id
                holds = [column == a.team_id]
                holds.append(column.is_(None) if a.expected_team_id is None else column == a.expected_team_id)
                values = {column.key: a.team_id, "version": MatchORM.version + 1}
                if a.resolve_bye:
                    values.update(status=MatchStatus.BYE.value, winner_id=a.team_id, score=None)
                result = await self.session.execute(
                    update(MatchORM)
                    .where(
                        MatchORM.id == a.match_id,
                        MatchORM.status.notin_([s.value for s in _PLAYED]),
                        or_(*holds),
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    await self.session.rollback()
                    raise ConcurrentModification(f"Match {a.match_id} changed since it was read")

            await self.session.commit()
        except SQLAlchemyError as exc:
            await self._fail(exc, "update")
        return replace(match, version=match.version + 1)
