from datetime import datetime

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base, PlayerORM, TeamORM, TournamentORM
from knockout import draw
from sqlalchemy.exc import OperationalError

import config
from knockout.errors import (
    ConcurrentModification, DownstreamAlreadyPlayed, DrawAlreadyExists, MatchNotFound, TournamentNotFound,
)
from knockout.models import MatchStatus, Side
from knockout.store import SlotAssignment, SqlMatchStore, SqlRosterProvider


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'knockout.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    async with factory() as session:
        session.add(TournamentORM(id="open", name="Open de Verano"))
        for i in range(1, 6):
            session.add(TeamORM(id=f"t{i}", tournament_id="open", registration_order=i,
                                name="Los Lobos" if i == 1 else None))
            session.add(PlayerORM(id=f"t{i}a", team_id=f"t{i}", name=f"Ana {i}", position=0))
            session.add(PlayerORM(id=f"t{i}b", team_id=f"t{i}", name=f"Bea {i}", position=1))
        await session.commit()

    yield factory
    await engine.dispose()


@pytest.mark.anyio
async def test_roster_reads_teams_in_registration_order(session_factory):
    async with session_factory() as session:
        teams = await SqlRosterProvider(session).list_teams("open")
    assert [t.id for t in teams] == ["t1", "t2", "t3", "t4", "t5"]
    assert teams[0].display_name == "Los Lobos"
    assert teams[1].display_name == "Ana 2 / Bea 2"


@pytest.mark.anyio
async def test_roster_unknown_tournament(session_factory):
    async with session_factory() as session:
        with pytest.raises(TournamentNotFound):
            await SqlRosterProvider(session).list_teams("closed")


@pytest.mark.anyio
async def test_draw_round_trip(session_factory):
    async with session_factory() as session:
        roster, store = SqlRosterProvider(session), SqlMatchStore(session)
        await draw.create_draw("open", roster=roster, store=store)
        with pytest.raises(DrawAlreadyExists):
            await draw.create_draw("open", roster=roster, store=store)

    async with session_factory() as session:
        store = SqlMatchStore(session)
        matches = {(m.round, m.slot): m for m in await store.list_by_tournament("open")}
        assert len(matches) == 7
        assert matches[0, 0].status == MatchStatus.BYE
        assert matches[0, 0].winner_id == "t1"

        played = await draw.submit_score(matches[0, 1].id, "6-4,3-6,10-7", store=store)
        assert played.winner_id == "t4"
        assert played.version == 1

    async with session_factory() as session:
        store = SqlMatchStore(session)
        semi = {(m.round, m.slot): m for m in await store.list_by_tournament("open")}[1, 0]
        assert (semi.home_team_id, semi.away_team_id) == ("t1", "t4")
        stored = await store.get(matches[0, 1].id)
        assert str(stored.score) == "6-4,3-6,10-7"
        assert stored.status == MatchStatus.COMPLETED


@pytest.mark.anyio
async def test_schedule_and_stale_update(session_factory):
    async with session_factory() as session:
        store = SqlMatchStore(session)
        await draw.create_draw("open", roster=SqlRosterProvider(session), store=store)
        target = {(m.round, m.slot): m for m in await store.list_by_tournament("open")}[0, 1]

        when = datetime(2026, 7, 1, 19, 30)
        scheduled = await draw.schedule_match(target.id, "Pista 3", when, store=store)
        assert scheduled.status == MatchStatus.SCHEDULED

        reread = await store.get(target.id)
        assert reread.court == "Pista 3"
        assert (reread.scheduled_at.hour, reread.scheduled_at.minute) == (19, 30)

        with pytest.raises(ConcurrentModification):
            await store.update(target)
        with pytest.raises(MatchNotFound):
            await store.get("missing")


class FailOnceSession:
    """Session whose first query fails like a dropped connection."""

    def __init__(self, session):
        self.session = session
        self.failed = False
        self.rollbacks = 0

    def __getattr__(self, name):
        return getattr(self.session, name)

    def _fail_once(self):
        if not self.failed:
            self.failed = True
            raise OperationalError("SELECT", {}, ConnectionResetError("connection reset"))

    async def scalar(self, *args, **kwargs):
        self._fail_once()
        return await self.session.scalar(*args, **kwargs)

    async def scalars(self, *args, **kwargs):
        self._fail_once()
        return await self.session.scalars(*args, **kwargs)

    async def rollback(self):
        self.rollbacks += 1
        await self.session.rollback()


@pytest.mark.anyio
async def test_failed_reads_roll_back_before_retry(session_factory, monkeypatch):
    monkeypatch.setattr(config, "RETRY_BACKOFF", 0)
    async with session_factory() as session:
        await draw.create_draw("open", roster=SqlRosterProvider(session), store=SqlMatchStore(session))

    async with session_factory() as session:
        flaky = FailOnceSession(session)
        matches = await draw.list_matches("open", store=SqlMatchStore(flaky))
        assert len(matches) == 7
        assert flaky.rollbacks == 1

        flaky = FailOnceSession(session)
        match = await draw.get_match_details(matches[1].id, store=SqlMatchStore(flaky))
        assert match.id == matches[1].id
        assert flaky.rollbacks == 1


@pytest.mark.anyio
async def test_correction_moves_the_new_winner(session_factory):
    async with session_factory() as session:
        store = SqlMatchStore(session)
        await draw.create_draw("open", roster=SqlRosterProvider(session), store=store)
        first = {(m.round, m.slot): m for m in await store.list_by_tournament("open")}[0, 1]
        await draw.submit_score(first.id, "6-4,6-3", store=store)

        corrected = await draw.correct_score(first.id, "3-6,3-6", store=store)
        assert corrected.winner_id == "t5"

    async with session_factory() as session:
        store = SqlMatchStore(session)
        semi = {(m.round, m.slot): m for m in await store.list_by_tournament("open")}[1, 0]
        assert (semi.home_team_id, semi.away_team_id) == ("t1", "t5")


@pytest.mark.anyio
async def test_correction_blocked_once_next_match_played(session_factory):
    async with session_factory() as session:
        store = SqlMatchStore(session)
        await draw.create_draw("open", roster=SqlRosterProvider(session), store=store)
        matches = {(m.round, m.slot): m for m in await store.list_by_tournament("open")}
        await draw.submit_score(matches[0, 1].id, "6-4,6-3", store=store)
        await draw.submit_score(matches[1, 0].id, "6-2,6-2", store=store)

        with pytest.raises(DownstreamAlreadyPlayed):
            await draw.correct_score(matches[0, 1].id, "3-6,3-6", store=store)

    async with session_factory() as session:
        store = SqlMatchStore(session)
        stored = await store.get(matches[0, 1].id)
        assert stored.winner_id == "t4"
        semi = await store.get(matches[1, 0].id)
        assert semi.away_team_id == "t4"


@pytest.mark.anyio
async def test_failed_advancement_rolls_back_the_result(session_factory):
    async with session_factory() as session:
        store = SqlMatchStore(session)
        await draw.create_draw("open", roster=SqlRosterProvider(session), store=store)
        matches = {(m.round, m.slot): m for m in await store.list_by_tournament("open")}
        first, semi = matches[0, 1], matches[1, 0]

        first.complete("6-4,6-3")
        # the semifinal side is empty, not "t1"
        stale = SlotAssignment(match_id=semi.id, side=Side.AWAY, team_id="t4", expected_team_id="t1")
        with pytest.raises(ConcurrentModification):
            await store.update_with_advancement(first, [stale])

    async with session_factory() as session:
        store = SqlMatchStore(session)
        stored = await store.get(first.id)
        assert stored.status == MatchStatus.UNSCHEDULED
        assert stored.winner_id is None
        assert stored.version == 0
        assert (await store.get(semi.id)).away_team_id is None
