import logging
from typing import Dict, List

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_session
from knockout import draw
from knockout.errors import (
    ConflictError, DependencyError, KnockoutError, NotFoundError, ValidationError,
)
from knockout.models import Team
from knockout.schemas import (
    DrawOut, MatchOut, ScheduleBatchRequest, ScheduleReportOut, ScheduleRequest, ScoreRequest,
)
from knockout.store import MatchStore, RosterProvider, SqlMatchStore, SqlRosterProvider

router = APIRouter(prefix='/knockout', tags=['Knockout'])
logger = logging.getLogger(__name__)

# -- Helpers -------------------------------------------------------------------

def get_match_store(session: AsyncSession = Depends(get_session)) -> MatchStore:
    return SqlMatchStore(session)


def get_roster(session: AsyncSession = Depends(get_session)) -> RosterProvider:
    return SqlRosterProvider(session)


def _by_id(teams: List[Team]) -> Dict[str, Team]:
    return {t.id: t for t in teams}


_STATUS_CODES = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConflictError, 409),
    (DependencyError, 503),
)


async def knockout_error_handler(request: Request, exc: KnockoutError) -> JSONResponse:
    status_code = next((code for family, code in _STATUS_CODES if isinstance(exc, family)), 500)
    if status_code >= 500:
        logger.error("REQUEST_FAILED path=%s code=%s", request.url.path, exc.code, exc_info=exc)
    return JSONResponse(status_code=status_code, content={"detail": exc.message, "code": exc.code})


# Routes

@router.post("/tournament/{tid}/draw", response_model=DrawOut, status_code=201)
async def create_draw(
    tid: str,
    roster: RosterProvider = Depends(get_roster),
    store: MatchStore = Depends(get_match_store),
):
    bracket = await draw.create_draw(tid, roster=roster, store=store)
    return DrawOut.from_bracket(bracket, _by_id(bracket.teams))


@router.get("/tournament/{tid}/draw", response_model=DrawOut)
async def get_draw(
    tid: str,
    roster: RosterProvider = Depends(get_roster),
    store: MatchStore = Depends(get_match_store),
):
    bracket = await draw.get_draw(tid, store=store)
    return DrawOut.from_bracket(bracket, _by_id(await draw.list_teams(tid, roster=roster)))


@router.get("/tournament/{tid}/draw/preview", response_model=DrawOut)
async def preview_draw(tid: str, roster: RosterProvider = Depends(get_roster)):
    bracket = await draw.preview_draw(tid, roster=roster)
    return DrawOut.from_bracket(bracket, _by_id(bracket.teams))


@router.get("/tournament/{tid}/matches", response_model=list[MatchOut])
async def list_matches(tid: str, store: MatchStore = Depends(get_match_store)):
    return [MatchOut.from_match(m) for m in await draw.list_matches(tid, store=store)]


@router.post("/tournament/{tid}/matches/schedule", response_model=ScheduleReportOut)
async def schedule_matches(
    tid: str,
    payload: ScheduleBatchRequest,
    response: Response,
    store: MatchStore = Depends(get_match_store),
):
    entries = [(e.match_id, e.court, e.scheduled_at) for e in payload.matches]
    report = await draw.schedule_matches(tid, entries, store=store)
    if report.failed:
        response.status_code = 400
    return ScheduleReportOut.from_report(report)


@router.get("/tournament/{tid}/matches/{match_id}", response_model=MatchOut)
async def get_tournament_match(tid: str, match_id: str, store: MatchStore = Depends(get_match_store)):
    return MatchOut.from_match(await draw.get_match_details(match_id, store=store, tournament_id=tid))


@router.patch("/tournament/{tid}/matches/{match_id}", response_model=MatchOut)
async def update_tournament_match(
    tid: str,
    match_id: str,
    payload: ScheduleRequest,
    store: MatchStore = Depends(get_match_store),
):
    match = await draw.schedule_match(
        match_id, payload.court, payload.scheduled_at, store=store, tournament_id=tid,
    )
    return MatchOut.from_match(match)


@router.get("/matches/{match_id}", response_model=MatchOut)
async def get_match(match_id: str, store: MatchStore = Depends(get_match_store)):
    return MatchOut.from_match(await draw.get_match_details(match_id, store=store))


@router.post("/matches/{match_id}/schedule", response_model=MatchOut)
async def schedule_match(
    match_id: str,
    payload: ScheduleRequest,
    store: MatchStore = Depends(get_match_store),
):
    match = await draw.schedule_match(match_id, payload.court, payload.scheduled_at, store=store)
    return MatchOut.from_match(match)


@router.put("/matches/{match_id}/live", response_model=MatchOut)
async def record_live_score(
    match_id: str,
    payload: ScoreRequest,
    store: MatchStore = Depends(get_match_store),
):
    return MatchOut.from_match(await draw.record_live_score(match_id, payload.score, store=store))


@router.put("/matches/{match_id}/score", response_model=MatchOut)
async def submit_score(
    match_id: str,
    payload: ScoreRequest,
    store: MatchStore = Depends(get_match_store),
):
    return MatchOut.from_match(await draw.submit_score(match_id, payload.score, store=store))


@router.put("/matches/{match_id}/score/correction", response_model=MatchOut)
async def correct_score(
    match_id: str,
    payload: ScoreRequest,
    store: MatchStore = Depends(get_match_store),
):
    return MatchOut.from_match(await draw.correct_score(match_id, payload.score, store=store))
