from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel

from knockout.draw import ScheduleReport
from knockout.functions import Bracket
from knockout.models import Match, Team


class ScoreRequest(BaseModel):
    score: str  # "6-4,3-6,10-8"


class ScheduleRequest(BaseModel):
    court: Optional[str] = None
    scheduled_at: Optional[datetime] = None


class MatchOut(BaseModel):
    id: str
    tournament_id: str
    round: int
    slot: int
    home_team_id: Optional[str] = None
    away_team_id: Optional[str] = None
    home_team_name: Optional[str] = None
    away_team_name: Optional[str] = None
    status: str
    score: Optional[str] = None
    winner_id: Optional[str] = None
    court: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    version: int

    @classmethod
    def from_match(cls, m: Match, teams: Optional[Dict[str, Team]] = None) -> "MatchOut":
        teams = teams or {}
        home, away = teams.get(m.home_team_id), teams.get(m.away_team_id)
        return cls(
            id=m.id, tournament_id=m.tournament_id,
            round=m.round, slot=m.slot,
            home_team_id=m.home_team_id, away_team_id=m.away_team_id,
            home_team_name=home.display_name if home else None,
            away_team_name=away.display_name if away else None,
            status=m.status.value,
            score=str(m.score) if m.score is not None else None,
            winner_id=m.winner_id,
            court=m.court, scheduled_at=m.scheduled_at,
            version=m.version,
        )


class RoundOut(BaseModel):
    index: int
    name: str
    matches: List[MatchOut]


class DrawOut(BaseModel):
    tournament_id: str
    size: int
    rounds: List[RoundOut]

    @classmethod
    def from_bracket(cls, bracket: Bracket, teams: Optional[Dict[str, Team]] = None) -> "DrawOut":
        return cls(
            tournament_id=bracket.tournament_id,
            size=bracket.size,
            rounds=[
                RoundOut(
                    index=r,
                    name=bracket.round_name(r),
                    matches=[MatchOut.from_match(m, teams) for m in rnd if m is not None],
                )
                for r, rnd in enumerate(bracket.rounds)
            ],
        )


class ScheduleEntry(ScheduleRequest):
    match_id: str


class ScheduleBatchRequest(BaseModel):
    matches: List[ScheduleEntry]


class ScheduleFailureOut(BaseModel):
    match_id: str
    code: str
    detail: str


class ScheduleReportOut(BaseModel):
    scheduled: List[MatchOut]
    failed: List[ScheduleFailureOut]

    @classmethod
    def from_report(cls, report: ScheduleReport) -> "ScheduleReportOut":
        return cls(
            scheduled=[MatchOut.from_match(m) for m in report.scheduled],
            failed=[ScheduleFailureOut(match_id=mid, code=exc.code, detail=exc.message)
                    for mid, exc in report.failed],
        )
