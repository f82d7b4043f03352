"""Typed failures raised by the knockout draw core.

Four families: ValidationError (bad input, recoverable by the caller),
ConflictError (state forbids the action), NotFoundError and
DependencyError (roster or store failed or timed out).
"""
from typing import Optional


class KnockoutError(Exception):
    code = "knockout_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


# Validation

class ValidationError(KnockoutError):
    code = "validation_error"


class MalformedScore(ValidationError):
    code = "malformed_score"


class InvalidSetScore(ValidationError):
    code = "invalid_set_score"

    def __init__(self, set_number: int, home: int, away: int):
        super().__init__(f"Invalid result for set {set_number}: {home}-{away} (e.g. 6-4, 7-5, 7-6)")
        self.set_number = set_number


class UnexpectedThirdSet(ValidationError):
    code = "unexpected_third_set"


class MissingThirdSet(ValidationError):
    code = "missing_third_set"


class IncompleteTiebreak(ValidationError):
    code = "incomplete_tiebreak"


class InvalidTiebreakMargin(ValidationError):
    code = "invalid_tiebreak_margin"


class InvalidSchedule(ValidationError):
    code = "invalid_schedule"


class InsufficientTeams(ValidationError):
    code = "insufficient_teams"


class DuplicateTeamEntry(ValidationError):
    code = "duplicate_team_entry"


class InvalidSeed(ValidationError):
    code = "invalid_seed"


# Conflict

class ConflictError(KnockoutError):
    code = "conflict"


class DrawAlreadyExists(ConflictError):
    code = "draw_already_exists"


class ConcurrentModification(ConflictError):
    code = "concurrent_modification"


class DownstreamAlreadyPlayed(ConflictError):
    code = "downstream_already_played"


class InvalidMatchState(ConflictError):
    code = "invalid_match_state"


class MatchNotReady(ConflictError):
    code = "match_not_ready"


# Not found

class NotFoundError(KnockoutError):
    code = "not_found"


class TournamentNotFound(NotFoundError):
    code = "tournament_not_found"


class DrawNotFound(NotFoundError):
    code = "draw_not_found"


class MatchNotFound(NotFoundError):
    code = "match_not_found"


# Dependency

class DependencyError(KnockoutError):
    code = "dependency_error"

    def __init__(self, message: str = "", operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation
