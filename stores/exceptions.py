"""
Shared exception definitions for the match stores and the match engine.

Hierarchy:
- StoreError (base for everything raised by the match core)
  - StorageUnavailable (cache / database I/O failed)
  - UnexpectedResult (integrity surprises)
  - MatchStoreError (domain rule violations, never retried)
    - InvalidInput
    - MatchNotFound
    - NotActive
      - MatchCompleted
      - MatchAbandoned
    - InvalidMatchState
      - RoundLimitExceeded
    - AlreadyActive
    - Throttled
    - ConcurrentMatchUpdate

Every class carries a stable `code`, an `ErrorKind` tag for exhaustive
branching, and the HTTP `status_code` the outer layer should answer with.
"""
from enum import Enum


class ErrorKind(str, Enum):
    INVALID_INPUT = "invalid_input"
    NOT_FOUND = "not_found"
    NOT_ACTIVE = "not_active"
    MATCH_COMPLETED = "match_completed"
    MATCH_ABANDONED = "match_abandoned"
    INVALID_MATCH_STATE = "invalid_match_state"
    ALREADY_ACTIVE = "already_active"
    THROTTLED = "throttled"
    CONFLICT = "conflict"
    STORAGE_UNAVAILABLE = "storage_unavailable"
    UNEXPECTED = "unexpected"


# =========================
# Base exception
# =========================

class StoreError(Exception):
    """Base exception for all match-core errors."""
    retryable: bool = True
    kind: ErrorKind = ErrorKind.UNEXPECTED
    code: str = "STORE_ERROR"
    status_code: int = 500


class StorageUnavailable(StoreError):
    retryable = True
    kind = ErrorKind.STORAGE_UNAVAILABLE
    code = "STORAGE_UNAVAILABLE"


class UnexpectedResult(StoreError):
    retryable = True
    code = "UNEXPECTED_RESULT"
    #aka, the "how the heck did this happen" exception, such as a corrupt snapshot in the cache


# =========================
# Match rule exceptions
# =========================

class MatchStoreError(StoreError):
    """Base exception for match rule violations."""
    retryable = False
    code = "MATCH_ERROR"
    status_code = 400


class InvalidInput(MatchStoreError):
    kind = ErrorKind.INVALID_INPUT
    code = "INVALID_INPUT"
    status_code = 400


class MatchNotFound(MatchStoreError):
    kind = ErrorKind.NOT_FOUND
    code = "MATCH_NOT_FOUND"
    status_code = 404

    def __init__(self, match_id: str):
        super().__init__(f"Match not found: {match_id}")
        self.match_id = match_id


class NotActive(MatchStoreError):
    kind = ErrorKind.NOT_ACTIVE
    code = "MATCH_NOT_ACTIVE"
    status_code = 409

    def __init__(self, match_id: str, status: str = "", message: str | None = None):
        super().__init__(message or f"Match is not active: {match_id} ({status})")
        self.match_id = match_id
        self.status = status


class MatchCompleted(NotActive):
    kind = ErrorKind.MATCH_COMPLETED
    code = "MATCH_COMPLETED"

    def __init__(self, match_id: str):
        super().__init__(match_id, "completed", f"Match already completed: {match_id}")


class MatchAbandoned(NotActive):
    kind = ErrorKind.MATCH_ABANDONED
    code = "MATCH_ABANDONED"

    def __init__(self, match_id: str):
        super().__init__(match_id, "abandoned", f"Match was abandoned: {match_id}")


class InvalidMatchState(MatchStoreError):
    kind = ErrorKind.INVALID_MATCH_STATE
    code = "INVALID_MATCH_STATE"
    status_code = 409


class RoundLimitExceeded(InvalidMatchState):
    code = "ROUND_LIMIT_EXCEEDED"


class AlreadyActive(MatchStoreError):
    kind = ErrorKind.ALREADY_ACTIVE
    code = "ALREADY_ACTIVE"
    status_code = 409

    def __init__(self, player_id: str, match_id: str):
        super().__init__(f"Player {player_id} already has an active match: {match_id}")
        self.player_id = player_id
        self.match_id = match_id


class Throttled(MatchStoreError):
    kind = ErrorKind.THROTTLED
    code = "THROTTLED"
    status_code = 429

    def __init__(self, player_id: str):
        super().__init__(
            f"Player {player_id} has excessive abandonment patterns and is temporarily "
            "restricted from starting new matches"
        )
        self.player_id = player_id


class ConcurrentMatchUpdate(MatchStoreError):
    retryable = True
    kind = ErrorKind.CONFLICT
    code = "CONCURRENT_UPDATE"
    status_code = 409

    def __init__(self, match_id: str, detail: str = ""):
        msg = f"Match {match_id} was modified concurrently"
        super().__init__(f"{msg}: {detail}" if detail else msg)
        self.match_id = match_id
