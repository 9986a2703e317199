# Abstractions
from .active_match_cache import ActiveMatchCache
from .match_store import MatchStore

# Concrete implementations
from .redis_match_cache import RedisMatchCache
from .sqlite_match_store import SqliteMatchStore

# Exceptions
from .exceptions import (
    ErrorKind,
    StoreError,
    StorageUnavailable,
    UnexpectedResult,
    MatchStoreError,
    InvalidInput,
    MatchNotFound,
    NotActive,
    MatchCompleted,
    MatchAbandoned,
    InvalidMatchState,
    RoundLimitExceeded,
    AlreadyActive,
    Throttled,
    ConcurrentMatchUpdate,
)

__all__ = [
    # Abstractions
    "ActiveMatchCache",
    "MatchStore",
    # Implementations
    "RedisMatchCache",
    "SqliteMatchStore",
    # Exceptions
    "ErrorKind",
    "StoreError",
    "StorageUnavailable",
    "UnexpectedResult",
    "MatchStoreError",
    "InvalidInput",
    "MatchNotFound",
    "NotActive",
    "MatchCompleted",
    "MatchAbandoned",
    "InvalidMatchState",
    "RoundLimitExceeded",
    "AlreadyActive",
    "Throttled",
    "ConcurrentMatchUpdate",
]
