from typing import Optional
from abc import ABC, abstractmethod

from models import Match


# =========================
# ActiveMatchCache Interface
# =========================

class ActiveMatchCache(ABC):
    """
    Expiring store for the current snapshot of in-progress matches.

    Invariants:
    - One primary entry per match id, one pointer per player id
    - Every write refreshes the expiry of both entries
    - A snapshot's version only ever increases
    - No business rules live here; I/O failures propagate as StorageUnavailable
    """

    @abstractmethod
    async def save(self, match: Match) -> None:
        """Write the snapshot and the player pointer, refreshing both TTLs.

        Raises:
            ConcurrentMatchUpdate: If the stored snapshot is at the same or a
                newer version, or if the entry vanished after creation.
            StorageUnavailable: If the cache cannot be reached.
        """

    @abstractmethod
    async def get(self, match_id: str) -> Optional[Match]:
        """Return the revived snapshot, or None if absent or expired."""

    @abstractmethod
    async def get_by_player(self, player_id: str) -> Optional[Match]:
        """Resolve the player pointer and return that match, or None."""

    @abstractmethod
    async def delete(self, match_id: str) -> None:
        """Remove the snapshot and the player pointer that refers to it.

        Deleting an unknown id is a no-op.
        """

    @abstractmethod
    async def list_all(self) -> list[Match]:
        """Return every cached match. Unreadable snapshots are skipped."""

    @abstractmethod
    async def list_player_pointers(self) -> dict[str, str]:
        """Return {player_id: match_id} for every player pointer."""

    @abstractmethod
    async def delete_player_pointer(self, player_id: str, match_id: str) -> bool:
        """Delete a player's pointer if it still refers to `match_id`."""

    @abstractmethod
    async def count_active(self) -> int:
        """Number of primary match entries currently cached."""
