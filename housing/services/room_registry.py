"""Read-only room queries ordered for each placement strategy."""

from __future__ import annotations

from housing.domain.models import Gender, RoomAvailability
from housing.repository.allocation_store import AllocationStore


class RoomRegistry:
    """Supplies candidate rooms with live occupancy.

    Candidates are advisory: the allocation store re-checks capacity when it
    commits.
    """

    def __init__(self, store: AllocationStore) -> None:
        self._store = store

    def _open_rooms(self, gender: Gender, needed_space: int) -> list[RoomAvailability]:
        if needed_space < 1:
            raise ValueError("needed_space must be >= 1")
        return [
            availability
            for availability in self._store.list_room_availability(gender, active_only=True)
            if availability.remaining >= needed_space
        ]

    def candidate_rooms(self, gender: Gender, needed_space: int = 1) -> list[RoomAvailability]:
        """Best fit first: smallest remaining capacity, then room id."""
        return sorted(
            self._open_rooms(gender, needed_space),
            key=lambda item: (item.remaining, item.room.room_id),
        )

    def split_candidates(self, gender: Gender) -> list[RoomAvailability]:
        """Largest remaining capacity first, then room id."""
        return sorted(
            self._open_rooms(gender, 1),
            key=lambda item: (-item.remaining, item.room.room_id),
        )

    def first_fit_candidates(self, gender: Gender) -> list[RoomAvailability]:
        """Rooms with at least one free bed, by room id."""
        return self._open_rooms(gender, 1)
