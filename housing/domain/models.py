"""Domain models for registrants, rooms and housing allocations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Optional


class Gender(str, Enum):
    FEMALE = "Female"
    MALE = "Male"


@dataclass(frozen=True)
class Registrant:
    registrant_id: int
    full_name: str
    gender: Gender
    date_of_birth: date
    is_verified: bool
    created_at: str
    verified_at: Optional[str] = None
    verified_by: Optional[str] = None
    unverified_at: Optional[str] = None
    unverified_by: Optional[str] = None


@dataclass(frozen=True)
class Room:
    room_id: int
    name: str
    gender: Gender
    capacity: int
    is_active: bool = True
    min_age: Optional[int] = None
    max_age: Optional[int] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class Allocation:
    registrant_id: int
    room_id: int
    allocated_at: str
    allocated_by: str


@dataclass(frozen=True)
class RoomAvailability:
    """Room paired with the occupancy observed when it was read."""

    room: Room
    occupancy: int

    @property
    def remaining(self) -> int:
        return self.room.capacity - self.occupancy


@dataclass(frozen=True)
class EligibleRegistrant:
    registrant_id: int
    full_name: str
    gender: Gender
    age: int
    created_at: str


@dataclass(frozen=True)
class AgeGroup:
    gender: Gender
    members: tuple[EligibleRegistrant, ...]

    @property
    def size(self) -> int:
        return len(self.members)

    @property
    def min_age(self) -> int:
        return self.members[0].age

    @property
    def max_age(self) -> int:
        return self.members[-1].age


@dataclass(frozen=True)
class Placement:
    registrant_id: int
    room_id: int


@dataclass(frozen=True)
class GroupReport:
    gender: Gender
    min_age: int
    max_age: int
    size: int
    allocated: int

    @property
    def remaining(self) -> int:
        return self.size - self.allocated

    @property
    def status(self) -> str:
        if self.allocated == self.size:
            return "success"
        if self.allocated == 0:
            return "failed"
        return "partial"


@dataclass(frozen=True)
class AllocationRunResult:
    strategy: str
    placements: list[Placement]
    unallocated: list[int]
    groups: list[GroupReport] = field(default_factory=list)
    age_range_years: Optional[int] = None

    @property
    def total_allocated(self) -> int:
        return len(self.placements)


@dataclass(frozen=True)
class RoomDetails:
    room_id: int
    room_name: str
    room_gender: Gender
    room_capacity: int
    current_occupancy: int
    roommates: list[str]
    registrant_name: str
    allocated_at: str
    allocated_by: str


@dataclass(frozen=True)
class UnverifyConflict:
    """Returned instead of unverifying when the registrant still holds a bed."""

    registrant_id: int
    room_details: RoomDetails
    error_code: str = "ROOM_ALLOCATED"


@dataclass(frozen=True)
class UnverifyOutcome:
    registrant_id: int
    full_name: str
    room_removed: bool
    removed_room_id: Optional[int]
    unverified_at: str
    unverified_by: str


@dataclass(frozen=True)
class UnverifyEligibility:
    registrant_id: int
    can_unverify: bool
    has_room_allocation: bool
    room_details: Optional[RoomDetails]


@dataclass(frozen=True)
class RoomOccupancy:
    room: Room
    occupants: list[str]

    @property
    def occupancy(self) -> int:
        return len(self.occupants)


@dataclass(frozen=True)
class AccommodationOverview:
    total_registrants: int
    verified_registrants: int
    allocated_registrants: int
    total_rooms: int
    active_rooms: int
    total_capacity: int
    occupied_spaces: int
    rooms: list[RoomOccupancy]

    @property
    def unallocated_verified(self) -> int:
        return max(0, self.verified_registrants - self.allocated_registrants)

    @property
    def available_spaces(self) -> int:
        return self.total_capacity - self.occupied_spaces

    @property
    def allocation_rate(self) -> float:
        if self.verified_registrants == 0:
            return 0.0
        return self.allocated_registrants / self.verified_registrants
