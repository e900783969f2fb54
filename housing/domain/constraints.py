"""Domain-level rules for allocation policy and room eligibility."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from housing.domain.models import Room


@dataclass(frozen=True)
class AllocationPolicy:
    max_age_gap: int


def validate_allocation_policy(
    policy: AllocationPolicy,
    *,
    min_gap: int = 1,
    max_gap: int = 20,
) -> None:
    if isinstance(policy.max_age_gap, bool) or not isinstance(policy.max_age_gap, int):
        raise ValueError("max_age_gap must be an integer")
    if not min_gap <= policy.max_age_gap <= max_gap:
        raise ValueError(f"max_age_gap must be between {min_gap} and {max_gap} years")


def compute_age(date_of_birth: date, on: date) -> int:
    """Whole years completed on ``on``."""
    age = on.year - date_of_birth.year
    if (on.month, on.day) < (date_of_birth.month, date_of_birth.day):
        age -= 1
    return age


def age_within_room_bounds(room: Room, age: int) -> bool:
    if room.min_age is not None and age < room.min_age:
        return False
    if room.max_age is not None and age > room.max_age:
        return False
    return True
