"""Partition an age-sorted pool into groups bounded by a maximum age spread."""

from __future__ import annotations

from typing import Sequence

from housing.domain.models import AgeGroup, EligibleRegistrant, Gender


def build_age_groups(
    pool: Sequence[EligibleRegistrant],
    max_age_gap: int,
    gender: Gender,
) -> list[AgeGroup]:
    """Single sweep; ``pool`` must already be sorted by ascending age.

    The youngest member of the open group is its anchor. A registrant joins
    while ``age - anchor <= max_age_gap``, otherwise a new group opens with
    that registrant as anchor.
    """
    if max_age_gap < 0:
        raise ValueError("max_age_gap must be >= 0")

    groups: list[AgeGroup] = []
    current: list[EligibleRegistrant] = []
    group_min = 0
    previous_age: int | None = None
    for registrant in pool:
        if previous_age is not None and registrant.age < previous_age:
            raise ValueError("pool must be sorted by ascending age")
        previous_age = registrant.age

        if current and registrant.age - group_min <= max_age_gap:
            current.append(registrant)
            continue
        if current:
            groups.append(AgeGroup(gender=gender, members=tuple(current)))
        current = [registrant]
        group_min = registrant.age

    if current:
        groups.append(AgeGroup(gender=gender, members=tuple(current)))
    return groups
