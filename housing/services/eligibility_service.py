"""Selects the registrants that may be placed into rooms."""

from __future__ import annotations

from datetime import date
from typing import Callable, Optional

from housing.domain.constraints import compute_age
from housing.domain.models import EligibleRegistrant, Gender
from housing.repository.data_repository import DataRepository
from housing.utils.time_utils import utc_today


class EligibilityGate:
    def __init__(
        self,
        repository: DataRepository,
        clock: Optional[Callable[[], date]] = None,
    ) -> None:
        self._repository = repository
        self._clock = clock or utc_today

    def eligible_pool(self, gender: Gender) -> list[EligibleRegistrant]:
        """Verified, unallocated registrants sorted by age then registration time."""
        today = self._clock()
        pool = [
            EligibleRegistrant(
                registrant_id=registrant.registrant_id,
                full_name=registrant.full_name,
                gender=registrant.gender,
                age=compute_age(registrant.date_of_birth, today),
                created_at=registrant.created_at,
            )
            for registrant in self._repository.list_unallocated_verified(gender)
        ]
        pool.sort(key=lambda item: (item.age, item.created_at, item.registrant_id))
        return pool
