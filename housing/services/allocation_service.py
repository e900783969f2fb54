"""Room allocation strategies: age-grouped bulk, random bulk and manual."""

from __future__ import annotations

import logging
import random
from datetime import date
from typing import Callable, Optional, Sequence

from housing.domain.age_grouping import build_age_groups
from housing.domain.constraints import AllocationPolicy, age_within_room_bounds, compute_age
from housing.domain.errors import (
    AllocationConflictError,
    AllocationValidationError,
    ConcurrencyError,
    NotFoundError,
    RegistrantNotFoundError,
    RoomNotFoundError,
)
from housing.domain.models import (
    AccommodationOverview,
    AgeGroup,
    Allocation,
    AllocationRunResult,
    EligibleRegistrant,
    Gender,
    GroupReport,
    Placement,
    RoomDetails,
    RoomOccupancy,
)
from housing.repository.allocation_store import AllocationStore
from housing.repository.data_repository import DataRepository
from housing.services.eligibility_service import EligibilityGate
from housing.services.policy_service import AllocationPolicyService
from housing.services.room_registry import RoomRegistry
from housing.utils.config import Settings, get_settings
from housing.utils.logger import get_logger, log_event
from housing.utils.time_utils import utc_today


logger = get_logger(__name__)

STRATEGY_AGE = "age"
STRATEGY_RANDOM = "random"

# Whole-group placement tries the best-fit room and one fallback.
_WHOLE_GROUP_ATTEMPTS = 2


def _genders_in_scope(gender: Optional[Gender]) -> list[Gender]:
    if gender is None:
        return [Gender.FEMALE, Gender.MALE]
    return [Gender(gender)]


def _drop_ineligible(
    members: Sequence[EligibleRegistrant],
    ineligible: Sequence[int],
) -> list[EligibleRegistrant]:
    ineligible_ids = set(ineligible)
    return [member for member in members if member.registrant_id not in ineligible_ids]


class _RunSpans:
    """Age span of the registrants placed into each room during one run.

    Rooms shared by several groups of the same run must still respect the
    run's age gap. Occupants from earlier runs are not considered.
    """

    def __init__(self, max_age_gap: int) -> None:
        self._max_age_gap = max_age_gap
        self._spans: dict[int, tuple[int, int]] = {}

    def _merged(self, room_id: int, members: Sequence[EligibleRegistrant]) -> tuple[int, int]:
        low = min(member.age for member in members)
        high = max(member.age for member in members)
        current = self._spans.get(room_id)
        if current is not None:
            low, high = min(low, current[0]), max(high, current[1])
        return low, high

    def accepts(self, room_id: int, members: Sequence[EligibleRegistrant]) -> bool:
        if not members:
            return False
        low, high = self._merged(room_id, members)
        return high - low <= self._max_age_gap

    def record(self, room_id: int, members: Sequence[EligibleRegistrant]) -> None:
        if members:
            self._spans[room_id] = self._merged(room_id, members)


class AccommodationAllocationService:
    """Places eligible registrants into rooms.

    Bulk runs are not all-or-nothing: each group-to-room (or registrant-to-room)
    commit is its own transaction, a lost race moves on to the next candidate
    room, and whatever cannot be placed is reported as unallocated.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        store: Optional[AllocationStore] = None,
        policy_service: Optional[AllocationPolicyService] = None,
        clock: Optional[Callable[[], date]] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._store = store or AllocationStore(self._repository)
        self._policy_service = policy_service or AllocationPolicyService(
            repository=self._repository,
            settings=self._settings,
        )
        self._clock = clock or utc_today
        self._rng = rng or random.SystemRandom()
        self._registry = RoomRegistry(self._store)
        self._eligibility = EligibilityGate(self._repository, clock=self._clock)

    # --- Age-based bulk ---------------------------------------------------

    def allocate_by_age(
        self,
        *,
        performed_by: str,
        gender: Optional[Gender] = None,
        age_range_years: Optional[int] = None,
    ) -> AllocationRunResult:
        if age_range_years is None:
            policy = self._policy_service.get_policy()
        else:
            policy = AllocationPolicy(max_age_gap=age_range_years)
        self._policy_service.validate(policy)

        placements: list[Placement] = []
        unallocated: list[int] = []
        reports: list[GroupReport] = []
        spans = _RunSpans(policy.max_age_gap)
        for scoped_gender in _genders_in_scope(gender):
            pool = self._eligibility.eligible_pool(scoped_gender)
            groups = build_age_groups(pool, policy.max_age_gap, scoped_gender)
            log_event(
                logger,
                logging.INFO,
                "Age grouping built",
                gender=scoped_gender,
                pool=len(pool),
                groups=len(groups),
                max_age_gap=policy.max_age_gap,
            )
            for group in groups:
                group_placements, group_unplaced = self._place_group(group, spans, performed_by)
                placements.extend(group_placements)
                unallocated.extend(group_unplaced)
                reports.append(
                    GroupReport(
                        gender=scoped_gender,
                        min_age=group.min_age,
                        max_age=group.max_age,
                        size=group.size,
                        allocated=len(group_placements),
                    )
                )

        result = AllocationRunResult(
            strategy=STRATEGY_AGE,
            placements=placements,
            unallocated=unallocated,
            groups=reports,
            age_range_years=policy.max_age_gap,
        )
        log_event(
            logger,
            logging.INFO,
            "Age allocation completed",
            gender=gender or "all",
            allocated=result.total_allocated,
            unallocated=len(result.unallocated),
            by=performed_by,
        )
        return result

    def _place_group(
        self,
        group: AgeGroup,
        spans: _RunSpans,
        performed_by: str,
    ) -> tuple[list[Placement], list[int]]:
        members = list(group.members)

        candidates = [
            availability
            for availability in self._registry.candidate_rooms(group.gender, group.size)
            if spans.accepts(availability.room.room_id, members)
        ]
        for availability in candidates[:_WHOLE_GROUP_ATTEMPTS]:
            room_id = availability.room.room_id
            try:
                self._store.commit_group(
                    [member.registrant_id for member in members],
                    room_id,
                    performed_by,
                )
            except ConcurrencyError as exc:
                log_event(
                    logger,
                    logging.WARNING,
                    "Whole-group commit lost race",
                    room_id=room_id,
                    size=len(members),
                    dropped=exc.ineligible_registrant_ids,
                )
                if exc.ineligible_registrant_ids:
                    members = _drop_ineligible(members, exc.ineligible_registrant_ids)
                    break
                continue
            spans.record(room_id, members)
            return [Placement(member.registrant_id, room_id) for member in members], []

        return self._split_group(group.gender, members, spans, performed_by)

    def _split_group(
        self,
        gender: Gender,
        members: Sequence[EligibleRegistrant],
        spans: _RunSpans,
        performed_by: str,
    ) -> tuple[list[Placement], list[int]]:
        """Spread the group across rooms, largest free space first.

        A room that loses a commit race is not retried within this split.
        """
        placements: list[Placement] = []
        remaining = list(members)
        lost_rooms: set[int] = set()
        while remaining:
            target = None
            batch: list[EligibleRegistrant] = []
            for availability in self._registry.split_candidates(gender):
                if availability.room.room_id in lost_rooms:
                    continue
                batch = remaining[: availability.remaining]
                if spans.accepts(availability.room.room_id, batch):
                    target = availability
                    break
            if target is None:
                break

            room_id = target.room.room_id
            try:
                self._store.commit_group(
                    [member.registrant_id for member in batch],
                    room_id,
                    performed_by,
                )
            except ConcurrencyError as exc:
                log_event(
                    logger,
                    logging.WARNING,
                    "Split commit lost race",
                    room_id=room_id,
                    size=len(batch),
                    dropped=exc.ineligible_registrant_ids,
                )
                if exc.ineligible_registrant_ids:
                    remaining = _drop_ineligible(remaining, exc.ineligible_registrant_ids)
                else:
                    lost_rooms.add(room_id)
                continue
            spans.record(room_id, batch)
            placements.extend(Placement(member.registrant_id, room_id) for member in batch)
            remaining = remaining[len(batch):]
        return placements, [member.registrant_id for member in remaining]

    # --- Random bulk ------------------------------------------------------

    def allocate_random(
        self,
        *,
        performed_by: str,
        gender: Optional[Gender] = None,
    ) -> AllocationRunResult:
        """Shuffle each pool and fill rooms first-fit by room id.

        Room-level ``min_age``/``max_age`` are not consulted in this mode.
        """
        placements: list[Placement] = []
        unallocated: list[int] = []
        reports: list[GroupReport] = []
        for scoped_gender in _genders_in_scope(gender):
            pool = self._eligibility.eligible_pool(scoped_gender)
            if not pool:
                continue
            order = list(pool)
            self._rng.shuffle(order)

            free_beds = {
                availability.room.room_id: availability.remaining
                for availability in self._registry.first_fit_candidates(scoped_gender)
            }
            gender_placed = 0
            for registrant in order:
                room_id, dropped = self._place_first_fit(
                    registrant.registrant_id, free_beds, performed_by
                )
                if room_id is not None:
                    placements.append(Placement(registrant.registrant_id, room_id))
                    gender_placed += 1
                elif not dropped:
                    unallocated.append(registrant.registrant_id)

            reports.append(
                GroupReport(
                    gender=scoped_gender,
                    min_age=pool[0].age,
                    max_age=pool[-1].age,
                    size=len(pool),
                    allocated=gender_placed,
                )
            )

        result = AllocationRunResult(
            strategy=STRATEGY_RANDOM,
            placements=placements,
            unallocated=unallocated,
            groups=reports,
        )
        log_event(
            logger,
            logging.INFO,
            "Random allocation completed",
            gender=gender or "all",
            allocated=result.total_allocated,
            unallocated=len(result.unallocated),
            by=performed_by,
        )
        return result

    def _place_first_fit(
        self,
        registrant_id: int,
        free_beds: dict[int, int],
        performed_by: str,
    ) -> tuple[Optional[int], bool]:
        """Return (room used, whether the registrant was allocated or unverified meanwhile)."""
        lost_races = 0
        for room_id in sorted(free_beds):
            if free_beds[room_id] <= 0:
                continue
            try:
                self._store.commit(registrant_id, room_id, performed_by)
            except ConcurrencyError as exc:
                if exc.ineligible_registrant_ids:
                    return None, True
                logger.warning(
                    "First-fit commit lost race | room_id=%s | registrant_id=%s",
                    room_id,
                    registrant_id,
                )
                free_beds[room_id] = 0
                lost_races += 1
                if lost_races > 1:
                    return None, False
                continue
            free_beds[room_id] -= 1
            return room_id, False
        return None, False

    # --- Manual -----------------------------------------------------------

    def allocate_manual(
        self,
        *,
        registrant_id: int,
        room_id: int,
        performed_by: str,
    ) -> Allocation:
        """Place one registrant, enforcing the room's own age bounds."""
        registrant = self._repository.get_registrant(registrant_id)
        if registrant is None:
            raise RegistrantNotFoundError(registrant_id)

        existing = self._store.get(registrant_id)
        if existing is not None:
            raise AllocationConflictError(
                AllocationConflictError.ALREADY_ALLOCATED,
                "Registrant is already allocated to a room",
                {"registrant_id": registrant_id, "room_id": existing.room_id},
            )
        if not registrant.is_verified:
            raise AllocationConflictError(
                AllocationConflictError.NOT_VERIFIED,
                "Registrant must be verified before room allocation",
                {"registrant_id": registrant_id},
            )

        room = self._repository.get_room(room_id)
        if room is None:
            raise RoomNotFoundError(room_id)
        if not room.is_active:
            raise AllocationConflictError(
                AllocationConflictError.ROOM_INACTIVE,
                f"Room {room.name} is not active",
                {"room_id": room_id},
            )
        if room.gender != registrant.gender:
            raise AllocationConflictError(
                AllocationConflictError.GENDER_MISMATCH,
                (
                    f"Cannot allocate {registrant.gender.value.lower()} registrant to "
                    f"{room.gender.value.lower()} room"
                ),
                {
                    "room_id": room_id,
                    "room_gender": room.gender.value,
                    "registrant_gender": registrant.gender.value,
                },
            )
        occupancy = self._store.occupancy(room_id)
        if occupancy >= room.capacity:
            raise AllocationConflictError(
                AllocationConflictError.ROOM_FULL,
                f"Room {room.name} is at full capacity",
                {"room_id": room_id, "capacity": room.capacity, "occupancy": occupancy},
            )
        age = compute_age(registrant.date_of_birth, self._clock())
        if not age_within_room_bounds(room, age):
            raise AllocationConflictError(
                AllocationConflictError.AGE_OUT_OF_RANGE,
                f"Registrant aged {age} is outside the age range of room {room.name}",
                {
                    "room_id": room_id,
                    "age": age,
                    "min_age": room.min_age,
                    "max_age": room.max_age,
                },
            )

        try:
            allocation = self._store.commit(registrant_id, room_id, performed_by)
        except ConcurrencyError as exc:
            if exc.taken_registrant_ids:
                raise AllocationConflictError(
                    AllocationConflictError.ALREADY_ALLOCATED,
                    "Registrant was allocated by another operation",
                    {"registrant_id": registrant_id},
                ) from exc
            if exc.unverified_registrant_ids:
                raise AllocationConflictError(
                    AllocationConflictError.NOT_VERIFIED,
                    "Registrant was unverified before the allocation was saved",
                    {"registrant_id": registrant_id},
                ) from exc
            raise AllocationConflictError(
                AllocationConflictError.ROOM_FULL,
                f"Room {room.name} filled up before the allocation was saved",
                {"room_id": room_id, "capacity": room.capacity},
            ) from exc

        log_event(
            logger,
            logging.INFO,
            "Manual allocation committed",
            registrant_id=registrant_id,
            room_id=room_id,
            by=performed_by,
        )
        return allocation

    # --- Ledger maintenance ----------------------------------------------

    def remove_allocation(self, registrant_id: int) -> bool:
        if self._repository.get_registrant(registrant_id) is None:
            raise RegistrantNotFoundError(registrant_id)
        removed = self._store.remove(registrant_id)
        logger.info(
            "Allocation removal | registrant_id=%s | removed=%s",
            registrant_id,
            removed,
        )
        return removed

    def get_allocation_details(self, registrant_id: int) -> RoomDetails:
        if self._repository.get_registrant(registrant_id) is None:
            raise RegistrantNotFoundError(registrant_id)
        details = self._store.room_details(registrant_id)
        if details is None:
            raise NotFoundError(f"Registrant {registrant_id} has no allocation")
        return details

    def empty_rooms(self, gender: Gender) -> tuple[int, int]:
        try:
            scoped_gender = Gender(gender)
        except ValueError as exc:
            raise AllocationValidationError("gender must be Male or Female") from exc
        removed, affected_rooms = self._store.remove_for_gender(scoped_gender)
        logger.info(
            "Rooms emptied | gender=%s | removed=%s | affected_rooms=%s",
            scoped_gender.value,
            removed,
            affected_rooms,
        )
        return removed, affected_rooms

    def overview(self) -> AccommodationOverview:
        rooms = self._repository.list_rooms()
        occupants = self._store.occupants_by_room()
        active_rooms = [room for room in rooms if room.is_active]
        return AccommodationOverview(
            total_registrants=self._repository.count_registrants(),
            verified_registrants=self._repository.count_registrants(verified_only=True),
            allocated_registrants=self._store.count_allocations(),
            total_rooms=len(rooms),
            active_rooms=len(active_rooms),
            total_capacity=sum(room.capacity for room in active_rooms),
            occupied_spaces=sum(len(occupants.get(room.room_id, [])) for room in active_rooms),
            rooms=[
                RoomOccupancy(room=room, occupants=occupants.get(room.room_id, []))
                for room in rooms
            ],
        )
