from __future__ import annotations

import random
from dataclasses import replace
from datetime import date

import pytest

from housing.domain.constraints import compute_age
from housing.domain.errors import (
    AllocationConflictError,
    AllocationValidationError,
    NotFoundError,
    RegistrantNotFoundError,
    RoomNotFoundError,
)
from housing.domain.models import Gender
from housing.repository.allocation_store import AllocationStore
from housing.repository.data_repository import DataRepository
from housing.services.allocation_service import AccommodationAllocationService
from housing.services.policy_service import AllocationPolicyService
from housing.utils.config import get_settings


TODAY = date(2026, 6, 1)


def _build_test_settings(tmp_path, filename: str):
    return replace(get_settings(), database_path=tmp_path / filename, default_max_age_gap=5)


def _build_service(tmp_path, filename: str, seed: int = 7):
    settings = _build_test_settings(tmp_path, filename)
    repository = DataRepository(settings)
    repository.initialize_database()
    store = AllocationStore(repository)
    service = AccommodationAllocationService(
        repository=repository,
        settings=settings,
        store=store,
        clock=lambda: TODAY,
        rng=random.Random(seed),
    )
    return service, repository, store


def _add_registrant(
    repository: DataRepository,
    age: int,
    gender: Gender = Gender.MALE,
    *,
    verified: bool = True,
    name: str | None = None,
) -> int:
    return repository.create_registrant(
        name or f"{gender.value} aged {age}",
        gender,
        date(TODAY.year - age, 1, 1),
        is_verified=verified,
    )


def _room_ages(repository: DataRepository, store: AllocationStore, room_id: int) -> list[int]:
    return sorted(
        compute_age(repository.get_registrant(item.registrant_id).date_of_birth, TODAY)
        for item in store.list_for_room(room_id)
    )


# --- Age-based bulk ---

def test_age_allocation_places_whole_groups_best_fit(tmp_path):
    service, repository, store = _build_service(tmp_path, "scenario_a.db")
    big_room = repository.create_room("M-3", Gender.MALE, 3)
    small_room = repository.create_room("M-2", Gender.MALE, 2)
    for age in (14, 15, 16, 25):
        _add_registrant(repository, age)

    result = service.allocate_by_age(performed_by="system", gender=Gender.MALE)

    assert result.total_allocated == 4
    assert result.unallocated == []
    assert _room_ages(repository, store, big_room) == [14, 15, 16]
    assert _room_ages(repository, store, small_room) == [25]
    assert [(group.size, group.status) for group in result.groups] == [
        (3, "success"),
        (1, "success"),
    ]


def test_age_allocation_splits_group_when_no_room_fits(tmp_path):
    service, repository, store = _build_service(tmp_path, "scenario_b.db")
    big_room = repository.create_room("M-3", Gender.MALE, 3)
    small_room = repository.create_room("M-2", Gender.MALE, 2)
    existing = [_add_registrant(repository, 30, name=f"Existing {index}") for index in range(2)]
    store.commit_group(existing, big_room, "system")
    for age in (14, 15, 16):
        _add_registrant(repository, age)

    result = service.allocate_by_age(performed_by="system", gender=Gender.MALE)

    assert result.total_allocated == 3
    assert result.unallocated == []
    assert store.occupancy(big_room) == 3
    assert store.occupancy(small_room) == 2
    assert _room_ages(repository, store, small_room) == [14, 15]


def test_age_allocation_reports_partial_group_when_capacity_runs_out(tmp_path):
    service, repository, store = _build_service(tmp_path, "partial.db")
    repository.create_room("M-2", Gender.MALE, 2)
    ids = [_add_registrant(repository, age) for age in (14, 15, 16)]

    result = service.allocate_by_age(performed_by="system", gender=Gender.MALE)

    assert result.total_allocated == 2
    assert result.unallocated == [ids[2]]
    assert result.groups[0].status == "partial"
    assert result.groups[0].remaining == 1


def test_rooms_shared_by_groups_in_one_run_respect_age_gap(tmp_path):
    service, repository, store = _build_service(tmp_path, "shared_rooms.db")
    rooms = [repository.create_room(f"M-{index}", Gender.MALE, 4) for index in range(3)]
    for age in (14, 15, 16, 17, 18, 25, 26):
        _add_registrant(repository, age)

    result = service.allocate_by_age(performed_by="system", gender=Gender.MALE)

    assert result.total_allocated == 7
    for room_id in rooms:
        ages = _room_ages(repository, store, room_id)
        if ages:
            assert max(ages) - min(ages) <= 5


def test_age_allocation_uses_stored_policy_and_explicit_override(tmp_path):
    service, repository, store = _build_service(tmp_path, "policy.db")
    repository.create_room("M-4", Gender.MALE, 4)
    repository.create_room("M-4b", Gender.MALE, 4)
    for age in (14, 16, 18):
        _add_registrant(repository, age)
    AllocationPolicyService(
        repository=repository,
        settings=_build_test_settings(tmp_path, "policy.db"),
    ).set_policy(1)

    result = service.allocate_by_age(performed_by="system", gender=Gender.MALE)
    assert result.age_range_years == 1
    assert len(result.groups) == 3

    store.remove_for_gender(Gender.MALE)
    result = service.allocate_by_age(
        performed_by="system",
        gender=Gender.MALE,
        age_range_years=4,
    )
    assert result.age_range_years == 4
    assert len(result.groups) == 1


@pytest.mark.parametrize("age_range", [0, 21])
def test_age_allocation_rejects_out_of_range_gap(tmp_path, age_range):
    service, repository, _ = _build_service(tmp_path, "bad_gap.db")
    with pytest.raises(AllocationValidationError):
        service.allocate_by_age(performed_by="system", age_range_years=age_range)


def test_bulk_allocation_skips_unverified_inactive_and_other_gender(tmp_path):
    service, repository, store = _build_service(tmp_path, "eligibility.db")
    repository.create_room("Closed", Gender.MALE, 4, is_active=False)
    open_room = repository.create_room("Open", Gender.MALE, 4)
    female_room = repository.create_room("F-4", Gender.FEMALE, 4)
    verified = _add_registrant(repository, 15)
    unverified = _add_registrant(repository, 15, verified=False)
    female = _add_registrant(repository, 15, Gender.FEMALE)

    result = service.allocate_by_age(performed_by="system")

    assert {(item.registrant_id, item.room_id) for item in result.placements} == {
        (verified, open_room),
        (female, female_room),
    }
    assert store.get(unverified) is None


def test_bulk_allocation_never_moves_allocated_registrants(tmp_path):
    service, repository, store = _build_service(tmp_path, "stable.db")
    first_room = repository.create_room("M-1", Gender.MALE, 1)
    repository.create_room("M-2", Gender.MALE, 3)
    placed = _add_registrant(repository, 20)
    store.commit(placed, first_room, "system")
    _add_registrant(repository, 20)

    result = service.allocate_by_age(performed_by="system", gender=Gender.MALE)

    assert placed not in [item.registrant_id for item in result.placements]
    assert store.get(placed).room_id == first_room


# --- Random bulk ---

def test_random_allocation_respects_gender_and_capacity(tmp_path):
    service, repository, store = _build_service(tmp_path, "random.db")
    male_rooms = [repository.create_room(f"M-{index}", Gender.MALE, 2) for index in range(2)]
    female_room = repository.create_room("F-1", Gender.FEMALE, 3)
    males = [_add_registrant(repository, 14 + index) for index in range(6)]
    females = [_add_registrant(repository, 20, Gender.FEMALE) for _ in range(2)]

    result = service.allocate_random(performed_by="system")

    assert result.total_allocated == 6
    assert sorted(result.unallocated + [p.registrant_id for p in result.placements]) == sorted(
        males + females
    )
    assert len(result.unallocated) == 2
    for room_id in male_rooms:
        assert store.occupancy(room_id) == 2
    assert store.occupancy(female_room) == 2
    for placement in result.placements:
        registrant = repository.get_registrant(placement.registrant_id)
        room = repository.get_room(placement.room_id)
        assert registrant.gender == room.gender


def test_random_allocation_ignores_room_age_bounds(tmp_path):
    service, repository, store = _build_service(tmp_path, "random_bounds.db")
    room_id = repository.create_room("Seniors", Gender.FEMALE, 2, min_age=30)
    registrant_id = _add_registrant(repository, 14, Gender.FEMALE)

    result = service.allocate_random(performed_by="system", gender=Gender.FEMALE)

    assert result.total_allocated == 1
    assert store.get(registrant_id).room_id == room_id


def test_random_allocation_is_reproducible_with_seeded_rng(tmp_path):
    outcomes = []
    for index in range(2):
        service, repository, _ = _build_service(tmp_path, f"seeded_{index}.db", seed=11)
        for room in range(3):
            repository.create_room(f"M-{room}", Gender.MALE, 2)
        for age in range(14, 20):
            _add_registrant(repository, age)
        result = service.allocate_random(performed_by="system", gender=Gender.MALE)
        outcomes.append([(item.registrant_id, item.room_id) for item in result.placements])

    assert outcomes[0] == outcomes[1]


# --- Manual ---

def test_manual_allocation_rejects_age_out_of_range(tmp_path):
    service, repository, store = _build_service(tmp_path, "scenario_c.db")
    room_id = repository.create_room("Teens", Gender.MALE, 4, min_age=14)
    registrant_id = _add_registrant(repository, 12)

    with pytest.raises(AllocationConflictError) as excinfo:
        service.allocate_manual(registrant_id=registrant_id, room_id=room_id, performed_by="bob")

    assert excinfo.value.code == AllocationConflictError.AGE_OUT_OF_RANGE
    assert excinfo.value.context["age"] == 12
    assert store.get(registrant_id) is None
    assert store.occupancy(room_id) == 0


def test_manual_allocation_succeeds_and_records_operator(tmp_path):
    service, repository, store = _build_service(tmp_path, "manual_ok.db")
    room_id = repository.create_room("Teens", Gender.MALE, 4, min_age=14, max_age=18)
    registrant_id = _add_registrant(repository, 16)

    allocation = service.allocate_manual(
        registrant_id=registrant_id,
        room_id=room_id,
        performed_by="bob",
    )

    assert allocation.allocated_by == "bob"
    assert store.get(registrant_id).room_id == room_id


def test_manual_allocation_conflict_codes(tmp_path):
    service, repository, store = _build_service(tmp_path, "manual_codes.db")
    male_room = repository.create_room("M-1", Gender.MALE, 1)
    female_room = repository.create_room("F-1", Gender.FEMALE, 2)
    closed_room = repository.create_room("M-closed", Gender.MALE, 2, is_active=False)
    first = _add_registrant(repository, 16)
    second = _add_registrant(repository, 16)
    unverified = _add_registrant(repository, 16, verified=False)

    service.allocate_manual(registrant_id=first, room_id=male_room, performed_by="system")

    cases = [
        (first, female_room, AllocationConflictError.ALREADY_ALLOCATED),
        (unverified, male_room, AllocationConflictError.NOT_VERIFIED),
        (second, closed_room, AllocationConflictError.ROOM_INACTIVE),
        (second, female_room, AllocationConflictError.GENDER_MISMATCH),
        (second, male_room, AllocationConflictError.ROOM_FULL),
    ]
    for registrant_id, room_id, code in cases:
        with pytest.raises(AllocationConflictError) as excinfo:
            service.allocate_manual(
                registrant_id=registrant_id,
                room_id=room_id,
                performed_by="system",
            )
        assert excinfo.value.code == code
        assert excinfo.value.to_dict()["error_code"] == code

    assert store.count_allocations() == 1


def test_manual_allocation_unknown_ids(tmp_path):
    service, repository, _ = _build_service(tmp_path, "manual_missing.db")
    room_id = repository.create_room("M-1", Gender.MALE, 1)
    registrant_id = _add_registrant(repository, 16)

    with pytest.raises(RegistrantNotFoundError):
        service.allocate_manual(registrant_id=999, room_id=room_id, performed_by="system")
    with pytest.raises(RoomNotFoundError):
        service.allocate_manual(registrant_id=registrant_id, room_id=999, performed_by="system")


# --- Ledger maintenance ---

def test_remove_allocation_and_details(tmp_path):
    service, repository, _ = _build_service(tmp_path, "remove.db")
    room_id = repository.create_room("M-1", Gender.MALE, 2)
    registrant_id = _add_registrant(repository, 16)
    service.allocate_manual(registrant_id=registrant_id, room_id=room_id, performed_by="system")

    details = service.get_allocation_details(registrant_id)
    assert details.room_id == room_id
    assert details.current_occupancy == 1

    assert service.remove_allocation(registrant_id) is True
    assert service.remove_allocation(registrant_id) is False
    with pytest.raises(NotFoundError):
        service.get_allocation_details(registrant_id)
    with pytest.raises(RegistrantNotFoundError):
        service.remove_allocation(999)


def test_overview_counts(tmp_path):
    service, repository, _ = _build_service(tmp_path, "overview.db")
    repository.create_room("M-1", Gender.MALE, 2)
    repository.create_room("M-closed", Gender.MALE, 5, is_active=False)
    for age in (14, 15, 16):
        _add_registrant(repository, age)
    _add_registrant(repository, 16, verified=False)
    service.allocate_by_age(performed_by="system")

    stats = service.overview()

    assert stats.total_registrants == 4
    assert stats.verified_registrants == 3
    assert stats.allocated_registrants == 2
    assert stats.unallocated_verified == 1
    assert stats.total_rooms == 2
    assert stats.active_rooms == 1
    assert stats.total_capacity == 2
    assert stats.available_spaces == 0
    assert stats.allocation_rate == pytest.approx(2 / 3)
