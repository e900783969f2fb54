from __future__ import annotations

import threading
from dataclasses import replace
from datetime import date

import pytest

from housing.domain.errors import (
    AllocationConflictError,
    ConcurrencyError,
    RegistrantNotFoundError,
    RoomNotFoundError,
)
from housing.domain.models import Gender
from housing.repository.allocation_store import AllocationStore
from housing.repository.data_repository import DataRepository
from housing.utils.config import get_settings


def _build_repository(tmp_path, filename: str) -> DataRepository:
    settings = replace(
        get_settings(),
        database_path=tmp_path / filename,
        database_busy_timeout_seconds=10.0,
    )
    repository = DataRepository(settings)
    repository.initialize_database()
    return repository


def _registrants(repository: DataRepository, count: int, gender: Gender = Gender.MALE) -> list[int]:
    return [
        repository.create_registrant(
            f"{gender.value} {index}",
            gender,
            date(2010, 1, 1),
            is_verified=True,
        )
        for index in range(count)
    ]


def test_commit_records_allocation_and_occupancy(tmp_path):
    repository = _build_repository(tmp_path, "commit.db")
    store = AllocationStore(repository)
    room_id = repository.create_room("M1", Gender.MALE, 2)
    (registrant_id,) = _registrants(repository, 1)

    allocation = store.commit(registrant_id, room_id, "alice")

    assert allocation.room_id == room_id
    assert allocation.allocated_by == "alice"
    assert store.occupancy(room_id) == 1
    assert store.get(registrant_id) == allocation
    assert store.list_for_room(room_id) == [allocation]
    assert store.occupancy_by_room() == {room_id: 1}


def test_commit_rejects_full_room(tmp_path):
    repository = _build_repository(tmp_path, "full.db")
    store = AllocationStore(repository)
    room_id = repository.create_room("M1", Gender.MALE, 1)
    first, second = _registrants(repository, 2)
    store.commit(first, room_id, "system")

    with pytest.raises(ConcurrencyError) as excinfo:
        store.commit(second, room_id, "system")

    assert excinfo.value.room_exhausted
    assert store.occupancy(room_id) == 1
    assert store.get(second) is None


def test_commit_rejects_second_allocation_for_registrant(tmp_path):
    repository = _build_repository(tmp_path, "unique.db")
    store = AllocationStore(repository)
    room_a = repository.create_room("M1", Gender.MALE, 2)
    room_b = repository.create_room("M2", Gender.MALE, 2)
    (registrant_id,) = _registrants(repository, 1)
    store.commit(registrant_id, room_a, "system")

    with pytest.raises(ConcurrencyError) as excinfo:
        store.commit(registrant_id, room_b, "system")

    assert excinfo.value.taken_registrant_ids == (registrant_id,)
    assert store.get(registrant_id).room_id == room_a


def test_group_commit_rejects_registrant_unverified_since_pool_read(tmp_path):
    repository = _build_repository(tmp_path, "unverified.db")
    store = AllocationStore(repository)
    room_id = repository.create_room("M1", Gender.MALE, 3)
    verified = _registrants(repository, 2)
    unverified = repository.create_registrant(
        "Male late", Gender.MALE, date(2010, 1, 1), is_verified=False
    )

    with pytest.raises(ConcurrencyError) as excinfo:
        store.commit_group([*verified, unverified], room_id, "system")

    assert excinfo.value.unverified_registrant_ids == (unverified,)
    assert excinfo.value.taken_registrant_ids == ()
    assert excinfo.value.ineligible_registrant_ids == (unverified,)
    assert not excinfo.value.room_exhausted
    assert store.occupancy(room_id) == 0


def test_group_commit_is_all_or_nothing(tmp_path):
    repository = _build_repository(tmp_path, "group.db")
    store = AllocationStore(repository)
    room_id = repository.create_room("M1", Gender.MALE, 2)
    ids = _registrants(repository, 3)

    with pytest.raises(ConcurrencyError):
        store.commit_group(ids, room_id, "system")

    assert store.occupancy(room_id) == 0
    assert store.count_allocations() == 0


def test_commit_rejects_gender_mismatch(tmp_path):
    repository = _build_repository(tmp_path, "gender.db")
    store = AllocationStore(repository)
    room_id = repository.create_room("F1", Gender.FEMALE, 2)
    (registrant_id,) = _registrants(repository, 1, Gender.MALE)

    with pytest.raises(AllocationConflictError) as excinfo:
        store.commit(registrant_id, room_id, "system")

    assert excinfo.value.code == AllocationConflictError.GENDER_MISMATCH
    assert store.count_allocations() == 0


def test_commit_unknown_ids_raise_not_found(tmp_path):
    repository = _build_repository(tmp_path, "missing.db")
    store = AllocationStore(repository)
    room_id = repository.create_room("M1", Gender.MALE, 2)
    (registrant_id,) = _registrants(repository, 1)

    with pytest.raises(RoomNotFoundError):
        store.commit(registrant_id, 999, "system")
    with pytest.raises(RegistrantNotFoundError):
        store.commit(999, room_id, "system")


def test_remove_is_idempotent(tmp_path):
    repository = _build_repository(tmp_path, "remove.db")
    store = AllocationStore(repository)
    room_id = repository.create_room("M1", Gender.MALE, 2)
    (registrant_id,) = _registrants(repository, 1)
    store.commit(registrant_id, room_id, "system")

    assert store.remove(registrant_id) is True
    assert store.remove(registrant_id) is False
    assert store.occupancy(room_id) == 0


def test_remove_for_gender_only_touches_that_gender(tmp_path):
    repository = _build_repository(tmp_path, "empty.db")
    store = AllocationStore(repository)
    male_room = repository.create_room("M1", Gender.MALE, 3)
    female_room = repository.create_room("F1", Gender.FEMALE, 3)
    males = _registrants(repository, 2, Gender.MALE)
    females = _registrants(repository, 2, Gender.FEMALE)
    store.commit_group(males, male_room, "system")
    store.commit_group(females, female_room, "system")

    removed, affected = store.remove_for_gender(Gender.MALE)

    assert (removed, affected) == (2, 1)
    assert store.occupancy(male_room) == 0
    assert store.occupancy(female_room) == 2


def test_room_details_lists_roommates(tmp_path):
    repository = _build_repository(tmp_path, "details.db")
    store = AllocationStore(repository)
    room_id = repository.create_room("M1", Gender.MALE, 3)
    ids = _registrants(repository, 3)
    store.commit_group(ids, room_id, "system")

    details = store.room_details(ids[0])

    assert details.room_id == room_id
    assert details.current_occupancy == 3
    assert details.registrant_name == "Male 0"
    assert sorted(details.roommates) == ["Male 1", "Male 2"]


def test_concurrent_commits_never_exceed_capacity(tmp_path):
    repository = _build_repository(tmp_path, "race_capacity.db")
    store = AllocationStore(repository)
    room_id = repository.create_room("M1", Gender.MALE, 3)
    ids = _registrants(repository, 10)
    barrier = threading.Barrier(len(ids))
    outcomes: list[str] = []
    lock = threading.Lock()

    def worker(registrant_id: int) -> None:
        barrier.wait()
        try:
            store.commit(registrant_id, room_id, "system")
            result = "ok"
        except ConcurrencyError:
            result = "lost"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=worker, args=(item,)) for item in ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("ok") == 3
    assert outcomes.count("lost") == 7
    assert store.occupancy(room_id) == 3


def test_concurrent_commits_keep_one_allocation_per_registrant(tmp_path):
    repository = _build_repository(tmp_path, "race_unique.db")
    store = AllocationStore(repository)
    rooms = [repository.create_room(f"M{index}", Gender.MALE, 4) for index in range(6)]
    (registrant_id,) = _registrants(repository, 1)
    barrier = threading.Barrier(len(rooms))

    def worker(room_id: int) -> None:
        barrier.wait()
        try:
            store.commit(registrant_id, room_id, "system")
        except ConcurrencyError:
            pass

    threads = [threading.Thread(target=worker, args=(room,)) for room in rooms]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert store.count_allocations() == 1
    assert store.get(registrant_id) is not None
