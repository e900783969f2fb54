#!/usr/bin/env python3
"""Validate local accommodation engine environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from importlib.metadata import version
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from housing.repository.allocation_store import AllocationStore
from housing.repository.data_repository import DataRepository
from housing.services.allocation_service import AccommodationAllocationService
from housing.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="housing-env-")

    # CHECK 1: Python version >= 3.10
    if sys.version_info >= (3, 10):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.10",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: Required packages importable with versions
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
    ]
    import_errors: list[str] = []
    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            version(dist_name)
        except Exception as exc:  # pragma: no cover - runtime guard
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    try:
        validation_settings = replace(
            get_settings(),
            database_path=Path(temp_dir) / "housing_validation.db",
        )
        repository = DataRepository(validation_settings)

        # CHECK 3: Database initialization
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except Exception as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4: Demo seeding
        try:
            repository.seed_demo_data()
            rooms = repository.list_rooms()
            registrants = repository.count_registrants()
            if len(rooms) != validation_settings.demo_room_count:
                raise RuntimeError(
                    f"expected {validation_settings.demo_room_count} rooms, got {len(rooms)}"
                )
            if registrants != validation_settings.demo_registrant_count:
                raise RuntimeError(
                    f"expected {validation_settings.demo_registrant_count} registrants, "
                    f"got {registrants}"
                )
            ok, line = _print_result(
                "Demo seeding",
                True,
                f": {len(rooms)} rooms, {registrants} registrants",
            )
        except Exception as exc:
            ok, line = _print_result("Demo seeding", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: Age-based allocation run stays within capacity
        try:
            store = AllocationStore(repository)
            service = AccommodationAllocationService(
                repository=repository,
                settings=validation_settings,
                store=store,
            )
            result = service.allocate_by_age(performed_by="validator")
            for availability in store.list_room_availability(active_only=False):
                if availability.occupancy > availability.room.capacity:
                    raise RuntimeError(f"room {availability.room.name} over capacity")
            ok, line = _print_result(
                "Age allocation run",
                True,
                f": allocated={result.total_allocated} unallocated={len(result.unallocated)}",
            )
        except Exception as exc:
            ok, line = _print_result("Age allocation run", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Accommodation Engine Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
