from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date

from housing.domain.models import Gender
from housing.repository.data_repository import DataRepository
from housing.services.allocation_service import AccommodationAllocationService
from housing.utils.config import get_settings
from housing.utils.logger import configure_logging, format_event, get_logger, log_event


def test_format_event_renders_enums_and_sequences():
    line = format_event("Allocations committed", room_id=3, registrants=[4, 5], gender=Gender.MALE)

    assert line == "Allocations committed | room_id=3 | registrants=4,5 | gender=Male"


def test_log_event_respects_logger_level(caplog):
    logger = get_logger("housing.tests.events")

    with caplog.at_level(logging.INFO, logger="housing.tests.events"):
        log_event(logger, logging.DEBUG, "Hidden", value=1)
        log_event(logger, logging.INFO, "Run done", allocated=2, by="alice")

    assert [record.getMessage() for record in caplog.records] == [
        "Run done | allocated=2 | by=alice"
    ]


def test_configure_logging_adjusts_level_after_first_call():
    root = logging.getLogger()
    previous = root.level
    try:
        configure_logging()
        configure_logging("warning")
        assert root.level == logging.WARNING
    finally:
        root.setLevel(previous)


def test_age_run_summary_is_logged_as_event(tmp_path, caplog):
    settings = replace(get_settings(), database_path=tmp_path / "events.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.create_room("M-2", Gender.MALE, 2)
    repository.create_registrant("Male 16", Gender.MALE, date(2010, 1, 1), is_verified=True)
    service = AccommodationAllocationService(repository=repository, settings=settings)

    with caplog.at_level(logging.INFO, logger="housing.services.allocation_service"):
        service.allocate_by_age(performed_by="alice", gender=Gender.MALE, age_range_years=5)

    messages = [record.getMessage() for record in caplog.records]
    expected = "Age allocation completed | gender=Male | allocated=1 | unallocated=0 | by=alice"
    assert expected in messages
