"""Verification state machine for registrants (Unverified <-> Verified)."""

from __future__ import annotations

import logging
from typing import Optional, Union

from housing.domain.errors import RegistrantNotFoundError, VerificationStateError
from housing.domain.models import (
    Registrant,
    UnverifyConflict,
    UnverifyEligibility,
    UnverifyOutcome,
)
from housing.repository.allocation_store import AllocationStore
from housing.repository.data_repository import DataRepository
from housing.utils.config import Settings, get_settings
from housing.utils.logger import get_logger, log_event
from housing.utils.time_utils import utc_now_iso


logger = get_logger(__name__)


class VerificationGuard:
    """Flips verification state without orphaning room allocations.

    A registrant holding a bed is only unverified when the caller forces it;
    the allocation removal and the state flip then share one transaction.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        store: Optional[AllocationStore] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._store = store or AllocationStore(self._repository)

    def verify(self, registrant_id: int, *, performed_by: str) -> Registrant:
        verified_at = utc_now_iso()
        with self._repository.transaction() as conn:
            registrant = self._repository.get_registrant(registrant_id, conn=conn)
            if registrant is None:
                raise RegistrantNotFoundError(registrant_id)
            if not self._repository.mark_verified(
                registrant_id,
                verified_by=performed_by,
                verified_at=verified_at,
                conn=conn,
            ):
                raise VerificationStateError(
                    VerificationStateError.ALREADY_VERIFIED,
                    f"{registrant.full_name} is already verified",
                )
            updated = self._repository.get_registrant(registrant_id, conn=conn)

        logger.info("Registrant verified | registrant_id=%s | by=%s", registrant_id, performed_by)
        return updated

    def unverify(
        self,
        registrant_id: int,
        *,
        force_unverify: bool = False,
        performed_by: str,
    ) -> Union[UnverifyOutcome, UnverifyConflict]:
        """Return the outcome, or a conflict when a bed is held and not forced."""
        unverified_at = utc_now_iso()
        with self._repository.transaction() as conn:
            registrant = self._repository.get_registrant(registrant_id, conn=conn)
            if registrant is None:
                raise RegistrantNotFoundError(registrant_id)
            if not registrant.is_verified:
                raise VerificationStateError(
                    VerificationStateError.ALREADY_UNVERIFIED,
                    f"{registrant.full_name} is not verified",
                )

            details = self._store.room_details(registrant_id, conn=conn)
            if details is not None and not force_unverify:
                logger.info(
                    "Unverify blocked by room allocation | registrant_id=%s | room_id=%s",
                    registrant_id,
                    details.room_id,
                )
                return UnverifyConflict(registrant_id=registrant_id, room_details=details)

            room_removed = False
            if details is not None:
                room_removed = self._store.remove(registrant_id, conn=conn)
            self._repository.mark_unverified(
                registrant_id,
                unverified_by=performed_by,
                unverified_at=unverified_at,
                conn=conn,
            )

        log_event(
            logger,
            logging.INFO,
            "Registrant unverified",
            registrant_id=registrant_id,
            room_removed=room_removed,
            by=performed_by,
        )
        return UnverifyOutcome(
            registrant_id=registrant_id,
            full_name=registrant.full_name,
            room_removed=room_removed,
            removed_room_id=details.room_id if room_removed and details else None,
            unverified_at=unverified_at,
            unverified_by=performed_by,
        )

    def unverify_eligibility(self, registrant_id: int) -> UnverifyEligibility:
        registrant = self._repository.get_registrant(registrant_id)
        if registrant is None:
            raise RegistrantNotFoundError(registrant_id)
        details = self._store.room_details(registrant_id)
        return UnverifyEligibility(
            registrant_id=registrant_id,
            can_unverify=registrant.is_verified and details is None,
            has_room_allocation=details is not None,
            room_details=details,
        )
