"""Exception taxonomy shared by the allocation and verification services."""

from __future__ import annotations

from typing import Any, Optional


class AccommodationError(Exception):
    """Base class for engine failures."""


class AllocationValidationError(AccommodationError):
    """Raised when request inputs are out of range or missing."""


class NotFoundError(AccommodationError):
    """Raised when a registrant or room id does not exist."""


class RegistrantNotFoundError(NotFoundError):
    def __init__(self, registrant_id: int) -> None:
        super().__init__(f"Registrant {registrant_id} not found")
        self.registrant_id = registrant_id


class RoomNotFoundError(NotFoundError):
    def __init__(self, room_id: int) -> None:
        super().__init__(f"Room {room_id} not found")
        self.room_id = room_id


class AllocationConflictError(AccommodationError):
    """Business-rule rejection carrying a structured code for the caller."""

    ALREADY_ALLOCATED = "ALREADY_ALLOCATED"
    NOT_VERIFIED = "NOT_VERIFIED"
    ROOM_INACTIVE = "ROOM_INACTIVE"
    GENDER_MISMATCH = "GENDER_MISMATCH"
    ROOM_FULL = "ROOM_FULL"
    AGE_OUT_OF_RANGE = "AGE_OUT_OF_RANGE"

    def __init__(
        self,
        code: str,
        message: str,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error_code": self.code, "message": self.message, **self.context}


class ConcurrencyError(AccommodationError):
    """Raised when a commit-time re-check fails because another writer won.

    ``taken_registrant_ids`` lists registrants that were already allocated at
    commit time and ``unverified_registrant_ids`` those unverified since the
    pool was read. Both are empty when the room ran out of capacity instead.
    """

    def __init__(
        self,
        message: str,
        *,
        room_id: int,
        taken_registrant_ids: tuple[int, ...] = (),
        unverified_registrant_ids: tuple[int, ...] = (),
    ) -> None:
        super().__init__(message)
        self.room_id = room_id
        self.taken_registrant_ids = taken_registrant_ids
        self.unverified_registrant_ids = unverified_registrant_ids

    @property
    def ineligible_registrant_ids(self) -> tuple[int, ...]:
        return self.taken_registrant_ids + self.unverified_registrant_ids

    @property
    def room_exhausted(self) -> bool:
        return not self.ineligible_registrant_ids


class VerificationStateError(AccommodationError):
    ALREADY_VERIFIED = "ALREADY_VERIFIED"
    ALREADY_UNVERIFIED = "ALREADY_UNVERIFIED"

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"error_code": self.code, "message": self.message}
