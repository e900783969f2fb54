"""Persisted age-gap policy used as the default for age-based runs."""

from __future__ import annotations

from typing import Optional

from housing.domain.constraints import AllocationPolicy, validate_allocation_policy
from housing.domain.errors import AllocationValidationError
from housing.repository.data_repository import AGE_GAP_CONFIG_KEY, DataRepository
from housing.utils.config import Settings, get_settings
from housing.utils.logger import get_logger


logger = get_logger(__name__)


class AllocationPolicyService:
    """Reads and writes ``accommodation_max_age_gap``.

    Callers read the policy once and pass the value into the allocator;
    changing it never touches allocations already committed.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def validate(self, policy: AllocationPolicy) -> None:
        try:
            validate_allocation_policy(
                policy,
                min_gap=self._settings.age_gap_min,
                max_gap=self._settings.age_gap_max,
            )
        except ValueError as exc:
            raise AllocationValidationError(str(exc)) from exc

    def get_policy(self) -> AllocationPolicy:
        raw_value = self._repository.get_config_value(AGE_GAP_CONFIG_KEY)
        if raw_value is None:
            return AllocationPolicy(max_age_gap=self._settings.default_max_age_gap)
        try:
            return AllocationPolicy(max_age_gap=int(raw_value))
        except ValueError:
            logger.warning(
                "Stored age gap is not an integer; using default | value=%r | default=%s",
                raw_value,
                self._settings.default_max_age_gap,
            )
            return AllocationPolicy(max_age_gap=self._settings.default_max_age_gap)

    def set_policy(self, max_age_gap: int) -> AllocationPolicy:
        policy = AllocationPolicy(max_age_gap=max_age_gap)
        self.validate(policy)
        self._repository.set_config_value(
            AGE_GAP_CONFIG_KEY,
            str(policy.max_age_gap),
            "Maximum age gap allowed in accommodation rooms",
        )
        logger.info("Age gap policy updated | max_age_gap=%s", policy.max_age_gap)
        return policy
