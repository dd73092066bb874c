"""Client variant assignment.

A client is assigned to ``stable`` or ``canary`` once, by a weighted random
draw against the current rollout percentage, and keeps that assignment on
every later visit even when the global percentage moves.  Operators (or a
variant switcher UI) may force a variant, and an optional custom hook can
decide the variant from the client's identity.
"""

from __future__ import annotations

import logging
import random
import time
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = "canary_assignment"


class Variant(str, Enum):
    """Experience a client receives."""

    STABLE = "stable"
    CANARY = "canary"


class Assignment(BaseModel):
    """A client's persisted variant assignment."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    variant: Variant
    assigned_at: float = Field(default_factory=time.time, alias="assignedAt")
    percentage_at_assignment: float = Field(
        default=0.0, ge=0.0, le=100.0, alias="percentageAtAssignment"
    )
    forced: bool = False

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, raw: str) -> Assignment:
        return cls.model_validate_json(raw)


def _coerce_variant(verdict: Any) -> Variant | None:
    """Map a custom hook verdict to a Variant, or None when it is not one."""
    if isinstance(verdict, Variant):
        return verdict
    if isinstance(verdict, str):
        try:
            return Variant(verdict)
        except ValueError:
            return None
    return None


def _check_percentage(percentage: float) -> None:
    if not 0.0 <= percentage <= 100.0:
        raise ValueError(f"Rollout percentage must be between 0 and 100, got {percentage}")


class VariantAssigner:
    """Draws and keeps client assignments.

    Args:
        rng: Source of randomness; anything with a ``random()`` method
            returning a float in ``[0, 1)``.
        clock: Returns the current time in epoch seconds.
        custom_assign: Optional hook ``identity -> "stable" | "canary" | None``.
            A non-null verdict overrides the random draw.  Exceptions raised
            by the hook are logged and treated as no verdict.
        max_age_seconds: When set, unforced assignments older than this are
            redrawn.
    """

    def __init__(
        self,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
        custom_assign: Callable[[Mapping[str, Any]], Any] | None = None,
        max_age_seconds: float | None = None,
    ) -> None:
        self._rng = rng or random.Random()
        self._clock = clock
        self._custom_assign = custom_assign
        self.max_age_seconds = max_age_seconds

    def set_custom_assignment(
        self, assign_fn: Callable[[Mapping[str, Any]], Any] | None
    ) -> None:
        if assign_fn is not None and not callable(assign_fn):
            raise TypeError("Custom assignment must be callable")
        self._custom_assign = assign_fn

    def is_expired(self, assignment: Assignment) -> bool:
        if assignment.forced or self.max_age_seconds is None:
            return False
        return self._clock() - assignment.assigned_at > self.max_age_seconds

    def assign(
        self,
        percentage: float,
        existing: Assignment | None = None,
        identity: Mapping[str, Any] | None = None,
    ) -> Assignment:
        """Return the client's assignment, drawing a new one if needed.

        An existing, unexpired assignment is returned unchanged, so returning
        clients keep their variant when the rollout percentage changes.

        Raises:
            ValueError: If ``percentage`` is outside ``[0, 100]``.
        """
        _check_percentage(percentage)
        if existing is not None and not self.is_expired(existing):
            return existing

        variant = self._custom_verdict(identity or {})
        if variant is None:
            variant = Variant.CANARY if self._rng.random() * 100 < percentage else Variant.STABLE

        return Assignment(
            variant=variant,
            assigned_at=self._clock(),
            percentage_at_assignment=percentage,
        )

    def identify(self, existing: Assignment, identity: Mapping[str, Any]) -> Assignment:
        """Re-run the custom hook after the client's identity changed.

        Forced assignments are left alone.  A different, valid verdict switches
        the variant; the original assignment time is kept.
        """
        if existing.forced or self._custom_assign is None:
            return existing
        variant = self._custom_verdict(identity)
        if variant is None or variant == existing.variant:
            return existing
        logger.info(
            "Custom assignment moved client from %s to %s",
            existing.variant.value,
            variant.value,
        )
        return existing.model_copy(update={"variant": variant})

    def force(self, variant: Variant | str, percentage: float = 0.0) -> Assignment:
        """Create an operator-forced assignment."""
        _check_percentage(percentage)
        return Assignment(
            variant=Variant(variant),
            assigned_at=self._clock(),
            percentage_at_assignment=percentage,
            forced=True,
        )

    def _custom_verdict(self, identity: Mapping[str, Any]) -> Variant | None:
        if self._custom_assign is None:
            return None
        try:
            verdict = self._custom_assign(identity)
        except Exception as exc:
            logger.warning("Custom assignment hook failed, falling back to draw: %s", exc)
            return None
        return _coerce_variant(verdict)


class AssignmentStorage(Protocol):
    """Synchronous client-local key-value store."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStorage:
    """Dict-backed storage, one per client."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class ClientAssignments:
    """One client's assignment, read from and written to its storage.

    The record is idempotent once created: concurrent writers re-read the key
    before writing and return whatever is already there.
    """

    def __init__(
        self,
        assigner: VariantAssigner,
        storage: AssignmentStorage,
        storage_key: str = DEFAULT_STORAGE_KEY,
    ) -> None:
        self.assigner = assigner
        self.storage = storage
        self.storage_key = storage_key
        self.identity: dict[str, Any] = {}

    def load(self) -> Assignment | None:
        """Read the stored assignment; corrupted records are discarded."""
        raw = self.storage.get(self.storage_key)
        if raw is None:
            return None
        try:
            return Assignment.from_json(raw)
        except (ValidationError, ValueError, TypeError) as exc:
            logger.warning("Discarding corrupted assignment under %r: %s", self.storage_key, exc)
            self.storage.delete(self.storage_key)
            return None

    def current(self, percentage: float) -> Assignment:
        """Return the client's assignment, creating and persisting it if absent."""
        existing = self.load()
        assignment = self.assigner.assign(percentage, existing, self.identity)
        if assignment is existing:
            return assignment

        # First writer wins: another tab may have stored a record meanwhile.
        if existing is None:
            raced = self.load()
            if raced is not None and not self.assigner.is_expired(raced):
                return raced
        self._save(assignment)
        return assignment

    def identify(self, identity: Mapping[str, Any], percentage: float) -> Assignment:
        """Merge identity properties and re-evaluate the custom hook."""
        self.identity.update(identity)
        current = self.current(percentage)
        updated = self.assigner.identify(current, self.identity)
        if updated is not current:
            self._save(updated)
        return updated

    def switch(self, variant: Variant | str, percentage: float = 0.0) -> Assignment:
        """Force a variant for this client."""
        assignment = self.assigner.force(variant, percentage)
        self._save(assignment)
        logger.info("Client forced to %s", assignment.variant.value)
        return assignment

    def reset(self) -> None:
        self.storage.delete(self.storage_key)

    def export(self) -> dict[str, Any]:
        assignment = self.load()
        return {
            "assignment": assignment.model_dump(mode="json", by_alias=True) if assignment else None,
            "identity": dict(self.identity),
            "storage": {self.storage_key: self.storage.get(self.storage_key)},
        }

    def _save(self, assignment: Assignment) -> None:
        self.storage.set(self.storage_key, assignment.to_json())
