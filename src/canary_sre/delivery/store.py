"""Persistence of the rollout config document and its history.

The rollout config lives in a single JSON document shared by every
automation run.  Writes are optimistic: each read returns a revision (the
SHA-256 of the document bytes) and a write only succeeds if the file still
has that revision.  The revision check and the replace run under an
exclusive lock file next to the document, so separate processes cannot
interleave them.  :meth:`RolloutConfigStore.update` retries the whole
read-modify-write a bounded number of times.
"""

from __future__ import annotations

import contextlib
import fcntl
import hashlib
import json
import logging
import os
import tempfile
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from canary_sre.delivery.controller import RolloutConfig, RolloutStatus
from canary_sre.delivery.evaluator import EvaluationResult

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

UPDATE_SOURCES = ("automated", "manual")


class ConcurrentUpdateError(RuntimeError):
    """The document changed between read and write."""


def to_iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def from_iso(value: Any) -> float | None:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return datetime.fromisoformat(str(value).replace("Z", "+00:00")).timestamp()


def config_from_document(data: Any, defaults: RolloutConfig) -> RolloutConfig:
    """Build a RolloutConfig from a persisted document.

    Missing fields fall back to ``defaults``.

    Raises:
        ValueError: If the document is not an object or holds invalid values.
    """
    if not isinstance(data, dict):
        raise ValueError("Rollout document must be a JSON object")
    dist = data.get("distribution") or {}
    if not isinstance(dist, dict):
        raise ValueError("'distribution' must be a JSON object")

    last = dist.get("lastEvaluationResult")
    return RolloutConfig(
        current_percentage=dist.get("canaryPercentage", defaults.current_percentage),
        max_percentage=dist.get("maxPercentage", defaults.max_percentage),
        safety_threshold=dist.get("safetyThreshold", defaults.safety_threshold),
        increment_step=dist.get("incrementStep", defaults.increment_step),
        rollout_period_days=dist.get("rolloutPeriod", defaults.rollout_period_days),
        status=RolloutStatus(dist.get("status", defaults.status.value)),
        last_evaluation=EvaluationResult.from_document(last) if isinstance(last, dict) else None,
        initial_percentage=dist.get("initialPercentage", defaults.initial_percentage),
        gradual_rollout=dist.get("gradualRollout", defaults.gradual_rollout),
        rollout_start=from_iso(dist.get("initialDate")) or defaults.rollout_start,
        canary_version=data.get("canaryVersion", defaults.canary_version),
    )


def config_to_document(
    config: RolloutConfig,
    source: str = "automated",
    now: float | None = None,
    base: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Render ``config`` as the persisted document.

    Keys of ``base`` the config does not own are carried over unchanged.
    """
    if source not in UPDATE_SOURCES:
        raise ValueError(f"updateSource must be one of {UPDATE_SOURCES}, got {source!r}")
    doc: dict[str, Any] = dict(base or {})
    dist: dict[str, Any] = dict(doc.get("distribution") or {})
    dist.update(
        {
            "canaryPercentage": config.current_percentage,
            "initialPercentage": config.start_percentage,
            "maxPercentage": config.max_percentage,
            "safetyThreshold": config.safety_threshold,
            "incrementStep": config.increment_step,
            "gradualRollout": config.gradual_rollout,
            "rolloutPeriod": config.rollout_period_days,
            "status": config.status.value,
        }
    )
    if config.rollout_start is not None:
        dist["initialDate"] = to_iso(config.rollout_start)
    if config.last_evaluation is not None:
        dist["lastEvaluationDate"] = to_iso(config.last_evaluation.timestamp)
        dist["lastEvaluationResult"] = config.last_evaluation.to_document()

    doc["canaryVersion"] = config.canary_version
    doc["distribution"] = dist
    doc["lastUpdated"] = to_iso(time.time() if now is None else now)
    doc["updateSource"] = source
    return doc


def _revision(raw: bytes) -> str:
    return hashlib.sha256(raw).hexdigest()


def _atomic_write(path: Path, payload: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


@contextlib.contextmanager
def _file_lock(path: Path):
    """Exclusive lock shared by every process writing ``path``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    lock_path = path.with_name(f".{path.name}.lock")
    with open(lock_path, "w") as f:
        fcntl.flock(f, fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(f, fcntl.LOCK_UN)


class RolloutConfigStore:
    """Reads and writes the rollout config document at ``path``.

    Args:
        path: Location of the JSON document.
        defaults: Config used when the document is absent or corrupted.
        max_retries: Extra attempts :meth:`update` makes after a conflict.
        clock: Returns the current time in epoch seconds.
    """

    def __init__(
        self,
        path: str | Path,
        defaults: RolloutConfig | None = None,
        max_retries: int = 3,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.path = Path(path)
        self.defaults = defaults or RolloutConfig()
        self.max_retries = max_retries
        self._clock = clock
        self._lock = threading.Lock()

    def revision(self) -> str | None:
        """Revision of the document on disk, None when it does not exist."""
        try:
            return _revision(self.path.read_bytes())
        except FileNotFoundError:
            return None

    def read(self) -> tuple[RolloutConfig, dict[str, Any], str | None]:
        """Return ``(config, raw_document, revision)``.

        A corrupted document is replaced by the defaults and an empty raw
        document; its revision is still returned so a write can repair it.
        """
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return self.defaults, {}, None

        revision = _revision(raw)
        try:
            data = json.loads(raw.decode("utf-8"))
            return config_from_document(data, self.defaults), data, revision
        except (ValueError, ValidationError, TypeError) as exc:
            logger.warning("Rollout config %s is corrupted, using defaults: %s", self.path, exc)
            return self.defaults, {}, revision

    def load(self) -> RolloutConfig:
        return self.read()[0]

    def write(
        self,
        config: RolloutConfig,
        expected_revision: str | None,
        source: str = "automated",
        base: dict[str, Any] | None = None,
    ) -> str:
        """Write ``config`` if the document is still at ``expected_revision``.

        Returns:
            The new revision.

        Raises:
            ConcurrentUpdateError: If the document changed since it was read.
        """
        payload = json.dumps(
            config_to_document(config, source=source, now=self._clock(), base=base), indent=2
        ) + "\n"
        with self._lock, _file_lock(self.path):
            current = self.revision()
            if current != expected_revision:
                raise ConcurrentUpdateError(
                    f"{self.path} changed (expected {expected_revision}, found {current})"
                )
            _atomic_write(self.path, payload)
        return _revision(payload.encode("utf-8"))

    def update(
        self,
        mutate: Callable[[RolloutConfig], RolloutConfig],
        source: str = "automated",
    ) -> tuple[RolloutConfig, RolloutConfig]:
        """Read, apply ``mutate`` and write back, retrying on conflicts.

        ``mutate`` must be pure; it may be called once per attempt.

        Returns:
            ``(before, after)`` of the attempt that was written.

        Raises:
            ConcurrentUpdateError: If every attempt conflicted.
        """
        last_error: ConcurrentUpdateError | None = None
        for attempt in range(self.max_retries + 1):
            before, raw, revision = self.read()
            after = mutate(before)
            try:
                self.write(after, revision, source=source, base=raw)
            except ConcurrentUpdateError as exc:
                last_error = exc
                logger.info("Conflict writing %s (attempt %d), retrying", self.path, attempt + 1)
                continue
            return before, after
        raise ConcurrentUpdateError(
            f"Gave up updating {self.path} after {self.max_retries + 1} attempts"
        ) from last_error


class RolloutHistory:
    """Append-only percentage history stored as a JSON list."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def entries(self) -> list[dict[str, Any]]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        except ValueError as exc:
            logger.warning("History file %s is corrupted, starting over: %s", self.path, exc)
            return []
        if not isinstance(data, list):
            logger.warning("History file %s is not a list, starting over", self.path)
            return []
        return data

    def record(
        self,
        config: RolloutConfig,
        source: str = "automated",
        timestamp: float | None = None,
    ) -> dict[str, Any]:
        """Append the config's percentage; identical consecutive entries are skipped."""
        entry = {
            "timestamp": to_iso(time.time() if timestamp is None else timestamp),
            "percentage": config.current_percentage,
            "status": config.status.value,
            "source": source,
            "version": config.canary_version,
        }
        history = self.entries()
        if history:
            last = history[-1]
            if (last.get("timestamp"), last.get("percentage")) == (
                entry["timestamp"],
                entry["percentage"],
            ):
                return last
        history.append(entry)
        _atomic_write(self.path, json.dumps(history, indent=2) + "\n")
        return entry
