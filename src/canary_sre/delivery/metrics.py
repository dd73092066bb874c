"""Metrics input: parsing analytics payloads into snapshots."""

from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from canary_sre.delivery.assignment import Variant
from canary_sre.delivery.evaluator import MetricsSnapshot

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

logger = logging.getLogger(__name__)


def parse_snapshot(data: Any) -> MetricsSnapshot | None:
    """Validate one variant's metrics; malformed input yields None."""
    if not isinstance(data, dict) or data.get("error"):
        return None
    try:
        return MetricsSnapshot.model_validate(data)
    except ValidationError as exc:
        logger.warning("Ignoring malformed metrics snapshot: %s", exc.errors()[0]["msg"])
        return None


def parse_metrics(data: Any) -> dict[Variant, MetricsSnapshot | None]:
    """Split a ``{"stable": {...}, "canary": {...}}`` payload by variant."""
    if not isinstance(data, dict):
        return {v: None for v in Variant}
    return {v: parse_snapshot(data.get(v.value)) for v in Variant}


def load_metrics(path: str | Path) -> dict[Variant, MetricsSnapshot | None]:
    """Read a metrics JSON file.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If the file is not valid JSON.
    """
    path = Path(path)
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    return parse_metrics(data)


def gather_snapshots(
    sources: Mapping[Variant, Callable[[], MetricsSnapshot | None]],
    timeout: float | None = None,
) -> dict[Variant, MetricsSnapshot | None]:
    """Fetch every variant's snapshot concurrently.

    The fetches are read-only and independent.  ``timeout`` bounds the whole
    call, not each fetch: a fetcher that raises or is still running at the
    deadline contributes None and is abandoned.
    """
    results: dict[Variant, MetricsSnapshot | None] = {}
    pool = ThreadPoolExecutor(max_workers=max(len(sources), 1))
    try:
        futures = {variant: pool.submit(fetch) for variant, fetch in sources.items()}
        done, _ = wait(futures.values(), timeout=timeout)
        for variant, future in futures.items():
            if future not in done:
                logger.warning("Fetching %s metrics timed out after %ss", variant.value, timeout)
                results[variant] = None
                continue
            try:
                results[variant] = future.result()
            except Exception as exc:
                logger.warning("Fetching %s metrics failed: %s", variant.value, exc)
                results[variant] = None
    finally:
        pool.shutdown(wait=False, cancel_futures=True)
    return results
