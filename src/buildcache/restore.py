#!/usr/bin/env python3
"""
Restore Classifier

Submits restore keys to the backend in batches and classifies the result:

| matched            | outcome | armed for save          | cleanup |
|--------------------|---------|-------------------------|---------|
| nothing            | none    | success + failure       | no      |
| keys[0] (success)  | full    | nothing                 | no      |
| keys[1] (failure)  | partial | success only            | yes     |
| any older key      | partial | success + failure       | yes     |

A validation error from the backend is fatal. Any other backend error is
logged as a warning and treated as a miss.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

from .backend import CacheBackend, CacheValidationError, MAX_KEYS_PER_RESTORE

logger = logging.getLogger(__name__)


class RestoreOutcome(Enum):
    NOT_ATTEMPTED = "not_attempted"
    FULL = "full"
    PARTIAL = "partial"
    NONE = "none"


@dataclass
class RestoreResult:
    """Outcome of one restore attempt plus what the save phase should do."""
    outcome: RestoreOutcome
    matched_key: Optional[str] = None
    success_key_to_save: Optional[str] = None
    failure_key_to_save: Optional[str] = None
    cleanup_required: bool = False

    @property
    def save_pending(self) -> bool:
        return self.success_key_to_save is not None


def is_exact_key_match(key: str, cache_key: Optional[str]) -> bool:
    """Case-insensitive equality, like the hosted cache service."""
    return bool(cache_key) and key.casefold() == cache_key.casefold()


def classify(keys: Sequence[str], matched_key: Optional[str]) -> RestoreResult:
    if len(keys) < 2:
        raise ValueError(f"expected success and failure keys, got {list(keys)}")

    success_key, failure_key = keys[0], keys[1]

    if not matched_key:
        return RestoreResult(
            outcome=RestoreOutcome.NONE,
            success_key_to_save=success_key,
            failure_key_to_save=failure_key,
        )

    if is_exact_key_match(success_key, matched_key):
        return RestoreResult(outcome=RestoreOutcome.FULL, matched_key=matched_key)

    if is_exact_key_match(failure_key, matched_key):
        # do not save another cache if the build fails again
        return RestoreResult(
            outcome=RestoreOutcome.PARTIAL,
            matched_key=matched_key,
            success_key_to_save=success_key,
            cleanup_required=True,
        )

    return RestoreResult(
        outcome=RestoreOutcome.PARTIAL,
        matched_key=matched_key,
        success_key_to_save=success_key,
        failure_key_to_save=failure_key,
        cleanup_required=True,
    )


def batches(keys: Sequence[str], size: int = MAX_KEYS_PER_RESTORE) -> List[List[str]]:
    return [list(keys[offset:offset + size]) for offset in range(0, len(keys), size)]


def restore_in_batches(
    backend: CacheBackend,
    paths: Sequence[str],
    keys: Sequence[str],
    cross_os: bool = False,
    batch_size: int = MAX_KEYS_PER_RESTORE,
) -> Optional[str]:
    """Try each batch in order; the first hit wins."""
    for batch in batches(keys, batch_size):
        primary, fallbacks = batch[0], batch[1:]
        matched = backend.restore(paths, primary, fallbacks, cross_os)
        if matched:
            return matched
    return None


class RestoreClassifier:
    """Runs the restore attempt once and reports a terminal outcome."""

    def __init__(self, backend: CacheBackend, cache_paths: Sequence[str], cross_os: bool = False):
        self.backend = backend
        self.cache_paths = list(cache_paths)
        self.cross_os = cross_os

    def restore(self, keys: Sequence[str]) -> RestoreResult:
        try:
            matched = restore_in_batches(self.backend, self.cache_paths, keys, self.cross_os)
        except CacheValidationError:
            raise
        except Exception as e:  # noqa: BLE001
            logger.warning(str(e))
            matched = None

        result = classify(keys, matched)
        self._log(result)
        return result

    @staticmethod
    def _log(result: RestoreResult) -> None:
        if result.outcome is RestoreOutcome.FULL:
            logger.info("Cache is up to date.")
            return

        if result.outcome is RestoreOutcome.NONE:
            logger.info("No cache found for current or previous build files. Expect to save a new cache.")
        elif result.failure_key_to_save is None:
            logger.info(
                "Cache was left over after a failed build, "
                "expect to clean and save a new cache if build is successful."
            )
        else:
            logger.info("Cache is outdated, expect to save a new cache.")

        if result.failure_key_to_save:
            logger.info(
                f"If build is successful, save to key {result.success_key_to_save}. "
                f"If build fails, save to {result.failure_key_to_save}"
            )
        else:
            logger.info(f"If build is successful, save to key {result.success_key_to_save}.")
