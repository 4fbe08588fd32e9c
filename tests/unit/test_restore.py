#!/usr/bin/env python3
"""
Unit tests for the Restore Classifier
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock, call

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from buildcache.backend import CacheBackendError, CacheValidationError, ReserveCacheError
from buildcache.restore import (
    RestoreClassifier, RestoreOutcome, batches, classify, restore_in_batches,
)

KEYS = [
    "p-c1-success", "p-c1-failure",
    "p-c2-success", "p-c2-failure",
    "p-c3-success", "p-c3-failure",
]


# ── Classification ───────────────────────────────────────────────

class TestClassify:

    def test_no_match_arms_both_keys(self):
        result = classify(KEYS, None)
        assert result.outcome is RestoreOutcome.NONE
        assert result.matched_key is None
        assert result.success_key_to_save == "p-c1-success"
        assert result.failure_key_to_save == "p-c1-failure"
        assert result.cleanup_required is False

    def test_primary_match_is_full(self):
        result = classify(KEYS, "p-c1-success")
        assert result.outcome is RestoreOutcome.FULL
        assert result.success_key_to_save is None
        assert result.failure_key_to_save is None
        assert result.cleanup_required is False
        assert result.save_pending is False

    def test_failure_key_match_arms_success_only(self):
        result = classify(KEYS, "p-c1-failure")
        assert result.outcome is RestoreOutcome.PARTIAL
        assert result.success_key_to_save == "p-c1-success"
        assert result.failure_key_to_save is None
        assert result.cleanup_required is True

    @pytest.mark.parametrize("matched", KEYS[2:])
    def test_older_key_match_arms_both(self, matched):
        result = classify(KEYS, matched)
        assert result.outcome is RestoreOutcome.PARTIAL
        assert result.matched_key == matched
        assert result.success_key_to_save == "p-c1-success"
        assert result.failure_key_to_save == "p-c1-failure"
        assert result.cleanup_required is True

    def test_match_ignores_case(self):
        assert classify(KEYS, "P-C1-SUCCESS").outcome is RestoreOutcome.FULL

    def test_needs_a_pair(self):
        with pytest.raises(ValueError):
            classify(["only-one"], None)


# ── Batching ─────────────────────────────────────────────────────

class TestBatching:

    def test_batches_of_ten(self):
        keys = [f"k{i}" for i in range(25)]
        sizes = [len(b) for b in batches(keys)]
        assert sizes == [10, 10, 5]

    def test_first_batch_primary_is_exact_key(self):
        backend = MagicMock()
        backend.restore.return_value = None
        keys = [f"k{i}" for i in range(12)]

        restore_in_batches(backend, ["/repo"], keys)

        assert backend.restore.call_args_list == [
            call(["/repo"], "k0", [f"k{i}" for i in range(1, 10)], False),
            call(["/repo"], "k10", ["k11"], False),
        ]

    def test_first_hit_short_circuits(self):
        backend = MagicMock()
        backend.restore.side_effect = [None, "k12", "k25"]
        keys = [f"k{i}" for i in range(30)]

        assert restore_in_batches(backend, ["/repo"], keys) == "k12"
        assert backend.restore.call_count == 2

    def test_miss_everywhere(self):
        backend = MagicMock()
        backend.restore.return_value = None
        assert restore_in_batches(backend, ["/repo"], KEYS) is None


# ── Classifier error handling ────────────────────────────────────

class TestRestoreClassifier:

    def test_hit_on_older_key(self):
        backend = MagicMock()
        backend.restore.return_value = "p-c2-failure"

        result = RestoreClassifier(backend, ["/repo"], cross_os=True).restore(KEYS)

        assert result.outcome is RestoreOutcome.PARTIAL
        backend.restore.assert_called_once_with(["/repo"], KEYS[0], KEYS[1:], True)

    def test_validation_error_is_fatal(self):
        backend = MagicMock()
        backend.restore.side_effect = CacheValidationError("bad key")

        with pytest.raises(CacheValidationError):
            RestoreClassifier(backend, ["/repo"]).restore(KEYS)

    @pytest.mark.parametrize("error", [
        CacheBackendError("service unavailable"),
        ReserveCacheError("taken"),
        OSError("disk"),
    ])
    def test_other_errors_behave_as_miss(self, error):
        backend = MagicMock()
        backend.restore.side_effect = error

        result = RestoreClassifier(backend, ["/repo"]).restore(KEYS)

        assert result.outcome is RestoreOutcome.NONE
        assert result.success_key_to_save == KEYS[0]
        assert result.failure_key_to_save == KEYS[1]
