# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import threading
import unittest
from dataclasses import dataclass

from .errors import StaleResponseError


@dataclass(frozen=True)
class LedgerState:
    """The ledger version and timestamp (microseconds) a JSON-RPC response was served at."""

    version: int = 0
    timestamp_usecs: int = 0

    def __str__(self) -> str:
        return f"{{version: {self.version}, timestamp_usecs: {self.timestamp_usecs}}}"


class LedgerStateTracker:
    """
    Keeps the most recent ledger state observed across responses. Full nodes behind a load
    balancer may lag behind each other, so a response served from an older ledger state is
    rejected rather than allowed to roll the tracked state back.

    The state is an immutable snapshot swapped under a lock; reads need no lock.
    """

    _state: LedgerState
    _lock: threading.Lock

    def __init__(self, state: LedgerState = LedgerState()):
        self._state = state
        self._lock = threading.Lock()

    def current(self) -> LedgerState:
        return self._state

    def update(self, candidate: LedgerState) -> bool:
        """
        Adopt `candidate` if neither its version nor its timestamp is behind the current state.
        Returns whether the state changed; an identical state is accepted without change.
        Raises StaleResponseError, leaving the state untouched, if either field regressed.
        """
        with self._lock:
            current = self._state
            if candidate == current:
                return False
            if (
                candidate.version >= current.version
                and candidate.timestamp_usecs >= current.timestamp_usecs
            ):
                self._state = candidate
                return True
            raise StaleResponseError(current, candidate)


class Test(unittest.TestCase):
    def test_starts_at_zero(self):
        self.assertEqual(LedgerStateTracker().current(), LedgerState(0, 0))

    def test_adopts_newer_state(self):
        tracker = LedgerStateTracker()
        self.assertTrue(tracker.update(LedgerState(10, 1000)))
        self.assertEqual(tracker.current(), LedgerState(10, 1000))
        self.assertTrue(tracker.update(LedgerState(10, 1001)))
        self.assertTrue(tracker.update(LedgerState(11, 1001)))
        self.assertEqual(tracker.current(), LedgerState(11, 1001))

    def test_equal_state_is_a_no_op(self):
        tracker = LedgerStateTracker(LedgerState(10, 1000))
        self.assertFalse(tracker.update(LedgerState(10, 1000)))
        self.assertEqual(tracker.current(), LedgerState(10, 1000))

    def test_rejects_stale_version(self):
        tracker = LedgerStateTracker(LedgerState(10, 1000))
        with self.assertRaises(StaleResponseError) as cm:
            tracker.update(LedgerState(9, 1000))
        self.assertEqual(cm.exception.client, LedgerState(10, 1000))
        self.assertEqual(cm.exception.server, LedgerState(9, 1000))
        self.assertEqual(tracker.current(), LedgerState(10, 1000))

    def test_rejects_stale_timestamp(self):
        tracker = LedgerStateTracker(LedgerState(10, 1000))
        with self.assertRaises(StaleResponseError):
            tracker.update(LedgerState(11, 999))
        self.assertEqual(tracker.current(), LedgerState(10, 1000))

    def test_stale_message(self):
        tracker = LedgerStateTracker(LedgerState(2, 20))
        with self.assertRaisesRegex(
            StaleResponseError,
            "stale response error: expected server response ledger "
            r"\{version: 1, timestamp_usecs: 10\} >= \{version: 2, timestamp_usecs: 20\}",
        ):
            tracker.update(LedgerState(1, 10))

    def test_monotonic_under_any_sequence(self):
        tracker = LedgerStateTracker()
        candidates = [(5, 50), (3, 60), (6, 40), (6, 60), (6, 60), (7, 59), (9, 90), (8, 95)]
        previous = tracker.current()
        for version, timestamp in candidates:
            try:
                tracker.update(LedgerState(version, timestamp))
            except StaleResponseError:
                pass
            current = tracker.current()
            self.assertGreaterEqual(current.version, previous.version)
            self.assertGreaterEqual(current.timestamp_usecs, previous.timestamp_usecs)
            previous = current
        self.assertEqual(tracker.current(), LedgerState(9, 90))

    def test_concurrent_updates(self):
        tracker = LedgerStateTracker()

        def run(offset: int):
            for i in range(200):
                try:
                    tracker.update(LedgerState(i * 4 + offset, i * 4 + offset))
                except StaleResponseError:
                    pass

        threads = [threading.Thread(target=run, args=(offset,)) for offset in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(tracker.current(), LedgerState(799, 799))
