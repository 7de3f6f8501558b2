# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Polls a full node until a submitted transaction is executed, turns out to have failed, or can no
longer be executed because the ledger has moved past its expiration time.
"""

from __future__ import annotations

import logging
import time
import typing
import unittest

from .account_address import AccountAddress
from .errors import (
    InvalidTransactionError,
    JsonRpcError,
    StaleResponseError,
    TransactionExpiredError,
    TransactionTimeoutError,
)
from .ledger_state import LedgerState

if typing.TYPE_CHECKING:
    from .client import Client

logger = logging.getLogger(__name__)

VM_STATUS_EXECUTED = "executed"
DEFAULT_POLL_INTERVAL = 0.5


class TransactionWaiter:
    client: Client
    poll_interval: float

    def __init__(self, client: Client, poll_interval: float = DEFAULT_POLL_INTERVAL):
        self.client = client
        self.poll_interval = poll_interval

    def wait(
        self,
        address: AccountAddress,
        sequence_number: int,
        txn_hash: str,
        expiration_timestamp_secs: int,
        timeout: float,
    ) -> typing.Dict[str, typing.Any]:
        """
        Returns the executed transaction. Raises InvalidTransactionError if the transaction found
        at (address, sequence_number) has a different hash or did not execute,
        TransactionExpiredError once the ledger timestamp reaches the expiration time without the
        transaction, and TransactionTimeoutError when `timeout` seconds pass first.

        A stale response only means the node we hit is behind; polling continues right away.
        """
        deadline = time.monotonic() + timeout
        while True:
            if time.monotonic() > deadline:
                logger.info(f"Timed out waiting for {address}:{sequence_number}")
                raise TransactionTimeoutError(timeout)

            try:
                txn = self.client.get_account_transaction(address, sequence_number, True)
            except StaleResponseError as e:
                logger.debug(f"Stale response while waiting for {address}:{sequence_number}: {e}")
                continue

            if txn is not None:
                return self._check(txn, txn_hash)

            ledger_state = self.client.last_response_ledger_state()
            if expiration_timestamp_secs * 1_000_000 <= ledger_state.timestamp_usecs:
                logger.info(
                    f"Transaction {address}:{sequence_number} expired at "
                    f"{expiration_timestamp_secs}, ledger is at {ledger_state.timestamp_usecs}"
                )
                raise TransactionExpiredError(
                    expiration_timestamp_secs, ledger_state.timestamp_usecs
                )

            logger.debug(f"Transaction {address}:{sequence_number} not found yet")
            time.sleep(self.poll_interval)

    @staticmethod
    def _check(txn: typing.Dict[str, typing.Any], txn_hash: str) -> typing.Dict[str, typing.Any]:
        if txn.get("hash") != txn_hash:
            logger.info(f"Transaction hash mismatch: expected {txn_hash}, got {txn.get('hash')}")
            raise InvalidTransactionError(
                txn,
                f'found transaction, but hash does not match, given "{txn_hash}", '
                f'but got "{txn.get("hash")}"',
            )

        vm_status = txn.get("vm_status") or {}
        if vm_status.get("type") != VM_STATUS_EXECUTED:
            logger.info(f"Transaction {txn_hash} failed: {vm_status}")
            raise InvalidTransactionError(txn, f"transaction execution failed: {vm_status}")

        logger.info(f"Transaction {txn_hash} executed at version {txn.get('version')}")
        return txn


class Test(unittest.TestCase):
    address = AccountAddress.from_hex("f72589b71ff4f8d139674a3f7369c69b")
    txn_hash = "ab" * 32

    class FakeClient:
        """Replays a scripted list of results for get_account_transaction."""

        def __init__(self, results, ledger_timestamp_usecs=0):
            self.results = list(results)
            self.calls = 0
            self.ledger_timestamp_usecs = ledger_timestamp_usecs

        def get_account_transaction(self, address, sequence_number, include_events):
            self.calls += 1
            result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
            if isinstance(result, Exception):
                raise result
            return result

        def last_response_ledger_state(self):
            return LedgerState(100, self.ledger_timestamp_usecs)

    def _txn(self, txn_hash=None, vm_status="executed"):
        return {
            "version": 101,
            "hash": txn_hash or self.txn_hash,
            "vm_status": {"type": vm_status},
            "events": [],
        }

    def _wait(self, client, expiration=2_000_000_000, timeout=1.0):
        waiter = TransactionWaiter(client, poll_interval=0.001)
        return waiter.wait(self.address, 0, self.txn_hash, expiration, timeout)

    def test_executed_after_polling(self):
        client = self.FakeClient([None, None, self._txn()])
        self.assertEqual(self._wait(client)["version"], 101)
        self.assertEqual(client.calls, 3)

    def test_hash_mismatch(self):
        client = self.FakeClient([self._txn(txn_hash="cd" * 32)])
        with self.assertRaisesRegex(
            InvalidTransactionError, "found transaction, but hash does not match"
        ) as cm:
            self._wait(client)
        self.assertEqual(cm.exception.transaction["hash"], "cd" * 32)

    def test_execution_failed(self):
        client = self.FakeClient([self._txn(vm_status="move_abort")])
        with self.assertRaisesRegex(
            InvalidTransactionError, "transaction execution failed"
        ) as cm:
            self._wait(client)
        self.assertEqual(cm.exception.transaction["vm_status"]["type"], "move_abort")

    def test_expired(self):
        client = self.FakeClient([None], ledger_timestamp_usecs=11_000_000)
        with self.assertRaisesRegex(TransactionExpiredError, "transaction expired") as cm:
            self._wait(client, expiration=10)
        self.assertEqual(cm.exception.ledger_timestamp_usecs, 11_000_000)

    def test_expired_exactly_at_expiration(self):
        client = self.FakeClient([None], ledger_timestamp_usecs=10_000_000)
        with self.assertRaises(TransactionExpiredError):
            self._wait(client, expiration=10)

    def test_not_expired_just_before_expiration(self):
        client = self.FakeClient([None, self._txn()], ledger_timestamp_usecs=9_999_999)
        self.assertEqual(self._wait(client, expiration=10)["hash"], self.txn_hash)

    def test_timeout(self):
        client = self.FakeClient([None])
        with self.assertRaisesRegex(
            TransactionTimeoutError, "transaction not found within timeout period: 0.05s"
        ):
            self._wait(client, timeout=0.05)

    def test_stale_responses_keep_polling(self):
        stale = StaleResponseError(LedgerState(10, 10), LedgerState(9, 9))
        client = self.FakeClient([stale, stale, self._txn()])
        self.assertEqual(self._wait(client)["hash"], self.txn_hash)
        self.assertEqual(client.calls, 3)

    def test_only_stale_responses_time_out(self):
        stale = StaleResponseError(LedgerState(10, 10), LedgerState(9, 9))
        client = self.FakeClient([stale])
        with self.assertRaises(TransactionTimeoutError):
            self._wait(client, timeout=0.05)

    def test_other_errors_propagate(self):
        client = self.FakeClient([JsonRpcError(-32602, "Invalid params")])
        with self.assertRaises(JsonRpcError):
            self._wait(client)
        self.assertEqual(client.calls, 1)
