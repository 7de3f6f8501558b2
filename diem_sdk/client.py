# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
A JSON-RPC client for Diem full nodes that never lets its view of the ledger move backwards.

Every response is checked against the configured chain id and its ledger version and timestamp
are fed through a LedgerStateTracker. Read calls are retried according to a RetryPolicy; submit is
called exactly once since the client cannot assume that resubmitting is harmless.
"""

from __future__ import annotations

import itertools
import logging
import time
import typing
import unittest

from . import asymmetric_crypto, ed25519
from .account_address import AccountAddress
from .errors import (
    AccountNotFoundError,
    ChainIdMismatchError,
    JsonRpcError,
    StaleResponseError,
    TransactionExpiredError,
    TransportError,
)
from .jsonrpc import JsonRpcTransport, Request, StubTransport, Transport
from .ledger_state import LedgerState, LedgerStateTracker
from .retry import RetryPolicy
from .signer import peer_to_peer_with_metadata_script, sign
from .transaction_waiter import TransactionWaiter
from .transactions import Script, SignedTransaction

logger = logging.getLogger(__name__)


class ClientConfig:
    """Common configuration for clients, particularly for submitting and waiting on transactions"""

    max_gas_amount: int = 1_000_000
    gas_unit_price: int = 0
    gas_currency_code: str = "XUS"
    expiration_ttl: int = 30
    transaction_wait_in_seconds: float = 30
    wait_poll_interval: float = 0.5
    http_timeout: float = 30.0
    # Methods whose stale responses are still returned to the caller.
    stale_tolerant_methods: typing.FrozenSet[str] = frozenset({"submit"})


class Client:
    """A wrapper around the Diem JSON-RPC API"""

    chain_id: int
    client_config: ClientConfig
    retry_policy: RetryPolicy
    transport: Transport

    def __init__(
        self,
        chain_id: int,
        url: typing.Optional[str] = None,
        client_config: ClientConfig = ClientConfig(),
        transport: typing.Optional[Transport] = None,
        retry_policy: typing.Optional[RetryPolicy] = None,
    ):
        if transport is None:
            if url is None:
                raise ValueError("either url or transport is required")
            transport = JsonRpcTransport(url, timeout=client_config.http_timeout)
        self.chain_id = chain_id
        self.client_config = client_config
        self.transport = transport
        self.retry_policy = retry_policy if retry_policy is not None else RetryPolicy()
        self._tracker = LedgerStateTracker()
        self._ids = itertools.count(1)

    def close(self):
        if isinstance(self.transport, JsonRpcTransport):
            self.transport.close()

    def with_retry_policy(self, retry_policy: RetryPolicy) -> Client:
        self.retry_policy = retry_policy
        return self

    #
    # Ledger state
    #

    def last_response_ledger_state(self) -> LedgerState:
        """The newest ledger state seen in any response so far."""
        return self._tracker.current()

    def update_last_response_ledger_state(self, state: LedgerState) -> bool:
        """
        Advances the tracked ledger state, e.g. to the state of another client talking to a
        different replica so that this one does not accept anything older. Raises
        StaleResponseError if `state` is behind the tracked state.
        """
        return self._tracker.update(state)

    #
    # Reads
    #

    def get_currencies(self) -> typing.List[typing.Dict[str, typing.Any]]:
        return self._call("get_currencies")

    def get_metadata(self) -> typing.Dict[str, typing.Any]:
        return self._call("get_metadata")

    def get_metadata_by_version(self, version: int) -> typing.Dict[str, typing.Any]:
        return self._call("get_metadata", version)

    def get_account(
        self, address: typing.Union[AccountAddress, str]
    ) -> typing.Optional[typing.Dict[str, typing.Any]]:
        """Returns None if the account does not exist."""
        return self._call("get_account", _address_hex(address))

    def account_sequence_number(self, address: typing.Union[AccountAddress, str]) -> int:
        account = self.get_account(address)
        if account is None:
            raise AccountNotFoundError(_address_hex(address))
        return int(account["sequence_number"])

    def get_account_transaction(
        self,
        address: typing.Union[AccountAddress, str],
        sequence_number: int,
        include_events: bool = False,
    ) -> typing.Optional[typing.Dict[str, typing.Any]]:
        """Returns None if the account has not executed a transaction with this sequence number."""
        return self._call(
            "get_account_transaction", _address_hex(address), sequence_number, include_events
        )

    def get_account_transactions(
        self,
        address: typing.Union[AccountAddress, str],
        start: int,
        limit: int,
        include_events: bool = False,
    ) -> typing.List[typing.Dict[str, typing.Any]]:
        return self._call(
            "get_account_transactions", _address_hex(address), start, limit, include_events
        )

    def get_transactions(
        self, start: int, limit: int, include_events: bool = False
    ) -> typing.List[typing.Dict[str, typing.Any]]:
        return self._call("get_transactions", start, limit, include_events)

    def get_events(
        self, event_key: str, start: int, limit: int
    ) -> typing.List[typing.Dict[str, typing.Any]]:
        return self._call("get_events", event_key, start, limit)

    #
    # Transactions
    #

    def submit(self, signed_txn_hex: str):
        self._call_without_retry("submit", [signed_txn_hex])

    def submit_transaction(self, signed_txn: SignedTransaction):
        self.submit(signed_txn.hex())

    def create_signed_transaction(
        self,
        private_key: asymmetric_crypto.PrivateKey,
        sender: AccountAddress,
        sequence_number: int,
        script: Script,
    ) -> SignedTransaction:
        """Signs a script with the gas settings and expiration time of this client's config."""
        return sign(
            private_key,
            sender,
            sequence_number,
            script,
            self.client_config.max_gas_amount,
            self.client_config.gas_unit_price,
            self.client_config.gas_currency_code,
            int(time.time()) + self.client_config.expiration_ttl,
            self.chain_id,
        )

    def transfer(
        self,
        private_key: asymmetric_crypto.PrivateKey,
        sender: AccountAddress,
        payee: AccountAddress,
        amount: int,
        currency: str,
        metadata: bytes = b"",
        metadata_signature: bytes = b"",
    ) -> SignedTransaction:
        """Submits a peer to peer transfer and returns it without waiting for it to execute."""
        script = peer_to_peer_with_metadata_script(
            currency, payee, amount, metadata, metadata_signature
        )
        signed_txn = self.create_signed_transaction(
            private_key, sender, self.account_sequence_number(sender), script
        )
        self.submit_transaction(signed_txn)
        return signed_txn

    def wait_for_transaction(
        self,
        address: AccountAddress,
        sequence_number: int,
        txn_hash: str,
        expiration_timestamp_secs: int,
        timeout: typing.Optional[float] = None,
    ) -> typing.Dict[str, typing.Any]:
        if timeout is None:
            timeout = self.client_config.transaction_wait_in_seconds
        waiter = TransactionWaiter(self, self.client_config.wait_poll_interval)
        return waiter.wait(
            address, sequence_number, txn_hash, expiration_timestamp_secs, timeout
        )

    def wait_for_signed_transaction(
        self, signed_txn: SignedTransaction, timeout: typing.Optional[float] = None
    ) -> typing.Dict[str, typing.Any]:
        return self.wait_for_transaction(
            signed_txn.sender,
            signed_txn.sequence_number,
            signed_txn.hash(),
            signed_txn.expiration_timestamp_secs,
            timeout,
        )

    def wait_for_transaction_hex(
        self, signed_txn_hex: str, timeout: typing.Optional[float] = None
    ) -> typing.Dict[str, typing.Any]:
        return self.wait_for_signed_transaction(
            SignedTransaction.from_hex(signed_txn_hex), timeout
        )

    #
    # Calls
    #

    def _call(self, method: str, *params: typing.Any) -> typing.Any:
        return self.retry_policy.call(lambda: self._call_without_retry(method, list(params)))

    def _call_without_retry(self, method: str, params: typing.List[typing.Any]) -> typing.Any:
        request = Request(method, params, next(self._ids))
        logger.debug(f"{method} {params}")
        response = self.transport.call(request)[request.id]

        if response.diem_chain_id != self.chain_id:
            raise ChainIdMismatchError(self.chain_id, response.diem_chain_id)

        state = LedgerState(response.diem_ledger_version, response.diem_ledger_timestampusec)
        try:
            self._tracker.update(state)
        except StaleResponseError as e:
            if method not in self.client_config.stale_tolerant_methods:
                logger.warning(f"Rejected response to {method}: {e}")
                raise
            logger.warning(f"Accepted response to {method}: {e}")

        if response.error is not None:
            raise response.error
        return response.result


def _address_hex(address: typing.Union[AccountAddress, str]) -> str:
    if isinstance(address, AccountAddress):
        return address.hex()
    return address


class Test(unittest.TestCase):
    CHAIN_ID = 2

    def _client(self, handler, retry_policy: typing.Optional[RetryPolicy] = None):
        stub = StubTransport(handler)
        client = Client(
            self.CHAIN_ID,
            transport=stub,
            retry_policy=retry_policy or RetryPolicy(max_attempts=3, delay=0),
        )
        return client, stub

    def test_get_account(self):
        client, stub = self._client(lambda request: {"result": {"sequence_number": 7}})
        address = AccountAddress.from_hex("f72589b71ff4f8d139674a3f7369c69b")

        self.assertEqual(client.get_account(address), {"sequence_number": 7})
        self.assertEqual(client.account_sequence_number(address), 7)
        self.assertEqual(stub.requests[0].method, "get_account")
        self.assertEqual(stub.requests[0].params, ["f72589b71ff4f8d139674a3f7369c69b"])
        self.assertNotEqual(stub.requests[0].id, stub.requests[1].id)

    def test_not_found_is_none(self):
        client, _ = self._client(lambda request: {"result": None})
        self.assertIsNone(client.get_account("f72589b71ff4f8d139674a3f7369c69b"))
        self.assertIsNone(client.get_account_transaction("f72589b71ff4f8d139674a3f7369c69b", 0))
        with self.assertRaises(AccountNotFoundError):
            client.account_sequence_number("f72589b71ff4f8d139674a3f7369c69b")

    def test_request_params(self):
        client, stub = self._client(lambda request: {"result": []})
        client.get_currencies()
        client.get_metadata_by_version(3)
        client.get_account_transaction("aa" * 16, 1, True)
        client.get_account_transactions("aa" * 16, 0, 10, False)
        client.get_transactions(1, 2, True)
        client.get_events("00" * 24, 0, 5)

        self.assertEqual(
            [(request.method, request.params) for request in stub.requests],
            [
                ("get_currencies", []),
                ("get_metadata", [3]),
                ("get_account_transaction", ["aa" * 16, 1, True]),
                ("get_account_transactions", ["aa" * 16, 0, 10, False]),
                ("get_transactions", [1, 2, True]),
                ("get_events", ["00" * 24, 0, 5]),
            ],
        )

    def test_tracks_ledger_state(self):
        client, _ = self._client(lambda request: {"result": {}})
        client.get_metadata()
        state = client.last_response_ledger_state()
        self.assertEqual(state.version, 100)
        self.assertGreater(state.timestamp_usecs, 0)

    def test_update_last_response_ledger_state(self):
        client, _ = self._client(lambda request: {"result": {}})
        self.assertTrue(client.update_last_response_ledger_state(LedgerState(200, 10)))
        self.assertFalse(client.update_last_response_ledger_state(LedgerState(200, 10)))
        with self.assertRaises(StaleResponseError):
            client.update_last_response_ledger_state(LedgerState(199, 10))
        self.assertEqual(client.last_response_ledger_state(), LedgerState(200, 10))

    def test_chain_id_mismatch_is_not_retried(self):
        client, stub = self._client(lambda request: {"result": {}, "diem_chain_id": 4})
        with self.assertRaises(ChainIdMismatchError) as cm:
            client.get_metadata()
        self.assertEqual(cm.exception.expected, 2)
        self.assertEqual(cm.exception.actual, 4)
        self.assertEqual(len(stub.requests), 1)
        self.assertEqual(client.last_response_ledger_state(), LedgerState())

    def test_stale_response_is_rejected_after_retries(self):
        client, stub = self._client(lambda request: {"result": {}})
        newer = LedgerState(200, 0)
        client.update_last_response_ledger_state(newer)

        with self.assertRaises(StaleResponseError):
            client.get_metadata()
        self.assertEqual(len(stub.requests), 3)
        self.assertEqual(client.last_response_ledger_state(), newer)

    def test_stale_response_is_retried(self):
        versions = [50, 300]

        def handler(request: Request):
            return {"result": {"version": 1}, "diem_ledger_version": versions.pop(0)}

        client, stub = self._client(handler)
        client.update_last_response_ledger_state(LedgerState(200, 0))
        self.assertEqual(client.get_metadata(), {"version": 1})
        self.assertEqual(len(stub.requests), 2)
        self.assertEqual(client.last_response_ledger_state().version, 300)

    def test_submit_accepts_stale_response(self):
        client, stub = self._client(lambda request: {"result": None})
        newer = LedgerState(200, 0)
        client.update_last_response_ledger_state(newer)

        client.submit("00")
        self.assertEqual(len(stub.requests), 1)
        self.assertEqual(client.last_response_ledger_state(), newer)

    def test_submit_is_not_retried(self):
        def handler(request: Request):
            raise TransportError("http call failed", "boom")

        client, stub = self._client(handler)
        with self.assertRaises(TransportError):
            client.submit("00")
        self.assertEqual(len(stub.requests), 1)

    def test_application_error_is_not_retried(self):
        error = {"code": -32602, "message": "Invalid params for method 'submit'", "data": None}
        client, stub = self._client(lambda request: {"error": error})

        with self.assertRaises(JsonRpcError) as cm:
            client.submit("00")
        self.assertEqual(str(cm.exception), "-32602 - Invalid params for method 'submit'")

        with self.assertRaises(JsonRpcError):
            client.get_account("aa" * 16)
        self.assertEqual(len(stub.requests), 2)

    def test_transport_errors_are_retried(self):
        attempts = []

        def handler(request: Request):
            attempts.append(request)
            if len(attempts) < 3:
                raise TransportError("http call failed", "boom")
            return {"result": [{"code": "XUS"}]}

        client, _ = self._client(handler)
        self.assertEqual(client.get_currencies(), [{"code": "XUS"}])
        self.assertEqual(len(attempts), 3)

    def test_with_retry_policy(self):
        def handler(request: Request):
            raise TransportError("http call failed", "boom")

        client, stub = self._client(handler)
        client.with_retry_policy(RetryPolicy.no_retry())
        with self.assertRaises(TransportError):
            client.get_currencies()
        self.assertEqual(len(stub.requests), 1)

    def test_custom_stale_tolerant_methods(self):
        class Config(ClientConfig):
            stale_tolerant_methods = frozenset({"submit", "get_metadata"})

        stub = StubTransport(lambda request: {"result": {}})
        client = Client(self.CHAIN_ID, client_config=Config(), transport=stub)
        client.update_last_response_ledger_state(LedgerState(200, 0))
        self.assertEqual(client.get_metadata(), {})

    def _signed_transaction(self, expiration_timestamp_secs: int) -> SignedTransaction:
        key = ed25519.PrivateKey.random()
        sender = AccountAddress.from_key(key.public_key())
        script = peer_to_peer_with_metadata_script("XUS", sender, 100)
        return sign(key, sender, 0, script, 1_000_000, 0, "XUS", expiration_timestamp_secs, 2)

    def test_wait_for_signed_transaction(self):
        signed_txn = self._signed_transaction(int(time.time()) + 30)

        def handler(request: Request):
            self.assertEqual(
                request.params, [signed_txn.sender.hex(), signed_txn.sequence_number, True]
            )
            txn = {"version": 99, "hash": signed_txn.hash(), "vm_status": {"type": "executed"}}
            return {"result": txn}

        client, _ = self._client(handler)
        txn = client.wait_for_transaction_hex(signed_txn.hex(), timeout=1)
        self.assertEqual(txn["hash"], signed_txn.hash())

    def test_wait_for_expired_transaction(self):
        signed_txn = self._signed_transaction(int(time.time()) - 10)
        client, _ = self._client(lambda request: {"result": None})
        with self.assertRaises(TransactionExpiredError):
            client.wait_for_signed_transaction(signed_txn, timeout=5)

    def test_transfer(self):
        key = ed25519.PrivateKey.random()
        sender = AccountAddress.from_key(key.public_key())
        payee = AccountAddress.from_hex("f72589b71ff4f8d139674a3f7369c69b")

        def handler(request: Request):
            if request.method == "get_account":
                return {"result": {"sequence_number": 5}}
            return {"result": None}

        client, stub = self._client(handler)
        signed_txn = client.transfer(key, sender, payee, 1000, "XUS")

        self.assertEqual(stub.requests[-1].method, "submit")
        submitted = SignedTransaction.from_hex(stub.requests[-1].params[0])
        self.assertEqual(submitted, signed_txn)
        self.assertTrue(submitted.verify())
        self.assertEqual(submitted.sequence_number, 5)
        self.assertEqual(submitted.transaction.chain_id, 2)
        self.assertEqual(submitted.transaction.gas_currency_code, "XUS")

    def test_requires_url_or_transport(self):
        with self.assertRaises(ValueError):
            Client(2)
