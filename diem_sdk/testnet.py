# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Constants and helpers for the Diem testnet: a preconfigured client and a faucet that mints coins
into new or existing accounts.
"""

from __future__ import annotations

import logging
import typing
import unittest
from unittest import mock

import httpx
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from .account_address import AccountAddress, AuthenticationKey
from .bcs import Deserializer, Serializer
from .client import Client, ClientConfig
from .errors import (
    DiemError,
    FaucetError,
    InvalidTransactionError,
    TransportError,
    TransportErrorType,
)
from .jsonrpc import Request, StubTransport
from .local_account import LocalAccount
from .metadata import Metadata
from .signer import peer_to_peer_with_metadata_script
from .transactions import SignedTransaction

URL = "http://testnet.diem.com/v1"
FAUCET_URL = "http://testnet.diem.com/mint"
CHAIN_ID = 2

DD_ADDRESS = AccountAddress.from_hex("000000000000000000000000000000DD")

XUS = "XUS"
XDX = "XDX"

MINT_ATTEMPTS = 5
MINT_RETRY_DELAY = 0.5
MINT_WAIT_TIMEOUT = 30

logger = logging.getLogger(__name__)


def create_client(client_config: ClientConfig = ClientConfig()) -> Client:
    return Client(CHAIN_ID, URL, client_config)


class FaucetClient:
    """Faucet mints coins into accounts and creates them if needed. This is a thin wrapper."""

    base_url: str
    client: Client
    http_client: httpx.Client

    def __init__(
        self,
        client: Client,
        base_url: str = FAUCET_URL,
        http_client: typing.Optional[httpx.Client] = None,
    ):
        self.base_url = base_url
        self.client = client
        self.http_client = http_client if http_client is not None else httpx.Client()
        self.http_client.headers[Metadata.DIEM_HEADER] = Metadata.get_diem_header_val()

    def close(self):
        self.http_client.close()
        self.client.close()

    def mint(
        self,
        auth_key: typing.Union[AuthenticationKey, str],
        amount: int,
        currency_code: str,
    ) -> typing.List[SignedTransaction]:
        """
        Mints once, without retrying, and waits for the transactions the faucet submitted for it.
        """
        params = {
            "amount": amount,
            "auth_key": auth_key.hex() if isinstance(auth_key, AuthenticationKey) else auth_key,
            "currency_code": currency_code,
            "return_txns": "true",
        }
        try:
            response = self.http_client.post(self.base_url, params=params)
        except httpx.HTTPError as e:
            raise TransportError(TransportErrorType.HTTP_CALL, str(e), e) from e
        if response.status_code != 200:
            raise FaucetError(f"Non 200 response: {response.text}", response.status_code)

        txns = deserialize_mint_transactions(response.text)
        for txn in txns:
            self.client.wait_for_signed_transaction(txn, MINT_WAIT_TIMEOUT)
        return txns

    def mint_with_retry(
        self,
        auth_key: typing.Union[AuthenticationKey, str],
        amount: int,
        currency_code: str,
    ) -> typing.List[SignedTransaction]:
        retrying = Retrying(
            stop=stop_after_attempt(MINT_ATTEMPTS),
            wait=wait_fixed(MINT_RETRY_DELAY),
            retry=retry_if_exception_type(DiemError),
            before_sleep=lambda retry_state: logger.warning(
                f"Mint attempt {retry_state.attempt_number} failed: "
                f"{retry_state.outcome.exception()}"
            ),
            reraise=True,
        )
        return retrying(self.mint, auth_key, amount, currency_code)

    def gen_account(
        self, amount: int = 1_000_000, currency_code: str = XUS, multi_sig: bool = False
    ) -> LocalAccount:
        """Generates a local account and creates it on chain by minting coins into it."""
        account = LocalAccount.generate_multi_sig() if multi_sig else LocalAccount.generate()
        self.mint_with_retry(account.auth_key(), amount, currency_code)
        return account


def deserialize_mint_transactions(body: str) -> typing.List[SignedTransaction]:
    """The faucet returns the hex of a length prefixed sequence of signed transactions."""
    try:
        data = bytes.fromhex(body.strip())
    except ValueError as e:
        raise FaucetError(f"decode mint transactions hex string failed: {e}") from e

    deserializer = Deserializer(data)
    try:
        return deserializer.sequence(SignedTransaction.deserialize)
    except Exception as e:
        raise FaucetError(f"deserialize mint transactions failed: {e}") from e


class Test(unittest.TestCase):
    def setUp(self):
        patcher = mock.patch("time.sleep")
        self.sleep = patcher.start()
        self.addCleanup(patcher.stop)

        self.dd = LocalAccount.generate()
        self.txns = [
            self.dd.sign_transaction(
                seq, peer_to_peer_with_metadata_script(XUS, DD_ADDRESS, 100), CHAIN_ID
            )
            for seq in range(2)
        ]
        self.executed = {txn.sequence_number: txn.hash() for txn in self.txns}

    def _body(self) -> str:
        ser = Serializer()
        ser.sequence(self.txns, Serializer.struct)
        return ser.output().hex()

    def _faucet(self, handler) -> typing.Tuple[FaucetClient, StubTransport]:
        def rpc(request: Request):
            _, seq, _ = request.params
            txn_hash = self.executed.get(seq)
            if txn_hash is None:
                return {"result": None}
            return {"result": {"hash": txn_hash, "vm_status": {"type": "executed"}}}

        stub = StubTransport(rpc)
        faucet = FaucetClient(
            Client(CHAIN_ID, transport=stub),
            http_client=httpx.Client(transport=httpx.MockTransport(handler)),
        )
        return faucet, stub

    def test_mint(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text=self._body())

        faucet, stub = self._faucet(handler)
        txns = faucet.mint("aa" * 32, 1000, XUS)

        self.assertEqual(txns, self.txns)
        self.assertEqual(seen[0].method, "POST")
        self.assertEqual(
            dict(seen[0].url.params),
            {
                "amount": "1000",
                "auth_key": "aa" * 32,
                "currency_code": "XUS",
                "return_txns": "true",
            },
        )
        self.assertEqual(
            [request.params for request in stub.requests],
            [[self.dd.address().hex(), seq, True] for seq in range(2)],
        )

    def test_mint_non_200(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="internal error")

        faucet, _ = self._faucet(handler)
        with self.assertRaisesRegex(FaucetError, "Non 200 response: internal error") as cm:
            faucet.mint("aa" * 32, 1000, XUS)
        self.assertEqual(cm.exception.status_code, 500)

    def test_mint_with_retry(self):
        responses = [
            httpx.Response(503, text="busy"),
            httpx.Response(200, text="not hex"),
            httpx.Response(200, text=self._body()),
        ]

        def handler(request: httpx.Request) -> httpx.Response:
            return responses.pop(0)

        faucet, _ = self._faucet(handler)
        self.assertEqual(len(faucet.mint_with_retry("aa" * 32, 1000, XUS)), 2)
        self.assertEqual(self.sleep.call_count, 2)

    def test_mint_with_retry_gives_up(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            return httpx.Response(503, text="busy")

        faucet, _ = self._faucet(handler)
        with self.assertRaises(FaucetError):
            faucet.mint_with_retry("aa" * 32, 1000, XUS)
        self.assertEqual(len(attempts), MINT_ATTEMPTS)

    def test_mint_waits_for_execution(self):
        self.executed[1] = "00" * 32

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text=self._body())

        faucet, _ = self._faucet(handler)
        with self.assertRaisesRegex(InvalidTransactionError, "hash does not match"):
            faucet.mint("aa" * 32, 1000, XUS)

    def test_gen_account(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text=self._body())

        faucet, _ = self._faucet(handler)
        account = faucet.gen_account(multi_sig=True)
        self.assertTrue(account.public_key().is_multi())

    def test_deserialize_errors(self):
        with self.assertRaisesRegex(FaucetError, "decode mint transactions hex string failed"):
            deserialize_mint_transactions("zz")
        with self.assertRaisesRegex(FaucetError, "deserialize mint transactions failed"):
            deserialize_mint_transactions("0102")

    def test_create_client(self):
        client = create_client()
        self.addCleanup(client.close)
        self.assertEqual(client.chain_id, CHAIN_ID)
