# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Typed errors raised by the Diem client. Everything the client, transport and transaction waiter
raise derives from DiemError; codec errors derive from ValueError instead since they are plain
input validation failures.
"""

from __future__ import annotations

import typing
import unittest

if typing.TYPE_CHECKING:
    from .ledger_state import LedgerState


class DiemError(Exception):
    """Base class for errors raised while talking to a Diem full node."""


class StaleResponseError(DiemError):
    """
    The ledger state attested by a response is behind the state this client already observed.
    The response itself may be fine; it just must not roll back the client's view of the ledger.
    """

    client: LedgerState
    server: LedgerState

    def __init__(self, client: LedgerState, server: LedgerState):
        super().__init__(
            f"stale response error: expected server response ledger {server} >= {client}"
        )
        self.client = client
        self.server = server


class ChainIdMismatchError(DiemError):
    """The server answered for a different chain than the one the client is configured for."""

    expected: int
    actual: int

    def __init__(self, expected: int, actual: int):
        super().__init__(
            "chain id mismatch error: expected server response chain id == "
            f"{expected}, but got {actual}"
        )
        self.expected = expected
        self.actual = actual


class JsonRpcError(DiemError):
    """Application level error object returned by the JSON-RPC server."""

    code: int
    message: str
    data: typing.Any

    def __init__(self, code: int, message: str, data: typing.Any = None):
        super().__init__(f"{code} - {message}")
        self.code = code
        self.message = message
        self.data = data

    @staticmethod
    def from_json(value: typing.Dict[str, typing.Any]) -> JsonRpcError:
        return JsonRpcError(value.get("code", 0), value.get("message", ""), value.get("data"))


class TransportErrorType:
    SERIALIZE_REQUEST: str = "serialize request json failed"
    HTTP_CALL: str = "http call failed"
    READ_RESPONSE_BODY: str = "read http response body failed"
    PARSE_RESPONSE_JSON: str = "parse response json failed"
    PARSE_RESULT_JSON: str = "parse response result json failed"
    INVALID_RESPONSE: str = "invalid JSON-RPC response"


class TransportError(DiemError):
    """Failure below the JSON-RPC application layer: HTTP, encoding or envelope problems."""

    error_type: str
    cause: typing.Optional[BaseException]

    def __init__(
        self,
        error_type: str,
        message: str,
        cause: typing.Optional[BaseException] = None,
    ):
        super().__init__(f"{error_type}: {message}")
        self.error_type = error_type
        self.cause = cause


class InvalidTransactionError(DiemError):
    """A transaction was found for the sender and sequence number but it is not the expected one
    or it did not execute successfully."""

    transaction: typing.Dict[str, typing.Any]
    message: str

    def __init__(self, transaction: typing.Dict[str, typing.Any], message: str):
        super().__init__(message)
        self.transaction = transaction
        self.message = message


class AccountNotFoundError(DiemError):
    """The account does not exist on chain"""

    address: str

    def __init__(self, address: str):
        super().__init__(f"account not found: {address}")
        self.address = address


class TransactionExpiredError(DiemError):
    expiration_timestamp_secs: int
    ledger_timestamp_usecs: int

    def __init__(self, expiration_timestamp_secs: int, ledger_timestamp_usecs: int):
        super().__init__("transaction expired")
        self.expiration_timestamp_secs = expiration_timestamp_secs
        self.ledger_timestamp_usecs = ledger_timestamp_usecs


class TransactionTimeoutError(DiemError):
    timeout: float

    def __init__(self, timeout: float):
        super().__init__(f"transaction not found within timeout period: {timeout:g}s")
        self.timeout = timeout


class FaucetError(DiemError):
    """The faucet did not mint, e.g. it returned a non-200 status or an unreadable body"""

    status_code: typing.Optional[int]

    def __init__(self, message: str, status_code: typing.Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AccountIdentifierError(ValueError):
    """An account identifier could not be encoded or decoded."""


class IntentIdentifierError(ValueError):
    """An intent identifier URI could not be parsed."""


class Test(unittest.TestCase):
    def test_messages(self):
        self.assertEqual(
            str(ChainIdMismatchError(2, 4)),
            "chain id mismatch error: expected server response chain id == 2, but got 4",
        )
        self.assertEqual(str(JsonRpcError(-32602, "Invalid params")), "-32602 - Invalid params")
        self.assertEqual(
            str(TransactionTimeoutError(1)),
            "transaction not found within timeout period: 1s",
        )
        self.assertEqual(
            str(TransactionTimeoutError(0.5)),
            "transaction not found within timeout period: 0.5s",
        )
        self.assertEqual(str(TransactionExpiredError(10, 10_000_000)), "transaction expired")

    def test_json_rpc_error_from_json(self):
        err = JsonRpcError.from_json(
            {"code": -32602, "message": "Invalid params for method 'submit'", "data": None}
        )
        self.assertEqual(err.code, -32602)
        self.assertEqual(err.message, "Invalid params for method 'submit'")
        self.assertIsNone(err.data)

    def test_hierarchy(self):
        self.assertTrue(issubclass(TransportError, DiemError))
        self.assertTrue(issubclass(AccountIdentifierError, ValueError))
        self.assertFalse(issubclass(AccountIdentifierError, DiemError))
