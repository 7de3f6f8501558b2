# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Intent identifiers (LIP-5) wrap an account identifier into a URI that can also request a currency
and an amount, e.g. `diem://lbr1p7ujcndcl7nudzwt8fglhx6wxn08kgs5tm6mz4usw5p72t?am=123&c=XUS`.
"""

from __future__ import annotations

import typing
import unittest
from dataclasses import dataclass
from urllib.parse import parse_qs, urlencode, urlsplit, urlunsplit

from . import bech32
from .account_address import AccountAddress, SubAddress
from .account_identifier import MAINNET_PREFIX, AccountIdentifier, decode_account
from .errors import AccountIdentifierError, IntentIdentifierError

DIEM_SCHEME = "diem"
CURRENCY_PARAM = "c"
AMOUNT_PARAM = "am"


@dataclass(frozen=True)
class Intent:
    account: AccountIdentifier
    currency: typing.Optional[str] = None
    amount: typing.Optional[int] = None

    def encode(self) -> str:
        try:
            account = self.account.encode()
        except bech32.Bech32Error as e:
            raise IntentIdentifierError(f"encode account identifier failed: {e}") from e

        params = []
        if self.amount is not None:
            params.append((AMOUNT_PARAM, str(self.amount)))
        if self.currency:
            params.append((CURRENCY_PARAM, self.currency))
        return urlunsplit((DIEM_SCHEME, account, "", urlencode(params), ""))


def decode_intent(prefix: str, intent: str) -> Intent:
    try:
        parts = urlsplit(intent)
    except ValueError as e:
        raise IntentIdentifierError(f"invalid intent identifier: {e}") from e
    if not parts.scheme or not parts.netloc:
        raise IntentIdentifierError(f"invalid intent identifier: {intent}")
    if parts.scheme != DIEM_SCHEME:
        raise IntentIdentifierError(f"invalid intent scheme: {parts.scheme}")

    try:
        account = decode_account(prefix, parts.netloc)
    except AccountIdentifierError as e:
        raise IntentIdentifierError(f"invalid account identifier: {e}") from e

    query = parse_qs(parts.query)
    currency = query.get(CURRENCY_PARAM, [None])[0]
    return Intent(
        account=account,
        currency=currency,
        amount=_parse_amount(query.get(AMOUNT_PARAM, [None])[0]),
    )


def _parse_amount(value: typing.Optional[str]) -> typing.Optional[int]:
    # ascii digits only
    if value is None or not (value.isascii() and value.isdigit()):
        return None
    return int(value)


class Test(unittest.TestCase):
    account = AccountIdentifier(
        MAINNET_PREFIX,
        AccountAddress.from_hex("f72589b71ff4f8d139674a3f7369c69b"),
        SubAddress.from_hex("cf64428bdeb62af2"),
    )

    def test_without_params(self):
        intent = Intent(self.account)
        encoded = intent.encode()
        self.assertEqual(encoded, f"diem://{self.account.encode()}")
        self.assertEqual(decode_intent(MAINNET_PREFIX, encoded), intent)

    def test_with_params(self):
        intent = Intent(self.account, currency="XUS", amount=123)
        encoded = intent.encode()
        self.assertEqual(encoded, f"diem://{self.account.encode()}?am=123&c=XUS")
        self.assertEqual(decode_intent(MAINNET_PREFIX, encoded), intent)

    def test_non_numeric_amount(self):
        decoded = decode_intent(MAINNET_PREFIX, f"diem://{self.account.encode()}?am=abc")
        self.assertIsNone(decoded.amount)
        self.assertIsNone(decoded.currency)

    def test_non_ascii_digit_amount(self):
        for amount in ["%C2%B2", "%D9%A3", "-1", "%2B5"]:
            decoded = decode_intent(
                MAINNET_PREFIX, f"diem://{self.account.encode()}?am={amount}"
            )
            self.assertIsNone(decoded.amount)

    def test_decode_errors(self):
        with self.assertRaisesRegex(IntentIdentifierError, "invalid intent identifier"):
            decode_intent(MAINNET_PREFIX, "s/s/###...")
        with self.assertRaisesRegex(IntentIdentifierError, "invalid intent scheme: http"):
            decode_intent(MAINNET_PREFIX, "http://account")
        with self.assertRaisesRegex(IntentIdentifierError, "invalid account identifier"):
            decode_intent(MAINNET_PREFIX, "diem://accountid")

    def test_encode_error(self):
        account = AccountIdentifier("", self.account.account_address, self.account.sub_address)
        with self.assertRaisesRegex(IntentIdentifierError, "encode account identifier failed"):
            Intent(account).encode()
