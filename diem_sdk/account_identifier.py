# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Diem account identifiers (LIP-5): an account address and an optional sub-address packed into a
single checksummed Bech32 string, e.g. `lbr1p7ujcndcl7nudzwt8fglhx6wxn08kgs5tm6mz4usw5p72t`.
"""

from __future__ import annotations

import secrets
import typing
import unittest
from dataclasses import dataclass

from . import bech32
from .account_address import AccountAddress, SubAddress
from .errors import AccountIdentifierError

MAINNET_PREFIX = "lbr"
TESTNET_PREFIX = "tlb"

V1 = 1


@dataclass(frozen=True)
class AccountIdentifier:
    prefix: str
    account_address: AccountAddress
    sub_address: SubAddress
    version: int = V1

    def encode(self) -> str:
        data = self.account_address.address + self.sub_address.address
        return bech32.encode_with_version(self.prefix, self.version, data)


def encode_account(
    prefix: str,
    account_address: AccountAddress,
    sub_address: typing.Optional[typing.Union[SubAddress, bytes]] = None,
    version: int = V1,
) -> str:
    """
    Encode an account identifier. A missing sub-address is encoded as eight zero bytes, so the
    decoded identifier will carry the empty sub-address rather than None.
    """
    if sub_address is None:
        sub_address = SubAddress.empty()
    elif isinstance(sub_address, bytes):
        if len(sub_address) != SubAddress.LENGTH:
            raise AccountIdentifierError("invalid sub address")
        sub_address = SubAddress(sub_address)

    try:
        return AccountIdentifier(prefix, account_address, sub_address, version).encode()
    except bech32.Bech32Error as e:
        raise AccountIdentifierError(f"invalid account identifier: {e}") from e


def decode_account(prefix: str, encoded: str) -> AccountIdentifier:
    try:
        version, data = bech32.decode_with_version(prefix, encoded)
    except bech32.Bech32Error as e:
        if str(e) == "invalid checksum":
            raise AccountIdentifierError("invalid checksum") from e
        raise AccountIdentifierError(f"invalid account identifier: {e}") from e

    if len(data) != AccountAddress.LENGTH + SubAddress.LENGTH:
        raise AccountIdentifierError(
            "invalid account identifier, account address and sub-address length does not match"
        )

    return AccountIdentifier(
        prefix=prefix,
        account_address=AccountAddress(data[: AccountAddress.LENGTH]),
        sub_address=SubAddress(data[AccountAddress.LENGTH :]),
        version=version,
    )


class Test(unittest.TestCase):
    address = AccountAddress.from_hex("f72589b71ff4f8d139674a3f7369c69b")
    sub_address = SubAddress.from_hex("cf64428bdeb62af2")

    def test_encode_decode(self):
        encoded = encode_account(MAINNET_PREFIX, self.address, self.sub_address)
        self.assertEqual(encoded, "lbr1p7ujcndcl7nudzwt8fglhx6wxn08kgs5tm6mz4usw5p72t")

        account = decode_account(MAINNET_PREFIX, encoded)
        self.assertEqual(account.account_address, self.address)
        self.assertEqual(account.sub_address, self.sub_address)
        self.assertEqual(account.version, V1)
        self.assertEqual(account.prefix, MAINNET_PREFIX)
        self.assertEqual(account.encode(), encoded)

    def test_encode_decode_without_sub_address(self):
        encoded = encode_account(MAINNET_PREFIX, self.address)
        self.assertEqual(encoded, "lbr1p7ujcndcl7nudzwt8fglhx6wxnvqqqqqqqqqqqqqflf8ma")

        account = decode_account(MAINNET_PREFIX, encoded)
        self.assertEqual(account.account_address, self.address)
        self.assertEqual(account.sub_address.hex(), "0000000000000000")
        self.assertTrue(account.sub_address.is_empty())

    def test_testnet_round_trip(self):
        encoded = encode_account(TESTNET_PREFIX, self.address, self.sub_address)
        self.assertTrue(encoded.startswith("tlb1p"))
        account = decode_account(TESTNET_PREFIX, encoded)
        self.assertEqual(account.account_address, self.address)
        self.assertEqual(account.sub_address, self.sub_address)

    def test_invalid_checksum(self):
        encoded = encode_account(MAINNET_PREFIX, self.address, self.sub_address)
        with self.assertRaisesRegex(AccountIdentifierError, "invalid checksum"):
            decode_account(MAINNET_PREFIX, encoded[:-1])

    def test_prefix_mismatch(self):
        encoded = encode_account(MAINNET_PREFIX, self.address, self.sub_address)
        with self.assertRaisesRegex(AccountIdentifierError, "invalid account identifier"):
            decode_account(TESTNET_PREFIX, encoded)
        with self.assertRaisesRegex(AccountIdentifierError, "prefix mismatch"):
            decode_account(TESTNET_PREFIX, encoded)

    def test_invalid_account_address_length(self):
        encoded = bech32.encode_with_version(MAINNET_PREFIX, V1, self.address.address)
        with self.assertRaisesRegex(
            AccountIdentifierError,
            "invalid account identifier, account address and sub-address length does not match",
        ):
            decode_account(MAINNET_PREFIX, encoded)

    def test_invalid_sub_address(self):
        with self.assertRaisesRegex(AccountIdentifierError, "invalid sub address"):
            encode_account(MAINNET_PREFIX, self.address, b"\x01\x02")

    def test_unknown_character(self):
        with self.assertRaisesRegex(AccountIdentifierError, "invalid character"):
            decode_account(MAINNET_PREFIX, "lbr1p7ujcndcl7nudzwt8fglhx6wxn08kgs5tm6mz4usw5p72b")

    def test_upper_case_prefix(self):
        for prefix in ["LBR", "Tlb"]:
            with self.assertRaisesRegex(AccountIdentifierError, "must be lower case"):
                encode_account(prefix, self.address, self.sub_address)

    def test_random_round_trips(self):
        for prefix in [MAINNET_PREFIX, TESTNET_PREFIX]:
            for _ in range(100):
                address = AccountAddress(secrets.token_bytes(AccountAddress.LENGTH))
                sub_address = SubAddress.generate()
                account = decode_account(prefix, encode_account(prefix, address, sub_address))
                self.assertEqual(
                    account, AccountIdentifier(prefix, address, sub_address, V1)
                )
