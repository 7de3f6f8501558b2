# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import hashlib
import secrets
import unittest

from . import asymmetric_crypto, ed25519
from .bcs import Deserializer, Serializer


class AuthKeyScheme:
    Ed25519: bytes = b"\x00"
    MultiEd25519: bytes = b"\x01"


class ParseAddressError(ValueError):
    """
    There was an error parsing an address.
    """


class AuthenticationKey:
    """
    The authentication key of an account is the sha3-256 of the public key bytes followed by the
    scheme byte. The account address is derived from its last 16 bytes, and the first 16 bytes are
    the prefix passed along when creating the account on chain.
    """

    LENGTH: int = 32

    key: bytes

    def __init__(self, key: bytes):
        if len(key) != AuthenticationKey.LENGTH:
            raise ParseAddressError(
                f"invalid authentication key bytes length: {len(key)}"
            )
        self.key = key

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AuthenticationKey):
            return NotImplemented
        return self.key == other.key

    def __str__(self) -> str:
        return self.hex()

    def hex(self) -> str:
        return self.key.hex()

    def prefix(self) -> bytes:
        return self.key[: AccountAddress.LENGTH]

    def account_address(self) -> AccountAddress:
        return AccountAddress(self.key[-AccountAddress.LENGTH :])

    @staticmethod
    def from_key(key: asymmetric_crypto.PublicKey) -> AuthenticationKey:
        hasher = hashlib.sha3_256()
        hasher.update(key.to_crypto_bytes())

        if key.is_multi():
            hasher.update(AuthKeyScheme.MultiEd25519)
        else:
            hasher.update(AuthKeyScheme.Ed25519)

        return AuthenticationKey(hasher.digest())


class AccountAddress:
    address: bytes
    LENGTH: int = 16

    def __init__(self, address: bytes):
        if len(address) != AccountAddress.LENGTH:
            raise ParseAddressError(
                f"invalid account address bytes length: {len(address)}"
            )
        self.address = address

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AccountAddress):
            return NotImplemented
        return self.address == other.address

    def __hash__(self) -> int:
        return hash(self.address)

    def __str__(self):
        """Diem addresses print as 32 lowercase hex characters without a 0x prefix."""
        return self.address.hex()

    def __repr__(self):
        return self.__str__()

    def hex(self) -> str:
        return self.address.hex()

    @staticmethod
    def from_hex(address: str) -> AccountAddress:
        """
        Accepts an address with or without a leading 0x, in either case. Short forms are not
        padded: the hex string must decode to exactly 16 bytes.
        """
        if address[0:2] in ("0x", "0X"):
            address = address[2:]
        try:
            data = bytes.fromhex(address)
        except ValueError as e:
            raise ParseAddressError(f"invalid account address hex: {address}") from e
        return AccountAddress(data)

    @staticmethod
    def from_key(key: asymmetric_crypto.PublicKey) -> AccountAddress:
        return AuthenticationKey.from_key(key).account_address()

    @staticmethod
    def deserialize(deserializer: Deserializer) -> AccountAddress:
        return AccountAddress(deserializer.fixed_bytes(AccountAddress.LENGTH))

    def serialize(self, serializer: Serializer):
        serializer.fixed_bytes(self.address)


class SubAddress:
    """An 8 byte sub-account discriminator used by custodial accounts."""

    LENGTH: int = 8

    address: bytes

    def __init__(self, address: bytes):
        if len(address) != SubAddress.LENGTH:
            raise ParseAddressError(f"invalid sub address bytes length: {len(address)}")
        self.address = address

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SubAddress):
            return NotImplemented
        return self.address == other.address

    def __hash__(self) -> int:
        return hash(self.address)

    def __str__(self) -> str:
        return self.address.hex()

    def __repr__(self) -> str:
        return self.__str__()

    def hex(self) -> str:
        return self.address.hex()

    def is_empty(self) -> bool:
        return self.address == bytes(SubAddress.LENGTH)

    @staticmethod
    def from_hex(address: str) -> SubAddress:
        try:
            data = bytes.fromhex(address)
        except ValueError as e:
            raise ParseAddressError(f"invalid sub address hex: {address}") from e
        return SubAddress(data)

    @staticmethod
    def empty() -> SubAddress:
        return SubAddress(bytes(SubAddress.LENGTH))

    @staticmethod
    def generate() -> SubAddress:
        return SubAddress(secrets.token_bytes(SubAddress.LENGTH))


class Test(unittest.TestCase):
    def test_address_from_hex(self):
        expected = "f72589b71ff4f8d139674a3f7369c69b"
        self.assertEqual(AccountAddress.from_hex(expected).hex(), expected)
        self.assertEqual(AccountAddress.from_hex("0x" + expected).hex(), expected)
        self.assertEqual(AccountAddress.from_hex(expected.upper()).hex(), expected)
        self.assertEqual(
            str(AccountAddress.from_hex("000000000000000000000000000000DD")),
            "000000000000000000000000000000dd",
        )

    def test_address_length(self):
        with self.assertRaisesRegex(
            ParseAddressError, "invalid account address bytes length: 2"
        ):
            AccountAddress.from_hex("0x0001")
        with self.assertRaises(ParseAddressError):
            AccountAddress.from_hex("zz")

    def test_auth_key_and_address(self):
        public_key = ed25519.PublicKey.from_str(
            "447fc3be296803c2303951c7816624c7566730a5cc6860a4a1bd3c04731569f5"
        )
        auth_key = AuthenticationKey.from_key(public_key)
        self.assertEqual(
            auth_key.hex(),
            "459c77a38803bd53f3adee52703810e3a74fd7c46952c497e75afb0a7932586d",
        )
        self.assertEqual(auth_key.prefix().hex(), "459c77a38803bd53f3adee52703810e3")
        self.assertEqual(
            AccountAddress.from_key(public_key).hex(), "a74fd7c46952c497e75afb0a7932586d"
        )

    def test_serialization(self):
        address = AccountAddress.from_hex("b4b71dbdfaa82e63855337e615889c97")
        ser = Serializer()
        address.serialize(ser)
        self.assertEqual(ser.output(), address.address)
        self.assertEqual(AccountAddress.deserialize(Deserializer(ser.output())), address)

    def test_sub_address(self):
        self.assertTrue(SubAddress.empty().is_empty())
        self.assertEqual(SubAddress.empty().hex(), "0000000000000000")
        self.assertEqual(len(SubAddress.generate().address), SubAddress.LENGTH)
        self.assertEqual(SubAddress.from_hex("cf64428bdeb62af2").hex(), "cf64428bdeb62af2")
        with self.assertRaises(ParseAddressError):
            SubAddress.from_hex("cf64")
