# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
This translates Diem transactions to and from BCS for signing and submitting to the JSON-RPC API.
"""

from __future__ import annotations

import dataclasses
import hashlib
import unittest
from dataclasses import dataclass
from typing import Any, Sequence, Tuple

from . import asymmetric_crypto, ed25519
from .account_address import AccountAddress
from .authenticator import Authenticator
from .bcs import Deserializer, Serializable, Serializer
from .type_tag import TypeTag, currency_type_tag

HASH_PREFIX_SALT = b"DIEM::"

# Variant index of UserTransaction in the ledger's Transaction enum.
USER_TRANSACTION: int = 0


def hash_prefix(name: str) -> bytes:
    """The domain separator prepended to the BCS bytes of type `name` before hashing."""
    hasher = hashlib.sha3_256()
    hasher.update(HASH_PREFIX_SALT)
    hasher.update(name.encode())
    return hasher.digest()


@dataclass(frozen=True)
class RawTransaction(Serializable):
    # Sender's address
    sender: AccountAddress
    # Sequence number of this transaction. This must match the sequence number in the sender's
    # account at the time of execution.
    sequence_number: int
    # The transaction payload, e.g., a script to execute.
    payload: TransactionPayload
    # Maximum total gas to spend for this transaction
    max_gas_amount: int
    # Price to be paid per gas unit.
    gas_unit_price: int
    # Currency code gas is paid in, e.g. XUS.
    gas_currency_code: str
    # Expiration timestamp for this transaction, represented as seconds from the Unix epoch.
    expiration_timestamp_secs: int
    # Chain ID of the Diem network this transaction is intended for.
    chain_id: int

    def __str__(self):
        return f"""RawTransaction:
    sender: {self.sender}
    sequence_number: {self.sequence_number}
    payload: {self.payload}
    max_gas_amount: {self.max_gas_amount}
    gas_unit_price: {self.gas_unit_price}
    gas_currency_code: {self.gas_currency_code}
    expiration_timestamp_secs: {self.expiration_timestamp_secs}
    chain_id: {self.chain_id}
"""

    def prehash(self) -> bytes:
        return hash_prefix("RawTransaction")

    def keyed(self) -> bytes:
        """The signing message: the hash prefix followed by the BCS bytes of this transaction."""
        prehash = bytearray(self.prehash())
        prehash.extend(self.to_bcs())
        return bytes(prehash)

    def sign(self, key: asymmetric_crypto.PrivateKey) -> Authenticator:
        return Authenticator.from_key(key.public_key(), key.sign(self.keyed()))

    def verify(
        self, key: asymmetric_crypto.PublicKey, signature: asymmetric_crypto.Signature
    ) -> bool:
        return key.verify(self.keyed(), signature)

    @staticmethod
    def deserialize(deserializer: Deserializer) -> RawTransaction:
        return RawTransaction(
            AccountAddress.deserialize(deserializer),
            deserializer.u64(),
            TransactionPayload.deserialize(deserializer),
            deserializer.u64(),
            deserializer.u64(),
            deserializer.str(),
            deserializer.u64(),
            deserializer.u8(),
        )

    def serialize(self, serializer: Serializer):
        self.sender.serialize(serializer)
        serializer.u64(self.sequence_number)
        self.payload.serialize(serializer)
        serializer.u64(self.max_gas_amount)
        serializer.u64(self.gas_unit_price)
        serializer.str(self.gas_currency_code)
        serializer.u64(self.expiration_timestamp_secs)
        serializer.u8(self.chain_id)


@dataclass(frozen=True)
class TransactionPayload:
    WRITE_SET = 0
    SCRIPT = 1
    MODULE = 2

    value: Script

    def __post_init__(self):
        if not isinstance(self.value, Script):
            raise Exception("Invalid type")

    @property
    def variant(self) -> int:
        return TransactionPayload.SCRIPT

    def __str__(self) -> str:
        return self.value.__str__()

    @staticmethod
    def deserialize(deserializer: Deserializer) -> TransactionPayload:
        variant = deserializer.uleb128()

        if variant == TransactionPayload.SCRIPT:
            return TransactionPayload(Script.deserialize(deserializer))
        elif variant in (TransactionPayload.WRITE_SET, TransactionPayload.MODULE):
            raise NotImplementedError
        raise Exception("Invalid type")

    def serialize(self, serializer: Serializer):
        serializer.uleb128(self.variant)
        self.value.serialize(serializer)


@dataclass(frozen=True)
class Script:
    code: bytes
    ty_args: Tuple[TypeTag, ...]
    args: Tuple[TransactionArgument, ...]

    def __init__(
        self, code: bytes, ty_args: Sequence[TypeTag], args: Sequence[TransactionArgument]
    ):
        object.__setattr__(self, "code", bytes(code))
        object.__setattr__(self, "ty_args", tuple(ty_args))
        object.__setattr__(self, "args", tuple(args))

    @staticmethod
    def deserialize(deserializer: Deserializer) -> Script:
        code = deserializer.to_bytes()
        ty_args = deserializer.sequence(TypeTag.deserialize)
        args = deserializer.sequence(TransactionArgument.deserialize)
        return Script(code, ty_args, args)

    def serialize(self, serializer: Serializer):
        serializer.to_bytes(self.code)
        serializer.sequence(self.ty_args, Serializer.struct)
        serializer.sequence(self.args, Serializer.struct)

    def __str__(self):
        return f"<{list(self.ty_args)}>({list(self.args)})"


@dataclass(frozen=True)
class TransactionArgument:
    U8 = 0
    U64 = 1
    U128 = 2
    ADDRESS = 3
    U8_VECTOR = 4
    BOOL = 5

    variant: int
    value: Any

    def __post_init__(self):
        if self.variant < 0 or self.variant > 5:
            raise Exception("Invalid variant")

    @staticmethod
    def deserialize(deserializer: Deserializer) -> TransactionArgument:
        variant = deserializer.variant_index()
        if variant == TransactionArgument.U8:
            value: Any = deserializer.u8()
        elif variant == TransactionArgument.U64:
            value = deserializer.u64()
        elif variant == TransactionArgument.U128:
            value = deserializer.u128()
        elif variant == TransactionArgument.ADDRESS:
            value = AccountAddress.deserialize(deserializer)
        elif variant == TransactionArgument.U8_VECTOR:
            value = deserializer.to_bytes()
        elif variant == TransactionArgument.BOOL:
            value = deserializer.bool()
        else:
            raise Exception("Invalid variant")
        return TransactionArgument(variant, value)

    def serialize(self, serializer: Serializer):
        serializer.variant_index(self.variant)
        if self.variant == TransactionArgument.U8:
            serializer.u8(self.value)
        elif self.variant == TransactionArgument.U64:
            serializer.u64(self.value)
        elif self.variant == TransactionArgument.U128:
            serializer.u128(self.value)
        elif self.variant == TransactionArgument.ADDRESS:
            serializer.struct(self.value)
        elif self.variant == TransactionArgument.U8_VECTOR:
            serializer.to_bytes(self.value)
        elif self.variant == TransactionArgument.BOOL:
            serializer.bool(self.value)
        else:
            raise Exception(f"Invalid TransactionArgument variant {self.variant}")

    def __repr__(self):
        return self.__str__()

    def __str__(self):
        return f"[{self.variant}] {self.value}"


@dataclass(frozen=True)
class SignedTransaction(Serializable):
    transaction: RawTransaction
    authenticator: Authenticator

    def __str__(self) -> str:
        return f"Transaction: {self.transaction}Authenticator: {self.authenticator}"

    @property
    def sender(self) -> AccountAddress:
        return self.transaction.sender

    @property
    def sequence_number(self) -> int:
        return self.transaction.sequence_number

    @property
    def expiration_timestamp_secs(self) -> int:
        return self.transaction.expiration_timestamp_secs

    def hex(self) -> str:
        """The form accepted by the JSON-RPC `submit` method."""
        return self.to_bcs().hex()

    def hash(self) -> str:
        """
        The hash the ledger records for this transaction once executed, as lowercase hex. It is
        computed over the transaction wrapped as a `Transaction::UserTransaction`.
        """
        ser = Serializer()
        ser.variant_index(USER_TRANSACTION)
        self.serialize(ser)

        hasher = hashlib.sha3_256()
        hasher.update(hash_prefix("Transaction"))
        hasher.update(ser.output())
        return hasher.hexdigest()

    def verify(self) -> bool:
        return self.authenticator.verify(self.transaction.keyed())

    @staticmethod
    def from_hex(value: str) -> SignedTransaction:
        deserializer = Deserializer(bytes.fromhex(value))
        signed_txn = SignedTransaction.deserialize(deserializer)
        if deserializer.remaining() != 0:
            raise Exception(f"Unexpected trailing bytes: {deserializer.remaining()}")
        return signed_txn

    @staticmethod
    def deserialize(deserializer: Deserializer) -> SignedTransaction:
        transaction = RawTransaction.deserialize(deserializer)
        authenticator = Authenticator.deserialize(deserializer)
        return SignedTransaction(transaction, authenticator)

    def serialize(self, serializer: Serializer):
        self.transaction.serialize(serializer)
        self.authenticator.serialize(serializer)


class Test(unittest.TestCase):
    def _raw_transaction(self, sender: AccountAddress) -> RawTransaction:
        script = Script(
            b"\xa1\x1c\xeb\x0b",
            [currency_type_tag("XUS")],
            [
                TransactionArgument(
                    TransactionArgument.ADDRESS,
                    AccountAddress.from_hex("b4b71dbdfaa82e63855337e615889c97"),
                ),
                TransactionArgument(TransactionArgument.U64, 100),
                TransactionArgument(TransactionArgument.U8_VECTOR, b""),
                TransactionArgument(TransactionArgument.BOOL, True),
            ],
        )
        return RawTransaction(
            sender, 7, TransactionPayload(script), 1_000_000, 0, "XUS", 1_600_000_000, 2
        )

    def test_hash_prefix(self):
        self.assertEqual(
            hash_prefix("RawTransaction"), hashlib.sha3_256(b"DIEM::RawTransaction").digest()
        )
        self.assertNotEqual(hash_prefix("RawTransaction"), hash_prefix("Transaction"))

    def test_sign_verify_and_round_trip(self):
        private_key = ed25519.PrivateKey.random()
        raw_txn = self._raw_transaction(AccountAddress.from_key(private_key.public_key()))
        signed_txn = SignedTransaction(raw_txn, raw_txn.sign(private_key))

        self.assertTrue(signed_txn.verify())
        self.assertEqual(SignedTransaction.from_hex(signed_txn.hex()), signed_txn)
        self.assertEqual(signed_txn.sequence_number, 7)
        self.assertEqual(signed_txn.expiration_timestamp_secs, 1_600_000_000)
        self.assertEqual(len(signed_txn.hash()), 64)

    def test_tampered_transaction_fails_verification(self):
        private_key = ed25519.PrivateKey.random()
        raw_txn = self._raw_transaction(AccountAddress.from_key(private_key.public_key()))
        authenticator = raw_txn.sign(private_key)
        tampered = dataclasses.replace(raw_txn, sequence_number=8)
        self.assertFalse(SignedTransaction(tampered, authenticator).verify())
        self.assertTrue(SignedTransaction(raw_txn, authenticator).verify())

    def test_signed_transaction_is_immutable(self):
        private_key = ed25519.PrivateKey.random()
        raw_txn = self._raw_transaction(AccountAddress.from_key(private_key.public_key()))
        signed_txn = SignedTransaction(raw_txn, raw_txn.sign(private_key))
        txn_hash = signed_txn.hash()

        with self.assertRaises(dataclasses.FrozenInstanceError):
            signed_txn.transaction.sequence_number = 99  # type: ignore[misc]
        with self.assertRaises(dataclasses.FrozenInstanceError):
            signed_txn.authenticator = raw_txn.sign(ed25519.PrivateKey.random())  # type: ignore[misc]
        with self.assertRaises(dataclasses.FrozenInstanceError):
            signed_txn.transaction.payload.value.args = ()  # type: ignore[misc]
        with self.assertRaises(AttributeError):
            signed_txn.transaction.payload.value.args.clear()  # type: ignore[attr-defined]
        with self.assertRaises(dataclasses.FrozenInstanceError):
            signed_txn.authenticator.authenticator.signature = None  # type: ignore[misc]

        self.assertIsInstance(raw_txn.payload.value.ty_args, tuple)
        self.assertEqual(signed_txn.hash(), txn_hash)
        self.assertTrue(signed_txn.verify())

    def test_hash_covers_authenticator(self):
        private_key = ed25519.MultiPrivateKey.random(2, 1)
        raw_txn = self._raw_transaction(AccountAddress.from_key(private_key.public_key()))
        first = SignedTransaction(raw_txn, raw_txn.sign(private_key))
        other_key = ed25519.MultiPrivateKey.random(2, 1)
        second = SignedTransaction(raw_txn, raw_txn.sign(other_key))
        self.assertEqual(first.authenticator.variant, Authenticator.MULTI_ED25519)
        self.assertNotEqual(first.hash(), second.hash())

    def test_argument_encoding(self):
        ser = Serializer()
        TransactionArgument(TransactionArgument.U64, 100).serialize(ser)
        self.assertEqual(ser.output().hex(), "016400000000000000")
        ser = Serializer()
        TransactionArgument(TransactionArgument.U8_VECTOR, b"").serialize(ser)
        self.assertEqual(ser.output().hex(), "0400")

    def test_unsupported_payloads(self):
        with self.assertRaises(NotImplementedError):
            TransactionPayload.deserialize(Deserializer(b"\x00"))
        with self.assertRaises(NotImplementedError):
            TransactionPayload.deserialize(Deserializer(b"\x02"))

    def test_trailing_bytes(self):
        private_key = ed25519.PrivateKey.random()
        raw_txn = self._raw_transaction(AccountAddress.from_key(private_key.public_key()))
        signed_txn = SignedTransaction(raw_txn, raw_txn.sign(private_key))
        with self.assertRaisesRegex(Exception, "trailing bytes"):
            SignedTransaction.from_hex(signed_txn.hex() + "00")
