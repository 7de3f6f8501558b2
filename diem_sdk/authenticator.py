# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import typing
import unittest
from dataclasses import dataclass

from . import asymmetric_crypto, ed25519
from .bcs import Deserializer, Serializer, encoder


@dataclass(frozen=True)
class Authenticator:
    """
    Each transaction submitted to the Diem blockchain contains a `TransactionAuthenticator`: the
    sender's public key and its signature over the raw transaction's signing message. The VM checks
    the signature and that the key hashes to the authentication key stored in the sender account.
    """

    ED25519 = 0
    MULTI_ED25519 = 1

    authenticator: typing.Union[Ed25519Authenticator, MultiEd25519Authenticator]

    def __post_init__(self):
        if not isinstance(
            self.authenticator, (Ed25519Authenticator, MultiEd25519Authenticator)
        ):
            raise Exception("Invalid type")

    @property
    def variant(self) -> int:
        if isinstance(self.authenticator, MultiEd25519Authenticator):
            return Authenticator.MULTI_ED25519
        return Authenticator.ED25519

    @staticmethod
    def from_key(
        public_key: asymmetric_crypto.PublicKey, signature: asymmetric_crypto.Signature
    ) -> Authenticator:
        """Pick the authenticator variant matching the kind of key that produced `signature`."""
        if public_key.is_multi():
            return Authenticator(
                MultiEd25519Authenticator(
                    typing.cast(ed25519.MultiPublicKey, public_key),
                    typing.cast(ed25519.MultiSignature, signature),
                )
            )
        return Authenticator(
            Ed25519Authenticator(
                typing.cast(ed25519.PublicKey, public_key),
                typing.cast(ed25519.Signature, signature),
            )
        )

    def __str__(self) -> str:
        return self.authenticator.__str__()

    def public_key(self) -> asymmetric_crypto.PublicKey:
        return self.authenticator.public_key

    def verify(self, data: bytes) -> bool:
        return self.authenticator.verify(data)

    @staticmethod
    def deserialize(deserializer: Deserializer) -> Authenticator:
        variant = deserializer.uleb128()

        if variant == Authenticator.ED25519:
            authenticator: typing.Any = Ed25519Authenticator.deserialize(deserializer)
        elif variant == Authenticator.MULTI_ED25519:
            authenticator = MultiEd25519Authenticator.deserialize(deserializer)
        else:
            raise Exception(f"Invalid type: {variant}")

        return Authenticator(authenticator)

    def serialize(self, serializer: Serializer):
        serializer.uleb128(self.variant)
        serializer.struct(self.authenticator)


@dataclass(frozen=True)
class Ed25519Authenticator:
    public_key: ed25519.PublicKey
    signature: ed25519.Signature

    def __str__(self) -> str:
        return f"PublicKey: {self.public_key}, Signature: {self.signature}"

    def verify(self, data: bytes) -> bool:
        return self.public_key.verify(data, self.signature)

    @staticmethod
    def deserialize(deserializer: Deserializer) -> Ed25519Authenticator:
        key = deserializer.struct(ed25519.PublicKey)
        signature = deserializer.struct(ed25519.Signature)
        return Ed25519Authenticator(key, signature)

    def serialize(self, serializer: Serializer):
        serializer.struct(self.public_key)
        serializer.struct(self.signature)


@dataclass(frozen=True)
class MultiEd25519Authenticator:
    public_key: ed25519.MultiPublicKey
    signature: ed25519.MultiSignature

    def __str__(self) -> str:
        return f"PublicKey: {self.public_key}, Signature: {self.signature}"

    def verify(self, data: bytes) -> bool:
        return self.public_key.verify(data, self.signature)

    @staticmethod
    def deserialize(deserializer: Deserializer) -> MultiEd25519Authenticator:
        key = deserializer.struct(ed25519.MultiPublicKey)
        signature = deserializer.struct(ed25519.MultiSignature)
        return MultiEd25519Authenticator(key, signature)

    def serialize(self, serializer: Serializer):
        serializer.struct(self.public_key)
        serializer.struct(self.signature)


class Test(unittest.TestCase):
    def test_single_key(self):
        private_key = ed25519.PrivateKey.random()
        signature = private_key.sign(b"message")
        auth = Authenticator.from_key(private_key.public_key(), signature)

        self.assertEqual(auth.variant, Authenticator.ED25519)
        self.assertTrue(auth.verify(b"message"))
        self.assertFalse(auth.verify(b"other"))

        data = encoder(auth, Serializer.struct)
        self.assertEqual(data[0], Authenticator.ED25519)
        self.assertEqual(Deserializer(data).struct(Authenticator), auth)

    def test_multi_key(self):
        private_key = ed25519.MultiPrivateKey.random(3, 2)
        signature = private_key.sign(b"message")
        auth = Authenticator.from_key(private_key.public_key(), signature)

        self.assertEqual(auth.variant, Authenticator.MULTI_ED25519)
        self.assertTrue(auth.verify(b"message"))

        data = encoder(auth, Serializer.struct)
        self.assertEqual(data[0], Authenticator.MULTI_ED25519)
        self.assertEqual(Deserializer(data).struct(Authenticator), auth)

    def test_invalid_variant(self):
        with self.assertRaisesRegex(Exception, "Invalid type: 2"):
            Deserializer(b"\x02").struct(Authenticator)
