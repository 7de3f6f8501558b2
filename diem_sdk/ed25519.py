# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Ed25519 and multi-signature Ed25519 keys as used by Diem accounts.

A multi-signature public key is `key_0 | ... | key_n-1 | threshold` and a multi-signature is
`sig_a | sig_b | ... | bitmap`, where the 4 byte bitmap marks which keys signed, most significant
bit first. Both are BCS byte strings on the wire.
"""

from __future__ import annotations

import unittest
from typing import List, Tuple

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from . import asymmetric_crypto
from .bcs import Deserializer, Serializer

BITMAP_NUM_OF_BYTES = 4
MAX_NUM_OF_KEYS = BITMAP_NUM_OF_BYTES * 8


def _from_hex(value: str) -> bytes:
    if value[0:2] == "0x":
        value = value[2:]
    return bytes.fromhex(value)


def _fixed_length(data: bytes, length: int, name: str) -> bytes:
    if len(data) != length:
        raise ValueError(f"invalid {name} length: {len(data)}, expected {length}")
    return data


def _chunks(data: bytes, length: int) -> List[bytes]:
    return [data[start : start + length] for start in range(0, len(data), length)]


def _check_threshold(num_of_keys: int, threshold: int):
    assert (
        1 <= num_of_keys <= MAX_NUM_OF_KEYS
    ), f"Must have between 1 and {MAX_NUM_OF_KEYS} keys."
    assert 1 <= threshold <= num_of_keys, f"Threshold must be between 1 and {num_of_keys}."


def _bitmap(positions: List[int]) -> bytes:
    value = 0
    for position in positions:
        value |= 1 << (MAX_NUM_OF_KEYS - 1 - position)
    return value.to_bytes(BITMAP_NUM_OF_BYTES, "big")


def _positions(bitmap: bytes) -> List[int]:
    value = int.from_bytes(bitmap, "big")
    return [
        position
        for position in range(MAX_NUM_OF_KEYS)
        if value & (1 << (MAX_NUM_OF_KEYS - 1 - position))
    ]


class PrivateKey(asymmetric_crypto.PrivateKey):
    LENGTH: int = 32

    key: SigningKey

    def __init__(self, key: SigningKey):
        self.key = key

    def __eq__(self, other: object):
        if not isinstance(other, PrivateKey):
            return NotImplemented
        return self.key == other.key

    def __str__(self):
        return self.hex()

    @staticmethod
    def from_str(value: str) -> PrivateKey:
        return PrivateKey.from_bytes(_from_hex(value))

    @staticmethod
    def from_bytes(value: bytes) -> PrivateKey:
        return PrivateKey(SigningKey(_fixed_length(value, PrivateKey.LENGTH, "private key")))

    @staticmethod
    def random() -> PrivateKey:
        return PrivateKey(SigningKey.generate())

    def hex(self) -> str:
        return self.key.encode().hex()

    def public_key(self) -> PublicKey:
        return PublicKey(self.key.verify_key)

    def sign(self, data: bytes) -> Signature:
        return Signature(self.key.sign(data).signature)

    @staticmethod
    def deserialize(deserializer: Deserializer) -> PrivateKey:
        return PrivateKey.from_bytes(deserializer.to_bytes())

    def serialize(self, serializer: Serializer):
        serializer.to_bytes(self.key.encode())


class PublicKey(asymmetric_crypto.PublicKey):
    LENGTH: int = 32

    key: VerifyKey

    def __init__(self, key: VerifyKey):
        self.key = key

    def __eq__(self, other: object):
        if not isinstance(other, PublicKey):
            return NotImplemented
        return self.key == other.key

    def __str__(self) -> str:
        return self.hex()

    @staticmethod
    def from_str(value: str) -> PublicKey:
        return PublicKey.from_bytes(_from_hex(value))

    @staticmethod
    def from_bytes(value: bytes) -> PublicKey:
        return PublicKey(VerifyKey(_fixed_length(value, PublicKey.LENGTH, "public key")))

    def hex(self) -> str:
        return self.key.encode().hex()

    def is_multi(self) -> bool:
        return False

    def verify(self, data: bytes, signature: asymmetric_crypto.Signature) -> bool:
        if not isinstance(signature, Signature):
            return False
        try:
            self.key.verify(data, signature.data())
        except (BadSignatureError, ValueError):
            return False
        return True

    def to_crypto_bytes(self) -> bytes:
        return self.key.encode()

    @staticmethod
    def deserialize(deserializer: Deserializer) -> PublicKey:
        return PublicKey.from_bytes(deserializer.to_bytes())

    def serialize(self, serializer: Serializer):
        serializer.to_bytes(self.key.encode())


class MultiPublicKey(asymmetric_crypto.PublicKey):
    """A K-of-N public key. The account's authentication key is derived with scheme 1."""

    keys: List[PublicKey]
    threshold: int

    def __init__(self, keys: List[PublicKey], threshold: int):
        _check_threshold(len(keys), threshold)
        self.keys = keys
        self.threshold = threshold

    def __eq__(self, other: object):
        if not isinstance(other, MultiPublicKey):
            return NotImplemented
        return self.keys == other.keys and self.threshold == other.threshold

    def __str__(self) -> str:
        return f"{self.threshold}-of-{len(self.keys)} Multi-Ed25519 public key"

    def hex(self) -> str:
        return self.to_crypto_bytes().hex()

    def is_multi(self) -> bool:
        return True

    def verify(self, data: bytes, signature: asymmetric_crypto.Signature) -> bool:
        """
        True if at least `threshold` distinct member keys signed `data` and every one of the
        signatures verifies.
        """
        if not isinstance(signature, MultiSignature):
            return False
        positions = [position for position, _ in signature.signatures]
        if len(set(positions)) < self.threshold or len(set(positions)) != len(positions):
            return False
        for position, member_signature in signature.signatures:
            if position >= len(self.keys):
                return False
            if not self.keys[position].verify(data, member_signature):
                return False
        return True

    @staticmethod
    def from_crypto_bytes(indata: bytes) -> MultiPublicKey:
        keys = [PublicKey.from_bytes(key) for key in _chunks(indata[:-1], PublicKey.LENGTH)]
        return MultiPublicKey(keys, indata[-1])

    def to_crypto_bytes(self) -> bytes:
        return b"".join(key.to_crypto_bytes() for key in self.keys) + bytes([self.threshold])

    @staticmethod
    def deserialize(deserializer: Deserializer) -> MultiPublicKey:
        return MultiPublicKey.from_crypto_bytes(deserializer.to_bytes())

    def serialize(self, serializer: Serializer):
        serializer.to_bytes(self.to_crypto_bytes())


class MultiPrivateKey(asymmetric_crypto.PrivateKey):
    """
    Every member key of a K-of-N account held in one place. Signing uses the first `threshold`
    keys, which is all a single party holding the full key set needs.
    """

    keys: List[PrivateKey]
    threshold: int

    def __init__(self, keys: List[PrivateKey], threshold: int):
        _check_threshold(len(keys), threshold)
        self.keys = keys
        self.threshold = threshold

    def __eq__(self, other: object):
        if not isinstance(other, MultiPrivateKey):
            return NotImplemented
        return self.keys == other.keys and self.threshold == other.threshold

    def __str__(self) -> str:
        return f"{self.threshold}-of-{len(self.keys)} Multi-Ed25519 private key"

    @staticmethod
    def random(count: int, threshold: int) -> MultiPrivateKey:
        return MultiPrivateKey([PrivateKey.random() for _ in range(count)], threshold)

    def hex(self) -> str:
        return self._to_bytes().hex()

    def public_key(self) -> MultiPublicKey:
        return MultiPublicKey([key.public_key() for key in self.keys], self.threshold)

    def sign(self, data: bytes) -> MultiSignature:
        return MultiSignature(
            [(position, key.sign(data)) for position, key in enumerate(self.keys[: self.threshold])]
        )

    def _to_bytes(self) -> bytes:
        return b"".join(key.key.encode() for key in self.keys) + bytes([self.threshold])

    @staticmethod
    def deserialize(deserializer: Deserializer) -> MultiPrivateKey:
        indata = deserializer.to_bytes()
        keys = [PrivateKey.from_bytes(key) for key in _chunks(indata[:-1], PrivateKey.LENGTH)]
        return MultiPrivateKey(keys, indata[-1])

    def serialize(self, serializer: Serializer):
        serializer.to_bytes(self._to_bytes())


class Signature(asymmetric_crypto.Signature):
    LENGTH: int = 64

    signature: bytes

    def __init__(self, signature: bytes):
        self.signature = signature

    def __eq__(self, other: object):
        if not isinstance(other, Signature):
            return NotImplemented
        return self.signature == other.signature

    def __str__(self) -> str:
        return self.signature.hex()

    def data(self) -> bytes:
        return self.signature

    @staticmethod
    def deserialize(deserializer: Deserializer) -> Signature:
        return Signature(_fixed_length(deserializer.to_bytes(), Signature.LENGTH, "signature"))

    def serialize(self, serializer: Serializer):
        serializer.to_bytes(self.signature)


class MultiSignature(asymmetric_crypto.Signature):
    """Member signatures paired with the position of the key that produced them."""

    signatures: List[Tuple[int, Signature]]

    def __init__(self, signatures: List[Tuple[int, Signature]]):
        for position, _ in signatures:
            assert position < MAX_NUM_OF_KEYS, "bitmap value exceeds maximum value"
        # The wire format orders signatures by key position.
        self.signatures = sorted(signatures, key=lambda entry: entry[0])

    def __eq__(self, other: object):
        if not isinstance(other, MultiSignature):
            return NotImplemented
        return self.signatures == other.signatures

    def __str__(self) -> str:
        return f"{self.signatures}"

    @staticmethod
    def deserialize(deserializer: Deserializer) -> MultiSignature:
        indata = deserializer.to_bytes()
        signature_bytes, bitmap = indata[:-BITMAP_NUM_OF_BYTES], indata[-BITMAP_NUM_OF_BYTES:]
        if len(bitmap) != BITMAP_NUM_OF_BYTES or len(signature_bytes) % Signature.LENGTH != 0:
            raise ValueError(f"invalid multi-signature length: {len(indata)}")

        positions = _positions(bitmap)
        signatures = [Signature(sig) for sig in _chunks(signature_bytes, Signature.LENGTH)]
        if len(positions) != len(signatures):
            raise ValueError(
                f"multi-signature bitmap has {len(positions)} bits set "
                f"for {len(signatures)} signatures"
            )
        return MultiSignature(list(zip(positions, signatures)))

    def serialize(self, serializer: Serializer):
        signature_bytes = b"".join(signature.data() for _, signature in self.signatures)
        bitmap = _bitmap([position for position, _ in self.signatures])
        serializer.to_bytes(signature_bytes + bitmap)


class Test(unittest.TestCase):
    def test_sign_and_verify(self):
        private_key = PrivateKey.random()
        public_key = private_key.public_key()

        signature = private_key.sign(b"test_message")
        self.assertTrue(public_key.verify(b"test_message", signature))
        self.assertFalse(public_key.verify(b"other_message", signature))
        self.assertFalse(public_key.is_multi())

    def test_key_and_signature_lengths(self):
        public_key = PrivateKey.random().public_key()
        ser = Serializer()
        public_key.serialize(ser)
        self.assertEqual(ser.output()[0], PublicKey.LENGTH)
        self.assertEqual(PublicKey.deserialize(Deserializer(ser.output())), public_key)

        with self.assertRaisesRegex(ValueError, "invalid public key length: 31"):
            PublicKey.from_bytes(bytes(31))
        with self.assertRaisesRegex(ValueError, "invalid signature length: 2"):
            Signature.deserialize(Deserializer(b"\x02\x00\x00"))

    def test_bitmap(self):
        self.assertEqual(_bitmap([0, 1]).hex(), "c0000000")
        self.assertEqual(_bitmap([31]).hex(), "00000001")
        self.assertEqual(_positions(bytes.fromhex("80000101")), [0, 23, 31])

    def test_multi_public_key_bytes(self):
        keys = [
            PublicKey.from_str(
                "20fdbac9b10b7587bba7b5bc163bce69e796d71e4ed44c10fcb4488689f7a144"
            ),
            PublicKey.from_str(
                "75e4174dd58822548086f17b037cecb0ee86516b7d13400a80c856b4bdaf7fe1"
            ),
            PublicKey.from_str(
                "631c1541f3a4bf44d4d897061564aa8495d766f6191a3ff61562003f184b8c65"
            ),
        ]
        public_key = MultiPublicKey(keys, 2)
        expected = (
            "20fdbac9b10b7587bba7b5bc163bce69e796d71e4ed44c10fcb4488689f7a144"
            "75e4174dd58822548086f17b037cecb0ee86516b7d13400a80c856b4bdaf7fe1"
            "631c1541f3a4bf44d4d897061564aa8495d766f6191a3ff61562003f184b8c65"
            "02"
        )
        self.assertEqual(public_key.hex(), expected)
        self.assertTrue(public_key.is_multi())
        self.assertEqual(MultiPublicKey.from_crypto_bytes(bytes.fromhex(expected)), public_key)

    def test_multi_private_key_sign(self):
        private_key = MultiPrivateKey(
            [
                PrivateKey.from_str(
                    "76b8e0ada0f13d90405d6ae55386bd28bdd219b8a08ded1aa836efcc8b770dc7"
                ),
                PrivateKey.from_str(
                    "da41597c5157488d7724e03fb8d84a376a43b8f41518a11cc387b669b2ee6586"
                ),
                PrivateKey.from_str(
                    "9f07e7be5551387a98ba977c732d080dcb0f29a048e3656912c6533e32ee7aed"
                ),
            ],
            2,
        )
        signature = private_key.sign(b"test")

        ser = Serializer()
        signature.serialize(ser)
        expected = (
            "8401951ea9303fe7c0245a2a4c159b3f641e4623e15091a6e0557eb26144cac9ebe3"
            "ab4338b9bc7f7d54e78e9c50f3de10bf43199956f5ed0fbcd3c54a081c43b407e86b"
            "66d43e1c70a69e819247c9df579dca7d6927569a89a1863f74af7d8ebe07947425dd"
            "f6d0155b8a193c8e859a8b3f7f85191b4c613718d40d0fd3e09ca400c0000000"
        )
        self.assertEqual(ser.output().hex(), expected)
        self.assertEqual(MultiSignature.deserialize(Deserializer(ser.output())), signature)
        self.assertTrue(private_key.public_key().verify(b"test", signature))

    def test_multi_signature_verification(self):
        private_key = MultiPrivateKey.random(3, 2)
        public_key = private_key.public_key()
        signatures = [(idx, key.sign(b"test")) for idx, key in enumerate(private_key.keys)]

        self.assertTrue(public_key.verify(b"test", MultiSignature(signatures[1:])))
        self.assertFalse(public_key.verify(b"test", MultiSignature(signatures[:1])))
        self.assertFalse(public_key.verify(b"test", MultiSignature([signatures[0]] * 2)))
        self.assertFalse(public_key.verify(b"other", MultiSignature(signatures)))
        self.assertFalse(public_key.verify(b"test", signatures[0][1]))

    def test_multi_private_key_round_trip(self):
        private_key = MultiPrivateKey.random(4, 3)
        ser = Serializer()
        private_key.serialize(ser)
        self.assertEqual(MultiPrivateKey.deserialize(Deserializer(ser.output())), private_key)

    def test_multisig_range_checks(self):
        keys = [PrivateKey.random().public_key() for x in range(MAX_NUM_OF_KEYS + 1)]
        with self.assertRaisesRegex(AssertionError, "Must have between 1 and 32 keys."):
            MultiPublicKey([], 1)
        with self.assertRaisesRegex(AssertionError, "Must have between 1 and 32 keys."):
            MultiPublicKey(keys, 1)
        with self.assertRaisesRegex(AssertionError, "Threshold must be between 1 and 4."):
            MultiPublicKey(keys[0:4], 5)
        with self.assertRaisesRegex(AssertionError, "Threshold must be between 1 and 4."):
            MultiPublicKey(keys[0:4], 0)
