# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Bech32 (BIP-0173) primitives used by Diem account identifiers.

Account identifiers use the original Bech32 checksum constant (1, not the Bech32m constant) and
carry a witness version as the first 5-bit group, the way segwit addresses do:

    hrp + "1" + version + data (8 to 5 bit regrouped) + 6 checksum groups

References
----------
BIP-0173: https://github.com/bitcoin/bips/blob/master/bip-0173.mediawiki
LIP-5: https://github.com/diem/lip/blob/master/lips/lip-5.md
"""

from __future__ import annotations

import secrets
import unittest
from typing import List, Sequence, Tuple

CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
CHARSET_REV = {c: i for i, c in enumerate(CHARSET)}

BECH32_CONST = 1
CHECKSUM_LENGTH = 6
MAX_LENGTH = 90
MAX_WITNESS_VERSION = 16

_GENERATORS = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)


class Bech32Error(ValueError):
    pass


def polymod(values: Sequence[int]) -> int:
    chk = 1
    for v in values:
        top = chk >> 25
        chk = ((chk & 0x1FFFFFF) << 5) ^ v
        for i in range(5):
            if (top >> i) & 1:
                chk ^= _GENERATORS[i]
    return chk


def hrp_expand(hrp: str) -> List[int]:
    return [ord(x) >> 5 for x in hrp] + [0] + [ord(x) & 31 for x in hrp]


def create_checksum(hrp: str, data: Sequence[int]) -> List[int]:
    values = hrp_expand(hrp) + list(data)
    mod = polymod(values + [0] * CHECKSUM_LENGTH) ^ BECH32_CONST
    return [(mod >> 5 * (5 - i)) & 31 for i in range(CHECKSUM_LENGTH)]


def verify_checksum(hrp: str, data: Sequence[int]) -> bool:
    return polymod(hrp_expand(hrp) + list(data)) == BECH32_CONST


def encode(hrp: str, data: Sequence[int]) -> str:
    """Encode a human readable part and 5-bit groups into a Bech32 string."""
    if not hrp or any(ord(c) < 33 or ord(c) > 126 for c in hrp):
        raise Bech32Error(f"invalid human readable part: {hrp!r}")
    if hrp.lower() != hrp:
        raise Bech32Error(f"human readable part must be lower case: {hrp!r}")
    if any(d < 0 or d > 31 for d in data):
        raise Bech32Error("data values must be 5-bit")

    combined = list(data) + create_checksum(hrp, data)
    bech = hrp + "1" + "".join(CHARSET[d] for d in combined)
    if len(bech) > MAX_LENGTH:
        raise Bech32Error(f"invalid length: {len(bech)}")
    return bech


def decode(bech: str) -> Tuple[str, List[int]]:
    """
    Decode a Bech32 string into its human readable part and 5-bit data groups, checksum
    stripped. Mixed case strings are rejected; all upper case strings are read as lower case.
    """
    if len(bech) > MAX_LENGTH:
        raise Bech32Error(f"invalid length: {len(bech)}")
    if any(ord(c) < 33 or ord(c) > 126 for c in bech):
        raise Bech32Error("invalid character in string")
    if bech.lower() != bech and bech.upper() != bech:
        raise Bech32Error("mixed case string")
    bech = bech.lower()

    pos = bech.rfind("1")
    if pos < 1 or pos + CHECKSUM_LENGTH + 1 > len(bech):
        raise Bech32Error("invalid separator position")

    hrp = bech[:pos]
    data = []
    for c in bech[pos + 1 :]:
        if c not in CHARSET_REV:
            raise Bech32Error(f"invalid character in data part: {c!r}")
        data.append(CHARSET_REV[c])

    if not verify_checksum(hrp, data):
        raise Bech32Error("invalid checksum")

    return hrp, data[:-CHECKSUM_LENGTH]


def convertbits(data: Sequence[int], frombits: int, tobits: int, pad: bool) -> List[int]:
    """General power-of-2 base conversion, e.g. 8-bit bytes to 5-bit groups."""
    acc = 0
    bits = 0
    ret = []
    maxv = (1 << tobits) - 1
    max_acc = (1 << (frombits + tobits - 1)) - 1
    for value in data:
        if value < 0 or (value >> frombits):
            raise Bech32Error(f"invalid data value: {value}")
        acc = ((acc << frombits) | value) & max_acc
        bits += frombits
        while bits >= tobits:
            bits -= tobits
            ret.append((acc >> bits) & maxv)
    if pad:
        if bits:
            ret.append((acc << (tobits - bits)) & maxv)
    elif bits >= frombits or ((acc << (tobits - bits)) & maxv):
        raise Bech32Error("invalid padding")
    return ret


def encode_with_version(hrp: str, version: int, program: bytes) -> str:
    """Encode `program` bytes behind a witness version group."""
    if version < 0 or version > MAX_WITNESS_VERSION:
        raise Bech32Error(f"invalid version: {version}")
    return encode(hrp, [version] + convertbits(program, 8, 5, True))


def decode_with_version(hrp: str, bech: str) -> Tuple[int, bytes]:
    """
    Decode a string produced by `encode_with_version`, requiring its human readable part to equal
    `hrp`. Returns the witness version and the program bytes.
    """
    got_hrp, data = decode(bech)
    if got_hrp != hrp:
        raise Bech32Error(f"prefix mismatch: expected {hrp!r}, but got {got_hrp!r}")
    if not data:
        raise Bech32Error("missing version")
    if data[0] > MAX_WITNESS_VERSION:
        raise Bech32Error(f"invalid version: {data[0]}")
    return data[0], bytes(convertbits(data[1:], 5, 8, False))


class Test(unittest.TestCase):
    def test_bip173_valid_checksums(self):
        for value in [
            "A12UEL5L",
            "a12uel5l",
            "abcdef1qpzry9x8gf2tvdw0s3jn54khce6mua7lmqqqxw",
            "split1checkupstagehandshakeupstreamerranterredcaperred2y9e3w",
            "?1ezyfcl",
        ]:
            hrp, _ = decode(value)
            self.assertEqual(hrp, value.lower()[: value.lower().rfind("1")])

    def test_bip173_invalid(self):
        for value in [
            "pzry9x0s0muk",  # no separator
            "1pzry9x0s0muk",  # empty hrp
            "x1b4n0q5v",  # invalid data character
            "li1dgmt3",  # too short checksum
            "A1G7SGD8",  # checksum calculated with upper case hrp
            "a12UEL5L",  # mixed case
        ]:
            with self.assertRaises(Bech32Error):
                decode(value)

    def test_encode_round_trip(self):
        data = convertbits(bytes(range(24)), 8, 5, True)
        encoded = encode("lbr", [1] + data)
        self.assertEqual(decode(encoded), ("lbr", [1] + data))
        self.assertEqual(decode_with_version("lbr", encoded), (1, bytes(range(24))))

    def test_convertbits_rejects_bad_padding(self):
        with self.assertRaisesRegex(Bech32Error, "invalid padding"):
            convertbits([31, 31], 5, 8, False)

    def test_prefix_mismatch(self):
        encoded = encode_with_version("lbr", 1, bytes(24))
        with self.assertRaisesRegex(Bech32Error, "prefix mismatch"):
            decode_with_version("tlb", encoded)

    def test_encode_rejects_upper_case_hrp(self):
        for hrp in ["LBR", "lBr"]:
            with self.assertRaisesRegex(Bech32Error, "must be lower case"):
                encode_with_version(hrp, 1, bytes(24))

    def test_random_programs_round_trip(self):
        for hrp in ["lbr", "tlb"]:
            for _ in range(100):
                program = secrets.token_bytes(24)
                encoded = encode_with_version(hrp, 1, program)
                self.assertEqual(decode_with_version(hrp, encoded), (1, program))
