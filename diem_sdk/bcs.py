# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
BCS (Binary Canonical Serialization) for the Diem wire types. Learn more at
https://github.com/diem/bcs

Every value has exactly one encoding: integers are little-endian and fixed width, byte strings,
strings and sequences carry a ULEB128 length prefix, and enum variants are tagged with a ULEB128
index. Signatures are computed over these bytes, so nothing here may depend on dict ordering or
any other incidental state.
"""

from __future__ import annotations

import io
import typing
import unittest

from typing_extensions import Protocol

MAX_U8 = 2**8 - 1
MAX_U16 = 2**16 - 1
MAX_U32 = 2**32 - 1
MAX_U64 = 2**64 - 1
MAX_U128 = 2**128 - 1


class Deserializable(Protocol):
    @staticmethod
    def deserialize(deserializer: Deserializer) -> typing.Any:
        ...


class Serializable(Protocol):
    def serialize(self, serializer: Serializer):
        ...

    def to_bcs(self) -> bytes:
        ser = Serializer()
        self.serialize(ser)
        return ser.output()


class Deserializer:
    _input: io.BytesIO
    _length: int

    def __init__(self, data: bytes):
        self._length = len(data)
        self._input = io.BytesIO(data)

    def remaining(self) -> int:
        return self._length - self._input.tell()

    def bool(self) -> bool:
        value = int.from_bytes(self._read(1), byteorder="little", signed=False)
        if value == 0:
            return False
        elif value == 1:
            return True
        else:
            raise Exception("Unexpected boolean value: ", value)

    def to_bytes(self) -> bytes:
        return self._read(self.uleb128())

    def fixed_bytes(self, length: int) -> bytes:
        return self._read(length)

    def option(
        self, value_decoder: typing.Callable[[Deserializer], typing.Any]
    ) -> typing.Optional[typing.Any]:
        if self.bool():
            return value_decoder(self)
        return None

    def sequence(
        self,
        value_decoder: typing.Callable[[Deserializer], typing.Any],
    ) -> typing.List[typing.Any]:
        length = self.uleb128()
        values = []
        while len(values) < length:
            values.append(value_decoder(self))
        return values

    def str(self) -> str:
        return self.to_bytes().decode()

    def struct(self, struct: typing.Any) -> typing.Any:
        return struct.deserialize(self)

    def u8(self) -> int:
        return self._read_int(1)

    def u16(self) -> int:
        return self._read_int(2)

    def u32(self) -> int:
        return self._read_int(4)

    def u64(self) -> int:
        return self._read_int(8)

    def u128(self) -> int:
        return self._read_int(16)

    def uleb128(self) -> int:
        value = 0
        shift = 0

        while value <= MAX_U32:
            byte = self._read_int(1)
            value |= (byte & 0x7F) << shift
            if byte & 0x80 == 0:
                break
            shift += 7

        if value > MAX_U32:
            raise Exception("Unexpectedly large uleb128 value")

        return value

    def variant_index(self) -> int:
        return self.uleb128()

    def _read(self, length: int) -> bytes:
        value = self._input.read(length)
        if value is None or len(value) < length:
            actual_length = 0 if value is None else len(value)
            error = (
                f"Unexpected end of input. Requested: {length}, found: {actual_length}"
            )
            raise Exception(error)
        return value

    def _read_int(self, length: int) -> int:
        return int.from_bytes(self._read(length), byteorder="little", signed=False)


class Serializer:
    _output: io.BytesIO

    def __init__(self):
        self._output = io.BytesIO()

    def output(self) -> bytes:
        return self._output.getvalue()

    def bool(self, value: bool):
        self._write_int(int(value), 1)

    def to_bytes(self, value: bytes):
        self.uleb128(len(value))
        self._output.write(value)

    def fixed_bytes(self, value):
        self._output.write(value)

    def option(
        self,
        value: typing.Optional[typing.Any],
        value_encoder: typing.Callable[[Serializer, typing.Any], None],
    ):
        if value is None:
            self.bool(False)
        else:
            self.bool(True)
            value_encoder(self, value)

    @staticmethod
    def sequence_serializer(
        value_encoder: typing.Callable[[Serializer, typing.Any], None],
    ):
        return lambda self, values: self.sequence(values, value_encoder)

    def sequence(
        self,
        values: typing.List[typing.Any],
        value_encoder: typing.Callable[[Serializer, typing.Any], None],
    ):
        self.uleb128(len(values))
        for value in values:
            self.fixed_bytes(encoder(value, value_encoder))

    def str(self, value: str):
        self.to_bytes(value.encode())

    def struct(self, value: typing.Any):
        value.serialize(self)

    def u8(self, value: int):
        if value > MAX_U8:
            raise Exception(f"Cannot encode {value} into u8")

        self._write_int(value, 1)

    def u16(self, value: int):
        if value > MAX_U16:
            raise Exception(f"Cannot encode {value} into u16")

        self._write_int(value, 2)

    def u32(self, value: int):
        if value > MAX_U32:
            raise Exception(f"Cannot encode {value} into u32")

        self._write_int(value, 4)

    def u64(self, value: int):
        if value > MAX_U64:
            raise Exception(f"Cannot encode {value} into u64")

        self._write_int(value, 8)

    def u128(self, value: int):
        if value > MAX_U128:
            raise Exception(f"Cannot encode {value} into u128")

        self._write_int(value, 16)

    def uleb128(self, value: int):
        if value > MAX_U32:
            raise Exception(f"Cannot encode {value} into uleb128")

        while value >= 0x80:
            # Write 7 (lowest) bits of data and set the 8th bit to 1.
            byte = value & 0x7F
            self.u8(byte | 0x80)
            value >>= 7

        # Write the remaining bits of data and set the highest bit to 0.
        self.u8(value & 0x7F)

    def variant_index(self, value: int):
        self.uleb128(value)

    def _write_int(self, value: int, length: int):
        if value < 0:
            raise Exception(f"Cannot encode negative value {value}")
        self._output.write(value.to_bytes(length, "little", signed=False))


def encoder(
    value: typing.Any, encoder: typing.Callable[[Serializer, typing.Any], None]
) -> bytes:
    ser = Serializer()
    encoder(ser, value)
    return ser.output()


class Test(unittest.TestCase):
    def test_integers_are_little_endian(self):
        ser = Serializer()
        ser.u8(0x01)
        ser.u16(0x0302)
        ser.u32(0x07060504)
        ser.u64(0x0F0E0D0C0B0A0908)
        self.assertEqual(ser.output().hex(), "0102030405060708090a0b0c0d0e0f")

        der = Deserializer(ser.output())
        self.assertEqual(der.u8(), 0x01)
        self.assertEqual(der.u16(), 0x0302)
        self.assertEqual(der.u32(), 0x07060504)
        self.assertEqual(der.u64(), 0x0F0E0D0C0B0A0908)
        self.assertEqual(der.remaining(), 0)

    def test_uleb128_known_encodings(self):
        cases = {0: "00", 1: "01", 127: "7f", 128: "8001", 224: "e001", 16384: "808001"}
        for value, expected in cases.items():
            self.assertEqual(encoder(value, Serializer.uleb128).hex(), expected)
            self.assertEqual(Deserializer(bytes.fromhex(expected)).uleb128(), value)

    def test_str_is_length_prefixed(self):
        self.assertEqual(encoder("XUS", Serializer.str).hex(), "03585553")

    def test_option(self):
        self.assertEqual(encoder(None, lambda s, v: s.option(v, Serializer.u64)), b"\x00")
        encoded = encoder(123, lambda s, v: s.option(v, Serializer.u64))
        self.assertEqual(encoded.hex(), "017b00000000000000")
        self.assertEqual(Deserializer(encoded).option(Deserializer.u64), 123)

    def test_sequence_of_strings(self):
        ser = Serializer()
        seq_ser = Serializer.sequence_serializer(Serializer.str)
        seq_ser(ser, ["a", "bc"])
        self.assertEqual(ser.output().hex(), "020161026263")
        self.assertEqual(Deserializer(ser.output()).sequence(Deserializer.str), ["a", "bc"])

    def test_bool_error(self):
        ser = Serializer()
        ser.u8(32)
        der = Deserializer(ser.output())
        with self.assertRaises(Exception):
            der.bool()

    def test_range_errors(self):
        with self.assertRaises(Exception):
            Serializer().u8(256)
        with self.assertRaises(Exception):
            Serializer().u64(MAX_U64 + 1)
        with self.assertRaises(Exception):
            Serializer().u64(-1)

    def test_unexpected_end_of_input(self):
        with self.assertRaisesRegex(Exception, "Unexpected end of input"):
            Deserializer(b"\x01\x02").u64()


if __name__ == "__main__":
    unittest.main()
