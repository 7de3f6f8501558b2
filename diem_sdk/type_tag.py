# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import typing
import unittest
from typing import List

from .account_address import AccountAddress
from .bcs import Deserializer, Serializer, encoder

CORE_CODE_ADDRESS = AccountAddress(b"\x00" * 15 + b"\x01")


class TypeTag:
    """TypeTag represents a type argument of a Move script."""

    BOOL: int = 0
    U8: int = 1
    U64: int = 2
    U128: int = 3
    ACCOUNT_ADDRESS: int = 4
    SIGNER: int = 5
    VECTOR: int = 6
    STRUCT: int = 7

    value: typing.Any

    def __init__(self, value: typing.Any):
        self.value = value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TypeTag):
            return NotImplemented
        return (
            self.value.variant() == other.value.variant() and self.value == other.value
        )

    def __str__(self):
        return self.value.__str__()

    def __repr__(self):
        return self.__str__()

    @staticmethod
    def deserialize(deserializer: Deserializer) -> TypeTag:
        variant = deserializer.uleb128()
        if variant in PrimitiveTag.NAMES:
            return TypeTag(PrimitiveTag(variant))
        elif variant == TypeTag.VECTOR:
            return TypeTag(VectorTag.deserialize(deserializer))
        elif variant == TypeTag.STRUCT:
            return TypeTag(StructTag.deserialize(deserializer))
        raise Exception(f"Invalid type tag: {variant}")

    def serialize(self, serializer: Serializer):
        serializer.uleb128(self.value.variant())
        serializer.struct(self.value)


class PrimitiveTag:
    """Primitive type tags carry no value, only the variant index."""

    NAMES = {
        TypeTag.BOOL: "bool",
        TypeTag.U8: "u8",
        TypeTag.U64: "u64",
        TypeTag.U128: "u128",
        TypeTag.ACCOUNT_ADDRESS: "address",
        TypeTag.SIGNER: "signer",
    }

    tag: int

    def __init__(self, tag: int):
        if tag not in PrimitiveTag.NAMES:
            raise Exception(f"Not a primitive type tag: {tag}")
        self.tag = tag

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PrimitiveTag):
            return NotImplemented
        return self.tag == other.tag

    def __str__(self):
        return PrimitiveTag.NAMES[self.tag]

    def variant(self):
        return self.tag

    def serialize(self, serializer: Serializer):
        pass


class VectorTag:
    value: TypeTag

    def __init__(self, value: TypeTag):
        self.value = value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VectorTag):
            return NotImplemented
        return self.value == other.value

    def __str__(self):
        return f"vector<{self.value}>"

    def variant(self):
        return TypeTag.VECTOR

    @staticmethod
    def deserialize(deserializer: Deserializer) -> VectorTag:
        return VectorTag(deserializer.struct(TypeTag))

    def serialize(self, serializer: Serializer):
        serializer.struct(self.value)


class StructTag:
    address: AccountAddress
    module: str
    name: str
    type_args: List[TypeTag]

    def __init__(self, address, module, name, type_args):
        self.address = address
        self.module = module
        self.name = name
        self.type_args = type_args

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StructTag):
            return NotImplemented
        return (
            self.address == other.address
            and self.module == other.module
            and self.name == other.name
            and self.type_args == other.type_args
        )

    def __str__(self) -> str:
        value = f"{self.address}::{self.module}::{self.name}"
        if len(self.type_args) > 0:
            value += f"<{self.type_args[0]}"
            for type_arg in self.type_args[1:]:
                value += f", {type_arg}"
            value += ">"
        return value

    def variant(self):
        return TypeTag.STRUCT

    @staticmethod
    def deserialize(deserializer: Deserializer) -> StructTag:
        address = deserializer.struct(AccountAddress)
        module = deserializer.str()
        name = deserializer.str()
        type_args = deserializer.sequence(TypeTag.deserialize)
        return StructTag(address, module, name, type_args)

    def serialize(self, serializer: Serializer):
        self.address.serialize(serializer)
        serializer.str(self.module)
        serializer.str(self.name)
        serializer.sequence(self.type_args, Serializer.struct)


def currency_type_tag(currency_code: str) -> TypeTag:
    """The type tag of a currency is the struct `0x1::<code>::<code>`."""
    return TypeTag(StructTag(CORE_CODE_ADDRESS, currency_code, currency_code, []))


class Test(unittest.TestCase):
    def test_currency_type_tag(self):
        tag = currency_type_tag("XDX")
        self.assertEqual(str(tag), "00000000000000000000000000000001::XDX::XDX")
        self.assertEqual(
            encoder(tag, Serializer.struct).hex(),
            "0700000000000000000000000000000001035844580358445800",
        )

    def test_primitive_tags_have_no_payload(self):
        u64 = TypeTag(PrimitiveTag(TypeTag.U64))
        self.assertEqual(encoder(u64, Serializer.struct), b"\x02")
        bytes_tag = TypeTag(VectorTag(TypeTag(PrimitiveTag(TypeTag.U8))))
        self.assertEqual(encoder(bytes_tag, Serializer.struct), b"\x06\x01")

    def test_round_trip(self):
        tag = TypeTag(
            StructTag(
                CORE_CODE_ADDRESS,
                "Diem",
                "Diem",
                [
                    currency_type_tag("XUS"),
                    TypeTag(VectorTag(TypeTag(PrimitiveTag(TypeTag.BOOL)))),
                ],
            )
        )
        self.assertEqual(Deserializer(encoder(tag, Serializer.struct)).struct(TypeTag), tag)
        self.assertEqual(
            str(tag),
            "00000000000000000000000000000001::Diem::Diem"
            "<00000000000000000000000000000001::XUS::XUS, vector<bool>>",
        )

    def test_invalid_variant(self):
        with self.assertRaises(Exception):
            Deserializer(b"\x09").struct(TypeTag)
