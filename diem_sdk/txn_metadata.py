# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Metadata attached to peer to peer payments, which lets custodial accounts tell which of their
sub-accounts a payment is for, carry travel rule references, and refund received payments.
"""

from __future__ import annotations

import typing
import unittest

from .account_address import AccountAddress, SubAddress
from .bcs import Deserializer, Serializable, Serializer

ATTEST_SUFFIX = b"@@$$DIEM_ATTEST$$@@"
RECEIVED_PAYMENT_EVENT = "receivedpayment"


class GeneralMetadataV0:
    VERSION: int = 0

    to_subaddress: typing.Optional[bytes]
    from_subaddress: typing.Optional[bytes]
    referenced_event: typing.Optional[int]

    def __init__(
        self,
        to_subaddress: typing.Optional[bytes] = None,
        from_subaddress: typing.Optional[bytes] = None,
        referenced_event: typing.Optional[int] = None,
    ):
        self.to_subaddress = to_subaddress
        self.from_subaddress = from_subaddress
        self.referenced_event = referenced_event

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, GeneralMetadataV0):
            return NotImplemented
        return (
            self.to_subaddress == other.to_subaddress
            and self.from_subaddress == other.from_subaddress
            and self.referenced_event == other.referenced_event
        )

    def __repr__(self) -> str:
        return (
            f"GeneralMetadataV0(to_subaddress={self.to_subaddress!r}, "
            f"from_subaddress={self.from_subaddress!r}, "
            f"referenced_event={self.referenced_event!r})"
        )

    @staticmethod
    def deserialize(deserializer: Deserializer) -> GeneralMetadataV0:
        to_subaddress = deserializer.option(Deserializer.to_bytes)
        from_subaddress = deserializer.option(Deserializer.to_bytes)
        referenced_event = deserializer.option(Deserializer.u64)
        return GeneralMetadataV0(to_subaddress, from_subaddress, referenced_event)

    def serialize(self, serializer: Serializer):
        serializer.option(self.to_subaddress, Serializer.to_bytes)
        serializer.option(self.from_subaddress, Serializer.to_bytes)
        serializer.option(self.referenced_event, Serializer.u64)


class TravelRuleMetadataV0:
    VERSION: int = 0

    off_chain_reference_id: typing.Optional[str]

    def __init__(self, off_chain_reference_id: typing.Optional[str] = None):
        self.off_chain_reference_id = off_chain_reference_id

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TravelRuleMetadataV0):
            return NotImplemented
        return self.off_chain_reference_id == other.off_chain_reference_id

    def __repr__(self) -> str:
        return f"TravelRuleMetadataV0(off_chain_reference_id={self.off_chain_reference_id!r})"

    @staticmethod
    def deserialize(deserializer: Deserializer) -> TravelRuleMetadataV0:
        return TravelRuleMetadataV0(deserializer.option(Deserializer.str))

    def serialize(self, serializer: Serializer):
        serializer.option(self.off_chain_reference_id, Serializer.str)


class UnstructuredBytesMetadata:
    metadata: typing.Optional[bytes]

    def __init__(self, metadata: typing.Optional[bytes] = None):
        self.metadata = metadata

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, UnstructuredBytesMetadata):
            return NotImplemented
        return self.metadata == other.metadata

    def __repr__(self) -> str:
        return f"UnstructuredBytesMetadata(metadata={self.metadata!r})"

    @staticmethod
    def deserialize(deserializer: Deserializer) -> UnstructuredBytesMetadata:
        return UnstructuredBytesMetadata(deserializer.option(Deserializer.to_bytes))

    def serialize(self, serializer: Serializer):
        serializer.option(self.metadata, Serializer.to_bytes)


class RefundReason:
    OTHER_REASON: int = 0
    INVALID_SUBADDRESS: int = 1
    USER_INITIATED_PARTIAL_REFUND: int = 2
    USER_INITIATED_FULL_REFUND: int = 3


class RefundMetadataV0:
    VERSION: int = 0

    transaction_version: int
    reason: int

    def __init__(self, transaction_version: int, reason: int):
        self.transaction_version = transaction_version
        self.reason = reason

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RefundMetadataV0):
            return NotImplemented
        return (
            self.transaction_version == other.transaction_version
            and self.reason == other.reason
        )

    def __repr__(self) -> str:
        return (
            f"RefundMetadataV0(transaction_version={self.transaction_version}, "
            f"reason={self.reason})"
        )

    @staticmethod
    def deserialize(deserializer: Deserializer) -> RefundMetadataV0:
        transaction_version = deserializer.u64()
        reason = deserializer.variant_index()
        if reason > RefundReason.USER_INITIATED_FULL_REFUND:
            raise ValueError(f"Unknown variant index for RefundReason: {reason}")
        return RefundMetadataV0(transaction_version, reason)

    def serialize(self, serializer: Serializer):
        serializer.u64(self.transaction_version)
        serializer.variant_index(self.reason)


class Metadata(Serializable):
    UNDEFINED: int = 0
    GENERAL: int = 1
    TRAVEL_RULE: int = 2
    UNSTRUCTURED_BYTES: int = 3
    REFUND: int = 4

    # Variants whose value is itself an enum of versions, of which only version 0 exists.
    VERSIONED: typing.Dict[int, typing.Any] = {
        GENERAL: GeneralMetadataV0,
        TRAVEL_RULE: TravelRuleMetadataV0,
        REFUND: RefundMetadataV0,
    }

    variant: int
    value: typing.Any

    def __init__(self, variant: int, value: typing.Any = None):
        self.variant = variant
        self.value = value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Metadata):
            return NotImplemented
        return self.variant == other.variant and self.value == other.value

    def __repr__(self) -> str:
        return f"Metadata({self.variant}, {self.value!r})"

    @staticmethod
    def deserialize(deserializer: Deserializer) -> Metadata:
        variant = deserializer.variant_index()
        if variant == Metadata.UNDEFINED:
            return Metadata(variant)
        if variant == Metadata.UNSTRUCTURED_BYTES:
            return Metadata(variant, UnstructuredBytesMetadata.deserialize(deserializer))
        if variant not in Metadata.VERSIONED:
            raise ValueError(f"Unknown variant index for Metadata: {variant}")

        value_type = Metadata.VERSIONED[variant]
        version = deserializer.variant_index()
        if version != value_type.VERSION:
            raise ValueError(f"Unknown version for {value_type.__name__}: {version}")
        return Metadata(variant, value_type.deserialize(deserializer))

    def serialize(self, serializer: Serializer):
        serializer.variant_index(self.variant)
        if self.variant == Metadata.UNDEFINED:
            return
        if self.variant in Metadata.VERSIONED:
            serializer.variant_index(self.value.VERSION)
        self.value.serialize(serializer)


def travel_rule_metadata(
    off_chain_reference_id: str, sender: AccountAddress, amount: int
) -> typing.Tuple[bytes, bytes]:
    """
    Returns the metadata for a payment between two custodial accounts above the travel rule
    threshold, and the message the receiver signs to produce the metadata signature:
    bcs(metadata) | sender | u64(amount) | "@@$$DIEM_ATTEST$$@@".
    """
    metadata = Metadata(Metadata.TRAVEL_RULE, TravelRuleMetadataV0(off_chain_reference_id))

    ser = Serializer()
    metadata.serialize(ser)
    sender.serialize(ser)
    ser.u64(amount)
    return metadata.to_bcs(), ser.output() + ATTEST_SUFFIX


def general_metadata_to_sub_address(to_subaddress: SubAddress) -> bytes:
    """For payments from a non-custodial account to a custodial one."""
    return _general_metadata(None, to_subaddress.address)


def general_metadata_from_sub_address(from_subaddress: SubAddress) -> bytes:
    """For payments from a custodial account to a non-custodial one."""
    return _general_metadata(from_subaddress.address, None)


def general_metadata_with_from_to_sub_addresses(
    from_subaddress: SubAddress, to_subaddress: SubAddress
) -> bytes:
    """For payments between custodial accounts below the travel rule threshold."""
    return _general_metadata(from_subaddress.address, to_subaddress.address)


def _general_metadata(
    from_subaddress: typing.Optional[bytes], to_subaddress: typing.Optional[bytes]
) -> bytes:
    return Metadata(Metadata.GENERAL, GeneralMetadataV0(to_subaddress, from_subaddress)).to_bcs()


def find_refund_reference_event(
    txn: typing.Optional[typing.Dict[str, typing.Any]], receiver: AccountAddress
) -> typing.Optional[typing.Dict[str, typing.Any]]:
    """The `receivedpayment` event of `txn` whose receiver is `receiver`, if any."""
    if txn is None:
        return None
    address = receiver.hex()
    for event in txn.get("events") or []:
        data = event.get("data") or {}
        if data.get("type") == RECEIVED_PAYMENT_EVENT and data.get("receiver") == address:
            return event
    return None


def deserialize_metadata(
    event: typing.Optional[typing.Dict[str, typing.Any]]
) -> typing.Optional[Metadata]:
    """Decodes the metadata of a payment event. Returns None if the event carries none."""
    if event is None:
        raise ValueError("must provide refund reference event")

    metadata_hex = (event.get("data") or {}).get("metadata") or ""
    if metadata_hex == "":
        return None
    try:
        metadata_bytes = bytes.fromhex(metadata_hex)
    except ValueError as e:
        raise ValueError(f"decode event metadata failed: {e}") from e
    try:
        return Metadata.deserialize(Deserializer(metadata_bytes))
    except Exception as e:
        raise ValueError(f"can't deserialize metadata: {e}") from e


def refund_metadata_from_event(
    event: typing.Optional[typing.Dict[str, typing.Any]]
) -> typing.Optional[bytes]:
    """
    Metadata for refunding a received payment that carried general metadata: the sub-addresses
    are swapped and the payment event is referenced by its sequence number. Payments with travel
    rule metadata are refunded like a regular payment and need none of this.
    """
    metadata = deserialize_metadata(event)
    if metadata is None:
        return None
    if metadata.variant != Metadata.GENERAL:
        raise ValueError(f"can't handle metadata: {metadata}")

    general = metadata.value
    refund = GeneralMetadataV0(
        to_subaddress=general.from_subaddress,
        from_subaddress=general.to_subaddress,
        referenced_event=int(event["sequence_number"]),
    )
    return Metadata(Metadata.GENERAL, refund).to_bcs()


class Test(unittest.TestCase):
    address = AccountAddress.from_hex("f72589b71ff4f8d139674a3f7369c69b")
    sub_address = SubAddress.from_hex("8f8b82153010a1bd")

    def test_travel_rule_metadata(self):
        metadata, signing_msg = travel_rule_metadata("off chain reference id", self.address, 1000)
        self.assertEqual(
            metadata.hex(), "020001166f666620636861696e207265666572656e6365206964"
        )
        self.assertEqual(
            signing_msg.hex(),
            "020001166f666620636861696e207265666572656e6365206964"
            "f72589b71ff4f8d139674a3f7369c69b"
            "e803000000000000"
            "404024244449454d5f41545445535424244040",
        )

    def test_general_metadata(self):
        self.assertEqual(
            general_metadata_to_sub_address(self.sub_address).hex(),
            "010001088f8b82153010a1bd0000",
        )
        self.assertEqual(
            general_metadata_from_sub_address(self.sub_address).hex(),
            "01000001088f8b82153010a1bd00",
        )
        self.assertEqual(
            general_metadata_with_from_to_sub_addresses(
                self.sub_address, SubAddress.from_hex("111111153010a111")
            ).hex(),
            "01000108111111153010a11101088f8b82153010a1bd00",
        )

    def test_metadata_variants_round_trip(self):
        values = [
            Metadata(Metadata.UNDEFINED),
            Metadata(Metadata.UNSTRUCTURED_BYTES, UnstructuredBytesMetadata(b"hello")),
            Metadata(Metadata.REFUND, RefundMetadataV0(42, RefundReason.INVALID_SUBADDRESS)),
        ]
        for value in values:
            self.assertEqual(Metadata.deserialize(Deserializer(value.to_bcs())), value)
        self.assertEqual(values[2].to_bcs().hex(), "0400" + "2a00000000000000" + "01")

    def _event(self, event_type, receiver, metadata="", sequence_number=123):
        return {
            "key": "00" * 24,
            "sequence_number": sequence_number,
            "transaction_version": 10,
            "data": {"type": event_type, "receiver": receiver, "metadata": metadata},
        }

    def test_find_refund_reference_event(self):
        receiver = self.address.hex()
        self.assertIsNone(find_refund_reference_event(None, self.address))

        txn = {
            "events": [
                self._event("unknowntype", receiver),
                self._event("receivedpayment", "unknown address"),
                self._event("receivedpayment", receiver),
            ]
        }
        event = find_refund_reference_event(txn, self.address)
        self.assertEqual(event["data"]["type"], "receivedpayment")
        self.assertEqual(event["data"]["receiver"], receiver)

        txn["events"].pop()
        self.assertIsNone(find_refund_reference_event(txn, self.address))

    def test_refund_metadata_from_event(self):
        first = SubAddress(bytes([1, 2, 3, 4, 5, 6, 7, 8]))
        second = SubAddress(bytes([8, 7, 6, 5, 4, 3, 2, 1]))
        receiver = self.address.hex()

        cases = [
            (
                general_metadata_with_from_to_sub_addresses(first, second),
                GeneralMetadataV0(first.address, second.address, 123),
            ),
            (
                general_metadata_from_sub_address(first),
                GeneralMetadataV0(first.address, None, 123),
            ),
            (
                general_metadata_to_sub_address(first),
                GeneralMetadataV0(None, first.address, 123),
            ),
        ]
        for metadata, expected in cases:
            event = self._event("receivedpayment", receiver, metadata.hex())
            refund = refund_metadata_from_event(event)
            self.assertEqual(
                Metadata.deserialize(Deserializer(refund)),
                Metadata(Metadata.GENERAL, expected),
            )

    def test_refund_metadata_errors(self):
        receiver = self.address.hex()
        with self.assertRaisesRegex(ValueError, "must provide refund reference event"):
            refund_metadata_from_event(None)
        with self.assertRaisesRegex(ValueError, "decode event metadata failed"):
            refund_metadata_from_event(self._event("receivedpayment", receiver, "lj;lafda"))
        with self.assertRaisesRegex(
            ValueError, "can't deserialize metadata: Unknown variant index for Metadata: 17"
        ):
            refund_metadata_from_event(self._event("receivedpayment", receiver, "1112233333"))

        travel_rule, _ = travel_rule_metadata("ref", self.address, 1)
        with self.assertRaisesRegex(ValueError, "can't handle metadata"):
            refund_metadata_from_event(
                self._event("receivedpayment", receiver, travel_rule.hex())
            )

    def test_empty_metadata(self):
        event = self._event("receivedpayment", self.address.hex(), "")
        self.assertIsNone(deserialize_metadata(event))
        self.assertIsNone(refund_metadata_from_event(event))
