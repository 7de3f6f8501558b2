# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Builds and signs Diem script transactions. Signing is a pure function of its inputs: the same
fields always produce the same signing message, and Ed25519 signatures are deterministic, so
the same key signs them into byte-identical submittable transactions.
"""

from __future__ import annotations

import typing
import unittest

from . import asymmetric_crypto, ed25519
from .account_address import AccountAddress
from .authenticator import Authenticator
from .transactions import (
    RawTransaction,
    Script,
    SignedTransaction,
    TransactionArgument,
    TransactionPayload,
)
from .type_tag import currency_type_tag


def new_raw_transaction_and_signing_msg(
    sender: AccountAddress,
    sequence_number: int,
    script: Script,
    max_gas_amount: int,
    gas_unit_price: int,
    gas_currency_code: str,
    expiration_timestamp_secs: int,
    chain_id: int,
) -> typing.Tuple[RawTransaction, bytes]:
    raw_txn = RawTransaction(
        sender=sender,
        sequence_number=sequence_number,
        payload=TransactionPayload(script),
        max_gas_amount=max_gas_amount,
        gas_unit_price=gas_unit_price,
        gas_currency_code=gas_currency_code,
        expiration_timestamp_secs=expiration_timestamp_secs,
        chain_id=chain_id,
    )
    return raw_txn, raw_txn.keyed()


def new_signed_transaction(
    public_key: asymmetric_crypto.PublicKey,
    raw_txn: RawTransaction,
    signature: asymmetric_crypto.Signature,
) -> SignedTransaction:
    """Attach a signature produced elsewhere, e.g. by an HSM, to a raw transaction."""
    return SignedTransaction(raw_txn, Authenticator.from_key(public_key, signature))


def sign(
    private_key: asymmetric_crypto.PrivateKey,
    sender: AccountAddress,
    sequence_number: int,
    script: Script,
    max_gas_amount: int,
    gas_unit_price: int,
    gas_currency_code: str,
    expiration_timestamp_secs: int,
    chain_id: int,
) -> SignedTransaction:
    raw_txn, signing_msg = new_raw_transaction_and_signing_msg(
        sender,
        sequence_number,
        script,
        max_gas_amount,
        gas_unit_price,
        gas_currency_code,
        expiration_timestamp_secs,
        chain_id,
    )
    return new_signed_transaction(
        private_key.public_key(), raw_txn, private_key.sign(signing_msg)
    )


# Compiled peer_to_peer_with_metadata script from the Diem framework.
PEER_TO_PEER_WITH_METADATA_CODE = bytes.fromhex(
    "a11ceb0b010000000701000202020403061004160205181d07356008950110000000010100000200"
    "01000003020301010004010300010501060c0108000506080005030a020a020005060c05030a020a"
    "020109000b4469656d4163636f756e741257697468647261774361706162696c6974791b65787472"
    "6163745f77697468647261775f6361706162696c697479087061795f66726f6d1b726573746f7265"
    "5f77697468647261775f6361706162696c6974790000000000000000000000000000000101010401"
    "0c0b0011000c050e050a010a020b030b0438000b05110202"
)


def peer_to_peer_with_metadata_script(
    currency: str,
    payee: AccountAddress,
    amount: int,
    metadata: bytes = b"",
    metadata_signature: bytes = b"",
) -> Script:
    return Script(
        PEER_TO_PEER_WITH_METADATA_CODE,
        [currency_type_tag(currency)],
        [
            TransactionArgument(TransactionArgument.ADDRESS, payee),
            TransactionArgument(TransactionArgument.U64, amount),
            TransactionArgument(TransactionArgument.U8_VECTOR, metadata),
            TransactionArgument(TransactionArgument.U8_VECTOR, metadata_signature),
        ],
    )


class Test(unittest.TestCase):
    expected = (
        "e6866fc23780715681be9febd4f771f72a0000000000000001e001a11ceb0b010000000701000202"
        "020403061004160205181d0735600895011000000001010000020001000003020301010004010300"
        "010501060c0108000506080005030a020a020005060c05030a020a020109000b4469656d4163636f"
        "756e741257697468647261774361706162696c6974791b657874726163745f77697468647261775f"
        "6361706162696c697479087061795f66726f6d1b726573746f72655f77697468647261775f636170"
        "6162696c69747900000000000000000000000000000001010104010c0b0011000c050e050a010a02"
        "0b030b0438000b051102020107000000000000000000000000000000010358445803584458000403"
        "b4b71dbdfaa82e63855337e615889c970164000000000000000400040040420f0000000000000000"
        "000000000003584458fc24f65e00000000020020fc4ea02dc1e42b332ac221d716ece959d5b1fc86"
        "c156fa4a5d8b77b3886c3c6340833bb10a6b7a45c327426d0f6f20fe140f8641840d7a20cd22ed71"
        "1ebca0daa4fe9d8d557d1836517435abc21e5d2e423b5d4e331e3f74aafd2c8eeaccbe470e"
    )

    def _sign(self) -> SignedTransaction:
        private_key = ed25519.PrivateKey.from_str(
            "b38318e91089220c144854881c48b88975c25d6395ac3aeeb21a287bcfa1ebe9"
        )
        self.assertEqual(
            private_key.public_key().hex(),
            "fc4ea02dc1e42b332ac221d716ece959d5b1fc86c156fa4a5d8b77b3886c3c63",
        )
        receiver = AccountAddress.from_key(
            ed25519.PublicKey.from_str(
                "a761194c93feb3983e6fffb0af9ccc02bc91fe21e1a9c38b24e03dabc40105ed"
            )
        )
        script = peer_to_peer_with_metadata_script("XDX", receiver, 100)

        return sign(
            private_key,
            AccountAddress.from_key(private_key.public_key()),
            42,
            script,
            1_000_000,
            0,
            "XDX",
            1593189628,
            2,
        )

    def test_sign_peer_to_peer(self):
        signed_txn = self._sign()
        self.assertEqual(signed_txn.hex(), self.expected)
        self.assertEqual(signed_txn.sender.hex(), "e6866fc23780715681be9febd4f771f7")
        self.assertTrue(signed_txn.verify())

    def test_signing_is_deterministic(self):
        first = self._sign()
        second = self._sign()
        self.assertEqual(first.transaction.keyed(), second.transaction.keyed())
        self.assertEqual(first.hash(), second.hash())

    def test_decode_signed_transaction(self):
        signed_txn = SignedTransaction.from_hex(self.expected)
        self.assertEqual(signed_txn, self._sign())
        self.assertEqual(signed_txn.transaction.gas_currency_code, "XDX")
        self.assertEqual(signed_txn.transaction.chain_id, 2)
        self.assertEqual(signed_txn.authenticator.variant, Authenticator.ED25519)

    def test_multi_signature_authenticator(self):
        private_key = ed25519.MultiPrivateKey.random(3, 2)
        sender = AccountAddress.from_key(private_key.public_key())
        script = peer_to_peer_with_metadata_script("XUS", sender, 1)
        signed_txn = sign(private_key, sender, 0, script, 1_000_000, 0, "XUS", 10, 2)

        self.assertEqual(signed_txn.authenticator.variant, Authenticator.MULTI_ED25519)
        self.assertTrue(signed_txn.verify())
        self.assertEqual(SignedTransaction.from_hex(signed_txn.hex()), signed_txn)
