# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import json
import os
import tempfile
import time
import typing
import unittest

from . import asymmetric_crypto, ed25519
from .account_address import AccountAddress, AuthenticationKey, SubAddress
from .account_identifier import TESTNET_PREFIX, decode_account, encode_account
from .client import ClientConfig
from .signer import sign
from .transactions import Script, SignedTransaction


class LocalAccount:
    """
    Represents an account as well as the private key for the Diem blockchain. The key is either a
    single Ed25519 key or a set of keys with a signing threshold.
    """

    account_address: AccountAddress
    private_key: asymmetric_crypto.PrivateKey

    def __init__(
        self, account_address: AccountAddress, private_key: asymmetric_crypto.PrivateKey
    ):
        self.account_address = account_address
        self.private_key = private_key

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LocalAccount):
            return NotImplemented
        return (
            self.account_address == other.account_address
            and self.private_key == other.private_key
        )

    @staticmethod
    def from_private_key(private_key: asymmetric_crypto.PrivateKey) -> LocalAccount:
        return LocalAccount(AccountAddress.from_key(private_key.public_key()), private_key)

    @staticmethod
    def generate() -> LocalAccount:
        return LocalAccount.from_private_key(ed25519.PrivateKey.random())

    @staticmethod
    def generate_multi_sig(count: int = 3, threshold: int = 2) -> LocalAccount:
        return LocalAccount.from_private_key(ed25519.MultiPrivateKey.random(count, threshold))

    @staticmethod
    def from_private_key_hex(key: str) -> LocalAccount:
        return LocalAccount.from_private_key(ed25519.PrivateKey.from_str(key))

    @staticmethod
    def load(path: str) -> LocalAccount:
        with open(path) as file:
            data = json.load(file)

        keys = [ed25519.PrivateKey.from_str(key) for key in data["private_keys"]]
        private_key: asymmetric_crypto.PrivateKey = keys[0]
        if "threshold" in data:
            private_key = ed25519.MultiPrivateKey(keys, data["threshold"])
        return LocalAccount(AccountAddress.from_hex(data["account_address"]), private_key)

    def store(self, path: str):
        data: typing.Dict[str, typing.Any] = {"account_address": self.account_address.hex()}
        if isinstance(self.private_key, ed25519.MultiPrivateKey):
            data["private_keys"] = [key.hex() for key in self.private_key.keys]
            data["threshold"] = self.private_key.threshold
        else:
            data["private_keys"] = [self.private_key.hex()]
        with open(path, "w") as file:
            json.dump(data, file)

    def address(self) -> AccountAddress:
        """Returns the address associated with the given account"""

        return self.account_address

    def auth_key(self) -> AuthenticationKey:
        """Returns the auth_key for the associated account, used to create the account on chain"""
        return AuthenticationKey.from_key(self.private_key.public_key())

    def public_key(self) -> asymmetric_crypto.PublicKey:
        """Returns the public key for the associated account"""

        return self.private_key.public_key()

    def account_identifier(
        self, prefix: str = TESTNET_PREFIX, sub_address: typing.Optional[SubAddress] = None
    ) -> str:
        return encode_account(prefix, self.account_address, sub_address)

    def sign(self, data: bytes) -> asymmetric_crypto.Signature:
        return self.private_key.sign(data)

    def sign_transaction(
        self,
        sequence_number: int,
        script: Script,
        chain_id: int,
        client_config: ClientConfig = ClientConfig(),
        expiration_timestamp_secs: typing.Optional[int] = None,
    ) -> SignedTransaction:
        """Signs a script using the gas settings of `client_config`."""
        if expiration_timestamp_secs is None:
            expiration_timestamp_secs = int(time.time()) + client_config.expiration_ttl
        return sign(
            self.private_key,
            self.account_address,
            sequence_number,
            script,
            client_config.max_gas_amount,
            client_config.gas_unit_price,
            client_config.gas_currency_code,
            expiration_timestamp_secs,
            chain_id,
        )


class Test(unittest.TestCase):
    def _round_trip(self, account: LocalAccount) -> LocalAccount:
        (file, path) = tempfile.mkstemp()
        os.close(file)
        self.addCleanup(os.remove, path)
        account.store(path)
        return LocalAccount.load(path)

    def test_load_and_store(self):
        start = LocalAccount.generate()
        self.assertEqual(start, self._round_trip(start))

        multi = LocalAccount.generate_multi_sig(3, 2)
        self.assertEqual(multi, self._round_trip(multi))

    def test_from_private_key_hex(self):
        account = LocalAccount.from_private_key_hex(
            "b38318e91089220c144854881c48b88975c25d6395ac3aeeb21a287bcfa1ebe9"
        )
        self.assertEqual(
            account.public_key().hex(),
            "fc4ea02dc1e42b332ac221d716ece959d5b1fc86c156fa4a5d8b77b3886c3c63",
        )
        self.assertEqual(account.address(), account.auth_key().account_address())
        self.assertFalse(account.public_key().is_multi())

    def test_multi_sig_account(self):
        account = LocalAccount.generate_multi_sig(3, 2)
        self.assertTrue(account.public_key().is_multi())
        self.assertEqual(account.address(), account.auth_key().account_address())
        self.assertNotEqual(account, LocalAccount.generate_multi_sig(3, 2))

    def test_sign(self):
        message = b"test message"
        for account in [LocalAccount.generate(), LocalAccount.generate_multi_sig()]:
            signature = account.sign(message)
            self.assertTrue(account.public_key().verify(message, signature))

    def test_sign_transaction(self):
        account = LocalAccount.generate()
        script = Script(b"\x00", [], [])
        signed_txn = account.sign_transaction(3, script, 2)

        self.assertTrue(signed_txn.verify())
        self.assertEqual(signed_txn.sender, account.address())
        self.assertEqual(signed_txn.sequence_number, 3)
        self.assertEqual(signed_txn.transaction.max_gas_amount, ClientConfig.max_gas_amount)
        self.assertGreater(signed_txn.expiration_timestamp_secs, time.time())

    def test_account_identifier(self):
        account = LocalAccount.generate()
        sub_address = SubAddress.generate()
        identifier = decode_account(
            TESTNET_PREFIX, account.account_identifier(sub_address=sub_address)
        )
        self.assertEqual(identifier.account_address, account.address())
        self.assertEqual(identifier.sub_address, sub_address)
