# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

import importlib.metadata as metadata
import unittest

# constants
PACKAGE_NAME = "diem-sdk"


class Metadata:
    DIEM_HEADER = "x-diem-client-sdk"

    @staticmethod
    def get_diem_header_val():
        try:
            version = metadata.version(PACKAGE_NAME)
        except metadata.PackageNotFoundError:
            version = "unknown"
        return f"diem-python-sdk/{version}"


class Test(unittest.TestCase):
    def test_header_value(self):
        self.assertTrue(Metadata.get_diem_header_val().startswith("diem-python-sdk/"))
