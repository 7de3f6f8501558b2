# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import logging
import typing
import unittest
from unittest import mock

from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .errors import (
    ChainIdMismatchError,
    JsonRpcError,
    StaleResponseError,
    TransportError,
)

logger = logging.getLogger(__name__)

T = typing.TypeVar("T")


class RetryPolicy:
    """
    Which errors a read call is retried on, how often, and how long to back off in between.
    Only the error of the last attempt is raised to the caller.
    """

    max_attempts: int = 10
    delay: float = 0.1
    max_delay: float = 2.0
    retryable: typing.Tuple[typing.Type[BaseException], ...] = (
        TransportError,
        StaleResponseError,
    )

    def __init__(
        self,
        max_attempts: typing.Optional[int] = None,
        delay: typing.Optional[float] = None,
        max_delay: typing.Optional[float] = None,
        retryable: typing.Optional[typing.Tuple[typing.Type[BaseException], ...]] = None,
    ):
        if max_attempts is not None:
            self.max_attempts = max_attempts
        if delay is not None:
            self.delay = delay
        if max_delay is not None:
            self.max_delay = max_delay
        if retryable is not None:
            self.retryable = retryable

        for error_type in (JsonRpcError, ChainIdMismatchError):
            if issubclass(error_type, self.retryable):
                raise ValueError(f"{error_type.__name__} must not be retried")

    @staticmethod
    def no_retry() -> RetryPolicy:
        return RetryPolicy(max_attempts=1)

    def retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.delay, max=self.max_delay),
            retry=retry_if_exception_type(self.retryable),
            before_sleep=lambda retry_state: logger.warning(
                f"Retry {retry_state.attempt_number}/{self.max_attempts} failed: "
                f"{retry_state.outcome.exception()}"
            ),
            reraise=True,
        )

    def call(self, fn: typing.Callable[[], T]) -> T:
        return self.retrying()(fn)


class Test(unittest.TestCase):
    def setUp(self):
        patcher = mock.patch("time.sleep")
        self.sleep = patcher.start()
        self.addCleanup(patcher.stop)

    def test_retries_transport_errors_until_success(self):
        fn = mock.Mock(
            side_effect=[
                TransportError("http call failed", "boom"),
                TransportError("http call failed", "boom"),
                "ok",
            ]
        )
        self.assertEqual(RetryPolicy(max_attempts=3, delay=0).call(fn), "ok")
        self.assertEqual(fn.call_count, 3)

    def test_raises_last_error(self):
        errors = [TransportError("http call failed", str(i)) for i in range(3)]
        fn = mock.Mock(side_effect=errors)
        with self.assertRaises(TransportError) as cm:
            RetryPolicy(max_attempts=3, delay=0).call(fn)
        self.assertIs(cm.exception, errors[-1])

    def test_application_errors_are_not_retried(self):
        fn = mock.Mock(side_effect=JsonRpcError(-32602, "Invalid params"))
        with self.assertRaises(JsonRpcError):
            RetryPolicy(delay=0).call(fn)
        self.assertEqual(fn.call_count, 1)

    def test_chain_id_mismatch_is_not_retried(self):
        fn = mock.Mock(side_effect=ChainIdMismatchError(2, 4))
        with self.assertRaises(ChainIdMismatchError):
            RetryPolicy(delay=0).call(fn)
        self.assertEqual(fn.call_count, 1)

    def test_no_retry(self):
        fn = mock.Mock(side_effect=TransportError("http call failed", "boom"))
        with self.assertRaises(TransportError):
            RetryPolicy.no_retry().call(fn)
        self.assertEqual(fn.call_count, 1)

    def test_fatal_errors_cannot_be_made_retryable(self):
        with self.assertRaises(ValueError):
            RetryPolicy(retryable=(Exception,))
