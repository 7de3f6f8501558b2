# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
JSON-RPC 2.0 over HTTP for the Diem full node API, including batched requests. This layer only
moves envelopes: it does not interpret results, errors or the ledger fields of a response.
"""

from __future__ import annotations

import json
import logging
import time
import typing
import unittest
from dataclasses import dataclass, field

import httpx
from typing_extensions import Protocol

from .errors import JsonRpcError, TransportError, TransportErrorType
from .metadata import Metadata

JSON_RPC_VERSION = "2.0"

logger = logging.getLogger(__name__)


@dataclass
class Request:
    method: str
    params: typing.List[typing.Any] = field(default_factory=list)
    id: int = 1
    jsonrpc: str = JSON_RPC_VERSION

    def to_json(self) -> typing.Dict[str, typing.Any]:
        return {
            "method": self.method,
            "params": self.params,
            "id": self.id,
            "jsonrpc": self.jsonrpc,
        }


@dataclass
class Response:
    jsonrpc: str
    id: typing.Optional[int] = None
    result: typing.Any = None
    error: typing.Optional[JsonRpcError] = None
    diem_chain_id: int = 0
    diem_ledger_version: int = 0
    diem_ledger_timestampusec: int = 0

    @staticmethod
    def from_json(value: typing.Any) -> Response:
        if not isinstance(value, dict):
            raise TransportError(
                TransportErrorType.INVALID_RESPONSE, f"unexpected response: {value!r}"
            )
        if value.get("jsonrpc") != JSON_RPC_VERSION:
            raise TransportError(
                TransportErrorType.INVALID_RESPONSE,
                f"unexpected jsonrpc version: {value.get('jsonrpc')}",
            )

        error = value.get("error")
        try:
            return Response(
                jsonrpc=value["jsonrpc"],
                id=value.get("id"),
                result=value.get("result"),
                error=JsonRpcError.from_json(error) if error is not None else None,
                diem_chain_id=int(value.get("diem_chain_id", 0)),
                diem_ledger_version=int(value.get("diem_ledger_version", 0)),
                diem_ledger_timestampusec=int(value.get("diem_ledger_timestampusec", 0)),
            )
        except (TypeError, ValueError, AttributeError) as e:
            raise TransportError(TransportErrorType.PARSE_RESULT_JSON, str(e), e) from e


class Transport(Protocol):
    def call(self, *requests: Request) -> typing.Dict[int, Response]:
        ...


class JsonRpcTransport:
    """Posts requests to a single JSON-RPC endpoint with a shared httpx client."""

    url: str
    client: httpx.Client

    def __init__(
        self,
        url: str,
        client: typing.Optional[httpx.Client] = None,
        timeout: float = 30.0,
    ):
        self.url = url
        self.client = client if client is not None else httpx.Client(timeout=timeout)
        self.client.headers[Metadata.DIEM_HEADER] = Metadata.get_diem_header_val()

    def close(self):
        self.client.close()

    def call(self, *requests: Request) -> typing.Dict[int, Response]:
        """
        Send one request, or several as a batch, and return the responses keyed by request id.
        Raises TransportError if any request is left without a response.
        """
        if len(requests) == 0:
            raise ValueError("no requests")

        if len(requests) == 1:
            body: typing.Any = requests[0].to_json()
        else:
            body = [request.to_json() for request in requests]

        try:
            content = json.dumps(body)
        except (TypeError, ValueError) as e:
            raise TransportError(TransportErrorType.SERIALIZE_REQUEST, str(e), e) from e

        data = self._post(content)
        if len(requests) == 1:
            responses = [Response.from_json(data)]
        elif isinstance(data, list):
            responses = [Response.from_json(item) for item in data]
        else:
            raise TransportError(
                TransportErrorType.INVALID_RESPONSE, f"expected a batch response: {data!r}"
            )
        return _match(requests, responses)

    def _post(self, content: str) -> typing.Any:
        try:
            with self.client.stream(
                "POST",
                self.url,
                content=content,
                headers={"Content-Type": "application/json"},
            ) as response:
                try:
                    response.read()
                except httpx.HTTPError as e:
                    raise TransportError(
                        TransportErrorType.READ_RESPONSE_BODY, str(e), e
                    ) from e
        except httpx.HTTPError as e:
            raise TransportError(TransportErrorType.HTTP_CALL, str(e), e) from e

        logger.debug(f"POST {self.url} - {response.status_code}")
        if response.status_code != 200:
            raise TransportError(
                TransportErrorType.HTTP_CALL,
                f"Failed https call: {response.status_code}, {response.text}",
            )

        try:
            return response.json()
        except ValueError as e:
            raise TransportError(TransportErrorType.PARSE_RESPONSE_JSON, str(e), e) from e


class StubTransport:
    """
    An in-memory transport answering every request with `handler(request)`. The handler returns
    the fields of the response envelope it cares about, e.g. `{"result": ...}`; the rest are
    filled in: chain id 2, ledger version 100 and the current time as the ledger timestamp.
    """

    handler: typing.Callable[[Request], typing.Dict[str, typing.Any]]
    requests: typing.List[Request]

    def __init__(self, handler: typing.Callable[[Request], typing.Dict[str, typing.Any]]):
        self.handler = handler
        self.requests = []

    def call(self, *requests: Request) -> typing.Dict[int, Response]:
        responses = []
        for request in requests:
            self.requests.append(request)
            envelope = {
                "jsonrpc": JSON_RPC_VERSION,
                "id": request.id,
                "diem_chain_id": 2,
                "diem_ledger_version": 100,
                "diem_ledger_timestampusec": int(time.time() * 1_000_000),
            }
            envelope.update(self.handler(request))
            responses.append(Response.from_json(envelope))
        return _match(requests, responses)


def _match(
    requests: typing.Sequence[Request], responses: typing.List[Response]
) -> typing.Dict[int, Response]:
    ret = {response.id: response for response in responses if response.id is not None}
    missing = [request for request in requests if request.id not in ret]
    if missing:
        lines = "\n".join(json.dumps(request.to_json()) for request in missing)
        raise TransportError(
            TransportErrorType.INVALID_RESPONSE,
            f"missing responses for requests: \n{lines}",
        )
    return ret


class Test(unittest.TestCase):
    URL = "http://localhost:8080/v1"

    def _transport(self, handler) -> JsonRpcTransport:
        return JsonRpcTransport(
            self.URL, httpx.Client(transport=httpx.MockTransport(handler))
        )

    @staticmethod
    def _envelope(id: int, result: typing.Any) -> typing.Dict[str, typing.Any]:
        return {
            "jsonrpc": "2.0",
            "id": id,
            "result": result,
            "diem_chain_id": 2,
            "diem_ledger_version": 100,
            "diem_ledger_timestampusec": 1_600_000_000_000_000,
        }

    def test_single_request(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            body = json.loads(request.content)
            self.assertEqual(body["method"], "get_currencies")
            self.assertEqual(body["params"], [])
            self.assertEqual(body["jsonrpc"], "2.0")
            return httpx.Response(200, json=self._envelope(body["id"], [{"code": "XUS"}]))

        responses = self._transport(handler).call(Request("get_currencies"))
        self.assertEqual(responses[1].result, [{"code": "XUS"}])
        self.assertEqual(responses[1].diem_chain_id, 2)
        self.assertEqual(responses[1].diem_ledger_version, 100)
        self.assertIn(Metadata.DIEM_HEADER, seen[0].headers)

    def test_batch_request(self):
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            self.assertEqual(len(body), 2)
            return httpx.Response(
                200, json=[self._envelope(item["id"], item["method"]) for item in reversed(body)]
            )

        responses = self._transport(handler).call(
            Request("get_currencies", id=1), Request("get_metadata", id=2)
        )
        self.assertEqual(responses[1].result, "get_currencies")
        self.assertEqual(responses[2].result, "get_metadata")

    def test_missing_response(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[self._envelope(1, None)])

        with self.assertRaisesRegex(TransportError, "missing responses for requests"):
            self._transport(handler).call(Request("a", id=1), Request("b", id=2))

    def test_application_error_is_passed_through(self):
        def handler(request: httpx.Request) -> httpx.Response:
            envelope = self._envelope(1, None)
            envelope["error"] = {
                "code": -32602,
                "message": "Invalid params for method 'submit'",
                "data": None,
            }
            return httpx.Response(200, json=envelope)

        response = self._transport(handler).call(Request("submit", ["00"]))[1]
        self.assertEqual(response.error.code, -32602)
        self.assertEqual(str(response.error), "-32602 - Invalid params for method 'submit'")

    def test_http_status_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="unavailable")

        with self.assertRaisesRegex(TransportError, "Failed https call: 503, unavailable") as cm:
            self._transport(handler).call(Request("get_metadata"))
        self.assertEqual(cm.exception.error_type, TransportErrorType.HTTP_CALL)

    def test_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with self.assertRaises(TransportError) as cm:
            self._transport(handler).call(Request("get_metadata"))
        self.assertEqual(cm.exception.error_type, TransportErrorType.HTTP_CALL)
        self.assertIsInstance(cm.exception.cause, httpx.ConnectError)

    def test_response_body_read_error(self):
        class BrokenStream(httpx.SyncByteStream):
            def __iter__(self):
                raise httpx.ReadError("connection reset")
                yield b""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, stream=BrokenStream())

        with self.assertRaises(TransportError) as cm:
            self._transport(handler).call(Request("get_metadata"))
        self.assertEqual(cm.exception.error_type, TransportErrorType.READ_RESPONSE_BODY)
        self.assertIsInstance(cm.exception.cause, httpx.ReadError)

    def test_invalid_json(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="not json")

        with self.assertRaises(TransportError) as cm:
            self._transport(handler).call(Request("get_metadata"))
        self.assertEqual(cm.exception.error_type, TransportErrorType.PARSE_RESPONSE_JSON)

    def test_invalid_version(self):
        def handler(request: httpx.Request) -> httpx.Response:
            envelope = self._envelope(1, None)
            envelope["jsonrpc"] = "1.0"
            return httpx.Response(200, json=envelope)

        with self.assertRaisesRegex(TransportError, "unexpected jsonrpc version: 1.0"):
            self._transport(handler).call(Request("get_metadata"))

    def test_unserializable_params(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("should not be called")

        with self.assertRaises(TransportError) as cm:
            self._transport(handler).call(Request("submit", [object()]))
        self.assertEqual(cm.exception.error_type, TransportErrorType.SERIALIZE_REQUEST)
