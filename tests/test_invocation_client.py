#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Tests for the synchronous map -> put_input -> get_output chain.
"""

from typing import Callable, Dict, Optional, Tuple

import grpc
import pytest

from modalrpc.core.client import InvocationClient
from modalrpc.core.config import ClientConfig
from modalrpc.core.data import ConnectionState, FunctionId, InvocationState
from modalrpc.core.protos import api_pb2
from modalrpc.core.utils.exceptions import (
    AuthError,
    InputRejectedError,
    InvocationStateError,
    NotFoundError,
    RemoteExecutionError,
    TimeoutError,
    TransportError,
    UnsupportedResultError,
)


class _FakeRpcError(grpc.RpcError):
    def __init__(self, code: grpc.StatusCode, details: str = ""):
        super().__init__(details)
        self._code = code
        self._details = details

    def code(self) -> grpc.StatusCode:
        return self._code

    def details(self) -> str:
        return self._details


def _reverse(payload: bytes) -> bytes:
    return payload[::-1]


class FakeControlPlane:
    """
    In-memory stand-in for the control-plane stub.

    Functions transform their input with ``behaviour``; the first
    ``pending_polls`` output requests of each call come back empty.
    """

    def __init__(
        self,
        functions: Optional[Dict[Tuple[str, str], str]] = None,
        behaviour: Callable[[bytes], bytes] = _reverse,
        pending_polls: int = 0,
        accept_pipelined: bool = True,
        accept_put: bool = True,
    ):
        self.functions = functions or {("my-app", "echo"): "fu-echo"}
        self.behaviour = behaviour
        self.pending_polls = pending_polls
        self.accept_pipelined = accept_pipelined
        self.accept_put = accept_put
        self.result_factory: Optional[Callable[[object], object]] = None
        self.errors: Dict[str, grpc.RpcError] = {}
        self.calls = []
        self._inputs = {}
        self._call_count = 0

    def _record(self, method_name, request, timeout, metadata):
        self.calls.append((method_name, request, timeout, dict(metadata or [])))
        if method_name in self.errors:
            raise self.errors[method_name]

    def calls_to(self, method_name):
        return [call for call in self.calls if call[0] == method_name]

    def FunctionGet(self, request, timeout=None, metadata=None):
        self._record("FunctionGet", request, timeout, metadata)
        function_id = self.functions.get((request.app_name, request.object_tag), "")
        return api_pb2.FunctionGetResponse(function_id=function_id)

    def FunctionMap(self, request, timeout=None, metadata=None):
        self._record("FunctionMap", request, timeout, metadata)
        self._call_count += 1
        call_id = f"fc-{self._call_count}"
        response = api_pb2.FunctionMapResponse(function_call_id=call_id)
        if self.accept_pipelined:
            self._inputs[call_id] = request.pipelined_inputs[0].input
            response.pipelined_inputs.add(idx=0, input_id=f"in-{self._call_count}")
        return response

    def FunctionPutInputs(self, request, timeout=None, metadata=None):
        self._record("FunctionPutInputs", request, timeout, metadata)
        if not self.accept_put:
            return api_pb2.FunctionPutInputsResponse()
        self._inputs[request.function_call_id] = request.inputs[0].input
        response = api_pb2.FunctionPutInputsResponse()
        response.inputs.add(idx=0, input_id="in-put")
        return response

    def FunctionGetOutputs(self, request, timeout=None, metadata=None):
        self._record("FunctionGetOutputs", request, timeout, metadata)
        if self.pending_polls > 0:
            self.pending_polls -= 1
            return api_pb2.FunctionGetOutputsResponse(last_entry_id=f"{self.pending_polls + 1}-0")

        function_input = self._inputs[request.function_call_id]
        item = api_pb2.FunctionGetOutputsItem(idx=0, data_format=function_input.data_format)
        if self.result_factory is not None:
            item.result.CopyFrom(self.result_factory(function_input))
        else:
            item.result.status = api_pb2.GenericResult.GENERIC_STATUS_SUCCESS
            item.result.data = self.behaviour(function_input.args)
        return api_pb2.FunctionGetOutputsResponse(outputs=[item], last_entry_id="1-0")


def _connected_client(stub: FakeControlPlane, **config_values) -> InvocationClient:
    config = ClientConfig(
        token_id="ak-test",
        token_secret="as-test",
        poll_interval=0.001,
        **config_values,
    )
    client = InvocationClient(config)
    client._connection_state = ConnectionState.CONNECTED
    client._stub = stub
    return client


def test_map_returns_stable_identifier_across_calls():
    stub = FakeControlPlane()
    client = _connected_client(stub)

    first = client.map("my-app", "echo")
    second = client.map("my-app", "echo")

    assert first == second
    assert first == FunctionId("fu-echo", "my-app", "echo")
    assert str(first) == "fu-echo"


def test_map_sends_auth_and_client_metadata():
    stub = FakeControlPlane()
    client = _connected_client(stub, environment_name="staging")

    client.map("my-app", "echo")

    _, request, _, metadata = stub.calls_to("FunctionGet")[0]
    assert request.environment_name == "staging"
    assert metadata["x-modal-token-id"] == "ak-test"
    assert metadata["x-modal-token-secret"] == "as-test"
    assert metadata["x-modal-client-type"] == "1"
    assert "x-modal-client-version" in metadata


def test_map_unknown_function_always_raises_not_found():
    client = _connected_client(FakeControlPlane())

    for _ in range(3):
        with pytest.raises(NotFoundError) as exc_info:
            client.map("my-app", "missing")
        assert exc_info.value.object_name == "missing"


@pytest.mark.parametrize(
    "status, expected",
    [
        (grpc.StatusCode.NOT_FOUND, NotFoundError),
        (grpc.StatusCode.UNAUTHENTICATED, AuthError),
        (grpc.StatusCode.PERMISSION_DENIED, AuthError),
        (grpc.StatusCode.UNAVAILABLE, TransportError),
        (grpc.StatusCode.DEADLINE_EXCEEDED, TimeoutError),
    ],
)
def test_map_translates_rpc_status_codes(status, expected):
    stub = FakeControlPlane()
    stub.errors["FunctionGet"] = _FakeRpcError(status, "boom")
    client = _connected_client(stub)

    with pytest.raises(expected) as exc_info:
        client.map("my-app", "echo")

    assert isinstance(exc_info.value.cause, grpc.RpcError)


def test_rpc_before_connect_raises_transport_error():
    client = InvocationClient(ClientConfig())

    with pytest.raises(TransportError):
        client.map("my-app", "echo")


def test_closed_client_cannot_reconnect():
    client = _connected_client(FakeControlPlane())
    client.close()

    assert client.connection_state == ConnectionState.CLOSED
    with pytest.raises(TransportError):
        client.connect()


def test_put_input_pipelines_input_into_function_map():
    stub = FakeControlPlane()
    client = _connected_client(stub)

    handle = client.put_input(FunctionId("fu-echo"), b"payload")

    assert handle.function_call_id == "fc-1"
    assert handle.input_id == "in-1"
    assert handle.state == InvocationState.SUBMITTED
    assert stub.calls_to("FunctionPutInputs") == []

    _, request, _, _ = stub.calls_to("FunctionMap")[0]
    assert request.function_id == "fu-echo"
    assert request.function_call_type == api_pb2.FUNCTION_CALL_TYPE_UNARY
    assert request.function_call_invocation_type == api_pb2.FUNCTION_CALL_INVOCATION_TYPE_SYNC
    assert request.pipelined_inputs[0].input.args == b"payload"
    assert request.pipelined_inputs[0].input.data_format == api_pb2.DATA_FORMAT_CBOR
    assert not request.pipelined_inputs[0].input.HasField("method_name")


def test_put_input_falls_back_to_put_inputs_when_not_pipelined():
    stub = FakeControlPlane(accept_pipelined=False)
    client = _connected_client(stub)

    handle = client.put_input("fu-echo", b"payload")

    _, request, _, _ = stub.calls_to("FunctionPutInputs")[0]
    assert request.function_call_id == handle.function_call_id
    assert request.inputs[0].input.args == b"payload"
    assert handle.input_id == "in-put"


def test_put_input_raises_when_input_queue_rejects():
    stub = FakeControlPlane(accept_pipelined=False, accept_put=False)
    client = _connected_client(stub)

    with pytest.raises(InputRejectedError):
        client.put_input("fu-echo", b"payload")


def test_put_input_refuses_unmapped_function_without_rpc():
    stub = FakeControlPlane()
    client = _connected_client(stub)

    with pytest.raises(InvocationStateError):
        client.put_input(FunctionId(""), b"payload")

    assert stub.calls == []


def test_put_input_requires_bytes_payload():
    client = _connected_client(FakeControlPlane())

    with pytest.raises(TypeError):
        client.put_input("fu-echo", "not-bytes")  # type: ignore[arg-type]


def test_put_input_transport_failure_raises_transport_error():
    stub = FakeControlPlane()
    stub.errors["FunctionMap"] = _FakeRpcError(grpc.StatusCode.UNAVAILABLE, "connection reset")
    client = _connected_client(stub)

    with pytest.raises(TransportError):
        client.put_input("fu-echo", b"payload")


def test_round_trip_returns_exactly_remote_output():
    stub = FakeControlPlane()
    client = _connected_client(stub)

    function_id = client.map("my-app", "echo")
    handle = client.put_input(function_id, b"\x00\x01abc")
    result = client.get_output(handle, timeout=5.0)

    assert result.success is True
    assert result.data == b"cba\x01\x00"
    assert result.function_call_id == handle.function_call_id
    assert handle.state == InvocationState.COMPLETED


def test_get_output_waits_until_output_is_available():
    stub = FakeControlPlane(pending_polls=2)
    client = _connected_client(stub)

    handle = client.put_input("fu-echo", b"xyz")
    result = client.get_output(handle, timeout=5.0)

    assert result.data == b"zyx"
    polls = stub.calls_to("FunctionGetOutputs")
    assert len(polls) == 3
    for _, request, rpc_timeout, _ in polls:
        assert request.function_call_id == handle.function_call_id
        assert request.max_values == 1
        assert request.clear_on_success is True
        assert request.last_entry_id == "0-0"
        assert 0 < request.timeout <= 5.0
        assert rpc_timeout > request.timeout


def test_get_output_times_out_instead_of_returning_empty_result():
    stub = FakeControlPlane(pending_polls=10 ** 9)
    client = _connected_client(stub)

    handle = client.put_input("fu-echo", b"xyz")
    with pytest.raises(TimeoutError) as exc_info:
        client.get_output(handle, timeout=0.05)

    assert exc_info.value.timeout_seconds == 0.05
    assert handle.state == InvocationState.FAILED


def test_get_output_with_elapsed_window_times_out_without_polling():
    stub = FakeControlPlane()
    client = _connected_client(stub)
    handle = client.put_input("fu-echo", b"xyz")

    with pytest.raises(TimeoutError):
        client.get_output(handle, timeout=0)

    assert stub.calls_to("FunctionGetOutputs") == []
    assert handle.state == InvocationState.FAILED


def test_handle_is_consumed_after_one_output():
    stub = FakeControlPlane()
    client = _connected_client(stub)

    handle = client.put_input("fu-echo", b"once")
    client.get_output(handle, timeout=5.0)
    polls_before = len(stub.calls_to("FunctionGetOutputs"))

    with pytest.raises(InvocationStateError):
        client.get_output(handle, timeout=5.0)
    assert len(stub.calls_to("FunctionGetOutputs")) == polls_before


def test_remote_failure_is_reported_as_failed_result():
    stub = FakeControlPlane()
    stub.result_factory = lambda function_input: api_pb2.GenericResult(
        status=api_pb2.GenericResult.GENERIC_STATUS_FAILURE,
        exception="ZeroDivisionError('division by zero')",
        exitcode=1,
        traceback="Traceback ...",
    )
    client = _connected_client(stub)

    handle = client.put_input("fu-echo", b"xyz")
    result = client.get_output(handle, timeout=5.0)

    assert result.success is False
    assert result.status == "failure"
    assert result.data == b""
    assert handle.state == InvocationState.FAILED
    with pytest.raises(RemoteExecutionError) as exc_info:
        result.raise_for_status()
    assert "ZeroDivisionError" in exc_info.value.remote_exception
    assert exc_info.value.exitcode == 1


def test_remote_timeout_status_raises_timeout_error():
    stub = FakeControlPlane()
    stub.result_factory = lambda function_input: api_pb2.GenericResult(
        status=api_pb2.GenericResult.GENERIC_STATUS_TIMEOUT,
    )
    client = _connected_client(stub)

    with pytest.raises(TimeoutError):
        client.call_function_sync("fu-echo", b"xyz", timeout=5.0)


def test_blob_output_is_not_supported():
    stub = FakeControlPlane()
    stub.result_factory = lambda function_input: api_pb2.GenericResult(
        status=api_pb2.GenericResult.GENERIC_STATUS_SUCCESS,
        data_blob_id="bl-123",
    )
    client = _connected_client(stub)

    handle = client.put_input("fu-echo", b"xyz")
    with pytest.raises(UnsupportedResultError):
        client.get_output(handle, timeout=5.0)
    assert handle.state == InvocationState.FAILED


def test_call_function_uses_configured_target():
    stub = FakeControlPlane(functions={("configured-app", "double"): "fu-double"})
    stub.behaviour = lambda payload: payload * 2
    client = _connected_client(stub, app_name="configured-app", function_name="double")

    assert client.call_function(b"ab", timeout=5.0) == b"abab"
    assert [call[0] for call in stub.calls] == [
        "FunctionGet",
        "FunctionMap",
        "FunctionGetOutputs",
    ]


def test_call_function_requires_a_target():
    client = _connected_client(FakeControlPlane())

    with pytest.raises(ValueError):
        client.call_function(b"ab")


def test_call_chain_aborts_on_first_failure():
    stub = FakeControlPlane()
    client = _connected_client(stub)

    with pytest.raises(NotFoundError):
        client.call_function(b"ab", app_name="my-app", function_name="missing")

    assert [call[0] for call in stub.calls] == ["FunctionGet"]
