#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Synchronous invocation client for the control-plane RPC protocol.

The client resolves a deployed function, submits one input and waits for its
output, in that order:

    FunctionGet        -> map(app_name, function_name)
    FunctionMap        -> put_input(function_id, payload)
    FunctionPutInputs     (only when FunctionMap did not accept the input)
    FunctionGetOutputs -> get_output(handle, timeout)

Payloads are opaque bytes in both directions. Failures are never retried:
each one is translated into a distinct ``ModalRpcError`` subclass and raised
to the caller.

Usage Example:
    >>> with InvocationClient.from_env() as client:
    ...     function_id = client.map("my-app", "echo")
    ...     handle = client.put_input(function_id, payload)
    ...     result = client.get_output(handle, timeout=30.0)
    ...     data = result.raise_for_status().data
"""

import time
from typing import Any, List, Optional, Tuple, Union

import grpc

from .cls import Cls
from .config import CLIENT_TYPE, ClientConfig
from .data import (
    ConnectionState,
    FunctionId,
    InvocationHandle,
    InvocationResult,
    InvocationState,
    validate_transition,
)
from .protos import api_pb2, api_pb2_grpc
from .utils.exceptions import (
    ExceptionTranslator,
    InputRejectedError,
    ModalRpcError,
    NotFoundError,
    TimeoutError,
    TransportError,
    UnsupportedResultError,
)
from .utils.logger import ModernLogger

# Extra gRPC deadline on top of the server-side long-poll window.
RPC_DEADLINE_MARGIN_SECONDS = 5.0

# Unary calls always read from the start of the output stream; with
# clear_on_success the server drops an output once it has been delivered.
OUTPUTS_START_ENTRY_ID = "0-0"

_STATUS_PREFIX = "GENERIC_STATUS_"

FunctionRef = Union[FunctionId, str]


def _status_name(status: int) -> str:
    """``GENERIC_STATUS_TIMEOUT`` -> ``timeout``; unknown numbers stay numeric."""
    try:
        name = api_pb2.GenericResult.GenericStatus.Name(status)
    except ValueError:
        return f"status_{status}"
    return name[len(_STATUS_PREFIX):].lower()


class InvocationClient(ModernLogger):
    """
    Client for invoking deployed functions over one gRPC channel.

    The channel is opened by ``connect()`` (or entering the ``with`` block)
    and released by ``close()``. A closed client cannot be reconnected.

    Args:
        config: Client settings; defaults to ``ClientConfig()``
        server_url: Overrides ``config.server_url``
        token_id: Overrides ``config.token_id``
        token_secret: Overrides ``config.token_secret``
        log_level: Overrides ``config.log_level``
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        server_url: Optional[str] = None,
        token_id: Optional[str] = None,
        token_secret: Optional[str] = None,
        log_level: Optional[str] = None,
    ) -> None:
        self.config = (config or ClientConfig()).with_overrides(
            server_url=server_url,
            token_id=token_id,
            token_secret=token_secret,
            log_level=log_level,
        )
        ModernLogger.__init__(self, name="InvocationClient", level=self.config.log_level)

        self._connection_state = ConnectionState.DISCONNECTED
        self._channel: Optional[grpc.Channel] = None
        self._stub: Optional[Any] = None

    @classmethod
    def from_env(cls, **overrides: Any) -> "InvocationClient":
        """
        Create a client from the profile file and environment variables.
        """
        return cls(ClientConfig.from_env(**overrides))

    # Connection lifecycle

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection_state

    @property
    def is_connected(self) -> bool:
        return self._connection_state == ConnectionState.CONNECTED

    def _get_channel_options(self) -> List[Tuple[str, Any]]:
        return [
            ("grpc.max_send_message_length", self.config.max_message_length),
            ("grpc.max_receive_message_length", self.config.max_message_length),
            ("grpc.keepalive_time_ms", 30000),
            ("grpc.keepalive_timeout_ms", 5000),
        ]

    def connect(self) -> "InvocationClient":
        """
        Open the channel to the control plane.

        Returns:
            Self for method chaining

        Raises:
            TransportError: If the client was already closed
        """
        if self._connection_state == ConnectionState.CONNECTED:
            return self
        if self._connection_state == ConnectionState.CLOSED:
            raise TransportError("Client is closed", address=self.config.target)

        target = self.config.target
        options = self._get_channel_options()
        if self.config.use_tls:
            channel = grpc.secure_channel(target, grpc.ssl_channel_credentials(), options=options)
        else:
            channel = grpc.insecure_channel(target, options=options)

        self._channel = channel
        self._stub = api_pb2_grpc.ModalClientStub(channel)
        self._connection_state = ConnectionState.CONNECTED
        self.info(
            f"Connected to {self.config.server_url} "
            f"(tls={self.config.use_tls}, credentials={self.config.has_credentials})"
        )
        return self

    def close(self) -> None:
        """
        Release the channel. Safe to call more than once.
        """
        if self._connection_state == ConnectionState.CLOSED:
            return
        if self._channel is not None:
            self._channel.close()
        self._channel = None
        self._stub = None
        self._connection_state = ConnectionState.CLOSED
        self.info("Connection closed")

    def __enter__(self) -> "InvocationClient":
        return self.connect()

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.close()

    # RPC plumbing

    def _metadata(self) -> List[Tuple[str, str]]:
        metadata = [
            ("x-modal-client-version", self.config.client_version),
            ("x-modal-client-type", CLIENT_TYPE),
        ]
        if self.config.token_id:
            metadata.append(("x-modal-token-id", self.config.token_id))
        if self.config.token_secret:
            metadata.append(("x-modal-token-secret", self.config.token_secret))
        return metadata

    def _invoke(self, method_name: str, request: Any, timeout: Optional[float] = None) -> Any:
        """
        Issue one unary RPC and translate transport failures.
        """
        if self._connection_state != ConnectionState.CONNECTED or self._stub is None:
            raise TransportError(
                f"Cannot call {method_name}: client is {self._connection_state.value}",
                address=self.config.target,
            )

        deadline = self.config.rpc_timeout if timeout is None else timeout
        rpc = getattr(self._stub, method_name)
        self.debug(f"{method_name} (deadline={deadline:.1f}s)")
        try:
            return rpc(request, timeout=deadline, metadata=self._metadata())
        except grpc.RpcError as e:
            error = ExceptionTranslator.from_rpc_error(
                e,
                operation=method_name,
                address=self.config.target,
                timeout_seconds=deadline,
            )
            self.warning(str(error))
            raise error from e

    # Invocation chain

    def map(self, app_name: str, function_name: str) -> FunctionId:
        """
        Resolve ``function_name`` within ``app_name`` to a function id.

        Raises:
            NotFoundError: If the app or function does not exist
            AuthError: If the credentials are rejected
            TransportError: If the control plane is unreachable
        """
        request = api_pb2.FunctionGetRequest(
            app_name=app_name,
            object_tag=function_name,
            environment_name=self.config.environment_name,
        )
        response = self._invoke("FunctionGet", request)
        if not response.function_id:
            raise NotFoundError(app_name=app_name, object_name=function_name)

        self.debug(f"Resolved {app_name}::{function_name} -> {response.function_id}")
        return FunctionId(
            function_id=response.function_id,
            app_name=app_name,
            function_name=function_name,
        )

    @staticmethod
    def _build_input_item(
        payload: bytes, data_format: int, method_name: Optional[str]
    ) -> Any:
        function_input = api_pb2.FunctionInput(
            args=bytes(payload),
            final_input=False,
            data_format=data_format,
        )
        if method_name is not None:
            function_input.method_name = method_name
        return api_pb2.FunctionPutInputsItem(idx=0, input=function_input)

    def put_input(
        self,
        function_id: FunctionRef,
        payload: bytes,
        data_format: int = api_pb2.DATA_FORMAT_CBOR,
        method_name: Optional[str] = None,
    ) -> InvocationHandle:
        """
        Submit one invocation of ``function_id`` with an encoded payload.

        The input is pipelined into FunctionMap; FunctionPutInputs is only
        issued when the server did not accept it there.

        Args:
            function_id: Result of ``map`` or a raw function id
            payload: Opaque encoded call arguments
            data_format: ``DataFormat`` tag describing ``payload``
            method_name: Class method to call on a bound class function

        Returns:
            Handle to pass to ``get_output`` exactly once

        Raises:
            InputRejectedError: If the server accepted no input
            InvocationStateError: If ``function_id`` is empty (unmapped)
            TransportError: If the control plane is unreachable
        """
        if not isinstance(payload, (bytes, bytearray, memoryview)):
            raise TypeError(f"payload must be bytes, got {type(payload).__name__}")

        if not isinstance(function_id, FunctionId):
            function_id = FunctionId(function_id)
        validate_transition(function_id.state, InvocationState.SUBMITTED)

        fid = function_id.function_id
        handle = InvocationHandle(function_id=fid, method_name=method_name)
        item = self._build_input_item(payload, data_format, method_name)

        map_request = api_pb2.FunctionMapRequest(
            function_id=fid,
            return_exceptions=False,
            function_call_type=api_pb2.FUNCTION_CALL_TYPE_UNARY,
            function_call_invocation_type=api_pb2.FUNCTION_CALL_INVOCATION_TYPE_SYNC,
            pipelined_inputs=[item],
        )
        map_response = self._invoke("FunctionMap", map_request)
        function_call_id = map_response.function_call_id
        if not function_call_id:
            raise InputRejectedError(
                "FunctionMap returned no function call id",
                details={"function_id": fid},
            )

        accepted = list(map_response.pipelined_inputs)
        if not accepted:
            put_request = api_pb2.FunctionPutInputsRequest(
                function_id=fid,
                function_call_id=function_call_id,
                inputs=[item],
            )
            put_response = self._invoke("FunctionPutInputs", put_request)
            accepted = list(put_response.inputs)
            if not accepted:
                raise InputRejectedError(
                    "FunctionPutInputs returned no inputs - input queue full?",
                    details={"function_id": fid, "function_call_id": function_call_id},
                )

        handle.function_call_id = function_call_id
        handle.input_id = accepted[0].input_id
        handle.transition(InvocationState.SUBMITTED)
        self.debug(f"Submitted input {handle.input_id or '-'} as call {function_call_id}")
        return handle

    def get_output(self, handle: InvocationHandle, timeout: Optional[float] = None) -> InvocationResult:
        """
        Block until the output for ``handle`` arrives or ``timeout`` elapses.

        Each attempt is a single FunctionGetOutputs request that the server
        holds open for at most ``output_poll_timeout`` seconds. Empty answers
        are followed by a short pause and another attempt while time remains.

        Args:
            handle: Handle returned by ``put_input``; consumed by this call
            timeout: Seconds to wait, defaults to ``config.output_timeout``

        Returns:
            The invocation result; check ``success`` or call ``raise_for_status``

        Raises:
            TimeoutError: If no output arrived in time, or ``timeout`` is not
                positive
            TransportError: If the control plane is unreachable
            UnsupportedResultError: If the output was stored as a blob
            InvocationStateError: If the handle was already consumed
        """
        handle.ensure_pending()
        window = self.config.output_timeout if timeout is None else timeout

        deadline = time.monotonic() + window
        attempts = 0
        try:
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TimeoutError(
                        f"No output for function call '{handle.function_call_id}' "
                        f"after {window:.1f}s ({attempts} attempts)",
                        timeout_seconds=window,
                        operation="FunctionGetOutputs",
                    )

                poll_timeout = min(remaining, self.config.output_poll_timeout)
                request = api_pb2.FunctionGetOutputsRequest(
                    function_call_id=handle.function_call_id,
                    max_values=1,
                    timeout=poll_timeout,
                    last_entry_id=OUTPUTS_START_ENTRY_ID,
                    clear_on_success=True,
                    requested_at=time.time(),
                    start_idx=0,
                    end_idx=0,
                )
                response = self._invoke(
                    "FunctionGetOutputs",
                    request,
                    timeout=poll_timeout + RPC_DEADLINE_MARGIN_SECONDS,
                )
                attempts += 1

                if response.outputs:
                    result = self._decode_output(handle, response.outputs[0])
                    handle.transition(
                        InvocationState.COMPLETED if result.success else InvocationState.FAILED
                    )
                    self.debug(
                        f"Call {handle.function_call_id} finished with status "
                        f"'{result.status}' after {attempts} attempts"
                    )
                    return result

                pause = min(self.config.poll_interval, deadline - time.monotonic())
                if pause > 0:
                    time.sleep(pause)
        except ModalRpcError:
            if handle.is_pending:
                handle.transition(InvocationState.FAILED)
            raise

    def _decode_output(self, handle: InvocationHandle, item: Any) -> InvocationResult:
        result = item.result
        status = _status_name(result.status)
        data_kind = result.WhichOneof("data_oneof")

        if data_kind == "data_blob_id":
            raise UnsupportedResultError(
                f"Output of call '{handle.function_call_id}' is stored as blob "
                f"'{result.data_blob_id}'; blob download is not supported",
                details={"blob_id": result.data_blob_id},
            )

        succeeded = result.status == api_pb2.GenericResult.GENERIC_STATUS_SUCCESS or (
            result.status == api_pb2.GenericResult.GENERIC_STATUS_UNSPECIFIED and data_kind == "data"
        )
        if succeeded:
            return InvocationResult(
                data=result.data,
                success=True,
                status="success",
                function_call_id=handle.function_call_id,
                input_id=item.input_id or handle.input_id,
                data_format=item.data_format,
            )

        self.warning(
            f"Call {handle.function_call_id} failed remotely: "
            f"status={status} exitcode={result.exitcode} exception={result.exception!r}"
        )
        return InvocationResult(
            data=b"",
            success=False,
            status=status,
            function_call_id=handle.function_call_id,
            input_id=item.input_id or handle.input_id,
            data_format=item.data_format,
            exception=result.exception,
            exitcode=result.exitcode,
            traceback=result.traceback,
        )

    # Convenience wrappers

    def call_function_sync(
        self,
        function_id: FunctionRef,
        payload: bytes,
        timeout: Optional[float] = None,
        data_format: int = api_pb2.DATA_FORMAT_CBOR,
    ) -> bytes:
        """
        Submit ``payload`` and return the successful output bytes.

        Raises:
            RemoteExecutionError: If the remote function failed
        """
        handle = self.put_input(function_id, payload, data_format=data_format)
        return self.get_output(handle, timeout=timeout).raise_for_status().data

    def call_function(
        self,
        payload: bytes,
        app_name: Optional[str] = None,
        function_name: Optional[str] = None,
        timeout: Optional[float] = None,
        data_format: int = api_pb2.DATA_FORMAT_CBOR,
    ) -> bytes:
        """
        Run the whole ``map -> put_input -> get_output`` chain.

        ``app_name`` and ``function_name`` default to the configured target.
        """
        app_name = app_name or self.config.app_name
        function_name = function_name or self.config.function_name
        if not app_name or not function_name:
            raise ValueError("app_name and function_name are required (or MODAL_APP / MODAL_FUNCTION)")

        function_id = self.map(app_name, function_name)
        return self.call_function_sync(
            function_id, payload, timeout=timeout, data_format=data_format
        )

    def cls_from_name(self, app_name: str, class_name: str) -> Cls:
        """
        Look up a deployed class and return it with its handle metadata.

        Raises:
            NotFoundError: If the class does not exist
        """
        request = api_pb2.FunctionGetRequest(
            app_name=app_name,
            object_tag=f"{class_name}.*",
            environment_name=self.config.environment_name,
        )
        response = self._invoke("FunctionGet", request)
        if not response.function_id:
            raise NotFoundError(
                f"Class '{class_name}' not found in app '{app_name}'",
                app_name=app_name,
                object_name=class_name,
            )

        metadata = None
        if response.HasField("handle_metadata"):
            metadata = response.handle_metadata
        self.debug(f"Resolved class {app_name}::{class_name} -> {response.function_id}")
        return Cls(
            client=self,
            service_function_id=response.function_id,
            service_function_metadata=metadata,
            app_name=app_name,
            class_name=class_name,
        )
