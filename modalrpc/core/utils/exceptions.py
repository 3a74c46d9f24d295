#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Exception hierarchy for the modalrpc client.

Every failure in the invocation chain surfaces as one distinct error kind.
Nothing here is retried or recovered: the first failure aborts the chain and
propagates to the caller.

Hierarchy:
    ModalRpcError
    ├── NotFoundError
    ├── AuthError
    ├── TransportError
    ├── TimeoutError
    ├── InputRejectedError
    ├── RemoteExecutionError
    ├── UnsupportedResultError
    ├── InvocationStateError
    ├── ParameterBindingError
    └── ConfigurationError
"""

from typing import Any, Dict, Optional

import grpc


class ModalRpcError(Exception):
    """
    Base class for all modalrpc errors.

    Args:
        message: Human readable description
        error_code: Stable machine readable code, defaults to the class name
        details: Extra structured context for logging and debugging
        cause: Underlying exception, if any
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code or type(self).__name__
        self.details: Dict[str, Any] = dict(details or {})
        self.cause = cause

    def __str__(self) -> str:
        if not self.details:
            return self.message
        context = ", ".join(f"{key}={value}" for key, value in self.details.items())
        return f"{self.message} ({context})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": dict(self.details),
            "cause": repr(self.cause) if self.cause is not None else None,
        }


class NotFoundError(ModalRpcError):
    """An app, function, class or method does not exist."""

    def __init__(
        self,
        message: Optional[str] = None,
        app_name: Optional[str] = None,
        object_name: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {}) or {}
        if app_name is not None:
            details["app_name"] = app_name
        if object_name is not None:
            details["object_name"] = object_name
        if message is None:
            message = f"'{object_name}' not found in app '{app_name}'"
        super().__init__(message, details=details, **kwargs)
        self.app_name = app_name
        self.object_name = object_name


class AuthError(ModalRpcError):
    """Credentials are missing, invalid or not allowed to perform the call."""


class TransportError(ModalRpcError):
    """The connection to the control plane failed or is not open."""

    def __init__(
        self,
        message: str,
        address: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {}) or {}
        if address is not None:
            details["address"] = address
        super().__init__(message, details=details, **kwargs)
        self.address = address


class TimeoutError(ModalRpcError):
    """No result arrived within the allowed window."""

    def __init__(
        self,
        message: str,
        timeout_seconds: Optional[float] = None,
        operation: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {}) or {}
        if timeout_seconds is not None:
            details["timeout_seconds"] = timeout_seconds
        if operation is not None:
            details["operation"] = operation
        super().__init__(message, details=details, **kwargs)
        self.timeout_seconds = timeout_seconds
        self.operation = operation


class InputRejectedError(ModalRpcError):
    """The server did not accept the submitted input (queue full)."""


class RemoteExecutionError(ModalRpcError):
    """The remote function ran and reported a failure."""

    def __init__(
        self,
        message: str,
        function_call_id: Optional[str] = None,
        remote_exception: str = "",
        exitcode: int = 0,
        remote_traceback: str = "",
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {}) or {}
        if function_call_id is not None:
            details["function_call_id"] = function_call_id
        if exitcode:
            details["exitcode"] = exitcode
        super().__init__(message, details=details, **kwargs)
        self.function_call_id = function_call_id
        self.remote_exception = remote_exception
        self.exitcode = exitcode
        self.remote_traceback = remote_traceback


class UnsupportedResultError(ModalRpcError):
    """The output uses a delivery mode this client does not implement."""


class InvocationStateError(ModalRpcError):
    """An invocation step was attempted out of order or repeated."""

    def __init__(
        self,
        message: str,
        current_state: Optional[str] = None,
        requested_state: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {}) or {}
        if current_state is not None:
            details["current_state"] = current_state
        if requested_state is not None:
            details["requested_state"] = requested_state
        super().__init__(message, details=details, **kwargs)
        self.current_state = current_state
        self.requested_state = requested_state


class ParameterBindingError(ModalRpcError):
    """Class constructor parameters could not be encoded."""

    def __init__(self, message: str, parameter_name: Optional[str] = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", {}) or {}
        if parameter_name is not None:
            details["parameter"] = parameter_name
        super().__init__(message, details=details, **kwargs)
        self.parameter_name = parameter_name


class ConfigurationError(ModalRpcError):
    """Client configuration is invalid or could not be read."""


class ExceptionTranslator:
    """
    Map transport-level failures onto modalrpc error kinds.
    """

    _AUTH_CODES = frozenset(
        {grpc.StatusCode.UNAUTHENTICATED, grpc.StatusCode.PERMISSION_DENIED}
    )

    @staticmethod
    def _status_of(error: grpc.RpcError) -> Optional[grpc.StatusCode]:
        code = getattr(error, "code", None)
        if callable(code):
            return code()
        return None

    @staticmethod
    def _details_of(error: grpc.RpcError) -> str:
        details = getattr(error, "details", None)
        if callable(details):
            return details() or ""
        return str(error)

    @classmethod
    def from_rpc_error(
        cls,
        error: grpc.RpcError,
        operation: str,
        address: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> ModalRpcError:
        """
        Translate a ``grpc.RpcError`` raised by ``operation``.

        Args:
            error: The error raised by the gRPC multicallable
            operation: RPC name, recorded in the error details
            address: Server address, recorded for transport failures
            timeout_seconds: Deadline that applied to the call

        Returns:
            The matching ``ModalRpcError`` subclass instance (not raised)
        """
        status = cls._status_of(error)
        detail_text = cls._details_of(error)
        status_name = status.name if status is not None else "UNKNOWN"
        message = f"{operation} failed with {status_name}: {detail_text}"
        details = {"operation": operation, "status": status_name}

        if status == grpc.StatusCode.NOT_FOUND:
            return NotFoundError(message=message, details=details, cause=error)
        if status in cls._AUTH_CODES:
            return AuthError(message, details=details, cause=error)
        if status == grpc.StatusCode.DEADLINE_EXCEEDED:
            return TimeoutError(
                message,
                timeout_seconds=timeout_seconds,
                operation=operation,
                details={"status": status_name},
                cause=error,
            )
        return TransportError(message, address=address, details=details, cause=error)
