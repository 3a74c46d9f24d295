#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
modalrpc public API with lazy imports.

This avoids importing gRPC/protobuf modules unless the corresponding API
objects are actually requested.
"""

from importlib import import_module
from typing import Any, Dict, Tuple

from ._version import __version__

_EXPORT_MAP: Dict[str, Tuple[str, str]] = {
    "InvocationClient": ("modalrpc.core.client", "InvocationClient"),
    "ClientConfig": ("modalrpc.core.config", "ClientConfig"),
    "Cls": ("modalrpc.core.cls", "Cls"),
    "ClsInstance": ("modalrpc.core.cls", "ClsInstance"),
    "FunctionId": ("modalrpc.core.data", "FunctionId"),
    "InvocationHandle": ("modalrpc.core.data", "InvocationHandle"),
    "InvocationResult": ("modalrpc.core.data", "InvocationResult"),
    "InvocationState": ("modalrpc.core.data", "InvocationState"),
    "ModalRpcError": ("modalrpc.core.utils.exceptions", "ModalRpcError"),
    "NotFoundError": ("modalrpc.core.utils.exceptions", "NotFoundError"),
    "AuthError": ("modalrpc.core.utils.exceptions", "AuthError"),
    "TransportError": ("modalrpc.core.utils.exceptions", "TransportError"),
    "TimeoutError": ("modalrpc.core.utils.exceptions", "TimeoutError"),
    "RemoteExecutionError": ("modalrpc.core.utils.exceptions", "RemoteExecutionError"),
}

__all__ = ["__version__", *sorted(_EXPORT_MAP.keys())]


def __getattr__(name: str) -> Any:
    """
    Resolve public API symbols lazily.
    """
    if name not in _EXPORT_MAP:
        raise AttributeError("module 'modalrpc' has no attribute '{0}'".format(name))

    module_name, attr_name = _EXPORT_MAP[name]
    module = import_module(module_name)
    value = getattr(module, attr_name)
    globals()[name] = value
    return value
