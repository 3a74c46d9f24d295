#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
modalrpc core module exports (lazy-loaded).
"""

from importlib import import_module
from typing import Any, Dict, Tuple

_EXPORT_MAP: Dict[str, Tuple[str, str]] = {
    "InvocationClient": ("modalrpc.core.client", "InvocationClient"),
    "ClientConfig": ("modalrpc.core.config", "ClientConfig"),
    "Cls": ("modalrpc.core.cls", "Cls"),
    "ClsInstance": ("modalrpc.core.cls", "ClsInstance"),
    "encode_parameter_set": ("modalrpc.core.cls", "encode_parameter_set"),
}

__all__ = sorted(_EXPORT_MAP.keys())


def __getattr__(name: str) -> Any:
    if name not in _EXPORT_MAP:
        raise AttributeError("module 'modalrpc.core' has no attribute '{0}'".format(name))

    module_name, attr_name = _EXPORT_MAP[name]
    module = import_module(module_name)
    value = getattr(module, attr_name)
    globals()[name] = value
    return value
