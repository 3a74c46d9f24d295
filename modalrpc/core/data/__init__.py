#!/usr/bin/env python3
# -*- coding: utf-8 -*-

from .models import (
    ConnectionState,
    FunctionId,
    InvocationHandle,
    InvocationResult,
    InvocationState,
    validate_transition,
)

__all__ = [
    "ConnectionState",
    "FunctionId",
    "InvocationHandle",
    "InvocationResult",
    "InvocationState",
    "validate_transition",
]
