#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Wire schema for the control-plane protocol.

``api.proto`` is compiled by grpcio-tools when this package is imported.
``api_pb2`` holds the messages and enums; ``api_pb2_grpc`` holds
``ModalClientStub``, ``ModalClientServicer`` and
``add_ModalClientServicer_to_server``.

The proto is resolved against ``sys.path`` under its package path, so the
directory containing ``modalrpc`` must be importable (true for regular and
editable installs).
"""

import grpc

PROTO_PATH = "modalrpc/core/protos/api.proto"

api_pb2, api_pb2_grpc = grpc.protos_and_services(PROTO_PATH)

__all__ = ["PROTO_PATH", "api_pb2", "api_pb2_grpc"]
