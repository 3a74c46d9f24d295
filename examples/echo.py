#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Call a deployed function once and print the raw output bytes.

Configuration comes from ~/.modal.toml or MODAL_TOKEN_ID / MODAL_TOKEN_SECRET,
plus MODAL_APP and MODAL_FUNCTION for the target.
"""

import logging
import os

from modalrpc import InvocationClient

# CBOR encoding of {"msg": "hello from python"}
ECHO_PAYLOAD = b"\xa1cmsgqhello from python"


class EchoDemo:
    """
    Resolves the target function and runs one synchronous invocation.
    """

    def __init__(self) -> None:
        self.app_name = os.getenv("MODAL_APP", "my-app")
        self.function_name = os.getenv("MODAL_FUNCTION", "echo")

    def run(self) -> None:
        with InvocationClient.from_env() as client:
            print(f"Looking up function {self.app_name}::{self.function_name}")
            function_id = client.map(self.app_name, self.function_name)
            print(f"Found function id {function_id}")

            handle = client.put_input(function_id, ECHO_PAYLOAD)
            result = client.get_output(handle, timeout=60.0).raise_for_status()
            print(f"Result bytes from function: {result.data!r}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    EchoDemo().run()
