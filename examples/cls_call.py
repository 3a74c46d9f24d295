#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Instantiate a deployed class with a parameter and call one of its methods.
"""

import logging
import os

from modalrpc import InvocationClient

# CBOR encoding of {"name": "Hello"}
METHOD_PAYLOAD = b"\xa1dnameeHello"


def main() -> None:
    app_name = os.getenv("MODAL_APP", "MyApp")
    class_name = os.getenv("MODAL_CLASS", "MyClass")

    with InvocationClient.from_env() as client:
        print(f"Looking up class {app_name}::{class_name}")
        cls = client.cls_from_name(app_name, class_name)

        instance = cls.instance({"name": "example"})
        output = instance.call_method("echo", METHOD_PAYLOAD)
        print(f"method response bytes: {output!r}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    main()
