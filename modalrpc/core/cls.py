#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Deployed classes: parameter binding and method calls.

A class is deployed as one service function. Instantiating it with
constructor parameters binds those parameters server-side (FunctionBindParams)
and yields the function id every method call is routed to.
"""

from typing import TYPE_CHECKING, Any, Dict, Iterable, Mapping, Optional

from .protos import api_pb2
from .utils.exceptions import NotFoundError, ParameterBindingError

if TYPE_CHECKING:
    from .client import InvocationClient

# Schema defaults that map onto a value field; pickled defaults are not sent.
_DEFAULT_TO_VALUE_FIELD = {
    "string_default": "string_value",
    "int_default": "int_value",
    "bytes_default": "bytes_value",
    "bool_default": "bool_value",
}


def _value_field_for(name: str, value: Any) -> str:
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return "bool_value"
    if isinstance(value, int):
        return "int_value"
    if isinstance(value, str):
        return "string_value"
    if isinstance(value, (bytes, bytearray)):
        return "bytes_value"
    raise ParameterBindingError(
        f"Unsupported parameter value type for '{name}': {type(value).__name__}",
        parameter_name=name,
    )


def encode_parameter_set(schema: Iterable[Any], parameters: Mapping[str, Any]) -> bytes:
    """
    Serialize ``parameters`` as a ``ClassParameterSet`` following ``schema``.

    Supplied values win; otherwise the schema default is used. Entries are
    sorted by name so equal parameter sets serialize identically.

    Raises:
        ParameterBindingError: If a parameter without default is missing
            or a value has an unsupported type
    """
    encoded = []
    for spec in schema:
        value = api_pb2.ClassParameterValue(name=spec.name, type=spec.type)

        if spec.name in parameters:
            supplied = parameters[spec.name]
            field_name = _value_field_for(spec.name, supplied)
            if field_name == "bytes_value":
                supplied = bytes(supplied)
            setattr(value, field_name, supplied)
        elif spec.has_default:
            default_field = spec.WhichOneof("default_oneof")
            value_field = _DEFAULT_TO_VALUE_FIELD.get(default_field)
            if value_field is not None:
                setattr(value, value_field, getattr(spec, default_field))
        else:
            raise ParameterBindingError(
                f"Missing parameter '{spec.name}'", parameter_name=spec.name
            )

        encoded.append(value)

    encoded.sort(key=lambda item: item.name)
    return api_pb2.ClassParameterSet(parameters=encoded).SerializeToString()


class ClsInstance:
    """
    A class instance with bound parameters.

    Each method name maps to the function id that serves it.
    """

    def __init__(self, client: "InvocationClient", methods: Dict[str, str]) -> None:
        self._client = client
        self.methods = dict(methods)

    def call_method(
        self,
        method: str,
        payload: bytes,
        timeout: Optional[float] = None,
        data_format: int = api_pb2.DATA_FORMAT_CBOR,
    ) -> bytes:
        """
        Call ``method`` with an encoded payload and return the output bytes.

        Raises:
            NotFoundError: If the class has no such method
            RemoteExecutionError: If the remote method failed
        """
        function_id = self.methods.get(method)
        if function_id is None:
            raise NotFoundError(
                f"Method '{method}' not found; available: {sorted(self.methods)}",
                object_name=method,
            )
        handle = self._client.put_input(
            function_id, payload, data_format=data_format, method_name=method
        )
        return self._client.get_output(handle, timeout=timeout).raise_for_status().data


class Cls:
    """
    A deployed class resolved by ``InvocationClient.cls_from_name``.
    """

    def __init__(
        self,
        client: "InvocationClient",
        service_function_id: str,
        service_function_metadata: Optional[Any] = None,
        app_name: str = "",
        class_name: str = "",
    ) -> None:
        self._client = client
        self.service_function_id = service_function_id
        self.service_function_metadata = service_function_metadata
        self.app_name = app_name
        self.class_name = class_name

    def _bind_parameters(self, parameters: Mapping[str, Any]) -> str:
        metadata = self.service_function_metadata
        if not metadata.HasField("class_parameter_info"):
            return self.service_function_id

        param_info = metadata.class_parameter_info
        if param_info.format != api_pb2.ClassParameterInfo.PARAM_SERIALIZATION_FORMAT_PROTO or not param_info.schema:
            return self.service_function_id

        request = api_pb2.FunctionBindParamsRequest(
            function_id=self.service_function_id,
            serialized_params=encode_parameter_set(param_info.schema, parameters),
            environment_name=self._client.config.environment_name,
        )
        response = self._client._invoke("FunctionBindParams", request)
        return response.bound_function_id or self.service_function_id

    def instance(self, parameters: Optional[Mapping[str, Any]] = None) -> ClsInstance:
        """
        Bind constructor ``parameters`` and return the instance.

        Raises:
            NotFoundError: If the class lookup returned no metadata
            ParameterBindingError: If the parameters do not fit the schema
        """
        if self.service_function_metadata is None:
            raise NotFoundError(
                f"Class '{self.class_name}' has no handle metadata",
                app_name=self.app_name,
                object_name=self.class_name,
            )

        function_id = self._bind_parameters(parameters or {})
        methods = {
            name: function_id
            for name in self.service_function_metadata.method_handle_metadata
        }
        return ClsInstance(self._client, methods)
