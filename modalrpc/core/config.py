#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Client configuration.

Credentials come from the active profile of ``~/.modal.toml`` when the file
exists; a token the profile does not set falls back to ``MODAL_TOKEN_ID`` /
``MODAL_TOKEN_SECRET``. An unreadable profile file is skipped with a warning.
The profile file holds one TOML table per profile:

    [default]
    token_id = "ak-..."
    token_secret = "as-..."

    [work]
    token_id = "ak-..."
    token_secret = "as-..."
    active = true

The table with ``active = true`` wins; otherwise the first table is used.
"""

import os
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlparse

from .utils.exceptions import ConfigurationError
from .utils.logger import ModernLogger

DEFAULT_SERVER_URL = "https://api.modal.com:443"
PROFILE_FILE_NAME = ".modal.toml"
CLIENT_TYPE = "1"

ENV_SERVER_URL = "MODAL_SERVER_URL"
ENV_TOKEN_ID = "MODAL_TOKEN_ID"
ENV_TOKEN_SECRET = "MODAL_TOKEN_SECRET"
ENV_ENVIRONMENT = "MODAL_ENVIRONMENT"
ENV_APP = "MODAL_APP"
ENV_FUNCTION = "MODAL_FUNCTION"
ENV_LOG_LEVEL = "MODALRPC_LOG_LEVEL"

_log = ModernLogger(name="config", level="warning")


@dataclass(frozen=True)
class ClientConfig:
    """
    Settings for one ``InvocationClient``.

    Timeouts are in seconds. ``output_poll_timeout`` bounds the server-side
    wait of a single FunctionGetOutputs request; ``output_timeout`` bounds
    the whole ``get_output`` call.
    """
    server_url: str = DEFAULT_SERVER_URL
    token_id: Optional[str] = field(default=None, repr=False)
    token_secret: Optional[str] = field(default=None, repr=False)
    environment_name: str = ""
    app_name: Optional[str] = None
    function_name: Optional[str] = None
    output_timeout: float = 60.0
    output_poll_timeout: float = 55.0
    poll_interval: float = 0.5
    rpc_timeout: float = 30.0
    max_message_length: int = 64 * 1024 * 1024
    client_version: str = "1.0.0"
    log_level: Optional[str] = None

    def __post_init__(self) -> None:
        parsed = urlparse(self.server_url)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ConfigurationError(
                f"server_url must be an http(s) URL with a host, got {self.server_url!r}"
            )
        for name in ("output_timeout", "output_poll_timeout", "rpc_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive, got {getattr(self, name)}")
        if self.poll_interval < 0:
            raise ConfigurationError(f"poll_interval must not be negative, got {self.poll_interval}")
        if self.max_message_length < 1024:
            raise ConfigurationError(
                f"max_message_length must be at least 1024 bytes, got {self.max_message_length}"
            )

    @property
    def use_tls(self) -> bool:
        return urlparse(self.server_url).scheme == "https"

    @property
    def target(self) -> str:
        """
        ``host:port`` address for the gRPC channel.
        """
        parsed = urlparse(self.server_url)
        port = parsed.port or (443 if parsed.scheme == "https" else 80)
        return f"{parsed.hostname}:{port}"

    @property
    def has_credentials(self) -> bool:
        return bool(self.token_id and self.token_secret)

    def with_overrides(self, **overrides: Any) -> "ClientConfig":
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        profile_path: Optional[Path] = None,
        **overrides: Any,
    ) -> "ClientConfig":
        """
        Build a config from the profile file and environment variables.

        Args:
            environ: Environment mapping, defaults to ``os.environ``
            profile_path: Profile file, defaults to ``~/.modal.toml``
            **overrides: Explicit values that win over both sources

        Raises:
            ConfigurationError: If the resulting values are invalid
        """
        env = os.environ if environ is None else environ
        path = profile_path if profile_path is not None else default_profile_path(env)

        values: Dict[str, Any] = {}
        profile: Dict[str, Any] = {}
        if path is not None:
            try:
                profile = load_profile(path) or {}
            except ConfigurationError as e:
                _log.warning(f"Ignoring profile file: {e}")

        values["token_id"] = profile.get("token_id") or env.get(ENV_TOKEN_ID)
        values["token_secret"] = profile.get("token_secret") or env.get(ENV_TOKEN_SECRET)
        if profile.get("server_url"):
            values["server_url"] = profile["server_url"]

        if env.get(ENV_SERVER_URL):
            values["server_url"] = env[ENV_SERVER_URL]
        values["environment_name"] = env.get(ENV_ENVIRONMENT, "")
        values["app_name"] = env.get(ENV_APP)
        values["function_name"] = env.get(ENV_FUNCTION)
        values["log_level"] = env.get(ENV_LOG_LEVEL)

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**{k: v for k, v in values.items() if v is not None})


def default_profile_path(environ: Optional[Mapping[str, str]] = None) -> Optional[Path]:
    """
    ``%USERPROFILE%\\.modal.toml`` or ``$HOME/.modal.toml``, if either is set.
    """
    env = os.environ if environ is None else environ
    home = env.get("USERPROFILE") or env.get("HOME")
    if not home:
        return None
    return Path(home) / PROFILE_FILE_NAME


def load_profile(path: Path) -> Optional[Dict[str, Any]]:
    """
    Return the active profile table from ``path``, or ``None``.

    ``None`` means the file is missing or holds no profile tables.
    """
    if not path.is_file():
        return None
    try:
        document = tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigurationError(
            f"Could not read profile file {path}: {e}", cause=e
        ) from e

    chosen: Optional[Dict[str, Any]] = None
    for table in document.values():
        if not isinstance(table, dict):
            continue
        if chosen is None:
            chosen = table
        if table.get("active") is True:
            return table
    return chosen
