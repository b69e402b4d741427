"""
Controller configuration, read from the environment.

Every setting has a default so the controller runs unconfigured inside
the Vault namespace. Integers that fail to parse fall back to their
default; values that parse but make no sense are rejected.
"""

from __future__ import annotations

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, Field, ValidationError

from . import (
    DEFAULT_CHECK_INTERVAL,
    DEFAULT_HTTP_PORT,
    DEFAULT_LABEL_SELECTOR,
    DEFAULT_NAMESPACE,
    DEFAULT_UNSEAL_KEYS_DIR,
    DEFAULT_VAULT_PORT,
)
from .errors import ConfigError

logger = logging.getLogger("autounseal.config")


class ReadinessMode(str, Enum):
    """How strict /ready is about the fleet."""

    STRICT = "strict"        # every pod initialized and unsealed
    REACHABLE = "reachable"  # every pod answers the health probe


class InitPolicy(str, Enum):
    """Which uninitialized pod, if any, a tick may initialize."""

    ELECTED = "elected"            # none if any pod is initialized
    ONE_PER_TICK = "one-per-tick"  # first uninitialized pod, every tick


class ControllerConfig(BaseModel):
    """Validated controller settings.

    Attributes:
        namespace: Namespace holding the Vault pods and the secrets.
        vault_port: Port the Vault API listens on inside each pod.
        vault_scheme: URL scheme for the Vault API.
        check_interval: Seconds between reconciliation ticks.
        unseal_keys_dir: Directory with key1..key3 files used when the
            unseal-keys secret cannot be read.
        label_selector: Pod label selector for discovery.
        http_port: Port for the /health and /ready endpoints.
        readiness_mode: Strictness of /ready.
        init_policy: Initialization election policy.
        request_timeout: Transport timeout for every Vault call, seconds.
        log_level: Root log level name.
    """

    namespace: str = DEFAULT_NAMESPACE
    vault_port: int = Field(default=DEFAULT_VAULT_PORT, ge=1, le=65535)
    vault_scheme: str = "http"
    check_interval: int = Field(default=DEFAULT_CHECK_INTERVAL, gt=0)
    unseal_keys_dir: Path = Path(DEFAULT_UNSEAL_KEYS_DIR)
    label_selector: str = DEFAULT_LABEL_SELECTOR
    http_port: int = Field(default=DEFAULT_HTTP_PORT, ge=0, le=65535)
    readiness_mode: ReadinessMode = ReadinessMode.STRICT
    init_policy: InitPolicy = InitPolicy.ELECTED
    request_timeout: float = Field(default=30.0, gt=0)
    log_level: str = "INFO"


_STRING_VARS = {
    "VAULT_NAMESPACE": "namespace",
    "VAULT_SCHEME": "vault_scheme",
    "VAULT_UNSEAL_KEYS_DIR": "unseal_keys_dir",
    "VAULT_LABEL_SELECTOR": "label_selector",
    "READINESS_MODE": "readiness_mode",
    "INIT_POLICY": "init_policy",
    "LOG_LEVEL": "log_level",
}

_INT_VARS = {
    "VAULT_PORT": "vault_port",
    "CHECK_INTERVAL": "check_interval",
    "HTTP_PORT": "http_port",
}


def _env_int(environ: Mapping[str, str], key: str, default: int) -> int:
    raw = environ.get(key, "")
    if raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not an integer, using %d", key, raw, default)
        return default


def load_config(
    environ: Optional[Mapping[str, str]] = None,
    **overrides,
) -> ControllerConfig:
    """Build the controller config from environment variables.

    Args:
        environ: Mapping to read instead of ``os.environ``.
        **overrides: Field values that win over the environment (CLI
            options). ``None`` values are ignored.

    Returns:
        ControllerConfig: The validated configuration.

    Raises:
        ConfigError: If a value is out of range or not a known choice.
    """
    environ = os.environ if environ is None else environ
    defaults = ControllerConfig.model_fields

    values: dict = {}
    for key, field in _STRING_VARS.items():
        raw = environ.get(key, "")
        if raw != "":
            values[field] = raw
    for key, field in _INT_VARS.items():
        values[field] = _env_int(environ, key, defaults[field].default)

    raw_timeout = environ.get("REQUEST_TIMEOUT", "")
    if raw_timeout:
        try:
            values["request_timeout"] = float(raw_timeout)
        except ValueError:
            logger.warning("Ignoring REQUEST_TIMEOUT=%r: not a number", raw_timeout)

    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return ControllerConfig(**values)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc
