"""Shared helpers for the command modules."""

from __future__ import annotations

import functools
import sys
from typing import Callable

import click
from rich.console import Console

from ..config import ControllerConfig, InitPolicy, ReadinessMode, load_config
from ..errors import ConfigError
from ..models import InstanceAction

console = Console()

ACTION_STYLES = {
    InstanceAction.HEALTHY: "[bold green]HEALTHY[/]",
    InstanceAction.UNSEALED: "[green]UNSEALED[/]",
    InstanceAction.INITIALIZED: "[green]INITIALIZED[/]",
    InstanceAction.AWAITING_INIT: "[yellow]AWAITING INIT[/]",
    InstanceAction.STILL_SEALED: "[yellow]STILL SEALED[/]",
    InstanceAction.SKIPPED: "[red]SKIPPED[/]",
    InstanceAction.INIT_FAILED: "[bold red]INIT FAILED[/]",
    InstanceAction.UNSEAL_FAILED: "[bold red]UNSEAL FAILED[/]",
}


def config_options(func: Callable) -> Callable:
    """Attach the options that override environment configuration."""
    options = [
        click.option("--namespace", default=None, help="Vault namespace (env VAULT_NAMESPACE)."),
        click.option("--vault-port", type=int, default=None, help="Vault API port (env VAULT_PORT)."),
        click.option("--keys-dir", "unseal_keys_dir", default=None, type=click.Path(),
                     help="Fallback unseal key directory (env VAULT_UNSEAL_KEYS_DIR)."),
        click.option("--init-policy", type=click.Choice([p.value for p in InitPolicy]),
                     default=None, help="Initialization election policy (env INIT_POLICY)."),
        click.option("--readiness-mode", type=click.Choice([m.value for m in ReadinessMode]),
                     default=None, help="Readiness strictness (env READINESS_MODE)."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def build_config(**overrides) -> ControllerConfig:
    """Load configuration or exit 1 with a readable message."""
    try:
        return load_config(**overrides)
    except ConfigError as exc:
        console.print(f"[bold red]Configuration error:[/] {exc}")
        sys.exit(1)


def exits_on_config_error(func: Callable) -> Callable:
    """Turn a ConfigError raised while wiring components into exit status 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ConfigError as exc:
            console.print(f"[bold red]Error:[/] {exc}")
            sys.exit(1)

    return wrapper
