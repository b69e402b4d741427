"""Status command: probe the fleet once and print what it looks like."""

from __future__ import annotations

import json
import sys

import click
from rich.table import Table

from ._common import build_config, config_options, console, exits_on_config_error


def _state(line) -> str:
    if line.error:
        return "[bold red]UNREACHABLE[/]"
    if not line.status.initialized:
        return "[yellow]UNINITIALIZED[/]"
    if line.status.sealed:
        return "[yellow]SEALED[/]"
    return "[bold green]UNSEALED[/]"


def register_status_commands(main: click.Group) -> None:
    """Register the status command."""

    @main.command("status")
    @config_options
    @click.option("--json-out", is_flag=True, help="Output as JSON.")
    @exits_on_config_error
    def status_cmd(json_out, **overrides):
        """Probe every Vault pod and show the readiness verdict.

        Exits 1 when the fleet is not ready.
        """
        from kubernetes import client as k8s

        from ..kube import PodDiscovery, load_api_client
        from ..readiness import ReadinessReporter
        from ..vault import VaultClientFactory

        config = build_config(**overrides)
        core = k8s.CoreV1Api(load_api_client())
        discovery = PodDiscovery(core, config.namespace, config.label_selector, config.vault_port)
        reporter = ReadinessReporter(
            discovery,
            VaultClientFactory(config.vault_scheme, config.request_timeout),
            config.readiness_mode,
        )
        report = reporter.check()

        if json_out:
            click.echo(json.dumps(report.model_dump(mode="json"), indent=2))
        else:
            if report.error:
                console.print(f"\n  [red]{report.error}[/]")
            if report.instances:
                table = Table(title=f"Vault pods in {config.namespace}")
                table.add_column("Pod", style="cyan")
                table.add_column("State")
                table.add_column("Version", style="dim")
                for line in report.instances:
                    version = line.status.version if line.status else ""
                    table.add_row(line.address, _state(line), version or "")
                console.print(table)
            verdict = "[bold green]READY[/]" if report.ready else "[bold red]NOT READY[/]"
            console.print(f"\n  Fleet ({report.mode.value}): {verdict}\n")

        if not report.ready:
            sys.exit(1)
