"""Controller commands: run, tick, rotate-keys."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click
from rich.table import Table

from ._common import ACTION_STYLES, build_config, config_options, console, exits_on_config_error


def register_controller_commands(main: click.Group) -> None:
    """Register run, tick and rotate-keys."""

    @main.command("run")
    @config_options
    @click.option("--interval", type=int, default=None, help="Seconds between ticks (env CHECK_INTERVAL).")
    @click.option("--http-port", type=int, default=None, help="Probe server port (env HTTP_PORT).")
    @click.option("--log-file", type=click.Path(), default=None, help="Also log to this file.")
    @exits_on_config_error
    def run_cmd(interval, http_port, log_file, **overrides):
        """Run the controller until SIGTERM or Ctrl+C.

        Reconciles the fleet every interval and serves /health and
        /ready for the kubelet.
        """
        from ..logs import setup_logging
        from ..service import ControllerService

        config = build_config(check_interval=interval, http_port=http_port, **overrides)
        log = setup_logging(config.log_level, Path(log_file) if log_file else None)
        log.info(
            "Starting Vault auto-unseal controller: namespace=%s port=%d interval=%ds",
            config.namespace, config.vault_port, config.check_interval,
        )

        svc = ControllerService.from_config(config, log=log)
        svc.start()
        svc.run_forever()

    @main.command("tick")
    @config_options
    @click.option("--json-out", is_flag=True, help="Output the tick report as JSON.")
    @exits_on_config_error
    def tick_cmd(json_out, **overrides):
        """Run a single reconciliation tick and report what it did."""
        from ..logs import setup_logging
        from ..service import ControllerService

        config = build_config(**overrides)
        log = setup_logging("WARNING" if json_out else config.log_level)
        svc = ControllerService.from_config(config, log=log)
        report = svc.reconciler.tick()

        if json_out:
            click.echo(json.dumps(report.model_dump(mode="json"), indent=2))
        elif report.error:
            console.print(f"\n  [yellow]Tick skipped:[/] {report.error}\n")
        else:
            table = Table(title=f"Tick: {report.discovered} pod(s)")
            table.add_column("Pod", style="cyan")
            table.add_column("Action")
            table.add_column("Detail", style="dim")
            for line in report.instances:
                table.add_row(str(line.address), ACTION_STYLES.get(line.action, line.action.value),
                              line.detail)
            console.print(table)

        if report.error:
            sys.exit(1)

    @main.command("rotate-keys")
    @config_options
    @click.option("--from-dir", "from_dir", required=True, type=click.Path(exists=True, file_okay=False),
                  help="Directory holding key1..keyN files.")
    @click.option("--count", default=5, show_default=True, help="Number of key files to read.")
    @click.option("--force", is_flag=True, help="Required: confirms the stored keys are replaced.")
    @exits_on_config_error
    def rotate_keys_cmd(from_dir, count, force, **overrides):
        """Replace the stored unseal keys with the files in DIR.

        This overwrites the vault-unseal-keys secret. The controller
        itself never does this; it is meant for a manual re-key.
        """
        from kubernetes import client as k8s

        from ..errors import PersistenceError, UnsealError
        from ..keystore import UNSEAL_KEYS_SECRET, KeyStore
        from ..kube import SecretStore, load_api_client
        from ..unseal import load_local_keys

        if not force:
            console.print(
                f"[bold red]Refusing to overwrite {UNSEAL_KEYS_SECRET} without --force.[/]"
            )
            sys.exit(1)

        config = build_config(**overrides)
        try:
            keys = load_local_keys(Path(from_dir), count=count)
        except UnsealError as exc:
            console.print(f"[bold red]Error:[/] {exc}")
            sys.exit(1)

        store = KeyStore(SecretStore(k8s.CoreV1Api(load_api_client()), config.namespace))
        try:
            store.rotate_keys(keys)
        except PersistenceError as exc:
            console.print(f"[bold red]Error:[/] {exc}")
            sys.exit(1)
        console.print(
            f"\n  [green]Stored {len(keys)} key(s) in {config.namespace}/{UNSEAL_KEYS_SECRET}[/]\n"
        )
