"""
Controller service: the long-running process.

Two threads:

    reconcile   the Reconciler loop, one tick every check_interval
    http        /health and /ready for the kubelet probes

They share nothing mutable. The readiness reporter gets its own HTTP
session so the probe endpoint never touches the loop's connections.
"""

from __future__ import annotations

import json
import logging
import signal
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional

from kubernetes import client as k8s

from .config import ControllerConfig
from .coordinator import InitializationCoordinator
from .keystore import KeyStore
from .kube import PodDiscovery, SecretStore, load_api_client
from .readiness import ReadinessReporter
from .reconciler import Reconciler
from .unseal import UnsealExecutor
from .vault import VaultClientFactory

logger = logging.getLogger("autounseal.service")


class HealthServer:
    """HTTP endpoints for liveness and readiness.

    ``GET /health`` answers 200 while the process is up. ``GET /ready``
    asks the reporter and answers 200 or 503 with the report as JSON.

    Args:
        reporter: Readiness reporter to consult on /ready.
        port: Port to bind; 0 picks a free one.
        host: Interface to bind.
        log: Logger to use instead of the module logger.
    """

    def __init__(
        self,
        reporter: ReadinessReporter,
        port: int = 8080,
        host: str = "0.0.0.0",
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.reporter = reporter
        self.host = host
        self.port = port
        self._log = log or logger
        self._server: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    def _handler_class(self) -> type:
        reporter = self.reporter
        log = self._log

        class ProbeHandler(BaseHTTPRequestHandler):
            """Serves /health and /ready."""

            def do_GET(self):
                if self.path == "/health":
                    self._json_response({"status": "ok"})
                elif self.path == "/ready":
                    try:
                        report = reporter.check()
                    except Exception as exc:
                        log.exception("Readiness check failed")
                        self._json_response(
                            {"ready": False, "mode": reporter.mode.value, "error": str(exc)},
                            status=503,
                        )
                        return
                    self._json_response(
                        report.model_dump(mode="json"),
                        status=200 if report.ready else 503,
                    )
                else:
                    self._json_response({"endpoints": ["/health", "/ready"]}, status=404)

            def _json_response(self, data: dict, status: int = 200):
                body = json.dumps(data, indent=2, default=str).encode()
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def log_message(self, format, *args):
                log.debug("HTTP %s: %s", self.client_address[0], format % args)

        return ProbeHandler

    def start(self) -> None:
        """Bind and serve in a background thread."""
        self._server = ThreadingHTTPServer((self.host, self.port), self._handler_class())
        self.port = self._server.server_address[1]
        self._thread = threading.Thread(
            target=self._server.serve_forever, name="autounseal-http", daemon=True
        )
        self._thread.start()
        self._log.info("HTTP server listening on %s:%d", self.host, self.port)

    def stop(self) -> None:
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None


class ControllerService:
    """Owns the reconcile thread and the probe server.

    Args:
        reconciler: The loop to run.
        server: The probe server.
        log: Logger to use instead of the module logger.
    """

    def __init__(
        self,
        reconciler: Reconciler,
        server: HealthServer,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.reconciler = reconciler
        self.server = server
        self._log = log or logger
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_config(
        cls,
        config: ControllerConfig,
        log: Optional[logging.Logger] = None,
    ) -> "ControllerService":
        """Wire every component from configuration.

        Raises:
            ConfigError: If the Kubernetes client cannot be built.
        """
        core = k8s.CoreV1Api(load_api_client())
        discovery = PodDiscovery(
            core, config.namespace, config.label_selector, config.vault_port, log=log
        )
        keystore = KeyStore(SecretStore(core, config.namespace), log=log)

        loop_clients = VaultClientFactory(config.vault_scheme, config.request_timeout, log=log)
        executor = UnsealExecutor(loop_clients, log=log)
        coordinator = InitializationCoordinator(loop_clients, keystore, executor, log=log)
        reconciler = Reconciler(
            discovery,
            loop_clients,
            coordinator,
            executor,
            keystore,
            unseal_keys_dir=config.unseal_keys_dir,
            init_policy=config.init_policy,
            interval=config.check_interval,
            log=log,
        )

        probe_clients = VaultClientFactory(config.vault_scheme, config.request_timeout, log=log)
        reporter = ReadinessReporter(discovery, probe_clients, config.readiness_mode, log=log)
        server = HealthServer(reporter, port=config.http_port, log=log)
        return cls(reconciler, server, log=log)

    def start(self) -> None:
        """Start the probe server, then the reconcile thread."""
        self.server.start()
        self._thread = threading.Thread(
            target=self.reconciler.run,
            args=(self._stop_event,),
            name="autounseal-reconcile",
            daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop the loop after its current tick and shut the server down."""
        self._log.info("Controller stopping...")
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=self.reconciler.interval + 5)
            self._thread = None
        self.server.stop()
        self._log.info("Controller stopped.")

    def run_forever(self) -> None:
        """Block until SIGTERM/SIGINT, then stop."""
        self._setup_signals()
        try:
            while not self._stop_event.is_set():
                self._stop_event.wait(timeout=1)
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()

    def _setup_signals(self) -> None:
        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, self._handle_signal)

    def _handle_signal(self, signum, frame):
        self._log.info("Received signal %s, stopping", signal.Signals(signum).name)
        self._stop_event.set()
