"""
Reconciliation loop: drives every Vault pod toward "initialized and
unsealed".

Each tick starts from scratch: list the pods, probe each one, then act
on what the probes say. Nothing is remembered between ticks, so a
crash or restart at any point is harmless; the next tick simply picks
up where the fleet actually is.

Tick, in order:

    1. discover pods            (failure or none: skip the tick)
    2. probe every pod          (failure: skip that pod)
    3. pick at most one uninitialized pod to initialize
    4. unseal sealed pods       (stored keys, else key files)
    5. wait ``interval`` seconds
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, Optional, Protocol, Sequence

from .config import InitPolicy
from .coordinator import InitializationCoordinator
from .errors import (
    AutoUnsealError,
    DiscoveryError,
    PersistenceError,
    ProbeError,
    UnsealError,
)
from .keystore import KeyStore
from .models import (
    InstanceAction,
    InstanceAddress,
    InstanceReport,
    InstanceStatus,
    TickReport,
)
from .unseal import UnsealExecutor, load_local_keys
from .vault import VaultClient

logger = logging.getLogger("autounseal.reconciler")


class Discovery(Protocol):
    """Anything that can list the Vault instances."""

    def list_instances(self) -> list[InstanceAddress]: ...


def elect_init_target(
    probed: Sequence[tuple[InstanceAddress, Optional[InstanceStatus]]],
    policy: InitPolicy = InitPolicy.ELECTED,
) -> Optional[int]:
    """Index of the one instance a tick may initialize, if any.

    Under ``ELECTED`` no instance is chosen when any probed instance is
    already initialized. Under ``ONE_PER_TICK`` initialized peers do not
    matter. Either way the choice is the first uninitialized instance in
    discovery order. Instances whose probe failed are never chosen.
    """
    statuses = [(i, s) for i, (_, s) in enumerate(probed) if s is not None]
    if policy == InitPolicy.ELECTED and any(s.initialized for _, s in statuses):
        return None
    for index, status in statuses:
        if not status.initialized:
            return index
    return None


class Reconciler:
    """The controller's main loop.

    Args:
        discovery: Lists the instances each tick.
        client_factory: Builds a VaultClient for an address.
        coordinator: Initializes the elected instance.
        executor: Unseals sealed instances.
        keystore: Source of the stored unseal keys.
        unseal_keys_dir: Key-file directory used when the store can't be read.
        init_policy: Initialization election policy.
        interval: Seconds between ticks.
        log: Logger to use instead of the module logger.
    """

    def __init__(
        self,
        discovery: Discovery,
        client_factory: Callable[[InstanceAddress], VaultClient],
        coordinator: InitializationCoordinator,
        executor: UnsealExecutor,
        keystore: KeyStore,
        unseal_keys_dir: Optional[Path] = None,
        init_policy: InitPolicy = InitPolicy.ELECTED,
        interval: float = 10,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self._discovery = discovery
        self._client_factory = client_factory
        self._coordinator = coordinator
        self._executor = executor
        self._keystore = keystore
        self.unseal_keys_dir = unseal_keys_dir
        self.init_policy = init_policy
        self.interval = interval
        self._log = log or logger

    def run(self, stop_event: threading.Event) -> None:
        """Tick every ``interval`` seconds until ``stop_event`` is set."""
        self._log.info(
            "Reconciliation loop started (interval %ss, init policy %s)",
            self.interval, self.init_policy.value,
        )
        while not stop_event.is_set():
            try:
                self.tick()
            except Exception:
                self._log.exception("Unexpected error during reconciliation tick")
            stop_event.wait(timeout=self.interval)
        self._log.info("Reconciliation loop stopped")

    def tick(self) -> TickReport:
        """Run one reconciliation pass over the fleet."""
        report = TickReport()

        try:
            instances = self._discovery.list_instances()
        except DiscoveryError as exc:
            self._log.error("Error getting Vault pods: %s", exc)
            report.error = str(exc)
            return report

        if not instances:
            self._log.warning("No Vault pods found")
            report.error = "no Vault pods found"
            return report

        report.discovered = len(instances)
        self._log.info("Found %d Vault pod(s)", len(instances))

        probed = [(address, self._probe(address)) for address in instances]
        target = elect_init_target(probed, self.init_policy)

        for index, (address, status) in enumerate(probed):
            if status is None:
                report.instances.append(
                    InstanceReport(address=address, action=InstanceAction.SKIPPED,
                                   detail="health probe failed")
                )
            elif not status.initialized:
                report.instances.append(self._handle_uninitialized(address, status, index == target))
            elif status.sealed:
                report.instances.append(self._handle_sealed(address, status))
            else:
                self._log.debug("Vault %s is unsealed and healthy", address)
                report.instances.append(
                    InstanceReport(address=address, action=InstanceAction.HEALTHY, status=status)
                )
        return report

    def _probe(self, address: InstanceAddress) -> Optional[InstanceStatus]:
        try:
            return self._client_factory(address).health()
        except ProbeError as exc:
            self._log.warning("Error checking Vault status for %s: %s", address, exc)
            return None

    def _handle_uninitialized(
        self, address: InstanceAddress, status: InstanceStatus, elected: bool
    ) -> InstanceReport:
        if not elected:
            self._log.info("Vault %s is not initialized; not elected this tick", address)
            return InstanceReport(address=address, action=InstanceAction.AWAITING_INIT,
                                  status=status)

        self._log.info("Vault %s is not initialized. Attempting initialization...", address)
        try:
            outcome = self._coordinator.initialize(address)
        except AutoUnsealError as exc:
            self._log.error("Error initializing Vault %s: %s", address, exc)
            return InstanceReport(address=address, action=InstanceAction.INIT_FAILED,
                                  status=status, detail=str(exc))

        detail = "; ".join(outcome.errors)
        return InstanceReport(address=address, action=InstanceAction.INITIALIZED,
                              status=status, detail=detail)

    def _handle_sealed(self, address: InstanceAddress, status: InstanceStatus) -> InstanceReport:
        self._log.info("Vault %s is sealed. Attempting to unseal...", address)
        try:
            keys, source = self._load_keys()
            outcome = self._executor.unseal(address, keys, source=source)
        except UnsealError as exc:
            self._log.error("Error unsealing Vault %s: %s", address, exc)
            return InstanceReport(address=address, action=InstanceAction.UNSEAL_FAILED,
                                  status=status, detail=str(exc))

        if outcome.sealed:
            return InstanceReport(
                address=address, action=InstanceAction.STILL_SEALED, status=status,
                detail=f"{outcome.applied} key(s) applied from {source}",
            )
        self._log.info("Successfully unsealed Vault %s", address)
        return InstanceReport(
            address=address, action=InstanceAction.UNSEALED, status=status,
            detail=f"{outcome.applied} key(s) applied from {source}",
        )

    def _load_keys(self) -> tuple[list[str], str]:
        """Stored keys, or the key files when the store can't produce them.

        Raises:
            UnsealError: Neither source is usable.
        """
        try:
            return self._keystore.load_keys(), "secret"
        except PersistenceError as exc:
            if self.unseal_keys_dir is None:
                raise UnsealError(f"no stored unseal keys and no key directory: {exc}") from exc
            self._log.warning(
                "Error getting unseal keys secret (%s); falling back to %s",
                exc, self.unseal_keys_dir,
            )
        return load_local_keys(self.unseal_keys_dir), "directory"
