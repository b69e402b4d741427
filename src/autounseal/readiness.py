"""Readiness reporter: answers /ready by probing the fleet live."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from pydantic import BaseModel, Field

from .config import ReadinessMode
from .errors import DiscoveryError, ProbeError
from .models import InstanceAddress, InstanceStatus
from .reconciler import Discovery
from .vault import VaultClient

logger = logging.getLogger("autounseal.readiness")


class InstanceReadiness(BaseModel):
    """Probe result for one instance."""

    address: str
    ready: bool
    status: Optional[InstanceStatus] = None
    error: Optional[str] = None


class ReadinessReport(BaseModel):
    """Fleet readiness verdict."""

    ready: bool
    mode: ReadinessMode
    instances: list[InstanceReadiness] = Field(default_factory=list)
    error: Optional[str] = None


class ReadinessReporter:
    """Re-derives fleet readiness on every call; nothing is cached.

    Args:
        discovery: Lists the instances.
        client_factory: Builds a VaultClient for an address.
        mode: ``STRICT`` wants every instance initialized and unsealed,
            ``REACHABLE`` only wants every instance to answer.
        log: Logger to use instead of the module logger.
    """

    def __init__(
        self,
        discovery: Discovery,
        client_factory: Callable[[InstanceAddress], VaultClient],
        mode: ReadinessMode = ReadinessMode.STRICT,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self._discovery = discovery
        self._client_factory = client_factory
        self.mode = mode
        self._log = log or logger

    def check(self) -> ReadinessReport:
        """Probe every instance and decide.

        An empty fleet, or one that cannot be listed, is not ready.
        """
        try:
            instances = self._discovery.list_instances()
        except DiscoveryError as exc:
            self._log.warning("Readiness: failed to get Vault pods: %s", exc)
            return ReadinessReport(ready=False, mode=self.mode, error=str(exc))

        if not instances:
            return ReadinessReport(ready=False, mode=self.mode, error="no Vault pods found")

        results = [self._check_one(address) for address in instances]
        ready = all(r.ready for r in results)
        if ready:
            self._log.debug("Readiness: all %d Vault pod(s) ready", len(results))
        else:
            self._log.info(
                "Readiness: %d of %d Vault pod(s) not ready",
                sum(1 for r in results if not r.ready), len(results),
            )
        return ReadinessReport(ready=ready, mode=self.mode, instances=results)

    def _check_one(self, address: InstanceAddress) -> InstanceReadiness:
        try:
            status = self._client_factory(address).health()
        except ProbeError as exc:
            return InstanceReadiness(address=str(address), ready=False, error=str(exc))

        if self.mode == ReadinessMode.REACHABLE:
            ready = True
        else:
            ready = status.healthy
        return InstanceReadiness(address=str(address), ready=ready, status=status)
