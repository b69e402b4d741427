"""
Unseal executor: feeds key shares to a sealed Vault, in order.

Shares go one per request, lowest position first. The first failed
request stops the run; the share is not retried until the next tick.
Once Vault reports ``sealed: false`` the remaining shares are left
unused.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional, Sequence

from .errors import ProbeError, UnsealError
from .models import InstanceAddress, UnsealOutcome, key_field
from .vault import VaultClient

logger = logging.getLogger("autounseal.unseal")

LOCAL_KEY_COUNT = 3


def load_local_keys(directory: Path, count: int = LOCAL_KEY_COUNT) -> list[str]:
    """Read ``key1``..``key<count>`` from a directory.

    Each file holds one key; surrounding whitespace is stripped.

    Args:
        directory: Directory with the key files.
        count: Number of files to read.

    Returns:
        Keys in positional order.

    Raises:
        UnsealError: If a file is missing, unreadable or empty.
    """
    keys = []
    for index in range(1, count + 1):
        path = Path(directory) / key_field(index)
        try:
            key = path.read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError) as exc:
            raise UnsealError(f"cannot read unseal key {index} from {path}: {exc}") from exc
        if not key:
            raise UnsealError(f"unseal key file {path} is empty")
        keys.append(key)
    return keys


class UnsealExecutor:
    """Applies key shares to one instance at a time.

    Args:
        client_factory: Builds a VaultClient for an address.
        log: Logger to use instead of the module logger.
    """

    def __init__(
        self,
        client_factory: Callable[[InstanceAddress], VaultClient],
        log: Optional[logging.Logger] = None,
    ) -> None:
        self._client_factory = client_factory
        self._log = log or logger

    def unseal(
        self,
        address: InstanceAddress,
        keys: Sequence[str],
        source: str = "",
    ) -> UnsealOutcome:
        """Unseal ``address`` with ``keys``.

        The instance is probed first; if it is already unsealed nothing
        is sent.

        Args:
            address: Instance to unseal.
            keys: Shares in the order they must be applied.
            source: Where the keys came from, for the outcome and logs.

        Returns:
            UnsealOutcome: Shares applied and the final seal state.

        Raises:
            UnsealError: The entry probe or a share application failed.
        """
        client = self._client_factory(address)
        outcome = UnsealOutcome(address=address, source=source)

        try:
            status = client.health()
        except ProbeError as exc:
            raise UnsealError(f"cannot read seal state of {address}: {exc}") from exc
        if status.initialized and not status.sealed:
            self._log.debug("Vault %s is already unsealed", address)
            outcome.sealed = False
            outcome.already_unsealed = True
            return outcome

        total = len(keys)
        for index, key in enumerate(keys, start=1):
            try:
                resp = client.unseal(key)
            except UnsealError as exc:
                self._log.error(
                    "Failed to apply unseal key %d/%d to %s: %s", index, total, address, exc
                )
                raise UnsealError(str(exc), key_index=index, applied=outcome.applied) from exc

            outcome.applied += 1
            outcome.sealed = resp.sealed
            if resp.sealed:
                self._log.info(
                    "Applied unseal key %d/%d to %s, still sealed (progress %d/%d)",
                    index, total, address, resp.progress, resp.t,
                )
                continue

            self._log.info("Applied unseal key %d/%d to %s, unsealed", index, total, address)
            return outcome

        self._log.warning(
            "Vault %s is still sealed after %d key(s) from %s",
            address, outcome.applied, source or "caller",
        )
        return outcome
