"""
Initialization coordinator: first-time setup of a Vault fleet.

Asks one uninitialized instance to initialize itself, stores the root
token and the key shares it hands back, then unseals the instance
with the first ``threshold`` shares.

The key material exists only in the init response. Storage failures
are logged and recorded but do not stop the unseal step, so the
instance still comes up even when a secret could not be written.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from .errors import InitializationError, PersistenceError, RecordExistsError, UnsealError
from .keystore import KeyStore
from .models import CredentialRecord, InitOutcome, InstanceAddress, KeyRecord, key_field
from .unseal import UnsealExecutor
from .vault import SECRET_SHARES, SECRET_THRESHOLD, VaultClient

logger = logging.getLogger("autounseal.coordinator")


class InitializationCoordinator:
    """Initializes a Vault instance and persists what it returns.

    Args:
        client_factory: Builds a VaultClient for an address.
        keystore: Where the records go.
        executor: Applies the fresh shares.
        secret_shares: Shares Vault should generate.
        secret_threshold: Shares required to unseal.
        log: Logger to use instead of the module logger.
    """

    def __init__(
        self,
        client_factory: Callable[[InstanceAddress], VaultClient],
        keystore: KeyStore,
        executor: UnsealExecutor,
        secret_shares: int = SECRET_SHARES,
        secret_threshold: int = SECRET_THRESHOLD,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self._client_factory = client_factory
        self._keystore = keystore
        self._executor = executor
        self.secret_shares = secret_shares
        self.secret_threshold = secret_threshold
        self._log = log or logger

    def initialize(self, address: InstanceAddress) -> InitOutcome:
        """Initialize, persist, unseal.

        Returns:
            InitOutcome: Which records were stored and how far the unseal got.

        Raises:
            InitializationError: The init call failed. Nothing was stored,
                unless the instance initialized and only its response was
                rejected; then whatever it returned is stored first.
        """
        self._log.info("Initializing Vault %s (%d shares, threshold %d)",
                       address, self.secret_shares, self.secret_threshold)
        try:
            result = self._client_factory(address).initialize(
                self.secret_shares, self.secret_threshold
            )
        except InitializationError as exc:
            if exc.committed:
                self._persist_recovered(address, exc)
            raise
        outcome = InitOutcome(address=address)

        try:
            self._keystore.save_credential(result.credential_record())
            outcome.credential_persisted = True
        except PersistenceError as exc:
            self._persist_failed(outcome, "root token", exc)

        try:
            self._keystore.save_keys(result.key_record())
            outcome.keys_persisted = True
        except PersistenceError as exc:
            self._persist_failed(outcome, "unseal keys", exc)

        if outcome.credential_persisted and outcome.keys_persisted:
            self._log.info("Initialized Vault %s and stored its secrets", address)

        try:
            unsealed = self._executor.unseal(
                address, result.keys[: result.threshold], source="init"
            )
        except UnsealError as exc:
            outcome.shares_applied = exc.applied
            outcome.errors.append(f"unseal: {exc}")
            self._log.error("Initialized Vault %s but could not unseal it: %s", address, exc)
            return outcome

        outcome.shares_applied = unsealed.applied
        outcome.sealed = unsealed.sealed
        return outcome

    def _persist_failed(self, outcome: InitOutcome, what: str, exc: PersistenceError) -> None:
        outcome.errors.append(f"{what}: {exc}")
        if isinstance(exc, RecordExistsError):
            self._log.error(
                "Not storing %s for %s: %s. Another controller or an earlier run "
                "already initialized this fleet; the existing record is kept.",
                what, outcome.address, exc,
            )
        else:
            self._log.warning("Failed to store %s for %s: %s", what, outcome.address, exc)

    def _persist_recovered(self, address: InstanceAddress, exc: InitializationError) -> None:
        if exc.root_token:
            try:
                self._keystore.save_credential(
                    CredentialRecord(token=exc.root_token.encode("utf-8"))
                )
            except PersistenceError as perr:
                self._log.error("Could not store recovered root token of %s: %s", address, perr)
        if exc.keys:
            record = KeyRecord(
                keys={key_field(i): k.encode("utf-8") for i, k in enumerate(exc.keys, 1)}
            )
            try:
                self._keystore.save_keys(record)
            except PersistenceError as perr:
                self._log.error("Could not store recovered unseal keys of %s: %s", address, perr)
