"""
Key store: where the root token and unseal key shares are kept.

Two fixed records in the secret store:

    vault-root-token    token
    vault-unseal-keys   key1 .. keyN

Both are written once, when the fleet is initialized. Persisting never
overwrites: if a record already exists, another controller (or an
earlier run) initialized the fleet first and its keys must survive.
Only ``rotate_keys`` replaces the key record, and only on request.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from .errors import PersistenceError, RecordNotFoundError
from .models import CredentialRecord, KeyRecord, key_field

logger = logging.getLogger("autounseal.keystore")

ROOT_TOKEN_SECRET = "vault-root-token"
UNSEAL_KEYS_SECRET = "vault-unseal-keys"


class RecordStore(Protocol):
    """Secret-store operations the key store relies on."""

    def create(self, name: str, data: dict[str, bytes], secret_type: str = "") -> None: ...

    def get(self, name: str) -> dict[str, bytes]: ...

    def update(self, name: str, data: dict[str, bytes], secret_type: str = "") -> None: ...


class KeyStore:
    """Reads and writes key material through a record store.

    Args:
        store: Backing record store (Kubernetes secrets in production).
        log: Logger to use instead of the module logger.
    """

    def __init__(self, store: RecordStore, log: Optional[logging.Logger] = None) -> None:
        self._store = store
        self._log = log or logger

    def save_credential(self, record: CredentialRecord) -> None:
        """Create the root-token record.

        Raises:
            RecordExistsError: The record is already there.
            PersistenceError: The store rejected the write.
        """
        self._store.create(ROOT_TOKEN_SECRET, record.to_data(), "root-token")
        self._log.info("Stored root token in secret %s", ROOT_TOKEN_SECRET)

    def save_keys(self, record: KeyRecord) -> None:
        """Create the unseal-keys record.

        Raises:
            RecordExistsError: The record is already there.
            PersistenceError: The store rejected the write.
        """
        self._store.create(UNSEAL_KEYS_SECRET, record.to_data(), "unseal-keys")
        self._log.info(
            "Stored %d unseal keys in secret %s", len(record.keys), UNSEAL_KEYS_SECRET
        )

    def load_keys(self) -> list[str]:
        """Unseal key shares in positional order.

        Raises:
            RecordNotFoundError: No key record, or one with no key fields.
            PersistenceError: The store could not be read or a key is
                not valid UTF-8.
        """
        record = KeyRecord.from_data(self._store.get(UNSEAL_KEYS_SECRET))
        try:
            keys = record.ordered_keys()
        except UnicodeDecodeError as exc:
            raise PersistenceError(
                f"secret {UNSEAL_KEYS_SECRET} holds a key that is not valid UTF-8: {exc}"
            ) from exc
        if not keys:
            raise RecordNotFoundError(f"secret {UNSEAL_KEYS_SECRET} holds no unseal keys")
        return keys

    def load_root_token(self) -> str:
        """The stored root token.

        Raises:
            RecordNotFoundError: No credential record, or no token field.
            PersistenceError: The store could not be read.
        """
        data = self._store.get(ROOT_TOKEN_SECRET)
        try:
            return CredentialRecord.from_data(data).token.decode("utf-8")
        except KeyError as exc:
            raise RecordNotFoundError(f"secret {ROOT_TOKEN_SECRET} has no token field") from exc
        except UnicodeDecodeError as exc:
            raise PersistenceError(
                f"secret {ROOT_TOKEN_SECRET} holds a token that is not valid UTF-8: {exc}"
            ) from exc

    def rotate_keys(self, keys: list[str]) -> None:
        """Overwrite the unseal-keys record, creating it if missing.

        This is the only path that replaces stored shares. It exists for
        operators re-keying Vault by hand.

        Raises:
            PersistenceError: The store rejected the write.
        """
        if not keys:
            raise PersistenceError("refusing to store an empty key record")
        record = KeyRecord(keys={key_field(i): k.encode("utf-8") for i, k in enumerate(keys, 1)})
        self._log.warning(
            "Overwriting secret %s with %d operator-supplied keys", UNSEAL_KEYS_SECRET, len(keys)
        )
        try:
            self._store.update(UNSEAL_KEYS_SECRET, record.to_data(), "unseal-keys")
        except RecordNotFoundError:
            self._store.create(UNSEAL_KEYS_SECRET, record.to_data(), "unseal-keys")
