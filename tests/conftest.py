"""Shared fixtures for autounseal tests.

Nothing here talks to a real Vault or Kubernetes API. ``FakeFleet`` is
a stand-in ``requests.Session`` that routes each request to a
``FakeVault`` by host and emulates health, init and unseal.
"""

from __future__ import annotations

from typing import Any, Optional
from urllib.parse import urlsplit

import pytest
import requests

from autounseal.errors import RecordExistsError, RecordNotFoundError
from autounseal.models import InstanceAddress
from autounseal.vault import VaultClientFactory


class FakeResponse:
    """Just enough of requests.Response."""

    def __init__(self, status_code: int, data: Any = None):
        self.status_code = status_code
        self._data = data

    def json(self):
        if isinstance(self._data, str):
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._data


class FakeVault:
    """One emulated Vault server.

    Args:
        name: Prefix for generated keys and tokens.
        initialized: Start initialized.
        sealed: Start sealed.
        keys: Valid unseal keys when starting initialized.
        threshold: Shares needed to unseal.
    """

    def __init__(
        self,
        name: str = "vault",
        initialized: bool = False,
        sealed: bool = True,
        keys: Optional[list[str]] = None,
        threshold: int = 3,
    ):
        self.name = name
        self.initialized = initialized
        self.sealed = sealed
        self.keys = list(keys or [])
        self.threshold = threshold
        self.accepted: list[str] = []
        self.health_override: Optional[FakeResponse] = None
        self.unseal_failures: set[str] = set()
        self.init_status: Optional[int] = None
        self.init_keys_returned: Optional[int] = None
        self.unreachable = False
        self.init_calls = 0
        self.unseal_calls: list[str] = []

    def handle(self, method: str, path: str, body: Optional[dict]) -> FakeResponse:
        if self.unreachable:
            raise requests.ConnectionError(f"{self.name}: connection refused")
        if path == "/v1/sys/health" and method == "GET":
            return self._health()
        if path == "/v1/sys/init" and method == "PUT":
            return self._init(body or {})
        if path == "/v1/sys/unseal" and method == "POST":
            return self._unseal((body or {}).get("key", ""))
        return FakeResponse(404, {"errors": []})

    def _health(self) -> FakeResponse:
        if self.health_override is not None:
            return self.health_override
        data = {"initialized": self.initialized, "sealed": self.sealed, "standby": False,
                "version": "1.15.2"}
        if not self.initialized:
            return FakeResponse(501, data)
        if self.sealed:
            return FakeResponse(503, data)
        return FakeResponse(200, data)

    def _init(self, body: dict) -> FakeResponse:
        self.init_calls += 1
        if self.init_status is not None:
            return FakeResponse(self.init_status, {"errors": ["init failed"]})
        if self.initialized:
            return FakeResponse(400, {"errors": ["Vault is already initialized"]})
        shares = body["secret_shares"]
        self.threshold = body["secret_threshold"]
        self.keys = [f"{self.name}-key{i}" for i in range(1, shares + 1)]
        self.initialized = True
        self.sealed = True
        returned = self.keys[: self.init_keys_returned] if self.init_keys_returned else self.keys
        return FakeResponse(200, {
            "keys": returned,
            "keys_base64": [f"b64-{k}" for k in returned],
            "root_token": f"{self.name}-root",
        })

    def _unseal(self, key: str) -> FakeResponse:
        self.unseal_calls.append(key)
        if key in self.unseal_failures:
            raise requests.ConnectionError(f"{self.name}: reset while unsealing")
        if not self.sealed:
            return self._unseal_body()
        if key not in self.keys:
            return FakeResponse(400, {"errors": ["invalid key"]})
        if key not in self.accepted:
            self.accepted.append(key)
        if len(self.accepted) >= self.threshold:
            self.sealed = False
            self.accepted = []
        return self._unseal_body()

    def _unseal_body(self) -> FakeResponse:
        return FakeResponse(200, {
            "sealed": self.sealed,
            "t": self.threshold,
            "n": len(self.keys),
            "progress": len(self.accepted),
        })


class FakeFleet:
    """A requests.Session stand-in routing by host to FakeVaults."""

    def __init__(self):
        self.vaults: dict[str, FakeVault] = {}
        self.calls: list[tuple[str, str, str]] = []

    def add(self, host: str, vault: FakeVault) -> InstanceAddress:
        self.vaults[host] = vault
        return InstanceAddress(host=host, port=8200, name=vault.name)

    def request(self, method, url, json=None, timeout=None):
        parts = urlsplit(url)
        self.calls.append((parts.hostname, method, parts.path))
        vault = self.vaults.get(parts.hostname)
        if vault is None:
            raise requests.ConnectionError(f"no route to {parts.hostname}")
        return vault.handle(method, parts.path, json)


class MemoryRecordStore:
    """Dict-backed record store with create-if-absent semantics."""

    def __init__(self):
        self.records: dict[str, dict[str, bytes]] = {}
        self.fail_create: dict[str, Exception] = {}
        self.fail_get: Optional[Exception] = None
        self.creates: list[str] = []

    def create(self, name, data, secret_type=""):
        self.creates.append(name)
        if name in self.fail_create:
            raise self.fail_create[name]
        if name in self.records:
            raise RecordExistsError(f"secret {name} already exists")
        self.records[name] = dict(data)

    def get(self, name):
        if self.fail_get is not None:
            raise self.fail_get
        if name not in self.records:
            raise RecordNotFoundError(f"secret {name} not found")
        return dict(self.records[name])

    def update(self, name, data, secret_type=""):
        if name not in self.records:
            raise RecordNotFoundError(f"secret {name} not found")
        self.records[name] = dict(data)


class StaticDiscovery:
    """Discovery returning a fixed list, or raising a set error."""

    def __init__(self, addresses=None, error: Optional[Exception] = None):
        self.addresses = list(addresses or [])
        self.error = error
        self.calls = 0

    def list_instances(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.addresses)


@pytest.fixture
def fleet() -> FakeFleet:
    return FakeFleet()


@pytest.fixture
def clients(fleet) -> VaultClientFactory:
    """Client factory wired to the fake fleet."""
    return VaultClientFactory(session=fleet)


@pytest.fixture
def record_store() -> MemoryRecordStore:
    return MemoryRecordStore()
