"""
Pydantic models for the seal-state protocol.

Everything here is transient except the two secret records, which are
the persisted shape of an InitResult.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

ROOT_TOKEN_FIELD = "token"
KEY_FIELD_PREFIX = "key"

_KEY_FIELD_RE = re.compile(r"^key([1-9][0-9]*)$")


def key_field(index: int) -> str:
    """Positional record field for the 1-based share index."""
    return f"{KEY_FIELD_PREFIX}{index}"


class InstanceAddress(BaseModel):
    """Network location of one Vault pod, fixed for the tick."""

    model_config = ConfigDict(frozen=True)

    host: str
    port: int = 8200
    name: Optional[str] = None  # pod name, informational only

    def url(self, scheme: str = "http") -> str:
        """Base URL of the instance's API."""
        return f"{scheme}://{self.host}:{self.port}"

    def __str__(self) -> str:
        if self.name:
            return f"{self.name} ({self.host}:{self.port})"
        return f"{self.host}:{self.port}"


class InstanceStatus(BaseModel):
    """Seal state derived from one health probe."""

    sealed: bool
    initialized: bool
    standby: bool = False
    version: Optional[str] = None
    status_code: Optional[int] = None

    @property
    def healthy(self) -> bool:
        """Initialized and unsealed."""
        return self.initialized and not self.sealed


class UnsealResponse(BaseModel):
    """Body of POST /v1/sys/unseal."""

    sealed: bool
    t: int = 0          # threshold
    n: int = 0          # total shares
    progress: int = 0   # shares accepted so far


class InitResult(BaseModel):
    """Key material returned once by a successful PUT /v1/sys/init."""

    root_token: str
    keys: list[str]
    keys_base64: list[str] = Field(default_factory=list)
    total_shares: int
    threshold: int

    @model_validator(mode="after")
    def _check_shares(self) -> "InitResult":
        if self.threshold > self.total_shares:
            raise ValueError(
                f"threshold {self.threshold} exceeds total shares {self.total_shares}"
            )
        if len(self.keys) != self.total_shares:
            raise ValueError(
                f"expected {self.total_shares} keys, got {len(self.keys)}"
            )
        return self

    def key_record(self) -> "KeyRecord":
        """Persisted form of the key shares."""
        return KeyRecord(
            keys={key_field(i): k.encode("utf-8") for i, k in enumerate(self.keys, start=1)}
        )

    def credential_record(self) -> "CredentialRecord":
        """Persisted form of the root token."""
        return CredentialRecord(token=self.root_token.encode("utf-8"))


class KeyRecord(BaseModel):
    """Unseal key shares as stored: ``key1``..``keyN`` mapped to bytes."""

    keys: dict[str, bytes] = Field(default_factory=dict)

    def ordered_keys(self) -> list[str]:
        """Shares in ascending positional order.

        Fields that are not positional key names are ignored. Gaps in the
        numbering are tolerated.
        """
        indexed = []
        for name, value in self.keys.items():
            match = _KEY_FIELD_RE.match(name)
            if match:
                indexed.append((int(match.group(1)), value.decode("utf-8")))
        return [value for _, value in sorted(indexed)]

    def to_data(self) -> dict[str, bytes]:
        return dict(self.keys)

    @classmethod
    def from_data(cls, data: dict[str, bytes]) -> "KeyRecord":
        return cls(keys=dict(data))


class CredentialRecord(BaseModel):
    """Root token as stored: a single ``token`` field."""

    token: bytes

    def to_data(self) -> dict[str, bytes]:
        return {ROOT_TOKEN_FIELD: self.token}

    @classmethod
    def from_data(cls, data: dict[str, bytes]) -> "CredentialRecord":
        return cls(token=data[ROOT_TOKEN_FIELD])


class InitOutcome(BaseModel):
    """What the coordinator managed to do for one instance."""

    address: InstanceAddress
    credential_persisted: bool = False
    keys_persisted: bool = False
    shares_applied: int = 0
    sealed: bool = True
    errors: list[str] = Field(default_factory=list)


class UnsealOutcome(BaseModel):
    """Result of one executor run against one instance."""

    address: InstanceAddress
    applied: int = 0
    sealed: bool = True
    already_unsealed: bool = False
    source: str = ""  # "secret", "directory", "init"


class InstanceAction(str, Enum):
    """What a tick did with an instance."""

    SKIPPED = "skipped"
    HEALTHY = "healthy"
    INITIALIZED = "initialized"
    INIT_FAILED = "init-failed"
    AWAITING_INIT = "awaiting-init"
    UNSEALED = "unsealed"
    STILL_SEALED = "still-sealed"
    UNSEAL_FAILED = "unseal-failed"


class InstanceReport(BaseModel):
    """One instance line of a tick report."""

    address: InstanceAddress
    action: InstanceAction
    status: Optional[InstanceStatus] = None
    detail: str = ""


class TickReport(BaseModel):
    """Summary of one reconciliation tick."""

    discovered: int = 0
    instances: list[InstanceReport] = Field(default_factory=list)
    error: Optional[str] = None  # set when the whole tick was skipped

    def count(self, action: InstanceAction) -> int:
        return sum(1 for r in self.instances if r.action == action)
