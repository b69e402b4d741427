"""
Vault HTTP client: health, init and unseal.

Thin wrapper over the three ``/v1/sys`` endpoints the controller needs.
The health endpoint encodes the server state in its status code, so
several non-200 codes are normal answers and are decoded like a 200:

    200  initialized, unsealed, active
    429  unsealed standby
    472  disaster-recovery secondary
    473  performance standby
    501  not initialized
    503  sealed

Anything else is a probe failure.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import requests
from pydantic import ValidationError

from .errors import InitializationError, ProbeError, UnsealError
from .models import InitResult, InstanceAddress, InstanceStatus, UnsealResponse

logger = logging.getLogger("autounseal.vault")

HEALTH_STATUS_CODES = frozenset({200, 429, 472, 473, 501, 503})

SECRET_SHARES = 5
SECRET_THRESHOLD = 3


def _recoverable_material(data: Any) -> tuple[Optional[str], list[str]]:
    """Root token and key shares from an init body that failed validation."""
    if not isinstance(data, dict):
        return None, []
    token = data.get("root_token")
    if not isinstance(token, str) or not token:
        token = None
    keys = data.get("keys")
    if not isinstance(keys, list):
        keys = []
    return token, [k for k in keys if isinstance(k, str) and k]


class VaultClient:
    """Client for a single Vault instance.

    Args:
        address: Instance to talk to.
        scheme: URL scheme.
        timeout: Transport timeout in seconds for every call.
        session: Optional ``requests.Session`` (shared or stubbed).
        log: Logger to use instead of the module logger.
    """

    def __init__(
        self,
        address: InstanceAddress,
        scheme: str = "http",
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.address = address
        self.base_url = address.url(scheme)
        self._timeout = timeout
        self._session = session or requests.Session()
        self._log = log or logger

    def _request(self, method: str, path: str, body: Optional[dict] = None) -> requests.Response:
        """Send one request; transport errors propagate as requests exceptions."""
        url = f"{self.base_url}{path}"
        return self._session.request(method, url, json=body, timeout=self._timeout)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def health(self) -> InstanceStatus:
        """Probe ``GET /v1/sys/health`` and classify the answer.

        Returns:
            InstanceStatus: Decoded seal state.

        Raises:
            ProbeError: Transport failure, unknown status code, or a body
                that is not a health document.
        """
        try:
            resp = self._request("GET", "/v1/sys/health")
        except requests.RequestException as exc:
            raise ProbeError(
                f"health check of {self.base_url} failed: {exc}", address=self.base_url
            ) from exc

        if resp.status_code not in HEALTH_STATUS_CODES:
            raise ProbeError(
                f"health check of {self.base_url} returned unexpected status {resp.status_code}",
                address=self.base_url,
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
            status = InstanceStatus(
                sealed=data["sealed"],
                initialized=data["initialized"],
                standby=data.get("standby", False),
                version=data.get("version"),
                status_code=resp.status_code,
            )
        except (ValueError, KeyError, TypeError, AttributeError, ValidationError) as exc:
            raise ProbeError(
                f"health response of {self.base_url} could not be decoded: {exc}",
                address=self.base_url,
                status_code=resp.status_code,
            ) from exc

        self._log.debug(
            "Vault %s status: initialized=%s sealed=%s (HTTP %d)",
            self.address, status.initialized, status.sealed, resp.status_code,
        )
        return status

    # ------------------------------------------------------------------
    # Init
    # ------------------------------------------------------------------

    def initialize(
        self,
        secret_shares: int = SECRET_SHARES,
        secret_threshold: int = SECRET_THRESHOLD,
    ) -> InitResult:
        """Initialize the instance with ``PUT /v1/sys/init``.

        Args:
            secret_shares: Number of key shares to generate.
            secret_threshold: Shares required to unseal.

        Returns:
            InitResult: Root token and key shares, returned only once.

        Raises:
            InitializationError: Transport failure, non-200, or a malformed body.
                For a malformed 200 the error is ``committed`` and carries
                whatever key material the body held.
        """
        body = {"secret_shares": secret_shares, "secret_threshold": secret_threshold}
        try:
            resp = self._request("PUT", "/v1/sys/init", body)
        except requests.RequestException as exc:
            raise InitializationError(f"init of {self.base_url} failed: {exc}") from exc

        if resp.status_code != 200:
            raise InitializationError(
                f"init of {self.base_url} failed with status {resp.status_code}"
            )

        data = None
        try:
            data = resp.json()
            return InitResult(
                root_token=data["root_token"],
                keys=data["keys"],
                keys_base64=data.get("keys_base64") or [],
                total_shares=secret_shares,
                threshold=secret_threshold,
            )
        except (ValueError, KeyError, TypeError, AttributeError, ValidationError) as exc:
            root_token, keys = _recoverable_material(data)
            self._log.critical(
                "Vault %s accepted init but its response was rejected (%s). The instance "
                "is now initialized; %d key share(s) and %s root token were recovered.",
                self.address, exc, len(keys), "a" if root_token else "no",
            )
            raise InitializationError(
                f"init response of {self.base_url} could not be decoded: {exc}",
                committed=True,
                root_token=root_token,
                keys=keys,
            ) from exc

    # ------------------------------------------------------------------
    # Unseal
    # ------------------------------------------------------------------

    def unseal(self, key: str) -> UnsealResponse:
        """Submit one key share with ``POST /v1/sys/unseal``.

        A response with ``sealed: true`` is not an error, it means more
        shares are needed.

        Raises:
            UnsealError: Transport failure, non-200, or a malformed body.
        """
        try:
            resp = self._request("POST", "/v1/sys/unseal", {"key": key})
        except requests.RequestException as exc:
            raise UnsealError(f"unseal of {self.base_url} failed: {exc}") from exc

        if resp.status_code != 200:
            raise UnsealError(
                f"unseal of {self.base_url} failed with status {resp.status_code}"
            )

        try:
            return UnsealResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            raise UnsealError(
                f"unseal response of {self.base_url} could not be decoded: {exc}"
            ) from exc


class VaultClientFactory:
    """Builds a VaultClient per instance with shared transport settings."""

    def __init__(
        self,
        scheme: str = "http",
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.scheme = scheme
        self.timeout = timeout
        self._session = session or requests.Session()
        self._log = log

    def __call__(self, address: InstanceAddress) -> VaultClient:
        return VaultClient(
            address,
            scheme=self.scheme,
            timeout=self.timeout,
            session=self._session,
            log=self._log,
        )
