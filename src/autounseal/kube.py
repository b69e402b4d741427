"""
Kubernetes collaborators: pod discovery and the secret store.

The controller only needs two things from the cluster: the IPs of
the Vault pods, and a place to keep the key material. Both live in
the Vault namespace.

Secret data travels base64-encoded in the Kubernetes API; this module
hands plain bytes to and from its callers.
"""

from __future__ import annotations

import base64
import logging
import os
from pathlib import Path
from typing import Optional

from kubernetes import client as k8s
from kubernetes import config as k8s_config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from . import DEFAULT_LABEL_SELECTOR, DEFAULT_VAULT_PORT
from .errors import (
    ConfigError,
    DiscoveryError,
    PersistenceError,
    RecordExistsError,
    RecordNotFoundError,
)
from .models import InstanceAddress

logger = logging.getLogger("autounseal.kube")

SECRET_COMPONENT_LABEL = "app.kubernetes.io/component"
SECRET_COMPONENT = "vault-secrets"
SECRET_TYPE_LABEL = "vault.hashicorp.com/secret-type"


def load_api_client() -> k8s.ApiClient:
    """Build an API client, in-cluster first, then from kubeconfig.

    The kubeconfig path is ``$KUBECONFIG`` or ``~/.kube/config``.

    Raises:
        ConfigError: If neither configuration can be loaded.
    """
    try:
        k8s_config.load_incluster_config()
        logger.info("Using in-cluster Kubernetes configuration")
        return k8s.ApiClient()
    except ConfigException:
        pass

    kubeconfig = os.environ.get("KUBECONFIG") or str(Path.home() / ".kube" / "config")
    try:
        k8s_config.load_kube_config(config_file=kubeconfig)
    except (ConfigException, OSError) as exc:
        raise ConfigError(f"Cannot build Kubernetes client: {exc}") from exc
    logger.info("Using kubeconfig %s", kubeconfig)
    return k8s.ApiClient()


class PodDiscovery:
    """Lists Vault pods by label selector.

    Args:
        core: CoreV1Api instance.
        namespace: Namespace to search.
        label_selector: Pod label selector.
        port: Vault API port to attach to every address.
    """

    def __init__(
        self,
        core: k8s.CoreV1Api,
        namespace: str,
        label_selector: str = DEFAULT_LABEL_SELECTOR,
        port: int = DEFAULT_VAULT_PORT,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self._core = core
        self.namespace = namespace
        self.label_selector = label_selector
        self.port = port
        self._log = log or logger

    def list_instances(self) -> list[InstanceAddress]:
        """Return the addresses of every pod that has an IP.

        Raises:
            DiscoveryError: If the pod list call fails.
        """
        try:
            pods = self._core.list_namespaced_pod(
                self.namespace, label_selector=self.label_selector
            )
        except ApiException as exc:
            raise DiscoveryError(
                f"listing pods in {self.namespace} ({self.label_selector}) failed: "
                f"{exc.status} {exc.reason}"
            ) from exc
        except Exception as exc:
            raise DiscoveryError(f"listing pods in {self.namespace} failed: {exc}") from exc

        addresses = []
        for pod in pods.items:
            ip = pod.status.pod_ip if pod.status else None
            if not ip:
                continue
            self._log.debug("Found Vault pod %s with IP %s", pod.metadata.name, ip)
            addresses.append(InstanceAddress(host=ip, port=self.port, name=pod.metadata.name))
        return addresses


def _encode(data: dict[str, bytes]) -> dict[str, str]:
    return {k: base64.b64encode(v).decode("ascii") for k, v in data.items()}


def _decode(data: Optional[dict[str, str]]) -> dict[str, bytes]:
    return {k: base64.b64decode(v) for k, v in (data or {}).items()}


class SecretStore:
    """Named records backed by Opaque secrets in one namespace.

    ``create`` is conditional: it never replaces an existing secret.

    Args:
        core: CoreV1Api instance.
        namespace: Namespace holding the records.
    """

    def __init__(self, core: k8s.CoreV1Api, namespace: str) -> None:
        self._core = core
        self.namespace = namespace

    def _body(self, name: str, data: dict[str, bytes], secret_type: str) -> k8s.V1Secret:
        labels = {SECRET_COMPONENT_LABEL: SECRET_COMPONENT}
        if secret_type:
            labels[SECRET_TYPE_LABEL] = secret_type
        return k8s.V1Secret(
            metadata=k8s.V1ObjectMeta(name=name, namespace=self.namespace, labels=labels),
            type="Opaque",
            data=_encode(data),
        )

    def create(self, name: str, data: dict[str, bytes], secret_type: str = "") -> None:
        """Create the record; fail if it exists.

        Raises:
            RecordExistsError: The secret is already present.
            PersistenceError: Any other API failure.
        """
        try:
            self._core.create_namespaced_secret(
                self.namespace, self._body(name, data, secret_type)
            )
        except ApiException as exc:
            if exc.status == 409:
                raise RecordExistsError(
                    f"secret {self.namespace}/{name} already exists"
                ) from exc
            raise PersistenceError(
                f"creating secret {self.namespace}/{name} failed: {exc.status} {exc.reason}"
            ) from exc

    def get(self, name: str) -> dict[str, bytes]:
        """Read the record's fields.

        Raises:
            RecordNotFoundError: No such secret.
            PersistenceError: Any other API failure, or data that is not
                base64.
        """
        try:
            secret = self._core.read_namespaced_secret(name, self.namespace)
        except ApiException as exc:
            if exc.status == 404:
                raise RecordNotFoundError(
                    f"secret {self.namespace}/{name} not found"
                ) from exc
            raise PersistenceError(
                f"reading secret {self.namespace}/{name} failed: {exc.status} {exc.reason}"
            ) from exc
        try:
            return _decode(secret.data)
        except (ValueError, TypeError) as exc:
            raise PersistenceError(
                f"secret {self.namespace}/{name} holds data that is not valid base64: {exc}"
            ) from exc

    def update(self, name: str, data: dict[str, bytes], secret_type: str = "") -> None:
        """Replace the record's fields.

        Raises:
            RecordNotFoundError: No such secret.
            PersistenceError: Any other API failure.
        """
        try:
            self._core.replace_namespaced_secret(
                name, self.namespace, self._body(name, data, secret_type)
            )
        except ApiException as exc:
            if exc.status == 404:
                raise RecordNotFoundError(
                    f"secret {self.namespace}/{name} not found"
                ) from exc
            raise PersistenceError(
                f"updating secret {self.namespace}/{name} failed: {exc.status} {exc.reason}"
            ) from exc
