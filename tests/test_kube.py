"""Tests for Kubernetes discovery and the secret store.

The CoreV1Api is a MagicMock; objects it returns are built from the
real client models.
"""

from __future__ import annotations

import base64
from unittest.mock import MagicMock, patch

import pytest
from kubernetes import client as k8s
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from autounseal.errors import (
    ConfigError,
    DiscoveryError,
    PersistenceError,
    RecordExistsError,
    RecordNotFoundError,
)
from autounseal.kube import PodDiscovery, SecretStore, load_api_client


def _pod(name: str, ip: str | None) -> k8s.V1Pod:
    return k8s.V1Pod(
        metadata=k8s.V1ObjectMeta(name=name, namespace="vault"),
        status=k8s.V1PodStatus(pod_ip=ip),
    )


class TestPodDiscovery:

    def test_lists_pods_with_ips(self):
        core = MagicMock()
        core.list_namespaced_pod.return_value = k8s.V1PodList(items=[
            _pod("vault-0", "10.0.0.1"),
            _pod("vault-1", None),
            _pod("vault-2", "10.0.0.3"),
        ])
        discovery = PodDiscovery(core, "vault", port=8200)

        addresses = discovery.list_instances()

        assert [a.host for a in addresses] == ["10.0.0.1", "10.0.0.3"]
        assert [a.name for a in addresses] == ["vault-0", "vault-2"]
        assert all(a.port == 8200 for a in addresses)
        core.list_namespaced_pod.assert_called_once_with(
            "vault", label_selector="app.kubernetes.io/name=vault,component=server"
        )

    def test_keeps_discovery_order(self):
        core = MagicMock()
        core.list_namespaced_pod.return_value = k8s.V1PodList(items=[
            _pod("vault-2", "10.0.0.3"), _pod("vault-0", "10.0.0.1"),
        ])
        hosts = [a.host for a in PodDiscovery(core, "vault").list_instances()]
        assert hosts == ["10.0.0.3", "10.0.0.1"]

    def test_empty(self):
        core = MagicMock()
        core.list_namespaced_pod.return_value = k8s.V1PodList(items=[])
        assert PodDiscovery(core, "vault").list_instances() == []

    def test_api_error(self):
        core = MagicMock()
        core.list_namespaced_pod.side_effect = ApiException(status=403, reason="Forbidden")
        with pytest.raises(DiscoveryError, match="403"):
            PodDiscovery(core, "vault").list_instances()

    def test_connection_error(self):
        core = MagicMock()
        core.list_namespaced_pod.side_effect = OSError("connection refused")
        with pytest.raises(DiscoveryError):
            PodDiscovery(core, "vault").list_instances()


class TestSecretStore:

    def test_create_encodes_and_labels(self):
        core = MagicMock()
        store = SecretStore(core, "vault")

        store.create("vault-root-token", {"token": b"s.root"}, "root-token")

        namespace, body = core.create_namespaced_secret.call_args.args
        assert namespace == "vault"
        assert body.metadata.name == "vault-root-token"
        assert body.type == "Opaque"
        assert body.data == {"token": base64.b64encode(b"s.root").decode()}
        assert body.metadata.labels == {
            "app.kubernetes.io/component": "vault-secrets",
            "vault.hashicorp.com/secret-type": "root-token",
        }

    def test_create_conflict(self):
        core = MagicMock()
        core.create_namespaced_secret.side_effect = ApiException(status=409, reason="Conflict")
        with pytest.raises(RecordExistsError):
            SecretStore(core, "vault").create("vault-unseal-keys", {"key1": b"a"})

    def test_create_other_failure(self):
        core = MagicMock()
        core.create_namespaced_secret.side_effect = ApiException(status=500, reason="Boom")
        with pytest.raises(PersistenceError) as exc_info:
            SecretStore(core, "vault").create("vault-unseal-keys", {"key1": b"a"})
        assert not isinstance(exc_info.value, RecordExistsError)

    def test_get_decodes(self):
        core = MagicMock()
        core.read_namespaced_secret.return_value = k8s.V1Secret(
            data={"key1": base64.b64encode(b"a").decode(), "key2": base64.b64encode(b"b").decode()}
        )
        data = SecretStore(core, "vault").get("vault-unseal-keys")
        assert data == {"key1": b"a", "key2": b"b"}
        core.read_namespaced_secret.assert_called_once_with("vault-unseal-keys", "vault")

    def test_get_empty_secret(self):
        core = MagicMock()
        core.read_namespaced_secret.return_value = k8s.V1Secret(data=None)
        assert SecretStore(core, "vault").get("vault-unseal-keys") == {}

    def test_get_invalid_base64(self):
        core = MagicMock()
        core.read_namespaced_secret.return_value = k8s.V1Secret(data={"key1": "abc"})
        with pytest.raises(PersistenceError, match="base64"):
            SecretStore(core, "vault").get("vault-unseal-keys")

    def test_get_missing(self):
        core = MagicMock()
        core.read_namespaced_secret.side_effect = ApiException(status=404, reason="Not Found")
        with pytest.raises(RecordNotFoundError):
            SecretStore(core, "vault").get("vault-unseal-keys")

    def test_get_forbidden(self):
        core = MagicMock()
        core.read_namespaced_secret.side_effect = ApiException(status=403, reason="Forbidden")
        with pytest.raises(PersistenceError):
            SecretStore(core, "vault").get("vault-unseal-keys")

    def test_update(self):
        core = MagicMock()
        SecretStore(core, "vault").update("vault-unseal-keys", {"key1": b"z"}, "unseal-keys")
        name, namespace, body = core.replace_namespaced_secret.call_args.args
        assert (name, namespace) == ("vault-unseal-keys", "vault")
        assert body.data == {"key1": base64.b64encode(b"z").decode()}

    def test_update_missing(self):
        core = MagicMock()
        core.replace_namespaced_secret.side_effect = ApiException(status=404, reason="Not Found")
        with pytest.raises(RecordNotFoundError):
            SecretStore(core, "vault").update("vault-unseal-keys", {"key1": b"z"})


class TestLoadApiClient:

    def test_in_cluster_first(self):
        with patch("autounseal.kube.k8s_config.load_incluster_config") as incluster, \
                patch("autounseal.kube.k8s_config.load_kube_config") as kubeconfig:
            load_api_client()
        incluster.assert_called_once()
        kubeconfig.assert_not_called()

    def test_falls_back_to_kubeconfig(self, monkeypatch, tmp_path):
        monkeypatch.setenv("KUBECONFIG", str(tmp_path / "config"))
        with patch("autounseal.kube.k8s_config.load_incluster_config",
                   side_effect=ConfigException("not in cluster")), \
                patch("autounseal.kube.k8s_config.load_kube_config") as kubeconfig:
            load_api_client()
        kubeconfig.assert_called_once_with(config_file=str(tmp_path / "config"))

    def test_no_configuration_is_fatal(self, monkeypatch, tmp_path):
        monkeypatch.setenv("KUBECONFIG", str(tmp_path / "missing"))
        with patch("autounseal.kube.k8s_config.load_incluster_config",
                   side_effect=ConfigException("not in cluster")), \
                patch("autounseal.kube.k8s_config.load_kube_config",
                      side_effect=ConfigException("no config")):
            with pytest.raises(ConfigError):
                load_api_client()
