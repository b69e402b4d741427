"""
autounseal: keeps a Vault fleet initialized and unsealed.

Watches the Vault pods of a Kubernetes namespace, initializes the
first one that has never been initialized, stores the generated key
shares and root token as Kubernetes secrets, and feeds the shares to
every sealed pod it finds. Runs forever on a fixed interval.
"""

__version__ = "0.1.0"

DEFAULT_NAMESPACE = "vault"
DEFAULT_VAULT_PORT = 8200
DEFAULT_HTTP_PORT = 8080
DEFAULT_CHECK_INTERVAL = 10
DEFAULT_UNSEAL_KEYS_DIR = "/vault/unseal-keys"
DEFAULT_LABEL_SELECTOR = "app.kubernetes.io/name=vault,component=server"
