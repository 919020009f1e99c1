"""
Vault access for Airtable credentials

The sync reads its personal access token, and optionally the base id, from
a KV v2 secret when neither the command line nor the environment supplies
a token.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import hvac
from hvac.exceptions import InvalidPath, VaultError

logger = logging.getLogger(__name__)

# Secret keys that may hold the token, most preferred first
TOKEN_KEYS = ("token", "api_token", "api_key")


@dataclass
class VaultHealth:
    """
    Result of a Vault health check.

    Attributes:
        authenticated: Whether the client token is accepted
        sealed: Whether Vault is sealed
        error: Reason the check failed, if it did
    """

    authenticated: bool
    sealed: bool
    error: Optional[str] = None

    @property
    def healthy(self) -> bool:
        return self.authenticated and not self.sealed

    def __bool__(self) -> bool:
        return self.healthy


class VaultClient:
    """Reads Airtable credentials from a KV v2 secrets engine."""

    def __init__(
        self,
        vault_url: Optional[str] = None,
        vault_token: Optional[str] = None,
        verify_ssl: bool = True,
        mount_point: str = "secret"
    ):
        """
        Connect to Vault.

        Args:
            vault_url: Vault server URL (defaults to VAULT_ADDR env var)
            vault_token: Vault token (defaults to VAULT_TOKEN env var)
            verify_ssl: Whether to verify SSL certificates
            mount_point: KV v2 mount holding the Airtable secret

        Raises:
            ValueError: If the URL or token is missing
            VaultError: If Vault cannot be reached or rejects the token
        """
        self.vault_url = vault_url or os.getenv("VAULT_ADDR")
        self.vault_token = vault_token or os.getenv("VAULT_TOKEN")
        self.mount_point = mount_point

        if not self.vault_url:
            raise ValueError("Vault URL must be provided via parameter or VAULT_ADDR environment variable")
        if not self.vault_token:
            raise ValueError("Vault token must be provided via parameter or VAULT_TOKEN environment variable")

        self.client = self._connect(verify_ssl)

    def _connect(self, verify_ssl: bool) -> hvac.Client:
        try:
            client = hvac.Client(url=self.vault_url, token=self.vault_token, verify=verify_ssl)
            authenticated = client.is_authenticated()
        except Exception as e:
            logger.error(f"Failed to initialize Vault client: {e}")
            raise VaultError(f"Vault initialization failed: {e}") from e

        if not authenticated:
            raise VaultError(f"Failed to authenticate with Vault at {self.vault_url}")

        logger.info(f"Connected to Vault at {self.vault_url}")
        return client

    def get_secret(self, path: str) -> Dict[str, Any]:
        """
        Read the latest version of a KV v2 secret.

        Raises:
            InvalidPath: If nothing is stored at the path
            VaultError: If the read fails
        """
        logger.debug(f"Reading secret {self.mount_point}/{path}")
        try:
            response = self.client.secrets.kv.v2.read_secret_version(
                path=path,
                mount_point=self.mount_point
            )
        except InvalidPath:
            logger.error(f"Secret not found at path: {path}")
            raise
        except Exception as e:
            logger.error(f"Failed to read secret {path}: {e}")
            raise VaultError(f"Secret retrieval failed: {e}") from e

        data = (response or {}).get("data")
        if data is None:
            raise InvalidPath(f"No data found at path: {path}")
        return data.get("data") or {}

    def get_airtable_credentials(self, path: str = "airtable-credentials") -> Dict[str, str]:
        """
        Read the Airtable token and base id.

        The token may be stored under ``token``, ``api_token`` or
        ``api_key``; ``base_id`` is optional.

        Args:
            path: Secret path under the mount point

        Returns:
            Dictionary with ``token`` and, when stored, ``base_id``

        Raises:
            VaultError: If the secret holds no token
        """
        secret = self.get_secret(path)

        token = next((secret[key] for key in TOKEN_KEYS if secret.get(key)), None)
        if not token:
            raise VaultError(f"Secret {path} has no Airtable token")

        credentials = {"token": token}
        if secret.get("base_id"):
            credentials["base_id"] = secret["base_id"]

        logger.info(f"Retrieved Airtable credentials from {path}")
        return credentials

    def health_check(self) -> VaultHealth:
        """Check authentication and seal status; never raises."""
        try:
            if not self.client.is_authenticated():
                logger.warning("Vault authentication check failed")
                return VaultHealth(authenticated=False, sealed=True, error="Not authenticated")

            sealed = bool(self.client.sys.read_health_status(method="GET").get("sealed", True))
        except Exception as e:
            logger.error(f"Vault health check failed: {e}")
            return VaultHealth(authenticated=False, sealed=True, error=str(e))

        if sealed:
            logger.warning("Vault is sealed")
            return VaultHealth(authenticated=True, sealed=True, error="Vault is sealed")
        return VaultHealth(authenticated=True, sealed=False)

    def close(self):
        self.client = None
        logger.debug("Vault client closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
