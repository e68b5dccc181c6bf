"""
Vault Client Utility for the mesh reconciler

Resolves per-cluster credential references against HashiCorp Vault.
A credential reference is a KV v2 secret path whose data holds at least a
"password" key (and optionally "username").
"""

import os
from typing import Dict, Any, Optional
from dataclasses import dataclass
import hvac
from hvac.exceptions import VaultError, InvalidPath
import logging

logger = logging.getLogger(__name__)


@dataclass
class HealthStatus:
    """
    Structured health status for Vault client.

    Attributes:
        healthy: Overall health status (True if healthy)
        authenticated: Whether client is authenticated
        sealed: Whether Vault is sealed
        error: Error message if health check failed
    """

    healthy: bool
    authenticated: bool
    sealed: bool
    error: Optional[str] = None

    def __bool__(self) -> bool:
        return self.healthy


class VaultClient:
    """
    Client for reading cluster credentials from HashiCorp Vault.
    """

    def __init__(
        self,
        vault_url: Optional[str] = None,
        vault_token: Optional[str] = None,
        verify_ssl: bool = True,
        mount_point: str = "secret"
    ):
        """
        Initialize Vault client.

        Args:
            vault_url: Vault server URL (defaults to VAULT_ADDR env var)
            vault_token: Vault authentication token (defaults to VAULT_TOKEN env var)
            verify_ssl: Whether to verify SSL certificates
            mount_point: KV secrets engine mount point

        Raises:
            ValueError: If required parameters are missing
            VaultError: If connection to Vault fails
        """
        self.vault_url = vault_url or os.getenv("VAULT_ADDR")
        self.vault_token = vault_token or os.getenv("VAULT_TOKEN")
        self.mount_point = mount_point

        if not self.vault_url:
            raise ValueError("Vault URL must be provided via parameter or VAULT_ADDR environment variable")

        if not self.vault_token:
            raise ValueError("Vault token must be provided via parameter or VAULT_TOKEN environment variable")

        try:
            self.client = hvac.Client(
                url=self.vault_url,
                token=self.vault_token,
                verify=verify_ssl
            )

            if not self.client.is_authenticated():
                raise VaultError("Failed to authenticate with Vault")

            logger.info(f"Connected to Vault at {self.vault_url}")

        except Exception as e:
            logger.error(f"Failed to initialize Vault client: {e}")
            raise VaultError(f"Vault initialization failed: {e}")

    def get_secret(self, path: str) -> Dict[str, Any]:
        """
        Retrieve a secret from Vault.

        Args:
            path: Secret path relative to the mount point

        Returns:
            Dictionary containing secret data

        Raises:
            InvalidPath: If secret path does not exist
            VaultError: If retrieval fails
        """
        try:
            logger.debug(f"Reading secret {self.mount_point}/data/{path}")
            response = self.client.secrets.kv.v2.read_secret_version(
                path=path,
                mount_point=self.mount_point
            )

            if not response or "data" not in response:
                raise InvalidPath(f"No data found at path: {path}")

            return response["data"].get("data", {})

        except InvalidPath:
            logger.error(f"Secret not found at path: {path}")
            raise
        except Exception as e:
            logger.error(f"Failed to retrieve secret from {path}: {e}")
            raise VaultError(f"Secret retrieval failed: {e}")

    def get_cluster_password(self, credential_ref: str) -> str:
        """
        Resolve a cluster credential reference to its password.

        Args:
            credential_ref: Secret path holding the cluster credentials

        Returns:
            The password stored under the "password" key

        Raises:
            InvalidPath: If the secret is missing or has no password
            VaultError: If retrieval fails
        """
        secret = self.get_secret(credential_ref)
        password = secret.get("password")

        if not password:
            raise InvalidPath(f"Secret {credential_ref} has no password")

        logger.info(f"Resolved credentials for {credential_ref}")
        return password

    def health_check(self) -> HealthStatus:
        """
        Check if Vault is accessible, authenticated and unsealed.

        Returns:
            HealthStatus, truthy when healthy
        """
        try:
            if not self.client.is_authenticated():
                logger.warning("Vault authentication check failed")
                return HealthStatus(
                    healthy=False,
                    authenticated=False,
                    sealed=True,
                    error="Not authenticated"
                )

            health = self.client.sys.read_health_status(method="GET")
            is_sealed = health.get("sealed", True)

            if is_sealed:
                logger.warning("Vault is sealed")

            return HealthStatus(
                healthy=not is_sealed,
                authenticated=True,
                sealed=is_sealed,
                error="Vault is sealed" if is_sealed else None
            )

        except Exception as e:
            logger.error(f"Vault health check failed: {e}")
            return HealthStatus(
                healthy=False,
                authenticated=False,
                sealed=True,
                error=str(e)
            )

    def close(self):
        """Drop the underlying hvac client."""
        self.client = None
        logger.debug("Vault client closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
