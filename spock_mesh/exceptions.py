"""
Exceptions for the Spock mesh reconciler.
"""

from typing import Optional


class MeshError(Exception):
    """Base class for all reconciler errors."""


class ConfigurationError(MeshError):
    """Raised when the desired topology cannot be built from configuration."""


class ReadinessTimeout(MeshError):
    """Raised when a cluster does not accept connections within the timeout."""

    def __init__(self, cluster: str, timeout: float):
        super().__init__(f"Cluster {cluster} not ready after {timeout}s")
        self.cluster = cluster
        self.timeout = timeout


class SpockError(MeshError):
    """
    A remote call against a cluster failed.

    Attributes:
        cluster: Cluster the call was made against
        operation: Remote operation name (e.g. "sub_create")
    """

    def __init__(self, cluster: str, operation: str, message: str, cause: Optional[Exception] = None):
        super().__init__(f"{operation} on {cluster} failed: {message}")
        self.cluster = cluster
        self.operation = operation
        self.cause = cause


class SyncWaitUnavailable(SpockError):
    """The remote engine does not provide sub_wait_for_sync."""
