"""
Desired topology configuration.

Builds the ordered set of clusters and the table list the reconciler
converges to. Credentials are resolved exactly once, here; every later
component receives fully resolved Cluster objects.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml
from hvac.exceptions import VaultError

from spock_mesh.exceptions import ConfigurationError
from spock_mesh.utils.identifiers import build_dsn, normalize_name, split_table_name

logger = logging.getLogger(__name__)

DEFAULT_HOST_TEMPLATE = "{name}-rw.{namespace}.svc.cluster.local"
DEFAULT_REPLICATION_SET = "default"


@dataclass(frozen=True)
class Cluster:
    """
    A PostgreSQL cluster participating in the mesh.

    Identity is the cluster name. Immutable for the duration of a run.
    """

    name: str
    host: str
    database: str
    password: str = field(repr=False)
    port: int = 5432
    user: str = "postgres"
    credential_ref: Optional[str] = None

    @property
    def node_name(self) -> str:
        """Spock node name for this cluster."""
        return normalize_name(self.name)

    @property
    def dsn(self) -> str:
        """Connection descriptor other clusters use to reach this one."""
        return build_dsn(self.host, self.port, self.database, self.user, self.password)


@dataclass(frozen=True)
class MeshSettings:
    """Run-wide settings that are not per cluster."""

    database: str
    tables: Tuple[str, ...] = ()
    replication_set: str = DEFAULT_REPLICATION_SET
    forward_origins: Tuple[str, ...] = ()
    readiness_interval: float = 5.0
    readiness_timeout: Optional[float] = None
    wait_for_sync: bool = True

    @property
    def reference_table(self) -> Optional[str]:
        """Table probed by the sync policy: the first desired table."""
        return self.tables[0] if self.tables else None


class ClusterRegistry:
    """
    The desired topology: clusters, tables and run settings.

    Attributes:
        clusters: Ordered, duplicate-free tuple of clusters
        settings: Run-wide settings (database, tables, replication set, ...)
    """

    def __init__(self, clusters: Tuple[Cluster, ...], settings: MeshSettings):
        self.clusters = clusters
        self.settings = settings

    @property
    def tables(self) -> Tuple[str, ...]:
        return self.settings.tables

    def get(self, name: str) -> Cluster:
        """Look up a cluster by name."""
        for cluster in self.clusters:
            if cluster.name == name:
                return cluster
        raise KeyError(name)

    def __iter__(self):
        return iter(self.clusters)

    def __len__(self) -> int:
        return len(self.clusters)

    @classmethod
    def load(cls, config: Mapping[str, Any], vault_client=None) -> "ClusterRegistry":
        """
        Build the registry from a configuration mapping.

        Args:
            config: Parsed configuration (see load_config)
            vault_client: VaultClient used for credential_ref entries

        Returns:
            ClusterRegistry

        Raises:
            ConfigurationError: If any cluster lacks a host or credential,
                or names/tables are invalid
        """
        database = config.get("database")
        if not database:
            raise ConfigurationError("Target database name is required")

        tables = tuple(config.get("tables") or ())
        for table in tables:
            split_table_name(table)
        if len(set(tables)) != len(tables):
            raise ConfigurationError(f"Duplicate tables in {list(tables)}")

        readiness = config.get("readiness") or {}
        settings = MeshSettings(
            database=database,
            tables=tables,
            replication_set=config.get("replication_set", DEFAULT_REPLICATION_SET),
            forward_origins=tuple(config.get("forward_origins") or ()),
            readiness_interval=float(readiness.get("interval", 5.0)),
            readiness_timeout=_optional_float(readiness.get("timeout")),
            wait_for_sync=_flag(config, "wait_for_sync", True),
        )

        entries = config.get("clusters") or []
        if not entries:
            raise ConfigurationError("At least one cluster is required")

        credentials = config.get("credentials") or {}
        clusters: List[Cluster] = []
        seen_nodes: Dict[str, str] = {}

        for entry in entries:
            if isinstance(entry, str):
                entry = {"name": entry}

            name = entry.get("name")
            if not name:
                raise ConfigurationError(f"Cluster entry without a name: {entry!r}")

            node_name = normalize_name(name)
            if node_name in seen_nodes:
                raise ConfigurationError(
                    f"Clusters {seen_nodes[node_name]!r} and {name!r} "
                    f"both map to node {node_name!r}"
                )
            seen_nodes[node_name] = name

            cluster = Cluster(
                name=name,
                host=_resolve_host(entry, config),
                database=database,
                password=_resolve_password(name, entry, credentials, vault_client),
                port=int(entry.get("port", config.get("port", 5432))),
                user=entry.get("user", config.get("user", "postgres")),
                credential_ref=entry.get("credential_ref"),
            )
            clusters.append(cluster)

        logger.info(
            f"Loaded {len(clusters)} clusters ({', '.join(c.name for c in clusters)}) "
            f"and {len(tables)} tables for database {database}"
        )
        return cls(tuple(clusters), settings)


def _optional_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


def _flag(config: Mapping[str, Any], key: str, default: bool) -> bool:
    value = config.get(key, default)
    if not isinstance(value, bool):
        raise ConfigurationError(f"{key} must be true or false, got {value!r}")
    return value


def _resolve_host(entry: Mapping[str, Any], config: Mapping[str, Any]) -> str:
    if entry.get("host"):
        return entry["host"]

    template = config.get("host_template", DEFAULT_HOST_TEMPLATE)
    namespace = config.get("namespace")

    if "{namespace}" in template and not namespace:
        raise ConfigurationError(
            f"Cluster {entry['name']} has no host and no namespace to derive one"
        )

    return template.format(name=entry["name"], namespace=namespace)


def _resolve_password(
    name: str,
    entry: Mapping[str, Any],
    credentials: Mapping[str, str],
    vault_client,
) -> str:
    if name in credentials:
        return credentials[name]

    credential_ref = entry.get("credential_ref")
    if not credential_ref:
        raise ConfigurationError(f"No credential configured for cluster {name}")

    if vault_client is None:
        raise ConfigurationError(
            f"Cluster {name} references {credential_ref} but no Vault client is configured"
        )

    try:
        return vault_client.get_cluster_password(credential_ref)
    except VaultError as e:
        raise ConfigurationError(f"Cannot resolve credential for cluster {name}: {e}") from e


def load_config(path: str) -> Dict[str, Any]:
    """
    Read a YAML configuration file.

    Raises:
        ConfigurationError: If the file is missing or not a mapping
    """
    try:
        with open(path, "r") as f:
            config = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read configuration {path}: {e}") from e

    if not isinstance(config, dict):
        raise ConfigurationError(f"Configuration {path} must be a mapping")

    logger.debug(f"Loaded configuration from {path}")
    return config


def config_from_environment(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """
    Build a configuration mapping from environment variables.

    CLUSTERS and TABLES are space separated lists; APPDB, NAMESPACE, PGUSER
    and PGPORT fill in connection settings. Credentials come from the YAML
    mapping named by CLUSTER_CREDENTIALS_FILE, or from Vault references
    VAULT_CREDENTIAL_PREFIX/<cluster> when VAULT_ADDR is set.
    """
    environ = os.environ if environ is None else environ

    clusters = environ.get("CLUSTERS", "").split()
    config: Dict[str, Any] = {
        "database": environ.get("APPDB"),
        "namespace": environ.get("NAMESPACE"),
        "user": environ.get("PGUSER", "postgres"),
        "port": int(environ.get("PGPORT", "5432")),
        "tables": environ.get("TABLES", "").split(),
        "clusters": [{"name": name} for name in clusters],
    }

    credentials_file = environ.get("CLUSTER_CREDENTIALS_FILE")
    if credentials_file:
        config["credentials"] = load_config(credentials_file)
    elif environ.get("VAULT_ADDR"):
        prefix = environ.get("VAULT_CREDENTIAL_PREFIX", "spock/clusters").rstrip("/")
        for entry in config["clusters"]:
            entry["credential_ref"] = f"{prefix}/{entry['name']}"

    return config
