"""
Identifier handling for Spock objects.

Every name that ends up inside a remote call (node names, subscription
names, table names) goes through this module. Values are still passed as
query parameters; these helpers only guarantee that the names themselves
are well formed and deterministic.
"""

import re
from typing import Tuple

from psycopg2 import sql
from psycopg2.extensions import make_dsn

from spock_mesh.exceptions import ConfigurationError

# NAMEDATALEN - 1
MAX_IDENTIFIER_LENGTH = 63

_SEPARATORS = re.compile(r"[^0-9a-z]+")
_PLAIN_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*$")


def normalize_name(name: str) -> str:
    """
    Normalize a cluster name into a Spock node name.

    Runs of non-alphanumeric characters collapse into a single underscore,
    e.g. "pg-east-1" -> "pg_east_1".

    Raises:
        ConfigurationError: If nothing usable is left or the result is too long
    """
    normalized = _SEPARATORS.sub("_", name.strip().lower()).strip("_")

    if not normalized:
        raise ConfigurationError(f"Cluster name {name!r} has no usable characters")

    if len(normalized) > MAX_IDENTIFIER_LENGTH:
        raise ConfigurationError(
            f"Node name {normalized!r} exceeds {MAX_IDENTIFIER_LENGTH} characters"
        )

    return normalized


def subscription_name(source: str, target: str) -> str:
    """Deterministic subscription name for the edge source -> target."""
    name = f"sub_{normalize_name(source)}_to_{normalize_name(target)}"

    if len(name) > MAX_IDENTIFIER_LENGTH:
        raise ConfigurationError(
            f"Subscription name {name!r} exceeds {MAX_IDENTIFIER_LENGTH} characters"
        )

    return name


def split_table_name(table: str) -> Tuple[str, ...]:
    """
    Validate a table reference and split it into its parts.

    Accepts "table" or "schema.table".

    Raises:
        ConfigurationError: If the reference is malformed
    """
    parts = tuple(table.split("."))

    if len(parts) > 2 or not all(_PLAIN_IDENTIFIER.match(part) for part in parts):
        raise ConfigurationError(f"Invalid table name: {table!r}")

    if any(len(part) > MAX_IDENTIFIER_LENGTH for part in parts):
        raise ConfigurationError(f"Table name too long: {table!r}")

    return parts


def table_identifier(table: str) -> sql.Identifier:
    """Composable, quoted identifier for a table reference."""
    return sql.Identifier(*split_table_name(table))


def build_dsn(host: str, port: int, database: str, user: str, password: str) -> str:
    """Build a libpq connection string with proper quoting of every value."""
    return make_dsn(host=host, port=port, dbname=database, user=user, password=password)


def regclass_literal(table: str) -> str:
    """
    Quoted text form of a table reference, suitable as a ::regclass parameter.

    Parts are validated first, so wrapping them in double quotes is safe.
    """
    return ".".join(f'"{part}"' for part in split_table_name(table))
