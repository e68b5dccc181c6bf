"""
Spock full-mesh reconciliation tool

Registers every cluster as a Spock node, ensures the replication set and
its tables, and converges the subscriptions to a full mesh. Safe to re-run
at any time: every step is idempotent or skipped and retried next pass.

Usage:
    spock-mesh --config mesh.yaml reconcile
    spock-mesh --config mesh.yaml reconcile --interval 300
    spock-mesh reconcile                       # configuration from CLUSTERS/TABLES/APPDB/...
    spock-mesh --config mesh.yaml status
    spock-mesh --config mesh.yaml status pg-east pg-west

Exit codes:
    0  pass completed (skipped edges are logged as warnings)
    1  configuration or readiness error, or an unknown cluster given to status
    2  pass completed with skipped edges and --strict was given
"""

import argparse
import json
import logging
import os
import sys
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from hvac.exceptions import VaultError

from spock_mesh.config import ClusterRegistry, config_from_environment, load_config
from spock_mesh.exceptions import ConfigurationError, ReadinessTimeout
from spock_mesh.monitoring import ReconciliationMetrics
from spock_mesh.reconciliation import MeshReconciler
from spock_mesh.utils.correlation import setup_correlation_logging
from spock_mesh.utils.vault_client import VaultClient

logger = logging.getLogger("spock_mesh.cli")


class StructuredJSONFormatter(logging.Formatter):
    """JSON formatter carrying the correlation ID of the current pass."""

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'correlation_id': getattr(record, 'correlation_id', 'N/A'),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def configure_logging(verbose: bool = False, json_logging: Optional[bool] = None) -> None:
    """
    Configure the spock_mesh logger hierarchy.

    JSON output is used when json_logging is true, or when it is None and
    the JSON_LOGGING environment variable is "true".
    """
    if json_logging is None:
        json_logging = os.getenv('JSON_LOGGING', 'false').lower() == 'true'

    handler = logging.StreamHandler(sys.stderr)
    setup_correlation_logging(handler)

    if json_logging:
        handler.setFormatter(StructuredJSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(correlation_id)s] %(name)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))

    root = logging.getLogger("spock_mesh")
    root.handlers = [handler]
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.propagate = False


def build_registry(args) -> ClusterRegistry:
    """Load the desired topology from --config or the environment."""
    config: Dict[str, Any] = load_config(args.config) if args.config else config_from_environment()

    if getattr(args, "readiness_timeout", None) is not None:
        config.setdefault("readiness", {})["timeout"] = args.readiness_timeout

    needs_vault = any(
        isinstance(entry, dict) and entry.get("credential_ref")
        for entry in config.get("clusters") or []
    )
    if not needs_vault:
        return ClusterRegistry.load(config)

    try:
        vault = VaultClient(mount_point=config.get("vault_mount_point", "secret"))
    except (ValueError, VaultError) as e:
        raise ConfigurationError(f"Credential references need Vault: {e}") from e

    with vault as vault_client:
        status = vault_client.health_check()
        if not status:
            raise ConfigurationError(f"Vault is not usable for credential references: {status.error}")
        return ClusterRegistry.load(config, vault_client=vault_client)


def run_reconcile(args, reconciler: MeshReconciler) -> int:
    metrics = ReconciliationMetrics()
    if args.metrics_port:
        metrics.start_server(args.metrics_port)

    while True:
        try:
            report = reconciler.run()
        except ReadinessTimeout as e:
            metrics.record_failure()
            logger.error(f"Error: {e}")
            return 1

        metrics.record_report(report)
        print(json.dumps(report.to_dict(), indent=2))

        if args.pushgateway:
            try:
                metrics.push(args.pushgateway)
            except Exception as e:
                logger.warning(f"Metrics push failed: {e}")

        if not args.interval:
            if args.strict and report.skipped_edges:
                return 2
            return 0

        logger.info(f"Next pass in {args.interval}s")
        time.sleep(args.interval)


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="spock-mesh",
        description="Full-mesh Spock replication reconciler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument("--config", "-c", help="YAML configuration file (default: environment)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    reconcile_parser = subparsers.add_parser("reconcile", help="Run a reconciliation pass")
    reconcile_parser.add_argument("--interval", type=float, help="Repeat every N seconds")
    reconcile_parser.add_argument("--strict", action="store_true", help="Exit 2 if edges were skipped")
    reconcile_parser.add_argument("--readiness-timeout", type=float, help="Give up waiting for a primary after N seconds")
    reconcile_parser.add_argument("--pushgateway", help="Prometheus Pushgateway URL")
    reconcile_parser.add_argument("--metrics-port", type=int, help="Expose metrics on this port")

    status_parser = subparsers.add_parser("status", help="Show nodes and subscriptions per cluster")
    status_parser.add_argument("clusters", nargs="*", help="Only show these clusters")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    configure_logging(verbose=args.verbose)

    try:
        reconciler = MeshReconciler(build_registry(args))
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    if args.command == "reconcile":
        return run_reconcile(args, reconciler)

    try:
        view = reconciler.status(args.clusters)
    except KeyError as e:
        logger.error(f"Unknown cluster: {e.args[0]}")
        return 1

    print(json.dumps(view, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
