"""CLI entrypoint for the support export."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler

from pgo_support import __version__
from pgo_support.config import get_settings
from pgo_support.errors import SupportExportError
from pgo_support.export import ExportOptions, run_export
from pgo_support.kube import load_clients, resolve_namespace


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="pgo-support",
        description="Collect a support export for a PostgresCluster managed by PGO.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    export = subparsers.add_parser(
        "export",
        help="Gather manifests, logs, and command output into a .tar.gz archive",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    export.add_argument("cluster_name", metavar="CLUSTER_NAME", help="Name of the PostgresCluster")
    export.add_argument(
        "--output",
        "-o",
        type=Path,
        required=True,
        help="Directory the archive is written to",
    )
    export.add_argument(
        "--pg-logs-count",
        type=int,
        default=None,
        help="Number of log files to save per log directory (default: from env or 2)",
    )
    export.add_argument(
        "--namespace",
        "-n",
        default=None,
        help="Namespace of the PostgresCluster (default: from env, kube context, or 'default')",
    )
    export.add_argument(
        "--monitoring-namespace",
        default=None,
        help="Namespace of the monitoring stack (default: the cluster namespace)",
    )
    export.add_argument(
        "--operator-namespace",
        default=None,
        help="Namespace of the operator (default: the cluster namespace)",
    )
    export.add_argument(
        "--kubeconfig",
        type=Path,
        default=None,
        help="Path to kubeconfig (default: KUBECONFIG env or ~/.kube/config)",
    )
    export.add_argument(
        "--context",
        default=None,
        help="Kubernetes context to use",
    )
    export.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show debug output on the console",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Entrypoint for pgo-support CLI."""
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True)],
    )
    logger = logging.getLogger("pgo_support")
    if not args.verbose:
        logger.setLevel(logging.WARNING)

    console = Console()
    try:
        settings = get_settings()
        kubeconfig = args.kubeconfig or settings.kubeconfig
        clients = load_clients(
            kubeconfig=str(kubeconfig) if kubeconfig else None,
            context=args.context or settings.context,
        )
        options = ExportOptions(
            cluster_name=args.cluster_name,
            namespace=resolve_namespace(args.namespace or settings.namespace, clients),
            output_dir=args.output,
            pg_logs_count=args.pg_logs_count if args.pg_logs_count is not None else settings.pg_logs_count,
            monitoring_namespace=args.monitoring_namespace or settings.monitoring_namespace,
            operator_namespace=args.operator_namespace or settings.operator_namespace,
            archive_prefix=settings.archive_prefix,
            command_timeout=settings.command_timeout,
            verbose=args.verbose,
        )
        result = run_export(options, clients, console=console)
        console.print(result.report, markup=False, highlight=False)
        return 0
    except ValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except SupportExportError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        logging.exception("Export failed")
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
