"""Orchestrator: check cluster → open archive → run steps → finalize → report."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable

import urllib3
from kubernetes.client.rest import ApiException
from rich.console import Console

from pgo_support import naming
from pgo_support.archive import ArchiveWriter, archive_file_name
from pgo_support.errors import SetupError, describe, is_forbidden, is_not_found
from pgo_support.export import steps
from pgo_support.export.context import ExportOptions, RunContext
from pgo_support.export.report import (
    REPORT_STAGING_KEPT,
    REPORT_STEP_ERRORS,
    is_large,
    size_mib,
    size_report,
)
from pgo_support.kube import KubeClients
from pgo_support.remote import StagingArea

logger = logging.getLogger(__name__)

CLI_LOG_ENTRY = "logs/cli"


class PipelineState(str, enum.Enum):
    INIT = "init"
    RUNNING = "running"
    FINALIZING = "finalizing"
    DONE = "done"


@dataclass
class CollectionStep:
    """One unit of collection. label reads as "Collecting <label>..."."""

    label: str
    func: Callable[[RunContext], None]


def default_steps() -> list[CollectionStep]:
    """The collection steps, in the order they run."""
    return [
        CollectionStep("CLI version", steps.gather_cli_version),
        CollectionStep("PostgresCluster names", steps.gather_cluster_names),
        CollectionStep("current kube context", steps.gather_kube_context),
        CollectionStep("Kubernetes server version", steps.gather_server_version),
        CollectionStep("nodes", steps.gather_nodes),
        CollectionStep("current namespace", steps.gather_current_namespace),
        CollectionStep("PostgresCluster", steps.gather_cluster_manifest),
        CollectionStep("namespaced resources", steps.gather_namespaced_resources),
        CollectionStep("other namespaced resources", steps.gather_other_namespaced_resources),
        CollectionStep("events", steps.gather_events),
        CollectionStep("Postgres logs", steps.gather_postgres_logs),
        CollectionStep("pgBackRest logs", steps.gather_pgbackrest_logs),
        CollectionStep("Patroni logs", steps.gather_patroni_logs),
        CollectionStep("pgBackRest repo host logs", steps.gather_repo_host_logs),
        CollectionStep("pod logs", steps.gather_pod_logs),
        CollectionStep("monitoring logs", steps.gather_monitoring_logs),
        CollectionStep("operator resources and logs", steps.gather_operator),
        CollectionStep("Patroni info", steps.gather_patroni_info),
        CollectionStep("pgBackRest info", steps.gather_pgbackrest_info),
        CollectionStep("process info", steps.gather_process_info),
        CollectionStep("system time", steps.gather_system_time),
        CollectionStep("kubectl plugins", steps.gather_plugin_list),
        CollectionStep("PGUpgrade", steps.gather_pgupgrade),
    ]


@dataclass
class ExportResult:
    """Outcome of a finished export."""

    archive_path: Path
    size_bytes: int
    report: str
    step_errors: list[str] = field(default_factory=list)
    staging_kept: list[str] = field(default_factory=list)

    @property
    def size_mib(self) -> float:
        return size_mib(self.size_bytes)

    @property
    def is_large(self) -> bool:
        return is_large(self.size_bytes)


class ExportPipeline:
    """
    Runs every collection step against one PostgresCluster and packages the
    results. A failing step is logged to the archived run log and the next
    step runs; only a failed cluster lookup or an unwritable archive stops the
    export, and both happen before any step.
    """

    def __init__(
        self,
        options: ExportOptions,
        clients: KubeClients,
        steps: list[CollectionStep] | None = None,
        console: Console | None = None,
        now: datetime | None = None,
    ) -> None:
        self.options = options
        self.clients = clients
        self.steps = steps if steps is not None else default_steps()
        self.console = console
        self.now = now
        self.state = PipelineState.INIT

    @property
    def archive_path(self) -> Path:
        return self.options.output_dir / archive_file_name(self.options.archive_prefix, self.now)

    def run(self) -> ExportResult:
        run = RunContext(self.options, self.clients, console=self.console)
        try:
            run.cluster = self._check_cluster(run)
            path = self._open_archive(run)
            self.state = PipelineState.RUNNING
            for step in self.steps:
                self._run_step(run, step)
            self.state = PipelineState.FINALIZING
            result = self._finalize(run, path)
            self.state = PipelineState.DONE
            return result
        finally:
            if run.writer is not None and not run.writer.closed:
                run.writer.close()
            run.close()

    def _check_cluster(self, run: RunContext) -> dict | None:
        """Fetch the PostgresCluster. Forbidden or missing is logged and the export goes on."""
        try:
            return self.clients.custom.get_namespaced_custom_object(
                naming.PGO_GROUP,
                naming.PGO_VERSION,
                run.namespace,
                naming.POSTGRESCLUSTERS,
                run.cluster_name,
            )
        except ApiException as e:
            if is_forbidden(e) or is_not_found(e):
                run.info("%s", describe(e))
                return None
            raise SetupError(f"could not get PostgresCluster {run.cluster_name}: {describe(e)}") from e
        except urllib3.exceptions.HTTPError as e:
            raise SetupError(f"could not reach the Kubernetes API: {e}") from e

    def _open_archive(self, run: RunContext) -> Path:
        path = self.archive_path
        try:
            run.writer = ArchiveWriter.open(path, run_logger=run.logger)
        except OSError as e:
            raise SetupError(f"could not create {path}: {e}") from e
        stem = path.name.removesuffix(".tar.gz")
        run.staging = StagingArea(self.options.output_dir / f"{stem}-staging")
        run.debug("Writing archive %s", path)
        return path

    def _run_step(self, run: RunContext, step: CollectionStep) -> None:
        run.info("Collecting %s...", step.label)
        try:
            step.func(run)
        except Exception as e:
            if is_forbidden(e) or is_not_found(e):
                run.info("%s", describe(e))
                return
            run.step_error(step.label, describe(e))
            logger.debug("Step %s failed", step.label, exc_info=True)

    def _finalize(self, run: RunContext, path: Path) -> ExportResult:
        run.write(f"{run.cluster_name}/{CLI_LOG_ENTRY}", run.cli_log())
        run.writer.close()
        run.staging.cleanup()

        size = path.stat().st_size
        report = size_report(size, str(path))
        if run.step_errors:
            report += REPORT_STEP_ERRORS.format(
                count=len(run.step_errors), log_path=f"{run.cluster_name}/{CLI_LOG_ENTRY}"
            )
        if run.staging.kept:
            report += REPORT_STAGING_KEPT.format(staging=run.staging.root)
        return ExportResult(
            archive_path=path,
            size_bytes=size,
            report=report,
            step_errors=list(run.step_errors),
            staging_kept=run.staging.kept,
        )


def run_export(
    options: ExportOptions,
    clients: KubeClients,
    steps: list[CollectionStep] | None = None,
    console: Console | None = None,
) -> ExportResult:
    """Run a full export and return where the archive went and how big it is."""
    return ExportPipeline(options, clients, steps=steps, console=console).run()
