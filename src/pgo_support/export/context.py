"""Per-run state shared by the collection steps."""

from __future__ import annotations

import io
import logging
import re
from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from rich.console import Console
from rich.logging import RichHandler

from pgo_support.archive import ArchiveWriter
from pgo_support.kube import KubeClients
from pgo_support.remote import Executor, PodExecutor, RemoteFileStreamer, StagingArea

RUN_LOGGER = "pgo_support.run"
ARCHIVE_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"

_DNS1123_SUBDOMAIN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")
_DNS1123_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")


class ExportOptions(BaseModel):
    """What to collect and where to put it."""

    cluster_name: str = Field(..., max_length=253)
    namespace: str
    output_dir: Path
    pg_logs_count: int = Field(default=2, ge=1)
    monitoring_namespace: str | None = None
    operator_namespace: str | None = None
    archive_prefix: str = Field(default="crunchy", pattern=r"^[A-Za-z0-9_-]+$")
    command_timeout: float = Field(default=30.0, gt=0)
    verbose: bool = False

    @field_validator("cluster_name")
    @classmethod
    def _dns_name(cls, value: str) -> str:
        if not _DNS1123_SUBDOMAIN.match(value):
            raise ValueError(f"{value!r} is not a valid Kubernetes name")
        return value

    @field_validator("namespace", "monitoring_namespace", "operator_namespace")
    @classmethod
    def _namespace_name(cls, value: str | None) -> str | None:
        if value is not None and (len(value) > 63 or not _DNS1123_LABEL.match(value)):
            raise ValueError(f"{value!r} is not a valid namespace name")
        return value

    @field_validator("output_dir")
    @classmethod
    def _existing_dir(cls, value: Path) -> Path:
        if not value.is_dir():
            raise ValueError(f"output directory {value} does not exist")
        return value


class ArchiveOnlyFilter(logging.Filter):
    """Keep records marked archive_only out of the console."""

    def filter(self, record: logging.LogRecord) -> bool:
        return not getattr(record, "archive_only", False)


class RunContext:
    """
    Everything one export run shares: options, API clients, the archive, the
    staging area, and the run log. The run log goes to the console and to an
    in-memory buffer that is archived as ``<cluster>/logs/cli`` at the end.
    """

    def __init__(
        self,
        options: ExportOptions,
        clients: KubeClients,
        writer: ArchiveWriter | None = None,
        staging: StagingArea | None = None,
        console: Console | None = None,
        cluster: dict | None = None,
    ) -> None:
        self.options = options
        self.clients = clients
        self.writer = writer
        self.staging = staging
        self.cluster = cluster
        self.step_errors: list[str] = []

        self.log_buffer = io.StringIO()
        self.logger = logging.getLogger(RUN_LOGGER)
        self.logger.setLevel(logging.DEBUG)
        self.logger.propagate = False

        buffer_handler = logging.StreamHandler(self.log_buffer)
        buffer_handler.setLevel(logging.DEBUG)
        buffer_handler.setFormatter(logging.Formatter(ARCHIVE_LOG_FORMAT))
        console_handler = RichHandler(
            console=console or Console(),
            show_time=False,
            show_level=False,
            show_path=False,
            markup=False,
        )
        console_handler.setLevel(logging.DEBUG if options.verbose else logging.INFO)
        console_handler.addFilter(ArchiveOnlyFilter())
        self._handlers: list[logging.Handler] = [buffer_handler, console_handler]
        for handler in self._handlers:
            self.logger.addHandler(handler)

    @property
    def cluster_name(self) -> str:
        return self.options.cluster_name

    @property
    def namespace(self) -> str:
        return self.options.namespace

    def write(self, path: str, content: bytes | str) -> None:
        if self.writer is None:
            raise RuntimeError("archive is not open")
        self.writer.add_bytes(path, content)

    def info(self, msg: str, *args: object) -> None:
        self.logger.info(msg, *args)

    def debug(self, msg: str, *args: object) -> None:
        self.logger.debug(msg, *args)

    def step_error(self, label: str, err: str) -> None:
        """Record a failed step in the archived log only."""
        self.step_errors.append(label)
        self.logger.error("Error gathering %s: %s", label, err, extra={"archive_only": True})

    def executor(self, pod: str, container: str, namespace: str | None = None) -> Executor:
        return Executor(PodExecutor(self.clients.core).bind(namespace or self.namespace, pod, container))

    def streamer(self, executor: Executor) -> RemoteFileStreamer:
        if self.writer is None or self.staging is None:
            raise RuntimeError("archive is not open")
        return RemoteFileStreamer(executor, self.writer, self.staging, run_logger=self.logger)

    def cli_log(self) -> bytes:
        for handler in self._handlers:
            handler.flush()
        return self.log_buffer.getvalue().encode("utf-8")

    def close(self) -> None:
        for handler in self._handlers:
            self.logger.removeHandler(handler)
            handler.close()
        self._handlers = []
