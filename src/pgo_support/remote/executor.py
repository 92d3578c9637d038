"""Run commands inside containers through the pod exec subresource."""

from __future__ import annotations

import functools
import logging
import re
import shlex
import time
from dataclasses import dataclass
from typing import BinaryIO, Protocol

from kubernetes import client
from kubernetes.stream import stream

from pgo_support.errors import RemoteCommandError, RemoteCommandTimeout

logger = logging.getLogger(__name__)

SHELL = ["bash", "-ceu", "--"]

# Log directories, relative to the working directory of their container.
PG_LOG_FILES = "pgdata/pg[0-9][0-9]/log/*"
PG_CONFIG_FILES = "pgdata/pg[0-9][0-9]/*.conf"
PATRONI_LOG_FILES = "pgdata/patroni/log/*"
PGBACKREST_LOG_FILES = "pgdata/pgbackrest/log/*"
REPO_HOST_LOG_FILES = "pgbackrest/repo[0-9]/log/*"

PGBACKREST_STANZA = "db"
PGBACKREST_OUTPUTS = ("text", "json")
PATRONICTL_COMMANDS = ("list", "history", "show-config")

_NOT_FOUND_PATTERNS = ("No such file or directory", "cannot access")
_REPO_NUM = re.compile(r"^[0-9]*$")


def is_missing_path(stderr: str) -> bool:
    """Whether stderr only says that a file or directory is absent."""
    return any(pattern in stderr for pattern in _NOT_FOUND_PATTERNS)


@dataclass
class ExecResult:
    """Captured output of one remote command.

    stdout is empty when it was streamed into a caller supplied sink.
    """

    stdout: str = ""
    stderr: str = ""


class ExecFunc(Protocol):
    def __call__(
        self,
        command: list[str],
        stdin: bytes | None = None,
        stdout: BinaryIO | None = None,
        timeout: float | None = None,
    ) -> ExecResult: ...


class PodExecutor:
    """Executes commands in a container of a running pod.

    The RBAC required for this is "resources=pods/exec,verbs=create".
    """

    def __init__(self, core: client.CoreV1Api, poll_interval: float = 1.0) -> None:
        self._core = core
        self._poll_interval = poll_interval

    def bind(self, namespace: str, pod: str, container: str) -> ExecFunc:
        """Return an exec function for one container."""
        return functools.partial(self.run, namespace, pod, container)

    def run(
        self,
        namespace: str,
        pod: str,
        container: str,
        command: list[str],
        stdin: bytes | None = None,
        stdout: BinaryIO | None = None,
        timeout: float | None = None,
    ) -> ExecResult:
        """
        Run command and wait for it to exit. Bytes written to stdout go to the
        stdout sink when one is given and are captured otherwise. A non-zero exit
        status raises RemoteCommandError; output on stderr alone does not.
        """
        logger.debug("exec %s/%s[%s]: %s", namespace, pod, container, " ".join(command))
        resp = stream(
            self._core.connect_get_namespaced_pod_exec,
            pod,
            namespace,
            container=container,
            command=command,
            stderr=True,
            stdin=stdin is not None,
            stdout=True,
            tty=False,
            binary=True,
            _preload_content=False,
        )
        out = bytearray()
        err = bytearray()
        deadline = time.monotonic() + timeout if timeout else None

        def drain() -> None:
            if resp.peek_stdout():
                chunk = _as_bytes(resp.read_stdout())
                if stdout is not None:
                    stdout.write(chunk)
                else:
                    out.extend(chunk)
            if resp.peek_stderr():
                err.extend(_as_bytes(resp.read_stderr()))

        try:
            if stdin is not None:
                resp.write_stdin(stdin)
            while resp.is_open():
                resp.update(timeout=self._poll_interval)
                drain()
                if deadline is not None and time.monotonic() > deadline:
                    raise RemoteCommandTimeout(command, timeout)
            drain()
            returncode = _returncode(resp)
        finally:
            resp.close()

        stderr = err.decode("utf-8", errors="replace")
        if returncode != 0:
            raise RemoteCommandError(command, returncode, stderr)
        return ExecResult(stdout=out.decode("utf-8", errors="replace"), stderr=stderr)


def _as_bytes(chunk: bytes | str) -> bytes:
    return chunk.encode("utf-8") if isinstance(chunk, str) else chunk


def _returncode(resp) -> int | None:
    """Exit status reported on the error channel, or None when it never arrived."""
    try:
        return resp.returncode
    except (TypeError, KeyError, IndexError, ValueError):
        return None


class Executor:
    """Fixed diagnostic commands run through a single bash shell.

    Every command goes through ``bash -ceu --`` so that pipelines such as
    ``ls | head`` run inside the container. Arguments are either validated
    here or shell quoted; nothing taken from remote output is interpolated
    unquoted.
    """

    def __init__(self, exec_fn: ExecFunc) -> None:
        self._exec = exec_fn

    def _bash(self, script: str, stdout: BinaryIO | None = None) -> ExecResult:
        return self._exec([*SHELL, script], stdout=stdout)

    def pgbackrest_info(self, output: str = "text", repo_num: str = "") -> ExecResult:
        """pgbackrest info with the output format and optional repository set."""
        if output not in PGBACKREST_OUTPUTS:
            raise ValueError(f"output must be one of {', '.join(PGBACKREST_OUTPUTS)}")
        if not _REPO_NUM.match(repo_num):
            raise ValueError(f"invalid repository number {repo_num!r}")
        script = f"pgbackrest info --output={output}"
        if repo_num:
            script += f" --repo={repo_num}"
        return self._bash(script)

    def pgbackrest_check(self) -> ExecResult:
        return self._bash(f"pgbackrest check --stanza={PGBACKREST_STANZA}")

    def list_files(self, pattern: str, count: int | None = None) -> ExecResult:
        """Newest first listing of pattern, optionally limited to count entries."""
        script = f"ls -1dt {pattern}"
        if count is not None:
            if int(count) < 1:
                raise ValueError("count must be at least 1")
            script += f" | head -{int(count)}"
        return self._bash(script)

    def list_pg_logs(self, count: int) -> ExecResult:
        return self.list_files(PG_LOG_FILES, count)

    def list_pg_configs(self) -> ExecResult:
        return self.list_files(PG_CONFIG_FILES)

    def list_patroni_logs(self, count: int) -> ExecResult:
        return self.list_files(PATRONI_LOG_FILES, count)

    def list_pgbackrest_logs(self, count: int) -> ExecResult:
        return self.list_files(PGBACKREST_LOG_FILES, count)

    def list_repo_host_logs(self, count: int) -> ExecResult:
        return self.list_files(REPO_HOST_LOG_FILES, count)

    def cat_file(self, path: str) -> ExecResult:
        return self._bash(f"cat -- {shlex.quote(path)}")

    def file_size(self, path: str) -> int:
        """Size in bytes of a remote file."""
        command = f"stat -c %s -- {shlex.quote(path)}"
        result = self._bash(command)
        try:
            return int(result.stdout.strip())
        except ValueError as e:
            raise RemoteCommandError([*SHELL, command], 0, f"unexpected stat output {result.stdout!r}") from e

    def copy_file(self, path: str, sink: BinaryIO) -> ExecResult:
        """Stream the bytes of a remote file into sink."""
        return self._bash(f"cat -- {shlex.quote(path)}", stdout=sink)

    def processes(self) -> ExecResult:
        return self._bash("ps aux --width 500")

    def system_time(self) -> ExecResult:
        return self._bash("date")

    def patronictl(self, subcommand: str) -> ExecResult:
        if subcommand not in PATRONICTL_COMMANDS:
            raise ValueError(f"unsupported patronictl command {subcommand!r}")
        return self._bash(f"patronictl {subcommand}")


def split_lines(output: str) -> list[str]:
    """Non-empty lines of command output."""
    return [line.strip() for line in output.splitlines() if line.strip()]
