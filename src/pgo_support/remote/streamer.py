"""Stream large files out of containers into the archive via local staging."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from kubernetes.client.rest import ApiException

from pgo_support.archive import ArchiveWriter
from pgo_support.errors import (
    ArchiveError,
    IntegrityMismatchError,
    RemoteCommandError,
    describe,
    is_forbidden,
)
from pgo_support.remote.executor import Executor
from pgo_support.remote.models import RemoteFileRef

logger = logging.getLogger(__name__)


class StagingArea:
    """Local directories that hold remote files until they are archived.

    A directory per pod is created on first use. It is removed on release
    unless something marked the pod to be kept for manual recovery.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self._keep: set[str] = set()

    def pod_dir(self, pod: str) -> Path:
        path = self.root / pod
        path.mkdir(parents=True, exist_ok=True)
        return path

    def keep(self, pod: str) -> None:
        self._keep.add(pod)

    def is_kept(self, pod: str) -> bool:
        return pod in self._keep

    @property
    def kept(self) -> list[str]:
        return sorted(self._keep)

    def release(self, pod: str) -> bool:
        """Remove the pod directory unless it is kept. Returns whether it was removed."""
        if pod in self._keep:
            return False
        shutil.rmtree(self.root / pod, ignore_errors=True)
        return True

    def cleanup(self) -> None:
        """Remove the staging root once nothing in it is kept."""
        if self._keep or not self.root.exists():
            return
        shutil.rmtree(self.root, ignore_errors=True)


class RemoteFileStreamer:
    """Copies files from one container into the archive.

    Each file is sized with stat, streamed with cat into the staging area
    without holding it in memory, checked against the expected size, and then
    added to the archive under ``<prefix>/pods/<pod>/<path>``.
    """

    def __init__(
        self,
        executor: Executor,
        writer: ArchiveWriter,
        staging: StagingArea,
        run_logger: logging.Logger | None = None,
    ) -> None:
        self.executor = executor
        self.writer = writer
        self.staging = staging
        self.log = run_logger or logger

    def stream(self, ref: RemoteFileRef, staging_dir: Path, archive_prefix: str) -> RemoteFileRef:
        """Copy one file. Returns ref with its size filled in."""
        if ref.size is None:
            ref = ref.model_copy(update={"size": self.executor.file_size(ref.remote_path)})

        local_path = Path(staging_dir) / ref.relative_path
        local_path.parent.mkdir(parents=True, exist_ok=True)
        with open(local_path, "wb") as fh:
            result = self.executor.copy_file(ref.remote_path, fh)
        if result.stderr:
            self.log.debug("stderr while copying %s from %s: %s", ref.remote_path, ref.pod, result.stderr.strip())

        local_size = local_path.stat().st_size
        if local_size != ref.size:
            raise IntegrityMismatchError(ref.remote_path, ref.size, local_size)

        with open(local_path, "rb") as fh:
            self.writer.add_file(f"{archive_prefix}/pods/{ref.pod}/{ref.relative_path}", fh, ref.size)
        return ref

    def stream_pod_files(
        self,
        namespace: str,
        pod: str,
        container: str,
        paths: list[str],
        archive_prefix: str,
    ) -> int:
        """
        Copy every path from one pod. Failures are logged with a manual
        recovery command and keep the pod's staging directory; the remaining
        files are still copied. Returns the number of files archived.
        """
        copied = 0
        staging_dir = self.staging.pod_dir(pod)
        try:
            for path in paths:
                ref = RemoteFileRef(namespace=namespace, pod=pod, container=container, remote_path=path)
                try:
                    self.stream(ref, staging_dir, archive_prefix)
                    copied += 1
                except (IntegrityMismatchError, RemoteCommandError, ArchiveError, OSError) as e:
                    self._recovery_hint(ref, staging_dir, e)
                except ApiException as e:
                    if not is_forbidden(e):
                        raise
                    self._recovery_hint(ref, staging_dir, e)
        except BaseException:
            self.staging.keep(pod)
            raise
        finally:
            if self.staging.release(pod):
                self.log.debug("Removed staging directory %s", staging_dir)
        return copied

    def _recovery_hint(self, ref: RemoteFileRef, staging_dir: Path, err: BaseException) -> None:
        self.staging.keep(ref.pod)
        local_path = Path(staging_dir) / ref.relative_path
        self.log.info(
            "Could not archive %s from pod %s: %s\n"
            "Partial data is kept in %s. To copy the file manually run:\n  %s",
            ref.remote_path,
            ref.pod,
            describe(err),
            local_path,
            ref.copy_command(str(local_path)),
        )
