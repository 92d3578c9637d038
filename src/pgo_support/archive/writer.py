"""Append-only gzip-compressed tar sink for the support export."""

from __future__ import annotations

import gzip
import io
import logging
import tarfile
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import BinaryIO

from pgo_support.errors import ArchiveError

logger = logging.getLogger(__name__)

ARCHIVE_FILE_MODE = 0o600


def archive_file_name(prefix: str, now: datetime | None = None) -> str:
    """
    Name the archive with a year-month-day-HrMinSecTimezone suffix, e.g.
    crunchy_k8s_support_export_2022-08-08-115726-0400.tar.gz
    """
    stamp = (now or datetime.now().astimezone()).strftime("%Y-%m-%d-%H%M%S%z")
    return f"{prefix}_k8s_support_export_{stamp}.tar.gz"


@dataclass(frozen=True)
class ArchiveEntry:
    """A single file written to the archive.

    Exactly one of ``content`` or ``stream`` is set. ``size`` is the number of
    bytes taken from ``stream``; for ``content`` it is derived.
    """

    path: str
    content: bytes | None = None
    stream: BinaryIO | None = None
    size: int | None = None
    mode: int = ARCHIVE_FILE_MODE
    mtime: float | None = None

    @property
    def length(self) -> int:
        if self.content is not None:
            return len(self.content)
        if self.size is None:
            raise ArchiveError(f"stream entry {self.path} has no size")
        return self.size


class ArchiveWriter:
    """Writes entries to a .tar.gz file, one header and body at a time.

    The gzip stream is sync-flushed after every entry so that an export which
    stops midway still leaves an archive that standard tools can read up to the
    last complete entry.
    """

    def __init__(self, fileobj: BinaryIO, run_logger: logging.Logger | None = None) -> None:
        self._file: BinaryIO | None = fileobj
        self._gzip: gzip.GzipFile | None = gzip.GzipFile(filename="", mode="wb", fileobj=fileobj)
        self._tar: tarfile.TarFile | None = tarfile.open(
            fileobj=self._gzip, mode="w", format=tarfile.PAX_FORMAT
        )
        self._names: list[str] = []
        # Entry whose write failed partway; the tar stream is misaligned after it.
        self._broken: str | None = None
        self._lock = threading.Lock()
        self._run_logger = run_logger or logger

    @classmethod
    def open(cls, path: str | Path, run_logger: logging.Logger | None = None) -> "ArchiveWriter":
        """Create the archive file at path."""
        fileobj = open(path, "wb")  # closed by close()
        try:
            return cls(fileobj, run_logger=run_logger)
        except Exception:
            fileobj.close()
            raise

    @property
    def names(self) -> list[str]:
        """Entry names in the order they were written."""
        return list(self._names)

    @property
    def closed(self) -> bool:
        return self._tar is None

    def write(self, entry: ArchiveEntry) -> None:
        """Append entry to the archive."""
        if (entry.content is None) == (entry.stream is None):
            raise ArchiveError(f"entry {entry.path} needs exactly one of content or stream")
        size = entry.length
        info = tarfile.TarInfo(name=entry.path)
        info.size = size
        info.mode = entry.mode
        info.mtime = int(entry.mtime if entry.mtime is not None else time.time())
        source = io.BytesIO(entry.content) if entry.content is not None else entry.stream

        with self._lock:
            if self._tar is None or self._gzip is None:
                raise ArchiveError(f"cannot write {entry.path}: archive is closed")
            if self._broken is not None:
                raise ArchiveError(f"cannot write {entry.path}: archive is incomplete after failed entry {self._broken}")
            if entry.path in self._names:
                raise ArchiveError(f"duplicate archive entry {entry.path}")
            self._run_logger.debug("File: %s Size: %d", entry.path, size)
            try:
                self._tar.addfile(info, source)
            except OSError as e:
                self._broken = entry.path
                raise ArchiveError(f"writing {entry.path}: {e}") from e
            self._names.append(entry.path)
            # Pad out the block and push it through the compressor.
            self._gzip.flush()

    def add_bytes(self, path: str, content: bytes | str) -> None:
        if isinstance(content, str):
            content = content.encode("utf-8")
        self.write(ArchiveEntry(path=path, content=content))

    def add_file(self, path: str, fileobj: BinaryIO, size: int) -> None:
        """Copy exactly size bytes from fileobj into the archive."""
        self.write(ArchiveEntry(path=path, stream=fileobj, size=size))

    def close(self) -> None:
        """Finish the tar stream, then the gzip trailer, then the file. Safe to call twice."""
        with self._lock:
            tar, gz, fileobj = self._tar, self._gzip, self._file
            self._tar = self._gzip = self._file = None
            if self._broken is not None:
                # End-of-archive blocks would land inside the truncated entry.
                tar = None
        errors: list[BaseException] = []
        for closer in (tar, gz, fileobj):
            if closer is None:
                continue
            try:
                closer.close()
            except OSError as e:
                errors.append(e)
        if errors:
            raise ArchiveError(f"closing archive: {errors[0]}") from errors[0]

    def __enter__(self) -> "ArchiveWriter":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
