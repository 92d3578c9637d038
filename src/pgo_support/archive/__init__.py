"""Archive layer: the single sink for collected bytes."""

from pgo_support.archive.writer import (
    ARCHIVE_FILE_MODE,
    ArchiveEntry,
    ArchiveWriter,
    archive_file_name,
)

__all__ = [
    "ARCHIVE_FILE_MODE",
    "ArchiveEntry",
    "ArchiveWriter",
    "archive_file_name",
]
