"""Remote layer: commands and file transfers inside containers."""

from pgo_support.remote.executor import (
    ExecResult,
    Executor,
    PodExecutor,
    is_missing_path,
    split_lines,
)
from pgo_support.remote.models import RemoteFileRef
from pgo_support.remote.streamer import RemoteFileStreamer, StagingArea

__all__ = [
    "ExecResult",
    "Executor",
    "PodExecutor",
    "RemoteFileRef",
    "RemoteFileStreamer",
    "StagingArea",
    "is_missing_path",
    "split_lines",
]
