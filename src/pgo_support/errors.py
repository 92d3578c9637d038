"""Error types raised while collecting a support export."""

from __future__ import annotations

import json

from kubernetes.dynamic.exceptions import ResourceNotFoundError


class SupportExportError(Exception):
    """Base class for errors raised by the support export."""


class SetupError(SupportExportError):
    """The export cannot start: no usable archive will be produced."""


class CollectionError(SupportExportError):
    """A collection step could not gather what it was asked for."""


class ArchiveError(SupportExportError):
    """The archive rejected an entry or is no longer writable."""


class RemoteCommandError(SupportExportError):
    """A command run inside a container exited with a non-zero status."""

    def __init__(self, command: list[str], returncode: int | None, stderr: str = "") -> None:
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip() or "no stderr"
        super().__init__(f"command {' '.join(command)!r} exited with status {returncode}: {detail}")


class RemoteCommandTimeout(RemoteCommandError):
    """A command run inside a container did not finish before its deadline."""

    def __init__(self, command: list[str], timeout: float) -> None:
        self.timeout = timeout
        super().__init__(command, None, f"timed out after {timeout:g}s")


class IntegrityMismatchError(SupportExportError):
    """A streamed file does not have the size reported by the remote side."""

    def __init__(self, remote_path: str, expected: int, actual: int) -> None:
        self.remote_path = remote_path
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"size mismatch for {remote_path}: expected {expected} bytes, received {actual}"
        )


def _status(err: BaseException) -> int | None:
    status = getattr(err, "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def is_forbidden(err: BaseException) -> bool:
    """Whether err is an RBAC denial from the API server or the exec endpoint."""
    status = _status(err)
    if status == 403:
        return True
    # Exec websocket handshake failures arrive as status 0 with the HTTP status in the reason.
    if status == 0:
        return "403" in str(getattr(err, "reason", "") or "")
    return False


def is_not_found(err: BaseException) -> bool:
    """Whether err reports a missing object or a resource kind unknown to the server."""
    if isinstance(err, ResourceNotFoundError):
        return True
    return _status(err) == 404


def describe(err: BaseException) -> str:
    """One-line description of err suitable for the run log."""
    reason = getattr(err, "reason", None)
    status = _status(err)
    if status and reason:
        body = getattr(err, "body", None)
        message = _api_message(body) if body else ""
        return f"({status}) {reason}" + (f": {message}" if message else "")
    return str(err) or err.__class__.__name__


def _api_message(body: object) -> str:
    """Extract the Status message from an API error body."""
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    if not isinstance(body, str):
        return ""
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        return body.strip()
    if isinstance(data, dict):
        return str(data.get("message", "")).strip()
    return ""
