"""Structured references to files inside containers."""

from __future__ import annotations

import posixpath

from pydantic import BaseModel, Field, field_validator


class RemoteFileRef(BaseModel):
    """A file in a container, with the size reported by the container."""

    namespace: str
    pod: str
    container: str
    remote_path: str = Field(..., description="Path as listed in the container, relative or absolute")
    size: int | None = Field(default=None, ge=0, description="Expected length in bytes from stat")

    @field_validator("remote_path")
    @classmethod
    def _no_parent_segments(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("remote path is empty")
        if ".." in value.split("/"):
            raise ValueError(f"remote path {value!r} leaves its directory")
        return value

    @property
    def relative_path(self) -> str:
        """remote_path without leading slashes, used for local and archive paths."""
        return posixpath.normpath(self.remote_path).lstrip("/")

    def copy_command(self, local_path: str) -> str:
        """kubectl command that copies the file by hand."""
        return (
            f"kubectl cp -c {self.container} "
            f"{self.namespace}/{self.pod}:{self.remote_path} {local_path}"
        )
