"""Message templates for the end of an export."""

from __future__ import annotations

# Common mail servers reject attachments above roughly this size.
ATTACHMENT_LIMIT_MIB = 25
MIB = 1 << 20

REPORT_SMALL = """
Collection complete. The support export is {size:.2f}MiB:
    {archive}
Attach this file to your support ticket or send it to your support contact by email.
"""

REPORT_LARGE = """
Collection complete. The support export is {size:.2f}MiB, which is larger than {limit}MiB:
    {archive}
The file is likely too large for email. Upload it through the support portal instead.
"""

REPORT_STEP_ERRORS = """
{count} collection step(s) reported errors. Details are in {log_path} inside the archive.
"""

REPORT_STAGING_KEPT = """
Some files could not be archived. Partial copies were kept in:
    {staging}
"""


def size_mib(size_bytes: int) -> float:
    return size_bytes / MIB


def is_large(size_bytes: int) -> bool:
    """Whether the archive exceeds the attachment limit."""
    return size_mib(size_bytes) > ATTACHMENT_LIMIT_MIB


def size_report(size_bytes: int, archive: str) -> str:
    """Final message chosen by archive size alone."""
    template = REPORT_LARGE if is_large(size_bytes) else REPORT_SMALL
    return template.format(size=size_mib(size_bytes), archive=archive, limit=ATTACHMENT_LIMIT_MIB)
