"""Acceptance policy for submitted files."""

from __future__ import annotations

from stepflow.core.config import UploadConfig
from stepflow.core.exceptions import ValidationError
from stepflow.models.entities import FileMeta


def check_file(file: FileMeta, policy: UploadConfig) -> None:
    """Raise ValidationError unless ``file`` is a non-empty image within the size limit."""
    if not file.filename:
        raise ValidationError("Uploaded file has no stored filename")
    if file.size <= 0:
        raise ValidationError("Uploaded file is empty")
    if file.size > policy.max_size_bytes:
        raise ValidationError(
            f"Uploaded file is {file.size} bytes; the limit is {policy.max_size_bytes}"
        )
    allowed = {m.lower() for m in policy.allowed_mime_types}
    if file.mime_type.lower() not in allowed:
        raise ValidationError(
            f"Invalid file type {file.mime_type!r}; allowed: {', '.join(sorted(allowed))}"
        )
