"""
Error taxonomy for export ingestion.

Per-file errors carry the offending path so the operator log names the file
that stays behind in the export directory.
"""

from pathlib import Path
from typing import List, Optional


class IngestError(Exception):
    """Base class for all export ingestion errors."""


class MalformedExportError(IngestError):
    """Export parsed as JSON but is missing or has invalid metric fields."""

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.path = path

    def __str__(self) -> str:
        message = super().__str__()
        return f"{self.path}: {message}" if self.path else message


class CorruptExportError(IngestError):
    """Export file exists but is not a JSON object."""

    def __init__(self, path: Path, reason: str):
        super().__init__(f"Corrupt export {path}: {reason}")
        self.path = path
        self.reason = reason


class ExportIOError(IngestError, OSError):
    """Filesystem failure other than a vanished file."""

    def __init__(self, path: Path, reason: str):
        super().__init__(f"I/O error on {path}: {reason}")
        self.path = path
        self.reason = reason


class WatchError(IngestError):
    """Filesystem notifications for the export directory are no longer delivered."""


class IndexTransportError(IngestError):
    """The whole bulk request failed (connection, timeout, auth)."""


class IndexPartialFailureError(IngestError):
    """Some items of an otherwise accepted bulk request were rejected."""

    def __init__(self, failed_ids: List[str], result=None):
        super().__init__(
            f"{len(failed_ids)} document(s) rejected by the index: {', '.join(failed_ids)}"
        )
        self.failed_ids = failed_ids
        self.result = result
