"""
Export scanner for the Export Ingestion domain.

Lists export files already present in the export directory.
"""

from fnmatch import fnmatch
from pathlib import Path
from typing import Iterator

from loguru import logger

from app.utils.errors import ExportIOError

DEFAULT_EXPORT_PATTERN = "*.json"


def matches_export_pattern(path: Path, pattern: str = DEFAULT_EXPORT_PATTERN) -> bool:
    """Check if the file name matches the export pattern."""
    return fnmatch(Path(path).name, pattern)


def scan_exports(directory: Path, pattern: str = DEFAULT_EXPORT_PATTERN) -> Iterator[Path]:
    """
    Yield export files directly inside ``directory``.

    Every call lists the directory again. The listing happens on the first
    ``next()``; entries are sorted by name.

    Args:
        directory: Export directory
        pattern: Glob pattern for export file names

    Yields:
        Absolute export file paths

    Raises:
        ExportIOError: Directory missing or unreadable
    """
    directory = Path(directory)
    try:
        entries = sorted(directory.iterdir(), key=lambda p: p.name)
    except OSError as e:
        raise ExportIOError(directory, e.strerror or str(e)) from e

    for entry in entries:
        if not matches_export_pattern(entry, pattern):
            continue
        try:
            if not entry.is_file():
                continue
        except OSError as e:
            logger.warning(f"Skipping unreadable entry {entry}: {e}")
            continue
        yield entry.absolute()
