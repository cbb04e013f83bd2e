"""Export reader: load one export file from disk."""

import json
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger

from app.utils.errors import CorruptExportError, ExportIOError


def read_export(path: Path) -> Optional[Dict[str, Any]]:
    """
    Read and parse an export file.

    Args:
        path: Export file path

    Returns:
        Parsed JSON object, or None if the file no longer exists

    Raises:
        CorruptExportError: File is not valid JSON or not a JSON object
        ExportIOError: Any other filesystem failure
    """
    try:
        content = Path(path).read_bytes()
    except FileNotFoundError:
        logger.debug(f"Export vanished before read: {path}")
        return None
    except OSError as e:
        raise ExportIOError(path, e.strerror or str(e)) from e

    try:
        data = json.loads(content)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CorruptExportError(path, str(e)) from e

    if not isinstance(data, dict):
        raise CorruptExportError(path, f"expected a JSON object, got {type(data).__name__}")

    return data
