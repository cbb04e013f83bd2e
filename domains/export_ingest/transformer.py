"""
Record transformer for the Export Ingestion domain.

Converts a raw export payload into a normalized MetricRecord.
"""

from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from app.models.schemas import MetricRecord, RawExport
from app.utils.errors import MalformedExportError
from app.utils.helpers import epoch_millis, seconds_to_datetime

DOCUMENT_ID_PREFIX = "computer"


def _ratio(numerator: float, denominator: float) -> Optional[float]:
    if denominator == 0:
        return None
    return numerator / denominator


def _describe(error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "<root>"
        problems.append(f"{location}: {item['msg']}")
    return "; ".join(problems)


def transform(raw: Mapping[str, Any], path: Optional[Path] = None) -> MetricRecord:
    """
    Transform a raw export into a metric record.

    Args:
        raw: Parsed export JSON
        path: Source file, used only in error messages

    Returns:
        MetricRecord

    Raises:
        MalformedExportError: Required fields missing, non-numeric or
            negative, timestamps outside the datetime range, or end_time
            before start_time
    """
    try:
        export = RawExport.model_validate(raw)
    except ValidationError as e:
        raise MalformedExportError(_describe(e), path) from e

    start = export.info.start_time
    end = export.info.end_time
    if end < start:
        raise MalformedExportError(f"end_time {end} is before start_time {start}", path)

    totals = export.totals
    active = totals.distracting_duration + totals.neutral_duration + totals.productive_duration
    total = end - start

    try:
        start_at = seconds_to_datetime(start)
        end_at = seconds_to_datetime(end)
    except (OverflowError, OSError, ValueError) as e:
        raise MalformedExportError(f"timestamp out of range ({start}, {end}): {e}", path) from e

    return MetricRecord(
        timestamp=start_at,
        start_time=start_at,
        end_time=end_at,
        distracted_seconds=totals.distracting_duration,
        neutral_seconds=totals.neutral_duration,
        productive_seconds=totals.productive_duration,
        active_seconds=active,
        total_seconds=total,
        active_ratio=_ratio(active, total),
        productive_ratio=_ratio(totals.productive_duration, active),
    )


def document_id(record: MetricRecord) -> str:
    """Deterministic document identity, ``computer:<epoch millis>``."""
    return f"{DOCUMENT_ID_PREFIX}:{epoch_millis(record.start_time)}"
