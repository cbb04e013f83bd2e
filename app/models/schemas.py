"""
Pydantic models for export ingestion.

Shared data models across the pipeline.
"""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictFloat, field_serializer

from app.utils.helpers import format_iso_millis


# =====================================================
# Raw Export Models
# =====================================================

class ExportInfo(BaseModel):
    """``info`` section of an export."""
    model_config = ConfigDict(extra="ignore")

    start_time: StrictFloat = Field(allow_inf_nan=False)
    end_time: StrictFloat = Field(allow_inf_nan=False)


class ExportTotals(BaseModel):
    """``totals`` section of an export, durations in seconds."""
    model_config = ConfigDict(extra="ignore")

    distracting_duration: StrictFloat = Field(ge=0, allow_inf_nan=False)
    neutral_duration: StrictFloat = Field(ge=0, allow_inf_nan=False)
    productive_duration: StrictFloat = Field(ge=0, allow_inf_nan=False)


class RawExport(BaseModel):
    """Export payload as written by the tracking tool."""
    model_config = ConfigDict(extra="ignore")

    info: ExportInfo
    totals: ExportTotals


# =====================================================
# Metric Models
# =====================================================

class MetricRecord(BaseModel):
    """Normalized, indexable metrics for one tracking session."""
    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(serialization_alias="@timestamp")
    start_time: datetime
    end_time: datetime
    distracted_seconds: float
    neutral_seconds: float
    productive_seconds: float
    active_seconds: float
    total_seconds: float
    active_ratio: Optional[float] = None  # None when total_seconds is 0
    productive_ratio: Optional[float] = None  # None when active_seconds is 0

    @field_serializer("timestamp", "start_time", "end_time")
    def _serialize_time(self, value: datetime) -> str:
        return format_iso_millis(value)

    def to_document(self) -> Dict[str, Any]:
        """Document body as sent to the index."""
        return self.model_dump(mode="json", by_alias=True)


# =====================================================
# Discovery Models
# =====================================================

class ChangeKind(str, Enum):
    """How an export file was discovered."""
    CREATED = "created"
    MODIFIED = "modified"
    MOVED = "moved"


class FileEvent(BaseModel):
    """Qualifying change in the export directory."""
    model_config = ConfigDict(frozen=True)

    path: Path
    change_kind: ChangeKind


class ExportSource(str, Enum):
    """Pipeline phase that discovered an export."""
    SWEEP = "sweep"
    WATCH = "watch"


class ExportFileHandle(BaseModel):
    """Export path owned by the pipeline run that discovered it."""
    model_config = ConfigDict(frozen=True)

    path: Path
    source: ExportSource


# =====================================================
# Index Models
# =====================================================

class IndexAction(BaseModel):
    """Bulk action metadata for one document."""
    index: str
    document_id: str
    document_type: Optional[str] = None

    def to_bulk_header(self) -> Dict[str, Any]:
        """Action line of the bulk body."""
        header = {"_index": self.index, "_id": self.document_id}
        if self.document_type:
            header["_type"] = self.document_type
        return {"index": header}


class IndexItemResult(BaseModel):
    """Outcome of one bulk item."""
    document_id: str
    index: Optional[str] = None
    status: Optional[int] = None
    error: Optional[Any] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.status is not None and 200 <= self.status < 300


class IndexResult(BaseModel):
    """Per-item outcome of a bulk request, in submission order."""
    items: List[IndexItemResult] = []
    took_ms: Optional[int] = None

    @property
    def ok(self) -> bool:
        return all(item.ok for item in self.items)

    @property
    def failed_ids(self) -> List[str]:
        return [item.document_id for item in self.items if not item.ok]

    def succeeded(self) -> List[bool]:
        """Success flag per submitted record."""
        return [item.ok for item in self.items]


# =====================================================
# Report Models
# =====================================================

class SweepReport(BaseModel):
    """Outcome of the startup sweep."""
    discovered: int = 0
    indexed: int = 0
    deleted: List[Path] = []
    failed: List[Path] = []
    skipped: List[Path] = []
