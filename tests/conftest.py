import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from app.utils.config import Settings
from domains.export_ingest.indexer import ExportIndexer

FIXED_NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


def make_export(
    start: float = 1000,
    end: float = 1100,
    distracting: float = 20,
    neutral: float = 30,
    productive: float = 50,
) -> Dict[str, Any]:
    return {
        "info": {"start_time": start, "end_time": end},
        "totals": {
            "distracting_duration": distracting,
            "neutral_duration": neutral,
            "productive_duration": productive,
        },
    }


class FakeBulkClient:
    """Stands in for ElasticsearchClient; records every bulk body."""

    def __init__(self, fail_positions=(), error: Optional[Exception] = None):
        self.calls: List[List[Dict[str, Any]]] = []
        self.fail_positions = set(fail_positions)
        self.error = error

    def bulk(self, operations):
        self.calls.append(operations)
        if self.error is not None:
            raise self.error

        items = []
        for position, header in enumerate(operations[0::2]):
            meta = header["index"]
            if position in self.fail_positions:
                items.append({"index": {
                    "_index": meta["_index"],
                    "_id": meta["_id"],
                    "status": 400,
                    "error": {"type": "mapper_parsing_exception", "reason": "failed to parse"},
                }})
            else:
                items.append({"index": {
                    "_index": meta["_index"],
                    "_id": meta["_id"],
                    "status": 201,
                    "result": "created",
                }})
        return {"took": 2, "errors": bool(self.fail_positions), "items": items}

    @property
    def documents(self) -> List[Dict[str, Any]]:
        return [doc for call in self.calls for doc in call[1::2]]


@pytest.fixture
def export_dir(tmp_path) -> Path:
    directory = tmp_path / "exports"
    directory.mkdir()
    return directory


@pytest.fixture
def write_export(export_dir):
    def _write(name: str, payload: Any = None, **fields) -> Path:
        path = export_dir / name
        if isinstance(payload, str):
            path.write_text(payload)
        else:
            path.write_text(json.dumps(payload if payload is not None else make_export(**fields)))
        return path

    return _write


@pytest.fixture
def settings(export_dir) -> Settings:
    return Settings(_env_file=None, export_dir=export_dir, watch_settle_seconds=0.05)


@pytest.fixture
def fake_client() -> FakeBulkClient:
    return FakeBulkClient()


@pytest.fixture
def indexer(fake_client) -> ExportIndexer:
    return ExportIndexer(fake_client, index_prefix="qbserve-", clock=lambda: FIXED_NOW)
