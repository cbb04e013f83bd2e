"""
Bulk indexer for the Export Ingestion domain.

Submits metric records to Elasticsearch with one bulk request per batch and
reports the outcome of every item.
"""

from typing import Any, Dict, List, Optional, Sequence

from elasticsearch import ApiError, TransportError
from loguru import logger

from app.models.schemas import IndexAction, IndexItemResult, IndexResult, MetricRecord
from app.utils.errors import IndexPartialFailureError, IndexTransportError
from app.utils.helpers import Clock, monthly_index_name, utc_now
from domains.export_ingest.transformer import document_id


class ExportIndexer:
    """Indexer client for metric records."""

    def __init__(
        self,
        client,
        index_prefix: str = "qbserve-",
        document_type: Optional[str] = None,
        clock: Clock = utc_now,
    ):
        """
        Initialize indexer.

        Args:
            client: Object with ``bulk(operations) -> dict`` (ElasticsearchClient)
            index_prefix: Prefix of the monthly index bucket
            document_type: Mapping type for clusters that still require one
            clock: Wall clock used to choose the index bucket
        """
        self.client = client
        self.index_prefix = index_prefix
        self.document_type = document_type
        self.clock = clock

    def action_for(self, record: MetricRecord) -> IndexAction:
        """
        Build bulk action metadata for a record.

        The bucket follows the ingestion date, not the record's own timestamp.
        """
        return IndexAction(
            index=monthly_index_name(self.index_prefix, self.clock()),
            document_id=document_id(record),
            document_type=self.document_type,
        )

    def build_actions(self, records: Sequence[MetricRecord]) -> List[Dict[str, Any]]:
        """Build the bulk body: action line followed by document, per record."""
        operations: List[Dict[str, Any]] = []
        for record in records:
            operations.append(self.action_for(record).to_bulk_header())
            operations.append(record.to_document())
        return operations

    def index_batch(self, records: Sequence[MetricRecord]) -> IndexResult:
        """
        Index records with a single bulk request.

        Args:
            records: Metric records to index

        Returns:
            IndexResult with one item per record, in input order

        Raises:
            IndexTransportError: Request failed as a whole
            IndexPartialFailureError: Some items were rejected; ``result``
                holds the per-item outcome
        """
        if not records:
            return IndexResult()

        operations = self.build_actions(records)
        ids = [document_id(record) for record in records]

        try:
            response = self.client.bulk(operations)
        except (ApiError, TransportError) as e:
            raise IndexTransportError(f"Bulk request for {len(records)} document(s) failed: {e}") from e

        result = self._parse_response(response, ids)

        if not result.ok:
            for item in result.items:
                if not item.ok:
                    logger.error(f"Index rejected {item.document_id} ({item.status}): {item.error}")
            raise IndexPartialFailureError(result.failed_ids, result)

        logger.info(f"Indexed {len(result.items)} document(s) in {result.took_ms} ms")
        return result

    def _parse_response(self, response: Dict[str, Any], ids: List[str]) -> IndexResult:
        """Map bulk response items back to submitted records by position."""
        raw_items = response.get("items") or []
        items: List[IndexItemResult] = []

        for position, doc_id in enumerate(ids):
            if position >= len(raw_items):
                items.append(IndexItemResult(
                    document_id=doc_id,
                    error={"reason": "missing from bulk response"},
                ))
                continue

            entry = raw_items[position]
            outcome = next(iter(entry.values()), {}) if isinstance(entry, dict) else {}
            items.append(IndexItemResult(
                document_id=doc_id,
                index=outcome.get("_index"),
                status=outcome.get("status"),
                error=outcome.get("error"),
            ))

        return IndexResult(items=items, took_ms=response.get("took"))
