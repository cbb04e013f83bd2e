"""
Elasticsearch client wrapper.

Provides:
- Lazy connection from explicit settings
- Bulk writes
- Connectivity check
"""

from typing import Any, Dict, List, Optional

from elasticsearch import Elasticsearch
from loguru import logger

from app.utils.config import Settings


class ElasticsearchClient:
    """Elasticsearch client built from settings."""

    def __init__(self, settings: Settings):
        """Initialize client; the connection is opened on first use."""
        self.settings = settings
        self._es: Optional[Elasticsearch] = None

    def connect(self):
        """Create the underlying Elasticsearch client."""
        if self._es is None:
            logger.info(f"Connecting to Elasticsearch at {self.settings.es_url()}...")
            self._es = Elasticsearch(
                hosts=[{
                    "host": self.settings.es_host,
                    "port": self.settings.es_port,
                    "scheme": self.settings.es_protocol,
                }],
                basic_auth=self.settings.es_auth(),
                request_timeout=self.settings.es_request_timeout,
            )

    def close(self):
        """Close Elasticsearch connection."""
        if self._es is not None:
            logger.info("Closing Elasticsearch connection...")
            self._es.close()
            self._es = None

    @property
    def es(self) -> Elasticsearch:
        """Get client, connecting if necessary."""
        if self._es is None:
            self.connect()
        return self._es

    def ping(self) -> bool:
        """Return True if the cluster answers."""
        return bool(self.es.ping())

    def bulk(self, operations: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Submit a bulk request.

        Args:
            operations: Alternating action and document entries

        Returns:
            Raw bulk response body
        """
        response = self.es.bulk(operations=operations)
        return response.body if hasattr(response, "body") else dict(response)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
