"""
Export Ingestion Domain

Moves productivity-tracker exports from the export directory into the index:
- scanner.py / watcher.py - Discover exports at startup and as they appear
- reader.py / transformer.py - Parse exports into metric records
- indexer.py - Bulk-index records into Elasticsearch
- orchestrator.py - Sweep, watch, and delete files only after indexing
"""

__all__ = ["indexer", "orchestrator", "reader", "scanner", "transformer", "watcher"]
