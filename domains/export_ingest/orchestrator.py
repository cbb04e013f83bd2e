"""
Ingestion orchestrator for the Export Ingestion domain.

Runs the startup sweep, then processes watch events one at a time.
A source file is deleted only after its record has been accepted by the index.

Error policy:
- Sweep: per-file read/transform errors are logged and the file is left in
  place; partially rejected batches delete only the accepted files.
- Watch: any error ends the run.
- Transport failures are always fatal.
"""

import threading
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from loguru import logger

from app.models.schemas import (
    ExportFileHandle,
    ExportSource,
    FileEvent,
    IndexResult,
    MetricRecord,
    SweepReport,
)
from app.utils.config import Settings
from app.utils.errors import (
    CorruptExportError,
    ExportIOError,
    IndexPartialFailureError,
    IngestError,
    MalformedExportError,
)
from domains.export_ingest.indexer import ExportIndexer
from domains.export_ingest.reader import read_export
from domains.export_ingest.scanner import scan_exports
from domains.export_ingest.transformer import transform
from domains.export_ingest.watcher import ExportWatcher


class IngestState(str, Enum):
    """Lifecycle of an ingestion run."""
    IDLE = "idle"
    SWEEPING = "sweeping"
    WATCHING = "watching"
    PROCESSING = "processing"
    STOPPED = "stopped"
    FAILED = "failed"


class ExportIngestor:
    """Export ingestion pipeline orchestrator."""

    def __init__(
        self,
        settings: Settings,
        indexer: ExportIndexer,
        watcher_factory: Callable[..., ExportWatcher] = ExportWatcher,
    ):
        """
        Initialize ingestor.

        Args:
            settings: Loaded settings (export directory and pattern)
            indexer: Indexer used for every batch
            watcher_factory: Builds the watcher for the export directory
        """
        self.settings = settings
        self.indexer = indexer
        self.watcher_factory = watcher_factory
        self.export_dir = Path(settings.export_dir)
        self.pattern = settings.export_pattern
        self.state = IngestState.IDLE

    def _fail(self, error: BaseException):
        self.state = IngestState.FAILED
        logger.error(f"Export ingestion failed: {error}")

    # Startup sweep -------------------------------------------------------------------

    def sweep(self) -> SweepReport:
        """
        Index every export already present and delete the indexed files.

        Returns:
            SweepReport

        Raises:
            ExportIOError: Export directory unreadable, or an indexed file
                could not be deleted
            IndexTransportError: Bulk request failed; nothing was deleted
        """
        self.state = IngestState.SWEEPING
        report = SweepReport()

        try:
            handles = [
                ExportFileHandle(path=path, source=ExportSource.SWEEP)
                for path in scan_exports(self.export_dir, self.pattern)
            ]
        except ExportIOError as e:
            self._fail(e)
            raise

        report.discovered = len(handles)
        logger.info(f"Sweeping {self.export_dir}: {len(handles)} export file(s) found")

        batch: List[Tuple[ExportFileHandle, MetricRecord]] = []
        for handle in handles:
            try:
                raw = read_export(handle.path)
                if raw is None:
                    report.skipped.append(handle.path)
                    continue
                batch.append((handle, transform(raw, handle.path)))
            except (CorruptExportError, MalformedExportError, ExportIOError) as e:
                logger.error(f"Skipping export {handle.path}: {e}")
                report.failed.append(handle.path)

        if not batch:
            logger.info("No waiting export files")
            return report

        records = [record for _, record in batch]
        try:
            result = self.indexer.index_batch(records)
        except IndexPartialFailureError as e:
            result = e.result
            logger.warning(f"{len(e.failed_ids)} of {len(records)} export(s) rejected; leaving them in place")
        except IngestError as e:
            self._fail(e)
            raise

        for (handle, _), accepted in zip(batch, result.succeeded()):
            if not accepted:
                report.failed.append(handle.path)
                continue
            report.indexed += 1
            try:
                if self._delete(handle):
                    report.deleted.append(handle.path)
            except ExportIOError as e:
                self._fail(e)
                raise

        logger.success(
            f"Sweep complete: {report.indexed} indexed, {len(report.deleted)} removed, "
            f"{len(report.failed)} left in place"
        )
        return report

    # Steady state --------------------------------------------------------------------

    def process_event(self, event: FileEvent) -> bool:
        """
        Read, transform, index and delete one watched export.

        Args:
            event: Settled watch event

        Returns:
            True if the export was indexed, False if it had already vanished

        Raises:
            IngestError: Any failure; the run is over
        """
        self.state = IngestState.PROCESSING
        handle = ExportFileHandle(path=event.path, source=ExportSource.WATCH)

        try:
            raw = read_export(handle.path)
            if raw is None:
                return False

            record = transform(raw, handle.path)
            result: IndexResult = self.indexer.index_batch([record])
            logger.info(f"Indexed {handle.path.name} as {result.items[0].document_id}")
            self._delete(handle)
            return True
        except IngestError as e:
            self._fail(e)
            raise
        finally:
            if self.state == IngestState.PROCESSING:
                self.state = IngestState.WATCHING

    def run(self, stop_event: Optional[threading.Event] = None, sweep_only: bool = False):
        """
        Sweep, then process watch events until stopped.

        The watcher subscribes before the sweep so exports written during the
        sweep are picked up afterwards.

        Args:
            stop_event: Set by the operator to end the run
            sweep_only: Return after the startup sweep

        Raises:
            IngestError: Fatal failure (watch, transport, delete, or any
                steady-state processing error)
        """
        stop_event = stop_event or threading.Event()

        if sweep_only:
            self.sweep()
            self.state = IngestState.STOPPED
            return

        watcher = self.watcher_factory(
            self.export_dir,
            pattern=self.pattern,
            settle_seconds=self.settings.watch_settle_seconds,
        )

        try:
            watcher.start()
            self.sweep()

            self.state = IngestState.WATCHING
            logger.info(f"Watching {self.export_dir} for new exports...")

            for event in watcher.events(stop_event):
                self.process_event(event)

            self.state = IngestState.STOPPED
            logger.info("Export ingestion stopped")

        except IngestError as e:
            if self.state != IngestState.FAILED:
                self._fail(e)
            raise
        finally:
            watcher.stop()

    # Helpers -------------------------------------------------------------------------

    def _delete(self, handle: ExportFileHandle) -> bool:
        """
        Remove an indexed export.

        Returns:
            True if removed, False if it was already gone
        """
        try:
            handle.path.unlink()
        except FileNotFoundError:
            logger.warning(f"Indexed export already removed: {handle.path}")
            return False
        except OSError as e:
            logger.error(f"Indexed but not deleted, remove manually: {handle.path}")
            raise ExportIOError(handle.path, e.strerror or str(e)) from e

        logger.info(f"Removed {handle.path}")
        return True
