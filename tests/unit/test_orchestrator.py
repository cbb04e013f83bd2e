import threading

import pytest
from elasticsearch import ConnectionError as ESConnectionError

from app.models.schemas import ChangeKind, FileEvent
from app.utils.errors import (
    CorruptExportError,
    ExportIOError,
    IndexPartialFailureError,
    IndexTransportError,
    MalformedExportError,
    WatchError,
)
from domains.export_ingest.indexer import ExportIndexer
from domains.export_ingest.orchestrator import ExportIngestor, IngestState
from domains.export_ingest.scanner import scan_exports

from conftest import FIXED_NOW, FakeBulkClient


def _ingestor(settings, client, **kwargs):
    return ExportIngestor(settings, ExportIndexer(client, clock=lambda: FIXED_NOW), **kwargs)


def _event(path):
    return FileEvent(path=path, change_kind=ChangeKind.CREATED)


class ScriptedWatcher:
    """Replays a fixed list of events after the sweep."""

    instances = []

    def __init__(self, directory, pattern, settle_seconds, events=(), error=None):
        self.directory = directory
        self.scripted = list(events)
        self.error = error
        self.started = False
        self.stopped = False
        ScriptedWatcher.instances.append(self)

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def events(self, stop_event=None):
        for event in self.scripted:
            if stop_event is not None and stop_event.is_set():
                return
            yield event
        if self.error is not None:
            raise self.error


def _factory(events=(), error=None):
    def build(directory, pattern, settle_seconds):
        return ScriptedWatcher(directory, pattern, settle_seconds, events, error)
    return build


# Startup sweep -----------------------------------------------------------------------


def test_sweep_indexes_and_removes_all_exports(settings, fake_client, write_export, export_dir):
    for start in (1000, 2000, 3000):
        write_export(f"{start}.json", start=start, end=start + 100)

    report = _ingestor(settings, fake_client).sweep()

    assert len(fake_client.calls) == 1
    assert len(fake_client.documents) == 3
    assert report.discovered == 3
    assert report.indexed == 3
    assert len(report.deleted) == 3
    assert list(scan_exports(export_dir)) == []


def test_second_sweep_makes_no_index_calls(settings, fake_client, write_export):
    write_export("session.json")
    ingestor = _ingestor(settings, fake_client)

    ingestor.sweep()
    report = ingestor.sweep()

    assert len(fake_client.calls) == 1
    assert report.discovered == 0
    assert report.indexed == 0


def test_empty_directory_makes_no_index_calls(settings, fake_client):
    report = _ingestor(settings, fake_client).sweep()

    assert fake_client.calls == []
    assert report.discovered == 0


def test_transport_failure_deletes_nothing(settings, write_export, export_dir):
    paths = [write_export(f"{start}.json", start=start, end=start + 10) for start in (1, 2, 3)]
    client = FakeBulkClient(error=ESConnectionError("connection refused"))
    ingestor = _ingestor(settings, client)

    with pytest.raises(IndexTransportError):
        ingestor.sweep()

    assert all(path.exists() for path in paths)
    assert ingestor.state == IngestState.FAILED


def test_partial_failure_deletes_only_accepted_files(settings, write_export, export_dir):
    paths = [write_export(f"{start}.json", start=start, end=start + 10) for start in (1, 2, 3)]
    client = FakeBulkClient(fail_positions=[1])
    ingestor = _ingestor(settings, client)

    report = ingestor.sweep()

    assert [path.exists() for path in paths] == [False, True, False]
    assert report.indexed == 2
    assert report.failed == [paths[1]]
    assert ingestor.state != IngestState.FAILED


def test_corrupt_and_malformed_files_do_not_abort_sweep(settings, fake_client, write_export):
    good = write_export("good.json")
    corrupt = write_export("corrupt.json", "{oops")
    malformed = write_export("malformed.json", {"info": {"start_time": 5}})

    report = _ingestor(settings, fake_client).sweep()

    assert not good.exists()
    assert corrupt.exists()
    assert malformed.exists()
    assert len(fake_client.documents) == 1
    assert sorted(p.name for p in report.failed) == ["corrupt.json", "malformed.json"]


def test_out_of_range_timestamp_does_not_abort_sweep(settings, fake_client, write_export):
    good = write_export("good.json", start=1000, end=1100)
    huge = write_export("huge.json", start=1e18, end=1e18)

    report = _ingestor(settings, fake_client).sweep()

    assert not good.exists()
    assert huge.exists()
    assert len(fake_client.documents) == 1
    assert fake_client.documents[0]["start_time"] == "1970-01-01T00:16:40.000Z"
    assert report.indexed == 1
    assert report.failed == [huge]


def test_only_bad_files_skip_indexing(settings, fake_client, write_export):
    write_export("corrupt.json", "[]")

    report = _ingestor(settings, fake_client).sweep()

    assert fake_client.calls == []
    assert len(report.failed) == 1


def test_non_export_files_are_never_touched(settings, fake_client, write_export, export_dir):
    write_export("session.json")
    csv = export_dir / "report.csv"
    csv.write_text("a,b\n")
    ingestor = _ingestor(settings, fake_client)

    ingestor.sweep()

    assert csv.read_text() == "a,b\n"
    assert len(fake_client.documents) == 1


def test_unreadable_export_directory_is_fatal(settings, fake_client, export_dir):
    export_dir.rmdir()
    ingestor = _ingestor(settings, fake_client)

    with pytest.raises(ExportIOError):
        ingestor.sweep()

    assert ingestor.state == IngestState.FAILED


def test_sweep_tolerates_file_removed_after_index(settings, fake_client, write_export, monkeypatch):
    path = write_export("session.json")

    original_bulk = fake_client.bulk

    def bulk_then_remove(operations):
        response = original_bulk(operations)
        path.unlink()
        return response

    monkeypatch.setattr(fake_client, "bulk", bulk_then_remove)

    report = _ingestor(settings, fake_client).sweep()

    assert report.indexed == 1
    assert report.deleted == []


# Steady state ------------------------------------------------------------------------


def test_process_event_indexes_then_deletes(settings, fake_client, write_export):
    path = write_export("session.json")
    ingestor = _ingestor(settings, fake_client)

    assert ingestor.process_event(_event(path)) is True

    assert not path.exists()
    assert fake_client.calls[0][0]["index"]["_id"] == "computer:1000000"
    assert ingestor.state == IngestState.WATCHING


def test_process_event_for_vanished_file_is_noop(settings, fake_client, export_dir):
    ingestor = _ingestor(settings, fake_client)

    assert ingestor.process_event(_event(export_dir / "gone.json")) is False
    assert fake_client.calls == []


@pytest.mark.parametrize(
    "content, error",
    [("{oops", CorruptExportError), ({"info": {}}, MalformedExportError)],
)
def test_process_event_errors_are_fatal(settings, fake_client, write_export, content, error):
    path = write_export("bad.json", content)
    ingestor = _ingestor(settings, fake_client)

    with pytest.raises(error):
        ingestor.process_event(_event(path))

    assert path.exists()
    assert ingestor.state == IngestState.FAILED


def test_process_event_rejected_document_keeps_file(settings, write_export):
    path = write_export("session.json")
    ingestor = _ingestor(settings, FakeBulkClient(fail_positions=[0]))

    with pytest.raises(IndexPartialFailureError):
        ingestor.process_event(_event(path))

    assert path.exists()
    assert ingestor.state == IngestState.FAILED


def test_process_event_transport_failure_keeps_file(settings, write_export):
    path = write_export("session.json")
    ingestor = _ingestor(settings, FakeBulkClient(error=ESConnectionError("down")))

    with pytest.raises(IndexTransportError):
        ingestor.process_event(_event(path))

    assert path.exists()


# Full run ----------------------------------------------------------------------------


def test_run_sweeps_before_processing_events(settings, fake_client, write_export, export_dir):
    swept = write_export("old.json", start=1000, end=1100)
    watched = export_dir / "new.json"
    ingestor = _ingestor(settings, fake_client, watcher_factory=_factory([_event(watched)]))

    def bulk_and_write_next(operations, original=fake_client.bulk):
        response = original(operations)
        if not watched.exists() and len(fake_client.calls) == 1:
            watched.write_text('{"info": {"start_time": 2000, "end_time": 2100}, '
                               '"totals": {"distracting_duration": 1, "neutral_duration": 1, '
                               '"productive_duration": 1}}')
        return response

    fake_client.bulk = bulk_and_write_next

    ingestor.run(threading.Event())

    ids = [call[0]["index"]["_id"] for call in fake_client.calls]
    assert ids == ["computer:1000000", "computer:2000000"]
    assert not swept.exists()
    assert not watched.exists()
    assert ingestor.state == IngestState.STOPPED


def test_run_skips_events_for_files_already_swept(settings, fake_client, write_export):
    swept = write_export("session.json")
    ingestor = _ingestor(settings, fake_client, watcher_factory=_factory([_event(swept)]))

    ingestor.run()

    assert len(fake_client.calls) == 1


def test_run_watch_failure_is_fatal_and_stops_watcher(settings, fake_client):
    ScriptedWatcher.instances.clear()
    ingestor = _ingestor(settings, fake_client, watcher_factory=_factory(error=WatchError("gone")))

    with pytest.raises(WatchError):
        ingestor.run()

    assert ingestor.state == IngestState.FAILED
    assert ScriptedWatcher.instances[-1].started
    assert ScriptedWatcher.instances[-1].stopped


def test_run_stops_on_operator_request(settings, fake_client, write_export, export_dir):
    stop = threading.Event()
    stop.set()
    pending = write_export("pending.json")
    ingestor = _ingestor(settings, fake_client, watcher_factory=_factory([_event(export_dir / "later.json")]))

    ingestor.run(stop)

    assert not pending.exists()
    assert ingestor.state == IngestState.STOPPED


def test_run_sweep_only_does_not_watch(settings, fake_client, write_export):
    ScriptedWatcher.instances.clear()
    write_export("session.json")
    ingestor = _ingestor(settings, fake_client, watcher_factory=_factory())

    ingestor.run(sweep_only=True)

    assert ScriptedWatcher.instances == []
    assert len(fake_client.calls) == 1
    assert ingestor.state == IngestState.STOPPED
