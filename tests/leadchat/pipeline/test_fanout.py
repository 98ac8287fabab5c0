"""Tests for leadchat.pipeline.fanout — concurrent, isolated sink writes."""
import logging
import threading
import time

import pytest

from leadchat.models.lead_record import LeadRecord
from leadchat.pipeline.fanout import PersistenceFanout, SinkStatus
from leadchat.pipeline.sinks import LeadSink


class RecordingSink(LeadSink):
    """Keeps the last record per session; optionally fails or stalls."""

    def __init__(self, name, primary=False, timeout=1.0, error=None, delay=0.0):
        self.name = name
        self.primary = primary
        self.timeout = timeout
        self.error = error
        self.delay = delay
        self.records = {}
        self.calls = 0

    def write(self, lead):
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise self.error
        self.records[lead.session_id] = lead


@pytest.fixture
def lead():
    return LeadRecord(session_id='F00BAR', name='Nour', heat_score=55)


class TestConstruction:

    def test_requires_exactly_one_primary(self):
        with pytest.raises(ValueError):
            PersistenceFanout([RecordingSink('a'), RecordingSink('b')])
        with pytest.raises(ValueError):
            PersistenceFanout([RecordingSink('a', primary=True), RecordingSink('b', primary=True)])

    def test_rejects_duplicate_names(self):
        with pytest.raises(ValueError):
            PersistenceFanout([RecordingSink('a', primary=True), RecordingSink('a')])


class TestPersist:
    """Every sink is attempted; failures are isolated per sink."""

    def test_all_committed(self, lead):
        primary = RecordingSink('primary', primary=True)
        legacy = RecordingSink('legacy')
        fanout = PersistenceFanout([primary, legacy])

        result = fanout.persist(lead)
        assert result.primary_committed
        assert not result.degraded
        assert sorted(result.committed) == ['legacy', 'primary']
        assert primary.records['F00BAR'] is lead
        fanout.shutdown()

    def test_secondary_failure_is_isolated(self, lead, caplog):
        primary = RecordingSink('primary', primary=True)
        legacy = RecordingSink('legacy', error=ConnectionError('refused'))
        sheet = RecordingSink('sheet')
        fanout = PersistenceFanout([primary, legacy, sheet])

        with caplog.at_level(logging.WARNING, logger='pipeline.fanout'):
            result = fanout.persist(lead)

        assert result.outcomes['legacy'].status == SinkStatus.FAILED
        assert 'refused' in result.outcomes['legacy'].reason
        assert result.outcomes['primary'].committed
        assert result.outcomes['sheet'].committed
        assert result.primary_committed
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert any('legacy' in r.getMessage() for r in warnings)
        assert not any(r.levelno >= logging.ERROR for r in caplog.records)
        fanout.shutdown()

    def test_primary_failure_is_degraded_and_logged_as_error(self, lead, caplog):
        primary = RecordingSink('primary', primary=True, error=RuntimeError('db locked'))
        sheet = RecordingSink('sheet')
        fanout = PersistenceFanout([primary, sheet])

        with caplog.at_level(logging.WARNING, logger='pipeline.fanout'):
            result = fanout.persist(lead)

        assert result.degraded
        assert result.failed == ['primary']
        assert result.outcomes['sheet'].committed
        errors = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert len(errors) == 1
        assert 'degraded durability' in errors[0].getMessage()
        fanout.shutdown()

    def test_slow_sink_times_out_without_delaying_others(self, lead):
        primary = RecordingSink('primary', primary=True)
        slow = RecordingSink('legacy', timeout=0.1, delay=1.0)
        fanout = PersistenceFanout([primary, slow])

        started = time.monotonic()
        result = fanout.persist(lead)
        elapsed = time.monotonic() - started

        assert result.outcomes['legacy'].status == SinkStatus.FAILED
        assert 'timed out' in result.outcomes['legacy'].reason
        assert result.primary_committed
        assert elapsed < 0.8
        fanout.shutdown()

    def test_sinks_run_concurrently(self, lead):
        barrier = threading.Barrier(2, timeout=2)

        class BarrierSink(RecordingSink):
            def write(self, lead):
                barrier.wait()
                super().write(lead)

        fanout = PersistenceFanout([BarrierSink('primary', primary=True), BarrierSink('sheet')])
        result = fanout.persist(lead)
        assert result.committed == ['primary', 'sheet']
        fanout.shutdown()

    def test_repeated_persist_replaces(self, lead):
        primary = RecordingSink('primary', primary=True)
        fanout = PersistenceFanout([primary])
        fanout.persist(lead)
        newer = LeadRecord(session_id='F00BAR', heat_score=80)
        fanout.persist(newer)
        assert primary.records == {'F00BAR': newer}
        assert primary.calls == 2
        fanout.shutdown()


class LookupThenWriteSink(LeadSink):
    """Find the row for the key, then update or append it, like the spreadsheet sink."""

    def __init__(self, name='sheet', timeout=1.0):
        self.name = name
        self.primary = False
        self.timeout = timeout
        self.rows = []
        self.gates = {}

    def write(self, lead):
        index = next((i for i, row in enumerate(self.rows) if row[0] == lead.session_id), None)
        gate = self.gates.get(lead.name)
        if gate is not None:
            gate.wait(5)
        row = (lead.session_id, lead.name)
        if index is None:
            self.rows.append(row)
        else:
            self.rows[index] = row


class TestTimedOutWrites:
    """A write that overruns its deadline still lands before the next one for that id."""

    def test_next_write_waits_for_stalled_one(self):
        primary = RecordingSink('primary', primary=True)
        sheet = LookupThenWriteSink(timeout=0.1)
        release_old = threading.Event()
        sheet.gates['old'] = release_old
        fanout = PersistenceFanout([primary, sheet])

        first = fanout.persist(LeadRecord(session_id='ABC', name='old'))
        assert first.outcomes['sheet'].status == SinkStatus.FAILED
        assert 'timed out' in first.outcomes['sheet'].reason

        sheet.timeout = 2.0
        threading.Timer(0.05, release_old.set).start()
        second = fanout.persist(LeadRecord(session_id='ABC', name='new'))

        assert second.outcomes['sheet'].committed
        assert sheet.rows == [('ABC', 'new')]
        fanout.shutdown(wait=True)

    def test_other_sessions_are_not_chained(self):
        primary = RecordingSink('primary', primary=True)
        sheet = LookupThenWriteSink(timeout=0.1)
        release_old = threading.Event()
        sheet.gates['old'] = release_old
        fanout = PersistenceFanout([primary, sheet])

        fanout.persist(LeadRecord(session_id='ABC', name='old'))
        other = fanout.persist(LeadRecord(session_id='XYZ', name='other'))

        assert other.outcomes['sheet'].committed
        assert ('XYZ', 'other') in sheet.rows
        release_old.set()
        fanout.shutdown(wait=True)

    def test_finished_writes_are_forgotten(self, lead):
        primary = RecordingSink('primary', primary=True)
        fanout = PersistenceFanout([primary, RecordingSink('sheet')])
        fanout.persist(lead)
        fanout.shutdown(wait=True)
        assert fanout.pending() == 0
