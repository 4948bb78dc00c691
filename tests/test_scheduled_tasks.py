import logging
import sqlite3
from datetime import date, datetime

import pytest
from flask import Flask

from library_engine import scheduled_tasks
from library_engine.models.member import Member


class FlakyEngine:
    """Fails its first sweep with a storage error, then stops the loop."""

    def __init__(self):
        self.sweeps = 0
        self.closed = 0

    def sweep_overdue(self):
        self.sweeps += 1
        if self.sweeps == 1:
            raise sqlite3.DatabaseError('database disk image is malformed')
        scheduled_tasks._stop_event.set()
        return []

    def expire_memberships(self):
        return []

    def close(self):
        self.closed += 1


@pytest.fixture
def stop_event():
    scheduled_tasks._stop_event.clear()
    yield scheduled_tasks._stop_event
    scheduled_tasks._stop_event.clear()


def test_loop_survives_a_crashed_cycle(monkeypatch, caplog, stop_event):
    app = Flask(__name__)
    engine = FlakyEngine()
    app.extensions['library_engine'] = engine
    monkeypatch.setattr(scheduled_tasks.socketio, 'sleep', lambda seconds: None)

    with caplog.at_level(logging.ERROR, logger='library_engine.scheduled_tasks'):
        scheduled_tasks._loop(app, 60)

    assert engine.sweeps == 2
    assert engine.closed == 2
    assert any('Scheduled cycle crashed' in record.getMessage() and record.exc_info
               for record in caplog.records)


def test_maintenance_cycle_sweeps_and_expires(engine, catalog, staff_id, events):
    # The cycle runs on the wall clock, so the fixtures sit well in the past
    lapsed = catalog.add_member(start=date(2020, 1, 1), end=date(2020, 6, 30))
    member = catalog.add_member(start=date(2020, 1, 1))
    engine.checkout(catalog.add_copy().copy_id, member.member_id, staff_id,
                    now=datetime(2020, 3, 1, 9, 0))

    scheduled_tasks.run_maintenance_cycle(engine)

    assert not Member.get_by_id(lapsed.member_id).is_active
    assert [name for name, _, _ in events].count('loan_overdue') == 1
