import asyncio
from datetime import date, datetime
from unittest.mock import MagicMock

import pytest

from librarydesk.config import settings
from librarydesk.errors import SideEffectFailure
from librarydesk.monitor import DUE_SOON, LOW_STOCK, OVERDUE, DueStockMonitor, SweepScheduler
from librarydesk.services.users import UserDirectory

NOW = datetime(2026, 10, 19, 9, 0)


def _set_due_date(db, loan_id, due):
    db.execute("UPDATE borrows SET due_date = ? WHERE id = ?", (due.isoformat(), loan_id))


def _notes(db, type):
    return db.query("SELECT * FROM notifications WHERE type = ? ORDER BY id", (type,))


def test_due_soon_reminder_rounds_days_up(db, users, engine, monitor, add_book):
    # 2026-10-07'de ödünç alınan kitabın son tarihi 2026-10-21
    book = add_book(title="Solaris", quantity=10)
    engine.borrow(users["alice"]["id"], book.id)

    report = monitor.run_due_soon_sweep(now=NOW)

    assert (report.scanned, report.emitted) == (1, 1)
    notes = _notes(db, "due_date")
    assert len(notes) == 1
    assert notes[0]["user_id"] == users["alice"]["id"]
    assert notes[0]["message"] == '"Solaris" must be returned in 2 days'


def test_due_soon_singular_day(db, users, engine, monitor, add_book):
    book = add_book(title="Solaris", quantity=10)
    receipt = engine.borrow(users["alice"]["id"], book.id)
    _set_due_date(db, receipt.loan_id, date(2026, 10, 20))

    monitor.run_due_soon_sweep(now=NOW)

    assert _notes(db, "due_date")[0]["message"] == '"Solaris" must be returned in 1 day'


def test_due_soon_window_bounds(db, users, engine, monitor, add_book):
    uid = users["alice"]["id"]
    book = add_book(quantity=10)
    too_late = engine.borrow(uid, book.id)
    _set_due_date(db, too_late.loan_id, date(2026, 10, 23))
    past_due = engine.borrow(uid, book.id)
    _set_due_date(db, past_due.loan_id, date(2026, 10, 18))
    at_edge = engine.borrow(uid, book.id)
    _set_due_date(db, at_edge.loan_id, date(2026, 10, 22))

    report = monitor.run_due_soon_sweep(now=NOW)

    assert report.scanned == 1
    assert "in 3 days" in _notes(db, "due_date")[0]["message"]


def test_loan_due_today_is_reminded_then_flagged_overdue(db, users, engine, monitor, add_book):
    receipt = engine.borrow(users["alice"]["id"], add_book(quantity=10).id)
    _set_due_date(db, receipt.loan_id, date(2026, 10, 19))

    soon = monitor.run_due_soon_sweep(now=NOW)
    overdue = monitor.run_overdue_sweep(now=NOW)

    assert (soon.scanned, soon.emitted) == (1, 1)
    assert _notes(db, "due_date")[0]["message"] == '"Dune" must be returned today'
    assert overdue.scanned == 0

    # Ertesi gün gecikme taraması devralır
    next_day = monitor.run_overdue_sweep(now=datetime(2026, 10, 20, 9, 0))
    assert next_day.emitted == 1
    assert _notes(db, "overdue")[0]["message"].startswith('"Dune" is 1 day overdue')


def test_due_soon_skips_returned_loans(db, users, engine, monitor, add_book):
    uid = users["alice"]["id"]
    receipt = engine.borrow(uid, add_book(quantity=10).id)
    engine.return_loan(receipt.loan_id, uid)

    report = monitor.run_due_soon_sweep(now=NOW)
    assert report.scanned == 0
    assert _notes(db, "due_date") == []


def test_due_soon_rerun_same_day_is_deduplicated(db, users, engine, monitor, add_book):
    engine.borrow(users["alice"]["id"], add_book(quantity=10).id)

    monitor.run_due_soon_sweep(now=NOW)
    second = monitor.run_due_soon_sweep(now=NOW.replace(hour=18))

    assert (second.emitted, second.skipped) == (0, 1)
    assert len(_notes(db, "due_date")) == 1

    # Ertesi gün yeni bir hatırlatma gider
    monitor.run_due_soon_sweep(now=datetime(2026, 10, 20, 9, 0))
    assert len(_notes(db, "due_date")) == 2


def test_overdue_sweep(db, users, engine, monitor, add_book):
    uid = users["alice"]["id"]
    book = add_book(title="Solaris", quantity=10)
    late = engine.borrow(uid, book.id)
    _set_due_date(db, late.loan_id, date(2026, 10, 16))
    due_today = engine.borrow(uid, book.id)
    _set_due_date(db, due_today.loan_id, date(2026, 10, 19))

    report = monitor.run_overdue_sweep(now=NOW)

    assert (report.scanned, report.emitted) == (1, 1)
    notes = _notes(db, "overdue")
    assert notes[0]["message"] == '"Solaris" is 3 days overdue. Please return it as soon as possible'

    again = monitor.run_overdue_sweep(now=NOW)
    assert again.skipped == 1
    assert len(_notes(db, "overdue")) == 1


def test_low_stock_sweep_notifies_every_admin(db, users, monitor, add_book):
    UserDirectory(db).create_user("Grace Admin", "grace@example.com", role="admin")
    add_book(title="Solaris", quantity=2)
    add_book(title="Plenty", quantity=5)
    add_book(title="Gone", quantity=0)

    report = monitor.run_low_stock_sweep(now=NOW)

    assert report.scanned == 1
    assert report.emitted == 2
    notes = _notes(db, "low_stock")
    assert {n["message"] for n in notes} == {'"Solaris" has only 2 copies left'}
    assert users["alice"]["id"] not in {n["user_id"] for n in notes}


def test_low_stock_renotifies_when_stock_drops(db, users, engine, monitor, add_book):
    engine.low_stock_sweep = None
    book = add_book(title="Solaris", quantity=3)
    monitor.run_low_stock_sweep(now=NOW)
    assert len(_notes(db, "low_stock")) == 1

    # Ödünç sonrası kalan 2 kopya için yeni bildirim; aynı gün aynı miktar tekrarlanmaz
    engine.borrow(users["alice"]["id"], book.id)
    monitor.run_low_stock_sweep(now=NOW)
    messages = [n["message"] for n in _notes(db, "low_stock")]
    assert messages == ['"Solaris" has only 3 copies left', '"Solaris" has only 2 copies left']


def test_sweep_counts_failed_notifications(db, users, engine, add_book):
    engine.borrow(users["alice"]["id"], add_book(quantity=10).id)
    notifier = MagicMock()
    notifier.notify.side_effect = SideEffectFailure("disk full")
    monitor = DueStockMonitor(db, notifier)

    report = monitor.run_due_soon_sweep(now=NOW)

    assert (report.scanned, report.emitted, report.failed) == (1, 0, 1)
    assert report.ok


def test_run_rejects_unknown_sweep(monitor):
    with pytest.raises(ValueError):
        monitor.run("weekly-digest", now=NOW)


def test_run_all_isolates_failures(db, users, monitor, add_book, monkeypatch):
    add_book(title="Solaris", quantity=2)
    monkeypatch.setattr(monitor, "run_due_soon_sweep", MagicMock(side_effect=RuntimeError("boom")))

    reports = monitor.run_all(now=NOW)

    by_name = {r.name: r for r in reports}
    assert list(by_name) == [DUE_SOON, LOW_STOCK, OVERDUE]
    assert by_name[DUE_SOON].ok is False
    assert by_name[DUE_SOON].error == "boom"
    assert by_name[LOW_STOCK].emitted == 1
    assert by_name[OVERDUE].ok


def test_monitor_uses_clock_when_now_missing(db, users, engine, notifier, add_book):
    engine.borrow(users["alice"]["id"], add_book(quantity=10).id)
    monitor = DueStockMonitor(db, notifier, clock=lambda: NOW)

    assert monitor.run_due_soon_sweep().emitted == 1


def test_scheduler_runs_jobs_and_stops():
    sweep = MagicMock()
    failing = MagicMock(side_effect=RuntimeError("boom"))

    async def scenario():
        scheduler = SweepScheduler({"fast": (sweep, 0.01), "broken": (failing, 0.01)})
        scheduler.start()
        assert scheduler.running
        await asyncio.sleep(0.1)
        await scheduler.stop()
        return scheduler

    scheduler = asyncio.run(scenario())

    assert sweep.call_count >= 2
    # Hata veren iş döngüyü sonlandırmaz
    assert failing.call_count >= 2
    assert not scheduler.running


def test_scheduler_first_run_happens_at_start():
    sweep = MagicMock()

    async def scenario():
        scheduler = SweepScheduler({"hourly": (sweep, 3600)})
        scheduler.start()
        await asyncio.sleep(0.2)
        await scheduler.stop()

    asyncio.run(scenario())

    assert sweep.call_count == 1


def test_scheduler_for_monitor_uses_configured_intervals(monitor):
    scheduler = SweepScheduler.for_monitor(monitor)
    assert set(scheduler.jobs) == {DUE_SOON, LOW_STOCK, OVERDUE}
    assert scheduler.jobs[LOW_STOCK][1] == settings.low_stock_interval_seconds
    assert scheduler.initial_delay == settings.sweep_initial_delay_seconds
