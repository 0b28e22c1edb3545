"""Tests for the reminder scheduler."""

import asyncio
import json
import logging
from datetime import timedelta

import pytest
from conftest import CHAT_ID, T0, USER_ID

from machinebell.config import UnknownMachineError


def test_start_persists_and_arms_timer(make_harness, data_dir):
    """Start writes the reminder and arms its timer."""

    async def scenario():
        h = await make_harness()
        reminder = await h.scheduler.start(CHAT_ID, "washer", T0)

        assert reminder is not None
        assert reminder.timer in h.timers.pending
        assert reminder.timer.due == T0 + timedelta(minutes=30)

        rows = json.loads((data_dir / "reminders.json").read_text())
        assert rows == [
            {"chatId": CHAT_ID, "machineType": "washer", "startTime": T0.isoformat()}
        ]

    asyncio.run(scenario())


def test_start_replaces_running_reminder(make_harness):
    """Starting again replaces the running reminder."""

    async def scenario():
        h = await make_harness(number=0)
        first = await h.scheduler.start(CHAT_ID, "washer", T0)
        await h.timers.advance(minutes=10)
        second = await h.scheduler.start(CHAT_ID, "washer", T0 + timedelta(minutes=10))

        assert first.timer.cancelled
        assert h.store.all() == [second]

        await h.timers.advance(minutes=60)

        # Only the second reminder fires, 30 minutes after its own start
        assert h.gateway.minutes_sent() == [40]

    asyncio.run(scenario())


def test_reminders_of_different_machines_are_independent(make_harness):
    """Each machine has its own reminder."""

    async def scenario():
        h = await make_harness(number=0)
        await h.scheduler.start(CHAT_ID, "washer", T0)
        await h.scheduler.start(CHAT_ID, "dryer", T0)

        assert len(h.store.all()) == 2

        await h.timers.advance(minutes=90)
        assert h.gateway.minutes_sent() == [30, 60]

    asyncio.run(scenario())


def test_reminder_fires_exactly_once(make_harness):
    """A reminder sends one due notice."""

    async def scenario():
        h = await make_harness(number=0)
        await h.scheduler.start(CHAT_ID, "washer", T0)

        await h.timers.advance(minutes=29, seconds=59)
        assert h.gateway.sent == []
        assert h.scheduler.status(CHAT_ID, "washer") is not None

        await h.timers.advance(seconds=1)
        assert len(h.gateway.sent) == 1
        assert h.scheduler.status(CHAT_ID, "washer") is None

        await h.timers.advance(hours=5)
        assert len(h.gateway.sent) == 1

    asyncio.run(scenario())


def test_no_escalation_mode_sends_single_notice(make_harness):
    """Without escalation only the due notice is sent."""

    async def scenario():
        h = await make_harness(number=0)
        await h.scheduler.start(CHAT_ID, "washer", T0)
        await h.timers.advance(hours=2)

        assert len(h.gateway.sent) == 1
        assert h.gateway.sent[0].text == "Waschmaschine ist fertig"
        assert h.escalation.active_sessions == []
        assert h.gateway.listener_count == 0

    asyncio.run(scenario())


def test_start_with_elapsed_wait_fires_immediately(make_harness):
    """A reminder that is already due notifies at once."""

    async def scenario():
        h = await make_harness(number=0)
        reminder = await h.scheduler.start(CHAT_ID, "washer", T0 - timedelta(minutes=45))

        assert reminder is None
        assert h.store.all() == []
        assert h.gateway.minutes_sent() == [0]

    asyncio.run(scenario())


def test_start_unknown_machine_raises(make_harness):
    """Unknown machines are rejected."""

    async def scenario():
        h = await make_harness()
        with pytest.raises(UnknownMachineError):
            await h.scheduler.start(CHAT_ID, "dishwasher", T0)

    asyncio.run(scenario())


def test_stop_cancels_and_records(make_harness):
    """Stop cancels the timer and records the stop."""

    async def scenario():
        h = await make_harness()
        started = await h.scheduler.start(CHAT_ID, "washer", T0)

        stopped = await h.scheduler.stop(CHAT_ID, USER_ID, "washer")

        assert stopped is started
        assert started.timer.cancelled
        assert h.scheduler.status(CHAT_ID, "washer") is None
        assert h.stats.count_of(CHAT_ID, USER_ID, "stopped", "washer") == 1

        await h.timers.advance(hours=1)
        assert h.gateway.sent == []

    asyncio.run(scenario())


def test_stop_without_reminder_reports_not_found(make_harness):
    """Stopping nothing records nothing."""

    async def scenario():
        h = await make_harness()

        assert await h.scheduler.stop(CHAT_ID, USER_ID, "washer") is None
        assert h.stats.count_of(CHAT_ID, USER_ID, "stopped") == 0

    asyncio.run(scenario())


def test_status_does_not_mutate(make_harness, data_dir):
    """Status reads without writing."""

    async def scenario():
        h = await make_harness()
        reminder = await h.scheduler.start(CHAT_ID, "washer", T0)
        before = (data_dir / "reminders.json").read_text()

        assert h.scheduler.status(CHAT_ID, "washer") is reminder
        assert h.scheduler.status(CHAT_ID, "dryer") is None
        assert h.scheduler.due_at(reminder) == T0 + timedelta(minutes=30)
        assert (data_dir / "reminders.json").read_text() == before

    asyncio.run(scenario())


def test_restore_rearms_future_and_drops_past_reminders(make_harness, data_dir):
    """Restore re-arms running reminders and drops finished ones."""
    data_dir.mkdir(parents=True)
    (data_dir / "reminders.json").write_text(json.dumps([
        # 10 of 30 minutes elapsed
        {"chatId": CHAT_ID, "machineType": "washer", "startTime": "2026-03-01T11:50:00.000Z"},
        # 90 of 60 minutes elapsed
        {"chatId": CHAT_ID, "machineType": "dryer", "startTime": "2026-03-01T10:30:00.000Z"},
    ]))

    async def scenario():
        h = await make_harness(number=0)
        restored = await h.scheduler.restore()

        assert restored == 1
        assert [r.machine_type for r in h.store.all()] == ["washer"]
        assert h.gateway.sent == []

        rows = json.loads((data_dir / "reminders.json").read_text())
        assert [row["machineType"] for row in rows] == ["washer"]

        await h.timers.advance(minutes=19, seconds=59)
        assert h.gateway.sent == []
        await h.timers.advance(seconds=1)
        assert h.gateway.minutes_sent() == [20]
        assert h.store.all() == []

    asyncio.run(scenario())


def test_restore_does_not_rewrite_file_for_rearmed_reminders(make_harness, data_dir, monkeypatch):
    """Re-arming does not touch the file."""
    data_dir.mkdir(parents=True)
    (data_dir / "reminders.json").write_text(json.dumps([
        {"chatId": CHAT_ID, "machineType": "washer", "startTime": "2026-03-01T11:50:00+00:00"},
    ]))
    writes = []
    monkeypatch.setattr(
        "machinebell.db.reminder_store.write_json_atomic",
        lambda path, payload: writes.append(payload),
    )

    async def scenario():
        h = await make_harness(number=0)
        await h.scheduler.restore()
        assert writes == []

    asyncio.run(scenario())


def test_restore_drops_reminders_of_unknown_machines(make_harness, data_dir, caplog):
    """Reminders of machines no longer configured are dropped."""
    data_dir.mkdir(parents=True)
    (data_dir / "reminders.json").write_text(json.dumps([
        {"chatId": CHAT_ID, "machineType": "dishwasher", "startTime": "2026-03-01T11:55:00Z"},
    ]))

    async def scenario():
        h = await make_harness(number=0)
        with caplog.at_level(logging.ERROR):
            restored = await h.scheduler.restore()

        assert restored == 0
        assert h.store.all() == []
        assert "dishwasher" in caplog.text

    asyncio.run(scenario())


def test_failed_due_notice_skips_escalation(make_harness):
    """No escalation starts when the due notice fails."""

    async def scenario():
        h = await make_harness(number=2)
        await h.scheduler.start(CHAT_ID, "washer", T0)
        h.gateway.fail = True

        await h.timers.advance(minutes=30)

        assert h.store.all() == []
        assert h.escalation.active_sessions == []

    asyncio.run(scenario())


def test_concurrent_starts_keep_one_reminder(make_harness):
    """Overlapping starts of one machine leave one stored reminder and one timer."""

    async def scenario():
        h = await make_harness(number=0)
        results = await asyncio.gather(
            h.scheduler.start(CHAT_ID, "washer", T0),
            h.scheduler.start(CHAT_ID, "washer", T0 + timedelta(minutes=1)),
            h.scheduler.start(CHAT_ID, "washer", T0 + timedelta(minutes=2)),
        )

        [reminder] = h.store.all()
        assert reminder is results[-1]
        assert h.timers.pending == [reminder.timer]
        assert all(r.timer.cancelled for r in results[:-1])

        await h.timers.advance(hours=1)
        assert h.gateway.minutes_sent() == [32]
        assert h.scheduler.lock_count == 0

    asyncio.run(scenario())


def test_stop_waiting_for_firing_timer_finds_nothing(make_harness):
    """A timer that got the lock first sends its notice; the stop then finds nothing."""

    async def scenario():
        h = await make_harness(number=0)
        await h.scheduler.start(CHAT_ID, "washer", T0)

        _, stopped = await asyncio.gather(
            h.timers.advance(minutes=30),
            h.scheduler.stop(CHAT_ID, USER_ID, "washer"),
        )

        assert stopped is None
        assert h.gateway.minutes_sent() == [30]
        assert h.stats.count_of(CHAT_ID, USER_ID, "stopped") == 0
        assert h.store.all() == []

    asyncio.run(scenario())


def test_timer_waiting_for_stop_is_ignored(make_harness):
    """A stop that got the lock first wins; the timer behind it sends nothing."""

    async def scenario():
        h = await make_harness(number=0)
        started = await h.scheduler.start(CHAT_ID, "washer", T0)

        stopped, _ = await asyncio.gather(
            h.scheduler.stop(CHAT_ID, USER_ID, "washer"),
            h.timers.advance(minutes=30),
        )

        assert stopped is started
        assert h.gateway.sent == []
        assert h.stats.count_of(CHAT_ID, USER_ID, "stopped") == 1
        assert h.store.all() == []
        assert h.scheduler.lock_count == 0

    asyncio.run(scenario())


def test_locks_are_dropped_after_use(make_harness):
    """No lock outlives the operations on its key."""

    async def scenario():
        h = await make_harness(number=0)
        await h.scheduler.start(CHAT_ID, "washer", T0)
        await h.scheduler.start(CHAT_ID, "dryer", T0)
        assert h.scheduler.lock_count == 0

        await h.scheduler.stop(CHAT_ID, USER_ID, "dryer")
        await h.timers.advance(hours=1)
        assert h.scheduler.lock_count == 0

    asyncio.run(scenario())


def test_restore_of_repeated_rows_leaves_key_usable(make_harness, data_dir):
    """Repeated rows for one machine re-arm once, and a later start still works."""
    data_dir.mkdir(parents=True)
    row = {"chatId": CHAT_ID, "machineType": "washer", "startDate": "2026-03-01T11:50:00.000Z"}
    (data_dir / "reminders.json").write_text(json.dumps([row, row]))

    async def scenario():
        h = await make_harness(number=0)
        assert await h.scheduler.restore() == 1
        assert len(h.timers.pending) == 1

        reminder = await h.scheduler.start(CHAT_ID, "washer", T0)
        assert h.store.all() == [reminder]
        assert h.timers.pending == [reminder.timer]

    asyncio.run(scenario())
