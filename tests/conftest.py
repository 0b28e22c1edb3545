"""Shared fakes: a manual clock with timers and an in-memory gateway."""

import itertools
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest

from machinebell.bot.gateway import GatewayError, ReplyRegistry
from machinebell.config import BotConfig
from machinebell.db.models import Language, ReminderCommandDef, Reply
from machinebell.db.reminder_store import ReminderStore
from machinebell.db.stats_recorder import StatsRecorder
from machinebell.engine.escalation import EscalationController
from machinebell.engine.scheduler import ReminderScheduler

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=ZoneInfo("UTC"))
CHAT_ID = -1001
USER_ID = 7

WASHER = ReminderCommandDef(
    id="washer",
    wait_time_in_min=30,
    name={"de": "Waschmaschine", "en": "Washing machine"},
    command_suffix={"de": "waschmaschine", "en": "washer"},
)
DRYER = ReminderCommandDef(
    id="dryer",
    wait_time_in_min=60,
    name={"de": "Trockner", "en": "Dryer"},
    command_suffix={"de": "trockner", "en": "dryer"},
)


class FakeTimerHandle:
    def __init__(self, due: datetime, name: str | None):
        self.due = due
        self.name = name
        self.fired = False
        self.cancelled = False

    def cancel(self) -> None:
        if self.fired or self.cancelled:
            return
        self.cancelled = True


class FakeTimers:
    """Timers on a manual clock. Time only moves in advance()."""

    def __init__(self, now: datetime):
        self.now = now
        self._entries: list = []
        self._seq = itertools.count()

    def clock(self) -> datetime:
        return self.now

    def call_later(self, delay, callback, name=None) -> FakeTimerHandle:
        handle = FakeTimerHandle(self.now + timedelta(seconds=max(delay, 0)), name)
        self._entries.append((handle.due, next(self._seq), handle, callback))
        return handle

    @property
    def pending(self) -> list[FakeTimerHandle]:
        return [e[2] for e in self._entries if not e[2].fired and not e[2].cancelled]

    async def advance(self, **delta) -> None:
        """Move the clock forward, running due callbacks in order."""
        target = self.now + timedelta(**delta)
        while True:
            due = [
                e for e in self._entries
                if e[0] <= target and not e[2].fired and not e[2].cancelled
            ]
            if not due:
                break
            entry = min(due, key=lambda e: (e[0], e[1]))
            self._entries.remove(entry)
            self.now = entry[0]
            entry[2].fired = True
            await entry[3]()
        self.now = target


@dataclass
class SentMessage:
    chat_id: int
    message_id: int
    text: str
    sent_at: datetime


class FakeGateway(ReplyRegistry):
    """Gateway that records sent messages instead of sending them."""

    def __init__(self, clock):
        super().__init__()
        self._clock = clock
        self._message_ids = itertools.count(100)
        self.sent: list[SentMessage] = []
        self.fail = False

    async def send_message(self, chat_id, text, parse_mode=None) -> int:
        if self.fail:
            raise GatewayError("network down")
        message_id = next(self._message_ids)
        self.sent.append(SentMessage(chat_id, message_id, text, self._clock()))
        return message_id

    async def reply_to(
        self, message_id: int, user_id: int = USER_ID, first_name: str = "Anna",
        chat_id: int = CHAT_ID,
    ) -> int:
        return await self.dispatch(Reply(chat_id, message_id, user_id, first_name))

    def minutes_sent(self) -> list[float]:
        """Send times in minutes after T0."""
        return [(m.sent_at - T0).total_seconds() / 60 for m in self.sent]


def make_config(number: int = 2, interval: int = 10, language: Language = Language.DE) -> BotConfig:
    return BotConfig(
        token="123:abc",
        require_reply_number_of_reminder_messages=number,
        require_reply_time_between_reminder_messages_in_min=interval,
        language=language,
        reminder_commands=(WASHER, DRYER),
        timezone="Europe/Berlin",
    )


@dataclass
class Harness:
    config: BotConfig
    timers: FakeTimers
    gateway: FakeGateway
    store: ReminderStore
    stats: StatsRecorder
    escalation: EscalationController
    scheduler: ReminderScheduler


@pytest.fixture
def data_dir(tmp_path) -> Path:
    return tmp_path / "data"


@pytest.fixture
def make_harness(data_dir):
    """Factory for a fully wired engine; call it inside the event loop."""

    async def make(number: int = 2, interval: int = 10, now: datetime = T0) -> Harness:
        config = make_config(number, interval)
        timers = FakeTimers(now)
        gateway = FakeGateway(timers.clock)
        store = ReminderStore(data_dir / "reminders.json")
        await store.load()
        stats = StatsRecorder(data_dir / "stats.json", clock=timers.clock)
        await stats.load()
        escalation = EscalationController(
            gateway, timers, stats, config.language, max_attempts=number, interval_minutes=interval
        )
        scheduler = ReminderScheduler(
            config, store, stats, gateway, timers, escalation, clock=timers.clock
        )
        return Harness(config, timers, gateway, store, stats, escalation, scheduler)

    return make
