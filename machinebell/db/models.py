"""Data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal


StatsKind = Literal["started", "stopped", "accepted"]

STATS_KINDS: tuple[str, ...] = ("started", "stopped", "accepted")


class Language(str, Enum):
    """Supported end user languages."""

    DE = "de"
    EN = "en"


@dataclass(frozen=True)
class ReminderCommandDef:
    """A configured machine and the texts of its commands."""

    id: str
    wait_time_in_min: int
    name: dict[str, str]
    command_suffix: dict[str, str]

    def display_name(self, language: Language) -> str:
        return self.name[language.value]

    def suffix(self, language: Language) -> str:
        return self.command_suffix[language.value]


@dataclass(eq=False)
class Reminder:
    """An armed reminder for one chat and one machine.

    Compared by identity: a reminder replaced under the same key is a
    different reminder even though its fields may match.
    """

    chat_id: int
    machine_type: str
    start_time: datetime  # UTC, date of the triggering message
    timer: Any = None  # TimerHandle, never persisted

    @property
    def key(self) -> tuple[int, str]:
        return (self.chat_id, self.machine_type)


@dataclass
class StatsEntry:
    """One usage event."""

    date: datetime  # UTC
    machine_type: str
    attempt_number: int | None = None  # only for accepted events


@dataclass
class UserStats:
    """Usage events of one user in one chat."""

    user_id: int
    started: list[StatsEntry] = field(default_factory=list)
    accepted: list[StatsEntry] = field(default_factory=list)
    stopped: list[StatsEntry] = field(default_factory=list)

    def entries(self, kind: StatsKind) -> list[StatsEntry]:
        if kind not in STATS_KINDS:
            raise ValueError(f"Unknown stats kind: {kind!r}")
        return getattr(self, kind)


@dataclass
class ChatStats:
    """Usage events of one chat."""

    chat_id: int
    user_stats: list[UserStats] = field(default_factory=list)


@dataclass(frozen=True)
class Reply:
    """A reply to one of the bot's messages."""

    chat_id: int
    message_id: int  # the message that was replied to
    user_id: int
    first_name: str
