"""Stats recorder - append-only usage statistics per chat and user."""

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Callable

from machinebell.db.files import (
    CorruptDataFileError,
    ensure_data_file,
    read_json_list,
    write_json_atomic,
)
from machinebell.db.models import STATS_KINDS, ChatStats, StatsEntry, StatsKind, UserStats
from machinebell.utils.time_utils import format_timestamp, parse_timestamp, utc_now

logger = logging.getLogger(__name__)


class StatsRecorder:
    """Records started/stopped/accepted events.

    Entries are only ever appended. The whole dataset is rewritten after
    every append.
    """

    def __init__(self, path: Path, clock: Callable[[], datetime] = utc_now):
        self.path = path
        self._clock = clock
        self._chats: list[ChatStats] = []
        self._write_lock = asyncio.Lock()

    async def load(self) -> None:
        """Load persisted stats, creating the file if it is missing."""
        await asyncio.to_thread(ensure_data_file, self.path)
        rows = await asyncio.to_thread(read_json_list, self.path)
        self._chats = [self._row_to_chat(row) for row in rows]
        logger.info(f"Loaded stats of {len(self._chats)} chats from {self.path}")

    async def record(
        self,
        chat_id: int,
        user_id: int,
        machine_type: str,
        kind: StatsKind,
        attempt_number: int | None = None,
    ) -> StatsEntry:
        """Append one event and persist.

        Raises:
            ValueError: on an unknown kind, or an accepted event without
                an attempt number
        """
        if kind not in STATS_KINDS:
            raise ValueError(f"Unknown stats kind: {kind!r}")
        if kind == "accepted" and attempt_number is None:
            raise ValueError("An accepted event requires an attempt number")

        entry = StatsEntry(
            date=self._clock(),
            machine_type=machine_type,
            attempt_number=attempt_number if kind == "accepted" else None,
        )

        async with self._write_lock:
            chat = self._find_chat(chat_id)
            new_chat = chat is None
            if chat is None:
                logger.info(f"Create new chat entry (chat_id={chat_id})")
                chat = ChatStats(chat_id=chat_id)
                self._chats.append(chat)

            user = self._find_user(chat, user_id)
            new_user = user is None
            if user is None:
                logger.info(f"Create new user entry (chat_id={chat_id}, user_id={user_id})")
                user = UserStats(user_id=user_id)
                chat.user_stats.append(user)

            entries = user.entries(kind)
            entries.append(entry)
            try:
                await self._write()
            except OSError:
                # Nothing else appends while the lock is held
                entries.pop()
                if new_user:
                    chat.user_stats.pop()
                if new_chat:
                    self._chats.pop()
                raise

        logger.debug(
            f"Recorded {kind} event (chat_id={chat_id}, user_id={user_id}, "
            f"machine_type={machine_type!r})"
        )
        return entry

    def entries_of(self, chat_id: int, user_id: int, kind: StatsKind) -> list[StatsEntry]:
        """Get a copy of the recorded events of a kind, oldest first."""
        chat = self._find_chat(chat_id)
        user = self._find_user(chat, user_id) if chat else None
        return list(user.entries(kind)) if user else []

    def count_of(
        self,
        chat_id: int,
        user_id: int,
        kind: StatsKind,
        machine_type: str | None = None,
    ) -> int:
        """Number of events of a kind, optionally limited to one machine."""
        entries = self.entries_of(chat_id, user_id, kind)
        if machine_type is None:
            return len(entries)
        return sum(1 for e in entries if e.machine_type == machine_type)

    def _find_chat(self, chat_id: int) -> ChatStats | None:
        return next((c for c in self._chats if c.chat_id == chat_id), None)

    def _find_user(self, chat: ChatStats, user_id: int) -> UserStats | None:
        return next((u for u in chat.user_stats if u.user_id == user_id), None)

    async def _write(self) -> None:
        snapshot = [self._chat_to_row(c) for c in self._chats]
        await asyncio.to_thread(write_json_atomic, self.path, snapshot)

    # Helper methods

    def _chat_to_row(self, chat: ChatStats) -> dict:
        return {
            "chatId": chat.chat_id,
            "userStats": [
                {
                    "userId": user.user_id,
                    "started": [self._entry_to_row(e) for e in user.started],
                    "accepted": [self._entry_to_row(e) for e in user.accepted],
                    "stopped": [self._entry_to_row(e) for e in user.stopped],
                }
                for user in chat.user_stats
            ],
        }

    def _entry_to_row(self, entry: StatsEntry) -> dict:
        row = {"date": format_timestamp(entry.date), "machineType": entry.machine_type}
        if entry.attempt_number is not None:
            row["attemptNumber"] = entry.attempt_number
        return row

    def _row_to_chat(self, row: dict) -> ChatStats:
        """Convert a file row to a ChatStats object."""
        try:
            return ChatStats(
                chat_id=int(row["chatId"]),
                user_stats=[
                    UserStats(
                        user_id=int(user["userId"]),
                        started=[self._row_to_entry(e) for e in user.get("started", [])],
                        accepted=[
                            self._row_to_entry(e, accepted=True)
                            for e in user.get("accepted", [])
                        ],
                        stopped=[self._row_to_entry(e) for e in user.get("stopped", [])],
                    )
                    for user in row["userStats"]
                ],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptDataFileError(self.path, f"invalid chat stats {row!r}") from e

    def _row_to_entry(self, row: dict, accepted: bool = False) -> StatsEntry:
        attempt_number = None
        if accepted:
            # Older files used "try"
            attempt_number = int(row["attemptNumber"] if "attemptNumber" in row else row["try"])
        return StatsEntry(
            date=parse_timestamp(row["date"]),
            machine_type=str(row["machineType"]),
            attempt_number=attempt_number,
        )
