"""Reminder store - the active reminders, persisted to a JSON file."""

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from machinebell.db.files import (
    CorruptDataFileError,
    ensure_data_file,
    read_json_list,
    write_json_atomic,
)
from machinebell.db.models import Reminder
from machinebell.utils.time_utils import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)


class ReminderStore:
    """Owns the active reminders.

    Every mutation rewrites the whole file before it returns, so the file
    always equals the in-memory reminders minus their timer handles.
    """

    def __init__(self, path: Path):
        self.path = path
        self._reminders: list[Reminder] = []
        self._write_lock = asyncio.Lock()

    async def load(self) -> None:
        """Load persisted reminders, creating the file if it is missing.

        Rows repeating a chat and machine are collapsed to the one with the
        latest start time and the file is rewritten.
        """
        await asyncio.to_thread(ensure_data_file, self.path)
        rows = await asyncio.to_thread(read_json_list, self.path)
        loaded = [self._row_to_reminder(row) for row in rows]

        by_key: dict[tuple[int, str], Reminder] = {}
        for reminder in loaded:
            kept = by_key.get(reminder.key)
            if kept is None or reminder.start_time > kept.start_time:
                by_key[reminder.key] = reminder
        self._reminders = [r for r in loaded if by_key[r.key] is r]

        dropped = [r for r in loaded if by_key[r.key] is not r]
        for reminder in dropped:
            logger.warning(
                f"Dropping duplicate persisted reminder (chat_id={reminder.chat_id}, "
                f"machine_type={reminder.machine_type!r}, start_time={reminder.start_time})"
            )
        if dropped:
            async with self._write_lock:
                await self._write()

        logger.info(f"Loaded {len(self._reminders)} reminders from {self.path}")

    def find(self, chat_id: int, machine_type: str) -> Reminder | None:
        """Get the active reminder for a chat and machine."""
        for reminder in self._reminders:
            if reminder.chat_id == chat_id and reminder.machine_type == machine_type:
                return reminder
        return None

    def all(self) -> list[Reminder]:
        """Get a copy of all active reminders."""
        return list(self._reminders)

    async def add(self, chat_id: int, machine_type: str, start_time: datetime) -> Reminder:
        """Add a reminder and persist.

        Raises:
            ValueError: if a reminder for the same chat and machine exists
        """
        async with self._write_lock:
            if self.find(chat_id, machine_type) is not None:
                raise ValueError(
                    f"Reminder already exists (chat_id={chat_id}, machine_type={machine_type!r})"
                )

            reminder = Reminder(chat_id=chat_id, machine_type=machine_type, start_time=start_time)
            self._reminders.append(reminder)
            try:
                await self._write()
            except OSError:
                self._reminders.pop()
                raise

        logger.info(f"Added reminder (chat_id={chat_id}, machine_type={machine_type!r})")
        return reminder

    async def remove(self, chat_id: int, machine_type: str) -> bool:
        """Cancel and remove a reminder and persist.

        Returns:
            False if there was no such reminder
        """
        async with self._write_lock:
            reminder = self.find(chat_id, machine_type)
            if reminder is None:
                logger.warning(
                    f"Reminder to remove was not found (chat_id={chat_id}, machine_type={machine_type!r})"
                )
                return False

            index = self._reminders.index(reminder)
            del self._reminders[index]
            try:
                await self._write()
            except OSError:
                self._reminders.insert(index, reminder)
                raise

        if reminder.timer is not None:
            reminder.timer.cancel()

        logger.info(f"Removed reminder (chat_id={chat_id}, machine_type={machine_type!r})")
        return True

    def attach_timer(self, reminder: Reminder, timer: Any) -> None:
        """Set the transient timer handle of a stored reminder (no write)."""
        if reminder not in self._reminders:
            raise ValueError("Reminder is not in the store")
        reminder.timer = timer

    async def _write(self) -> None:
        # Callers hold _write_lock
        snapshot = [self._reminder_to_row(r) for r in self._reminders]
        await asyncio.to_thread(write_json_atomic, self.path, snapshot)

    # Helper methods

    def _reminder_to_row(self, reminder: Reminder) -> dict:
        return {
            "chatId": reminder.chat_id,
            "machineType": reminder.machine_type,
            "startTime": format_timestamp(reminder.start_time),
        }

    def _row_to_reminder(self, row: dict) -> Reminder:
        """Convert a file row to a Reminder object."""
        try:
            # Older files used "startDate"
            start = row["startTime"] if "startTime" in row else row["startDate"]
            return Reminder(
                chat_id=int(row["chatId"]),
                machine_type=str(row["machineType"]),
                start_time=parse_timestamp(start),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptDataFileError(self.path, f"invalid reminder {row!r}") from e
