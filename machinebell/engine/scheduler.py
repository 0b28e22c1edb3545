"""Reminder scheduler - arms, cancels and fires reminder timers."""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from functools import partial
from typing import Callable

from machinebell.bot.formatters import format_due_notice
from machinebell.bot.gateway import GatewayError, NotificationGateway
from machinebell.config import BotConfig, UnknownMachineError
from machinebell.db.models import Reminder, ReminderCommandDef
from machinebell.db.reminder_store import ReminderStore
from machinebell.db.stats_recorder import StatsRecorder
from machinebell.engine.escalation import EscalationController
from machinebell.engine.timers import Timers
from machinebell.utils.time_utils import minutes, seconds_until, utc_now

logger = logging.getLogger(__name__)


class ReminderScheduler:
    """Keeps one timer per active reminder.

    Operations on the same chat and machine are serialized by a per-key
    lock, including the file writes they cause.
    """

    def __init__(
        self,
        config: BotConfig,
        store: ReminderStore,
        stats: StatsRecorder,
        gateway: NotificationGateway,
        timers: Timers,
        escalation: EscalationController,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._config = config
        self._store = store
        self._stats = stats
        self._gateway = gateway
        self._timers = timers
        self._escalation = escalation
        self._clock = clock
        self._locks: dict[tuple[int, str], asyncio.Lock] = {}
        self._lock_users: dict[tuple[int, str], int] = {}

    @asynccontextmanager
    async def _locked(self, key: tuple[int, str]):
        """Hold the lock of a key; the lock is dropped when nobody uses it."""
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if self._lock_users[key] == 0:
                del self._lock_users[key]
                del self._locks[key]

    @property
    def lock_count(self) -> int:
        """Number of chat/machine keys that currently have a lock."""
        return len(self._locks)

    def due_at(self, reminder: Reminder) -> datetime:
        """When a reminder fires."""
        command = self._config.find_command(reminder.machine_type)
        return reminder.start_time + minutes(command.wait_time_in_min)

    async def start(
        self, chat_id: int, machine_type: str, reference_time: datetime
    ) -> Reminder | None:
        """Arm a reminder, replacing a running one for the same machine.

        Args:
            chat_id: The chat to notify
            machine_type: The configured machine id
            reference_time: Date of the triggering message (UTC)

        Returns:
            The armed reminder, or None if it was already due and the due
            notice was sent right away

        Raises:
            UnknownMachineError: if the machine is not configured
        """
        command = self._config.find_command(machine_type)

        async with self._locked((chat_id, machine_type)):
            if self._store.find(chat_id, machine_type) is not None:
                logger.info(
                    f"Replacing running reminder (chat_id={chat_id}, machine_type={machine_type!r})"
                )
                await self._store.remove(chat_id, machine_type)

            due = reference_time + minutes(command.wait_time_in_min)
            delay = seconds_until(due, self._clock())
            if delay > 0:
                reminder = await self._store.add(chat_id, machine_type, reference_time)
                self._arm(reminder, delay)
                logger.info(
                    f"The reminder will fire in {delay:.0f}s ({round(delay / 60)} min, "
                    f"chat_id={chat_id}, machine_type={machine_type!r})"
                )
                return reminder

        logger.warning(
            f"Reminder is already due (chat_id={chat_id}, machine_type={machine_type!r})"
        )
        await self._notify_due(chat_id, command)
        return None

    def status(self, chat_id: int, machine_type: str) -> Reminder | None:
        """Get the active reminder of a machine, if any."""
        return self._store.find(chat_id, machine_type)

    async def stop(self, chat_id: int, user_id: int, machine_type: str) -> Reminder | None:
        """Cancel an active reminder on behalf of a user.

        Returns:
            The stopped reminder, or None if there was none
        """
        async with self._locked((chat_id, machine_type)):
            reminder = self._store.find(chat_id, machine_type)
            if reminder is None:
                return None

            await self._store.remove(chat_id, machine_type)
            await self._stats.record(chat_id, user_id, machine_type, "stopped")

        logger.info(f"User {user_id} stopped {machine_type!r} in chat {chat_id}")
        return reminder

    async def restore(self) -> int:
        """Re-arm the persisted reminders after a restart.

        Reminders that came due while the process was down are dropped
        without a notification.

        Returns:
            Number of re-armed reminders
        """
        restored = 0
        now = self._clock()

        for reminder in self._store.all():
            async with self._locked(reminder.key):
                try:
                    command = self._config.find_command(reminder.machine_type)
                except UnknownMachineError as e:
                    logger.error(f"Dropping persisted reminder: {e}")
                    await self._store.remove(*reminder.key)
                    continue

                delay = seconds_until(
                    reminder.start_time + minutes(command.wait_time_in_min), now
                )
                if delay <= 0:
                    logger.warning(
                        f"Timer already finished (chat_id={reminder.chat_id}, "
                        f"machine_type={reminder.machine_type!r}), removing it"
                    )
                    await self._store.remove(*reminder.key)
                    continue

                self._arm(reminder, delay)
                restored += 1
                logger.info(
                    f"Restarted timer with {round(delay / 60)} min to go "
                    f"(chat_id={reminder.chat_id}, machine_type={reminder.machine_type!r})"
                )

        return restored

    def _arm(self, reminder: Reminder, delay: float) -> None:
        timer = self._timers.call_later(
            delay,
            partial(self._fire, reminder),
            name=f"reminder:{reminder.chat_id}:{reminder.machine_type}",
        )
        self._store.attach_timer(reminder, timer)

    async def _fire(self, reminder: Reminder) -> None:
        async with self._locked(reminder.key):
            if self._store.find(*reminder.key) is not reminder:
                # Replaced or stopped while this callback was waiting for the lock
                logger.info(
                    f"Ignoring timer of a replaced reminder (chat_id={reminder.chat_id}, "
                    f"machine_type={reminder.machine_type!r})"
                )
                return
            await self._store.remove(*reminder.key)

        command = self._config.find_command(reminder.machine_type)
        await self._notify_due(reminder.chat_id, command)

    async def _notify_due(self, chat_id: int, command: ReminderCommandDef) -> None:
        """Send the due notice and start escalating if replies are required."""
        reply_required = self._config.escalation_enabled

        try:
            message_id = await self._gateway.send_message(
                chat_id,
                format_due_notice(command, self._config.language, reply_required),
                parse_mode="HTML",
            )
        except GatewayError as e:
            logger.error(f"Failed to send due notice for {command.id!r}: {e}")
            return

        logger.info(f"Sent due notice for {command.id!r} to chat {chat_id}")

        if reply_required:
            await self._escalation.begin(chat_id, command, message_id)
