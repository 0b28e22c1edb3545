"""Escalation - nudging a chat until someone replies to a due reminder.

A session starts when a reminder fires and the due notice has been sent.
It moves through these states:

- ARMED: a reply listener is registered on the due notice and the
  interval timer is running.
- RETRY: the interval passed without a reply and attempts are left. A
  nudge is sent, a listener is registered on it as well, the attempt
  counter goes up and the timer is re-armed.
- ACKNOWLEDGED: a reply to any of the notices arrived. The attempt
  counter at that moment is recorded as an accepted event.
- GIVEN_UP: the interval passed with no attempts left. A give-up notice
  is sent.

Both terminal states deregister every listener and cancel the timer
before anything is awaited, so the first reply wins and later replies
find no listener.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from functools import partial

from machinebell.bot.formatters import (
    format_accepted_message,
    format_give_up,
    format_nudge,
)
from machinebell.bot.gateway import GatewayError, NotificationGateway
from machinebell.db.models import Language, ReminderCommandDef, Reply
from machinebell.db.stats_recorder import StatsRecorder
from machinebell.engine.timers import TimerHandle, Timers

logger = logging.getLogger(__name__)


class EscalationState(str, Enum):
    ARMED = "armed"
    RETRY = "retry"
    ACKNOWLEDGED = "acknowledged"
    GIVEN_UP = "given_up"


@dataclass(eq=False)
class EscalationSession:
    """Escalation of one fired reminder. Never persisted."""

    chat_id: int
    command: ReminderCommandDef
    state: EscalationState = EscalationState.ARMED
    attempts_used: int = 0
    acknowledged: bool = False
    pending_listener_ids: list[int] = field(default_factory=list)
    timer: TimerHandle | None = None

    @property
    def machine_type(self) -> str:
        return self.command.id

    @property
    def resolved(self) -> bool:
        return self.state in (EscalationState.ACKNOWLEDGED, EscalationState.GIVEN_UP)


class EscalationController:
    """Runs the escalation sessions of fired reminders."""

    def __init__(
        self,
        gateway: NotificationGateway,
        timers: Timers,
        stats: StatsRecorder,
        language: Language,
        max_attempts: int,
        interval_minutes: int,
    ):
        self._gateway = gateway
        self._timers = timers
        self._stats = stats
        self.language = language
        self.max_attempts = max_attempts
        self.interval_seconds = interval_minutes * 60
        self._sessions: list[EscalationSession] = []

    @property
    def active_sessions(self) -> list[EscalationSession]:
        return list(self._sessions)

    async def begin(
        self, chat_id: int, command: ReminderCommandDef, notice_message_id: int
    ) -> EscalationSession | None:
        """Start escalating a due notice that was just sent.

        Returns:
            The new session, or None if escalation is disabled
        """
        if self.max_attempts <= 0:
            return None

        session = EscalationSession(chat_id=chat_id, command=command)
        self._sessions.append(session)
        self._listen(session, notice_message_id)
        self._arm(session)

        logger.info(
            f"Escalation armed (chat_id={chat_id}, machine_type={command.id!r}, "
            f"max_attempts={self.max_attempts})"
        )
        return session

    def _listen(self, session: EscalationSession, message_id: int) -> None:
        listener_id = self._gateway.on_reply(
            session.chat_id, message_id, partial(self._acknowledge, session)
        )
        session.pending_listener_ids.append(listener_id)

    def _arm(self, session: EscalationSession) -> None:
        session.timer = self._timers.call_later(
            self.interval_seconds,
            partial(self._on_interval, session),
            name=f"escalation:{session.chat_id}:{session.machine_type}",
        )

    async def _on_interval(self, session: EscalationSession) -> None:
        """Interval timer expired without a reply."""
        if session.resolved:
            return

        if session.attempts_used >= self.max_attempts:
            await self._give_up(session)
            return

        session.state = EscalationState.RETRY
        session.attempts_used += 1

        try:
            message_id = await self._gateway.send_message(
                session.chat_id,
                format_nudge(session.command, self.language, session.attempts_used),
                parse_mode="HTML",
            )
        except GatewayError as e:
            # The attempt still counts so the loop stays bounded
            logger.error(f"Failed to send nudge #{session.attempts_used}: {e}")
        else:
            logger.info(
                f"Sent nudge #{session.attempts_used} (chat_id={session.chat_id}, "
                f"machine_type={session.machine_type!r})"
            )
            if not session.resolved:
                self._listen(session, message_id)

        if not session.resolved:
            self._arm(session)

    async def _acknowledge(self, session: EscalationSession, reply: Reply) -> None:
        """A reply arrived on one of the session's notices."""
        if session.resolved:
            return

        attempt_number = session.attempts_used
        session.acknowledged = True
        session.state = EscalationState.ACKNOWLEDGED
        self._close(session)

        logger.info(
            f"User {reply.user_id} accepted {session.machine_type!r} in chat "
            f"{session.chat_id} after {attempt_number} nudges"
        )

        await self._stats.record(
            session.chat_id,
            reply.user_id,
            session.machine_type,
            "accepted",
            attempt_number=attempt_number,
        )
        count = self._stats.count_of(
            session.chat_id, reply.user_id, "accepted", session.machine_type
        )

        try:
            await self._gateway.send_message(
                session.chat_id,
                format_accepted_message(session.command, self.language, reply.first_name, count),
                parse_mode="HTML",
            )
        except GatewayError as e:
            logger.error(f"Failed to confirm acceptance: {e}")

    async def _give_up(self, session: EscalationSession) -> None:
        session.state = EscalationState.GIVEN_UP
        self._close(session)

        logger.info(
            f"Giving up on {session.machine_type!r} in chat {session.chat_id} "
            f"after {session.attempts_used} nudges"
        )

        try:
            await self._gateway.send_message(session.chat_id, format_give_up(self.language))
        except GatewayError as e:
            logger.error(f"Failed to send give-up notice: {e}")

    def _close(self, session: EscalationSession) -> None:
        """Deregister all listeners and cancel the timer of a resolved session."""
        for listener_id in session.pending_listener_ids:
            self._gateway.remove_reply_listener(listener_id)
        session.pending_listener_ids.clear()

        if session.timer is not None:
            session.timer.cancel()
            session.timer = None

        if session in self._sessions:
            self._sessions.remove(session)
