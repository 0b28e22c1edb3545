"""Notification gateway - sending messages and observing replies."""

import itertools
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol

from telegram import Bot, Update
from telegram.error import TelegramError
from telegram.ext import ContextTypes

from machinebell.db.models import Reply

logger = logging.getLogger(__name__)

ReplyCallback = Callable[[Reply], Awaitable[None]]


class GatewayError(Exception):
    """A message could not be delivered."""


class NotificationGateway(Protocol):
    async def send_message(
        self, chat_id: int, text: str, parse_mode: str | None = None
    ) -> int:
        """Send a message and return its message id."""

    def on_reply(self, chat_id: int, message_id: int, callback: ReplyCallback) -> int:
        """Register a callback for replies to a message, return a listener id."""

    def remove_reply_listener(self, listener_id: int) -> bool:
        """Deregister a reply listener."""


@dataclass
class ReplyListener:
    chat_id: int
    message_id: int
    callback: ReplyCallback


class ReplyRegistry:
    """Bookkeeping of reply listeners, independent of the transport."""

    def __init__(self) -> None:
        self._listeners: dict[int, ReplyListener] = {}
        self._ids = itertools.count(1)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def on_reply(self, chat_id: int, message_id: int, callback: ReplyCallback) -> int:
        listener_id = next(self._ids)
        self._listeners[listener_id] = ReplyListener(chat_id, message_id, callback)
        return listener_id

    def remove_reply_listener(self, listener_id: int) -> bool:
        return self._listeners.pop(listener_id, None) is not None

    async def dispatch(self, reply: Reply) -> int:
        """Call every listener registered for the replied-to message.

        A listener removed by an earlier callback of the same dispatch is
        skipped.

        Returns:
            Number of callbacks called
        """
        matching = [
            listener_id
            for listener_id, listener in self._listeners.items()
            if listener.chat_id == reply.chat_id and listener.message_id == reply.message_id
        ]

        called = 0
        for listener_id in matching:
            listener = self._listeners.get(listener_id)
            if listener is None:
                continue
            await listener.callback(reply)
            called += 1
        return called


class TelegramGateway(ReplyRegistry):
    """Gateway on top of the Telegram Bot API."""

    def __init__(self, bot: Bot):
        super().__init__()
        self._bot = bot

    async def send_message(
        self, chat_id: int, text: str, parse_mode: str | None = None
    ) -> int:
        try:
            message = await self._bot.send_message(
                chat_id=chat_id, text=text, parse_mode=parse_mode
            )
        except TelegramError as e:
            raise GatewayError(f"Failed to send message to chat {chat_id}: {e}") from e
        return message.message_id

    async def handle_reply(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Message handler for replies to any message."""
        message = update.effective_message
        if not message or not message.reply_to_message:
            return

        if message.from_user is None:
            logger.warning(f"Ignoring reply without a sender in chat {message.chat_id}")
            return

        reply = Reply(
            chat_id=message.chat_id,
            message_id=message.reply_to_message.message_id,
            user_id=message.from_user.id,
            first_name=message.from_user.first_name,
        )
        await self.dispatch(reply)
