"""
Telegram Gateway Module

Registers the command event handler and hands every prefixed
message to the command dispatcher.
"""

from __future__ import annotations

import logging
import re

from telethon import events

from ciri.bot.commands import CommandDispatcher
from ciri.telegram.client import TelegramSession

logger = logging.getLogger(__name__)


class Gateway:
    """
    Telegram event gateway.

    Listens for messages starting with the command prefix in any chat
    the bot is in and routes them to the dispatcher.
    """

    def __init__(self, session: TelegramSession, dispatcher: CommandDispatcher):
        self.session = session
        self.dispatcher = dispatcher

    async def start(self) -> None:
        """Register event handlers and start listening."""
        client = self.session.client
        pattern = re.compile(rf"^{re.escape(self.dispatcher.prefix)}\w")

        @client.on(events.NewMessage(pattern=pattern))
        async def on_command(event: events.NewMessage.Event):
            """Handle every prefixed message."""
            message = event.message

            me = self.session.me
            if me and message.sender_id == me.id:
                return

            try:
                await self.dispatcher.dispatch(message)
            except Exception as e:
                logger.error(
                    f"Dispatch error for msg {message.id}: {e}", exc_info=True
                )

        logger.info(
            f"Gateway started, listening for commands: "
            f"{', '.join(self.dispatcher.prefix + c for c in self.dispatcher.commands)}"
        )

    async def run_until_disconnected(self) -> None:
        """Block until the Telegram client disconnects."""
        await self.session.client.run_until_disconnected()
