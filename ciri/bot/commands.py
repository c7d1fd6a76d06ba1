"""
Command Dispatcher Module

Parses prefixed chat commands and runs their handlers:
  - ping                → round-trip latency
  - pr0 <tags...>       → random unseen gallery item for the tags
  - <alias>             → pr0 with a fixed tag list from config

Posted items are remembered per chat in the dedup cache, so the
same item is not posted to the same chat twice within its window.
"""

from __future__ import annotations

import html
import logging
import random
import time
from dataclasses import dataclass, field
from functools import partial
from typing import Awaitable, Callable, Optional, Sequence

from ciri.dedup.cache import ScopedCache
from ciri.dedup.saver import SaveCoordinator
from ciri.errors import GalleryError, NoImageFound
from ciri.gallery.client import GalleryClient, GalleryItem

logger = logging.getLogger(__name__)

Handler = Callable[[object, list[str]], Awaitable[None]]


@dataclass
class Command:
    """A parsed chat command."""
    name: str
    args: list[str] = field(default_factory=list)


def parse_command(text: str, prefix: str = ".") -> Optional[Command]:
    """
    Split `.name arg1 arg2` into a Command.

    Returns None if the text is not a command. A trailing `@botname`
    on the command name is dropped.
    """
    if not text or not text.startswith(prefix):
        return None
    parts = text[len(prefix):].split()
    if not parts:
        return None
    name = parts[0].split("@", 1)[0].lower()
    if not name:
        return None
    return Command(name=name, args=parts[1:])


async def describe_sender(message) -> tuple[str, int]:
    """Best-effort display name and id of the message author."""
    sender = None
    try:
        sender = await message.get_sender()
    except Exception as e:
        logger.debug(f"Could not resolve sender: {e}")

    name = ""
    if sender is not None:
        name = (
            getattr(sender, "first_name", None)
            or getattr(sender, "username", None)
            or getattr(sender, "title", None)
            or ""
        )
    return name or "someone", message.sender_id or 0


class CommandDispatcher:
    """
    Routes chat commands to handlers.

    Handler errors are logged and answered in chat; they never escape
    `dispatch()`.
    """

    def __init__(
        self,
        cache: ScopedCache,
        saver: SaveCoordinator,
        gallery: GalleryClient,
        prefix: str = ".",
        aliases: Optional[dict[str, list[str]]] = None,
        check_alive: bool = True,
        max_alive_attempts: int = 3,
        rng: Optional[random.Random] = None,
    ):
        self.cache = cache
        self.saver = saver
        self.gallery = gallery
        self.prefix = prefix
        self.check_alive = check_alive
        self.max_alive_attempts = max_alive_attempts
        self._rng = rng or random.Random()

        self._handlers: dict[str, Handler] = {
            "ping": self.ping,
            "pr0": self.pr0,
        }
        for name, tags in (aliases or {}).items():
            key = name.lower()
            if key in self._handlers:
                logger.warning(f"Alias '{name}' shadows an existing command, skipped")
                continue
            if not tags:
                logger.warning(f"Alias '{name}' has no tags, skipped")
                continue
            self._handlers[key] = partial(self._alias, list(tags))

    @property
    def commands(self) -> list[str]:
        return sorted(self._handlers)

    async def dispatch(self, message) -> bool:
        """Handle `message` if it is a known command. Returns True if handled."""
        command = parse_command(message.text or "", self.prefix)
        if command is None:
            return False

        handler = self._handlers.get(command.name)
        if handler is None:
            return False

        name, _ = await describe_sender(message)
        logger.info(f"CMD {name} ({message.sender_id}): {message.text}")

        try:
            await handler(message, command.args)
        except Exception as e:
            logger.error(f"failed: {command.name}: {e}", exc_info=True)
            try:
                await message.reply("⚠️ Something went wrong, try again later.")
            except Exception as reply_error:
                logger.error(f"Failed to reply: {reply_error}")
        return True

    async def ping(self, message, args: list[str]) -> None:
        started = time.monotonic()
        reply = await message.reply("Pong!")
        latency_ms = (time.monotonic() - started) * 1000
        await reply.edit(f"Pong! Latency: {latency_ms:.3f} ms")

    async def pr0(self, message, args: list[str]) -> None:
        if not args:
            await message.reply(f"Usage: {self.prefix}pr0 <tag> [tag...]")
            return
        await self.search(message, args)

    async def _alias(self, tags: list[str], message, args: list[str]) -> None:
        await self.search(message, tags)

    async def search(self, message, tags: Sequence[str]) -> None:
        """
        Post a random item for `tags` that this chat has not seen yet.

        The item is recorded in the cache only after it was delivered.
        """
        scope = message.chat_id
        status = await message.reply(f"Searching for {tags[0]}...")

        try:
            item = await self.pick(scope, tags)
        except GalleryError as e:
            logger.error(f"failed: search {list(tags)}: {e}")
            await status.edit(f"⚠️ {e}")
            return

        url = self.gallery.item_url(item)
        name, sender_id = await describe_sender(message)
        logger.info(f"Posting {url} to {scope}")
        await status.edit(
            f'<a href="tg://user?id={sender_id}">{html.escape(name)}</a>: '
            f"{html.escape(url)}",
            parse_mode="html",
        )

        self.cache.insert(scope, item.id)
        self.saver.notify()

    async def pick(self, scope: int, tags: Sequence[str]) -> GalleryItem:
        """
        Choose a random unseen item for `scope`.

        Raises NoImageFound when every hit was already posted (or dead).
        """
        items = await self.gallery.fetch(tags)
        unseen = set(self.cache.filter_unseen(scope, [i.id for i in items]))
        candidates = [i for i in items if i.id in unseen]
        logger.debug(
            f"Scope {scope}: {len(candidates)}/{len(items)} unseen for {list(tags)}"
        )

        attempts = self.max_alive_attempts if self.check_alive else 1
        while candidates and attempts > 0:
            item = self._rng.choice(candidates)
            if not self.check_alive:
                return item
            if await self.gallery.is_alive(self.gallery.item_url(item)):
                return item
            logger.info(f"Item {item.id} is not reachable, picking another")
            candidates.remove(item)
            attempts -= 1

        raise NoImageFound("no image found")
