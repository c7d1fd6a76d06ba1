"""Tests for command parsing and dispatch."""

import random
from types import SimpleNamespace

import pytest

from ciri.bot.commands import CommandDispatcher, parse_command
from ciri.dedup.cache import ScopedCache
from ciri.dedup.saver import SaveCoordinator
from ciri.errors import GalleryError
from ciri.gallery.client import GalleryItem


class FakeReply:
    def __init__(self, text):
        self.text = text
        self.edits = []
        self.parse_mode = None

    async def edit(self, text, parse_mode=None):
        self.edits.append(text)
        self.parse_mode = parse_mode
        self.text = text


class FakeMessage:
    def __init__(self, text, chat_id=-100, sender_id=7, first_name="Anna"):
        self.text = text
        self.chat_id = chat_id
        self.sender_id = sender_id
        self._sender = SimpleNamespace(first_name=first_name, username="anna")
        self.replies = []

    async def get_sender(self):
        return self._sender

    async def reply(self, text):
        reply = FakeReply(text)
        self.replies.append(reply)
        return reply


class FakeGallery:
    def __init__(self, items=None, dead=(), error=None):
        self.items = items or []
        self.dead = set(dead)
        self.error = error
        self.fetched = []

    async def fetch(self, tags):
        self.fetched.append(list(tags))
        if self.error:
            raise self.error
        return list(self.items)

    def item_url(self, item):
        return item.url("https://img", "https://vid")

    async def is_alive(self, url):
        return url not in self.dead


class FakeSaver:
    def __init__(self):
        self.notified = 0

    def notify(self):
        self.notified += 1


def items(*ids):
    return [GalleryItem(id=i, image=f"{i}.jpg") for i in ids]


def make_dispatcher(gallery, cache=None, **kwargs):
    cache = cache or ScopedCache(capacity=8)
    saver = FakeSaver()
    dispatcher = CommandDispatcher(
        cache=cache,
        saver=saver,
        gallery=gallery,
        aliases={"kadse": ["kadse", "süßvieh"]},
        rng=random.Random(0),
        **kwargs,
    )
    return dispatcher, cache, saver


@pytest.mark.parametrize(
    "text,expected",
    [
        (".pr0 kadse awww", ("pr0", ["kadse", "awww"])),
        (".PING", ("ping", [])),
        (".kadse@ciri_bot", ("kadse", [])),
        ("  .pr0", None),
        ("hello", None),
        (".", None),
        (". pr0", ("pr0", [])),
        ("", None),
    ],
)
def test_parse_command(text, expected):
    command = parse_command(text, ".")
    if expected is None:
        assert command is None
    else:
        assert (command.name, command.args) == expected


def test_parse_command_custom_prefix():
    assert parse_command("!pr0 x", "!").name == "pr0"
    assert parse_command(".pr0 x", "!") is None


@pytest.mark.asyncio
async def test_search_posts_unseen_item_and_records_it():
    gallery = FakeGallery(items(1, 2, 3))
    dispatcher, cache, saver = make_dispatcher(gallery, check_alive=False)
    cache.insert(-100, 1)
    cache.insert(-100, 2)

    message = FakeMessage(".pr0 kadse")
    assert await dispatcher.dispatch(message)

    status = message.replies[0]
    assert status.edits == ['<a href="tg://user?id=7">Anna</a>: https://img/3.jpg']
    assert cache.contains(-100, 3)
    assert saver.notified == 1
    assert gallery.fetched == [["kadse"]]


@pytest.mark.asyncio
async def test_repeated_searches_never_repeat_until_exhausted():
    gallery = FakeGallery(items(1, 2, 3))
    dispatcher, cache, saver = make_dispatcher(gallery, check_alive=False)

    posted = []
    for _ in range(3):
        message = FakeMessage(".kadse")
        await dispatcher.dispatch(message)
        posted.append(message.replies[0].edits[-1])
    assert len(set(posted)) == 3

    message = FakeMessage(".kadse")
    await dispatcher.dispatch(message)
    assert message.replies[0].edits == ["⚠️ no image found"]
    assert saver.notified == 3


@pytest.mark.asyncio
async def test_seen_items_are_per_chat():
    gallery = FakeGallery(items(1))
    dispatcher, cache, _ = make_dispatcher(gallery, check_alive=False)
    await dispatcher.dispatch(FakeMessage(".kadse", chat_id=1))

    other = FakeMessage(".kadse", chat_id=2)
    await dispatcher.dispatch(other)
    assert other.replies[0].edits[-1].endswith("https://img/1.jpg")


@pytest.mark.asyncio
async def test_alias_uses_configured_tags():
    gallery = FakeGallery(items(5))
    dispatcher, _, _ = make_dispatcher(gallery, check_alive=False)
    message = FakeMessage(".kadse")
    await dispatcher.dispatch(message)
    assert gallery.fetched == [["kadse", "süßvieh"]]
    assert message.replies[0].text == "Searching for kadse..."


@pytest.mark.asyncio
async def test_dead_items_are_skipped():
    gallery = FakeGallery(items(1, 2), dead={"https://img/1.jpg"})
    dispatcher, cache, _ = make_dispatcher(gallery, max_alive_attempts=3)
    message = FakeMessage(".pr0 x")
    await dispatcher.dispatch(message)
    assert message.replies[0].edits[-1].endswith("https://img/2.jpg")
    assert not cache.contains(-100, 1)


@pytest.mark.asyncio
async def test_all_dead_reports_no_image():
    gallery = FakeGallery(items(1, 2), dead={"https://img/1.jpg", "https://img/2.jpg"})
    dispatcher, cache, saver = make_dispatcher(gallery)
    message = FakeMessage(".pr0 x")
    await dispatcher.dispatch(message)
    assert message.replies[0].edits == ["⚠️ no image found"]
    assert cache.total_entries() == 0
    assert saver.notified == 0


@pytest.mark.asyncio
async def test_gallery_error_is_reported_in_chat():
    gallery = FakeGallery(error=GalleryError("gallery fetch failed: HTTP 503"))
    dispatcher, cache, _ = make_dispatcher(gallery)
    message = FakeMessage(".pr0 x")
    assert await dispatcher.dispatch(message)
    assert message.replies[0].edits == ["⚠️ gallery fetch failed: HTTP 503"]
    assert cache.total_entries() == 0


@pytest.mark.asyncio
async def test_unexpected_error_does_not_escape():
    gallery = FakeGallery(error=RuntimeError("boom"))
    dispatcher, _, _ = make_dispatcher(gallery)
    message = FakeMessage(".pr0 x")
    assert await dispatcher.dispatch(message)
    assert message.replies[-1].text.startswith("⚠️ Something went wrong")


@pytest.mark.asyncio
async def test_pr0_requires_tags():
    gallery = FakeGallery(items(1))
    dispatcher, _, _ = make_dispatcher(gallery)
    message = FakeMessage(".pr0")
    await dispatcher.dispatch(message)
    assert message.replies[0].text == "Usage: .pr0 <tag> [tag...]"
    assert gallery.fetched == []


@pytest.mark.asyncio
async def test_ping_reports_latency():
    dispatcher, _, _ = make_dispatcher(FakeGallery())
    message = FakeMessage(".ping")
    await dispatcher.dispatch(message)
    reply = message.replies[0]
    assert reply.edits[0].startswith("Pong! Latency: ")
    assert reply.edits[0].endswith(" ms")


@pytest.mark.asyncio
async def test_unknown_and_plain_messages_are_ignored():
    dispatcher, _, _ = make_dispatcher(FakeGallery())
    assert not await dispatcher.dispatch(FakeMessage(".unknown"))
    assert not await dispatcher.dispatch(FakeMessage("just chatting"))
    assert dispatcher.commands == ["kadse", "ping", "pr0"]


@pytest.mark.asyncio
async def test_search_with_real_saver_persists(tmp_path):
    cache = ScopedCache(capacity=4)
    saver = SaveCoordinator(cache, tmp_path / "cache.json", debounce_seconds=0)
    dispatcher = CommandDispatcher(
        cache=cache, saver=saver, gallery=FakeGallery(items(11)), check_alive=False,
    )
    await dispatcher.dispatch(FakeMessage(".pr0 x", chat_id=3))
    assert saver.is_dirty
    assert await saver.shutdown(timeout=1.0)
    assert (tmp_path / "cache.json").read_text(encoding="utf-8") == '{"3": [11]}'


@pytest.mark.asyncio
async def test_alias_cannot_replace_builtin_regardless_of_case():
    gallery = FakeGallery(items(1))
    dispatcher = CommandDispatcher(
        cache=ScopedCache(capacity=8),
        saver=FakeSaver(),
        gallery=gallery,
        aliases={"PING": ["x"], "Pr0": ["y"], "Fuchs": ["fuchs"]},
        check_alive=False,
    )
    assert dispatcher.commands == ["fuchs", "ping", "pr0"]

    message = FakeMessage(".ping")
    await dispatcher.dispatch(message)
    assert message.replies[0].edits[0].startswith("Pong! Latency: ")
    assert gallery.fetched == []

    message = FakeMessage(".FUCHS")
    await dispatcher.dispatch(message)
    assert gallery.fetched == [["fuchs"]]


@pytest.mark.asyncio
async def test_alias_without_tags_is_not_registered():
    gallery = FakeGallery(items(1))
    dispatcher = CommandDispatcher(
        cache=ScopedCache(capacity=8),
        saver=FakeSaver(),
        gallery=gallery,
        aliases={"empty": []},
    )
    assert "empty" not in dispatcher.commands
    assert not await dispatcher.dispatch(FakeMessage(".empty"))
    assert gallery.fetched == []


@pytest.mark.asyncio
async def test_sender_name_is_escaped_in_mention():
    gallery = FakeGallery(items(4))
    dispatcher, _, _ = make_dispatcher(gallery, check_alive=False)
    message = FakeMessage(".pr0 x", first_name="<b>*Eve]</b>")
    await dispatcher.dispatch(message)
    assert message.replies[0].edits == [
        '<a href="tg://user?id=7">&lt;b&gt;*Eve]&lt;/b&gt;</a>: https://img/4.jpg'
    ]
    assert message.replies[0].parse_mode == "html"
