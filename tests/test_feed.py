"""Tests for the feed consumer: pagination, prefetch, live pushes, read state."""
import asyncio

import pytest

from plantalerts.core.exceptions import FeedError
from plantalerts.schemas.notification import NotificationPage
from plantalerts.services.cursor import decode_cursor, encode_cursor
from plantalerts.services.feed import NotificationFeed
from plantalerts.services.push_channel import PushChannel
from tests.conftest import OPERATOR, OTHER_OPERATOR, make_item


class FakeFeedClient:
    """In-memory store double that records every page query."""

    def __init__(self, items):
        self.items = sorted(items, key=lambda n: n.id, reverse=True)
        self.page_calls = []
        self.count_calls = 0
        self.fail = False
        self.fail_pages = False
        self.gate: asyncio.Event | None = None

    async def fetch_page(self, scope, unread, cursor, limit):
        self.page_calls.append((scope, unread, cursor))
        await asyncio.sleep(0)
        if cursor is not None and self.gate is not None:
            await self.gate.wait()
        if self.fail or self.fail_pages:
            raise ConnectionError("store unavailable")

        rows = [n for n in self.items if self._matches(n, scope, unread)]
        if cursor:
            below = decode_cursor(cursor, scope)
            rows = [n for n in rows if n.id < below]
        page = rows[:limit]
        has_more = len(rows) > limit
        return NotificationPage(
            data=page,
            next_cursor=encode_cursor(scope, page[-1].id) if has_more else None,
            has_more=has_more,
        )

    async def count_unread(self):
        self.count_calls += 1
        return sum(1 for n in self.items if n.operator_id == OPERATOR and not n.read)

    async def mark_read(self, notification_id):
        if self.fail:
            raise ConnectionError("store unavailable")
        self.items = [n.model_copy(update={"read": True}) if n.id == notification_id else n for n in self.items]

    async def mark_all_read(self):
        if self.fail:
            raise ConnectionError("store unavailable")
        self.items = [n.model_copy(update={"read": True}) if n.operator_id == OPERATOR else n for n in self.items]

    @staticmethod
    def _matches(n, scope, unread):
        if scope == "all":
            return True
        if n.operator_id != OPERATOR:
            return False
        return unread is None or n.read != unread


def _ids(items):
    return [n.id for n in items]


async def _drain():
    for _ in range(20):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_fourteen_unread_in_pages_of_six():
    client = FakeFeedClient([make_item(i) for i in range(1, 15)])
    feed = NotificationFeed(client, page_size=6)

    await feed.reset("unread")
    assert _ids(feed.items) == list(range(14, 8, -1))
    assert feed.has_more is True
    assert feed.prefetch_buffer == []
    assert feed.unread_count == 14

    await feed.wait_for_prefetch()
    assert _ids(feed.prefetch_buffer) == list(range(8, 2, -1))
    assert len(client.page_calls) == 2

    await feed.load_more()
    assert len(feed.items) == 12
    assert feed.prefetch_buffer == []
    assert len(client.page_calls) == 2

    await feed.wait_for_prefetch()
    assert len(client.page_calls) == 3
    assert _ids(feed.prefetch_buffer) == [2, 1]
    assert feed.has_more is True

    await feed.load_more()
    assert _ids(feed.items) == list(range(14, 0, -1))
    assert feed.has_more is False
    assert len(client.page_calls) == 3

    # exhausted: further calls are no-ops
    await feed.load_more()
    assert len(client.page_calls) == 3


@pytest.mark.asyncio
async def test_queries_follow_the_active_tab():
    client = FakeFeedClient([make_item(1)])
    feed = NotificationFeed(client)

    for tab in ("all", "unread", "read"):
        await feed.reset(tab)

    assert [call[:2] for call in client.page_calls] == [("all", None), ("mine", True), ("mine", False)]


@pytest.mark.asyncio
async def test_no_duplicates_across_pages():
    items = [make_item(i, operator_id=OPERATOR if i % 3 else OTHER_OPERATOR) for i in range(1, 41)]
    feed = NotificationFeed(FakeFeedClient(items), page_size=6)

    await feed.reset("all")
    while feed.has_more:
        await feed.wait_for_prefetch()
        await feed.load_more()

    ids = _ids(feed.items)
    assert len(ids) == len(set(ids)) == 40
    assert ids == sorted(ids, reverse=True)


@pytest.mark.asyncio
async def test_prefetch_consumption_issues_no_query():
    client = FakeFeedClient([make_item(i) for i in range(1, 21)])
    feed = NotificationFeed(client, page_size=6)
    await feed.reset("all")
    await feed.wait_for_prefetch()

    calls = len(client.page_calls)
    buffered = len(feed.prefetch_buffer)
    before = len(feed.items)
    await feed.load_more()

    assert len(client.page_calls) == calls
    assert len(feed.items) == before + buffered


@pytest.mark.asyncio
async def test_load_page_consumes_buffer_instead_of_refetching():
    client = FakeFeedClient([make_item(i) for i in range(1, 21)])
    feed = NotificationFeed(client, page_size=6)
    await feed.reset("all")
    await feed.wait_for_prefetch()
    cursors = [call[2] for call in client.page_calls]

    await feed.load_page(reset=False)

    assert len(feed.items) == 12
    new_cursors = [call[2] for call in client.page_calls[len(cursors):]]
    assert not set(new_cursors) & set(cursors)


@pytest.mark.asyncio
async def test_live_pushes_increment_unread_once_each():
    client = FakeFeedClient([make_item(i) for i in range(1, 4)])
    feed = NotificationFeed(client)
    await feed.reset("all")
    start = feed.unread_count

    for i in range(100, 105):
        feed.on_live_push(make_item(i))

    assert feed.unread_count == start + 5
    assert _ids(feed.items)[:5] == [104, 103, 102, 101, 100]


@pytest.mark.asyncio
async def test_redelivered_push_is_ignored():
    feed = NotificationFeed(FakeFeedClient([]))
    await feed.reset("all")

    feed.on_live_push(make_item(50))
    feed.on_live_push(make_item(50))

    assert feed.unread_count == 1
    assert _ids(feed.items) == [50]


@pytest.mark.asyncio
async def test_remembered_push_ids_are_bounded():
    feed = NotificationFeed(FakeFeedClient([]))
    feed.pushed_id_window = 10
    await feed.reset("all")

    for i in range(1, 51):
        feed.on_live_push(make_item(i))

    assert len(feed._pushed_ids) == 10
    assert feed._pushed_ids == set(range(41, 51))
    feed.on_live_push(make_item(50))
    assert feed.unread_count == 50


@pytest.mark.asyncio
async def test_reset_forgets_pushed_ids():
    feed = NotificationFeed(FakeFeedClient([]))
    await feed.reset("all")
    feed.on_live_push(make_item(7))

    await feed.reset("all")

    assert feed._pushed_ids == set()


@pytest.mark.asyncio
async def test_read_tab_counts_but_hides_live_pushes():
    client = FakeFeedClient([make_item(1, read=True), make_item(2, read=True)])
    feed = NotificationFeed(client)
    await feed.reset("read")

    feed.on_live_push(make_item(10))

    assert feed.unread_count == 1
    assert _ids(feed.items) == [2, 1]


@pytest.mark.asyncio
async def test_live_push_leaves_pagination_state_alone():
    client = FakeFeedClient([make_item(i) for i in range(1, 15)])
    feed = NotificationFeed(client, page_size=6)
    await feed.reset("all")
    await feed.wait_for_prefetch()
    cursor, buffer = feed.next_cursor, list(feed.prefetch_buffer)

    feed.on_live_push(make_item(99))

    assert feed.next_cursor == cursor
    assert feed.prefetch_buffer == buffer
    assert feed.items[0].id == 99


@pytest.mark.asyncio
async def test_live_push_during_prefetch_lands_immediately():
    client = FakeFeedClient([make_item(i) for i in range(1, 15)])
    client.gate = asyncio.Event()
    feed = NotificationFeed(client, page_size=6)
    await feed.reset("all")
    await _drain()

    feed.on_live_push(make_item(99))
    assert feed.items[0].id == 99

    client.gate.set()
    await feed.wait_for_prefetch()
    await feed.load_more()

    ids = _ids(feed.items)
    assert ids[0] == 99
    assert len(ids) == len(set(ids)) == 13


@pytest.mark.asyncio
async def test_reset_clears_state():
    client = FakeFeedClient([make_item(i) for i in range(1, 15)])
    feed = NotificationFeed(client, page_size=6)
    await feed.reset("all")
    await feed.wait_for_prefetch()
    await feed.load_more()

    await feed.reset("all")

    assert len(feed.items) == 6
    assert feed.prefetch_buffer == []
    assert feed.has_more is True


@pytest.mark.asyncio
async def test_reset_on_small_store_has_no_more():
    feed = NotificationFeed(FakeFeedClient([make_item(i) for i in range(1, 4)]), page_size=6)
    await feed.reset("all")

    assert len(feed.items) == 3
    assert feed.has_more is False
    assert feed.next_cursor is None


@pytest.mark.asyncio
async def test_tab_change_discards_in_flight_prefetch():
    items = [make_item(i, read=bool(i % 2)) for i in range(1, 31)]
    client = FakeFeedClient(items)
    client.gate = asyncio.Event()
    feed = NotificationFeed(client, page_size=6)

    await feed.reset("all")
    await _drain()
    await feed.reset("unread")
    client.gate.set()
    await _drain()
    await feed.wait_for_prefetch()

    assert feed.tab == "unread"
    assert all(not n.read for n in feed.items + feed.prefetch_buffer)
    ids = _ids(feed.items + feed.prefetch_buffer)
    assert ids == sorted(set(ids), reverse=True)


@pytest.mark.asyncio
async def test_concurrent_loads_are_single_flight():
    client = FakeFeedClient([make_item(i) for i in range(1, 15)])
    feed = NotificationFeed(client, page_size=6)
    await feed.reset("all")
    client.fail = True
    await feed.wait_for_prefetch()
    client.fail = False
    cursor = feed.next_cursor

    await asyncio.gather(feed.load_more(), feed.load_more())

    assert [call[2] for call in client.page_calls].count(cursor) == 2  # failed prefetch + one load
    assert len(feed.items) == 12


@pytest.mark.asyncio
async def test_reset_during_load_is_replayed():
    client = FakeFeedClient([make_item(i, read=bool(i % 2)) for i in range(1, 15)])
    feed = NotificationFeed(client, page_size=6)

    await asyncio.gather(feed.reset("all"), feed.reset("read"))

    assert feed.tab == "read"
    assert feed.loading is False
    assert all(n.read for n in feed.items)


@pytest.mark.asyncio
async def test_pagination_failure_leaves_state_untouched():
    client = FakeFeedClient([make_item(i) for i in range(1, 15)])
    feed = NotificationFeed(client, page_size=6)
    await feed.reset("all")
    client.fail = True
    await feed.wait_for_prefetch()
    items, cursor = list(feed.items), feed.next_cursor

    with pytest.raises(FeedError):
        await feed.load_more()

    assert feed.items == items
    assert feed.next_cursor == cursor
    assert feed.loading is False
    assert feed.has_more is True


@pytest.mark.asyncio
async def test_mark_read_decrements_and_reloads():
    client = FakeFeedClient([make_item(i) for i in range(1, 5)])
    feed = NotificationFeed(client)
    await feed.reset("unread")
    assert feed.unread_count == 4

    await feed.mark_read(4)

    assert feed.unread_count == 3
    assert _ids(feed.items) == [3, 2, 1]


@pytest.mark.asyncio
async def test_unread_count_never_negative():
    client = FakeFeedClient([make_item(1, read=True)])
    feed = NotificationFeed(client)
    await feed.reset("all")

    await feed.mark_read(1)

    assert feed.unread_count == 0


@pytest.mark.asyncio
async def test_mark_read_failure_changes_nothing():
    client = FakeFeedClient([make_item(i) for i in range(1, 5)])
    feed = NotificationFeed(client)
    await feed.reset("unread")
    calls = len(client.page_calls)
    client.fail = True

    with pytest.raises(FeedError):
        await feed.mark_read(4)
    with pytest.raises(FeedError):
        await feed.mark_all_read()

    assert feed.unread_count == 4
    assert feed.tab == "unread"
    assert len(client.page_calls) == calls


@pytest.mark.asyncio
async def test_mark_read_survives_a_failed_reload():
    client = FakeFeedClient([make_item(i) for i in range(1, 5)])
    feed = NotificationFeed(client)
    await feed.reset("unread")
    client.fail_pages = True

    await feed.mark_read(4)
    await feed.mark_all_read()

    assert all(n.read for n in client.items)
    assert feed.unread_count == 0
    assert feed.tab == "read"


@pytest.mark.asyncio
async def test_mark_all_read_switches_to_read_tab():
    client = FakeFeedClient([make_item(i) for i in range(1, 5)])
    feed = NotificationFeed(client)
    await feed.reset("unread")

    await feed.mark_all_read()

    assert feed.unread_count == 0
    assert feed.tab == "read"
    assert _ids(feed.items) == [4, 3, 2, 1]


@pytest.mark.asyncio
async def test_unknown_tab_rejected():
    feed = NotificationFeed(FakeFeedClient([]))
    with pytest.raises(ValueError):
        await feed.reset("archived")


@pytest.mark.asyncio
async def test_start_listens_and_reconciles_after_reconnect():
    channel = PushChannel()
    client = FakeFeedClient([make_item(i) for i in range(1, 4)])
    feed = NotificationFeed(client, subscribe=channel.subscribe, reconnect_delay=0)

    await feed.start("all")
    await channel.broadcast(make_item(10))
    await _drain()
    assert feed.items[0].id == 10
    assert feed.unread_count == 4

    first_page_loads = sum(1 for call in client.page_calls if call[2] is None)
    channel.close()
    await _drain()

    assert sum(1 for call in client.page_calls if call[2] is None) == first_page_loads + 1
    assert channel.subscriber_count == 1

    await feed.stop()
    assert channel.subscriber_count == 0
