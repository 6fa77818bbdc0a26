"""Per-client notification feed.

Merges three sources into one list, newest first:

* pages read backwards from the notification store (tail of the list),
* one page prefetched ahead of the reader (``prefetch_buffer``),
* notifications pushed live by the push channel (head of the list).

Head and tail never collide, so live pushes and pagination do not need to
exclude each other. Pagination loads are single-flight. The background
prefetch is tagged with the feed generation when it is launched; a reset bumps
the generation and any prefetch result that comes back afterwards is dropped.
"""
import asyncio
import logging
from collections import deque
from typing import Callable

from plantalerts.core.exceptions import FeedError
from plantalerts.schemas.notification import NotificationItem
from plantalerts.services.feed_client import FeedClient
from plantalerts.services.notification_store import DEFAULT_PAGE_SIZE

logger = logging.getLogger(__name__)

# tab -> (scope, unread filter)
TAB_QUERIES = {
    "all": ("all", None),
    "unread": ("mine", True),
    "read": ("mine", False),
}


class NotificationFeed:
    # how many recent live push ids are remembered for deduplication
    pushed_id_window = 1000

    def __init__(
        self,
        client: FeedClient,
        subscribe: Callable | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        reconnect_delay: float = 1.0,
        tab: str = "all",
    ):
        if tab not in TAB_QUERIES:
            raise ValueError(f"Unknown tab {tab!r}")
        self.client = client
        self._subscribe = subscribe
        self.page_size = page_size
        self.reconnect_delay = reconnect_delay

        self.tab = tab
        self.items: list[NotificationItem] = []
        self.prefetch_buffer: list[NotificationItem] = []
        self.next_cursor: str | None = None
        self.has_more = True
        self.unread_count = 0
        self.loading = False
        self.generation = 0

        # whether the store has anything beyond next_cursor
        self._store_has_more = True
        self._reset_pending = False
        self._pushed_ids: set[int] = set()
        self._pushed_order: deque[int] = deque()
        self._prefetch_task: asyncio.Task | None = None
        self._listener_task: asyncio.Task | None = None

    # ── lifecycle ────────────────────────────────────────

    async def start(self, tab: str | None = None):
        """Subscribes to live pushes, then loads the first page."""
        if self._subscribe is not None and self._listener_task is None:
            subscription = self._subscribe()
            self._listener_task = asyncio.create_task(self._listen(subscription))
        await self.reset(tab)

    async def stop(self):
        self._cancel_prefetch()
        task, self._listener_task = self._listener_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    # ── pagination ───────────────────────────────────────

    async def reset(self, tab: str | None = None):
        """Drops everything loaded for the current tab and reloads from the newest page."""
        if tab is not None:
            if tab not in TAB_QUERIES:
                raise ValueError(f"Unknown tab {tab!r}")
            self.tab = tab

        self.generation += 1
        self._cancel_prefetch()
        self.items = []
        self.prefetch_buffer = []
        self.next_cursor = None
        self.has_more = True
        self._store_has_more = True
        self._forget_pushes()
        await self.load_page(reset=True)

    async def load_page(self, reset: bool = False):
        if self.loading:
            if reset:
                # replayed once the running load finishes
                self._reset_pending = True
            return

        self.loading = True
        generation = self.generation
        try:
            if not reset:
                await self._settle_prefetch()
                if generation != self.generation:
                    return

            if not reset and self.prefetch_buffer:
                self._consume_buffer()
            else:
                page = await self._fetch(None if reset else self.next_cursor)
                if generation != self.generation:
                    logger.debug("Dropping page loaded before a reset")
                    return

                if reset:
                    # keep live pushes that arrived while the first page was in flight
                    newest = page.data[0].id if page.data else None
                    head = [item for item in self.items if newest is None or item.id > newest]
                    self.items = self._append(head, page.data)
                else:
                    self.items = self._append(self.items, page.data)
                self.next_cursor = page.next_cursor
                self._store_has_more = page.has_more
                self.has_more = page.has_more
                if page.has_more:
                    self._start_prefetch()

            await self._refresh_unread()
        finally:
            self.loading = False
            if self._reset_pending:
                self._reset_pending = False
                await self.load_page(reset=True)

    async def load_more(self):
        if not self.has_more or self.loading:
            return
        await self._settle_prefetch()
        if not self.has_more or self.loading:
            return

        if self.prefetch_buffer:
            self._consume_buffer()
        else:
            await self.load_page(reset=False)

    async def wait_for_prefetch(self):
        """Waits until no background prefetch is running."""
        await self._settle_prefetch()

    # ── live pushes ──────────────────────────────────────

    def on_live_push(self, notification: NotificationItem):
        if notification.id in self._pushed_ids:
            return
        self._remember_push(notification.id)
        self.unread_count += 1

        if self.tab == "read":
            return
        if any(item.id == notification.id for item in self.items):
            return
        index = 0
        while index < len(self.items) and self.items[index].id > notification.id:
            index += 1
        self.items.insert(index, notification)

    # ── read state ───────────────────────────────────────

    async def mark_read(self, notification_id: int):
        try:
            await self.client.mark_read(notification_id)
        except Exception as e:
            raise FeedError(f"Could not mark notification {notification_id} as read: {e}") from e
        self.unread_count = max(self.unread_count - 1, 0)
        await self._reload_after_mark()

    async def mark_all_read(self):
        try:
            await self.client.mark_all_read()
        except Exception as e:
            raise FeedError(f"Could not mark notifications as read: {e}") from e
        self.unread_count = 0
        await self._reload_after_mark("read")

    async def _reload_after_mark(self, tab: str | None = None):
        # the mark is already stored; a failed reload only leaves the list stale
        try:
            await self.reset(tab)
        except FeedError:
            logger.warning("Reload after marking read failed", exc_info=True)

    # ── internals ────────────────────────────────────────

    async def _fetch(self, cursor: str | None):
        scope, unread = TAB_QUERIES[self.tab]
        try:
            return await self.client.fetch_page(scope, unread, cursor, self.page_size)
        except Exception as e:
            raise FeedError(f"Could not load notifications: {e}") from e

    async def _refresh_unread(self):
        try:
            count = await self.client.count_unread()
        except Exception:
            logger.warning("Unread count refresh failed, keeping %d", self.unread_count, exc_info=True)
            return
        self.unread_count = max(count, 0)

    def _consume_buffer(self):
        self.items = self._append(self.items, self.prefetch_buffer)
        self.prefetch_buffer = []
        self.has_more = self._store_has_more
        if self._store_has_more:
            self._start_prefetch()

    def _start_prefetch(self):
        if not self.next_cursor:
            return
        self._prefetch_task = asyncio.create_task(self._prefetch(self.generation, self.next_cursor))

    async def _prefetch(self, generation: int, cursor: str):
        scope, unread = TAB_QUERIES[self.tab]
        try:
            page = await self.client.fetch_page(scope, unread, cursor, self.page_size)
        except Exception:
            # next_cursor is untouched, so the next load fetches this page directly
            logger.warning("Prefetch failed", exc_info=True)
            return

        if generation != self.generation or cursor != self.next_cursor:
            logger.debug("Dropping stale prefetch for generation %d", generation)
            return
        self.prefetch_buffer = self._append([], page.data, exclude=self.items)
        self.next_cursor = page.next_cursor
        self._store_has_more = page.has_more
        if not self.prefetch_buffer:
            self.has_more = page.has_more

    async def _settle_prefetch(self):
        task = self._prefetch_task
        if task is not None and not task.done():
            await asyncio.wait({task})

    def _cancel_prefetch(self):
        task, self._prefetch_task = self._prefetch_task, None
        if task is not None and not task.done():
            task.cancel()

    def _remember_push(self, notification_id: int):
        self._pushed_ids.add(notification_id)
        self._pushed_order.append(notification_id)
        while len(self._pushed_order) > self.pushed_id_window:
            self._pushed_ids.discard(self._pushed_order.popleft())

    def _forget_pushes(self):
        # reloaded items are deduplicated against ``items`` instead
        self._pushed_ids.clear()
        self._pushed_order.clear()

    @staticmethod
    def _append(items, page, exclude=None):
        seen = {item.id for item in items}
        if exclude:
            seen.update(item.id for item in exclude)
        merged = list(items)
        for notification in page:
            if notification.id not in seen:
                seen.add(notification.id)
                merged.append(notification)
        return merged

    async def _listen(self, subscription):
        while True:
            try:
                async for notification in subscription:
                    self.on_live_push(notification)
                logger.warning("Push subscription ended, reconnecting in %.1fs", self.reconnect_delay)
            except Exception:
                logger.warning("Push subscription failed, reconnecting in %.1fs", self.reconnect_delay, exc_info=True)
            finally:
                subscription.close()

            subscription = await self._resubscribe()
            # nothing is replayed on reconnect; reconcile through the store
            try:
                await self.reset()
            except FeedError:
                logger.warning("Reload after reconnect failed", exc_info=True)

    async def _resubscribe(self):
        while True:
            await asyncio.sleep(self.reconnect_delay)
            try:
                return self._subscribe()
            except Exception:
                logger.warning("Resubscribing to pushes failed", exc_info=True)
