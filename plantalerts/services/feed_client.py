"""Notification store clients used by the feed consumer."""
from typing import Protocol

import httpx

from plantalerts.schemas.notification import NotificationPage
from plantalerts.services import notification_store


class FeedClient(Protocol):
    async def fetch_page(self, scope: str, unread: bool | None, cursor: str | None, limit: int) -> NotificationPage: ...

    async def count_unread(self) -> int: ...

    async def mark_read(self, notification_id: int) -> None: ...

    async def mark_all_read(self) -> None: ...


class HttpFeedClient:
    """Talks to the notifications REST API with an operator's bearer token."""

    def __init__(self, client: httpx.AsyncClient, token: str, prefix: str = "/v1"):
        self._client = client
        self._headers = {"Authorization": f"Bearer {token}"}
        self._prefix = prefix

    async def fetch_page(self, scope: str, unread: bool | None, cursor: str | None, limit: int) -> NotificationPage:
        params = {"scope": scope, "limit": limit}
        if unread is not None:
            params["unread"] = "true" if unread else "false"
        if cursor:
            params["cursor"] = cursor
        resp = await self._client.get(f"{self._prefix}/notifications", params=params, headers=self._headers)
        resp.raise_for_status()
        return NotificationPage.model_validate(resp.json())

    async def count_unread(self) -> int:
        resp = await self._client.get(f"{self._prefix}/notifications/unread-count", headers=self._headers)
        resp.raise_for_status()
        return resp.json()["count"]

    async def mark_read(self, notification_id: int) -> None:
        resp = await self._client.post(f"{self._prefix}/notifications/{notification_id}/read", headers=self._headers)
        resp.raise_for_status()

    async def mark_all_read(self) -> None:
        resp = await self._client.post(f"{self._prefix}/notifications/read-all", headers=self._headers)
        resp.raise_for_status()


class StoreFeedClient:
    """Reads the store in-process, for consumers running next to the database."""

    def __init__(self, session_factory, operator_id: str):
        self._session_factory = session_factory
        self.operator_id = operator_id

    async def fetch_page(self, scope: str, unread: bool | None, cursor: str | None, limit: int) -> NotificationPage:
        async with self._session_factory() as db:
            return await notification_store.list_notifications(
                db, self.operator_id, scope=scope, unread=unread, cursor=cursor, limit=limit
            )

    async def count_unread(self) -> int:
        async with self._session_factory() as db:
            return await notification_store.count_unread(db, self.operator_id)

    async def mark_read(self, notification_id: int) -> None:
        async with self._session_factory() as db:
            if not await notification_store.mark_read(db, self.operator_id, notification_id):
                raise LookupError(f"Notification {notification_id} not found")

    async def mark_all_read(self) -> None:
        async with self._session_factory() as db:
            await notification_store.mark_all_read(db, self.operator_id)
