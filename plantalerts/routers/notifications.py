from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from plantalerts.core.database import get_db
from plantalerts.core.deps import get_current_operator
from plantalerts.core.exceptions import InvalidCursorError
from plantalerts.schemas.notification import (
    MarkAllReadResponse,
    MarkReadResponse,
    NotificationPage,
    Scope,
    UnreadCountResponse,
)
from plantalerts.services import notification_store

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("", response_model=NotificationPage, summary="List notifications", description="Newest first, cursor paginated. `scope=mine` returns the operator's own alerts; `unread` narrows them to unread (`true`) or read (`false`).")
async def list_notifications(
    scope: Scope = "all",
    unread: bool | None = None,
    cursor: str | None = None,
    limit: int = Query(notification_store.DEFAULT_PAGE_SIZE, ge=1, le=200),
    operator_id: str = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db),
):
    if unread is not None and scope != "mine":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="`unread` requires scope=mine")

    try:
        return await notification_store.list_notifications(
            db, operator_id, scope=scope, unread=unread, cursor=cursor, limit=limit
        )
    except InvalidCursorError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/unread-count", response_model=UnreadCountResponse, summary="Unread count")
async def unread_count(
    operator_id: str = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db),
):
    return UnreadCountResponse(count=await notification_store.count_unread(db, operator_id))


@router.post("/read-all", response_model=MarkAllReadResponse, summary="Mark all read", description="Marks every unread notification of the operator as read.")
async def mark_all_read(
    operator_id: str = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db),
):
    updated = await notification_store.mark_all_read(db, operator_id)
    return MarkAllReadResponse(updated_count=updated)


@router.post("/{notification_id}/read", response_model=MarkReadResponse, summary="Mark read")
async def mark_read(
    notification_id: int,
    operator_id: str = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db),
):
    if not await notification_store.mark_read(db, operator_id, notification_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    return MarkReadResponse(id=notification_id)
