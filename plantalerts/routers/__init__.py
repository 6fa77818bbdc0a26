from fastapi import APIRouter

from plantalerts.routers import (
    notifications,
    ws,
)

api_router = APIRouter()

api_router.include_router(notifications.router)
api_router.include_router(ws.router)
