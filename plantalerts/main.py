import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from plantalerts.core.config import settings
from plantalerts.core.database import async_session, create_tables
from plantalerts.core.logging_config import configure_logging
from plantalerts.routers import api_router
from plantalerts.routers.ws import manager
from plantalerts.services.alert_rules import load_tag_rules
from plantalerts.services.device_reader import build_device_reader
from plantalerts.services.poller import Poller
from plantalerts.services.publisher import AlertPublisher
from plantalerts.services.push_channel import PushChannel

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

TAGS_METADATA = [
    {"name": "Notifications", "description": "Alert history: cursor pagination, unread count, read state."},
    {"name": "WebSocket", "description": "Live alert push feed."},
    {"name": "Health", "description": "Service and poller state."},
]

DESCRIPTION = """
# Plant Alerts API

Device readings are polled on a fixed cadence; readings outside their alarm
limits become notifications that are stored first and then pushed live.

## Pagination

```
GET /v1/notifications?scope=mine&unread=true&limit=6
GET /v1/notifications?scope=mine&unread=true&limit=6&cursor=<next_cursor>
```

A cursor only works with the scope it was issued for.

## WebSocket

```
ws://localhost:8000/v1/ws?token=<jwt_access_token>
```

Server events:
```json
{"event": "notification", "data": {"id": 42, "device": "Machine1", "metric": "Temperature", "severity": "critical", ...}}
```

Nothing is replayed after a reconnect: reload the first page to catch up.
"""


def build_poller(channel: PushChannel) -> Poller:
    rules = load_tag_rules(settings.TAG_CATALOG_PATH)
    publisher = AlertPublisher(
        async_session,
        channel,
        rules,
        owners=settings.device_owners,
        default_operator=settings.DEFAULT_OPERATOR_ID,
    )
    reader = build_device_reader(settings.DEVICE_READER, rules, settings.DEVICE_GATEWAY_URL)
    return Poller(
        reader,
        publisher,
        publisher.tag_ids,
        interval=settings.POLLER_INTERVAL_SECONDS,
        read_timeout=settings.POLLER_READ_TIMEOUT_SECONDS,
        reconnect_delay=settings.POLLER_RECONNECT_DELAY_SECONDS,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.CREATE_TABLES:
        await create_tables()

    task = None
    if settings.POLLER_ENABLED:
        app.state.poller = build_poller(app.state.push_channel)
        task = asyncio.create_task(app.state.poller.run())
    yield
    if task is not None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Poller task had already failed")
    app.state.push_channel.close()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description=DESCRIPTION,
    openapi_tags=TAGS_METADATA,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)
app.state.push_channel = PushChannel(
    queue_size=settings.PUSH_QUEUE_SIZE,
    send_timeout=settings.PUSH_SEND_TIMEOUT_SECONDS,
)
app.state.poller = None

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=settings.API_V1_PREFIX)


@app.get("/health", tags=["Health"])
async def health():
    """Service health plus the poller's state and counters."""
    poller = app.state.poller
    return {
        "status": "ok",
        "poller": poller.status() if poller is not None else None,
        "subscribers": app.state.push_channel.subscriber_count,
        "connections": manager.connection_count,
    }
