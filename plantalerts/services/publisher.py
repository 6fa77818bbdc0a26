import logging

from sqlalchemy.exc import SQLAlchemyError

from plantalerts.core.exceptions import PublishError
from plantalerts.schemas.notification import NotificationItem
from plantalerts.schemas.sample import Sample, TagRule
from plantalerts.services import notification_store
from plantalerts.services.alert_rules import evaluate_sample
from plantalerts.services.push_channel import PushChannel

logger = logging.getLogger(__name__)


class AlertPublisher:
    """Turns samples into notifications: store first, then live broadcast."""

    def __init__(
        self,
        session_factory,
        channel: PushChannel,
        rules: dict[str, TagRule],
        owners: dict[str, str] | None = None,
        default_operator: str = "operators",
    ):
        self._session_factory = session_factory
        self._channel = channel
        self._rules = rules
        self._owners = owners or {}
        self._default_operator = default_operator

    @property
    def tag_ids(self) -> list[str]:
        return list(self._rules)

    async def publish(self, sample: Sample) -> NotificationItem | None:
        draft = evaluate_sample(sample, self._rules, self._owners, self._default_operator)
        if draft is None:
            return None

        try:
            async with self._session_factory() as db:
                notification = await notification_store.create_notification(db, draft)
        except (SQLAlchemyError, OSError) as e:
            raise PublishError(f"Could not store alert for {sample.tag_id}: {e}") from e

        try:
            await self._channel.broadcast(notification)
        except Exception:
            # already durable; clients pick it up on their next page load
            logger.warning("Live push of notification %s failed", notification.id, exc_info=True)

        logger.info("Published %s alert %s for %s %s", draft.severity, notification.id, draft.device, draft.metric)
        return notification
