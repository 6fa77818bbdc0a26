from plantalerts.models.notification import Notification

__all__ = [
    "Notification",
]
