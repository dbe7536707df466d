from notifier.models.notification import Notification

__all__ = [
    "Notification",
]
