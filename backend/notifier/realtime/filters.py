from __future__ import annotations

from dataclasses import dataclass

from notifier.realtime.hub import BroadcastHub, Subscription
from notifier.schemas.notification import NotificationOut


@dataclass(frozen=True)
class RecipientFilter:
    """Pass only notifications addressed to ``subject_id``.

    Applies to live streams regardless of role: an administrator's stream
    carries the administrator's own notifications and nothing else.
    """

    subject_id: str

    def __call__(self, record: NotificationOut) -> bool:
        return record.user_id == self.subject_id


def open_recipient_stream(hub: BroadcastHub, subject_id: str) -> Subscription:
    return hub.subscribe(RecipientFilter(subject_id))
