from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Protocol

from app.stockline.core.config import settings
from app.stockline.core.logging import log_json
from app.stockline.core.metrics import metrics
from app.stockline.db.models import TransferNotification
from app.stockline.repos.notifications import NotificationRepository
from app.stockline.repos.users import UserRepository
from app.stockline.services.access_policy import RolePolicy


logger = logging.getLogger(__name__)

EVENT_CREATED = "created"
EVENT_APPROVED = "approved"
EVENT_REJECTED = "rejected"
EVENT_DISPATCHED = "dispatched"
EVENT_RECEIVED = "received"
EVENT_VARIANCE = "variance"


def _json_value(value):
    if isinstance(value, (uuid.UUID, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _json_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_value(item) for item in value]
    return value


@dataclass(frozen=True)
class TransferEvent:
    event_type: str
    transfer_id: uuid.UUID
    reference: str
    requested_by_user_id: uuid.UUID | None = None
    payload: dict = field(default_factory=dict)

    def as_payload(self) -> dict:
        return _json_value(
            {
                "event_type": self.event_type,
                "transfer_id": self.transfer_id,
                "reference": self.reference,
                "requested_by_user_id": self.requested_by_user_id,
                **self.payload,
            }
        )


class Notifier(Protocol):
    def notify(self, event: TransferEvent) -> None: ...


class LoggingNotifier:
    def notify(self, event: TransferEvent) -> None:
        log_json(logger, {"event": "transfer_notification", **event.as_payload()})


class OutboxNotifier:
    """Queues one notification row per event for an out-of-band sender.

    Recipients are the requester plus every active user holding a manager role.
    """

    def __init__(self, db, roles: RolePolicy | None = None):
        self.db = db
        self.roles = roles or RolePolicy.from_settings()

    def _recipients(self, event: TransferEvent) -> list[str]:
        recipients: list[str] = []
        if event.requested_by_user_id is not None:
            recipients.append(str(event.requested_by_user_id))
        for user in UserRepository(self.db).list_active_by_roles(sorted(self.roles.manager_roles)):
            if str(user.id) not in recipients:
                recipients.append(str(user.id))
        return recipients

    def notify(self, event: TransferEvent) -> None:
        payload = event.as_payload()
        if event.event_type == EVENT_VARIANCE:
            payload["recipient_roles"] = sorted(self.roles.manager_roles)
        row = TransferNotification(
            transfer_id=event.transfer_id,
            event_type=event.event_type,
            payload=payload,
            recipient_user_ids=self._recipients(event),
        )
        try:
            NotificationRepository(self.db).create(row)
        except Exception:
            self.db.rollback()
            raise


def build_notifier(db, roles: RolePolicy | None = None) -> Notifier:
    if settings.NOTIFIER_BACKEND == "log":
        return LoggingNotifier()
    return OutboxNotifier(db, roles)


def publish(notifier: Notifier | None, event: TransferEvent) -> bool:
    """Fire-and-forget delivery; the committed transfer never depends on it."""
    if notifier is None:
        return False
    try:
        notifier.notify(event)
    except Exception:
        metrics.increment_notifier_failure(event.event_type)
        logger.exception(
            "transfer notification failed",
            extra={"event_type": event.event_type, "transfer_id": str(event.transfer_id)},
        )
        return False
    return True
