import logging
from dataclasses import dataclass, field
from datetime import datetime

from app.stockline.core.context import Actor
from app.stockline.db.models import AuditEvent
from app.stockline.repos.audit import AuditRepository

logger = logging.getLogger(__name__)


@dataclass
class AuditEventPayload:
    actor: str
    action: str
    entity_type: str
    entity_id: str | None
    user_id: str | None = None
    trace_id: str | None = None
    after: dict | None = None
    metadata: dict = field(default_factory=dict)
    result: str = "success"

    @classmethod
    def for_actor(cls, actor: Actor, *, action: str, entity_type: str, entity_id, **kwargs) -> "AuditEventPayload":
        metadata = {"actor_role": actor.role, **(kwargs.pop("metadata", None) or {})}
        return cls(
            actor=actor.username,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id),
            user_id=str(actor.user_id),
            trace_id=actor.trace_id or None,
            metadata=metadata,
            **kwargs,
        )


class AuditService:
    """Best-effort audit trail of transfer, variance and login actions.

    Failures are logged and swallowed; the audited operation has already committed.
    """

    def __init__(self, db):
        self.repo = AuditRepository(db)

    def record_event(self, payload: AuditEventPayload) -> None:
        try:
            self.repo.create(
                AuditEvent(
                    user_id=payload.user_id,
                    trace_id=payload.trace_id,
                    actor=payload.actor,
                    action=payload.action,
                    entity_type=payload.entity_type,
                    entity_id=payload.entity_id,
                    before_payload=None,
                    after_payload=payload.after,
                    event_metadata=payload.metadata or None,
                    result=payload.result,
                    created_at=datetime.utcnow(),
                )
            )
        except Exception:
            self.repo.db.rollback()
            logger.exception(
                "Failed to write audit event",
                extra={"action": payload.action, "trace_id": payload.trace_id, "entity_id": payload.entity_id},
            )

    def trail(self, entity_type: str, entity_id) -> list[AuditEvent]:
        return self.repo.list_for_entity(entity_type, str(entity_id))
