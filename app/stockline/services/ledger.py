from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from app.stockline.core.error_catalog import ConsistencyError
from app.stockline.core.logging import log_alert
from app.stockline.core.metrics import metrics
from app.stockline.repos.ledger import LedgerRepository, movement_model


logger = logging.getLogger(__name__)

TRANSFER_OUT = "transfer_out"
TRANSFER_IN = "transfer_in"


@dataclass(frozen=True)
class MovementIntent:
    item_kind: str
    line_id: uuid.UUID
    item_id: uuid.UUID
    outlet_id: uuid.UUID
    quantity: int
    movement_type: str
    notes: str | None = None


def transfer_out(line, *, outlet_id: uuid.UUID, quantity: int, notes: str | None = None) -> MovementIntent:
    return MovementIntent(
        item_kind=line.item_kind,
        line_id=line.id,
        item_id=line.item_id,
        outlet_id=outlet_id,
        quantity=-abs(quantity),
        movement_type=TRANSFER_OUT,
        notes=notes,
    )


def transfer_in(line, *, outlet_id: uuid.UUID, quantity: int, notes: str | None = None) -> MovementIntent:
    return MovementIntent(
        item_kind=line.item_kind,
        line_id=line.id,
        item_id=line.item_id,
        outlet_id=outlet_id,
        quantity=abs(quantity),
        movement_type=TRANSFER_IN,
        notes=notes,
    )


class LedgerWriter:
    """Appends transfer movements and re-reads them before the caller commits.

    Never commits. A failed verification raises ``ConsistencyError`` and the caller
    rolls back the whole operation.
    """

    def __init__(self, db):
        self.db = db
        self.repo = LedgerRepository(db)

    def post(
        self,
        reference_id: uuid.UUID,
        intents: list[MovementIntent],
        *,
        actor_id: uuid.UUID,
        require_balanced: bool = False,
    ) -> list:
        rows = []
        for intent in intents:
            model = movement_model(intent.item_kind)
            row = model(
                item_id=intent.item_id,
                outlet_id=intent.outlet_id,
                quantity=intent.quantity,
                movement_type=intent.movement_type,
                reference_id=reference_id,
                line_id=intent.line_id,
                created_by_user_id=actor_id,
                notes=intent.notes,
            )
            self.repo.add(row)
            rows.append(row)
        self.db.flush()
        self.verify(reference_id, intents, require_balanced=require_balanced)
        return rows

    def verify(self, reference_id: uuid.UUID, intents: list[MovementIntent], *, require_balanced: bool = False) -> None:
        for item_kind in sorted({intent.item_kind for intent in intents}):
            totals = self.repo.line_totals(item_kind, reference_id)
            for intent in intents:
                if intent.item_kind != item_kind:
                    continue
                written = totals.get(intent.line_id, {}).get(intent.movement_type)
                if written != intent.quantity:
                    self._fail(
                        "ledger_side_mismatch",
                        reference_id,
                        line_id=intent.line_id,
                        item_kind=item_kind,
                        movement_type=intent.movement_type,
                        expected=intent.quantity,
                        actual=written,
                    )
            if not require_balanced:
                continue
            for line_id in {intent.line_id for intent in intents if intent.item_kind == item_kind}:
                sides = totals.get(line_id, {})
                net = sides.get(TRANSFER_OUT, 0) + sides.get(TRANSFER_IN, 0)
                if TRANSFER_OUT not in sides or TRANSFER_IN not in sides or net != 0:
                    self._fail(
                        "ledger_pair_unbalanced",
                        reference_id,
                        line_id=line_id,
                        item_kind=item_kind,
                        net=net,
                        sides=sorted(sides),
                    )

    def _fail(self, check_id: str, reference_id: uuid.UUID, **details) -> None:
        metrics.increment_invariant_violation(check_id)
        log_alert(
            logger,
            {
                "event": "ledger_consistency_failure",
                "check_id": check_id,
                "reference_id": str(reference_id),
                **{key: str(value) if isinstance(value, uuid.UUID) else value for key, value in details.items()},
            },
        )
        raise ConsistencyError(
            "ledger verification failed",
            check_id=check_id,
            reference_id=str(reference_id),
            **{key: str(value) if isinstance(value, uuid.UUID) else value for key, value in details.items()},
        )

    def available_quantity(self, item_kind: str, item_id: uuid.UUID, outlet_id: uuid.UUID) -> int:
        return self.repo.available_quantity(item_kind, item_id, outlet_id)
