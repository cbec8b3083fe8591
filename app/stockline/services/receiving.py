from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from app.stockline.core.context import Actor
from app.stockline.core.error_catalog import AuthorizationError, ValidationError
from app.stockline.core.metrics import metrics
from app.stockline.db.models import TransferRequest, TransferVariance
from app.stockline.repos.variances import VarianceRepository
from app.stockline.services.ledger import transfer_in, transfer_out
from app.stockline.services.notifier import EVENT_RECEIVED, EVENT_VARIANCE
from app.stockline.services.severity import VARIANCE_OPEN, SeverityPolicy, variance_value
from app.stockline.services.transfers import (
    STATUS_APPROVED,
    STATUS_COMPLETED,
    STATUS_IN_TRANSIT,
    STATUS_RECEIVED,
    TransferWorkflow,
    all_lines,
    utcnow,
)


logger = logging.getLogger(__name__)

RECEIVED_STATUSES = {STATUS_RECEIVED, STATUS_COMPLETED}


@dataclass
class ReceiptResult:
    transfer: TransferRequest
    variances: list[TransferVariance] = field(default_factory=list)
    replayed: bool = False


class ReceivingService(TransferWorkflow):
    """Destination-side counting.

    A receipt posts ``transfer_in`` for what was actually counted and records a
    variance for every line whose count differs from the approved quantity. When
    the transfer was never dispatched the source side is posted in the same
    transaction.
    """

    def __init__(self, db, *, severity: SeverityPolicy | None = None, **kwargs):
        super().__init__(db, **kwargs)
        self.severity = severity or SeverityPolicy.from_settings()
        self.variances = VarianceRepository(db)

    def receive(
        self,
        transfer_id: uuid.UUID,
        *,
        receiver: Actor,
        lines=(),
        packaging_lines=(),
        notes: str | None = None,
    ) -> ReceiptResult:
        transfer = self.get(transfer_id, for_update=True)
        if not self.access_policy.has_outlet_access(receiver.user_id, transfer.destination_outlet_id):
            raise AuthorizationError(
                "no access to the destination outlet",
                outlet_id=str(transfer.destination_outlet_id),
            )
        if transfer.status in RECEIVED_STATUSES:
            return self._replay(transfer)
        self._require_status(transfer, {STATUS_IN_TRANSIT, STATUS_APPROVED}, "receive")

        counts = {
            **self._match_counts("product", transfer.lines, lines or []),
            **self._match_counts("packaging", transfer.packaging_lines, packaging_lines or []),
        }
        costs = self._unit_costs(transfer)
        from_status = transfer.status
        now = utcnow()

        intents = []
        variances: list[TransferVariance] = []
        for line in all_lines(transfer):
            count = counts[line.id]
            expected = line.quantity_approved
            received = count.quantity_received
            unit_cost = costs.get((line.item_kind, line.item_id), Decimal("0"))
            if from_status == STATUS_APPROVED:
                intents.append(transfer_out(line, outlet_id=transfer.source_outlet_id, quantity=expected))
            intents.append(transfer_in(line, outlet_id=transfer.destination_outlet_id, quantity=received))
            line.quantity_received = received
            line.variance_reason = count.reason
            line.unit_cost_snapshot = unit_cost
            difference = expected - received
            if difference == 0:
                continue
            value = variance_value(difference, unit_cost)
            variances.append(
                TransferVariance(
                    transfer_id=transfer.id,
                    line_id=line.id,
                    item_kind=line.item_kind,
                    item_id=line.item_id,
                    outlet_id=transfer.destination_outlet_id,
                    expected_quantity=expected,
                    received_quantity=received,
                    variance=difference,
                    unit_cost=unit_cost,
                    variance_value=value,
                    severity=self.severity.classify(value),
                    status=VARIANCE_OPEN,
                    reason=count.reason,
                    reported_by_user_id=receiver.user_id,
                    created_at=now,
                    updated_at=now,
                )
            )

        values = {
            "status": STATUS_RECEIVED if variances else STATUS_COMPLETED,
            "received_by_user_id": receiver.user_id,
            "received_at": now,
            "receipt_notes": notes,
            "updated_at": now,
        }
        if not variances:
            values["completed_at"] = now
        if from_status == STATUS_APPROVED:
            values["dispatched_by_user_id"] = receiver.user_id
            values["dispatched_at"] = now

        try:
            moved = self.repo.compare_and_set_status(transfer.id, from_statuses={from_status}, values=values)
            if moved:
                for variance in variances:
                    self.variances.add(variance)
                self.ledger.post(transfer.id, intents, actor_id=receiver.user_id)
                self.db.commit()
        except IntegrityError:
            transfer = self._after_duplicate_ledger(transfer_id, action="receive", settled=RECEIVED_STATUSES)
            return self._replay(transfer)
        except Exception:
            self.db.rollback()
            raise
        if not moved:
            transfer = self._superseded(transfer_id, action="receive", settled=RECEIVED_STATUSES)
            return self._replay(transfer)

        transfer = self.get(transfer_id)
        recorded = self.variances.list_for_transfer(transfer.id)
        for variance in recorded:
            metrics.increment_variance_recorded(variance.severity)
        self._transitioned(
            transfer,
            "receive",
            received_by_user_id=str(receiver.user_id),
            variance_count=len(recorded),
            posted_source_side=from_status == STATUS_APPROVED,
        )
        if recorded:
            self._emit(
                EVENT_VARIANCE,
                transfer,
                outlet_id=transfer.destination_outlet_id,
                received_by_user_id=receiver.user_id,
                variances=[
                    {
                        "variance_id": variance.id,
                        "line_id": variance.line_id,
                        "item_kind": variance.item_kind,
                        "item_id": variance.item_id,
                        "expected_quantity": variance.expected_quantity,
                        "received_quantity": variance.received_quantity,
                        "variance": variance.variance,
                        "variance_value": variance.variance_value,
                        "severity": variance.severity,
                    }
                    for variance in recorded
                ],
            )
        else:
            self._emit(EVENT_RECEIVED, transfer, mode="counted", received_by_user_id=receiver.user_id)
        return ReceiptResult(transfer=transfer, variances=recorded)

    def _replay(self, transfer: TransferRequest) -> ReceiptResult:
        self._log("transfer_replay", transfer, action="receive")
        return ReceiptResult(
            transfer=transfer,
            variances=self.variances.list_for_transfer(transfer.id),
            replayed=True,
        )

    def _match_counts(self, kind: str, lines: list, receipts: list) -> dict:
        by_id = {line.id: line for line in lines}
        matched = {}
        for receipt in receipts:
            line = by_id.get(receipt.line_id)
            if line is None:
                raise ValidationError(
                    f"{kind} line does not belong to this transfer",
                    line_id=str(receipt.line_id),
                )
            if line.id in matched:
                raise ValidationError("line counted more than once", line_id=str(line.id))
            if receipt.quantity_received is None or receipt.quantity_received < 0:
                raise ValidationError(
                    "received quantity cannot be negative",
                    line_id=str(line.id),
                    quantity_received=receipt.quantity_received,
                )
            if receipt.quantity_expected is not None and receipt.quantity_expected != line.quantity_approved:
                raise ValidationError(
                    "expected quantity does not match the approved quantity",
                    line_id=str(line.id),
                    quantity_expected=receipt.quantity_expected,
                    quantity_approved=line.quantity_approved,
                )
            matched[line.id] = receipt
        missing = [str(line_id) for line_id in by_id if line_id not in matched]
        if missing:
            raise ValidationError(f"every {kind} line must be counted", missing_line_ids=missing)
        return matched

    def _unit_costs(self, transfer: TransferRequest) -> dict[tuple[str, uuid.UUID], Decimal]:
        costs: dict[tuple[str, uuid.UUID], Decimal] = {}
        for kind, lines in (("product", transfer.lines), ("packaging", transfer.packaging_lines)):
            entries = self.catalog.resolve_many(kind, [line.item_id for line in lines])
            for item_id, entry in entries.items():
                costs[(kind, item_id)] = entry.unit_cost
        return costs
