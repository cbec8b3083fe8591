from __future__ import annotations

import logging
import uuid
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from app.stockline.core.context import Actor
from app.stockline.core.error_catalog import (
    AuthorizationError,
    ConsistencyError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from app.stockline.core.logging import log_alert, log_json
from app.stockline.core.metrics import metrics
from app.stockline.db.models import TransferLineItem, TransferPackagingLineItem, TransferRequest
from app.stockline.repos.catalog import CatalogRepository
from app.stockline.repos.transfers import TransferQueryFilters, TransferRepository
from app.stockline.services.access_policy import AccessPolicy, DatabaseAccessPolicy, RolePolicy
from app.stockline.services.catalog import Catalog, DatabaseCatalog
from app.stockline.services.ledger import LedgerWriter, transfer_in, transfer_out
from app.stockline.services.notifier import (
    EVENT_APPROVED,
    EVENT_CREATED,
    EVENT_DISPATCHED,
    EVENT_REJECTED,
    Notifier,
    TransferEvent,
    build_notifier,
    publish,
)


logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_IN_TRANSIT = "in_transit"
STATUS_RECEIVED = "received"
STATUS_COMPLETED = "completed"
STATUS_REJECTED = "rejected"
STATUS_CANCELLED = "cancelled"
TRANSFER_STATUSES = (
    STATUS_PENDING,
    STATUS_APPROVED,
    STATUS_IN_TRANSIT,
    STATUS_RECEIVED,
    STATUS_COMPLETED,
    STATUS_REJECTED,
    STATUS_CANCELLED,
)
SHIPPED_STATUSES = {STATUS_IN_TRANSIT, STATUS_RECEIVED, STATUS_COMPLETED}

SEQUENCE_RETRIES = 3


def all_lines(transfer: TransferRequest) -> list:
    return [*transfer.lines, *transfer.packaging_lines]


def utcnow() -> datetime:
    return datetime.utcnow()


class TransferWorkflow:
    """Shared plumbing for services that move a transfer through its lifecycle.

    Every mutating operation runs in one transaction: a conditional status write
    guards the transition, ledger rows are appended and re-read, then a single
    commit. Any exception rolls everything back.
    """

    def __init__(
        self,
        db,
        *,
        roles: RolePolicy | None = None,
        access_policy: AccessPolicy | None = None,
        catalog: Catalog | None = None,
        notifier: Notifier | None = None,
    ):
        self.db = db
        self.repo = TransferRepository(db)
        self.roles = roles or RolePolicy.from_settings()
        self.access_policy = access_policy or DatabaseAccessPolicy(db, self.roles)
        self.catalog = catalog or DatabaseCatalog(db)
        self.notifier = notifier if notifier is not None else build_notifier(db, self.roles)
        self.ledger = LedgerWriter(db)

    def get(self, transfer_id: uuid.UUID, *, for_update: bool = False) -> TransferRequest:
        transfer = self.repo.get_transfer(transfer_id, for_update=for_update)
        if transfer is None:
            raise NotFoundError("transfer not found", transfer_id=str(transfer_id))
        return transfer

    def list_transfers(self, filters: TransferQueryFilters) -> list[TransferRequest]:
        return self.repo.list_transfers(filters)

    def _require_manager(self, actor: Actor, action: str) -> None:
        if not self.roles.is_manager(actor.role):
            raise AuthorizationError(f"role may not {action} transfers", role=actor.role, action=action)

    def _require_status(self, transfer: TransferRequest, allowed: set[str], action: str) -> None:
        if transfer.status not in allowed:
            raise InvalidStateError(
                f"cannot {action} a transfer that is {transfer.status}",
                current_status=transfer.status,
                transfer_id=str(transfer.id),
                action=action,
            )

    def _superseded(self, transfer_id: uuid.UUID, *, action: str, settled: set[str]) -> TransferRequest:
        """Another writer moved the transfer between our read and our write."""
        self.db.rollback()
        transfer = self.get(transfer_id)
        if transfer.status in settled:
            self._log("transfer_replay", transfer, action=action)
            return transfer
        raise InvalidStateError(
            f"cannot {action} a transfer that is {transfer.status}",
            current_status=transfer.status,
            transfer_id=str(transfer.id),
            action=action,
        )

    def _after_duplicate_ledger(self, transfer_id: uuid.UUID, *, action: str, settled: set[str]) -> TransferRequest:
        """The movement uniqueness constraint fired; a concurrent writer already posted."""
        self.db.rollback()
        transfer = self.get(transfer_id)
        if transfer.status in settled:
            self._log("transfer_replay", transfer, action=action)
            return transfer
        metrics.increment_invariant_violation("ledger_without_transition")
        log_alert(
            logger,
            {
                "event": "ledger_consistency_failure",
                "check_id": "ledger_without_transition",
                "transfer_id": str(transfer.id),
                "status": transfer.status,
                "action": action,
            },
        )
        raise ConsistencyError(
            "ledger movements exist for a transfer that never transitioned",
            transfer_id=str(transfer.id),
            current_status=transfer.status,
        )

    def _transitioned(self, transfer: TransferRequest, action: str, **fields) -> None:
        metrics.increment_transfer_transition(transfer.status)
        self._log("transfer_transition", transfer, action=action, **fields)

    def _log(self, event: str, transfer: TransferRequest, **fields) -> None:
        log_json(
            logger,
            {
                "event": event,
                "transfer_id": str(transfer.id),
                "reference": transfer.reference,
                "status": transfer.status,
                **fields,
            },
        )

    def _emit(self, event_type: str, transfer: TransferRequest, **payload) -> None:
        publish(
            self.notifier,
            TransferEvent(
                event_type=event_type,
                transfer_id=transfer.id,
                reference=transfer.reference,
                requested_by_user_id=transfer.requested_by_user_id,
                payload={
                    "source_outlet_id": transfer.source_outlet_id,
                    "destination_outlet_id": transfer.destination_outlet_id,
                    "status": transfer.status,
                    **payload,
                },
            ),
        )


class TransferService(TransferWorkflow):
    def create(
        self,
        *,
        source_outlet_id: uuid.UUID,
        destination_outlet_id: uuid.UUID,
        lines=(),
        packaging_lines=(),
        requester: Actor,
        notes: str | None = None,
    ) -> TransferRequest:
        if source_outlet_id == destination_outlet_id:
            raise ValidationError(
                "source and destination outlets must differ",
                source_outlet_id=str(source_outlet_id),
                destination_outlet_id=str(destination_outlet_id),
            )
        lines = list(lines or [])
        packaging_lines = list(packaging_lines or [])
        if not lines and not packaging_lines:
            raise ValidationError("a transfer needs at least one line")
        self._validate_requested("product", lines)
        self._validate_requested("packaging", packaging_lines)
        self._require_outlets(source_outlet_id, destination_outlet_id)
        if not self.access_policy.has_outlet_access(requester.user_id, destination_outlet_id):
            raise AuthorizationError(
                "no access to the destination outlet",
                outlet_id=str(destination_outlet_id),
            )

        for attempt in range(1, SEQUENCE_RETRIES + 1):
            try:
                transfer_id = self._insert(
                    source_outlet_id=source_outlet_id,
                    destination_outlet_id=destination_outlet_id,
                    lines=lines,
                    packaging_lines=packaging_lines,
                    requester=requester,
                    notes=notes,
                )
                self.db.commit()
                break
            except IntegrityError:
                # sequence number taken by a concurrent create
                self.db.rollback()
                if attempt == SEQUENCE_RETRIES:
                    raise
            except Exception:
                self.db.rollback()
                raise

        transfer = self.get(transfer_id)
        self._transitioned(transfer, "create", requested_by_user_id=str(requester.user_id))
        self._emit(
            EVENT_CREATED,
            transfer,
            item_count=len(transfer.lines),
            packaging_item_count=len(transfer.packaging_lines),
            notes=transfer.notes,
        )
        return transfer

    def _insert(self, *, source_outlet_id, destination_outlet_id, lines, packaging_lines, requester, notes) -> uuid.UUID:
        now = utcnow()
        transfer = TransferRequest(
            sequence_number=self.repo.next_sequence_number(),
            source_outlet_id=source_outlet_id,
            destination_outlet_id=destination_outlet_id,
            requested_by_user_id=requester.user_id,
            status=STATUS_PENDING,
            notes=notes,
            requested_at=now,
            updated_at=now,
        )
        for position, line in enumerate(lines):
            transfer.lines.append(
                TransferLineItem(position=position, item_id=line.item_id, quantity_requested=line.quantity)
            )
        for position, line in enumerate(packaging_lines):
            transfer.packaging_lines.append(
                TransferPackagingLineItem(position=position, item_id=line.item_id, quantity_requested=line.quantity)
            )
        self.db.add(transfer)
        self.db.flush()
        return transfer.id

    def _validate_requested(self, kind: str, lines: list) -> None:
        seen: set[uuid.UUID] = set()
        for index, line in enumerate(lines):
            if line.quantity is None or line.quantity <= 0:
                raise ValidationError(
                    "requested quantity must be positive",
                    item_kind=kind,
                    line_index=index,
                    quantity=line.quantity,
                )
            if line.item_id in seen:
                raise ValidationError("item listed more than once", item_kind=kind, item_id=str(line.item_id))
            seen.add(line.item_id)
        if not seen:
            return
        entries = self.catalog.resolve_many(kind, list(seen))
        for item_id in seen:
            entry = entries.get(item_id)
            if entry is None or not entry.is_active:
                raise ValidationError(f"unknown {kind} item", item_kind=kind, item_id=str(item_id))

    def _require_outlets(self, *outlet_ids: uuid.UUID) -> None:
        outlets = CatalogRepository(self.db)
        for outlet_id in outlet_ids:
            outlet = outlets.get_outlet(outlet_id)
            if outlet is None or not outlet.is_active:
                raise ValidationError("unknown outlet", outlet_id=str(outlet_id))

    def approve(self, transfer_id: uuid.UUID, *, approver: Actor, lines=(), packaging_lines=()) -> TransferRequest:
        self._require_manager(approver, "approve")
        transfer = self.get(transfer_id, for_update=True)
        self._require_status(transfer, {STATUS_PENDING}, "approve")
        overrides = {
            **self._approval_overrides("product", transfer.lines, lines or []),
            **self._approval_overrides("packaging", transfer.packaging_lines, packaging_lines or []),
        }
        now = utcnow()
        try:
            for line in all_lines(transfer):
                line.quantity_approved = overrides.get(line.id, line.quantity_requested)
            moved = self.repo.compare_and_set_status(
                transfer.id,
                from_statuses={STATUS_PENDING},
                values={
                    "status": STATUS_APPROVED,
                    "approved_by_user_id": approver.user_id,
                    "approved_at": now,
                    "updated_at": now,
                },
            )
            if moved:
                self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        if not moved:
            return self._superseded(transfer_id, action="approve", settled=set())

        transfer = self.get(transfer_id)
        self._transitioned(transfer, "approve", approved_by_user_id=str(approver.user_id))
        self._emit(
            EVENT_APPROVED,
            transfer,
            approved_by_user_id=approver.user_id,
            lines=[
                {
                    "line_id": line.id,
                    "item_kind": line.item_kind,
                    "item_id": line.item_id,
                    "quantity_requested": line.quantity_requested,
                    "quantity_approved": line.quantity_approved,
                }
                for line in all_lines(transfer)
            ],
        )
        return transfer

    def _approval_overrides(self, kind: str, lines: list, approvals: list) -> dict[uuid.UUID, int]:
        by_id = {line.id: line for line in lines}
        overrides: dict[uuid.UUID, int] = {}
        for approval in approvals:
            line = by_id.get(approval.line_id)
            if line is None:
                raise ValidationError(
                    f"{kind} line does not belong to this transfer",
                    line_id=str(approval.line_id),
                )
            if line.id in overrides:
                raise ValidationError("line approved more than once", line_id=str(line.id))
            quantity = approval.quantity_approved
            if quantity is None or quantity <= 0 or quantity > line.quantity_requested:
                raise ValidationError(
                    "approved quantity must be between 1 and the requested quantity",
                    line_id=str(line.id),
                    quantity_requested=line.quantity_requested,
                    quantity_approved=quantity,
                )
            overrides[line.id] = quantity
        return overrides

    def reject(self, transfer_id: uuid.UUID, *, reason: str, rejector: Actor) -> TransferRequest:
        self._require_manager(rejector, "reject")
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("a rejection reason is required")
        transfer = self.get(transfer_id, for_update=True)
        allowed = {STATUS_PENDING, STATUS_APPROVED}
        self._require_status(transfer, allowed, "reject")
        now = utcnow()
        try:
            moved = self.repo.compare_and_set_status(
                transfer.id,
                from_statuses=allowed,
                values={"status": STATUS_REJECTED, "rejection_reason": reason, "updated_at": now},
            )
            if moved:
                self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        if not moved:
            return self._superseded(transfer_id, action="reject", settled=set())

        transfer = self.get(transfer_id)
        self._transitioned(transfer, "reject", rejected_by_user_id=str(rejector.user_id))
        self._emit(EVENT_REJECTED, transfer, reason=reason, rejected_by_user_id=rejector.user_id)
        return transfer

    def dispatch(self, transfer_id: uuid.UUID, *, dispatcher: Actor) -> TransferRequest:
        """Post the source side only; the destination side waits for the receipt count."""
        self._require_manager(dispatcher, "dispatch")
        transfer = self.get(transfer_id, for_update=True)
        if transfer.status in SHIPPED_STATUSES:
            self._log("transfer_replay", transfer, action="dispatch")
            return transfer
        self._require_status(transfer, {STATUS_APPROVED}, "dispatch")
        intents = [
            transfer_out(line, outlet_id=transfer.source_outlet_id, quantity=line.quantity_approved)
            for line in all_lines(transfer)
        ]
        now = utcnow()
        try:
            moved = self.repo.compare_and_set_status(
                transfer.id,
                from_statuses={STATUS_APPROVED},
                values={
                    "status": STATUS_IN_TRANSIT,
                    "dispatched_by_user_id": dispatcher.user_id,
                    "dispatched_at": now,
                    "updated_at": now,
                },
            )
            if moved:
                self.ledger.post(transfer.id, intents, actor_id=dispatcher.user_id)
                self.db.commit()
        except IntegrityError:
            return self._after_duplicate_ledger(transfer_id, action="dispatch", settled=SHIPPED_STATUSES)
        except Exception:
            self.db.rollback()
            raise
        if not moved:
            return self._superseded(transfer_id, action="dispatch", settled=SHIPPED_STATUSES)

        transfer = self.get(transfer_id)
        self._transitioned(transfer, "dispatch", movement_count=len(intents))
        self._emit(
            EVENT_DISPATCHED,
            transfer,
            dispatched_by_user_id=dispatcher.user_id,
            item_count=len(transfer.lines),
            packaging_item_count=len(transfer.packaging_lines),
        )
        return transfer

    def complete(self, transfer_id: uuid.UUID, *, completer: Actor) -> TransferRequest:
        """Move the approved quantities in one step, writing both ledger sides together."""
        self._require_manager(completer, "complete")
        transfer = self.get(transfer_id, for_update=True)
        if transfer.status == STATUS_COMPLETED:
            self._log("transfer_replay", transfer, action="complete")
            return transfer
        self._require_status(transfer, {STATUS_APPROVED}, "complete")
        intents = []
        for line in all_lines(transfer):
            intents.append(transfer_out(line, outlet_id=transfer.source_outlet_id, quantity=line.quantity_approved))
            intents.append(transfer_in(line, outlet_id=transfer.destination_outlet_id, quantity=line.quantity_approved))
        now = utcnow()
        try:
            moved = self.repo.compare_and_set_status(
                transfer.id,
                from_statuses={STATUS_APPROVED},
                values={
                    "status": STATUS_COMPLETED,
                    "dispatched_by_user_id": completer.user_id,
                    "dispatched_at": now,
                    "completed_at": now,
                    "updated_at": now,
                },
            )
            if moved:
                self.ledger.post(transfer.id, intents, actor_id=completer.user_id, require_balanced=True)
                self.db.commit()
        except IntegrityError:
            return self._after_duplicate_ledger(transfer_id, action="complete", settled={STATUS_COMPLETED})
        except Exception:
            self.db.rollback()
            raise
        if not moved:
            return self._superseded(transfer_id, action="complete", settled={STATUS_COMPLETED})

        transfer = self.get(transfer_id)
        self._transitioned(transfer, "complete", movement_count=len(intents))
        self._emit(EVENT_DISPATCHED, transfer, mode="direct", completed_by_user_id=completer.user_id)
        return transfer

    def cancel(self, transfer_id: uuid.UUID, *, actor: Actor) -> TransferRequest:
        transfer = self.get(transfer_id, for_update=True)
        if actor.user_id != transfer.requested_by_user_id and not self.roles.is_admin(actor.role):
            raise AuthorizationError(
                "only the requester or an administrator may cancel a transfer",
                transfer_id=str(transfer.id),
            )
        allowed = {STATUS_PENDING, STATUS_APPROVED}
        self._require_status(transfer, allowed, "cancel")
        now = utcnow()
        try:
            moved = self.repo.compare_and_set_status(
                transfer.id,
                from_statuses=allowed,
                values={
                    "status": STATUS_CANCELLED,
                    "cancelled_by_user_id": actor.user_id,
                    "cancelled_at": now,
                    "updated_at": now,
                },
            )
            if moved:
                self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        if not moved:
            return self._superseded(transfer_id, action="cancel", settled=set())

        transfer = self.get(transfer_id)
        self._transitioned(transfer, "cancel", cancelled_by_user_id=str(actor.user_id))
        return transfer
