from dataclasses import asdict
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from app.stockline.core.context import Actor
from app.stockline.core.deps import require_actor
from app.stockline.core.error_catalog import AuthorizationError, ErrorCatalog
from app.stockline.core.metrics import metrics
from app.stockline.db.session import get_db
from app.stockline.repos.transfers import TransferQueryFilters
from app.stockline.routers.variances import variance_response
from app.stockline.schemas.transfers import (
    LedgerLineBalance,
    TransferApproveRequest,
    TransferCreateRequest,
    TransferLedgerResponse,
    TransferLineResponse,
    TransferListResponse,
    TransferReceiptResponse,
    TransferReceiveRequest,
    TransferRejectRequest,
    TransferResponse,
)
from app.stockline.services.access_policy import DatabaseAccessPolicy
from app.stockline.services.audit import AuditEventPayload, AuditService
from app.stockline.services.idempotency import (
    IDEMPOTENCY_RESULT_HEADER,
    IdempotencyService,
    extract_idempotency_key,
)
from app.stockline.services.receiving import ReceivingService
from app.stockline.services.reconciliation import ReconciliationService
from app.stockline.services.transfers import TransferService


router = APIRouter()


def _str_or_none(value) -> str | None:
    return str(value) if value is not None else None


def _line_response(line) -> TransferLineResponse:
    return TransferLineResponse(
        id=str(line.id),
        item_kind=line.item_kind,
        item_id=str(line.item_id),
        position=line.position,
        quantity_requested=line.quantity_requested,
        quantity_approved=line.quantity_approved,
        quantity_received=line.quantity_received,
        variance_reason=line.variance_reason,
        unit_cost_snapshot=line.unit_cost_snapshot,
    )


def _transfer_response(transfer) -> TransferResponse:
    return TransferResponse(
        id=str(transfer.id),
        reference=transfer.reference,
        source_outlet_id=str(transfer.source_outlet_id),
        destination_outlet_id=str(transfer.destination_outlet_id),
        status=transfer.status,
        requested_by_user_id=str(transfer.requested_by_user_id),
        approved_by_user_id=_str_or_none(transfer.approved_by_user_id),
        dispatched_by_user_id=_str_or_none(transfer.dispatched_by_user_id),
        received_by_user_id=_str_or_none(transfer.received_by_user_id),
        cancelled_by_user_id=_str_or_none(transfer.cancelled_by_user_id),
        notes=transfer.notes,
        rejection_reason=transfer.rejection_reason,
        receipt_notes=transfer.receipt_notes,
        requested_at=transfer.requested_at,
        approved_at=transfer.approved_at,
        dispatched_at=transfer.dispatched_at,
        received_at=transfer.received_at,
        completed_at=transfer.completed_at,
        cancelled_at=transfer.cancelled_at,
        updated_at=transfer.updated_at,
        lines=[_line_response(line) for line in transfer.lines],
        packaging_lines=[_line_response(line) for line in transfer.packaging_lines],
    )


def _visible_transfer(db, actor: Actor, transfer_id: UUID):
    transfer = TransferService(db).get(transfer_id)
    if not DatabaseAccessPolicy(db).can_view(actor.user_id, transfer.source_outlet_id, transfer.destination_outlet_id):
        raise AuthorizationError("no access to this transfer", transfer_id=str(transfer.id))
    return transfer


def _begin_idempotent(request: Request, db, actor: Actor, payload: dict):
    idempotency_key = extract_idempotency_key(request.headers)
    if not idempotency_key:
        return None, None
    context, replay = IdempotencyService(db).start(
        user_id=actor.user_id,
        endpoint=str(request.url.path),
        method=request.method,
        idempotency_key=idempotency_key,
        request_hash=IdempotencyService.fingerprint(payload),
    )
    if replay:
        metrics.increment_idempotency_replay()
        return None, JSONResponse(
            status_code=replay.status_code,
            content=replay.response_body,
            headers={IDEMPOTENCY_RESULT_HEADER: ErrorCatalog.IDEMPOTENCY_REPLAY.code},
        )
    request.state.idempotency = context
    return context, None


def _finish(context, db, actor: Actor, *, action: str, transfer_id, response, status_code: int = 200):
    body = response.model_dump(mode="json")
    if context is not None:
        context.record_success(status_code=status_code, response_body=body)
    AuditService(db).record_event(
        AuditEventPayload.for_actor(actor, action=action, entity_type="transfer", entity_id=transfer_id, after=body)
    )
    return response


@router.get("/stockline/transfers", response_model=TransferListResponse)
def list_transfers(
    status: str | None = Query(default=None),
    outlet_id: UUID | None = Query(default=None),
    requested_by_user_id: UUID | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    actor: Actor = Depends(require_actor),
    db=Depends(get_db),
):
    filters = TransferQueryFilters(
        status=status,
        outlet_id=outlet_id,
        requested_by_user_id=requested_by_user_id,
        visible_outlet_ids=DatabaseAccessPolicy(db).visible_outlet_ids(actor.user_id),
        limit=limit,
        offset=offset,
    )
    transfers = TransferService(db).list_transfers(filters)
    return TransferListResponse(rows=[_transfer_response(transfer) for transfer in transfers])


@router.post("/stockline/transfers", response_model=TransferResponse, status_code=201)
def create_transfer(
    request: Request,
    payload: TransferCreateRequest,
    actor: Actor = Depends(require_actor),
    db=Depends(get_db),
):
    context, replay = _begin_idempotent(request, db, actor, payload.model_dump(mode="json"))
    if replay:
        return replay
    transfer = TransferService(db).create(
        source_outlet_id=payload.source_outlet_id,
        destination_outlet_id=payload.destination_outlet_id,
        lines=payload.lines,
        packaging_lines=payload.packaging_lines,
        requester=actor,
        notes=payload.notes,
    )
    return _finish(
        context,
        db,
        actor,
        action="transfer.create",
        transfer_id=transfer.id,
        response=_transfer_response(transfer),
        status_code=201,
    )


@router.get("/stockline/transfers/{transfer_id}", response_model=TransferResponse)
def get_transfer(transfer_id: UUID, actor: Actor = Depends(require_actor), db=Depends(get_db)):
    return _transfer_response(_visible_transfer(db, actor, transfer_id))


@router.get("/stockline/transfers/{transfer_id}/ledger", response_model=TransferLedgerResponse)
def get_transfer_ledger(transfer_id: UUID, actor: Actor = Depends(require_actor), db=Depends(get_db)):
    transfer = _visible_transfer(db, actor, transfer_id)
    balances = ReconciliationService(db).line_balances(transfer)
    return TransferLedgerResponse(
        transfer_id=str(transfer.id),
        reference=transfer.reference,
        status=transfer.status,
        lines=[LedgerLineBalance(**asdict(balance)) for balance in balances],
        balanced=all(balance.balanced for balance in balances),
    )


@router.post("/stockline/transfers/{transfer_id}/approve", response_model=TransferResponse)
def approve_transfer(
    transfer_id: UUID,
    request: Request,
    payload: TransferApproveRequest | None = None,
    actor: Actor = Depends(require_actor),
    db=Depends(get_db),
):
    payload = payload or TransferApproveRequest()
    context, replay = _begin_idempotent(request, db, actor, payload.model_dump(mode="json"))
    if replay:
        return replay
    transfer = TransferService(db).approve(
        transfer_id,
        approver=actor,
        lines=payload.lines,
        packaging_lines=payload.packaging_lines,
    )
    return _finish(context, db, actor, action="transfer.approve", transfer_id=transfer_id, response=_transfer_response(transfer))


@router.post("/stockline/transfers/{transfer_id}/reject", response_model=TransferResponse)
def reject_transfer(
    transfer_id: UUID,
    request: Request,
    payload: TransferRejectRequest,
    actor: Actor = Depends(require_actor),
    db=Depends(get_db),
):
    context, replay = _begin_idempotent(request, db, actor, payload.model_dump(mode="json"))
    if replay:
        return replay
    transfer = TransferService(db).reject(transfer_id, reason=payload.reason, rejector=actor)
    return _finish(context, db, actor, action="transfer.reject", transfer_id=transfer_id, response=_transfer_response(transfer))


@router.post("/stockline/transfers/{transfer_id}/dispatch", response_model=TransferResponse)
def dispatch_transfer(
    transfer_id: UUID,
    request: Request,
    actor: Actor = Depends(require_actor),
    db=Depends(get_db),
):
    context, replay = _begin_idempotent(request, db, actor, {"action": "dispatch"})
    if replay:
        return replay
    transfer = TransferService(db).dispatch(transfer_id, dispatcher=actor)
    return _finish(context, db, actor, action="transfer.dispatch", transfer_id=transfer_id, response=_transfer_response(transfer))


@router.post("/stockline/transfers/{transfer_id}/complete", response_model=TransferResponse)
def complete_transfer(
    transfer_id: UUID,
    request: Request,
    actor: Actor = Depends(require_actor),
    db=Depends(get_db),
):
    context, replay = _begin_idempotent(request, db, actor, {"action": "complete"})
    if replay:
        return replay
    transfer = TransferService(db).complete(transfer_id, completer=actor)
    return _finish(context, db, actor, action="transfer.complete", transfer_id=transfer_id, response=_transfer_response(transfer))


@router.post("/stockline/transfers/{transfer_id}/receive", response_model=TransferReceiptResponse)
def receive_transfer(
    transfer_id: UUID,
    request: Request,
    payload: TransferReceiveRequest,
    actor: Actor = Depends(require_actor),
    db=Depends(get_db),
):
    context, replay = _begin_idempotent(request, db, actor, payload.model_dump(mode="json"))
    if replay:
        return replay
    result = ReceivingService(db).receive(
        transfer_id,
        receiver=actor,
        lines=payload.lines,
        packaging_lines=payload.packaging_lines,
        notes=payload.notes,
    )
    response = TransferReceiptResponse(
        transfer=_transfer_response(result.transfer),
        variances=[variance_response(variance) for variance in result.variances],
        replayed=result.replayed,
    )
    return _finish(context, db, actor, action="transfer.receive", transfer_id=transfer_id, response=response)


@router.post("/stockline/transfers/{transfer_id}/cancel", response_model=TransferResponse)
def cancel_transfer(
    transfer_id: UUID,
    request: Request,
    actor: Actor = Depends(require_actor),
    db=Depends(get_db),
):
    context, replay = _begin_idempotent(request, db, actor, {"action": "cancel"})
    if replay:
        return replay
    transfer = TransferService(db).cancel(transfer_id, actor=actor)
    return _finish(context, db, actor, action="transfer.cancel", transfer_id=transfer_id, response=_transfer_response(transfer))
