import pytest
from sqlalchemy import func, select

from app.stockline.core.error_catalog import AuthorizationError, InvalidStateError, ValidationError
from app.stockline.db.models import StockMovement
from app.stockline.services.ledger import LedgerWriter
from app.stockline.services.receiving import ReceivingService
from app.stockline.services.transfers import TransferService
from tests.stockline_helpers import (
    RecordingNotifier,
    actor_for,
    approval,
    count,
    movements,
    request_transfer,
    transfer_in_status,
)


def _service(db_session, notifier=None):
    return TransferService(db_session, notifier=notifier or RecordingNotifier())


def _available(db_session, item, outlet):
    return LedgerWriter(db_session).available_quantity("product", item.id, outlet.id)


def test_approve_defaults_to_requested_quantity(db_session, world):
    transfer = request_transfer(db_session, world, quantity=12, packaging=5)
    notifier = RecordingNotifier()

    approved = _service(db_session, notifier).approve(transfer.id, approver=actor_for(world.manager))

    assert approved.status == "approved"
    assert approved.approved_by_user_id == world.manager.id
    assert approved.approved_at is not None
    assert approved.lines[0].quantity_approved == 12
    assert approved.packaging_lines[0].quantity_approved == 5
    assert notifier.event_types == ["approved"]
    assert movements(db_session, transfer.id) == []


def test_approve_accepts_downward_override(db_session, world):
    transfer = request_transfer(db_session, world, quantity=12)
    approved = _service(db_session).approve(
        transfer.id,
        approver=actor_for(world.manager),
        lines=[approval(transfer.lines[0].id, 7)],
    )
    assert approved.lines[0].quantity_approved == 7
    assert approved.lines[0].quantity_requested == 12


@pytest.mark.parametrize("quantity", [0, -1, 13])
def test_approve_rejects_out_of_range_override(db_session, world, quantity):
    transfer = request_transfer(db_session, world, quantity=12)
    with pytest.raises(ValidationError):
        _service(db_session).approve(
            transfer.id,
            approver=actor_for(world.manager),
            lines=[approval(transfer.lines[0].id, quantity)],
        )
    assert _service(db_session).get(transfer.id).status == "pending"


def test_approve_rejects_foreign_line(db_session, world):
    first = request_transfer(db_session, world)
    second = request_transfer(db_session, world)
    with pytest.raises(ValidationError):
        _service(db_session).approve(
            first.id,
            approver=actor_for(world.manager),
            lines=[approval(second.lines[0].id, 1)],
        )


def test_approve_requires_manager_role(db_session, world):
    transfer = request_transfer(db_session, world)
    with pytest.raises(AuthorizationError):
        _service(db_session).approve(transfer.id, approver=actor_for(world.clerk))
    assert _service(db_session).get(transfer.id).status == "pending"


def test_second_approval_reports_current_status(db_session, world):
    transfer = request_transfer(db_session, world)
    service = _service(db_session)
    service.approve(transfer.id, approver=actor_for(world.manager))

    with pytest.raises(InvalidStateError) as exc_info:
        service.approve(transfer.id, approver=actor_for(world.admin))

    assert exc_info.value.current_status == "approved"
    assert exc_info.value.details["current_status"] == "approved"


def test_reject_requires_reason(db_session, world):
    transfer = request_transfer(db_session, world)
    with pytest.raises(ValidationError):
        _service(db_session).reject(transfer.id, reason="   ", rejector=actor_for(world.manager))


def test_reject_from_approved_records_reason(db_session, world):
    transfer = transfer_in_status(db_session, world, "approved")
    notifier = RecordingNotifier()
    rejected = _service(db_session, notifier).reject(
        transfer.id, reason="store closed for refit", rejector=actor_for(world.manager)
    )
    assert rejected.status == "rejected"
    assert rejected.rejection_reason == "store closed for refit"
    assert notifier.events[0].payload["reason"] == "store closed for refit"


def test_complete_writes_balanced_pair(db_session, world):
    transfer = request_transfer(db_session, world, quantity=10, packaging=4)
    service = _service(db_session)
    service.approve(transfer.id, approver=actor_for(world.manager), lines=[approval(transfer.lines[0].id, 8)])
    notifier = RecordingNotifier()

    completed = _service(db_session, notifier).complete(transfer.id, completer=actor_for(world.manager))

    assert completed.status == "completed"
    assert completed.completed_at is not None
    rows = movements(db_session, transfer.id)
    assert [(row.movement_type, row.quantity, row.outlet_id) for row in rows] == [
        ("transfer_out", -8, world.warehouse.id),
        ("transfer_in", 8, world.store.id),
    ]
    packaging = movements(db_session, transfer.id, kind="packaging")
    assert sum(row.quantity for row in packaging) == 0
    assert {row.quantity for row in packaging} == {-4, 4}
    assert _available(db_session, world.product, world.store) == 8
    assert _available(db_session, world.product, world.warehouse) == -8
    assert notifier.event_types == ["dispatched"]


def test_complete_twice_writes_ledger_once(db_session, world):
    transfer = transfer_in_status(db_session, world, "approved", quantity=6)
    service = _service(db_session)

    first = service.complete(transfer.id, completer=actor_for(world.manager))
    second = service.complete(transfer.id, completer=actor_for(world.manager))

    assert first.status == second.status == "completed"
    total = db_session.execute(
        select(func.count(StockMovement.id)).where(StockMovement.reference_id == transfer.id)
    ).scalar_one()
    assert total == 2


def test_dispatch_twice_writes_source_side_once(db_session, world):
    transfer = transfer_in_status(db_session, world, "approved", quantity=6)
    service = _service(db_session)

    service.dispatch(transfer.id, dispatcher=actor_for(world.manager))
    again = service.dispatch(transfer.id, dispatcher=actor_for(world.manager))

    assert again.status == "in_transit"
    rows = movements(db_session, transfer.id)
    assert [(row.movement_type, row.quantity) for row in rows] == [("transfer_out", -6)]


def test_complete_requires_approved(db_session, world):
    transfer = request_transfer(db_session, world)
    with pytest.raises(InvalidStateError) as exc_info:
        _service(db_session).complete(transfer.id, completer=actor_for(world.manager))
    assert exc_info.value.current_status == "pending"
    assert movements(db_session, transfer.id) == []


def test_requester_can_cancel(db_session, world):
    transfer = transfer_in_status(db_session, world, "approved")
    cancelled = _service(db_session).cancel(transfer.id, actor=actor_for(world.clerk))
    assert cancelled.status == "cancelled"
    assert cancelled.cancelled_by_user_id == world.clerk.id
    assert movements(db_session, transfer.id) == []


def test_admin_can_cancel_but_others_cannot(db_session, world):
    transfer = request_transfer(db_session, world)
    service = _service(db_session)
    with pytest.raises(AuthorizationError):
        service.cancel(transfer.id, actor=actor_for(world.manager))
    assert service.cancel(transfer.id, actor=actor_for(world.admin)).status == "cancelled"


def test_completed_transfer_cannot_be_cancelled(db_session, world):
    transfer = transfer_in_status(db_session, world, "completed")
    with pytest.raises(InvalidStateError) as exc_info:
        _service(db_session).cancel(transfer.id, actor=actor_for(world.admin))
    assert exc_info.value.current_status == "completed"


ALL_ACTIONS = ("approve", "reject", "dispatch", "complete", "receive", "cancel")
ALLOWED = {
    "pending": {"approve", "reject", "cancel"},
    "approved": {"reject", "dispatch", "complete", "receive", "cancel"},
    "in_transit": {"dispatch", "receive"},
    "received": {"dispatch", "receive"},
    "completed": {"dispatch", "complete", "receive"},
    "rejected": set(),
    "cancelled": set(),
}


def _attempt(db_session, world, transfer, action):
    service = _service(db_session)
    manager = actor_for(world.manager)
    if action == "approve":
        return service.approve(transfer.id, approver=manager)
    if action == "reject":
        return service.reject(transfer.id, reason="no", rejector=manager)
    if action == "dispatch":
        return service.dispatch(transfer.id, dispatcher=manager)
    if action == "complete":
        return service.complete(transfer.id, completer=manager)
    if action == "cancel":
        return service.cancel(transfer.id, actor=actor_for(world.admin))
    return ReceivingService(db_session, notifier=RecordingNotifier()).receive(
        transfer.id,
        receiver=actor_for(world.clerk),
        lines=[count(transfer.lines[0].id, 10)],
    )


@pytest.mark.parametrize("status", sorted(ALLOWED))
def test_disallowed_transitions_fail_and_leave_status(db_session, world, status):
    """Retries of an applied action count as allowed: they return the transfer unchanged."""
    for action in ALL_ACTIONS:
        if action in ALLOWED[status]:
            continue
        transfer = transfer_in_status(db_session, world, status)
        before = len(movements(db_session, transfer.id))
        with pytest.raises(InvalidStateError) as exc_info:
            _attempt(db_session, world, transfer, action)
        assert exc_info.value.current_status == status
        current = _service(db_session).get(transfer.id)
        assert current.status == status
        assert len(movements(db_session, transfer.id)) == before
