from decimal import Decimal

import pytest

from app.stockline.core.error_catalog import AuthorizationError, InvalidStateError, NotFoundError, ValidationError
from app.stockline.services.investigations import InvestigationService
from app.stockline.services.ledger import LedgerWriter
from app.stockline.services.receiving import ReceivingService
from app.stockline.services.transfers import TransferService
from tests.stockline_helpers import (
    RecordingNotifier,
    actor_for,
    count,
    create_item,
    line,
    movements,
    request_transfer,
    transfer_in_status,
)


def _received_with_variances(db_session, world, counts=(8, 90)):
    service = TransferService(db_session, notifier=RecordingNotifier())
    transfer = service.create(
        source_outlet_id=world.warehouse.id,
        destination_outlet_id=world.store.id,
        lines=[line(world.product, 10)],
        packaging_lines=[line(world.packaging, 100)],
        requester=actor_for(world.clerk),
    )
    service.approve(transfer.id, approver=actor_for(world.manager))
    service.dispatch(transfer.id, dispatcher=actor_for(world.manager))
    return ReceivingService(db_session, notifier=RecordingNotifier()).receive(
        transfer.id,
        receiver=actor_for(world.clerk),
        lines=[count(transfer.lines[0].id, counts[0])],
        packaging_lines=[count(transfer.packaging_lines[0].id, counts[1])],
    )


def _investigate(db_session, variance_id, actor, status="resolved", **kwargs):
    return InvestigationService(db_session).investigate(
        variance_id,
        root_cause=kwargs.get("root_cause", "damaged in transit"),
        corrective_action=kwargs.get("corrective_action", "carrier claim filed"),
        new_status=status,
        actor=actor,
    )


def test_investigation_requires_manager(db_session, world):
    result = _received_with_variances(db_session, world)
    with pytest.raises(AuthorizationError):
        _investigate(db_session, result.variances[0].id, actor_for(world.clerk))


def test_unknown_variance(db_session, world):
    transfer = request_transfer(db_session, world)
    with pytest.raises(NotFoundError):
        _investigate(db_session, transfer.id, actor_for(world.manager))


@pytest.mark.parametrize("field", ["root_cause", "corrective_action"])
def test_blank_fields_are_rejected(db_session, world, field):
    result = _received_with_variances(db_session, world)
    with pytest.raises(ValidationError):
        _investigate(db_session, result.variances[0].id, actor_for(world.manager), **{field: "  "})


def test_unsupported_status_is_rejected(db_session, world):
    result = _received_with_variances(db_session, world)
    with pytest.raises(ValidationError) as exc_info:
        _investigate(db_session, result.variances[0].id, actor_for(world.manager), status="open")
    assert exc_info.value.details["allowed"] == ["investigating", "resolved", "write_off"]


def test_resolved_variance_is_final(db_session, world):
    result = _received_with_variances(db_session, world)
    variance_id = result.variances[0].id
    resolved = _investigate(db_session, variance_id, actor_for(world.manager))
    assert resolved.status == "resolved"
    assert resolved.resolved_at is not None
    assert resolved.investigated_by_user_id == world.manager.id

    with pytest.raises(InvalidStateError) as exc_info:
        _investigate(db_session, variance_id, actor_for(world.manager), status="write_off")
    assert exc_info.value.current_status == "resolved"


def test_resolved_at_only_set_for_resolution(db_session, world):
    result = _received_with_variances(db_session, world)
    variance_id = result.variances[0].id
    investigating = _investigate(db_session, variance_id, actor_for(world.manager), status="investigating")
    assert investigating.resolved_at is None
    written_off = _investigate(db_session, variance_id, actor_for(world.manager), status="write_off")
    assert written_off.status == "write_off"
    assert written_off.resolved_at is None


def test_transfer_settles_once_every_variance_is_resolved(db_session, world):
    result = _received_with_variances(db_session, world)
    product_variance, packaging_variance = result.variances
    transfers = TransferService(db_session)

    _investigate(db_session, product_variance.id, actor_for(world.manager))
    assert transfers.get(result.transfer.id).status == "received"

    _investigate(db_session, packaging_variance.id, actor_for(world.manager), status="investigating")
    assert transfers.get(result.transfer.id).status == "received"

    _investigate(db_session, packaging_variance.id, actor_for(world.manager))
    settled = transfers.get(result.transfer.id)
    assert settled.status == "completed"
    assert settled.completed_at is not None


def test_written_off_variances_keep_the_transfer_received(db_session, world):
    result = _received_with_variances(db_session, world)
    product_variance, packaging_variance = result.variances
    transfers = TransferService(db_session)

    for variance in result.variances:
        _investigate(db_session, variance.id, actor_for(world.manager), status="write_off")
    assert transfers.get(result.transfer.id).status == "received"

    reopened = _investigate(db_session, packaging_variance.id, actor_for(world.manager), status="investigating")
    assert reopened.status == "investigating"
    assert transfers.get(result.transfer.id).status == "received"

    _investigate(db_session, product_variance.id, actor_for(world.manager))
    _investigate(db_session, packaging_variance.id, actor_for(world.manager))
    assert transfers.get(result.transfer.id).status == "completed"


def test_investigation_never_touches_the_ledger(db_session, world):
    result = _received_with_variances(db_session, world)
    before = [(row.movement_type, row.quantity) for row in movements(db_session, result.transfer.id)]
    for variance in result.variances:
        _investigate(db_session, variance.id, actor_for(world.manager))
    after = [(row.movement_type, row.quantity) for row in movements(db_session, result.transfer.id)]
    assert before == after


def test_risk_queue_orders_by_score(db_session, world):
    expensive = create_item(db_session, sku="SKU-LUX", unit_cost="800.00")
    service = TransferService(db_session, notifier=RecordingNotifier())
    transfer = service.create(
        source_outlet_id=world.warehouse.id,
        destination_outlet_id=world.store.id,
        lines=[line(expensive, 20)],
        requester=actor_for(world.clerk),
    )
    service.approve(transfer.id, approver=actor_for(world.manager))
    service.dispatch(transfer.id, dispatcher=actor_for(world.manager))
    ReceivingService(db_session, notifier=RecordingNotifier()).receive(
        transfer.id,
        receiver=actor_for(world.clerk),
        lines=[count(transfer.lines[0].id, 5)],
    )
    transfer_in_status(db_session, world, "received")

    summary, rows = InvestigationService(db_session).risk_queue()
    scores = [assessment.score for _, assessment in rows]
    assert scores == sorted(scores, reverse=True)
    assert rows[0][0].item_id == expensive.id
    assert rows[0][1].is_high_risk is True
    assert summary["total_unresolved"] == 2
    assert summary["high_risk_count"] == 1

    _, high_only = InvestigationService(db_session).risk_queue(high_risk_only=True)
    assert [variance.item_id for variance, _ in high_only] == [expensive.id]


def test_warehouse_to_store_scenario(db_session, world):
    manager = actor_for(world.manager)
    transfers = TransferService(db_session, notifier=RecordingNotifier())
    transfer = transfers.create(
        source_outlet_id=world.warehouse.id,
        destination_outlet_id=world.store.id,
        lines=[line(world.product, 50)],
        requester=actor_for(world.clerk),
    )
    transfers.approve(transfer.id, approver=manager)
    transfers.dispatch(transfer.id, dispatcher=manager)
    ledger = LedgerWriter(db_session)
    assert ledger.available_quantity("product", world.product.id, world.warehouse.id) == -50

    result = ReceivingService(db_session, notifier=RecordingNotifier()).receive(
        transfer.id,
        receiver=actor_for(world.clerk),
        lines=[count(transfer.lines[0].id, 45)],
    )
    [variance] = result.variances
    assert result.transfer.status == "received"
    assert variance.variance == 5
    assert variance.variance_value == Decimal("62.50")
    assert variance.severity == "low"
    assert variance.status == "open"
    assert ledger.available_quantity("product", world.product.id, world.store.id) == 45

    # three more unresolved variances at the same store, for other items
    others = []
    for sku in ("SKU-X", "SKU-Y", "SKU-Z"):
        item = create_item(db_session, sku=sku)
        other = transfers.create(
            source_outlet_id=world.warehouse.id,
            destination_outlet_id=world.store.id,
            lines=[line(item, 4)],
            requester=actor_for(world.clerk),
        )
        transfers.approve(other.id, approver=manager)
        transfers.dispatch(other.id, dispatcher=manager)
        received = ReceivingService(db_session, notifier=RecordingNotifier()).receive(
            other.id,
            receiver=actor_for(world.clerk),
            lines=[count(other.lines[0].id, 3)],
        )
        others.extend(received.variances)

    investigations = InvestigationService(db_session)
    sibling = investigations.get(others[0].id)
    assert investigations.assess(sibling).unresolved_at_location == 3

    resolved = _investigate(db_session, variance.id, manager, root_cause="damaged in transit")
    assert resolved.status == "resolved"
    assert investigations.assess(investigations.get(others[0].id)).unresolved_at_location == 2
    assert TransferService(db_session).get(transfer.id).status == "completed"
