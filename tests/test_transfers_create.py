import uuid
from types import SimpleNamespace

import pytest

from app.stockline.core.error_catalog import AuthorizationError, ValidationError
from app.stockline.db.models import TransferRequest
from app.stockline.services.transfers import TransferService
from tests.stockline_helpers import (
    RecordingNotifier,
    actor_for,
    create_item,
    create_outlet,
    grant_outlet,
    line,
    movements,
)


def _service(db_session, notifier=None):
    return TransferService(db_session, notifier=notifier or RecordingNotifier())


def test_create_persists_pending_transfer_and_emits_created(db_session, world):
    notifier = RecordingNotifier()
    transfer = _service(db_session, notifier).create(
        source_outlet_id=world.warehouse.id,
        destination_outlet_id=world.store.id,
        lines=[line(world.product, 50), line(world.second_product, 4)],
        packaging_lines=[line(world.packaging, 10)],
        requester=actor_for(world.clerk),
        notes="weekend restock",
    )

    assert transfer.status == "pending"
    assert transfer.reference == "TR-000001"
    assert [item.quantity_requested for item in transfer.lines] == [50, 4]
    assert all(item.quantity_approved is None for item in transfer.lines)
    assert transfer.packaging_lines[0].quantity_requested == 10
    assert movements(db_session, transfer.id) == []
    assert notifier.event_types == ["created"]
    assert notifier.events[0].payload["item_count"] == 2


def test_sequence_numbers_increase(db_session, world):
    service = _service(db_session)
    kwargs = dict(
        source_outlet_id=world.warehouse.id,
        destination_outlet_id=world.store.id,
        lines=[line(world.product, 1)],
        requester=actor_for(world.clerk),
    )
    first = service.create(**kwargs)
    second = service.create(**kwargs)
    assert second.sequence_number == first.sequence_number + 1
    assert second.reference == "TR-000002"


@pytest.mark.parametrize("outlet_attr", ["warehouse", "store", "other_store"])
def test_same_source_and_destination_always_fails(db_session, world, outlet_attr):
    outlet = getattr(world, outlet_attr)
    with pytest.raises(ValidationError) as exc_info:
        _service(db_session).create(
            source_outlet_id=outlet.id,
            destination_outlet_id=outlet.id,
            lines=[line(world.product, 5)],
            requester=actor_for(world.admin),
        )
    assert "must differ" in exc_info.value.message
    assert db_session.query(TransferRequest).count() == 0


def test_create_requires_a_line(db_session, world):
    with pytest.raises(ValidationError):
        _service(db_session).create(
            source_outlet_id=world.warehouse.id,
            destination_outlet_id=world.store.id,
            requester=actor_for(world.clerk),
        )


@pytest.mark.parametrize("quantity", [0, -3])
def test_create_rejects_non_positive_quantity(db_session, world, quantity):
    with pytest.raises(ValidationError) as exc_info:
        _service(db_session).create(
            source_outlet_id=world.warehouse.id,
            destination_outlet_id=world.store.id,
            lines=[line(world.product, quantity)],
            requester=actor_for(world.clerk),
        )
    assert exc_info.value.details["quantity"] == quantity


def test_create_rejects_duplicate_items(db_session, world):
    with pytest.raises(ValidationError):
        _service(db_session).create(
            source_outlet_id=world.warehouse.id,
            destination_outlet_id=world.store.id,
            lines=[line(world.product, 2), line(world.product, 3)],
            requester=actor_for(world.clerk),
        )


def test_create_rejects_unknown_or_wrong_kind_items(db_session, world):
    service = _service(db_session)
    with pytest.raises(ValidationError):
        service.create(
            source_outlet_id=world.warehouse.id,
            destination_outlet_id=world.store.id,
            lines=[line(world.packaging, 2)],
            requester=actor_for(world.clerk),
        )
    with pytest.raises(ValidationError):
        service.create(
            source_outlet_id=world.warehouse.id,
            destination_outlet_id=world.store.id,
            lines=[SimpleNamespace(item_id=uuid.uuid4(), quantity=1)],
            requester=actor_for(world.clerk),
        )


def test_create_rejects_inactive_outlet(db_session, world):
    closed = create_outlet(db_session, code="ST-CLOSED", is_active=False)
    grant_outlet(db_session, world.clerk, closed)
    with pytest.raises(ValidationError) as exc_info:
        _service(db_session).create(
            source_outlet_id=world.warehouse.id,
            destination_outlet_id=closed.id,
            lines=[line(world.product, 1)],
            requester=actor_for(world.clerk),
        )
    assert exc_info.value.details["outlet_id"] == str(closed.id)


def test_create_requires_destination_access(db_session, world):
    with pytest.raises(AuthorizationError):
        _service(db_session).create(
            source_outlet_id=world.warehouse.id,
            destination_outlet_id=world.store.id,
            lines=[line(world.product, 1)],
            requester=actor_for(world.outsider),
        )
    assert db_session.query(TransferRequest).count() == 0


def test_granted_outlet_and_admin_can_request(db_session, world):
    grant_outlet(db_session, world.outsider, world.store)
    service = _service(db_session)
    granted = service.create(
        source_outlet_id=world.warehouse.id,
        destination_outlet_id=world.store.id,
        lines=[line(world.product, 1)],
        requester=actor_for(world.outsider),
    )
    by_admin = service.create(
        source_outlet_id=world.store.id,
        destination_outlet_id=world.other_store.id,
        lines=[line(create_item(db_session, sku="SKU-C"), 1)],
        requester=actor_for(world.admin),
    )
    assert granted.status == by_admin.status == "pending"
