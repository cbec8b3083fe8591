from __future__ import annotations

import uuid
from decimal import Decimal
from types import SimpleNamespace

from sqlalchemy import select

from app.stockline.core.context import Actor
from app.stockline.core.security import get_password_hash
from app.stockline.db.models import (
    CatalogItem,
    Outlet,
    OutletAccessGrant,
    PackagingMovement,
    StockMovement,
    User,
)
from app.stockline.services.receiving import ReceivingService
from app.stockline.services.transfers import TransferService


PASSWORD = "Pass1234!"


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)

    @property
    def event_types(self):
        return [event.event_type for event in self.events]


class FailingNotifier:
    def __init__(self):
        self.calls = 0

    def notify(self, event):
        self.calls += 1
        raise RuntimeError("mail relay unreachable")


def create_outlet(db_session, *, code: str, kind: str = "store", is_active: bool = True) -> Outlet:
    outlet = Outlet(id=uuid.uuid4(), code=code, name=f"Outlet {code}", kind=kind, is_active=is_active)
    db_session.add(outlet)
    db_session.commit()
    return outlet


def create_user(
    db_session,
    *,
    username: str,
    role: str = "store_staff",
    outlet: Outlet | None = None,
    is_active: bool = True,
) -> User:
    user = User(
        id=uuid.uuid4(),
        outlet_id=outlet.id if outlet else None,
        username=username,
        email=f"{username}@example.com",
        hashed_password=get_password_hash(PASSWORD),
        role=role,
        is_active=is_active,
    )
    db_session.add(user)
    db_session.commit()
    return user


def create_item(db_session, *, sku: str, kind: str = "product", unit_cost: str = "10.00") -> CatalogItem:
    item = CatalogItem(id=uuid.uuid4(), kind=kind, sku=sku, name=f"Item {sku}", unit_cost=Decimal(unit_cost))
    db_session.add(item)
    db_session.commit()
    return item


def grant_outlet(db_session, user: User, outlet: Outlet) -> None:
    db_session.add(OutletAccessGrant(user_id=user.id, outlet_id=outlet.id))
    db_session.commit()


def actor_for(user: User) -> Actor:
    return Actor.from_user(user)


def line(item, quantity: int):
    return SimpleNamespace(item_id=item.id, quantity=quantity)


def approval(line_id, quantity: int):
    return SimpleNamespace(line_id=line_id, quantity_approved=quantity)


def count(line_id, received: int, *, expected: int | None = None, reason: str | None = None):
    return SimpleNamespace(line_id=line_id, quantity_received=received, quantity_expected=expected, reason=reason)


def build_world(db_session) -> SimpleNamespace:
    """Warehouse to store setup used across the transfer tests."""
    warehouse = create_outlet(db_session, code="WH-01", kind="warehouse")
    store = create_outlet(db_session, code="ST-01")
    other_store = create_outlet(db_session, code="ST-02")
    return SimpleNamespace(
        warehouse=warehouse,
        store=store,
        other_store=other_store,
        manager=create_user(db_session, username="wh-manager", role="warehouse_manager", outlet=warehouse),
        clerk=create_user(db_session, username="store-clerk", role="store_staff", outlet=store),
        outsider=create_user(db_session, username="other-clerk", role="store_staff", outlet=other_store),
        admin=create_user(db_session, username="admin", role="super_admin"),
        product=create_item(db_session, sku="SKU-A", unit_cost="12.50"),
        second_product=create_item(db_session, sku="SKU-B", unit_cost="3.00"),
        packaging=create_item(db_session, sku="BOX-1", kind="packaging", unit_cost="0.40"),
    )


def movements(db_session, transfer_id, *, kind: str = "product") -> list:
    model = StockMovement if kind == "product" else PackagingMovement
    query = select(model).where(model.reference_id == transfer_id).order_by(model.movement_type.desc())
    return db_session.execute(query).scalars().all()


def login(client, username: str, password: str = PASSWORD) -> str:
    response = client.post(
        "/stockline/auth/login",
        json={"username_or_email": username, "password": password},
    )
    assert response.status_code == 200
    return response.json()["access_token"]


def auth_headers(client, username: str, **extra) -> dict:
    return {"Authorization": f"Bearer {login(client, username)}", **extra}


def request_transfer(db_session, world, *, quantity: int = 10, packaging: int | None = None, notifier=None):
    return TransferService(db_session, notifier=notifier or RecordingNotifier()).create(
        source_outlet_id=world.warehouse.id,
        destination_outlet_id=world.store.id,
        lines=[line(world.product, quantity)],
        packaging_lines=[line(world.packaging, packaging)] if packaging else [],
        requester=actor_for(world.clerk),
    )


def transfer_in_status(db_session, world, status: str, *, quantity: int = 10):
    """Drive a fresh transfer to ``status`` through the public operations."""
    service = TransferService(db_session, notifier=RecordingNotifier())
    transfer = request_transfer(db_session, world, quantity=quantity)
    manager = actor_for(world.manager)
    if status == "pending":
        return transfer
    if status == "rejected":
        return service.reject(transfer.id, reason="not needed", rejector=manager)
    if status == "cancelled":
        return service.cancel(transfer.id, actor=actor_for(world.clerk))
    transfer = service.approve(transfer.id, approver=manager)
    if status == "approved":
        return transfer
    if status == "completed":
        return service.complete(transfer.id, completer=manager)
    transfer = service.dispatch(transfer.id, dispatcher=manager)
    if status == "in_transit":
        return transfer
    if status == "received":
        result = ReceivingService(db_session, notifier=RecordingNotifier()).receive(
            transfer.id,
            receiver=actor_for(world.clerk),
            lines=[count(transfer.lines[0].id, quantity - 1)],
        )
        return result.transfer
    raise ValueError(status)
