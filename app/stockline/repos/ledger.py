from __future__ import annotations

import uuid

from sqlalchemy import func, select

from app.stockline.db.models import PackagingMovement, StockMovement


MOVEMENT_MODELS = {
    "product": StockMovement,
    "packaging": PackagingMovement,
}


def movement_model(item_kind: str):
    return MOVEMENT_MODELS[item_kind]


class LedgerRepository:
    def __init__(self, db):
        self.db = db

    def add(self, movement) -> None:
        self.db.add(movement)

    def line_totals(self, item_kind: str, reference_id: uuid.UUID) -> dict[uuid.UUID, dict[str, int]]:
        """Summed quantity per line and movement type for one transfer."""
        model = movement_model(item_kind)
        rows = self.db.execute(
            select(model.line_id, model.movement_type, func.coalesce(func.sum(model.quantity), 0))
            .where(model.reference_id == reference_id)
            .group_by(model.line_id, model.movement_type)
        ).all()
        totals: dict[uuid.UUID, dict[str, int]] = {}
        for line_id, movement_type, quantity in rows:
            totals.setdefault(line_id, {})[movement_type] = int(quantity or 0)
        return totals

    def available_quantity(self, item_kind: str, item_id: uuid.UUID, outlet_id: uuid.UUID) -> int:
        model = movement_model(item_kind)
        total = self.db.execute(
            select(func.coalesce(func.sum(model.quantity), 0)).where(
                model.item_id == item_id,
                model.outlet_id == outlet_id,
            )
        ).scalar_one()
        return int(total or 0)
