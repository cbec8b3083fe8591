from __future__ import annotations

import uuid
from dataclasses import dataclass

from sqlalchemy import select

from app.stockline.db.models import TransferVariance


@dataclass(frozen=True)
class VarianceQueryFilters:
    status: str | None = None
    severity: str | None = None
    outlet_id: uuid.UUID | None = None
    item_id: uuid.UUID | None = None
    transfer_id: uuid.UUID | None = None
    visible_outlet_ids: frozenset[uuid.UUID] | None = None
    limit: int = 100
    offset: int = 0


class VarianceRepository:
    def __init__(self, db):
        self.db = db

    def add(self, variance: TransferVariance) -> None:
        self.db.add(variance)

    def get(self, variance_id: uuid.UUID, *, for_update: bool = False) -> TransferVariance | None:
        query = select(TransferVariance).where(TransferVariance.id == variance_id)
        if for_update:
            query = query.with_for_update()
        return self.db.execute(query.execution_options(populate_existing=True)).scalars().first()

    def list_variances(self, filters: VarianceQueryFilters) -> list[TransferVariance]:
        query = select(TransferVariance)
        if filters.status:
            query = query.where(TransferVariance.status == filters.status)
        if filters.severity:
            query = query.where(TransferVariance.severity == filters.severity)
        if filters.outlet_id:
            query = query.where(TransferVariance.outlet_id == filters.outlet_id)
        if filters.item_id:
            query = query.where(TransferVariance.item_id == filters.item_id)
        if filters.transfer_id:
            query = query.where(TransferVariance.transfer_id == filters.transfer_id)
        if filters.visible_outlet_ids is not None:
            query = query.where(TransferVariance.outlet_id.in_(filters.visible_outlet_ids))
        query = query.order_by(TransferVariance.created_at.desc()).offset(filters.offset).limit(filters.limit)
        return self.db.execute(query).scalars().all()

    def list_for_transfer(self, transfer_id: uuid.UUID) -> list[TransferVariance]:
        query = (
            select(TransferVariance)
            .where(TransferVariance.transfer_id == transfer_id)
            .order_by(TransferVariance.created_at.asc())
        )
        return self.db.execute(query).scalars().all()

    def list_unresolved(self, closed_statuses: set[str]) -> list[TransferVariance]:
        query = select(TransferVariance).where(TransferVariance.status.notin_(closed_statuses))
        return self.db.execute(query.order_by(TransferVariance.created_at.asc())).scalars().all()
