from __future__ import annotations

import uuid
from dataclasses import dataclass

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import selectinload

from app.stockline.db.models import TransferRequest


@dataclass(frozen=True)
class TransferQueryFilters:
    status: str | None = None
    outlet_id: uuid.UUID | None = None
    requested_by_user_id: uuid.UUID | None = None
    visible_outlet_ids: frozenset[uuid.UUID] | None = None
    limit: int = 100
    offset: int = 0


class TransferRepository:
    def __init__(self, db):
        self.db = db

    def _base_query(self):
        return select(TransferRequest).options(
            selectinload(TransferRequest.lines),
            selectinload(TransferRequest.packaging_lines),
        )

    def list_transfers(self, filters: TransferQueryFilters) -> list[TransferRequest]:
        query = self._base_query()
        if filters.status:
            query = query.where(TransferRequest.status == filters.status)
        if filters.outlet_id:
            query = query.where(
                or_(
                    TransferRequest.source_outlet_id == filters.outlet_id,
                    TransferRequest.destination_outlet_id == filters.outlet_id,
                )
            )
        if filters.visible_outlet_ids is not None:
            query = query.where(
                or_(
                    TransferRequest.source_outlet_id.in_(filters.visible_outlet_ids),
                    TransferRequest.destination_outlet_id.in_(filters.visible_outlet_ids),
                )
            )
        if filters.requested_by_user_id:
            query = query.where(TransferRequest.requested_by_user_id == filters.requested_by_user_id)
        query = query.order_by(TransferRequest.sequence_number.desc()).offset(filters.offset).limit(filters.limit)
        return self.db.execute(query).scalars().all()

    def list_by_statuses(self, statuses: set[str]) -> list[TransferRequest]:
        query = self._base_query().where(TransferRequest.status.in_(statuses))
        return self.db.execute(query.order_by(TransferRequest.sequence_number.asc())).scalars().all()

    def get_transfer(self, transfer_id: uuid.UUID, *, for_update: bool = False) -> TransferRequest | None:
        query = self._base_query().where(TransferRequest.id == transfer_id)
        if for_update:
            query = query.with_for_update()
        return self.db.execute(query.execution_options(populate_existing=True)).scalars().first()

    def next_sequence_number(self) -> int:
        current = self.db.execute(select(func.max(TransferRequest.sequence_number))).scalar_one()
        return int(current or 0) + 1

    def compare_and_set_status(self, transfer_id: uuid.UUID, *, from_statuses: set[str], values: dict) -> bool:
        """Conditional status write; False means another writer moved the transfer first."""
        result = self.db.execute(
            update(TransferRequest)
            .where(TransferRequest.id == transfer_id, TransferRequest.status.in_(from_statuses))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
