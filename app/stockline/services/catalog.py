from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from app.stockline.repos.catalog import CatalogRepository


@dataclass(frozen=True)
class CatalogEntry:
    item_id: uuid.UUID
    kind: str
    name: str
    sku: str
    unit_cost: Decimal
    is_active: bool = True


class Catalog(Protocol):
    def resolve(self, kind: str, item_id: uuid.UUID) -> CatalogEntry | None: ...

    def resolve_many(self, kind: str, item_ids: list[uuid.UUID]) -> dict[uuid.UUID, CatalogEntry]: ...


def _entry(row) -> CatalogEntry:
    return CatalogEntry(
        item_id=row.id,
        kind=row.kind,
        name=row.name,
        sku=row.sku,
        unit_cost=Decimal(row.unit_cost or 0),
        is_active=row.is_active,
    )


class DatabaseCatalog:
    """Point-in-time catalog lookups; callers snapshot ``unit_cost`` themselves.

    An item registered under the other kind resolves to nothing.
    """

    def __init__(self, db):
        self.repo = CatalogRepository(db)

    def resolve(self, kind: str, item_id: uuid.UUID) -> CatalogEntry | None:
        row = self.repo.get_item(item_id)
        if row is None or row.kind != kind:
            return None
        return _entry(row)

    def resolve_many(self, kind: str, item_ids: list[uuid.UUID]) -> dict[uuid.UUID, CatalogEntry]:
        rows = self.repo.get_items(list(dict.fromkeys(item_ids)))
        return {item_id: _entry(row) for item_id, row in rows.items() if row.kind == kind}
