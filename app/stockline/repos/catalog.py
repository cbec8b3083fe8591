import uuid

from sqlalchemy import select

from app.stockline.db.models import CatalogItem, Outlet


class CatalogRepository:
    def __init__(self, db):
        self.db = db

    def get_item(self, item_id: uuid.UUID) -> CatalogItem | None:
        return self.db.get(CatalogItem, item_id)

    def get_items(self, item_ids: list[uuid.UUID]) -> dict[uuid.UUID, CatalogItem]:
        if not item_ids:
            return {}
        rows = self.db.execute(select(CatalogItem).where(CatalogItem.id.in_(item_ids))).scalars().all()
        return {row.id: row for row in rows}

    def get_outlet(self, outlet_id: uuid.UUID) -> Outlet | None:
        return self.db.get(Outlet, outlet_id)
