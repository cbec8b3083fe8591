import uuid

from sqlalchemy import select

from app.stockline.db.models import OutletAccessGrant, User


class UserRepository:
    def __init__(self, db):
        self.db = db

    def get_by_id(self, user_id: str | uuid.UUID):
        try:
            key = user_id if isinstance(user_id, uuid.UUID) else uuid.UUID(str(user_id))
        except ValueError:
            return None
        return self.db.get(User, key)

    def get_by_username_or_email(self, identifier: str):
        stmt = select(User).where((User.username == identifier) | (User.email == identifier))
        return self.db.execute(stmt).scalars().first()

    def list_active_by_roles(self, roles: list[str]) -> list[User]:
        stmt = (
            select(User)
            .where(User.role.in_(roles), User.is_active.is_(True))
            .order_by(User.username.asc())
        )
        return self.db.execute(stmt).scalars().all()

    def has_grant(self, user_id: uuid.UUID, outlet_id: uuid.UUID) -> bool:
        stmt = select(OutletAccessGrant.id).where(
            OutletAccessGrant.user_id == user_id,
            OutletAccessGrant.outlet_id == outlet_id,
        )
        return self.db.execute(stmt).first() is not None

    def granted_outlet_ids(self, user_id: uuid.UUID) -> list[uuid.UUID]:
        stmt = select(OutletAccessGrant.outlet_id).where(OutletAccessGrant.user_id == user_id)
        return self.db.execute(stmt).scalars().all()
