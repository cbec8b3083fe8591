import uuid

from sqlalchemy import select

from app.stockline.db.models import TransferNotification


class NotificationRepository:
    def __init__(self, db):
        self.db = db

    def create(self, notification: TransferNotification) -> TransferNotification:
        self.db.add(notification)
        self.db.commit()
        return notification

    def list_for_transfer(self, transfer_id: uuid.UUID) -> list[TransferNotification]:
        query = (
            select(TransferNotification)
            .where(TransferNotification.transfer_id == transfer_id)
            .order_by(TransferNotification.created_at.asc())
        )
        return self.db.execute(query).scalars().all()
