from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .types import new_uuid


class Notification(db.Model):
    """In-app notification. Readable and writable only by its addressee."""
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_user_read", "user_id", "is_read"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    expense_id = db.Column(db.String(36), db.ForeignKey("expenses.id", ondelete="CASCADE"), nullable=True)
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=False)
    is_read = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "expense_id": self.expense_id,
            "title": self.title,
            "message": self.message,
            "is_read": self.is_read,
            "created_at": to_utc_z(self.created_at),
        }
