# Overview: Service-layer operations for notifications; encapsulates business logic and database work.

"""Notification rows. Readable and writable only by the addressee."""

from __future__ import annotations

from sqlalchemy import update

from ..errors import NotFoundError
from ..extensions import db
from ..models import Notification
from ..time_utils import utcnow
from ..validation import require_text
from . import policy_service


def create_notification(actor, title, message, *, user_id: str | None = None, expense_id: str | None = None) -> Notification:
    user_id = user_id or actor.user_id
    if not policy_service.can_access_notification(actor, user_id):
        policy_service.deny(actor, "CREATE_NOTIFICATION", f"user:{user_id}", "Notifications are private")

    notification = Notification(
        user_id=user_id,
        expense_id=expense_id,
        title=require_text(title, "title", max_length=200),
        message=require_text(message, "message"),
        is_read=False,
        created_at=utcnow(),
    )
    db.session.add(notification)
    db.session.commit()
    return notification


def list_notifications(actor, *, unread_only: bool = False) -> list[Notification]:
    query = Notification.query.filter(policy_service.notification_clause(actor.user_id))
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    return query.order_by(Notification.created_at.desc(), Notification.id).all()


def mark_read(actor, notification_id: str) -> Notification:
    notification = (
        Notification.query
        .filter(Notification.id == notification_id)
        .filter(policy_service.notification_clause(actor.user_id))
        .first()
    )
    if notification is None:
        raise NotFoundError("Notification not found")
    notification.is_read = True
    db.session.commit()
    return notification


def mark_all_read(actor) -> int:
    result = db.session.execute(
        update(Notification)
        .where(policy_service.notification_clause(actor.user_id), Notification.is_read.is_(False))
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    return result.rowcount
