from __future__ import annotations

from ..constants import AdvanceStatus
from ..extensions import db
from ..time_utils import to_utc_z
from ..validation import format_cents
from .types import new_uuid, str_enum


class AdvanceRequest(db.Model):
    """
    Cash-advance request.

    LIFECYCLE:
        PENDING -> APPROVED -> DISBURSED
        PENDING -> REJECTED (terminal, reason required)
    """
    __tablename__ = "advance_requests"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_advance_requests_amount_positive"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    amount_cents = db.Column(db.BigInteger, nullable=False)
    reason = db.Column(db.Text, nullable=False)
    status = db.Column(str_enum(AdvanceStatus, "advance_status"), nullable=False, default=AdvanceStatus.PENDING, index=True)
    requested_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    reviewed_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    disbursed_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
    disbursed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    payment_reference = db.Column(db.String(120), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "amount": format_cents(self.amount_cents),
            "amount_cents": self.amount_cents,
            "reason": self.reason,
            "status": self.status.value,
            "requested_at": to_utc_z(self.requested_at),
            "reviewed_by": self.reviewed_by,
            "reviewed_at": to_utc_z(self.reviewed_at),
            "rejection_reason": self.rejection_reason,
            "disbursed_by": self.disbursed_by,
            "disbursed_at": to_utc_z(self.disbursed_at),
            "payment_reference": self.payment_reference,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
