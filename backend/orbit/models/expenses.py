from __future__ import annotations

from ..constants import ExpenseStatus, FileCategory
from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z
from ..validation import format_cents
from .types import new_uuid, str_enum


class Expense(db.Model):
    """
    An expense claim moving through the approval pipeline.

    LIFECYCLE:
    - Created in DRAFT by its owning employee; editable/deletable only then
    - Every later status change is a status-guarded conditional update
      (see services/expense_service.py)
    - Each stage records its actor and timestamp on the row itself
    """
    __tablename__ = "expenses"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_expenses_amount_positive"),
        db.Index("ix_expenses_user_status", "user_id", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    amount_cents = db.Column(db.BigInteger, nullable=False)
    category = db.Column(db.String(100), nullable=False)
    expense_date = db.Column(db.Date, nullable=False)

    status = db.Column(str_enum(ExpenseStatus, "expense_status"), nullable=False, default=ExpenseStatus.DRAFT, index=True)

    # Manager triage
    reviewed_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Manager stage
    manager_approved_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True, index=True)
    manager_approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    manager_rejection_reason = db.Column(db.Text, nullable=True)

    # Owner stage
    owner_approved_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True, index=True)
    owner_approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    owner_rejection_reason = db.Column(db.Text, nullable=True)

    # Payment stage
    payment_reference = db.Column(db.String(120), nullable=True)
    paid_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True, index=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    files = db.relationship(
        "ExpenseFile",
        backref="expense",
        lazy=True,
        cascade="all, delete-orphan",
    )
    status_logs = db.relationship(
        "ExpenseStatusLog",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="ExpenseStatusLog.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "description": self.description,
            "amount": format_cents(self.amount_cents),
            "amount_cents": self.amount_cents,
            "category": self.category,
            "expense_date": to_iso_date(self.expense_date),
            "status": self.status.value,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": to_utc_z(self.reviewed_at),
            "manager_approved_by": self.manager_approved_by,
            "manager_approved_at": to_utc_z(self.manager_approved_at),
            "manager_rejection_reason": self.manager_rejection_reason,
            "owner_approved_by": self.owner_approved_by,
            "owner_approved_at": to_utc_z(self.owner_approved_at),
            "owner_rejection_reason": self.owner_rejection_reason,
            "payment_reference": self.payment_reference,
            "paid_by": self.paid_by,
            "paid_at": to_utc_z(self.paid_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ExpenseFile(db.Model):
    """Bill or payment proof attached to an expense. Removed with its expense."""
    __tablename__ = "expense_files"

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    expense_id = db.Column(
        db.String(36),
        db.ForeignKey("expenses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    file_name = db.Column(db.String(255), nullable=False)
    file_path = db.Column(db.String(512), nullable=False)
    file_type = db.Column(db.String(100), nullable=False)
    file_size = db.Column(db.Integer, nullable=False)
    uploaded_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    file_category = db.Column(str_enum(FileCategory, "file_category"), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "expense_id": self.expense_id,
            "file_name": self.file_name,
            "file_path": self.file_path,
            "file_type": self.file_type,
            "file_size": self.file_size,
            "uploaded_by": self.uploaded_by,
            "file_category": self.file_category.value,
            "created_at": to_utc_z(self.created_at),
        }


class ExpenseStatusLog(db.Model):
    """
    Expense timeline.

    IMMUTABLE: Never update or delete. One row per status transition,
    including the initial draft. Ordered by id.
    """
    __tablename__ = "expense_status_logs"
    __table_args__ = (
        db.Index("ix_expense_status_logs_expense", "expense_id", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    expense_id = db.Column(
        db.String(36),
        db.ForeignKey("expenses.id", ondelete="CASCADE"),
        nullable=False,
    )
    status = db.Column(str_enum(ExpenseStatus, "expense_status"), nullable=False)
    changed_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "expense_id": self.expense_id,
            "status": self.status.value,
            "changed_by": self.changed_by,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
