from __future__ import annotations

import enum

from sqlalchemy import event

from ..errors import ConflictError
from ..extensions import db
from ..money import money_str
from ..time_utils import to_iso_date, to_utc_z, utcnow


class CreditStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    VOID = "VOID"


# Balances of these statuses count against the client's credit limit
OUTSTANDING_STATUSES = (CreditStatus.ACTIVE, CreditStatus.OVERDUE)
TERMINAL_STATUSES = (CreditStatus.PAID, CreditStatus.VOID)


class PaymentMethod(str, enum.Enum):
    CASH = "CASH"
    CARD = "CARD"
    TRANSFER = "TRANSFER"
    CHECK = "CHECK"


class Credit(db.Model):
    """
    Receivable created by a CREDIT sale.

    LIFECYCLE:
    - ACTIVE   -> OVERDUE (due date passed, overdue sweep)
    - ACTIVE   -> PAID    (balance reaches zero)
    - OVERDUE  -> PAID
    - ACTIVE / OVERDUE -> VOID (its sale was voided; balance forced to 0)

    PAID and VOID are terminal. Transitions are enforced in
    services.credit_service, not here.
    """
    __tablename__ = "credits"
    __table_args__ = (
        db.CheckConstraint("principal > 0", name="principal_positive"),
        db.CheckConstraint("balance >= 0", name="balance_non_negative"),
        db.CheckConstraint("balance <= principal", name="balance_within_principal"),
        db.CheckConstraint("term_days >= 1 AND term_days <= 365", name="term_days_range"),
        db.Index("ix_credits_client_status", "client_id", "status"),
        db.Index("ix_credits_status_due", "status", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, unique=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)

    principal = db.Column(db.Numeric(12, 2), nullable=False)
    balance = db.Column(db.Numeric(12, 2), nullable=False)

    start_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=False)
    term_days = db.Column(db.Integer, nullable=False)

    status = db.Column(
        db.Enum(CreditStatus, native_enum=False, length=16),
        nullable=False,
        default=CreditStatus.ACTIVE,
        index=True,
    )

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    sale = db.relationship("Sale", backref=db.backref("credit", uselist=False))
    client = db.relationship("Client", backref=db.backref("credits", lazy="dynamic"))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def amount_paid(self):
        return self.principal - self.balance

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "client_id": self.client_id,
            "principal": money_str(self.principal),
            "balance": money_str(self.balance),
            "amount_paid": money_str(self.amount_paid),
            "start_date": to_iso_date(self.start_date),
            "due_date": to_iso_date(self.due_date),
            "term_days": self.term_days,
            "status": self.status.value,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Payment(db.Model):
    """Installment applied against a credit. Immutable once written."""
    __tablename__ = "credit_payments"
    __table_args__ = (
        db.CheckConstraint("amount > 0", name="amount_positive"),
        db.CheckConstraint("resulting_balance >= 0", name="resulting_balance_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    credit_id = db.Column(db.Integer, db.ForeignKey("credits.id"), nullable=False, index=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    method = db.Column(db.Enum(PaymentMethod, native_enum=False, length=16), nullable=False)
    notes = db.Column(db.String(255), nullable=True)

    # Credit balance right after this payment
    resulting_balance = db.Column(db.Numeric(12, 2), nullable=False)

    operator_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    credit = db.relationship(
        "Credit",
        backref=db.backref("payments", lazy=True, order_by="Payment.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "credit_id": self.credit_id,
            "amount": money_str(self.amount),
            "method": self.method.value,
            "notes": self.notes,
            "resulting_balance": money_str(self.resulting_balance),
            "operator_id": self.operator_id,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(Payment, "before_update")
def _reject_payment_update(mapper, connection, target):
    raise ConflictError("Credit payments are immutable", [{"payment_id": target.id}])


@event.listens_for(Payment, "before_delete")
def _reject_payment_delete(mapper, connection, target):
    raise ConflictError("Credit payments are immutable", [{"payment_id": target.id}])
