from __future__ import annotations

import enum

from ..extensions import db
from ..money import money_str
from ..time_utils import to_utc_z


class ClientClass(str, enum.Enum):
    CASH = "CASH"
    CREDIT = "CREDIT"


class Client(db.Model):
    """
    Customer of the shop.

    Only CREDIT-class clients may buy on credit; their credit_limit caps the
    sum of outstanding balances (see services.credit_availability_service).
    CASH-class clients carry no limit.
    """
    __tablename__ = "clients"
    __table_args__ = (
        db.CheckConstraint("credit_limit >= 0", name="credit_limit_non_negative"),
        db.CheckConstraint(
            "client_class <> 'CREDIT' OR credit_limit > 0",
            name="credit_limit_required_for_credit",
        ),
        db.Index("ix_clients_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)

    client_class = db.Column(
        db.Enum(ClientClass, native_enum=False, length=16),
        nullable=False,
        default=ClientClass.CASH,
        index=True,
    )
    credit_limit = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def is_credit_client(self) -> bool:
        return self.client_class == ClientClass.CREDIT

    def __repr__(self) -> str:
        return f"<Client id={self.id} name={self.name!r} class={self.client_class}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "client_class": self.client_class.value,
            "credit_limit": money_str(self.credit_limit),
            "phone": self.phone,
            "email": self.email,
            "is_active": self.is_active,
            "deleted_at": to_utc_z(self.deleted_at),
            "created_at": to_utc_z(self.created_at),
        }
