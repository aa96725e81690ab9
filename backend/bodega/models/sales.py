from __future__ import annotations

import enum

from ..extensions import db
from ..money import money_str
from ..time_utils import to_utc_z, utcnow


class SaleType(str, enum.Enum):
    CASH = "CASH"
    CREDIT = "CREDIT"


class SaleStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    VOID = "VOID"


class DiscountType(str, enum.Enum):
    NONE = "NONE"
    PERCENT = "PERCENT"
    AMOUNT = "AMOUNT"


class Sale(db.Model):
    """
    Sale header.

    Sales are never deleted. Voiding flips status to VOID and the inventory
    (and, for CREDIT sales, the receivable) is reversed by compensating
    records, so the header keeps its original totals.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_status_created", "status", "created_at"),
        db.Index("ix_sales_client_created", "client_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    operator_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    sale_type = db.Column(db.Enum(SaleType, native_enum=False, length=16), nullable=False, index=True)
    status = db.Column(
        db.Enum(SaleStatus, native_enum=False, length=16),
        nullable=False,
        default=SaleStatus.ACTIVE,
        index=True,
    )

    subtotal = db.Column(db.Numeric(12, 2), nullable=False)
    discount_type = db.Column(
        db.Enum(DiscountType, native_enum=False, length=16),
        nullable=False,
        default=DiscountType.NONE,
    )
    discount_value = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(12, 2), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    # Void audit trail
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    voided_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    client = db.relationship("Client", backref=db.backref("sales", lazy="dynamic"))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "operator_id": self.operator_id,
            "sale_type": self.sale_type.value,
            "status": self.status.value,
            "subtotal": money_str(self.subtotal),
            "discount_type": self.discount_type.value,
            "discount_value": money_str(self.discount_value),
            "discount_amount": money_str(self.discount_amount),
            "total": money_str(self.total),
            "created_at": to_utc_z(self.created_at),
            "voided_at": to_utc_z(self.voided_at),
            "voided_by_user_id": self.voided_by_user_id,
            "void_reason": self.void_reason,
            "version_id": self.version_id,
        }


class SaleLine(db.Model):
    """Individual line item on a sale."""
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="quantity_positive"),
        db.CheckConstraint("unit_price >= 0", name="unit_price_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    line_subtotal = db.Column(db.Numeric(12, 2), nullable=False)

    sale = db.relationship("Sale", backref=db.backref("lines", lazy=True, order_by="SaleLine.id"))
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product is not None else None,
            "quantity": self.quantity,
            "unit_price": money_str(self.unit_price),
            "line_subtotal": money_str(self.line_subtotal),
        }
