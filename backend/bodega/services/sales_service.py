"""
Sale Transaction Orchestrator

Turns "sell these lines to this client" into one consistent unit of work:
sale header + lines, one OUT movement per line and, for CREDIT sales, a new
receivable. Voiding reverses all of it with compensating records.

Every public mutation runs inside run_with_retry with a single commit at the
end. All business checks run before the first write; anything that fails
afterwards rolls the whole transaction back.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..errors import (
    AlreadyVoidError,
    ClientTypeMismatchError,
    ConflictError,
    InsufficientCreditError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import (
    Client,
    Credit,
    Product,
    Sale,
    SaleLine,
    SaleStatus,
    SaleType,
    TERMINAL_STATUSES,
)
from ..money import ZERO, money_str, round_money, to_money
from ..time_utils import range_bounds, utcnow
from . import credit_service, inventory_service
from .audit_service import emit_audit_event
from .concurrency import lock_for_update, run_with_retry
from .credit_availability_service import get_credit_availability
from .discount_service import DiscountBreakdown, calculate_discount

SALE_REASON = "Sale"
CREDIT_SALE_REASON = "Credit sale"
VOID_REASON = "Sale void"
MAX_VOID_REASON = 255


@dataclass
class SaleResult:
    sale: Sale
    lines: list[SaleLine]
    discount: DiscountBreakdown
    movements_generated: int
    credit: Credit | None = None

    def to_dict(self) -> dict:
        return {
            "sale": self.sale.to_dict(),
            "lines": [line.to_dict() for line in self.lines],
            "discount": self.discount.to_dict(),
            "movements_generated": self.movements_generated,
            "credit": self.credit.to_dict() if self.credit is not None else None,
        }


@dataclass
class VoidResult:
    sale: Sale
    lines_reversed: int
    movements_generated: int
    credit_voided: bool
    credit_id: int | None = None

    def to_dict(self) -> dict:
        return {
            "sale": self.sale.to_dict(),
            "lines_reversed": self.lines_reversed,
            "movements_generated": self.movements_generated,
            "credit_voided": self.credit_voided,
            "credit_id": self.credit_id,
        }


@dataclass
class _LineRequest:
    product_id: int
    quantity: int
    unit_price: Decimal | None
    index: int


@dataclass
class _PricedLine:
    product: Product
    quantity: int
    unit_price: Decimal
    line_subtotal: Decimal


@dataclass
class _PreparedSale:
    client: Client
    lines: list[_PricedLine] = field(default_factory=list)
    discount: DiscountBreakdown | None = None


def _get_usable_client(client_id: int) -> Client:
    client = db.session.get(Client, client_id)
    if client is None:
        raise NotFoundError("Client not found", [{"client_id": client_id}])
    if client.deleted_at is not None:
        raise ValidationError("Client is deleted", [{"client_id": client.id, "client": client.name}])
    if not client.is_active:
        raise ValidationError("Client is inactive", [{"client_id": client.id, "client": client.name}])
    return client


def _parse_lines(lines) -> list[_LineRequest]:
    """Structural validation of the requested lines; all violations reported together."""
    if not isinstance(lines, (list, tuple)) or not lines:
        raise ValidationError("Invalid sale lines", ["at least one line is required"])

    errors = []
    parsed = []
    for i, raw in enumerate(lines):
        if not isinstance(raw, dict):
            errors.append({"line": i, "error": "line must be an object"})
            continue

        product_id = raw.get("product_id")
        if isinstance(product_id, bool) or not isinstance(product_id, int):
            errors.append({"line": i, "error": "product_id must be an integer"})

        quantity = raw.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            errors.append({"line": i, "error": "quantity must be an integer"})
        elif quantity <= 0:
            errors.append({"line": i, "error": "quantity must be greater than 0"})

        unit_price = None
        if raw.get("unit_price") is not None:
            try:
                unit_price = to_money(raw["unit_price"])
            except ValueError:
                errors.append({"line": i, "error": "unit_price must be a number"})
            else:
                if unit_price < ZERO:
                    errors.append({"line": i, "error": "unit_price cannot be negative"})

        parsed.append(_LineRequest(product_id=product_id, quantity=quantity, unit_price=unit_price, index=i))

    if errors:
        raise ValidationError("Invalid sale lines", errors)
    return parsed


def _load_products(requests: list[_LineRequest]) -> dict[int, Product]:
    """Lock every referenced product (ascending id order) and check it can be sold."""
    ids = sorted({r.product_id for r in requests})
    query = db.session.query(Product).filter(Product.id.in_(ids)).order_by(Product.id.asc())
    products = {p.id: p for p in lock_for_update(query).all()}

    missing = [pid for pid in ids if pid not in products]
    if missing:
        raise NotFoundError("Product not found", [{"product_id": pid} for pid in missing])

    unavailable = []
    for pid in ids:
        product = products[pid]
        if product.deleted_at is not None:
            unavailable.append({"product_id": pid, "product": product.name, "error": "product is deleted"})
        elif not product.is_active:
            unavailable.append({"product_id": pid, "product": product.name, "error": "product is inactive"})
    if unavailable:
        raise ValidationError("Products not available for sale", unavailable)
    return products


def _check_stock(priced: list[_PricedLine]) -> None:
    requested: "OrderedDict[int, int]" = OrderedDict()
    by_id: dict[int, Product] = {}
    for line in priced:
        requested[line.product.id] = requested.get(line.product.id, 0) + line.quantity
        by_id[line.product.id] = line.product

    shortages = []
    for pid, qty in requested.items():
        shortage = inventory_service.stock_shortage(by_id[pid], qty)
        if shortage is not None:
            shortages.append(shortage)
    if shortages:
        raise InsufficientStockError("Insufficient stock", shortages)


def _discount_args(discount) -> tuple:
    if discount is None:
        return None, None
    if not isinstance(discount, dict):
        raise ValidationError("Invalid discount", ["discount must be an object with type and value"])
    return discount.get("type"), discount.get("value")


def _prepare_sale(client_id: int, lines, discount, *, require_credit_client: bool) -> _PreparedSale:
    """Every check that must pass before the first write."""
    client = _get_usable_client(client_id)
    if require_credit_client and not client.is_credit_client:
        raise ClientTypeMismatchError(
            "Client is not a credit client",
            [{"client_id": client.id, "client_class": client.client_class.value}],
        )

    requests = _parse_lines(lines)
    products = _load_products(requests)

    prepared = _PreparedSale(client=client)
    subtotal = ZERO
    for req in requests:
        product = products[req.product_id]
        unit_price = req.unit_price if req.unit_price is not None else round_money(Decimal(product.unit_price))
        line_subtotal = round_money(unit_price * req.quantity)
        subtotal += line_subtotal
        prepared.lines.append(
            _PricedLine(product=product, quantity=req.quantity, unit_price=unit_price, line_subtotal=line_subtotal)
        )

    discount_type, discount_value = _discount_args(discount)
    prepared.discount = calculate_discount(subtotal, discount_type, discount_value)

    _check_stock(prepared.lines)
    return prepared


def _persist_sale(
    prepared: _PreparedSale,
    *,
    sale_type: SaleType,
    operator_id: int | None,
    reason: str,
) -> tuple[Sale, list[SaleLine], int]:
    breakdown = prepared.discount
    sale = Sale(
        client_id=prepared.client.id,
        operator_id=operator_id,
        sale_type=sale_type,
        status=SaleStatus.ACTIVE,
        subtotal=breakdown.subtotal,
        discount_type=breakdown.discount_type,
        discount_value=breakdown.discount_value,
        discount_amount=breakdown.discount_amount,
        total=breakdown.total,
        created_at=utcnow(),
    )
    db.session.add(sale)
    db.session.flush()

    sale_lines = []
    for line in prepared.lines:
        sale_line = SaleLine(
            sale_id=sale.id,
            product_id=line.product.id,
            quantity=line.quantity,
            unit_price=line.unit_price,
            line_subtotal=line.line_subtotal,
        )
        db.session.add(sale_line)
        sale_lines.append(sale_line)
    db.session.flush()

    movements = 0
    for line in sale_lines:
        inventory_service.record_out(
            line.product_id,
            line.quantity,
            reason,
            reference=f"Sale {sale.id}",
            user_id=operator_id,
            commit=False,
        )
        movements += 1

    return sale, sale_lines, movements


def _audit_sale(result: SaleResult, operator_id: int | None) -> None:
    emit_audit_event(
        action="SALE_CREATED",
        entity_type="sale",
        entity_id=result.sale.id,
        actor_user_id=operator_id,
        after=result.to_dict(),
    )


def create_cash_sale(client_id: int, operator_id: int | None, lines, discount=None) -> SaleResult:
    """
    Sell to any active client, paid at the counter.

    lines: [{"product_id": int, "quantity": int, "unit_price": optional}]
    discount: None or {"type": "NONE" | "PERCENT" | "AMOUNT", "value": number}
    """
    def _op() -> SaleResult:
        prepared = _prepare_sale(client_id, lines, discount, require_credit_client=False)
        sale, sale_lines, movements = _persist_sale(
            prepared, sale_type=SaleType.CASH, operator_id=operator_id, reason=SALE_REASON
        )
        db.session.commit()
        return SaleResult(sale=sale, lines=sale_lines, discount=prepared.discount, movements_generated=movements)

    result = run_with_retry(_op)
    _audit_sale(result, operator_id)
    return result


def create_credit_sale(
    client_id: int,
    operator_id: int | None,
    lines,
    term_days: int | None = None,
    discount=None,
) -> SaleResult:
    """
    Sell on credit to a CREDIT-class client.

    On top of the cash-sale checks, the post-discount total must fit in the
    client's disposable credit. Opens a Credit for that total.
    """
    term = credit_service.validate_term_days(term_days)

    def _op() -> SaleResult:
        prepared = _prepare_sale(client_id, lines, discount, require_credit_client=True)
        total = prepared.discount.total
        if total <= ZERO:
            raise ValidationError("Invalid credit sale", ["credit sale total must be greater than 0"])

        client = prepared.client
        availability = get_credit_availability(client.id, client.credit_limit)
        if availability.disposable < total:
            raise InsufficientCreditError(
                "Insufficient credit",
                [{
                    "client_id": client.id,
                    "credit_limit": money_str(availability.credit_limit),
                    "outstanding": money_str(availability.outstanding),
                    "disposable": money_str(availability.disposable),
                    "requested": money_str(total),
                }],
            )

        sale, sale_lines, movements = _persist_sale(
            prepared, sale_type=SaleType.CREDIT, operator_id=operator_id, reason=CREDIT_SALE_REASON
        )
        credit = credit_service.open_credit(
            sale.id,
            client.id,
            total,
            term_days=term,
            commit=False,
        )
        db.session.commit()
        return SaleResult(
            sale=sale,
            lines=sale_lines,
            discount=prepared.discount,
            movements_generated=movements,
            credit=credit,
        )

    result = run_with_retry(_op)
    _audit_sale(result, operator_id)
    return result


def void_sale(sale_id: int, reason: str | None = None, operator_id: int | None = None) -> VoidResult:
    """
    Void a sale and reverse its effects.

    - one IN movement per line gives the stock back
    - a CREDIT sale's credit is voided (balance to zero)
    - voiding an already VOID sale fails; stock is never returned twice
    """
    if reason is not None and (not isinstance(reason, str) or len(reason) > MAX_VOID_REASON):
        raise ValidationError("Invalid void reason", [f"reason must be a string of at most {MAX_VOID_REASON} characters"])

    def _op() -> VoidResult:
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if sale is None:
            raise NotFoundError("Sale not found", [{"sale_id": sale_id}])
        if sale.status == SaleStatus.VOID:
            raise AlreadyVoidError("Sale is already void", [{"sale_id": sale.id}])

        lines = db.session.query(SaleLine).filter_by(sale_id=sale.id).order_by(SaleLine.id.asc()).all()

        before = sale.to_dict()
        sale.status = SaleStatus.VOID
        sale.voided_at = utcnow()
        sale.voided_by_user_id = operator_id
        sale.void_reason = reason.strip() if reason else None

        movements = 0
        for line in lines:
            inventory_service.record_in(
                line.product_id,
                line.quantity,
                VOID_REASON,
                reference=f"Void sale {sale.id}",
                user_id=operator_id,
                commit=False,
            )
            movements += 1

        credit_voided = False
        credit_id = None
        if sale.sale_type == SaleType.CREDIT:
            credit = credit_service.find_credit_for_sale(sale.id)
            if credit is None:
                current_app.logger.warning("Credit sale %s has no credit to void", sale.id)
            elif credit.status in TERMINAL_STATUSES:
                raise ConflictError(
                    "Sale has a settled credit",
                    [{"sale_id": sale.id, "credit_id": credit.id, "status": credit.status.value}],
                )
            else:
                credit_service.void_credit(credit.id, commit=False)
                credit_voided = True
                credit_id = credit.id

        db.session.commit()
        return VoidResult(
            sale=sale,
            lines_reversed=len(lines),
            movements_generated=movements,
            credit_voided=credit_voided,
            credit_id=credit_id,
        ), before

    result, before = run_with_retry(_op)
    emit_audit_event(
        action="SALE_VOIDED",
        entity_type="sale",
        entity_id=result.sale.id,
        actor_user_id=operator_id,
        before=before,
        after=result.to_dict(),
    )
    return result


def get_sale(sale_id: int) -> dict:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFoundError("Sale not found", [{"sale_id": sale_id}])

    lines = list(sale.lines)
    credit = credit_service.find_credit_for_sale(sale.id)
    return {
        "sale": sale.to_dict(),
        "client": sale.client.to_dict() if sale.client is not None else None,
        "lines": [line.to_dict() for line in lines],
        "product_count": len({line.product_id for line in lines}),
        "item_count": sum(line.quantity for line in lines),
        "credit": credit.to_dict() if credit is not None else None,
    }


def _enum_filter(enum_cls, value, field_name: str):
    try:
        return enum_cls(str(value).upper())
    except ValueError:
        raise ValidationError(
            f"Invalid {field_name}",
            [f"{field_name} must be one of {', '.join(m.value for m in enum_cls)}"],
        )


def _date_filters(query, date_from, date_to):
    try:
        start, end = range_bounds(date_from, date_to)
    except ValueError as e:
        raise ValidationError("Invalid date range", [str(e)])
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at < end)
    return query


def list_sales(
    *,
    client_id: int | None = None,
    operator_id: int | None = None,
    sale_type=None,
    status=None,
    date_from=None,
    date_to=None,
    limit: int = 100,
) -> list[Sale]:
    """Sales newest first; date range inclusive."""
    q = Sale.query
    if client_id is not None:
        q = q.filter(Sale.client_id == client_id)
    if operator_id is not None:
        q = q.filter(Sale.operator_id == operator_id)
    if sale_type:
        q = q.filter(Sale.sale_type == _enum_filter(SaleType, sale_type, "sale_type"))
    if status:
        q = q.filter(Sale.status == _enum_filter(SaleStatus, status, "status"))
    q = _date_filters(q, date_from, date_to)
    return q.order_by(Sale.created_at.desc(), Sale.id.desc()).limit(limit).all()


def get_sales_summary(date_from=None, date_to=None) -> dict:
    """Counts and totals of ACTIVE sales per type, plus the number voided."""
    q = db.session.query(
        Sale.sale_type,
        Sale.status,
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.total), 0),
        func.coalesce(func.sum(Sale.discount_amount), 0),
    )
    q = _date_filters(q, date_from, date_to)
    rows = q.group_by(Sale.sale_type, Sale.status).all()

    by_type = {
        SaleType.CASH: {"count": 0, "total": ZERO},
        SaleType.CREDIT: {"count": 0, "total": ZERO},
    }
    discounts = ZERO
    voided = 0
    for sale_type, status, count, total, discount in rows:
        if SaleStatus(status) is SaleStatus.VOID:
            voided += int(count)
            continue
        bucket = by_type[SaleType(sale_type)]
        bucket["count"] += int(count)
        bucket["total"] += to_money(total)
        discounts += to_money(discount)

    cash = by_type[SaleType.CASH]
    credit = by_type[SaleType.CREDIT]
    return {
        "cash_count": cash["count"],
        "cash_total": money_str(cash["total"]),
        "credit_count": credit["count"],
        "credit_total": money_str(credit["total"]),
        "sale_count": cash["count"] + credit["count"],
        "grand_total": money_str(cash["total"] + credit["total"]),
        "discount_total": money_str(discounts),
        "voided_count": voided,
    }


def get_client_sales(client_id: int, limit: int = 100) -> dict:
    """Sales of one client, newest first, with lifetime totals."""
    client = db.session.get(Client, client_id)
    if client is None:
        raise NotFoundError("Client not found", [{"client_id": client_id}])

    rows = (
        db.session.query(
            Sale.sale_type,
            Sale.status,
            func.count(Sale.id),
            func.coalesce(func.sum(Sale.total), 0),
        )
        .filter(Sale.client_id == client_id)
        .group_by(Sale.sale_type, Sale.status)
        .all()
    )
    counts = {SaleType.CASH: 0, SaleType.CREDIT: 0}
    total = ZERO
    voided = 0
    for sale_type, status, count, amount in rows:
        if SaleStatus(status) is SaleStatus.VOID:
            voided += int(count)
            continue
        counts[SaleType(sale_type)] += int(count)
        total += to_money(amount)

    active = counts[SaleType.CASH] + counts[SaleType.CREDIT]
    sales = list_sales(client_id=client_id, limit=limit)
    return {
        "client": client.to_dict(),
        "sales": [s.to_dict() for s in sales],
        "totals": {
            "sale_count": active + voided,
            "active_count": active,
            "voided_count": voided,
            "total_amount": money_str(total),
            "cash_count": counts[SaleType.CASH],
            "credit_count": counts[SaleType.CREDIT],
        },
    }
