# Overview: Inventory ledger; the only code path that changes product stock.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import case, func

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import InventoryMovement, MovementDirection, Product
from ..time_utils import FUTURE_SKEW, normalize_datetime, range_bounds, to_utc_z, utcnow
from .audit_service import emit_audit_event
from .concurrency import lock_for_update, run_with_retry
"""
Inventory invariants (authoritative)

- Product.stock_quantity changes only through record_in / record_out.
- Every change appends exactly one InventoryMovement (IN or OUT, quantity > 0)
  in the same flush as the stock update.
- stock_quantity >= 0 at all times; an OUT larger than the stock fails with
  InsufficientStockError before anything is written.
- Replaying a product's movements (sum IN - sum OUT) gives stock_quantity.
- Movements are never updated or deleted; corrections are new movements.

Time semantics:
- occurred_at is business time, UTC-naive; it may not be in the future
  (small clock skew tolerated).
- Kardex ranges are inclusive on both ends. A bare date as upper bound
  covers the whole day.
"""

MAX_TEXT = 255

ADJUST_REASON_UP = "Adjustment (+)"
ADJUST_REASON_DOWN = "Adjustment (-)"


@dataclass
class MovementResult:
    movement: InventoryMovement
    stock_before: int
    stock_after: int

    def to_dict(self) -> dict:
        return {
            "movement": self.movement.to_dict(),
            "stock_before": self.stock_before,
            "stock_after": self.stock_after,
        }


def _validate_quantity(quantity, *, field: str = "quantity") -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError(f"Invalid {field}", [f"{field} must be an integer"])
    if quantity <= 0:
        raise ValidationError(f"Invalid {field}", [f"{field} must be greater than 0"])
    return quantity


def _validate_texts(reason, reference) -> tuple[str, str | None]:
    errors = []
    if not isinstance(reason, str) or not reason.strip():
        errors.append("reason is required")
    elif len(reason.strip()) > MAX_TEXT:
        errors.append(f"reason must be at most {MAX_TEXT} characters")
    if reference is not None:
        if not isinstance(reference, str):
            errors.append("reference must be a string")
        elif len(reference.strip()) > MAX_TEXT:
            errors.append(f"reference must be at most {MAX_TEXT} characters")
    if errors:
        raise ValidationError("Invalid movement", errors)
    ref = reference.strip() if reference else None
    return reason.strip(), ref or None


def _parse_occurred_at(value) -> datetime:
    if value is None:
        return utcnow()
    try:
        occurred_dt = normalize_datetime(value)
    except ValueError:
        raise ValidationError("Invalid occurred_at", ["occurred_at must be an ISO-8601 datetime"])
    if occurred_dt > utcnow() + FUTURE_SKEW:
        raise ValidationError("Invalid occurred_at", ["occurred_at cannot be in the future"])
    return occurred_dt


def get_product(product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFoundError("Product not found", [{"product_id": product_id}])
    return product


def ensure_sellable(product: Product) -> Product:
    if product.deleted_at is not None:
        raise ValidationError("Product is deleted", [{"product_id": product.id, "product": product.name}])
    if not product.is_active:
        raise ValidationError("Product is inactive", [{"product_id": product.id, "product": product.name}])
    return product


def stock_shortage(product: Product, requested: int) -> dict | None:
    """Detail dict when product cannot cover `requested`, else None."""
    if product.stock_quantity >= requested:
        return None
    return {
        "product_id": product.id,
        "product": product.name,
        "available": product.stock_quantity,
        "requested": requested,
        "unit": product.unit_of_measure,
    }


def _record_inner(
    *,
    product_id: int,
    direction: MovementDirection,
    quantity: int,
    reason: str,
    reference: str | None,
    occurred_dt: datetime,
    user_id: int | None,
) -> MovementResult:
    """Core movement logic without retry or commit; caller owns the transaction."""
    product = ensure_sellable(get_product(product_id, lock=True))

    stock_before = product.stock_quantity
    if direction is MovementDirection.OUT:
        shortage = stock_shortage(product, quantity)
        if shortage is not None:
            raise InsufficientStockError("Insufficient stock", [shortage])
        stock_after = stock_before - quantity
    else:
        stock_after = stock_before + quantity

    movement = InventoryMovement(
        product_id=product.id,
        direction=direction,
        quantity=quantity,
        reason=reason,
        reference=reference,
        occurred_at=occurred_dt,
        created_by_user_id=user_id,
    )
    product.stock_quantity = stock_after
    db.session.add(movement)
    db.session.flush()

    return MovementResult(movement=movement, stock_before=stock_before, stock_after=stock_after)


def _execute(inner, *, commit: bool, product_id: int, user_id: int | None) -> MovementResult:
    if not commit:
        return inner()

    def _op() -> MovementResult:
        result = inner()
        db.session.commit()
        return result

    result = run_with_retry(_op)
    emit_audit_event(
        action=f"INVENTORY_{result.movement.direction.value}",
        entity_type="inventory_movement",
        entity_id=result.movement.id,
        actor_user_id=user_id,
        before={"product_id": product_id, "stock_quantity": result.stock_before},
        after={"product_id": product_id, "stock_quantity": result.stock_after},
    )
    return result


def _record(
    direction: MovementDirection,
    product_id: int,
    quantity,
    reason,
    reference,
    occurred_at,
    user_id,
    commit: bool,
) -> MovementResult:
    quantity = _validate_quantity(quantity)
    reason, reference = _validate_texts(reason, reference)
    occurred_dt = _parse_occurred_at(occurred_at)

    def _inner() -> MovementResult:
        return _record_inner(
            product_id=product_id,
            direction=direction,
            quantity=quantity,
            reason=reason,
            reference=reference,
            occurred_dt=occurred_dt,
            user_id=user_id,
        )

    return _execute(_inner, commit=commit, product_id=product_id, user_id=user_id)


def record_in(
    product_id: int,
    quantity: int,
    reason: str,
    reference: str | None = None,
    occurred_at=None,
    user_id: int | None = None,
    commit: bool = True,
) -> MovementResult:
    """Append an IN movement and raise the product's stock."""
    return _record(MovementDirection.IN, product_id, quantity, reason, reference, occurred_at, user_id, commit)


def record_out(
    product_id: int,
    quantity: int,
    reason: str,
    reference: str | None = None,
    occurred_at=None,
    user_id: int | None = None,
    commit: bool = True,
) -> MovementResult:
    """Append an OUT movement and lower the product's stock. Never goes below zero."""
    return _record(MovementDirection.OUT, product_id, quantity, reason, reference, occurred_at, user_id, commit)


def adjust_to(
    product_id: int,
    target_quantity: int,
    reason: str | None = None,
    reference: str | None = None,
    occurred_at=None,
    user_id: int | None = None,
    commit: bool = True,
) -> MovementResult:
    """
    Bring stock to an absolute count (physical count correction).

    Emits a single IN or OUT movement for the difference. Asking for the
    current stock is rejected as a no-op.
    """
    if isinstance(target_quantity, bool) or not isinstance(target_quantity, int) or target_quantity < 0:
        raise ValidationError("Invalid target quantity", ["target quantity must be a non-negative integer"])
    occurred_dt = _parse_occurred_at(occurred_at)

    def _inner() -> MovementResult:
        current = ensure_sellable(get_product(product_id, lock=True)).stock_quantity
        if target_quantity == current:
            raise ValidationError(
                "Stock already at target quantity",
                [{"product_id": product_id, "current": current, "target": target_quantity}],
            )

        if target_quantity > current:
            direction = MovementDirection.IN
            default_reason = ADJUST_REASON_UP
        else:
            direction = MovementDirection.OUT
            default_reason = ADJUST_REASON_DOWN

        final_reason, final_reference = _validate_texts(
            reason or default_reason,
            reference or f"Inventory adjustment: {current} -> {target_quantity}",
        )
        return _record_inner(
            product_id=product_id,
            direction=direction,
            quantity=abs(target_quantity - current),
            reason=final_reason,
            reference=final_reference,
            occurred_dt=occurred_dt,
            user_id=user_id,
        )

    return _execute(_inner, commit=commit, product_id=product_id, user_id=user_id)


def list_movements(product_id: int, limit: int = 100) -> list[InventoryMovement]:
    """Most recent movements first."""
    get_product(product_id)
    return (
        InventoryMovement.query.filter_by(product_id=product_id)
        .order_by(InventoryMovement.occurred_at.desc(), InventoryMovement.id.desc())
        .limit(limit)
        .all()
    )


def _signed_sum(*filters) -> int:
    signed = case(
        (InventoryMovement.direction == MovementDirection.IN, InventoryMovement.quantity),
        else_=-InventoryMovement.quantity,
    )
    total = db.session.query(func.coalesce(func.sum(signed), 0)).filter(*filters).scalar()
    return int(total or 0)


def replay_stock(product_id: int) -> int:
    """Stock recomputed from the movement history."""
    get_product(product_id)
    return _signed_sum(InventoryMovement.product_id == product_id)


def get_movement_stats(product_id: int) -> dict:
    product = get_product(product_id)

    rows = (
        db.session.query(
            InventoryMovement.direction,
            func.count(InventoryMovement.id),
            func.coalesce(func.sum(InventoryMovement.quantity), 0),
        )
        .filter(InventoryMovement.product_id == product_id)
        .group_by(InventoryMovement.direction)
        .all()
    )
    counts = {MovementDirection.IN: (0, 0), MovementDirection.OUT: (0, 0)}
    for direction, count, qty in rows:
        counts[MovementDirection(direction)] = (int(count), int(qty))

    in_count, total_in = counts[MovementDirection.IN]
    out_count, total_out = counts[MovementDirection.OUT]
    return {
        "product_id": product.id,
        "total_in": total_in,
        "total_out": total_out,
        "net": total_in - total_out,
        "in_count": in_count,
        "out_count": out_count,
        "movement_count": in_count + out_count,
        "current_stock": product.stock_quantity,
    }


def get_kardex(product_id: int, date_from=None, date_to=None) -> dict:
    """
    Chronological movement card for a product.

    Each entry carries stock_before / stock_after; the running total starts
    from the net of all movements strictly before date_from.
    """
    product = get_product(product_id)

    try:
        start, end = range_bounds(date_from, date_to)
    except ValueError as e:
        raise ValidationError("Invalid date range", [str(e)])

    opening = 0
    if start is not None:
        opening = _signed_sum(
            InventoryMovement.product_id == product_id,
            InventoryMovement.occurred_at < start,
        )

    q = InventoryMovement.query.filter(InventoryMovement.product_id == product_id)
    if start is not None:
        q = q.filter(InventoryMovement.occurred_at >= start)
    if end is not None:
        q = q.filter(InventoryMovement.occurred_at < end)
    movements = q.order_by(InventoryMovement.occurred_at.asc(), InventoryMovement.id.asc()).all()

    running = opening
    entries = []
    for mv in movements:
        before = running
        running += mv.signed_quantity
        entry = mv.to_dict()
        entry["stock_before"] = before
        entry["stock_after"] = running
        entries.append(entry)

    return {
        "product": product.to_dict(),
        "date_from": to_utc_z(start),
        "date_to": to_utc_z(normalize_datetime(date_to)) if date_to is not None else None,
        "opening_stock": opening,
        "closing_stock": running,
        "current_stock": product.stock_quantity,
        "entries": entries,
    }


def get_movement_report(date_from, date_to) -> dict:
    """Movements of every product inside [date_from, date_to], newest first."""
    missing = [name for name, value in (("date_from", date_from), ("date_to", date_to)) if value is None]
    if missing:
        raise ValidationError("Date range required", [f"{name} is required" for name in missing])
    try:
        start, end = range_bounds(date_from, date_to)
    except ValueError as e:
        raise ValidationError("Invalid date range", [str(e)])

    rows = (
        db.session.query(InventoryMovement, Product.name, Product.unit_of_measure)
        .join(Product, Product.id == InventoryMovement.product_id)
        .filter(InventoryMovement.occurred_at >= start, InventoryMovement.occurred_at < end)
        .order_by(InventoryMovement.occurred_at.desc(), InventoryMovement.id.desc())
        .all()
    )

    entries = []
    in_count = out_count = quantity_in = quantity_out = 0
    for mv, product_name, unit in rows:
        if mv.direction == MovementDirection.IN:
            in_count += 1
            quantity_in += mv.quantity
        else:
            out_count += 1
            quantity_out += mv.quantity
        entry = mv.to_dict()
        entry["product_name"] = product_name
        entry["unit"] = unit
        entries.append(entry)

    return {
        "date_from": to_utc_z(start),
        "date_to": to_utc_z(normalize_datetime(date_to)),
        "summary": {
            "movement_count": len(entries),
            "in_count": in_count,
            "out_count": out_count,
            "quantity_in": quantity_in,
            "quantity_out": quantity_out,
            "net": quantity_in - quantity_out,
        },
        "movements": entries,
    }
