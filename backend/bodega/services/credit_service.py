# Overview: Credit ledger; receivable lifecycle, installments and the overdue sweep.

"""
Credit Ledger

A Credit is opened by every CREDIT sale for the sale's post-discount total
and is paid down in installments.

STATE MACHINE (the only place transitions are applied):
- ACTIVE  -> OVERDUE  due date passed (mark_overdue)
- ACTIVE  -> PAID     balance reached zero
- OVERDUE -> PAID
- ACTIVE / OVERDUE -> VOID   sale voided (void_credit), balance forced to 0
PAID and VOID are terminal.

INVARIANTS:
- 0 <= balance <= principal
- balance == principal - sum(payments) while not VOID
- payments are immutable; a payment never exceeds the balance it pays
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import and_, func, or_

from ..errors import (
    AlreadySettledError,
    ClientTypeMismatchError,
    ConflictError,
    ExcessPaymentError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import Client, Credit, CreditStatus, Payment, PaymentMethod, TERMINAL_STATUSES
from ..money import ZERO, money_str, round_money, to_money
from ..time_utils import business_today
from .audit_service import emit_audit_event
from .concurrency import lock_for_update, run_with_retry

MIN_TERM_DAYS = 1
MAX_TERM_DAYS = 365
MAX_NOTES = 255

_TRANSITIONS = {
    CreditStatus.ACTIVE: {CreditStatus.OVERDUE, CreditStatus.PAID, CreditStatus.VOID},
    CreditStatus.OVERDUE: {CreditStatus.PAID, CreditStatus.VOID},
    CreditStatus.PAID: set(),
    CreditStatus.VOID: set(),
}


@dataclass
class PaymentResult:
    payment: Payment
    credit: Credit
    previous_balance: Decimal
    new_balance: Decimal
    settled: bool

    def to_dict(self) -> dict:
        return {
            "payment": self.payment.to_dict(),
            "credit": self.credit.to_dict(),
            "previous_balance": money_str(self.previous_balance),
            "new_balance": money_str(self.new_balance),
            "settled": self.settled,
        }


def _transition(credit: Credit, new_status: CreditStatus) -> None:
    current = CreditStatus(credit.status)
    if new_status not in _TRANSITIONS[current]:
        raise ConflictError(
            f"Credit cannot move from {current.value} to {new_status.value}",
            [{"credit_id": credit.id, "from": current.value, "to": new_status.value}],
        )
    credit.status = new_status


def _get_credit(credit_id: int, *, lock: bool = False) -> Credit:
    query = db.session.query(Credit).filter_by(id=credit_id)
    if lock:
        query = lock_for_update(query)
    credit = query.first()
    if credit is None:
        raise NotFoundError("Credit not found", [{"credit_id": credit_id}])
    return credit


def validate_term_days(term_days) -> int:
    if term_days is None:
        term_days = current_app.config.get("DEFAULT_CREDIT_TERM_DAYS", 30)
    if isinstance(term_days, bool) or not isinstance(term_days, int):
        raise ValidationError("Invalid term", ["term_days must be an integer"])
    if not MIN_TERM_DAYS <= term_days <= MAX_TERM_DAYS:
        raise ValidationError(
            "Invalid term",
            [f"term_days must be between {MIN_TERM_DAYS} and {MAX_TERM_DAYS}"],
        )
    return term_days


def _open_credit_inner(
    *,
    sale_id: int,
    client_id: int,
    principal: Decimal,
    start_date: date,
    term_days: int,
) -> Credit:
    """Core open logic without retry or commit."""
    client = db.session.get(Client, client_id)
    if client is None:
        raise NotFoundError("Client not found", [{"client_id": client_id}])
    if not client.is_credit_client:
        raise ClientTypeMismatchError(
            "Client is not a credit client",
            [{"client_id": client.id, "client_class": client.client_class.value}],
        )

    credit = Credit(
        sale_id=sale_id,
        client_id=client.id,
        principal=principal,
        balance=principal,
        start_date=start_date,
        due_date=start_date + timedelta(days=term_days),
        term_days=term_days,
        status=CreditStatus.ACTIVE,
    )
    db.session.add(credit)
    db.session.flush()
    return credit


def open_credit(
    sale_id: int,
    client_id: int,
    principal,
    start_date: date | None = None,
    term_days: int | None = None,
    commit: bool = True,
) -> Credit:
    """Open a receivable for a CREDIT sale. Due date = start + term days."""
    try:
        principal_dec = to_money(principal)
    except ValueError:
        raise ValidationError("Invalid principal", ["principal must be a number"])
    if principal_dec <= ZERO:
        raise ValidationError("Invalid principal", ["principal must be greater than 0"])
    term = validate_term_days(term_days)
    start = start_date or business_today()

    def _inner() -> Credit:
        return _open_credit_inner(
            sale_id=sale_id,
            client_id=client_id,
            principal=principal_dec,
            start_date=start,
            term_days=term,
        )

    if not commit:
        return _inner()

    def _op() -> Credit:
        credit = _inner()
        db.session.commit()
        return credit

    credit = run_with_retry(_op)
    emit_audit_event(
        action="CREDIT_OPENED",
        entity_type="credit",
        entity_id=credit.id,
        after=credit.to_dict(),
    )
    return credit


def _parse_method(method) -> PaymentMethod:
    if isinstance(method, PaymentMethod):
        return method
    if isinstance(method, str):
        try:
            return PaymentMethod(method.strip().upper())
        except ValueError:
            pass
    raise ValidationError(
        "Invalid payment method",
        [f"method must be one of {', '.join(m.value for m in PaymentMethod)}"],
    )


def apply_payment(
    credit_id: int,
    amount,
    method="CASH",
    notes: str | None = None,
    operator_id: int | None = None,
) -> PaymentResult:
    """
    Apply an installment to a credit.

    The payment may not exceed the outstanding balance. Reaching zero settles
    the credit (PAID).
    """
    errors = []
    amount_dec = None
    try:
        amount_dec = to_money(amount)
    except ValueError:
        errors.append("amount must be a number")
    else:
        if amount_dec <= ZERO:
            errors.append("amount must be greater than 0")
    if notes is not None and (not isinstance(notes, str) or len(notes) > MAX_NOTES):
        errors.append(f"notes must be a string of at most {MAX_NOTES} characters")
    if errors:
        raise ValidationError("Invalid payment", errors)
    payment_method = _parse_method(method)

    def _op() -> PaymentResult:
        credit = _get_credit(credit_id, lock=True)

        if credit.status in TERMINAL_STATUSES:
            raise AlreadySettledError(
                "Credit is already settled",
                [{"credit_id": credit.id, "status": credit.status.value}],
            )

        previous_balance = round_money(credit.balance)
        if amount_dec > previous_balance:
            raise ExcessPaymentError(
                "Payment exceeds outstanding balance",
                [{
                    "credit_id": credit.id,
                    "balance": money_str(previous_balance),
                    "amount": money_str(amount_dec),
                }],
            )

        new_balance = round_money(previous_balance - amount_dec)
        payment = Payment(
            credit_id=credit.id,
            amount=amount_dec,
            method=payment_method,
            notes=notes.strip() if notes else None,
            resulting_balance=new_balance,
            operator_id=operator_id,
        )
        db.session.add(payment)

        credit.balance = new_balance
        settled = new_balance == ZERO
        if settled:
            _transition(credit, CreditStatus.PAID)

        db.session.flush()
        db.session.commit()
        return PaymentResult(
            payment=payment,
            credit=credit,
            previous_balance=previous_balance,
            new_balance=new_balance,
            settled=settled,
        )

    result = run_with_retry(_op)
    emit_audit_event(
        action="CREDIT_PAYMENT",
        entity_type="credit",
        entity_id=result.credit.id,
        actor_user_id=operator_id,
        before={"balance": money_str(result.previous_balance)},
        after={
            "balance": money_str(result.new_balance),
            "status": result.credit.status.value,
            "payment_id": result.payment.id,
        },
    )
    return result


def mark_overdue(today: date | None = None) -> list[Credit]:
    """
    Flag every ACTIVE credit whose due date is before `today` as OVERDUE.

    Idempotent: a second run the same day finds nothing to change.
    """
    cutoff = today or business_today()

    def _op() -> list[Credit]:
        query = Credit.query.filter(
            Credit.status == CreditStatus.ACTIVE,
            Credit.due_date < cutoff,
        ).order_by(Credit.id.asc())
        credits = lock_for_update(query).all()
        for credit in credits:
            _transition(credit, CreditStatus.OVERDUE)
        db.session.commit()
        return credits

    credits = run_with_retry(_op)
    current_app.logger.info("Overdue sweep for %s: %d credit(s) marked OVERDUE", cutoff.isoformat(), len(credits))
    if credits:
        emit_audit_event(
            action="CREDITS_MARKED_OVERDUE",
            entity_type="credit",
            entity_id=None,
            after={"as_of": cutoff.isoformat(), "credit_ids": [c.id for c in credits]},
        )
    return credits


def _void_credit_inner(credit_id: int) -> Credit:
    credit = _get_credit(credit_id, lock=True)
    _transition(credit, CreditStatus.VOID)
    credit.balance = ZERO
    db.session.flush()
    return credit


def void_credit(credit_id: int, commit: bool = False) -> Credit:
    """
    Cancel a credit because its sale was voided. Balance goes to zero.

    Normally called from sales_service.void_sale inside the void transaction,
    hence commit=False by default.
    """
    if not commit:
        return _void_credit_inner(credit_id)

    def _op() -> Credit:
        credit = _void_credit_inner(credit_id)
        db.session.commit()
        return credit

    credit = run_with_retry(_op)
    emit_audit_event(
        action="CREDIT_VOIDED",
        entity_type="credit",
        entity_id=credit.id,
        after=credit.to_dict(),
    )
    return credit


def find_credit_for_sale(sale_id: int) -> Credit | None:
    return Credit.query.filter_by(sale_id=sale_id).first()


def get_credit(credit_id: int) -> dict:
    credit = _get_credit(credit_id)
    payments = list(credit.payments)
    total_paid = round_money(sum((Decimal(p.amount) for p in payments), ZERO))
    return {
        "credit": credit.to_dict(),
        "payments": [p.to_dict() for p in payments],
        "payment_count": len(payments),
        "total_paid": money_str(total_paid),
    }


def list_credits(
    *,
    client_id: int | None = None,
    status=None,
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int = 100,
) -> list[Credit]:
    """Credits filtered by client, status and start date range (inclusive)."""
    q = Credit.query
    if client_id is not None:
        q = q.filter(Credit.client_id == client_id)
    if status:
        try:
            q = q.filter(Credit.status == CreditStatus(str(status).upper()))
        except ValueError:
            raise ValidationError(
                "Invalid status",
                [f"status must be one of {', '.join(s.value for s in CreditStatus)}"],
            )
    if date_from is not None:
        q = q.filter(Credit.start_date >= date_from)
    if date_to is not None:
        q = q.filter(Credit.start_date <= date_to)
    return q.order_by(Credit.start_date.desc(), Credit.id.desc()).limit(limit).all()


def get_collections_summary() -> dict:
    """Portfolio overview: outstanding ACTIVE vs OVERDUE balances."""
    rows = (
        db.session.query(
            Credit.status,
            func.count(Credit.id),
            func.coalesce(func.sum(Credit.balance), 0),
        )
        .filter(Credit.status.in_((CreditStatus.ACTIVE, CreditStatus.OVERDUE)))
        .group_by(Credit.status)
        .all()
    )
    totals = {
        CreditStatus.ACTIVE: (0, ZERO),
        CreditStatus.OVERDUE: (0, ZERO),
    }
    for status, count, balance in rows:
        totals[CreditStatus(status)] = (int(count), to_money(balance))

    active_count, active_sum = totals[CreditStatus.ACTIVE]
    overdue_count, overdue_sum = totals[CreditStatus.OVERDUE]
    portfolio = round_money(active_sum + overdue_sum)
    overdue_rate = round_money(overdue_sum / portfolio * Decimal("100")) if portfolio > ZERO else ZERO

    return {
        "active_count": active_count,
        "active_balance": money_str(active_sum),
        "overdue_count": overdue_count,
        "overdue_balance": money_str(overdue_sum),
        "portfolio_balance": money_str(portfolio),
        "overdue_rate_pct": money_str(overdue_rate),
    }


def list_credits_due_soon(days: int = 7, today: date | None = None) -> dict:
    """
    ACTIVE credits falling due after today and within the next `days` days.

    Feeds the upcoming-due reminders; credits due today are not included.
    """
    if isinstance(days, bool) or not isinstance(days, int) or not 1 <= days <= MAX_TERM_DAYS:
        raise ValidationError("Invalid days", [f"days must be an integer between 1 and {MAX_TERM_DAYS}"])
    start = today or business_today()
    horizon = start + timedelta(days=days)

    credits = (
        Credit.query.filter(
            Credit.status == CreditStatus.ACTIVE,
            Credit.due_date > start,
            Credit.due_date <= horizon,
        )
        .order_by(Credit.due_date.asc(), Credit.id.asc())
        .all()
    )
    return {
        "as_of": start.isoformat(),
        "days": days,
        "total": len(credits),
        "credits": [c.to_dict() for c in credits],
    }


def get_overdue_report(today: date | None = None) -> dict:
    """
    Overdue portfolio: OVERDUE credits plus ACTIVE ones already past due
    that the daily sweep has not flagged yet.
    """
    cutoff = today or business_today()
    credits = (
        Credit.query.filter(
            or_(
                Credit.status == CreditStatus.OVERDUE,
                and_(Credit.status == CreditStatus.ACTIVE, Credit.due_date < cutoff),
            )
        )
        .order_by(Credit.due_date.asc(), Credit.id.asc())
        .all()
    )

    entries = []
    total = ZERO
    for credit in credits:
        total += round_money(Decimal(credit.balance))
        entry = credit.to_dict()
        entry["client"] = credit.client.to_dict() if credit.client is not None else None
        entry["days_overdue"] = (cutoff - credit.due_date).days
        entries.append(entry)

    return {
        "as_of": cutoff.isoformat(),
        "credit_count": len(entries),
        "total_overdue": money_str(total),
        "credits": entries,
    }
