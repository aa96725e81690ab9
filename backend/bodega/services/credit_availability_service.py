# Overview: Credit availability calculator; read-only aggregation of receivables.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func

from ..errors import NotFoundError
from ..extensions import db
from ..models import Client, Credit, CreditStatus, OUTSTANDING_STATUSES
from ..money import ZERO, money_str, round_money, to_money

NEAR_LIMIT_PCT = Decimal("80")
LIMIT_REACHED_PCT = Decimal("100")

STATUS_IN_ARREARS = "IN_ARREARS"
STATUS_LIMIT_REACHED = "LIMIT_REACHED"
STATUS_NEAR_LIMIT = "NEAR_LIMIT"
STATUS_AVAILABLE = "AVAILABLE"

_ALERTS = {
    STATUS_IN_ARREARS: "Client has overdue credits; collect before extending more credit",
    STATUS_LIMIT_REACHED: "Credit limit reached",
    STATUS_NEAR_LIMIT: "Credit usage is near the limit",
    STATUS_AVAILABLE: "Credit available",
}


@dataclass(frozen=True)
class CreditAvailability:
    client_id: int
    credit_limit: Decimal
    outstanding: Decimal
    disposable: Decimal
    utilization_pct: Decimal
    active_credits: int
    overdue_credits: int
    in_arrears: bool
    status: str

    def to_dict(self) -> dict:
        return {
            "client_id": self.client_id,
            "credit_limit": money_str(self.credit_limit),
            "outstanding": money_str(self.outstanding),
            "disposable": money_str(self.disposable),
            "utilization_pct": money_str(self.utilization_pct),
            "active_credits": self.active_credits,
            "overdue_credits": self.overdue_credits,
            "in_arrears": self.in_arrears,
            "status": self.status,
        }


def _classify(in_arrears: bool, utilization: Decimal) -> str:
    if in_arrears:
        return STATUS_IN_ARREARS
    if utilization >= LIMIT_REACHED_PCT:
        return STATUS_LIMIT_REACHED
    if utilization >= NEAR_LIMIT_PCT:
        return STATUS_NEAR_LIMIT
    return STATUS_AVAILABLE


def get_credit_availability(client_id: int, credit_limit) -> CreditAvailability:
    """
    Outstanding = sum of balances of the client's ACTIVE and OVERDUE credits.
    Disposable = max(0, limit - outstanding).
    """
    limit = to_money(credit_limit)

    rows = (
        db.session.query(
            Credit.status,
            func.count(Credit.id),
            func.coalesce(func.sum(Credit.balance), 0),
        )
        .filter(Credit.client_id == client_id, Credit.status.in_(OUTSTANDING_STATUSES))
        .group_by(Credit.status)
        .all()
    )

    outstanding = ZERO
    active_count = 0
    overdue_count = 0
    for status, count, balance in rows:
        outstanding += to_money(balance)
        if CreditStatus(status) is CreditStatus.OVERDUE:
            overdue_count = int(count)
        else:
            active_count = int(count)
    outstanding = round_money(outstanding)

    disposable = max(ZERO, round_money(limit - outstanding))
    if limit > ZERO:
        utilization = round_money(outstanding / limit * Decimal("100"))
    else:
        utilization = ZERO

    in_arrears = overdue_count > 0
    return CreditAvailability(
        client_id=client_id,
        credit_limit=limit,
        outstanding=outstanding,
        disposable=disposable,
        utilization_pct=utilization,
        active_credits=active_count,
        overdue_credits=overdue_count,
        in_arrears=in_arrears,
        status=_classify(in_arrears, utilization),
    )


def get_client_credit_report(client_id: int) -> dict:
    """Availability plus a human-readable alert, for the client credit screen."""
    client = db.session.get(Client, client_id)
    if client is None:
        raise NotFoundError("Client not found", [{"client_id": client_id}])

    if not client.is_credit_client:
        availability = get_credit_availability(client.id, ZERO)
        return {
            "client": client.to_dict(),
            "availability": availability.to_dict(),
            "alert": "Client is not a credit client and does not carry credit",
        }

    availability = get_credit_availability(client.id, client.credit_limit)
    return {
        "client": client.to_dict(),
        "availability": availability.to_dict(),
        "alert": _ALERTS[availability.status],
    }
