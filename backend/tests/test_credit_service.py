"""
Credit ledger tests.

Verifies:
- Installments lower the balance; reaching zero settles the credit
- Overpayments and payments on settled credits are rejected untouched
- Overdue sweep is idempotent and day-granular
- balance == principal - sum(payments) at every step
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from bodega.errors import (
    AlreadySettledError,
    ClientTypeMismatchError,
    ConflictError,
    ExcessPaymentError,
    NotFoundError,
    ValidationError,
)
from bodega.extensions import db
from bodega.models import Credit, CreditStatus, Payment
from bodega.services import credit_service, sales_service
from bodega.time_utils import business_today


@pytest.fixture
def credit(db_session, credit_client, product, seller_user):
    """ACTIVE credit of 1000.00 (10 bags), 30-day term."""
    result = sales_service.create_credit_sale(
        credit_client.id,
        seller_user.id,
        [{"product_id": product.id, "quantity": 10}],
    )
    return result.credit


def _paid_sum(credit_id):
    return sum((Decimal(p.amount) for p in Payment.query.filter_by(credit_id=credit_id)), Decimal("0"))


# =============================================================================
# OPENING
# =============================================================================


class TestOpenCredit:

    def test_opened_by_credit_sale(self, credit):
        assert credit.status is CreditStatus.ACTIVE
        assert credit.principal == Decimal("1000.00")
        assert credit.balance == credit.principal
        assert credit.term_days == 30
        assert credit.due_date == credit.start_date + timedelta(days=30)

    def test_cash_client_cannot_hold_credit(self, db_session, cash_client):
        with pytest.raises(ClientTypeMismatchError):
            credit_service.open_credit(1, cash_client.id, "10.00")
        assert Credit.query.count() == 0

    @pytest.mark.parametrize("term_days", [0, 366, "30", 2.5])
    def test_term_days_range(self, app, term_days):
        with pytest.raises(ValidationError):
            credit_service.validate_term_days(term_days)

    def test_term_days_default_from_config(self, app):
        assert credit_service.validate_term_days(None) == app.config["DEFAULT_CREDIT_TERM_DAYS"]

    def test_principal_must_be_positive(self, db_session, credit_client):
        with pytest.raises(ValidationError):
            credit_service.open_credit(1, credit_client.id, "0.00")


# =============================================================================
# PAYMENTS
# =============================================================================


class TestApplyPayment:

    def test_partial_payment(self, db_session, credit, seller_user):
        result = credit_service.apply_payment(credit.id, "250.00", method="CASH", operator_id=seller_user.id)

        assert result.previous_balance == Decimal("1000.00")
        assert result.new_balance == Decimal("750.00")
        assert result.settled is False
        assert result.payment.resulting_balance == Decimal("750.00")
        assert result.credit.status is CreditStatus.ACTIVE

    def test_exact_payment_settles(self, db_session, credit):
        credit_service.apply_payment(credit.id, "400.00")
        result = credit_service.apply_payment(credit.id, "600.00", method="transfer")

        assert result.settled is True
        assert result.credit.status is CreditStatus.PAID
        assert result.credit.balance == Decimal("0.00")

    def test_excess_payment_leaves_balance_unchanged(self, db_session, credit):
        credit_service.apply_payment(credit.id, "900.00")

        with pytest.raises(ExcessPaymentError) as exc:
            credit_service.apply_payment(credit.id, "100.01")

        assert exc.value.details[0]["balance"] == "100.00"
        reloaded = db.session.get(Credit, credit.id)
        assert reloaded.balance == Decimal("100.00")
        assert Payment.query.filter_by(credit_id=credit.id).count() == 1

    def test_payment_on_paid_credit_rejected(self, db_session, credit):
        credit_service.apply_payment(credit.id, "1000.00")

        with pytest.raises(AlreadySettledError):
            credit_service.apply_payment(credit.id, "1.00")

    @pytest.mark.parametrize("amount", ["0", "-5", "abc", None])
    def test_invalid_amount(self, db_session, credit, amount):
        with pytest.raises(ValidationError):
            credit_service.apply_payment(credit.id, amount)

    def test_invalid_method(self, db_session, credit):
        with pytest.raises(ValidationError):
            credit_service.apply_payment(credit.id, "10.00", method="BARTER")

    def test_unknown_credit(self, db_session):
        with pytest.raises(NotFoundError):
            credit_service.apply_payment(424242, "10.00")

    def test_balance_equals_principal_minus_payments(self, db_session, credit):
        for amount in ("100.00", "0.01", "333.33", "66.66"):
            credit_service.apply_payment(credit.id, amount)
            reloaded = db.session.get(Credit, credit.id)
            assert reloaded.balance == reloaded.principal - _paid_sum(credit.id)

    def test_payments_are_immutable(self, db_session, credit):
        result = credit_service.apply_payment(credit.id, "10.00")
        result.payment.amount = Decimal("1.00")

        with pytest.raises(ConflictError):
            db_session.commit()
        db_session.rollback()

    def test_get_credit_detail(self, db_session, credit):
        credit_service.apply_payment(credit.id, "150.00")
        credit_service.apply_payment(credit.id, "50.00")

        detail = credit_service.get_credit(credit.id)
        assert detail["payment_count"] == 2
        assert detail["total_paid"] == "200.00"
        assert detail["credit"]["balance"] == "800.00"
        assert detail["credit"]["amount_paid"] == "200.00"


# =============================================================================
# OVERDUE SWEEP
# =============================================================================


class TestMarkOverdue:

    def test_not_overdue_on_due_date(self, db_session, credit):
        assert credit_service.mark_overdue(credit.due_date) == []

    def test_overdue_day_after_due_date(self, db_session, credit):
        marked = credit_service.mark_overdue(credit.due_date + timedelta(days=1))

        assert [c.id for c in marked] == [credit.id]
        assert db.session.get(Credit, credit.id).status is CreditStatus.OVERDUE

    def test_sweep_is_idempotent(self, db_session, credit):
        later = credit.due_date + timedelta(days=1)
        credit_service.mark_overdue(later)
        assert credit_service.mark_overdue(later) == []

    def test_overdue_credit_can_still_be_paid(self, db_session, credit):
        credit_service.mark_overdue(credit.due_date + timedelta(days=1))
        result = credit_service.apply_payment(credit.id, "1000.00")
        assert result.credit.status is CreditStatus.PAID

    def test_paid_credit_is_never_marked_overdue(self, db_session, credit):
        credit_service.apply_payment(credit.id, "1000.00")
        assert credit_service.mark_overdue(credit.due_date + timedelta(days=5)) == []

    def test_defaults_to_business_today(self, db_session, credit):
        assert credit.start_date == business_today()
        assert credit_service.mark_overdue() == []


# =============================================================================
# LISTING AND SUMMARY
# =============================================================================


class TestCreditQueries:

    def test_list_by_status(self, db_session, credit):
        assert [c.id for c in credit_service.list_credits(status="active")] == [credit.id]
        assert credit_service.list_credits(status="PAID") == []

    def test_list_invalid_status(self, db_session):
        with pytest.raises(ValidationError):
            credit_service.list_credits(status="LATE")

    def test_collections_summary(self, db_session, credit):
        credit_service.apply_payment(credit.id, "200.00")
        credit_service.mark_overdue(credit.due_date + timedelta(days=1))

        summary = credit_service.get_collections_summary()
        assert summary["active_count"] == 0
        assert summary["overdue_count"] == 1
        assert summary["overdue_balance"] == "800.00"
        assert summary["portfolio_balance"] == "800.00"
        assert summary["overdue_rate_pct"] == "100.00"


# =============================================================================
# DUE SOON AND OVERDUE PORTFOLIO
# =============================================================================


class TestCreditReports:

    def test_due_soon_window(self, db_session, credit):
        report = credit_service.list_credits_due_soon(7, today=credit.due_date - timedelta(days=3))
        assert [c["id"] for c in report["credits"]] == [credit.id]
        assert report["total"] == 1
        assert report["days"] == 7

        assert credit_service.list_credits_due_soon(2, today=credit.due_date - timedelta(days=3))["total"] == 0

    def test_due_today_is_not_due_soon(self, db_session, credit):
        assert credit_service.list_credits_due_soon(7, today=credit.due_date)["credits"] == []

    def test_due_soon_skips_paid_credits(self, db_session, credit):
        credit_service.apply_payment(credit.id, "1000.00")
        assert credit_service.list_credits_due_soon(30, today=credit.start_date)["total"] == 0

    def test_due_soon_ordered_by_due_date(self, db_session, credit, credit_client, product):
        sooner = sales_service.create_credit_sale(
            credit_client.id, None, [{"product_id": product.id, "quantity": 1}], term_days=20
        ).credit

        report = credit_service.list_credits_due_soon(30, today=credit.start_date)
        assert [c["id"] for c in report["credits"]] == [sooner.id, credit.id]

    @pytest.mark.parametrize("days", [0, 366, "7", True])
    def test_due_soon_invalid_days(self, db_session, days):
        with pytest.raises(ValidationError):
            credit_service.list_credits_due_soon(days)

    def test_overdue_report_includes_unswept_credits(self, db_session, credit, credit_client, product):
        short = sales_service.create_credit_sale(
            credit_client.id, None, [{"product_id": product.id, "quantity": 2}], term_days=10
        ).credit
        today = credit.start_date + timedelta(days=12)

        report = credit_service.get_overdue_report(today)
        assert [c["id"] for c in report["credits"]] == [short.id]
        assert report["credits"][0]["status"] == "ACTIVE"
        assert report["credits"][0]["days_overdue"] == 2
        assert report["credits"][0]["client"]["id"] == credit_client.id
        assert report["total_overdue"] == "200.00"

        credit_service.mark_overdue(today)
        credit_service.apply_payment(short.id, "50.00")

        report = credit_service.get_overdue_report(today)
        assert report["credit_count"] == 1
        assert report["credits"][0]["status"] == "OVERDUE"
        assert report["total_overdue"] == "150.00"

    def test_overdue_report_empty(self, db_session, credit):
        report = credit_service.get_overdue_report(credit.due_date)
        assert report["credits"] == []
        assert report["total_overdue"] == "0.00"
