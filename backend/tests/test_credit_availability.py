"""
Credit availability tests.

Outstanding is the sum of ACTIVE and OVERDUE balances; disposable never
goes below zero.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from bodega.errors import NotFoundError
from bodega.services import credit_availability_service as availability_service
from bodega.services import credit_service, sales_service


def _credit_sale(client, product, quantity, operator=None):
    return sales_service.create_credit_sale(
        client.id,
        operator.id if operator else None,
        [{"product_id": product.id, "quantity": quantity}],
    )


class TestCreditAvailability:

    def test_fresh_client_has_full_limit(self, db_session, credit_client):
        result = availability_service.get_credit_availability(credit_client.id, credit_client.credit_limit)

        assert result.outstanding == Decimal("0.00")
        assert result.disposable == Decimal("5000.00")
        assert result.utilization_pct == Decimal("0.00")
        assert result.status == availability_service.STATUS_AVAILABLE

    def test_outstanding_counts_active_balances(self, db_session, credit_client, product):
        _credit_sale(credit_client, product, 15)

        result = availability_service.get_credit_availability(credit_client.id, credit_client.credit_limit)
        assert result.outstanding == Decimal("1500.00")
        assert result.disposable == Decimal("3500.00")
        assert result.utilization_pct == Decimal("30.00")
        assert result.active_credits == 1

    def test_payments_free_up_credit(self, db_session, credit_client, product):
        sale = _credit_sale(credit_client, product, 10)
        credit_service.apply_payment(sale.credit.id, "400.00")

        result = availability_service.get_credit_availability(credit_client.id, credit_client.credit_limit)
        assert result.outstanding == Decimal("600.00")

    def test_paid_and_void_credits_do_not_count(self, db_session, credit_client, product):
        first = _credit_sale(credit_client, product, 5)
        second = _credit_sale(credit_client, product, 5)
        credit_service.apply_payment(first.credit.id, "500.00")
        sales_service.void_sale(second.sale.id)

        result = availability_service.get_credit_availability(credit_client.id, credit_client.credit_limit)
        assert result.outstanding == Decimal("0.00")
        assert result.active_credits == 0

    def test_near_limit(self, db_session, credit_client, product):
        _credit_sale(credit_client, product, 40)

        result = availability_service.get_credit_availability(credit_client.id, credit_client.credit_limit)
        assert result.status == availability_service.STATUS_NEAR_LIMIT

    def test_limit_reached(self, db_session, credit_client, product):
        _credit_sale(credit_client, product, 50)

        result = availability_service.get_credit_availability(credit_client.id, credit_client.credit_limit)
        assert result.disposable == Decimal("0.00")
        assert result.status == availability_service.STATUS_LIMIT_REACHED

    def test_disposable_floors_at_zero_when_limit_lowered(self, db_session, credit_client, product):
        _credit_sale(credit_client, product, 20)

        result = availability_service.get_credit_availability(credit_client.id, "1000.00")
        assert result.outstanding == Decimal("2000.00")
        assert result.disposable == Decimal("0.00")
        assert result.utilization_pct == Decimal("200.00")

    def test_overdue_credit_puts_client_in_arrears(self, db_session, credit_client, product):
        sale = _credit_sale(credit_client, product, 1)
        credit_service.mark_overdue(sale.credit.due_date + timedelta(days=1))

        result = availability_service.get_credit_availability(credit_client.id, credit_client.credit_limit)
        assert result.in_arrears is True
        assert result.overdue_credits == 1
        assert result.outstanding == Decimal("100.00")
        assert result.status == availability_service.STATUS_IN_ARREARS


class TestClientCreditReport:

    def test_credit_client_report(self, db_session, credit_client):
        report = availability_service.get_client_credit_report(credit_client.id)

        assert report["client"]["id"] == credit_client.id
        assert report["availability"]["disposable"] == "5000.00"
        assert report["alert"] == "Credit available"

    def test_cash_client_report_has_no_limit(self, db_session, cash_client):
        report = availability_service.get_client_credit_report(cash_client.id)

        assert report["availability"]["credit_limit"] == "0.00"
        assert report["availability"]["disposable"] == "0.00"
        assert "not a credit client" in report["alert"]

    def test_unknown_client(self, db_session):
        with pytest.raises(NotFoundError):
            availability_service.get_client_credit_report(987654)
