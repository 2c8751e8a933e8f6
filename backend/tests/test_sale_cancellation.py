# Overview: Pytest coverage for sale cancellation and stock restoration.

import pytest

from pdv.cart import Cart
from pdv.errors import (
    AlreadyCancelledError,
    CancellationIncompleteError,
    DeadlineExceededError,
    NotFoundError,
    PersistenceError,
)
from pdv.models import CashMovement, Product, Sale, StockMovement
from pdv.models.inventory import MOVEMENT_SALE_CANCEL
from pdv.services import cancellation_service, cash_session_service, inventory_service, sales_service
from pdv.services.concurrency import Deadline


def _commit(operator, session, *items, method="CASH", repository=None):
    cart = Cart()
    for product, qty in items:
        cart.add_line(product, qty)
    return sales_service.commit_sale(cart, method, operator.id, session.id, repository=repository)


class TestCancelSale:

    def test_cancel_restores_stock_and_keeps_cash(
        self, db_session, operator, cash_session, product_a, product_b
    ):
        summary = _commit(operator, cash_session, (product_a, 2), (product_b, 3))
        balance_after_sale = cash_session_service.running_balance(cash_session.id)

        result = cancellation_service.cancel_sale(summary.sale_id, user_id=operator.id, reason="Desistiu")

        assert result.status == "CANCELLED"
        assert len(result.restored) == 2
        assert result.warnings == []
        assert inventory_service.get_stock(product_a.id) == 10
        assert inventory_service.get_stock(product_b.id) == 5
        assert cash_session_service.running_balance(cash_session.id) == balance_after_sale
        assert db_session.query(CashMovement).filter_by(sale_id=summary.sale_id).count() == 1

        sale = sales_service.get_sale(summary.sale_id)
        assert sale.status == "CANCELLED"
        assert sale.cancelled_at is not None
        assert sale.cancelled_by_user_id == operator.id
        assert sale.cancel_reason == "Desistiu"

    def test_cash_scenario_balance_unchanged(self, db_session, operator, cash_session, make_product):
        """Open 100.00, sell 50.00 cash, cancel: stock back, balance stays 150.00"""
        product = make_product("FIFTY", 5000, stock=4)
        summary = _commit(operator, cash_session, (product, 1))

        cancellation_service.cancel_sale(summary.sale_id)

        assert inventory_service.get_stock(product.id) == 4
        assert cash_session_service.running_balance(cash_session.id) == 15000

    def test_cancel_twice(self, db_session, operator, cash_session, product_a):
        summary = _commit(operator, cash_session, (product_a, 1))
        cancellation_service.cancel_sale(summary.sale_id)

        with pytest.raises(AlreadyCancelledError):
            cancellation_service.cancel_sale(summary.sale_id)
        assert inventory_service.get_stock(product_a.id) == 10

    def test_cancel_unknown_sale(self, db_session):
        with pytest.raises(NotFoundError):
            cancellation_service.cancel_sale(4040)

    def test_summary_counts_cancelled_sales(self, db_session, operator, cash_session, product_a):
        first = _commit(operator, cash_session, (product_a, 1))
        _commit(operator, cash_session, (product_a, 1))
        cancellation_service.cancel_sale(first.sale_id)

        summary = cash_session_service.get_session_summary(cash_session.id)
        assert summary["sales_count"] == 1
        assert summary["cancelled_sales_count"] == 1


class TestIncompleteCancellation:

    def test_failed_reversal_keeps_sale_completed(
        self, db_session, operator, cash_session, product_a, product_b, flaky_repo
    ):
        summary = _commit(operator, cash_session, (product_a, 2), (product_b, 1))
        flaky_repo.fail_on("increment", Product, nth=2)

        with pytest.raises(PersistenceError) as exc:
            cancellation_service.cancel_sale(summary.sale_id, repository=flaky_repo)

        assert isinstance(exc.value, CancellationIncompleteError)
        assert [f["product_id"] for f in exc.value.details["failures"]] == [product_b.id]
        assert sales_service.get_sale(summary.sale_id).status == "COMPLETED"
        assert inventory_service.get_stock(product_a.id) == 10
        assert inventory_service.get_stock(product_b.id) == 4

    def test_retry_restores_each_line_exactly_once(
        self, db_session, operator, cash_session, product_a, product_b, flaky_repo
    ):
        summary = _commit(operator, cash_session, (product_a, 2), (product_b, 1))
        flaky_repo.fail_on("increment", Product, nth=2)
        with pytest.raises(CancellationIncompleteError):
            cancellation_service.cancel_sale(summary.sale_id, repository=flaky_repo)

        result = cancellation_service.cancel_sale(summary.sale_id)

        assert result.status == "CANCELLED"
        assert inventory_service.get_stock(product_a.id) == 10
        assert inventory_service.get_stock(product_b.id) == 5
        assert db_session.query(StockMovement).filter_by(
            sale_id=summary.sale_id, movement_type=MOVEMENT_SALE_CANCEL
        ).count() == 2

    def test_never_decremented_line_is_not_restored(
        self, db_session, operator, cash_session, product_a, flaky_repo
    ):
        flaky_repo.fail_on("increment", Product)
        summary = _commit(operator, cash_session, (product_a, 3), repository=flaky_repo)
        assert inventory_service.get_stock(product_a.id) == 10

        result = cancellation_service.cancel_sale(summary.sale_id)

        assert result.status == "CANCELLED"
        assert result.restored == []
        assert [w.step for w in result.warnings] == ["stock_reversal"]
        assert inventory_service.get_stock(product_a.id) == 10

    def test_status_update_failure_can_be_retried(
        self, db_session, operator, cash_session, product_a, flaky_repo
    ):
        summary = _commit(operator, cash_session, (product_a, 2))
        flaky_repo.fail_on("update", Sale)

        with pytest.raises(PersistenceError):
            cancellation_service.cancel_sale(summary.sale_id, repository=flaky_repo)
        assert sales_service.get_sale(summary.sale_id).status == "COMPLETED"

        cancellation_service.cancel_sale(summary.sale_id)
        assert inventory_service.get_stock(product_a.id) == 10

    def test_deadline_leaves_sale_completed(self, db_session, operator, cash_session, product_a):
        summary = _commit(operator, cash_session, (product_a, 1))
        deadline = Deadline(10)
        deadline.cancel()

        with pytest.raises(DeadlineExceededError):
            cancellation_service.cancel_sale(summary.sale_id, deadline=deadline)

        assert sales_service.get_sale(summary.sale_id).status == "COMPLETED"
        assert inventory_service.get_stock(product_a.id) == 9
