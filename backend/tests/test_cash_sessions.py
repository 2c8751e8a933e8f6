# Overview: Pytest coverage for cash session lifecycle and the cash ledger.

from datetime import datetime

import pytest
from sqlalchemy.exc import IntegrityError

from pdv.cart import Cart
from pdv.errors import (
    InvalidAmountError,
    NotFoundError,
    SessionAlreadyOpenError,
    SessionNotOpenError,
    StateError,
    ValidationError,
)
from pdv.models import CashMovement, CashSession, Store
from pdv.services import cash_session_service, sales_service


def _sell(operator, session, product, qty=1, method="CASH"):
    cart = Cart()
    cart.add_line(product, qty)
    return sales_service.commit_sale(cart, method, operator.id, session.id)


class TestOpenSession:

    def test_open_session(self, db_session, store, operator):
        session = cash_session_service.open_session(store.id, operator.id, 10000)

        assert session.status == "OPEN"
        assert session.opening_balance_cents == 10000
        assert cash_session_service.list_movements(session.id) == []
        assert cash_session_service.running_balance(session.id) == 10000
        assert cash_session_service.get_open_session(operator.id, store.id).id == session.id

    def test_second_open_rejected(self, db_session, store, operator, cash_session):
        with pytest.raises(StateError) as exc:
            cash_session_service.open_session(store.id, operator.id, 0)
        assert isinstance(exc.value, SessionAlreadyOpenError)
        assert exc.value.details["session_id"] == cash_session.id

    def test_other_operator_may_open(self, db_session, store, other_operator, cash_session):
        session = cash_session_service.open_session(store.id, other_operator.id, 5000)
        assert session.id != cash_session.id

    def test_reopen_after_close(self, db_session, store, operator, cash_session):
        cash_session_service.close_session(cash_session.id, 10000)
        session = cash_session_service.open_session(store.id, operator.id, 2000)
        assert session.is_open

    def test_negative_opening_balance(self, db_session, store, operator):
        with pytest.raises(InvalidAmountError):
            cash_session_service.open_session(store.id, operator.id, -1)

    def test_unknown_operator(self, db_session, store):
        with pytest.raises(NotFoundError):
            cash_session_service.open_session(store.id, 777, 0)

    def test_inactive_operator(self, db_session, store, operator):
        operator.is_active = False
        db_session.commit()
        with pytest.raises(NotFoundError):
            cash_session_service.open_session(store.id, operator.id, 0)

    def test_unknown_store(self, db_session, operator):
        with pytest.raises(NotFoundError) as exc:
            cash_session_service.open_session(9999, operator.id, 0)
        assert exc.value.details["store_id"] == 9999
        assert db_session.query(CashSession).count() == 0

    def test_operator_of_another_store(self, db_session, store, operator):
        other_store = Store(name="Loja Norte", code="NORTE")
        db_session.add(other_store)
        db_session.commit()

        with pytest.raises(ValidationError):
            cash_session_service.open_session(other_store.id, operator.id, 0)
        assert db_session.query(CashSession).count() == 0

    def test_partial_index_rejects_second_open_row(self, db_session, store, operator, cash_session):
        db_session.add(CashSession(store_id=store.id, operator_id=operator.id, status="OPEN"))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_lost_race_reports_already_open(self, db_session, store, operator, cash_session, monkeypatch):
        real = cash_session_service.get_open_session
        calls = []

        def _racy(*args, **kwargs):
            calls.append(1)
            if len(calls) == 1:
                return None
            return real(*args, **kwargs)

        monkeypatch.setattr(cash_session_service, "get_open_session", _racy)

        with pytest.raises(SessionAlreadyOpenError):
            cash_session_service.open_session(store.id, operator.id, 0)
        assert db_session.query(CashSession).count() == 1


class TestMovements:

    def test_running_balance_credit_and_debit(self, db_session, cash_session):
        """B + X - Y"""
        cash_session_service.record_manual_movement(cash_session.id, "MANUAL_CREDIT", "Troco", 5000)
        cash_session_service.record_manual_movement(cash_session.id, "MANUAL_DEBIT", "Sangria", 2000)

        assert cash_session_service.running_balance(cash_session.id) == 10000 + 5000 - 2000

    def test_amounts_are_signed_by_kind(self, db_session, cash_session):
        credit = cash_session_service.record_manual_movement(cash_session.id, "manual_credit", "In", 300)
        debit = cash_session_service.record_manual_movement(cash_session.id, "MANUAL_DEBIT", "Out", 200)
        expense = cash_session_service.record_manual_movement(cash_session.id, "EXPENSE", "Cafe", 100)

        assert (credit.amount_cents, debit.amount_cents, expense.amount_cents) == (300, -200, -100)
        assert credit.kind == "MANUAL_CREDIT"
        assert cash_session_service.running_balance(cash_session.id) == 10000

    @pytest.mark.parametrize("amount", [0, -50, 1.5, "100"])
    def test_amount_must_be_positive_integer(self, db_session, cash_session, amount):
        with pytest.raises(InvalidAmountError):
            cash_session_service.record_manual_movement(cash_session.id, "MANUAL_CREDIT", "x", amount)

    @pytest.mark.parametrize("description", [None, "", "   "])
    def test_description_required(self, db_session, cash_session, description):
        with pytest.raises(ValidationError):
            cash_session_service.record_manual_movement(cash_session.id, "EXPENSE", description, 100)

    @pytest.mark.parametrize("description", [5, ["Troco"]])
    def test_description_must_be_text(self, db_session, cash_session, description):
        with pytest.raises(ValidationError):
            cash_session_service.record_manual_movement(cash_session.id, "EXPENSE", description, 100)
        assert cash_session_service.list_movements(cash_session.id) == []

    @pytest.mark.parametrize("kind", ["SALE", "OPENING", "REFUND", None, 3])
    def test_manual_kind_restricted(self, db_session, cash_session, kind):
        with pytest.raises(ValidationError):
            cash_session_service.record_manual_movement(cash_session.id, kind, "x", 100)

    def test_no_movements_on_closed_session(self, db_session, cash_session):
        cash_session_service.close_session(cash_session.id, 10000)
        with pytest.raises(SessionNotOpenError):
            cash_session_service.record_manual_movement(cash_session.id, "MANUAL_CREDIT", "late", 100)

    def test_movements_ordered_by_timestamp_then_id(self, db_session, cash_session):
        for occurred_at, description in [
            (datetime(2026, 1, 1, 12, 0), "noon"),
            (datetime(2026, 1, 1, 9, 0), "morning"),
            (datetime(2026, 1, 1, 12, 0), "noon again"),
        ]:
            db_session.add(CashMovement(
                session_id=cash_session.id,
                kind="MANUAL_CREDIT",
                amount_cents=100,
                description=description,
                occurred_at=occurred_at,
            ))
        db_session.commit()

        movements = cash_session_service.list_movements(cash_session.id)
        assert [m.description for m in movements] == ["morning", "noon", "noon again"]

    def test_sale_movement_is_idempotent(self, db_session, operator, cash_session, product_a):
        summary = _sell(operator, cash_session, product_a, 2)

        again = cash_session_service.append_sale_movement(cash_session.id, summary.sale_id, 1000, "CASH")

        assert db_session.query(CashMovement).filter_by(sale_id=summary.sale_id).count() == 1
        assert again.sale_id == summary.sale_id
        assert cash_session_service.running_balance(cash_session.id) == 11000

    def test_payment_method_totals_only_present_methods(
        self, db_session, operator, cash_session, product_a, product_b
    ):
        _sell(operator, cash_session, product_a, 2, "CASH")
        _sell(operator, cash_session, product_b, 1, "PIX")
        _sell(operator, cash_session, product_a, 1, "CASH")
        cash_session_service.record_manual_movement(cash_session.id, "MANUAL_CREDIT", "Troco", 999)

        assert cash_session_service.payment_method_totals(cash_session.id) == {"CASH": 1500, "PIX": 1000}


class TestCloseSession:

    def test_close_records_variance(self, db_session, operator, cash_session, product_a):
        _sell(operator, cash_session, product_a, 2)
        closed = cash_session_service.close_session(cash_session.id, 10500, notes="Short R$ 5")

        assert closed.status == "CLOSED"
        assert closed.closing_balance_cents == 10500
        assert closed.expected_balance_cents == 11000
        assert closed.variance_cents == -500
        assert closed.closed_at is not None
        assert closed.notes == "Short R$ 5"

    def test_close_without_discrepancy(self, db_session, cash_session):
        closed = cash_session_service.close_session(cash_session.id, 10000)
        assert closed.variance_cents == 0

    def test_close_twice(self, db_session, cash_session):
        cash_session_service.close_session(cash_session.id, 10000)
        with pytest.raises(SessionNotOpenError):
            cash_session_service.close_session(cash_session.id, 10000)

    def test_negative_count_rejected(self, db_session, cash_session):
        with pytest.raises(InvalidAmountError):
            cash_session_service.close_session(cash_session.id, -10)

    def test_unknown_session(self, db_session):
        with pytest.raises(NotFoundError):
            cash_session_service.close_session(31337, 0)


class TestSessionSummary:

    def test_summary(self, db_session, operator, cash_session, product_a, product_b):
        _sell(operator, cash_session, product_a, 2, "CASH")
        _sell(operator, cash_session, product_b, 1, "DEBIT")
        cash_session_service.record_manual_movement(cash_session.id, "EXPENSE", "Limpeza", 300)

        summary = cash_session_service.get_session_summary(cash_session.id)

        assert summary["running_balance_cents"] == 10000 + 1000 + 1000 - 300
        assert summary["totals_by_kind"] == {"SALE": 2000, "EXPENSE": -300}
        assert summary["payment_method_totals"] == {"CASH": 1000, "DEBIT": 1000}
        assert summary["sales_count"] == 2
        assert summary["cancelled_sales_count"] == 0
        assert summary["movements_count"] == 3
        assert summary["is_closed"] is False
        assert summary["variance_cents"] is None
