# Overview: Pytest coverage for the Flask CLI command groups.

from pdv.models import Product, StockMovement, Store, User
from pdv.services import cash_session_service


class TestBootstrapCommands:

    def test_init_db(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["system", "init-db"])
        assert "PASS" in result.output

    def test_create_store_user_product(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["stores", "create", "--name", "Loja Norte", "--code", "NORTE"])
        assert "PASS Created store" in result.output
        store = db_session.query(Store).filter_by(code="NORTE").one()

        result = runner.invoke(args=["users", "create", "--store-id", str(store.id), "--username", "ana"])
        assert "PASS Created user" in result.output
        assert db_session.query(User).filter_by(username="ana").one().store_id == store.id

        result = runner.invoke(args=[
            "products", "create", "--store-id", str(store.id), "--code", "789",
            "--name", "Cafe 500g", "--price", "18,90", "--stock", "20",
        ])
        assert "R$ 18,90" in result.output
        product = db_session.query(Product).filter_by(code="789").one()
        assert (product.price_cents, product.stock) == (1890, 20)

    def test_duplicates_reported(self, app, db_session, store, operator):
        runner = app.test_cli_runner()
        assert "FAIL" in runner.invoke(args=["stores", "create", "--name", "X", "--code", store.code]).output
        assert "FAIL" in runner.invoke(args=[
            "users", "create", "--store-id", str(store.id), "--username", operator.username,
        ]).output

    def test_bad_price(self, app, db_session, store):
        result = app.test_cli_runner().invoke(args=[
            "products", "create", "--store-id", str(store.id), "--code", "X", "--name", "X", "--price", "abc",
        ])
        assert "FAIL" in result.output
        assert db_session.query(Product).count() == 0


    def test_product_for_unknown_store(self, app, db_session):
        result = app.test_cli_runner().invoke(args=[
            "products", "create", "--store-id", "999", "--code", "X", "--name", "X", "--price", "1,00",
        ])
        assert "FAIL Store not found: 999" in result.output
        assert db_session.query(Product).count() == 0


class TestInventoryCommands:

    def test_adjust(self, app, db_session, product_a):
        result = app.test_cli_runner().invoke(args=[
            "inventory", "adjust", "--product-id", str(product_a.id), "--delta=-4", "--note", "Quebra",
        ])
        assert "stock now 6" in result.output
        assert db_session.query(StockMovement).filter_by(product_id=product_a.id).count() == 1

    def test_adjust_unknown_product(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["inventory", "adjust", "--product-id", "999", "--delta", "1"])
        assert "FAIL" in result.output


class TestSessionCommands:

    def test_summary(self, app, db_session, cash_session):
        cash_session_service.record_manual_movement(cash_session.id, "MANUAL_CREDIT", "Troco", 2500)

        result = app.test_cli_runner().invoke(args=["sessions", "summary", "--session-id", str(cash_session.id)])

        assert f"Session {cash_session.id} (OPEN)" in result.output
        assert "R$ 125,00" in result.output
        assert "MANUAL_CREDIT" in result.output

    def test_summary_unknown_session(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["sessions", "summary", "--session-id", "999"])
        assert "FAIL" in result.output
