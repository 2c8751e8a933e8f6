"""
Pytest fixtures for PDV backend tests.

Provides test database setup, store/operator/product factories, an open
cash session, a fault-injecting repository, and the test client.
"""

from collections import defaultdict

import pytest
from pdv import create_app
from pdv.errors import PersistenceError
from pdv.extensions import db
from pdv.models import Customer, Product, Store, User
from pdv.services import cash_session_service
from pdv.services.persistence import Repository


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'PDV_ENFORCE_STOCK': False,
        'PDV_COMMIT_TIMEOUT_SECONDS': None,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        app.config['PDV_ENFORCE_STOCK'] = False


@pytest.fixture(scope='function')
def enforce_stock(app, db_session):
    app.config['PDV_ENFORCE_STOCK'] = True
    yield
    app.config['PDV_ENFORCE_STOCK'] = False


@pytest.fixture(scope='function')
def store(db_session):
    store = Store(name="Loja Centro", code="CENTRO")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def operator(db_session, store):
    user = User(store_id=store.id, username="caixa1", full_name="Caixa 1")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def other_operator(db_session, store):
    user = User(store_id=store.id, username="caixa2", full_name="Caixa 2")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def customer(db_session, store):
    customer = Customer(store_id=store.id, name="Maria Souza", document="12345678900")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def make_product(db_session, store):
    """Factory: make_product(code, price_cents, stock=10, min_stock=0)."""
    def _make(code, price_cents, stock=10, min_stock=0, name=None):
        product = Product(
            store_id=store.id,
            code=code,
            name=name or f"Product {code}",
            price_cents=price_cents,
            stock=stock,
            min_stock=min_stock,
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def product_a(make_product):
    """R$ 5,00, 10 in stock."""
    return make_product("A", 500, stock=10)


@pytest.fixture(scope='function')
def product_b(make_product):
    """R$ 10,00, 5 in stock."""
    return make_product("B", 1000, stock=5)


@pytest.fixture(scope='function')
def cash_session(db_session, store, operator):
    """OPEN session with R$ 100,00 opening balance."""
    return cash_session_service.open_session(store.id, operator.id, 10000)


class FlakyRepository(Repository):
    """
    Repository that fails selected calls.

    fail_on("insert", SaleLine, nth=2) makes the second SaleLine insert
    raise PersistenceError; `times` controls how many consecutive calls fail
    (None = every call from nth on).
    """

    def __init__(self):
        super().__init__()
        self._rules = []
        self.calls = defaultdict(int)

    def fail_on(self, op, model, *, nth=1, times=1, retryable=False):
        self._rules.append({
            "op": op,
            "model": model,
            "nth": nth,
            "times": times,
            "retryable": retryable,
        })
        return self

    def clear(self):
        self._rules.clear()
        self.calls.clear()

    def _maybe_fail(self, op, model):
        self.calls[(op, model)] += 1
        count = self.calls[(op, model)]
        for rule in self._rules:
            if rule["op"] != op or rule["model"] is not model:
                continue
            last = None if rule["times"] is None else rule["nth"] + rule["times"] - 1
            if count >= rule["nth"] and (last is None or count <= last):
                raise PersistenceError(
                    f"Injected {op} failure on {model.__tablename__}",
                    details={"injected": True},
                    retryable=rule["retryable"],
                )

    def insert(self, model, values):
        self._maybe_fail("insert", model)
        return super().insert(model, values)

    def update(self, model, record_id, patch, *, expect=None):
        self._maybe_fail("update", model)
        return super().update(model, record_id, patch, expect=expect)

    def delete(self, model, record_id):
        self._maybe_fail("delete", model)
        return super().delete(model, record_id)

    def increment_field(self, model, record_id, field, delta, *, floor=None):
        self._maybe_fail("increment", model)
        return super().increment_field(model, record_id, field, delta, floor=floor)


@pytest.fixture(scope='function')
def flaky_repo(db_session):
    return FlakyRepository()
