# tests/conftest.py
import os
import pytest
from app import create_app
from models.base import Base, init_engine_and_session, reset_engine
from models.products_store import upsert_products

TEST_CONFIG = {
    "TESTING": True,
    "PAYMENT_PROVIDER": "dummy",
    "PAYMENT_WEBHOOK_SECRET": "whsec_test_secret",
    "CART_SIGNING_SECRET": "cart_test_secret",
    "ADMIN_API_TOKEN": "admin-test-token",
    "FRONTEND_URL": "http://shop.test",
    "PAYMENT_CURRENCY": "USD",
    "MAIL_SERVER": None,
}

# env wins over app.config in services.config.cfg(); keep tests on TEST_CONFIG
_CONFIG_ENV_KEYS = (
    "PAYMENT_PROVIDER", "PAYMENT_WEBHOOK_SECRET", "CART_SIGNING_SECRET",
    "ADMIN_API_TOKEN", "FRONTEND_URL", "PAYMENT_CURRENCY", "WEBHOOK_SIGNATURE_HEADER",
    "WEBHOOK_TOLERANCE_SEC", "ORDER_AMOUNT_TOLERANCE", "STRIPE_SECRET_KEY", "MAIL_SERVER",
)


@pytest.fixture(scope="session", autouse=True)
def _set_env(tmp_path_factory):
    os.environ.setdefault("APP_ENV", "test")
    os.environ.setdefault("METRICS_ENABLED", "0")
    os.environ.setdefault("AUTO_CREATE_SCHEMA", "1")
    # point DATABASE_URL at PostgreSQL to run the suite there instead
    db_file = tmp_path_factory.mktemp("db") / "shop.sqlite3"
    os.environ.setdefault("DATABASE_URL", f"sqlite:///{db_file}")
    for k in _CONFIG_ENV_KEYS:
        os.environ.pop(k, None)
    reset_engine()
    yield
    reset_engine()


@pytest.fixture(scope="session")
def app(_set_env):
    app = create_app(dict(TEST_CONFIG))
    yield app
    app.extensions["notifier"].shutdown(wait=True)


@pytest.fixture(scope="session")
def db_engine(app):
    engine, _Session = init_engine_and_session()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(autouse=True)
def _db_clean(db_engine):
    with db_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    yield


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def request_ctx(app):
    # templates and Babel need a context when the engine renders the receipt
    with app.test_request_context():
        yield


@pytest.fixture()
def products():
    upsert_products([
        {"id": "p1", "name": "Minimalist Desk Lamp", "type": "PHYSICAL",
         "price": "10.00", "stock": 10},
        {"id": "p2", "name": "Ergonomic Keyboard", "type": "PHYSICAL",
         "price": "129.50", "stock": 5},
        {"id": "d1", "name": "React UI Kit", "type": "DIGITAL", "price": "29.00"},
    ])
    return ["p1", "p2", "d1"]


@pytest.fixture()
def admin_headers():
    return {"Authorization": f"Bearer {TEST_CONFIG['ADMIN_API_TOKEN']}"}
