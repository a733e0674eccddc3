"""Shared fixtures: temporary SQLite database, in-memory Redis and mocked upstreams."""
import os
import tempfile
from datetime import datetime
from decimal import Decimal

_tmp_dir = tempfile.mkdtemp(prefix="storefront-tests-")

os.environ["OTEL_ENABLED"] = "false"
os.environ["PROFILING_ENABLED"] = "false"
os.environ["DATABASE_URL"] = f"sqlite:///{_tmp_dir}/app.db"
os.environ["PAYPAL_BASE_URL"] = "https://paypal.test"
os.environ["PAYPAL_CLIENT_ID"] = "client-id"
os.environ["PAYPAL_CLIENT_SECRET"] = "client-secret"
os.environ["PAYPAL_CURRENCY"] = "GBP"
os.environ["CLOUDINARY_API_URL"] = "https://media.test/v1_1"
os.environ["CLOUDINARY_CLOUD_NAME"] = "demo"
os.environ["CLOUDINARY_API_KEY"] = "media-key"
os.environ["CLOUDINARY_API_SECRET"] = "media-secret"
os.environ["AUTH_SECRET"] = "test-secret"

import httpx
import pytest
import redis
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from storefront.auth import sign_session_token
from storefront.database import get_db
from storefront.dependencies import get_http_client, get_redis
from storefront.main import app
from storefront.models import Address, Base, Category, Order, OrderItem, OrderStatus, Product, User, UserRole


class FakePipeline:
    """Buffers sorted-set commands and applies them on execute()."""

    def __init__(self, store):
        self.store = store
        self.commands = []

    def zremrangebyscore(self, key, minimum, maximum):
        self.commands.append(("zremrangebyscore", key, minimum, maximum))
        return self

    def zcard(self, key):
        self.commands.append(("zcard", key))
        return self

    def zadd(self, key, mapping):
        self.commands.append(("zadd", key, mapping))
        return self

    def expire(self, key, seconds):
        self.commands.append(("expire", key, seconds))
        return self

    def execute(self):
        if self.store.fail:
            raise redis.ConnectionError("redis is down")
        results = []
        for command, key, *args in self.commands:
            members = self.store.sorted_sets.setdefault(key, {})
            if command == "zremrangebyscore":
                minimum, maximum = args
                stale = [m for m, score in members.items() if minimum <= score <= maximum]
                for member in stale:
                    del members[member]
                results.append(len(stale))
            elif command == "zcard":
                results.append(len(members))
            elif command == "zadd":
                members.update(args[0])
                results.append(len(args[0]))
            else:
                results.append(True)
        self.commands = []
        return results


class FakeRedis:
    """In-memory stand-in for the subset of the redis client the service uses."""

    def __init__(self):
        self.values = {}
        self.sorted_sets = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise redis.ConnectionError("redis is down")

    def get(self, key):
        self._check()
        return self.values.get(key)

    def set(self, key, value, ex=None):
        self._check()
        self.values[key] = str(value)
        return True

    def delete(self, key):
        self._check()
        return 1 if self.values.pop(key, None) is not None else 0

    def pipeline(self):
        return FakePipeline(self)


class Upstream:
    """Routes requests to PayPal and the media host through httpx.MockTransport."""

    def __init__(self):
        self.requests = []
        self.routes = {
            ("POST", "/v1/oauth2/token"): httpx.Response(
                200, json={"access_token": "token-123", "token_type": "Bearer"}
            ),
            ("POST", "/v1_1/demo/image/upload"): lambda request: httpx.Response(
                200, json={"secure_url": f"https://media.test/demo/image/{len(self.uploads)}.jpg"}
            ),
        }

    @property
    def uploads(self):
        return [r for r in self.requests if r.url.path.endswith("/image/upload")]

    def calls(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def handle(self, request: httpx.Request) -> httpx.Response:
        responder = self.routes.get((request.method, request.url.path))
        self.requests.append(request)
        if responder is None:
            return httpx.Response(404, json={"name": "RESOURCE_NOT_FOUND"})
        if callable(responder):
            return responder(request)
        return responder


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path}/test.db",
        connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def upstream():
    return Upstream()


@pytest.fixture
def http_client(upstream):
    return httpx.AsyncClient(transport=httpx.MockTransport(upstream.handle))


@pytest.fixture
def client(session_factory, fake_redis, http_client):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = lambda: fake_redis
    app.dependency_overrides[get_http_client] = lambda: http_client
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture
def catalog(db):
    """One category with three products: p1 (stock 10), p2 (stock 1), p3 (stock 0)."""
    category = Category(id="c1", name="Flours", description="Swallows")
    db.add(category)
    db.add_all([
        Product(id="p1", name="Yellow garri", description="4kg bag", price=Decimal("5.00"),
                stock=10, category_id="c1", images=["https://media.test/p1.jpg"]),
        Product(id="p2", name="Plantain fufu", description="1kg", price=Decimal("9.99"),
                stock=1, category_id="c1", images=[]),
        Product(id="p3", name="Yam flour", description="Amala", price=Decimal("7.50"),
                stock=0, category_id="c1", images=[]),
    ])
    db.commit()
    return category


@pytest.fixture
def users(db):
    db.add_all([
        User(id="u1", name="Ada Obi", email="ada@example.com", role=UserRole.USER),
        User(id="u2", name="Bola Ade", email="bola@example.com", role=UserRole.USER),
        User(id="admin", name="Admin", email="admin@example.com", role=UserRole.ADMIN),
    ])
    db.commit()


def auth_headers(user_id="u1", role=UserRole.USER):
    return {"Authorization": f"Bearer {sign_session_token(user_id, role)}"}


@pytest.fixture
def user_headers(users):
    return auth_headers("u1")


@pytest.fixture
def admin_headers(users):
    return auth_headers("admin", UserRole.ADMIN)


SHIPPING_INFO = {
    "fullName": "Ada Obi",
    "email": "ada@example.com",
    "address": "1 High Street",
    "city": "London",
    "state": "London",
    "zipCode": "E1 6AN",
    "country": "GB",
}


def add_order(db, order_id, total="10.00", status=OrderStatus.PENDING, user_id=None,
              guest_email=None, guest_name=None, created_at=None, items=(("p1", 2, "5.00"),)):
    """Insert an order directly, bypassing intake (no stock changes)."""
    address = Address(street="1 High Street", city="London", postal_code="E1 6AN", country="GB")
    db.add(address)
    db.flush()
    order = Order(
        id=order_id,
        user_id=user_id,
        guest_email=guest_email,
        guest_name=guest_name,
        address_id=address.id,
        total=Decimal(total),
        status=status,
        created_at=created_at or datetime.utcnow(),
        items=[
            OrderItem(product_id=product_id, quantity=quantity, price=Decimal(price))
            for product_id, quantity, price in items
        ]
    )
    db.add(order)
    db.commit()
    return order
