import mongomock
import pytest
from bson.objectid import ObjectId
from fastapi.testclient import TestClient

from accounts import public_user
from database import Store
from main import app
from notifier import Notifier
from schemas import Category, Product, User
from security import hash_password
from tests.helpers import Outbox


@pytest.fixture
def store():
    s = Store(mongomock.MongoClient()["storefront_test"])
    s.ensure_indexes()
    return s


@pytest.fixture
def outbox():
    return Outbox()


@pytest.fixture
def notifier(outbox):
    return Notifier(outbox)


@pytest.fixture
def client(store, outbox):
    app.state.store = store
    app.state.mailer = outbox
    with TestClient(app) as c:
        yield c
    app.state.store = None
    app.state.mailer = None


@pytest.fixture
def make_user(store):
    def _make(email="alice@mail.com", name="Alice", password="secret123", role="user", verified=True):
        user = User(name=name, email=email, password_hash=hash_password(password), role=role, is_verified=verified)
        user_id = store.create_document("user", user)
        return public_user(store["user"].find_one({"_id": ObjectId(user_id)}))
    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(email="admin@mail.com", name="Admin", role="admin")


@pytest.fixture
def category_id(store):
    return store.create_document("category", Category(name="Electronics"))


@pytest.fixture
def make_product(store, category_id):
    def _make(title="Widget", price=10.0, stock=5, **fields):
        return store.create_document("product", Product(title=title, price=price, stock=stock, category_id=category_id, **fields))
    return _make

