import mongomock
import pytest
from fastapi.testclient import TestClient

import auth
import custom_orders
import orders
from database import COUTURE_MODELS, PRODUCTS, USERS, get_db, now
from schemas import Session

ADMIN_EMAIL = "admin@hardesign.ne"
ADMIN_PASSWORD = "secret-admin"


def snapshot_transaction(db, callback):
    """Stand-in for run_transaction: mongomock has no sessions, so restore
    every collection to its prior contents when the callback fails."""
    saved = {name: list(db[name].find()) for name in db.list_collection_names()}
    try:
        return callback(None)
    except Exception:
        for name in db.list_collection_names():
            db[name].delete_many({})
        for name, docs in saved.items():
            if docs:
                db[name].insert_many(docs)
        raise


@pytest.fixture
def db(monkeypatch):
    database = mongomock.MongoClient().hardesign_test
    monkeypatch.setattr(orders, "run_transaction", snapshot_transaction)
    monkeypatch.setattr(custom_orders, "run_transaction", snapshot_transaction)
    return database


@pytest.fixture
def admin():
    return Session(id="admin-1", email=ADMIN_EMAIL, first_name="Admin", last_name="HAR DESIGN", role="admin")


@pytest.fixture
def customer():
    return Session(id="user-1", email="awa@hardesign.ne", first_name="Awa", last_name="Diallo",
                   phone="+227 90 00 00 00", role="user")


@pytest.fixture
def add_product(db):
    def _add(name="Robe Wax", price=15000, stock=10, category="Vêtements", image="robe.jpg"):
        doc = {"name": name, "price": price, "stock": stock, "category": category,
               "image": image, "description": "", "created_at": now()}
        doc["_id"] = db[PRODUCTS].insert_one(doc).inserted_id
        return doc
    return _add


@pytest.fixture
def add_model(db):
    def _add(name="Grand Boubou", price=85000, image="boubou.jpg", category=None):
        doc = {"name": name, "price": price, "image": image, "description": ""}
        if category:
            doc["category"] = category
        doc["_id"] = db[COUTURE_MODELS].insert_one(doc).inserted_id
        return doc
    return _add


@pytest.fixture
def add_customer(db):
    def _add(first_name="Mariama", last_name="Issa", phone="+227 96 11 22 33"):
        doc = {"first_name": first_name, "last_name": last_name, "phone": phone,
               "email": None, "role": "user", "created_at": now()}
        doc["_id"] = db[USERS].insert_one(doc).inserted_id
        return doc
    return _add


@pytest.fixture
def client(db):
    from main import app
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers(db, client):
    auth.seed_admin(db, ADMIN_EMAIL, ADMIN_PASSWORD)
    res = client.post("/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    return {"Authorization": f"Bearer {res.json()['access_token']}"}


@pytest.fixture
def user_headers(client):
    client.post("/auth/register", json={
        "first_name": "Awa", "last_name": "Diallo", "email": "awa@hardesign.ne",
        "phone": "+227 90 00 00 00", "password": "motdepasse",
    })
    res = client.post("/auth/login", json={"email": "awa@hardesign.ne", "password": "motdepasse"})
    return {"Authorization": f"Bearer {res.json()['access_token']}"}
