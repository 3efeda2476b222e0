from datetime import date
from unittest import mock

from pymongo import ReadPreference

import custom_orders
import database
import orders
from database import CUSTOM_ORDERS, ORDERS, PRODUCTS, TRANSACTIONS, USERS
from schemas import CartItem, ContactInfo, CustomerCreate, CustomOrderCreate

SESSION = object()
WRITES = ("insert_one", "find_one_and_update", "update_one")


class RecordingCollection:
    """Forwards to a mongomock collection, noting the session every write carried."""

    def __init__(self, collection, seen):
        self._collection = collection
        self._seen = seen

    def __getattr__(self, name):
        attr = getattr(self._collection, name)
        if name not in WRITES:
            return attr

        def write(*args, session=None, **kwargs):
            self._seen.append((self._collection.name, name, session))
            return attr(*args, **kwargs)
        return write


class RecordingDatabase:
    def __init__(self, db):
        self._db = db
        self.seen = []

    def __getitem__(self, name):
        return RecordingCollection(self._db[name], self.seen)


def in_session(db, callback):
    return callback(SESSION)


def test_fulfillment_writes_all_go_through_the_session(db, admin, add_product, customer, monkeypatch):
    robe, foulard = add_product("Robe Wax", 15000, 10), add_product("Foulard", 7000, 4)
    placed = orders.place_order(db, customer, [
        CartItem(product_id=str(robe["_id"]), quantity=2),
        CartItem(product_id=str(foulard["_id"]), quantity=1),
    ], ContactInfo(name="Awa", phone="90000000", address="Niamey"))
    orders.advance_order(db, str(placed["_id"]), "processing", admin)

    monkeypatch.setattr(orders, "run_transaction", in_session)
    recording = RecordingDatabase(db)
    orders.fulfill_order(recording, str(placed["_id"]), admin)

    assert [(coll, op) for coll, op, _ in recording.seen] == [
        (ORDERS, "find_one_and_update"),
        (PRODUCTS, "find_one_and_update"),
        (PRODUCTS, "find_one_and_update"),
        (TRANSACTIONS, "insert_one"),
    ]
    assert all(session is SESSION for _, _, session in recording.seen)


def test_custom_order_writes_all_go_through_the_session(db, admin, add_model, monkeypatch):
    model = add_model("Grand Boubou", 85000)
    walk_in = CustomerCreate(first_name="Hadiza", last_name="Moussa", phone="+227 97 00 00 01")
    payload = CustomOrderCreate(model_id=str(model["_id"]), new_customer=walk_in,
                                deadline=date(2026, 12, 15), deposit=20000)

    monkeypatch.setattr(custom_orders, "run_transaction", in_session)
    recording = RecordingDatabase(db)
    custom_orders.create_custom_order(recording, payload, admin)

    assert [(coll, op) for coll, op, _ in recording.seen] == [
        (USERS, "insert_one"),
        (CUSTOM_ORDERS, "insert_one"),
        (TRANSACTIONS, "insert_one"),
    ]
    assert all(session is SESSION for _, _, session in recording.seen)


def test_run_transaction_commits_through_with_transaction():
    client_db = mock.MagicMock()
    session = client_db.client.start_session.return_value.__enter__.return_value
    session.with_transaction.return_value = "committed"

    def callback(s):
        return s

    assert database.run_transaction(client_db, callback) == "committed"
    client_db.client.start_session.assert_called_once_with()
    session.with_transaction.assert_called_once()
    call = session.with_transaction.call_args
    assert call.args[0] is callback
    assert call.kwargs["read_concern"].level == "snapshot"
    assert call.kwargs["write_concern"].document == {"w": "majority"}
    assert call.kwargs["read_preference"] == ReadPreference.PRIMARY
    client_db.client.start_session.return_value.__exit__.assert_called_once()
