import pytest
from bson import ObjectId

import orders
from database import ORDERS, PRODUCTS, TRANSACTIONS
from errors import (
    ConflictError,
    ForbiddenError,
    InsufficientStockError,
    InvalidRequestError,
    InvalidTransitionError,
    NotFoundError,
)
from schemas import CartItem, ContactInfo, Session

CONTACT = ContactInfo(name="Awa Diallo", phone="+227 90 00 00 00", address="Quartier Plateau, Niamey")


@pytest.fixture
def stock(db, add_product):
    return add_product("Robe Wax", 15000, 10), add_product("Foulard Soie", 7000, 4, "Accessoires")


@pytest.fixture
def placed(db, customer, stock):
    p1, p2 = stock
    items = [CartItem(product_id=str(p1["_id"]), quantity=2), CartItem(product_id=str(p2["_id"]), quantity=1)]
    return orders.place_order(db, customer, items, CONTACT)


@pytest.fixture
def processing(db, admin, placed):
    return orders.advance_order(db, str(placed["_id"]), "processing", admin)


def product_stock(db, product):
    return db[PRODUCTS].find_one({"_id": product["_id"]})["stock"]


def test_place_order_freezes_totals_and_snapshots(db, customer, stock, placed):
    assert placed["status"] == "pending"
    assert placed["user_id"] == customer.id
    assert (placed["subtotal"], placed["shipping"], placed["total"]) == (37000, 2000, 39000)
    assert placed["items"][0] == {
        "product_id": str(stock[0]["_id"]), "name": "Robe Wax", "price": 15000,
        "quantity": 2, "image": "robe.jpg", "category": "Vêtements",
    }
    db[PRODUCTS].update_one({"_id": stock[0]["_id"]}, {"$set": {"price": 99000, "name": "Renamed"}})
    stored = db[ORDERS].find_one({"_id": placed["_id"]})
    assert stored["items"][0]["price"] == 15000
    assert stored["items"][0]["name"] == "Robe Wax"
    assert stored["total"] == stored["subtotal"] + stored["shipping"]


def test_place_order_rejects_unknown_product(db, customer):
    items = [CartItem(product_id=str(ObjectId()), quantity=1)]
    with pytest.raises(InvalidRequestError):
        orders.place_order(db, customer, items, CONTACT)
    assert db[ORDERS].count_documents({}) == 0


def test_place_order_requires_items_and_contact(db, customer, stock):
    with pytest.raises(InvalidRequestError):
        orders.place_order(db, customer, [], CONTACT)
    blank = ContactInfo.model_construct(name="Awa", phone="  ", address="Niamey")
    items = [CartItem(product_id=str(stock[0]["_id"]), quantity=1)]
    with pytest.raises(InvalidRequestError):
        orders.place_order(db, customer, items, blank)
    assert db[ORDERS].count_documents({}) == 0


def test_fulfillment_applies_all_effects(db, admin, stock, processing):
    completed = orders.advance_order(db, str(processing["_id"]), "completed", admin)

    assert completed["status"] == "completed"
    assert db[ORDERS].find_one({"_id": processing["_id"]})["status"] == "completed"
    assert product_stock(db, stock[0]) == 8
    assert product_stock(db, stock[1]) == 3
    entries = list(db[TRANSACTIONS].find())
    assert len(entries) == 1
    sale = entries[0]
    assert sale["type"] == "vente"
    assert sale["amount"] == 39000
    assert sale["payment_method"] == "especes"
    assert sale["source"] == "ecommerce"
    assert sale["user_id"] == admin.id
    assert sale["description"] == f"Commande Web #{str(processing['_id'])[:8]} - Awa Diallo"


def test_fulfillment_failure_leaves_nothing_behind(db, admin, stock, processing, monkeypatch):
    def broken(order, actor_id):
        raise RuntimeError("ledger write failed")
    monkeypatch.setattr(orders, "sale_entry", broken)

    with pytest.raises(RuntimeError):
        orders.fulfill_order(db, str(processing["_id"]), admin)

    assert db[ORDERS].find_one({"_id": processing["_id"]})["status"] == "processing"
    assert product_stock(db, stock[0]) == 10
    assert product_stock(db, stock[1]) == 4
    assert db[TRANSACTIONS].count_documents({}) == 0


def test_fulfilling_twice_applies_effects_once(db, admin, stock, processing):
    orders.fulfill_order(db, str(processing["_id"]), admin)
    with pytest.raises(ConflictError):
        orders.fulfill_order(db, str(processing["_id"]), admin)
    assert product_stock(db, stock[0]) == 8
    assert db[TRANSACTIONS].count_documents({"type": "vente"}) == 1


def test_commit_is_guarded_on_prior_status(db, admin, stock, processing, monkeypatch):
    # another admin completed the order after we read it as processing
    stale = dict(processing)
    db[ORDERS].update_one({"_id": processing["_id"]}, {"$set": {"status": "completed"}})
    monkeypatch.setattr(orders, "_load", lambda _db, _id: stale)

    with pytest.raises(ConflictError):
        orders.fulfill_order(db, str(processing["_id"]), admin)
    assert product_stock(db, stock[0]) == 10
    assert db[TRANSACTIONS].count_documents({}) == 0


def test_over_fulfillment_is_rejected(db, admin, customer, add_product):
    scarce = add_product("Veste Bazin", 45000, 3)
    order = orders.place_order(db, customer, [CartItem(product_id=str(scarce["_id"]), quantity=5)], CONTACT)
    orders.advance_order(db, str(order["_id"]), "processing", admin)

    with pytest.raises(InsufficientStockError) as exc:
        orders.fulfill_order(db, str(order["_id"]), admin, allow_negative_stock=False)
    assert exc.value.available == 3
    assert product_stock(db, scarce) == 3
    assert db[ORDERS].find_one({"_id": order["_id"]})["status"] == "processing"
    assert db[TRANSACTIONS].count_documents({}) == 0


def test_negative_stock_when_allowed(db, admin, customer, add_product):
    scarce = add_product("Veste Bazin", 45000, 3)
    order = orders.place_order(db, customer, [CartItem(product_id=str(scarce["_id"]), quantity=5)], CONTACT)
    orders.advance_order(db, str(order["_id"]), "processing", admin)

    orders.fulfill_order(db, str(order["_id"]), admin, allow_negative_stock=True)
    assert product_stock(db, scarce) == -2
    assert db[TRANSACTIONS].count_documents({"type": "vente"}) == 1


def test_deleted_product_blocks_fulfillment(db, admin, stock, processing):
    db[PRODUCTS].delete_one({"_id": stock[1]["_id"]})
    with pytest.raises(InsufficientStockError):
        orders.fulfill_order(db, str(processing["_id"]), admin)
    assert product_stock(db, stock[0]) == 10


@pytest.mark.parametrize("start,target", [
    ("pending", "completed"),
    ("completed", "cancelled"),
    ("cancelled", "processing"),
    ("processing", "pending"),
])
def test_invalid_transitions(db, admin, placed, start, target):
    db[ORDERS].update_one({"_id": placed["_id"]}, {"$set": {"status": start}})
    with pytest.raises(InvalidTransitionError):
        orders.advance_order(db, str(placed["_id"]), target, admin)
    assert db[ORDERS].find_one({"_id": placed["_id"]})["status"] == start


def test_cancel_has_no_side_effects(db, admin, stock, processing):
    cancelled = orders.advance_order(db, str(processing["_id"]), "cancelled", admin)
    assert cancelled["status"] == "cancelled"
    assert product_stock(db, stock[0]) == 10
    assert db[TRANSACTIONS].count_documents({}) == 0


def test_unknown_order(db, admin):
    with pytest.raises(NotFoundError):
        orders.advance_order(db, str(ObjectId()), "processing", admin)
    with pytest.raises(NotFoundError):
        orders.advance_order(db, "not-an-id", "processing", admin)


def test_listing_and_visibility(db, admin, customer, placed):
    assert [o["_id"] for o in orders.list_orders(db, q="awa")] == [placed["_id"]]
    assert orders.list_orders(db, status="completed") == []
    assert orders.list_orders(db, q=str(placed["_id"])[:6])[0]["_id"] == placed["_id"]
    assert len(orders.list_user_orders(db, customer.id)) == 1

    assert orders.get_order(db, str(placed["_id"]), customer)["_id"] == placed["_id"]
    assert orders.get_order(db, str(placed["_id"]), admin)["_id"] == placed["_id"]
    stranger = Session(id="user-2", email="moussa@hardesign.ne")
    with pytest.raises(ForbiddenError):
        orders.get_order(db, str(placed["_id"]), stranger)
