"""
Order workflow: checkout, status changes and fulfillment.

Totals are computed once when the order is placed and never touched again.
Completing an order is the only transition with side effects: the status
change, the stock decrements and the ``vente`` ledger entry are committed
together in one transaction, guarded on the order still being
``processing`` so a second attempt cannot apply them twice.
"""

import logging
from typing import List, Optional

from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument

from cart import Cart, format_fcfa
from config import get_settings
from database import ORDERS, PRODUCTS, TRANSACTIONS, get_documents, now, run_transaction
from errors import (
    ConflictError,
    ForbiddenError,
    InsufficientStockError,
    InvalidRequestError,
    InvalidTransitionError,
    NotFoundError,
)
from ledger import sale_entry
from schemas import CartItem, ContactInfo, Session

logger = logging.getLogger(__name__)

ORDER_TRANSITIONS = {
    "pending": {"processing", "cancelled"},
    "processing": {"completed", "cancelled"},
    "completed": set(),
    "cancelled": set(),
}


def parse_id(value: str, what: str = "Order") -> ObjectId:
    if not ObjectId.is_valid(value):
        raise NotFoundError(f"{what} not found")
    return ObjectId(value)


def resolve_cart(db, items: List[CartItem]) -> Cart:
    """Price cart items against the current products."""
    entries = []
    for item in items:
        product = None
        if ObjectId.is_valid(item.product_id):
            product = db[PRODUCTS].find_one({"_id": ObjectId(item.product_id)})
        if not product:
            raise InvalidRequestError(f"Invalid product {item.product_id}")
        entries.append((product, item.quantity))
    return Cart.from_products(entries)


def place_order(db, session: Session, items: List[CartItem], contact: ContactInfo) -> dict:
    if not items:
        raise InvalidRequestError("Your cart is empty")
    for field in ("name", "phone", "address"):
        if not getattr(contact, field, "").strip():
            raise InvalidRequestError(f"Contact {field} is required")
    cart = resolve_cart(db, items)
    stamp = now()
    order = {
        "user_id": session.id,
        "customer_name": contact.name.strip(),
        "customer_phone": contact.phone.strip(),
        "customer_address": contact.address.strip(),
        "items": [line.snapshot() for line in cart.lines],
        **cart.totals(),
        "status": "pending",
        "created_at": stamp,
        "updated_at": stamp,
    }
    order["_id"] = db[ORDERS].insert_one(order).inserted_id
    logger.info("Order %s placed by %s for %s", order["_id"], session.email, format_fcfa(order["total"]))
    return order


# -------------------- Transitions --------------------

def _load(db, order_id: str) -> dict:
    order = db[ORDERS].find_one({"_id": parse_id(order_id)})
    if not order:
        raise NotFoundError("Order not found")
    return order


def _check_transition(order: dict, target: str) -> None:
    current = order["status"]
    if target not in ORDER_TRANSITIONS.get(current, set()):
        logger.warning("Rejected order %s transition %s -> %s", order["_id"], current, target)
        raise InvalidTransitionError(current, target)


def advance_order(db, order_id: str, target: str, actor: Session) -> dict:
    order = _load(db, order_id)
    _check_transition(order, target)
    if target == "completed":
        return fulfill_order(db, order_id, actor)
    updated = db[ORDERS].find_one_and_update(
        {"_id": order["_id"], "status": order["status"]},
        {"$set": {"status": target, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        logger.warning("Order %s changed while moving to %s", order["_id"], target)
        raise ConflictError("Order was modified by someone else, reload and try again")
    logger.info("Order %s: %s -> %s by %s", order["_id"], order["status"], target, actor.email)
    return updated


def _decrement_stock(db, item: dict, session, allow_negative: bool) -> None:
    quantity = int(item["quantity"])
    product_id = ObjectId(item["product_id"])
    guard = {"_id": product_id}
    if not allow_negative:
        guard["stock"] = {"$gte": quantity}
    product = db[PRODUCTS].find_one_and_update(
        guard,
        {"$inc": {"stock": -quantity}, "$set": {"updated_at": now()}},
        return_document=ReturnDocument.AFTER,
        session=session,
    )
    if product is None:
        current = db[PRODUCTS].find_one({"_id": product_id}, session=session)
        available = int(current.get("stock", 0)) if current else 0
        raise InsufficientStockError(item["product_id"], item["name"], available, quantity)
    if product.get("stock", 0) < 0:
        logger.warning("Stock for '%s' is now %s", product.get("name"), product["stock"])


def fulfill_order(db, order_id: str, actor: Session, allow_negative_stock: Optional[bool] = None) -> dict:
    """Mark a processing order completed, decrement stock and record the sale."""
    if allow_negative_stock is None:
        allow_negative_stock = get_settings().allow_negative_stock
    order = _load(db, order_id)
    _check_transition(order, "completed")

    def commit(session):
        completed = db[ORDERS].find_one_and_update(
            {"_id": order["_id"], "status": "processing"},
            {"$set": {"status": "completed", "completed_at": now(), "updated_at": now()}},
            return_document=ReturnDocument.AFTER,
            session=session,
        )
        if completed is None:
            raise ConflictError("Order is no longer awaiting fulfillment")
        for item in completed["items"]:
            _decrement_stock(db, item, session, allow_negative_stock)
        entry = sale_entry(completed, actor.id)
        entry["_id"] = db[TRANSACTIONS].insert_one(entry, session=session).inserted_id
        return completed

    try:
        completed = run_transaction(db, commit)
    except ConflictError as e:
        logger.warning("Fulfillment of order %s rejected: %s", order["_id"], e.detail)
        raise
    logger.info("Order %s fulfilled by %s, sale of %s recorded",
                order["_id"], actor.email, format_fcfa(completed["total"]))
    return completed


# -------------------- Queries --------------------

def list_orders(db, status: Optional[str] = None, q: Optional[str] = None) -> List[dict]:
    query = {"status": status} if status and status != "all" else {}
    orders = list(db[ORDERS].find(query).sort("created_at", DESCENDING))
    if q:
        needle = q.lower()
        orders = [
            o for o in orders
            if needle in o.get("customer_name", "").lower() or needle in str(o["_id"]).lower()
        ]
    return orders


def list_user_orders(db, user_id: str) -> List[dict]:
    return get_documents(db, ORDERS, {"user_id": user_id}, sort=[("created_at", DESCENDING)])


def get_order(db, order_id: str, viewer: Session) -> dict:
    order = _load(db, order_id)
    if not viewer.is_admin and order.get("user_id") != viewer.id:
        raise ForbiddenError("Forbidden")
    return order
