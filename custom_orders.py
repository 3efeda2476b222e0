"""
Made-to-order couture pieces.

Status changes are plain field updates. The only money movement is the
deposit, written to the cash ledger in the same commit that creates the
order.
"""

import logging
from datetime import datetime, time
from typing import List, Optional

from pymongo import DESCENDING, ReturnDocument

from database import COUTURE_MODELS, CUSTOM_ORDERS, TRANSACTIONS, USERS, now, run_transaction
from errors import ConflictError, InvalidRequestError, InvalidTransitionError, NotFoundError
from ledger import deposit_entry
from orders import parse_id
from schemas import CustomOrderCreate, CustomerCreate, Session

logger = logging.getLogger(__name__)

CUSTOM_ORDER_TRANSITIONS = {
    "pending": {"in_progress", "cancelled"},
    "in_progress": {"completed", "cancelled"},
    "completed": {"delivered"},
    "delivered": set(),
    "cancelled": set(),
}


def customer_document(customer: CustomerCreate) -> dict:
    return {
        "first_name": customer.first_name,
        "last_name": customer.last_name,
        "email": customer.email,
        "phone": customer.phone,
        "role": "user",
        "photo_url": None,
        "created_at": now(),
        "updated_at": now(),
    }


def create_custom_order(db, payload: CustomOrderCreate, actor: Session) -> dict:
    model = db[COUTURE_MODELS].find_one({"_id": parse_id(payload.model_id, "Model")})
    if not model:
        raise NotFoundError("Model not found")

    customer = None
    if payload.customer_id:
        customer = db[USERS].find_one({"_id": parse_id(payload.customer_id, "Customer")})
        if not customer:
            raise NotFoundError("Customer not found")
    new_customer = None
    if payload.new_customer:
        email = payload.new_customer.email
        if email and db[USERS].find_one({"email": email}):
            raise ConflictError("Customer already exists")
        new_customer = customer_document(payload.new_customer)
    person = customer or new_customer

    price = payload.price if payload.price is not None else int(model.get("price", 0))
    if payload.deposit > price:
        raise InvalidRequestError("Deposit cannot exceed the price")

    order = {
        "customer_id": str(customer["_id"]) if customer else None,
        "customer_name": f"{person.get('first_name', '')} {person.get('last_name', '')}".strip(),
        "customer_phone": person.get("phone", ""),
        "model_id": str(model["_id"]),
        "model_name": model["name"],
        "model_image": model.get("image"),
        "fabric_details": payload.fabric_details,
        "deadline": datetime.combine(payload.deadline, time.min),
        "price": price,
        "deposit": payload.deposit,
        "payment_method": payload.payment_method,
        "notes": payload.notes,
        "measurements_taken": payload.measurements_taken,
        "status": "pending",
        "created_at": now(),
        "updated_at": now(),
    }

    def commit(session):
        doc = dict(order)
        if new_customer is not None:
            customer_id = db[USERS].insert_one(dict(new_customer), session=session).inserted_id
            doc["customer_id"] = str(customer_id)
        doc["_id"] = db[CUSTOM_ORDERS].insert_one(doc, session=session).inserted_id
        if doc["deposit"] > 0:
            db[TRANSACTIONS].insert_one(deposit_entry(doc, actor.id), session=session)
        return doc

    created = run_transaction(db, commit)
    logger.info("Custom order %s created for %s (%s)", created["_id"], created["customer_name"], created["model_name"])
    return created


def advance_custom_order(db, order_id: str, target: str, actor: Session) -> dict:
    order = db[CUSTOM_ORDERS].find_one({"_id": parse_id(order_id)})
    if not order:
        raise NotFoundError("Order not found")
    current = order["status"]
    if target not in CUSTOM_ORDER_TRANSITIONS.get(current, set()):
        logger.warning("Rejected custom order %s transition %s -> %s", order["_id"], current, target)
        raise InvalidTransitionError(current, target)
    updated = db[CUSTOM_ORDERS].find_one_and_update(
        {"_id": order["_id"], "status": current},
        {"$set": {"status": target, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise ConflictError("Order was modified by someone else, reload and try again")
    logger.info("Custom order %s: %s -> %s by %s", order["_id"], current, target, actor.email)
    return updated


def list_custom_orders(db, status: Optional[str] = None, q: Optional[str] = None) -> List[dict]:
    query = {"status": status} if status and status != "all" else {}
    orders = list(db[CUSTOM_ORDERS].find(query).sort("created_at", DESCENDING))
    if q:
        needle = q.lower()
        orders = [
            o for o in orders
            if needle in o.get("customer_name", "").lower()
            or needle in o.get("model_name", "").lower()
            or q in o.get("customer_phone", "")
        ]
    return orders
