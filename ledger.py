"""
Cash ledger: append-only money movements and their period totals.

Manual entries are inflows (``entree``) and outflows (``sortie``) typed in at
the till; sales (``vente``) are written only by order fulfillment.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, List, Optional, Union

from pydantic import ValidationError
from pymongo import DESCENDING

from cart import format_fcfa
from config import get_settings
from database import TRANSACTIONS, doc_to_json, now
from errors import InvalidRequestError
from schemas import TransactionCreate

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("especes", "mobile", "carte")


def business_tz(utc_offset_hours: Optional[int] = None) -> timezone:
    if utc_offset_hours is None:
        utc_offset_hours = get_settings().utc_offset_hours
    return timezone(timedelta(hours=utc_offset_hours))


def _as_datetime(value: Union[datetime, str]) -> datetime:
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        # stored datetimes come back naive and in UTC
        value = value.replace(tzinfo=timezone.utc)
    return value


def business_day(timestamp: Union[datetime, str], utc_offset_hours: Optional[int] = None) -> date:
    return _as_datetime(timestamp).astimezone(business_tz(utc_offset_hours)).date()


def range_query(start: Optional[date] = None, end: Optional[date] = None,
                utc_offset_hours: Optional[int] = None) -> dict:
    """Mongo filter on ``timestamp`` for the business days start..end inclusive."""
    tz = business_tz(utc_offset_hours)
    bounds = {}
    if start:
        bounds["$gte"] = datetime.combine(start, time.min, tz).astimezone(timezone.utc).replace(tzinfo=None)
    if end:
        upper = datetime.combine(end + timedelta(days=1), time.min, tz)
        bounds["$lt"] = upper.astimezone(timezone.utc).replace(tzinfo=None)
    return {"timestamp": bounds} if bounds else {}


def summarize(transactions: Iterable[dict], start: Optional[date] = None, end: Optional[date] = None,
              utc_offset_hours: Optional[int] = None) -> dict:
    sales = inflow = outflow = count = 0
    by_method = {method: 0 for method in PAYMENT_METHODS}
    for t in transactions:
        day = business_day(t["timestamp"], utc_offset_hours)
        if (start and day < start) or (end and day > end):
            continue
        kind = t["type"]
        if kind not in ("vente", "entree", "sortie"):
            logger.warning("Ignoring transaction %s with unknown type %r", t.get("_id", t.get("id")), kind)
            continue
        count += 1
        amount = int(t["amount"])
        if kind == "sortie":
            outflow += amount
            continue
        if kind == "vente":
            sales += amount
        else:
            inflow += amount
        method = t.get("payment_method", "especes")
        by_method[method] = by_method.get(method, 0) + amount
    return {
        "start": start.isoformat() if start else None,
        "end": end.isoformat() if end else None,
        "count": count,
        "sales": sales,
        "inflow": inflow,
        "outflow": outflow,
        "balance": sales + inflow - outflow,
        "by_payment_method": by_method,
    }


# -------------------- Writes --------------------

def record_transaction(db, entry: Union[TransactionCreate, dict], actor_id: Optional[str]) -> dict:
    if isinstance(entry, dict):
        try:
            entry = TransactionCreate(**entry)
        except ValidationError as e:
            raise InvalidRequestError(_first_error(e))
    doc = {
        "type": entry.type,
        "amount": entry.amount,
        "description": entry.description,
        "payment_method": entry.payment_method,
        "timestamp": now(),
        "user_id": actor_id,
        "source": "caisse",
    }
    doc["_id"] = db[TRANSACTIONS].insert_one(doc).inserted_id
    logger.info("Recorded %s of %s by %s", entry.type, format_fcfa(entry.amount), actor_id)
    return doc


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    field = ".".join(str(p) for p in err.get("loc", ()))
    if field == "amount":
        return "Amount must be a positive number"
    if field == "description":
        return "Description is required"
    return f"{field}: {err.get('msg')}"


def sale_entry(order: dict, actor_id: Optional[str]) -> dict:
    order_id = str(order["_id"])
    return {
        "type": "vente",
        "amount": int(order["total"]),
        "description": f"Commande Web #{order_id[:8]} - {order['customer_name']}",
        "payment_method": "especes",
        "timestamp": now(),
        "user_id": actor_id or "system",
        "source": "ecommerce",
        "order_id": order_id,
    }


def deposit_entry(custom_order: dict, actor_id: Optional[str]) -> dict:
    return {
        "type": "entree",
        "amount": int(custom_order["deposit"]),
        "description": f"Acompte couture - {custom_order['model_name']} - {custom_order['customer_name']}",
        "payment_method": custom_order.get("payment_method", "especes"),
        "timestamp": now(),
        "user_id": actor_id or "system",
        "source": "couture",
        "custom_order_id": str(custom_order["_id"]),
    }


# -------------------- Reads --------------------

def list_transactions(db, start: Optional[date] = None, end: Optional[date] = None) -> List[dict]:
    return list(db[TRANSACTIONS].find(range_query(start, end)).sort("timestamp", DESCENDING))


def period_summary(db, start: Optional[date] = None, end: Optional[date] = None) -> dict:
    if start and end and start > end:
        raise InvalidRequestError("start must not be after end")
    return summarize(list_transactions(db, start, end), start, end)


def day_report(db, day: date) -> dict:
    """Printable sheet for one business day."""
    transactions = list_transactions(db, day, day)
    summary = summarize(transactions, day, day)
    tz = business_tz()
    rows = []
    for t in transactions:
        row = doc_to_json(t)
        row["time"] = _as_datetime(t["timestamp"]).astimezone(tz).strftime("%H:%M")
        row["amount_display"] = format_fcfa(t["amount"])
        rows.append(row)
    return {
        "day": day.isoformat(),
        "printed_at": datetime.now(tz).strftime("%H:%M"),
        "summary": summary,
        "balance_display": format_fcfa(summary["balance"]),
        "transactions": rows,
    }
