"""
MongoDB access for the boutique.

Holds the shared client, small document helpers used by every route, the
transaction runner used for multi-document commits and the snapshot
subscription used by the live endpoints.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Union

from bson import ObjectId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import MongoClient, ReadPreference
from pymongo.read_concern import ReadConcern
from pymongo.write_concern import WriteConcern

from config import get_settings

logger = logging.getLogger(__name__)

PRODUCTS = "products"
COUTURE_MODELS = "couture_models"
ORDERS = "orders"
CUSTOM_ORDERS = "custom_orders"
TRANSACTIONS = "transactions"
USERS = "users"
MEASUREMENTS = "measurements"

_settings = get_settings()

client = MongoClient(
    _settings.database_url,
    serverSelectionTimeoutMS=_settings.db_server_selection_timeout_ms,
    timeoutMS=_settings.db_timeout_ms,
)
db = client[_settings.database_name]


def get_db():
    return db


# -------------------- Helpers --------------------

def now() -> datetime:
    # naive UTC, the way the driver hands datetimes back
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_object_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid id format")


def doc_to_json(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    out = {}
    for k, v in doc.items():
        if k == "_id":
            k = "id"
        if isinstance(v, ObjectId):
            out[k] = str(v)
        elif isinstance(v, datetime):
            out[k] = (v if v.tzinfo else v.replace(tzinfo=timezone.utc)).isoformat()
        elif isinstance(v, dict):
            out[k] = doc_to_json(v)
        elif isinstance(v, list):
            out[k] = [doc_to_json(x) if isinstance(x, dict) else (str(x) if isinstance(x, ObjectId) else x) for x in v]
        else:
            out[k] = v
    return out


def create_document(database, collection_name: str, data: Union[BaseModel, dict], session=None) -> str:
    if isinstance(data, BaseModel):
        data = data.model_dump()
    doc = dict(data)
    stamp = now()
    doc.setdefault("created_at", stamp)
    doc["updated_at"] = stamp
    return str(database[collection_name].insert_one(doc, session=session).inserted_id)


def get_documents(database, collection_name: str, filter_dict: Optional[dict] = None,
                  sort: Optional[List[tuple]] = None, limit: Optional[int] = None) -> List[dict]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


# -------------------- Transactions --------------------

def run_transaction(database, callback: Callable[[Any], Any]) -> Any:
    """Run ``callback(session)`` as one all-or-nothing commit.

    The driver retries the whole callback on transient errors, so callbacks
    must only touch the database through the session they are given.
    """
    with database.client.start_session() as session:
        return session.with_transaction(
            callback,
            read_concern=ReadConcern("snapshot"),
            write_concern=WriteConcern("majority"),
            read_preference=ReadPreference.PRIMARY,
        )


# -------------------- Subscriptions --------------------

class Subscription:
    """Stream of full result-set snapshots over one or more collections.

    Nothing is opened until the first poll. The first delivery is the
    current result set, then one fresh result set per change event on any
    watched collection. ``close()`` releases the change stream; polling again
    afterwards restarts after the last seen event with a fresh snapshot.
    """

    def __init__(self, database, collections: Iterable[str], fetch: Callable[[], Any],
                 max_await_ms: Optional[int] = None):
        self.database = database
        self.collections = list(collections)
        self.fetch = fetch
        self.max_await_ms = max_await_ms or _settings.subscription_poll_ms
        self.resume_token = None
        self._stream = None

    @property
    def active(self) -> bool:
        return self._stream is not None

    def _open(self):
        pipeline = [{"$match": {"ns.coll": {"$in": self.collections}}}]
        self._stream = self.database.watch(
            pipeline,
            resume_after=self.resume_token,
            max_await_time_ms=self.max_await_ms,
        )
        logger.debug("Watching %s", ", ".join(self.collections))

    def poll(self) -> Optional[Any]:
        """Return the next snapshot, or None if nothing changed while waiting."""
        if self._stream is None:
            # open before the first read so no change between the two is lost
            self._open()
            return self.fetch()
        change = self._stream.try_next()
        if change is None:
            return None
        self.resume_token = self._stream.resume_token
        return self.fetch()

    def __iter__(self) -> Iterator[Any]:
        try:
            while True:
                snapshot = self.poll()
                if snapshot is not None:
                    yield snapshot
        finally:
            self.close()

    def close(self) -> None:
        if self._stream is not None:
            self._stream.close()
            self._stream = None
            logger.debug("Stopped watching %s", ", ".join(self.collections))

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


def database_status(database) -> Dict[str, Any]:
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if _settings.database_url else "❌ Not Set",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database is not None:
            response["database"] = "✅ Available"
            response["database_name"] = getattr(database, "name", None) or "✅ Connected"
            response["connection_status"] = "Connected"
            try:
                collections = database.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️ Connected but Error: {str(e)[:50]}"
        else:
            response["database"] = "⚠️ Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"
    return response
