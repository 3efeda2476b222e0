import json
import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import List, Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pymongo import DESCENDING
from pymongo.errors import PyMongoError

import auth
import catalog
import custom_orders
import ledger
import orders
from config import get_settings, setup_logging
from database import (
    COUTURE_MODELS, ORDERS, PRODUCTS, USERS, MEASUREMENTS, Subscription,
    create_document, database_status, doc_to_json, get_db, now, to_object_id,
)
from errors import ConflictError, ShopError
from schemas import (
    UserCreate, UserLogin, TokenResponse, Session, ProfileUpdate,
    ProductCreate, ProductUpdate, CoutureModelCreate, CoutureModelUpdate,
    CartQuote, CheckoutRequest, OrderStatusUpdate,
    CustomOrderCreate, CustomOrderStatusUpdate, CustomerCreate, Measurements,
    TransactionCreate,
)

logger = logging.getLogger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    try:
        auth.seed_admin(get_db(), settings.admin_email, settings.admin_password)
    except PyMongoError as e:
        logger.error("Admin seed skipped, database unavailable: %s", e)
    yield


app = FastAPI(title="HAR DESIGN Boutique API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.error("Database call failed on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=503, content={"detail": "Database unavailable, please retry"})


# -------------------- Helpers --------------------

def find_or_404(db, collection: str, doc_id: str, label: str) -> dict:
    doc = db[collection].find_one({"_id": to_object_id(doc_id)})
    if not doc:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return doc


async def event_stream(request: Request, subscription: Subscription):
    """Server-sent events, one full snapshot per message, until the client leaves."""
    try:
        while not await request.is_disconnected():
            snapshot = await run_in_threadpool(subscription.poll)
            if snapshot is not None:
                yield f"data: {json.dumps(snapshot)}\n\n"
    except PyMongoError as e:
        logger.error("Live stream on %s stopped, database unavailable", request.url.path, exc_info=e)
    finally:
        subscription.close()


# -------------------- Health & Test --------------------

@app.get("/")
def read_root():
    return {"message": "HAR DESIGN Boutique API is running"}


@app.get("/test")
def test_database(db=Depends(get_db)):
    return database_status(db)


# -------------------- Auth --------------------

@app.post("/auth/register", response_model=dict)
def register(payload: UserCreate, db=Depends(get_db)):
    user = auth.register(db, payload)
    return auth.session_from_user(user).model_dump()


@app.post("/auth/login", response_model=TokenResponse)
def login(payload: UserLogin, db=Depends(get_db)):
    return TokenResponse(access_token=auth.login(db, payload.email, payload.password))


@app.post("/auth/logout", response_model=dict)
def logout(user: dict = Depends(auth.current_user), db=Depends(get_db)):
    auth.logout(db, user["_id"])
    return {"ok": True}


@app.get("/me", response_model=Session)
def me(session: Session = Depends(auth.current_session)):
    return session


@app.patch("/me", response_model=Session)
def update_me(payload: ProfileUpdate, user: dict = Depends(auth.current_user), db=Depends(get_db)):
    return auth.session_from_user(auth.update_profile(db, user["_id"], payload))


# -------------------- Catalog --------------------

PriceRange = Literal["all", "0-20000", "20000-50000", "50000-100000", "100000+"]
SortOption = Literal["newest", "popular", "price-asc", "price-desc"]


@app.get("/catalog", response_model=List[dict])
def browse_catalog(category: Optional[str] = Query(None), price_range: PriceRange = "all",
                   sort_by: SortOption = "newest", db=Depends(get_db)):
    return catalog.browse(db, category, price_range, sort_by)


@app.get("/catalog/stream")
def stream_catalog(request: Request, category: Optional[str] = Query(None), price_range: PriceRange = "all",
                   sort_by: SortOption = "newest", db=Depends(get_db)):
    subscription = catalog.catalog_subscription(db, category, price_range, sort_by)
    return StreamingResponse(event_stream(request, subscription), media_type="text/event-stream")


@app.get("/products/{product_id}", response_model=dict)
def get_product(product_id: str, db=Depends(get_db)):
    return catalog.project_catalog([find_or_404(db, PRODUCTS, product_id, "Product")], [])[0]


@app.get("/models/{model_id}", response_model=dict)
def get_model(model_id: str, db=Depends(get_db)):
    return catalog.project_catalog([], [find_or_404(db, COUTURE_MODELS, model_id, "Model")])[0]


# -------------------- Catalog administration --------------------

@app.post("/products", response_model=dict)
def create_product(payload: ProductCreate, admin: Session = Depends(auth.require_admin), db=Depends(get_db)):
    pid = create_document(db, PRODUCTS, payload)
    return {"id": pid, **payload.model_dump()}


@app.patch("/products/{product_id}", response_model=dict)
def update_product(product_id: str, payload: ProductUpdate, admin: Session = Depends(auth.require_admin),
                   db=Depends(get_db)):
    prod = find_or_404(db, PRODUCTS, product_id, "Product")
    update = {k: v for k, v in payload.model_dump().items() if v is not None}
    update["updated_at"] = now()
    db[PRODUCTS].update_one({"_id": prod["_id"]}, {"$set": update})
    return doc_to_json(db[PRODUCTS].find_one({"_id": prod["_id"]}))


@app.delete("/products/{product_id}", response_model=dict)
def delete_product(product_id: str, admin: Session = Depends(auth.require_admin), db=Depends(get_db)):
    prod = find_or_404(db, PRODUCTS, product_id, "Product")
    db[PRODUCTS].delete_one({"_id": prod["_id"]})
    logger.info("Product %s deleted by %s", prod["_id"], admin.email)
    return {"ok": True}


@app.post("/models", response_model=dict)
def create_model(payload: CoutureModelCreate, admin: Session = Depends(auth.require_admin), db=Depends(get_db)):
    mid = create_document(db, COUTURE_MODELS, payload)
    return {"id": mid, **payload.model_dump()}


@app.patch("/models/{model_id}", response_model=dict)
def update_model(model_id: str, payload: CoutureModelUpdate, admin: Session = Depends(auth.require_admin),
                 db=Depends(get_db)):
    model = find_or_404(db, COUTURE_MODELS, model_id, "Model")
    update = {k: v for k, v in payload.model_dump().items() if v is not None}
    update["updated_at"] = now()
    db[COUTURE_MODELS].update_one({"_id": model["_id"]}, {"$set": update})
    return doc_to_json(db[COUTURE_MODELS].find_one({"_id": model["_id"]}))


@app.delete("/models/{model_id}", response_model=dict)
def delete_model(model_id: str, admin: Session = Depends(auth.require_admin), db=Depends(get_db)):
    model = find_or_404(db, COUTURE_MODELS, model_id, "Model")
    db[COUTURE_MODELS].delete_one({"_id": model["_id"]})
    return {"ok": True}


# -------------------- Cart & Orders --------------------

@app.post("/cart/quote", response_model=dict)
def quote_cart(payload: CartQuote, db=Depends(get_db)):
    return orders.resolve_cart(db, payload.items).to_dict()


@app.post("/orders", response_model=dict)
def checkout(payload: CheckoutRequest, session: Session = Depends(auth.current_session), db=Depends(get_db)):
    order = orders.place_order(db, session, payload.items, payload.contact)
    return doc_to_json(order)


@app.get("/orders/mine", response_model=List[dict])
def my_orders(session: Session = Depends(auth.current_session), db=Depends(get_db)):
    return [doc_to_json(o) for o in orders.list_user_orders(db, session.id)]


@app.get("/orders/stream")
def stream_orders(request: Request, admin: Session = Depends(auth.require_admin), db=Depends(get_db)):
    subscription = Subscription(
        db, [ORDERS], lambda: [doc_to_json(o) for o in db[ORDERS].find().sort("created_at", DESCENDING)]
    )
    return StreamingResponse(event_stream(request, subscription), media_type="text/event-stream")


@app.get("/orders", response_model=List[dict])
def list_orders(status: Optional[str] = Query(None), q: Optional[str] = Query(None),
                admin: Session = Depends(auth.require_admin), db=Depends(get_db)):
    return [doc_to_json(o) for o in orders.list_orders(db, status, q)]


@app.get("/orders/{order_id}", response_model=dict)
def get_order(order_id: str, session: Session = Depends(auth.current_session), db=Depends(get_db)):
    return doc_to_json(orders.get_order(db, order_id, session))


@app.patch("/orders/{order_id}/status", response_model=dict)
def update_order_status(order_id: str, payload: OrderStatusUpdate, admin: Session = Depends(auth.require_admin),
                        db=Depends(get_db)):
    return doc_to_json(orders.advance_order(db, order_id, payload.status, admin))


# -------------------- Custom orders --------------------

@app.post("/custom-orders", response_model=dict)
def create_custom_order(payload: CustomOrderCreate, admin: Session = Depends(auth.require_admin),
                        db=Depends(get_db)):
    return doc_to_json(custom_orders.create_custom_order(db, payload, admin))


@app.get("/custom-orders", response_model=List[dict])
def list_custom_orders(status: Optional[str] = Query(None), q: Optional[str] = Query(None),
                       admin: Session = Depends(auth.require_admin), db=Depends(get_db)):
    return [doc_to_json(o) for o in custom_orders.list_custom_orders(db, status, q)]


@app.patch("/custom-orders/{order_id}/status", response_model=dict)
def update_custom_order_status(order_id: str, payload: CustomOrderStatusUpdate,
                               admin: Session = Depends(auth.require_admin), db=Depends(get_db)):
    return doc_to_json(custom_orders.advance_custom_order(db, order_id, payload.status, admin))


# -------------------- Customers --------------------

@app.get("/customers", response_model=List[dict])
def list_customers(q: Optional[str] = Query(None), admin: Session = Depends(auth.require_admin),
                   db=Depends(get_db)):
    customers = db[USERS].find({"role": "user"}, {"password_hash": 0, "salt": 0, "token": 0, "token_expires": 0})
    results = [doc_to_json(c) for c in customers.sort("last_name")]
    if q:
        needle = q.lower()
        results = [
            c for c in results
            if needle in c.get("first_name", "").lower()
            or needle in c.get("last_name", "").lower()
            or q in (c.get("phone") or "")
        ]
    return results


@app.post("/customers", response_model=dict)
def create_customer(payload: CustomerCreate, admin: Session = Depends(auth.require_admin), db=Depends(get_db)):
    if payload.email and db[USERS].find_one({"email": payload.email}):
        raise ConflictError("Customer already exists")
    doc = custom_orders.customer_document(payload)
    doc["_id"] = db[USERS].insert_one(doc).inserted_id
    return doc_to_json(doc)


@app.get("/customers/{customer_id}/orders", response_model=List[dict])
def customer_orders(customer_id: str, admin: Session = Depends(auth.require_admin), db=Depends(get_db)):
    return [doc_to_json(o) for o in orders.list_user_orders(db, customer_id)]


@app.get("/customers/{customer_id}/measurements", response_model=Measurements)
def get_measurements(customer_id: str, admin: Session = Depends(auth.require_admin), db=Depends(get_db)):
    find_or_404(db, USERS, customer_id, "Customer")
    doc = db[MEASUREMENTS].find_one({"_id": customer_id}) or {}
    return Measurements(**{k: v for k, v in doc.items() if k in Measurements.model_fields})


@app.put("/customers/{customer_id}/measurements", response_model=Measurements)
def save_measurements(customer_id: str, payload: Measurements, admin: Session = Depends(auth.require_admin),
                      db=Depends(get_db)):
    find_or_404(db, USERS, customer_id, "Customer")
    db[MEASUREMENTS].replace_one(
        {"_id": customer_id}, {**payload.model_dump(), "updated_at": now()}, upsert=True
    )
    return payload


# -------------------- Cash --------------------

@app.post("/cash/transactions", response_model=dict)
def add_transaction(payload: TransactionCreate, admin: Session = Depends(auth.require_admin), db=Depends(get_db)):
    return doc_to_json(ledger.record_transaction(db, payload, admin.id))


@app.get("/cash/transactions", response_model=List[dict])
def list_transactions(start: Optional[date] = Query(None), end: Optional[date] = Query(None),
                      admin: Session = Depends(auth.require_admin), db=Depends(get_db)):
    return [doc_to_json(t) for t in ledger.list_transactions(db, start, end)]


@app.get("/cash/summary", response_model=dict)
def cash_summary(start: Optional[date] = Query(None), end: Optional[date] = Query(None),
                 admin: Session = Depends(auth.require_admin), db=Depends(get_db)):
    return ledger.period_summary(db, start, end)


@app.get("/cash/report", response_model=dict)
def cash_report(day: Optional[date] = Query(None), admin: Session = Depends(auth.require_admin),
                db=Depends(get_db)):
    return ledger.day_report(db, day or ledger.business_day(now()))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
