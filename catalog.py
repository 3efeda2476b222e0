from typing import Iterable, List, Optional

from database import COUTURE_MODELS, PRODUCTS, Subscription, doc_to_json

ALL_CATEGORIES = (None, "", "all", "Tous")

# (lower, upper) inclusive; None means open
PRICE_RANGES = {
    "0-20000": (None, 20000),
    "20000-50000": (20000, 50000),
    "50000-100000": (50000, 100000),
    "100000+": (100000, None),
}

SORT_OPTIONS = ("newest", "popular", "price-asc", "price-desc")


def project_catalog(products: Iterable[dict], models: Iterable[dict]) -> List[dict]:
    items = []
    for p in products:
        item = doc_to_json(p)
        item["is_model"] = False
        items.append(item)
    for m in models:
        item = doc_to_json(m)
        item["is_model"] = True
        item["category"] = "Couture"
        item.pop("stock", None)
        items.append(item)
    return items


def filter_catalog(items: Iterable[dict], category: Optional[str] = None,
                   price_range: Optional[str] = None) -> List[dict]:
    if price_range not in (None, "", "all") and price_range not in PRICE_RANGES:
        raise ValueError(f"Unknown price range {price_range!r}")
    low, high = PRICE_RANGES.get(price_range, (None, None))
    result = []
    for item in items:
        if category not in ALL_CATEGORIES and item.get("category") != category:
            continue
        price = item.get("price", 0)
        if (low is not None and price < low) or (high is not None and price > high):
            continue
        result.append(item)
    return result


def sort_catalog(items: Iterable[dict], sort_by: Optional[str] = None) -> List[dict]:
    items = list(items)
    if sort_by == "price-asc":
        return sorted(items, key=lambda i: i.get("price", 0))
    if sort_by == "price-desc":
        return sorted(items, key=lambda i: i.get("price", 0), reverse=True)
    if sort_by not in (None, "", "newest", "popular"):
        raise ValueError(f"Unknown sort option {sort_by!r}")
    # TODO: "newest" and "popular" need created_at and sales counts exposed on catalog items
    return items


def load_catalog(db) -> List[dict]:
    products = db[PRODUCTS].find().sort("name")
    models = db[COUTURE_MODELS].find().sort("name")
    return project_catalog(products, models)


def browse(db, category: Optional[str] = None, price_range: Optional[str] = None,
           sort_by: Optional[str] = None) -> List[dict]:
    return sort_catalog(filter_catalog(load_catalog(db), category, price_range), sort_by)


def catalog_subscription(db, category: Optional[str] = None, price_range: Optional[str] = None,
                         sort_by: Optional[str] = None) -> Subscription:
    return Subscription(
        db,
        [PRODUCTS, COUTURE_MODELS],
        lambda: browse(db, category, price_range, sort_by),
    )
