"""
Product catalog: filtered listing, admin edits and customer ratings.
"""
import logging
import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database

from database import create_document, serialize_doc, to_object_id
from schemas import Product, ProductIn, ProductUpdate, Rating

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 12

SORT_KEYS = {
    "price": [("price", ASCENDING)],
    "rating": [("avg_rating", DESCENDING)],
}
NEWEST_FIRST = [("created_at", DESCENDING)]


def build_product_query(
    keyword: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
) -> Dict[str, Any]:
    query: Dict[str, Any] = {}
    if keyword:
        pattern = re.escape(keyword)
        query["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
    if category:
        query["category"] = category
    if min_price is not None or max_price is not None:
        query["price"] = {}
        if min_price is not None:
            query["price"]["$gte"] = min_price
        if max_price is not None:
            query["price"]["$lte"] = max_price
    return query


def list_products(
    db: Database,
    keyword: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    sort_by: Optional[str] = None,
) -> Dict[str, Any]:
    query = build_product_query(keyword, category, min_price, max_price)
    skip = (page - 1) * limit
    cursor = (
        db["product"].find(query)
        .sort(SORT_KEYS.get(sort_by, NEWEST_FIRST))
        .skip(skip)
        .limit(limit)
    )
    total = db["product"].count_documents(query)
    categories = db["product"].distinct("category", query)
    return {
        "products": [serialize_doc(p) for p in cursor],
        "page": page,
        "pages": math.ceil(total / limit),
        "total": total,
        "categories": sorted(c for c in categories if c),
    }


def find_product(db: Database, product_id: str) -> dict:
    oid = to_object_id(product_id)
    product = db["product"].find_one({"_id": oid}) if oid else None
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


def create_product(db: Database, payload: ProductIn, created_by: Optional[str] = None) -> dict:
    product = Product(**payload.model_dump(), created_by=created_by)
    pid = create_document(db, "product", product.model_dump())
    logger.info("Created product %s (%s)", pid, product.name)
    return find_product(db, pid)


def update_product(db: Database, product_id: str, payload: ProductUpdate) -> dict:
    product = find_product(db, product_id)
    try:
        changes = payload.changes()
        if not changes:
            return product
        # Validate the merged document as a whole before writing it
        current = {k: v for k, v in product.items() if k in Product.model_fields}
        merged = Product(**{**current, **changes})
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    update = {k: getattr(merged, k) for k in changes}
    update["updated_at"] = datetime.now(timezone.utc)
    return db["product"].find_one_and_update(
        {"_id": product["_id"]},
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )


def delete_product(db: Database, product_id: str) -> None:
    product = find_product(db, product_id)
    db["product"].delete_one({"_id": product["_id"]})
    logger.info("Deleted product %s", product_id)


def recalculate_ratings(ratings: List[dict]) -> Dict[str, Any]:
    if not ratings:
        return {"avg_rating": 0, "num_reviews": 0}
    total = sum(r["rating"] for r in ratings)
    return {"avg_rating": total / len(ratings), "num_reviews": len(ratings)}


def submit_rating(db: Database, product_id: str, reviewer_id: str, rating, comment=None):
    """Add the reviewer's rating, or replace it if they already rated.

    Returns the updated product and whether the rating was new.
    """
    product = find_product(db, product_id)
    if not rating:
        raise HTTPException(status_code=400, detail="Rating is required")

    now = datetime.now(timezone.utc)
    ratings = list(product.get("ratings", []))
    existing = next((r for r in ratings if r.get("user_id") == reviewer_id), None)
    if existing:
        existing.update({"rating": rating, "comment": comment, "updated_at": now})
    else:
        new = Rating(user_id=reviewer_id, rating=rating, comment=comment, created_at=now, updated_at=now)
        ratings.append(new.model_dump())

    updated = db["product"].find_one_and_update(
        {"_id": product["_id"]},
        {"$set": {"ratings": ratings, "updated_at": now, **recalculate_ratings(ratings)}},
        return_document=ReturnDocument.AFTER,
    )
    return updated, existing is None


SAMPLE_PRODUCTS = [
    {
        "name": "Whey Protein Isolate - Vanilla",
        "description": "Premium 100% whey protein isolate with 25g protein per serving. Fast-absorbing, low in carbs and fat.",
        "price": 2499,
        "stock": 50,
        "category": "Whey Protein",
        "images": ["https://images.unsplash.com/photo-1593095948071-474c5cc2989d?w=500"],
    },
    {
        "name": "Creatine Monohydrate - Unflavored",
        "description": "Pure creatine monohydrate powder. 5g per serving, 100 servings per container.",
        "price": 899,
        "stock": 75,
        "category": "Creatine",
        "images": ["https://images.unsplash.com/photo-1571019613454-1cb2f99b2d8b?w=500"],
    },
    {
        "name": "BCAA Powder - Fruit Punch",
        "description": "2:1:1 ratio of Leucine, Isoleucine, and Valine. Supports muscle recovery and endurance.",
        "price": 1299,
        "stock": 60,
        "category": "Amino Acids",
        "images": ["https://images.unsplash.com/photo-1593095948071-474c5cc2989d?w=500"],
    },
    {
        "name": "Pre-Workout Energy - Blue Raspberry",
        "description": "High-energy pre-workout formula with caffeine, beta-alanine, and citrulline malate.",
        "price": 1799,
        "stock": 40,
        "category": "Pre-Workout",
        "images": ["https://images.unsplash.com/photo-1571019613454-1cb2f99b2d8b?w=500"],
    },
    {
        "name": "Casein Protein - Chocolate",
        "description": "Slow-digesting casein protein for sustained amino acid release overnight.",
        "price": 2699,
        "stock": 35,
        "category": "Casein Protein",
        "images": ["https://images.unsplash.com/photo-1593095948071-474c5cc2989d?w=500"],
    },
    {
        "name": "Daily Multivitamin",
        "description": "Complete vitamin and mineral formula for active lifestyles. 60 tablets.",
        "price": 599,
        "stock": 120,
        "category": "Vitamins",
        "images": [],
    },
]


def seed_products(db: Database) -> int:
    """Insert the sample catalog when no products exist yet."""
    if db["product"].count_documents({}) > 0:
        return 0
    for p in SAMPLE_PRODUCTS:
        create_document(db, "product", Product(**p).model_dump())
    logger.info("Seeded %d products", len(SAMPLE_PRODUCTS))
    return len(SAMPLE_PRODUCTS)
