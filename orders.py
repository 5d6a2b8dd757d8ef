import logging
from datetime import datetime, timezone
from typing import Dict, List

from fastapi import HTTPException
from pymongo import ReturnDocument
from pymongo.database import Database

from database import get_documents, serialize_doc, to_object_id

logger = logging.getLogger(__name__)


def _owners(db: Database, orders: List[dict]) -> Dict[str, dict]:
    ids = {to_object_id(o["user_id"]) for o in orders}
    users = db["user"].find({"_id": {"$in": [i for i in ids if i]}}, {"name": 1, "email": 1})
    return {str(u["_id"]): {"id": str(u["_id"]), "name": u.get("name"), "email": u.get("email")} for u in users}


def _with_owner(db: Database, orders: List[dict]) -> List[dict]:
    owners = _owners(db, orders)
    out = []
    for o in orders:
        doc = serialize_doc(o)
        doc["user"] = owners.get(o["user_id"], {"id": o["user_id"]})
        out.append(doc)
    return out


def find_order(db: Database, order_id: str) -> dict:
    oid = to_object_id(order_id)
    order = db["order"].find_one({"_id": oid}) if oid else None
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


def list_for_user(db: Database, user_id: str) -> List[dict]:
    return [serialize_doc(o) for o in get_documents(db, "order", {"user_id": user_id})]


def get_order(db: Database, order_id: str, requester_id: str, requester_role: str) -> dict:
    order = find_order(db, order_id)
    if order["user_id"] != requester_id and requester_role != "admin":
        raise HTTPException(status_code=403, detail="Not authorized to view this order")
    return _with_owner(db, [order])[0]


def list_all(db: Database) -> List[dict]:
    return _with_owner(db, get_documents(db, "order"))


def mark_delivered(db: Database, order_id: str) -> dict:
    order = find_order(db, order_id)
    if order.get("is_delivered"):
        return order
    now = datetime.now(timezone.utc)
    updated = db["order"].find_one_and_update(
        {"_id": order["_id"], "is_delivered": {"$ne": True}},
        {"$set": {"is_delivered": True, "delivered_at": now, "updated_at": now}},
        return_document=ReturnDocument.AFTER,
    )
    logger.info("Order %s marked delivered", order_id)
    # Another request may have delivered it in between
    return updated or find_order(db, order_id)
