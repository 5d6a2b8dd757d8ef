"""
Checkout and payment verification.

The client pays the gateway directly and then hands us the gateway's
confirmation together with its cart. An order is only created once the
confirmation signature checks out against our secret and the cart has been
re-priced from the catalog.
"""
import hashlib
import hmac
import logging
import math
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests
from fastapi import Depends, HTTPException
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import to_object_id
from schemas import Order, VerifyPaymentIn
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

GATEWAY_NAME = "Razorpay"
TOTAL_TOLERANCE = 1


class GatewayError(Exception):
    pass


class RazorpayClient:
    """Minimal client for the Razorpay orders API."""

    def __init__(self, key_id: str, key_secret: str, api_url: str, timeout: float = 10, session=None):
        self.key_id = key_id
        self.key_secret = key_secret
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def create_order(self, amount: int, currency: str, receipt: str, notes: Optional[dict] = None) -> dict:
        payload = {"amount": amount, "currency": currency, "receipt": receipt}
        if notes:
            payload["notes"] = notes
        try:
            resp = self.session.post(
                f"{self.api_url}/orders",
                json=payload,
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            raise GatewayError(f"Razorpay order creation failed: {e}") from e
        return resp.json()


def get_gateway(settings: Settings = Depends(get_settings)) -> RazorpayClient:
    if not settings.RAZORPAY_KEY_ID or not settings.RAZORPAY_KEY_SECRET:
        logger.error("Razorpay credentials are not configured")
        raise HTTPException(status_code=500, detail="Failed to create Razorpay order")
    return RazorpayClient(
        settings.RAZORPAY_KEY_ID,
        settings.RAZORPAY_KEY_SECRET,
        settings.RAZORPAY_API_URL,
        timeout=settings.GATEWAY_TIMEOUT_SECONDS,
    )


def compute_signature(order_id: str, payment_id: str, secret: str) -> str:
    """HMAC-SHA256 of ``"{order_id}|{payment_id}"``, hex encoded, as Razorpay signs it."""
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_signature(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    expected = compute_signature(order_id, payment_id, secret)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


def initiate(
    gateway: RazorpayClient,
    settings: Settings,
    amount,
    currency: Optional[str] = None,
    receipt: Optional[str] = None,
    notes: Optional[dict] = None,
) -> Dict[str, Any]:
    if not amount or not math.isfinite(amount) or amount <= 0:
        raise HTTPException(status_code=400, detail="A valid amount is required")

    try:
        order = gateway.create_order(
            amount=int(round(amount * 100)),
            currency=currency or settings.DEFAULT_CURRENCY,
            receipt=receipt or f"receipt_{int(time.time() * 1000)}",
            notes=notes,
        )
    except GatewayError:
        logger.exception("Could not create payment order for amount %s", amount)
        raise HTTPException(status_code=502, detail="Failed to create Razorpay order")

    logger.info("Created gateway order %s", order.get("id"))
    return {
        "orderId": order["id"],
        "amount": order["amount"],
        "currency": order["currency"],
        "key": settings.RAZORPAY_KEY_ID,
    }


def _check_request(body: VerifyPaymentIn):
    if not body.razorpay_order_id or not body.razorpay_payment_id or not body.razorpay_signature:
        raise HTTPException(status_code=400, detail="Payment verification data missing")
    if not body.order_items:
        raise HTTPException(status_code=400, detail="Order items are required")
    if not body.shipping_address:
        raise HTTPException(status_code=400, detail="Shipping address is required")
    if not body.total_price or not math.isfinite(body.total_price) or body.total_price <= 0:
        raise HTTPException(status_code=400, detail="Total price is required")
    for value in (body.tax_price, body.shipping_price):
        if value is not None and (not math.isfinite(value) or value < 0):
            raise HTTPException(status_code=400, detail="Tax and shipping must be non-negative numbers")


def _load_items(db: Database, body: VerifyPaymentIn) -> List[Dict[str, Any]]:
    """Look up every line and snapshot it from the live catalog."""
    lines = []
    for item in body.order_items:
        oid = to_object_id(item.product)
        product = db["product"].find_one({"_id": oid}) if oid else None
        if not product:
            raise HTTPException(status_code=404, detail="One or more products were not found")
        if product.get("stock", 0) < item.qty:
            raise HTTPException(status_code=400, detail=f"{product['name']} is out of stock")
        images = product.get("images") or []
        lines.append({
            "name": product["name"],
            "qty": item.qty,
            "price": float(product["price"]),
            "product": str(product["_id"]),
            "image": images[0] if images else None,
        })
    return lines


def payment_processed(db: Database, payment_id: str) -> bool:
    return db["order"].find_one({"payment_result.id": payment_id}) is not None


def reserve_stock(db: Database, lines: List[Dict[str, Any]]) -> None:
    """Deduct stock for every line or for none of them.

    Each decrement only matches while enough stock is left, so two checkouts
    racing for the last units cannot both succeed.
    """
    done = []
    for line in lines:
        updated = db["product"].find_one_and_update(
            {"_id": to_object_id(line["product"]), "stock": {"$gte": line["qty"]}},
            {"$inc": {"stock": -line["qty"]}, "$set": {"updated_at": datetime.now(timezone.utc)}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            release_stock(db, done)
            raise HTTPException(status_code=400, detail=f"{line['name']} is out of stock")
        done.append(line)


def release_stock(db: Database, lines: List[Dict[str, Any]]) -> None:
    for line in lines:
        db["product"].update_one(
            {"_id": to_object_id(line["product"])},
            {"$inc": {"stock": line["qty"]}},
        )


def verify(db: Database, settings: Settings, user: dict, body: VerifyPaymentIn) -> Dict[str, Any]:
    _check_request(body)

    if not settings.RAZORPAY_KEY_SECRET:
        logger.error("RAZORPAY_KEY_SECRET is not configured, refusing to verify payments")
        raise HTTPException(status_code=500, detail="Payment verification failed")

    if not verify_signature(
        body.razorpay_order_id,
        body.razorpay_payment_id,
        body.razorpay_signature,
        settings.RAZORPAY_KEY_SECRET,
    ):
        logger.warning("Invalid payment signature for gateway order %s", body.razorpay_order_id)
        raise HTTPException(status_code=400, detail="Invalid payment signature")

    if payment_processed(db, body.razorpay_payment_id):
        raise HTTPException(status_code=400, detail="Payment has already been processed")

    lines = _load_items(db, body)

    tax_price = body.tax_price or 0
    shipping_price = body.shipping_price or 0
    items_price = sum(line["price"] * line["qty"] for line in lines)
    computed_total = round(items_price + tax_price + shipping_price, 2)
    if abs(computed_total - round(body.total_price, 2)) > TOTAL_TOLERANCE:
        logger.warning(
            "Total mismatch for payment %s: computed %s, submitted %s",
            body.razorpay_payment_id, computed_total, body.total_price,
        )
        raise HTTPException(status_code=400, detail="Total mismatch detected. Please refresh and try again.")

    reserve_stock(db, lines)

    now = datetime.now(timezone.utc)
    order = Order(
        user_id=str(user["_id"]),
        order_items=lines,
        shipping_address=body.shipping_address.model_dump(by_alias=True),
        payment_method=GATEWAY_NAME,
        payment_result={
            "id": body.razorpay_payment_id,
            "status": "paid",
            "update_time": now.isoformat(),
            "email_address": user.get("email"),
        },
        items_price=items_price,
        tax_price=tax_price,
        shipping_price=shipping_price,
        total_price=computed_total,
        is_paid=True,
        paid_at=now,
    )
    doc = {**order.model_dump(), "razorpay_order_id": body.razorpay_order_id, "created_at": now, "updated_at": now}
    try:
        result = db["order"].insert_one(doc)
    except DuplicateKeyError:
        release_stock(db, lines)
        raise HTTPException(status_code=400, detail="Payment has already been processed")
    except Exception:
        release_stock(db, lines)
        raise

    logger.info("Payment %s verified, created order %s", body.razorpay_payment_id, result.inserted_id)
    return {"message": "Payment verified successfully", "orderId": str(result.inserted_id)}
