"""
Shopping cart kept on the client until checkout.

The cart holds product snapshots and quantities and persists itself through a
storage port, so the same container works against browser-like local storage,
a JSON file or plain memory.
"""
import json
import logging
import os
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from schemas import ShippingAddress

logger = logging.getLogger(__name__)

CART_KEY = "ks_cart_items"
SHIPPING_KEY = "ks_shipping_address"

TAX_RATE = 0.12
FREE_SHIPPING_THRESHOLD = 1999
SHIPPING_FEE = 199


class CartStorage(Protocol):
    def load(self, key: str, default: Any) -> Any: ...

    def save(self, key: str, value: Any) -> None: ...


class MemoryStorage:
    def __init__(self):
        self._data: Dict[str, str] = {}

    def load(self, key, default):
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else default

    def save(self, key, value):
        self._data[key] = json.dumps(value)


class JsonFileStorage:
    """Stores every key in one JSON document on disk."""

    def __init__(self, path: str):
        self.path = path

    def _read(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable cart file %s: %s", self.path, e)
            return {}

    def load(self, key, default):
        return self._read().get(key, default)

    def save(self, key, value):
        data = self._read()
        data[key] = value
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f)


class CartItem(BaseModel):
    product_id: str
    name: str
    price: float = Field(..., ge=0)
    qty: int = Field(..., ge=1)
    stock: int = Field(..., ge=0)
    image: Optional[str] = None


class Cart:
    def __init__(self, storage: CartStorage):
        self.storage = storage
        self.items: List[CartItem] = [CartItem(**i) for i in storage.load(CART_KEY, [])]
        address = storage.load(SHIPPING_KEY, None)
        self.shipping_address: Optional[ShippingAddress] = ShippingAddress.model_validate(address) if address else None

    def _persist(self):
        self.storage.save(CART_KEY, [i.model_dump() for i in self.items])

    def _find(self, product_id: str) -> Optional[CartItem]:
        return next((i for i in self.items if i.product_id == product_id), None)

    def add(self, item: CartItem) -> None:
        if item.stock <= 0:
            raise ValueError(f"{item.name} is out of stock")
        existing = self._find(item.product_id)
        if existing:
            existing.qty = min(existing.qty + item.qty, item.stock)
            existing.stock = item.stock
        else:
            item.qty = min(item.qty, item.stock)
            self.items.append(item)
        self._persist()

    def update_quantity(self, product_id: str, qty: int) -> None:
        item = self._find(product_id)
        if item:
            item.qty = min(max(qty, 1), item.stock)
            self._persist()

    def remove(self, product_id: str) -> None:
        self.items = [i for i in self.items if i.product_id != product_id]
        self._persist()

    def clear(self) -> None:
        self.items = []
        self._persist()

    def save_shipping_address(self, address: ShippingAddress) -> None:
        self.shipping_address = address
        self.storage.save(SHIPPING_KEY, address.model_dump(by_alias=True))

    @property
    def total_items(self) -> int:
        return sum(i.qty for i in self.items)

    @property
    def subtotal(self) -> float:
        return sum(i.price * i.qty for i in self.items)

    def summary(self) -> Dict[str, float]:
        subtotal = self.subtotal
        if not self.items or subtotal > FREE_SHIPPING_THRESHOLD:
            shipping = 0
        else:
            shipping = SHIPPING_FEE
        tax = round(subtotal * TAX_RATE, 2)
        return {
            "itemsPrice": subtotal,
            "taxPrice": tax,
            "shippingPrice": shipping,
            "totalPrice": round(subtotal + shipping + tax, 2),
        }

    def checkout_payload(self, razorpay_order_id: str, razorpay_payment_id: str, razorpay_signature: str) -> Dict[str, Any]:
        """Body for ``POST /payment/verify`` once the gateway confirmed the payment."""
        if not self.items:
            raise ValueError("Cart is empty")
        if not self.shipping_address:
            raise ValueError("Shipping address is required")
        summary = self.summary()
        return {
            "razorpayOrderId": razorpay_order_id,
            "razorpayPaymentId": razorpay_payment_id,
            "razorpaySignature": razorpay_signature,
            "orderItems": [{"product": i.product_id, "qty": i.qty} for i in self.items],
            "shippingAddress": self.shipping_address.model_dump(by_alias=True),
            "taxPrice": summary["taxPrice"],
            "shippingPrice": summary["shippingPrice"],
            "totalPrice": summary["totalPrice"],
        }
