"""
HTTP client for the storefront API, as used by the web frontend.
"""
import logging
from typing import Any, Dict, Optional

import requests

from cart import Cart

logger = logging.getLogger(__name__)


class StorefrontError(Exception):
    def __init__(self, status_code: int, detail: str):
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class StorefrontClient:
    """Talks to the API and remembers the bearer token after login.

    ``session`` may be a ``requests.Session`` or any object with the same
    ``request(method, url, json=..., params=..., headers=...)`` call, such as
    FastAPI's ``TestClient``.
    """

    def __init__(self, base_url: str = "http://localhost:8000", session=None, token: Optional[str] = None):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.token = token

    def _request(self, method: str, path: str, json: Any = None, params: Optional[dict] = None):
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        resp = self.session.request(method, f"{self.base_url}{path}", json=json, params=params, headers=headers)
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("detail", resp.text)
            except ValueError:
                detail = resp.text
            logger.debug("%s %s failed with %s: %s", method, path, resp.status_code, detail)
            raise StorefrontError(resp.status_code, detail)
        return resp.json()

    # Auth
    def register(self, name: str, email: str, password: str) -> Dict[str, Any]:
        data = self._request("POST", "/auth/register", json={"name": name, "email": email, "password": password})
        self.token = data["token"]
        return data["user"]

    def login(self, email: str, password: str) -> Dict[str, Any]:
        data = self._request("POST", "/auth/login", json={"email": email, "password": password})
        self.token = data["token"]
        return data["user"]

    def logout(self) -> None:
        self.token = None

    def me(self) -> Dict[str, Any]:
        return self._request("GET", "/auth/me")["user"]

    # Catalog
    def list_products(self, **filters) -> Dict[str, Any]:
        params = {k: v for k, v in filters.items() if v is not None}
        return self._request("GET", "/products", params=params)

    def get_product(self, product_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/products/{product_id}")

    def review_product(self, product_id: str, rating: int, comment: Optional[str] = None) -> Dict[str, Any]:
        return self._request("POST", f"/products/{product_id}/reviews", json={"rating": rating, "comment": comment})

    # Checkout
    def create_payment_order(self, amount: float, currency: Optional[str] = None, receipt: Optional[str] = None,
                             notes: Optional[dict] = None) -> Dict[str, Any]:
        body = {"amount": amount, "currency": currency, "receipt": receipt, "notes": notes}
        return self._request("POST", "/payment/orders", json={k: v for k, v in body.items() if v is not None})

    def verify_payment(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/payment/verify", json=payload)

    def checkout(self, cart: Cart, razorpay_order_id: str, razorpay_payment_id: str, razorpay_signature: str) -> str:
        """Submit a confirmed payment for the cart; clears the cart on success."""
        result = self.verify_payment(cart.checkout_payload(razorpay_order_id, razorpay_payment_id, razorpay_signature))
        cart.clear()
        return result["orderId"]

    # Orders
    def my_orders(self):
        return self._request("GET", "/orders/mine")

    def get_order(self, order_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/orders/{order_id}")
