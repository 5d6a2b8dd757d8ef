"""
Database and request schemas for the Koushiks Supplements storefront

The document models correspond to MongoDB collections. Collection name is the
lowercase class name. Request bodies use the camelCase field names the
storefront frontend sends.
"""
from datetime import datetime
from typing import Any, ClassVar, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_BRAND = "Koushiks Supplements"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Collections

class User(BaseModel):
    name: str
    email: EmailStr
    password_hash: str = Field(..., description="BCrypt hash of the password")
    role: Literal["user", "admin"] = "user"


class Rating(BaseModel):
    user_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Product(BaseModel):
    name: str = Field(..., min_length=1)
    description: str
    price: float = Field(..., ge=0, allow_inf_nan=False)
    stock: int = Field(..., ge=0)
    category: Optional[str] = None
    images: List[str] = []
    brand: str = DEFAULT_BRAND
    ratings: List[Rating] = []
    avg_rating: float = 0
    num_reviews: int = 0
    created_by: Optional[str] = None

    @field_validator("name", "category", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("images")
    @classmethod
    def strip_images(cls, v):
        return [i.strip() for i in v if i and i.strip()]


class OrderItem(BaseModel):
    name: str
    qty: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    product: str
    image: Optional[str] = None


class ShippingAddress(CamelModel):
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)


class PaymentResult(BaseModel):
    id: str
    status: str
    update_time: str
    email_address: Optional[str] = None


class Order(BaseModel):
    user_id: str
    order_items: List[OrderItem] = Field(..., min_length=1)
    shipping_address: Dict[str, Any]
    payment_method: str = "Razorpay"
    payment_result: PaymentResult
    items_price: float
    tax_price: float = 0
    shipping_price: float = 0
    total_price: float
    is_paid: bool = False
    paid_at: Optional[datetime] = None
    is_delivered: bool = False
    delivered_at: Optional[datetime] = None


# Request bodies

class RegisterIn(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = None


class LoginIn(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class ProductIn(BaseModel):
    name: str = Field(..., min_length=1)
    description: str
    price: float = Field(..., ge=0, allow_inf_nan=False)
    stock: int = Field(..., ge=0)
    category: Optional[str] = None
    images: List[str] = []
    brand: str = DEFAULT_BRAND

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v


class ProductUpdate(BaseModel):
    """Admin edit: only the fields present in the request are applied."""

    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    stock: Optional[int] = Field(None, ge=0)
    category: Optional[str] = None
    images: Optional[List[str]] = None
    brand: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v

    # Fields the product cannot exist without; an explicit null is an error.
    REQUIRED: ClassVar[tuple] = ("name", "description", "price", "stock", "images", "brand")

    def changes(self) -> Dict[str, Any]:
        data = self.model_dump(exclude_unset=True)
        missing = [k for k in self.REQUIRED if k in data and data[k] is None]
        if missing:
            raise ValueError(f"{', '.join(missing)} cannot be empty")
        return data


class ReviewIn(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = None


class PaymentOrderIn(BaseModel):
    amount: Optional[float] = Field(None, allow_inf_nan=False)
    currency: Optional[str] = None
    receipt: Optional[str] = None
    notes: Optional[Dict[str, Any]] = None


class OrderItemIn(BaseModel):
    product: str
    qty: int = Field(..., ge=1)


class VerifyPaymentIn(CamelModel):
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    order_items: Optional[List[OrderItemIn]] = None
    shipping_address: Optional[ShippingAddress] = None
    tax_price: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    shipping_price: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    total_price: Optional[float] = Field(None, allow_inf_nan=False)
