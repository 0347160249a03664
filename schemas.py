"""
Database Schemas for the Storefront

Each Pydantic model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name:
- User -> "user"
- Address -> "address"
- Category -> "category"
- Product -> "product"
- Cartitem -> "cartitem"
- Wishlistitem -> "wishlistitem"
- Order -> "order" (order items are embedded)
- Coupon -> "coupon"

References between collections are stored as string ids.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

ORDER_STATUSES = ("pending", "confirmed", "shipped", "out_for_delivery", "delivered", "cancelled")
PRODUCT_STATUSES = ("active", "inactive", "deleted")
COUPON_TYPES = ("percentage", "fixed")

OrderStatus = Literal["pending", "confirmed", "shipped", "out_for_delivery", "delivered", "cancelled"]
ProductStatus = Literal["active", "inactive", "deleted"]
CouponType = Literal["percentage", "fixed"]


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr
    password_hash: str = Field(..., description="Salted PBKDF2 hash")
    phone: Optional[str] = None
    role: Literal["user", "admin"] = "user"
    is_verified: bool = False
    verification_token: Optional[str] = None
    reset_password_token: Optional[str] = None
    reset_password_expires: Optional[datetime] = None


class Address(BaseModel):
    user_id: str
    name: str
    street: str
    city: str
    state: str
    zip_code: str
    country: str = "US"
    is_default: bool = False


class Category(BaseModel):
    name: str
    description: Optional[str] = None
    image: Optional[str] = None


class Product(BaseModel):
    title: str
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    discount_price: Optional[float] = Field(None, ge=0)
    stock: int = Field(0, ge=0)
    category_id: str
    images: List[str] = Field(default_factory=list)
    colors: List[str] = Field(default_factory=list)
    sizes: List[str] = Field(default_factory=list)
    featured: bool = False
    status: ProductStatus = "active"


class Cartitem(BaseModel):
    user_id: str
    product_id: str
    quantity: int = Field(1, ge=1)
    color: Optional[str] = None
    size: Optional[str] = None


class Wishlistitem(BaseModel):
    user_id: str
    product_id: str


class OrderItem(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0, description="Unit price at purchase time")
    color: Optional[str] = None
    size: Optional[str] = None


class Order(BaseModel):
    user_id: str
    order_number: str
    status: OrderStatus = "pending"
    payment_status: Literal["pending", "paid", "failed", "refunded"] = "pending"
    payment_method: str
    subtotal: float = Field(..., ge=0)
    tax: float = 0.0
    shipping: float = 0.0
    discount: float = 0.0
    total: float = Field(..., ge=0)
    shipping_address: Dict[str, Any] = Field(..., description="Snapshot taken at checkout")
    coupon_code: Optional[str] = None
    tracking_number: Optional[str] = None
    items: List[OrderItem]


class Coupon(BaseModel):
    code: str
    type: CouponType
    value: float = Field(..., gt=0)
    min_amount: float = Field(0.0, ge=0)
    max_discount: Optional[float] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=1)
    used_count: int = 0
    is_active: bool = True
    expires_at: Optional[datetime] = None
