import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

import pydantic
from fastapi import BackgroundTasks, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, EmailStr, Field
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import settings
from accounts import AccountService
from admin import AdminService
from cart import CartService
from catalog import CatalogService
from coupons import CouponService
from database import Store, connect, get_store
from errors import Forbidden, ShopError
from notifier import Notifier, default_mailer
from orders import OrderService
from schemas import CouponType, ProductStatus
from seed import seed_demo_data
from wishlist import WishlistService

logging.basicConfig(level=settings.LOGGING_LEVEL, format=settings.LOG_FORMAT)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "store", None) is None:
        app.state.store = connect(settings.DATABASE_URL, settings.DATABASE_NAME, settings.MONGO_TRANSACTIONS)
    if getattr(app.state, "mailer", None) is None:
        app.state.mailer = default_mailer()
    app.state.store.ensure_indexes()
    if settings.SEED_DEMO_DATA:
        seed_demo_data(app.state.store)
    yield


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

security = HTTPBearer(auto_error=False)


# ----------------------- Errors -----------------------
@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": str(exc.detail)})


@app.exception_handler(RequestValidationError)
@app.exception_handler(pydantic.ValidationError)
async def validation_error_handler(request: Request, exc):
    errors = exc.errors()
    if errors:
        loc = ".".join(str(part) for part in errors[0].get("loc", ()) if part != "body")
        message = f"{loc}: {errors[0].get('msg')}" if loc else errors[0].get("msg")
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"message": message})


@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError):
    logger.error("Database error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"message": "Database error"})


# ----------------------- Dependencies -----------------------
def get_notifier(request: Request, background_tasks: BackgroundTasks) -> Notifier:
    return Notifier(request.app.state.mailer, schedule=background_tasks.add_task)


def get_accounts(store: Store = Depends(get_store), notifier: Notifier = Depends(get_notifier)):
    return AccountService(store, notifier)


def get_orders(store: Store = Depends(get_store), notifier: Notifier = Depends(get_notifier)):
    return OrderService(store, notifier)


def get_admin(store: Store = Depends(get_store), notifier: Notifier = Depends(get_notifier)):
    return AdminService(store, notifier)


def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
                     accounts: AccountService = Depends(get_accounts)):
    return accounts.authenticate(credentials.credentials if credentials else None)


def require_admin(user=Depends(get_current_user)):
    if user.get("role") != "admin":
        raise Forbidden("Admin access required")
    return user


def update_fields(body: BaseModel, clearable=()) -> Dict[str, Any]:
    """Fields sent in a partial update; nulls only for optional fields."""
    fields = body.model_dump(exclude_unset=True)
    return {k: v for k, v in fields.items() if v is not None or k in clearable}


# ----------------------- Models -----------------------
class RegisterBody(BaseModel):
    name: str
    email: EmailStr
    password: str


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class ForgotPasswordBody(BaseModel):
    email: EmailStr


class ResetPasswordBody(BaseModel):
    password: Optional[str] = None


class ProfileBody(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None


class PasswordChangeBody(BaseModel):
    current_password: Optional[str] = None
    new_password: Optional[str] = None


class AddressBody(BaseModel):
    name: str
    street: str
    city: str
    state: str
    zip_code: str
    country: str = "US"
    is_default: bool = False


class CartAddBody(BaseModel):
    product_id: str
    quantity: int = 1
    color: Optional[str] = None
    size: Optional[str] = None


class CartUpdateBody(BaseModel):
    quantity: Optional[int] = None


class WishlistBody(BaseModel):
    product_id: str


class CouponValidateBody(BaseModel):
    code: str
    amount: float = Field(..., ge=0)


class OrderItemBody(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    price: Optional[float] = None
    color: Optional[str] = None
    size: Optional[str] = None


class OrderCreateBody(BaseModel):
    items: List[OrderItemBody] = Field(default_factory=list)
    shipping_address: Optional[Dict[str, Any]] = None
    payment_method: Optional[str] = None
    coupon_code: Optional[str] = None
    # informational only; totals are recomputed server-side
    subtotal: Optional[float] = None
    tax: Optional[float] = None
    shipping: Optional[float] = None
    discount: Optional[float] = None
    total: Optional[float] = None


class ProductCreateBody(BaseModel):
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


class ProductUpdateBody(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    discount_price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    category_id: Optional[str] = None
    images: Optional[List[str]] = None
    colors: Optional[List[str]] = None
    sizes: Optional[List[str]] = None
    featured: Optional[bool] = None
    status: Optional[ProductStatus] = None


class OrderStatusBody(BaseModel):
    status: str
    tracking_number: Optional[str] = None


class CategoryBody(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None


class CouponCreateBody(BaseModel):
    code: str
    type: str
    value: float = Field(..., ge=0)
    min_amount: float = Field(0, ge=0)
    max_discount: Optional[float] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=1)
    is_active: bool = True
    expires_at: Optional[datetime] = None


class CouponUpdateBody(BaseModel):
    code: Optional[str] = None
    type: Optional[CouponType] = None
    value: Optional[float] = Field(None, gt=0)
    min_amount: Optional[float] = Field(None, ge=0)
    max_discount: Optional[float] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=1)
    is_active: Optional[bool] = None
    expires_at: Optional[datetime] = None


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "Storefront API running"}


@app.get("/test")
def test_database(store: Store = Depends(get_store)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if settings.DATABASE_URL else "❌ Not Set",
        "database_name": "✅ Set" if settings.DATABASE_NAME else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        response["collections"] = store.db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except PyMongoError as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ----------------------- Auth -----------------------
@app.post("/auth/register", status_code=201)
def register(body: RegisterBody, accounts: AccountService = Depends(get_accounts)):
    return accounts.register(body.name, body.email, body.password)


@app.get("/auth/verify/{token}")
def verify_email(token: str, accounts: AccountService = Depends(get_accounts)):
    return accounts.verify_email(token)


@app.post("/auth/login")
def login(body: LoginBody, accounts: AccountService = Depends(get_accounts)):
    return accounts.login(body.email, body.password)


@app.post("/auth/forgot-password")
def forgot_password(body: ForgotPasswordBody, accounts: AccountService = Depends(get_accounts)):
    return accounts.forgot_password(body.email)


@app.post("/auth/reset-password/{token}")
def reset_password(token: str, body: ResetPasswordBody, accounts: AccountService = Depends(get_accounts)):
    return accounts.reset_password(token, body.password)


@app.get("/auth/me")
def me(user=Depends(get_current_user)):
    return {"user": user}


# ----------------------- Products -----------------------
@app.get("/products")
def list_products(
    category: Optional[str] = None,
    search: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    sort: str = "created_at",
    order: str = "desc",
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    featured: Optional[bool] = None,
    store: Store = Depends(get_store),
):
    return CatalogService(store).list_products(
        category=category, search=search, min_price=min_price, max_price=max_price,
        sort=sort, order=order, page=page, limit=limit, featured=featured,
    )


@app.get("/products/categories/all")
def list_categories(store: Store = Depends(get_store)):
    return CatalogService(store).list_categories()


@app.get("/products/{product_id}")
def get_product(product_id: str, store: Store = Depends(get_store)):
    return CatalogService(store).get_product(product_id)


# ----------------------- Coupons -----------------------
@app.post("/coupons/validate")
def validate_coupon(body: CouponValidateBody, store: Store = Depends(get_store)):
    result = CouponService(store).validate(body.code, body.amount)
    return {k: result[k] for k in ("valid", "discount", "type", "value")}


# ----------------------- Orders -----------------------
@app.post("/orders", status_code=201)
def create_order(body: OrderCreateBody, user=Depends(get_current_user), orders: OrderService = Depends(get_orders)):
    return orders.create_order(
        user,
        items=[item.model_dump() for item in body.items],
        shipping_address=body.shipping_address,
        payment_method=body.payment_method,
        coupon_code=body.coupon_code,
        client_totals=body.model_dump(include={"subtotal", "tax", "shipping", "discount", "total"}),
    )


@app.get("/orders")
def list_orders(user=Depends(get_current_user), orders: OrderService = Depends(get_orders)):
    return orders.list_orders(user)


@app.get("/orders/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user), orders: OrderService = Depends(get_orders)):
    return orders.get_order(user, order_id)


# ----------------------- Users -----------------------
@app.get("/users/profile")
def get_profile(user=Depends(get_current_user), accounts: AccountService = Depends(get_accounts)):
    return accounts.get_profile(user)


@app.put("/users/profile")
def update_profile(body: ProfileBody, user=Depends(get_current_user), accounts: AccountService = Depends(get_accounts)):
    accounts.update_profile(user, body.name, body.phone)
    return {"message": "Profile updated successfully"}


@app.put("/users/password")
def change_password(body: PasswordChangeBody, user=Depends(get_current_user), accounts: AccountService = Depends(get_accounts)):
    accounts.change_password(user, body.current_password, body.new_password)
    return {"message": "Password changed successfully"}


@app.get("/users/addresses")
def list_addresses(user=Depends(get_current_user), accounts: AccountService = Depends(get_accounts)):
    return accounts.list_addresses(user)


@app.post("/users/addresses", status_code=201)
def add_address(body: AddressBody, user=Depends(get_current_user), accounts: AccountService = Depends(get_accounts)):
    address_id = accounts.add_address(user, body.model_dump())
    return {"message": "Address added successfully", "address_id": address_id}


@app.put("/users/addresses/{address_id}")
def update_address(address_id: str, body: AddressBody, user=Depends(get_current_user),
                   accounts: AccountService = Depends(get_accounts)):
    accounts.update_address(user, address_id, body.model_dump())
    return {"message": "Address updated successfully"}


@app.delete("/users/addresses/{address_id}")
def delete_address(address_id: str, user=Depends(get_current_user), accounts: AccountService = Depends(get_accounts)):
    accounts.delete_address(user, address_id)
    return {"message": "Address deleted successfully"}


# ----------------------- Cart -----------------------
@app.get("/users/cart")
def get_cart(user=Depends(get_current_user), store: Store = Depends(get_store)):
    return CartService(store).list_items(user)


@app.post("/users/cart", status_code=201)
def add_to_cart(body: CartAddBody, user=Depends(get_current_user), store: Store = Depends(get_store)):
    return CartService(store).add_item(user, body.product_id, body.quantity, body.color, body.size)


@app.put("/users/cart/{item_id}")
def update_cart_item(item_id: str, body: CartUpdateBody, user=Depends(get_current_user), store: Store = Depends(get_store)):
    CartService(store).update_quantity(user, item_id, body.quantity)
    return {"message": "Cart updated successfully"}


@app.delete("/users/cart/{item_id}")
def remove_cart_item(item_id: str, user=Depends(get_current_user), store: Store = Depends(get_store)):
    CartService(store).remove_item(user, item_id)
    return {"message": "Item removed from cart successfully"}


# ----------------------- Wishlist -----------------------
@app.get("/users/wishlist")
def get_wishlist(user=Depends(get_current_user), store: Store = Depends(get_store)):
    return WishlistService(store).list_items(user)


@app.post("/users/wishlist", status_code=201)
def add_to_wishlist(body: WishlistBody, user=Depends(get_current_user), store: Store = Depends(get_store)):
    WishlistService(store).add_item(user, body.product_id)
    return {"message": "Item added to wishlist successfully"}


@app.delete("/users/wishlist/{product_id}")
def remove_from_wishlist(product_id: str, user=Depends(get_current_user), store: Store = Depends(get_store)):
    WishlistService(store).remove_item(user, product_id)
    return {"message": "Item removed from wishlist successfully"}


# ----------------------- Admin -----------------------
@app.get("/admin/dashboard")
def admin_dashboard(admin=Depends(require_admin), service: AdminService = Depends(get_admin)):
    return service.dashboard()


@app.get("/admin/products")
def admin_list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    category: Optional[str] = None,
    admin=Depends(require_admin),
    service: AdminService = Depends(get_admin),
):
    return service.list_products(page=page, limit=limit, search=search, category=category)


@app.post("/admin/products", status_code=201)
def admin_create_product(body: ProductCreateBody, admin=Depends(require_admin), service: AdminService = Depends(get_admin)):
    product_id = service.create_product(body.model_dump())
    return {"message": "Product created successfully", "product_id": product_id}


@app.put("/admin/products/{product_id}")
def admin_update_product(product_id: str, body: ProductUpdateBody, admin=Depends(require_admin),
                         service: AdminService = Depends(get_admin)):
    service.update_product(product_id, update_fields(body, clearable=("description", "discount_price")))
    return {"message": "Product updated successfully"}


@app.delete("/admin/products/{product_id}")
def admin_delete_product(product_id: str, admin=Depends(require_admin), service: AdminService = Depends(get_admin)):
    service.delete_product(product_id)
    return {"message": "Product deleted successfully"}


@app.get("/admin/orders")
def admin_list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    search: Optional[str] = None,
    admin=Depends(require_admin),
    service: AdminService = Depends(get_admin),
):
    return service.list_orders(page=page, limit=limit, status=status, search=search)


@app.put("/admin/orders/{order_id}/status")
def admin_update_order_status(order_id: str, body: OrderStatusBody, admin=Depends(require_admin),
                              service: AdminService = Depends(get_admin)):
    service.update_order_status(order_id, body.status, body.tracking_number)
    return {"message": "Order status updated successfully"}


@app.get("/admin/categories")
def admin_list_categories(admin=Depends(require_admin), service: AdminService = Depends(get_admin)):
    return service.list_categories()


@app.post("/admin/categories", status_code=201)
def admin_create_category(body: CategoryBody, admin=Depends(require_admin), service: AdminService = Depends(get_admin)):
    category_id = service.create_category(body.name, body.description, body.image)
    return {"message": "Category created successfully", "category_id": category_id}


@app.put("/admin/categories/{category_id}")
def admin_update_category(category_id: str, body: CategoryBody, admin=Depends(require_admin),
                          service: AdminService = Depends(get_admin)):
    service.update_category(category_id, update_fields(body, clearable=("description", "image")))
    return {"message": "Category updated successfully"}


@app.delete("/admin/categories/{category_id}")
def admin_delete_category(category_id: str, admin=Depends(require_admin), service: AdminService = Depends(get_admin)):
    service.delete_category(category_id)
    return {"message": "Category deleted successfully"}


@app.get("/admin/coupons")
def admin_list_coupons(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    admin=Depends(require_admin),
    service: AdminService = Depends(get_admin),
):
    return service.list_coupons(page=page, limit=limit)


@app.post("/admin/coupons", status_code=201)
def admin_create_coupon(body: CouponCreateBody, admin=Depends(require_admin), service: AdminService = Depends(get_admin)):
    coupon_id = service.create_coupon(body.model_dump())
    return {"message": "Coupon created successfully", "coupon_id": coupon_id}


@app.put("/admin/coupons/{coupon_id}")
def admin_update_coupon(coupon_id: str, body: CouponUpdateBody, admin=Depends(require_admin),
                        service: AdminService = Depends(get_admin)):
    service.update_coupon(coupon_id, update_fields(body, clearable=("max_discount", "usage_limit", "expires_at")))
    return {"message": "Coupon updated successfully"}


@app.delete("/admin/coupons/{coupon_id}")
def admin_delete_coupon(coupon_id: str, admin=Depends(require_admin), service: AdminService = Depends(get_admin)):
    service.delete_coupon(coupon_id)
    return {"message": "Coupon deleted successfully"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
