"""
Checkout and order tracking.

Prices, tax, shipping and the coupon discount are recomputed here from the
live catalog; totals sent by the client are only compared and logged.
Order creation is all-or-nothing: inside a MongoDB transaction when the
store supports one, otherwise by undoing the completed steps in reverse.
"""
import logging
import secrets
import string
import time
from functools import partial
from typing import Any, Dict, List, Optional

from pymongo.errors import DuplicateKeyError

import settings
from cart import CartService, load_products, primary_image
from coupons import CouponService
from database import Store, serialize_doc, to_object_id, utcnow
from errors import InsufficientStock, InvalidArgument, MissingField, NotFound, StoreError
from schemas import ORDER_STATUSES, Order, OrderItem

logger = logging.getLogger(__name__)

PROGRESSION = ("pending", "confirmed", "shipped", "out_for_delivery", "delivered")
TERMINAL_STATUSES = ("delivered", "cancelled")

_SUFFIX_ALPHABET = string.digits + string.ascii_lowercase
ORDER_NUMBER_ATTEMPTS = 3


def generate_order_number() -> str:
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(9))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"


def can_transition(current: str, new: str) -> bool:
    if current == new:
        return True
    if current in TERMINAL_STATUSES:
        return False
    if new == "cancelled":
        return True
    return PROGRESSION.index(new) > PROGRESSION.index(current)


def compute_totals(subtotal: float, discount: float = 0.0) -> Dict[str, float]:
    tax = round(subtotal * settings.TAX_RATE, 2)
    shipping = 0.0 if subtotal > settings.FREE_SHIPPING_THRESHOLD else settings.SHIPPING_FEE
    total = max(0.0, round(subtotal + tax + shipping - discount, 2))
    return {
        "subtotal": round(subtotal, 2),
        "tax": tax,
        "shipping": shipping,
        "discount": round(discount, 2),
        "total": total,
    }


class OrderService:
    def __init__(self, store: Store, notifier=None):
        self.store = store
        self.notifier = notifier
        self.coupons = CouponService(store)
        self.cart = CartService(store)

    # ----------------------- Checkout -----------------------
    def _price_items(self, items: List[Dict[str, Any]]):
        products = load_products(self.store, [str(i.get("product_id")) for i in items])
        lines = []
        for item in items:
            product = products.get(str(item.get("product_id")))
            if not product or product.get("status") != "active":
                raise NotFound("Product not found")
            quantity = int(item.get("quantity") or 0)
            if quantity < 1:
                raise InvalidArgument("Valid quantity is required")
            unit_price = product.get("discount_price") or product["price"]
            lines.append({
                "product_id": str(product["_id"]),
                "title": product["title"],
                "quantity": quantity,
                "price": round(float(unit_price), 2),
                "color": item.get("color") or None,
                "size": item.get("size") or None,
            })
        subtotal = round(sum(line["price"] * line["quantity"] for line in lines), 2)
        return lines, subtotal

    def _reserve_stock(self, line: Dict[str, Any], session=None):
        result = self.store["product"].update_one(
            {"_id": to_object_id(line["product_id"]), "stock": {"$gte": line["quantity"]}},
            {"$inc": {"stock": -line["quantity"]}, "$set": {"updated_at": utcnow()}},
            session=session,
        )
        if result.modified_count == 0:
            raise InsufficientStock(f"Insufficient stock for {line['title']}")

    def _release_stock(self, line: Dict[str, Any], session=None):
        self.store["product"].update_one(
            {"_id": to_object_id(line["product_id"])}, {"$inc": {"stock": line["quantity"]}}, session=session
        )

    def create_order(self, user: Dict[str, Any], items: List[Dict[str, Any]], shipping_address: Optional[Dict[str, Any]],
                     payment_method: Optional[str], coupon_code: Optional[str] = None,
                     client_totals: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not items or not shipping_address or not payment_method:
            raise MissingField("Missing required order information")

        lines, subtotal = self._price_items(items)
        coupon = self.coupons.validate(coupon_code, subtotal) if coupon_code else None
        totals = compute_totals(subtotal, coupon["discount"] if coupon else 0.0)
        if client_totals and client_totals.get("total") is not None:
            if abs(float(client_totals["total"]) - totals["total"]) >= 0.01:
                logger.warning("Client total %s differs from computed total %s for user %s",
                               client_totals["total"], totals["total"], user["id"])

        order_fields = dict(
            user_id=user["id"],
            payment_method=payment_method,
            shipping_address={k: v for k, v in shipping_address.items() if k not in ("id", "user_id")},
            coupon_code=coupon["code"] if coupon else None,
            items=[OrderItem(**{k: v for k, v in line.items() if k != "title"}) for line in lines],
            **totals,
        )

        for attempt in range(ORDER_NUMBER_ATTEMPTS):
            order_number = generate_order_number()
            try:
                order_id = self._place(user, lines, coupon, Order(order_number=order_number, **order_fields))
                break
            except DuplicateKeyError:
                # attempt rolled back; retry under a new number
                logger.warning("Order number collision on %s (attempt %d)", order_number, attempt + 1)
        else:
            raise StoreError("Failed to create order")

        logger.info("Order %s created for user %s (total %.2f)", order_number, user["id"], totals["total"])
        if self.notifier:
            self.notifier.send_order_confirmation(user["email"], user.get("name", ""), order_number, lines, totals["total"])
        return {"message": "Order created successfully", "order_id": order_id, "order_number": order_number}

    def _place(self, user: Dict[str, Any], lines: List[Dict[str, Any]], coupon: Optional[Dict[str, Any]], order: Order) -> str:
        """Reserve stock, use the coupon, insert the order and clear the cart as one unit."""
        with self.store.transaction() as session:
            undo = []
            try:
                for line in lines:
                    self._reserve_stock(line, session)
                    undo.append(partial(self._release_stock, line, session))
                if coupon:
                    self.coupons.record_usage(coupon["coupon_id"], session=session)
                    undo.append(partial(self.coupons.release_usage, coupon["coupon_id"], session))
                order_id = self.store.create_document("order", order, session=session)
                undo.append(partial(self.store["order"].delete_one, {"_id": to_object_id(order_id)}, session=session))
                self.cart.clear(user, session=session)
            except Exception:
                if session is None:
                    self._undo(undo)
                raise
        return order_id

    def _undo(self, actions):
        for action in reversed(actions):
            try:
                action()
            except Exception:
                logger.exception("Rollback step failed during order creation")

    # ----------------------- Reads -----------------------
    def _with_item_details(self, orders: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        product_ids = [item["product_id"] for order in orders for item in order.get("items", [])]
        products = load_products(self.store, product_ids)
        out = []
        for order in orders:
            doc = serialize_doc(order)
            for item in doc.get("items", []):
                product = products.get(item["product_id"], {})
                item["title"] = product.get("title")
                item["image"] = primary_image(product)
            out.append(doc)
        return out

    def get_order(self, user: Dict[str, Any], order_id: str) -> Dict[str, Any]:
        _id = to_object_id(order_id)
        order = self.store["order"].find_one({"_id": _id, "user_id": user["id"]}) if _id else None
        if not order:
            raise NotFound("Order not found")
        return self._with_item_details([order])[0]

    def list_orders(self, user: Dict[str, Any]) -> List[Dict[str, Any]]:
        orders = list(self.store["order"].find({"user_id": user["id"]}).sort("created_at", -1))
        return self._with_item_details(orders)

    # ----------------------- Status -----------------------
    def update_status(self, order_id: str, new_status: str, tracking_number: Optional[str] = None):
        if new_status not in ORDER_STATUSES:
            raise InvalidArgument("Invalid status")
        _id = to_object_id(order_id)
        order = self.store["order"].find_one({"_id": _id}) if _id else None
        if not order:
            raise NotFound("Order not found")
        if not can_transition(order["status"], new_status):
            raise InvalidArgument(f"Cannot change order status from {order['status']} to {new_status}")

        update = {"status": new_status, "updated_at": utcnow()}
        if tracking_number:
            update["tracking_number"] = tracking_number
        self.store["order"].update_one({"_id": _id}, {"$set": update})
        logger.info("Order %s status %s -> %s", order["order_number"], order["status"], new_status)

        if self.notifier:
            customer = self.store["user"].find_one({"_id": to_object_id(order["user_id"])})
            if customer:
                self.notifier.send_order_status_update(
                    customer["email"], customer.get("name", ""), order["order_number"], new_status, tracking_number
                )
            else:
                logger.warning("No customer found for order %s; status email skipped", order["order_number"])
