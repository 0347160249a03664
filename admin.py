import logging
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError

from catalog import contains, paginate, with_category_names
from coupons import normalize_code
from database import Store, serialize_doc, to_naive_utc, to_object_id, utcnow
from errors import Conflict, HasDependents, InvalidArgument, MissingField, NotFound
from orders import OrderService
from schemas import COUPON_TYPES, Category, Coupon, Product

logger = logging.getLogger(__name__)


class AdminService:
    def __init__(self, store: Store, notifier=None):
        self.store = store
        self.orders = OrderService(store, notifier)

    def _users_by_id(self, user_ids) -> Dict[str, Dict[str, Any]]:
        oids = [oid for oid in (to_object_id(u) for u in set(user_ids)) if oid]
        return {str(u["_id"]): u for u in self.store["user"].find({"_id": {"$in": oids}})}

    def _with_customer(self, orders: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        users = self._users_by_id(o["user_id"] for o in orders)
        out = []
        for order in orders:
            doc = serialize_doc(order)
            customer = users.get(order["user_id"], {})
            doc["user_name"] = customer.get("name")
            doc["user_email"] = customer.get("email")
            doc["item_count"] = len(order.get("items", []))
            out.append(doc)
        return out

    # ----------------------- Dashboard -----------------------
    def dashboard(self) -> Dict[str, Any]:
        revenue = list(self.store["order"].aggregate([
            {"$match": {"status": {"$ne": "cancelled"}}},
            {"$group": {"_id": None, "revenue": {"$sum": "$total"}}},
        ]))
        recent = list(self.store["order"].find().sort("created_at", DESCENDING).limit(5))
        return {
            "total_orders": self.store["order"].count_documents({}),
            "total_revenue": round(revenue[0]["revenue"], 2) if revenue else 0,
            "total_users": self.store["user"].count_documents({"role": "user"}),
            "pending_orders": self.store["order"].count_documents({"status": "pending"}),
            "recent_orders": self._with_customer(recent),
        }

    # ----------------------- Products -----------------------
    def _require_category(self, category_id: str):
        _id = to_object_id(category_id)
        if not _id or not self.store["category"].find_one({"_id": _id}):
            raise InvalidArgument("Category not found")

    def list_products(self, page: int = 1, limit: int = 10, search: Optional[str] = None,
                      category: Optional[str] = None) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if search:
            query["title"] = contains(search)
        if category:
            found = self.store["category"].find_one({"name": category})
            query["category_id"] = str(found["_id"]) if found else None
        page = max(page, 1)
        total = self.store["product"].count_documents(query)
        cursor = self.store["product"].find(query).sort("created_at", DESCENDING).skip((page - 1) * limit).limit(limit)
        return {"products": with_category_names(self.store, list(cursor)), "pagination": paginate(total, page, limit)}

    def create_product(self, fields: Dict[str, Any]) -> str:
        if not fields.get("title") or fields.get("price") is None or not fields.get("category_id"):
            raise MissingField("Title, price, and category are required")
        self._require_category(fields["category_id"])
        product_id = self.store.create_document("product", Product(**fields))
        logger.info("Product %s created", product_id)
        return product_id

    def update_product(self, product_id: str, fields: Dict[str, Any]):
        if "title" in fields and not fields["title"]:
            raise MissingField("Title is required")
        if fields.get("category_id"):
            self._require_category(fields["category_id"])
        _id = to_object_id(product_id)
        result = self.store["product"].update_one({"_id": _id}, {"$set": {**fields, "updated_at": utcnow()}}) if _id else None
        if not result or result.matched_count == 0:
            raise NotFound("Product not found")

    def delete_product(self, product_id: str):
        # soft delete: past orders keep pointing at the row
        self.update_product(product_id, {"status": "deleted"})

    # ----------------------- Orders -----------------------
    def list_orders(self, page: int = 1, limit: int = 10, status: Optional[str] = None,
                    search: Optional[str] = None) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if status:
            query["status"] = status
        if search:
            matching = self.store["user"].find({"$or": [{"name": contains(search)}, {"email": contains(search)}]})
            query["$or"] = [
                {"order_number": contains(search)},
                {"user_id": {"$in": [str(u["_id"]) for u in matching]}},
            ]
        page = max(page, 1)
        total = self.store["order"].count_documents(query)
        cursor = self.store["order"].find(query).sort("created_at", DESCENDING).skip((page - 1) * limit).limit(limit)
        return {"orders": self._with_customer(list(cursor)), "pagination": paginate(total, page, limit)}

    def update_order_status(self, order_id: str, status: str, tracking_number: Optional[str] = None):
        self.orders.update_status(order_id, status, tracking_number)

    # ----------------------- Categories -----------------------
    def list_categories(self) -> List[Dict[str, Any]]:
        return [serialize_doc(c) for c in self.store["category"].find().sort("name", 1)]

    def create_category(self, name: str, description: Optional[str] = None, image: Optional[str] = None) -> str:
        if not name:
            raise MissingField("Category name is required")
        try:
            return self.store.create_document("category", Category(name=name, description=description, image=image))
        except DuplicateKeyError:
            raise Conflict("Category name already exists")

    def update_category(self, category_id: str, fields: Dict[str, Any]):
        if "name" in fields and not fields["name"]:
            raise MissingField("Category name is required")
        _id = to_object_id(category_id)
        try:
            result = self.store["category"].update_one({"_id": _id}, {"$set": {**fields, "updated_at": utcnow()}}) if _id else None
        except DuplicateKeyError:
            raise Conflict("Category name already exists")
        if not result or result.matched_count == 0:
            raise NotFound("Category not found")

    def delete_category(self, category_id: str):
        if self.store["product"].count_documents({"category_id": category_id}) > 0:
            raise HasDependents("Cannot delete category with existing products")
        _id = to_object_id(category_id)
        deleted = self.store["category"].delete_one({"_id": _id}).deleted_count if _id else 0
        if deleted == 0:
            raise NotFound("Category not found")

    # ----------------------- Coupons -----------------------
    def list_coupons(self, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        page = max(page, 1)
        total = self.store["coupon"].count_documents({})
        cursor = self.store["coupon"].find().sort("created_at", DESCENDING).skip((page - 1) * limit).limit(limit)
        return {"coupons": [serialize_doc(c) for c in cursor], "pagination": paginate(total, page, limit)}

    def create_coupon(self, fields: Dict[str, Any]) -> str:
        if not fields.get("code") or not fields.get("type") or not fields.get("value"):
            raise MissingField("Code, type, and value are required")
        if fields["type"] not in COUPON_TYPES:
            raise InvalidArgument("Type must be either percentage or fixed")
        fields = {**fields, "code": normalize_code(fields["code"]), "expires_at": to_naive_utc(fields.get("expires_at"))}
        try:
            return self.store.create_document("coupon", Coupon(**fields))
        except DuplicateKeyError:
            raise Conflict("Coupon code already exists")

    def update_coupon(self, coupon_id: str, fields: Dict[str, Any]):
        fields = dict(fields)
        if "code" in fields:
            fields["code"] = normalize_code(fields["code"])
            if not fields["code"]:
                raise MissingField("Coupon code is required")
        if "expires_at" in fields:
            fields["expires_at"] = to_naive_utc(fields["expires_at"])
        _id = to_object_id(coupon_id)
        with self.store.transaction() as session:
            try:
                result = self.store["coupon"].update_one(
                    {"_id": _id}, {"$set": {**fields, "updated_at": utcnow()}}, session=session
                ) if _id else None
            except DuplicateKeyError:
                raise Conflict("Coupon code already exists")
        if not result or result.matched_count == 0:
            raise NotFound("Coupon not found")

    def delete_coupon(self, coupon_id: str):
        _id = to_object_id(coupon_id)
        deleted = self.store["coupon"].delete_one({"_id": _id}).deleted_count if _id else 0
        if deleted == 0:
            raise NotFound("Coupon not found")
