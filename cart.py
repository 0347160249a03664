import logging
from typing import Any, Dict, List, Optional

from pymongo.errors import DuplicateKeyError

from database import Store, serialize_doc, to_object_id, utcnow
from errors import InsufficientStock, InvalidArgument, NotFound
from schemas import Cartitem

logger = logging.getLogger(__name__)


def primary_image(product: Dict[str, Any]) -> Optional[str]:
    images = product.get("images") or []
    return images[0] if images else None


def load_products(store: Store, product_ids) -> Dict[str, Dict[str, Any]]:
    oids = [oid for oid in (to_object_id(pid) for pid in set(product_ids)) if oid]
    return {str(p["_id"]): p for p in store["product"].find({"_id": {"$in": oids}})}


class CartService:
    def __init__(self, store: Store):
        self.store = store

    def _active_product(self, product_id) -> Dict[str, Any]:
        _id = to_object_id(product_id)
        product = self.store["product"].find_one({"_id": _id, "status": "active"}) if _id else None
        if not product:
            raise NotFound("Product not found")
        return product

    def _merge(self, existing: Dict[str, Any], product: Dict[str, Any], quantity: int):
        new_quantity = existing["quantity"] + quantity
        if product.get("stock", 0) < new_quantity:
            raise InsufficientStock()
        self.store["cartitem"].update_one(
            {"_id": existing["_id"]}, {"$set": {"quantity": new_quantity, "updated_at": utcnow()}}
        )

    def add_item(self, user: Dict[str, Any], product_id: str, quantity: int = 1,
                 color: Optional[str] = None, size: Optional[str] = None) -> Dict[str, Any]:
        if quantity < 1:
            raise InvalidArgument("Valid quantity is required")
        product = self._active_product(product_id)
        if product.get("stock", 0) < quantity:
            raise InsufficientStock()

        key = {"user_id": user["id"], "product_id": str(product["_id"]), "color": color or None, "size": size or None}
        existing = self.store["cartitem"].find_one(key)
        if existing:
            self._merge(existing, product, quantity)
            return {"message": "Cart updated successfully", "merged": True}

        try:
            self.store.create_document("cartitem", Cartitem(quantity=quantity, **key))
        except DuplicateKeyError:
            # a concurrent add created the row first
            existing = self.store["cartitem"].find_one(key)
            if not existing:
                raise
            self._merge(existing, product, quantity)
            return {"message": "Cart updated successfully", "merged": True}
        return {"message": "Item added to cart successfully", "merged": False}

    def update_quantity(self, user: Dict[str, Any], item_id: str, quantity: int):
        if quantity is None or quantity < 1:
            raise InvalidArgument("Valid quantity is required")
        _id = to_object_id(item_id)
        item = self.store["cartitem"].find_one({"_id": _id, "user_id": user["id"]}) if _id else None
        if not item:
            raise NotFound("Cart item not found")
        product = self.store["product"].find_one({"_id": to_object_id(item["product_id"]), "status": "active"})
        if not product:
            raise NotFound("Product not found")
        if product.get("stock", 0) < quantity:
            raise InsufficientStock()
        self.store["cartitem"].update_one({"_id": _id}, {"$set": {"quantity": quantity, "updated_at": utcnow()}})

    def remove_item(self, user: Dict[str, Any], item_id: str):
        _id = to_object_id(item_id)
        deleted = self.store["cartitem"].delete_one({"_id": _id, "user_id": user["id"]}).deleted_count if _id else 0
        if deleted == 0:
            raise NotFound("Cart item not found")

    def list_items(self, user: Dict[str, Any]) -> List[Dict[str, Any]]:
        rows = list(self.store["cartitem"].find({"user_id": user["id"]}).sort("created_at", -1))
        products = load_products(self.store, [r["product_id"] for r in rows])
        items = []
        for row in rows:
            product = products.get(row["product_id"])
            if not product:
                continue
            item = serialize_doc(row)
            item.update({
                "title": product["title"],
                "price": product["price"],
                "discount_price": product.get("discount_price"),
                "stock": product.get("stock", 0),
                "image": primary_image(product),
            })
            items.append(item)
        return items

    def clear(self, user: Dict[str, Any], session=None) -> int:
        return self.store["cartitem"].delete_many({"user_id": user["id"]}, session=session).deleted_count
