from typing import Any, Dict, List

from pymongo.errors import DuplicateKeyError

from cart import load_products, primary_image
from database import Store, serialize_doc, to_object_id
from errors import NotFound
from schemas import Wishlistitem


class WishlistService:
    def __init__(self, store: Store):
        self.store = store

    def list_items(self, user: Dict[str, Any]) -> List[Dict[str, Any]]:
        rows = list(self.store["wishlistitem"].find({"user_id": user["id"]}).sort("created_at", -1))
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
                "image": primary_image(product),
            })
            items.append(item)
        return items

    def add_item(self, user: Dict[str, Any], product_id: str):
        _id = to_object_id(product_id)
        if not _id or not self.store["product"].find_one({"_id": _id}):
            raise NotFound("Product not found")
        try:
            self.store.create_document("wishlistitem", Wishlistitem(user_id=user["id"], product_id=str(_id)))
        except DuplicateKeyError:
            pass  # already present

    def remove_item(self, user: Dict[str, Any], product_id: str):
        result = self.store["wishlistitem"].delete_one({"user_id": user["id"], "product_id": product_id})
        if result.deleted_count == 0:
            raise NotFound("Wishlist item not found")
