import math
import re
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING

from database import Store, serialize_doc, to_object_id
from errors import NotFound

SORT_FIELDS = ("price", "created_at", "title")


def paginate(total: int, page: int, limit: int) -> Dict[str, Any]:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "current_page": page,
        "total_pages": total_pages,
        "total_items": total,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }


def contains(text: str) -> Dict[str, str]:
    return {"$regex": re.escape(text), "$options": "i"}


def with_category_names(store: Store, products: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    category_ids = {to_object_id(p.get("category_id")) for p in products} - {None}
    names = {str(c["_id"]): c["name"] for c in store["category"].find({"_id": {"$in": list(category_ids)}})}
    out = []
    for product in products:
        doc = serialize_doc(product)
        doc["category_name"] = names.get(product.get("category_id"))
        out.append(doc)
    return out


class CatalogService:
    def __init__(self, store: Store):
        self.store = store

    def category_id_by_name(self, name: str) -> Optional[str]:
        category = self.store["category"].find_one({"name": name})
        return str(category["_id"]) if category else None

    def list_products(self, category: Optional[str] = None, search: Optional[str] = None,
                      min_price: Optional[float] = None, max_price: Optional[float] = None,
                      sort: str = "created_at", order: str = "desc", page: int = 1, limit: int = 12,
                      featured: Optional[bool] = None) -> Dict[str, Any]:
        query: Dict[str, Any] = {"status": "active"}
        if category:
            query["category_id"] = self.category_id_by_name(category)
        if search:
            query["$or"] = [{"title": contains(search)}, {"description": contains(search)}]
        price_filter = {}
        if min_price is not None:
            price_filter["$gte"] = float(min_price)
        if max_price is not None:
            price_filter["$lte"] = float(max_price)
        if price_filter:
            query["price"] = price_filter
        if featured:
            query["featured"] = True

        sort_field = sort if sort in SORT_FIELDS else "created_at"
        direction = ASCENDING if (order or "").lower() == "asc" else DESCENDING
        page = max(page, 1)

        total = self.store["product"].count_documents(query)
        cursor = self.store["product"].find(query).sort(sort_field, direction).skip((page - 1) * limit).limit(limit)
        return {
            "products": with_category_names(self.store, list(cursor)),
            "pagination": paginate(total, page, limit),
        }

    def get_product(self, product_id: str) -> Dict[str, Any]:
        _id = to_object_id(product_id)
        product = self.store["product"].find_one({"_id": _id, "status": "active"}) if _id else None
        if not product:
            raise NotFound("Product not found")
        return with_category_names(self.store, [product])[0]

    def list_categories(self) -> List[Dict[str, Any]]:
        return [serialize_doc(c) for c in self.store["category"].find().sort("name", ASCENDING)]
