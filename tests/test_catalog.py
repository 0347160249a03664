from datetime import timedelta

import pytest
from bson.objectid import ObjectId

from catalog import CatalogService, contains, paginate
from database import utcnow
from errors import NotFound
from schemas import Category


@pytest.fixture
def catalog(store):
    return CatalogService(store)


@pytest.fixture
def products(store, make_product):
    ids = {
        "Red Shirt": make_product(title="Red Shirt", price=20.0, description="Cotton tee"),
        "Blue Jeans": make_product(title="Blue Jeans", price=45.0, featured=True),
        "Green Hat": make_product(title="Green Hat", price=12.5, description="Wool, one size"),
        "Old Scarf": make_product(title="Old Scarf", price=8.0, status="inactive"),
    }
    # distinct creation times for the default newest-first ordering
    for age, product_id in enumerate(ids.values()):
        store["product"].update_one({"_id": ObjectId(product_id)}, {"$set": {"created_at": utcnow() - timedelta(minutes=age)}})
    return ids


def titles(result):
    return [p["title"] for p in result["products"]]


def test_paginate():
    assert paginate(25, 2, 10) == {
        "current_page": 2, "total_pages": 3, "total_items": 25, "has_next": True, "has_prev": True,
    }
    assert paginate(0, 1, 12) == {
        "current_page": 1, "total_pages": 0, "total_items": 0, "has_next": False, "has_prev": False,
    }


def test_contains_escapes_regex():
    assert contains("a+b (c)") == {"$regex": r"a\+b\ \(c\)", "$options": "i"}


def test_lists_only_active_products_newest_first(catalog, products):
    result = catalog.list_products()
    assert titles(result) == ["Red Shirt", "Blue Jeans", "Green Hat"]
    assert result["products"][0]["category_name"] == "Electronics"
    assert result["pagination"]["total_items"] == 3


@pytest.mark.parametrize("sort,order,expected", [
    ("price", "asc", ["Green Hat", "Red Shirt", "Blue Jeans"]),
    ("price", "desc", ["Blue Jeans", "Red Shirt", "Green Hat"]),
    ("title", "asc", ["Blue Jeans", "Green Hat", "Red Shirt"]),
    ("stock; drop", "asc", ["Green Hat", "Blue Jeans", "Red Shirt"]),
])
def test_sorting(catalog, products, sort, order, expected):
    assert titles(catalog.list_products(sort=sort, order=order)) == expected


def test_filters(store, catalog, products):
    assert titles(catalog.list_products(search="SHIRT")) == ["Red Shirt"]
    assert titles(catalog.list_products(search="wool")) == ["Green Hat"]
    assert titles(catalog.list_products(min_price=15, max_price=45)) == ["Red Shirt", "Blue Jeans"]
    assert titles(catalog.list_products(featured=True)) == ["Blue Jeans"]
    assert titles(catalog.list_products(category="Electronics")) == ["Red Shirt", "Blue Jeans", "Green Hat"]
    assert titles(catalog.list_products(category="Nope")) == []

    store.create_document("category", Category(name="Hats"))
    assert titles(catalog.list_products(category="Hats")) == []


def test_pagination(catalog, products):
    first = catalog.list_products(limit=2)
    assert titles(first) == ["Red Shirt", "Blue Jeans"]
    assert first["pagination"] == {
        "current_page": 1, "total_pages": 2, "total_items": 3, "has_next": True, "has_prev": False,
    }
    second = catalog.list_products(page=2, limit=2)
    assert titles(second) == ["Green Hat"]
    assert second["pagination"]["has_next"] is False
    assert second["pagination"]["has_prev"] is True


def test_get_product(catalog, products):
    product = catalog.get_product(products["Blue Jeans"])
    assert product["id"] == products["Blue Jeans"]
    assert product["category_name"] == "Electronics"
    for product_id in (products["Old Scarf"], str(ObjectId()), "not-an-id"):
        with pytest.raises(NotFound):
            catalog.get_product(product_id)


def test_categories_sorted_by_name(store, catalog, category_id):
    store.create_document("category", Category(name="Books"))
    store.create_document("category", Category(name="Toys"))
    assert [c["name"] for c in catalog.list_categories()] == ["Books", "Electronics", "Toys"]


def test_product_endpoints(client, products):
    resp = client.get("/products", params={"search": "jeans"})
    assert resp.status_code == 200
    assert titles(resp.json()) == ["Blue Jeans"]

    resp = client.get("/products", params={"limit": 0})
    assert resp.status_code == 400

    resp = client.get(f"/products/{products['Old Scarf']}")
    assert resp.status_code == 404
    assert resp.json() == {"message": "Product not found"}

    categories = client.get("/products/categories/all").json()
    assert [c["name"] for c in categories] == ["Electronics"]


def test_health(client):
    assert client.get("/").json() == {"message": "Storefront API running"}
    assert client.get("/test").json()["connection_status"] == "Connected"
