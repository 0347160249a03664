import logging

import settings
from database import Store
from schemas import Category, Product, User
from security import hash_password

logger = logging.getLogger(__name__)

DEMO_CATEGORIES = [
    {"name": "Electronics", "description": "Latest gadgets and electronic devices"},
    {"name": "Clothing", "description": "Fashion and apparel for all"},
    {"name": "Home & Garden", "description": "Home improvement and garden supplies"},
    {"name": "Sports", "description": "Sports equipment and fitness gear"},
]

DEMO_PRODUCTS = [
    {
        "title": "Premium Wireless Headphones",
        "description": "High-quality wireless headphones with noise cancellation and premium sound quality.",
        "price": 299.99,
        "discount_price": 249.99,
        "stock": 50,
        "category": "Electronics",
        "images": ["https://images.pexels.com/photos/3945667/pexels-photo-3945667.jpeg"],
        "colors": ["Black", "White", "Blue"],
        "featured": True,
    },
    {
        "title": "Smart Watch Series X",
        "description": "Advanced smartwatch with health monitoring, GPS, and long battery life.",
        "price": 399.99,
        "discount_price": 349.99,
        "stock": 30,
        "category": "Electronics",
        "images": ["https://images.pexels.com/photos/437037/pexels-photo-437037.jpeg"],
        "colors": ["Black", "Silver", "Gold"],
        "featured": True,
    },
    {
        "title": "Designer Cotton T-Shirt",
        "description": "Premium cotton t-shirt with modern design and comfortable fit.",
        "price": 49.99,
        "stock": 100,
        "category": "Clothing",
        "images": ["https://images.pexels.com/photos/1020585/pexels-photo-1020585.jpeg"],
        "colors": ["White", "Black", "Gray", "Navy"],
        "sizes": ["XS", "S", "M", "L", "XL"],
        "featured": True,
    },
]


def seed_demo_data(store: Store) -> dict:
    """Create the admin account and demo catalog if they are missing."""
    if store["user"].count_documents({"role": "admin"}) == 0:
        admin = User(
            name="Admin",
            email=settings.ADMIN_EMAIL,
            password_hash=hash_password(settings.ADMIN_PASSWORD),
            role="admin",
            is_verified=True,
        )
        store.create_document("user", admin)
        logger.info("Seeded admin user %s", settings.ADMIN_EMAIL)

    category_ids = {}
    for category in DEMO_CATEGORIES:
        existing = store["category"].find_one({"name": category["name"]})
        category_ids[category["name"]] = str(existing["_id"]) if existing else store.create_document("category", Category(**category))

    if store["product"].count_documents({}) > 0:
        return {"seeded": False, "message": "Products already exist"}
    for p in DEMO_PRODUCTS:
        fields = {k: v for k, v in p.items() if k != "category"}
        store.create_document("product", Product(category_id=category_ids[p["category"]], **fields))
    logger.info("Seeded %d demo products", len(DEMO_PRODUCTS))
    return {"seeded": True, "products": store["product"].count_documents({})}
