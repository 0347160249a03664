"""
MongoDB access layer.

A ``Store`` wraps one pymongo ``Database`` and is created once per process
(see the lifespan handler in ``main``). Services receive it through their constructors;
request handlers get it from ``app.state`` via ``get_store``.
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from bson.objectid import ObjectId
from fastapi import Request
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    # MongoDB keeps naive UTC datetimes, so we do too
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_object_id(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if value is None or not ObjectId.is_valid(str(value)):
        return None
    return ObjectId(str(value))


def _serialize_value(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _serialize_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_serialize_value(v) for v in value]
    return value


def serialize_doc(doc):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    return {k: _serialize_value(v) for k, v in doc.items()}


class Store:
    def __init__(self, db, client: Optional[MongoClient] = None, use_transactions: bool = False):
        self.db = db
        self.client = client
        self.use_transactions = use_transactions and client is not None

    def __getitem__(self, name: str):
        return self.db[name]

    def create_document(self, collection_name: str, data: Union[BaseModel, Dict[str, Any]], session=None) -> str:
        if isinstance(data, BaseModel):
            doc = data.model_dump()
        else:
            doc = dict(data)
        now = utcnow()
        doc.setdefault("created_at", now)
        doc.setdefault("updated_at", now)
        result = self.db[collection_name].insert_one(doc, session=session)
        return str(result.inserted_id)

    @contextmanager
    def transaction(self):
        """Yield a session bound to a transaction, or None when unsupported."""
        if not self.use_transactions:
            yield None
            return
        with self.client.start_session() as session:
            with session.start_transaction():
                yield session

    def ensure_indexes(self):
        self.db["user"].create_index("email", unique=True)
        self.db["category"].create_index("name", unique=True)
        self.db["coupon"].create_index("code", unique=True)
        self.db["order"].create_index("order_number", unique=True)
        self.db["order"].create_index([("user_id", ASCENDING), ("created_at", ASCENDING)])
        self.db["address"].create_index("user_id")
        self.db["cartitem"].create_index(
            [("user_id", ASCENDING), ("product_id", ASCENDING), ("color", ASCENDING), ("size", ASCENDING)],
            unique=True,
        )
        self.db["wishlistitem"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
        logger.info("Indexes ensured on database %s", getattr(self.db, "name", "?"))


def connect(url: str, name: str, use_transactions: bool = False) -> Store:
    client = MongoClient(url)
    logger.info("Connecting to MongoDB database %s", name)
    return Store(client[name], client=client, use_transactions=use_transactions)


def get_store(request: Request) -> Store:
    return request.app.state.store
