"""
MongoDB access helpers.

Each Pydantic model in ``schemas`` maps to one collection whose name is the
lowercase class name (e.g. ``Payment`` -> ``"payment"``).
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

import config
from errors import NotFoundError

logger = logging.getLogger(__name__)

_client = None
db = None

if config.DATABASE_URL and config.DATABASE_NAME:
    _client = MongoClient(
        config.DATABASE_URL,
        maxPoolSize=config.MONGO_MAX_POOL_SIZE,
        serverSelectionTimeoutMS=config.MONGO_SERVER_SELECTION_TIMEOUT_MS,
    )
    db = _client[config.DATABASE_NAME]


def now() -> datetime:
    return datetime.now(timezone.utc)


def collection(name: str):
    if db is None:
        raise RuntimeError("Database not available. Set DATABASE_URL and DATABASE_NAME.")
    return db[name]


def session_kwargs(session) -> dict:
    """Only pass ``session=`` to the driver when a session is actually open."""
    return {"session": session} if session is not None else {}


def to_object_id(id_str: str, resource: str = "Resource") -> ObjectId:
    # A malformed id can never match a document
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise NotFoundError(resource)


def create_document(collection_name: str, data: Union[BaseModel, dict], session=None) -> str:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    stamp = now()
    data_dict.setdefault("created_at", stamp)
    data_dict["updated_at"] = stamp
    result = collection(collection_name).insert_one(data_dict, **session_kwargs(session))
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None):
    cursor = collection(collection_name).find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


@contextmanager
def transaction():
    """
    Yield a client session inside a multi-document transaction, or ``None``.

    Transactions are only used when MONGO_TRANSACTIONS is on; a standalone
    mongod rejects them, in which case callers fall back to sequential writes.
    """
    if not config.MONGO_TRANSACTIONS or _client is None:
        yield None
        return
    with _client.start_session() as session:
        with session.start_transaction():
            yield session


def ensure_indexes():
    collection("product").create_index([("sku", ASCENDING)], unique=True)
    collection("product").create_index([("seller_id", ASCENDING)])
    collection("order").create_index([("buyer_id", ASCENDING)])
    collection("order").create_index([("status", ASCENDING)])
    collection("orderitem").create_index([("order_id", ASCENDING)])
    collection("payment").create_index([("order_id", ASCENDING)])
    collection("user").create_index([("email", ASCENDING)], unique=True)
    collection("user").create_index([("username", ASCENDING)], unique=True)
    collection("category").create_index([("name", ASCENDING)], unique=True)
    collection("seller").create_index([("user_id", ASCENDING)], unique=True)
    collection("passwordresettoken").create_index([("token_hash", ASCENDING)], unique=True)
    # Mongo's TTL monitor removes tokens once expires_at has passed
    collection("passwordresettoken").create_index([("expires_at", ASCENDING)], expireAfterSeconds=0)
    logger.info("Database indexes ensured")
