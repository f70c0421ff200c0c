"""
MongoDB access helpers.

One collection per entity, named after the lowercase entity (``user``,
``product``, ``order``). Documents use camelCase keys, which are also the keys
the API returns.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

import config
from errors import NotFound, PersistenceError

logger = logging.getLogger(__name__)

client: Optional[MongoClient] = None
db: Optional[Database] = None

if config.DATABASE_URL and config.DATABASE_NAME:
    client = MongoClient(config.DATABASE_URL)
    db = client[config.DATABASE_NAME]


def get_db() -> Database:
    if db is None:
        raise PersistenceError("Database not configured")
    return db


def ensure_indexes(database: Database):
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["order"].create_index([("orderNumber", ASCENDING)], unique=True)
    database["order"].create_index([("orderItems.seller", ASCENDING)])
    database["product"].create_index([("seller", ASCENDING)])
    logger.info("Indexes ensured on %s", database.name)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_document(database: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    if isinstance(data, BaseModel):
        doc = data.model_dump(by_alias=True)
    else:
        doc = dict(data)
    now = utcnow()
    doc["createdAt"] = now
    doc["updatedAt"] = now
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[dict] = None,
    sort: Optional[list] = None,
    limit: Optional[int] = None,
) -> List[dict]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def parse_object_id(value: Any, label: str = "Resource") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise NotFound(f"{label} not found")


def fetch_briefs(
    database: Database,
    collection_name: str,
    ids: Iterable[ObjectId],
    fields: Iterable[str],
) -> Dict[ObjectId, dict]:
    """Load a projection of several documents at once, keyed by ``_id``."""
    unique_ids = list({i for i in ids if i is not None})
    if not unique_ids:
        return {}
    projection = {f: 1 for f in fields}
    docs = database[collection_name].find({"_id": {"$in": unique_ids}}, projection)
    return {d["_id"]: d for d in docs}


def serialize_doc(value):
    """Make a stored document JSON friendly: ObjectIds to str, datetimes to ISO."""
    if isinstance(value, dict):
        return {k: serialize_doc(v) for k, v in value.items()}
    if isinstance(value, list):
        return [serialize_doc(v) for v in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value
