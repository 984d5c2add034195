"""
Database helpers

One MongoClient per process. Collections are addressed by name through
get_collection so a missing configuration surfaces as a 500 instead of an
AttributeError deep inside a handler.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Union

from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import MongoClient

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "channel")

client = None
db = None

if DATABASE_URL:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]
else:
    logger.warning("DATABASE_URL is not set, storage is unavailable")


def get_collection(name: str):
    if db is None:
        raise HTTPException(status_code=500, detail="Database not available")
    return db[name]


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> Dict[str, Any]:
    """Insert a document stamped with createdAt/updatedAt and return it with its _id."""
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = datetime.now(timezone.utc)
    doc["createdAt"] = now
    doc["updatedAt"] = now
    result = get_collection(collection_name).insert_one(doc)
    if not result.acknowledged:
        raise HTTPException(status_code=500, detail="Something went wrong")
    doc["_id"] = result.inserted_id
    return doc
