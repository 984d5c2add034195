from datetime import datetime
from typing import Any, Optional

from bson import ObjectId
from fastapi import HTTPException


def objid(id_str: Optional[str], detail: str = "Invalid id") -> ObjectId:
    if not id_str or not ObjectId.is_valid(id_str):
        raise HTTPException(status_code=400, detail=detail)
    return ObjectId(id_str)


def optional_objid(id_str: Optional[str], detail: str = "Invalid id") -> Optional[ObjectId]:
    """Like objid, but an absent value is allowed and yields None."""
    if id_str is None or id_str == "":
        return None
    return objid(id_str, detail)


def to_str_id(doc: Any) -> Any:
    """Make a Mongo document JSON friendly: _id -> id, ObjectId -> str, datetime -> isoformat."""
    if isinstance(doc, list):
        return [to_str_id(item) for item in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, datetime):
        return doc.isoformat()
    if not isinstance(doc, dict):
        return doc
    d = {}
    for k, v in doc.items():
        if k == "_id":
            k = "id"
        d[k] = to_str_id(v)
    return d


def api_response(data: Any = None, message: str = "Success", status: int = 200) -> dict:
    return {"status": status, "data": to_str_id(data), "message": message}
