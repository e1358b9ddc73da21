import math
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from bson import ObjectId
from bson.errors import InvalidId


def normalize_object_id_value(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if not value:
        return None
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def stringify_id(value) -> Optional[str]:
    return str(value) if value is not None else None


def serialize_datetime(value) -> Optional[str]:
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    # Stored dates only keep milliseconds.
    return value.isoformat(timespec="milliseconds") + "Z"


def is_number(value) -> bool:
    if isinstance(value, bool):
        return False
    return isinstance(value, (int, float)) and math.isfinite(value)


def safe_float(value, default=None):
    if isinstance(value, bool):
        return default
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return default
    if math.isfinite(numeric):
        return numeric
    return default


def index_by_id(documents: Iterable[Dict]) -> Dict[ObjectId, Dict]:
    return {document["_id"]: document for document in documents}


def fetch_by_ids(collection, raw_ids) -> Dict[ObjectId, Dict]:
    """Load the documents of ``collection`` referenced by ``raw_ids`` keyed by id."""
    normalized_ids: List[ObjectId] = []
    seen = set()
    for raw_id in raw_ids or []:
        object_id = normalize_object_id_value(raw_id)
        if object_id is None or object_id in seen:
            continue
        seen.add(object_id)
        normalized_ids.append(object_id)
    if not normalized_ids:
        return {}
    return index_by_id(collection.find({"_id": {"$in": normalized_ids}}))
