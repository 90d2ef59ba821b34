from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId


def parse_object_id(value) -> Optional[ObjectId]:
    """Return an ObjectId for ``value`` or None when it is not a valid id."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def normalize_id(doc: Optional[dict]) -> Optional[dict]:
    if doc is not None:
        doc["_id"] = str(doc.get("_id"))  # normalize to string for API layer
    return doc
