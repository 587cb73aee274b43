from datetime import datetime
from typing import Any

from bson import ObjectId


def serialize_document(value: Any) -> Any:
    """
    Convert a MongoDB document (or list of them) to JSON-safe data.

    ``_id`` becomes ``id``, ObjectIds become strings and datetimes ISO strings.
    """
    if isinstance(value, list):
        return [serialize_document(item) for item in value]
    if isinstance(value, dict):
        result = {}
        for key, item in value.items():
            if key == "_id":
                result["id"] = serialize_document(item)
            else:
                result[key] = serialize_document(item)
        return result
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value
