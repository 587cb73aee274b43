from bson import ObjectId

from petcontest.errors import NotFoundError


def parse_object_id(value, resource: str = "Resource") -> ObjectId:
    """Convert a path/id string to ObjectId; malformed ids are simply not found."""
    if isinstance(value, ObjectId):
        return value
    if not value or not ObjectId.is_valid(str(value)):
        raise NotFoundError(f"{resource} not found")
    return ObjectId(str(value))
