"""Helpers shared by the storage backends."""

from datetime import datetime, timezone
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId


def utcnow() -> datetime:
    """Current time as naive UTC, matching what MongoDB hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def to_object_id(value: str) -> Optional[ObjectId]:
    """Parse an id string, returning None when it is not a valid ObjectId."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def new_id() -> str:
    return str(ObjectId())
