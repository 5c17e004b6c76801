"""
MongoDB Stores

User and task persistence on top of Motor. Every token mutation is a single
conditional update so concurrent requests for the same user never overwrite
each other's changes.
"""

from datetime import datetime
from typing import Optional

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from models.task import TaskInDB, TaskSearchOptions
from models.user import UserInDB
from storage.common import to_object_id, utcnow
from storage.errors import DuplicateEmailError


DEFAULT_TASK_SORT = [("created_at", ASCENDING), ("_id", ASCENDING)]


def build_task_filter(owner: str, search: TaskSearchOptions) -> dict:
    """Translate search options into a MongoDB filter scoped to one owner."""
    query: dict = {"owner": owner}
    if search.completed is not None:
        query["completed"] = search.completed

    for field, start, end in (
        ("created_at", search.start_created_at, search.end_created_at),
        ("updated_at", search.start_updated_at, search.end_updated_at),
    ):
        bounds = {}
        if start is not None:
            bounds["$gte"] = start
        if end is not None:
            bounds["$lte"] = end
        if bounds:
            query[field] = bounds
    return query


def build_task_sort(search: TaskSearchOptions) -> list[tuple[str, int]]:
    if not search.options.sort:
        return DEFAULT_TASK_SORT
    return [(option.field, option.order) for option in search.options.sort]


class MongoUserStore:
    """Users collection access."""

    def __init__(self, collection):
        self.collection = collection

    async def ensure_indexes(self) -> None:
        await self.collection.create_index("email.address", unique=True)
        await self.collection.create_index("tokens.token")

    async def create(self, name: str, password_hash: str, email: dict) -> UserInDB:
        now = utcnow()
        doc = {
            "name": name,
            "password_hash": password_hash,
            "email": email,
            "tokens": [],
            "created_at": now,
            "updated_at": now,
        }
        try:
            result = await self.collection.insert_one(doc)
        except DuplicateKeyError:
            raise DuplicateEmailError(email["address"])
        doc["_id"] = result.inserted_id
        return UserInDB.from_document(doc)

    async def find_by_id(self, user_id: str) -> Optional[UserInDB]:
        oid = to_object_id(user_id)
        if oid is None:
            return None
        doc = await self.collection.find_one({"_id": oid})
        return UserInDB.from_document(doc) if doc else None

    async def find_by_email(self, address: str) -> Optional[UserInDB]:
        doc = await self.collection.find_one({"email.address": address.lower()})
        return UserInDB.from_document(doc) if doc else None

    async def update(
        self, user_id: str, fields: dict, unset: tuple[str, ...] = ()
    ) -> Optional[UserInDB]:
        """Set (and optionally unset) fields; returns None if the user is gone."""
        oid = to_object_id(user_id)
        if oid is None:
            return None
        update: dict = {"$set": {**fields, "updated_at": utcnow()}}
        if unset:
            update["$unset"] = {key: "" for key in unset}
        try:
            doc = await self.collection.find_one_and_update(
                {"_id": oid}, update, return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError:
            raise DuplicateEmailError((fields.get("email") or {}).get("address", ""))
        return UserInDB.from_document(doc) if doc else None

    async def push_token(self, user_id: str, token: str, expiry: Optional[datetime]) -> Optional[UserInDB]:
        """Append a token entry unless one with the same value already exists."""
        oid = to_object_id(user_id)
        if oid is None:
            return None
        entry = {"token": token}
        if expiry is not None:
            entry["expiry"] = expiry
        doc = await self.collection.find_one_and_update(
            {"_id": oid, "tokens.token": {"$ne": token}},
            {"$push": {"tokens": entry}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            # Either the user is missing or the token is already stored
            doc = await self.collection.find_one({"_id": oid})
        return UserInDB.from_document(doc) if doc else None

    async def pull_token(self, user_id: str, token: str) -> Optional[UserInDB]:
        oid = to_object_id(user_id)
        if oid is None:
            return None
        doc = await self.collection.find_one_and_update(
            {"_id": oid},
            {"$pull": {"tokens": {"token": token}}},
            return_document=ReturnDocument.AFTER,
        )
        return UserInDB.from_document(doc) if doc else None

    async def pull_expired_tokens(self, user_id: str, now: datetime) -> Optional[UserInDB]:
        oid = to_object_id(user_id)
        if oid is None:
            return None
        doc = await self.collection.find_one_and_update(
            {"_id": oid},
            {"$pull": {"tokens": {"expiry": {"$lte": now}}}},
            return_document=ReturnDocument.AFTER,
        )
        return UserInDB.from_document(doc) if doc else None

    async def delete(self, user_id: str) -> Optional[UserInDB]:
        oid = to_object_id(user_id)
        if oid is None:
            return None
        doc = await self.collection.find_one_and_delete({"_id": oid})
        return UserInDB.from_document(doc) if doc else None


class MongoTaskStore:
    """Tasks collection access. Every query is scoped to the owning user."""

    def __init__(self, collection):
        self.collection = collection

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("owner", ASCENDING), ("created_at", DESCENDING)])
        await self.collection.create_index([("owner", ASCENDING), ("completed", ASCENDING)])

    async def create(self, owner: str, description: str, completed: bool = False) -> TaskInDB:
        now = utcnow()
        doc = {
            "owner": owner,
            "description": description,
            "completed": completed,
            "created_at": now,
            "updated_at": now,
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return TaskInDB.from_document(doc)

    async def find(self, owner: str, task_id: str) -> Optional[TaskInDB]:
        oid = to_object_id(task_id)
        if oid is None:
            return None
        doc = await self.collection.find_one({"_id": oid, "owner": owner})
        return TaskInDB.from_document(doc) if doc else None

    async def search(self, owner: str, search: TaskSearchOptions) -> tuple[list[TaskInDB], int]:
        """Return one page of matching tasks and the total match count."""
        query = build_task_filter(owner, search)
        total = await self.collection.count_documents(query)
        cursor = (
            self.collection.find(query)
            .sort(build_task_sort(search))
            .skip(search.options.skip)
            .limit(search.options.limit)
        )
        docs = await cursor.to_list(length=search.options.limit)
        return [TaskInDB.from_document(doc) for doc in docs], total

    async def update(self, owner: str, task_id: str, fields: dict) -> Optional[TaskInDB]:
        oid = to_object_id(task_id)
        if oid is None:
            return None
        doc = await self.collection.find_one_and_update(
            {"_id": oid, "owner": owner},
            {"$set": {**fields, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        return TaskInDB.from_document(doc) if doc else None

    async def delete(self, owner: str, task_id: str) -> Optional[TaskInDB]:
        oid = to_object_id(task_id)
        if oid is None:
            return None
        doc = await self.collection.find_one_and_delete({"_id": oid, "owner": owner})
        return TaskInDB.from_document(doc) if doc else None

    async def delete_by_owner(self, owner: str) -> int:
        result = await self.collection.delete_many({"owner": owner})
        return result.deleted_count
