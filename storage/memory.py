"""
In-Memory Stores

Process-local implementations of the user and task stores, used for local
development (USE_MEMORY_STORE=true) and tests. Documents are kept in the
same shape MongoDB would return them, and every mutation happens under a
lock so concurrent coroutines see the same guarantees as the conditional
updates in storage.mongo.
"""

import asyncio
import copy
from datetime import datetime
from typing import Optional

from models.task import TaskInDB, TaskSearchOptions
from models.user import UserInDB
from storage.common import new_id, utcnow
from storage.errors import DuplicateEmailError


def _get_path(doc: dict, dotted: str):
    value = doc
    for part in dotted.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _set_path(doc: dict, dotted: str, value) -> None:
    parts = dotted.split(".")
    target = doc
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = value


def _unset_path(doc: dict, dotted: str) -> None:
    parts = dotted.split(".")
    target = doc
    for part in parts[:-1]:
        target = target.get(part)
        if not isinstance(target, dict):
            return
    target.pop(parts[-1], None)


class MemoryUserStore:
    """Users kept in a dict keyed by id."""

    def __init__(self):
        self.users: dict[str, dict] = {}
        self._lock = asyncio.Lock()

    async def ensure_indexes(self) -> None:
        return None

    def _email_taken(self, address: str, exclude_id: Optional[str] = None) -> bool:
        return any(
            doc["email"]["address"] == address and doc_id != exclude_id
            for doc_id, doc in self.users.items()
        )

    def _snapshot(self, user_id: str) -> Optional[UserInDB]:
        doc = self.users.get(user_id)
        return UserInDB.from_document(copy.deepcopy(doc)) if doc else None

    async def create(self, name: str, password_hash: str, email: dict) -> UserInDB:
        async with self._lock:
            if self._email_taken(email["address"]):
                raise DuplicateEmailError(email["address"])
            now = utcnow()
            user_id = new_id()
            self.users[user_id] = {
                "_id": user_id,
                "name": name,
                "password_hash": password_hash,
                "email": copy.deepcopy(email),
                "tokens": [],
                "created_at": now,
                "updated_at": now,
            }
            return self._snapshot(user_id)

    async def find_by_id(self, user_id: str) -> Optional[UserInDB]:
        return self._snapshot(user_id)

    async def find_by_email(self, address: str) -> Optional[UserInDB]:
        address = address.lower()
        for user_id, doc in self.users.items():
            if doc["email"]["address"] == address:
                return self._snapshot(user_id)
        return None

    async def update(
        self, user_id: str, fields: dict, unset: tuple[str, ...] = ()
    ) -> Optional[UserInDB]:
        async with self._lock:
            doc = self.users.get(user_id)
            if doc is None:
                return None
            address = _get_path(fields, "email.address")
            if address and self._email_taken(address, exclude_id=user_id):
                raise DuplicateEmailError(address)
            for key, value in fields.items():
                _set_path(doc, key, copy.deepcopy(value))
            for key in unset:
                _unset_path(doc, key)
            doc["updated_at"] = utcnow()
            return self._snapshot(user_id)

    async def push_token(self, user_id: str, token: str, expiry: Optional[datetime]) -> Optional[UserInDB]:
        async with self._lock:
            doc = self.users.get(user_id)
            if doc is None:
                return None
            if not any(entry["token"] == token for entry in doc["tokens"]):
                entry = {"token": token}
                if expiry is not None:
                    entry["expiry"] = expiry
                doc["tokens"].append(entry)
            return self._snapshot(user_id)

    async def pull_token(self, user_id: str, token: str) -> Optional[UserInDB]:
        async with self._lock:
            doc = self.users.get(user_id)
            if doc is None:
                return None
            doc["tokens"] = [entry for entry in doc["tokens"] if entry["token"] != token]
            return self._snapshot(user_id)

    async def pull_expired_tokens(self, user_id: str, now: datetime) -> Optional[UserInDB]:
        async with self._lock:
            doc = self.users.get(user_id)
            if doc is None:
                return None
            doc["tokens"] = [
                entry for entry in doc["tokens"]
                if entry.get("expiry") is None or entry["expiry"] > now
            ]
            return self._snapshot(user_id)

    async def delete(self, user_id: str) -> Optional[UserInDB]:
        async with self._lock:
            doc = self.users.pop(user_id, None)
            return UserInDB.from_document(doc) if doc else None


class MemoryTaskStore:
    """Tasks kept in a dict keyed by id."""

    def __init__(self):
        self.tasks: dict[str, dict] = {}
        self._lock = asyncio.Lock()

    async def ensure_indexes(self) -> None:
        return None

    def _owned(self, owner: str, task_id: str) -> Optional[dict]:
        doc = self.tasks.get(task_id)
        if doc is None or doc["owner"] != owner:
            return None
        return doc

    async def create(self, owner: str, description: str, completed: bool = False) -> TaskInDB:
        async with self._lock:
            now = utcnow()
            task_id = new_id()
            doc = {
                "_id": task_id,
                "owner": owner,
                "description": description,
                "completed": completed,
                "created_at": now,
                "updated_at": now,
            }
            self.tasks[task_id] = doc
            return TaskInDB.from_document(dict(doc))

    async def find(self, owner: str, task_id: str) -> Optional[TaskInDB]:
        doc = self._owned(owner, task_id)
        return TaskInDB.from_document(dict(doc)) if doc else None

    @staticmethod
    def _matches(doc: dict, search: TaskSearchOptions) -> bool:
        if search.completed is not None and doc["completed"] != search.completed:
            return False
        for field, start, end in (
            ("created_at", search.start_created_at, search.end_created_at),
            ("updated_at", search.start_updated_at, search.end_updated_at),
        ):
            if start is not None and doc[field] < start:
                return False
            if end is not None and doc[field] > end:
                return False
        return True

    async def search(self, owner: str, search: TaskSearchOptions) -> tuple[list[TaskInDB], int]:
        docs = [
            doc for doc in self.tasks.values()
            if doc["owner"] == owner and self._matches(doc, search)
        ]
        keys = [(option.field, option.order) for option in search.options.sort]
        if not keys:
            keys = [("created_at", 1), ("_id", 1)]
        # Stable sorts applied from the least significant key
        for field, order in reversed(keys):
            docs.sort(key=lambda doc: doc[field], reverse=order == -1)

        total = len(docs)
        start = search.options.skip
        page = docs[start:start + search.options.limit]
        return [TaskInDB.from_document(dict(doc)) for doc in page], total

    async def update(self, owner: str, task_id: str, fields: dict) -> Optional[TaskInDB]:
        async with self._lock:
            doc = self._owned(owner, task_id)
            if doc is None:
                return None
            doc.update(fields)
            doc["updated_at"] = utcnow()
            return TaskInDB.from_document(dict(doc))

    async def delete(self, owner: str, task_id: str) -> Optional[TaskInDB]:
        async with self._lock:
            if self._owned(owner, task_id) is None:
                return None
            doc = self.tasks.pop(task_id)
            return TaskInDB.from_document(doc)

    async def delete_by_owner(self, owner: str) -> int:
        async with self._lock:
            doomed = [task_id for task_id, doc in self.tasks.items() if doc["owner"] == owner]
            for task_id in doomed:
                del self.tasks[task_id]
            return len(doomed)
