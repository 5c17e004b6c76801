"""MongoDB connection lifecycle for the Motor client."""

import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from config.settings import settings

logger = logging.getLogger(__name__)


class Database:
    """Owns one Motor client and the task-manager database handle."""

    def __init__(self, url: str, name: str, timeout_ms: int):
        self.url = url
        self.name = name
        self.timeout_ms = timeout_ms
        self.client: Optional[AsyncIOMotorClient] = None
        self.db: Optional[AsyncIOMotorDatabase] = None

    @property
    def is_connected(self) -> bool:
        return self.client is not None

    async def connect(self) -> None:
        """Open the client. Motor connects lazily, so nothing is sent yet."""
        self.client = AsyncIOMotorClient(
            self.url,
            maxPoolSize=10,
            minPoolSize=1,
            serverSelectionTimeoutMS=self.timeout_ms,
            tz_aware=False,
        )
        self.db = self.client[self.name]
        logger.info("MongoDB client created for database %s", self.name)

    async def disconnect(self) -> None:
        if self.client is None:
            return
        self.client.close()
        self.client = None
        self.db = None

    async def health_check(self) -> bool:
        """Ping the server; False when unreachable or not connected."""
        if self.client is None:
            return False
        try:
            await self.client.admin.command("ping")
        except PyMongoError as e:
            logger.warning("MongoDB ping failed: %s", type(e).__name__)
            return False
        return True

    def get_collection(self, collection_name: str) -> AsyncIOMotorCollection:
        if self.db is None:
            raise RuntimeError("Database.connect() must run before collections are used")
        return self.db[collection_name]


database = Database(
    url=settings.MONGODB_URL,
    name=settings.DATABASE_NAME,
    timeout_ms=settings.MONGODB_TIMEOUT_MS,
)
