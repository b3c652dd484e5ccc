import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from . import config

logger = logging.getLogger(__name__)


class MongoConnection:
    """Owns the Motor client for the lifetime of the process.

    Nothing connects at import time; the app's startup hook calls
    ``connect()`` once and the shutdown hook calls ``close()``.
    """

    def __init__(self):
        self.client: Optional[AsyncIOMotorClient] = None
        self.db: Optional[AsyncIOMotorDatabase] = None

    def connect(self, mongo_url: str = config.MONGO_URL, db_name: str = config.DB_NAME) -> AsyncIOMotorDatabase:
        if self.db is None:
            self.client = AsyncIOMotorClient(mongo_url)
            self.db = self.client[db_name]
            logger.info("Connected to MongoDB database %s", db_name)
        return self.db

    def close(self):
        if self.client is not None:
            self.client.close()
        self.client = None
        self.db = None


mongo = MongoConnection()


async def get_db() -> AsyncIOMotorDatabase:
    """FastAPI dependency returning the connected database."""
    if mongo.db is None:
        raise RuntimeError("Database is not connected; call mongo.connect() on startup")
    return mongo.db


async def ensure_indexes(db):
    """Create the lookup and uniqueness indexes the core relies on."""
    await db.users.create_index("id", unique=True)
    await db.users.create_index("email", unique=True)
    await db.courses.create_index("id", unique=True)
    await db.lessons.create_index("id", unique=True)
    await db.lessons.create_index([("course_id", 1), ("order", 1)])
    await db.quizzes.create_index("id", unique=True)
    await db.enrollments.create_index([("user_id", 1), ("course_id", 1)], unique=True)
    await db.lesson_progress.create_index(
        [("user_id", 1), ("course_id", 1), ("lesson_id", 1)], unique=True
    )
    await db.notifications.create_index([("user_id", 1), ("read", 1)])
