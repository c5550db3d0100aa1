from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase # type: ignore
from pymongo import ASCENDING # type: ignore

from .config import MONGODB_URL, DATABASE_NAME

# Async client for FastAPI, created on first use
_client: Optional[AsyncIOMotorClient] = None


def get_database() -> AsyncIOMotorDatabase:
    global _client
    if _client is None:
        _client = AsyncIOMotorClient(MONGODB_URL)
    return _client[DATABASE_NAME]


async def ensure_indexes():
    db = get_database()
    await db.events.create_index([("session_id", ASCENDING), ("offset_ms", ASCENDING)])
    await db.sessions.create_index([("start_time", ASCENDING)])


def close_client():
    global _client
    if _client is not None:
        _client.close()
        _client = None
