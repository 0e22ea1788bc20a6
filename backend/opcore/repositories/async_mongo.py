"""Async MongoDB Client using Motor for async operations"""
from typing import Any, Dict, Optional
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from ..config.settings import Settings, get_settings
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Collection names
OPERATIONS = "operations"
OPERATION_MEMBERS = "operation_members"
OPERATION_INVITES = "operation_invites"
JOIN_REQUESTS = "join_requests"
OP_TARGETS = "op_targets"
STAGING_POINTS = "staging_points"
ASSIGNMENTS = "assigned_locations"
TEMPLATES = "operation_templates"
USERS = "users"

# Global async client instance
_async_client: Optional[AsyncIOMotorClient] = None
_async_database: Optional[AsyncIOMotorDatabase] = None


def create_async_client(settings: Optional[Settings] = None) -> AsyncIOMotorClient:
    """Create a Motor client storing UUIDs natively and returning aware datetimes"""
    settings = settings or get_settings()
    logger.info(f"Creating async MongoDB client for: {settings.mongo_uri}")
    return AsyncIOMotorClient(
        settings.mongo_uri,
        serverSelectionTimeoutMS=settings.mongo_server_selection_timeout_ms,
        connectTimeoutMS=5000,
        socketTimeoutMS=30000,
        uuidRepresentation="standard",
        tz_aware=True,
    )


def get_async_client(settings: Optional[Settings] = None) -> AsyncIOMotorClient:
    """Get or create the shared async MongoDB client"""
    global _async_client
    if _async_client is None:
        _async_client = create_async_client(settings)
    return _async_client


def get_async_database(settings: Optional[Settings] = None) -> AsyncIOMotorDatabase:
    """Get the async application database"""
    global _async_database
    if _async_database is None:
        settings = settings or get_settings()
        client = get_async_client(settings)
        _async_database = client[settings.mongo_db]
        logger.info(f"Using async database: {settings.mongo_db}")
    return _async_database


async def close_async_connection() -> None:
    """Close async MongoDB connection"""
    global _async_client, _async_database
    if _async_client is not None:
        _async_client.close()
        _async_client = None
        _async_database = None
        logger.info("Async MongoDB connection closed")


async def create_indexes(db: AsyncIOMotorDatabase) -> None:
    """Create all required indexes"""
    logger.info("Creating MongoDB indexes...")

    operations = db[OPERATIONS]
    await operations.create_index("state")
    await operations.create_index([("agency_id", ASCENDING), ("state", ASCENDING)])
    await operations.create_index("created_at", background=True)

    members = db[OPERATION_MEMBERS]
    await members.create_index([("operation_id", ASCENDING), ("user_id", ASCENDING)])
    await members.create_index([("user_id", ASCENDING), ("left_at", ASCENDING)])

    invites = db[OPERATION_INVITES]
    await invites.create_index([("operation_id", ASCENDING), ("invitee_user_id", ASCENDING)])
    await invites.create_index([("invitee_user_id", ASCENDING), ("status", ASCENDING)])

    join_requests = db[JOIN_REQUESTS]
    await join_requests.create_index([("operation_id", ASCENDING), ("status", ASCENDING)])
    await join_requests.create_index("requester_user_id")

    await db[OP_TARGETS].create_index("operation_id")
    await db[STAGING_POINTS].create_index("operation_id")

    assignments = db[ASSIGNMENTS]
    await assignments.create_index([("operation_id", ASCENDING), ("assigned_at", DESCENDING)])
    await assignments.create_index([("assigned_to_user_id", ASCENDING), ("status", ASCENDING)])

    templates = db[TEMPLATES]
    await templates.create_index([("agency_id", ASCENDING), ("is_public", ASCENDING)])
    await templates.create_index("created_by_user_id")

    logger.info("MongoDB indexes created successfully")


async def async_health_check(
    client: Optional[AsyncIOMotorClient] = None,
    settings: Optional[Settings] = None
) -> Dict[str, Any]:
    """Check async MongoDB health"""
    settings = settings or get_settings()
    try:
        client = client or get_async_client(settings)
        await client.admin.command("ping")
        return {
            "status": "healthy",
            "database": settings.mongo_db,
            "connection": "ok",
            "type": "async"
        }
    except Exception as e:
        logger.error(f"Async MongoDB health check failed: {e}")
        return {
            "status": "unhealthy",
            "database": settings.mongo_db,
            "error": str(e),
            "type": "async"
        }
