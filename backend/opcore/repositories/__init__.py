"""Repository modules - Remote store and event bus adapters"""
from .remote_store import RemoteStore
from .event_bus import EventBus, LocalEventBus, Subscription, Channel
from .mongo_store import MongoRemoteStore
from .async_mongo import (
    get_async_client,
    get_async_database,
    close_async_connection,
    create_indexes,
    async_health_check,
)

__all__ = [
    "RemoteStore",
    "EventBus",
    "LocalEventBus",
    "Subscription",
    "Channel",
    "MongoRemoteStore",
    "get_async_client",
    "get_async_database",
    "close_async_connection",
    "create_indexes",
    "async_health_check",
]
