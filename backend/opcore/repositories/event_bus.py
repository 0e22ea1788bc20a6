"""Event Bus - Contract for push delivery of location and chat events

Delivery is at-least-once; consumers dedupe.
"""
import inspect
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field

from ..domain.models import LocationPoint, ChatMessage
from ..utils.idgen import generate_id
from ..utils.logger import get_logger

logger = get_logger(__name__)

Handler = Callable[[Any], Optional[Awaitable[None]]]


class Channel(str, Enum):
    LOCATIONS = "locations"
    CHAT = "chat"


class Subscription(BaseModel):
    """Handle returned by subscribe calls"""
    id: UUID = Field(default_factory=generate_id)
    channel: Channel
    operation_id: UUID


class EventBus(ABC):
    """Real-time delivery contract"""

    @abstractmethod
    async def subscribe_to_locations(
        self,
        operation_id: UUID,
        on_point: Callable[[LocationPoint], Optional[Awaitable[None]]]
    ) -> Subscription:
        ...

    @abstractmethod
    async def subscribe_to_chat_messages(
        self,
        operation_id: UUID,
        on_message: Callable[[ChatMessage], Optional[Awaitable[None]]]
    ) -> Subscription:
        ...

    @abstractmethod
    async def unsubscribe(self, subscription: Subscription) -> None:
        ...


async def dispatch(handler: Handler, event: Any) -> None:
    """Invoke a sync or async handler"""
    result = handler(event)
    if inspect.isawaitable(result):
        await result


class LocalEventBus(EventBus):
    """
    In-process event bus

    Used for single-process deployments and tests. Handler exceptions are
    logged and do not stop delivery to other subscribers.
    """

    def __init__(self):
        self._subscriptions: Dict[UUID, Subscription] = {}
        self._handlers: Dict[UUID, Handler] = {}

    async def subscribe_to_locations(self, operation_id, on_point) -> Subscription:
        return self._subscribe(Channel.LOCATIONS, operation_id, on_point)

    async def subscribe_to_chat_messages(self, operation_id, on_message) -> Subscription:
        return self._subscribe(Channel.CHAT, operation_id, on_message)

    async def unsubscribe(self, subscription: Subscription) -> None:
        self._subscriptions.pop(subscription.id, None)
        self._handlers.pop(subscription.id, None)

    async def publish_location(self, point: LocationPoint) -> int:
        return await self._publish(Channel.LOCATIONS, point.operation_id, point)

    async def publish_chat_message(self, message: ChatMessage) -> int:
        return await self._publish(Channel.CHAT, message.operation_id, message)

    def subscriber_count(self, channel: Optional[Channel] = None) -> int:
        return len([
            s for s in self._subscriptions.values()
            if channel is None or s.channel == channel
        ])

    def _subscribe(self, channel: Channel, operation_id: UUID, handler: Handler) -> Subscription:
        subscription = Subscription(channel=channel, operation_id=operation_id)
        self._subscriptions[subscription.id] = subscription
        self._handlers[subscription.id] = handler
        logger.info(
            f"Subscribed to {channel.value} for operation {operation_id}",
            extra={"operation_id": operation_id}
        )
        return subscription

    async def _publish(self, channel: Channel, operation_id: UUID, event: Any) -> int:
        targets: List[Subscription] = [
            s for s in list(self._subscriptions.values())
            if s.channel == channel and s.operation_id == operation_id
        ]
        delivered = 0
        for subscription in targets:
            handler = self._handlers.get(subscription.id)
            if handler is None:
                continue
            try:
                await dispatch(handler, event)
                delivered += 1
            except Exception as e:
                logger.error(
                    f"Subscriber {subscription.id} failed on {channel.value} event: {e}",
                    extra={"operation_id": operation_id},
                    exc_info=True
                )
        return delivered
