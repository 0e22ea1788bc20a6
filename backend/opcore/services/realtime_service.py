"""Realtime Service - Location trails and chat for the operation on screen"""
import inspect
import threading
from collections import OrderedDict
from typing import Awaitable, Callable, Dict, List, Optional, Union
from uuid import UUID

from ..config.settings import Settings, get_settings
from ..domain.models import LocationPoint, MemberLocation, ChatMessage
from ..domain.enums import ChangeKind
from ..engine.trail_buffer import TrailBuffer
from ..repositories.event_bus import EventBus, Subscription
from ..utils.time import Clock, utc_now
from ..utils.logger import get_logger
from .notifier import ChangeNotifier

logger = get_logger(__name__)

ChatHandler = Callable[[ChatMessage], Union[None, Awaitable[None]]]


class RealtimeService:
    """
    Feeds the trail buffer and chat consumers from the event bus

    The bus delivers at least once: duplicate location points are dropped by
    the trail buffer, duplicate chat messages by id here. The chat id memory
    is bounded. Handlers may run on several threads; the latest-position map
    and the chat id memory share one lock.
    """

    def __init__(
        self,
        bus: EventBus,
        trail: Optional[TrailBuffer] = None,
        notifier: Optional[ChangeNotifier] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None
    ):
        self.bus = bus
        self.settings = settings or get_settings()
        self.clock = clock or utc_now
        self.trail = trail or TrailBuffer(window=self.settings.trail_window, clock=self.clock)
        self.notifier = notifier or ChangeNotifier()
        self._lock = threading.Lock()
        self.member_locations: Dict[UUID, MemberLocation] = {}
        self._seen_chat_ids: "OrderedDict[str, None]" = OrderedDict()
        self._subscriptions: List[Subscription] = []

    # =========================================================================
    # Locations
    # =========================================================================

    async def subscribe_to_locations(self, operation_id: UUID) -> Subscription:
        subscription = await self.bus.subscribe_to_locations(operation_id, self.handle_location)
        self._subscriptions.append(subscription)
        return subscription

    def handle_location(self, point: LocationPoint) -> bool:
        """
        Ingest a location point

        Returns:
            False when the point was a duplicate or outside the trail window
        """
        added = self.trail.append(point, now=self.clock())
        if not added:
            return False

        with self._lock:
            current = self.member_locations.get(point.user_id)
            if current is None or current.last_update is None or point.timestamp >= current.last_update:
                self.member_locations[point.user_id] = MemberLocation(
                    user_id=point.user_id,
                    last_location=point,
                    is_active=True,
                    last_update=point.timestamp,
                )

        self.notifier.emit(ChangeKind.LOCATION_RECEIVED, point.operation_id, user_id=str(point.user_id))
        return True

    def latest_location(self, user_id: UUID) -> Optional[LocationPoint]:
        with self._lock:
            member = self.member_locations.get(user_id)
        return member.last_location if member else None

    # =========================================================================
    # Chat
    # =========================================================================

    async def subscribe_to_chat_messages(self, operation_id: UUID, on_message: ChatHandler) -> Subscription:
        """Forward each chat message once, whatever the bus redelivers"""
        async def forward(message: ChatMessage) -> None:
            if not self.accept_chat_message(message):
                return
            result = on_message(message)
            if inspect.isawaitable(result):
                await result

        subscription = await self.bus.subscribe_to_chat_messages(operation_id, forward)
        self._subscriptions.append(subscription)
        return subscription

    def accept_chat_message(self, message: ChatMessage) -> bool:
        """Record a chat message id; False if it was already seen"""
        with self._lock:
            duplicate = message.id in self._seen_chat_ids
            if not duplicate:
                self._seen_chat_ids[message.id] = None
                while len(self._seen_chat_ids) > self.settings.chat_dedup_capacity:
                    self._seen_chat_ids.popitem(last=False)

        if duplicate:
            logger.debug(
                f"Dropping duplicate chat message {message.id}",
                extra={"operation_id": message.operation_id}
            )
            return False

        self.notifier.emit(ChangeKind.CHAT_MESSAGE_RECEIVED, message.operation_id, message_id=message.id)
        return True

    # =========================================================================
    # Teardown
    # =========================================================================

    async def unsubscribe_all(self) -> None:
        """Drop every subscription and forget trails and chat ids"""
        for subscription in self._subscriptions:
            await self.bus.unsubscribe(subscription)
        logger.info(f"Unsubscribed {len(self._subscriptions)} realtime subscriptions")
        self._subscriptions.clear()
        self.trail.clear()
        with self._lock:
            self.member_locations.clear()
            self._seen_chat_ids.clear()
