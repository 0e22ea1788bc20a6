"""Operation Session - Explicitly constructed container wiring the services"""
from typing import Any, Dict, Optional
from uuid import UUID

from ..config.settings import Settings, get_settings
from ..domain.models import User
from ..engine.reconciler import Reconciler
from ..engine.trail_buffer import TrailBuffer
from ..repositories.remote_store import RemoteStore
from ..repositories.event_bus import EventBus, LocalEventBus
from ..repositories.mongo_store import MongoRemoteStore
from ..repositories.async_mongo import (
    get_async_client, get_async_database, create_indexes, async_health_check, close_async_connection
)
from ..utils.time import Clock, utc_now
from ..utils.logger import get_logger, setup_logging
from .notifier import ChangeNotifier
from .operation_service import OperationService
from .membership_service import MembershipService
from .assignment_service import AssignmentService
from .route_service import RouteService
from .realtime_service import RealtimeService
from .target_service import TargetEditSession
from .template_service import TemplateService

logger = get_logger(__name__)


class OperationSession:
    """
    One store, one bus, one clock and the services built on them

    Construct one per process or per test and pass it to callers.
    """

    def __init__(
        self,
        store: RemoteStore,
        settings: Optional[Settings] = None,
        bus: Optional[EventBus] = None,
        routes: Optional[RouteService] = None,
        notifier: Optional[ChangeNotifier] = None,
        clock: Optional[Clock] = None
    ):
        self.settings = settings or get_settings()
        self.clock = clock or utc_now
        self.store = store
        self.bus = bus or LocalEventBus()
        self.notifier = notifier or ChangeNotifier()
        self._mongo_connected = False

        self.reconciler = Reconciler(store, max_concurrency=self.settings.reconcile_max_concurrency)
        self.operations = OperationService(store, self.reconciler, self.notifier, clock=self.clock)
        self.membership = MembershipService(store, self.notifier, self.settings, clock=self.clock)
        self.assignments = AssignmentService(store, self.notifier, self.settings, clock=self.clock)
        self.templates = TemplateService(store, self.operations, self.reconciler, clock=self.clock)
        self.routes = routes or RouteService(self.settings, clock=self.clock)
        self.realtime = RealtimeService(
            self.bus,
            trail=TrailBuffer(window=self.settings.trail_window, clock=self.clock),
            notifier=self.notifier,
            settings=self.settings,
            clock=self.clock,
        )

    @classmethod
    async def connect(cls, settings: Optional[Settings] = None, **kwargs) -> "OperationSession":
        """
        Session backed by MongoDB

        Configures logging and makes sure the indexes exist before returning.
        """
        settings = settings or get_settings()
        setup_logging(settings)

        db = get_async_database(settings)
        await create_indexes(db)
        logger.info(f"Operation session ({settings.environment}) using database: {settings.mongo_db}")

        session = cls(MongoRemoteStore(get_async_client(settings), db), settings=settings, **kwargs)
        session._mongo_connected = True
        return session

    @property
    def trail(self) -> TrailBuffer:
        return self.realtime.trail

    async def health(self) -> Dict[str, Any]:
        """Store connectivity for status displays"""
        if not self._mongo_connected:
            return {"status": "healthy", "store": type(self.store).__name__}
        return await async_health_check(get_async_client(self.settings), self.settings)

    async def begin_edit(self, operation_id: UUID, actor: User) -> TargetEditSession:
        """Start editing targets and staging points of an operation"""
        return await TargetEditSession.begin(
            operation_id, actor, self.store, self.reconciler, self.notifier
        )

    async def commit_edit(self, edit: TargetEditSession):
        """Commit an edit session with the configured deadline"""
        return await edit.commit(timeout=self.settings.reconcile_timeout_seconds)

    async def close(self) -> None:
        await self.realtime.unsubscribe_all()
        await self.routes.close()
        if self._mongo_connected:
            await close_async_connection()
            self._mongo_connected = False
