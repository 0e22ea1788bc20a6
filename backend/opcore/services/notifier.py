"""Change Notifier - Explicit listener registry for state changes"""
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from ..domain.enums import ChangeKind
from ..domain.models import ChangeEvent
from ..utils.logger import get_logger

logger = get_logger(__name__)

Listener = Callable[[ChangeEvent], None]


class ChangeNotifier:
    """
    Fan-out of ChangeEvents to registered listeners

    Listeners run synchronously in registration order. A failing listener is
    logged and the remaining listeners still run.
    """

    def __init__(self):
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it"""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(
        self,
        kind: ChangeKind,
        operation_id: Optional[UUID] = None,
        **payload: Any
    ) -> ChangeEvent:
        event = ChangeEvent(kind=kind, operation_id=operation_id, payload=payload)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(
                    f"Change listener failed on {kind.value}: {e}",
                    extra={"operation_id": operation_id},
                    exc_info=True
                )
        return event

    @property
    def listener_count(self) -> int:
        return len(self._listeners)
