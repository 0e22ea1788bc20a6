"""Trail Buffer - Rolling per-member location history

Keeps the last `window` of location points for each member of the operation
on screen. Points are appended from the realtime stream and read by the map
layer, possibly from different threads.
"""
import threading
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set
from uuid import UUID

from ..domain.models import LocationPoint
from ..utils.time import Clock, utc_now, ensure_utc
from ..utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_WINDOW = timedelta(minutes=10)


class _MemberTrail:
    """Points of one member, ordered by arrival"""

    def __init__(self):
        self.lock = threading.Lock()
        self.points: List[LocationPoint] = []
        self.point_ids: Set[UUID] = set()


class TrailBuffer:
    """
    Per-member rolling trail

    Rules:
    - A point is retained while timestamp >= now - window
    - Members whose trail becomes empty are removed
    - Duplicate point ids are ignored (the event bus delivers at least once)
    - The member map is guarded by one lock, each trail by its own lock;
      both are taken map first
    """

    def __init__(self, window: timedelta = DEFAULT_WINDOW, clock: Optional[Clock] = None):
        if window <= timedelta(0):
            raise ValueError("Trail window must be positive")
        self.window = window
        self._clock = clock or utc_now
        self._lock = threading.Lock()
        self._trails: Dict[UUID, _MemberTrail] = {}

    def _cutoff(self, now: Optional[datetime]) -> datetime:
        return ensure_utc(now or self._clock()) - self.window

    def append(self, point: LocationPoint, now: Optional[datetime] = None) -> bool:
        """
        Add a point to its member's trail, then evict stale points

        Returns:
            False if the point was a duplicate or already outside the window
        """
        now = now or self._clock()
        if ensure_utc(point.timestamp) < self._cutoff(now):
            logger.debug(
                f"Dropping stale point {point.id} from {point.user_id}",
                extra={"user_id": point.user_id, "operation_id": point.operation_id}
            )
            self.evict(now)
            return False

        # Create and fill under the map lock so evict never sees an empty new trail
        with self._lock:
            trail = self._trails.get(point.user_id)
            if trail is None:
                trail = _MemberTrail()
                self._trails[point.user_id] = trail
            with trail.lock:
                added = point.id not in trail.point_ids
                if added:
                    trail.points.append(point)
                    trail.point_ids.add(point.id)

        self.evict(now)
        return added

    def evict(self, now: Optional[datetime] = None) -> int:
        """Drop points older than the window; returns how many were dropped"""
        cutoff = self._cutoff(now)
        dropped = 0

        with self._lock:
            for user_id, trail in list(self._trails.items()):
                with trail.lock:
                    kept = [p for p in trail.points if ensure_utc(p.timestamp) >= cutoff]
                    if len(kept) != len(trail.points):
                        dropped += len(trail.points) - len(kept)
                        trail.points = kept
                        trail.point_ids = {p.id for p in kept}
                    if not trail.points:
                        del self._trails[user_id]

        return dropped

    def trail(self, user_id: UUID) -> List[LocationPoint]:
        """Copy of the member's trail, oldest first"""
        with self._lock:
            trail = self._trails.get(user_id)
        if trail is None:
            return []
        with trail.lock:
            return sorted(trail.points, key=lambda p: p.timestamp)

    def latest(self, user_id: UUID) -> Optional[LocationPoint]:
        points = self.trail(user_id)
        return points[-1] if points else None

    def member_ids(self) -> List[UUID]:
        with self._lock:
            return list(self._trails.keys())

    def snapshot(self) -> Dict[UUID, List[LocationPoint]]:
        """Copy of every trail"""
        return {user_id: self.trail(user_id) for user_id in self.member_ids()}

    def clear(self) -> None:
        with self._lock:
            self._trails.clear()

    def __len__(self) -> int:
        """Total number of points held"""
        with self._lock:
            trails = list(self._trails.values())
        total = 0
        for trail in trails:
            with trail.lock:
                total += len(trail.points)
        return total
