"""Tests for the live location trail buffer"""
import threading
from datetime import timedelta
from uuid import uuid4

import pytest

from opcore.domain.models import LocationPoint
from opcore.engine.trail_buffer import TrailBuffer

from tests.fakes import FrozenClock


def point(user_id, operation_id, at, lat=40.0, lng=-75.0) -> LocationPoint:
    return LocationPoint(
        user_id=user_id, operation_id=operation_id, timestamp=at, lat=lat, lng=lng, accuracy=5.0
    )


@pytest.fixture
def buffer(clock) -> TrailBuffer:
    return TrailBuffer(window=timedelta(minutes=10), clock=clock)


class TestTrailBuffer:
    """Test append, eviction and reads"""

    def test_eleven_minutes_keeps_last_ten(self, buffer, clock):
        user_id, op_id = uuid4(), uuid4()
        start = clock.now
        points = [point(user_id, op_id, start + timedelta(minutes=m)) for m in range(12)]

        # Points arrive live: each append runs as of its own timestamp
        for p in points:
            buffer.append(p, now=p.timestamp)

        now = start + timedelta(minutes=11)
        buffer.evict(now)

        kept = buffer.trail(user_id)
        assert [p.timestamp for p in kept] == [start + timedelta(minutes=m) for m in range(1, 12)]
        assert all(p.timestamp >= now - timedelta(minutes=10) for p in kept)

    def test_empty_member_is_removed(self, buffer, clock):
        stale_user, fresh_user, op_id = uuid4(), uuid4(), uuid4()
        buffer.append(point(stale_user, op_id, clock.now))
        clock.advance(minutes=5)
        buffer.append(point(fresh_user, op_id, clock.now))

        clock.advance(minutes=6)
        dropped = buffer.evict()

        assert dropped == 1
        assert stale_user not in buffer.member_ids()
        assert buffer.member_ids() == [fresh_user]

    def test_append_evicts_opportunistically(self, buffer, clock):
        old_user, new_user, op_id = uuid4(), uuid4(), uuid4()
        buffer.append(point(old_user, op_id, clock.now))
        clock.advance(minutes=11)
        buffer.append(point(new_user, op_id, clock.now))
        assert buffer.member_ids() == [new_user]

    def test_duplicate_point_ignored(self, buffer, clock):
        p = point(uuid4(), uuid4(), clock.now)
        assert buffer.append(p) is True
        assert buffer.append(p) is False
        assert len(buffer) == 1

    def test_stale_point_is_not_added(self, buffer, clock):
        user_id = uuid4()
        added = buffer.append(point(user_id, uuid4(), clock.now - timedelta(minutes=15)))
        assert added is False
        assert buffer.trail(user_id) == []

    def test_latest_and_snapshot(self, buffer, clock):
        user_id, op_id = uuid4(), uuid4()
        first = point(user_id, op_id, clock.now, lat=1.0)
        clock.advance(seconds=30)
        second = point(user_id, op_id, clock.now, lat=2.0)
        buffer.append(first)
        buffer.append(second)

        assert buffer.latest(user_id) == second
        assert buffer.snapshot() == {user_id: [first, second]}
        assert buffer.latest(uuid4()) is None

    def test_clear(self, buffer, clock):
        buffer.append(point(uuid4(), uuid4(), clock.now))
        buffer.clear()
        assert buffer.member_ids() == []

    def test_window_must_be_positive(self):
        with pytest.raises(ValueError):
            TrailBuffer(window=timedelta(0))

    def test_concurrent_appends_and_reads(self, buffer, clock):
        op_id = uuid4()
        users = [uuid4() for _ in range(4)]
        errors = []

        def writer(user_id):
            for _ in range(200):
                buffer.append(point(user_id, op_id, clock.now))

        def reader():
            try:
                for _ in range(200):
                    for user_id in buffer.member_ids():
                        buffer.trail(user_id)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=writer, args=(u,)) for u in users]
        threads.append(threading.Thread(target=reader))
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(buffer) == 800
        assert sorted(buffer.member_ids()) == sorted(users)

    def test_first_points_survive_concurrent_eviction(self, buffer, clock):
        op_id = uuid4()
        users = [uuid4() for _ in range(400)]
        done = threading.Event()

        def evictor():
            while not done.is_set():
                buffer.evict(clock.now)

        def writer(chunk):
            for user_id in chunk:
                assert buffer.append(point(user_id, op_id, clock.now), now=clock.now)

        sweeper = threading.Thread(target=evictor)
        sweeper.start()
        writers = [threading.Thread(target=writer, args=(users[i::4],)) for i in range(4)]
        for t in writers:
            t.start()
        for t in writers:
            t.join()
        done.set()
        sweeper.join()

        assert sorted(buffer.member_ids()) == sorted(users)
        assert all(len(buffer.trail(user_id)) == 1 for user_id in users)
