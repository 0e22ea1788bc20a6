"""Tests for the Directions routing client"""
from uuid import uuid4

import httpx
import pytest

from opcore.config.settings import Settings
from opcore.domain.models import AssignedLocation
from opcore.services.route_service import RouteService, strip_html

DIRECTIONS_OK = {
    "status": "OK",
    "routes": [{
        "summary": "I-95 N",
        "overview_polyline": {"points": "a~l~Fjk~uOwHJy@P"},
        "legs": [{
            "distance": {"value": 3200, "text": "3.2 km"},
            "duration": {"value": 540, "text": "9 mins"},
            "steps": [
                {"html_instructions": "Head <b>north</b> on <b>Main St</b>", "distance": {"value": 400}},
                {"html_instructions": "Turn <b>right</b>", "distance": {"value": 2800}},
            ],
        }],
    }],
}


@pytest.fixture
def route_settings() -> Settings:
    return Settings(_env_file=None, google_maps_api_key="test-key")


@pytest.fixture
def assignment() -> AssignedLocation:
    return AssignedLocation(
        operation_id=uuid4(),
        assigned_by_user_id=uuid4(),
        assigned_to_user_id=uuid4(),
        lat=40.0,
        lng=-75.0,
        label="Post 1",
    )


def make_service(settings, handler, clock=None) -> RouteService:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RouteService(settings, client=client, clock=clock)


class TestCalculateRoute:
    """Test Directions lookups"""

    @pytest.mark.asyncio
    async def test_success_is_cached(self, route_settings, assignment, clock):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=DIRECTIONS_OK)

        routes = make_service(route_settings, handler, clock)
        info = await routes.calculate_route(assignment, 40.02, -75.01)

        assert info.distance_meters == 3200
        assert info.duration_seconds == 540
        assert info.summary == "I-95 N"
        assert info.destination_label == "Post 1"
        assert info.calculated_at == clock.now
        assert info.next_instruction == "Head north on Main St"
        assert routes.get_route(assignment.id) == info

        params = seen[0].url.params
        assert params["origin"] == "40.02,-75.01"
        assert params["destination"] == "40.0,-75.0"
        assert params["mode"] == "driving"
        assert params["key"] == "test-key"

    @pytest.mark.asyncio
    async def test_no_api_key(self, settings, assignment):
        def handler(request):
            raise AssertionError("no request expected")

        routes = make_service(settings, handler)
        assert await routes.calculate_route(assignment, 40.02, -75.01) is None

    @pytest.mark.asyncio
    async def test_non_ok_status(self, route_settings, assignment):
        routes = make_service(
            route_settings, lambda request: httpx.Response(200, json={"status": "ZERO_RESULTS", "routes": []})
        )
        assert await routes.calculate_route(assignment, 40.02, -75.01) is None
        assert routes.get_route(assignment.id) is None

    @pytest.mark.asyncio
    async def test_http_error(self, route_settings, assignment):
        routes = make_service(route_settings, lambda request: httpx.Response(500, text="oops"))
        assert await routes.calculate_route(assignment, 40.02, -75.01) is None

    @pytest.mark.asyncio
    async def test_timeout(self, route_settings, assignment):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        routes = make_service(route_settings, handler)
        assert await routes.calculate_route(assignment, 40.02, -75.01) is None

    @pytest.mark.asyncio
    async def test_malformed_body(self, route_settings, assignment):
        routes = make_service(
            route_settings, lambda request: httpx.Response(200, json={"status": "OK", "routes": [{"legs": []}]})
        )
        assert await routes.calculate_route(assignment, 40.02, -75.01) is None

    @pytest.mark.asyncio
    async def test_clear(self, route_settings, assignment):
        routes = make_service(route_settings, lambda request: httpx.Response(200, json=DIRECTIONS_OK))
        await routes.calculate_route(assignment, 40.02, -75.01)

        routes.clear_route(assignment.id)
        assert routes.get_route(assignment.id) is None

        await routes.calculate_route(assignment, 40.02, -75.01)
        routes.clear_all()
        assert routes.get_route(assignment.id) is None


class TestStripHtml:
    def test_tags_removed_and_whitespace_collapsed(self):
        assert strip_html("Turn <b>left</b> onto <div style=\"x\">Oak  Ave</div>") == "Turn left onto Oak Ave"
