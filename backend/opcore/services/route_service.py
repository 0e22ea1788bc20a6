"""
Route Service - Google Directions API

Routing oracle for assignments. Computes a driving route from the assignee's
position to the assigned location and caches it per assignment. Routes are
display values only; a missing route means "not yet computed".
"""
import re
from typing import Dict, Optional
from uuid import UUID

import httpx

from ..config.settings import Settings, get_settings
from ..domain.models import AssignedLocation, RouteInfo, RouteStep
from ..utils.time import Clock, utc_now
from ..utils.logger import get_logger

logger = get_logger(__name__)

_TAG_RE = re.compile(r"<[^>]+>")


def strip_html(text: str) -> str:
    """Directions instructions come as HTML fragments"""
    return " ".join(_TAG_RE.sub(" ", text).split())


class RouteService:
    """
    Cached Directions lookups keyed by assignment id

    Failures (no API key, HTTP errors, non-OK status, timeouts) are logged and
    return None; they never raise.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Clock] = None
    ):
        self.settings = settings or get_settings()
        self._client = client
        self._owns_client = client is None
        self.clock = clock or utc_now
        self._routes: Dict[UUID, RouteInfo] = {}

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.settings.routing_timeout_seconds)
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def calculate_route(
        self,
        assignment: AssignedLocation,
        origin_lat: float,
        origin_lng: float
    ) -> Optional[RouteInfo]:
        """
        Fetch a driving route to the assignment and cache it

        Returns:
            RouteInfo, or None on failure
        """
        api_key = self.settings.google_maps_api_key
        if not api_key:
            logger.warning(
                "No Google API key, skipping route fetch",
                extra={"assignment_id": assignment.id}
            )
            return None

        params = {
            "origin": f"{origin_lat},{origin_lng}",
            "destination": f"{assignment.lat},{assignment.lng}",
            "mode": "driving",
            "key": api_key,
        }

        try:
            resp = await self._get_client().get(
                self.settings.directions_base_url,
                params=params,
                timeout=self.settings.routing_timeout_seconds
            )
            resp.raise_for_status()
            data = resp.json()

            if data.get("status") != "OK" or not data.get("routes"):
                logger.warning(
                    f"Directions API returned status={data.get('status')}",
                    extra={"assignment_id": assignment.id}
                )
                return None

            route = data["routes"][0]
            leg = route["legs"][0]
            steps = [
                RouteStep(
                    instruction=strip_html(step.get("html_instructions", "")),
                    distance_meters=step.get("distance", {}).get("value", 0),
                )
                for step in leg.get("steps", [])
            ]

            info = RouteInfo(
                assignment_id=assignment.id,
                distance_meters=leg["distance"]["value"],
                duration_seconds=leg["duration"]["value"],
                polyline=route.get("overview_polyline", {}).get("points"),
                steps=steps,
                summary=route.get("summary") or None,
                destination_lat=assignment.lat,
                destination_lng=assignment.lng,
                destination_label=assignment.label,
                calculated_at=self.clock(),
            )

        except httpx.TimeoutException:
            logger.warning("Directions API timed out", extra={"assignment_id": assignment.id})
            return None
        except (httpx.HTTPError, KeyError, IndexError, ValueError) as e:
            logger.error(f"Directions API error: {e}", extra={"assignment_id": assignment.id})
            return None

        self._routes[assignment.id] = info
        logger.info(
            f"Route calculated: {info.distance_meters:.0f} m, {info.duration_seconds:.0f} s",
            extra={"assignment_id": assignment.id}
        )
        return info

    def get_route(self, assignment_id: UUID) -> Optional[RouteInfo]:
        """Cached route, or None when not yet computed"""
        return self._routes.get(assignment_id)

    def clear_route(self, assignment_id: UUID) -> None:
        self._routes.pop(assignment_id, None)

    def clear_all(self) -> None:
        self._routes.clear()
