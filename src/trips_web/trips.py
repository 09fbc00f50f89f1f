# src/trips_web/trips.py

# A trip can only be mapped after it has been listed in this process: the
# listing call records trip_id -> vehicle token id in the TripIndex and the
# map call resolves the vehicle from there.

import logging
from typing import Iterable, List, Optional

import httpx

from .cache import EphemeralCache
from .errors import NotFound, ValidationFailed
from .models import (
    FeatureCollection,
    HistoryResponse,
    LineString,
    LocationSample,
    PathFeature,
    Trip,
    TripsResponse,
)
from .upstream import bearer, decode, request_json

logger = logging.getLogger(__name__)

PATH_STYLE = {
    "privacy_zone": 1,
    "color": "black",
    "point-color": "black",
}


class TripIndex:
    """Process-wide trip id -> vehicle token id mapping, evicted by TTL."""

    def __init__(self, cache: EphemeralCache) -> None:
        self.cache = cache

    def record(self, trip_id: str, vehicle_token_id: int) -> None:
        self.cache.set(trip_id, vehicle_token_id)

    def resolve(self, trip_id: str) -> Optional[int]:
        return self.cache.get(trip_id)


def sort_samples(samples: Iterable[LocationSample]) -> List[LocationSample]:
    """Ascending by instant; equal timestamps keep their input order."""
    return sorted(samples, key=lambda sample: sample.timestamp)


def build_trip_path(samples: Iterable[LocationSample], trip_id: str, trip_start: str, trip_end: str) -> FeatureCollection:
    """One LineString feature over ``samples`` in the order given, as [lon, lat] pairs."""
    coordinates = [[sample.longitude, sample.latitude] for sample in samples]
    feature = PathFeature(
        geometry=LineString(coordinates=coordinates),
        properties={
            "trip_id": trip_id,
            "trip_start": trip_start,
            "trip_end": trip_end,
            **PATH_STYLE,
        },
    )
    return FeatureCollection(features=[feature])


class TripAggregator:
    def __init__(
        self,
        client: httpx.AsyncClient,
        trips_api_base_url: str,
        device_data_api_base_url: str,
        index: TripIndex,
    ) -> None:
        self.client = client
        self.trips_api_base_url = trips_api_base_url.rstrip("/")
        self.device_data_api_base_url = device_data_api_base_url.rstrip("/")
        self.index = index

    async def list_trips(self, vehicle_token_id: int, privilege_token: str) -> List[Trip]:
        url = f"{self.trips_api_base_url}/vehicle/{vehicle_token_id}/trips"
        payload = await request_json(
            self.client, "GET", url, service="trips API", headers=bearer(privilege_token),
        )
        response = decode(TripsResponse, payload, service="trips API")

        trips = [Trip.from_summary(summary) for summary in response.trips]
        for trip in trips:
            self.index.record(trip.id, vehicle_token_id)
        logger.info("trips API: %d trips for vehicle %d", len(trips), vehicle_token_id)
        return trips

    async def fetch_samples(
        self, vehicle_token_id: int, start_time: str, end_time: str, privilege_token: str
    ) -> List[LocationSample]:
        url = f"{self.device_data_api_base_url}/vehicle/{vehicle_token_id}/history"
        payload = await request_json(
            self.client, "GET", url,
            service="device data API",
            params={"startDate": start_time, "endDate": end_time},
            headers=bearer(privilege_token),
        )
        return decode(HistoryResponse, payload, service="device data API").samples()

    async def get_trip_path(
        self, trip_id: str, start_time: Optional[str], end_time: Optional[str], privilege_token: str
    ) -> FeatureCollection:
        if not start_time or not end_time:
            raise ValidationFailed("start and end are required")

        vehicle_token_id = self.index.resolve(trip_id)
        if vehicle_token_id is None:
            raise NotFound("Trip not found")

        logger.info("Mapping trip %s (%s .. %s) for vehicle %d", trip_id, start_time, end_time, vehicle_token_id)
        samples = await self.fetch_samples(vehicle_token_id, start_time, end_time, privilege_token)
        path = build_trip_path(sort_samples(samples), trip_id, start_time, end_time)
        logger.debug("Trip %s path has %d points", trip_id, len(samples))
        return path
