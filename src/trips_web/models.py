# src/trips_web/models.py

# Wire schemas for the external services and the projections we hand out.

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# --- Identity provider ---

class Challenge(BaseModel):
    """Opaque challenge relayed from the identity provider to the wallet."""

    state: str = Field(min_length=1)
    challenge: str = Field(min_length=1)


class TokenResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(min_length=1)


class PrivilegeTokenResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    token: str = Field(min_length=1)


# --- Identity graph service ---

class VehicleDefinition(BaseModel):
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None


class VehicleNode(BaseModel):
    model_config = ConfigDict(extra="ignore")

    tokenId: int
    definition: Optional[VehicleDefinition] = None


class VehicleConnection(BaseModel):
    nodes: List[VehicleNode]


class VehiclesData(BaseModel):
    vehicles: VehicleConnection


class VehiclesQueryResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: VehiclesData


class Vehicle(BaseModel):
    id: int
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None

    @classmethod
    def from_node(cls, node: VehicleNode) -> "Vehicle":
        definition = node.definition or VehicleDefinition()
        return cls(id=node.tokenId, make=definition.make, model=definition.model, year=definition.year)


# --- Trips service ---

class TimeEntry(BaseModel):
    time: datetime


class TripSummary(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    start: TimeEntry
    end: TimeEntry


class TripsResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    trips: List[TripSummary]


class Trip(BaseModel):
    id: str
    start: datetime
    end: datetime

    @classmethod
    def from_summary(cls, summary: TripSummary) -> "Trip":
        return cls(id=summary.id, start=summary.start.time, end=summary.end.time)


# --- Telemetry history service (search-engine style payload) ---

class LocationSample(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    latitude: float
    longitude: float
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        # Naive and aware instants cannot be compared; treat naive as UTC.
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class HitSource(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: LocationSample


class Hit(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    source: HitSource = Field(alias="_source")


class HitsEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    hits: List[Hit]


class HistoryResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    hits: HitsEnvelope

    def samples(self) -> List[LocationSample]:
        return [hit.source.data for hit in self.hits.hits]


# --- GeoJSON output ---

class LineString(BaseModel):
    type: Literal["LineString"] = "LineString"
    coordinates: List[List[float]]


class PathFeature(BaseModel):
    type: Literal["Feature"] = "Feature"
    geometry: LineString
    properties: Dict[str, Any]


class FeatureCollection(BaseModel):
    type: Literal["FeatureCollection"] = "FeatureCollection"
    features: List[PathFeature]
