"""
Pydantic models for API request/response validation.
"""
from typing import List, Optional

from pydantic import BaseModel, Field

from fleet_operator.models import Condition, FleetSpec, ServiceStatus


class FleetCreateRequest(BaseModel):
    """Request to create a new Fleet."""
    name: str = Field(
        ...,
        min_length=3,
        max_length=63,
        pattern=r"^[a-z][a-z0-9-]*[a-z0-9]$",
        description="Fleet name (lowercase, alphanumeric with hyphens, 3-63 chars)",
        examples=["demo", "load-test"],
    )
    namespace: str = Field(
        default="",
        max_length=63,
        pattern=r"^([a-z0-9]([a-z0-9-]*[a-z0-9])?)?$",
        description="Target namespace (defaults to DEFAULT_NAMESPACE)",
    )
    spec: FleetSpec = Field(default_factory=FleetSpec)


class FleetUpdateRequest(BaseModel):
    """Replacement spec for an existing Fleet."""
    spec: FleetSpec


class FleetResponse(BaseModel):
    """Fleet details returned to the dashboard."""
    name: str
    namespace: str
    phase: str = ""
    spec: dict = {}
    services: List[ServiceStatus] = []
    conditions: List[Condition] = []
    generation: Optional[int] = None
    observedGeneration: Optional[int] = None
    createdAt: Optional[str] = None


class FleetListResponse(BaseModel):
    fleets: List[FleetResponse]
    total: int


class FleetEvent(BaseModel):
    timestamp: str = ""
    type: str = ""
    message: str = ""
    phase: str = ""


class FleetEventsResponse(BaseModel):
    fleet: str
    events: List[FleetEvent]


class ErrorResponse(BaseModel):
    detail: str
    code: str = "UNKNOWN_ERROR"
