from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from core.session import SessionState


class Route(str, Enum):
    TARGET = "target"
    LEGACY = "legacy"


class StatsModel(BaseModel):
    routed_to_target: int
    routed_to_legacy: int
    errors: int


class StatusResponse(BaseModel):
    session_id: str
    source: str
    state: SessionState
    percentage: int = Field(..., ge=0, le=100)
    rollback_reason: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    ended_at: datetime | None = None
    stats: StatsModel


class PercentageRequest(BaseModel):
    percentage: int = Field(..., ge=0, le=100, description="Share of jobs routed to the target")


class RollbackRequest(BaseModel):
    reason: str = Field(
        ..., min_length=1, pattern=r"\S", description="Why the migration is being rolled back"
    )


class TransitionResponse(BaseModel):
    state: SessionState
    percentage: int
    message: str


class LegacyRouteResponse(BaseModel):
    routed: Route = Route.LEGACY
    message: str = "job passed through without translation"
    size: int


class RouteErrorResponse(BaseModel):
    error: str
    routed: Route = Route.TARGET


class HealthResponse(BaseModel):
    status: str = "ok"
    timestamp: datetime = Field(default_factory=datetime.now)
    version: str = "1.0.0"
    state: SessionState
    percentage: int
    supported_sources: list[str]


class ErrorResponse(BaseModel):
    error: str
    detail: str | None = None
    timestamp: datetime = Field(default_factory=datetime.now)
