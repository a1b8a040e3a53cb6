"""Pydantic models shared by the store and the HTTP API."""

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Server addresses end up as tag values; control characters would split the line.
SERVER_ADDRESS_PATTERN = r"^[^\x00-\x1f\x7f]+$"
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")

# ── Backend configuration ─────────────────────────────────────────────────────


class BucketDescriptor(BaseModel):
    """Resolved, immutable description of the bucket points are written to."""

    model_config = ConfigDict(frozen=True)

    org: str
    bucket: str
    token: str = Field(..., repr=False)
    precision: str = "ms"
    ping_measurement: str = "server_pings"
    record_measurement: str = "player_records"


# ── Query results ─────────────────────────────────────────────────────────────


class RecentPing(BaseModel):
    """One ping sample; ``player_count`` is ``None`` for a failed ping."""

    ip: str
    timestamp: int = Field(..., description="Epoch milliseconds")
    player_count: int | float | None = None


class RecordLookup(BaseModel):
    """Result of a player-count record lookup."""

    found: bool
    player_count: int | float | None = None
    timestamp: int | None = Field(None, description="Epoch milliseconds")


class GraphSeries(BaseModel):
    timestamps: list[int] = Field(default_factory=list)
    player_counts: list[int | float | None] = Field(default_factory=list)


# ── Requests / responses ──────────────────────────────────────────────────────


class PingRequest(BaseModel):
    """A single server-status sample reported by the poller."""

    ip: str = Field(..., min_length=1, description="Server address (tag value)")
    player_count: int | float | None = Field(
        None, description="Online players; omit when the ping failed"
    )
    timestamp: int | None = Field(None, description="Epoch milliseconds, defaults to now")

    @field_validator("ip", mode="before")
    @classmethod
    def reject_control_characters(cls, v: Any) -> Any:
        if isinstance(v, str) and _CONTROL_CHARS_RE.search(v):
            raise ValueError("ip must not contain control characters")
        return v


class RecordRequest(BaseModel):
    player_count: int = Field(..., ge=0)
    timestamp: int | None = Field(None, description="Epoch milliseconds, defaults to now")


class WriteAccepted(BaseModel):
    status: str = "queued"
    ip: str
    timestamp: int


class GraphPointsResponse(BaseModel):
    start: int
    end: int
    servers: dict[str, GraphSeries] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str = "pingsink"
    pending_lines: int = 0
    flushing: bool = False
