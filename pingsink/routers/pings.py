"""Ping ingestion and graph queries.

POST /pings          – queue one server-status sample.
GET  /pings/recent   – raw samples within a time range.
GET  /pings/graph    – samples grouped into per-server graph series.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from pingsink.clients.influxdb import InfluxDBError
from pingsink.config import Settings
from pingsink.deps import get_metrics_store, get_settings
from pingsink.models import GraphPointsResponse, PingRequest, RecentPing, WriteAccepted
from pingsink.routers.common import influx_http_error
from pingsink.store import MetricsStore, now_ms

router = APIRouter(prefix="/pings", tags=["pings"])


@router.post("", response_model=WriteAccepted, status_code=202)
async def insert_ping(
    ping: PingRequest,
    store: MetricsStore = Depends(get_metrics_store),
) -> WriteAccepted:
    """Queue a ping; it reaches InfluxDB with the next batch."""
    timestamp = ping.timestamp if ping.timestamp is not None else now_ms()
    store.write_ping(ping.ip, timestamp, ping.player_count)
    return WriteAccepted(ip=ping.ip, timestamp=timestamp)


@router.get("/recent", response_model=list[RecentPing])
async def recent_pings(
    start: int | None = Query(None, description="Range start, epoch ms (inclusive)"),
    end: int | None = Query(None, description="Range end, epoch ms (exclusive)"),
    store: MetricsStore = Depends(get_metrics_store),
    settings: Settings = Depends(get_settings),
) -> list[RecentPing]:
    end_ms = end if end is not None else now_ms()
    start_ms = start if start is not None else end_ms - settings.graph_duration_ms
    if start_ms >= end_ms:
        raise HTTPException(status_code=422, detail="start must be before end")

    try:
        return await store.query_recent_pings(start_ms, end_ms)
    except InfluxDBError as exc:
        raise influx_http_error(exc, "ping query") from exc


@router.get("/graph", response_model=GraphPointsResponse)
async def graph_points(
    duration_ms: int | None = Query(None, gt=0, description="Window length in ms"),
    store: MetricsStore = Depends(get_metrics_store),
    settings: Settings = Depends(get_settings),
) -> GraphPointsResponse:
    """Return per-server timestamp/player-count arrays for the graph window."""
    duration = duration_ms or settings.graph_duration_ms
    end_ms = now_ms()
    try:
        servers = await store.load_graph_points(duration, end_ms)
    except InfluxDBError as exc:
        raise influx_http_error(exc, "graph query") from exc
    return GraphPointsResponse(start=end_ms - duration, end=end_ms, servers=servers)
