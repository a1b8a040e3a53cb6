"""Player-count records (per-server all-time highs)."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Path

from pingsink.clients.influxdb import InfluxDBError
from pingsink.deps import get_metrics_store
from pingsink.models import SERVER_ADDRESS_PATTERN, RecordLookup, RecordRequest, WriteAccepted
from pingsink.routers.common import influx_http_error
from pingsink.store import MetricsStore, now_ms

router = APIRouter(prefix="/records", tags=["records"])


@router.get("/{ip}", response_model=RecordLookup)
async def get_record(
    ip: str = Path(..., pattern=SERVER_ADDRESS_PATTERN),
    store: MetricsStore = Depends(get_metrics_store),
) -> RecordLookup:
    """Return the record for *ip*, falling back to its historical ping peak."""
    try:
        return await store.load_record(ip)
    except InfluxDBError as exc:
        raise influx_http_error(exc, "record query") from exc


@router.put("/{ip}", response_model=WriteAccepted, status_code=202)
async def update_record(
    record: RecordRequest,
    ip: str = Path(..., pattern=SERVER_ADDRESS_PATTERN),
    store: MetricsStore = Depends(get_metrics_store),
) -> WriteAccepted:
    timestamp = record.timestamp if record.timestamp is not None else now_ms()
    store.write_record(ip, record.player_count, timestamp)
    return WriteAccepted(ip=ip, timestamp=timestamp)
