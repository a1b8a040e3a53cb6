"""Helpers shared by the ping and record routers."""

from __future__ import annotations

from fastapi import HTTPException

from pingsink.clients.influxdb import InfluxDBError, TransportError


def influx_http_error(exc: InfluxDBError, action: str) -> HTTPException:
    """Map an InfluxDB failure onto the HTTP status returned to the caller."""
    if isinstance(exc, TransportError) and exc.status_code is None:
        return HTTPException(status_code=503, detail=f"InfluxDB unreachable: {exc}")
    return HTTPException(status_code=502, detail=f"InfluxDB {action} failed: {exc}")
