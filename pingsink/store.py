"""Ping and record storage on top of InfluxDB.

:class:`MetricsStore` is the single entry point the application uses: it
encodes points, hands them to the :class:`~pingsink.write_buffer.WriteBuffer`
and runs the Flux queries used to rebuild graphs and player-count records.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Mapping

import httpx

from pingsink.clients import flux, line_protocol
from pingsink.clients.flux import QueryRow
from pingsink.clients.influxdb import InfluxDBClient, TransportError
from pingsink.config import ConfigurationError, Settings, resolve_bucket_descriptor
from pingsink.models import BucketDescriptor, GraphSeries, RecentPing, RecordLookup
from pingsink.write_buffer import WriteBuffer

logger = logging.getLogger(__name__)

PLAYER_COUNT_FIELD = "playerCount"
STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"


def now_ms() -> int:
    return int(time.time() * 1000)


def _to_number(value: str | None) -> int | float | None:
    """Parse a CSV cell; ``None`` for empty or non-numeric text."""
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        pass
    try:
        number = float(value)
    except ValueError:
        return None
    return None if math.isnan(number) else number


def _to_timestamp(value: str | None) -> int | None:
    if not value:
        return None
    try:
        return flux.parse_flux_time(value)
    except ValueError:
        return None


def _valid_player_count(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not math.isnan(value)


class MetricsStore:
    """Writes pings/records and answers the graph and record queries."""

    def __init__(
        self,
        client: InfluxDBClient,
        bucket: BucketDescriptor,
        batch_size: int = 250,
        flush_interval_ms: int = 1000,
    ) -> None:
        self._client = client
        self._bucket = bucket
        self._buffer = WriteBuffer(client.write, batch_size, flush_interval_ms)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        environ: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> MetricsStore:
        """Build a store from *settings*; raises ``ConfigurationError`` immediately."""
        bucket = resolve_bucket_descriptor(settings, environ)
        client = InfluxDBClient(settings.influx_url, bucket, transport=transport)
        return cls(
            client,
            bucket,
            batch_size=settings.write_batch_size,
            flush_interval_ms=settings.flush_interval_ms,
        )

    @property
    def bucket(self) -> BucketDescriptor:
        return self._bucket

    @property
    def buffer(self) -> WriteBuffer:
        return self._buffer

    async def close(self) -> None:
        """Send everything still buffered."""
        if self._buffer.pending or self._buffer.is_flushing:
            logger.info("Draining %d buffered line(s) before shutdown.", self._buffer.pending)
        await self._buffer.drain()

    # ── Startup ───────────────────────────────────────────────────────────────

    async def verify_bucket_access(self) -> None:
        """Fail fast unless the configured bucket is visible with our token.

        Raises:
            ConfigurationError: if no matching bucket is listed.
            TransportError:     on API failure.
            ResponseParseError: if the listing cannot be decoded.
        """
        buckets = await self._client.find_buckets()
        if not buckets:
            raise ConfigurationError(
                f'Bucket "{self._bucket.bucket}" not found or inaccessible'
            )
        logger.info(
            "InfluxDB bucket %s (org %s) is accessible.", self._bucket.bucket, self._bucket.org
        )

    # ── Writes ────────────────────────────────────────────────────────────────

    def write_ping(self, ip: str, timestamp: int, player_count: int | float | None) -> None:
        """Queue one ping sample.

        A missing or NaN player count marks the ping as failed and records 0.
        """
        if _valid_player_count(player_count):
            status = STATUS_SUCCESS
            # JSON clients may send 12.0; keep the field an integer series.
            if isinstance(player_count, float) and player_count.is_integer():
                player_count = int(player_count)
        else:
            status = STATUS_FAILED
            player_count = 0

        self._buffer.enqueue(
            line_protocol.encode(
                self._bucket.ping_measurement,
                {"ip": ip, "status": status},
                {PLAYER_COUNT_FIELD: player_count},
                timestamp,
            )
        )

    def write_record(self, ip: str, player_count: int | float, timestamp: int) -> None:
        """Queue a new player-count record (high-water mark) for *ip*."""
        self._buffer.enqueue(
            line_protocol.encode(
                self._bucket.record_measurement,
                {"ip": ip},
                {PLAYER_COUNT_FIELD: player_count},
                timestamp,
            )
        )

    # ── Queries ───────────────────────────────────────────────────────────────

    async def query_recent_pings(self, start_ms: int, end_ms: int) -> list[RecentPing]:
        """Return ping samples in ``[start_ms, end_ms)`` sorted by time."""
        query = flux.build_range_query(
            self._bucket.bucket,
            self._bucket.ping_measurement,
            start_ms,
            end_ms,
            predicates=[flux.field_equals(PLAYER_COUNT_FIELD)],
            stages=['sort(columns: ["_time"])'],
        )
        rows = await self._client.query_csv(query)
        pings = (self._row_to_ping(row) for row in rows)
        return [ping for ping in pings if ping is not None]

    async def query_latest_record(self, ip: str) -> RecordLookup:
        """Return the most recent explicit record for *ip*."""
        query = flux.build_range_query(
            self._bucket.bucket,
            self._bucket.record_measurement,
            0,
            predicates=[flux.tag_equals("ip", ip), flux.field_equals(PLAYER_COUNT_FIELD)],
            stages=["last()"],
        )
        try:
            rows = await self._client.query_csv(query)
        except TransportError as exc:
            logger.error("Cannot get player-count record for %s: %s", ip, exc)
            raise
        return self._first_row_to_record(rows)

    async def query_legacy_record(self, ip: str) -> RecordLookup:
        """Return the highest successful ping for *ip*, for servers with no record."""
        query = flux.build_range_query(
            self._bucket.bucket,
            self._bucket.ping_measurement,
            0,
            predicates=[
                flux.tag_equals("ip", ip),
                flux.field_equals(PLAYER_COUNT_FIELD),
                flux.tag_equals("status", STATUS_SUCCESS),
            ],
            stages=["max()"],
        )
        try:
            rows = await self._client.query_csv(query)
        except TransportError as exc:
            logger.error("Cannot get legacy player-count record for %s: %s", ip, exc)
            raise
        return self._first_row_to_record(rows)

    # ── Loading ───────────────────────────────────────────────────────────────

    async def load_record(self, ip: str) -> RecordLookup:
        """Return the record for *ip*, promoting a legacy peak to a real record.

        When only the legacy peak exists it is also written back as an explicit
        record so later lookups find it directly.
        """
        record = await self.query_latest_record(ip)
        if record.found:
            return record

        legacy = await self.query_legacy_record(ip)
        if legacy.found and legacy.timestamp is not None and legacy.player_count is not None:
            self.write_record(ip, legacy.player_count, legacy.timestamp)
        return legacy

    async def load_graph_points(
        self, duration_ms: int, end_ms: int | None = None
    ) -> dict[str, GraphSeries]:
        """Group the pings of the last *duration_ms* into per-server series."""
        end_ms = now_ms() if end_ms is None else end_ms
        pings = await self.query_recent_pings(end_ms - duration_ms, end_ms)

        series: dict[str, GraphSeries] = {}
        for ping in pings:
            graph = series.setdefault(ping.ip, GraphSeries())
            graph.timestamps.append(ping.timestamp)
            graph.player_counts.append(ping.player_count)
        return series

    # ── Row decoding ──────────────────────────────────────────────────────────

    @staticmethod
    def _row_to_ping(row: QueryRow) -> RecentPing | None:
        # Repeated header rows and rows without a parsable _time are skipped.
        timestamp = _to_timestamp(row.get("_time"))
        if timestamp is None:
            return None
        # Rows written before the status tag existed have no status column.
        status = row.get("status") or STATUS_SUCCESS
        return RecentPing(
            ip=row.get("ip") or "",
            timestamp=timestamp,
            player_count=_to_number(row.get("_value")) if status == STATUS_SUCCESS else None,
        )

    @staticmethod
    def _first_row_to_record(rows: list[QueryRow]) -> RecordLookup:
        for row in rows:
            player_count = _to_number(row.get("_value"))
            timestamp = _to_timestamp(row.get("_time"))
            if player_count is not None and timestamp is not None:
                return RecordLookup(found=True, player_count=player_count, timestamp=timestamp)
        return RecordLookup(found=False)
