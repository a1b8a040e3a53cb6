"""Shared pytest fixtures and helpers.

InfluxDB is replaced by an ``httpx.MockTransport`` (``FakeInflux``) injected
into the client, so store and client tests exercise the real request/response
path without a live server.  Router tests replace the whole store with a mock
via FastAPI's ``dependency_overrides`` mechanism.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterator
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient

from pingsink.clients.influxdb import InfluxDBClient
from pingsink.config import Settings
from pingsink.deps import get_metrics_store, get_settings
from pingsink.main import app
from pingsink.models import BucketDescriptor
from pingsink.store import MetricsStore

# ── Constants ─────────────────────────────────────────────────────────────────

INFLUX_URL = "http://influx.test:8086"
TOKEN = "s3cr3t-token"

PING_CSV = (
    ",result,table,_start,_stop,_time,_value,_field,_measurement,ip,status\r\n"
    ",_result,0,2023-11-14T00:00:00Z,2023-11-15T00:00:00Z,"
    "2023-11-14T22:13:20Z,12,playerCount,server_pings,1.2.3.4,success\r\n"
    ",_result,1,2023-11-14T00:00:00Z,2023-11-15T00:00:00Z,"
    "2023-11-14T22:13:21.5Z,0,playerCount,server_pings,1.2.3.4,failed\r\n"
    ",_result,2,2023-11-14T00:00:00Z,2023-11-15T00:00:00Z,"
    "2023-11-14T22:13:22Z,7,playerCount,server_pings,5.6.7.8,success\r\n"
    "\r\n"
)


# ── Fake InfluxDB ─────────────────────────────────────────────────────────────


class FakeInflux:
    """Records requests and answers them from per-path response queues.

    Unqueued writes get ``204``; any other unqueued request gets an empty
    ``200``.  Queue an exception to simulate a connection failure.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._responses: dict[str, list[httpx.Response | Exception]] = defaultdict(list)

    def queue(self, path: str, response: httpx.Response | Exception) -> None:
        self._responses[path].append(response)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queued = self._responses.get(request.url.path)
        if queued:
            item = queued.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        if request.url.path == "/api/v2/write":
            return httpx.Response(204)
        return httpx.Response(200, text="")

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def written_lines(self) -> list[str]:
        lines: list[str] = []
        for request in self.requests_to("/api/v2/write"):
            lines.extend(request.content.decode().split("\n"))
        return lines

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


# ── Fixtures ──────────────────────────────────────────────────────────────────


@pytest.fixture()
def bucket() -> BucketDescriptor:
    return BucketDescriptor(org="acme", bucket="pings", token=TOKEN)


@pytest.fixture()
def fake_influx() -> FakeInflux:
    return FakeInflux()


@pytest.fixture()
def influx_client(fake_influx: FakeInflux, bucket: BucketDescriptor) -> InfluxDBClient:
    return InfluxDBClient(INFLUX_URL, bucket, transport=fake_influx.transport)


@pytest.fixture()
def store(influx_client: InfluxDBClient, bucket: BucketDescriptor) -> MetricsStore:
    return MetricsStore(influx_client, bucket, batch_size=250, flush_interval_ms=1000)


@pytest.fixture()
def test_settings() -> Settings:
    return Settings(
        influx_url=INFLUX_URL,
        influx_org="acme",
        influx_bucket="pings",
        influx_token=TOKEN,
        graph_duration_ms=60_000,
    )


@pytest.fixture()
def mock_store() -> MetricsStore:
    client: MetricsStore = MagicMock(spec=MetricsStore)
    client.buffer = MagicMock(pending=0, is_flushing=False)  # type: ignore[misc]
    client.query_recent_pings = AsyncMock(return_value=[])  # type: ignore[method-assign]
    client.load_graph_points = AsyncMock(return_value={})  # type: ignore[method-assign]
    client.load_record = AsyncMock()  # type: ignore[method-assign]
    return client


@pytest.fixture()
def test_client(mock_store: MetricsStore, test_settings: Settings) -> Iterator[TestClient]:
    app.dependency_overrides[get_metrics_store] = lambda: mock_store
    app.dependency_overrides[get_settings] = lambda: test_settings
    yield TestClient(app)
    app.dependency_overrides.clear()
