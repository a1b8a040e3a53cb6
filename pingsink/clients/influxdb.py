"""InfluxDB v2 HTTP client.

Talks to the write (line protocol), query (Flux, CSV response) and bucket
lookup endpoints via httpx.  Every request carries the ``Token`` authorization
header; any status code outside the caller's expected set is a
:class:`TransportError`.  No retries are attempted and no timeout beyond
httpx's default is applied.
"""

from __future__ import annotations

import json
from collections.abc import Collection, Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from pingsink.clients.flux import QueryRow, parse_csv
from pingsink.models import BucketDescriptor


class InfluxDBError(Exception):
    """Raised when an InfluxDB operation fails."""


class TransportError(InfluxDBError):
    """The request could not be completed or returned an unexpected status.

    ``status_code`` is ``None`` when no response was received at all.
    """

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ResponseParseError(InfluxDBError):
    """Raised when an InfluxDB response body cannot be decoded."""


@dataclass(frozen=True)
class TransportResponse:
    status_code: int
    body: str


class InfluxDBClient:
    """Async client for the InfluxDB v2 HTTP API."""

    def __init__(
        self,
        url: str,
        bucket: BucketDescriptor,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url.rstrip("/")
        self._bucket = bucket
        # Injected in tests (httpx.MockTransport); None selects http/https from the URL.
        self._transport = transport

    @property
    def url(self) -> str:
        return self._url

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
        content: str | bytes | None = None,
        expected_statuses: Collection[int] = (200,),
    ) -> TransportResponse:
        """Send one request and return its fully read response.

        Args:
            method:            HTTP verb.
            path:              Absolute API path, e.g. ``/api/v2/write``.
            params:            Query-string parameters (URL-encoded by httpx).
            headers:           Extra headers; they may override the defaults
                               but never the ``Authorization`` header.
            content:           Request body.
            expected_statuses: Status codes treated as success.

        Raises:
            InfluxDBError:  if a text body cannot be encoded as UTF-8.
            TransportError: on connection failure or an unexpected status.
        """
        merged = httpx.Headers({"Accept": "application/json"})
        merged.update(dict(headers or {}))
        merged["Authorization"] = f"Token {self._bucket.token}"

        try:
            if isinstance(content, str):
                content = content.encode()
            async with httpx.AsyncClient(transport=self._transport) as client:
                resp = await client.request(
                    method,
                    f"{self._url}{path}",
                    params=params,
                    headers=merged,
                    content=content,
                )
        except UnicodeEncodeError as exc:
            raise InfluxDBError("Request body is not valid UTF-8") from exc
        except httpx.RequestError as exc:
            raise TransportError(f"InfluxDB unreachable: {exc}") from exc

        if resp.status_code not in expected_statuses:
            raise TransportError(
                f"InfluxDB responded with status {resp.status_code}: {resp.text}",
                status_code=resp.status_code,
                body=resp.text,
            )
        return TransportResponse(status_code=resp.status_code, body=resp.text)

    # ── Endpoints ─────────────────────────────────────────────────────────────

    async def write(self, payload: str) -> None:
        """POST a newline-joined batch of line-protocol strings."""
        await self.request(
            "POST",
            "/api/v2/write",
            params={
                "org": self._bucket.org,
                "bucket": self._bucket.bucket,
                "precision": self._bucket.precision,
            },
            headers={"Content-Type": "text/plain; charset=utf-8"},
            content=payload,
            expected_statuses=(204,),
        )

    async def query_csv(self, flux: str) -> list[QueryRow]:
        """Run a Flux query and decode the CSV result into rows."""
        body = {
            "query": flux,
            "type": "flux",
            "dialect": {"annotations": [], "delimiter": ",", "header": True},
        }
        resp = await self.request(
            "POST",
            "/api/v2/query",
            params={"org": self._bucket.org},
            headers={"Content-Type": "application/json", "Accept": "text/csv"},
            content=json.dumps(body),
            expected_statuses=(200,),
        )
        return parse_csv(resp.body)

    async def find_buckets(self) -> list[dict[str, Any]]:
        """Return the buckets matching the configured name and organization.

        Raises:
            TransportError:     on API failure.
            ResponseParseError: if the listing is not a JSON object with a
                                ``buckets`` array.
        """
        resp = await self.request(
            "GET",
            "/api/v2/buckets",
            params={"name": self._bucket.bucket, "org": self._bucket.org},
            expected_statuses=(200,),
        )
        try:
            payload = json.loads(resp.body or "{}")
        except json.JSONDecodeError as exc:
            raise ResponseParseError("Unable to parse bucket response") from exc
        if not isinstance(payload, dict):
            raise ResponseParseError("Unable to parse bucket response")
        buckets = payload.get("buckets")
        if buckets is None:
            return []
        if not isinstance(buckets, list):
            raise ResponseParseError("Unable to parse bucket response")
        return buckets
