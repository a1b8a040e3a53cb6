"""Flux query building and CSV response decoding.

Queries are plain text pipelines (``from() |> range() |> filter() ...``).
Every string literal placed inside double quotes goes through
:func:`escape_flux_string` first so user-supplied values (server IPs, bucket
names) cannot terminate the literal.

Responses are requested with annotations disabled and a header row, e.g.::

    ,result,table,_start,_stop,_time,_value,_field,_measurement,ip,status
    ,_result,0,2024-...Z,2024-...Z,2024-...Z,12,playerCount,server_pings,1.2.3.4,success
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta, timezone

QueryRow = dict[str, str | None]

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_FRACTION_RE = re.compile(r"\.(\d+)")


# ── Literals ──────────────────────────────────────────────────────────────────


def escape_flux_string(value: object) -> str:
    """Escape backslashes, then double quotes, for a Flux string literal."""
    return str(value).replace("\\", "\\\\").replace('"', '\\"')


def to_flux_time(timestamp_ms: int | float) -> str:
    """Return a Flux ``time(v: ...)`` expression for an epoch-millisecond value."""
    moment = _EPOCH + timedelta(milliseconds=int(timestamp_ms))
    iso = moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return f"time(v: {iso})"


def parse_flux_time(value: str) -> int:
    """Convert an RFC 3339 ``_time`` value into epoch milliseconds.

    InfluxDB emits up to nanosecond precision with trailing zeros trimmed
    (``2024-01-01T00:00:01.5Z``); the fraction is normalised to microseconds
    before parsing.
    """
    text = value.strip().replace("Z", "+00:00")
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    moment = datetime.fromisoformat(text)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (moment - _EPOCH) // timedelta(milliseconds=1)


# ── Query building ────────────────────────────────────────────────────────────


def field_equals(field: str) -> str:
    """Predicate matching rows of a single field."""
    return f'r._field == "{escape_flux_string(field)}"'


def tag_equals(tag: str, value: str) -> str:
    """Predicate matching rows whose *tag* equals *value*."""
    return f'r["{escape_flux_string(tag)}"] == "{escape_flux_string(value)}"'


def build_range_query(
    bucket: str,
    measurement: str,
    start_ms: int | float,
    stop_ms: int | float | None = None,
    predicates: Iterable[str] = (),
    stages: Sequence[str] = (),
) -> str:
    """Build a Flux query over ``[start_ms, stop_ms)`` for one measurement.

    Args:
        bucket:      Bucket to read from.
        measurement: ``_measurement`` to keep.
        start_ms:    Inclusive range start (epoch ms).
        stop_ms:     Exclusive range end (epoch ms); ``None`` means "now".
        predicates:  Extra filter expressions, see :func:`field_equals` and
                     :func:`tag_equals`.  Each becomes its own ``filter()``.
        stages:      Trailing pipeline stages such as ``last()`` or
                     ``sort(columns: ["_time"])``.
    """
    range_args = f"start: {to_flux_time(start_ms)}"
    if stop_ms is not None:
        range_args += f", stop: {to_flux_time(stop_ms)}"

    pipeline = [
        f'from(bucket: "{escape_flux_string(bucket)}")',
        f"range({range_args})",
        f'filter(fn: (r) => r._measurement == "{escape_flux_string(measurement)}")',
    ]
    pipeline.extend(f"filter(fn: (r) => {predicate})" for predicate in predicates)
    pipeline.extend(stages)
    return "\n  |> ".join(pipeline)


# ── CSV decoding ──────────────────────────────────────────────────────────────


def split_csv_line(line: str) -> list[str]:
    """Split one CSV line, honouring double-quote quoting.

    A doubled quote inside a quoted field is a literal quote; commas inside
    quotes are not separators.
    """
    values: list[str] = []
    current: list[str] = []
    in_quotes = False
    i = 0
    while i < len(line):
        char = line[i]
        if char == '"':
            if in_quotes and line[i + 1 : i + 2] == '"':
                current.append('"')
                i += 1
            else:
                in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            values.append("".join(current))
            current = []
        else:
            current.append(char)
        i += 1
    values.append("".join(current))
    return values


def parse_csv(text: str) -> list[QueryRow]:
    """Decode a query response body into one mapping per data row.

    Blank lines and ``#`` annotation lines are skipped.  The first remaining
    line is the header.  Short rows map their missing trailing columns to
    ``None``; no row is rejected.
    """
    rows: list[QueryRow] = []
    header: list[str] | None = None
    for line in text.splitlines():
        if not line.strip() or line.startswith("#"):
            continue
        values = split_csv_line(line)
        if header is None:
            header = values
            continue
        rows.append(
            {
                column: values[index] if index < len(values) else None
                for index, column in enumerate(header)
            }
        )
    return rows
