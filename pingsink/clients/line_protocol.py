"""InfluxDB line-protocol encoder.

One point becomes one line of the shape::

    measurement[,tag=value,...] field=value[,field=value,...] timestamp

Measurement names, tag keys/values and field keys have commas, spaces and
equals signs backslash-escaped.  String field values are double-quoted with
backslashes and quotes escaped.  Integers carry an ``i`` suffix so that ``5``
and ``5.0`` stay distinguishable on the wire.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

_UNESCAPE_RE = re.compile(r"\\([, =])")


def escape_key(value: str) -> str:
    """Escape a measurement name, tag key, tag value or field key."""
    return value.replace(",", "\\,").replace(" ", "\\ ").replace("=", "\\=")


def unescape_key(value: str) -> str:
    """Inverse of :func:`escape_key`."""
    return _UNESCAPE_RE.sub(r"\1", value)


def format_field_value(value: Any) -> str:
    """Render a field value with its line-protocol type marker."""
    # bool is a subclass of int, so it must be checked first
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"{value}i"
    if isinstance(value, float):
        return repr(value)
    # backslashes before quotes
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def encode(
    measurement: str,
    tags: Mapping[str, Any],
    fields: Mapping[str, Any],
    timestamp: int | float,
) -> str:
    """Build a single line-protocol string.

    Entries whose value is ``None`` are dropped from both *tags* and *fields*.
    The tag segment is omitted entirely when no tags remain.  Callers must
    supply at least one non-``None`` field.

    Args:
        measurement: Series name, e.g. ``server_pings``.
        tags:        Indexed string dimensions (values are stringified).
        fields:      Scalar values (int, float, bool or str).
        timestamp:   Epoch value in the bucket's write precision; truncated
                     toward zero.
    """
    tag_str = ",".join(
        f"{escape_key(key)}={escape_key(str(val))}"
        for key, val in tags.items()
        if val is not None
    )
    field_str = ",".join(
        f"{escape_key(key)}={format_field_value(val)}"
        for key, val in fields.items()
        if val is not None
    )
    head = escape_key(measurement)
    if tag_str:
        head = f"{head},{tag_str}"
    return f"{head} {field_str} {int(timestamp)}"
