"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic_settings import BaseSettings, SettingsConfigDict

from pingsink.models import BucketDescriptor


class ConfigurationError(Exception):
    """Raised when the InfluxDB settings are incomplete or unusable."""


class Settings(BaseSettings):
    """All settings are read from environment variables (case-insensitive)."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ── InfluxDB ──────────────────────────────────────────────────────────────
    influx_url: str = "http://influxdb:8086"
    influx_org: str = ""
    influx_bucket: str = ""
    # Either the token itself or the name of an environment variable holding it.
    influx_token: str = ""
    influx_token_env_var: str = ""
    influx_write_precision: str = "ms"

    # ── Measurements ──────────────────────────────────────────────────────────
    influx_ping_measurement: str = "server_pings"
    influx_record_measurement: str = "player_records"

    # ── Write batching ────────────────────────────────────────────────────────
    influx_write_batch_size: int = 250
    influx_flush_interval_ms: int = 1000

    # ── Graphs ────────────────────────────────────────────────────────────────
    # Window served by GET /pings/graph and GET /pings/recent when no range is given.
    graph_duration_ms: int = 24 * 60 * 60 * 1000

    @property
    def write_batch_size(self) -> int:
        return max(1, self.influx_write_batch_size)

    @property
    def flush_interval_ms(self) -> int:
        return max(0, self.influx_flush_interval_ms)


def resolve_token(settings: Settings, environ: Mapping[str, str] | None = None) -> str:
    """Return the explicit token, falling back to the named environment variable."""
    if settings.influx_token:
        return settings.influx_token

    environ = os.environ if environ is None else environ
    if settings.influx_token_env_var and environ.get(settings.influx_token_env_var):
        return environ[settings.influx_token_env_var]

    raise ConfigurationError(
        "Missing InfluxDB API token. Set INFLUX_TOKEN, or INFLUX_TOKEN_ENV_VAR "
        "to the name of an environment variable holding it."
    )


def resolve_bucket_descriptor(
    settings: Settings, environ: Mapping[str, str] | None = None
) -> BucketDescriptor:
    """Validate *settings* and build the immutable :class:`BucketDescriptor`.

    Raises:
        ConfigurationError: if the URL, organization or bucket is missing, or
            no token can be resolved.
    """
    if not settings.influx_url or not settings.influx_org or not settings.influx_bucket:
        raise ConfigurationError(
            "Missing InfluxDB configuration. Please set INFLUX_URL, INFLUX_ORG "
            "and INFLUX_BUCKET."
        )
    return BucketDescriptor(
        org=settings.influx_org,
        bucket=settings.influx_bucket,
        token=resolve_token(settings, environ),
        precision=settings.influx_write_precision or "ms",
        ping_measurement=settings.influx_ping_measurement,
        record_measurement=settings.influx_record_measurement,
    )
