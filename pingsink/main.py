import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from pingsink.deps import get_settings
from pingsink.routers import health, pings, records
from pingsink.store import MetricsStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Misconfiguration (ConfigurationError, unreachable InfluxDB) aborts startup.
    store = MetricsStore.from_settings(get_settings())
    await store.verify_bucket_access()
    app.state.store = store
    try:
        yield
    finally:
        await store.close()
        logger.info("Metrics store closed.")


app = FastAPI(
    title="pingsink",
    description=(
        "Records periodic server pings and player-count records in InfluxDB "
        "and serves them back for graphs."
    ),
    version="0.1.0",
    lifespan=lifespan,
    # root_path allows FastAPI to generate correct OpenAPI URLs when served
    # behind a reverse proxy at a sub-path (e.g. nginx /api/ prefix).
    root_path=os.getenv("ROOT_PATH", ""),
)

app.include_router(health.router)
app.include_router(pings.router)
app.include_router(records.router)
