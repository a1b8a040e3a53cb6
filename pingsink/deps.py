"""FastAPI dependency providers.

The store singleton is created in the application lifespan and kept on
``app.state``; routes receive it via ``Depends``.  Tests override these
functions via ``app.dependency_overrides``.
"""

from functools import lru_cache

from fastapi import HTTPException, Request

from pingsink.config import Settings
from pingsink.store import MetricsStore


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def get_metrics_store(request: Request) -> MetricsStore:
    store: MetricsStore | None = getattr(request.app.state, "store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Metrics store is not initialised")
    return store
