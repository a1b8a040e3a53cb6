"""GET /health – liveness check."""

from fastapi import APIRouter, Depends

from pingsink.deps import get_metrics_store
from pingsink.models import HealthResponse
from pingsink.store import MetricsStore

router = APIRouter(tags=["ops"])


@router.get("/health", response_model=HealthResponse)
async def health(store: MetricsStore = Depends(get_metrics_store)) -> HealthResponse:
    """Return service liveness status and write-buffer state."""
    return HealthResponse(
        pending_lines=store.buffer.pending,
        flushing=store.buffer.is_flushing,
    )
