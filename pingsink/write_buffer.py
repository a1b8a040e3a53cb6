"""Batching write buffer for encoded line-protocol strings.

Lines are appended by :meth:`WriteBuffer.enqueue` and sent by a single
background flush task.  A flush starts when the buffer reaches the batch size
or when the flush-interval timer fires, whichever comes first.  At most one
flush is in flight at a time; lines enqueued meanwhile are sent by the next
flush, which starts as soon as the current one completes.

A batch whose write fails, for whatever reason, is logged and dropped.  It is
never retried or put back into the buffer, so one failing write cannot block
later batches.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from pingsink.clients.influxdb import InfluxDBError

logger = logging.getLogger(__name__)

Writer = Callable[[str], Awaitable[None]]


class WriteBuffer:
    """Accumulates lines and flushes them through *writer* in order."""

    def __init__(self, writer: Writer, batch_size: int = 250, flush_interval_ms: int = 1000) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if flush_interval_ms < 0:
            raise ValueError("flush_interval_ms must not be negative")
        self._writer = writer
        self._batch_size = batch_size
        self._flush_interval = flush_interval_ms / 1000
        self._pending: list[str] = []
        self._timer: asyncio.TimerHandle | None = None
        self._flush_task: asyncio.Task[None] | None = None

    @property
    def pending(self) -> int:
        """Number of lines waiting to be flushed."""
        return len(self._pending)

    @property
    def is_flushing(self) -> bool:
        return self._flush_task is not None

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None

    def enqueue(self, line: str) -> None:
        """Append *line*; never blocks and never performs I/O itself.

        Must be called from within a running event loop.
        """
        self._pending.append(line)

        if len(self._pending) >= self._batch_size:
            self.flush()
            return

        if self._timer is None:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self._flush_interval, self._on_timer)

    def flush(self) -> asyncio.Task[None] | None:
        """Start sending the head of the buffer, if nothing is in flight.

        Returns the flush task, or ``None`` when there was nothing to do
        (already flushing or buffer empty).  Safe to call speculatively.
        """
        if self._flush_task is not None or not self._pending:
            return None

        self._cancel_timer()

        # Swap out the batch before the first suspension point; lines enqueued
        # while the write is in flight land in the remaining buffer.
        batch = self._pending[: self._batch_size]
        self._pending = self._pending[self._batch_size :]

        self._flush_task = asyncio.get_running_loop().create_task(self._send(batch))
        return self._flush_task

    async def drain(self) -> None:
        """Flush until the buffer is empty and nothing is in flight."""
        self._cancel_timer()
        self.flush()
        while self._flush_task is not None:
            await self._flush_task

    # ── Internals ─────────────────────────────────────────────────────────────

    def _on_timer(self) -> None:
        self._timer = None
        self.flush()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _send(self, batch: list[str]) -> None:
        logger.debug("Flushing %d line(s) to InfluxDB.", len(batch))
        try:
            await self._writer("\n".join(batch))
        except InfluxDBError as exc:
            logger.error("Failed to write %d line(s) to InfluxDB: %s", len(batch), exc)
        except Exception:
            logger.exception("Failed to write %d line(s) to InfluxDB.", len(batch))
        finally:
            self._flush_task = None
            if self._pending:
                self.flush()
