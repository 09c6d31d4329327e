from __future__ import annotations
import asyncio, logging

from ..domain.errors import PipelineClosed, SinkError
from ..domain.models import TradeRecord
from ..ports.storage import TradeSink

logger = logging.getLogger(__name__)


class IngestionPipeline:
    """
    Bounded FIFO hand-off from one producer to one batching consumer task.

    `put` blocks while the queue is full. The consumer commits every
    `batch_size` records in one `sink.write_batch` call; a partial batch is only
    held in memory and is lost if the process stops before it fills up.
    """

    def __init__(self, sink: TradeSink, *, batch_size: int = 10, capacity: int = 100) -> None:
        if batch_size < 1: raise ValueError("batch_size must be >= 1")
        if capacity < 1: raise ValueError("capacity must be >= 1")
        self.sink = sink
        self.batch_size = batch_size
        self.capacity = capacity
        self._queue: asyncio.Queue[TradeRecord] | None = None
        self._consumer: asyncio.Task[None] | None = None
        self._batch: list[TradeRecord] = []
        self.committed = 0
        self.failed_rows = 0
        self.failed_batches = 0

    # ---------------- lifecycle ----------------

    def start(self) -> None:
        if self._consumer is not None and not self._consumer.done():
            return
        self._queue = asyncio.Queue(maxsize=self.capacity)
        self._batch = []
        self._consumer = asyncio.create_task(self._consume(self._queue), name="poolwatch-consumer")

    @property
    def alive(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    @property
    def pending(self) -> int:
        """Records held in the current, not yet committed, batch."""
        return len(self._batch)

    @property
    def queued(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    def respawn(self) -> int:
        """Replace a dead consumer with a fresh queue and task. Returns records lost."""
        lost = self.queued + self.pending
        if self._consumer is not None and self._consumer.done() and not self._consumer.cancelled():
            exc = self._consumer.exception()
            logger.error("consumer died: %r; respawning (lost %d records)", exc, lost)
        else:
            logger.error("consumer not running; respawning (lost %d records)", lost)
        self._consumer = None
        self.start()
        return lost

    async def close(self) -> None:
        """Stop the consumer. The partial batch is dropped, not committed."""
        if self._consumer is not None and not self._consumer.done():
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
        elif self._consumer is not None and not self._consumer.cancelled():
            exc = self._consumer.exception()
            if exc is not None:
                logger.error("consumer had died: %r", exc, exc_info=exc)
        if self._batch:
            logger.warning("dropping %d uncommitted records of the partial batch", len(self._batch))

    # ---------------- producer side ----------------

    async def put(self, record: TradeRecord) -> None:
        if self._queue is None or self._consumer is None or self._consumer.done():
            raise PipelineClosed("ingestion consumer is not running")
        try:
            self._queue.put_nowait(record)
            return
        except asyncio.QueueFull:
            pass
        # full: wait for room, but give up if the consumer dies meanwhile
        put_task = asyncio.ensure_future(self._queue.put(record))
        try:
            await asyncio.wait({put_task, self._consumer}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            put_task.cancel()
            raise
        if not put_task.done():
            put_task.cancel()
            raise PipelineClosed("ingestion consumer stopped while the queue was full")

    async def join(self) -> None:
        """Wait until every queued record has been taken and handled by the consumer."""
        if self._queue is None:
            return
        if self._consumer is None or self._consumer.done():
            if self._queue.empty():
                return
            raise PipelineClosed("ingestion consumer is not running")
        join_task = asyncio.ensure_future(self._queue.join())
        await asyncio.wait({join_task, self._consumer}, return_when=asyncio.FIRST_COMPLETED)
        if not join_task.done():
            join_task.cancel()
            raise PipelineClosed("ingestion consumer stopped before the queue drained")

    # ---------------- consumer side ----------------

    async def _consume(self, queue: asyncio.Queue[TradeRecord]) -> None:
        while True:
            rec = await queue.get()
            try:
                self._batch.append(rec)
                if len(self._batch) >= self.batch_size:
                    batch, self._batch = self._batch, []
                    await self._commit(batch)
            finally:
                queue.task_done()

    async def _commit(self, batch: list[TradeRecord]) -> None:
        try:
            res = await self.sink.write_batch(batch)
        except SinkError as e:
            self.failed_batches += 1
            logger.error("batch of %d records failed: %s", len(batch), e)
            return
        self.committed += res.written
        self.failed_rows += res.failed
        if res.failed:
            logger.warning("batch committed with %d/%d rows rejected", res.failed, len(batch))
        else:
            logger.info("committed batch of %d records", res.written)
