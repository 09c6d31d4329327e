from __future__ import annotations
import enum, logging
from contextlib import aclosing
from datetime import datetime
from decimal import Decimal
from typing import Callable

from ..domain.decoding import SWAP_T0, decode_swap
from ..domain.errors import DecodeError, PipelineClosed, TransportError
from ..domain.models import PoolConfig, RawLog, SwapEvent, Termination, TradeRecord
from ..domain.pricing import format_price, price_to_float, sqrt_price_x96_to_price
from ..domain.value_types import TerminationReason, Topic0
from ..ports.events import EventSource
from .pipeline import IngestionPipeline

logger = logging.getLogger(__name__)

TIMESTAMP_FMT = "%Y-%m-%d %H:%M:%S"

def _now_local() -> str:
    return datetime.now().strftime(TIMESTAMP_FMT)


class SessionState(str, enum.Enum):
    CONNECTING = "connecting"
    STREAMING = "streaming"
    TERMINATED = "terminated"


def build_record(log: RawLog, ev: SwapEvent, pool: PoolConfig, observed_at: str) -> TradeRecord:
    price = sqrt_price_x96_to_price(ev.sqrt_price_x96, pool.decimal_shift)
    return TradeRecord(
        timestamp=observed_at,
        tx_hash=log.tx_hash,
        pool=str(pool.address),
        sender=ev.sender,
        recipient=ev.recipient,
        price=str(price),
        price_f64=price_to_float(price),
        liquidity=str(ev.liquidity),
        decimal_shift=pool.decimal_shift,
        amount0=str(ev.amount0),
        amount1=str(ev.amount1),
        tick=ev.tick,
        block_number=log.block_number,
    )


class SubscriptionSession:
    """
    One subscription lifetime: connect, stream Swap logs into the pipeline,
    and report why it ended. Never raises for transport or pipeline failures.
    """

    def __init__(
        self,
        source: EventSource,
        pipeline: IngestionPipeline,
        pool: PoolConfig,
        *,
        clock: Callable[[], str] = _now_local,
    ) -> None:
        self.source = source
        self.pipeline = pipeline
        self.pool = pool
        self.clock = clock
        self.state = SessionState.CONNECTING
        self.processed = 0
        self.skipped = 0

    def _terminate(self, reason: TerminationReason, error: str | None = None) -> Termination:
        self.state = SessionState.TERMINATED
        return Termination(reason=reason, error=error, processed=self.processed, skipped=self.skipped)

    async def run(self) -> Termination:
        self.state = SessionState.CONNECTING
        try:
            async with self.source.subscribe(self.pool.address, Topic0(SWAP_T0)) as logs:
                self.state = SessionState.STREAMING
                async with aclosing(logs):
                    async for log in logs:
                        await self._handle(log)
        except TransportError as e:
            logger.error("transport error: %s", e)
            return self._terminate("transport_error", str(e))
        except PipelineClosed as e:
            logger.error("pipeline closed: %s", e)
            return self._terminate("pipeline_closed", str(e))
        logger.warning("subscription stream ended by peer")
        return self._terminate("stream_ended")

    async def _handle(self, log: RawLog) -> None:
        if log.removed:
            self.skipped += 1
            logger.warning("skipping removed (reorged) log in tx %s", log.tx_hash)
            return
        try:
            ev = decode_swap(log)
        except DecodeError as e:
            self.skipped += 1
            logger.warning("skipping undecodable log in tx %s: %s", log.tx_hash, e)
            return

        rec = build_record(log, ev, self.pool, self.clock())
        await self.pipeline.put(rec)
        self.processed += 1
        logger.info("[%s] Price: $%s | Tx: %s", rec.timestamp, format_price(Decimal(rec.price)), rec.tx_hash)
