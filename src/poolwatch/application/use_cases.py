from __future__ import annotations
import asyncio, logging

from ..adapters.csv_sink import CsvTradeSink
from ..adapters.parquet_sink import ParquetTradeSink
from ..adapters.rpc_httpx import HttpxRPC
from ..adapters.ws_subscription import WebsocketEventSource
from ..config import Settings
from ..domain.models import PoolConfig
from ..domain.value_types import Address
from ..ports.events import EventSource
from ..ports.metadata import MetadataClient
from ..ports.storage import TradeSink
from .pipeline import IngestionPipeline
from .session import SubscriptionSession
from .supervisor import FixedDelay, ReconnectSupervisor

logger = logging.getLogger(__name__)


async def resolve_decimal_shift(metadata: MetadataClient, pool: Address) -> int:
    """decimals(token0) - decimals(token1), looked up on chain. Errors propagate (fatal)."""
    token0, token1 = await metadata.pool_tokens(pool)
    d0 = await metadata.token_decimals(token0)
    d1 = await metadata.token_decimals(token1)
    logger.info("token0 %s has %d decimals, token1 %s has %d decimals", token0, d0, token1, d1)
    return d0 - d1


async def resolve_pool_config(settings: Settings, metadata: MetadataClient | None = None) -> PoolConfig:
    if settings.decimal_shift is not None:
        return PoolConfig(address=settings.pool_address, decimal_shift=settings.decimal_shift)
    own = metadata is None
    rpc = metadata if metadata is not None else HttpxRPC(settings.metadata_rpc_url)
    try:
        shift = await resolve_decimal_shift(rpc, settings.pool_address)
    finally:
        if own:
            await rpc.aclose()
    return PoolConfig(address=settings.pool_address, decimal_shift=shift)


def build_sink(settings: Settings) -> TradeSink:
    if settings.sink == "parquet":
        return ParquetTradeSink(settings.output)
    return CsvTradeSink(settings.output)


async def run_ingestion(
    settings: Settings,
    *,
    pool: PoolConfig | None = None,
    source: EventSource | None = None,
    sink: TradeSink | None = None,
    stop: asyncio.Event | None = None,
) -> None:
    """Wire source -> session -> pipeline -> sink and run until `stop` is set or cancelled."""
    pool = pool or await resolve_pool_config(settings)
    source = source or WebsocketEventSource(settings.rpc_url)
    sink = sink or build_sink(settings)

    logger.info("pool %s, decimal shift %d, sink %s -> %s", pool.address, pool.decimal_shift, settings.sink, settings.output)

    pipeline = IngestionPipeline(sink, batch_size=settings.batch_size, capacity=settings.queue_capacity)
    pipeline.start()
    supervisor = ReconnectSupervisor(
        lambda: SubscriptionSession(source, pipeline, pool),
        delay=FixedDelay(settings.reconnect_delay_s),
        pipeline=pipeline,
        stop=stop,
    )
    try:
        await supervisor.run()
    finally:
        await pipeline.close()
        await sink.close()
