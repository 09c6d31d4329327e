from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Sequence

import pytest
from eth_utils import to_checksum_address

from poolwatch.domain.decoding import SWAP_T0
from poolwatch.domain.errors import PipelineClosed
from poolwatch.domain.models import BatchResult, PoolConfig, RawLog, TradeRecord
from poolwatch.domain.value_types import Address, TxHash

POOL = Address("0x88e6A0c2dDD26FEEb64F039a2c41296FcB3f5640")
SENDER = "0xe592427a0aece92de3edee1f18e0157c05861564"
RECIPIENT = "0x3fc91a3afd70395cd496c647d5a6cc9d4b2b7fad"

# ~3000 USDC per WETH for the USDC(6)/WETH(18) pool
SQRT_PRICE_3000 = 1446501700000000000000000000000000


def _topic_addr(addr: str) -> str:
    return "0x" + "0" * 24 + addr[2:].lower()


def _w(v: int, signed: bool = False) -> bytes:
    return v.to_bytes(32, "big", signed=signed)


def swap_log(
    *,
    amount0: int = 5_000_000_000,
    amount1: int = -1_666_000_000_000_000_000,
    sqrt_price_x96: int = SQRT_PRICE_3000,
    liquidity: int = 12_345_678_901_234_567_890,
    tick: int = 196_000,
    tx_hash: str = "0x" + "ab" * 32,
    block_number: int | None = 19_000_000,
    removed: bool = False,
) -> RawLog:
    data = _w(amount0, True) + _w(amount1, True) + _w(sqrt_price_x96) + _w(liquidity) + _w(tick, True)
    return RawLog(
        address=Address(POOL.lower()),
        topics=(SWAP_T0, _topic_addr(SENDER), _topic_addr(RECIPIENT)),
        data_hex="0x" + data.hex(),
        tx_hash=TxHash(tx_hash),
        block_number=block_number,
        log_index=0,
        removed=removed,
    )


def trade_record(i: int, **overrides) -> TradeRecord:
    fields = dict(
        timestamp="2024-05-01 12:00:00",
        tx_hash="0x" + f"{i:064x}",
        pool=POOL,
        sender=to_checksum_address(SENDER),
        recipient=to_checksum_address(RECIPIENT),
        price="3000.123456789",
        price_f64=3000.123456789,
        liquidity=str(10**30 + i),
        decimal_shift=-12,
        amount0=str(-i),
        amount1=str(i * 10**18),
        tick=196_000 + i,
        block_number=19_000_000 + i,
    )
    fields.update(overrides)
    return TradeRecord(**fields)


class ListSink:
    """In-memory sink recording every committed batch."""

    def __init__(self) -> None:
        self.batches: list[list[TradeRecord]] = []
        self.closed = False

    @property
    def records(self) -> list[TradeRecord]:
        return [r for b in self.batches for r in b]

    async def write_batch(self, records: Sequence[TradeRecord]) -> BatchResult:
        self.batches.append(list(records))
        return BatchResult(written=len(records))

    async def close(self) -> None:
        self.closed = True


class GateSink(ListSink):
    """Blocks every commit until `gate` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()
        self.calls = 0

    async def write_batch(self, records: Sequence[TradeRecord]) -> BatchResult:
        self.calls += 1
        await self.gate.wait()
        return await super().write_batch(records)


class FakePipeline:
    def __init__(self, fail_after: int | None = None) -> None:
        self.records: list[TradeRecord] = []
        self.fail_after = fail_after
        self.alive = True
        self.respawned = 0

    async def put(self, record: TradeRecord) -> None:
        if self.fail_after is not None and len(self.records) >= self.fail_after:
            raise PipelineClosed("consumer gone")
        self.records.append(record)

    def respawn(self) -> int:
        self.respawned += 1
        self.alive = True
        return 0


class FakeSource:
    """
    Event source replaying scripted sessions. Each session is a list of RawLog
    or Exception items; an Exception is raised at that point of the stream. A
    session that is itself an Exception fails on connect.
    """

    def __init__(self, sessions: list) -> None:
        self.sessions = list(sessions)
        self.subscriptions: list[tuple[str, str]] = []

    @asynccontextmanager
    async def subscribe(self, address, topic0):
        self.subscriptions.append((address, topic0))
        script = self.sessions.pop(0) if self.sessions else []
        if isinstance(script, Exception):
            raise script

        async def gen():
            for item in script:
                if isinstance(item, Exception):
                    raise item
                yield item

        yield gen()


@pytest.fixture
def pool_config() -> PoolConfig:
    return PoolConfig(address=POOL, decimal_shift=-12)
