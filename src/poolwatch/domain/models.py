from __future__ import annotations
from dataclasses import dataclass, fields
from .value_types import Address, Topic0, TxHash, TerminationReason

@dataclass(slots=True, frozen=True)
class RawLog:
    address: Address
    topics: tuple[str, ...]            # lowercased with 0x; topics[0] is the signature
    data_hex: str                      # hex with 0x (or "0x")
    tx_hash: TxHash
    block_number: int | None = None    # None while pending
    log_index: int | None = None
    removed: bool = False              # True when dropped by a reorg

    @property
    def topic0(self) -> Topic0 | None:
        return Topic0(self.topics[0]) if self.topics else None

@dataclass(slots=True, frozen=True)
class SwapEvent:
    sender: str
    recipient: str
    amount0: int                       # int256
    amount1: int                       # int256
    sqrt_price_x96: int                # uint160, Q64.96 fixed point
    liquidity: int                     # uint128
    tick: int                          # int24

@dataclass(slots=True, frozen=True)
class PoolConfig:
    address: Address
    decimal_shift: int                 # decimals(token0) - decimals(token1)

@dataclass(slots=True, frozen=True)
class TradeRecord:
    timestamp: str                     # local observation time, not block time
    tx_hash: str
    pool: str
    sender: str
    recipient: str
    price: str                         # full precision decimal
    price_f64: float
    liquidity: str                     # big ints as strings
    decimal_shift: int
    amount0: str
    amount1: str
    tick: int
    block_number: int | None

    @classmethod
    def columns(cls) -> tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

@dataclass(slots=True, frozen=True)
class BatchResult:
    written: int
    failed: int = 0

@dataclass(slots=True, frozen=True)
class Termination:
    reason: TerminationReason
    error: str | None = None
    processed: int = 0
    skipped: int = 0
