# poolwatch/ports/storage.py
from __future__ import annotations

from typing import Protocol, Sequence
from ..domain.models import BatchResult, TradeRecord


class TradeSink(Protocol):
    """Port for committing batches of trade records to durable storage."""

    async def write_batch(self, records: Sequence[TradeRecord]) -> BatchResult:
        """
        Persist `records` in order as one logical operation. Rows that fail on
        their own are logged and counted in BatchResult.failed; a failure of the
        whole commit raises SinkError.
        """

    async def close(self) -> None:
        """Release the underlying file/connection."""
