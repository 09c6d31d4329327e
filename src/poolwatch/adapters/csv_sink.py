from __future__ import annotations
import asyncio, csv, logging, os
from dataclasses import astuple
from typing import Sequence, TextIO

from ..domain.errors import SinkError
from ..domain.models import BatchResult, TradeRecord
from ..ports.storage import TradeSink

logger = logging.getLogger(__name__)

class CsvTradeSink(TradeSink):
    """
    Append-only CSV file. Writes the header only when the file is new or empty
    and flushes after every row.
    """
    def __init__(self, path: str) -> None:
        self.path = path
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        self._fh: TextIO | None = None
        self._writer = None
        self._lock = asyncio.Lock()

    def _open(self) -> None:
        is_new = not os.path.exists(self.path) or os.path.getsize(self.path) == 0
        self._fh = open(self.path, "a", newline="", encoding="utf-8")
        self._writer = csv.writer(self._fh)
        if is_new:
            self._writer.writerow(TradeRecord.columns())
            self._fh.flush()
            logger.info("created %s", self.path)

    def _write_rows(self, records: Sequence[TradeRecord]) -> BatchResult:
        if self._fh is None:
            try:
                self._open()
            except OSError as e:
                raise SinkError(f"cannot open {self.path}: {e}") from e
        written = failed = 0
        for rec in records:
            try:
                self._writer.writerow(astuple(rec))
                self._fh.flush()
                written += 1
            except (csv.Error, OSError) as e:
                failed += 1
                logger.warning("CSV row for tx %s rejected: %s", rec.tx_hash, e)
        return BatchResult(written=written, failed=failed)

    async def write_batch(self, records: Sequence[TradeRecord]) -> BatchResult:
        async with self._lock:
            return await asyncio.to_thread(self._write_rows, records)

    async def close(self) -> None:
        async with self._lock:
            if self._fh is not None:
                self._fh.close()
                self._fh = None
                self._writer = None
