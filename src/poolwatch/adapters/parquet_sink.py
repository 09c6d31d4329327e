from __future__ import annotations
import asyncio, glob, logging, os
import pyarrow as pa, pyarrow.parquet as pq
from typing import Any, Sequence

from ..domain.errors import SinkError
from ..domain.models import BatchResult, TradeRecord
from ..ports.storage import TradeSink

logger = logging.getLogger(__name__)

TRADES_SCHEMA = pa.schema([
    pa.field("timestamp",     pa.large_string()),
    pa.field("tx_hash",       pa.large_string()),
    pa.field("pool",          pa.large_string()),
    pa.field("sender",        pa.large_string()),
    pa.field("recipient",     pa.large_string()),
    pa.field("price",         pa.large_string()),
    pa.field("price_f64",     pa.float64()),
    pa.field("liquidity",     pa.large_string()),    # uint128 does not fit int64
    pa.field("decimal_shift", pa.int32()),
    pa.field("amount0",       pa.large_string()),
    pa.field("amount1",       pa.large_string()),
    pa.field("tick",          pa.int32()),
    pa.field("block_number",  pa.int64()),
])

COLS = [f.name for f in TRADES_SCHEMA]

def _row_values(rec: TradeRecord) -> dict[str, Any]:
    """Validate one record against the schema; raises on a value Arrow would reject."""
    row = {name: getattr(rec, name) for name in COLS}
    for name in COLS:
        pa.scalar(row[name], type=TRADES_SCHEMA.field(name).type)
    return row

class ParquetTradeSink(TradeSink):
    """
    Each committed batch becomes one zstd Parquet shard, written to a temp file
    and renamed into place so readers never see a half-written batch.
    """
    def __init__(self, out_dir: str, codec: str = "zstd") -> None:
        self.out_dir = out_dir
        self.codec = codec
        os.makedirs(self.out_dir, exist_ok=True)
        self.shard_idx = self.next_shard_index()
        self._lock = asyncio.Lock()

    def next_shard_index(self) -> int:
        existing = sorted(glob.glob(os.path.join(self.out_dir, "trades_*.parquet")))
        if not existing:
            return 1
        last = os.path.basename(existing[-1]).split("_")[1].split(".")[0]
        return int(last) + 1

    def _commit(self, records: Sequence[TradeRecord]) -> BatchResult:
        cols: dict[str, list] = {name: [] for name in COLS}
        failed = 0
        for rec in records:
            try:
                row = _row_values(rec)
            except (pa.ArrowException, TypeError, ValueError, OverflowError) as e:
                failed += 1
                logger.warning("parquet row for tx %s rejected: %s", rec.tx_hash, e)
                continue
            for k, v in row.items():
                cols[k].append(v)

        written = len(cols["tx_hash"])
        if written == 0:
            return BatchResult(written=0, failed=failed)

        out_path = os.path.join(self.out_dir, f"trades_{self.shard_idx:06d}.parquet")
        tmp = out_path + ".tmp"
        try:
            table = pa.Table.from_pydict(cols, schema=TRADES_SCHEMA)
            pq.write_table(table, tmp, compression=self.codec)
            os.replace(tmp, out_path)
        except (pa.ArrowException, OSError) as e:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise SinkError(f"commit of {out_path} failed: {e}") from e
        self.shard_idx += 1
        logger.debug("wrote %s (rows=%d)", out_path, written)
        return BatchResult(written=written, failed=failed)

    async def write_batch(self, records: Sequence[TradeRecord]) -> BatchResult:
        async with self._lock:
            return await asyncio.to_thread(self._commit, records)

    async def close(self) -> None:
        return None
