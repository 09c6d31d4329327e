from __future__ import annotations
from typing import NewType, Literal

Address = NewType("Address", str)   # 0x-prefixed, checksum or lowercase
Topic0  = NewType("Topic0", str)    # 66-char 0x-hash
TxHash  = NewType("TxHash", str)    # 66-char 0x-hash, lowercase
SinkKind = Literal["csv", "parquet"]
TerminationReason = Literal["stream_ended", "transport_error", "pipeline_closed"]
