from __future__ import annotations

from eth_utils import to_checksum_address

from .errors import DecodeError
from .models import RawLog, SwapEvent


# keccak("Swap(address,address,int256,int256,uint160,uint128,int24)")
SWAP_SIGNATURE = "Swap(address,address,int256,int256,uint160,uint128,int24)"
SWAP_T0 = "0xc42079f94a6350d7e6235f29174924f928cc2ac818eb64fed8004e115fbcca67"

_SWAP_WORDS = 5

# --------- 32B word slicing (fast, no eth_abi) --------------------------------
def _word(b: bytes, i: int) -> bytes:
    return b[i*32:(i+1)*32]

def _uint(w: bytes, bits: int) -> int:
    v = int.from_bytes(w, "big")
    if v >> bits:
        raise DecodeError(f"value does not fit in uint{bits}")
    return v

def _int(w: bytes, bits: int) -> int:
    v = int.from_bytes(w, "big", signed=True)
    lim = 1 << (bits - 1)
    if not -lim <= v < lim:
        raise DecodeError(f"value does not fit in int{bits}")
    return v

def _addr_from_topic(t: str) -> str:
    h = t[2:] if t[:2].lower() == "0x" else t
    if len(h) != 64:
        raise DecodeError(f"indexed address topic has {len(h)} hex chars, expected 64")
    if int(h[:24], 16):
        raise DecodeError("indexed address topic has non-zero padding")
    return to_checksum_address("0x" + h[-40:])

def _hexstr_to_bytes(s: str) -> bytes:
    h = s[2:] if s[:2].lower() == "0x" else s
    if len(h) % 2:
        raise DecodeError("odd-length data hex")
    try:
        return bytes.fromhex(h)
    except ValueError as e:
        raise DecodeError(f"data is not hex: {e}") from None

# ---------------------------- public API --------------------------------------

def decode_swap(log: RawLog) -> SwapEvent:
    """
    Decode a pool Swap log. Raises DecodeError on any malformed field; callers
    skip the log and keep going.
    """
    if len(log.topics) != 3:
        raise DecodeError(f"expected 3 topics, got {len(log.topics)}")
    if (log.topic0 or "").lower() != SWAP_T0:
        raise DecodeError(f"unexpected topic0 {log.topic0}")

    data = _hexstr_to_bytes(log.data_hex)
    if len(data) < 32 * _SWAP_WORDS:
        raise DecodeError(f"data has {len(data)} bytes, expected {32 * _SWAP_WORDS}")

    try:
        sender = _addr_from_topic(log.topics[1])
        recipient = _addr_from_topic(log.topics[2])
    except ValueError as e:
        raise DecodeError(f"bad indexed address: {e}") from None

    # ["int256","int256","uint160","uint128","int24"]
    return SwapEvent(
        sender=sender,
        recipient=recipient,
        amount0=_int(_word(data, 0), 256),
        amount1=_int(_word(data, 1), 256),
        sqrt_price_x96=_uint(_word(data, 2), 160),
        liquidity=_uint(_word(data, 3), 128),
        tick=_int(_word(data, 4), 24),
    )
