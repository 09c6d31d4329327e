from __future__ import annotations
import os
from dataclasses import dataclass, replace
from typing import Any, Mapping

from dotenv import load_dotenv
from eth_utils import is_address, to_checksum_address

from .domain.errors import ConfigError
from .domain.value_types import Address, SinkKind

# Uniswap V3 USDC/WETH 0.05% on mainnet; token0=USDC(6), token1=WETH(18)
DEFAULT_POOL = "0x88e6A0c2dDD26FEEb64F039a2c41296FcB3f5640"
DEFAULT_POOL_SHIFT = 6 - 18

DEFAULT_OUTPUT: dict[str, str] = {"csv": "swaps.csv", "parquet": "swaps_parquet"}


def _ws_to_http(url: str) -> str:
    if url.startswith("wss://"): return "https://" + url[len("wss://"):]
    if url.startswith("ws://"): return "http://" + url[len("ws://"):]
    return url


def _int(env: Mapping[str, str], key: str, default: int | None) -> int | None:
    raw = env.get(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from None


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {raw!r}") from None


@dataclass(slots=True, frozen=True)
class Settings:
    rpc_url: str
    metadata_rpc_url: str
    pool_address: Address
    decimal_shift: int | None          # None -> look up token decimals on chain
    sink: SinkKind
    output: str
    batch_size: int = 10
    queue_capacity: int = 100
    reconnect_delay_s: float = 5.0
    log_level: str = "INFO"
    shift_defaulted: bool = False      # decimal_shift filled in for the default pool, not configured

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, *, dotenv: bool = True) -> "Settings":
        if environ is None:
            if dotenv:
                load_dotenv()
            environ = os.environ
        env = environ

        rpc_url = env.get("RPC_URL", "").strip()
        if not rpc_url:
            raise ConfigError("RPC_URL must be set")

        pool_raw = env.get("POOL_ADDRESS", "").strip() or DEFAULT_POOL
        sink = (env.get("SINK", "").strip().lower() or "csv")
        shift = _int(env, "DECIMAL_SHIFT", None)

        settings = cls(
            rpc_url=rpc_url,
            metadata_rpc_url=env.get("METADATA_RPC_URL", "").strip() or _ws_to_http(rpc_url),
            pool_address=Address(pool_raw),
            decimal_shift=shift,
            sink=sink,  # type: ignore[arg-type]
            output=env.get("OUTPUT_FILE", "").strip() or DEFAULT_OUTPUT.get(sink, ""),
            batch_size=_int(env, "BATCH_SIZE", 10),
            queue_capacity=_int(env, "QUEUE_CAPACITY", 100),
            reconnect_delay_s=_float(env, "RECONNECT_DELAY", 5.0),
            log_level=(env.get("LOG_LEVEL", "").strip() or "INFO").upper(),
        )
        return settings.validated()

    def with_overrides(self, **overrides: Any) -> "Settings":
        """Apply non-None overrides (e.g. from CLI options) and re-validate."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        if "sink" in changes and "output" not in changes and self.output == DEFAULT_OUTPUT.get(self.sink):
            changes["output"] = DEFAULT_OUTPUT.get(str(changes["sink"]).lower(), self.output)
        if "decimal_shift" in changes:
            changes["shift_defaulted"] = False
        elif ("pool_address" in changes and self.shift_defaulted
                and str(changes["pool_address"]).lower() != DEFAULT_POOL.lower()):
            # the default pool's shift does not carry over to another pool
            changes["decimal_shift"] = None
            changes["shift_defaulted"] = False
        return replace(self, **changes).validated()

    def validated(self) -> "Settings":
        if not self.rpc_url.startswith(("ws://", "wss://")):
            raise ConfigError(f"RPC_URL must be a ws:// or wss:// URL, got {self.rpc_url!r}")
        if not is_address(self.pool_address):
            raise ConfigError(f"invalid pool address: {self.pool_address!r}")
        sink = str(self.sink).lower()
        if sink not in DEFAULT_OUTPUT:
            raise ConfigError(f"SINK must be one of {sorted(DEFAULT_OUTPUT)}, got {self.sink!r}")
        if self.batch_size < 1:
            raise ConfigError("BATCH_SIZE must be >= 1")
        if self.queue_capacity < 1:
            raise ConfigError("QUEUE_CAPACITY must be >= 1")
        if self.reconnect_delay_s < 0:
            raise ConfigError("RECONNECT_DELAY must be >= 0")
        if not self.output:
            raise ConfigError("OUTPUT_FILE must not be empty")

        pool = Address(to_checksum_address(self.pool_address))
        shift, defaulted = self.decimal_shift, self.shift_defaulted
        if shift is None and pool.lower() == DEFAULT_POOL.lower():
            shift, defaulted = DEFAULT_POOL_SHIFT, True
        return replace(self, pool_address=pool, sink=sink, decimal_shift=shift,
                       shift_defaulted=defaulted, log_level=self.log_level.upper())
