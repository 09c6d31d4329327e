from __future__ import annotations
import logging
import httpx
from eth_utils import to_checksum_address
from ..domain.errors import MetadataError
from ..domain.value_types import Address
from ..ports.metadata import MetadataClient

logger = logging.getLogger(__name__)

# 4-byte function selectors
DECIMALS_SEL = "0x313ce567"   # decimals()
TOKEN0_SEL   = "0x0dfe1681"   # token0()
TOKEN1_SEL   = "0xd21220a7"   # token1()

def _word_int(result: str) -> int:
    h = result[2:] if result[:2].lower() == "0x" else result
    if len(h) < 64:
        raise MetadataError(f"eth_call returned {len(h)//2} bytes, expected a 32-byte word")
    return int(h[:64], 16)

def _word_address(result: str) -> Address:
    v = _word_int(result)
    return Address(to_checksum_address("0x" + f"{v:064x}"[-40:]))

class HttpxRPC(MetadataClient):
    def __init__(self, rpc_url: str, timeout_s: int = 20, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.rpc_url = rpc_url
        self.client = httpx.AsyncClient(
            http2=True,
            timeout=httpx.Timeout(timeout_s),
            transport=transport,
        )

    async def call(self, to: Address, selector: str) -> str:
        payload = {"jsonrpc":"2.0","id":1,"method":"eth_call","params":[
            {"to": str(to), "data": selector}, "latest",
        ]}
        try:
            r = await self.client.post(self.rpc_url, json=payload)
            r.raise_for_status()
            data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            raise MetadataError(f"eth_call {selector} on {to} failed: {e}") from e
        if "error" in data:
            err = data["error"]
            msg = err.get("message") if isinstance(err, dict) else str(err)
            raise MetadataError(f"eth_call {selector} on {to} RPC error: {msg}")
        result = data.get("result")
        if not isinstance(result, str) or result in ("", "0x"):
            raise MetadataError(f"eth_call {selector} on {to} returned no data")
        return result

    async def token_decimals(self, token: Address) -> int:
        decimals = _word_int(await self.call(token, DECIMALS_SEL))
        if decimals > 255:
            raise MetadataError(f"decimals() of {token} out of uint8 range: {decimals}")
        return decimals

    async def pool_tokens(self, pool: Address) -> tuple[Address, Address]:
        t0 = _word_address(await self.call(pool, TOKEN0_SEL))
        t1 = _word_address(await self.call(pool, TOKEN1_SEL))
        logger.debug("pool %s tokens: token0=%s token1=%s", pool, t0, t1)
        return t0, t1

    async def aclose(self) -> None:
        await self.client.aclose()
