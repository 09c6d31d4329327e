# poolwatch/ports/metadata.py
from __future__ import annotations

from typing import Protocol
from ..domain.value_types import Address


class MetadataClient(Protocol):
    """Port for read-only contract calls used once at startup."""

    async def call(self, to: Address, selector: str) -> str:
        """Return the raw 0x-hex result of eth_call(to, selector)."""

    async def token_decimals(self, token: Address) -> int:
        """Return the ERC-20 decimals() of `token`."""

    async def pool_tokens(self, pool: Address) -> tuple[Address, Address]:
        """Return (token0, token1) of a pool."""
