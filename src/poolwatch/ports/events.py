# poolwatch/ports/events.py
from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import AsyncIterator, Protocol
from ..domain.models import RawLog
from ..domain.value_types import Address, Topic0


class EventSource(Protocol):
    """Port for a live log subscription (e.g., websocket eth_subscribe)."""

    def subscribe(
        self,
        address: Address,
        topic0: Topic0,
    ) -> AbstractAsyncContextManager[AsyncIterator[RawLog]]:
        """
        Connect and subscribe on enter; the yielded iterator ends when the peer
        closes cleanly and raises TransportError when the connection fails.
        """
