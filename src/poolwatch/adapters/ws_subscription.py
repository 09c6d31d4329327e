from __future__ import annotations
import asyncio, json, logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, InvalidHandshake, InvalidURI

from ..domain.errors import TransportError
from ..domain.models import RawLog
from ..domain.value_types import Address, Topic0, TxHash
from ..ports.events import EventSource

logger = logging.getLogger(__name__)

def _hex_int(v: Any) -> int | None:
    if v is None: return None
    if isinstance(v, int): return v
    s = str(v)
    return int(s, 16) if s[:2].lower() == "0x" else int(s)

def parse_log(rl: dict[str, Any]) -> RawLog:
    """Normalize one eth_subscription `result` object into a RawLog."""
    topics = tuple(str(t).lower() for t in rl.get("topics", []))
    return RawLog(
        address=Address(str(rl.get("address", "")).lower()),
        topics=topics,
        data_hex=str(rl.get("data") or "0x"),
        tx_hash=TxHash(str(rl.get("transactionHash") or "").lower()),
        block_number=_hex_int(rl.get("blockNumber")),
        log_index=_hex_int(rl.get("logIndex")),
        removed=bool(rl.get("removed", False)),
    )

def subscribe_payload(address: Address, topic0: Topic0, req_id: int = 1) -> dict[str, Any]:
    return {"jsonrpc":"2.0","id":req_id,"method":"eth_subscribe","params":[
        "logs", {"address": str(address), "topics": [str(topic0).lower()]},
    ]}

class WebsocketEventSource(EventSource):
    def __init__(
        self,
        ws_url: str,
        *,
        open_timeout_s: float = 10,
        ping_interval_s: float | None = 20,
        ping_timeout_s: float | None = 20,
        subscribe_timeout_s: float = 10,
    ) -> None:
        self.ws_url = ws_url
        self.open_timeout_s = open_timeout_s
        self.ping_interval_s = ping_interval_s
        self.ping_timeout_s = ping_timeout_s
        self.subscribe_timeout_s = subscribe_timeout_s

    @asynccontextmanager
    async def subscribe(self, address: Address, topic0: Topic0) -> AsyncIterator[AsyncIterator[RawLog]]:
        logger.info("connecting to %s", self.ws_url)
        try:
            ws = await connect(
                self.ws_url,
                open_timeout=self.open_timeout_s,
                ping_interval=self.ping_interval_s,
                ping_timeout=self.ping_timeout_s,
                max_size=10 * 1024 * 1024,
            )
        except (OSError, InvalidHandshake, InvalidURI, asyncio.TimeoutError) as e:
            raise TransportError(f"connect to {self.ws_url} failed: {e}") from e
        try:
            sub_id = await self._handshake(ws, address, topic0)
            logger.info("subscribed to %s logs of %s (id=%s)", topic0, address, sub_id)
            yield self._iter_logs(ws, sub_id)
        finally:
            await ws.close()

    async def _handshake(self, ws: ClientConnection, address: Address, topic0: Topic0) -> str:
        try:
            await ws.send(json.dumps(subscribe_payload(address, topic0)))
            raw = await asyncio.wait_for(ws.recv(), timeout=self.subscribe_timeout_s)
        except (ConnectionClosed, OSError, asyncio.TimeoutError) as e:
            raise TransportError(f"eth_subscribe failed: {e!r}") from e
        try:
            resp = json.loads(raw)
        except json.JSONDecodeError as e:
            raise TransportError(f"eth_subscribe returned invalid JSON: {e}") from e
        if not isinstance(resp, dict):
            raise TransportError(f"eth_subscribe returned a non-object reply: {raw!r:.80}")
        if "error" in resp:
            err = resp["error"]
            msg = err.get("message") if isinstance(err, dict) else str(err)
            raise TransportError(f"eth_subscribe RPC error: {msg}")
        return str(resp.get("result", "unknown"))

    async def _iter_logs(self, ws: ClientConnection, sub_id: str) -> AsyncIterator[RawLog]:
        # iteration stops on a clean close and raises on an abnormal one
        try:
            async for raw in ws:
                try:
                    msg = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("ignoring non-JSON frame (%d bytes)", len(raw))
                    continue
                if not isinstance(msg, dict) or msg.get("method") != "eth_subscription":
                    continue
                params = msg.get("params")
                if not isinstance(params, dict):
                    logger.warning("ignoring eth_subscription frame without params object")
                    continue
                if params.get("subscription") not in (None, sub_id):
                    continue
                result = params.get("result")
                if not isinstance(result, dict):
                    continue
                try:
                    log = parse_log(result)
                except (ValueError, TypeError, AttributeError) as e:
                    logger.warning("ignoring malformed log notification (tx %s): %s", result.get("transactionHash"), e)
                    continue
                yield log
        except (ConnectionClosedError, OSError) as e:
            raise TransportError(f"subscription stream failed: {e!r}") from e
