import json
import logging
from decimal import Decimal

import pytest
from websockets.asyncio.server import serve

from poolwatch.adapters.ws_subscription import WebsocketEventSource
from poolwatch.application.pipeline import IngestionPipeline
from poolwatch.application.session import SessionState, SubscriptionSession, build_record
from poolwatch.domain.decoding import SWAP_T0, decode_swap
from poolwatch.domain.errors import TransportError
from poolwatch.domain.models import RawLog
from conftest import POOL, FakePipeline, FakeSource, ListSink, swap_log


def _clock() -> str:
    return "2024-05-01 12:00:00"


def _malformed() -> RawLog:
    log = swap_log(tx_hash="0x" + "ee" * 32)
    return RawLog(address=log.address, topics=log.topics, data_hex="0xdeadbeef", tx_hash=log.tx_hash)


@pytest.mark.asyncio
async def test_streams_decoded_trades_until_peer_closes(pool_config):
    logs = [swap_log(tx_hash="0x" + f"{i:064x}") for i in range(3)]
    source = FakeSource([logs])
    pipeline = FakePipeline()
    session = SubscriptionSession(source, pipeline, pool_config, clock=_clock)

    term = await session.run()

    assert term.reason == "stream_ended"
    assert term.processed == 3
    assert session.state is SessionState.TERMINATED
    assert source.subscriptions == [(POOL, SWAP_T0)]
    assert [r.tx_hash for r in pipeline.records] == [l.tx_hash for l in logs]


@pytest.mark.asyncio
async def test_malformed_log_mid_stream_is_skipped(pool_config, caplog):
    good1, good2 = swap_log(tx_hash="0x" + "01" * 32), swap_log(tx_hash="0x" + "02" * 32)
    source = FakeSource([[good1, _malformed(), good2]])
    pipeline = FakePipeline()
    session = SubscriptionSession(source, pipeline, pool_config, clock=_clock)

    with caplog.at_level(logging.WARNING, logger="poolwatch.application.session"):
        term = await session.run()

    assert term.reason == "stream_ended"
    assert (term.processed, term.skipped) == (2, 1)
    assert [r.tx_hash for r in pipeline.records] == [good1.tx_hash, good2.tx_hash]
    assert "skipping undecodable log" in caplog.text


@pytest.mark.asyncio
async def test_removed_logs_are_skipped(pool_config):
    source = FakeSource([[swap_log(removed=True), swap_log()]])
    pipeline = FakePipeline()
    term = await SubscriptionSession(source, pipeline, pool_config, clock=_clock).run()
    assert (term.processed, term.skipped) == (1, 1)


@pytest.mark.asyncio
async def test_transport_error_mid_stream_terminates_session(pool_config):
    source = FakeSource([[swap_log(), TransportError("connection reset")]])
    pipeline = FakePipeline()
    term = await SubscriptionSession(source, pipeline, pool_config, clock=_clock).run()
    assert term.reason == "transport_error"
    assert term.error == "connection reset"
    assert term.processed == 1


@pytest.mark.asyncio
async def test_connect_failure_terminates_session(pool_config):
    source = FakeSource([TransportError("refused")])
    session = SubscriptionSession(source, FakePipeline(), pool_config, clock=_clock)
    term = await session.run()
    assert term.reason == "transport_error"
    assert session.state is SessionState.TERMINATED


@pytest.mark.asyncio
async def test_pipeline_closed_terminates_session(pool_config):
    source = FakeSource([[swap_log(), swap_log(), swap_log()]])
    pipeline = FakePipeline(fail_after=1)
    term = await SubscriptionSession(source, pipeline, pool_config, clock=_clock).run()
    assert term.reason == "pipeline_closed"
    assert term.processed == 1
    assert len(pipeline.records) == 1


@pytest.mark.asyncio
async def test_session_feeds_real_pipeline(pool_config):
    sink = ListSink()
    pipeline = IngestionPipeline(sink, batch_size=2, capacity=4)
    pipeline.start()
    logs = [swap_log(tx_hash="0x" + f"{i:064x}") for i in range(5)]
    term = await SubscriptionSession(FakeSource([logs]), pipeline, pool_config, clock=_clock).run()
    await pipeline.join()

    assert term.processed == 5
    assert [r.tx_hash for r in sink.records] == [l.tx_hash for l in logs[:4]]
    assert pipeline.pending == 1
    await pipeline.close()


def test_build_record_fields(pool_config):
    log = swap_log()
    rec = build_record(log, decode_swap(log), pool_config, "2024-05-01 12:00:00")
    assert rec.timestamp == "2024-05-01 12:00:00"
    assert rec.tx_hash == log.tx_hash
    assert rec.pool == POOL
    assert rec.liquidity == "12345678901234567890"
    assert rec.amount1 == "-1666000000000000000"
    assert rec.decimal_shift == -12
    assert rec.block_number == 19_000_000
    assert 2000 < Decimal(rec.price) < 4000
    assert rec.price_f64 == pytest.approx(float(Decimal(rec.price)))


@pytest.mark.asyncio
async def test_bad_notification_from_websocket_does_not_end_session(pool_config):
    good1, good2 = swap_log(tx_hash="0x" + "01" * 32), swap_log(tx_hash="0x" + "02" * 32)

    def frame(log, block="0x1"):
        return json.dumps({"jsonrpc": "2.0", "method": "eth_subscription", "params": {
            "subscription": "0xsub1",
            "result": {"address": log.address, "topics": list(log.topics), "data": log.data_hex,
                       "blockNumber": block, "transactionHash": log.tx_hash, "logIndex": "0x0"}}})

    async def handler(ws):
        req = json.loads(await ws.recv())
        await ws.send(json.dumps({"jsonrpc": "2.0", "id": req["id"], "result": "0xsub1"}))
        await ws.send(frame(good1))
        await ws.send(frame(swap_log(tx_hash="0x" + "0b" * 32), block="0xzz"))
        await ws.send(frame(good2))

    async with serve(handler, "127.0.0.1", 0) as server:
        port = server.sockets[0].getsockname()[1]
        pipeline = FakePipeline()
        session = SubscriptionSession(WebsocketEventSource(f"ws://127.0.0.1:{port}"), pipeline, pool_config, clock=_clock)
        term = await session.run()

    assert term.reason == "stream_ended"
    assert [r.tx_hash for r in pipeline.records] == [good1.tx_hash, good2.tx_hash]
