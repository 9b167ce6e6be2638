"""
Unit tests for data/log_subscription.py.

Runs a real RpcTransport over the fake websocket to verify the subscribe
request, in-order delivery, skipping of unparseable notifications, error
channel propagation and idempotent unsubscribe.
"""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock, patch

import pytest

from data.log_subscription import SubscriptionError, subscribe
from data.rpc_transport import RpcTransport
from shared.types import LogFilter, RawLogEntry
from tests.conftest import (
    SAMPLE_CHAIN_ID,
    SAMPLE_CONTRACT,
    FakeWebSocket,
    event_topic,
    make_mint_log,
    settle,
)

SUB_ID = "0xc0ffee"

pytestmark = pytest.mark.usefixtures("patch_transport_logger")


@pytest.fixture(autouse=True)
def patch_subscription_logger():
    with patch("data.log_subscription.setup_module_logger") as mock_logger:
        mock_logger.return_value = MagicMock()
        yield mock_logger


@pytest.fixture
def ws():
    return FakeWebSocket({"eth_subscribe": SUB_ID, "eth_unsubscribe": True})


@pytest.fixture
async def transport(ws):
    t = RpcTransport(ws, SAMPLE_CHAIN_ID, "wss://node.test/ws", request_timeout=1.0)
    t.start()
    yield t
    await t.close()


# ---------------------------------------------------------------------------
# A. subscribe()
# ---------------------------------------------------------------------------


class TestSubscribe:
    async def test_sends_logs_filter(self, ws, transport):
        sub = await subscribe(transport, LogFilter(SAMPLE_CONTRACT))
        assert sub.subscription_id == SUB_ID
        assert ws.sent[0]["method"] == "eth_subscribe"
        assert ws.sent[0]["params"] == ["logs", {"address": SAMPLE_CONTRACT}]

    async def test_topic_filter(self, ws, transport):
        topic = event_topic("Mint(address,uint256)")
        await subscribe(transport, LogFilter(SAMPLE_CONTRACT, topics=(topic,)))
        assert ws.sent[0]["params"][1] == {"address": SAMPLE_CONTRACT, "topics": [[topic]]}

    async def test_error_response_raises(self):
        node = FakeWebSocket()
        t = RpcTransport(node, SAMPLE_CHAIN_ID, "wss://node.test/ws")
        t.start()
        pending = asyncio.create_task(subscribe(t, LogFilter(SAMPLE_CONTRACT)))
        await settle()
        node.feed(
            {
                "jsonrpc": "2.0",
                "id": node.sent[0]["id"],
                "error": {"code": -32000, "message": "filter not supported"},
            }
        )
        with pytest.raises(SubscriptionError, match="filter not supported"):
            await pending
        await t.close()

    async def test_rejected_on_timeout(self):
        silent = FakeWebSocket()
        t = RpcTransport(silent, SAMPLE_CHAIN_ID, "wss://node.test/ws")
        t.start()
        with pytest.raises(SubscriptionError, match="timed out"):
            await subscribe(t, LogFilter(SAMPLE_CONTRACT), timeout=0.05)
        await t.close()

    async def test_missing_subscription_id_raises(self):
        bad = FakeWebSocket({"eth_subscribe": None})
        t = RpcTransport(bad, SAMPLE_CHAIN_ID, "wss://node.test/ws")
        t.start()
        with pytest.raises(SubscriptionError, match="no subscription id"):
            await subscribe(t, LogFilter(SAMPLE_CONTRACT))
        await t.close()


# ---------------------------------------------------------------------------
# B. receive()
# ---------------------------------------------------------------------------


class TestReceive:
    async def test_logs_delivered_in_server_order(self, ws, transport):
        sub = await subscribe(transport, LogFilter(SAMPLE_CONTRACT))
        for i in range(3):
            ws.notify(SUB_ID, make_mint_log(amount=i, log_index=i))

        received = [await sub.receive() for _ in range(3)]
        assert all(isinstance(r, RawLogEntry) for r in received)
        assert [r.log_index for r in received] == [0, 1, 2]

    async def test_notification_racing_subscribe_response(self, ws, transport):
        # The node may push a log before the subscriber has registered.
        ws.notify(SUB_ID, make_mint_log(log_index=9))
        await settle()
        sub = await subscribe(transport, LogFilter(SAMPLE_CONTRACT))
        assert (await sub.receive()).log_index == 9

    async def test_unparseable_notification_skipped(self, ws, transport, patch_subscription_logger):
        sub = await subscribe(transport, LogFilter(SAMPLE_CONTRACT))
        ws.notify(SUB_ID, {"address": SAMPLE_CONTRACT})
        ws.notify(SUB_ID, make_mint_log(log_index=4))

        entry = await sub.receive()
        assert entry.log_index == 4
        patch_subscription_logger.return_value.warning.assert_called_once()

    @pytest.mark.parametrize("result", ["0xdeadbeef", [1, 2]])
    async def test_non_object_result_skipped(self, ws, transport, patch_subscription_logger, result):
        sub = await subscribe(transport, LogFilter(SAMPLE_CONTRACT))
        ws.notify(SUB_ID, result)
        ws.notify(SUB_ID, make_mint_log(log_index=5))

        entry = await sub.receive()
        assert entry.log_index == 5
        patch_subscription_logger.return_value.warning.assert_called_once()

    async def test_transport_loss_raises_subscription_error(self, ws, transport):
        sub = await subscribe(transport, LogFilter(SAMPLE_CONTRACT))
        ws.drop()
        with pytest.raises(SubscriptionError):
            await sub.receive()
        # Sticky: a second call fails the same way instead of blocking
        with pytest.raises(SubscriptionError):
            await sub.receive()

    async def test_buffered_logs_delivered_before_failure(self, ws, transport):
        sub = await subscribe(transport, LogFilter(SAMPLE_CONTRACT))
        ws.notify(SUB_ID, make_mint_log(log_index=1))
        ws.drop()
        await settle()

        assert (await sub.receive()).log_index == 1
        with pytest.raises(SubscriptionError):
            await sub.receive()


# ---------------------------------------------------------------------------
# C. unsubscribe()
# ---------------------------------------------------------------------------


class TestUnsubscribe:
    async def test_unsubscribe_is_idempotent(self, ws, transport):
        sub = await subscribe(transport, LogFilter(SAMPLE_CONTRACT))
        await sub.unsubscribe()
        await sub.unsubscribe()

        assert ws.sent_methods().count("eth_unsubscribe") == 1
        assert ws.sent[-1]["params"] == [SUB_ID]
        assert not sub.active
        with pytest.raises(SubscriptionError):
            await sub.receive()

    async def test_unsubscribe_on_dead_transport(self, ws, transport):
        sub = await subscribe(transport, LogFilter(SAMPLE_CONTRACT))
        ws.drop()
        await settle()
        await sub.unsubscribe()
        assert "eth_unsubscribe" not in ws.sent_methods()
        assert not sub.active
