"""
Event Monitoring Tests

logsSubscribe bookkeeping and notification routing over a fake websocket.
"""

import asyncio
import json

import pytest

from mirrorbot.core.errors import GatewayUnavailableError
from mirrorbot.services.events.models import LogNotification
from mirrorbot.services.events.websocket_monitor import SolanaLogsMonitor


class _FakeWebSocket:
    """Replies to each JSON-RPC request on the next loop iteration."""

    def __init__(self, monitor, replies):
        self.monitor = monitor
        self.replies = replies
        self.sent = []

    async def send(self, message):
        request = json.loads(message)
        self.sent.append(request)
        reply = {"jsonrpc": "2.0", "id": request["id"], **self.replies[request["method"]]}
        asyncio.get_running_loop().call_soon(self.monitor._handle_message, reply)

    async def close(self):
        pass


@pytest.fixture
def monitor():
    return SolanaLogsMonitor("ws://localhost:8900", request_timeout_s=1.0)


def connect(monitor, replies):
    ws = _FakeWebSocket(monitor, replies)
    monitor._ws = ws
    monitor._connected.set()
    return ws


def notification(subscription, signature, err=None):
    return {
        "jsonrpc": "2.0",
        "method": "logsNotification",
        "params": {
            "subscription": subscription,
            "result": {
                "context": {"slot": 123},
                "value": {"signature": signature, "err": err, "logs": ["Program log: swap"]},
            },
        },
    }


class TestSolanaLogsMonitor:
    """Tests for the logs subscription client."""

    @pytest.mark.asyncio
    async def test_subscribe_and_route_notifications(self, monitor):
        ws = connect(monitor, {"logsSubscribe": {"result": 99}})
        received = []

        handle = await monitor.subscribe_logs("Wallet1111", "confirmed", received.append)

        assert handle == 1
        assert ws.sent[0]["params"] == [{"mentions": ["Wallet1111"]}, {"commitment": "confirmed"}]

        monitor._handle_message(notification(99, "sig1"))
        monitor._handle_message(notification(99, "sig2", err={"InstructionError": [0, "Custom"]}))
        monitor._handle_message(notification(42, "unknown-subscription"))

        assert [n.signature for n in received] == ["sig1", "sig2"]
        assert isinstance(received[0], LogNotification)
        assert received[0].slot == 123
        assert received[0].failed is False
        assert received[1].failed is True

    @pytest.mark.asyncio
    async def test_subscribe_error_reply(self, monitor):
        connect(monitor, {"logsSubscribe": {"error": {"code": -32602, "message": "Invalid param"}}})

        with pytest.raises(GatewayUnavailableError):
            await monitor.subscribe_logs("Wallet1111", "confirmed", lambda n: None)

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_routing(self, monitor):
        ws = connect(monitor, {"logsSubscribe": {"result": 7}, "logsUnsubscribe": {"result": True}})
        received = []
        handle = await monitor.subscribe_logs("Wallet1111", "confirmed", received.append)

        await monitor.unsubscribe(handle)
        monitor._handle_message(notification(7, "late"))

        assert ws.sent[-1]["method"] == "logsUnsubscribe"
        assert ws.sent[-1]["params"] == [7]
        assert received == []

    @pytest.mark.asyncio
    async def test_subscription_registered_while_disconnected(self, monitor):
        """Accounts added before the socket is up are subscribed on connect."""
        handle = await monitor.subscribe_logs("Wallet1111", "confirmed", lambda n: None)

        assert handle == 1
        assert monitor.is_connected is False

    @pytest.mark.asyncio
    async def test_stop_clears_state(self, monitor):
        connect(monitor, {"logsSubscribe": {"result": 5}})
        await monitor.subscribe_logs("Wallet1111", "confirmed", lambda n: None)

        await monitor.stop()

        assert monitor.is_connected is False
        assert monitor._subscriptions == {}

    @pytest.mark.asyncio
    async def test_connect_timeout_tears_down_reconnect_loop(self, monitor, monkeypatch):
        """A failed start leaves no reconnect task behind and can be retried."""
        cancelled = asyncio.Event()

        async def never_connects():
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                cancelled.set()
                raise

        monkeypatch.setattr(monitor, "_run", never_connects)
        monitor._connect_timeout_s = 0.05

        with pytest.raises(GatewayUnavailableError):
            await monitor.start()

        assert cancelled.is_set()
        assert monitor._running is False
        assert monitor._task is None

        # A second start attempt runs the connect loop again
        with pytest.raises(GatewayUnavailableError):
            await monitor.start()
