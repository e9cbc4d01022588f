"""
WebSocket-based account monitoring using Solana's ``logsSubscribe``.

One connection carries every subscription. The connection reconnects with
exponential backoff and re-subscribes every registered account.
"""

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from ...core.errors import GatewayUnavailableError
from .models import LogNotification

logger = logging.getLogger(__name__)

LogCallback = Callable[[LogNotification], None]


@dataclass
class _LogSubscription:
    handle: int
    account: str
    commitment: str
    callback: LogCallback
    server_id: Optional[int] = None


class SolanaLogsMonitor:
    """
    Monitor account activity via a Solana websocket endpoint.

    Usage:
        monitor = SolanaLogsMonitor("wss://api.mainnet-beta.solana.com")
        await monitor.start()
        handle = await monitor.subscribe_logs(address, "confirmed", on_logs)
        ...
        await monitor.unsubscribe(handle)
        await monitor.stop()

    Callbacks are invoked synchronously from the receive loop and must not
    block; schedule any real work on a task.
    """

    def __init__(
        self,
        ws_url: str,
        *,
        request_timeout_s: float = 10.0,
        connect_timeout_s: float = 15.0,
        max_retry_delay_s: float = 60.0,
    ):
        self.ws_url = ws_url
        self._request_timeout_s = request_timeout_s
        self._connect_timeout_s = connect_timeout_s
        self._max_retry_delay_s = max_retry_delay_s

        self._ws: Optional[Any] = None
        self._subscriptions: Dict[int, _LogSubscription] = {}
        self._by_server_id: Dict[int, _LogSubscription] = {}
        self._pending: Dict[int, asyncio.Future] = {}
        self._request_ids = itertools.count(1)
        self._handles = itertools.count(1)
        self._connected = asyncio.Event()
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    async def start(self) -> None:
        """Open the connection and wait until it is usable."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run(), name="solana-logs-monitor")
        try:
            await asyncio.wait_for(self._connected.wait(), timeout=self._connect_timeout_s)
        except asyncio.TimeoutError as exc:
            await self.stop()
            raise GatewayUnavailableError(
                f"Could not connect to {self.ws_url} within {self._connect_timeout_s}s",
                stage="subscribe",
            ) from exc

        logger.info("Logs websocket connected: %s", self.ws_url)

    async def stop(self) -> None:
        """Close the connection and forget every subscription."""
        self._running = False
        self._connected.clear()

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._ws is not None:
            await self._ws.close()
            self._ws = None

        self._fail_pending(ConnectionError("monitor stopped"))
        self._subscriptions.clear()
        self._by_server_id.clear()
        logger.info("Logs websocket stopped")

    async def subscribe_logs(self, account: str, commitment: str, callback: LogCallback) -> int:
        """Subscribe to logs mentioning ``account``. Returns a local handle."""
        subscription = _LogSubscription(
            handle=next(self._handles),
            account=account,
            commitment=commitment,
            callback=callback,
        )
        self._subscriptions[subscription.handle] = subscription

        if self._ws is not None and self.is_connected:
            try:
                await self._send_subscribe(subscription)
            except Exception:
                self._subscriptions.pop(subscription.handle, None)
                raise

        return subscription.handle

    async def unsubscribe(self, handle: int) -> None:
        subscription = self._subscriptions.pop(handle, None)
        if subscription is None:
            return

        server_id = subscription.server_id
        if server_id is None:
            return
        self._by_server_id.pop(server_id, None)

        if self._ws is None:
            return
        result = await self._request("logsUnsubscribe", [server_id])
        if result is not True:
            raise GatewayUnavailableError(
                f"logsUnsubscribe for {subscription.account} returned {result!r}",
                stage="unsubscribe",
            )

    # ---------------------------
    # Connection loop
    # ---------------------------
    async def _run(self) -> None:
        retry_delay = 1

        while self._running:
            listener: Optional[asyncio.Task] = None
            try:
                async with websockets.connect(self.ws_url, ping_interval=20) as ws:
                    self._ws = ws
                    retry_delay = 1
                    listener = asyncio.create_task(self._listen(ws))

                    for subscription in list(self._subscriptions.values()):
                        try:
                            await self._send_subscribe(subscription)
                        except Exception as e:
                            logger.error("Failed to subscribe logs for %s: %s", subscription.account, e)

                    self._connected.set()
                    await listener

            except asyncio.CancelledError:
                if listener:
                    listener.cancel()
                raise
            except ConnectionClosed as e:
                logger.warning("Logs websocket closed: %s", e)
            except Exception as e:
                logger.error("Logs websocket error: %s", e)
            finally:
                self._connected.clear()
                self._ws = None
                self._by_server_id.clear()
                for subscription in self._subscriptions.values():
                    subscription.server_id = None
                self._fail_pending(ConnectionError("websocket disconnected"))

            if self._running:
                logger.info("Reconnecting logs websocket in %ss...", retry_delay)
                await asyncio.sleep(retry_delay)
                retry_delay = min(retry_delay * 2, self._max_retry_delay_s)

    async def _listen(self, ws) -> None:
        async for message in ws:
            try:
                data = json.loads(message)
            except json.JSONDecodeError:
                logger.warning("Invalid JSON received: %s", str(message)[:100])
                continue

            try:
                self._handle_message(data)
            except Exception as e:
                logger.error("Error handling websocket message: %s", e, exc_info=True)

    def _handle_message(self, data: Dict[str, Any]) -> None:
        if "id" in data and data["id"] in self._pending:
            future = self._pending.pop(data["id"])
            if future.done():
                return
            if "error" in data:
                future.set_exception(GatewayUnavailableError(f"RPC error: {data['error']}"))
            else:
                future.set_result(data.get("result"))
            return

        if data.get("method") != "logsNotification":
            return

        params = data.get("params") or {}
        subscription = self._by_server_id.get(params.get("subscription"))
        if subscription is None:
            return

        result = params.get("result") or {}
        value = result.get("value") or {}
        notification = LogNotification(
            signature=value.get("signature", ""),
            err=value.get("err"),
            logs=value.get("logs") or [],
            slot=(result.get("context") or {}).get("slot"),
        )
        if not notification.signature:
            return
        subscription.callback(notification)

    # ---------------------------
    # Requests
    # ---------------------------
    async def _send_subscribe(self, subscription: _LogSubscription) -> None:
        server_id = await self._request(
            "logsSubscribe",
            [{"mentions": [subscription.account]}, {"commitment": subscription.commitment}],
        )
        if not isinstance(server_id, int):
            raise GatewayUnavailableError(
                f"logsSubscribe for {subscription.account} returned {server_id!r}",
                stage="subscribe",
            )
        subscription.server_id = server_id
        self._by_server_id[server_id] = subscription
        logger.info("Subscribed to logs for %s (sub id %s)", subscription.account, server_id)

    async def _request(self, method: str, params: List[Any]) -> Any:
        ws = self._ws
        if ws is None:
            raise GatewayUnavailableError(f"{method}: websocket not connected")

        request_id = next(self._request_ids)
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await ws.send(json.dumps({"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}))
            return await asyncio.wait_for(future, timeout=self._request_timeout_s)
        except asyncio.TimeoutError as exc:
            raise GatewayUnavailableError(f"{method}: no response within {self._request_timeout_s}s") from exc
        except (ConnectionClosed, ConnectionError) as exc:
            raise GatewayUnavailableError(f"{method}: websocket closed") from exc
        finally:
            self._pending.pop(request_id, None)

    def _fail_pending(self, exc: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(exc)
        self._pending.clear()
