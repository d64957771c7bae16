"""
GSOC subscriptions — live push of single-owner chunks over a Bee websocket.

    ws(s)://<bee>/gsoc/subscribe/<soc address hex>

Every frame is normalized to bytes (text, binary and buffer frames), empty
frames are dropped, and the rest are handed to ``handler.on_message`` one at
a time in arrival order. Frame, handler and transport errors go to
``handler.on_error``; nothing is raised to the subscriber.

Requires websockets for the connection.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable

from graffiti.bee.client import websocket_url
from graffiti.data import wrap_bytes
from graffiti.errors import InvalidArgumentError, TransportError

log = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"^[0-9a-f]{64}$")

Connect = Callable[[str], Awaitable[Any]]


async def _default_connect(url: str) -> Any:
    try:
        import websockets
    except ImportError:
        raise ImportError(
            "websockets is required for GSOC subscriptions. "
            "Install with: pip install websockets"
        )
    return await websockets.connect(url)


def assert_subscription_handler(handler: Any) -> None:
    """Raise TypeError unless ``handler`` has callable on_message and on_error."""
    if handler is None or isinstance(handler, (str, bytes, int, float, bool)):
        raise TypeError("SubscriptionHandler has to be object!")
    if not callable(getattr(handler, "on_message", None)):
        raise TypeError("on_message property of SubscriptionHandler has to be function!")
    if not callable(getattr(handler, "on_error", None)):
        raise TypeError("on_error property of SubscriptionHandler has to be function!")


def prepare_websocket_data(data: Any) -> bytes:
    """Normalize a websocket frame to bytes."""
    if isinstance(data, str):
        return data.encode("utf-8")
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    raise TypeError(f"unknown websocket data type: {type(data).__name__}")


async def _call(callback: Callable[[Any], Any], arg: Any) -> None:
    result = callback(arg)
    if asyncio.iscoroutine(result):
        await result


class Subscription:
    """A running GSOC subscription.

    Usage:
        sub = gsoc_subscribe(bee_url, address_hex, handler)
        ...
        sub.close()            # idempotent
        await sub.wait_closed()
    """

    def __init__(
        self,
        url: str,
        gsoc_address: bytes,
        handler: Any,
        connect: Connect | None = None,
    ) -> None:
        self.url = url
        self.gsoc_address = gsoc_address
        self._handler = handler
        self._connect = connect or _default_connect
        self._closed = False
        self._task: asyncio.Task | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """Start the reader task. Needs a running event loop."""
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._run())

    def close(self) -> None:
        """Stop the subscription. Safe to call any number of times."""
        if self._closed:
            return
        self._closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait_closed(self) -> None:
        """Wait until the reader task has finished and the socket is closed."""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        ws = None
        try:
            ws = await self._connect(self.url)
            log.info("Subscribed to GSOC %s", self.gsoc_address.hex()[:12])

            async for message in ws:
                if self._closed:
                    break
                await self._dispatch(message)

            log.info("GSOC %s connection ended", self.gsoc_address.hex()[:12])
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # ignore errors after the subscription was cancelled
            if not self._closed:
                log.warning("GSOC %s transport error: %s", self.gsoc_address.hex()[:12], e)
                await self._report(TransportError(f"GSOC subscription failed: {e}"))
        finally:
            self._closed = True
            if ws is not None:
                try:
                    await ws.close()
                except Exception as e:
                    log.debug("Error closing GSOC websocket: %s", e)

    async def _dispatch(self, message: Any) -> None:
        try:
            data = prepare_websocket_data(message)
        except TypeError as e:
            await self._report(e)
            return

        # ignore empty messages
        if not data:
            return

        try:
            await _call(self._handler.on_message, wrap_bytes(data))
        except Exception as e:
            await self._report(e)

    async def _report(self, error: Exception) -> None:
        try:
            await _call(self._handler.on_error, error)
        except Exception as e:
            log.error("GSOC error handler failed: %s", e)


def gsoc_subscribe(
    bee_url: str,
    address: str,
    handler: Any,
    *,
    connect: Connect | None = None,
) -> Subscription:
    """Subscribe to messages sent to the SOC ``address`` (64-char hex).

    Must be called from a running event loop; returns immediately while the
    connection is opened in the background. ``handler.on_message`` receives
    ``Data`` for every non-empty frame.
    """
    assert_subscription_handler(handler)

    if not isinstance(address, str) or not _ADDRESS_RE.match(address):
        raise InvalidArgumentError("SOC address has to be a 64-char lowercase hex string")

    sub = Subscription(
        websocket_url(bee_url, f"gsoc/subscribe/{address}"),
        bytes.fromhex(address),
        handler,
        connect,
    )
    sub.start()
    return sub

