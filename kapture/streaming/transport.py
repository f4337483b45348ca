"""Websocket transport for the streaming client.

aiohttp's client is asyncio based while the tracking engine is threaded, so
the transport owns a private event loop running on a daemon thread. Public
methods are thread-safe; ``send`` schedules the write and returns without
waiting for it.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import Future
from typing import Callable, Optional

import aiohttp

from ..config import SOCKET_CONNECT_TIMEOUT
from ..errors import StreamingError

LOGGER = logging.getLogger(__name__)

MessageHandler = Callable[[str], None]
CloseHandler = Callable[[str], None]


class WebSocketTransport:
    def __init__(self, url: str, *, connect_timeout: float = SOCKET_CONNECT_TIMEOUT):
        self.url = url
        self.connect_timeout = connect_timeout
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._http: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._on_message: Optional[MessageHandler] = None
        self._on_close: Optional[CloseHandler] = None
        self._lock = threading.Lock()

    @property
    def connected(self) -> bool:
        ws = self._ws
        return ws is not None and not ws.closed

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is None or self._loop.is_closed():
                self._loop = asyncio.new_event_loop()
                self._thread = threading.Thread(
                    target=self._loop.run_forever,
                    name="kapture-socket",
                    daemon=True,
                )
                self._thread.start()
            return self._loop

    def open(self, on_message: MessageHandler, on_close: CloseHandler) -> bool:
        """Connect and start reading; False on failure or timeout."""

        self._on_message = on_message
        self._on_close = on_close
        loop = self._ensure_loop()
        future = asyncio.run_coroutine_threadsafe(self._connect(), loop)
        try:
            future.result(timeout=self.connect_timeout)
        except Exception as exc:
            future.cancel()
            LOGGER.info("Socket connection to %s failed: %s", self.url, exc)
            asyncio.run_coroutine_threadsafe(self._close_http(), loop)
            return False
        LOGGER.info("Socket connected to %s", self.url)
        return True

    async def _connect(self) -> None:
        await self._close_http()
        self._http = aiohttp.ClientSession()
        self._ws = await self._http.ws_connect(self.url, autoping=True)
        asyncio.get_running_loop().create_task(self._read_loop(self._ws))

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        reason = "closed"
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    handler = self._on_message
                    if handler is not None:
                        try:
                            handler(msg.data)
                        except Exception:
                            LOGGER.error("Socket message handler failed", exc_info=True)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    reason = f"error: {ws.exception()}"
                    break
        finally:
            if self._ws is ws:
                self._ws = None
                on_close = self._on_close
                if on_close is not None:
                    on_close(reason)

    def send(self, text: str) -> None:
        ws = self._ws
        loop = self._loop
        if ws is None or ws.closed or loop is None:
            raise StreamingError("Socket is not connected")
        future = asyncio.run_coroutine_threadsafe(ws.send_str(text), loop)
        future.add_done_callback(_log_send_failure)

    async def _close_http(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None and not ws.closed:
            await ws.close()
        http, self._http = self._http, None
        if http is not None and not http.closed:
            await http.close()

    def close(self) -> None:
        """Close the socket (without firing the close handler) and the loop."""

        self._on_close = None
        with self._lock:
            loop, thread = self._loop, self._thread
            self._loop = None
            self._thread = None
        if loop is None:
            return
        try:
            asyncio.run_coroutine_threadsafe(self._close_http(), loop).result(timeout=5)
        except Exception:
            LOGGER.debug("Socket close did not complete cleanly", exc_info=True)
        loop.call_soon_threadsafe(loop.stop)
        if thread is not None:
            thread.join(timeout=5)
        loop.close()


def _log_send_failure(future: Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        LOGGER.debug("Socket send failed: %s", exc)


__all__ = ["WebSocketTransport"]
