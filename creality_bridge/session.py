""" WebSocket ingestion session to the printer.

States: DISCONNECTED -> CONNECTING -> CONNECTED -> (CLOSING | ERROR) -> DISCONNECTED.

- The very first connection attempt fails fast (SessionError) so a wrong
  CREALITY_WS_URL is reported at startup.
- Once connected at least once, every drop is logged and retried after
  `retry_delay` seconds, forever, until stop() or task cancellation.
- stop() also abandons a handshake in progress; cancelling run() closes the
  live connection and re-raises CancelledError.
- Frames are handed to the handler one at a time, in arrival order. The
  handler is blocking code (MQTT publishes), so it runs in a worker thread
  and is awaited before the next frame is read.
"""
import asyncio
import concurrent.futures
import enum
from typing import Awaitable, Callable, Optional

import aiohttp
from aiohttp import WSMsgType

from . import log
from .errors import SessionError, SessionNotConnected

HANDSHAKE_TIMEOUT = 10.0
RETRY_DELAY = 5.0
SEND_TIMEOUT = 5.0


class SessionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"
    ERROR = "error"


class IngestionSession:
    def __init__(self, url: str, handler: Optional[Callable[[bytes], None]] = None, *,
                 retry_delay: float = RETRY_DELAY,
                 connect: Optional[Callable[[str], Awaitable]] = None):
        self.url = url
        self.handler = handler
        self.retry_delay = retry_delay
        self.state = SessionState.DISCONNECTED
        self.connected_once = False
        self._connect_fn = connect
        self._http: Optional[aiohttp.ClientSession] = None
        self._ws = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop = asyncio.Event()

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def run(self):
        """Read until stop(); raises SessionError if the first connection attempt fails."""
        self._loop = asyncio.get_running_loop()
        try:
            while not self._stop.is_set():
                try:
                    await self._run_once()
                    if self._stop.is_set():
                        break
                    log.warn("WebSocket closed by printer", self.url)
                except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
                    self.state = SessionState.ERROR
                    if not self.connected_once:
                        raise SessionError(f"cannot connect to {self.url}: {e}") from e
                    log.warn("WebSocket connection lost:", e, f"(retry in {self.retry_delay:g}s)")
                finally:
                    self.state = SessionState.DISCONNECTED
                await self._wait_retry()
        finally:
            await self._close_http()

    async def _wait_retry(self):
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=self.retry_delay)
        except asyncio.TimeoutError:
            pass

    async def _open(self):
        if self._connect_fn is not None:
            return await self._connect_fn(self.url)
        if self._http is None:
            self._http = aiohttp.ClientSession()
        return await asyncio.wait_for(self._http.ws_connect(self.url), timeout=HANDSHAKE_TIMEOUT)

    async def _open_unless_stopped(self):
        """Handshake, abandoned as soon as stop() is called; None when stopped."""
        opener = asyncio.ensure_future(self._open())
        stopper = asyncio.ensure_future(self._stop.wait())
        try:
            await asyncio.wait({opener, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            if not opener.done():
                opener.cancel()
                await asyncio.wait({opener})
        if opener.cancelled() or (self._stop.is_set() and opener.exception() is not None):
            return None
        ws = opener.result()
        if self._stop.is_set():
            await ws.close()
            return None
        return ws

    async def _run_once(self):
        self.state = SessionState.CONNECTING
        ws = await self._open_unless_stopped()
        if ws is None:
            return
        self._ws = ws
        self.connected_once = True
        self.state = SessionState.CONNECTED
        log.info("WebSocket connected", self.url)
        try:
            while True:
                msg = await ws.receive()
                if msg.type == WSMsgType.TEXT:
                    data = msg.data.encode("utf-8")
                elif msg.type == WSMsgType.BINARY:
                    data = msg.data
                elif msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED):
                    return
                elif msg.type == WSMsgType.ERROR:
                    exc = ws.exception() if hasattr(ws, "exception") else None
                    raise aiohttp.ClientError(f"websocket error: {exc or msg.data}")
                else:
                    continue
                await self._dispatch(data)
        finally:
            self.state = SessionState.CLOSING
            self._ws = None
            if not ws.closed:
                await ws.close()

    async def _dispatch(self, data: bytes):
        if self.handler is None:
            return
        try:
            await asyncio.to_thread(self.handler, data)
        except Exception as e:
            # one bad frame must not take the session down
            log.error("message handler failed:", repr(e))

    async def stop(self):
        """End run(): close the live connection and cancel any pending retry wait."""
        self._stop.set()
        ws = self._ws
        if ws is not None and not ws.closed:
            await ws.close()

    def stop_threadsafe(self):
        loop = self._loop
        if loop is not None and not loop.is_closed():
            asyncio.run_coroutine_threadsafe(self.stop(), loop)

    async def send(self, data):
        """Send one text frame on the live connection; SessionNotConnected if there is none."""
        ws = self._ws
        if ws is None or ws.closed:
            raise SessionNotConnected("printer WebSocket not connected")
        if isinstance(data, (bytes, bytearray)):
            data = bytes(data).decode("utf-8")
        await ws.send_str(data)

    def send_threadsafe(self, data, timeout: float = SEND_TIMEOUT):
        """send() from a thread outside the session's event loop (e.g. an MQTT callback)."""
        loop = self._loop
        if loop is None or loop.is_closed() or not self.connected:
            raise SessionNotConnected("printer WebSocket not connected")
        fut = asyncio.run_coroutine_threadsafe(self.send(data), loop)
        try:
            return fut.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            # the frame must not go out after the caller saw the timeout
            fut.cancel()
            raise

    async def _close_http(self):
        if self._http is not None:
            await self._http.close()
            self._http = None
