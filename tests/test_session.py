import asyncio
import concurrent.futures
from typing import Any, NamedTuple

import aiohttp
import pytest
from aiohttp import WSMsgType

from creality_bridge.errors import SessionError, SessionNotConnected
from creality_bridge.session import IngestionSession, SessionState

URL = "ws://printer:9999/"


class Msg(NamedTuple):
    type: WSMsgType
    data: Any = None


def text(s):
    return Msg(WSMsgType.TEXT, s)


class MockWebSocket:
    def __init__(self, *frames):
        self.queue = asyncio.Queue()
        for f in frames:
            self.queue.put_nowait(f)
        self.closed = False
        self.sent = []

    async def receive(self):
        return await self.queue.get()

    async def send_str(self, data):
        self.sent.append(data)

    async def close(self):
        if not self.closed:
            self.closed = True
            self.queue.put_nowait(Msg(WSMsgType.CLOSED))

    def exception(self):
        return None


class Connector:
    """Hands out prepared sockets in order; an exception instance is raised instead."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    async def __call__(self, url):
        self.calls += 1
        r = self.results.pop(0)
        if isinstance(r, BaseException):
            raise r
        return r


def stop_after(n, session_ref, received):
    def handler(data):
        received.append(data)
        if len(received) >= n:
            session_ref[0].stop_threadsafe()
    return handler


@pytest.mark.asyncio
async def test_frames_delivered_in_order():
    received, ref = [], [None]
    ws = MockWebSocket(text('{"a":1}'), Msg(WSMsgType.BINARY, b'{"a":2}'), text('{"a":3}'))
    session = IngestionSession(URL, stop_after(3, ref, received), connect=Connector(ws))
    ref[0] = session

    await asyncio.wait_for(session.run(), 5)

    assert received == [b'{"a":1}', b'{"a":2}', b'{"a":3}']
    assert ws.closed
    assert session.state == SessionState.DISCONNECTED
    assert not session.connected


@pytest.mark.asyncio
async def test_first_connect_failure_is_fatal():
    connector = Connector(aiohttp.ClientConnectionError("refused"))
    session = IngestionSession(URL, lambda data: None, retry_delay=0.01, connect=connector)

    with pytest.raises(SessionError):
        await asyncio.wait_for(session.run(), 5)
    assert connector.calls == 1
    assert not session.connected_once


@pytest.mark.asyncio
async def test_reconnects_after_drop_and_failed_retry():
    received, ref = [], [None]
    first = MockWebSocket(text("A"), Msg(WSMsgType.CLOSE))
    second = MockWebSocket(text("B"))
    connector = Connector(first, aiohttp.ClientConnectionError("still down"), second)
    session = IngestionSession(URL, stop_after(2, ref, received), retry_delay=0.01, connect=connector)
    ref[0] = session

    await asyncio.wait_for(session.run(), 5)

    assert received == [b"A", b"B"]
    assert connector.calls == 3


@pytest.mark.asyncio
async def test_handler_error_does_not_end_session():
    received, ref = [], [None]

    def handler(data):
        if data == b"bad":
            raise ValueError("cannot handle")
        received.append(data)
        ref[0].stop_threadsafe()

    ws = MockWebSocket(text("bad"), text("good"))
    session = IngestionSession(URL, handler, connect=Connector(ws))
    ref[0] = session

    await asyncio.wait_for(session.run(), 5)
    assert received == [b"good"]


@pytest.mark.asyncio
async def test_send_from_handler_thread():
    ref = [None]

    def handler(data):
        ref[0].send_threadsafe('{"method":"set","params":{"lightSw":1}}')
        ref[0].stop_threadsafe()

    ws = MockWebSocket(text("{}"))
    session = IngestionSession(URL, handler, connect=Connector(ws))
    ref[0] = session

    await asyncio.wait_for(session.run(), 5)
    assert ws.sent == ['{"method":"set","params":{"lightSw":1}}']


@pytest.mark.asyncio
async def test_send_without_connection():
    session = IngestionSession(URL)
    with pytest.raises(SessionNotConnected):
        await session.send("{}")
    with pytest.raises(SessionNotConnected):
        session.send_threadsafe("{}")


@pytest.mark.asyncio
async def test_stop_before_run():
    connector = Connector()
    session = IngestionSession(URL, connect=connector)
    await session.stop()
    await asyncio.wait_for(session.run(), 5)
    assert connector.calls == 0


async def wait_for_state(session, state):
    for _ in range(200):
        if session.state == state:
            return
        await asyncio.sleep(0.005)
    raise AssertionError(f"session never reached {state}")


@pytest.mark.asyncio
async def test_stop_during_handshake_ends_run():
    gate = asyncio.Event()
    ws = MockWebSocket()
    calls = []

    async def slow_connect(url):
        calls.append(url)
        await gate.wait()
        return ws

    session = IngestionSession(URL, lambda data: None, connect=slow_connect)
    task = asyncio.ensure_future(session.run())
    await wait_for_state(session, SessionState.CONNECTING)

    await session.stop()
    gate.set()
    done, _ = await asyncio.wait({task}, timeout=1.0)

    assert task in done
    task.result()
    assert calls == [URL]
    assert not session.connected_once
    assert not session.connected
    assert session.state == SessionState.DISCONNECTED


@pytest.mark.asyncio
async def test_cancel_closes_live_connection():
    ws = MockWebSocket()
    session = IngestionSession(URL, lambda data: None, connect=Connector(ws))
    task = asyncio.ensure_future(session.run())
    await wait_for_state(session, SessionState.CONNECTED)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert ws.closed
    assert session.state == SessionState.DISCONNECTED


class StallingWebSocket(MockWebSocket):
    def __init__(self, *frames):
        super().__init__(*frames)
        self.release = asyncio.Event()

    async def send_str(self, data):
        await self.release.wait()
        self.sent.append(data)


@pytest.mark.asyncio
async def test_timed_out_send_is_withdrawn():
    outcome, ref = [], [None]

    def handler(data):
        try:
            ref[0].send_threadsafe('{"method":"set","params":{"lightSw":1}}', timeout=0.05)
        except concurrent.futures.TimeoutError:
            outcome.append("timeout")
        ref[0].stop_threadsafe()

    ws = StallingWebSocket(text("{}"))
    session = IngestionSession(URL, handler, connect=Connector(ws))
    ref[0] = session

    await asyncio.wait_for(session.run(), 5)
    ws.release.set()
    await asyncio.sleep(0.05)

    assert outcome == ["timeout"]
    assert ws.sent == []
