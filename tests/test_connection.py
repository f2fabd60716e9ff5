"""Unit tests for the buffered websocket connection."""

import asyncio

import pytest

from connection import WebSocketConnection
from exceptions import ConnectionClosedError
from tests.conftest import until


class RecordingWebSocket:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.texts = []

    async def send_text(self, text):
        if self.fail:
            raise RuntimeError("socket closed")
        self.texts.append(text)


@pytest.mark.asyncio
async def test_writer_delivers_in_order():
    websocket = RecordingWebSocket()
    connection = WebSocketConnection(websocket)
    writer = asyncio.create_task(connection.run_writer())

    for text in ("one", "two", "three"):
        connection.send(text)
    await until(lambda: len(websocket.texts) == 3)

    assert websocket.texts == ["one", "two", "three"]
    writer.cancel()
    with pytest.raises(asyncio.CancelledError):
        await writer


@pytest.mark.asyncio
async def test_full_buffer_drops_frames():
    connection = WebSocketConnection(RecordingWebSocket(), max_pending=2)

    for text in ("a", "b", "c", "d"):
        connection.send(text)

    assert connection.dropped == 2
    assert not connection.closed


@pytest.mark.asyncio
async def test_send_after_close_raises():
    connection = WebSocketConnection(RecordingWebSocket())
    connection.close()

    with pytest.raises(ConnectionClosedError):
        connection.send("late")


@pytest.mark.asyncio
async def test_write_failure_marks_connection_closed():
    connection = WebSocketConnection(RecordingWebSocket(fail=True))
    writer = asyncio.create_task(connection.run_writer())

    connection.send("hello")
    await writer

    assert connection.closed
    with pytest.raises(ConnectionClosedError):
        connection.send("again")
