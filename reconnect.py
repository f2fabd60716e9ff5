"""Client-side connection to a couple's room, with exponential-backoff reconnects."""

import asyncio
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import quote, urlencode

import websockets

from constants import RECONNECT_INITIAL_DELAY, RECONNECT_MAX_DELAY, RECONNECT_MULTIPLIER
from exceptions import FrameError
from logging_config import get_logger
from schemas.frames import BaseFrame, parse_frame, typing_frame

logger = get_logger(__name__)

FrameHandler = Callable[[BaseFrame], None]
Hook = Callable[[], None]


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class Session:
    user_id: str
    token: str


class Backoff:
    """Delay before the next reconnect: initial, doubling per consecutive failure, capped."""

    def __init__(
        self,
        initial: float = RECONNECT_INITIAL_DELAY,
        maximum: float = RECONNECT_MAX_DELAY,
        multiplier: float = RECONNECT_MULTIPLIER,
    ):
        self.initial = initial
        self.maximum = maximum
        self.multiplier = multiplier
        self._current = initial

    def next_delay(self) -> float:
        delay = min(self._current, self.maximum)
        self._current = min(self._current * self.multiplier, self.maximum)
        return delay

    def reset(self) -> None:
        self._current = self.initial


class ReconnectionController:
    """
    Keeps one session connected to its couple's room.

    State machine: IDLE -> CONNECTING -> OPEN -> CLOSED -> CONNECTING -> ...
    DISCONNECTED is terminal and only entered through ``disconnect()``. Clearing the
    session or the room drops back to IDLE, and changing either reconnects. A clean close
    and an error close are treated alike: both schedule a reconnect.

    Inbound frames are not buffered or replayed across reconnects. Subscribe with
    ``on_reconnected`` to re-fetch whatever was missed while the transport was down.

    Args:
        base_url: Server websocket base, e.g. ``wss://chat.example.com``
        connect: Coroutine function opening a transport for a url. The transport must
            support ``async for`` over inbound messages, ``send`` and ``close``.
        sleep: Coroutine function used to wait out backoff delays
        backoff: Backoff policy
    """

    def __init__(
        self,
        base_url: str,
        connect: Optional[Callable[[str], Awaitable[Any]]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        backoff: Optional[Backoff] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._connect = connect or websockets.connect
        self._sleep = sleep
        self.backoff = backoff or Backoff()

        self.state = ConnectionState.IDLE
        self.session: Optional[Session] = None
        self.couple_id: Optional[str] = None

        self._transport = None
        self._task: Optional[asyncio.Task] = None
        self._stop_task: Optional[asyncio.Task] = None
        self._active = False
        self._retry_timer: Optional[asyncio.Task] = None
        self._has_opened = False

        self._handlers: Dict[str, List[FrameHandler]] = defaultdict(list)
        self._open_hooks: List[Hook] = []
        self._reconnected_hooks: List[Hook] = []
        self._close_hooks: List[Hook] = []
        self._state_hooks: List[Callable[[ConnectionState], None]] = []

    @property
    def url(self) -> str:
        query = urlencode({"userId": self.session.user_id, "token": self.session.token})
        return f"{self.base_url}/ws/{quote(self.couple_id, safe='')}?{query}"

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    def on(self, frame_type: str, handler: FrameHandler) -> None:
        self._handlers[frame_type].append(handler)

    def on_open(self, hook: Hook) -> None:
        self._open_hooks.append(hook)

    def on_reconnected(self, hook: Hook) -> None:
        self._reconnected_hooks.append(hook)

    def on_close(self, hook: Hook) -> None:
        self._close_hooks.append(hook)

    def on_state_change(self, hook: Callable[[ConnectionState], None]) -> None:
        self._state_hooks.append(hook)

    def set_session(self, session: Optional[Session]) -> None:
        if session == self.session:
            return
        self.session = session
        self._target_changed()

    def set_room(self, couple_id: Optional[str]) -> None:
        if couple_id == self.couple_id:
            return
        self.couple_id = couple_id
        self._target_changed()

    def _target_changed(self) -> None:
        if self._active:
            # Logged out or switched rooms: tear the running connection down first.
            # _stop restarts it if both a session and a room are still set.
            self._stop_task = asyncio.get_running_loop().create_task(self._stop(ConnectionState.IDLE))
        else:
            self._maybe_start()

    def _maybe_start(self) -> None:
        if self.state is not ConnectionState.IDLE or self._task is not None:
            return
        if self.session is None or not self.couple_id:
            return
        self._active = True
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def send_typing(self, start: bool) -> bool:
        """Tell the partner we started or stopped typing. Does nothing unless OPEN."""
        transport = self._transport
        if self.state is not ConnectionState.OPEN or transport is None:
            return False
        frame = typing_frame(start, user_id=None, couple_id=self.couple_id)
        try:
            await transport.send(frame.to_json(exclude_none=True))
            return True
        except Exception as e:
            logger.info(f"Could not send {frame.type}: {e}")
            return False

    async def disconnect(self) -> None:
        """Stop for good: cancel any pending retry and close the transport."""
        await self._stop(ConnectionState.DISCONNECTED)

    async def _stop(self, state: ConnectionState) -> None:
        previous = self.state
        self._active = False
        self._set_state(state)

        if self._retry_timer is not None:
            self._retry_timer.cancel()
        if self._transport is not None:
            try:
                await self._transport.close()
            except Exception as e:
                logger.debug(f"Error closing transport: {e}")
        task = self._task
        if task is not None:
            if previous is ConnectionState.CONNECTING:
                # A handshake in flight has no transport to close yet
                task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            if self._task is task:
                self._task = None
        self.backoff.reset()

        if state is ConnectionState.IDLE:
            self._maybe_start()

    async def _run(self) -> None:
        while self._active:
            self._set_state(ConnectionState.CONNECTING)
            try:
                transport = await self._connect(self.url)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Connecting to couple {self.couple_id} failed: {e}")
            else:
                if not self._active:
                    await transport.close()
                    break
                await self._serve(transport)

            if not self._active:
                break
            self._set_state(ConnectionState.CLOSED)
            self._fire(self._close_hooks)

            delay = self.backoff.next_delay()
            logger.info(f"Reconnecting to couple {self.couple_id} in {delay:.1f}s")
            self._retry_timer = asyncio.ensure_future(self._sleep(delay))
            try:
                await self._retry_timer
            except asyncio.CancelledError:
                if not self._active:
                    break
                raise
            finally:
                self._retry_timer = None

    async def _serve(self, transport) -> None:
        self._transport = transport
        self._set_state(ConnectionState.OPEN)
        self.backoff.reset()
        reconnected = self._has_opened
        self._has_opened = True
        logger.info(f"Connected to couple {self.couple_id}{' (reconnected)' if reconnected else ''}")

        self._fire(self._open_hooks)
        if reconnected:
            self._fire(self._reconnected_hooks)

        try:
            async for raw in transport:
                self._dispatch(raw)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.info(f"Connection to couple {self.couple_id} lost: {e}")
        finally:
            self._transport = None

    def _dispatch(self, raw) -> None:
        try:
            frame = parse_frame(raw)
        except FrameError as e:
            logger.warning(f"Dropping unreadable frame: {e}")
            return
        for handler in self._handlers.get(frame.type, ()):
            try:
                handler(frame)
            except Exception as e:
                logger.error(f"Handler for {frame.type} failed: {e}", exc_info=True)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self.state:
            return
        logger.debug(f"Connection state {self.state.value} -> {state.value}")
        self.state = state
        for hook in list(self._state_hooks):
            try:
                hook(state)
            except Exception as e:
                logger.error(f"State hook failed: {e}", exc_info=True)

    def _fire(self, hooks: List[Hook]) -> None:
        for hook in list(hooks):
            try:
                hook()
            except Exception as e:
                logger.error(f"Connection hook failed: {e}", exc_info=True)
