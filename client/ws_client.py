from __future__ import annotations
import asyncio
from typing import Callable, Optional, Protocol, Set, Tuple, Union

import websockets
from websockets.protocol import State
from websockets.uri import parse_uri

from shared.log import get_logger

logger = get_logger(__name__)

Frame = Union[str, bytes]


class TransportListener(Protocol):
    """Receives the four transport events, always with the transport that raised them."""

    def on_open(self, transport: Transport) -> None: ...
    def on_message(self, transport: Transport, data: Frame) -> None: ...
    def on_error(self, transport: Transport, detail: str) -> None: ...
    def on_close(self, transport: Transport, code: int, reason: str) -> None: ...


class Transport(Protocol):
    @property
    def is_open(self) -> bool: ...
    def send(self, data: str) -> None: ...
    def close(self, code: int = 1000, reason: str = "") -> None: ...


TransportFactory = Callable[[str, TransportListener], Transport]


class WebSocketTransport:
    """
    One websocket connection driven by a background task.

    Construction validates the URL (raising InvalidURI) and starts dialling
    on the running loop; it never blocks. The outcome arrives through the
    listener: on_open, then on_message per frame, then exactly one on_close.
    Failed dials and abnormal closures are preceded by on_error.

    send() and close() queue work for the writer so frames go out in call
    order and a close is sent after everything queued before it.
    """

    def __init__(
        self,
        url: str,
        listener: TransportListener,
        *,
        ping_interval: Optional[float] = 15,
        ping_timeout: Optional[float] = 45,
        open_timeout: Optional[float] = 10,
    ) -> None:
        parse_uri(url)
        loop = asyncio.get_running_loop()
        self.url = url
        self.listener = listener
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout
        self.open_timeout = open_timeout
        self.websocket: Optional[websockets.ClientConnection] = None
        self._outbox: asyncio.Queue[Optional[str]] = asyncio.Queue()
        self._close_request: Optional[Tuple[int, str]] = None
        self._closed = False
        self._tasks: Set[asyncio.Task] = set()
        self._runner = self._track(loop.create_task(self._run()))

    def _track(self, task: asyncio.Task) -> asyncio.Task:
        """Keep a strong reference to background tasks until completion."""
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def is_open(self) -> bool:
        return (
            self.websocket is not None
            and self._close_request is None
            and not self._closed
            and self.websocket.state is State.OPEN
        )

    def send(self, data: str) -> None:
        if not self.is_open:
            raise ConnectionError("websocket is not open")
        self._outbox.put_nowait(data)

    def close(self, code: int = 1000, reason: str = "") -> None:
        if self._close_request is not None or self._closed:
            return
        self._close_request = (code, reason)
        # wakes the writer, which sends the close frame after pending data
        self._outbox.put_nowait(None)

    async def wait_closed(self) -> None:
        """Wait until the connection is fully torn down"""
        await asyncio.shield(self._runner)

    async def _run(self) -> None:
        try:
            self.websocket = await websockets.connect(
                self.url,
                ping_interval=self.ping_interval,
                ping_timeout=self.ping_timeout,
                open_timeout=self.open_timeout,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Failed to open websocket {self.url}: {e}")
            self._emit_error(str(e) or type(e).__name__)
            self._emit_close(1006, str(e))
            return

        if self._close_request is not None:
            # close() was called while dialling
            code, reason = self._close_request
            await self.websocket.close(code=code, reason=reason)
            self._emit_close(code, reason)
            return

        logger.debug(f"Websocket open: {self.url}")
        self._emit("on_open")
        writer = self._track(asyncio.create_task(self._write_loop()))

        try:
            async for raw in self.websocket:
                self._emit("on_message", raw)
        except websockets.exceptions.ConnectionClosedError as e:
            logger.warning(f"Websocket closed abnormally: {e}")
            self._emit_error(str(e))
        finally:
            writer.cancel()

        code = self.websocket.close_code
        reason = self.websocket.close_reason or ""
        self._emit_close(1006 if code is None else code, reason)

    async def _write_loop(self) -> None:
        assert self.websocket is not None
        try:
            while True:
                data = await self._outbox.get()
                if data is None:
                    code, reason = self._close_request or (1000, "")
                    await self.websocket.close(code=code, reason=reason)
                    return
                await self.websocket.send(data)
        except websockets.exceptions.ConnectionClosed:
            logger.debug("Writer stopped: connection closed")

    def _emit(self, name: str, *args) -> None:
        if self._closed:
            return
        try:
            getattr(self.listener, name)(self, *args)
        except Exception as e:
            logger.error(f"Transport listener {name} failed: {e}")

    def _emit_error(self, detail: str) -> None:
        self._emit("on_error", detail)

    def _emit_close(self, code: int, reason: str) -> None:
        if self._closed:
            return
        self._emit("on_close", code, reason)
        self._closed = True
