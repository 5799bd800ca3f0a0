"""WebSocket hub that keeps every observer in sync."""

import asyncio
import json
import logging
from typing import Protocol

from websockets.asyncio.server import ServerConnection, serve
from websockets.exceptions import ConnectionClosedError

from .messages import Event

logger = logging.getLogger(__name__)


class Reply(Protocol):
    def __call__(self, event: Event) -> None: ...


class Router(Protocol):
    def bootstrap(self) -> list[Event]: ...

    async def handle(self, raw: str | bytes, reply: Reply) -> None: ...


def _encode(event: Event) -> str:
    return json.dumps(event.to_dict())


class ObserverSession:
    """Outbound queue and writer task for one observer connection.

    Messages are delivered in enqueue order. A send that exceeds
    ``send_timeout`` drops that one message; any other send failure closes
    the session and discards its backlog.
    """

    def __init__(self, websocket: ServerConnection, send_timeout: float = 0.5, queue_size: int = 256):
        self.websocket = websocket
        self._send_timeout = send_timeout
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)
        self._writer: asyncio.Task | None = None
        self.closed = False

    @property
    def info(self) -> str:
        """Client info string for logging."""
        addr = self.websocket.remote_address
        if addr:
            return f"{addr[0]}:{addr[1]}"
        return "unknown"

    def start(self) -> None:
        if self._writer is None:
            self._writer = asyncio.create_task(self._drain())

    def enqueue(self, data: str) -> bool:
        if self.closed:
            return False
        try:
            self._queue.put_nowait(data)
        except asyncio.QueueFull:
            logger.warning("Observer %s backlog full, message dropped", self.info)
            return False
        return True

    def send_event(self, event: Event) -> None:
        self.enqueue(_encode(event))

    async def _drain(self) -> None:
        while not self.closed:
            data = await self._queue.get()
            try:
                await asyncio.wait_for(self.websocket.send(data), timeout=self._send_timeout)
            except TimeoutError:
                logger.warning("Send timeout, slow observer %s skipped a message", self.info)
            except Exception as e:
                logger.debug("Send to %s failed: %s", self.info, e)
                self.closed = True
            finally:
                self._queue.task_done()
        self._discard_backlog()

    def _discard_backlog(self) -> None:
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()

    async def join(self) -> None:
        """Wait until everything queued so far has been handled."""
        await self._queue.join()

    async def close(self) -> None:
        self.closed = True
        if self._writer is not None:
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
            self._writer = None
        self._discard_backlog()


class BroadcastHub:
    """WebSocket server that fans domain events out to all observers."""

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 8080,
        broadcast_timeout: float = 0.5,
        send_queue_size: int = 256,
    ):
        self.host = host
        self.port = port
        self._broadcast_timeout = broadcast_timeout
        self._send_queue_size = send_queue_size
        self._sessions: dict[ServerConnection, ObserverSession] = {}
        self._router: Router | None = None
        self._server = None

    def _open_session(self, websocket: ServerConnection) -> ObserverSession:
        """Register an observer with its bootstrap sequence queued ahead of any broadcast."""
        session = ObserverSession(websocket, self._broadcast_timeout, self._send_queue_size)
        if self._router is not None:
            for event in self._router.bootstrap():
                session.send_event(event)
        self._sessions[websocket] = session
        session.start()
        return session

    async def _handler(self, websocket: ServerConnection) -> None:
        """Handle one observer connection."""
        session = self._open_session(websocket)
        logger.info("Observer connected: %s (%d total)", session.info, len(self._sessions))
        try:
            async for raw in websocket:
                if self._router is not None:
                    await self._router.handle(raw, session.send_event)
        except ConnectionClosedError:
            pass  # Observer disconnected abruptly, this is normal
        finally:
            self._sessions.pop(websocket, None)
            await session.close()
            logger.info("Observer disconnected: %s (%d total)", session.info, len(self._sessions))

    def publish(self, event: Event) -> None:
        """Queue an event for every open observer without waiting on any of them."""
        if not self._sessions:
            return
        data = _encode(event)
        # Snapshot sessions to avoid RuntimeError if the dict changes during iteration
        for websocket, session in list(self._sessions.items()):
            if session.closed:
                self._sessions.pop(websocket, None)
                logger.debug("Removed failed observer: %s", session.info)
                continue
            session.enqueue(data)

    async def flush(self) -> None:
        """Wait until every observer's queue has been handled."""
        await asyncio.gather(*(session.join() for session in list(self._sessions.values())))

    async def start(self, router: Router) -> None:
        """Start serving observers, routing their commands to ``router``."""
        self._router = router
        self._server = await serve(self._handler, self.host, self.port)
        logger.debug("Hub started on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Stop the WebSocket server."""
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            logger.debug("Hub stopped")
        for session in list(self._sessions.values()):
            await session.close()
        self._sessions.clear()

    @property
    def observer_count(self) -> int:
        """Number of connected observers."""
        return len(self._sessions)
