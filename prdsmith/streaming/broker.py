"""
Streaming Broker: fans out conversation events to every observing connection.

Connections join the room of a conversation with ``attach``. Every event
published for the conversation is queued on each member's own bounded queue
and written by that member's writer task, so:

- delivery to one connection is in publish order
- a slow or failing connection never blocks the producer or its peers
- a connection whose send fails, or whose queue overflows, is detached alone

Publishing (``broadcast_*``), ``attach`` and ``detach`` never await, so room
membership changes are atomic on the event loop.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from prdsmith.config.logging import get_logger
from prdsmith.errors import DeliveryFailed
from prdsmith.models import GenerationResult, StreamChunk

logger = get_logger(__name__)

Connection = Hashable

ChunkSink = Callable[[StreamChunk], Awaitable[None]]


class BrokerEvent(str, Enum):
    """Event names sent to connections."""

    CHUNK = "message-chunk"
    COMPLETE = "message-complete"
    ERROR = "stream-error"
    USER_JOINED = "user-joined"
    USER_LEFT = "user-left"


class Transport(ABC):
    """
    Delivery channel to connected clients (WebSocket server, console, ...).
    """

    @abstractmethod
    async def send(self, connection: Connection, event: str, payload: dict[str, Any]) -> None:
        """
        Deliver one event to one connection.

        Raises:
            Exception: Any failure; the broker detaches the connection
        """
        pass

    @abstractmethod
    def on_disconnect(self, connection: Connection, callback: Callable[[], None]) -> None:
        """Register ``callback`` to be invoked when the connection goes away."""
        pass


@dataclass(eq=False)
class _Subscriber:
    connection: Connection
    conversation_id: str
    user_id: str | None
    queue: asyncio.Queue
    writer: asyncio.Task | None = field(default=None)


def _timestamp() -> str:
    return datetime.now(UTC).isoformat()


class StreamingBroker:
    """
    Room-based event fan-out.

    Args:
        transport: Delivery channel
        max_pending: Events buffered per connection before it is dropped
    """

    def __init__(self, transport: Transport, *, max_pending: int = 1000):
        if max_pending <= 0:
            raise ValueError("max_pending must be positive")
        self._transport = transport
        self._max_pending = max_pending
        self._rooms: dict[str, set[Connection]] = {}
        self._subscribers: dict[Connection, _Subscriber] = {}
        # Connections whose transport already calls back on disconnect
        self._watched: set[Connection] = set()

    # -- membership -----------------------------------------------------

    def attach(self, connection: Connection, conversation_id: str, user_id: str | None = None) -> None:
        """
        Add a connection to a conversation's room.

        A connection observes one conversation at a time; attaching it
        elsewhere moves it. Existing members are told with ``user-joined``.
        """
        current = self._subscribers.get(connection)
        if current is not None:
            if current.conversation_id == conversation_id:
                return
            self.detach(connection)

        subscriber = _Subscriber(
            connection=connection,
            conversation_id=conversation_id,
            user_id=user_id,
            queue=asyncio.Queue(maxsize=self._max_pending),
        )
        subscriber.writer = asyncio.get_running_loop().create_task(self._write_loop(subscriber))
        room = self._rooms.setdefault(conversation_id, set())
        self._publish(conversation_id, BrokerEvent.USER_JOINED, {
            "user_id": user_id,
            "conversation_id": conversation_id,
        })
        room.add(connection)
        self._subscribers[connection] = subscriber
        if connection not in self._watched:
            self._watched.add(connection)
            self._transport.on_disconnect(connection, lambda: self._disconnected(connection))
        logger.info(
            f"Connection attached to conversation {conversation_id} "
            f"({len(room)} connection(s))"
        )

    def detach(self, connection: Connection) -> None:
        """
        Remove a connection from its room. Idempotent.

        Pending events for the connection are discarded. Remaining members
        are told with ``user-left``; an empty room is deleted.
        """
        subscriber = self._subscribers.pop(connection, None)
        if subscriber is None:
            return

        room = self._rooms.get(subscriber.conversation_id)
        if room is not None:
            room.discard(connection)
            if not room:
                del self._rooms[subscriber.conversation_id]

        while True:
            try:
                subscriber.queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            subscriber.queue.task_done()

        if subscriber.writer is not None and subscriber.writer is not asyncio.current_task():
            subscriber.writer.cancel()

        self._publish(subscriber.conversation_id, BrokerEvent.USER_LEFT, {
            "user_id": subscriber.user_id,
            "conversation_id": subscriber.conversation_id,
        })
        logger.info(f"Connection detached from conversation {subscriber.conversation_id}")

    def _disconnected(self, connection: Connection) -> None:
        self._watched.discard(connection)
        self.detach(connection)

    def connection_count(self, conversation_id: str) -> int:
        return len(self._rooms.get(conversation_id, ()))

    def active_conversations(self) -> list[str]:
        """Conversations with at least one attached connection."""
        return list(self._rooms)

    def room_of(self, connection: Connection) -> str | None:
        subscriber = self._subscribers.get(connection)
        return subscriber.conversation_id if subscriber else None

    # -- publishing -----------------------------------------------------

    def broadcast_chunk(self, chunk: StreamChunk) -> None:
        self._publish(chunk.conversation_id, BrokerEvent.CHUNK, {
            "conversation_id": chunk.conversation_id,
            "index": chunk.index,
            "content": chunk.content,
            "done": chunk.done,
        })

    def broadcast_complete(self, conversation_id: str, result: GenerationResult) -> None:
        self._publish(conversation_id, BrokerEvent.COMPLETE, {
            "conversation_id": conversation_id,
            "text": result.text,
            "finish_reason": result.finish_reason,
            "model": result.model,
            "fallback": result.fallback,
            "usage": result.usage.model_dump(),
        })

    def broadcast_error(self, conversation_id: str, message: str) -> None:
        self._publish(conversation_id, BrokerEvent.ERROR, {
            "conversation_id": conversation_id,
            "message": message,
        })

    def _publish(self, conversation_id: str, event: BrokerEvent, payload: dict[str, Any]) -> None:
        room = self._rooms.get(conversation_id)
        if not room:
            return
        payload = {**payload, "timestamp": _timestamp()}
        overflowed = []
        for connection in room:
            subscriber = self._subscribers[connection]
            try:
                subscriber.queue.put_nowait((event, payload))
            except asyncio.QueueFull:
                overflowed.append(connection)
        for connection in overflowed:
            logger.warning(
                f"Connection in conversation {conversation_id} fell "
                f"{self._max_pending} events behind, detaching it"
            )
            self.detach(connection)

    async def _write_loop(self, subscriber: _Subscriber) -> None:
        while True:
            event, payload = await subscriber.queue.get()
            try:
                await self._transport.send(subscriber.connection, event.value, payload)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    f"Delivery of {event.value} to a connection in conversation "
                    f"{subscriber.conversation_id} failed, detaching it: {e}"
                )
                self.detach(subscriber.connection)
                return
            finally:
                subscriber.queue.task_done()

    # -- lifecycle ------------------------------------------------------

    async def drain(self, conversation_id: str | None = None) -> None:
        """Wait until every queued event (for one conversation, or all) is handled."""
        subscribers = [
            subscriber for subscriber in self._subscribers.values()
            if conversation_id is None or subscriber.conversation_id == conversation_id
        ]
        await asyncio.gather(*(subscriber.queue.join() for subscriber in subscribers))

    async def close(self) -> None:
        """Detach every connection and wait for the writer tasks to finish."""
        writers = [s.writer for s in self._subscribers.values() if s.writer is not None]
        for connection in list(self._subscribers):
            self.detach(connection)
        await asyncio.gather(*writers, return_exceptions=True)

    async def __aenter__(self) -> StreamingBroker:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False


class SinkWriter:
    """
    Feeds the originating caller's chunk sink from its own writer task.

    ``put`` never awaits, so a slow sink holds back only itself, the same way
    a slow connection in a room does. A sink that raises, or that falls
    ``max_pending`` chunks behind, is reported as ``DeliveryFailed`` by the
    next ``put`` or by ``finish``.
    """

    def __init__(self, sink: ChunkSink, *, max_pending: int = 1000):
        if max_pending <= 0:
            raise ValueError("max_pending must be positive")
        self._sink = sink
        self._max_pending = max_pending
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self._error: DeliveryFailed | None = None
        self._writer = asyncio.get_running_loop().create_task(self._write_loop())

    @property
    def error(self) -> DeliveryFailed | None:
        return self._error

    def put(self, chunk: StreamChunk) -> None:
        if self._error is not None:
            raise self._error
        try:
            self._queue.put_nowait(chunk)
        except asyncio.QueueFull:
            self._error = DeliveryFailed(f"Chunk sink fell {self._max_pending} chunks behind")
            self._writer.cancel()
            raise self._error from None

    async def _write_loop(self) -> None:
        while True:
            chunk = await self._queue.get()
            try:
                await self._sink(chunk)
            except Exception as e:
                self._error = DeliveryFailed(f"Chunk sink failed: {e}", cause=e)
                return
            if chunk.done:
                return

    async def finish(self) -> None:
        """
        Wait until the sink has taken the final ``done`` chunk.

        Raises:
            DeliveryFailed: The sink raised or fell behind
        """
        await asyncio.wait({self._writer})
        if self._error is not None:
            raise self._error

    async def close(self) -> None:
        """Stop the writer task, dropping chunks not yet delivered. Idempotent."""
        if not self._writer.done():
            self._writer.cancel()
        await asyncio.wait({self._writer})
