"""Transport that renders conversation events on a text stream (the terminal)."""

from __future__ import annotations

import sys
from collections.abc import Callable
from typing import Any, TextIO

from prdsmith.streaming.broker import BrokerEvent, Connection, Transport


class ConsoleTransport(Transport):
    """
    Writes chunk content as it arrives and a short marker for other events.

    Used by the ``ask --stream`` command, where the terminal is the only
    connection in the room.
    """

    def __init__(self, stream: TextIO | None = None):
        self._stream = stream or sys.stdout
        self._disconnect_callbacks: dict[Connection, list[Callable[[], None]]] = {}

    async def send(self, connection: Connection, event: str, payload: dict[str, Any]) -> None:
        if event == BrokerEvent.CHUNK.value:
            self._stream.write(payload["content"])
        elif event == BrokerEvent.COMPLETE.value:
            self._stream.write("\n")
        elif event == BrokerEvent.ERROR.value:
            self._stream.write(f"\n[stream error] {payload['message']}\n")
        self._stream.flush()

    def on_disconnect(self, connection: Connection, callback: Callable[[], None]) -> None:
        self._disconnect_callbacks.setdefault(connection, []).append(callback)

    def disconnect(self, connection: Connection) -> None:
        """Signal that the connection went away."""
        for callback in self._disconnect_callbacks.pop(connection, []):
            callback()
