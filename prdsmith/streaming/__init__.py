"""
Streaming delivery.

The broker keeps one room per conversation and fans out incremental output
(and membership notices) to every attached connection:

    RequestOrchestrator.stream()  →  StreamingBroker.broadcast_chunk()
                                            ↓
                               per-connection queue + writer task
                                            ↓
                                 Transport.send(connection, event, payload)

The caller that started a stream gets the same isolation through a
``SinkWriter``: its sink is fed from a writer task of its own.
"""

from prdsmith.streaming.broker import BrokerEvent, ChunkSink, SinkWriter, StreamingBroker, Transport
from prdsmith.streaming.console import ConsoleTransport

__all__ = [
    "BrokerEvent",
    "ChunkSink",
    "ConsoleTransport",
    "SinkWriter",
    "StreamingBroker",
    "Transport",
]
