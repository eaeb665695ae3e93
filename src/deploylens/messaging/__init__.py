"""Best-effort event push to deployment observers."""

from deploylens.messaging.broadcast import Broadcaster, EventSink
from deploylens.messaging.topics import EventEnvelope

__all__ = ["Broadcaster", "EventEnvelope", "EventSink"]
