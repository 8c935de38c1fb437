import logging
import threading
from typing import Type, Callable, List, Dict, Any
from revive.domain.events import Event

class EventBus:
    """A simple synchronous event bus for decoupled communication.

    Subscribers run on the publishing thread. Ordering between threads is
    left to publishers, e.g. ProgressMultiplexer serializes its own events.
    """

    def __init__(self):
        self._subscribers: Dict[Type[Event], List[Callable[[Any], None]]] = {}
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def subscribe(self, event_type: Type[Event], callback: Callable[[Any], None]):
        """Subscribes a callback to a specific event type."""
        with self._lock:
            if event_type not in self._subscribers:
                self._subscribers[event_type] = []
            self._subscribers[event_type].append(callback)

    def unsubscribe(self, event_type: Type[Event], callback: Callable[[Any], None]):
        with self._lock:
            callbacks = self._subscribers.get(event_type, [])
            if callback in callbacks:
                callbacks.remove(callback)

    def publish(self, event: Event):
        """Publishes an event to all interested subscribers.

        Callbacks run outside the lock; one that raises is logged and the
        rest still get the event.
        """
        with self._lock:
            callbacks = list(self._subscribers.get(type(event), []))
        for callback in callbacks:
            try:
                callback(event)
            except Exception as e:
                self.logger.error(f"Subscriber {getattr(callback, '__name__', callback)} failed on {type(event).__name__}: {e}")
