import sys
import threading
import termios
import tty
import select
from typing import Callable, Optional
from revive.infrastructure.event_bus import EventBus
from revive.domain.events import AutoShutdownToggled, CancelRequested

class KeyboardListener:
    """Listens for keyboard input in a background thread.

    C (or Ctrl+C) cancels the running batch, S toggles auto shutdown.
    """

    def __init__(self, event_bus: EventBus, auto_shutdown: Callable[[], bool]):
        self.event_bus = event_bus
        self.auto_shutdown = auto_shutdown
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _get_key(self) -> Optional[str]:
        """Reads a single key from stdin in raw mode."""
        fd = sys.stdin.fileno()
        old_settings = termios.tcgetattr(fd)
        try:
            tty.setraw(fd)
            rlist, _, _ = select.select([sys.stdin], [], [], 0.1)
            if rlist:
                return sys.stdin.read(1)
        finally:
            termios.tcsetattr(fd, termios.TCSADRAIN, old_settings)
        return None

    def handle_key(self, key: str) -> bool:
        """Publishes the event bound to key; returns False when listening should stop."""
        if key == '\x03': # Ctrl+C
            self.event_bus.publish(CancelRequested())
            return False
        key = key.upper()
        if key == 'C':
            self.event_bus.publish(CancelRequested())
        elif key == 'S':
            self.event_bus.publish(AutoShutdownToggled(enabled=not self.auto_shutdown()))
        return True

    def _run(self):
        while not self._stop_event.is_set():
            key = self._get_key()
            if key and not self.handle_key(key):
                break

    def start(self):
        """Starts the listener thread; a no-op when stdin is not a terminal."""
        if not sys.stdin.isatty():
            return
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self):
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=1.0)
