"""Batch cancellation flag and the single-slot upscaling token.

Both are passed explicitly to every suspension point; nothing here is global.
"""
import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional
from revive.domain.errors import CancellationError

class CancelToken:
    """Shared, one-way cancellation flag for one batch."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Blocks up to timeout; returns True as soon as the token is cancelled."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self, stage: Optional[str] = None):
        if self._event.is_set():
            raise CancellationError(stage)

class ResourceToken:
    """Single-slot permit whose wait is abandoned as soon as the batch is cancelled."""

    def __init__(self, name: str = "upscaling", poll_interval: float = 0.05):
        self.name = name
        self.poll_interval = poll_interval
        self._condition = threading.Condition()
        self._holder: Optional[str] = None
        self.logger = logging.getLogger(__name__)

    @property
    def holder(self) -> Optional[str]:
        with self._condition:
            return self._holder

    def acquire(self, owner: str, cancel_token: CancelToken):
        with self._condition:
            while True:
                if cancel_token.is_cancelled:
                    raise CancellationError(f"waiting for {self.name} token")
                if self._holder is None:
                    self._holder = owner
                    self.logger.debug(f"TOKEN_ACQUIRE: {self.name} -> {owner}")
                    return
                self._condition.wait(timeout=self.poll_interval)

    def release(self, owner: str):
        with self._condition:
            if self._holder == owner:
                self._holder = None
                self.logger.debug(f"TOKEN_RELEASE: {self.name} <- {owner}")
                self._condition.notify_all()

    def wake_all(self):
        """Wakes waiters so they re-check cancellation without waiting for the poll."""
        with self._condition:
            self._condition.notify_all()

    @contextmanager
    def hold(self, owner: str, cancel_token: CancelToken) -> Iterator[None]:
        self.acquire(owner, cancel_token)
        try:
            yield
        finally:
            self.release(owner)
