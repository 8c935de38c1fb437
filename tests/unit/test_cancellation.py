import threading
import time
import pytest
from unittest.mock import MagicMock
from revive.domain.errors import CancellationError
from revive.domain.events import CancelRequested, JobStarted
from revive.infrastructure.event_bus import EventBus
from revive.pipeline.cancellation import CancelToken, ResourceToken

def test_cancel_token():
    token = CancelToken()
    assert not token.is_cancelled
    token.raise_if_cancelled("probing")
    token.cancel()
    token.cancel()
    assert token.is_cancelled
    assert token.wait(0)
    with pytest.raises(CancellationError, match="probing"):
        token.raise_if_cancelled("probing")

def test_resource_token_is_exclusive():
    resource = ResourceToken()
    token = CancelToken()
    holders = []
    overlap = []
    lock = threading.Lock()

    def worker(name):
        with resource.hold(name, token):
            with lock:
                holders.append(name)
                if len(holders) > 1:
                    overlap.append(list(holders))
            time.sleep(0.05)
            with lock:
                holders.remove(name)

    threads = [threading.Thread(target=worker, args=(f"job{i}",)) for i in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert overlap == []
    assert resource.holder is None

def test_cancel_abandons_wait():
    resource = ResourceToken(poll_interval=5.0)
    token = CancelToken()
    resource.acquire("holder", token)
    errors = []

    def waiter():
        try:
            resource.acquire("waiter", token)
        except CancellationError as e:
            errors.append(e)

    t = threading.Thread(target=waiter)
    t.start()
    time.sleep(0.1)
    token.cancel()
    resource.wake_all()
    t.join(timeout=2)

    assert not t.is_alive()
    assert len(errors) == 1
    assert resource.holder == "holder"

def test_release_by_non_holder_is_ignored():
    resource = ResourceToken()
    resource.acquire("a", CancelToken())
    resource.release("b")
    assert resource.holder == "a"
    resource.release("a")
    assert resource.holder is None

def test_event_bus_dispatches_by_exact_type():
    bus = EventBus()
    callback = MagicMock()
    bus.subscribe(CancelRequested, callback)

    bus.publish(CancelRequested())
    bus.publish(JobStarted.model_construct())
    assert callback.call_count == 1

    bus.unsubscribe(CancelRequested, callback)
    bus.publish(CancelRequested())
    assert callback.call_count == 1

def test_event_bus_isolates_failing_subscriber():
    bus = EventBus()
    after = MagicMock()
    bus.subscribe(CancelRequested, MagicMock(side_effect=RuntimeError("ui gone")))
    bus.subscribe(CancelRequested, after)

    bus.publish(CancelRequested())
    after.assert_called_once()

def test_event_bus_does_not_block_on_slow_subscriber():
    bus = EventBus()
    entered = threading.Event()
    release = threading.Event()
    fast = MagicMock()

    def slow(event):
        entered.set()
        release.wait(5)

    bus.subscribe(CancelRequested, slow)
    bus.subscribe(JobStarted, fast)
    thread = threading.Thread(target=bus.publish, args=(CancelRequested(),))
    thread.start()
    assert entered.wait(5)

    start = time.monotonic()
    bus.publish(JobStarted.model_construct())
    assert time.monotonic() - start < 1
    fast.assert_called_once()
    release.set()
    thread.join(5)
