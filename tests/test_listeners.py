import asyncio
import functools

import pytest

from listeners import WILDCARD, ListenerRegistry


def test_on_is_idempotent():
    registry = ListenerRegistry()
    calls = []

    def fn(*args):
        calls.append(args)

    registry.on("chat", fn)
    registry.on("chat", fn)
    registry.emit("chat", "hello")
    assert calls == [("hello",)]


def test_named_listeners_run_before_wildcard_in_registration_order():
    registry = ListenerRegistry()
    order = []
    registry.on(WILDCARD, lambda *args: order.append(("*",) + args))
    registry.on("chat", lambda *args: order.append(("first",) + args))
    registry.on("chat", lambda *args: order.append(("second",) + args))

    registry.emit("chat", "payload", "envelope")

    assert order == [
        ("first", "payload", "envelope"),
        ("second", "payload", "envelope"),
        ("*", "chat", "payload", "envelope"),
    ]


def test_every_wildcard_listener_gets_the_same_arguments():
    registry = ListenerRegistry()
    seen = []
    registry.on(WILDCARD, lambda *args: seen.append(args))
    registry.on(WILDCARD, lambda *args: seen.append(args))
    registry.emit("chat", 1)
    assert seen == [("chat", 1), ("chat", 1)]


def test_once_fires_a_single_time():
    registry = ListenerRegistry()
    calls = []
    registry.once("chat", lambda payload: calls.append(payload))
    for i in range(5):
        registry.emit("chat", i)
    assert calls == [0]
    assert registry.listeners("chat") == []


def test_once_can_be_removed_by_original_callable():
    registry = ListenerRegistry()
    calls = []

    def fn(payload):
        calls.append(payload)

    registry.once("chat", fn)
    registry.remove("chat", fn)
    registry.emit("chat", 1)
    assert calls == []


def test_removal_during_dispatch_uses_snapshot():
    registry = ListenerRegistry()
    calls = []

    def second(*args):
        calls.append("second")

    def first(*args):
        calls.append("first")
        registry.remove("chat", second)

    registry.on("chat", first)
    registry.on("chat", second)

    registry.emit("chat")
    registry.emit("chat")
    assert calls == ["first", "second", "first"]


def test_remove_and_prune():
    registry = ListenerRegistry()
    calls = []
    fn = lambda: calls.append("fn")  # noqa: E731
    registry.remove("nothing", fn)

    registry.on("chat", fn)
    registry.on("chat", lambda: calls.append("other"))
    registry.prune("chat")
    registry.emit("chat")
    assert calls == []


def test_failing_listener_does_not_block_others():
    registry = ListenerRegistry()
    calls = []

    def broken(*args):
        raise RuntimeError("boom")

    registry.on("chat", broken)
    registry.on("chat", lambda *args: calls.append(args))
    registry.emit("chat", 1)
    assert calls == [(1,)]


@pytest.mark.asyncio
async def test_within_removes_listener_after_timeout_even_if_never_fired():
    registry = ListenerRegistry()
    calls = []

    def fn(payload):
        calls.append(payload)

    registry.within("chat", fn, 0.05)
    assert registry.listeners("chat") == [fn]

    await asyncio.sleep(0.1)
    assert registry.listeners("chat") == []
    registry.emit("chat", 1)
    assert calls == []


@pytest.mark.asyncio
async def test_within_may_fire_repeatedly_inside_window():
    registry = ListenerRegistry()
    calls = []
    registry.within("chat", calls.append, 0.05)
    registry.emit("chat", 1)
    registry.emit("chat", 2)
    await asyncio.sleep(0.1)
    registry.emit("chat", 3)
    assert calls == [1, 2]


@pytest.mark.asyncio
async def test_remove_cancels_within_timer():
    registry = ListenerRegistry()

    def fn(payload):
        pass

    registry.within("chat", fn, 0.05)
    registry.remove("chat", fn)
    assert registry._timers == {}

    registry.on("chat", fn)
    await asyncio.sleep(0.1)
    assert registry.listeners("chat") == [fn]


@pytest.mark.asyncio
async def test_coroutine_listeners_are_scheduled():
    registry = ListenerRegistry()
    done = asyncio.Event()

    async def fn(payload):
        done.set()

    registry.on("chat", fn)
    registry.emit("chat", 1)
    await asyncio.wait_for(done.wait(), 1)


def test_remove_does_not_match_wrapped_listeners():
    registry = ListenerRegistry()
    calls = []

    def fn(payload):
        calls.append(("fn", payload))

    @functools.wraps(fn)
    def decorated(payload):
        calls.append(("decorated", payload))

    registry.on("chat", decorated)
    registry.remove("chat", fn)
    registry.emit("chat", 1)
    assert calls == [("decorated", 1)]


def test_once_is_tracked_per_event_name():
    registry = ListenerRegistry()
    calls = []
    registry.once("a", calls.append)
    registry.once("b", calls.append)

    registry.remove("a", calls.append)
    registry.emit("a", 1)
    registry.emit("b", 2)
    registry.emit("b", 3)
    assert calls == [2]
    assert registry._once_wrappers == {}


def test_once_registered_twice_fires_once():
    registry = ListenerRegistry()
    calls = []

    def fn(payload):
        calls.append(payload)

    registry.once("chat", fn)
    registry.once("chat", fn)
    assert len(registry.listeners("chat")) == 1
    registry.emit("chat", 1)
    registry.emit("chat", 2)
    assert calls == [1]


def test_remove_cancels_both_plain_and_once_registrations():
    registry = ListenerRegistry()
    calls = []

    def fn(payload):
        calls.append(payload)

    registry.on("chat", fn)
    registry.once("chat", fn)
    registry.remove("chat", fn)
    registry.emit("chat", 1)
    assert calls == []


class Counter:
    def __init__(self):
        self.seen = []

    def handle(self, payload):
        self.seen.append(payload)


def test_bound_method_can_be_removed():
    registry = ListenerRegistry()
    counter = Counter()
    registry.on("chat", counter.handle)
    registry.remove("chat", counter.handle)
    registry.emit("chat", 1)
    assert counter.seen == []
