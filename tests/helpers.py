"""
Shared test doubles for the roomchat test suite
"""

import os
import tempfile

from roomchat.state import Room
from roomchat.storage import AdminSecretStore
from roomchat.commands import Interpreter


class FakeClock:
    """Manually advanced clock (epoch seconds)."""

    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class MemoryStore:
    """HistoryStore stand-in that keeps every save in memory."""

    def __init__(self, initial=None):
        self.initial = list(initial or [])
        self.saves = []

    def load(self):
        return list(self.initial)

    def save(self, messages):
        self.saves.append(list(messages))
        return True


def make_room(clock=None, store=None, is_profane=None, history_limit=500):
    secret_dir = tempfile.mkdtemp(prefix="roomchat-secret-")
    return Room(
        store=store if store is not None else MemoryStore(),
        secrets=AdminSecretStore(os.path.join(secret_dir, "eli-password.txt")),
        is_profane=is_profane,
        clock=clock or FakeClock(),
        history_limit=history_limit,
    )


def make_interpreter(**kwargs):
    room = make_room(**kwargs)
    return room, Interpreter(room)


def join(room, sid, name, color="#123456", avatar="A"):
    result = room.join(sid, name, color, avatar)
    assert result.ok, f"join failed for {name}: {result.error}"
    return result.session


def join_reserved(room, sid="eli-sid"):
    result = room.confirm_reserved_join(sid, "#ffffff", "E")
    assert result.ok
    return result.session


def grant(interpreter, sid):
    """Run the two-step temp admin handshake for sid."""
    interpreter.handle(sid, "server init2")
    interpreter.handle(sid, "server init2")
    assert interpreter.room.is_granted(sid)


def drain(room, event=None, to="*"):
    """Pop pending deliveries, optionally filtered by event / target."""
    deliveries, _ = room.drain()
    return [
        d for d in deliveries
        if (event is None or d.event == event) and (to == "*" or d.to == to)
    ]


def texts(deliveries):
    return [d.payload["text"] for d in deliveries if isinstance(d.payload, dict) and "text" in d.payload]


def run_deferred(room):
    """Fire queued deferred tasks in delay order; pending deliveries are discarded first."""
    _, tasks = room.drain()
    for task in sorted(tasks, key=lambda t: t.delay):
        if not task.cancelled:
            task.fn(room)
    return tasks


class FakeSocketIO:
    """Records emits; background tasks are kept, not started."""

    def __init__(self):
        self.emitted = []
        self.tasks = []
        self.slept = []

    def emit(self, event, *args, **kwargs):
        self.emitted.append((event, args[0] if args else None, kwargs))

    def start_background_task(self, fn, *args):
        self.tasks.append((fn, args))

    def sleep(self, seconds):
        self.slept.append(seconds)

    def run_tasks(self):
        tasks, self.tasks = self.tasks, []
        for fn, args in tasks:
            fn(*args)
