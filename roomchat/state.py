# ============================================
#   roomchat — Room State
#   Single owned object: registry + polls + room-wide flags
#   + outbox of pending deliveries for the fanout layer
# ============================================

import re
import time
import uuid
import threading
from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from roomchat.config import (
    HISTORY_LIMIT,
    IDLE_TIMEOUT_SECONDS,
    SLOW_MODE_DEFAULT_MS,
    TYPING_TTL_SECONDS,
    DISPLAY_TIMEZONE,
    RESERVED_NAME,
    SYSTEM_USER,
    SYSTEM_COLOR,
    SYSTEM_AVATAR,
)
from roomchat.errors import Rejection
from roomchat.users import SessionRegistry, JoinResult
from roomchat.polls import PollEngine
from roomchat.logger import log_info, log_warning

# Delivery targets besides a plain connection id
ALL = None
AUDIT = "@reserved"

# "📢 Admin Broadcast: x" → "Admin Broadcast: x" for audit echoes
_LEADING_DECORATION = re.compile(r"^[^a-zA-Z0-9]+")

try:
    _DISPLAY_TZ = ZoneInfo(DISPLAY_TIMEZONE)
except ZoneInfoNotFoundError:
    log_warning("state", f"Unknown DISPLAY_TIMEZONE={DISPLAY_TIMEZONE}, using server local time.")
    _DISPLAY_TZ = None


def format_time(ts: float) -> str:
    """12h clock string shown next to messages, e.g. '3:04:05 PM'."""
    dt = datetime.fromtimestamp(ts, _DISPLAY_TZ)
    return dt.strftime("%I:%M:%S %p").lstrip("0")


class Delivery:
    """
    One outbound event.

    to:   ALL (None), a connection id, or AUDIT (the reserved-identity holder)
    skip: connection id excluded from an ALL delivery (typing relay)
    """

    def __init__(self, event, payload=None, to=ALL, skip=None):
        self.event = event
        self.payload = payload
        self.to = to
        self.skip = skip

    def __repr__(self):
        return f"Delivery({self.event!r}, to={self.to!r})"


class DeferredTask:
    """A delayed unit of work; fn(room) runs under room.lock at fire time."""

    def __init__(self, delay, fn, label=""):
        self.delay = delay
        self.fn = fn
        self.label = label
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class AdminGrant:
    """Two-step temporary admin authorization for one connection."""

    def __init__(self, first_init_time, granted=False):
        self.first_init_time = first_init_time
        self.granted = granted


class Room:
    """
    All shared chat state. Every read-modify-write goes through
    `with room.lock:`; side effects are queued on the outbox and
    drained by broadcast.Fanout.
    """

    def __init__(self, store=None, secrets=None, is_profane=None, clock=time.time,
                 history_limit=HISTORY_LIMIT, idle_timeout=IDLE_TIMEOUT_SECONDS):
        self.lock = threading.RLock()
        self.store = store
        self.secrets = secrets
        self.is_profane = is_profane or (lambda text: False)
        self.clock = clock
        self.history_limit = history_limit
        self.idle_timeout = idle_timeout

        self.registry = SessionRegistry()
        self.polls = PollEngine()

        self.messages = []
        self.pinned_message = ""
        self.slow_mode_enabled = False
        self.slow_mode_interval_ms = SLOW_MODE_DEFAULT_MS
        self.temp_disabled = False
        self.kicked = set()
        self.kicking_enabled = True
        self.profanity_filter_enabled = False

        self.temp_admins = {}
        self.last_message_at = {}
        self.typing = {}
        self.last_change_ms = 0

        # HTTP long-poll clients cannot receive targeted emits: private
        # messages for them wait here until their next poll.
        self.poll_clients = set()
        self.private_inbox = {}

        self.outbox = []
        self.deferred = []
        self.shutdown_hook = None

    # =====================================================
    #   CLOCK
    # =====================================================
    def now(self) -> float:
        return self.clock()

    def now_ms(self) -> int:
        return int(self.clock() * 1000)

    def mark_changed(self):
        self.last_change_ms = self.now_ms()

    # =====================================================
    #   HISTORY
    # =====================================================
    def load_history(self):
        if self.store is None:
            return
        self.messages = self.store.load()[-self.history_limit:]

    def _persist(self):
        if self.store is not None:
            self.store.save(self.messages)

    def make_entry(self, user, text, color, avatar) -> dict:
        now = self.now()
        return {
            "id": uuid.uuid4().hex,
            "user": user,
            "text": text,
            "color": color,
            "avatar": avatar,
            "time": format_time(now),
            "timestamp": int(now * 1000),
        }

    def append(self, entry: dict):
        """Append to history (oldest evicted past the cap) and persist."""
        self.messages.append(entry)
        overflow = len(self.messages) - self.history_limit
        if overflow > 0:
            del self.messages[:overflow]
        self._persist()

    def publish(self, entry: dict) -> dict:
        """Record an entry and broadcast it as a chat message."""
        self.append(entry)
        self.emit("chat message", entry)
        return entry

    def post_system(self, text, user=SYSTEM_USER, color=SYSTEM_COLOR, avatar=SYSTEM_AVATAR) -> dict:
        return self.publish(self.make_entry(user, text, color, avatar))

    def clear_history(self):
        self.messages = []
        self._persist()

    # =====================================================
    #   OUTBOX
    # =====================================================
    def emit(self, event, payload=None, to=ALL, skip=None):
        self.outbox.append(Delivery(event, payload, to=to, skip=skip))
        self.mark_changed()

    def reply(self, sid, text):
        """Private server notice; never stored in history."""
        entry = self.make_entry(SYSTEM_USER, text, SYSTEM_COLOR, SYSTEM_AVATAR)
        self.outbox.append(Delivery("chat message", entry, to=sid))

    def audit(self, actor, text):
        """Echo a privileged action to the reserved holder (unless they did it)."""
        if actor is not None and actor.is_reserved:
            return
        name = actor.original_name if actor is not None else "system"
        detail = _LEADING_DECORATION.sub("", text)
        entry = self.make_entry(SYSTEM_USER, f"Admin command executed by {name}: {detail}",
                                SYSTEM_COLOR, SYSTEM_AVATAR)
        self.outbox.append(Delivery("chat message", entry, to=AUDIT))

    def emit_roster(self):
        self.emit("update users", self.registry.roster())

    def send_private(self, sid, payload):
        """Deliver a private message; held for the next poll of HTTP clients."""
        if sid in self.poll_clients:
            self.private_inbox.setdefault(sid, []).append(payload)
        self.emit("private message", payload, to=sid)

    def attach_poll_client(self, sid):
        self.poll_clients.add(sid)

    def defer(self, delay, fn, label="") -> DeferredTask:
        task = DeferredTask(delay, fn, label)
        self.deferred.append(task)
        return task

    def drain(self):
        """Hand pending deliveries and deferred tasks to the caller."""
        deliveries, tasks = self.outbox, self.deferred
        self.outbox, self.deferred = [], []
        return deliveries, tasks

    # =====================================================
    #   TEMP ADMIN GRANTS
    # =====================================================
    def is_granted(self, sid) -> bool:
        grant = self.temp_admins.get(sid)
        return bool(grant and grant.granted)

    def grant(self, sid):
        self.temp_admins[sid] = AdminGrant(self.now(), granted=True)

    def revoke(self, sid):
        self.temp_admins.pop(sid, None)

    # =====================================================
    #   SESSION LIFECYCLE
    # =====================================================
    def join(self, sid, name, color, avatar) -> JoinResult:
        if self.temp_disabled and name != RESERVED_NAME:
            return JoinResult(error=Rejection.CHAT_DISABLED)

        result = self.registry.join(name, color, avatar, sid, self.now())
        if result.ok:
            self._announce_join(result.session)
        return result

    def confirm_reserved_join(self, sid, color, avatar) -> JoinResult:
        result = self.registry.confirm_reserved_join(sid, color, avatar, self.now())
        if result.ok:
            self.grant(sid)
            self._announce_join(result.session)
        return result

    def _announce_join(self, session):
        log_info("state", f"{session.original_name} joined (sid={session.sid})")
        self.emit_roster()
        self.post_system(f"{session.original_name} has joined the chat.")

    def leave(self, sid):
        """Idempotent: a second disconnect for the same sid does nothing."""
        session = self.registry.leave(sid)

        self.typing.pop(sid, None)
        self.revoke(sid)
        self.last_message_at.pop(sid, None)
        self.kicked.discard(sid)
        self.poll_clients.discard(sid)
        self.private_inbox.pop(sid, None)

        if session is None:
            return None

        log_info("state", f"{session.original_name} left (sid={sid})")
        self.emit_roster()
        self.post_system(f"{session.original_name} has left the chat.")
        return session

    def rename(self, sid, new_name):
        result = self.registry.rename(sid, new_name)
        if isinstance(result, Rejection):
            return result

        old, new = result
        self.emit_roster()
        self.post_system(f"{old} changed username to {new}.")
        log_info("state", f"{old} changed username to {new}")
        return result

    # =====================================================
    #   PRESENCE
    # =====================================================
    def set_client_idle(self, sid, idle: bool) -> bool:
        session = self.registry.get(sid)
        if session is None:
            return False

        if idle:
            session.client_idle = True
        else:
            session.touch(self.now())
        return self.sweep_idle()

    def sweep_idle(self) -> bool:
        changed = self.registry.sweep_idle(self.now(), self.idle_timeout)
        if changed:
            self.emit_roster()
        return changed

    def set_typing(self, sid, is_typing: bool):
        session = self.registry.get(sid)
        if session is None or self.temp_disabled or sid in self.kicked:
            return

        if is_typing:
            self.typing[sid] = {"user": session.display_name, "timestamp": self.now()}
        else:
            self.typing.pop(sid, None)

        self.emit("typing", {"user": session.display_name, "isTyping": bool(is_typing)}, skip=sid)

    def typing_users(self) -> list:
        cutoff = self.now() - TYPING_TTL_SECONDS
        for sid in [s for s, t in self.typing.items() if t["timestamp"] < cutoff]:
            self.typing.pop(sid, None)
        return [t["user"] for t in self.typing.values()]

    # =====================================================
    #   SNAPSHOT (HTTP long-poll transport)
    # =====================================================
    def snapshot(self, sid=None) -> dict:
        """Public room view; pending private messages for `sid` are handed over once."""
        return {
            "messages": list(self.messages),
            "users": self.registry.roster(),
            "typingUsers": self.typing_users(),
            "pinnedMessage": self.pinned_message,
            "activePoll": self.polls.snapshot(),
            "tempDisableState": self.temp_disabled,
            "slowModeEnabled": self.slow_mode_enabled,
            "privateMessages": self.private_inbox.pop(sid, []) if sid is not None else [],
            "timestamp": self.now_ms(),
        }
