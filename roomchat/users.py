# ============================================
#   roomchat — Session Registry
#   + Unique nickname suffixing (name, name2, name3 ...)
#   + Reserved identity (password protected, never suffixed)
#   + Idle detection
# ============================================

from roomchat.config import RESERVED_NAME, RESERVED_COLOR
from roomchat.errors import Rejection

IDLE_SUFFIX = " (idle)"


class Session:
    """One joined connection: identity + presentation state."""

    def __init__(self, sid, original_name, color, avatar, now):
        self.sid = sid
        self.original_name = original_name
        self.color = color
        self.avatar = avatar
        self.last_activity = now
        self.is_idle = False
        self.client_idle = False
        self.admin_blocked = False

    @property
    def display_name(self) -> str:
        if self.is_idle:
            return self.original_name + IDLE_SUFFIX
        return self.original_name

    @property
    def is_reserved(self) -> bool:
        return self.original_name == RESERVED_NAME

    def touch(self, now):
        self.last_activity = now
        self.client_idle = False

    def to_public(self) -> dict:
        return {
            "username": self.display_name,
            "color": self.color,
            "avatar": self.avatar,
            "isIdle": self.is_idle,
        }

    def __repr__(self):
        return f"Session({self.sid!r}, {self.original_name!r})"


class JoinResult:
    """
    Outcome of SessionRegistry.join():
      - session set            → joined
      - password_required True → reserved identity is free, handshake continues
      - error set              → Rejection (NAME_RESERVED / MISSING_FIELDS / ...)
    """

    def __init__(self, session=None, error=None, password_required=False):
        self.session = session
        self.error = error
        self.password_required = password_required

    @property
    def ok(self) -> bool:
        return self.session is not None


class SessionRegistry:
    """
    Authoritative set of connected users, keyed by connection id.
    Not thread-safe on its own: callers hold room.lock.
    """

    def __init__(self):
        self._sessions = {}

    # -------------------------------------------------
    #   LOOKUPS
    # -------------------------------------------------
    def get(self, sid):
        return self._sessions.get(sid)

    def __contains__(self, sid):
        return sid in self._sessions

    def __len__(self):
        return len(self._sessions)

    def all(self):
        return list(self._sessions.values())

    def reserved_holder(self):
        for s in self._sessions.values():
            if s.is_reserved:
                return s
        return None

    def find_by_name(self, name):
        """
        Case-insensitive match on original_name first, then on
        display_name (clients may send "bob (idle)").
        """
        if not name:
            return None

        target = name.strip().lower()
        for s in self._sessions.values():
            if s.original_name.lower() == target:
                return s
        for s in self._sessions.values():
            if s.display_name.lower() == target:
                return s
        return None

    def roster(self) -> list:
        return [s.to_public() for s in self._sessions.values()]

    # -------------------------------------------------
    #   NAME ALLOCATION
    # -------------------------------------------------
    def unique_name(self, base, exclude_sid=None) -> str:
        # The reserved name always counts as taken so that "eli" cannot
        # shadow it case-insensitively.
        taken = {RESERVED_NAME.lower()}
        for sid, s in self._sessions.items():
            if sid != exclude_sid:
                taken.add(s.original_name.lower())

        name = base
        suffix = 2
        while name.lower() in taken:
            name = f"{base}{suffix}"
            suffix += 1
        return name

    # -------------------------------------------------
    #   JOIN / LEAVE
    # -------------------------------------------------
    def join(self, requested_name, color, avatar, sid, now) -> JoinResult:
        name = (requested_name or "").strip() if isinstance(requested_name, str) else ""
        if not name or not sid:
            return JoinResult(error=Rejection.MISSING_FIELDS)

        if name == RESERVED_NAME:
            if self.reserved_holder() is not None:
                return JoinResult(error=Rejection.NAME_RESERVED)
            return JoinResult(password_required=True)

        session = Session(sid, self.unique_name(name), color, avatar, now)
        self._sessions[sid] = session
        return JoinResult(session=session)

    def confirm_reserved_join(self, sid, color, avatar, now) -> JoinResult:
        """
        Bind `sid` to the reserved identity. Called only after the
        password check; re-checks the holder in case someone else
        finished the handshake first.
        """
        if self.reserved_holder() is not None:
            return JoinResult(error=Rejection.NAME_RESERVED)

        session = Session(sid, RESERVED_NAME, RESERVED_COLOR, avatar, now)
        self._sessions[sid] = session
        return JoinResult(session=session)

    def leave(self, sid):
        """Remove and return the session, or None if already gone."""
        return self._sessions.pop(sid, None)

    def rename(self, sid, new_name):
        """
        Returns (old_name, new_name) or a Rejection.
        Nobody may rename to or away from the reserved identity.
        """
        session = self._sessions.get(sid)
        base = new_name.strip() if isinstance(new_name, str) else ""
        if session is None or not base:
            return Rejection.MISSING_FIELDS

        if session.is_reserved or base.lower() == RESERVED_NAME.lower():
            return Rejection.NAME_RESERVED

        old = session.original_name
        session.original_name = self.unique_name(base, exclude_sid=sid)
        return old, session.original_name

    # -------------------------------------------------
    #   IDLE DETECTION
    # -------------------------------------------------
    def sweep_idle(self, now, idle_threshold_seconds) -> bool:
        """
        Flip is_idle for every session whose state crossed the threshold
        (either direction). Returns True if anything changed.
        """
        changed = False
        for s in self._sessions.values():
            idle = s.client_idle or (now - s.last_activity) > idle_threshold_seconds
            if idle != s.is_idle:
                s.is_idle = idle
                changed = True
        return changed
