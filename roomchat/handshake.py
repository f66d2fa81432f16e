# ============================================
#   roomchat — Join Handshake
#   CONNECTED → AWAITING_NAME → (AWAITING_PASSWORD →) ACTIVE → CLOSED
#   Wrong reserved password twice → DENIED (connection kept, never ACTIVE)
# ============================================

from roomchat.config import RESERVED_NAME
from roomchat.errors import Rejection
from roomchat.users import JoinResult
from roomchat.logger import log_info, log_warning

AWAITING_NAME = "awaiting_name"
AWAITING_PASSWORD = "awaiting_password"
ACTIVE = "active"
DENIED = "denied"
CLOSED = "closed"

JOIN_ERRORS = {
    Rejection.NAME_RESERVED: f'❌ The username "{RESERVED_NAME}" is already in use.',
    Rejection.MISSING_FIELDS: "❌ Please choose a username.",
    Rejection.CHAT_DISABLED: "❌ Chat is temporarily disabled.",
    Rejection.ACCESS_DENIED: f"❌ Access denied for username {RESERVED_NAME}.",
}


class Handshake:
    """
    Per-connection join state, shared by both transports.
    Caller holds room.lock.
    """

    def __init__(self, room, max_password_attempts=2):
        self.room = room
        self.max_password_attempts = max_password_attempts
        self._conns = {}

    def connect(self, sid):
        self._conns[sid] = {"stage": AWAITING_NAME}

    def stage(self, sid):
        conn = self._conns.get(sid)
        return conn["stage"] if conn else None

    def awaiting_password(self, sid) -> bool:
        return self.stage(sid) == AWAITING_PASSWORD

    def close(self, sid):
        self._conns.pop(sid, None)

    def _fail(self, sid, reason):
        self.room.reply(sid, JOIN_ERRORS.get(reason, "❌ Could not join."))
        return JoinResult(error=reason)

    # -------------------------------------------------
    #   NAME
    # -------------------------------------------------
    def request_join(self, sid, name, color, avatar) -> JoinResult:
        conn = self._conns.setdefault(sid, {"stage": AWAITING_NAME})
        stage = conn["stage"]

        if stage == ACTIVE:
            return JoinResult(session=self.room.registry.get(sid))
        if stage == DENIED:
            return JoinResult(error=Rejection.ACCESS_DENIED)

        result = self.room.join(sid, name, color, avatar)

        if result.password_required:
            conn.update(stage=AWAITING_PASSWORD, attempts=0, color=color, avatar=avatar)
            self.room.reply(sid, f"🔐 Enter password for {RESERVED_NAME}:")
            return result

        if result.ok:
            conn["stage"] = ACTIVE
            return result

        return self._fail(sid, result.error)

    # -------------------------------------------------
    #   PASSWORD
    # -------------------------------------------------
    def submit_password(self, sid, attempt) -> JoinResult:
        conn = self._conns.get(sid)
        if not conn or conn["stage"] != AWAITING_PASSWORD:
            return JoinResult(error=Rejection.MISSING_FIELDS)

        secrets = self.room.secrets
        ok = (
            secrets is not None
            and isinstance(attempt, str)
            and attempt.strip() == secrets.read()
        )

        if ok:
            result = self.room.confirm_reserved_join(sid, conn.get("color"), conn.get("avatar"))
            if result.ok:
                conn["stage"] = ACTIVE
                log_info("handshake", f"{RESERVED_NAME} authenticated (sid={sid})")
                return result
            conn["stage"] = AWAITING_NAME
            return self._fail(sid, result.error)

        conn["attempts"] = conn.get("attempts", 0) + 1
        log_warning("handshake", f"Wrong {RESERVED_NAME} password (sid={sid}, attempt={conn['attempts']})")

        if conn["attempts"] < self.max_password_attempts:
            self.room.reply(sid, "❌ Incorrect password. Try again:")
            return JoinResult(error=Rejection.PASSWORD_INCORRECT)

        conn["stage"] = DENIED
        return self._fail(sid, Rejection.ACCESS_DENIED)
