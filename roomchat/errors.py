# ============================================
#   roomchat — Rejection reasons
#   Every reason is user-facing (private reply), never fatal
# ============================================

from enum import Enum


class Rejection(Enum):
    KICKED = "kicked"
    UNAUTHORIZED = "unauthorized"
    CHAT_DISABLED = "chat_disabled"
    SLOW_MODE = "slow_mode"
    PROFANE = "profane"
    PERMANENTLY_BLOCKED = "permanently_blocked"
    UNKNOWN_COMMAND = "unknown_command"
    NAME_RESERVED = "name_reserved"
    POLL_ALREADY_ACTIVE = "poll_already_active"
    NO_POLL_ACTIVE = "no_poll_active"
    INVALID_VOTE = "invalid_vote"
    NOT_FOUND = "not_found"
    MISSING_FIELDS = "missing_fields"
    RESERVED_ONLY = "reserved_only"
    KICKING_DISABLED = "kicking_disabled"
    INVALID_ARGUMENT = "invalid_argument"
    PASSWORD_INCORRECT = "password_incorrect"
    ACCESS_DENIED = "access_denied"


# HTTP status used by the long-poll transport for each reason
HTTP_STATUS = {
    Rejection.KICKED: 403,
    Rejection.UNAUTHORIZED: 403,
    Rejection.CHAT_DISABLED: 403,
    Rejection.PERMANENTLY_BLOCKED: 403,
    Rejection.RESERVED_ONLY: 403,
    Rejection.NAME_RESERVED: 403,
    Rejection.ACCESS_DENIED: 403,
    Rejection.SLOW_MODE: 429,
    Rejection.PASSWORD_INCORRECT: 401,
    Rejection.NOT_FOUND: 404,
}


def http_status(reason: Rejection) -> int:
    return HTTP_STATUS.get(reason, 400)
