# ============================================
#   roomchat — Command Interpreter
#   Chat messages + "server init ..." admin commands + !vote
#   Caller MUST hold room.lock for the whole handle() call.
# ============================================

import re
import math
from collections import namedtuple

from roomchat.config import (
    ADMIN_PREFIX,
    ADMIN_INIT_PHRASE,
    ADMIN_INIT_WINDOW_SECONDS,
    RESERVED_NAME,
    RESTART_COUNTDOWN_SECONDS,
    KICK_DELAY_SECONDS,
    TEMP_DISABLE_DELAY_SECONDS,
    CLEAR_HISTORY_COUNTDOWN_SECONDS,
)
from roomchat.errors import Rejection
from roomchat.polls import PollError
from roomchat.state import AdminGrant
from roomchat.logger import log_info, log_warning, log_exception


# =====================================================
#   OUTCOME
# =====================================================

class Outcome:
    """
    Structured result of one inbound text.
    The deliveries it implies are already queued on room.outbox.
    """

    REJECTED = "rejected"
    ADMIN_REPLY = "admin_reply"
    BROADCAST = "broadcast"
    CHAT_ACCEPTED = "chat_accepted"
    NOOP = "noop"

    def __init__(self, kind, reason=None, text=None, message=None):
        self.kind = kind
        self.reason = reason
        self.text = text
        self.message = message

    @classmethod
    def rejected(cls, reason, text):
        return cls(cls.REJECTED, reason=reason, text=text)

    @classmethod
    def admin_reply(cls, text):
        return cls(cls.ADMIN_REPLY, text=text)

    @classmethod
    def broadcast(cls, message, text=None):
        if text is None and message is not None:
            text = message.get("text")
        return cls(cls.BROADCAST, text=text, message=message)

    @classmethod
    def chat(cls, message):
        return cls(cls.CHAT_ACCEPTED, text=message.get("text"), message=message)

    @classmethod
    def noop(cls):
        return cls(cls.NOOP)

    @property
    def is_rejected(self) -> bool:
        return self.kind == self.REJECTED

    def __repr__(self):
        return f"Outcome({self.kind!r}, reason={self.reason!r}, text={self.text!r})"


# =====================================================
#   PARSER
# =====================================================

Command = namedtuple("Command", ["name", "args"])


def _kw(phrase):
    """'server init temp disable' → regex tolerant to repeated spaces."""
    return r"\s+".join(re.escape(w) for w in phrase.split())


_P = _kw(ADMIN_PREFIX)

# Order matters: first full match wins.
COMMAND_PATTERNS = [
    ("help", rf"{_P}\s+help"),
    ("broadcast", rf"{_P}\s+broadcast(?:\s+(?P<text>.*))?"),
    ("slowmode_on", rf"{_P}\s+slowmode\s+on"),
    ("slowmode_off", rf"{_P}\s+slowmode\s+off"),
    ("slowmode_set", rf"{_P}\s+slowmode\s+(?P<seconds>\S+)"),
    ("temp_disable_off", rf"{_P}\s+temp\s+disable\s+off"),
    ("temp_disable", rf"{_P}\s+temp\s+disable"),
    ("clear_history", rf"{_P}\s+clear\s+history"),
    ("kick_on", rf"{_P}\s+kickon"),
    ("kick_off", rf"{_P}\s+kickoff"),
    ("kick", rf"{_P}\s+kick\s+(?P<name>.+)"),
    ("unkick", rf"{_P}\s+unkick\s+(?P<name>.+)"),
    ("pin_off", rf"{_P}\s+pinoff"),
    ("pin", rf"{_P}\s+pin(?:\s+(?P<text>.*))?"),
    ("poll", rf"{_P}\s+poll(?:\s+(?P<options>.*))?"),
    ("end_poll", rf"{_P}\s+endpoll"),
    ("admin_add", rf"{_P}\s+admin\s+add\s+(?P<name>.+)"),
    ("admin_delete", rf"{_P}\s+admin\s+delete\s+(?P<name>.+)"),
    ("change_password", rf"{_P}\s+change\s+password\s+(?P<secret>.+)"),
    ("impersonate", rf"{_P}\s+impersonate\s+(?P<name>\S+)(?:\s+(?P<text>.*))?"),
    ("filter_on", rf"{_P}\s+filter\s+on"),
    ("filter_off", rf"{_P}\s+filter\s+off"),
    ("restart", rf"{_P}\s+restart"),
    ("vote", r"!vote(?P<choice>.*)"),
]

_COMPILED = [(name, re.compile(p, re.IGNORECASE | re.DOTALL)) for name, p in COMMAND_PATTERNS]

# Reserved identity only (on top of the temp-admin grant)
RESERVED_ONLY = {
    "admin_delete",
    "change_password",
    "impersonate",
    "filter_on",
    "filter_off",
    "kick_on",
    "kick_off",
}


def parse_command(text):
    """
    Map a stripped message to a Command, or None for plain chat
    (or an unknown admin command; the caller tells them apart).
    Argument text keeps its original case.
    """
    for name, pattern in _COMPILED:
        m = pattern.fullmatch(text)
        if m:
            args = {k: (v.strip() if v else "") for k, v in m.groupdict().items()}
            return Command(name, args)
    return None


def is_admin_text(text) -> bool:
    return text.lower().startswith(ADMIN_PREFIX)


# =====================================================
#   HELP
# =====================================================

HELP_ADMIN = [
    "server init temp disable",
    "server init temp disable off",
    "server init clear history",
    "server init kick <username>",
    "server init unkick <username>",
    "server init slowmode on/off",
    "server init restart",
    "server init slowmode <time>",
    "server init broadcast <text>",
    "server init pin <text> / pinoff",
    "server init poll <option1> <option2> / endpoll",
    "server init admin add <username>",
]

HELP_RESERVED = [
    "server init admin delete <username>",
    "server init change password <new_password>",
    "server init impersonate <username> <message>",
    "server init filter on/off",
    "server init kickon / kickoff",
]


def help_text(reserved: bool) -> str:
    lines = HELP_ADMIN + (HELP_RESERVED if reserved else [])
    body = "\n".join(f"{i}. {cmd}" for i, cmd in enumerate(lines, 1))
    return f"🛠️ Admin Commands:\n{body}"


# =====================================================
#   INTERPRETER
# =====================================================

class Interpreter:
    """
    Turns one inbound text into state changes + queued deliveries.

    Dispatch order:
      1. kicked            → KICKED
      2. blocked init      → PERMANENTLY_BLOCKED
      3. init phrase       → two-step temp admin grant
      4. admin, no grant   → UNAUTHORIZED
      5. temp disable      → CHAT_DISABLED (admin texts pass)
      6. slow mode         → SLOW_MODE (admin texts pass)
      7. command or chat
    """

    def __init__(self, room):
        self.room = room

    # -------------------------------------------------
    #   HELPERS
    # -------------------------------------------------
    def _reject(self, session, reason, text):
        self.room.reply(session.sid, text)
        log_warning("commands", f"Rejected ({reason.value}) from {session.original_name}")
        return Outcome.rejected(reason, text)

    def _reply(self, session, text):
        self.room.reply(session.sid, text)
        return Outcome.admin_reply(text)

    def _announce(self, session, text):
        """Broadcast a system notice and echo it to the reserved holder."""
        entry = self.room.post_system(text)
        self.room.audit(session, text)
        return Outcome.broadcast(entry)

    def _not_found(self, session, name):
        return self._reject(session, Rejection.NOT_FOUND, f'❌ Could not find user "{name}".')

    # -------------------------------------------------
    #   ENTRY POINT
    # -------------------------------------------------
    def handle(self, sid, raw) -> Outcome:
        room = self.room
        session = room.registry.get(sid)
        if session is None or not isinstance(raw, str):
            return Outcome.noop()

        text = raw.strip()
        if not text:
            return Outcome.noop()

        lowered = text.lower()
        admin_text = is_admin_text(text)
        now = room.now()

        if sid in room.kicked:
            return self._reject(session, Rejection.KICKED,
                                "❌ You have been kicked and cannot send messages.")

        if lowered == ADMIN_INIT_PHRASE:
            if session.admin_blocked:
                return self._reject(session, Rejection.PERMANENTLY_BLOCKED,
                                    "❌ You are permanently blocked from becoming an admin.")
            return self._admin_init(session, now)

        if admin_text and not room.is_granted(sid):
            log_warning("commands", f"{session.original_name} attempted admin command without permission: {text}")
            return self._reject(session, Rejection.UNAUTHORIZED,
                                "❌ You are not authorized to use admin commands.")

        if room.temp_disabled and not admin_text:
            return self._reject(session, Rejection.CHAT_DISABLED,
                                "❌ Admin has enabled temp chat disable. You cannot send messages.")

        if room.slow_mode_enabled and not admin_text:
            last = room.last_message_at.get(sid)
            if last is not None and (now - last) * 1000 < room.slow_mode_interval_ms:
                return self._reject(session, Rejection.SLOW_MODE,
                                    "⏳ Slow mode is enabled. Please wait.")

        room.last_message_at[sid] = now
        session.touch(now)
        if session.is_idle:
            room.sweep_idle()

        command = parse_command(text)
        if command is None:
            if admin_text:
                return self._reject(session, Rejection.UNKNOWN_COMMAND,
                                    "❌ Unknown admin command. Try: server init help")
            return self._chat(session, text)

        if command.name in RESERVED_ONLY and not session.is_reserved:
            log_warning("commands", f"Unauthorized {command.name} attempt by {session.original_name}")
            return self._reject(session, Rejection.RESERVED_ONLY,
                                f"❌ Only {RESERVED_NAME} is authorized to use this command.")

        handler = getattr(self, f"cmd_{command.name}")
        outcome = handler(session, command.args)

        if command.name != "vote":
            log_info("commands", f"{session.original_name}: {command.name} {command.args}")
        return outcome

    # -------------------------------------------------
    #   TWO-STEP TEMP ADMIN
    # -------------------------------------------------
    def _admin_init(self, session, now):
        room = self.room
        record = room.temp_admins.get(session.sid)

        if record is None or now - record.first_init_time > ADMIN_INIT_WINDOW_SECONDS:
            room.temp_admins[session.sid] = AdminGrant(now, granted=False)
            return self._reply(session, "Ok")

        if not record.granted:
            record.granted = True
            holder = room.registry.reserved_holder()
            if holder is not None and holder.sid != session.sid:
                room.reply(holder.sid, f"🛡️ {session.original_name} has been granted temporary admin access.")
            log_info("commands", f"Temp admin granted to {session.original_name}")

        return self._reply(session, "Temp Admin Granted")

    # -------------------------------------------------
    #   CHAT
    # -------------------------------------------------
    def _chat(self, session, text):
        room = self.room

        if room.profanity_filter_enabled and room.is_profane(text):
            return self._reject(session, Rejection.PROFANE,
                                "❌ Your message was blocked due to profanity.")

        entry = room.make_entry(session.display_name, text, session.color, session.avatar)
        room.publish(entry)
        log_info("commands", f"💬 {session.original_name}: {text[:80]}")
        return Outcome.chat(entry)

    def private_message(self, sid, recipient_name, text) -> Outcome:
        room = self.room

        if sid in room.kicked:
            session = room.registry.get(sid)
            if session is None:
                return Outcome.noop()
            return self._reject(session, Rejection.KICKED,
                                "❌ You have been kicked and cannot send private messages.")

        sender = room.registry.get(sid)
        if sender is None or not isinstance(text, str) or not text.strip():
            return Outcome.noop()

        recipient = room.registry.find_by_name(recipient_name if isinstance(recipient_name, str) else "")
        if recipient is None:
            return self._not_found(sender, recipient_name)

        if room.profanity_filter_enabled and room.is_profane(text):
            return self._reject(sender, Rejection.PROFANE,
                                "❌ Your private message was blocked due to profanity.")

        payload = {"user": sender.display_name, "text": text}
        room.send_private(recipient.sid, payload)
        return Outcome(Outcome.CHAT_ACCEPTED, text=text, message=payload)

    # =====================================================
    #   ADMIN COMMANDS (granted)
    # =====================================================
    def cmd_help(self, session, args):
        return self._reply(session, help_text(session.is_reserved))

    def cmd_broadcast(self, session, args):
        text = args.get("text")
        if not text:
            return self._reject(session, Rejection.INVALID_ARGUMENT,
                                "❌ Cannot send an empty broadcast message.")
        return self._announce(session, f"📢 Admin Broadcast: {text}")

    def cmd_slowmode_on(self, session, args):
        self.room.slow_mode_enabled = True
        return self._announce(session, "⚙️ Admin has enabled slow mode.")

    def cmd_slowmode_off(self, session, args):
        self.room.slow_mode_enabled = False
        return self._announce(session, "⚙️ Admin has disabled slow mode.")

    def cmd_slowmode_set(self, session, args):
        try:
            seconds = float(args.get("seconds", ""))
        except ValueError:
            seconds = None

        if seconds is None or not math.isfinite(seconds) or seconds <= 0:
            return self._reject(session, Rejection.INVALID_ARGUMENT, "❌ Invalid slowmode time.")

        self.room.slow_mode_interval_ms = int(round(seconds * 1000))
        text = f"⏳ Slowmode delay changed to {seconds:g} seconds."
        self.room.audit(session, text)
        return self._reply(session, text)

    def cmd_temp_disable(self, session, args):
        def apply(r):
            text = "⚠️ Admin has enabled temp chat disable."
            r.temp_disabled = True
            r.emit("temp disable")
            r.post_system(text)
            r.audit(session, text)
            log_info("commands", f"Temp disable ON triggered by {session.original_name}")

        self.room.defer(TEMP_DISABLE_DELAY_SECONDS, apply, label="temp-disable")
        return Outcome.broadcast(None, text="temp disable scheduled")

    def cmd_temp_disable_off(self, session, args):
        self.room.temp_disabled = False
        self.room.emit("temp disable off")
        return self._announce(session, "✅ Admin has disabled temp chat disable.")

    def cmd_clear_history(self, session, args):
        room = self.room

        def countdown(remaining):
            def _tick(r):
                r.post_system(f"🧹 Clearing chat history in {remaining}...")
            return _tick

        def finish(r):
            text = "🧹 Chat history has been cleared."
            r.clear_history()
            r.post_system(text)
            r.emit("clear history")
            r.audit(session, text)

        for step in range(1, CLEAR_HISTORY_COUNTDOWN_SECONDS + 1):
            room.defer(step, countdown(CLEAR_HISTORY_COUNTDOWN_SECONDS - step + 1), label="clear-countdown")
        room.defer(CLEAR_HISTORY_COUNTDOWN_SECONDS + 1, finish, label="clear-history")

        log_info("commands", f"Clear chat history triggered by {session.original_name}")
        return Outcome.broadcast(None, text="clear history scheduled")

    def cmd_kick(self, session, args):
        room = self.room
        if not room.kicking_enabled:
            return self._reject(session, Rejection.KICKING_DISABLED,
                                "❌ The kick command is currently disabled.")

        target = room.registry.find_by_name(args["name"])
        if target is None:
            return self._not_found(session, args["name"])

        target_sid = target.sid

        def apply(r):
            # Target may have left during the countdown
            current = r.registry.get(target_sid)
            if current is None:
                return
            r.kicked.add(target_sid)
            r.emit("you were kicked", to=target_sid)
            r.reply(target_sid, "❌ You were kicked by admin.")
            text = f"{current.original_name} was kicked by {session.original_name}."
            r.post_system(text)
            r.audit(session, text)
            log_info("commands", f"Kicked {current.original_name} by {session.original_name}")

        room.defer(KICK_DELAY_SECONDS, apply, label="kick")
        return Outcome.broadcast(None, text="kick scheduled")

    def cmd_unkick(self, session, args):
        room = self.room
        target = room.registry.find_by_name(args["name"])
        if target is None:
            return self._not_found(session, args["name"])

        if target.sid not in room.kicked:
            return self._reply(session, f"ℹ️ {target.original_name} is not currently kicked.")

        room.kicked.discard(target.sid)
        return self._announce(session, f"✅ {target.original_name} has been un-kicked and can rejoin.")

    def cmd_pin(self, session, args):
        room = self.room
        text = args.get("text")
        if not text:
            return self._reject(session, Rejection.INVALID_ARGUMENT, "❌ Cannot pin an empty message.")

        room.pinned_message = text
        room.emit("pinned message", text)
        entry = room.publish(room.make_entry("📌 Pinned Message", text, "#f39c12", ""))
        room.audit(session, "pinned a message.")
        return Outcome.broadcast(entry)

    def cmd_pin_off(self, session, args):
        room = self.room
        room.pinned_message = ""
        room.emit("pinned message", "")
        room.audit(session, "cleared pinned message.")
        return self._reply(session, "📌 Pinned message cleared.")

    # -------------------------------------------------
    #   POLLS
    # -------------------------------------------------
    def _poll_entry(self, title, text, color):
        room = self.room
        return room.publish(room.make_entry(title, text, color, ""))

    @staticmethod
    def _results(options, counts):
        return f"{options[0]}: {counts[0]} votes\n{options[1]}: {counts[1]} votes"

    def cmd_poll(self, session, args):
        room = self.room
        if room.polls.active:
            return self._reject(session, Rejection.POLL_ALREADY_ACTIVE, "❌ A poll is already running.")

        options = args.get("options", "").split()
        if len(options) < 2:
            return self._reject(session, Rejection.INVALID_ARGUMENT,
                                "❌ Please provide two options: server init poll [option1] [option2]")

        room.polls.start(options[0], options[1])
        entry = self._poll_entry(
            "🗳️ System",
            f"Poll started!\nOption 1: {options[0]}\nOption 2: {options[1]}\nVote using: !vote 1 or !vote 2",
            "#3498db",
        )
        room.audit(session, f"started a poll ({options[0]} / {options[1]}).")
        return Outcome.broadcast(entry)

    def cmd_vote(self, session, args):
        room = self.room
        try:
            choice = int(args.get("choice", ""))
        except ValueError:
            choice = None

        try:
            counts = room.polls.vote(session.sid, choice)
        except PollError as e:
            if e.reason == Rejection.NO_POLL_ACTIVE:
                return self._reject(session, e.reason, "❌ No active poll.")
            return self._reject(session, e.reason, "❌ Invalid vote. Use !vote 1 or !vote 2.")

        entry = self._poll_entry(
            "🗳️ Poll Update",
            "Current results:\n" + self._results(room.polls.options, counts),
            "#2ecc71",
        )
        return Outcome.broadcast(entry)

    def cmd_end_poll(self, session, args):
        room = self.room
        options = list(room.polls.options or [])
        try:
            counts = room.polls.end()
        except PollError as e:
            return self._reject(session, e.reason, "❌ No poll is active.")

        entry = self._poll_entry("🗳️ Poll Ended", "Final results:\n" + self._results(options, counts), "#e74c3c")
        room.audit(session, "ended the poll.")
        return Outcome.broadcast(entry)

    # -------------------------------------------------
    #   ADMIN MANAGEMENT
    # -------------------------------------------------
    def cmd_admin_add(self, session, args):
        room = self.room
        target = room.registry.find_by_name(args["name"])
        if target is None:
            return self._not_found(session, args["name"])

        if target.admin_blocked:
            return self._reject(session, Rejection.PERMANENTLY_BLOCKED,
                                f"❌ {target.original_name} is permanently blocked from becoming an admin.")

        room.grant(target.sid)
        room.reply(target.sid, "🛡️ You have been granted temporary admin.")
        text = f"✅ Temp admin granted to {target.original_name}."
        room.audit(session, text)
        return self._reply(session, text)

    def cmd_admin_delete(self, session, args):
        room = self.room
        target = room.registry.find_by_name(args["name"])
        if target is None:
            return self._not_found(session, args["name"])

        target.admin_blocked = True
        room.revoke(target.sid)
        log_info("commands", f"Admin block: {target.original_name} blocked by {session.original_name}")
        return self._reply(session, f"✅ {target.original_name} has been blocked from becoming admin.")

    def cmd_change_password(self, session, args):
        secret = args.get("secret", "")
        if not secret:
            return self._reject(session, Rejection.INVALID_ARGUMENT, "❌ New password cannot be empty.")

        if self.room.secrets is None:
            return self._reject(session, Rejection.INVALID_ARGUMENT, "❌ Password storage is not configured.")

        try:
            self.room.secrets.write(secret)
        except OSError:
            log_exception("commands", "Error writing admin password file")
            return self._reject(session, Rejection.INVALID_ARGUMENT, "❌ Could not update the password.")

        return self._reply(session, f"✅ {RESERVED_NAME} login password has been updated.")

    def cmd_impersonate(self, session, args):
        room = self.room
        text = args.get("text")
        if not text:
            return self._reject(
                session, Rejection.INVALID_ARGUMENT,
                "❌ Invalid impersonate command format. Use: server init impersonate [username] [message]",
            )

        target = room.registry.find_by_name(args["name"])
        if target is None:
            return self._not_found(session, args["name"])

        entry = room.make_entry(target.display_name, text, target.color, target.avatar)
        room.publish(entry)
        log_info("commands", f"🎭 Impersonated message from {target.original_name} by {session.original_name}")
        return Outcome.broadcast(entry)

    def cmd_filter_on(self, session, args):
        self.room.profanity_filter_enabled = True
        return self._announce(session, "🛡️ Profanity filter has been ENABLED.")

    def cmd_filter_off(self, session, args):
        self.room.profanity_filter_enabled = False
        return self._announce(session, "🛡️ Profanity filter has been DISABLED.")

    def cmd_kick_on(self, session, args):
        self.room.kicking_enabled = True
        return self._announce(session, f"✅ Kick command has been ENABLED by {session.original_name}.")

    def cmd_kick_off(self, session, args):
        self.room.kicking_enabled = False
        return self._announce(session, f"🚫 Kick command has been DISABLED by {session.original_name}.")

    # -------------------------------------------------
    #   RESTART (deferred countdown)
    # -------------------------------------------------
    def cmd_restart(self, session, args):
        room = self.room
        room.emit("shutdown initiated")

        def countdown(remaining):
            def _tick(r):
                r.post_system(f"🚨 Server restarting in {remaining} second(s)...")
            return _tick

        def finish(r):
            text = "🚨 Server restarting (takes 1 - 2 minutes to complete)."
            r.post_system(text)
            r.audit(session, text)
            if r.shutdown_hook is not None:
                r.shutdown_hook()

        for step in range(1, RESTART_COUNTDOWN_SECONDS + 1):
            room.defer(step, countdown(RESTART_COUNTDOWN_SECONDS - step + 1), label="restart-countdown")
        room.defer(RESTART_COUNTDOWN_SECONDS + 1, finish, label="restart")

        log_warning("commands", f"🚨 Restart initiated by {session.original_name}")
        return Outcome.broadcast(None, text="restart scheduled")
