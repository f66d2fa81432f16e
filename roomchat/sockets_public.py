# ============================================
#   roomchat — Socket.IO Gateway
#   Transport adapter: every event runs to completion under room.lock,
#   then the fanout drains what it queued.
# ============================================

from flask import request
from flask_socketio import emit

from roomchat.errors import Rejection
from roomchat.handshake import DENIED
from roomchat.logger import log_info, log_exception


def register_public_handlers(socketio, room, interpreter, fanout, handshake):

    def _run(label, fn, *args):
        """Run fn under the room lock and flush; log, never raise."""
        try:
            with room.lock:
                result = fn(*args)
                fanout.flush()
            return result
        except Exception:
            log_exception("sockets_public", f"Error handling '{label}' from sid={request.sid}")
            return None

    # -----------------------------------------
    # CONNECT
    # -----------------------------------------
    @socketio.on("connect", namespace="/")
    def on_connect(auth=None):
        sid = request.sid

        def _connect():
            fanout.connect(sid)
            handshake.connect(sid)

            emit("chat history", list(room.messages))
            emit("temp disable state", room.temp_disabled)
            if room.pinned_message:
                emit("pinned message", room.pinned_message)
            if room.temp_disabled:
                emit("temp disable")

        _run("connect", _connect)
        log_info("sockets_public", f"New connection: sid={sid}")

    # -----------------------------------------
    # JOIN (+ reserved identity password prompt)
    # -----------------------------------------
    @socketio.on("new user", namespace="/")
    def on_new_user(username=None, color=None, avatar=None):
        sid = request.sid
        _run("new user", handshake.request_join, sid, username, color, avatar)

    # -----------------------------------------
    # CHAT MESSAGE (or password attempt)
    # -----------------------------------------
    @socketio.on("chat message", namespace="/")
    def on_chat_message(text=None):
        sid = request.sid

        def _message():
            if handshake.awaiting_password(sid):
                return handshake.submit_password(sid, text)
            if handshake.stage(sid) == DENIED:
                return None
            return interpreter.handle(sid, text)

        _run("chat message", _message)

    # -----------------------------------------
    # PRIVATE MESSAGE
    # -----------------------------------------
    @socketio.on("private message", namespace="/")
    def on_private_message(data=None):
        sid = request.sid
        data = data if isinstance(data, dict) else {}
        _run("private message", interpreter.private_message, sid, data.get("recipient"), data.get("message"))

    # -----------------------------------------
    # TYPING
    # -----------------------------------------
    @socketio.on("typing", namespace="/")
    def on_typing(is_typing=False):
        sid = request.sid
        _run("typing", room.set_typing, sid, bool(is_typing))

    # -----------------------------------------
    # USERNAME CHANGE
    # -----------------------------------------
    @socketio.on("username changed", namespace="/")
    def on_username_changed(new_name=None):
        sid = request.sid

        def _rename():
            result = room.rename(sid, new_name)
            if isinstance(result, Rejection):
                room.reply(sid, "❌ That username cannot be used.")
            return result

        _run("username changed", _rename)

    # -----------------------------------------
    # PRESENCE (client-reported idle/active)
    # -----------------------------------------
    @socketio.on("update status", namespace="/")
    def on_update_status(data=None):
        sid = request.sid
        status = (data or {}).get("status") if isinstance(data, dict) else None
        if status not in ("idle", "active"):
            return
        _run("update status", room.set_client_idle, sid, status == "idle")

    @socketio.on("check temp disable", namespace="/")
    def on_check_temp_disable():
        emit("temp disable status", room.temp_disabled)

    # -----------------------------------------
    # DISCONNECT (exactly one leave per sid)
    # -----------------------------------------
    @socketio.on("disconnect", namespace="/")
    def on_disconnect(reason=None):
        sid = request.sid

        def _leave():
            if not fanout.disconnect(sid):
                return None
            handshake.close(sid)
            return room.leave(sid)

        session = _run("disconnect", _leave)
        if session is not None:
            log_info("sockets_public", f"Disconnected: {session.original_name}")
