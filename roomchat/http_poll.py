# ============================================
#   roomchat — HTTP Long-Poll Gateway
#   /api/chat?action=init|poll|join|verify-eli|message|typing|leave|update-activity
#   Same Room + Interpreter as the Socket.IO transport.
# ============================================

import time

from flask import Blueprint, jsonify, request

from roomchat.config import RESERVED_NAME, LONG_POLL_TIMEOUT_SECONDS, LONG_POLL_INTERVAL_SECONDS
from roomchat.errors import Rejection, http_status
from roomchat.commands import Outcome
from roomchat.handshake import JOIN_ERRORS
from roomchat.logger import log_info, log_exception


def _error(status, message, private_message=None):
    body = {"error": message}
    if private_message:
        body["privateMessage"] = private_message
    return jsonify(body), status


def _join_response(room, result):
    session = result.session
    return jsonify({
        "success": True,
        "username": session.original_name,
        "joinMessage": room.messages[-1] if room.messages else None,
        "users": room.registry.roster(),
    })


def create_chat_blueprint(room, interpreter, fanout, handshake, sleep=time.sleep,
                          poll_timeout=LONG_POLL_TIMEOUT_SECONDS,
                          poll_interval=LONG_POLL_INTERVAL_SECONDS):
    """
    Build the long-poll blueprint. `sleep` must cooperate with the
    server's async mode (socketio.sleep under eventlet).
    """
    bp = Blueprint("chat_api", __name__)

    # -----------------------------------------
    # GET: init / poll
    # -----------------------------------------
    def _wait_for_change(last_update):
        deadline = time.monotonic() + poll_timeout
        while time.monotonic() < deadline:
            with room.lock:
                if room.last_change_ms > last_update:
                    return
            sleep(poll_interval)

    @bp.route("/api/chat", methods=["GET"])
    def chat_get():
        action = (request.args.get("action") or "").strip()
        user_id = request.args.get("userId") or None

        if action == "init":
            with room.lock:
                return jsonify(room.snapshot(user_id))

        if action == "poll":
            try:
                last_update = int(request.args.get("lastUpdate", "0"))
            except ValueError:
                last_update = 0

            # Never hold the lock while waiting
            _wait_for_change(last_update)
            with room.lock:
                return jsonify(room.snapshot(user_id))

        return _error(400, "Invalid action or method")

    # -----------------------------------------
    # POST: everything that mutates state
    # -----------------------------------------
    @bp.route("/api/chat", methods=["POST"])
    def chat_post():
        action = (request.args.get("action") or "").strip()
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            body = {}
        user_id = body.get("userId")

        handler = _POST_ACTIONS.get(action)
        if handler is None:
            return _error(400, "Invalid action or method")

        try:
            with room.lock:
                response = handler(body, user_id)
                fanout.flush()
            return response
        except Exception as e:
            log_exception("http_poll", f"Error in /api/chat action={action}")
            return jsonify({"error": "Internal server error", "detail": str(e)}), 500

    def _join(body, user_id):
        if not body.get("username") or not user_id:
            return _error(400, "Missing username or userId")

        result = handshake.request_join(user_id, body.get("username"), body.get("color"), body.get("avatar"))
        if result.password_required:
            return jsonify({"needsPassword": True})
        if not result.ok:
            return _error(http_status(result.error), JOIN_ERRORS.get(result.error, "Could not join"))

        room.attach_poll_client(user_id)
        log_info("http_poll", f"HTTP join: {result.session.original_name} (id={user_id})")
        return _join_response(room, result)

    def _verify(body, user_id):
        if not user_id:
            return _error(400, "Missing userId")

        if not handshake.awaiting_password(user_id):
            # Stateless clients may skip the join step
            pending = handshake.request_join(user_id, RESERVED_NAME,
                                             body.get("color"), body.get("avatar"))
            if not pending.password_required:
                reason = pending.error or Rejection.NAME_RESERVED
                return _error(http_status(reason), JOIN_ERRORS.get(reason, "Could not join"))

        result = handshake.submit_password(user_id, body.get("password"))
        if result.ok:
            room.attach_poll_client(user_id)
            return _join_response(room, result)

        if result.error == Rejection.PASSWORD_INCORRECT:
            return _error(401, "Incorrect password")
        return _error(http_status(result.error), JOIN_ERRORS.get(result.error, "Access denied"))

    def _message(body, user_id):
        if room.registry.get(user_id) is None:
            return _error(404, "User not found")

        recipient = body.get("privateRecipient")
        if recipient:
            outcome = interpreter.private_message(user_id, recipient, body.get("message"))
        else:
            outcome = interpreter.handle(user_id, body.get("message"))

        if outcome.kind == Outcome.REJECTED:
            return _error(http_status(outcome.reason), outcome.reason.value, outcome.text)
        if outcome.kind == Outcome.ADMIN_REPLY:
            return jsonify({"privateMessage": outcome.text})
        if outcome.kind == Outcome.NOOP:
            return _error(400, "Empty message")
        return jsonify({"success": True, "message": outcome.message})

    def _typing(body, user_id):
        room.set_typing(user_id, bool(body.get("isTyping")))
        return jsonify({"success": True})

    def _leave(body, user_id):
        handshake.close(user_id)
        room.leave(user_id)
        return jsonify({"success": True})

    def _update_activity(body, user_id):
        room.set_client_idle(user_id, bool(body.get("isIdle")))
        return jsonify({"success": True})

    _POST_ACTIONS = {
        "join": _join,
        "verify-eli": _verify,
        "message": _message,
        "typing": _typing,
        "leave": _leave,
        "update-activity": _update_activity,
    }

    return bp
