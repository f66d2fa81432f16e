# ============================================
#     roomchat — Application factory
#     One Room, one Interpreter, two transports
# ============================================

import os
import signal

from flask import Flask
from flask_socketio import SocketIO

from roomchat.config import SOCKETIO_ASYNC_MODE, HISTORY_FILE, PASSWORD_FILE
from roomchat.state import Room
from roomchat.storage import HistoryStore, AdminSecretStore
from roomchat.profanity import ProfanityFilter
from roomchat.commands import Interpreter
from roomchat.broadcast import Fanout
from roomchat.handshake import Handshake
from roomchat.sockets_public import register_public_handlers
from roomchat.http_poll import create_chat_blueprint
from roomchat.cleanup import start_idle_sweep_task, start_profanity_refresh
from roomchat.logger import log_info


def create_app(room=None, async_mode=None, start_background=True):
    """
    Build (app, socketio, room).

    Tests pass their own Room (tmp storage, fake clock), async_mode
    "threading" and start_background=False.
    """
    app = Flask(__name__)
    socketio = SocketIO(app, async_mode=async_mode or SOCKETIO_ASYNC_MODE)

    profanity = None
    if room is None:
        profanity = ProfanityFilter()
        room = Room(
            store=HistoryStore(HISTORY_FILE),
            secrets=AdminSecretStore(PASSWORD_FILE),
            is_profane=profanity,
        )
        room.load_history()

    interpreter = Interpreter(room)
    fanout = Fanout(socketio, room)
    handshake = Handshake(room)

    def _shutdown():
        log_info("server", "Shutdown requested by admin restart.")
        fanout.cancel_all()
        # socketio.run() returns on SIGINT (eventlet and werkzeug alike);
        # the process manager brings the server back up.
        os.kill(os.getpid(), signal.SIGINT)

    room.shutdown_hook = _shutdown

    register_public_handlers(socketio, room, interpreter, fanout, handshake)
    app.register_blueprint(create_chat_blueprint(room, interpreter, fanout, handshake, sleep=socketio.sleep))

    if start_background:
        start_idle_sweep_task(socketio, room, fanout)
        if profanity is not None:
            start_profanity_refresh(socketio, profanity)

    app.extensions["roomchat"] = {
        "room": room,
        "interpreter": interpreter,
        "fanout": fanout,
        "handshake": handshake,
    }
    return app, socketio, room
