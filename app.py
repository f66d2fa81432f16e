# ============================================
#     roomchat — Main Application
# ============================================

# -------------------------------------------------
#   EVENTLET PATCH (REQUIRED BEFORE ANY OTHER IMPORT)
# -------------------------------------------------
import eventlet
eventlet.monkey_patch()

# -----------------------------------------
#   ENV VARIABLES (.env)
# -----------------------------------------
from dotenv import load_dotenv
load_dotenv()

from roomchat.config import DATA_DIR, PORT
from roomchat.server import create_app
from roomchat.logger import log_info

# =========================================
#   FLASK + SOCKET.IO
# =========================================
app, socketio, room = create_app()
log_info("app", f"Persistent DATA_DIR: {DATA_DIR} ({len(room.messages)} messages loaded)")

# =========================================
#   RUN SERVER
# =========================================
if __name__ == "__main__":
    log_info("app", f"Server starting on port {PORT}...")
    socketio.run(app, host="0.0.0.0", port=PORT)
