# ============================================
#     roomchat — Global Configuration
# ============================================

import os

# =========================================
#   ENVIRONMENT
# =========================================
# Expected values: "dev", "prod"
ENV = os.getenv("ENV", "dev").lower()

IS_PROD = ENV == "prod"

# =========================================
#   PATHS — SINGLE SOURCE OF TRUTH (PERSISTENCE)
# =========================================
# Override with ROOMCHAT_PERSIST_ROOT=/custom/path
# In dev, we default to a local folder inside the repo: ./var/data

# Project root = one level above /roomchat
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

PERSIST_ROOT = os.getenv("ROOMCHAT_PERSIST_ROOT") or (
    "/var/data" if IS_PROD else os.path.join(PROJECT_ROOT, "var", "data")
)

DATA_DIR = PERSIST_ROOT

# Chat history (bounded append log) and the obfuscated admin secret
HISTORY_FILE = os.getenv("ROOMCHAT_HISTORY_FILE", os.path.join(PERSIST_ROOT, "chat-history.json"))
PASSWORD_FILE = os.getenv("ROOMCHAT_PASSWORD_FILE", os.path.join(PERSIST_ROOT, "eli-password.txt"))

# Logs persistence
LOG_DIR = os.path.join(PERSIST_ROOT, "logs")
DEFAULT_LOG_FILE = os.path.join(LOG_DIR, "roomchat.log")
LOG_FILE = os.getenv("ROOMCHAT_LOG_FILE", DEFAULT_LOG_FILE)

# Ensure folders exist at startup
os.makedirs(PERSIST_ROOT, exist_ok=True)
os.makedirs(LOG_DIR, exist_ok=True)

# =========================================
#   GENERAL PARAMETERS
# =========================================
HISTORY_LIMIT = int(os.getenv("HISTORY_LIMIT", "500"))          # Max messages kept in history
IDLE_TIMEOUT_SECONDS = int(os.getenv("IDLE_TIMEOUT_SECONDS", str(5 * 60)))
IDLE_SWEEP_INTERVAL_SECONDS = 5                                  # Idle detection scan interval
SLOW_MODE_DEFAULT_MS = 2000                                      # Slow mode delay until changed
TYPING_TTL_SECONDS = 5                                           # Stale typing indicators expire
RESTART_COUNTDOWN_SECONDS = 5                                    # "server init restart" countdown
KICK_DELAY_SECONDS = 1                                           # Kick lands on the next tick
TEMP_DISABLE_DELAY_SECONDS = 2                                   # "server init temp disable" grace period
CLEAR_HISTORY_COUNTDOWN_SECONDS = 3                              # "Clearing chat history in 3..2..1"

# HTTP long-poll transport
LONG_POLL_TIMEOUT_SECONDS = float(os.getenv("LONG_POLL_TIMEOUT_SECONDS", "30"))
LONG_POLL_INTERVAL_SECONDS = 0.1

# Timestamps shown next to messages
DISPLAY_TIMEZONE = os.getenv("DISPLAY_TIMEZONE", "America/New_York")

# =========================================
#   RESERVED IDENTITY & ADMIN COMMANDS
# =========================================
# The reserved identity is password protected and never auto-suffixed.
RESERVED_NAME = "Eli"
RESERVED_COLOR = "#f59611"

ADMIN_PREFIX = "server init"
ADMIN_INIT_PHRASE = "server init2"
ADMIN_INIT_WINDOW_SECONDS = 10

# base64("eliadmin123"), used when PASSWORD_FILE is missing or unreadable
DEFAULT_ADMIN_SECRET_B64 = os.getenv("DEFAULT_ADMIN_SECRET_B64", "ZWxpYWRtaW4xMjM=")

# System message presentation
SYSTEM_USER = "Server"
SYSTEM_COLOR = "#000000"
SYSTEM_AVATAR = "S"

# =========================================
#   PROFANITY WORD LISTS (fetched at startup)
# =========================================
PROFANITY_SOURCES = [
    # Plain text, one word per line
    "https://www.cs.cmu.edu/~biglou/resources/bad-words.txt",
    # JSON array of words
    "https://raw.githubusercontent.com/zacanger/profane-words/master/words.json",
]
PROFANITY_FETCH_TIMEOUT = 8

# =========================================
#   SERVER
# =========================================
# "eventlet" in production (see app.py); tests run with "threading".
SOCKETIO_ASYNC_MODE = os.getenv("SOCKETIO_ASYNC_MODE", "eventlet")
PORT = int(os.getenv("PORT", "3000"))
