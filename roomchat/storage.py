# ============================================
#   roomchat — Persistence
#   Chat history (bounded JSON log) + obfuscated admin secret
# ============================================

import os
import json
import base64
import binascii

from roomchat.config import HISTORY_FILE, PASSWORD_FILE, DEFAULT_ADMIN_SECRET_B64
from roomchat.logger import log_info, log_warning, log_exception


# =====================================================
#   FILESYSTEM HELPERS
# =====================================================

def _ensure_parent(path: str):
    base = os.path.dirname(path)
    if base:
        os.makedirs(base, exist_ok=True)


def _safe_read_json(path: str, default):
    """
    Safe JSON reader with fallback.
    Returns `default` on missing file or parse errors.
    """
    if not path or not os.path.exists(path):
        return default

    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError):
        log_exception("storage", f"Unreadable JSON file: {path}")
        return default


def _atomic_write_text(path: str, text: str):
    """
    Write a temp file then os.replace() it, so a crash mid-write
    never leaves a truncated file behind.
    """
    _ensure_parent(path)

    tmp_path = f"{path}.tmp"
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp_path, path)
    except OSError:
        try:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
        except OSError:
            pass
        raise


# =====================================================
#   CHAT HISTORY
# =====================================================

class HistoryStore:
    """
    Loads and saves the chat history as a JSON array.

    save() is best-effort: the in-memory history stays authoritative,
    a failed write is logged and never raised into the command path.
    """

    def __init__(self, path=HISTORY_FILE):
        self.path = path

    def load(self) -> list:
        data = _safe_read_json(self.path, [])
        if not isinstance(data, list):
            log_warning("storage", f"History file {self.path} is not a list, ignoring it.")
            return []

        messages = [m for m in data if isinstance(m, dict)]
        log_info("storage", f"Loaded {len(messages)} messages from {self.path}")
        return messages

    def save(self, messages) -> bool:
        try:
            payload = json.dumps(list(messages), indent=2, ensure_ascii=False)
            _atomic_write_text(self.path, payload)
            return True
        except (OSError, TypeError, ValueError):
            log_exception("storage", f"Error saving chat history to {self.path}")
            return False


# =====================================================
#   ADMIN SECRET (base64 at rest, NOT encryption)
# =====================================================

class AdminSecretStore:
    """
    Shared secret of the reserved identity.

    Stored base64-encoded in a single file. If the file is missing or
    cannot be decoded, the built-in default secret is used instead.
    """

    def __init__(self, path=PASSWORD_FILE, default_b64=DEFAULT_ADMIN_SECRET_B64):
        self.path = path
        self.default_b64 = default_b64

    @staticmethod
    def _decode(encoded: str) -> str:
        return base64.b64decode(encoded.strip(), validate=True).decode("utf-8")

    def read(self) -> str:
        fallback = self._decode(self.default_b64)

        if not os.path.exists(self.path):
            return fallback

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return self._decode(f.read())
        except (OSError, binascii.Error, UnicodeDecodeError):
            log_exception("storage", "Error reading admin password file, using fallback.")
            return fallback

    def write(self, secret: str):
        encoded = base64.b64encode(secret.encode("utf-8")).decode("ascii")
        _atomic_write_text(self.path, encoded)
        log_info("storage", "Admin password updated.")
