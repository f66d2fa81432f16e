import os
import tempfile

# roomchat.config creates its folders at import time: keep test runs
# out of the repository tree.
os.environ.setdefault("ROOMCHAT_PERSIST_ROOT", tempfile.mkdtemp(prefix="roomchat-tests-"))
os.environ.setdefault("ROOMCHAT_LOG_CONSOLE", "false")
