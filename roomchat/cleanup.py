# ============================================
#     roomchat — Background Tasks
#     Idle sweep + startup profanity list refresh
# ============================================

from roomchat.config import IDLE_SWEEP_INTERVAL_SECONDS
from roomchat.logger import log_info, log_exception


def sweep_once(room, fanout) -> bool:
    """
    One idle-detection pass. Re-broadcasts the roster only when
    at least one session flipped between idle and active.
    """
    with room.lock:
        changed = room.sweep_idle()
        if changed:
            idle = [s.original_name for s in room.registry.all() if s.is_idle]
            log_info("cleanup", f"Presence changed, idle now: {idle}")
        fanout.flush()
    return changed


def start_idle_sweep_task(socketio, room, fanout, interval=IDLE_SWEEP_INTERVAL_SECONDS):
    log_info("cleanup", f"Starting idle sweep task (every {interval}s).")

    def _task():
        while True:
            try:
                socketio.sleep(interval)
                sweep_once(room, fanout)
            except Exception as e:
                log_exception("cleanup", f"Error during idle sweep: {e}")

    socketio.start_background_task(_task)


def start_profanity_refresh(socketio, profanity_filter):
    """Download the word lists without blocking startup."""

    def _task():
        try:
            profanity_filter.refresh()
        except Exception as e:
            log_exception("cleanup", f"Profanity list refresh crashed: {e}")

    socketio.start_background_task(_task)
