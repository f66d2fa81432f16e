# ============================================
#   roomchat — Broadcast / Fanout Layer
#   Drains room.outbox into Socket.IO emits
#   + runs deferred tasks as background tasks
# ============================================

from roomchat.state import ALL, AUDIT
from roomchat.logger import log_info, log_exception


class Fanout:
    """
    Delivers queued room events to live Socket.IO connections.

    flush() must be called while holding room.lock, right after the
    event that produced the deliveries, so ordering matches the order
    in which state changed.
    """

    def __init__(self, socketio, room, namespace="/"):
        self.socketio = socketio
        self.room = room
        self.namespace = namespace
        self.live = set()
        self.scheduled = []

    # -------------------------------------------------
    #   CONNECTION TRACKING
    # -------------------------------------------------
    def connect(self, sid):
        self.live.add(sid)

    def disconnect(self, sid) -> bool:
        """True the first time a sid goes away, False for duplicates."""
        if sid not in self.live:
            return False
        self.live.discard(sid)
        return True

    def is_live(self, sid) -> bool:
        return sid in self.live

    # -------------------------------------------------
    #   DELIVERY
    # -------------------------------------------------
    def _emit(self, event, payload, **kwargs):
        kwargs.setdefault("namespace", self.namespace)
        if payload is None:
            self.socketio.emit(event, **kwargs)
        else:
            self.socketio.emit(event, payload, **kwargs)

    def deliver(self, delivery):
        if delivery.to is ALL:
            self._emit(delivery.event, delivery.payload, skip_sid=delivery.skip)
            return

        if delivery.to == AUDIT:
            holder = self.room.registry.reserved_holder()
            if holder is None:
                return
            target = holder.sid
        else:
            target = delivery.to

        # Gone (or HTTP-only) connections: nothing to do
        if target not in self.live:
            return

        self._emit(delivery.event, delivery.payload, to=target)

    def flush(self):
        deliveries, tasks = self.room.drain()
        for delivery in deliveries:
            self.deliver(delivery)
        for task in tasks:
            self.schedule(task)

    # -------------------------------------------------
    #   DEFERRED TASKS
    # -------------------------------------------------
    def schedule(self, task):
        self.scheduled.append(task)
        self.socketio.start_background_task(self._run_task, task)

    def _run_task(self, task):
        try:
            self.socketio.sleep(task.delay)
            if task.cancelled:
                return

            # Re-acquire the shared lock at fire time
            with self.room.lock:
                if task.cancelled:
                    return
                task.fn(self.room)
                self.flush()
        except Exception:
            log_exception("broadcast", f"Deferred task '{task.label}' failed")
        finally:
            if task in self.scheduled:
                self.scheduled.remove(task)

    def cancel_all(self):
        for task in list(self.scheduled):
            task.cancel()
        if self.scheduled:
            log_info("broadcast", f"Cancelled {len(self.scheduled)} pending task(s).")
        self.scheduled = []
