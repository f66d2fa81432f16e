import unittest

from roomchat.broadcast import Fanout
from roomchat.state import AUDIT

from helpers import FakeSocketIO, make_room, join, join_reserved


class TestFanout(unittest.TestCase):

    def setUp(self):
        self.socketio = FakeSocketIO()
        self.room = make_room()
        self.fanout = Fanout(self.socketio, self.room)
        self.fanout.connect("s1")
        self.fanout.connect("e1")

    def test_flush_preserves_order(self):
        join(self.room, "s1", "Sam")
        self.fanout.flush()
        self.assertEqual([e[0] for e in self.socketio.emitted], ["update users", "chat message"])
        self.assertEqual(self.room.outbox, [])

    def test_broadcast_skip(self):
        self.room.emit("typing", {"user": "Sam", "isTyping": True}, skip="s1")
        self.fanout.flush()
        event, payload, kwargs = self.socketio.emitted[0]
        self.assertEqual(kwargs["skip_sid"], "s1")
        self.assertEqual(kwargs["namespace"], "/")

    def test_targeted_delivery(self):
        self.room.reply("s1", "hi")
        self.fanout.flush()
        self.assertEqual(self.socketio.emitted[0][2]["to"], "s1")

    def test_payloadless_event(self):
        self.room.emit("clear history")
        self.fanout.flush()
        self.assertEqual(self.socketio.emitted[0][:2], ("clear history", None))

    def test_gone_connection_is_dropped(self):
        self.room.reply("gone", "hi")
        self.fanout.flush()
        self.assertEqual(self.socketio.emitted, [])

    def test_audit_goes_to_reserved_holder(self):
        join_reserved(self.room, "e1")
        self.room.drain()
        self.room.emit("chat message", {"text": "audit"}, to=AUDIT)
        self.fanout.flush()
        self.assertEqual(self.socketio.emitted[0][2]["to"], "e1")

    def test_audit_without_holder_is_dropped(self):
        self.room.emit("chat message", {"text": "audit"}, to=AUDIT)
        self.fanout.flush()
        self.assertEqual(self.socketio.emitted, [])

    def test_disconnect_reports_first_time_only(self):
        self.assertTrue(self.fanout.disconnect("s1"))
        self.assertFalse(self.fanout.disconnect("s1"))
        self.assertFalse(self.fanout.is_live("s1"))


class TestDeferredTasks(unittest.TestCase):

    def setUp(self):
        self.socketio = FakeSocketIO()
        self.room = make_room()
        self.fanout = Fanout(self.socketio, self.room)

    def test_task_runs_after_delay_and_flushes(self):
        self.room.defer(3, lambda r: r.emit("tick"), label="tick")
        self.fanout.flush()
        self.assertEqual(len(self.socketio.tasks), 1)

        self.socketio.run_tasks()
        self.assertEqual(self.socketio.slept, [3])
        self.assertEqual([e[0] for e in self.socketio.emitted], ["tick"])
        self.assertEqual(self.fanout.scheduled, [])

    def test_cancelled_task_does_nothing(self):
        self.room.defer(1, lambda r: r.emit("tick"))
        self.fanout.flush()
        self.fanout.cancel_all()
        self.socketio.run_tasks()
        self.assertEqual(self.socketio.emitted, [])

    def test_failing_task_is_logged_not_raised(self):
        def boom(room):
            raise RuntimeError("boom")

        self.room.defer(1, boom, label="boom")
        self.fanout.flush()
        self.socketio.run_tasks()
        self.assertEqual(self.fanout.scheduled, [])


if __name__ == "__main__":
    unittest.main()
