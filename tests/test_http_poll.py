import time
import unittest

from flask import Flask
from flask_socketio import SocketIO

from roomchat.broadcast import Fanout
from roomchat.commands import Interpreter
from roomchat.handshake import Handshake
from roomchat.http_poll import create_chat_blueprint
from roomchat.server import create_app

from helpers import FakeClock, make_room


class HttpTestCase(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.room = make_room(clock=self.clock)
        app, _, _ = create_app(room=self.room, async_mode="threading", start_background=False)
        self.client = app.test_client()

    def post(self, action, **body):
        return self.client.post(f"/api/chat?action={action}", json=body)

    def join(self, name, user_id):
        response = self.post("join", username=name, userId=user_id, color="#abcdef", avatar=name[0])
        self.assertEqual(response.status_code, 200, response.get_json())
        return response.get_json()


class TestJoinAndInit(HttpTestCase):

    def test_init_snapshot(self):
        self.join("Sam", "u1")
        data = self.client.get("/api/chat?action=init").get_json()
        self.assertEqual([u["username"] for u in data["users"]], ["Sam"])
        self.assertEqual(data["messages"][-1]["text"], "Sam has joined the chat.")
        self.assertIsNone(data["activePoll"])
        self.assertFalse(data["tempDisableState"])

    def test_join_suffixes_name(self):
        self.join("Sam", "u1")
        data = self.join("Sam", "u2")
        self.assertTrue(data["success"])
        self.assertEqual(data["username"], "Sam2")
        self.assertEqual(data["joinMessage"]["text"], "Sam2 has joined the chat.")

    def test_join_missing_fields(self):
        response = self.post("join", username="Sam")
        self.assertEqual(response.status_code, 400)

    def test_join_while_disabled(self):
        self.room.temp_disabled = True
        response = self.post("join", username="Sam", userId="u1")
        self.assertEqual(response.status_code, 403)

    def test_invalid_action(self):
        self.assertEqual(self.client.get("/api/chat?action=nope").status_code, 400)
        self.assertEqual(self.post("nope").status_code, 400)

    def test_non_object_body_is_rejected(self):
        response = self.client.post("/api/chat?action=join", json=["x"])
        self.assertEqual(response.status_code, 400)
        self.assertIn("error", response.get_json())

        response = self.client.post("/api/chat?action=message", json="hello")
        self.assertEqual(response.status_code, 404)


class TestReservedLogin(HttpTestCase):

    def test_needs_password_then_verify(self):
        data = self.post("join", username="Eli", userId="u1").get_json()
        self.assertEqual(data, {"needsPassword": True})

        response = self.post("verify-eli", userId="u1", password="eliadmin123")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["username"], "Eli")

        response = self.post("join", username="Eli", userId="u2")
        self.assertEqual(response.status_code, 403)

    def test_wrong_password_twice(self):
        self.post("join", username="Eli", userId="u1")
        self.assertEqual(self.post("verify-eli", userId="u1", password="x").status_code, 401)
        self.assertEqual(self.post("verify-eli", userId="u1", password="y").status_code, 403)
        self.assertEqual(self.post("verify-eli", userId="u1", password="eliadmin123").status_code, 403)

    def test_verify_without_join(self):
        response = self.post("verify-eli", userId="u9", password="eliadmin123")
        self.assertEqual(response.status_code, 200)
        self.assertIsNotNone(self.room.registry.reserved_holder())


class TestMessages(HttpTestCase):

    def setUp(self):
        super().setUp()
        self.join("Sam", "u1")
        self.join("Ana", "u2")

    def test_chat_message(self):
        response = self.post("message", userId="u1", message="hello")
        data = response.get_json()
        self.assertTrue(data["success"])
        self.assertEqual(data["message"]["text"], "hello")
        self.assertEqual(self.room.messages[-1]["text"], "hello")

    def test_unknown_user(self):
        self.assertEqual(self.post("message", userId="ghost", message="hi").status_code, 404)

    def test_unauthorized_admin_command(self):
        response = self.post("message", userId="u1", message="server init kick Ana")
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.get_json()["privateMessage"], "❌ You are not authorized to use admin commands.")

    def test_admin_reply(self):
        self.post("message", userId="u1", message="server init2")
        data = self.post("message", userId="u1", message="server init2").get_json()
        self.assertEqual(data, {"privateMessage": "Temp Admin Granted"})

    def test_slow_mode_is_429(self):
        self.room.slow_mode_enabled = True
        self.post("message", userId="u1", message="one")
        self.assertEqual(self.post("message", userId="u1", message="two").status_code, 429)

    def test_private_message(self):
        data = self.post("message", userId="u1", message="psst", privateRecipient="Ana").get_json()
        self.assertTrue(data["success"])
        self.assertNotEqual(self.room.messages[-1]["text"], "psst")

    def test_private_message_reaches_http_recipient(self):
        before = self.room.last_change_ms
        self.clock.advance(1)
        self.post("message", userId="u1", message="secret", privateRecipient="Ana")
        self.assertGreater(self.room.last_change_ms, before)

        data = self.client.get("/api/chat?action=init&userId=u2").get_json()
        self.assertEqual(data["privateMessages"], [{"user": "Sam", "text": "secret"}])

        # Handed over once, never to anyone else
        data = self.client.get("/api/chat?action=init&userId=u2").get_json()
        self.assertEqual(data["privateMessages"], [])
        data = self.client.get("/api/chat?action=init&userId=u1").get_json()
        self.assertEqual(data["privateMessages"], [])

    def test_private_message_wakes_long_poll(self):
        last = self.room.last_change_ms
        self.clock.advance(1)
        self.post("message", userId="u1", message="secret", privateRecipient="Ana")
        data = self.client.get(f"/api/chat?action=poll&lastUpdate={last}&userId=u2").get_json()
        self.assertEqual(data["privateMessages"], [{"user": "Sam", "text": "secret"}])

    def test_typing_shows_in_snapshot(self):
        self.post("typing", userId="u1", isTyping=True)
        data = self.client.get("/api/chat?action=init").get_json()
        self.assertEqual(data["typingUsers"], ["Sam"])

    def test_update_activity(self):
        self.post("update-activity", userId="u2", isIdle=True)
        data = self.client.get("/api/chat?action=init").get_json()
        self.assertIn("Ana (idle)", [u["username"] for u in data["users"]])

    def test_leave(self):
        self.assertTrue(self.post("leave", userId="u2").get_json()["success"])
        self.assertIsNone(self.room.registry.get("u2"))
        self.assertEqual(self.room.messages[-1]["text"], "Ana has left the chat.")
        # Second leave is harmless
        self.assertEqual(self.post("leave", userId="u2").status_code, 200)


class TestLongPoll(unittest.TestCase):

    def setUp(self):
        self.room = make_room(clock=FakeClock())
        app = Flask(__name__)
        socketio = SocketIO(app, async_mode="threading")
        bp = create_chat_blueprint(
            self.room, Interpreter(self.room), Fanout(socketio, self.room), Handshake(self.room),
            sleep=time.sleep, poll_timeout=0.2, poll_interval=0.02,
        )
        app.register_blueprint(bp)
        self.client = app.test_client()

    def test_returns_immediately_when_changed(self):
        with self.room.lock:
            self.room.join("u1", "Sam", "#fff", "S")
        started = time.monotonic()
        data = self.client.get("/api/chat?action=poll&lastUpdate=0").get_json()
        self.assertLess(time.monotonic() - started, 0.2)
        self.assertEqual(len(data["users"]), 1)

    def test_times_out_with_snapshot(self):
        last = self.room.now_ms()
        data = self.client.get(f"/api/chat?action=poll&lastUpdate={last}").get_json()
        self.assertEqual(data["users"], [])
        self.assertEqual(data["timestamp"], last)

    def test_bad_last_update_treated_as_zero(self):
        response = self.client.get("/api/chat?action=poll&lastUpdate=abc")
        self.assertEqual(response.status_code, 200)


if __name__ == "__main__":
    unittest.main()
