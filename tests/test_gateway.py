import asyncio
import unittest
from datetime import datetime

from friendchat.errors import ConflictError, TransientError, UnknownError
from friendchat.gateway.base import Contains, row_matches
from tests.support import make_gateway, seed_users


class SqlGatewayTests(unittest.TestCase):
    def setUp(self) -> None:
        self.gw = make_gateway()
        seed_users(self.gw, ["alice", "bob", "carol"])

    def test_insert_returns_row_with_defaults(self):
        chat = self.gw.insert("chats", {"is_group": False, "pair_key": "alice:bob"})
        self.assertEqual(len(chat["id"]), 36)
        self.assertIsInstance(chat["created_at"], datetime)
        self.assertFalse(chat["is_group"])

    def test_query_in_filter_order_and_limit(self):
        rows = self.gw.query("users", {"id": ["alice", "carol"]}, order=["-id"])
        self.assertEqual([r["id"] for r in rows], ["carol", "alice"])

        rows = self.gw.query("users", order=["id"], limit=2)
        self.assertEqual([r["id"] for r in rows], ["alice", "bob"])

    def test_unique_violation_is_conflict(self):
        with self.assertRaises(ConflictError):
            self.gw.insert("users", {"id": "alice"})

    def test_foreign_keys_are_enforced(self):
        with self.assertRaises(ConflictError):
            self.gw.insert("chat_members", {"chat_id": "missing", "user_id": "alice"})

    def test_update_and_delete_report_counts(self):
        self.assertEqual(self.gw.update("users", {"id": ["alice", "bob"]}, {"name": "X"}), 2)
        self.assertEqual({r["name"] for r in self.gw.query("users", {"name": "X"})}, {"X"})

        self.assertEqual(self.gw.delete("users", {"id": "carol"}), 1)
        self.assertEqual(self.gw.delete("users", {"id": "carol"}), 0)

    def test_contains_filter_is_case_insensitive(self):
        rows = self.gw.query("users", {"email": Contains("ALICE@")})
        self.assertEqual([r["id"] for r in rows], ["alice"])
        self.assertTrue(row_matches({"email": "Bob@Example.com"}, {"email": Contains("example")}))
        self.assertFalse(row_matches({"email": None}, {"email": Contains("example")}))

    def test_unknown_collection(self):
        with self.assertRaises(UnknownError):
            self.gw.query("groups")


class SqlGatewaySubscriptionTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.gw = make_gateway()
        seed_users(self.gw, ["alice", "bob"])
        self.chat = self.gw.insert("chats", {"is_group": False, "pair_key": "alice:bob"})
        self.other = self.gw.insert("chats", {"is_group": False, "pair_key": "x:y"})

    def _message(self, chat_id: str, msg_id: str) -> dict:
        return {
            "id": msg_id,
            "chat_id": chat_id,
            "sender_id": "alice",
            "content": "hello",
            "sent_at": datetime(2026, 1, 1, 12, 0, 0),
        }

    async def test_subscription_receives_only_matching_rows(self):
        sub = self.gw.subscribe("messages", {"chat_id": self.chat["id"]})
        self.gw.insert("messages", self._message(self.other["id"], "m-other"))
        self.gw.insert("messages", self._message(self.chat["id"], "m-1"))
        self.gw.delete("messages", {"id": "m-1"})

        first = await asyncio.wait_for(sub.__anext__(), 1)
        second = await asyncio.wait_for(sub.__anext__(), 1)
        self.assertEqual((first.kind, first.row["id"]), ("insert", "m-1"))
        self.assertEqual((second.kind, second.row["id"]), ("delete", "m-1"))
        self.assertEqual(second.row["chat_id"], self.chat["id"])
        sub.cancel()

    async def test_cancel_ends_iteration_and_unregisters(self):
        sub = self.gw.subscribe("messages", {"chat_id": self.chat["id"]})
        self.assertEqual(len(self.gw.hub.active("messages")), 1)
        sub.cancel()
        self.assertEqual(self.gw.hub.active("messages"), [])

        received = [event async for event in sub]
        self.assertEqual(received, [])

    async def test_update_events_cover_only_touched_rows(self):
        def request(status):
            return self.gw.insert(
                "friend_requests",
                {"sender_id": "alice", "receiver_id": "bob", "user_min": "alice", "user_max": "bob", "status": status},
            )

        earlier = request("rejected")
        current = request("pending")
        sub = self.gw.subscribe("friend_requests", {"receiver_id": "bob"})

        count = self.gw.update(
            "friend_requests", {"receiver_id": "bob", "status": "pending"}, {"status": "rejected"}
        )
        self.assertEqual(count, 1)

        event = await asyncio.wait_for(sub.__anext__(), 1)
        self.assertEqual((event.kind, event.row["id"], event.row["status"]), ("update", current["id"], "rejected"))
        # строка «earlier» уже была rejected до UPDATE - события по ней нет
        with self.assertRaises(asyncio.TimeoutError):
            await asyncio.wait_for(sub.__anext__(), 0.05)
        self.assertEqual(earlier["status"], "rejected")
        sub.cancel()

    async def test_disconnect_raises_transient_error(self):
        sub = self.gw.subscribe("messages", {"chat_id": self.chat["id"]})
        self.assertEqual(self.gw.disconnect_subscriptions(), 1)
        with self.assertRaises(TransientError):
            await asyncio.wait_for(sub.__anext__(), 1)
        self.assertTrue(sub.cancelled)


if __name__ == "__main__":
    unittest.main()
