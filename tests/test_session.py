import asyncio
import unittest

from friendchat.errors import ConflictError, InvalidStateError
from friendchat.session import ChatSession
from tests.support import FAST_SYNC, make_gateway, seed_users, wait_for


class ChatSessionFlowTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.gw = make_gateway()
        seed_users(self.gw, ["alice", "bob"])
        self.alice = ChatSession(self.gw, "alice", FAST_SYNC)
        self.bob = ChatSession(self.gw, "bob", FAST_SYNC)

    async def asyncTearDown(self):
        await self.alice.aclose()
        await self.bob.aclose()

    async def _make_friends(self):
        request = self.alice.send_friend_request("bob")
        self.bob.refresh()
        incoming = self.bob.relationships.list_pending_incoming("bob")
        self.assertEqual([r.id for r in incoming], [request.id])
        self.bob.respond_to_friend_request(request.id, "accepted")
        self.alice.refresh()

    async def test_request_accept_and_chat_end_to_end(self):
        await self._make_friends()
        self.assertEqual([u.id for u in self.alice.friends], ["bob"])
        self.assertEqual([u.id for u in self.bob.friends], ["alice"])

        self.alice.open_chat_with("bob")
        self.bob.refresh()
        bob_chat = self.bob.chats.get_chat_with_user("bob", "alice")
        self.assertEqual(bob_chat.id, self.alice.selected_chat.id)
        self.bob.select_chat(bob_chat)

        sent = self.alice.send_message("hi")
        # оптимистичная копия видна сразу
        self.assertEqual([m.id for m in self.alice.current_messages], [sent.id])

        await wait_for(lambda: len(self.bob.current_messages) == 1)
        await asyncio.sleep(0.05)

        # эхо собственного сообщения не дублирует оптимистичную копию
        self.assertEqual(len(self.alice.current_messages), 1)
        mine = self.alice.current_messages[0]
        theirs = self.bob.current_messages[0]
        self.assertEqual((theirs.sent_at, theirs.id), (mine.sent_at, mine.id))
        self.assertEqual(theirs.content, "hi")

    async def test_delete_propagates_to_other_session(self):
        await self._make_friends()
        self.alice.open_chat_with("bob")
        self.bob.open_chat_with("alice")

        sent = self.bob.send_message("oops")
        await wait_for(lambda: len(self.alice.current_messages) == 1)

        self.assertTrue(self.bob.delete_message(sent.id))
        await wait_for(lambda: self.alice.current_messages == [])
        # повторное удаление с другой стороны - не ошибка
        self.assertFalse(self.alice.delete_message(sent.id))

    async def test_remove_friend_clears_chat_for_both(self):
        await self._make_friends()
        self.alice.open_chat_with("bob")
        self.bob.open_chat_with("alice")
        self.alice.send_message("one")
        self.alice.send_message("two")
        await wait_for(lambda: len(self.bob.current_messages) == 2)

        self.assertTrue(self.alice.remove_friend("bob"))
        self.assertIsNone(self.alice.selected_chat)
        self.assertEqual(self.alice.visible_chats, [])

        await wait_for(lambda: self.bob.current_messages == [])
        self.bob.refresh()
        self.assertEqual(self.bob.visible_chats, [])
        self.assertEqual(self.bob.friends, [])

    async def test_block_closes_chat_and_guards_sending(self):
        await self._make_friends()
        self.alice.open_chat_with("bob")
        self.bob.open_chat_with("alice")

        self.alice.block_user("bob")
        self.assertTrue(self.bob.is_blocked("alice"))
        self.assertIsNone(self.alice.selected_chat)

        with self.assertRaises(InvalidStateError):
            self.alice.send_message("hello?")
        with self.assertRaises(ConflictError):
            self.bob.send_message("hello?")
        with self.assertRaises(ConflictError):
            self.bob.send_friend_request("alice")

    async def test_search_then_send_request(self):
        found = self.alice.search_users("BOB@example")
        self.assertEqual([u.id for u in found], ["bob"])
        self.assertEqual(self.alice.search_users("alice"), [])

        request = self.alice.send_friend_request(found[0].id)
        self.assertEqual([r.id for r in self.alice.friend_requests], [request.id])

    async def test_incoming_requests_refresh_live(self):
        self.bob.watch_requests()
        self.alice.send_friend_request("bob")
        await wait_for(lambda: len(self.bob.friend_requests) == 1)
        self.assertEqual(self.bob.friend_requests[0].sender.id, "alice")

    async def test_close_releases_all_subscriptions(self):
        await self._make_friends()
        self.alice.open_chat_with("bob")
        self.alice.watch_requests()
        self.assertEqual(len(self.gw.hub.active()), 2)

        await self.alice.aclose()
        self.assertEqual(self.gw.hub.active(), [])

    async def test_context_manager_refreshes_and_closes(self):
        await self._make_friends()
        async with ChatSession(self.gw, "alice", FAST_SYNC) as session:
            self.assertEqual([u.id for u in session.friends], ["bob"])
            session.open_chat_with("bob")
            self.assertEqual(len(self.gw.hub.active("messages")), 1)
        self.assertEqual(self.gw.hub.active("messages"), [])


if __name__ == "__main__":
    unittest.main()
