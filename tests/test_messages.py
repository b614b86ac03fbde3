import unittest
from datetime import datetime

from friendchat.config import Settings
from friendchat.errors import ConflictError, NotFoundError, TransientError, ValidationError
from friendchat.gateway.sql import SqlStoreGateway
from friendchat.schemas.change import ChangeEvent
from friendchat.services.chats import ChatDirectory
from friendchat.services.messages import MessageStream
from friendchat.services.relationships import RelationshipStore
from tests.support import make_gateway, seed_users


class MessagesDownGateway(SqlStoreGateway):
    """Чтение сообщений недоступно, остальное работает."""

    def query(self, collection, filter=None, order=None, limit=None):
        if collection == "messages":
            raise TransientError("Store unavailable", code="store_unavailable")
        return super().query(collection, filter, order, limit)


class MessageStreamTests(unittest.TestCase):
    def setUp(self) -> None:
        self.gw = make_gateway()
        seed_users(self.gw, ["alice", "bob"])
        chats = ChatDirectory(self.gw, RelationshipStore(self.gw))
        self.chat = chats.get_or_create_chat("alice", "bob")
        self.stream = MessageStream(self.gw, settings=Settings(message_max_length=20))

    def _remote(self, msg_id, when):
        self.gw.insert(
            "messages",
            {"id": msg_id, "chat_id": self.chat.id, "sender_id": "bob", "content": msg_id, "sent_at": when},
        )

    def test_empty_content_is_rejected(self):
        for content in ("", "   ", "\n\t"):
            with self.assertRaises(ValidationError) as ctx:
                self.stream.send_message(self.chat.id, "alice", content)
            self.assertEqual(ctx.exception.code, "empty_message")
        self.assertEqual(self.gw.query("messages"), [])

    def test_too_long_content_is_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            self.stream.send_message(self.chat.id, "alice", "x" * 21)
        self.assertEqual(ctx.exception.code, "message_too_long")

    def test_fetch_history_is_ordered(self):
        self._remote("late", datetime(2026, 5, 1, 12, 0, 5))
        self._remote("early", datetime(2026, 5, 1, 12, 0, 1))
        self._remote("b-same", datetime(2026, 5, 1, 12, 0, 3))
        self._remote("a-same", datetime(2026, 5, 1, 12, 0, 3))
        ids = [m.id for m in self.stream.fetch_history(self.chat.id)]
        self.assertEqual(ids, ["early", "a-same", "b-same", "late"])

    def test_send_applies_optimistically_and_persists(self):
        self.stream.open_chat(self.chat.id)
        sent = self.stream.send_message(self.chat.id, "alice", "  hi  ")

        self.assertEqual(sent.content, "hi")
        self.assertEqual([m.id for m in self.stream.messages], [sent.id])
        stored = self.stream.fetch_history(self.chat.id)
        self.assertEqual([(m.id, m.sent_at) for m in stored], [(sent.id, sent.sent_at)])

    def test_send_to_closed_chat_only_writes(self):
        sent = self.stream.send_message(self.chat.id, "alice", "hello")
        self.assertEqual(self.stream.messages, [])
        self.assertEqual([m.id for m in self.stream.fetch_history(self.chat.id)], [sent.id])

    def test_failed_write_drops_optimistic_copy(self):
        self.stream.open_chat(self.chat.id)
        # отправитель без профиля - внешний ключ не пропустит запись
        with self.assertRaises(ConflictError):
            self.stream.send_message(self.chat.id, "nobody", "hello")
        self.assertEqual(self.stream.messages, [])
        self.assertEqual(self.stream.history.deleted_ids, frozenset())

    def test_delete_is_idempotent_for_the_caller(self):
        self.stream.open_chat(self.chat.id)
        sent = self.stream.send_message(self.chat.id, "alice", "bye")

        self.assertTrue(self.stream.delete_message(sent.id))
        self.assertEqual(self.stream.messages, [])
        self.assertFalse(self.stream.delete_message(sent.id))
        with self.assertRaises(NotFoundError):
            self.stream.delete_message(sent.id, missing_ok=False)

    def test_open_chat_loads_history_and_switch_resets_it(self):
        self._remote("m1", datetime(2026, 5, 1, 12, 0, 0))
        history = self.stream.open_chat(self.chat.id)
        self.assertEqual(history.ids, ["m1"])
        self.assertEqual(self.stream.chat_id, self.chat.id)

        self.stream.close_chat()
        self.assertIsNone(self.stream.chat_id)
        self.assertEqual(self.stream.messages, [])

    def test_empty_open_chat_reports_its_id(self):
        history = self.stream.open_chat(self.chat.id)
        self.assertEqual(len(history), 0)
        self.assertEqual(self.stream.chat_id, self.chat.id)
        self.assertEqual(self.stream.messages, [])

        # в пустой открытый чат отправка применяется оптимистично
        sent = self.stream.send_message(self.chat.id, "alice", "first")
        self.assertEqual(self.stream.history.ids, [sent.id])

    def test_failed_history_load_leaves_chat_closed(self):
        stream = MessageStream(MessagesDownGateway(self.gw.engine))
        with self.assertRaises(TransientError):
            stream.open_chat(self.chat.id)
        self.assertIsNone(stream.chat_id)
        self.assertIsNone(stream.history)

    def test_resync_adds_missing_and_drops_vanished(self):
        self._remote("kept", datetime(2026, 5, 1, 12, 0, 0))
        self._remote("gone", datetime(2026, 5, 1, 12, 0, 1))
        self.stream.open_chat(self.chat.id)

        # изменения, которые канал «не донёс»
        self.gw.delete("messages", {"id": "gone"})
        self._remote("new", datetime(2026, 5, 1, 12, 0, 2))

        self.stream.resync(self.chat.id)
        self.assertEqual(self.stream.history.ids, ["kept", "new"])

    def test_events_for_closed_chat_are_discarded(self):
        self.stream.apply(ChangeEvent.insert("messages", {"id": "x", "chat_id": self.chat.id}))
        self.assertIsNone(self.stream.history)


if __name__ == "__main__":
    unittest.main()
