# friendchat/services/messages.py
# История сообщений чата: загрузка, оптимистичная отправка, удаление и merge событий канала.

from __future__ import annotations

import logging
import uuid
from typing import Dict, Iterable, List, Optional, Set, TYPE_CHECKING

from pydantic import ValidationError as SchemaValidationError

from friendchat.config import Settings, get_settings
from friendchat.errors import FriendChatError, NotFoundError, ValidationError
from friendchat.gateway.base import StoreGateway
from friendchat.schemas.change import ChangeEvent
from friendchat.schemas.message import MessageOut
from friendchat.utils.time import utc_now

if TYPE_CHECKING:
    from friendchat.jobs.chat_sync import SyncCoordinator, WatchHandle

log = logging.getLogger(__name__)

MESSAGES = "messages"


class ChatHistory:
    """
    Локальное состояние истории одного чата.
    Сообщения хранятся по id; deleted_ids - «надгробия»: удаление терминально,
    поздний insert уже удалённого id игнорируется.
    """

    def __init__(
        self,
        chat_id: str,
        messages: Iterable[MessageOut] = (),
        deleted_ids: Iterable[str] = (),
    ) -> None:
        self.chat_id = chat_id
        self._by_id: Dict[str, MessageOut] = {m.id: m for m in messages}
        self.deleted_ids: frozenset = frozenset(deleted_ids)

    @property
    def messages(self) -> List[MessageOut]:
        return sorted(self._by_id.values(), key=lambda m: m.sort_key)

    @property
    def ids(self) -> List[str]:
        return [m.id for m in self.messages]

    def get(self, message_id: str) -> Optional[MessageOut]:
        return self._by_id.get(message_id)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._by_id

    def __len__(self) -> int:
        return len(self._by_id)

    def _replace(self, messages: Iterable[MessageOut], deleted_ids: Iterable[str]) -> "ChatHistory":
        return ChatHistory(self.chat_id, messages, deleted_ids)

    def with_message(self, message: MessageOut) -> "ChatHistory":
        return self._replace(list(self._by_id.values()) + [message], self.deleted_ids)

    def without(self, message_id: str, *, tombstone: bool = True) -> "ChatHistory":
        deleted = self.deleted_ids | {message_id} if tombstone else self.deleted_ids
        return self._replace([m for m in self._by_id.values() if m.id != message_id], deleted)


def merge(history: ChatHistory, event: ChangeEvent) -> ChatHistory:
    """
    Редьюсер событий канала. Идемпотентен и не зависит от порядка доставки:
      insert известного id      -> без изменений
      insert удалённого id      -> игнор (удаление терминально)
      insert нового id          -> добавить (порядок (sent_at, id) держит ChatHistory)
      delete                    -> убрать + надгробие; отсутствующий id - тихий no-op
      update / чужой чат         -> игнор (редактирования нет)
    Входное состояние не мутирует.
    """
    if event.collection != MESSAGES:
        return history

    message_id = event.row.get("id")
    if message_id is None:
        return history

    row_chat = event.row.get("chat_id")
    if row_chat is not None and row_chat != history.chat_id:
        return history

    if event.kind == "insert":
        if message_id in history or message_id in history.deleted_ids:
            return history
        try:
            message = MessageOut.model_validate(event.row)
        except SchemaValidationError:
            log.warning("merge: malformed message row %s skipped", message_id)
            return history
        return history.with_message(message)

    if event.kind == "delete":
        if message_id in history.deleted_ids and message_id not in history:
            return history
        return history.without(message_id)

    return history


def merge_all(history: ChatHistory, events: Iterable[ChangeEvent]) -> ChatHistory:
    for event in events:
        history = merge(history, event)
    return history


class MessageStream:
    """
    Единственный владелец состояния сообщений.
    Одновременно открыт не больше одного чата; подписку на него ведёт SyncCoordinator.
    """

    def __init__(
        self,
        gateway: StoreGateway,
        coordinator: Optional["SyncCoordinator"] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.gateway = gateway
        self.coordinator = coordinator
        self.settings = settings or get_settings()
        self._history: Optional[ChatHistory] = None
        self._watch: Optional["WatchHandle"] = None
        # id оптимистичных отправок, запись которых ещё в полёте
        self._pending: Set[str] = set()

    # =========================
    # ЧТЕНИЕ
    # =========================

    @property
    def chat_id(self) -> Optional[str]:
        return self._history.chat_id if self._history is not None else None

    @property
    def history(self) -> Optional[ChatHistory]:
        return self._history

    @property
    def messages(self) -> List[MessageOut]:
        return self._history.messages if self._history is not None else []

    def fetch_history(self, chat_id: str) -> List[MessageOut]:
        rows = self.gateway.query(MESSAGES, {"chat_id": chat_id}, order=["sent_at", "id"])
        messages = [MessageOut.model_validate(r) for r in rows]
        # сортировка БД по строковому id может отличаться от Python - досортируем
        return sorted(messages, key=lambda m: m.sort_key)

    # =========================
    # ЖИЗНЕННЫЙ ЦИКЛ ЧАТА
    # =========================

    def open_chat(self, chat_id: str) -> ChatHistory:
        """
        Открыть чат: закрыть предыдущий (с отменой подписки), загрузить историю,
        подписаться на изменения. Подписка открывается до загрузки, чтобы не потерять
        события между ними - дубли merge поглотит.
        """
        self.close_chat()
        self._history = ChatHistory(chat_id)
        if self.coordinator is not None:
            self._watch = self.coordinator.watch(chat_id, self.apply, on_resync=self.resync)
        try:
            self.resync(chat_id)
        except FriendChatError:
            # История не загрузилась - чат не считается открытым
            self.close_chat()
            raise
        return self._history

    def close_chat(self) -> None:
        if self._watch is not None:
            self._watch.cancel()
            self._watch = None
        self._history = None

    # =========================
    # MERGE
    # =========================

    def apply(self, event: ChangeEvent) -> None:
        """Колбэк канала: события по закрытому/другому чату отбрасываются."""
        if self._history is None:
            return
        if event.row.get("chat_id") not in (None, self._history.chat_id):
            return
        self._history = merge(self._history, event)

    def resync(self, chat_id: str) -> None:
        """
        Пересинхронизация после (пере)подключения: снимок истории вливается пачкой insert-событий.
        Подтверждённые сообщения, пропавшие из снимка (удалены, пока канал лежал),
        вливаются как delete. Отправки в полёте не трогаем.
        """
        if self._history is None or self._history.chat_id != chat_id:
            return
        snapshot = self.fetch_history(chat_id)
        events = [ChangeEvent.insert(MESSAGES, m.model_dump()) for m in snapshot]
        present = {m.id for m in snapshot}
        for message in self._history.messages:
            if message.id not in present and message.id not in self._pending:
                events.append(ChangeEvent.delete(MESSAGES, {"id": message.id, "chat_id": chat_id}))
        # история могла смениться, пока шёл запрос
        if self._history is not None and self._history.chat_id == chat_id:
            self._history = merge_all(self._history, events)
            log.debug("resync chat %s: %s messages", chat_id, len(self._history))

    # =========================
    # ЗАПИСЬ
    # =========================

    def _validate_content(self, content: str) -> str:
        text = (content or "").strip()
        if not text:
            raise ValidationError("Message cannot be empty", code="empty_message")
        if len(text) > self.settings.message_max_length:
            raise ValidationError(
                f"Message is longer than {self.settings.message_max_length} characters",
                code="message_too_long",
            )
        return text

    def send_message(self, chat_id: str, sender_id: str, content: str) -> MessageOut:
        """
        Оптимистичная отправка: сообщение сразу появляется в локальной истории,
        затем пишется в хранилище. id и sent_at задаём здесь - эхо из канала совпадёт.
        Ошибка записи убирает оптимистичную копию и пробрасывается (без автоповтора).
        """
        text = self._validate_content(content)
        message = MessageOut(
            id=str(uuid.uuid4()),
            chat_id=chat_id,
            sender_id=sender_id,
            content=text,
            sent_at=utc_now(),
        )

        optimistic = self._history is not None and self._history.chat_id == chat_id
        if optimistic:
            self._pending.add(message.id)
            self._history = merge(self._history, ChangeEvent.insert(MESSAGES, message.model_dump()))

        try:
            row = self.gateway.insert(MESSAGES, message.model_dump())
        except FriendChatError as e:
            log.warning("send_message to chat %s failed: %s", chat_id, e.code)
            if self._history is not None and self._history.chat_id == chat_id:
                self._history = self._history.without(message.id, tombstone=False)
            raise
        finally:
            self._pending.discard(message.id)

        return MessageOut.model_validate(row)

    def delete_message(self, message_id: str, *, missing_ok: bool = True) -> bool:
        """
        Жёсткое удаление. Для вызывающего идемпотентно: если сообщение уже удалено
        (в том числе конкурентно из другого контекста) - успех, False.
        missing_ok=False превращает отсутствие в NotFoundError.
        """
        row = self.gateway.first(MESSAGES, {"id": message_id})
        count = self.gateway.delete(MESSAGES, {"id": message_id})

        if self._history is not None:
            chat_id = row["chat_id"] if row else None
            self._history = merge(
                self._history, ChangeEvent.delete(MESSAGES, {"id": message_id, "chat_id": chat_id})
            )

        if not count:
            if not missing_ok:
                raise NotFoundError(f"Message {message_id} not found", code="message_not_found")
            log.debug("delete_message: %s already gone", message_id)
            return False
        return True
