# friendchat/services/chats.py
# Приватные чаты: один чат на пару, видимость по текущей дружбе, каскадное удаление.

from __future__ import annotations

import logging
from typing import Dict, List, Optional, TYPE_CHECKING

from friendchat.errors import ConflictError, ValidationError
from friendchat.gateway.base import Row, StoreGateway
from friendchat.schemas.chat import ChatMemberOut, ChatOut
from friendchat.utils.pairs import pair_key
from friendchat.utils.time import utc_now

if TYPE_CHECKING:
    from friendchat.services.relationships import RelationshipStore

log = logging.getLogger(__name__)

CHATS = "chats"
MEMBERS = "chat_members"
MESSAGES = "messages"


class ChatDirectory:
    def __init__(self, gateway: StoreGateway, relationships: "RelationshipStore") -> None:
        self.gateway = gateway
        self.relationships = relationships

    # =========================
    # ВСПОМОГАТЕЛЬНЫЕ ФУНКЦИИ
    # =========================

    def _members_by_chat(self, chat_ids: List[str]) -> Dict[str, List[ChatMemberOut]]:
        if not chat_ids:
            return {}
        result: Dict[str, List[ChatMemberOut]] = {cid: [] for cid in chat_ids}
        for row in self.gateway.query(MEMBERS, {"chat_id": chat_ids}, order=["user_id"]):
            result.setdefault(row["chat_id"], []).append(ChatMemberOut.model_validate(row))
        return result

    def _to_chat(self, row: Row, members: Optional[List[ChatMemberOut]] = None) -> ChatOut:
        chat = ChatOut.model_validate(row)
        if members is None:
            members = self._members_by_chat([chat.id]).get(chat.id, [])
        chat.members = members
        return chat

    def _private_chat_ids_of(self, user_id: str) -> List[str]:
        memberships = self.gateway.query(MEMBERS, {"user_id": user_id})
        chat_ids = [m["chat_id"] for m in memberships]
        if not chat_ids:
            return []
        rows = self.gateway.query(CHATS, {"id": chat_ids, "is_group": False}, order=["created_at", "id"])
        return [r["id"] for r in rows]

    def _ensure_members(self, chat_id: str, user_ids: List[str]) -> None:
        """Идемпотентная вставка участников: дубль по (chat_id, user_id) - не ошибка."""
        present = {m["user_id"] for m in self.gateway.query(MEMBERS, {"chat_id": chat_id})}
        for uid in user_ids:
            if uid in present:
                continue
            try:
                self.gateway.insert(MEMBERS, {"chat_id": chat_id, "user_id": uid})
            except ConflictError:
                # Участника добавил конкурентный вызов
                if not self.gateway.first(MEMBERS, {"chat_id": chat_id, "user_id": uid}):
                    raise

    # =========================
    # ПОИСК
    # =========================

    def find_private_chat(self, user_a: str, user_b: str) -> Optional[ChatOut]:
        """
        Приватный чат пары: сначала по ключу пары, затем по участникам
        (чаты, созданные без ключа).
        """
        row = self.gateway.first(CHATS, {"pair_key": pair_key(user_a, user_b), "is_group": False})
        if row:
            return self._to_chat(row)

        shared = set(self._private_chat_ids_of(user_a))
        if not shared:
            return None
        for m in self.gateway.query(MEMBERS, {"user_id": user_b, "chat_id": sorted(shared)}):
            chat_row = self.gateway.first(CHATS, {"id": m["chat_id"]})
            if chat_row:
                return self._to_chat(chat_row)
        return None

    def get_or_create_chat(self, user_a: str, user_b: str) -> ChatOut:
        """
        Вернуть единственный приватный чат пары, создав при необходимости.
        Конкурентные вызовы сходятся через уникальный pair_key: проигравший
        получает ConflictError на вставке, перечитывает и возвращает победителя.
        """
        if user_a == user_b:
            raise ValidationError("A private chat needs two distinct users", code="chat_with_self")

        chat = self.find_private_chat(user_a, user_b)
        if chat is None:
            key = pair_key(user_a, user_b)
            try:
                row = self.gateway.insert(CHATS, {"is_group": False, "pair_key": key, "created_at": utc_now()})
                log.info("chat %s created for %s", row["id"], key)
            except ConflictError:
                row = self.gateway.first(CHATS, {"pair_key": key})
                if not row:
                    raise
                log.info("chat %s for %s created concurrently, reusing", row["id"], key)
            chat = ChatOut.model_validate(row)

        # Достраиваем участников всегда - чинит прерванную ранее попытку
        self._ensure_members(chat.id, [user_a, user_b])
        return self._to_chat(chat.model_dump(exclude={"members"}))

    def list_members(self, chat_id: str) -> List[ChatMemberOut]:
        return self._members_by_chat([chat_id]).get(chat_id, [])

    def list_visible_chats(self, user_id: str) -> List[ChatOut]:
        """
        Приватные чаты пользователя, где второй участник сейчас в друзьях.
        Конец дружбы без remove_friend чат скрывает, но не удаляет.
        """
        chat_ids = self._private_chat_ids_of(user_id)
        if not chat_ids:
            return []
        friends = set(self.relationships.list_friend_ids(user_id))
        members = self._members_by_chat(chat_ids)
        rows = {r["id"]: r for r in self.gateway.query(CHATS, {"id": chat_ids})}

        result: List[ChatOut] = []
        for cid in chat_ids:
            chat_members = members.get(cid, [])
            others = [m.user_id for m in chat_members if m.user_id != user_id]
            if not others or others[0] not in friends:
                continue
            if cid in rows:
                result.append(self._to_chat(rows[cid], chat_members))
        return result

    def get_chat_with_user(self, user_id: str, other_id: str) -> Optional[ChatOut]:
        """Видимый чат с конкретным другом или None."""
        for chat in self.list_visible_chats(user_id):
            if chat.partner_id(user_id) == other_id:
                return chat
        return None

    # =========================
    # УДАЛЕНИЕ
    # =========================

    def delete_chat(self, chat_id: str) -> bool:
        """
        Сообщения -> участники -> чат (порядок ссылочных зависимостей).
        Повторный вызов после частичного сбоя дочищает остаток.
        """
        messages = self.gateway.delete(MESSAGES, {"chat_id": chat_id})
        members = self.gateway.delete(MEMBERS, {"chat_id": chat_id})
        chats = self.gateway.delete(CHATS, {"id": chat_id})
        log.info("chat %s deleted: messages=%s members=%s", chat_id, messages, members)
        return bool(chats or members or messages)

    def delete_chat_between(self, user_a: str, user_b: str) -> bool:
        chat = self.find_private_chat(user_a, user_b)
        if chat is None:
            return False
        return self.delete_chat(chat.id)
