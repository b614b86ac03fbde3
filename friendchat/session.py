# friendchat/session.py
# Сессия одного аутентифицированного пользователя: связывает сервисы и владеет их жизненным циклом.
# Несколько сессий (разные пользователи/вкладки/тесты) работают независимо, без общего состояния.

from __future__ import annotations

import logging
from typing import List, Optional

from friendchat.config import Settings, get_settings
from friendchat.errors import ConflictError, InvalidStateError
from friendchat.gateway.base import StoreGateway
from friendchat.jobs.chat_sync import SyncCoordinator, WatchHandle
from friendchat.schemas.change import ChangeEvent
from friendchat.schemas.chat import ChatOut
from friendchat.schemas.friend_request import BlockRelationOut, FriendRequestOut
from friendchat.schemas.message import MessageOut
from friendchat.schemas.user import UserOut
from friendchat.services.chats import ChatDirectory
from friendchat.services.messages import ChatHistory, MessageStream
from friendchat.services.relationships import RelationshipStore

log = logging.getLogger(__name__)


class ChatSession:
    def __init__(self, gateway: StoreGateway, user_id: str, settings: Optional[Settings] = None) -> None:
        self.user_id = user_id
        self.settings = settings or get_settings()
        self.relationships = RelationshipStore(gateway)
        self.chats = ChatDirectory(gateway, self.relationships)
        self.coordinator = SyncCoordinator(gateway, self.settings)
        self.messages = MessageStream(gateway, self.coordinator, self.settings)

        self.friends: List[UserOut] = []
        self.friend_requests: List[FriendRequestOut] = []
        self.visible_chats: List[ChatOut] = []
        self.selected_chat: Optional[ChatOut] = None
        self._requests_watch: Optional[WatchHandle] = None

    # =========================
    # ЖИЗНЕННЫЙ ЦИКЛ
    # =========================

    async def __aenter__(self) -> "ChatSession":
        self.refresh()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    def close(self) -> None:
        self.messages.close_chat()
        self.selected_chat = None
        self._requests_watch = None
        self.coordinator.close()

    async def aclose(self) -> None:
        self.messages.close_chat()
        self.selected_chat = None
        self._requests_watch = None
        await self.coordinator.aclose()

    def refresh(self) -> None:
        self.friend_requests = self.relationships.list_requests(self.user_id)
        self.friends = self.relationships.list_friends(self.user_id)
        self.visible_chats = self.chats.list_visible_chats(self.user_id)

    def watch_requests(self) -> WatchHandle:
        """Обновлять списки при каждой входящей заявке."""
        def _on_request(_event: ChangeEvent) -> None:
            self.friend_requests = self.relationships.list_requests(self.user_id)

        self._requests_watch = self.coordinator.watch_requests(self.user_id, _on_request)
        return self._requests_watch

    # =========================
    # ДРУЗЬЯ
    # =========================

    def send_friend_request(self, receiver_id: str) -> FriendRequestOut:
        request = self.relationships.send_request(self.user_id, receiver_id)
        self.friend_requests = self.relationships.list_requests(self.user_id)
        return request

    def respond_to_friend_request(self, request_id: str, decision: str) -> FriendRequestOut:
        request = self.relationships.respond_to_request(request_id, decision)
        self.refresh()
        return request

    def remove_friend(self, friend_id: str) -> bool:
        if self.selected_chat is not None and self.selected_chat.partner_id(self.user_id) == friend_id:
            self.messages.close_chat()
            self.selected_chat = None
        removed = self.relationships.remove_friend(self.user_id, friend_id)
        self.refresh()
        return removed

    def block_user(self, user_id: str) -> BlockRelationOut:
        block = self.relationships.block_user(self.user_id, user_id)
        if self.selected_chat is not None and self.selected_chat.partner_id(self.user_id) == user_id:
            self.messages.close_chat()
            self.selected_chat = None
        self.refresh()
        return block

    def search_users(self, query: str, limit: int = 5) -> List[UserOut]:
        return self.relationships.search_users(self.user_id, query, limit)

    def is_blocked(self, user_id: str) -> bool:
        return self.relationships.is_blocked(self.user_id, user_id)

    # =========================
    # ЧАТЫ И СООБЩЕНИЯ
    # =========================

    def open_chat_with(self, friend_id: str) -> ChatHistory:
        chat = self.chats.get_or_create_chat(self.user_id, friend_id)
        history = self.select_chat(chat)
        self.visible_chats = self.chats.list_visible_chats(self.user_id)
        return history

    def select_chat(self, chat: ChatOut) -> ChatHistory:
        """Переключение чата: подписка прежнего отменяется до открытия нового."""
        self.selected_chat = None
        history = self.messages.open_chat(chat.id)
        self.selected_chat = chat
        return history

    @property
    def current_messages(self) -> List[MessageOut]:
        return self.messages.messages

    def send_message(self, content: str) -> MessageOut:
        if self.selected_chat is None:
            raise InvalidStateError("No chat is open", code="no_chat_selected")
        partner = self.selected_chat.partner_id(self.user_id)
        if partner is not None and self.relationships.is_blocked(self.user_id, partner):
            raise ConflictError("Users have blocked each other", code="blocked")
        return self.messages.send_message(self.selected_chat.id, self.user_id, content)

    def delete_message(self, message_id: str) -> bool:
        return self.messages.delete_message(message_id)
