# friendchat/errors.py
# Таксономия ошибок ядра. У каждой ошибки есть машинный code (для сообщений в UI).

from __future__ import annotations

from typing import Optional


class FriendChatError(Exception):
    code = "error"

    def __init__(self, message: Optional[str] = None, *, code: Optional[str] = None):
        if code:
            self.code = code
        super().__init__(message or self.code)


class ConflictError(FriendChatError):
    """Дубликат или пересекающееся состояние (например, активная заявка уже есть)."""
    code = "conflict"


class InvalidStateError(FriendChatError):
    """Операция недопустима для текущего статуса."""
    code = "invalid_state"


class ValidationError(FriendChatError):
    code = "validation_error"


class NotFoundError(FriendChatError):
    code = "not_found"


class TransientError(FriendChatError):
    """Сетевой/канальный сбой - можно повторить с backoff."""
    code = "transient"


class UnknownError(FriendChatError):
    code = "unknown"
