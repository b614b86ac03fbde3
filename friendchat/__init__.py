# friendchat/__init__.py
# Клиентское ядро дружбы/блокировок/приватных чатов поверх удалённого хранилища.

from friendchat.errors import (
    FriendChatError,
    ConflictError,
    InvalidStateError,
    ValidationError,
    NotFoundError,
    TransientError,
    UnknownError,
)

__all__ = [
    "FriendChatError",
    "ConflictError",
    "InvalidStateError",
    "ValidationError",
    "NotFoundError",
    "TransientError",
    "UnknownError",
]
