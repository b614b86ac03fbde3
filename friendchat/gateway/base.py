# friendchat/gateway/base.py
# Контракт шлюза к удалённому хранилищу: query/insert/update/delete + подписка на изменения.

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from friendchat.errors import TransientError
from friendchat.schemas.change import ChangeEvent

log = logging.getLogger(__name__)

Row = Dict[str, Any]
Filter = Mapping[str, Any]

COLLECTIONS = (
    "users",
    "friend_requests",
    "blocked_users",
    "chats",
    "chat_members",
    "messages",
)


class Contains:
    """Значение фильтра «подстрока без учёта регистра» (ILIKE '%value%')."""

    __slots__ = ("value",)

    def __init__(self, value: str) -> None:
        self.value = value

    def __repr__(self) -> str:
        return f"Contains({self.value!r})"

    def matches(self, value: Any) -> bool:
        return isinstance(value, str) and self.value.lower() in value.lower()


def row_matches(row: Mapping[str, Any], filter: Optional[Filter]) -> bool:
    """
    Равенство по каждому полю фильтра; list/tuple/set/frozenset означает «IN»,
    Contains - подстроку. Пустой фильтр совпадает с любой строкой.
    """
    for column, expected in (filter or {}).items():
        value = row.get(column)
        if isinstance(expected, Contains):
            if not expected.matches(value):
                return False
        elif isinstance(expected, (list, tuple, set, frozenset)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


class Subscription:
    """
    Отменяемый поток ChangeEvent по одной коллекции с фильтром.
    Читается через `async for`. Обрыв канала приходит как TransientError из итератора.
    """

    _CLOSED = object()

    def __init__(
        self,
        collection: str,
        filter: Optional[Filter],
        loop: asyncio.AbstractEventLoop,
        on_cancel: Optional[Callable[["Subscription"], None]] = None,
    ) -> None:
        self.collection = collection
        self.filter = dict(filter or {})
        self._loop = loop
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._on_cancel = on_cancel
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def matches(self, event: ChangeEvent) -> bool:
        return event.collection == self.collection and row_matches(event.row, self.filter)

    # --- Поставка событий (может вызываться из любого потока) ---

    def deliver(self, event: ChangeEvent) -> None:
        if self._cancelled:
            return
        self._put(event)

    def fail(self, exc: BaseException) -> None:
        """Оборвать канал: читатель получит exc из итератора."""
        if self._cancelled:
            return
        self._put(exc)

    def _put(self, item: Any) -> None:
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, item)

    # --- Отмена ---

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._on_cancel is not None:
            self._on_cancel(self)
        if not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._queue.put_nowait, self._CLOSED)

    # --- Чтение ---

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ChangeEvent:
        if self._cancelled and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is self._CLOSED or self._cancelled:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            self.cancel()
            raise item
        return item


class StoreGateway(ABC):
    """
    Абстракция удалённого реляционного хранилища с push-уведомлениями.
    Реализацию поставляет UI-слой; для тестов и локальной работы есть SqlStoreGateway.

    Ошибки - из friendchat.errors: ConflictError (уникальность), TransientError
    (сеть/канал), UnknownError (всё прочее).
    """

    @abstractmethod
    def query(
        self,
        collection: str,
        filter: Optional[Filter] = None,
        order: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Row]:
        ...

    @abstractmethod
    def insert(self, collection: str, row: Row) -> Row:
        ...

    @abstractmethod
    def update(self, collection: str, filter: Filter, patch: Row) -> int:
        ...

    @abstractmethod
    def delete(self, collection: str, filter: Filter) -> int:
        ...

    @abstractmethod
    def subscribe(self, collection: str, filter: Optional[Filter] = None) -> Subscription:
        ...

    def first(self, collection: str, filter: Optional[Filter] = None, order: Optional[Sequence[str]] = None) -> Optional[Row]:
        rows = self.query(collection, filter, order=order, limit=1)
        return rows[0] if rows else None


class SubscriptionHub:
    """Регистрирует подписки и раздаёт события всем подходящим."""

    def __init__(self) -> None:
        self._subscriptions: Dict[str, List[Subscription]] = {}

    def open(self, collection: str, filter: Optional[Filter]) -> Subscription:
        loop = asyncio.get_running_loop()
        sub = Subscription(collection, filter, loop, on_cancel=self._remove)
        self._subscriptions.setdefault(collection, []).append(sub)
        log.debug("subscription opened: %s %s", collection, sub.filter)
        return sub

    def _remove(self, sub: Subscription) -> None:
        subs = self._subscriptions.get(sub.collection)
        if not subs:
            return
        try:
            subs.remove(sub)
        except ValueError:
            return
        if not subs:
            self._subscriptions.pop(sub.collection, None)

    def active(self, collection: Optional[str] = None) -> List[Subscription]:
        if collection is not None:
            return list(self._subscriptions.get(collection, []))
        return [s for subs in self._subscriptions.values() for s in subs]

    def publish(self, events: Iterable[ChangeEvent]) -> None:
        for event in events:
            for sub in list(self._subscriptions.get(event.collection, [])):
                if sub.matches(event):
                    sub.deliver(event)

    def disconnect_all(self, reason: str = "channel_closed") -> int:
        """Оборвать все подписки (имитация падения канала). Возвращает число оборванных."""
        subs = self.active()
        self._subscriptions.clear()
        for sub in subs:
            sub.fail(TransientError(reason, code=reason))
        return len(subs)
