# friendchat/jobs/chat_sync.py
# СИНХРОНИЗАЦИЯ ОТКРЫТЫХ ЧАТОВ ЧЕРЕЗ КАНАЛ ИЗМЕНЕНИЙ
# -----------------------------------------------------------------------------
# Что делает этот модуль:
#   • Держит не больше одной живой подписки на чат (повторный watch отменяет прежнюю).
#   • Для каждой подписки крутит фоновую asyncio-задачу, которая отдаёт события в on_event.
#   • При обрыве канала (TransientError) переподключается с экспоненциальным backoff,
#     после переподключения вызывает on_resync - канал не гарантирует доставку без пропусков.
#
# Как использовать:
#       >>> coordinator = SyncCoordinator(gateway)
#       >>> handle = coordinator.watch(chat_id, stream.apply, on_resync=stream.resync)
#       ...
#       >>> handle.cancel()          # или coordinator.close() при выходе
#
# Важно:
#   • watch() вызывается внутри работающего event loop: подписка открывается сразу,
#     синхронно, чтобы события после возврата из watch() уже не терялись.
#   • Если канал недоступен уже при первой подписке, watch() не падает: задача
#     переподключается с backoff и после подключения вызывает on_resync.

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Optional

from friendchat.config import Settings, get_settings
from friendchat.errors import TransientError
from friendchat.gateway.base import Filter, StoreGateway, Subscription
from friendchat.schemas.change import ChangeEvent

log = logging.getLogger(__name__)

EventCallback = Callable[[ChangeEvent], None]
ResyncCallback = Callable[[], None]


class WatchHandle:
    """Отменяемая подписка, которую ведёт координатор."""

    def __init__(self, key: Hashable, coordinator: "SyncCoordinator") -> None:
        self.key = key
        self._coordinator = coordinator
        self._subscription: Optional[Subscription] = None
        self._task: Optional["asyncio.Task[None]"] = None
        self._cancelled = False
        self.reconnects = 0
        self.failed: Optional[BaseException] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def active(self) -> bool:
        return not self._cancelled and self._task is not None and not self._task.done()

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._coordinator._forget(self)

    async def wait_closed(self) -> None:
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)


class SyncCoordinator:
    def __init__(
        self,
        gateway: StoreGateway,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.gateway = gateway
        self.settings = settings or get_settings()
        self._sleep = sleep
        self._handles: Dict[Hashable, WatchHandle] = {}

    # =========================
    # ПУБЛИЧНЫЙ API
    # =========================

    def watch(
        self,
        chat_id: str,
        on_event: EventCallback,
        on_resync: Optional[Callable[[str], None]] = None,
    ) -> WatchHandle:
        """Подписка на сообщения чата. Прежняя подписка на этот же чат отменяется первой."""
        resync = (lambda: on_resync(chat_id)) if on_resync is not None else None
        return self._watch(("messages", chat_id), "messages", {"chat_id": chat_id}, on_event, resync)

    def watch_requests(self, user_id: str, on_event: EventCallback) -> WatchHandle:
        """Подписка на входящие заявки в друзья пользователя."""
        return self._watch(
            ("friend_requests", user_id), "friend_requests", {"receiver_id": user_id}, on_event, None
        )

    def is_watching(self, chat_id: str) -> bool:
        handle = self._handles.get(("messages", chat_id))
        return handle is not None and not handle.cancelled

    @property
    def watched_chats(self) -> List[str]:
        return [key[1] for key in self._handles if key[0] == "messages"]

    def close(self) -> None:
        """Отменить все подписки (закрытие сессии)."""
        for handle in list(self._handles.values()):
            handle.cancel()
        self._handles.clear()

    async def aclose(self) -> None:
        handles = list(self._handles.values())
        self.close()
        for handle in handles:
            await handle.wait_closed()

    def backoff_delay(self, attempt: int) -> float:
        """0.5, 1, 2, 4 ... до reconnect_max_delay (attempt начинается с 1)."""
        base = self.settings.reconnect_base_delay
        return min(self.settings.reconnect_max_delay, base * (2 ** max(0, attempt - 1)))

    # =========================
    # ВНУТРЕННЕЕ
    # =========================

    def _forget(self, handle: WatchHandle) -> None:
        if self._handles.get(handle.key) is handle:
            self._handles.pop(handle.key, None)

    def _watch(
        self,
        key: Hashable,
        collection: str,
        filter: Filter,
        on_event: EventCallback,
        on_resync: Optional[ResyncCallback],
    ) -> WatchHandle:
        previous = self._handles.pop(key, None)
        if previous is not None:
            previous.cancel()

        loop = asyncio.get_running_loop()
        handle = WatchHandle(key, self)
        try:
            handle._subscription = self.gateway.subscribe(collection, filter)
        except TransientError as e:
            # Канал не поднялся сразу: подписку достроит цикл переподключения
            log.warning("sync %s: initial subscribe failed (%s), will retry", key, e.code)
        self._handles[key] = handle
        handle._task = loop.create_task(self._run(handle, collection, filter, on_event, on_resync))
        log.debug("sync: watching %s", key)
        return handle

    @staticmethod
    def _deliver(handle: WatchHandle, on_event: EventCallback, event: ChangeEvent) -> None:
        if handle.cancelled:
            return
        try:
            on_event(event)
        except Exception:
            # Сбой обработчика не должен ронять подписку
            log.exception("sync %s: event handler failed", handle.key)

    @staticmethod
    def _resync(handle: WatchHandle, on_resync: ResyncCallback) -> None:
        """TransientError уходит в цикл переподключения, прочие сбои только логируем."""
        try:
            on_resync()
        except TransientError:
            raise
        except Exception:
            log.exception("sync %s: resync failed", handle.key)

    async def _run(
        self,
        handle: WatchHandle,
        collection: str,
        filter: Filter,
        on_event: EventCallback,
        on_resync: Optional[ResyncCallback],
    ) -> None:
        """
        Бесконечный цикл подписки:
          - читаем события и отдаём в on_event,
          - при TransientError ждём backoff и переподключаемся,
          - после переподключения - on_resync,
          - выходим при отмене или исчерпании попыток.
        """
        sub = handle._subscription
        failures = 0
        try:
            if sub is None:
                failures = 1
                await self._sleep(self.backoff_delay(failures))
            while not handle.cancelled:
                try:
                    if sub is None:
                        sub = self.gateway.subscribe(collection, filter)
                        handle._subscription = sub
                        handle.reconnects += 1
                        if on_resync is not None:
                            self._resync(handle, on_resync)
                        log.info("sync %s: reconnected (#%s)", handle.key, handle.reconnects)
                        failures = 0

                    async for event in sub:
                        failures = 0
                        self._deliver(handle, on_event, event)

                    if handle.cancelled:
                        return
                    raise TransientError("Subscription closed by the store", code="channel_closed")

                except TransientError as e:
                    if sub is not None:
                        sub.cancel()
                    sub = None
                    handle._subscription = None
                    if handle.cancelled:
                        return

                    failures += 1
                    limit = self.settings.reconnect_max_attempts
                    if limit and failures > limit:
                        log.error("sync %s: giving up after %s failed reconnects", handle.key, limit)
                        handle.failed = e
                        return

                    delay = self.backoff_delay(failures)
                    log.warning(
                        "sync %s: channel lost (%s), reconnect #%s in %.2fs", handle.key, e.code, failures, delay
                    )
                    await self._sleep(delay)
        finally:
            if sub is not None:
                sub.cancel()
            self._forget(handle)
