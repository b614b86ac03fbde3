# friendchat/services/relationships.py
# Заявки в друзья и блокировки: единственный компонент, который меняет friend_requests / blocked_users.

from __future__ import annotations

import logging
from typing import Dict, Iterable, List

from friendchat.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from friendchat.gateway.base import Contains, Row, StoreGateway
from friendchat.models.friend_request import ACTIVE_STATUSES, RequestStatus
from friendchat.schemas.friend_request import BlockRelationOut, FriendRequestOut
from friendchat.schemas.user import UserOut
from friendchat.services.chats import ChatDirectory
from friendchat.utils.pairs import pair_min_max
from friendchat.utils.time import utc_now

log = logging.getLogger(__name__)

REQUESTS = "friend_requests"
BLOCKS = "blocked_users"
USERS = "users"

DECISIONS = (RequestStatus.accepted.value, RequestStatus.rejected.value)


def _pair_filter(a: str, b: str, first: str, second: str) -> Dict[str, List[str]]:
    """
    Фильтр «обе стороны пары в любом направлении».
    first IN (a, b) AND second IN (a, b) при first != second (CHECK в схеме) - ровно пара.
    """
    return {first: [a, b], second: [a, b]}


def request_pair_filter(a: str, b: str) -> Dict[str, List[str]]:
    return _pair_filter(a, b, "sender_id", "receiver_id")


class RelationshipStore:
    """
    Машина состояний заявки:
      pending --accepted--> accepted
      pending --rejected--> rejected
      любой   --block-----> blocked (терминальный, выхода нет)
    Каждый шаг - отдельный запрос к шлюзу; все шаги идемпотентны, повтор операции безопасен.
    """

    def __init__(self, gateway: StoreGateway) -> None:
        self.gateway = gateway

    # =========================
    # ЧТЕНИЕ
    # =========================

    def _pair_requests(self, a: str, b: str) -> List[Row]:
        return self.gateway.query(REQUESTS, request_pair_filter(a, b), order=["created_at"])

    def get_request(self, request_id: str) -> FriendRequestOut:
        row = self.gateway.first(REQUESTS, {"id": request_id})
        if not row:
            raise NotFoundError(f"Friend request {request_id} not found", code="request_not_found")
        return FriendRequestOut.model_validate(row)

    def is_blocked(self, a: str, b: str) -> bool:
        """Есть блокировка в любом направлении."""
        return self.gateway.first(BLOCKS, _pair_filter(a, b, "blocker_id", "blocked_id")) is not None

    def _profiles(self, user_ids: Iterable[str]) -> Dict[str, UserOut]:
        ids = sorted(set(user_ids))
        if not ids:
            return {}
        rows = self.gateway.query(USERS, {"id": ids})
        return {r["id"]: UserOut.model_validate(r) for r in rows}

    def list_friend_ids(self, user_id: str) -> List[str]:
        accepted = RequestStatus.accepted.value
        sent = self.gateway.query(REQUESTS, {"sender_id": user_id, "status": accepted}, order=["created_at"])
        received = self.gateway.query(REQUESTS, {"receiver_id": user_id, "status": accepted}, order=["created_at"])
        ids: List[str] = []
        for row in sent:
            ids.append(row["receiver_id"])
        for row in received:
            ids.append(row["sender_id"])
        # одна активная заявка на пару, но на всякий случай без дублей
        return list(dict.fromkeys(ids))

    def list_friends(self, user_id: str) -> List[UserOut]:
        """Друзья = вторые стороны всех accepted-заявок пользователя."""
        friend_ids = self.list_friend_ids(user_id)
        profiles = self._profiles(friend_ids)
        result: List[UserOut] = []
        for fid in friend_ids:
            profile = profiles.get(fid)
            if not profile:
                # Профиль мог не подтянуться - пропустим, чтобы не ломать список
                log.warning("friends: profile %s not found for user %s", fid, user_id)
                continue
            result.append(profile)
        return result

    def _with_profiles(self, rows: List[Row]) -> List[FriendRequestOut]:
        profiles = self._profiles([r["sender_id"] for r in rows] + [r["receiver_id"] for r in rows])
        result = []
        for row in rows:
            req = FriendRequestOut.model_validate(row)
            req.sender = profiles.get(req.sender_id)
            req.receiver = profiles.get(req.receiver_id)
            result.append(req)
        return result

    def list_pending_incoming(self, user_id: str) -> List[FriendRequestOut]:
        rows = self.gateway.query(
            REQUESTS,
            {"receiver_id": user_id, "status": RequestStatus.pending.value},
            order=["-created_at"],
        )
        return self._with_profiles(rows)

    def list_pending_outgoing(self, user_id: str) -> List[FriendRequestOut]:
        rows = self.gateway.query(
            REQUESTS,
            {"sender_id": user_id, "status": RequestStatus.pending.value},
            order=["-created_at"],
        )
        return self._with_profiles(rows)

    def list_requests(self, user_id: str) -> List[FriendRequestOut]:
        """Все заявки, где пользователь отправитель или получатель, новые сверху."""
        rows = self.gateway.query(REQUESTS, {"sender_id": user_id}) + self.gateway.query(
            REQUESTS, {"receiver_id": user_id}
        )
        unique = {r["id"]: r for r in rows}
        ordered = sorted(unique.values(), key=lambda r: (r["created_at"], r["id"]), reverse=True)
        return self._with_profiles(ordered)

    def search_users(self, viewer_id: str, query: str, limit: int = 5) -> List[UserOut]:
        """
        Поиск для формы «добавить друга»: точное совпадение id или подстрока email
        (без учёта регистра). Сам viewer в выдачу не попадает.
        """
        q = (query or "").strip()
        if not q or limit <= 0:
            return []

        rows: List[Row] = []
        exact = self.gateway.first(USERS, {"id": q})
        if exact:
            rows.append(exact)
        # с запасом: viewer и точное совпадение могут попасть и сюда
        rows += self.gateway.query(USERS, {"email": Contains(q)}, order=["email", "id"], limit=limit + 2)

        result: List[UserOut] = []
        seen = {viewer_id}
        for row in rows:
            if row["id"] in seen:
                continue
            seen.add(row["id"])
            result.append(UserOut.model_validate(row))
            if len(result) >= limit:
                break
        return result

    def list_blocked(self, user_id: str) -> List[BlockRelationOut]:
        """Блокировки, которые поставил сам пользователь."""
        rows = self.gateway.query(BLOCKS, {"blocker_id": user_id}, order=["-created_at"])
        profiles = self._profiles(r["blocked_id"] for r in rows)
        result = []
        for row in rows:
            block = BlockRelationOut.model_validate(row)
            block.blocked_user = profiles.get(block.blocked_id)
            result.append(block)
        return result

    # =========================
    # ЗАЯВКИ
    # =========================

    def send_request(self, sender_id: str, receiver_id: str) -> FriendRequestOut:
        """
        Новая pending-заявка.
        ConflictError: уже есть pending/accepted заявка на пару (в любом направлении),
        пара заблокирована, или проиграна гонка на частичном уникальном индексе.
        """
        if sender_id == receiver_id:
            raise ValidationError("You cannot send a request to yourself", code="request_to_self")

        if self.is_blocked(sender_id, receiver_id):
            log.warning("send_request: pair %s/%s is blocked", sender_id, receiver_id)
            raise ConflictError("Users have blocked each other", code="blocked")

        for row in self._pair_requests(sender_id, receiver_id):
            if row["status"] in ACTIVE_STATUSES:
                log.warning("send_request: active request %s already exists", row["id"])
                raise ConflictError("An active friend request already exists", code="request_already_active")
            if row["status"] == RequestStatus.blocked.value:
                raise ConflictError("Users have blocked each other", code="blocked")

        umin, umax = pair_min_max(sender_id, receiver_id)
        try:
            row = self.gateway.insert(
                REQUESTS,
                {
                    "sender_id": sender_id,
                    "receiver_id": receiver_id,
                    "user_min": umin,
                    "user_max": umax,
                    "status": RequestStatus.pending.value,
                    "created_at": utc_now(),
                },
            )
        except ConflictError as e:
            # Гонка: встречная заявка успела раньше
            log.warning("send_request: lost race for pair %s/%s", umin, umax)
            raise ConflictError("An active friend request already exists", code="request_already_active") from e

        # Блокировка могла встать между предпроверкой и вставкой
        if self.is_blocked(sender_id, receiver_id):
            self.gateway.update(REQUESTS, {"id": row["id"]}, {"status": RequestStatus.blocked.value})
            log.warning("send_request: pair %s/%s blocked concurrently, request %s -> blocked", umin, umax, row["id"])
            raise ConflictError("Users have blocked each other", code="blocked")

        log.info("friend request %s: %s -> %s", row["id"], sender_id, receiver_id)
        return FriendRequestOut.model_validate(row)

    def respond_to_request(self, request_id: str, decision: str) -> FriendRequestOut:
        """
        Ответ на pending-заявку. Compare-and-set по статусу:
        если заявку успели изменить конкурентно - InvalidStateError.
        """
        decision = getattr(decision, "value", decision)
        if decision not in DECISIONS:
            raise ValidationError(f"Unsupported decision '{decision}'", code="invalid_decision")

        current = self.get_request(request_id)
        if current.status != RequestStatus.pending:
            raise InvalidStateError(
                f"Request is {current.status.value}, not pending", code="request_not_pending"
            )
        if decision == RequestStatus.accepted.value and self.is_blocked(current.sender_id, current.receiver_id):
            # pending-заявка заблокированной пары: закрываем её, дружбы не будет
            self.gateway.update(
                REQUESTS,
                {"id": request_id, "status": RequestStatus.pending.value},
                {"status": RequestStatus.blocked.value},
            )
            raise ConflictError("Users have blocked each other", code="blocked")

        updated = self.gateway.update(
            REQUESTS,
            {"id": request_id, "status": RequestStatus.pending.value},
            {"status": decision},
        )
        if not updated:
            latest = self.get_request(request_id)
            raise InvalidStateError(
                f"Request is {latest.status.value}, not pending", code="request_not_pending"
            )

        log.info("friend request %s -> %s", request_id, decision)
        return self.get_request(request_id)

    def remove_friend(self, user_a: str, user_b: str) -> bool:
        """
        Удалить все заявки пары (любой статус) и каскадно приватный чат.
        Идемпотентно: удаление несуществующей дружбы - не ошибка.
        """
        removed = self.gateway.delete(REQUESTS, request_pair_filter(user_a, user_b))
        chat_removed = ChatDirectory(self.gateway, self).delete_chat_between(user_a, user_b)

        log.info(
            "remove_friend %s/%s: requests=%s chat_removed=%s", user_a, user_b, removed, chat_removed
        )
        return bool(removed) or chat_removed

    # =========================
    # БЛОКИРОВКИ
    # =========================

    def block_user(self, actor_id: str, target_id: str) -> BlockRelationOut:
        """
        1) все заявки пары -> blocked;
        2) блокировка actor -> target, если для пары ещё нет ни одной.
        Шаги не атомарны, но идемпотентны: повтор после частичного сбоя безопасен.
        """
        if actor_id == target_id:
            raise ValidationError("You cannot block yourself", code="block_self")

        self.gateway.update(
            REQUESTS,
            request_pair_filter(actor_id, target_id),
            {"status": RequestStatus.blocked.value},
        )

        existing = self.gateway.first(BLOCKS, _pair_filter(actor_id, target_id, "blocker_id", "blocked_id"))
        if existing:
            return BlockRelationOut.model_validate(existing)

        umin, umax = pair_min_max(actor_id, target_id)
        try:
            row = self.gateway.insert(
                BLOCKS,
                {
                    "blocker_id": actor_id,
                    "blocked_id": target_id,
                    "user_min": umin,
                    "user_max": umax,
                    "created_at": utc_now(),
                },
            )
        except ConflictError:
            # Конкурентная блокировка пары уже записана - перечитаем
            existing = self.gateway.first(BLOCKS, {"user_min": umin, "user_max": umax})
            if not existing:
                raise
            return BlockRelationOut.model_validate(existing)

        log.info("block: %s blocked %s", actor_id, target_id)
        return BlockRelationOut.model_validate(row)
