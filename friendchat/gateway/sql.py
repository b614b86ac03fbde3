# friendchat/gateway/sql.py
# Шлюз поверх SQLAlchemy: CRUD по таблицам из Base.metadata + раздача событий подписчикам
# после каждого успешного коммита.

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence

from sqlalchemy import Table, and_, delete, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DisconnectionError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from friendchat.db import Base, make_engine, make_session_factory
from friendchat.errors import ConflictError, TransientError, UnknownError
from friendchat.gateway.base import COLLECTIONS, Contains, Filter, Row, StoreGateway, Subscription, SubscriptionHub
from friendchat.schemas.change import ChangeEvent

log = logging.getLogger(__name__)


class SqlStoreGateway(StoreGateway):
    """
    Эталонная реализация StoreGateway.
    Каждая операция - отдельная короткая транзакция (как отдельный запрос к удалённому хранилищу).
    """

    def __init__(self, engine: Optional[Engine] = None, *, create_schema: bool = False) -> None:
        self.engine = engine or make_engine()
        self._sessions = make_session_factory(self.engine)
        self.hub = SubscriptionHub()
        if create_schema:
            Base.metadata.create_all(self.engine)

    # =========================
    # ВСПОМОГАТЕЛЬНЫЕ ФУНКЦИИ
    # =========================

    def _table(self, collection: str) -> Table:
        if collection not in COLLECTIONS:
            raise UnknownError(f"Unknown collection '{collection}'", code="unknown_collection")
        return Base.metadata.tables[collection]

    @staticmethod
    def _where(table: Table, filter: Optional[Filter]):
        clauses = []
        for column, expected in (filter or {}).items():
            col = table.c[column]
            if isinstance(expected, Contains):
                clauses.append(col.icontains(expected.value, autoescape=True))
            elif isinstance(expected, (list, tuple, set, frozenset)):
                clauses.append(col.in_(list(expected)))
            elif expected is None:
                clauses.append(col.is_(None))
            else:
                clauses.append(col == expected)
        return and_(*clauses) if clauses else None

    @staticmethod
    def _order_by(table: Table, order: Optional[Sequence[str]]):
        result = []
        for name in order or ():
            if name.startswith("-"):
                result.append(table.c[name[1:]].desc())
            else:
                result.append(table.c[name].asc())
        return result

    @contextmanager
    def _session(self) -> Iterator[Session]:
        """Сессия на одну операцию; ошибки драйвера переводятся в таксономию ядра."""
        db = self._sessions()
        try:
            yield db
            db.commit()
        except IntegrityError as e:
            db.rollback()
            raise ConflictError(str(e.orig), code="constraint_violation") from e
        except (OperationalError, DisconnectionError) as e:
            db.rollback()
            raise TransientError(str(e), code="store_unavailable") from e
        except SQLAlchemyError as e:
            db.rollback()
            raise UnknownError(str(e), code="store_error") from e
        finally:
            db.close()

    # =========================
    # CRUD
    # =========================

    def query(
        self,
        collection: str,
        filter: Optional[Filter] = None,
        order: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Row]:
        table = self._table(collection)
        stmt = select(table)
        where = self._where(table, filter)
        if where is not None:
            stmt = stmt.where(where)
        order_by = self._order_by(table, order)
        if order_by:
            stmt = stmt.order_by(*order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._session() as db:
            return [dict(r) for r in db.execute(stmt).mappings().all()]

    def insert(self, collection: str, row: Row) -> Row:
        table = self._table(collection)
        with self._session() as db:
            res = db.execute(insert(table).values(**row))
            pk = dict(zip([c.name for c in table.primary_key.columns], res.inserted_primary_key))
            created = db.execute(select(table).where(self._where(table, pk))).mappings().first()
            created = dict(created) if created else dict(row, **pk)
        self.hub.publish([ChangeEvent.insert(collection, created)])
        return created

    def update(self, collection: str, filter: Filter, patch: Row) -> int:
        table = self._table(collection)
        where = self._where(table, filter)
        pk = list(table.primary_key.columns)[0]
        with self._session() as db:
            # Ключи строк, которые задевает UPDATE: после патча фильтр может их уже не находить
            keys: List[Any] = []
            if self.hub.active(collection):
                sel = select(pk)
                if where is not None:
                    sel = sel.where(where)
                keys = list(db.execute(sel).scalars().all())
            stmt = update(table).values(**patch)
            if where is not None:
                stmt = stmt.where(where)
            count = db.execute(stmt).rowcount
            changed: List[Dict[str, Any]] = []
            if count and keys:
                stmt_sel = select(table).where(pk.in_(keys))
                changed = [dict(r) for r in db.execute(stmt_sel).mappings().all()]
        if changed:
            self.hub.publish([ChangeEvent(kind="update", collection=collection, row=r) for r in changed])
        return count

    def delete(self, collection: str, filter: Filter) -> int:
        table = self._table(collection)
        where = self._where(table, filter)
        with self._session() as db:
            sel = select(table)
            if where is not None:
                sel = sel.where(where)
            removed = [dict(r) for r in db.execute(sel).mappings().all()]
            if not removed:
                return 0
            stmt = delete(table)
            if where is not None:
                stmt = stmt.where(where)
            count = db.execute(stmt).rowcount
        self.hub.publish([ChangeEvent.delete(collection, r) for r in removed])
        return count

    # =========================
    # ПОДПИСКИ
    # =========================

    def subscribe(self, collection: str, filter: Optional[Filter] = None) -> Subscription:
        self._table(collection)
        return self.hub.open(collection, filter)

    def disconnect_subscriptions(self, reason: str = "channel_closed") -> int:
        """Оборвать все живые подписки - подписчики получат TransientError."""
        count = self.hub.disconnect_all(reason)
        log.info("gateway: %s subscriptions disconnected (%s)", count, reason)
        return count

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)
