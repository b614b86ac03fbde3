# friendchat/db.py
# Инициализация SQLAlchemy: движок, фабрика сессий, Base и явные импорты моделей.

from __future__ import annotations

from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from friendchat.config import get_settings

Base = declarative_base()


def make_engine(url: Optional[str] = None) -> Engine:
    """
    Движок под DATABASE_URL.
    SQLite (тесты, локальная разработка): одно общее соединение + включённые внешние ключи.
    Остальные СУБД: пул как в продовой конфигурации.
    """
    url = url or get_settings().database_url

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

        @event.listens_for(engine, "connect")
        def _sqlite_fk_on(dbapi_conn, _record):
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA foreign_keys=ON")
            cur.close()

        return engine

    return create_engine(
        url,
        pool_size=20,
        max_overflow=20,
        pool_timeout=60,
        pool_recycle=1800,
        pool_pre_ping=True,
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


from friendchat.models import (  # noqa: E402,F401
    user,
    friend_request,
    blocked_user,
    chat,
    message,
)
