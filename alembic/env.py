# alembic/env.py

import sys
import os

from logging.config import fileConfig

from sqlalchemy import create_engine, pool
from alembic import context
from dotenv import load_dotenv

# --- Загрузка переменных окружения из .env ---
load_dotenv()

# --- Корень проекта в sys.path, чтобы импортировать friendchat без установки ---
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# --- Импортируем Base и все модели ---
from friendchat.db import Base
from friendchat.models import (  # noqa: F401
    user,
    friend_request,
    blocked_user,
    chat,
    message,
)

# --- Конфигурируем Alembic ---
config = context.config

# --- Логирование Alembic (если запущено с alembic.ini) ---
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# --- Target metadata для автогенерации ---
target_metadata = Base.metadata

# --- Строка подключения к БД (DATABASE_URL) ---
db_url = os.getenv("DATABASE_URL")
if not db_url:
    raise RuntimeError("DATABASE_URL is not set!")


# --- Общие параметры сравнения схемы для обоих режимов ---
def _configure(**kwargs):
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        compare_server_default=True,
        **kwargs,
    )


def run_migrations_offline():
    # --- SQL-скрипт без подключения к БД ---
    _configure(url=db_url, literal_binds=True)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    # --- Миграции на живом подключении; без пула, одно соединение на запуск ---
    connectable = create_engine(db_url, poolclass=pool.NullPool)
    with connectable.connect() as connection:
        # --- SQLite не умеет ALTER COLUMN: batch-режим пересоздаёт таблицу ---
        _configure(connection=connection, render_as_batch=connection.dialect.name == "sqlite")
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
