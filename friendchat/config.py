# friendchat/config.py
# Настройки ядра: читаются из окружения (.env подхватывается через python-dotenv).

from __future__ import annotations

import os

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


class Settings(BaseModel):
    database_url: str = "sqlite://"

    # Переподключение канала изменений (экспоненциальный backoff)
    reconnect_base_delay: float = 0.5
    reconnect_max_delay: float = 5.0
    # 0 - без ограничения числа попыток
    reconnect_max_attempts: int = 0

    message_max_length: int = 4000


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return max(0.0, float(raw))
    except ValueError:
        return default


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return max(0, int(raw))
    except ValueError:
        return default


def get_settings() -> Settings:
    """Собрать Settings из переменных окружения (неверные значения -> дефолты)."""
    return Settings(
        database_url=os.getenv("DATABASE_URL") or "sqlite://",
        reconnect_base_delay=_float_env("SYNC_RECONNECT_BASE_DELAY", 0.5),
        reconnect_max_delay=_float_env("SYNC_RECONNECT_MAX_DELAY", 5.0),
        reconnect_max_attempts=_int_env("SYNC_RECONNECT_MAX_ATTEMPTS", 0),
        message_max_length=_int_env("MESSAGE_MAX_LENGTH", 4000) or 4000,
    )
