# friendchat/utils/pairs.py
# Канонические пары пользователей: одна запись на неупорядоченную пару (user_min, user_max).

from __future__ import annotations

from typing import Tuple


def pair_min_max(a: str, b: str) -> Tuple[str, str]:
    return (a, b) if a < b else (b, a)


def pair_key(a: str, b: str) -> str:
    """Детерминированный ключ пары - одинаковый для (a, b) и (b, a)."""
    umin, umax = pair_min_max(a, b)
    return f"{umin}:{umax}"
