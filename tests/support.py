import asyncio
from typing import Callable, Iterable, List

from friendchat.config import Settings
from friendchat.db import make_engine
from friendchat.gateway.sql import SqlStoreGateway

FAST_SYNC = Settings(reconnect_base_delay=0.01, reconnect_max_delay=0.05)


def make_gateway() -> SqlStoreGateway:
    """Свежая in-memory SQLite на каждый тест."""
    return SqlStoreGateway(make_engine("sqlite://"), create_schema=True)


def seed_users(gateway: SqlStoreGateway, user_ids: Iterable[str]) -> List[str]:
    ids = []
    for uid in user_ids:
        gateway.insert("users", {"id": uid, "name": uid.capitalize(), "email": f"{uid}@example.com"})
        ids.append(uid)
    return ids


def befriend(relationships, a: str, b: str):
    request = relationships.send_request(a, b)
    return relationships.respond_to_request(request.id, "accepted")


async def wait_for(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)
