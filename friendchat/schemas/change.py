# friendchat/schemas/change.py
from typing import Any, Dict, Literal

from pydantic import BaseModel

ChangeKind = Literal["insert", "update", "delete"]


class ChangeEvent(BaseModel):
    """
    Одно изменение из канала подписки.
    row - новая строка для insert/update, удалённая (старая) строка для delete.
    """
    kind: ChangeKind
    collection: str
    row: Dict[str, Any]

    @classmethod
    def insert(cls, collection: str, row: Dict[str, Any]) -> "ChangeEvent":
        return cls(kind="insert", collection=collection, row=row)

    @classmethod
    def delete(cls, collection: str, row: Dict[str, Any]) -> "ChangeEvent":
        return cls(kind="delete", collection=collection, row=row)
