# friendchat/schemas/message.py
from datetime import datetime
from typing import Tuple

from pydantic import BaseModel, field_validator

from friendchat.utils.time import as_naive_utc


class MessageOut(BaseModel):
    id: str
    chat_id: str
    sender_id: str
    content: str
    sent_at: datetime

    class Config:
        from_attributes = True

    # Время из канала может прийти с таймзоной - приводим к наивному UTC, как в БД,
    # чтобы сортировка не смешивала aware/naive значения.
    @field_validator("sent_at")
    @classmethod
    def _naive_utc(cls, value: datetime) -> datetime:
        return as_naive_utc(value)

    @property
    def sort_key(self) -> Tuple[datetime, str]:
        return (self.sent_at, self.id)
