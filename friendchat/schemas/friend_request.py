# friendchat/schemas/friend_request.py
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from friendchat.models.friend_request import RequestStatus
from friendchat.schemas.user import UserOut


class FriendRequestOut(BaseModel):
    """
    Заявка в друзья. sender/receiver - профили, если их удалось подтянуть
    (для списков заявок), иначе None.
    """
    id: str
    sender_id: str
    receiver_id: str
    status: RequestStatus
    created_at: Optional[datetime] = None
    sender: Optional[UserOut] = None
    receiver: Optional[UserOut] = None

    class Config:
        from_attributes = True


class BlockRelationOut(BaseModel):
    id: str
    blocker_id: str
    blocked_id: str
    created_at: Optional[datetime] = None
    blocked_user: Optional[UserOut] = None

    class Config:
        from_attributes = True
