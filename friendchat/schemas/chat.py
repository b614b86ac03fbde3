# friendchat/schemas/chat.py
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class ChatMemberOut(BaseModel):
    id: str
    chat_id: str
    user_id: str

    class Config:
        from_attributes = True


class ChatOut(BaseModel):
    id: str
    is_group: bool = False
    pair_key: Optional[str] = None
    created_at: Optional[datetime] = None
    members: List[ChatMemberOut] = []

    class Config:
        from_attributes = True

    def member_ids(self) -> List[str]:
        return [m.user_id for m in self.members]

    def partner_id(self, viewer_id: str) -> Optional[str]:
        """Второй участник приватного чата относительно viewer_id."""
        for m in self.members:
            if m.user_id != viewer_id:
                return m.user_id
        return None
