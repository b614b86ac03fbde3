# friendchat/models/chat.py
# Чат + участники. Для приватного чата pair_key = "<user_min>:<user_max>" - ключ дедупликации.

import uuid

from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import relationship

from friendchat.db import Base


class Chat(Base):
    __tablename__ = "chats"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    is_group = Column(Boolean, nullable=False, default=False)

    # NULL для групповых чатов (вне ядра); для приватных - уникален
    pair_key = Column(String(80), nullable=True, unique=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())

    members = relationship("ChatMember", back_populates="chat")

    def __repr__(self):
        return f"<Chat(id={self.id}, pair_key={self.pair_key})>"


class ChatMember(Base):
    __tablename__ = "chat_members"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    chat_id = Column(String(36), ForeignKey("chats.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("chat_id", "user_id", name="uq_chat_members_chat_user"),
    )

    chat = relationship("Chat", back_populates="members")
    user = relationship("User")
