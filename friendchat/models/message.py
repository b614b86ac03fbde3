# friendchat/models/message.py

import uuid

from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Index, func

from friendchat.db import Base


class Message(Base):
    """
    Сообщение приватного чата. id и sent_at задаёт отправляющий клиент -
    оптимистичная копия и эхо из канала изменений совпадают полностью.
    Порядок отображения: (sent_at, id) по возрастанию.
    """
    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    chat_id = Column(String(36), ForeignKey("chats.id"), nullable=False)
    sender_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    sent_at = Column(DateTime, nullable=False, server_default=func.now())

    __table_args__ = (
        Index("ix_messages_chat_sent", "chat_id", "sent_at", "id"),
    )

    def __repr__(self) -> str:
        return f"<Message id={self.id} chat={self.chat_id} sender={self.sender_id}>"
