# friendchat/models/user.py

from sqlalchemy import Column, String, DateTime, func
from friendchat.db import Base


class User(Base):
    """
    Профиль пользователя. Идентичность заводится снаружи (аутентификация),
    ядро эту таблицу только читает.
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    name = Column(String, index=True, nullable=True)
    email = Column(String, nullable=True)
    avatar_url = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<User(id={self.id}, name={self.name})>"
