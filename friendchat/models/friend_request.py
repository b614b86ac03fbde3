# friendchat/models/friend_request.py
# Заявка в друзья + каноническая пара (user_min, user_max) для проверки «одна активная заявка на пару».

from __future__ import annotations

import enum
import uuid

from sqlalchemy import (
    Column, String, DateTime, ForeignKey,
    CheckConstraint, Index, func, text,
)
from sqlalchemy.orm import relationship

from friendchat.db import Base


class RequestStatus(str, enum.Enum):
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"
    blocked = "blocked"


# Статусы, при которых пара считается «занятой»
ACTIVE_STATUSES = (RequestStatus.pending.value, RequestStatus.accepted.value)


class FriendRequest(Base):
    """
    Заявка от sender к receiver.
    Пара дублируется в (user_min, user_max) с инвариантом user_min < user_max:
    частичный уникальный индекс не даёт завести вторую pending/accepted заявку
    на ту же пару ни в одном направлении.
    """
    __tablename__ = "friend_requests"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    sender_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    receiver_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    user_min = Column(String(36), nullable=False)
    user_max = Column(String(36), nullable=False)

    status = Column(
        String(16),
        nullable=False,
        default=RequestStatus.pending.value,
        server_default=text("'pending'"),
        comment="pending|accepted|rejected|blocked",
    )

    created_at = Column(DateTime, nullable=False, server_default=func.now())

    __table_args__ = (
        CheckConstraint("user_min < user_max", name="ck_friend_requests_min_lt_max"),
        CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected', 'blocked')",
            name="ck_friend_requests_status",
        ),
        Index(
            "uq_friend_requests_active_pair",
            "user_min",
            "user_max",
            unique=True,
            postgresql_where=text("status IN ('pending', 'accepted')"),
            sqlite_where=text("status IN ('pending', 'accepted')"),
        ),
        Index("ix_friend_requests_sender", "sender_id", "status"),
        Index("ix_friend_requests_receiver", "receiver_id", "status"),
    )

    sender = relationship("User", foreign_keys=[sender_id])
    receiver = relationship("User", foreign_keys=[receiver_id])

    def __repr__(self):
        return f"<FriendRequest(id={self.id}, {self.sender_id}->{self.receiver_id}, status={self.status})>"
