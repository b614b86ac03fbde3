# friendchat/models/blocked_user.py

import uuid

from sqlalchemy import Column, String, DateTime, ForeignKey, UniqueConstraint, CheckConstraint, func
from sqlalchemy.orm import relationship

from friendchat.db import Base


class BlockedUser(Base):
    """
    Блокировка blocker -> blocked. Направленная, но проверяется симметрично,
    поэтому уникальна по канонической паре: вторая блокировка той же пары
    (в любом направлении) упирается в uq_blocked_users_pair.
    """
    __tablename__ = "blocked_users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    blocker_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    blocked_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    user_min = Column(String(36), nullable=False)
    user_max = Column(String(36), nullable=False)

    created_at = Column(DateTime, nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("user_min", "user_max", name="uq_blocked_users_pair"),
        CheckConstraint("user_min < user_max", name="ck_blocked_users_min_lt_max"),
    )

    blocker = relationship("User", foreign_keys=[blocker_id])
    blocked_user = relationship("User", foreign_keys=[blocked_id])
