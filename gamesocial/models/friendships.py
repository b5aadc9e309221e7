from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, UniqueConstraint, CheckConstraint, func
from . import Base, utcnow


class Friendship(Base):
    __tablename__ = 'friendships'
    id = Column(Integer, primary_key=True)
    requester_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), index=True, nullable=False)
    recipient_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), index=True, nullable=False)
    # ordered copy of the pair so one row per unordered pair is enforced by the db
    user_low = Column(Integer, nullable=False)
    user_high = Column(Integer, nullable=False)
    status = Column(String(16), nullable=False, default='pending')  # pending, accepted, declined, blocked
    message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)
    accepted_at = Column(DateTime(timezone=True), nullable=True, index=True)
    __table_args__ = (
        UniqueConstraint('user_low', 'user_high', name='uix_friendship_pair'),
        CheckConstraint('requester_id != recipient_id', name='ck_friendship_not_self'),
    )

    def other(self, user_id: int) -> int:
        return self.recipient_id if self.requester_id == user_id else self.requester_id
