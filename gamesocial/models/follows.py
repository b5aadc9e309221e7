from sqlalchemy import Column, Integer, DateTime, ForeignKey, UniqueConstraint, CheckConstraint, func
from . import Base, utcnow


class Follow(Base):
    __tablename__ = 'follows'
    id = Column(Integer, primary_key=True)
    follower_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), index=True, nullable=False)
    followee_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True)
    __table_args__ = (
        UniqueConstraint('follower_id', 'followee_id', name='uix_follow_pair'),
        CheckConstraint('follower_id != followee_id', name='ck_follow_not_self'),
    )
