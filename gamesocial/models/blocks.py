from sqlalchemy import Column, Integer, Text, DateTime, ForeignKey, UniqueConstraint, CheckConstraint, func
from . import Base, utcnow


class Block(Base):
    __tablename__ = 'blocks'
    id = Column(Integer, primary_key=True)
    blocker_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), index=True, nullable=False)
    blocked_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), index=True, nullable=False)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)  # NULL means permanent
    __table_args__ = (
        UniqueConstraint('blocker_id', 'blocked_id', name='uix_block_pair'),
        CheckConstraint('blocker_id != blocked_id', name='ck_block_not_self'),
    )
