from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, func
from . import Base, utcnow


class User(Base):
    __tablename__ = 'users'
    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(20), unique=True, index=True, nullable=False)
    display_name = Column(String(100), nullable=True)
    bio = Column(Text, nullable=True)
    privacy_level = Column(String(16), nullable=False, default='public')  # public, friends, private
    # per-field overrides of privacy_level, e.g. {"friends_list": "friends"}
    privacy_settings = Column(JSON, nullable=False, default=dict)
    gaming_preferences = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)
