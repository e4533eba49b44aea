# jojo/models.py
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey

from .database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Users(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column("password", String, nullable=False)
    secret_2fa = Column(String, nullable=True)


class ChatMessage(Base):
    __tablename__ = "chat_history"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    message = Column(Text, nullable=False)
    sender = Column(String(16), nullable=False)  # "user" | "assistant"
    session_id = Column(String(64), index=True, nullable=True)
    timestamp = Column(DateTime(timezone=True), default=utcnow, nullable=False)
