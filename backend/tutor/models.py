from __future__ import annotations
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, Text, ForeignKey
from .db import Base


class AuthUser(Base):
	__tablename__ = "auth_users"
	# Primary key is username
	username = Column(String(128), primary_key=True, index=True)
	password_hash = Column(String(256), nullable=False)
	email = Column(String(256), nullable=True)
	preferred_language = Column(String(8), default="en", nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class AuthSession(Base):
	__tablename__ = "auth_sessions"
	# jti of the issued token
	session_id = Column(String(64), primary_key=True)
	username = Column(String(128), ForeignKey("auth_users.username"), nullable=False, index=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	last_activity_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ChatSession(Base):
	__tablename__ = "chat_sessions"
	id = Column(String(64), primary_key=True)
	username = Column(String(128), nullable=False, index=True)
	title = Column(String(64), nullable=False)
	language = Column(String(8), default="en", nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class ChatMessage(Base):
	__tablename__ = "chat_messages"
	id = Column(String(64), primary_key=True)
	session_id = Column(String(64), ForeignKey("chat_sessions.id"), nullable=False, index=True)
	# Insertion order within the session
	seq = Column(Integer, nullable=False)
	role = Column(String(16), nullable=False)  # "user" | "assistant"
	content = Column(Text, nullable=False)
	audio_url = Column(String(512), nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
