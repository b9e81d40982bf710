from __future__ import annotations
import asyncio
from datetime import datetime
import uuid
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .models import ChatMessage, ChatSession


TITLE_MAX_CHARS = 50


class SessionStoreError(RuntimeError):
	pass


class SessionStore(Protocol):
	async def ensure_session(self, title: str, language_tag: str) -> str: ...

	async def append_message(self, session_id: str, role: str, content: str) -> None: ...


def session_title(text: str) -> str:
	"""First 50 characters of the opening message, with an ellipsis when cut."""
	text = text.strip()
	if len(text) > TITLE_MAX_CHARS:
		return text[:TITLE_MAX_CHARS] + "..."
	return text


class SqlSessionStore:
	"""Chat persistence for one user on top of the SQLAlchemy session factory.

	ORM work is synchronous, so every public coroutine hands it to a worker
	thread and the event loop keeps serving other requests meanwhile.
	"""

	def __init__(self, session_factory: sessionmaker, username: str) -> None:
		self._session_factory = session_factory
		self.username = username

	async def ensure_session(self, title: str, language_tag: str) -> str:
		return await asyncio.to_thread(self._create_session, title, language_tag)

	async def append_message(self, session_id: str, role: str, content: str) -> None:
		await asyncio.to_thread(self._insert_message, session_id, role, content)

	async def list_sessions(self) -> List[Dict[str, Any]]:
		return await asyncio.to_thread(self._list_sessions)

	async def list_messages(self, session_id: str) -> Optional[List[Dict[str, Any]]]:
		return await asyncio.to_thread(self._list_messages, session_id)

	def _create_session(self, title: str, language_tag: str) -> str:
		session_id = uuid.uuid4().hex
		with self._session_factory() as db:
			try:
				db.add(ChatSession(id=session_id, username=self.username, title=title, language=language_tag))
				db.commit()
			except SQLAlchemyError as err:
				db.rollback()
				raise SessionStoreError(f"could not create chat session: {err}") from err
		return session_id

	def _insert_message(self, session_id: str, role: str, content: str) -> None:
		with self._session_factory() as db:
			try:
				owner = self._owned_session(db, session_id)
				if owner is None:
					raise SessionStoreError(f"unknown chat session {session_id}")
				seq = db.scalar(select(func.count()).select_from(ChatMessage).where(ChatMessage.session_id == session_id)) or 0
				db.add(ChatMessage(id=uuid.uuid4().hex, session_id=session_id, seq=seq, role=role, content=content))
				# Touch the session so history lists most recent activity first
				owner.updated_at = datetime.utcnow()
				db.add(owner)
				db.commit()
			except SQLAlchemyError as err:
				db.rollback()
				raise SessionStoreError(f"could not append {role} message: {err}") from err

	def _owned_session(self, db: Session, session_id: str) -> Optional[ChatSession]:
		row = db.get(ChatSession, session_id)
		if row is None or row.username != self.username:
			return None
		return row

	def _list_sessions(self) -> List[Dict[str, Any]]:
		with self._session_factory() as db:
			rows = db.scalars(
				select(ChatSession)
				.where(ChatSession.username == self.username)
				.order_by(ChatSession.updated_at.desc(), ChatSession.created_at.desc())
			).all()
			return [
				{
					"id": r.id,
					"title": r.title,
					"language": r.language,
					"created_at": r.created_at,
					"updated_at": r.updated_at,
				}
				for r in rows
			]

	def _list_messages(self, session_id: str) -> Optional[List[Dict[str, Any]]]:
		with self._session_factory() as db:
			if self._owned_session(db, session_id) is None:
				return None
			rows = db.scalars(
				select(ChatMessage).where(ChatMessage.session_id == session_id).order_by(ChatMessage.seq)
			).all()
			return [
				{
					"id": r.id,
					"role": r.role,
					"content": r.content,
					"audio_url": r.audio_url,
					"created_at": r.created_at,
				}
				for r in rows
			]
