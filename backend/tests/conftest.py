"""Shared fakes for the chat stack: devices, store and completion gateway."""
import asyncio
import uuid
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tutor.db import Base
from tutor import models  # noqa: F401  (registers tables on Base)
from tutor.playback import Utterance


class FakeGateway:
	def __init__(self, reply: str = "Here is an answer.", error: Optional[Exception] = None, log: Optional[List[str]] = None) -> None:
		self.reply = reply
		self.error = error
		self.calls: List[Dict[str, Any]] = []
		self.log = log if log is not None else []
		# Set to an asyncio.Event to hold the reply until released
		self.gate: Optional[asyncio.Event] = None

	async def complete(self, prompt, *, system_instruction, max_tokens=None, temperature=None) -> str:
		self.calls.append({
			"prompt": prompt,
			"system_instruction": system_instruction,
			"max_tokens": max_tokens,
			"temperature": temperature,
		})
		self.log.append("complete")
		if self.gate is not None:
			await self.gate.wait()
		if self.error is not None:
			raise self.error
		return self.reply


class FakeStore:
	def __init__(self, log: Optional[List[str]] = None) -> None:
		self.sessions: Dict[str, Dict[str, str]] = {}
		self.messages: List[Dict[str, str]] = []
		self.fail_create = False
		self.fail_append = False
		self.log = log if log is not None else []

	async def ensure_session(self, title: str, language_tag: str) -> str:
		self.log.append("ensure_session")
		if self.fail_create:
			raise RuntimeError("database unavailable")
		session_id = uuid.uuid4().hex
		self.sessions[session_id] = {"title": title, "language": language_tag}
		return session_id

	async def append_message(self, session_id: str, role: str, content: str) -> None:
		self.log.append(f"append:{role}")
		if self.fail_append:
			raise RuntimeError("database unavailable")
		self.messages.append({"session_id": session_id, "role": role, "content": content})


class FakeCaptureDevice:
	def __init__(self) -> None:
		self.starts = 0
		self.stops = 0
		self.on_result = None
		self.on_error = None
		self.on_end = None

	def start(self, *, on_result, on_error, on_end) -> None:
		self.starts += 1
		self.on_result = on_result
		self.on_error = on_error
		self.on_end = on_end

	def stop(self) -> None:
		self.stops += 1


class FakeSynthesisDevice:
	def __init__(self) -> None:
		self.calls: List[str] = []
		self.utterances: List[Utterance] = []

	def speak(self, utterance: Utterance) -> None:
		self.calls.append(f"speak:{utterance.text}")
		self.utterances.append(utterance)

	def cancel(self) -> None:
		self.calls.append("cancel")


@pytest.fixture
def session_factory():
	engine = create_engine(
		"sqlite://",
		connect_args={"check_same_thread": False},
		poolclass=StaticPool,
		future=True,
	)
	Base.metadata.create_all(bind=engine)
	factory = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
	yield factory
	engine.dispose()
