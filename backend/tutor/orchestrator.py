"""
Chat Orchestrator
=================

Owns one tutoring conversation: the in-memory transcript, the persisted
session identity, and the voice and playback controllers around it.

A send runs as a single coroutine with a fixed order of awaits:

1. optimistic local append of the user turn (voice transcript cleared)
2. lazy session creation on the first exchange
3. persistence of the user turn
4. the completion call (the only blocking external call, bounded by a timeout)
5. persistence of the assistant turn
6. local append of the assistant turn and speech playback

Persistence is best-effort: a failing store is logged and the chat carries on,
so the local transcript is what the student sees even when the stored history
diverges. A failing completion service is replaced by a fixed apology turn.
Only one send may be in flight; extra calls while sending are dropped.
"""

from __future__ import annotations
import asyncio
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .completion_client import CompletionGateway
from .playback import PlaybackState, SpeechPlaybackController, Utterance
from .prompts import EMPTY_REPLY, FALLBACK_REPLY, TUTOR_SYSTEM_PROMPT
from .session_store import SessionStore, session_title
from .settings import settings
from .voice import VoiceCaptureController, VoiceState

logger = logging.getLogger(__name__)


class Role(str, Enum):
	USER = "user"
	ASSISTANT = "assistant"


class ChatState(str, Enum):
	IDLE = "idle"
	SENDING = "sending"


class Message(BaseModel):
	model_config = ConfigDict(frozen=True)

	id: str = Field(default_factory=lambda: uuid.uuid4().hex)
	role: Role
	content: str
	created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
	audio_ref: Optional[str] = None
	has_code: bool = False
	has_image: bool = False


class Exchange(BaseModel):
	user_message: Message
	assistant_message: Message
	session_id: Optional[str] = None
	# False when the conversation was reset while the reply was pending
	delivered: bool = True


class ChatSnapshot(BaseModel):
	state: ChatState
	session_id: Optional[str] = None
	language: str
	pending_input: str
	messages: List[Message]
	voice: VoiceState
	playback: PlaybackState


def reply_has_code(text: str) -> bool:
	return "```" in text or "function" in text or "class " in text


def reply_has_image(text: str) -> bool:
	lowered = text.lower()
	return "image" in lowered or "diagram" in lowered


class ChatOrchestrator:
	def __init__(
		self,
		gateway: CompletionGateway,
		store: Optional[SessionStore] = None,
		*,
		voice: Optional[VoiceCaptureController] = None,
		playback: Optional[SpeechPlaybackController] = None,
		language: Optional[str] = None,
		system_instruction: str = TUTOR_SYSTEM_PROMPT,
		timeout: Optional[float] = None,
		max_tokens: Optional[int] = None,
		temperature: Optional[float] = None,
	) -> None:
		self.gateway = gateway
		self.store = store
		self.voice = voice or VoiceCaptureController()
		self.playback = playback or SpeechPlaybackController()
		self.system_instruction = system_instruction
		self.timeout = timeout if timeout is not None else settings.completion_timeout_seconds
		self.max_tokens = max_tokens if max_tokens is not None else settings.completion_max_tokens
		self.temperature = temperature if temperature is not None else settings.completion_temperature
		self._language = language or settings.default_language
		self._state = ChatState.IDLE
		self._messages: List[Message] = []
		self._session_id: Optional[str] = None
		self._pending_input = ""
		# Last transcript copied into the input; edits survive later voice events
		self._mirrored_transcript = ""
		# Bumped by new_conversation so an in-flight reply knows it is stale
		self._epoch = 0
		self._listeners: List[Callable[[ChatSnapshot], None]] = []
		self.voice.on_change = self._handle_voice_change
		self.playback.on_change = self._handle_playback_change

	# ------------------------------------------------------------------
	# Read-only views
	# ------------------------------------------------------------------

	@property
	def state(self) -> ChatState:
		return self._state

	@property
	def sending(self) -> bool:
		return self._state is ChatState.SENDING

	@property
	def session_id(self) -> Optional[str]:
		return self._session_id

	@property
	def messages(self) -> List[Message]:
		return list(self._messages)

	@property
	def pending_input(self) -> str:
		return self._pending_input

	@property
	def language(self) -> str:
		return self._language

	def snapshot(self) -> ChatSnapshot:
		return ChatSnapshot(
			state=self._state,
			session_id=self._session_id,
			language=self._language,
			pending_input=self._pending_input,
			messages=list(self._messages),
			voice=self.voice.state,
			playback=self.playback.state,
		)

	def subscribe(self, listener: Callable[[ChatSnapshot], None]) -> Callable[[], None]:
		self._listeners.append(listener)

		def unsubscribe() -> None:
			if listener in self._listeners:
				self._listeners.remove(listener)

		return unsubscribe

	# ------------------------------------------------------------------
	# Conversation
	# ------------------------------------------------------------------

	async def send_message(self, text: str, session_id: Optional[str] = None) -> Optional[Exchange]:
		"""Run one user -> assistant exchange.

		Args:
			text: Typed or voice-derived input; surrounding whitespace is dropped.
			session_id: Session to continue. Defaults to the orchestrator's
				current session; a new one is created when neither exists.

		Returns:
			The exchange, or None when the call was rejected because the input
			was empty or another send is still in flight.
		"""
		content = (text or "").strip()
		if not content or self._state is ChatState.SENDING:
			return None
		self._set_state(ChatState.SENDING)
		epoch = self._epoch
		try:
			user_message = Message(role=Role.USER, content=content)
			self._messages.append(user_message)
			self._pending_input = ""
			self._mirrored_transcript = ""
			self.voice.reset_transcript()
			self._notify()

			sid = session_id or self._session_id
			if sid is None:
				sid = await self._create_session(content)
			await self._persist(sid, user_message)

			assistant_message = await self._reply_to(content)
			await self._persist(sid, assistant_message)

			if epoch != self._epoch:
				logger.info("Conversation reset while awaiting reply; dropping it from the transcript")
				return Exchange(user_message=user_message, assistant_message=assistant_message, session_id=sid, delivered=False)

			self._messages.append(assistant_message)
			self._session_id = sid
			self._notify()
			if assistant_message.content:
				self.playback.speak(assistant_message.content)
			return Exchange(user_message=user_message, assistant_message=assistant_message, session_id=sid)
		finally:
			self._set_state(ChatState.IDLE)

	async def send_pending(self) -> Optional[Exchange]:
		return await self.send_message(self._pending_input)

	def set_input(self, text: str) -> None:
		self._pending_input = text or ""
		self._notify()

	def new_conversation(self) -> None:
		"""Forget the local conversation. Stored rows are left untouched."""
		self._epoch += 1
		self._messages = []
		self._session_id = None
		self._pending_input = ""
		self._mirrored_transcript = ""
		self.voice.reset_transcript()
		self._notify()

	def set_language(self, language: str) -> None:
		tag = (language or "").strip().lower()
		if tag not in settings.supported_languages:
			raise ValueError(f"unsupported language: {language!r}")
		self._language = tag
		self._notify()

	# ------------------------------------------------------------------
	# Voice
	# ------------------------------------------------------------------

	def start_listening(self) -> None:
		self.voice.start_listening()

	def stop_listening(self) -> None:
		self.voice.stop_listening()

	def toggle_voice(self) -> None:
		self.voice.toggle()

	def speak_message(self, message_id: str) -> Optional[Utterance]:
		for message in self._messages:
			if message.id == message_id:
				return self.playback.speak(message.content)
		raise KeyError(message_id)

	def stop_speaking(self) -> None:
		self.playback.stop()

	# ------------------------------------------------------------------
	# Internals
	# ------------------------------------------------------------------

	async def _create_session(self, content: str) -> Optional[str]:
		if self.store is None:
			return None
		try:
			return await self.store.ensure_session(session_title(content), self._language)
		except Exception:
			logger.warning("Could not create chat session; continuing without persistence", exc_info=True)
			return None

	async def _persist(self, session_id: Optional[str], message: Message) -> None:
		if self.store is None or session_id is None:
			return
		try:
			await self.store.append_message(session_id, message.role.value, message.content)
		except Exception:
			logger.warning("Could not store %s message in session %s", message.role.value, session_id, exc_info=True)

	async def _reply_to(self, content: str) -> Message:
		try:
			reply = await asyncio.wait_for(
				self.gateway.complete(
					content,
					system_instruction=self.system_instruction,
					max_tokens=self.max_tokens,
					temperature=self.temperature,
				),
				timeout=self.timeout,
			)
		except Exception as err:
			logger.warning("Completion failed, answering with fallback: %r", err)
			return Message(role=Role.ASSISTANT, content=FALLBACK_REPLY)
		reply = (reply or "").strip() or EMPTY_REPLY
		return Message(
			role=Role.ASSISTANT,
			content=reply,
			has_code=reply_has_code(reply),
			has_image=reply_has_image(reply),
		)

	def _set_state(self, state: ChatState) -> None:
		if state is self._state:
			return
		logger.debug("Chat: %s -> %s", self._state.value, state.value)
		self._state = state
		self._notify()

	def _handle_voice_change(self, voice: VoiceState) -> None:
		# Only a changed transcript replaces the input; listening flips leave it alone
		if voice.transcript != self._mirrored_transcript:
			self._mirrored_transcript = voice.transcript
			if voice.transcript:
				self._pending_input = voice.transcript
		self._notify()

	def _handle_playback_change(self, _playback: PlaybackState) -> None:
		self._notify()

	def _notify(self) -> None:
		if not self._listeners:
			return
		snapshot = self.snapshot()
		for listener in list(self._listeners):
			try:
				listener(snapshot)
			except Exception:
				logger.exception("Chat state listener failed")
