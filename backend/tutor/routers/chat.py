"""
AI Tutor Chat Router

HTTP surface for the tutoring chat. Every authenticated user gets one
in-memory ChatOrchestrator wired to their chat history in the database and to
relay devices that mirror the browser's speech recognition and synthesis.

The browser:
- sends typed or dictated text with POST /chat/messages (or POST /chat/send
  for whatever is in the input box),
- forwards recognition results and synthesis events as they happen. Recognition
  results must be only the ones from `event.resultIndex` onward: finals are
  appended to the transcript, so resending the whole `event.results` list of a
  continuous session duplicates text,
- polls GET /chat/speech/pending for the utterance it should be playing,
- renders GET /chat/state,
- ends the live conversation with DELETE /chat/runtime on sign-out.

Runtimes idle longer than CHAT_RUNTIME_IDLE_MINUTES, or beyond CHAT_RUNTIME_MAX
live users, are dropped; stored history is kept.
"""

from __future__ import annotations
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import sessionmaker

from ..completion_client import CompletionGateway
from ..db import get_session_factory
from ..orchestrator import ChatOrchestrator, ChatSnapshot, Exchange
from ..playback import SpeechPlaybackController
from ..relay import RelayCaptureDevice, RelaySynthesisDevice
from ..session_store import SqlSessionStore
from ..settings import settings
from ..voice import RecognitionResult, VoiceCaptureController
from .auth import User, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


# ============================================================================
# REQUEST/RESPONSE MODELS
# ============================================================================

class SendRequest(BaseModel):
	text: str
	session_id: Optional[str] = None


class SendResponse(BaseModel):
	accepted: bool
	exchange: Optional[Exchange] = None
	state: ChatSnapshot


class InputRequest(BaseModel):
	text: str


class LanguageRequest(BaseModel):
	language: str


class RecognitionItem(BaseModel):
	text: str
	is_final: bool = False


class RecognitionBatch(BaseModel):
	results: List[RecognitionItem]


class CaptureErrorRequest(BaseModel):
	error: str = ""


class SpeechEventRequest(BaseModel):
	utterance_id: str
	event: Literal["start", "end", "error"]
	error: Optional[str] = None


# ============================================================================
# PER-USER RUNTIME
# ============================================================================

@dataclass
class ChatRuntime:
	orchestrator: ChatOrchestrator
	capture: RelayCaptureDevice
	synthesis: RelaySynthesisDevice
	store: SqlSessionStore
	last_seen: float = field(default_factory=time.monotonic)


# One live conversation per username; replace with a shared store to scale out
_runtimes: Dict[str, ChatRuntime] = {}
_gateway: Optional[CompletionGateway] = None


def get_gateway() -> CompletionGateway:
	global _gateway
	if _gateway is None:
		_gateway = CompletionGateway()
	return _gateway


async def close_gateway() -> None:
	global _gateway
	if _gateway is not None:
		await _gateway.aclose()
		_gateway = None


def get_runtime(
	user: User = Depends(get_current_user),
	gateway: CompletionGateway = Depends(get_gateway),
	session_factory: sessionmaker = Depends(get_session_factory),
) -> ChatRuntime:
	runtime = _runtimes.get(user.username)
	if runtime is None:
		capture = RelayCaptureDevice()
		synthesis = RelaySynthesisDevice()
		store = SqlSessionStore(session_factory, user.username)
		orchestrator = ChatOrchestrator(
			gateway,
			store,
			voice=VoiceCaptureController(capture),
			playback=SpeechPlaybackController(synthesis),
			language=user.preferred_language,
		)
		runtime = ChatRuntime(orchestrator=orchestrator, capture=capture, synthesis=synthesis, store=store)
		_runtimes[user.username] = runtime
		logger.info("Started chat runtime for %s", user.username)
	runtime.last_seen = time.monotonic()
	evict_runtimes(keep=user.username)
	return runtime


def evict_runtimes(*, keep: Optional[str] = None, now: Optional[float] = None) -> List[str]:
	"""Drop idle runtimes, then the least recently used ones above the cap.

	A runtime with a send in flight is never dropped. The stored chat history
	is untouched; a returning user simply starts a fresh in-memory conversation.
	"""
	now = now if now is not None else time.monotonic()
	idle_limit = settings.chat_runtime_idle_minutes * 60
	evictable = [
		(name, rt) for name, rt in _runtimes.items()
		if name != keep and not rt.orchestrator.sending
	]
	evicted = [name for name, rt in evictable if now - rt.last_seen > idle_limit]
	remaining = sorted(
		((name, rt) for name, rt in evictable if name not in evicted),
		key=lambda item: item[1].last_seen,
	)
	overflow = len(_runtimes) - len(evicted) - settings.chat_runtime_max
	if overflow > 0:
		evicted.extend(name for name, _ in remaining[:overflow])
	for name in evicted:
		_drop_runtime(name)
	return evicted


def _drop_runtime(username: str) -> None:
	runtime = _runtimes.pop(username, None)
	if runtime is None:
		return
	runtime.orchestrator.stop_listening()
	runtime.orchestrator.stop_speaking()
	logger.info("Dropped chat runtime for %s", username)


# ============================================================================
# CONVERSATION
# ============================================================================

@router.get("/state", response_model=ChatSnapshot)
async def get_state(runtime: ChatRuntime = Depends(get_runtime)):
	return runtime.orchestrator.snapshot()


@router.post("/messages", response_model=SendResponse)
async def send_message(req: SendRequest, runtime: ChatRuntime = Depends(get_runtime)):
	orchestrator = runtime.orchestrator
	exchange = await orchestrator.send_message(req.text, req.session_id)
	return SendResponse(accepted=exchange is not None, exchange=exchange, state=orchestrator.snapshot())


@router.post("/input", response_model=ChatSnapshot)
async def set_input(req: InputRequest, runtime: ChatRuntime = Depends(get_runtime)):
	runtime.orchestrator.set_input(req.text)
	return runtime.orchestrator.snapshot()


@router.post("/send", response_model=SendResponse)
async def send_pending(runtime: ChatRuntime = Depends(get_runtime)):
	orchestrator = runtime.orchestrator
	exchange = await orchestrator.send_pending()
	return SendResponse(accepted=exchange is not None, exchange=exchange, state=orchestrator.snapshot())


@router.post("/new", response_model=ChatSnapshot)
async def new_conversation(runtime: ChatRuntime = Depends(get_runtime)):
	runtime.orchestrator.new_conversation()
	return runtime.orchestrator.snapshot()


@router.delete("/runtime", status_code=204)
async def end_runtime(user: User = Depends(get_current_user)):
	_drop_runtime(user.username)


@router.post("/language", response_model=ChatSnapshot)
async def set_language(req: LanguageRequest, runtime: ChatRuntime = Depends(get_runtime)):
	try:
		runtime.orchestrator.set_language(req.language)
	except ValueError as e:
		raise HTTPException(status_code=400, detail=str(e))
	return runtime.orchestrator.snapshot()


# ============================================================================
# SPEECH PLAYBACK
# ============================================================================

@router.post("/messages/{message_id}/speak")
async def speak_message(message_id: str, runtime: ChatRuntime = Depends(get_runtime)):
	try:
		runtime.orchestrator.speak_message(message_id)
	except KeyError:
		raise HTTPException(status_code=404, detail="message not found")
	return {"utterance": runtime.synthesis.pending()}


@router.post("/speech/stop", response_model=ChatSnapshot)
async def stop_speaking(runtime: ChatRuntime = Depends(get_runtime)):
	runtime.orchestrator.stop_speaking()
	return runtime.orchestrator.snapshot()


@router.get("/speech/pending")
async def pending_utterance(runtime: ChatRuntime = Depends(get_runtime)):
	return {"utterance": runtime.synthesis.pending()}


@router.post("/speech/events", response_model=ChatSnapshot)
async def speech_event(req: SpeechEventRequest, runtime: ChatRuntime = Depends(get_runtime)):
	runtime.synthesis.dispatch(req.utterance_id, req.event, req.error)
	return runtime.orchestrator.snapshot()


# ============================================================================
# VOICE CAPTURE
# ============================================================================

@router.post("/voice/start", response_model=ChatSnapshot)
async def start_listening(runtime: ChatRuntime = Depends(get_runtime)):
	runtime.orchestrator.start_listening()
	return runtime.orchestrator.snapshot()


@router.post("/voice/stop", response_model=ChatSnapshot)
async def stop_listening(runtime: ChatRuntime = Depends(get_runtime)):
	runtime.orchestrator.stop_listening()
	return runtime.orchestrator.snapshot()


@router.post("/voice/toggle", response_model=ChatSnapshot)
async def toggle_voice(runtime: ChatRuntime = Depends(get_runtime)):
	runtime.orchestrator.toggle_voice()
	return runtime.orchestrator.snapshot()


@router.post("/voice/results", response_model=ChatSnapshot)
async def voice_results(batch: RecognitionBatch, runtime: ChatRuntime = Depends(get_runtime)):
	"""Forward new recognition results (from `event.resultIndex` on, never the full list)."""
	runtime.capture.push_results(RecognitionResult(text=r.text, is_final=r.is_final) for r in batch.results)
	return runtime.orchestrator.snapshot()


@router.post("/voice/error", response_model=ChatSnapshot)
async def voice_error(req: CaptureErrorRequest, runtime: ChatRuntime = Depends(get_runtime)):
	runtime.capture.push_error(req.error)
	return runtime.orchestrator.snapshot()


@router.post("/voice/end", response_model=ChatSnapshot)
async def voice_end(runtime: ChatRuntime = Depends(get_runtime)):
	runtime.capture.push_end()
	return runtime.orchestrator.snapshot()


# ============================================================================
# HISTORY
# ============================================================================

@router.get("/sessions")
async def list_sessions(runtime: ChatRuntime = Depends(get_runtime)) -> List[Dict[str, Any]]:
	return await runtime.store.list_sessions()


@router.get("/sessions/{session_id}/messages")
async def list_session_messages(session_id: str, runtime: ChatRuntime = Depends(get_runtime)) -> List[Dict[str, Any]]:
	messages = await runtime.store.list_messages(session_id)
	if messages is None:
		raise HTTPException(status_code=404, detail="session not found")
	return messages
