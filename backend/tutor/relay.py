"""
Browser speech relays
=====================

Speech capture and synthesis happen in the student's browser. These devices
stand in for them on the server: the controllers drive them exactly like local
hardware, while the chat router forwards what the browser reports (recognition
results, synthesis start/end/error) and lets the browser poll for the utterance
it should be playing.
"""

from __future__ import annotations
import logging
from typing import Any, Callable, Dict, Iterable, Optional

from .playback import Utterance
from .voice import RecognitionResult

logger = logging.getLogger(__name__)


class RelayCaptureDevice:
	def __init__(self) -> None:
		self.active = False
		self._on_result: Optional[Callable[[Iterable[RecognitionResult]], None]] = None
		self._on_error: Optional[Callable[[str], None]] = None
		self._on_end: Optional[Callable[[], None]] = None

	def start(self, *, on_result, on_error, on_end) -> None:
		self._on_result = on_result
		self._on_error = on_error
		self._on_end = on_end
		self.active = True

	def stop(self) -> None:
		self.active = False

	def push_results(self, results: Iterable[RecognitionResult]) -> bool:
		"""Forward a batch of results; False when capture is not running.

		Finals are appended by the controller, so a batch must hold only results
		the browser has not sent before (Web Speech: `event.results` from
		`event.resultIndex` onward).
		"""
		if not self.active or self._on_result is None:
			return False
		self._on_result(list(results))
		return True

	def push_error(self, error: str) -> None:
		if not self.active:
			return
		self.active = False
		if self._on_error is not None:
			self._on_error(error)

	def push_end(self) -> None:
		if not self.active:
			return
		self.active = False
		if self._on_end is not None:
			self._on_end()


class RelaySynthesisDevice:
	def __init__(self) -> None:
		self._pending: Optional[Utterance] = None

	def speak(self, utterance: Utterance) -> None:
		self._pending = utterance

	def cancel(self) -> None:
		self._pending = None

	def pending(self) -> Optional[Dict[str, Any]]:
		u = self._pending
		if u is None:
			return None
		return {"id": u.id, "text": u.text, "rate": u.rate, "pitch": u.pitch, "volume": u.volume}

	def dispatch(self, utterance_id: str, event: str, error: Optional[str] = None) -> bool:
		"""Deliver a browser synthesis event. Unknown or superseded ids are ignored."""
		u = self._pending
		if u is None or u.id != utterance_id:
			logger.debug("Dropping %s event for stale utterance %s", event, utterance_id)
			return False
		if event == "start":
			u.on_start()
		elif event == "end":
			self._pending = None
			u.on_end()
		elif event == "error":
			self._pending = None
			u.on_error(error or "synthesis error")
		else:
			raise ValueError(f"unknown synthesis event: {event}")
		return True
