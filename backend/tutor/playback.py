"""Text-to-speech playback with at most one active utterance."""

from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

from .settings import settings

logger = logging.getLogger(__name__)


def _noop(*_args) -> None:
	return None


@dataclass
class Utterance:
	text: str
	rate: float
	pitch: float
	volume: float
	id: str = field(default_factory=lambda: uuid.uuid4().hex)
	# Device-facing event hooks, bound by the controller
	on_start: Callable[[], None] = _noop
	on_end: Callable[[], None] = _noop
	on_error: Callable[[str], None] = _noop


class SynthesisDevice(Protocol):
	def speak(self, utterance: Utterance) -> None: ...

	def cancel(self) -> None: ...


@dataclass(frozen=True)
class PlaybackState:
	speaking: bool


class SpeechPlaybackController:
	def __init__(
		self,
		device: Optional[SynthesisDevice] = None,
		*,
		rate: Optional[float] = None,
		pitch: Optional[float] = None,
		volume: Optional[float] = None,
		on_change: Optional[Callable[[PlaybackState], None]] = None,
	) -> None:
		self._device = device
		self.rate = rate if rate is not None else settings.speech_rate
		self.pitch = pitch if pitch is not None else settings.speech_pitch
		self.volume = volume if volume is not None else settings.speech_volume
		self._current: Optional[Utterance] = None
		self._speaking = False
		self.on_change = on_change

	@property
	def supported(self) -> bool:
		return self._device is not None

	@property
	def speaking(self) -> bool:
		return self._speaking

	@property
	def state(self) -> PlaybackState:
		return PlaybackState(speaking=self._speaking)

	@property
	def current(self) -> Optional[Utterance]:
		return self._current

	def speak(self, text: str) -> Optional[Utterance]:
		if self._device is None or not text:
			return None
		if self._current is not None:
			self._cancel_current()
		utterance = Utterance(text=text, rate=self.rate, pitch=self.pitch, volume=self.volume)
		utterance.on_start = lambda: self._handle_start(utterance)
		utterance.on_end = lambda: self._handle_finish(utterance)
		utterance.on_error = lambda error: self._handle_error(utterance, error)
		self._current = utterance
		try:
			self._device.speak(utterance)
		except Exception as err:
			self._handle_error(utterance, str(err))
		return utterance

	def stop(self) -> None:
		if self._device is None:
			return
		self._cancel_current()

	def _cancel_current(self) -> None:
		self._current = None
		try:
			self._device.cancel()
		except Exception as err:
			logger.debug("Speech cancel failed: %s", err)
		self._set_speaking(False)

	def _handle_start(self, utterance: Utterance) -> None:
		if utterance is self._current:
			self._set_speaking(True)

	def _handle_finish(self, utterance: Utterance) -> None:
		# Late events from a superseded utterance must not touch the new one
		if utterance is not self._current:
			return
		self._current = None
		self._set_speaking(False)

	def _handle_error(self, utterance: Utterance, error: str) -> None:
		logger.debug("Speech synthesis error: %s", error)
		self._handle_finish(utterance)

	def _set_speaking(self, speaking: bool) -> None:
		if speaking == self._speaking:
			return
		self._speaking = speaking
		if self.on_change is None:
			return
		try:
			self.on_change(self.state)
		except Exception:
			logger.exception("Playback state listener failed")
