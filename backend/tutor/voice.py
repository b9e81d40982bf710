"""
Voice capture
=============

Wraps a continuous speech-to-text device into a start/stop/listening state
with an accumulating transcript built from final recognition results only.

The device is anything with ``start(on_result=..., on_error=..., on_end=...)``
and ``stop()``. In the web deployment this is the browser's recognition API
relayed over HTTP (see ``relay.RelayCaptureDevice``); tests use an in-memory
fake. When no device is available the controller is permanently unsupported
and every call is a no-op.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecognitionResult:
	text: str
	is_final: bool


class CaptureDevice(Protocol):
	def start(
		self,
		*,
		on_result: Callable[[Iterable[RecognitionResult]], None],
		on_error: Callable[[str], None],
		on_end: Callable[[], None],
	) -> None: ...

	def stop(self) -> None: ...


@dataclass(frozen=True)
class VoiceState:
	listening: bool
	transcript: str
	supported: bool


class VoiceCaptureController:
	def __init__(
		self,
		device: Optional[CaptureDevice] = None,
		*,
		on_change: Optional[Callable[[VoiceState], None]] = None,
	) -> None:
		self._device = device
		self._supported = device is not None
		self._listening = False
		self._transcript = ""
		self.on_change = on_change

	@property
	def supported(self) -> bool:
		return self._supported

	@property
	def listening(self) -> bool:
		return self._listening

	@property
	def transcript(self) -> str:
		return self._transcript

	@property
	def state(self) -> VoiceState:
		return VoiceState(listening=self._listening, transcript=self._transcript, supported=self._supported)

	def start_listening(self) -> None:
		if not self._supported or self._listening:
			return
		self._transcript = ""
		self._listening = True
		try:
			self._device.start(on_result=self._handle_results, on_error=self._handle_error, on_end=self._handle_end)
		except Exception as err:
			logger.debug("Voice capture failed to start: %s", err)
			self._listening = False
		self._notify()

	def stop_listening(self) -> None:
		if not self._supported or not self._listening:
			return
		self._listening = False
		try:
			self._device.stop()
		except Exception as err:
			logger.debug("Voice capture failed to stop cleanly: %s", err)
		self._notify()

	def toggle(self) -> None:
		if self._listening:
			self.stop_listening()
		else:
			self.start_listening()

	def reset_transcript(self) -> None:
		if not self._transcript:
			return
		self._transcript = ""
		self._notify()

	def _handle_results(self, results: Iterable[RecognitionResult]) -> None:
		if not self._listening:
			return
		# Interim hypotheses are unstable; only final segments reach the transcript
		finals = [r.text.strip() for r in results if r.is_final and r.text.strip()]
		if not finals:
			return
		self._transcript = " ".join([self._transcript, *finals]).strip()
		self._notify()

	def _handle_error(self, error: str) -> None:
		logger.debug("Voice capture error: %s", error)
		if self._listening:
			self._listening = False
			self._notify()

	def _handle_end(self) -> None:
		# Device stopped on its own (silence timeout, permission revoked)
		if self._listening:
			self._listening = False
			self._notify()

	def _notify(self) -> None:
		if self.on_change is None:
			return
		try:
			self.on_change(self.state)
		except Exception:
			logger.exception("Voice state listener failed")
