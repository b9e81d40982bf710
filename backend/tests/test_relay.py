from tutor.playback import SpeechPlaybackController
from tutor.relay import RelayCaptureDevice, RelaySynthesisDevice
from tutor.voice import RecognitionResult, VoiceCaptureController


def test_capture_relay_forwards_only_while_active():
	device = RelayCaptureDevice()
	voice = VoiceCaptureController(device)
	assert device.push_results([RecognitionResult("ignored", True)]) is False

	voice.start_listening()
	assert device.active is True
	assert device.push_results([RecognitionResult("hello world", True)]) is True
	assert voice.transcript == "hello world"

	voice.stop_listening()
	assert device.active is False
	assert device.push_results([RecognitionResult("late", True)]) is False
	assert voice.transcript == "hello world"


def test_capture_relay_error_and_end():
	device = RelayCaptureDevice()
	voice = VoiceCaptureController(device)
	voice.start_listening()
	device.push_error("not-allowed")
	assert voice.listening is False

	voice.start_listening()
	device.push_end()
	assert voice.listening is False


def test_synthesis_relay_exposes_latest_utterance():
	device = RelaySynthesisDevice()
	playback = SpeechPlaybackController(device, rate=0.9, pitch=1.0, volume=1.0)
	assert device.pending() is None
	first = playback.speak("A")
	second = playback.speak("B")
	pending = device.pending()
	assert pending["id"] == second.id
	assert pending["text"] == "B"
	assert pending["rate"] == 0.9

	# The browser reports the canceled utterance late; it is ignored
	assert device.dispatch(first.id, "end") is False
	assert device.dispatch(second.id, "start") is True
	assert playback.speaking is True
	assert device.dispatch(second.id, "end") is True
	assert playback.speaking is False
	assert device.pending() is None


def test_synthesis_relay_error_clears_pending():
	device = RelaySynthesisDevice()
	playback = SpeechPlaybackController(device)
	u = playback.speak("A")
	device.dispatch(u.id, "start")
	device.dispatch(u.id, "error", "interrupted")
	assert playback.speaking is False
	assert device.pending() is None
