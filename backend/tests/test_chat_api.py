import pytest
from fastapi.testclient import TestClient

from conftest import FakeGateway

from tutor.db import get_db, get_session_factory
from tutor.main import app
from tutor.prompts import FALLBACK_REPLY
from tutor.routers import chat


@pytest.fixture
def gateway():
	return FakeGateway(reply="Photosynthesis is ```the process``` plants use. See the diagram.")


@pytest.fixture
def client(session_factory, gateway):
	def override_db():
		db = session_factory()
		try:
			yield db
		finally:
			db.close()

	app.dependency_overrides[get_db] = override_db
	app.dependency_overrides[get_session_factory] = lambda: session_factory
	app.dependency_overrides[chat.get_gateway] = lambda: gateway
	chat._runtimes.clear()
	yield TestClient(app)
	app.dependency_overrides.clear()
	chat._runtimes.clear()


def login(client, username="ada", password="secret-pass", language=None):
	body = {"username": username, "password": password}
	if language:
		body["preferred_language"] = language
	r = client.post("/auth/register", json=body)
	assert r.status_code == 201
	r = client.post("/auth/token", data={"username": username, "password": password})
	assert r.status_code == 200
	return {"Authorization": f"Bearer {r.json()['access_token']}"}


def test_chat_requires_auth(client):
	assert client.get("/chat/state").status_code == 401


def test_register_rejects_duplicates_and_bad_login(client):
	login(client)
	r = client.post("/auth/register", json={"username": "ada", "password": "x"})
	assert r.status_code == 409
	r = client.post("/auth/token", data={"username": "ada", "password": "wrong"})
	assert r.status_code == 401


def test_send_message_round_trip(client):
	headers = login(client)
	r = client.post("/chat/messages", json={"text": "Explain photosynthesis"}, headers=headers)
	assert r.status_code == 200
	body = r.json()
	assert body["accepted"] is True
	assistant = body["exchange"]["assistant_message"]
	assert assistant["role"] == "assistant"
	assert assistant["has_code"] is True
	assert assistant["has_image"] is True
	state = body["state"]
	assert state["state"] == "idle"
	assert len(state["messages"]) == 2
	session_id = state["session_id"]
	assert session_id

	sessions = client.get("/chat/sessions", headers=headers).json()
	assert [s["id"] for s in sessions] == [session_id]
	stored = client.get(f"/chat/sessions/{session_id}/messages", headers=headers).json()
	assert [m["role"] for m in stored] == ["user", "assistant"]

	# The reply is queued for the browser to speak
	pending = client.get("/chat/speech/pending", headers=headers).json()["utterance"]
	assert pending["text"] == assistant["content"]
	assert pending["rate"] == 0.9


def test_blank_message_is_not_accepted(client):
	headers = login(client)
	r = client.post("/chat/messages", json={"text": "   "}, headers=headers)
	assert r.status_code == 200
	assert r.json()["accepted"] is False
	assert r.json()["state"]["messages"] == []


def test_provider_failure_returns_fallback(client, gateway):
	gateway.error = RuntimeError("provider down")
	headers = login(client)
	body = client.post("/chat/messages", json={"text": "Hello?"}, headers=headers).json()
	assistant = body["exchange"]["assistant_message"]
	assert assistant["content"] == FALLBACK_REPLY
	assert assistant["has_code"] is False


def test_new_conversation_keeps_history(client):
	headers = login(client)
	first = client.post("/chat/messages", json={"text": "One"}, headers=headers).json()["state"]["session_id"]
	state = client.post("/chat/new", headers=headers).json()
	assert state["messages"] == []
	assert state["session_id"] is None
	second = client.post("/chat/messages", json={"text": "Two"}, headers=headers).json()["state"]["session_id"]
	assert second != first
	assert len(client.get("/chat/sessions", headers=headers).json()) == 2


def test_voice_dictation_feeds_input_and_send(client, gateway):
	headers = login(client)
	state = client.post("/chat/voice/start", headers=headers).json()
	assert state["voice"]["listening"] is True
	assert state["voice"]["supported"] is True
	client.post(
		"/chat/voice/results",
		json={"results": [{"text": "what is", "is_final": False}]},
		headers=headers,
	)
	state = client.post(
		"/chat/voice/results",
		json={"results": [{"text": "what is a cell", "is_final": True}]},
		headers=headers,
	).json()
	assert state["voice"]["transcript"] == "what is a cell"
	assert state["pending_input"] == "what is a cell"
	state = client.post("/chat/voice/stop", headers=headers).json()
	assert state["voice"]["listening"] is False

	body = client.post("/chat/send", headers=headers).json()
	assert body["accepted"] is True
	assert gateway.calls[-1]["prompt"] == "what is a cell"
	assert body["state"]["voice"]["transcript"] == ""


def test_speech_events_and_speak_action(client):
	headers = login(client)
	body = client.post("/chat/messages", json={"text": "Hi"}, headers=headers).json()
	user_id = body["state"]["messages"][0]["id"]
	utterance = client.post(f"/chat/messages/{user_id}/speak", headers=headers).json()["utterance"]
	assert utterance["text"] == "Hi"

	state = client.post("/chat/speech/events", json={"utterance_id": utterance["id"], "event": "start"}, headers=headers).json()
	assert state["playback"]["speaking"] is True
	state = client.post("/chat/speech/stop", headers=headers).json()
	assert state["playback"]["speaking"] is False
	assert client.post("/chat/messages/unknown/speak", headers=headers).status_code == 404


def test_language_switch(client):
	headers = login(client, language="es")
	assert client.get("/chat/state", headers=headers).json()["language"] == "es"
	assert client.post("/chat/language", json={"language": "zh"}, headers=headers).json()["language"] == "zh"
	assert client.post("/chat/language", json={"language": "xx"}, headers=headers).status_code == 400


def test_users_do_not_see_each_others_sessions(client):
	ada = login(client, "ada")
	bob = login(client, "bob")
	sid = client.post("/chat/messages", json={"text": "private"}, headers=ada).json()["state"]["session_id"]
	assert client.get("/chat/sessions", headers=bob).json() == []
	assert client.get(f"/chat/sessions/{sid}/messages", headers=bob).status_code == 404


def test_idle_runtimes_are_evicted(client, monkeypatch):
	ada = login(client, "ada")
	bob = login(client, "bob")
	client.get("/chat/state", headers=ada)
	client.get("/chat/state", headers=bob)
	assert set(chat._runtimes) == {"ada", "bob"}

	monkeypatch.setattr(chat.settings, "chat_runtime_idle_minutes", 1)
	later = chat._runtimes["ada"].last_seen + 120
	evicted = chat.evict_runtimes(keep="bob", now=later)
	assert evicted == ["ada"]
	assert set(chat._runtimes) == {"bob"}


def test_runtime_cap_drops_least_recently_used(client, monkeypatch):
	headers = {name: login(client, name) for name in ("ada", "bob", "cyd")}
	monkeypatch.setattr(chat.settings, "chat_runtime_max", 2)
	client.get("/chat/state", headers=headers["ada"])
	client.get("/chat/state", headers=headers["bob"])
	client.get("/chat/state", headers=headers["cyd"])
	assert set(chat._runtimes) == {"bob", "cyd"}


def test_end_runtime_forgets_live_conversation(client):
	headers = login(client)
	client.post("/chat/messages", json={"text": "Hi"}, headers=headers)
	assert client.delete("/chat/runtime", headers=headers).status_code == 204
	assert "ada" not in chat._runtimes
	state = client.get("/chat/state", headers=headers).json()
	assert state["messages"] == []
	assert len(client.get("/chat/sessions", headers=headers).json()) == 1
