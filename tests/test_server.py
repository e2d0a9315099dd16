"""
Tests for the HTTP surface.
"""

import json

import pytest
from fastapi.testclient import TestClient

import server
from datavision.entities import ConversationState

from conftest import build_xlsx

XLSX_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@pytest.fixture
def backend(make_backend, monkeypatch):
    backend = make_backend()
    monkeypatch.setattr(server, "backend", backend)
    return backend


@pytest.fixture
def client(backend) -> TestClient:
    return TestClient(server.app)


def _new_session(client) -> str:
    response = client.post("/sessions")
    assert response.status_code == 200
    return response.json()["data"]["sessionId"]


def _upload(client, session_id, content, name="meters.xlsx"):
    return client.post(f"/sessions/{session_id}/upload", files={"file": (name, content, XLSX_TYPE)})


class TestEndpoints:

    def test_upload_select_and_chat(self, client, energy_workbook):
        session_id = _new_session(client)

        uploaded = _upload(client, session_id, energy_workbook)
        assert uploaded.status_code == 200
        assert len(uploaded.json()["data"]["result"]["options"]) == 4

        selected = client.post(f"/sessions/{session_id}/select", json={"level": 70})
        assert selected.status_code == 200
        assert selected.json()["data"]["selectedOption"]["title"] == "Web Dashboard with Alerts"

        chat = client.post(f"/sessions/{session_id}/chat", json={"text": "What alerts can I get?"})
        assert chat.status_code == 200
        assert chat.headers["content-type"].startswith("application/x-ndjson")
        events = [json.loads(line) for line in chat.text.splitlines() if line]
        assert [e["message"]["text"] for e in events] == ["", "Hel", "Hello", "Hello"]
        assert events[-1]["state"] == "contextualized"

        loaded = client.get(f"/sessions/{session_id}")
        assert loaded.json()["data"]["history"][-1]["text"] == "Hello"

    def test_wrong_extension_is_415(self, client, energy_workbook):
        session_id = _new_session(client)

        response = _upload(client, session_id, energy_workbook, name="meters.csv")

        assert response.status_code == 415

    def test_empty_workbook_is_422(self, client):
        session_id = _new_session(client)

        response = _upload(client, session_id, build_xlsx([]))

        assert response.status_code == 422
        assert response.json()["detail"] == "File appears to be empty"

    def test_model_outage_is_502(self, client, fake_llm, energy_workbook):
        session_id = _new_session(client)
        fake_llm.invoke_structured.side_effect = ConnectionError("down")

        response = _upload(client, session_id, energy_workbook)

        assert response.status_code == 502

    def test_unknown_session_is_404(self, client):
        assert client.get("/sessions/nope").status_code == 404
        assert client.post("/sessions/nope/chat", json={"text": "hi"}).status_code == 404

    def test_chat_during_a_turn_is_409(self, client, backend):
        session_id = _new_session(client)
        session = backend.cache.get(session_id)
        backend.cache.commit(session.model_copy(update={"state": ConversationState.STREAMING}))

        response = client.post(f"/sessions/{session_id}/chat", json={"text": "hi"})

        assert response.status_code == 409

    def test_blank_chat_is_400(self, client):
        session_id = _new_session(client)

        response = client.post(f"/sessions/{session_id}/chat", json={"text": " "})

        assert response.status_code == 400

    def test_reset(self, client, energy_workbook):
        session_id = _new_session(client)
        _upload(client, session_id, energy_workbook)

        response = client.delete(f"/sessions/{session_id}")

        assert response.status_code == 200
        assert response.json()["data"]["result"] is None
