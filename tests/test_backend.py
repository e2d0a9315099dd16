"""
Tests for the request dispatcher: upload -> analysis -> selection -> chat.
"""

import pytest

from datavision.backend_prompts import CHAT_FALLBACK_MESSAGE
from datavision.entities import ConversationState
from datavision.exceptions import SessionNotFoundError, TurnInProgressError

from conftest import FakeChatLlm, build_xlsx


def _upload(backend, session_id, content, file_name="meters.xlsx"):
    return backend._process_request_data(
        {
            "type": "upload",
            "session_id": session_id,
            "payload": {"file_name": file_name, "file_bytes": content},
        }
    )


def _select(backend, session_id, level):
    return backend._process_request_data(
        {"type": "select_option", "session_id": session_id, "payload": {"level": level}}
    )


class TestUploadAndSelect:

    def test_end_to_end_preview_analysis_selection(self, make_backend, fake_llm, energy_workbook):
        backend = make_backend()
        session_id = backend.create_session()["sessionId"]

        response = _upload(backend, session_id, energy_workbook)

        assert response["status"] == "success"
        prompt = fake_llm.invoke_structured.call_args.args[0]
        assert '["station", "unit", "pea_import", "pea_export"]' in prompt
        assert "ST-10" in prompt and "ST-11" not in prompt

        data = response["data"]
        assert data["fileName"] == "meters.xlsx"
        assert [o["level"] for o in data["result"]["options"]] == [20, 50, 70, 100]
        assert len(data["history"]) == 1

        selected = _select(backend, session_id, 70)

        assert selected["status"] == "success"
        history = selected["data"]["history"]
        assert len(history) == 2
        assert "Web Dashboard with Alerts" in history[-1]["text"]
        assert "React, FastAPI, PostgreSQL, Line Notify" in history[-1]["text"]
        assert selected["data"]["selectedOption"]["level"] == 70
        assert selected["data"]["state"] == "contextualized"

    def test_reselecting_the_same_option_is_a_noop(self, make_backend, energy_workbook):
        backend = make_backend()
        session_id = backend.create_session()["sessionId"]
        _upload(backend, session_id, energy_workbook)

        _select(backend, session_id, 50)
        again = _select(backend, session_id, 50)
        other = _select(backend, session_id, 100)

        assert again["message"] == "Option already selected."
        assert len(again["data"]["history"]) == 2
        assert len(other["data"]["history"]) == 3

    @pytest.mark.parametrize("level", [30, "high", None])
    def test_invalid_level(self, make_backend, energy_workbook, level):
        backend = make_backend()
        session_id = backend.create_session()["sessionId"]
        _upload(backend, session_id, energy_workbook)

        response = _select(backend, session_id, level)

        assert response["status"] == "error"
        assert response["error_type"] == "DataVisionError"

    def test_select_before_upload(self, make_backend):
        backend = make_backend()
        session_id = backend.create_session()["sessionId"]

        response = _select(backend, session_id, 20)

        assert response["status"] == "error"

    def test_wrong_extension_never_reaches_the_model(self, make_backend, fake_llm, energy_workbook):
        backend = make_backend()
        session_id = backend.create_session()["sessionId"]

        response = _upload(backend, session_id, energy_workbook, file_name="meters.csv")

        assert response["status"] == "error"
        assert response["error_type"] == "InputFormatError"
        fake_llm.invoke_structured.assert_not_called()

    def test_empty_sheet(self, make_backend, fake_llm):
        backend = make_backend()
        session_id = backend.create_session()["sessionId"]

        response = _upload(backend, session_id, build_xlsx([]))

        assert response["error_type"] == "EmptySheetError"
        assert response["message"] == "File appears to be empty"
        fake_llm.invoke_structured.assert_not_called()

    def test_failed_analysis_keeps_previous_result(self, make_backend, fake_llm, energy_workbook):
        backend = make_backend()
        session_id = backend.create_session()["sessionId"]
        _upload(backend, session_id, energy_workbook)

        fake_llm.invoke_structured.return_value = '{"options": [{"level": 20}]}'
        response = _upload(backend, session_id, energy_workbook, file_name="other.xlsx")

        assert response["error_type"] == "SchemaValidationError"
        kept = backend.cache.get(session_id)
        assert kept.file_name == "meters.xlsx"
        assert len(kept.result.options) == 4

    def test_transport_failure_propagates(self, make_backend, fake_llm, energy_workbook):
        backend = make_backend()
        session_id = backend.create_session()["sessionId"]
        fake_llm.invoke_structured.side_effect = ConnectionError("down")

        with pytest.raises(ConnectionError):
            _upload(backend, session_id, energy_workbook)

    def test_unknown_session_and_request_type(self, make_backend):
        backend = make_backend()

        missing = backend._process_request_data({"type": "load_session", "session_id": "nope"})
        unknown = backend._process_request_data({"type": "export", "session_id": "nope"})

        assert missing["error_type"] == "SessionNotFoundError"
        assert unknown["status"] == "error"

    def test_reset(self, make_backend, energy_workbook):
        backend = make_backend()
        session_id = backend.create_session()["sessionId"]
        _upload(backend, session_id, energy_workbook)

        response = backend._process_request_data({"type": "reset", "session_id": session_id})

        assert response["data"]["result"] is None
        assert response["data"]["history"] == []
        assert "epoch" not in response["data"]


class TestStreamChat:

    def _ready(self, make_backend, workbook, chat_llm=None):
        backend = make_backend(chat_llm=chat_llm)
        session_id = backend.create_session()["sessionId"]
        _upload(backend, session_id, workbook)
        return backend, session_id

    def test_events_follow_the_growing_buffer(self, make_backend, energy_workbook):
        backend, session_id = self._ready(make_backend, energy_workbook)

        events = list(backend.stream_chat(session_id, "Which columns matter?"))

        assert [e["message"]["text"] for e in events] == ["", "Hel", "Hello", "Hello"]
        assert [e["done"] for e in events] == [False, False, False, True]
        assert len({e["message"]["id"] for e in events}) == 1

        stored = backend.cache.get(session_id)
        assert [m.text for m in stored.history[-2:]] == ["Which columns matter?", "Hello"]
        assert stored.state == ConversationState.IDLE

    def test_failed_turn_ends_with_fallback(self, make_backend, energy_workbook):
        backend, session_id = self._ready(
            make_backend, energy_workbook, chat_llm=FakeChatLlm(error=RuntimeError("503"))
        )

        events = list(backend.stream_chat(session_id, "hi"))

        assert events[-1]["message"]["text"] == CHAT_FALLBACK_MESSAGE
        assert events[-1]["done"] is True
        history = backend.cache.get(session_id).history
        assert [m.text for m in history[-2:]] == ["hi", CHAT_FALLBACK_MESSAGE]

    def test_second_turn_while_streaming_is_rejected(self, make_backend, energy_workbook):
        backend, session_id = self._ready(make_backend, energy_workbook)
        events = backend.stream_chat(session_id, "first")
        next(events)

        with pytest.raises(TurnInProgressError):
            backend.stream_chat(session_id, "second")

        list(events)
        assert backend.cache.get(session_id).state == ConversationState.IDLE

    def test_selection_is_refused_while_streaming(self, make_backend, energy_workbook):
        backend, session_id = self._ready(make_backend, energy_workbook)
        events = backend.stream_chat(session_id, "first")
        next(events)

        response = _select(backend, session_id, 20)

        assert response["error_type"] == "TurnInProgressError"
        events.close()

    def test_reset_mid_stream_discards_late_fragments(self, make_backend, energy_workbook):
        backend, session_id = self._ready(make_backend, energy_workbook)
        events = backend.stream_chat(session_id, "first")
        next(events)

        backend.cache.reset(session_id)
        remaining = list(events)

        assert remaining == []
        assert backend.cache.get(session_id).history == []

    def test_early_close_settles_the_session(self, make_backend, energy_workbook):
        backend, session_id = self._ready(make_backend, energy_workbook)
        before = len(backend.cache.get(session_id).history)
        events = backend.stream_chat(session_id, "first")
        next(events)

        events.close()

        stored = backend.cache.get(session_id)
        assert stored.state == ConversationState.IDLE
        assert [m.text for m in stored.history[before:]] == ["first"]

    def test_partial_answer_survives_early_close(self, make_backend, energy_workbook):
        backend, session_id = self._ready(make_backend, energy_workbook)
        events = backend.stream_chat(session_id, "first")
        next(events)
        next(events)

        events.close()

        assert backend.cache.get(session_id).history[-1].text == "Hel"

    def test_blank_text_and_unknown_session(self, make_backend, energy_workbook):
        backend, session_id = self._ready(make_backend, energy_workbook)

        with pytest.raises(ValueError):
            backend.stream_chat(session_id, "  ")
        with pytest.raises(SessionNotFoundError):
            backend.stream_chat("nope", "hi")
