# datavision/backend.py

import json
import logging
import traceback
from typing import Any, Iterator

from datavision.analysis_service import AnalysisService
from datavision.base_utils import BaseUtils
from datavision.chat_support import ChatSupport
from datavision.entities import ChatMessage, ConversationState, SessionContext
from datavision.exceptions import DataVisionError, SessionNotFoundError, TurnInProgressError
from datavision.excel_service import extract_preview, validate_upload_name
from datavision.session_cache import GLOBAL_SESSION_CACHE, SessionCache

logger = logging.getLogger("datavision_backend")


class Backend(BaseUtils):
    """
    Request dispatcher between the HTTP layer and the analysis/chat core.

    Responses are plain dicts: {"status", "message", "session_id", "data"}.
    Pipeline failures (DataVisionError) become status="error" responses; anything
    else (transport failures from the model provider included) propagates.
    """

    def __init__(
        self,
        cache: SessionCache | None = None,
        analysis_service: AnalysisService | None = None,
        chat_support: ChatSupport | None = None,
    ):
        self.cache = cache or GLOBAL_SESSION_CACHE
        self._analysis_service = analysis_service
        self.chat_support = chat_support or ChatSupport()

    @property
    def analysis_service(self) -> AnalysisService:
        if self._analysis_service is None:
            self._analysis_service = AnalysisService()
        return self._analysis_service

    def _process_request_data(self, request_data: dict) -> dict:
        """
        Core request handling logic.
        Takes a parsed request dict and returns the response_data dict.
        """
        try:
            request_type = request_data.get("type")
            payload = request_data.get("payload") or {}
            session_id = str(request_data.get("session_id"))

            logger.debug(f"process_request request {self._preview(request_data)}")

            response_data = {
                "status": "success",
                "message": "",
                "session_id": session_id,
            }

            try:
                if request_type == "load_session":
                    response_data["data"] = self.session_view(self.cache.get(session_id))

                elif request_type == "upload":
                    response_data["data"] = self.handle_upload(
                        session_id,
                        payload.get("file_name"),
                        payload.get("file_bytes") or b"",
                    )
                    response_data["message"] = "Analysis complete."

                elif request_type == "select_option":
                    response_data["data"], response_data["message"] = self.handle_select_option(session_id, payload)

                elif request_type == "reset":
                    response_data["data"] = self.session_view(self.cache.reset(session_id))
                    response_data["message"] = "Session reset."

                else:
                    response_data["status"] = "error"
                    response_data["message"] = f"Unknown request type: {request_type}"

            except DataVisionError as e:
                logger.info(f"{request_type} failed for session {session_id}: {e}")
                response_data["status"] = "error"
                response_data["error_type"] = type(e).__name__
                response_data["message"] = str(e)

            logger.debug(f"response {self._preview(response_data)}")

            return response_data

        except Exception as e:
            logger.info(f"Error while processing request data: {e}")
            traceback.print_exc()
            raise

    # -----------------------
    # Handlers
    # -----------------------

    def create_session(self) -> dict:
        session = self.cache.create()
        return self.session_view(session)

    def handle_upload(self, session_id: str, file_name: str | None, file_bytes: bytes) -> dict:
        """
        Gate the file name, extract the preview, request the analysis.
        Only a successful analysis replaces the session's result; the new result
        starts a fresh conversation (new epoch, welcome message).
        """
        self.cache.get(session_id)
        name = validate_upload_name(file_name)
        preview = extract_preview(file_bytes)
        self.color_print(
            f"Analysing '{name}': {len(preview.headers)} columns, "
            f"{len(preview.sample_rows)}/{preview.total_rows} rows sampled",
            color="cyan",
        )

        result = self.analysis_service.analyze_preview(preview)

        fresh = SessionContext(session_id=session_id, file_name=name, result=result)
        fresh = self.chat_support.open_conversation(fresh)
        self.cache.replace(fresh)
        return self.session_view(fresh)

    def handle_select_option(self, session_id: str, payload: dict) -> tuple[dict, str]:
        session = self.cache.get(session_id)
        if session.state == ConversationState.STREAMING:
            raise TurnInProgressError("Wait for the current answer before changing the selected option")
        if session.result is None:
            raise DataVisionError("No analysis result to select from; upload a file first")

        try:
            level = int(payload.get("level"))
        except (TypeError, ValueError):
            raise DataVisionError(f"Invalid option level: {payload.get('level')!r}") from None

        option = session.result.option_for_level(level)
        if option is None:
            raise DataVisionError(f"No option with level {level} in the current analysis")

        # re-selecting the current option is not a new transition
        if session.selected_option == option:
            return self.session_view(session), "Option already selected."

        updated = self.chat_support.select_option(session, option)
        if not self.cache.commit_if_current(session, updated):
            raise TurnInProgressError("Session changed while selecting; please retry")
        return self.session_view(updated), f"Selected option {option.level}%."

    def stream_chat(self, session_id: str, text: str) -> Iterator[dict]:
        """
        Start one chat turn and return an iterator of buffer events.

        Validation happens eagerly (unknown session, empty text, turn already in
        flight raise here); the returned iterator then yields one event per state:
        placeholder, every fragment, final.
        """
        session = self.cache.get(session_id)
        turns = self.chat_support.run_turn(session, text)
        first = next(turns)
        if not self.cache.commit_if_current(session, first):
            turns.close()
            raise TurnInProgressError("A chat turn is already in progress for this session")
        return self._chat_events(turns, first)

    def _chat_events(self, turns, first: SessionContext) -> Iterator[dict]:
        last = first
        try:
            yield self._chat_event(first)
            for snapshot in turns:
                last = snapshot
                if not self.cache.commit(snapshot):
                    # session was reset or re-uploaded mid-stream
                    logger.info(f"Dropping stale chat stream for session {snapshot.session_id}")
                    break
                yield self._chat_event(snapshot)
        finally:
            turns.close()
            if last.state == ConversationState.STREAMING:
                self._settle_interrupted_turn(last)

    def _settle_interrupted_turn(self, last: SessionContext) -> None:
        """The consumer stopped early: keep any partial answer, drop an empty placeholder."""
        history = list(last.history)
        if history and history[-1].role == "model" and not history[-1].text:
            history.pop()
        settled = last.model_copy(update={"history": history, "state": last.resting_state()})
        try:
            self.cache.commit(settled)
        except SessionNotFoundError:
            logger.info(f"Session {last.session_id} disappeared while streaming")

    # -----------------------
    # Views
    # -----------------------

    def _chat_event(self, session: SessionContext) -> dict:
        message: ChatMessage = session.history[-1]
        return {
            "session_id": session.session_id,
            "message": message.model_dump(by_alias=True, mode="json"),
            "state": session.state.value,
            "done": session.state != ConversationState.STREAMING,
        }

    def session_view(self, session: SessionContext) -> dict:
        return session.model_dump(by_alias=True, mode="json", exclude={"epoch"})

    def _preview(self, data: Any) -> str:
        try:
            return json.dumps(data, indent=2, default=lambda v: f"<{type(v).__name__}>")
        except Exception:
            return str(data)
