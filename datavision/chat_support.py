# datavision/chat_support.py
"""
Conversational context for the follow-up assistant.

Session state is threaded explicitly: every operation takes a SessionContext and
returns (or yields) new ones. run_turn folds the streamed fragments into the
in-progress model message and yields the session after every fragment, so a
caller can render the growing answer before the stream ends.

States: idle (no option selected) -> contextualized (option selected)
        idle/contextualized -> streaming (turn in flight) -> idle/contextualized
"""

import logging
from typing import Iterator, List, Optional

from langchain_core.messages import HumanMessage, SystemMessage

from datavision.backend_prompts import (
    CHAT_FALLBACK_MESSAGE,
    CHAT_SYSTEM_PROMPT,
    DOMAIN_KNOWLEDGE,
    NO_OPTION_CONTEXT,
    OPTION_ANNOUNCEMENT_MESSAGE,
    SELECTED_OPTION_CONTEXT,
    WELCOME_DEFAULT_SUBJECT,
    WELCOME_MESSAGE,
)
from datavision.base_utils import BaseUtils
from datavision.entities import ChatMessage, ConversationState, SessionContext, SolutionOption
from datavision.exceptions import ChatTransportError, TurnInProgressError
from datavision.google_helpers import REPLY_LANGUAGE

logger = logging.getLogger("datavision_backend")


class ChatSupport(BaseUtils):

    def __init__(self, chat_llm=None, reply_language: str = REPLY_LANGUAGE):
        self._chat_llm = chat_llm
        self.reply_language = reply_language

    @property
    def chat_llm(self):
        if self._chat_llm is None:
            _, self._chat_llm = self._build_llms_for_model()
        return self._chat_llm

    # -----------------------
    # Context messages
    # -----------------------

    def open_conversation(self, session: SessionContext) -> SessionContext:
        """Append the assistant's greeting; used when a fresh analysis result arrives."""
        subject = session.selected_option.title if session.selected_option else WELCOME_DEFAULT_SUBJECT
        welcome = ChatMessage(
            role="model",
            text=self.unsafe_string_format(WELCOME_MESSAGE, SUBJECT=subject),
        )
        return session.model_copy(update={"history": [*session.history, welcome]})

    def select_option(self, session: SessionContext, option: SolutionOption) -> SessionContext:
        """
        Record the selection and append one context announcement naming the option's
        title and technologies. Does not deduplicate re-selections.
        """
        announcement = ChatMessage(
            role="model",
            text=self.unsafe_string_format(
                OPTION_ANNOUNCEMENT_MESSAGE,
                TITLE=option.title,
                TECHNOLOGIES=", ".join(option.technologies),
            ),
        )
        state = session.state
        if state != ConversationState.STREAMING:
            state = ConversationState.CONTEXTUALIZED
        return session.model_copy(
            update={
                "selected_option": option,
                "history": [*session.history, announcement],
                "state": state,
            }
        )

    def build_system_instruction(self, selected_option: Optional[SolutionOption]) -> str:
        if selected_option is not None:
            context = self.unsafe_string_format(
                SELECTED_OPTION_CONTEXT,
                TITLE=selected_option.title,
                LEVEL=selected_option.level,
                TOOLS=selected_option.development_tools,
                VISUALIZATION=selected_option.visualization,
                CONCRETE_OUTPUTS=", ".join(selected_option.concrete_outputs),
            )
        else:
            context = NO_OPTION_CONTEXT

        return self.unsafe_string_format(
            CHAT_SYSTEM_PROMPT,
            CONTEXT=context,
            DOMAIN_KNOWLEDGE=DOMAIN_KNOWLEDGE.strip(),
            REPLY_LANGUAGE=self.reply_language,
        ).strip()

    # -----------------------
    # Streaming
    # -----------------------

    def send_turn(
        self,
        history: List[ChatMessage],
        selected_option: Optional[SolutionOption],
        message: str,
    ) -> Iterator[str]:
        """
        Lazily stream the model's answer to `message`.

        Every prior message is replayed in order, both roles, before the new one.
        Any provider failure surfaces as ChatTransportError. Not restartable: issue a
        new call per turn.
        """
        messages = [SystemMessage(content=self.build_system_instruction(selected_option))]
        messages.extend(self._history_to_messages(history))
        messages.append(HumanMessage(content=message))

        try:
            chat_llm = self.chat_llm
            if chat_llm is None:
                raise ChatTransportError("No chat model available")
            for fragment in chat_llm.stream(messages):
                if fragment:
                    yield fragment
        except ChatTransportError:
            raise
        except Exception as e:
            raise ChatTransportError(f"Chat stream failed: {e}") from e

    def run_turn(self, session: SessionContext, message: str) -> Iterator[SessionContext]:
        """
        Fold one streamed turn into the session.

        Yields: the session with the user message and an empty model placeholder,
        then one session per fragment with the placeholder's text grown by that
        fragment, then the final session back at rest. On ChatTransportError the final
        session carries exactly one fallback message instead of an empty placeholder.
        """
        if session.state == ConversationState.STREAMING:
            raise TurnInProgressError("A chat turn is already in progress for this session")
        if not (message or "").strip():
            raise ValueError("Message text is empty")

        prior = list(session.history)
        user_msg = ChatMessage(role="user", text=message)
        placeholder = ChatMessage(role="model", text="")

        current = session.model_copy(
            update={"history": [*prior, user_msg, placeholder], "state": ConversationState.STREAMING}
        )
        yield current

        buffer = ""
        try:
            for fragment in self.send_turn(prior, session.selected_option, message):
                buffer += fragment
                current = _with_message_text(current, placeholder.id, buffer)
                yield current
            if not buffer:
                raise ChatTransportError("Chat stream ended without any text")
        except ChatTransportError as e:
            logger.error("Chat turn failed: %s", e, exc_info=True)
            history = list(current.history)
            if not buffer:
                history = [m for m in history if m.id != placeholder.id]
            history.append(ChatMessage(role="model", text=CHAT_FALLBACK_MESSAGE))
            yield current.model_copy(update={"history": history, "state": current.resting_state()})
            return

        usage = getattr(self._chat_llm, "get_accrued_usage", None)
        if callable(usage):
            logger.debug("chat turn usage %s", usage())
        yield current.model_copy(update={"state": current.resting_state()})


def _with_message_text(session: SessionContext, message_id: str, text: str) -> SessionContext:
    history = [
        m.model_copy(update={"text": text}) if m.id == message_id else m
        for m in session.history
    ]
    return session.model_copy(update={"history": history})
