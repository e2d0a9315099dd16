# datavision/base_utils.py


import json
import logging
import re

from langchain_core.messages import AIMessage, HumanMessage

from datavision.google_helpers import DEFAULT_MODEL, LLM_TIMEOUT, PROJECT_ID, REGION, build_creds
from datavision.llm_client import ChatLlmClient, LlmClient
from datavision.model_props import PROVIDER_VERTEX, model_provider


logger = logging.getLogger("datavision_backend")

_WRAPPING_FENCE = re.compile(r'^\s*```[a-zA-Z]*\s*\n(.*)\n\s*```\s*$', re.DOTALL)


class BaseUtils():
    llm_timeout: float = LLM_TIMEOUT

    # -----------------------
    # General Utils
    # -----------------------

    def color_print(self, text, color=None, end_value=None):
        COLOR_CODES = {
            'black': '30', 'red': '31', 'green': '32', 'yellow': '33', 'blue': '34', 'magenta': '35',
            'cyan': '36', 'white': '37', 'bright_black': '90', 'bright_red': '91', 'bright_green': '92',
            'bright_yellow': '93', 'bright_blue': '94', 'bright_magenta': '95', 'bright_cyan': '96', 'bright_white': '97'
        }
        if color and color.lower() in COLOR_CODES:
            color_code = COLOR_CODES[color.lower()]
            start = f"\033[{color_code}m"
            end = "\033[0m"
            text = f"{start}{text}{end}"
        logger.info(str(text))
        return False

    def strip_code_fence(self, text) -> str:
        """Unwrap a ```json ... ``` fence around the whole text; backticks inside it are left alone."""
        match = _WRAPPING_FENCE.match(text)
        return match.group(1) if match else text

    def unsafe_string_format(self, dest_string, print_unused_keys_report=True, **kwargs):
        """
        Formats a destination string by replacing placeholders with corresponding values from kwargs.

        Unlike str.format it only touches the {KEY} placeholders present in kwargs, so JSON or
        other braces inside the template survive untouched.
        """
        missing_keys = []

        def replacer(match):
            key = match.group(1)
            if key in kwargs:
                return str(kwargs[key])
            else:
                missing_keys.append(key)
                return match.group(0)  # Leave the placeholder unchanged

        pattern = re.compile(r'\{(\w+)\}')
        result = pattern.sub(replacer, dest_string)
        if missing_keys and print_unused_keys_report:
            logger.info(f"\033[93m\033[3mMissing keys within string-to-format in unsafe_string_format: {', '.join(missing_keys)}\033[0m")
        return result

    def to_prompt_json(self, value) -> str:
        # keep non-ASCII headers (e.g. Thai column names) readable for the model
        return json.dumps(value, ensure_ascii=False, default=str)

    # -----------------------
    # Chat history plumbing
    # -----------------------

    def _history_to_messages(self, history) -> list:
        """
        Convert ChatMessage history into LangChain messages, in order, one per message.
        """
        out = []
        for item in (history or []):
            if item.role == "user":
                out.append(HumanMessage(content=item.text))
            else:
                out.append(AIMessage(content=item.text))
        return out

    # -----------------------
    # LLM base plumbing
    # -----------------------

    def _build_llms_for_model(self, model_name: str | None = None, timeout: float | None = None):
        """
        Build per-request LLM instances for the given model name.
        Falls back to None/None if creation fails.
        """
        model_name = model_name or DEFAULT_MODEL
        if not timeout:
            timeout = self.llm_timeout
        try:
            credentials = build_creds() if model_provider(model_name) == PROVIDER_VERTEX else None
            llm = LlmClient(
                model_name=model_name,
                vertex_project=PROJECT_ID,
                vertex_region=REGION,
                timeout=timeout,
                credentials=credentials,
            )
            chat_llm = ChatLlmClient(
                model_name=model_name,
                vertex_project=PROJECT_ID,
                vertex_region=REGION,
                timeout=timeout,
                credentials=credentials,
            )
            return llm, chat_llm
        except Exception as e:
            logger.info(f"Warning: Could not initialize LLMs for {model_name}: {e}. ")
            return None, None
