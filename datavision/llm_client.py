import copy
import logging
from typing import Any, Dict, Iterator, List, Optional

from openai import OpenAI
from langchain_google_vertexai import VertexAI, ChatVertexAI
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from datavision.model_props import PROVIDER_OPENAI, PROVIDER_VERTEX, accepts_temperature, model_provider, split_model_name

logger = logging.getLogger("datavision_backend")


class BaseLlmClient:
    """
    Common usage accounting for both completion and chat clients.

    Every call is a single attempt: failures from the provider propagate to the caller.
    """

    last_usage: Optional[Dict[str, int]]

    def _setup_provider(self, model_name: str, timeout: float | None) -> None:
        self.provider = model_provider(model_name)
        self.model_name, self.reasoning_effort = split_model_name(model_name)
        self._client = None

        if self.provider == PROVIDER_OPENAI:
            client_kwargs: Dict[str, Any] = {"max_retries": 0}
            if timeout is not None:
                client_kwargs["timeout"] = timeout
            self._client = OpenAI(**client_kwargs)

    def _openai_params(self) -> Dict[str, Any]:
        if self.reasoning_effort is None:
            return {}
        return {"reasoning": {"effort": self.reasoning_effort}}

    def _merge_usage_counts(self, prompt_tokens: int, completion_tokens: int, total_tokens: int) -> None:
        inc = {
            "prompt_token_count": int(prompt_tokens or 0),
            "candidates_token_count": int(completion_tokens or 0),
            "total_token_count": int(total_tokens or 0),
        }
        if self.last_usage is None:
            self.last_usage = inc
            return
        for k, v in inc.items():
            self.last_usage[k] = (self.last_usage.get(k, 0) or 0) + (v or 0)

    def _merge_openai_usage(self, resp: Any) -> None:
        usage = getattr(resp, "usage", None)
        if usage is None:
            return
        self._merge_usage_counts(
            getattr(usage, "input_tokens", 0),
            getattr(usage, "output_tokens", 0),
            getattr(usage, "total_tokens", 0),
        )

    def _merge_vertex_usage(self, resp: Any) -> None:
        # LangChain standard usage ({input_tokens, output_tokens, total_tokens}) first,
        # then the raw Vertex usage_metadata from response_metadata.
        usage_md = getattr(resp, "usage_metadata", None)
        if usage_md:
            self._merge_usage_counts(
                usage_md.get("input_tokens", 0),
                usage_md.get("output_tokens", 0),
                usage_md.get("total_tokens", 0),
            )
            return

        rm = getattr(resp, "response_metadata", None)
        if isinstance(rm, dict) and isinstance(rm.get("usage_metadata"), dict):
            raw = rm["usage_metadata"]
            self._merge_usage_counts(
                raw.get("prompt_token_count", 0),
                raw.get("candidates_token_count", 0),
                raw.get("total_token_count", 0),
            )

    def get_accrued_usage(self) -> Dict[str, int]:
        return dict(self.last_usage or {})


class LlmClient(BaseLlmClient):
    """
    Wrapper for schema-constrained "completion-style" use:

        text = llm.invoke_structured(prompt, response_schema=SCHEMA, temperature=0.5)

    Under the hood:
    - Vertex: VertexAI with response_mime_type="application/json" + response_schema
    - OpenAI: Responses API with a strict json_schema text format
    """

    def __init__(
        self,
        model_name: str,
        *,
        vertex_project: str,
        vertex_region: str,
        timeout: float | None = None,
        credentials: Any = None,
    ):
        self._timeout = timeout
        self.vertex_project = vertex_project
        self.vertex_region = vertex_region
        self.credentials = credentials
        self.last_usage: Optional[Dict[str, int]] = None
        self._setup_provider(model_name, timeout)

    def _build_vertex(self, response_schema: Dict[str, Any], temperature: float) -> VertexAI:
        return VertexAI(
            project=self.vertex_project,
            location=self.vertex_region,
            credentials=self.credentials,
            model_name=self.model_name,
            timeout=self._timeout,
            temperature=temperature,
            response_mime_type="application/json",
            response_schema=response_schema,
        )

    def invoke_structured(
        self,
        prompt: str,
        *,
        response_schema: Dict[str, Any],
        temperature: float,
        schema_name: str = "structured_response",
    ) -> str:
        """
        Single HTTP call constrained to `response_schema`. Returns the raw JSON text
        ("" when the provider sent nothing back).
        """
        if self.provider == PROVIDER_VERTEX:
            resp = self._build_vertex(response_schema, temperature).invoke(prompt)
            self._merge_vertex_usage(resp)
            if isinstance(resp, str):
                return resp
            return getattr(resp, "content", str(resp)) or ""

        params = self._openai_params()
        text_cfg = {"format": {
            "type": "json_schema",
            "name": schema_name,
            "schema": strict_openai_schema(response_schema),
            "strict": True,
        }}
        if accepts_temperature(self.model_name, self.reasoning_effort):
            params["temperature"] = temperature

        resp = self._client.responses.create(
            model=self.model_name,
            input=prompt,
            text=text_cfg,
            **params,
        )
        self._merge_openai_usage(resp)

        text = getattr(resp, "output_text", "") or ""
        return text.strip()


class ChatLlmClient(BaseLlmClient):
    """
    Wrapper for streamed chat use:

        for fragment in chat_llm.stream([SystemMessage(...), HumanMessage(...), AIMessage(...), ...]):
            ...

    Under the hood:
    - Vertex: ChatVertexAI.stream(messages)
    - OpenAI: Responses API with stream=True and input=[{role, content}, ...]
    """

    def __init__(
        self,
        model_name: str,
        *,
        vertex_project: str,
        vertex_region: str,
        timeout: float | None = None,
        credentials: Any = None,
    ):
        self._timeout = timeout
        self.last_usage: Optional[Dict[str, int]] = None
        self._setup_provider(model_name, timeout)
        self._vertex = None

        if self.provider == PROVIDER_VERTEX:
            self._vertex = ChatVertexAI(
                project=vertex_project,
                location=vertex_region,
                credentials=credentials,
                model_name=self.model_name,
                timeout=timeout,
            )

    def _to_openai_messages(self, messages: List[BaseMessage]) -> List[Dict[str, str]]:
        out: List[Dict[str, str]] = []
        for m in messages:
            if isinstance(m, SystemMessage):
                role = "developer"
            elif isinstance(m, HumanMessage):
                role = "user"
            elif isinstance(m, AIMessage):
                role = "assistant"
            else:
                role = "user"
            out.append({"role": role, "content": str(m.content)})
        return out

    def stream(self, messages: List[BaseMessage]) -> Iterator[str]:
        """
        Yield non-empty text fragments as the provider produces them.
        The generator is finite and cannot be restarted.
        """
        if self.provider == PROVIDER_VERTEX:
            for chunk in self._vertex.stream(messages):
                self._merge_vertex_usage(chunk)
                text = chunk_text(chunk)
                if text:
                    yield text
            return

        events = self._client.responses.create(
            model=self.model_name,
            input=self._to_openai_messages(messages),
            stream=True,
            **self._openai_params(),
        )
        for event in events:
            event_type = getattr(event, "type", "")
            if event_type == "response.output_text.delta":
                if event.delta:
                    yield event.delta
            elif event_type == "response.completed":
                self._merge_openai_usage(getattr(event, "response", None))
            elif event_type in ("error", "response.failed"):
                raise RuntimeError(f"OpenAI stream failed: {event}")


def chunk_text(chunk: Any) -> str:
    """Text carried by a LangChain message chunk (content may be a str or a list of parts)."""
    content = getattr(chunk, "content", chunk)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(part.get("text") or "")
        return "".join(parts)
    return ""


def strict_openai_schema(schema: Dict[str, Any]) -> Dict[str, Any]:
    """
    OpenAI strict mode wants additionalProperties=false on every object;
    Vertex rejects that key, so the shared schema omits it and we add it here.
    """
    out = copy.deepcopy(schema)

    def walk(node):
        if isinstance(node, dict):
            if node.get("type") == "object":
                node["additionalProperties"] = False
            for v in node.values():
                walk(v)
        elif isinstance(node, list):
            for v in node:
                walk(v)

    walk(out)
    return out
