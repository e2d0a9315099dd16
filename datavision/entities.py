# datavision/entities.py
from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional, TypeAlias, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

CellValue: TypeAlias = Union[str, int, float, bool, None]

SOLUTION_LEVELS = (20, 50, 70, 100)
MAX_SAMPLE_ROWS = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid4().hex


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SpreadsheetPreview(WireModel):
    headers: List[str]
    sample_rows: List[List[CellValue]] = Field(default_factory=list, max_length=MAX_SAMPLE_ROWS)

    # informational only, never sent to the model
    sheet_name: str = ""
    total_rows: int = 0


class SolutionOption(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    level: Literal[20, 50, 70, 100]
    title: str
    description: str
    executive_benefits: str
    operational_benefits: str
    technologies: List[str]
    development_tools: str
    visualization: str
    concrete_outputs: List[str] = Field(min_length=3)

    @field_validator("level", mode="before")
    @classmethod
    def _level_is_an_integer(cls, value):
        # 70.0 or "70" is a malformed payload, not a tier
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"level must be an integer, got {value!r}")
        return value


class AnalysisResult(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    options: List[SolutionOption]

    def option_for_level(self, level: int) -> Optional[SolutionOption]:
        for option in self.options:
            if option.level == level:
                return option
        return None


class ChatMessage(WireModel):
    id: str = Field(default_factory=_new_id)
    role: Literal["user", "model"]
    text: str = ""
    timestamp: datetime = Field(default_factory=_utcnow)


class ConversationState(str, Enum):
    IDLE = "idle"
    CONTEXTUALIZED = "contextualized"
    STREAMING = "streaming"


class SessionContext(WireModel):
    """
    Everything one user session holds: the current analysis result, the selected
    option and the chat history. Operations take a SessionContext and return a new
    one; nothing here is shared between sessions.
    """

    session_id: str = Field(default_factory=_new_id)
    # regenerated on reset; snapshots from an older epoch are stale
    epoch: str = Field(default_factory=_new_id)
    file_name: Optional[str] = None
    result: Optional[AnalysisResult] = None
    selected_option: Optional[SolutionOption] = None
    history: List[ChatMessage] = Field(default_factory=list)
    state: ConversationState = ConversationState.IDLE

    def resting_state(self) -> ConversationState:
        if self.selected_option is not None:
            return ConversationState.CONTEXTUALIZED
        return ConversationState.IDLE
