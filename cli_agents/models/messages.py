"""Typed messages parsed from agent CLI output."""

from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from cli_agents.models.usage import Cost, Usage


class _Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    raw: Dict[str, Any] = Field(default_factory=dict)


class SystemMessage(_Message):
    """Session bookkeeping, e.g. the init message that announces the session id."""

    kind: Literal["system"] = "system"
    subtype: str = "init"
    session_id: Optional[str] = None
    model: Optional[str] = None
    tools: List[str] = Field(default_factory=list)


class AssistantMessage(_Message):
    """Text produced by the agent."""

    kind: Literal["assistant"] = "assistant"
    text: str = ""
    model: Optional[str] = None


class ToolMessage(_Message):
    """A tool invocation or its result."""

    kind: Literal["tool"] = "tool"
    name: Optional[str] = None
    tool_input: Dict[str, Any] = Field(default_factory=dict)
    output: Optional[str] = None
    is_error: bool = False


class ResultMessage(_Message):
    """Terminal message of a session."""

    kind: Literal["result"] = "result"
    subtype: str = "success"
    is_error: bool = False
    duration_ms: int = 0
    duration_api_ms: int = 0
    num_turns: int = 1
    session_id: Optional[str] = None
    total_cost_usd: Optional[Decimal] = None
    usage: Usage = Field(default_factory=Usage)
    result: Optional[str] = None

    @property
    def cost(self) -> Cost:
        if self.total_cost_usd is None:
            return Cost()
        return Cost.from_total(self.total_cost_usd)


ParsedMessage = Annotated[
    Union[SystemMessage, AssistantMessage, ToolMessage, ResultMessage],
    Field(discriminator="kind"),
]
