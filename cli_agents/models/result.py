"""Result of one agent CLI invocation."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from cli_agents.models.messages import AssistantMessage, ParsedMessage, ResultMessage
from cli_agents.models.usage import Metadata, Usage


class ResultStatus(str, Enum):
    """Outcome classification of a completed invocation."""

    SUCCESS = "success"
    PARTIAL = "partial"  # exit 0 but no assistant output
    ERROR = "error"
    CANCELLED = "cancelled"


class ExecuteResult(BaseModel):
    """Parsed outcome of one CLI run."""

    model_config = ConfigDict(frozen=True)

    output: str = ""
    activity_log: str = ""
    exit_code: int
    duration: float = 0.0
    model: str = "unknown"
    session_id: Optional[str] = None
    messages: List[ParsedMessage] = Field(default_factory=list)
    metadata: Metadata = Field(default_factory=Metadata)
    status: ResultStatus = ResultStatus.SUCCESS
    logical_failure: bool = False

    @property
    def successful(self) -> bool:
        """Exit code 0, unless the parsed output reported a failure."""
        return self.exit_code == 0 and not self.logical_failure

    @property
    def result_message(self) -> Optional[ResultMessage]:
        for message in reversed(self.messages):
            if isinstance(message, ResultMessage):
                return message
        return None

    @property
    def assistant_messages(self) -> List[AssistantMessage]:
        return [m for m in self.messages if isinstance(m, AssistantMessage)]

    @property
    def usage(self) -> Usage:
        return self.metadata.usage
