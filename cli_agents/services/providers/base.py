"""Base provider strategy for agent CLI backends."""

import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Pattern, Tuple

from pydantic import BaseModel, ConfigDict, Field

from cli_agents.exceptions import InvalidArgumentError
from cli_agents.models.messages import (
    AssistantMessage,
    ParsedMessage,
    ResultMessage,
    SystemMessage,
    ToolMessage,
)
from cli_agents.models.options import ExecuteOptions, OutputFormat
from cli_agents.models.usage import Usage

logger = logging.getLogger(__name__)

# "session id: 0199b2f0-e92a-76b3-88fa-a0fa925ad545", label in any case
SESSION_ID_PATTERN = re.compile(r"session[ _-]?id:\s*([0-9a-f][0-9a-f-]*)", re.IGNORECASE)

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]|\x1b\][^\x07]*\x07")


def strip_ansi(text: str) -> str:
    """Remove terminal colour and cursor escape sequences."""
    return _ANSI_ESCAPE.sub("", text)


class CommandSpec(BaseModel):
    """Everything the transport needs to spawn one CLI invocation."""

    model_config = ConfigDict(frozen=True)

    argv: List[str]
    stdin: Optional[bytes] = None
    env: Dict[str, str] = Field(default_factory=dict)
    output_format: OutputFormat = OutputFormat.TEXT
    artifact_path: Optional[Path] = None


class BaseProvider(ABC):
    """
    Strategy describing one agent CLI: how to find it, invoke it and read it.

    Subclasses set the class attributes and implement :meth:`build_command`.
    The event and document translators default to the Claude Code schema,
    which Amp also emits.
    """

    name: str = ""
    executable_names: Tuple[str, ...] = ()
    env_var: str = ""
    extra_search_paths: Tuple[str, ...] = ()
    version_args: Tuple[str, ...] = ("--version",)
    default_model: str = "unknown"
    supported_formats: Tuple[OutputFormat, ...] = (OutputFormat.TEXT,)
    default_format: OutputFormat = OutputFormat.TEXT
    supports_resume: bool = False
    session_pattern: Pattern[str] = SESSION_ID_PATTERN

    @abstractmethod
    def build_command(
        self,
        prompt: str,
        options: ExecuteOptions,
        executable: str,
        session_id: Optional[str] = None
    ) -> CommandSpec:
        """
        Map a prompt and options onto this CLI's argument grammar.

        Args:
            prompt: The prompt to send
            options: Validated execution options
            executable: Resolved path of the CLI binary
            session_id: Session to resume, if any

        Returns:
            CommandSpec with argv, optional stdin bytes and env additions
        """
        pass

    def resolve_format(self, options: ExecuteOptions) -> OutputFormat:
        """Return the requested output format, or the provider default."""
        output_format = options.output_format or self.default_format
        if output_format not in self.supported_formats:
            supported = ", ".join(f.value for f in self.supported_formats)
            raise InvalidArgumentError(
                f"{self.name} does not support output format {output_format.value} (supported: {supported})"
            )
        return output_format

    def validate_options(self, options: ExecuteOptions) -> None:
        """Reject options this CLI cannot honour. Default accepts everything."""
        return None

    def check_resume(self, session_id: Optional[str]) -> None:
        if session_id is None:
            return
        if not self.supports_resume:
            raise InvalidArgumentError(f"{self.name} does not support resuming sessions")
        if not session_id.strip():
            raise InvalidArgumentError("Session id must not be empty")

    def extract_session_id(self, text: str) -> Optional[str]:
        if not text:
            return None
        match = self.session_pattern.search(text)
        return match.group(1) if match else None

    def extract_model(self, activity_log: str) -> Optional[str]:
        """Model name announced in the CLI's stderr trace, if it prints one."""
        return None

    def translate_text(self, stdout: str, spec: CommandSpec) -> List[ParsedMessage]:
        """Plain text output becomes a single assistant message."""
        text = strip_ansi(stdout).strip()
        if not text:
            return []
        return [AssistantMessage(text=text)]

    def translate_document(self, document: Dict[str, Any]) -> List[ParsedMessage]:
        """
        Translate a single ``--output-format json`` record.

        Raises:
            ValueError: When the record is not a result record
        """
        if document.get("type") != "result":
            raise ValueError(f"Expected a result record, got type={document.get('type')!r}")
        result = result_from_dict(document)
        messages: List[ParsedMessage] = []
        if result.result and not result.is_error:
            messages.append(AssistantMessage(text=result.result, raw=document))
        messages.append(result)
        return messages

    def translate_event(self, event: Dict[str, Any]) -> List[ParsedMessage]:
        """Translate one ``stream-json`` line into zero or more messages."""
        event_type = event.get("type")

        if event_type == "system":
            return [SystemMessage(
                subtype=event.get("subtype", "init"),
                session_id=event.get("session_id"),
                model=event.get("model"),
                tools=event.get("tools") or [],
                raw=event,
            )]

        if event_type == "assistant":
            message = event.get("message") or {}
            return _content_blocks(message.get("content"), message.get("model"), event)

        if event_type == "user":
            message = event.get("message") or {}
            return [m for m in _content_blocks(message.get("content"), None, event)
                    if isinstance(m, ToolMessage)]

        if event_type == "result":
            return [result_from_dict(event)]

        logger.debug(f"Skipping {self.name} event type: {event_type}")
        return []

    def collect_artifact(self, spec: CommandSpec) -> Optional[Dict[str, Any]]:
        """Read a side-channel output file the CLI wrote, if any."""
        return None

    def cleanup(self, spec: CommandSpec) -> None:
        """Remove the side-channel output file of a finished, failed or abandoned run."""
        if spec.artifact_path is not None:
            spec.artifact_path.unlink(missing_ok=True)


def result_from_dict(data: Dict[str, Any]) -> ResultMessage:
    """Build a ResultMessage, applying defaults for missing fields."""
    return ResultMessage(
        subtype=data.get("subtype") or "success",
        is_error=bool(data.get("is_error", False)),
        duration_ms=data.get("duration_ms") or 0,
        duration_api_ms=data.get("duration_api_ms") or 0,
        num_turns=data.get("num_turns") or 1,
        session_id=data.get("session_id"),
        total_cost_usd=_decimal_or_none(data.get("total_cost_usd")),
        usage=Usage.from_dict(data.get("usage")),
        result=data.get("result"),
        raw=data,
    )


def _decimal_or_none(value: Any) -> Optional[str]:
    # str() keeps float noise out of the Decimal field
    if value is None:
        return None
    return str(value)


def _content_blocks(content: Any, model: Optional[str], raw: Dict[str, Any]) -> List[ParsedMessage]:
    if isinstance(content, str):
        return [AssistantMessage(text=content, model=model, raw=raw)] if content else []

    messages: List[ParsedMessage] = []
    texts: List[str] = []
    for block in content or []:
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")
        if block_type == "text":
            texts.append(block.get("text", ""))
        elif block_type == "tool_use":
            messages.append(ToolMessage(
                name=block.get("name"),
                tool_input=block.get("input") or {},
                raw=raw,
            ))
        elif block_type == "tool_result":
            output = block.get("content")
            if isinstance(output, list):
                output = "".join(part.get("text", "") for part in output if isinstance(part, dict))
            messages.append(ToolMessage(
                name=block.get("tool_use_id"),
                output=output,
                is_error=bool(block.get("is_error", False)),
                raw=raw,
            ))
    if texts:
        messages.insert(0, AssistantMessage(text="".join(texts), model=model, raw=raw))
    return messages
