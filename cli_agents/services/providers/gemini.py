"""Gemini CLI provider."""

import logging
from typing import Any, Dict, List, Optional

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
from cli_agents.services.providers.base import BaseProvider, CommandSpec

logger = logging.getLogger(__name__)

MAX_TIMEOUT = 30 * 60


class GeminiProvider(BaseProvider):
    """Drives ``gemini -p``. ``-p`` and the prompt always come last."""

    name = "gemini"
    executable_names = ("gemini",)
    env_var = "GEMINI_CLI_PATH"
    extra_search_paths = ("~/.npm-global/bin/gemini",)
    supported_formats = (OutputFormat.TEXT, OutputFormat.JSON, OutputFormat.STREAM_JSON)

    def validate_options(self, options: ExecuteOptions) -> None:
        if options.timeout > MAX_TIMEOUT:
            raise InvalidArgumentError(f"Gemini timeout must not exceed {MAX_TIMEOUT}s, got {options.timeout:g}s")

    def build_command(
        self,
        prompt: str,
        options: ExecuteOptions,
        executable: str,
        session_id: Optional[str] = None
    ) -> CommandSpec:
        output_format = self.resolve_format(options)

        cmd: List[str] = [executable]
        if options.model:
            cmd.extend(["-m", options.model])
        if options.allow_all or options.full_auto:
            cmd.append("-y")
        if options.include_directories:
            cmd.extend(["--include-directories", ",".join(options.include_directories)])
        if output_format != OutputFormat.TEXT:
            cmd.extend(["-o", output_format.value])

        cmd.extend(options.extra_args)
        cmd.extend(["-p", prompt])

        return CommandSpec(
            argv=cmd,
            env={"GOOGLE_GENAI_USE_VERTEXAI": "false"},
            output_format=output_format,
        )

    def translate_document(self, document: Dict[str, Any]) -> List[ParsedMessage]:
        """Translate the ``{"response", "stats", "error"}`` record of ``-o json``."""
        if "response" not in document and "error" not in document:
            raise ValueError("Expected a gemini response record")

        usage, model = _model_stats(document.get("stats") or {})
        error = document.get("error")
        if error:
            message = error.get("message", "Unknown error") if isinstance(error, dict) else str(error)
            return [ResultMessage(subtype="error", is_error=True, result=message, usage=usage, raw=document)]

        response = document.get("response") or ""
        messages: List[ParsedMessage] = []
        if response:
            messages.append(AssistantMessage(text=response, model=model, raw=document))
        messages.append(ResultMessage(result=response, usage=usage, raw=document))
        return messages

    def translate_event(self, event: Dict[str, Any]) -> List[ParsedMessage]:
        """Translate ``-o stream-json`` events."""
        event_type = event.get("type", "")

        if event_type == "init":
            return [SystemMessage(
                subtype="init",
                session_id=event.get("session_id"),
                model=event.get("model"),
                raw=event,
            )]

        if event_type == "message":
            if event.get("role") != "assistant":
                return []
            content = event.get("content") or ""
            return [AssistantMessage(text=content, raw=event)] if content else []

        if event_type == "tool_use":
            return [ToolMessage(
                name=event.get("tool_name"),
                tool_input=event.get("parameters") or {},
                raw=event,
            )]

        if event_type == "tool_result":
            return [ToolMessage(
                name=event.get("tool_id"),
                output=event.get("output"),
                is_error=event.get("status") == "error",
                raw=event,
            )]

        if event_type == "error":
            logger.warning(f"Gemini reported an error: {event.get('message')}")
            return [SystemMessage(subtype="error", raw=event)]

        if event_type == "result":
            stats = event.get("stats") or {}
            status = event.get("status", "success")
            error = event.get("error") or {}
            return [ResultMessage(
                subtype=status,
                is_error=status != "success",
                duration_ms=stats.get("duration_ms") or 0,
                usage=Usage.from_dict(stats),
                result=error.get("message") if isinstance(error, dict) else None,
                raw=event,
            )]

        logger.debug(f"Skipping gemini event type: {event_type}")
        return []


def _model_stats(stats: Dict[str, Any]):
    """Sum token counts across the per-model stats block."""
    usage = Usage()
    model = None
    for name, model_stats in (stats.get("models") or {}).items():
        model = model or name
        tokens = (model_stats or {}).get("tokens") or {}
        usage = usage + Usage(
            input_tokens=tokens.get("prompt", 0),
            cached_input_tokens=tokens.get("cached", 0),
            output_tokens=tokens.get("candidates", 0),
        )
    return usage, model
