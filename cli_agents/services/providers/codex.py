"""Codex CLI provider."""

import logging
import re
from typing import Any, Dict, List, Optional

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

_MODEL_LINE = re.compile(r"^\s*model:\s*(\S+)", re.MULTILINE | re.IGNORECASE)


class CodexProvider(BaseProvider):
    """
    Drives ``codex exec``.

    Global flags (``--model``, ``--ask-for-approval``) must precede the ``exec``
    mode selector. The policy is expressed by exactly one of ``--full-auto``,
    ``--dangerously-bypass-approvals-and-sandbox`` or the explicit
    ``--sandbox``/``--ask-for-approval`` pair. In text mode codex writes the final
    message to stdout and its activity trace (model, session id) to stderr.
    """

    name = "codex"
    executable_names = ("codex",)
    env_var = "CODEX_CLI_PATH"
    extra_search_paths = ("~/.npm-global/bin/codex",)
    default_model = "codex-default"
    supported_formats = (OutputFormat.TEXT, OutputFormat.STREAM_JSON)
    supports_resume = True

    def build_command(
        self,
        prompt: str,
        options: ExecuteOptions,
        executable: str,
        session_id: Optional[str] = None
    ) -> CommandSpec:
        output_format = self.resolve_format(options)
        explicit_policy = not options.full_auto and not options.allow_all

        cmd: List[str] = [executable]
        if options.model:
            cmd.extend(["--model", options.model])
        if explicit_policy:
            cmd.extend(["--ask-for-approval", options.approval_policy.value])

        cmd.append("exec")

        if options.allow_all:
            cmd.append("--dangerously-bypass-approvals-and-sandbox")
        elif options.full_auto:
            cmd.append("--full-auto")
        else:
            cmd.extend(["--sandbox", options.sandbox_mode.value])

        if options.working_directory:
            cmd.extend(["-C", str(options.working_directory)])
        if options.skip_git_check:
            cmd.append("--skip-git-repo-check")
        if output_format == OutputFormat.STREAM_JSON:
            cmd.append("--json")
        if options.output_schema:
            cmd.extend(["--output-schema", str(options.output_schema)])

        cmd.extend(options.extra_args)

        if session_id:
            cmd.extend(["resume", session_id])
        cmd.append(prompt)

        return CommandSpec(argv=cmd, output_format=output_format)

    def extract_model(self, activity_log: str) -> Optional[str]:
        match = _MODEL_LINE.search(activity_log or "")
        return match.group(1) if match else None

    def translate_event(self, event: Dict[str, Any]) -> List[ParsedMessage]:
        """Map ``codex exec --json`` events onto the common message types."""
        event_type = event.get("type", "")

        if event_type == "thread.started":
            return [SystemMessage(subtype="init", session_id=event.get("thread_id"), raw=event)]

        if event_type == "item.completed":
            return self._map_item(event.get("item") or {}, event)

        if event_type == "turn.completed":
            return [ResultMessage(usage=Usage.from_dict(event.get("usage")), raw=event)]

        if event_type == "turn.failed":
            error = event.get("error") or {}
            return [ResultMessage(
                subtype="error",
                is_error=True,
                result=error.get("message", "Unknown error"),
                raw=event,
            )]

        if event_type == "error":
            logger.warning(f"Codex reported an error: {event.get('message')}")
            return [SystemMessage(subtype="error", raw=event)]

        # turn.started, item.started, item.updated carry nothing final
        logger.debug(f"Skipping codex event type: {event_type}")
        return []

    def _map_item(self, item: Dict[str, Any], event: Dict[str, Any]) -> List[ParsedMessage]:
        item_type = item.get("type", "")

        if item_type == "agent_message":
            text = item.get("text", "")
            return [AssistantMessage(text=text, raw=event)] if text else []

        if item_type == "reasoning":
            return []

        if item_type == "command_execution":
            exit_code = item.get("exit_code")
            return [ToolMessage(
                name="command_execution",
                tool_input={"command": item.get("command")},
                output=item.get("aggregated_output"),
                is_error=exit_code not in (0, None),
                raw=event,
            )]

        if item_type == "mcp_tool_call":
            return [ToolMessage(
                name=f"{item.get('server')}.{item.get('tool')}",
                tool_input=item.get("arguments") or {},
                is_error=item.get("status") == "failed",
                raw=event,
            )]

        return [ToolMessage(name=item_type or None, tool_input=item, raw=event)]
