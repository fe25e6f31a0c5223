"""Claude Code CLI provider."""

from typing import List, Optional

from cli_agents.models.mcp import mcp_config_json
from cli_agents.models.options import ExecuteOptions, OutputFormat, SandboxMode
from cli_agents.services.providers.base import BaseProvider, CommandSpec


class ClaudeProvider(BaseProvider):
    """
    Drives ``claude --print``.

    The prompt always follows ``--`` so a prompt starting with a dash is not
    read as a flag. ``--verbose`` is mandatory with ``stream-json``.
    """

    name = "claude"
    executable_names = ("claude",)
    env_var = "CLAUDE_CLI_PATH"
    extra_search_paths = ("~/.claude/local/claude", "~/.npm-global/bin/claude")
    supported_formats = (OutputFormat.TEXT, OutputFormat.JSON, OutputFormat.STREAM_JSON)
    default_format = OutputFormat.JSON
    supports_resume = True

    def build_command(
        self,
        prompt: str,
        options: ExecuteOptions,
        executable: str,
        session_id: Optional[str] = None
    ) -> CommandSpec:
        output_format = self.resolve_format(options)

        cmd: List[str] = [executable, "--print", "--output-format", output_format.value]
        if output_format == OutputFormat.STREAM_JSON:
            cmd.append("--verbose")

        if options.model:
            cmd.extend(["--model", options.model])
        if options.system_prompt:
            cmd.extend(["--append-system-prompt", options.system_prompt])
        if options.allowed_tools:
            cmd.extend(["--allowedTools", ",".join(options.allowed_tools)])
        if options.disallowed_tools:
            cmd.extend(["--disallowedTools", ",".join(options.disallowed_tools)])

        # Exactly one permission flag
        if options.allow_all:
            cmd.append("--dangerously-skip-permissions")
        elif options.sandbox_mode == SandboxMode.READ_ONLY:
            cmd.extend(["--permission-mode", "plan"])
        elif options.full_auto:
            cmd.extend(["--permission-mode", "acceptEdits"])

        if options.mcp_servers:
            cmd.extend(["--mcp-config", mcp_config_json(options.mcp_servers)])
        if session_id:
            cmd.extend(["--resume", session_id])

        cmd.extend(options.extra_args)
        cmd.extend(["--", prompt])

        return CommandSpec(
            argv=cmd,
            env={"CLAUDE_CODE_ENTRYPOINT": "sdk-py"},
            output_format=output_format,
        )
