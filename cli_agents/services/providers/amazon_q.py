"""Amazon Q Developer CLI provider."""

from typing import List, Optional

from cli_agents.models.options import ExecuteOptions
from cli_agents.services.providers.base import BaseProvider, CommandSpec


class AmazonQProvider(BaseProvider):
    """
    Drives ``q chat --no-interactive``.

    Text output only; colour escapes are stripped by the text translator.
    """

    name = "amazon-q"
    executable_names = ("q",)
    env_var = "Q_CLI_PATH"
    extra_search_paths = ("~/.local/bin/q", "/Applications/Amazon Q.app/Contents/MacOS/q")
    default_model = "amazon-q"

    def build_command(
        self,
        prompt: str,
        options: ExecuteOptions,
        executable: str,
        session_id: Optional[str] = None
    ) -> CommandSpec:
        cmd: List[str] = [executable, "chat"]
        if options.model:
            cmd.extend(["--model", options.model])
        cmd.append("--no-interactive")

        if options.allow_all or options.full_auto:
            cmd.append("--trust-all-tools")
        elif options.trusted_tools:
            cmd.append("--trust-tools=" + ",".join(options.trusted_tools))

        cmd.extend(options.extra_args)
        cmd.append(prompt)

        return CommandSpec(argv=cmd, output_format=self.resolve_format(options))
