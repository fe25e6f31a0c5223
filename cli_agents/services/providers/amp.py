"""Amp CLI provider."""

import logging
from typing import List, Optional

from cli_agents.models.options import ExecuteOptions, OutputFormat
from cli_agents.services.providers.base import BaseProvider, CommandSpec

logger = logging.getLogger(__name__)


class AmpProvider(BaseProvider):
    """
    Drives ``amp -x`` with the prompt on stdin.

    ``--dangerously-allow-all`` must precede ``-x``. ``--stream-json`` emits the
    Claude Code event schema, so the default translators apply.
    """

    name = "amp"
    executable_names = ("amp",)
    env_var = "AMP_CLI_PATH"
    extra_search_paths = ("~/.npm-global/bin/amp", "~/.amp/bin/amp")
    default_model = "amp-default"
    supported_formats = (OutputFormat.TEXT, OutputFormat.STREAM_JSON)

    def build_command(
        self,
        prompt: str,
        options: ExecuteOptions,
        executable: str,
        session_id: Optional[str] = None
    ) -> CommandSpec:
        output_format = self.resolve_format(options)
        if options.model:
            logger.debug(f"Amp has no model flag; ignoring model={options.model}")

        cmd: List[str] = [executable]
        if options.allow_all or options.full_auto:
            cmd.append("--dangerously-allow-all")
        cmd.append("-x")
        if output_format == OutputFormat.STREAM_JSON:
            cmd.append("--stream-json")
        cmd.extend(options.extra_args)

        return CommandSpec(argv=cmd, stdin=prompt.encode("utf-8"), output_format=output_format)
