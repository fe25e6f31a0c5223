"""mini-SWE-agent CLI provider."""

import json
import logging
import tempfile
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from cli_agents.models.messages import AssistantMessage, ParsedMessage, ResultMessage
from cli_agents.models.options import ExecuteOptions
from cli_agents.services.providers.base import BaseProvider, CommandSpec

logger = logging.getLogger(__name__)

# Blank answers for the confirmation / next-task prompts mini asks on exit
_DISMISS_PROMPTS = b"\n\n\n"


class SweAgentProvider(BaseProvider):
    """
    Drives ``mini --task``.

    The run's trajectory is written to a JSON file; when present its
    submission replaces stdout as the output text.
    """

    name = "swe-agent"
    executable_names = ("mini", "mini-swe-agent")
    env_var = "SWE_CLI_PATH"

    def build_command(
        self,
        prompt: str,
        options: ExecuteOptions,
        executable: str,
        session_id: Optional[str] = None
    ) -> CommandSpec:
        artifact = Path(tempfile.gettempdir()) / f"swe-agent-output-{uuid.uuid4().hex}.json"

        cmd: List[str] = [executable]
        if options.model:
            cmd.extend(["--model", options.model])
        cmd.extend(["--task", prompt, "--output", str(artifact)])
        if options.allow_all or options.full_auto:
            cmd.append("--yolo")
        cmd.append("--exit-immediately")
        cmd.extend(options.extra_args)

        return CommandSpec(
            argv=cmd,
            stdin=_DISMISS_PROMPTS,
            output_format=self.resolve_format(options),
            artifact_path=artifact,
        )

    def collect_artifact(self, spec: CommandSpec) -> Optional[Dict[str, Any]]:
        path = spec.artifact_path
        if path is None or not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read trajectory file {path}: {e}")
            return None
        finally:
            path.unlink(missing_ok=True)

    def translate_text(self, stdout: str, spec: CommandSpec) -> List[ParsedMessage]:
        trajectory = self.collect_artifact(spec)
        if trajectory is None:
            return super().translate_text(stdout, spec)

        info = trajectory.get("info") or {}
        summary = trajectory.get("summary") or info.get("submission") or stdout.strip()
        stats = info.get("model_stats") or {}
        exit_status = info.get("exit_status")

        messages: List[ParsedMessage] = []
        if summary:
            messages.append(AssistantMessage(text=summary, raw=trajectory))
        messages.append(ResultMessage(
            subtype=exit_status or "success",
            is_error=exit_status not in (None, "Submitted", "submitted"),
            num_turns=stats.get("api_calls") or 1,
            total_cost_usd=str(stats["instance_cost"]) if "instance_cost" in stats else None,
            result=summary or None,
            raw=trajectory,
        ))
        return messages
