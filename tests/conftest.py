"""Shared fixtures: stub CLI scripts and a minimal provider."""

import os
from typing import Optional

import pytest

from cli_agents.models.options import ExecuteOptions, OutputFormat
from cli_agents.services.providers.base import BaseProvider, CommandSpec

STUB_HEADER = """#!/bin/sh
if [ "$1" = "--version" ]; then
  echo "stub-cli 1.0.0"
  exit 0
fi
"""


class StubProvider(BaseProvider):
    """Passes the prompt as the last argument; used with stub shell scripts."""

    name = "stub"
    executable_names = ("stub-cli",)
    env_var = "STUB_CLI_PATH"
    default_model = "stub-model"
    supported_formats = (OutputFormat.TEXT, OutputFormat.JSON, OutputFormat.STREAM_JSON)
    supports_resume = True

    def build_command(
        self,
        prompt: str,
        options: ExecuteOptions,
        executable: str,
        session_id: Optional[str] = None
    ) -> CommandSpec:
        cmd = [executable]
        if session_id:
            cmd.extend(["--resume", session_id])
        cmd.append(prompt)
        return CommandSpec(argv=cmd, output_format=self.resolve_format(options))


@pytest.fixture
def make_cli(tmp_path):
    """Write an executable shell script that answers --version and runs ``body``."""

    def _make(body: str, name: str = "stub-cli") -> str:
        path = tmp_path / name
        path.write_text(STUB_HEADER + body)
        path.chmod(0o755)
        return str(path)

    return _make


@pytest.fixture
def stub_provider():
    return StubProvider()


def is_running(pid: int) -> bool:
    """True while ``pid`` exists and is not a zombie."""
    if os.path.isdir("/proc"):
        try:
            with open(f"/proc/{pid}/stat") as f:
                # Field 3 is the state; the command name in field 2 may contain spaces
                state = f.read().rsplit(")", 1)[1].split()[0]
        except FileNotFoundError:
            return False
        return state != "Z"
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


@pytest.fixture
def process_alive():
    return is_running
