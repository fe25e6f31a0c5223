"""Execution options shared by every provider."""

from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from cli_agents.config import settings
from cli_agents.exceptions import InvalidArgumentError
from cli_agents.models.mcp import McpServerConfig


class SandboxMode(str, Enum):
    """Filesystem access granted to the agent."""

    READ_ONLY = "read-only"
    WORKSPACE_WRITE = "workspace-write"
    DANGER_FULL_ACCESS = "danger-full-access"


class ApprovalPolicy(str, Enum):
    """When the agent must ask before running a command."""

    UNTRUSTED = "untrusted"
    ON_FAILURE = "on-failure"
    ON_REQUEST = "on-request"
    NEVER = "never"


class OutputFormat(str, Enum):
    """Output framing requested from the CLI."""

    TEXT = "text"
    JSON = "json"
    STREAM_JSON = "stream-json"


FULL_AUTO_SANDBOX = SandboxMode.WORKSPACE_WRITE
FULL_AUTO_APPROVAL = ApprovalPolicy.NEVER


class ExecuteOptions(BaseModel):
    """
    Immutable configuration for one CLI invocation.

    ``full_auto`` bundles ``workspace-write`` with ``never``. Passing an explicit
    sandbox mode or approval policy without ``full_auto`` turns it off; passing
    ``full_auto=True`` together with a different pair is rejected. Use
    :meth:`builder` for last-write-wins semantics across those three fields.
    """

    model_config = ConfigDict(frozen=True)

    model: Optional[str] = None
    timeout: float = Field(default_factory=lambda: settings.default_timeout, gt=0)
    working_directory: Optional[Path] = None

    sandbox_mode: SandboxMode = FULL_AUTO_SANDBOX
    approval_policy: ApprovalPolicy = FULL_AUTO_APPROVAL
    full_auto: bool = True

    allow_all: bool = False
    trusted_tools: List[str] = Field(default_factory=list)
    allowed_tools: List[str] = Field(default_factory=list)
    disallowed_tools: List[str] = Field(default_factory=list)
    system_prompt: Optional[str] = None
    include_directories: List[str] = Field(default_factory=list)

    output_format: Optional[OutputFormat] = None
    output_schema: Optional[Path] = None
    skip_git_check: bool = True

    env: Dict[str, str] = Field(default_factory=dict)
    executable_path: Optional[str] = None
    max_output_bytes: Optional[int] = Field(default=None, gt=0)
    mcp_servers: Dict[str, McpServerConfig] = Field(default_factory=dict)
    extra_args: List[str] = Field(default_factory=list)

    def __init__(self, **data: Any):
        try:
            super().__init__(**data)
        except ValidationError as e:
            raise InvalidArgumentError(f"Invalid execute options: {e}") from e

    @model_validator(mode="before")
    @classmethod
    def _derive_full_auto(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        explicit = data.get("sandbox_mode") is not None or data.get("approval_policy") is not None
        full_auto = data.get("full_auto")
        if full_auto is None:
            if explicit:
                data = {**data, "full_auto": False}
            return data
        if full_auto:
            sandbox = SandboxMode(data.get("sandbox_mode") or FULL_AUTO_SANDBOX)
            approval = ApprovalPolicy(data.get("approval_policy") or FULL_AUTO_APPROVAL)
            if sandbox != FULL_AUTO_SANDBOX or approval != FULL_AUTO_APPROVAL:
                raise ValueError(
                    f"full_auto implies sandbox_mode={FULL_AUTO_SANDBOX.value} and "
                    f"approval_policy={FULL_AUTO_APPROVAL.value}, got {sandbox.value}/{approval.value}"
                )
        return data

    @field_validator("env")
    @classmethod
    def _check_env(cls, value: Dict[str, str]) -> Dict[str, str]:
        for key in value:
            if not key or "=" in key:
                raise ValueError(f"Invalid environment variable name: {key!r}")
        return value

    @field_validator("executable_path", "model", "system_prompt")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value

    @classmethod
    def builder(cls) -> "ExecuteOptionsBuilder":
        return ExecuteOptionsBuilder()


class ExecuteOptionsBuilder:
    """
    Collects option values and derives the sandbox/approval policy at build time.

    The policy setters are recorded in call order and replayed over the defaults,
    so whichever of ``full_auto``, ``sandbox_mode`` or ``approval_policy`` was set
    last wins:

        >>> opts = (ExecuteOptions.builder()
        ...         .sandbox_mode(SandboxMode.READ_ONLY)
        ...         .full_auto(True)
        ...         .build())
        >>> opts.sandbox_mode
        <SandboxMode.WORKSPACE_WRITE: 'workspace-write'>
    """

    def __init__(self):
        self._fields: Dict[str, Any] = {}
        self._policy: List[Tuple[str, Any]] = []

    def model(self, model: Optional[str]) -> "ExecuteOptionsBuilder":
        self._fields["model"] = model
        return self

    def timeout(self, seconds: float) -> "ExecuteOptionsBuilder":
        self._fields["timeout"] = seconds
        return self

    def working_directory(self, path) -> "ExecuteOptionsBuilder":
        self._fields["working_directory"] = path
        return self

    def allow_all(self, enabled: bool = True) -> "ExecuteOptionsBuilder":
        self._fields["allow_all"] = enabled
        return self

    def trusted_tools(self, *tools: str) -> "ExecuteOptionsBuilder":
        self._fields["trusted_tools"] = list(tools)
        return self

    def allowed_tools(self, *tools: str) -> "ExecuteOptionsBuilder":
        self._fields["allowed_tools"] = list(tools)
        return self

    def disallowed_tools(self, *tools: str) -> "ExecuteOptionsBuilder":
        self._fields["disallowed_tools"] = list(tools)
        return self

    def system_prompt(self, prompt: Optional[str]) -> "ExecuteOptionsBuilder":
        self._fields["system_prompt"] = prompt
        return self

    def include_directories(self, *paths: str) -> "ExecuteOptionsBuilder":
        self._fields["include_directories"] = [str(p) for p in paths]
        return self

    def output_format(self, output_format) -> "ExecuteOptionsBuilder":
        self._fields["output_format"] = output_format
        return self

    def output_schema(self, path) -> "ExecuteOptionsBuilder":
        self._fields["output_schema"] = path
        return self

    def skip_git_check(self, enabled: bool = True) -> "ExecuteOptionsBuilder":
        self._fields["skip_git_check"] = enabled
        return self

    def env(self, name: str, value: str) -> "ExecuteOptionsBuilder":
        self._fields.setdefault("env", {})[name] = value
        return self

    def executable_path(self, path: Optional[str]) -> "ExecuteOptionsBuilder":
        self._fields["executable_path"] = path
        return self

    def max_output_bytes(self, limit: int) -> "ExecuteOptionsBuilder":
        self._fields["max_output_bytes"] = limit
        return self

    def mcp_server(self, name: str, config: Any) -> "ExecuteOptionsBuilder":
        self._fields.setdefault("mcp_servers", {})[name] = config
        return self

    def extra_args(self, *args: str) -> "ExecuteOptionsBuilder":
        self._fields["extra_args"] = list(args)
        return self

    def full_auto(self, enabled: bool = True) -> "ExecuteOptionsBuilder":
        self._policy.append(("full_auto", bool(enabled)))
        return self

    def sandbox_mode(self, mode) -> "ExecuteOptionsBuilder":
        self._policy.append(("sandbox_mode", mode))
        return self

    def approval_policy(self, policy) -> "ExecuteOptionsBuilder":
        self._policy.append(("approval_policy", policy))
        return self

    def _resolve_policy(self) -> Tuple[bool, SandboxMode, ApprovalPolicy]:
        full_auto, sandbox, approval = True, FULL_AUTO_SANDBOX, FULL_AUTO_APPROVAL
        try:
            for field, value in self._policy:
                if field == "full_auto":
                    full_auto = value
                    if value:
                        sandbox, approval = FULL_AUTO_SANDBOX, FULL_AUTO_APPROVAL
                elif field == "sandbox_mode":
                    sandbox = SandboxMode(value)
                    full_auto = False
                else:
                    approval = ApprovalPolicy(value)
                    full_auto = False
        except ValueError as e:
            raise InvalidArgumentError(str(e)) from e
        return full_auto, sandbox, approval

    def build(self) -> ExecuteOptions:
        full_auto, sandbox, approval = self._resolve_policy()
        return ExecuteOptions(
            **self._fields,
            full_auto=full_auto,
            sandbox_mode=sandbox,
            approval_policy=approval,
        )
