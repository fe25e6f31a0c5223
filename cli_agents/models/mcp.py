"""MCP server configurations passed through to CLIs that accept them."""

import json
from typing import Annotated, Any, Dict, List, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field


class StdioServerConfig(BaseModel):
    """MCP server launched as a child process speaking over stdio."""

    model_config = ConfigDict(frozen=True)

    type: Literal["stdio"] = "stdio"
    command: str
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)


class SseServerConfig(BaseModel):
    """MCP server reached over server-sent events."""

    model_config = ConfigDict(frozen=True)

    type: Literal["sse"] = "sse"
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)


class HttpServerConfig(BaseModel):
    """MCP server reached over streamable HTTP."""

    model_config = ConfigDict(frozen=True)

    type: Literal["http"] = "http"
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)


class SdkServerConfig(BaseModel):
    """In-process MCP server registered by name with the host SDK."""

    model_config = ConfigDict(frozen=True)

    type: Literal["sdk"] = "sdk"
    name: str


McpServerConfig = Annotated[
    Union[StdioServerConfig, SseServerConfig, HttpServerConfig, SdkServerConfig],
    Field(discriminator="type"),
]


def mcp_config_json(servers: Mapping[str, Any]) -> str:
    """
    Serialize servers to the ``{"mcpServers": {...}}`` document CLIs accept.

    Empty env/args/headers are omitted to keep the command line short.
    """
    payload = {}
    for name, config in servers.items():
        data = config.model_dump()
        payload[name] = {key: value for key, value in data.items() if value not in ({}, [])}
    return json.dumps({"mcpServers": payload}, separators=(",", ":"))
