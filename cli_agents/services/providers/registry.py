"""Lookup of provider strategies by name."""

from typing import Dict, Type

from cli_agents.exceptions import InvalidArgumentError
from cli_agents.services.providers.amazon_q import AmazonQProvider
from cli_agents.services.providers.amp import AmpProvider
from cli_agents.services.providers.base import BaseProvider
from cli_agents.services.providers.claude import ClaudeProvider
from cli_agents.services.providers.codex import CodexProvider
from cli_agents.services.providers.gemini import GeminiProvider
from cli_agents.services.providers.swe_agent import SweAgentProvider

PROVIDERS: Dict[str, Type[BaseProvider]] = {
    provider.name: provider
    for provider in (
        ClaudeProvider,
        CodexProvider,
        GeminiProvider,
        AmpProvider,
        AmazonQProvider,
        SweAgentProvider,
    )
}

_ALIASES = {
    "claude-code": "claude",
    "q": "amazon-q",
    "amazon_q": "amazon-q",
    "swe": "swe-agent",
    "mini": "swe-agent",
}


def get_provider(name: str) -> BaseProvider:
    """Return a fresh provider strategy for ``name`` (aliases accepted)."""
    key = name.strip().lower()
    key = _ALIASES.get(key, key)
    try:
        return PROVIDERS[key]()
    except KeyError:
        available = ", ".join(sorted(PROVIDERS))
        raise InvalidArgumentError(f"Unknown provider '{name}'. Available: {available}") from None
