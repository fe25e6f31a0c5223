"""Token usage, cost and run metadata value objects."""

from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Usage(BaseModel):
    """Token usage reported by a CLI."""

    model_config = ConfigDict(frozen=True)

    input_tokens: int = 0
    cached_input_tokens: int = 0
    output_tokens: int = 0

    @field_validator("input_tokens", "cached_input_tokens", "output_tokens", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> int:
        if value is None:
            return 0
        return max(0, int(value))

    @property
    def total_tokens(self) -> int:
        """Calculate total tokens used."""
        return self.input_tokens + self.output_tokens

    @classmethod
    def empty(cls) -> "Usage":
        return cls()

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Usage":
        """
        Build usage from a CLI usage block.

        Accepts both the Anthropic-style keys (input_tokens, cache_read_input_tokens)
        and the prompt/completion naming some CLIs emit.
        """
        if not data or not isinstance(data, dict):
            return cls()
        return cls(
            input_tokens=data.get("input_tokens", data.get("prompt_tokens", 0)),
            cached_input_tokens=data.get(
                "cached_input_tokens", data.get("cache_read_input_tokens", 0)
            ),
            output_tokens=data.get("output_tokens", data.get("completion_tokens", 0)),
        )

    def add(self, other: "Usage") -> "Usage":
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            cached_input_tokens=self.cached_input_tokens + other.cached_input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )

    def __add__(self, other: "Usage") -> "Usage":
        return self.add(other)


_PER_TOKEN_PLACES = Decimal("0.00000001")


class Cost(BaseModel):
    """Cost breakdown in USD, kept as fixed-precision decimals."""

    model_config = ConfigDict(frozen=True)

    input_cost: Decimal = Decimal("0")
    output_cost: Decimal = Decimal("0")

    @field_validator("input_cost", "output_cost", mode="before")
    @classmethod
    def _to_decimal(cls, value: Any) -> Decimal:
        if value is None:
            return Decimal("0")
        if isinstance(value, float):
            # str() avoids binary float noise in the decimal
            return Decimal(str(value))
        return Decimal(value)

    @property
    def total_cost(self) -> Decimal:
        return self.input_cost + self.output_cost

    @property
    def has_cost(self) -> bool:
        return self.total_cost > 0

    @classmethod
    def empty(cls) -> "Cost":
        return cls()

    @classmethod
    def from_total(cls, total: Any) -> "Cost":
        """Cost for CLIs that only report a total (attributed to output)."""
        return cls(output_cost=total)

    def add(self, other: "Cost") -> "Cost":
        return Cost(
            input_cost=self.input_cost + other.input_cost,
            output_cost=self.output_cost + other.output_cost,
        )

    def __add__(self, other: "Cost") -> "Cost":
        return self.add(other)

    def cost_per_token(self, tokens: int) -> Decimal:
        """Total cost divided by tokens, rounded half-up to 8 places."""
        if tokens <= 0:
            return Decimal("0")
        return (self.total_cost / Decimal(tokens)).quantize(_PER_TOKEN_PLACES, rounding=ROUND_HALF_UP)

    def format_total(self) -> str:
        return f"${self.total_cost:.6f}"


class Metadata(BaseModel):
    """Run metadata: model, timing, usage and cost."""

    model_config = ConfigDict(frozen=True)

    model: str = "unknown"
    duration: float = 0.0
    usage: Usage = Field(default_factory=Usage)
    cost: Cost = Field(default_factory=Cost)
    session_id: Optional[str] = None
    num_turns: int = 0

    @property
    def tokens_per_second(self) -> float:
        if self.duration <= 0:
            return 0.0
        return self.usage.total_tokens / self.duration

    @property
    def cost_per_token(self) -> Decimal:
        return self.cost.cost_per_token(self.usage.total_tokens)
