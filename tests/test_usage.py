"""Tests for usage, cost and metadata value objects."""

from decimal import Decimal

import pytest

from cli_agents.models.usage import Cost, Metadata, Usage


class TestUsage:
    """Test token usage arithmetic."""

    def test_total_tokens(self):
        """Test that total is input plus output."""
        usage = Usage(input_tokens=120, output_tokens=30)

        assert usage.total_tokens == 150

    def test_negative_counts_clamped(self):
        """Test that negative counts become zero."""
        usage = Usage(input_tokens=-5, output_tokens=10)

        assert usage.input_tokens == 0
        assert usage.total_tokens == 10

    def test_add(self):
        """Test that usages combine field by field."""
        total = Usage(input_tokens=1, output_tokens=2, cached_input_tokens=3) + Usage(input_tokens=10, output_tokens=20)

        assert total.input_tokens == 11
        assert total.output_tokens == 22
        assert total.cached_input_tokens == 3

    def test_from_dict_accepts_both_namings(self):
        """Test Anthropic-style and prompt/completion-style usage blocks."""
        anthropic = Usage.from_dict({"input_tokens": 5, "output_tokens": 7, "cache_read_input_tokens": 2})
        openai_style = Usage.from_dict({"prompt_tokens": 5, "completion_tokens": 7})

        assert anthropic.cached_input_tokens == 2
        assert anthropic.total_tokens == openai_style.total_tokens == 12

    def test_from_empty_dict(self):
        """Test that a missing usage block is empty usage."""
        assert Usage.from_dict(None) == Usage.empty()


class TestCost:
    """Test decimal cost arithmetic."""

    def test_float_input_has_no_binary_noise(self):
        """Test that floats are converted through their string form."""
        cost = Cost(input_cost=0.1, output_cost=0.2)

        assert cost.total_cost == Decimal("0.3")

    def test_add(self):
        """Test that costs add exactly."""
        total = Cost(input_cost="0.01") + Cost(output_cost="0.02")

        assert total.total_cost == Decimal("0.03")
        assert total.has_cost is True

    def test_empty_has_no_cost(self):
        """Test that the zero cost reports has_cost False."""
        assert Cost.empty().has_cost is False

    def test_cost_per_token_rounds_to_eight_places(self):
        """Test half-up rounding of the per-token cost."""
        cost = Cost(output_cost="0.0000001")

        assert cost.cost_per_token(2) == Decimal("0.00000005")
        assert cost.cost_per_token(3) == Decimal("0.00000003")
        assert cost.cost_per_token(0) == Decimal("0")

    def test_format_total(self):
        """Test dollar formatting with six decimals."""
        assert Cost.from_total("0.0123").format_total() == "$0.012300"


class TestMetadata:
    """Test derived run metrics."""

    def test_defaults(self):
        """Test documented defaults for missing fields."""
        metadata = Metadata()

        assert metadata.model == "unknown"
        assert metadata.duration == 0.0
        assert metadata.usage.total_tokens == 0

    def test_tokens_per_second(self):
        """Test throughput derived from duration."""
        metadata = Metadata(duration=2.0, usage=Usage(input_tokens=100, output_tokens=100))

        assert metadata.tokens_per_second == 100.0

    def test_zero_duration_throughput(self):
        """Test that zero duration does not divide by zero."""
        assert Metadata(usage=Usage(output_tokens=5)).tokens_per_second == 0.0

    def test_cost_per_token(self):
        """Test cost per token from usage and cost."""
        metadata = Metadata(usage=Usage(input_tokens=50, output_tokens=50), cost=Cost(output_cost="0.01"))

        assert metadata.cost_per_token == Decimal("0.00010000")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
