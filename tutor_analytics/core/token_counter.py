"""
Token counting and usage tracking.

Holds input/output token counts and splits legacy combined counts.
"""

from dataclasses import dataclass

# Typical chat traffic: short student questions, long tutor answers.
LEGACY_INPUT_RATIO = 0.25


@dataclass(frozen=True)
class TokenUsage:
    """Token usage data for cost calculation.

    Contains exact token counts without estimation or model-specific logic.
    """
    input_tokens: int
    output_tokens: int

    def __post_init__(self):
        if self.input_tokens < 0 or self.output_tokens < 0:
            raise ValueError("token counts cannot be negative")

    @property
    def total_tokens(self) -> int:
        """Total tokens used (input + output)."""
        return self.input_tokens + self.output_tokens

    @classmethod
    def from_total(cls, total_tokens: int, input_ratio: float = LEGACY_INPUT_RATIO) -> "TokenUsage":
        """Split a combined token count into input and output shares.

        Legacy events recorded only one count. The input share is truncated
        and the output share takes the remainder, so the split never
        loses or invents tokens.

        Args:
            total_tokens: Combined token count
            input_ratio: Fraction attributed to input tokens

        Returns:
            TokenUsage whose total equals total_tokens
        """
        input_tokens = int(total_tokens * input_ratio)
        return cls(input_tokens=input_tokens, output_tokens=total_tokens - input_tokens)
