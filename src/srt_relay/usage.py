"""Token usage accounting and cost estimates."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

# USD per 1M tokens: (input, output)
MODEL_PRICING: Dict[str, Tuple[float, float]] = {
    "gpt-4o-mini": (0.15, 0.60),
    "gpt-4o": (2.50, 10.00),
    "gpt-4.1": (2.00, 8.00),
    "gpt-4.1-mini": (0.40, 1.60),
    "gpt-4.1-nano": (0.10, 0.40),
    "gpt-3.5-turbo": (0.50, 1.50),
}


def get_pricing(model: str) -> Optional[Tuple[float, float]]:
    """Look up pricing, matching dated snapshots by their base name."""
    if model in MODEL_PRICING:
        return MODEL_PRICING[model]
    # 例如 gpt-4o-mini-2024-07-18 -> gpt-4o-mini
    for name in sorted(MODEL_PRICING, key=len, reverse=True):
        if model.startswith(name + "-"):
            return MODEL_PRICING[name]
    return None


@dataclass(frozen=True)
class UsageInfo:
    """Snapshot of token usage for display."""
    used_tokens: int
    used_tokens_pricing: float
    wasted_tokens: int
    wasted_tokens_pricing: float
    wasted_percent: str
    cached_tokens: int
    rate: int  # tokens per minute


class UsageTracker:
    """Accumulates token counts reported by the API."""

    def __init__(self, model: str, clock: Callable[[], float] = time.monotonic):
        self.model = model
        self._clock = clock
        self.started_at = clock()

        self.prompt_tokens = 0
        self.completion_tokens = 0
        self.cached_tokens = 0
        self.wasted_prompt_tokens = 0
        self.wasted_completion_tokens = 0

    def add(self, prompt_tokens: int, completion_tokens: int, cached_tokens: int = 0, wasted: bool = False) -> None:
        """Record one completion. ``wasted`` marks output that was thrown away."""
        self.prompt_tokens += prompt_tokens
        self.completion_tokens += completion_tokens
        self.cached_tokens += cached_tokens
        if wasted:
            self.wasted_prompt_tokens += prompt_tokens
            self.wasted_completion_tokens += completion_tokens

    def _price(self, prompt_tokens: int, completion_tokens: int) -> float:
        pricing = get_pricing(self.model)
        if pricing is None:
            return 0.0
        input_price, output_price = pricing
        return round((prompt_tokens * input_price + completion_tokens * output_price) / 1_000_000, 6)

    @property
    def used_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    @property
    def wasted_tokens(self) -> int:
        return self.wasted_prompt_tokens + self.wasted_completion_tokens

    def snapshot(self) -> UsageInfo:
        used = self.used_tokens
        wasted = self.wasted_tokens
        wasted_percent = f"{wasted / used:.0%}" if used else "0%"

        elapsed_minutes = (self._clock() - self.started_at) / 60
        rate = round(used / elapsed_minutes) if elapsed_minutes > 0 else 0

        return UsageInfo(
            used_tokens=used,
            used_tokens_pricing=self._price(self.prompt_tokens, self.completion_tokens),
            wasted_tokens=wasted,
            wasted_tokens_pricing=self._price(self.wasted_prompt_tokens, self.wasted_completion_tokens),
            wasted_percent=wasted_percent,
            cached_tokens=self.cached_tokens,
            rate=rate,
        )
