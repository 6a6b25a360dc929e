"""Cost estimation from agent output.

Sources are tried from most to least trustworthy:

1. ``json-usage``: the agent printed a JSON result with ``total_cost_usd``
   (or ``cost_usd``).
2. ``duration-estimate``: wall-clock minutes x ``fallback_cost_per_minute``.
3. ``minimum-fallback``: nothing usable, cost 0.
"""

import json
from typing import Any, Literal

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from taskgate.agents.engine import AgentResult
from taskgate.core.config import CostConfig

COST_KEYS = ("total_cost_usd", "cost_usd")


class CostEstimate(BaseModel):
    """Estimated spend for one agent run."""

    model_config = ConfigDict(frozen=True)

    cost: float = Field(..., ge=0)
    source: Literal["json-usage", "duration-estimate", "minimum-fallback"]
    confidence: Literal["high", "medium", "low", "none"]


def _cost_from_payload(payload: Any) -> float | None:
    if not isinstance(payload, dict):
        return None
    for key in COST_KEYS:
        value = payload.get(key)
        if isinstance(value, int | float) and not isinstance(value, bool) and value >= 0:
            return float(value)
    return None


def parse_usage_cost(stdout: str) -> float | None:
    """
    Find a reported cost in agent stdout.

    The whole output is tried as JSON first, then each line from the end
    (stream-json output puts the result object last).
    """
    text = stdout.strip()
    if not text:
        return None

    try:
        cost = _cost_from_payload(json.loads(text))
        if cost is not None:
            return cost
    except json.JSONDecodeError:
        pass

    for line in reversed(text.splitlines()):
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            cost = _cost_from_payload(json.loads(line))
        except json.JSONDecodeError:
            continue
        if cost is not None:
            return cost
    return None


def estimate_cost(result: AgentResult, config: CostConfig | None = None) -> CostEstimate:
    """
    Estimate the cost of an agent run.

    Args:
        result: Completed agent run.
        config: Cost config (for ``fallback_cost_per_minute``).

    Returns:
        CostEstimate with its source and confidence.
    """
    config = config or CostConfig()

    usage_cost = parse_usage_cost(result.stdout)
    if usage_cost is not None:
        return CostEstimate(cost=usage_cost, source="json-usage", confidence="high")

    if result.duration_ms > 0 and config.fallback_cost_per_minute > 0:
        minutes = result.duration_ms / 60_000
        cost = minutes * config.fallback_cost_per_minute
        logger.debug(f"No usage data in agent output, estimating ${cost:.2f} from {minutes:.1f} min")
        return CostEstimate(cost=cost, source="duration-estimate", confidence="low")

    logger.warning("No usage data or duration available, recording zero cost")
    return CostEstimate(cost=0.0, source="minimum-fallback", confidence="none")
