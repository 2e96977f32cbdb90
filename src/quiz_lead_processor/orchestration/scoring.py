#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Provider Scoring Policy

Request characteristics and the weights used by the characteristics
selection strategy. Weights are data: the default policy reproduces the
built-in heuristics and any field can be overridden from a JSON file
(AI_SCORING_POLICY_PATH).
"""

import re
import math
from enum import Enum
from dataclasses import dataclass, field, fields
from typing import Dict, Any, Optional


class Complexity(str, Enum):
    """Estimated difficulty of a prompt."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


COMPLEXITY_PATTERNS = (
    (Complexity.HIGH, re.compile(r"analyze|reasoning|complex|sophisticated|detailed|logic|problem", re.IGNORECASE)),
    (Complexity.MEDIUM, re.compile(r"explain|describe|compare|summarize", re.IGNORECASE)),
    (Complexity.LOW, re.compile(r"simple|quick|brief|short|list", re.IGNORECASE)),
)
MEDIUM_LENGTH_THRESHOLD = 500


def estimate_tokens(text: str) -> int:
    """Roughly four characters per token."""
    return math.ceil(len(text) / 4)


def assess_complexity(prompt: str) -> Complexity:
    """
    Classify a prompt by keyword, falling back to its length.

    Args:
        prompt: Prompt text

    Returns:
        Complexity: HIGH, MEDIUM or LOW
    """
    for complexity, pattern in COMPLEXITY_PATTERNS:
        if pattern.search(prompt):
            return complexity
    return Complexity.MEDIUM if len(prompt) > MEDIUM_LENGTH_THRESHOLD else Complexity.LOW


@dataclass
class RequestCharacteristics:
    """What a request needs and what the caller cares about."""
    complexity: Complexity
    length: int
    tokens: int
    requires_vision: bool = False
    requires_structured: bool = False
    speed_priority: bool = False
    quality_priority: bool = False
    cost_priority: bool = False

    @classmethod
    def from_request(cls, prompt: str, options: Dict[str, Any]) -> "RequestCharacteristics":
        return cls(
            complexity=assess_complexity(prompt),
            length=len(prompt),
            tokens=estimate_tokens(prompt),
            requires_vision=bool(options.get("requires_vision")),
            requires_structured=bool(options.get("requires_structured")),
            speed_priority=bool(options.get("speed_priority")),
            quality_priority=bool(options.get("quality_priority")),
            cost_priority=bool(options.get("cost_priority")),
        )


@dataclass
class ScoringPolicy:
    """Weights of the characteristics strategy."""
    base_affinity: Dict[str, float] = field(
        default_factory=lambda: {"openai": 5.0, "claude": 6.0, "gemini": 4.0}
    )
    default_affinity: float = 1.0
    complexity_bonus: Dict[str, Dict[str, float]] = field(
        default_factory=lambda: {
            Complexity.HIGH.value: {"claude": 10.0, "openai": 7.0},
            Complexity.MEDIUM.value: {},
            Complexity.LOW.value: {"gemini": 8.0, "openai": 6.0},
        }
    )
    speed_bonus: Dict[str, float] = field(default_factory=lambda: {"gemini": 10.0, "openai": 7.0})
    quality_bonus: Dict[str, float] = field(default_factory=lambda: {"claude": 10.0, "openai": 8.0})
    # Cheapest candidate gets cost_bonus_max, the others a share proportional to price
    cost_bonus_max: float = 15.0
    vision_bonus: float = 15.0
    structured_bonus: float = 10.0
    apply_reliability: bool = True

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ScoringPolicy":
        """
        Build a policy from a dictionary, keeping defaults for missing fields.

        Args:
            data: Partial policy, typically loaded from JSON

        Returns:
            ScoringPolicy: Policy with overrides applied
        """
        policy = cls()
        if not data:
            return policy

        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown scoring policy fields: {', '.join(sorted(unknown))}")

        for name, value in data.items():
            current = getattr(policy, name)
            if isinstance(current, dict) and isinstance(value, dict):
                merged = dict(current)
                merged.update(value)
                value = merged
            setattr(policy, name, value)
        return policy

    def cost_bonus(self, cost_per_token: float, cheapest_cost: float) -> float:
        if cost_per_token <= cheapest_cost:
            return self.cost_bonus_max
        return self.cost_bonus_max * cheapest_cost / cost_per_token

    def score(
        self,
        name: str,
        characteristics: RequestCharacteristics,
        cost_per_token: float,
        supports_vision: bool,
        supports_structured: bool,
        reliability: float = 1.0,
        cheapest_cost: Optional[float] = None,
    ) -> float:
        """
        Composite score of one provider for a request.

        A provider lacking a required capability scores 0. The cost bonus is
        added after the reliability weighting, so a cost priority still favours
        the cheaper provider when its success rate is lower.

        Args:
            cheapest_cost: Lowest cost per token among the candidates, defaults
                to this provider's own

        Returns:
            float: Score, higher is better
        """
        score = self.base_affinity.get(name, self.default_affinity)
        score += self.complexity_bonus.get(characteristics.complexity.value, {}).get(name, 0.0)

        if characteristics.speed_priority:
            score += self.speed_bonus.get(name, 0.0)

        if characteristics.quality_priority:
            score += self.quality_bonus.get(name, 0.0)

        if characteristics.requires_vision:
            if not supports_vision:
                return 0.0
            score += self.vision_bonus

        if characteristics.requires_structured:
            if not supports_structured:
                return 0.0
            score += self.structured_bonus

        if self.apply_reliability:
            score *= reliability

        if characteristics.cost_priority:
            if cheapest_cost is None:
                cheapest_cost = cost_per_token
            score += self.cost_bonus(cost_per_token, cheapest_cost)

        return score
