#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Provider Selection Strategies

Exactly one strategy is active per orchestrator. Every strategy receives the
capability-filtered candidates in registration order and resolves ties to the
earliest registered provider.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Any, Callable, Optional

from quiz_lead_processor.metrics import ProviderHealth
from quiz_lead_processor.orchestration.scoring import (
    RequestCharacteristics,
    ScoringPolicy,
    estimate_tokens,
)
from quiz_lead_processor.providers.base import BaseAIProvider

HealthLookup = Callable[[str], ProviderHealth]


class SelectionStrategy(ABC):
    """Chooses one provider among several capable candidates."""

    name = "base"

    @abstractmethod
    def select(
        self,
        candidates: List[str],
        prompt: str,
        options: Dict[str, Any],
        providers: Dict[str, BaseAIProvider],
        health: HealthLookup,
    ) -> str:
        """Return the name of the chosen candidate."""

    def get_stats(self) -> Dict[str, Any]:
        return {"strategy": self.name}


class RoundRobinStrategy(SelectionStrategy):
    """Rotate over the candidates."""

    name = "round_robin"

    def __init__(self):
        self.index = 0
        self.request_counts: Dict[str, int] = {}

    def select(self, candidates, prompt, options, providers, health) -> str:
        provider = candidates[self.index % len(candidates)]
        self.index += 1
        self.request_counts[provider] = self.request_counts.get(provider, 0) + 1
        return provider

    def get_stats(self) -> Dict[str, Any]:
        return {"strategy": self.name, "request_counts": dict(self.request_counts)}


class CostStrategy(SelectionStrategy):
    """Lowest estimated cost (estimated tokens x cost per token) wins."""

    name = "cost"

    def select(self, candidates, prompt, options, providers, health) -> str:
        tokens = estimate_tokens(prompt)
        best = candidates[0]
        lowest = float("inf")
        for name in candidates:
            cost = providers[name].get_cost_per_token() * tokens
            if cost < lowest:
                lowest = cost
                best = name
        return best


class CharacteristicsStrategy(SelectionStrategy):
    """Highest ScoringPolicy score wins."""

    name = "characteristics"

    def __init__(self, policy: Optional[ScoringPolicy] = None):
        self.policy = policy or ScoringPolicy()

    def scores(self, candidates, prompt, options, providers, health) -> Dict[str, float]:
        characteristics = RequestCharacteristics.from_request(prompt, options)
        model = options.get("model")
        cheapest = min(providers[name].get_cost_per_token() for name in candidates)
        results = {}
        for name in candidates:
            provider = providers[name]
            provider_model = model if model in provider.get_available_models() else None
            results[name] = self.policy.score(
                name,
                characteristics,
                cost_per_token=provider.get_cost_per_token(),
                supports_vision=provider.supports_multimodal(provider_model),
                supports_structured=provider.supports_structured_output(provider_model),
                reliability=health(name).reliability,
                cheapest_cost=cheapest,
            )
        return results

    def select(self, candidates, prompt, options, providers, health) -> str:
        scores = self.scores(candidates, prompt, options, providers, health)
        best = candidates[0]
        highest = -1.0
        for name in candidates:
            if scores[name] > highest:
                highest = scores[name]
                best = name
        return best


def create_strategy(name: str, policy: Optional[ScoringPolicy] = None) -> SelectionStrategy:
    """
    Build the strategy configured by AI_SELECTION_STRATEGY.

    Args:
        name: round_robin, cost or characteristics
        policy: Scoring policy for the characteristics strategy

    Returns:
        SelectionStrategy: Strategy instance
    """
    if name == RoundRobinStrategy.name:
        return RoundRobinStrategy()
    if name == CostStrategy.name:
        return CostStrategy()
    if name == CharacteristicsStrategy.name:
        return CharacteristicsStrategy(policy)
    raise ValueError(f"Unknown selection strategy: {name}")
