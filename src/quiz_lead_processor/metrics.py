#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Usage Metrics

Counters shared by the orchestrator and the processing pipeline. Every moving
average is maintained with the incremental mean, so no sample history is kept.
Counters are only mutated from the event loop thread.
"""

from enum import Enum
from dataclasses import dataclass, asdict
from typing import Dict, Any


def incremental_mean(average: float, value: float, count: int) -> float:
    """
    Fold a new sample into a running average.

    Args:
        average: Current average over count - 1 samples
        value: New sample
        count: Number of samples including the new one

    Returns:
        float: Updated average
    """
    if count <= 0:
        return 0.0
    return average + (value - average) / count


class HealthStatus(str, Enum):
    """Health of a provider derived from its success rate."""
    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class UsageCounters:
    """Request counters for one provider, or for the orchestrator as a whole."""
    requests: int = 0
    successes: int = 0
    failures: int = 0
    total_cost: float = 0.0
    average_response_time: float = 0.0

    def record(self, success: bool, response_time_ms: float, cost: float = 0.0) -> None:
        """
        Record one completed request.

        Args:
            success: Whether the request succeeded
            response_time_ms: Wall time of the request in milliseconds
            cost: Cost reported by the provider
        """
        self.requests += 1
        if success:
            self.successes += 1
            self.total_cost += cost
        else:
            self.failures += 1
        self.average_response_time = incremental_mean(
            self.average_response_time, response_time_ms, self.timed_requests
        )

    @property
    def timed_requests(self) -> int:
        """Requests contributing a response time sample."""
        return self.requests

    @property
    def reliability(self) -> float:
        """Success ratio, 1.0 when there is no history."""
        if self.requests == 0:
            return 1.0
        return self.successes / self.requests

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["reliability"] = self.reliability
        return data


@dataclass
class OrchestratorUsage(UsageCounters):
    """Global counters. Cache hits are counted as requests that never reached a provider."""
    cache_hits: int = 0

    def record_cache_hit(self) -> None:
        self.requests += 1
        self.successes += 1
        self.cache_hits += 1

    @property
    def timed_requests(self) -> int:
        # Cache hits carry no response time
        return self.requests - self.cache_hits

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_requests": self.requests,
            "successful_requests": self.successes,
            "failed_requests": self.failures,
            "cache_hits": self.cache_hits,
            "total_cost": self.total_cost,
            "average_response_time": self.average_response_time,
        }


@dataclass
class ProviderHealth:
    """Reliability snapshot of a provider."""
    reliability: float = 1.0
    status: HealthStatus = HealthStatus.UNKNOWN

    @classmethod
    def from_counters(cls, counters: UsageCounters) -> "ProviderHealth":
        if counters.requests == 0:
            return cls(reliability=1.0, status=HealthStatus.UNKNOWN)

        reliability = counters.reliability
        if reliability > 0.95:
            status = HealthStatus.HEALTHY
        elif reliability > 0.8:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.UNHEALTHY
        return cls(reliability=reliability, status=status)

    def to_dict(self) -> Dict[str, Any]:
        return {"reliability": self.reliability, "status": self.status.value}


@dataclass
class StageCounters:
    """Outcome counters for a pipeline stage or for whole pipeline runs."""
    processed: int = 0
    successful: int = 0
    failed: int = 0
    average_time: float = 0.0

    def record(self, success: bool, processing_time_ms: float) -> None:
        self.processed += 1
        if success:
            self.successful += 1
        else:
            self.failed += 1
        self.average_time = incremental_mean(self.average_time, processing_time_ms, self.processed)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
