#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Unit tests for the usage counters.
"""

import pytest

from quiz_lead_processor.metrics import (
    HealthStatus,
    OrchestratorUsage,
    ProviderHealth,
    StageCounters,
    UsageCounters,
    incremental_mean,
)


def test_incremental_mean_matches_arithmetic_mean():
    samples = [120.0, 80.0, 100.0, 300.0]
    average = 0.0
    for count, value in enumerate(samples, start=1):
        average = incremental_mean(average, value, count)

    assert average == pytest.approx(sum(samples) / len(samples))


def test_incremental_mean_without_samples():
    assert incremental_mean(10.0, 5.0, 0) == 0.0


class TestUsageCounters:
    """Tests for per-provider counters."""

    def test_record_success_and_failure(self):
        counters = UsageCounters()
        counters.record(True, 100.0, cost=0.002)
        counters.record(False, 300.0, cost=0.5)

        assert counters.requests == 2
        assert counters.successes == 1
        assert counters.failures == 1
        # Failed requests add no cost
        assert counters.total_cost == pytest.approx(0.002)
        assert counters.average_response_time == pytest.approx(200.0)
        assert counters.reliability == 0.5

    def test_reliability_without_history(self):
        assert UsageCounters().reliability == 1.0

    def test_to_dict_includes_reliability(self):
        counters = UsageCounters()
        counters.record(True, 10.0)
        assert counters.to_dict()["reliability"] == 1.0


class TestOrchestratorUsage:
    """Tests for global counters."""

    def test_cache_hits_count_as_successful_requests(self):
        usage = OrchestratorUsage()
        usage.record(True, 50.0, cost=0.01)
        usage.record_cache_hit()

        data = usage.to_dict()
        assert data["total_requests"] == 2
        assert data["successful_requests"] == 2
        assert data["cache_hits"] == 1
        assert data["total_cost"] == pytest.approx(0.01)

    def test_cache_hits_leave_average_response_time_alone(self):
        usage = OrchestratorUsage()
        usage.record(True, 100.0)
        usage.record_cache_hit()
        usage.record(True, 300.0)

        assert usage.requests == 3
        assert usage.average_response_time == pytest.approx(200.0)
        assert usage.to_dict()["average_response_time"] == pytest.approx(200.0)


class TestProviderHealth:
    """Tests for the health thresholds."""

    def _counters(self, successes, failures):
        counters = UsageCounters()
        for _ in range(successes):
            counters.record(True, 1.0)
        for _ in range(failures):
            counters.record(False, 1.0)
        return counters

    def test_unknown_without_requests(self):
        health = ProviderHealth.from_counters(UsageCounters())
        assert health.status == HealthStatus.UNKNOWN
        assert health.reliability == 1.0

    @pytest.mark.parametrize("successes,failures,status", [
        (20, 0, HealthStatus.HEALTHY),
        (19, 1, HealthStatus.DEGRADED),
        (9, 1, HealthStatus.DEGRADED),
        (8, 2, HealthStatus.UNHEALTHY),
    ])
    def test_status_thresholds(self, successes, failures, status):
        assert ProviderHealth.from_counters(self._counters(successes, failures)).status == status


def test_stage_counters():
    counters = StageCounters()
    counters.record(True, 10.0)
    counters.record(False, 30.0)

    assert counters.to_dict() == {"processed": 2, "successful": 1, "failed": 1, "average_time": 20.0}
