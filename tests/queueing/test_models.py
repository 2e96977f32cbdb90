#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Tests for job models, queue policies and the retry decision.
"""

import pytest

from quiz_lead_processor.errors import ErrorKind, ProviderError
from quiz_lead_processor.queueing.base import should_retry
from quiz_lead_processor.queueing.models import (
    BackoffPolicy,
    BackoffType,
    Job,
    JobStatus,
    QueuePolicy,
    resolve_priority,
)
from quiz_lead_processor.queueing.policies import (
    AI_PROCESSING_QUEUE,
    ANALYTICS_QUEUE,
    EMAIL_QUEUE,
    SHEETS_EXPORT_QUEUE,
    default_queue_policies,
)


class TestBackoffPolicy:
    """Tests for backoff delays."""

    @pytest.mark.parametrize("attempts,expected", [(1, 2000), (2, 4000), (3, 8000), (0, 2000)])
    def test_exponential(self, attempts, expected):
        policy = BackoffPolicy(type=BackoffType.EXPONENTIAL, delay_ms=2000)
        assert policy.delay_for(attempts) == expected

    def test_fixed(self):
        policy = BackoffPolicy(type=BackoffType.FIXED, delay_ms=10000)
        assert policy.delay_for(1) == 10000
        assert policy.delay_for(4) == 10000


class TestPriority:
    """Tests for priority resolution."""

    def test_names_and_numbers(self):
        assert resolve_priority("high", 5) == 1
        assert resolve_priority("NORMAL", 5) == 5
        assert resolve_priority("low", 5) == 10
        assert resolve_priority(2, 5) == 2
        assert resolve_priority("3", 5) == 3

    def test_default_when_missing(self):
        assert resolve_priority(None, 7) == 7

    def test_unknown_name(self):
        with pytest.raises(ValueError):
            resolve_priority("urgent", 5)


class TestJob:
    """Tests for Job construction and serialization."""

    @pytest.fixture
    def policy(self):
        return QueuePolicy(name="work", job_type="do", default_attempts=4, default_priority=6)

    def test_from_options_defaults(self, policy):
        job = Job.from_options("1", policy, "do", {"leadId": 42})

        assert job.queue == "work"
        assert job.status == JobStatus.WAITING
        assert job.max_attempts == 4
        assert job.priority == 6
        assert job.delay == 0
        assert job.attempts == 0

    def test_from_options_overrides(self, policy):
        job = Job.from_options("2", policy, "do", {"leadId": 42},
                               {"priority": "high", "delay": 1500, "attempts": 1})

        assert job.status == JobStatus.DELAYED
        assert job.delay == 1500
        assert job.max_attempts == 1
        assert job.priority == 1

    def test_payload_is_copied(self, policy):
        payload = {"leadId": 42}
        job = Job.from_options("3", policy, "do", payload)
        job.payload["retry"] = True
        assert payload == {"leadId": 42}

    def test_json_round_trip_keeps_history(self, policy):
        job = Job.from_options("4", policy, "do", {"leadId": 42})
        job.attempts = 1
        job.attempt_history.append({"attempt": 1, "error": "boom", "kind": "fatal"})
        job.return_value = {"leadId": 42, "quality": 0.9}

        restored = Job.model_validate_json(job.model_dump_json())

        assert restored == job

    def test_summary(self, policy):
        job = Job.from_options("5", policy, "do", {})
        assert job.to_summary()["status"] == "waiting"
        assert JobStatus.COMPLETED.terminal and not JobStatus.DELAYED.terminal


class TestPolicies:
    """Tests for the standard queue table."""

    def test_standard_queues(self):
        policies = default_queue_policies(concurrency=8)

        assert set(policies) == {AI_PROCESSING_QUEUE, SHEETS_EXPORT_QUEUE, EMAIL_QUEUE, ANALYTICS_QUEUE}
        assert policies[AI_PROCESSING_QUEUE].concurrency == 8
        assert policies[AI_PROCESSING_QUEUE].default_attempts == 3
        assert policies[SHEETS_EXPORT_QUEUE].default_attempts == 5
        assert policies[SHEETS_EXPORT_QUEUE].default_delay_ms == 1000
        assert policies[EMAIL_QUEUE].concurrency == 3
        assert policies[EMAIL_QUEUE].default_delay_ms == 5000
        assert policies[ANALYTICS_QUEUE].backoff.type == BackoffType.FIXED
        assert policies[ANALYTICS_QUEUE].default_priority == 10


class TestShouldRetry:
    """Tests for the retry decision."""

    def _job(self, attempts, max_attempts=3):
        return Job(id="1", queue="work", type="do", attempts=attempts, max_attempts=max_attempts)

    def test_retry_until_attempts_exhausted(self):
        error = ValueError("flaky")
        assert should_retry(self._job(1), error) is True
        assert should_retry(self._job(3), error) is False

    def test_non_retryable_error_fails_fast(self):
        error = ProviderError("bad key", kind=ErrorKind.AUTH)
        assert should_retry(self._job(1), error) is False

    def test_retryable_error(self):
        error = ProviderError("slow down", kind=ErrorKind.RATE_LIMITED)
        assert should_retry(self._job(1), error) is True
