#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Default queue policies.
"""

from typing import Dict

from quiz_lead_processor.queueing.models import BackoffPolicy, BackoffType, QueuePolicy, RetentionPolicy

# Queue names
AI_PROCESSING_QUEUE = "ai-processing"
SHEETS_EXPORT_QUEUE = "sheets-export"
EMAIL_QUEUE = "email-sending"
ANALYTICS_QUEUE = "analytics"

# Job types
PROCESS_LEAD_JOB = "process-lead"
EXPORT_LEAD_JOB = "export-lead"
SEND_EMAIL_JOB = "send-email"
TRACK_EVENT_JOB = "track-event"


def default_queue_policies(concurrency: int = 5) -> Dict[str, QueuePolicy]:
    """
    Policies of the four standard queues.

    Args:
        concurrency: Worker count for the AI processing and export queues

    Returns:
        Dict: Queue name to policy
    """
    return {
        AI_PROCESSING_QUEUE: QueuePolicy(
            name=AI_PROCESSING_QUEUE,
            job_type=PROCESS_LEAD_JOB,
            concurrency=concurrency,
            default_attempts=3,
            backoff=BackoffPolicy(type=BackoffType.EXPONENTIAL, delay_ms=2000),
            retention=RetentionPolicy(remove_on_complete=50, remove_on_fail=100),
            default_priority=5,
        ),
        SHEETS_EXPORT_QUEUE: QueuePolicy(
            name=SHEETS_EXPORT_QUEUE,
            job_type=EXPORT_LEAD_JOB,
            concurrency=concurrency,
            default_attempts=5,
            backoff=BackoffPolicy(type=BackoffType.EXPONENTIAL, delay_ms=1000),
            retention=RetentionPolicy(remove_on_complete=100, remove_on_fail=50),
            default_priority=5,
            default_delay_ms=1000,
        ),
        EMAIL_QUEUE: QueuePolicy(
            name=EMAIL_QUEUE,
            job_type=SEND_EMAIL_JOB,
            concurrency=3,
            default_attempts=3,
            backoff=BackoffPolicy(type=BackoffType.EXPONENTIAL, delay_ms=5000),
            retention=RetentionPolicy(remove_on_complete=200, remove_on_fail=100),
            default_priority=3,
            default_delay_ms=5000,
        ),
        ANALYTICS_QUEUE: QueuePolicy(
            name=ANALYTICS_QUEUE,
            job_type=TRACK_EVENT_JOB,
            concurrency=2,
            default_attempts=2,
            backoff=BackoffPolicy(type=BackoffType.FIXED, delay_ms=10000),
            retention=RetentionPolicy(remove_on_complete=10, remove_on_fail=25),
            default_priority=10,
        ),
    }


DEFAULT_QUEUE_POLICIES = default_queue_policies()
