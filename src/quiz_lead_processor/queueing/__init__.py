#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Queueing Package

Named job queues with a Redis backend and an in-process fallback.
"""

from quiz_lead_processor.queueing.models import BackendKind, Job, JobStatus, QueuePolicy
from quiz_lead_processor.queueing.policies import DEFAULT_QUEUE_POLICIES
from quiz_lead_processor.queueing.service import QueueService

__all__ = ["BackendKind", "DEFAULT_QUEUE_POLICIES", "Job", "JobStatus", "QueuePolicy", "QueueService"]
