#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Job Queue Models

Pydantic models for jobs and per-queue policies. Jobs serialize to JSON so the
Redis backend can store them as-is.
"""

import json
import time
from enum import Enum
from typing import Dict, List, Any, Optional, Union

from pydantic import BaseModel, Field, field_serializer

# Priority names accepted in job options
PRIORITY_NAMES = {
    "high": 1,
    "normal": 5,
    "low": 10,
}


def now_ms() -> float:
    return time.time() * 1000


class JobStatus(str, Enum):
    """Lifecycle state of a job."""
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    DELAYED = "delayed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class BackendKind(str, Enum):
    """Queue backend variant."""
    DURABLE = "durable"
    EPHEMERAL = "ephemeral"


class BackoffType(str, Enum):
    EXPONENTIAL = "exponential"
    FIXED = "fixed"


class BackoffPolicy(BaseModel):
    """Delay applied between attempts."""
    type: BackoffType = BackoffType.EXPONENTIAL
    delay_ms: int = Field(default=1000, ge=0)

    def delay_for(self, attempts_made: int) -> int:
        """
        Delay before the next attempt.

        Args:
            attempts_made: Attempts already made, at least 1

        Returns:
            int: Delay in milliseconds
        """
        if self.type == BackoffType.FIXED:
            return self.delay_ms
        return self.delay_ms * 2 ** (max(attempts_made, 1) - 1)


class RetentionPolicy(BaseModel):
    """How many finished jobs are kept per queue."""
    remove_on_complete: int = Field(default=100, ge=0)
    remove_on_fail: int = Field(default=100, ge=0)


class QueuePolicy(BaseModel):
    """Per-queue defaults."""
    name: str
    job_type: str
    concurrency: int = Field(default=5, ge=1)
    default_attempts: int = Field(default=3, ge=1)
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)
    retention: RetentionPolicy = Field(default_factory=RetentionPolicy)
    default_priority: int = 5
    default_delay_ms: int = Field(default=0, ge=0)


def resolve_priority(value: Union[int, str, None], default: int) -> int:
    """Map a priority name or number to the numeric priority (lower runs first)."""
    if value is None:
        return default
    if isinstance(value, str):
        if value.lower() in PRIORITY_NAMES:
            return PRIORITY_NAMES[value.lower()]
        return int(value)
    return int(value)


class Job(BaseModel):
    """A unit of deferred, retryable work."""
    id: str
    queue: str
    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    status: JobStatus = JobStatus.WAITING
    attempts: int = 0
    max_attempts: int = 3
    priority: int = 5
    delay: int = 0
    progress: int = 0
    created_at: float = Field(default_factory=now_ms)
    processed_at: Optional[float] = None
    finished_at: Optional[float] = None
    failed_reason: Optional[str] = None
    return_value: Any = None
    attempt_history: List[Dict[str, Any]] = Field(default_factory=list)
    # Set on jobs executed synchronously because enqueueing failed
    transient: bool = False

    @field_serializer("payload", "return_value")
    def _serialize_json(self, value: Any) -> Any:
        return json.loads(json.dumps(value, default=str))

    @classmethod
    def from_options(
        cls,
        job_id: str,
        policy: QueuePolicy,
        job_type: str,
        payload: Dict[str, Any],
        options: Optional[Dict[str, Any]] = None,
    ) -> "Job":
        """
        Build a job from caller options and the queue policy defaults.

        Args:
            job_id: Identifier assigned by the backend
            policy: Policy of the target queue
            job_type: Job type
            payload: Job data
            options: priority (name or number), delay (ms), attempts

        Returns:
            Job: New job, waiting or delayed
        """
        options = options or {}
        delay = options.get("delay")
        delay = policy.default_delay_ms if delay is None else int(delay)
        attempts = options.get("attempts") or policy.default_attempts

        return cls(
            id=job_id,
            queue=policy.name,
            type=job_type,
            payload=dict(payload or {}),
            status=JobStatus.DELAYED if delay > 0 else JobStatus.WAITING,
            max_attempts=max(int(attempts), 1),
            priority=resolve_priority(options.get("priority"), policy.default_priority),
            delay=delay,
        )

    def to_summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "queue": self.queue,
            "type": self.type,
            "status": self.status.value,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "progress": self.progress,
            "failed_reason": self.failed_reason,
        }
