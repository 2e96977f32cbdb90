#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Job Queue Base

Shared job lifecycle for both queue backends. A backend stores jobs and decides
when they run; the attempt accounting and backoff decisions live here so both
variants behave identically.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Any, Awaitable, Callable, Optional

from quiz_lead_processor.errors import classify_error
from quiz_lead_processor.queueing.models import BackendKind, Job, JobStatus, QueuePolicy, now_ms
from quiz_lead_processor.utils.logger import get_logger, log_queue_event

# Configure logger
logger = get_logger(__name__)

JobHandler = Callable[[Job], Awaitable[Any]]


def should_retry(job: Job, error: BaseException) -> bool:
    """
    Whether a failed job gets another attempt.

    Errors carrying an explicit retryable flag of False fail immediately.

    Args:
        job: Job whose attempt just failed, attempts already incremented
        error: Exception raised by the handler

    Returns:
        bool: True if the job should be rescheduled
    """
    if job.attempts >= job.max_attempts:
        return False
    return getattr(error, "retryable", True) is not False


class JobQueue(ABC):
    """A named queue of jobs with one backend."""

    backend: BackendKind

    def __init__(self, policy: QueuePolicy):
        self.policy = policy
        self.name = policy.name
        self.handlers: Dict[str, JobHandler] = {}
        self.paused = False
        self.closed = False

    @abstractmethod
    async def add(self, job_type: str, payload: Dict[str, Any], options: Optional[Dict[str, Any]] = None) -> Job:
        """Enqueue a job. Raises QueueError when the backend cannot accept it."""

    @abstractmethod
    async def process(self, job_type: str, handler: JobHandler, concurrency: Optional[int] = None) -> None:
        """Register the handler of a job type and start dispatching."""

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[Job]:
        pass

    @abstractmethod
    async def get_counts(self) -> Dict[str, int]:
        """Job counts per status."""

    @abstractmethod
    async def pause(self) -> None:
        pass

    @abstractmethod
    async def resume(self) -> None:
        pass

    @abstractmethod
    async def clean(self, grace_ms: int, status: JobStatus) -> int:
        """Remove jobs of a status older than grace_ms. Returns the number removed."""

    @abstractmethod
    async def close(self) -> None:
        """Stop dispatching. In-flight jobs are not awaited."""

    @abstractmethod
    async def _save(self, job: Job) -> None:
        pass

    @abstractmethod
    async def _on_completed(self, job: Job) -> None:
        pass

    @abstractmethod
    async def _on_failed(self, job: Job) -> None:
        pass

    @abstractmethod
    async def _on_retry(self, job: Job, delay_ms: int) -> None:
        pass

    async def update_progress(self, job: Job, progress: int) -> None:
        job.progress = max(0, min(100, int(progress)))
        await self._save(job)

    async def _execute(self, job: Job) -> None:
        """
        Run one attempt of a job and record the outcome.

        Args:
            job: Job to run, already removed from the waiting set
        """
        handler = self.handlers.get(job.type)
        if handler is None:
            logger.warning(f"No handler for job type {job.type} on queue {self.name}")
            return

        job.status = JobStatus.ACTIVE
        job.processed_at = now_ms()
        await self._save(job)
        lead_id = job.payload.get("leadId")
        log_queue_event(self.name, "active", f"Job {job.id} attempt {job.attempts + 1}/{job.max_attempts}",
                        level=logging.DEBUG, job_id=job.id, lead_id=lead_id)

        started = now_ms()
        try:
            result = await handler(job)
        except Exception as e:
            job.attempts += 1
            job.attempt_history.append({
                "attempt": job.attempts,
                "started_at": started,
                "finished_at": now_ms(),
                "error": str(e),
                "kind": classify_error(e).value,
            })
            job.failed_reason = str(e)

            if should_retry(job, e):
                delay = self.policy.backoff.delay_for(job.attempts)
                job.status = JobStatus.DELAYED
                job.delay = delay
                log_queue_event(self.name, "retry", f"Job {job.id} failed ({e}), retrying in {delay}ms",
                                level=logging.WARNING, job_id=job.id, lead_id=lead_id)
                await self._on_retry(job, delay)
            else:
                job.status = JobStatus.FAILED
                job.finished_at = now_ms()
                log_queue_event(self.name, "failed", f"Job {job.id} failed after {job.attempts} attempts: {e}",
                                level=logging.ERROR, job_id=job.id, lead_id=lead_id)
                await self._on_failed(job)
            return

        job.attempts += 1
        job.attempt_history.append({
            "attempt": job.attempts,
            "started_at": started,
            "finished_at": now_ms(),
            "error": None,
        })
        job.status = JobStatus.COMPLETED
        job.finished_at = now_ms()
        job.progress = 100
        job.return_value = result
        log_queue_event(self.name, "completed", f"Job {job.id} completed", job_id=job.id, lead_id=lead_id)
        await self._on_completed(job)
