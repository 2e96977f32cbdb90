#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
In-process Job Queue

Used when no Redis broker is reachable. Jobs live in a dict and are dispatched
immediately as asyncio tasks; delayed jobs and retries are scheduled with an
APScheduler date trigger. Concurrency is not capped and nothing survives a
restart.
"""

import asyncio
import itertools
from datetime import datetime, timedelta
from typing import Dict, List, Any, Optional, Set

import pytz
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from quiz_lead_processor.errors import QueueError
from quiz_lead_processor.queueing.base import JobHandler, JobQueue
from quiz_lead_processor.queueing.models import BackendKind, Job, JobStatus, QueuePolicy, now_ms
from quiz_lead_processor.utils.logger import get_logger, log_queue_event

# Configure logger
logger = get_logger(__name__)


class EphemeralJobQueue(JobQueue):
    """Job queue kept in process memory."""

    backend = BackendKind.EPHEMERAL

    def __init__(self, policy: QueuePolicy, scheduler: AsyncIOScheduler):
        super().__init__(policy)
        self.scheduler = scheduler
        self.jobs: Dict[str, Job] = {}
        self._ids = itertools.count(1)
        self._order: Dict[str, int] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._scheduled: Set[str] = set()

    async def add(self, job_type: str, payload: Dict[str, Any], options: Optional[Dict[str, Any]] = None) -> Job:
        if self.closed:
            raise QueueError(f"Queue {self.name} is closed", queue=self.name)

        seq = next(self._ids)
        job = Job.from_options(str(seq), self.policy, job_type, payload, options)
        self.jobs[job.id] = job
        self._order[job.id] = seq
        log_queue_event(self.name, "added", f"Job {job.id} ({job_type}) added", job_id=job.id,
                        lead_id=job.payload.get("leadId"))

        if job.status == JobStatus.DELAYED:
            self._schedule(job, job.delay)
        else:
            self._dispatch(job)
        return job

    async def process(self, job_type: str, handler: JobHandler, concurrency: Optional[int] = None) -> None:
        self.handlers[job_type] = handler
        self._drain()

    async def get_job(self, job_id: str) -> Optional[Job]:
        return self.jobs.get(str(job_id))

    async def get_counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        for job in self.jobs.values():
            counts[job.status.value] += 1
        return counts

    async def pause(self) -> None:
        self.paused = True

    async def resume(self) -> None:
        self.paused = False
        self._drain()

    async def clean(self, grace_ms: int, status: JobStatus) -> int:
        cutoff = now_ms() - grace_ms
        stale = [
            job.id for job in self.jobs.values()
            if job.status == status and (job.finished_at or job.created_at) <= cutoff
        ]
        for job_id in stale:
            self._forget(job_id)
        return len(stale)

    async def close(self) -> None:
        self.closed = True
        for scheduler_id in list(self._scheduled):
            try:
                self.scheduler.remove_job(scheduler_id)
            except JobLookupError:
                pass
        self._scheduled.clear()

    async def _save(self, job: Job) -> None:
        self.jobs[job.id] = job

    async def _on_completed(self, job: Job) -> None:
        self._trim(JobStatus.COMPLETED, self.policy.retention.remove_on_complete)

    async def _on_failed(self, job: Job) -> None:
        self._trim(JobStatus.FAILED, self.policy.retention.remove_on_fail)

    async def _on_retry(self, job: Job, delay_ms: int) -> None:
        self._schedule(job, delay_ms)

    def _dispatch(self, job: Job) -> None:
        if self.paused or self.closed or job.type not in self.handlers:
            return
        if job.status != JobStatus.WAITING:
            return
        # Claimed before the task starts so a second drain cannot run it twice
        job.status = JobStatus.ACTIVE
        task = asyncio.create_task(self._execute(job))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _drain(self) -> None:
        waiting = [job for job in self.jobs.values() if job.status == JobStatus.WAITING]
        waiting.sort(key=lambda job: (job.priority, self._order.get(job.id, 0)))
        for job in waiting:
            self._dispatch(job)

    def _schedule(self, job: Job, delay_ms: int) -> None:
        job.status = JobStatus.DELAYED
        scheduler_id = f"{self.name}:{job.id}:{job.attempts}"
        run_date = datetime.now(pytz.utc) + timedelta(milliseconds=delay_ms)
        self.scheduler.add_job(
            self._promote,
            trigger="date",
            run_date=run_date,
            args=[job.id, scheduler_id],
            id=scheduler_id,
            replace_existing=True,
            misfire_grace_time=None,
        )
        self._scheduled.add(scheduler_id)

    async def _promote(self, job_id: str, scheduler_id: str) -> None:
        self._scheduled.discard(scheduler_id)
        job = self.jobs.get(job_id)
        if job is None or job.status != JobStatus.DELAYED:
            return
        job.status = JobStatus.WAITING
        log_queue_event(self.name, "promoted", f"Job {job.id} is ready", job_id=job.id)
        self._dispatch(job)

    def _trim(self, status: JobStatus, keep: int) -> None:
        finished: List[Job] = [job for job in self.jobs.values() if job.status == status]
        if len(finished) <= keep:
            return
        finished.sort(key=lambda job: job.finished_at or 0)
        for job in finished[:len(finished) - keep]:
            self._forget(job.id)

    def _forget(self, job_id: str) -> None:
        self.jobs.pop(job_id, None)
        self._order.pop(job_id, None)
