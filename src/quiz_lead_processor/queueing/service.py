#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Queue Service

Owns the four named queues and picks their backend at startup: Redis when a
broker answers PING, otherwise the in-process queue. Enqueueing never drops
work; when a job cannot be queued the registered handler runs inline.
"""

import asyncio
import logging
import uuid
from typing import Dict, Any, Optional, Tuple

import pytz
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from redis import asyncio as aioredis
from redis.exceptions import RedisError

from quiz_lead_processor.config import AppConfig, config as default_config
from quiz_lead_processor.errors import ErrorKind, QueueError
from quiz_lead_processor.queueing.base import JobHandler, JobQueue
from quiz_lead_processor.queueing.durable import DurableJobQueue
from quiz_lead_processor.queueing.ephemeral import EphemeralJobQueue
from quiz_lead_processor.queueing.models import BackendKind, Job, JobStatus, QueuePolicy, now_ms
from quiz_lead_processor.queueing.policies import (
    AI_PROCESSING_QUEUE,
    ANALYTICS_QUEUE,
    EMAIL_QUEUE,
    EXPORT_LEAD_JOB,
    PROCESS_LEAD_JOB,
    SEND_EMAIL_JOB,
    SHEETS_EXPORT_QUEUE,
    TRACK_EVENT_JOB,
    default_queue_policies,
)
from quiz_lead_processor.utils.logger import get_logger, log_queue_event, log_sensitive

# Configure logger
logger = get_logger(__name__)

# Constants
DEFAULT_CLEAN_GRACE_MS = 3600000


class QueueService:
    """Named job queues with backend selection and a synchronous fallback."""

    def __init__(
        self,
        app_config: Optional[AppConfig] = None,
        policies: Optional[Dict[str, QueuePolicy]] = None,
        redis_client: Optional[aioredis.Redis] = None,
    ):
        """
        Initialize the queue service.

        Args:
            app_config: Configuration, the module default when omitted
            policies: Queue policies by name, the four standard queues when omitted
            redis_client: Pre-built Redis client, created from redis_url when omitted
        """
        self.config = app_config or default_config
        self.policies = dict(policies or default_queue_policies(self.config.queue_concurrency))
        self.redis = redis_client
        self._owns_redis = redis_client is None
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.queues: Dict[str, JobQueue] = {}
        self.handlers: Dict[Tuple[str, str], JobHandler] = {}
        self.backend: Optional[BackendKind] = None
        self.is_initialized = False

    async def initialize(self) -> BackendKind:
        """
        Select the backend and create every queue.

        Returns:
            BackendKind: Backend in use

        Raises:
            QueueError: If QUEUE_BACKEND is redis and the broker is unreachable
        """
        if self.is_initialized:
            return self.backend

        mode = self.config.queue_backend
        durable = False
        if mode in ("auto", "redis"):
            durable = await self._probe_redis()
            if not durable and mode == "redis":
                raise QueueError("Redis broker is unreachable and QUEUE_BACKEND is redis",
                                 kind=ErrorKind.FATAL)

        if durable:
            self.backend = BackendKind.DURABLE
            for name, policy in self.policies.items():
                self.queues[name] = DurableJobQueue(
                    policy,
                    self.redis,
                    key_prefix=self.config.queue_key_prefix,
                    poll_interval=self.config.queue_poll_interval,
                    lease_ms=self.config.queue_lease_ms,
                )
        else:
            self.backend = BackendKind.EPHEMERAL
            self.scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop(), timezone=pytz.utc)
            self.scheduler.start()
            for name, policy in self.policies.items():
                self.queues[name] = EphemeralJobQueue(policy, self.scheduler)

        self.is_initialized = True
        logger.info(f"Queue service initialized with {self.backend.value} backend "
                    f"({', '.join(self.queues)})")
        return self.backend

    async def _probe_redis(self) -> bool:
        log_sensitive(logger, logging.DEBUG, f"Probing Redis at {self.config.redis_url}",
                      url=self.config.redis_url)
        if self.redis is None:
            self.redis = aioredis.from_url(
                self.config.redis_url,
                decode_responses=True,
                socket_connect_timeout=self.config.redis_connect_timeout,
            )
        try:
            await asyncio.wait_for(self.redis.ping(), timeout=self.config.redis_connect_timeout)
            return True
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.warning(f"Redis unavailable, using in-process queues: {e}")
            if self._owns_redis:
                await self.redis.aclose()
                self.redis = None
            return False

    def get_queue(self, queue_name: str) -> JobQueue:
        queue = self.queues.get(queue_name)
        if queue is None:
            raise QueueError(f"Queue {queue_name} not found", kind=ErrorKind.INVALID_REQUEST, queue=queue_name)
        return queue

    async def add_job(
        self,
        queue_name: str,
        job_type: str,
        payload: Dict[str, Any],
        options: Optional[Dict[str, Any]] = None,
    ) -> Job:
        """
        Add a job to a queue.

        When the backend rejects the job, the handler registered for the queue
        and job type runs inline with a transient job instead.

        Args:
            queue_name: Target queue
            job_type: Job type
            payload: Job data
            options: priority (name or number), delay (ms), attempts

        Returns:
            Job: Queued job, or the finished transient job

        Raises:
            QueueError: Unknown queue, or enqueue failed with no handler registered
        """
        queue = self.get_queue(queue_name)
        try:
            return await queue.add(job_type, payload, options)
        except QueueError as e:
            log_queue_event(queue_name, "add_failed", f"Enqueue failed, running {job_type} inline: {e}",
                            level=logging.WARNING, lead_id=(payload or {}).get("leadId"))
            return await self._run_inline(queue_name, job_type, payload, e)

    async def _run_inline(self, queue_name: str, job_type: str, payload: Dict[str, Any], error: QueueError) -> Job:
        handler = self.handlers.get((queue_name, job_type))
        if handler is None:
            raise QueueError(
                f"Cannot add {job_type} to {queue_name} and no handler is registered: {error.message}",
                kind=error.kind,
                queue=queue_name,
            ) from error

        job = Job(
            id=f"inline-{uuid.uuid4().hex[:12]}",
            queue=queue_name,
            type=job_type,
            payload=dict(payload or {}),
            status=JobStatus.ACTIVE,
            max_attempts=1,
            processed_at=now_ms(),
            transient=True,
        )
        try:
            job.return_value = await handler(job)
        except Exception as e:
            job.attempts = 1
            job.status = JobStatus.FAILED
            job.failed_reason = str(e)
            job.finished_at = now_ms()
            raise

        job.attempts = 1
        job.status = JobStatus.COMPLETED
        job.progress = 100
        job.finished_at = now_ms()
        return job

    async def process(
        self,
        queue_name: str,
        job_type: str,
        handler: JobHandler,
        concurrency: Optional[int] = None,
    ) -> None:
        """
        Register the handler of a job type.

        Args:
            queue_name: Queue to consume
            job_type: Job type handled
            handler: Coroutine function receiving the Job
            concurrency: Worker count, the queue policy's when omitted
        """
        queue = self.get_queue(queue_name)
        self.handlers[(queue_name, job_type)] = handler
        await queue.process(job_type, handler, concurrency)
        logger.info(f"Registered {job_type} handler on {queue_name}")

    async def update_progress(self, job: Job, progress: int) -> None:
        if job.transient:
            job.progress = max(0, min(100, int(progress)))
            return
        await self.get_queue(job.queue).update_progress(job, progress)

    async def get_job(self, queue_name: str, job_id: str) -> Optional[Job]:
        return await self.get_queue(queue_name).get_job(job_id)

    async def get_stats(self, queue_name: str) -> Dict[str, Any]:
        """
        Job counts of one queue.

        Returns:
            Dict: name, backend, paused, per-status counts and total
        """
        queue = self.get_queue(queue_name)
        counts = await queue.get_counts()
        return {
            "name": queue_name,
            "backend": queue.backend.value,
            "paused": queue.paused,
            **counts,
            "total": sum(counts.values()),
        }

    async def get_all_stats(self) -> Dict[str, Dict[str, Any]]:
        return {name: await self.get_stats(name) for name in self.queues}

    async def pause(self, queue_name: str) -> None:
        await self.get_queue(queue_name).pause()
        log_queue_event(queue_name, "paused", "Queue paused")

    async def resume(self, queue_name: str) -> None:
        await self.get_queue(queue_name).resume()
        log_queue_event(queue_name, "resumed", "Queue resumed")

    async def clean(
        self,
        queue_name: str,
        grace_ms: int = DEFAULT_CLEAN_GRACE_MS,
        status: str = JobStatus.COMPLETED.value,
    ) -> int:
        """
        Remove old jobs of one status.

        Args:
            queue_name: Queue to clean
            grace_ms: Jobs younger than this are kept
            status: Job status to clean

        Returns:
            int: Number of jobs removed
        """
        removed = await self.get_queue(queue_name).clean(grace_ms, JobStatus(status))
        log_queue_event(queue_name, "cleaned", f"Removed {removed} {status} jobs")
        return removed

    async def close(self) -> None:
        """Stop every queue, the scheduler and the broker connection."""
        for queue in self.queues.values():
            await queue.close()
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        if self.redis is not None and self._owns_redis:
            await self.redis.aclose()
        self.is_initialized = False
        logger.info("Queue service closed")

    async def add_ai_processing_job(self, data: Dict[str, Any], options: Optional[Dict[str, Any]] = None) -> Job:
        options = dict(options or {})
        options.setdefault("priority", data.get("priority"))
        return await self.add_job(AI_PROCESSING_QUEUE, PROCESS_LEAD_JOB, data, options)

    async def add_sheets_export_job(self, data: Dict[str, Any], options: Optional[Dict[str, Any]] = None) -> Job:
        return await self.add_job(SHEETS_EXPORT_QUEUE, EXPORT_LEAD_JOB, data, options)

    async def add_email_job(self, data: Dict[str, Any], options: Optional[Dict[str, Any]] = None) -> Job:
        return await self.add_job(EMAIL_QUEUE, SEND_EMAIL_JOB, data, options)

    async def add_analytics_job(self, data: Dict[str, Any], options: Optional[Dict[str, Any]] = None) -> Optional[Job]:
        """Analytics are best effort; a failure is logged and None returned."""
        try:
            return await self.add_job(ANALYTICS_QUEUE, TRACK_EVENT_JOB, data, options)
        except Exception as e:
            log_queue_event(ANALYTICS_QUEUE, "dropped", f"Analytics job dropped: {e}", level=logging.WARNING,
                            lead_id=data.get("leadId"))
            return None
