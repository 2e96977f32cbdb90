#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Redis Job Queue

Durable queue backend on redis.asyncio. Layout per queue, under
``{prefix}:{queue}``:

    :id         job id counter
    :jobs       hash of job id -> job JSON
    :wait       sorted set, score priority then arrival
    :delayed    sorted set, score ready-at epoch ms
    :active     set of running job ids
    :leases     sorted set, score lease expiry epoch ms of running jobs
    :completed  sorted set, score finished-at epoch ms
    :failed     sorted set, score finished-at epoch ms
    :paused     flag key

A fixed pool of worker tasks pulls from the wait set, which caps concurrency.
A running job holds a lease its worker keeps renewing. Jobs whose lease lapsed,
because their process died, go back to the wait set without losing an attempt.
"""

import asyncio
import logging
from typing import Dict, List, Any, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from quiz_lead_processor.errors import QueueError
from quiz_lead_processor.queueing.base import JobHandler, JobQueue
from quiz_lead_processor.queueing.models import BackendKind, Job, JobStatus, QueuePolicy, now_ms
from quiz_lead_processor.utils.logger import get_logger, log_queue_event

# Configure logger
logger = get_logger(__name__)

# Priority dominates the wait score; arrival order breaks ties
PRIORITY_SCALE = 10 ** 12


class DurableJobQueue(JobQueue):
    """Job queue stored in Redis."""

    backend = BackendKind.DURABLE

    def __init__(
        self,
        policy: QueuePolicy,
        redis: Redis,
        key_prefix: str = "quiz",
        poll_interval: float = 0.5,
        lease_ms: int = 30000,
    ):
        super().__init__(policy)
        self.redis = redis
        self.prefix = f"{key_prefix}:{policy.name}"
        self.poll_interval = poll_interval
        self.lease_ms = lease_ms
        self.workers: List[asyncio.Task] = []

    def key(self, name: str) -> str:
        return f"{self.prefix}:{name}"

    async def add(self, job_type: str, payload: Dict[str, Any], options: Optional[Dict[str, Any]] = None) -> Job:
        if self.closed:
            raise QueueError(f"Queue {self.name} is closed", queue=self.name)

        try:
            seq = await self.redis.incr(self.key("id"))
            job = Job.from_options(str(seq), self.policy, job_type, payload, options)
            await self._save(job)
            if job.status == JobStatus.DELAYED:
                await self.redis.zadd(self.key("delayed"), {job.id: now_ms() + job.delay})
            else:
                await self.redis.zadd(self.key("wait"), {job.id: job.priority * PRIORITY_SCALE + seq})
        except RedisError as e:
            raise QueueError(f"Failed to add job to {self.name}: {e}", queue=self.name) from e

        log_queue_event(self.name, "added", f"Job {job.id} ({job_type}) added", job_id=job.id,
                        lead_id=job.payload.get("leadId"))
        return job

    async def process(self, job_type: str, handler: JobHandler, concurrency: Optional[int] = None) -> None:
        self.handlers[job_type] = handler
        try:
            await self.recover_stalled()
        except RedisError as e:
            raise QueueError(f"Failed to recover stalled jobs on {self.name}: {e}", queue=self.name) from e

        wanted = concurrency or self.policy.concurrency
        while len(self.workers) < wanted:
            index = len(self.workers)
            self.workers.append(asyncio.create_task(self._worker(index), name=f"{self.name}-worker-{index}"))

    async def get_job(self, job_id: str) -> Optional[Job]:
        data = await self.redis.hget(self.key("jobs"), str(job_id))
        if data is None:
            return None
        return Job.model_validate_json(data)

    async def get_counts(self) -> Dict[str, int]:
        return {
            JobStatus.WAITING.value: await self.redis.zcard(self.key("wait")),
            JobStatus.ACTIVE.value: await self.redis.scard(self.key("active")),
            JobStatus.COMPLETED.value: await self.redis.zcard(self.key("completed")),
            JobStatus.FAILED.value: await self.redis.zcard(self.key("failed")),
            JobStatus.DELAYED.value: await self.redis.zcard(self.key("delayed")),
        }

    async def pause(self) -> None:
        self.paused = True
        await self.redis.set(self.key("paused"), "1")

    async def resume(self) -> None:
        self.paused = False
        await self.redis.delete(self.key("paused"))

    async def clean(self, grace_ms: int, status: JobStatus) -> int:
        cutoff = now_ms() - grace_ms

        if status in (JobStatus.COMPLETED, JobStatus.FAILED):
            set_key = self.key(status.value)
            job_ids = await self.redis.zrangebyscore(set_key, 0, cutoff)
            if job_ids:
                await self.redis.zrem(set_key, *job_ids)
                await self.redis.hdel(self.key("jobs"), *job_ids)
            return len(job_ids)

        set_key = self.key("wait" if status == JobStatus.WAITING else status.value)
        if status == JobStatus.ACTIVE:
            candidates = list(await self.redis.smembers(set_key))
        else:
            candidates = await self.redis.zrange(set_key, 0, -1)

        removed = 0
        for job_id in candidates:
            job = await self.get_job(job_id)
            if job is not None and job.created_at > cutoff:
                continue
            if status == JobStatus.ACTIVE:
                await self.redis.srem(set_key, job_id)
                await self.redis.zrem(self.key("leases"), job_id)
            else:
                await self.redis.zrem(set_key, job_id)
            await self.redis.hdel(self.key("jobs"), job_id)
            removed += 1
        return removed

    async def close(self) -> None:
        self.closed = True
        for worker in self.workers:
            worker.cancel()
        await asyncio.gather(*self.workers, return_exceptions=True)
        self.workers = []

    async def _save(self, job: Job) -> None:
        await self.redis.hset(self.key("jobs"), job.id, job.model_dump_json())

    async def _on_completed(self, job: Job) -> None:
        await self._save(job)
        await self.redis.srem(self.key("active"), job.id)
        await self.redis.zadd(self.key("completed"), {job.id: job.finished_at})
        await self._trim("completed", self.policy.retention.remove_on_complete)

    async def _on_failed(self, job: Job) -> None:
        await self._save(job)
        await self.redis.srem(self.key("active"), job.id)
        await self.redis.zadd(self.key("failed"), {job.id: job.finished_at})
        await self._trim("failed", self.policy.retention.remove_on_fail)

    async def _on_retry(self, job: Job, delay_ms: int) -> None:
        await self._save(job)
        await self.redis.srem(self.key("active"), job.id)
        await self.redis.zadd(self.key("delayed"), {job.id: now_ms() + delay_ms})

    async def _trim(self, set_name: str, keep: int) -> None:
        set_key = self.key(set_name)
        count = await self.redis.zcard(set_key)
        if count <= keep:
            return
        stale = await self.redis.zrange(set_key, 0, count - keep - 1)
        if stale:
            await self.redis.zrem(set_key, *stale)
            await self.redis.hdel(self.key("jobs"), *stale)

    async def promote_delayed(self) -> int:
        """
        Move delayed jobs whose time has come to the wait set.

        Returns:
            int: Number of jobs promoted by this call
        """
        ready = await self.redis.zrangebyscore(self.key("delayed"), 0, now_ms())
        promoted = 0
        for job_id in ready:
            # Only the worker whose ZREM succeeds moves the job
            if await self.redis.zrem(self.key("delayed"), job_id) != 1:
                continue
            job = await self.get_job(job_id)
            if job is None:
                continue
            job.status = JobStatus.WAITING
            await self._save(job)
            await self.redis.zadd(self.key("wait"), {job.id: job.priority * PRIORITY_SCALE + int(job.id)})
            promoted += 1
        return promoted

    async def recover_stalled(self) -> int:
        """
        Requeue running jobs whose lease has expired.

        A lease only lapses when the worker holding it stopped renewing, so
        the job's attempt never finished and is not counted.

        Returns:
            int: Number of jobs put back on the wait set
        """
        expired = await self.redis.zrangebyscore(self.key("leases"), 0, now_ms())
        recovered = 0
        for job_id in expired:
            if await self.redis.zrem(self.key("leases"), job_id) != 1:
                continue
            if await self._requeue(job_id):
                log_queue_event(self.name, "stalled", f"Job {job_id} lease expired, requeued",
                                level=logging.WARNING, job_id=job_id)
                recovered += 1
        return recovered

    async def _requeue(self, job_id: str) -> bool:
        """Return an unfinished job to the wait set. Jobs already settled are only released."""
        await self.redis.zrem(self.key("leases"), job_id)
        await self.redis.srem(self.key("active"), job_id)
        job = await self.get_job(job_id)
        if job is None or job.status not in (JobStatus.WAITING, JobStatus.ACTIVE):
            return False
        job.status = JobStatus.WAITING
        await self._save(job)
        await self.redis.zadd(self.key("wait"), {job.id: job.priority * PRIORITY_SCALE + int(job.id)})
        return True

    async def _is_paused(self) -> bool:
        return self.paused or bool(await self.redis.exists(self.key("paused")))

    async def _next_job(self) -> Optional[Job]:
        popped = await self.redis.zpopmin(self.key("wait"))
        if not popped:
            return None
        job_id, score = popped[0]
        job = await self.get_job(job_id)
        if job is None:
            return None
        if job.type not in self.handlers:
            await self.redis.zadd(self.key("wait"), {job_id: score})
            return None
        # Lease first, so an active job always has one
        await self.redis.zadd(self.key("leases"), {job_id: now_ms() + self.lease_ms})
        await self.redis.sadd(self.key("active"), job_id)
        return job

    async def _renew_lease(self, job_id: str) -> None:
        while True:
            await asyncio.sleep(self.lease_ms / 2000)
            try:
                await self.redis.zadd(self.key("leases"), {job_id: now_ms() + self.lease_ms}, xx=True)
            except RedisError as e:
                log_queue_event(self.name, "broker_error", f"Lease renewal for job {job_id} failed: {e}",
                                level=logging.WARNING, job_id=job_id)

    async def _run(self, job: Job) -> None:
        renewal = asyncio.create_task(self._renew_lease(job.id))
        try:
            await self._execute(job)
        except asyncio.CancelledError:
            # Interrupted by close(): the attempt did not finish
            await self._requeue(job.id)
            log_queue_event(self.name, "interrupted", f"Job {job.id} interrupted, requeued",
                            level=logging.WARNING, job_id=job.id, lead_id=job.payload.get("leadId"))
            raise
        finally:
            renewal.cancel()
            await asyncio.gather(renewal, return_exceptions=True)
        await self.redis.zrem(self.key("leases"), job.id)

    async def _worker(self, index: int) -> None:
        logger.debug(f"Worker {index} started on {self.name}")
        while not self.closed:
            try:
                await self.promote_delayed()
                await self.recover_stalled()
                job = None if await self._is_paused() else await self._next_job()
                if job is None:
                    await asyncio.sleep(self.poll_interval)
                    continue
                await self._run(job)
            except RedisError as e:
                log_queue_event(self.name, "broker_error", f"Worker {index}: {e}", level=logging.ERROR)
                await asyncio.sleep(self.poll_interval)
