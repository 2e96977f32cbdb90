#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Lead Processing Service

Wires the orchestrator, the pipeline and the queue service together. New leads
are submitted as process-lead jobs; the queue runs them through the pipeline,
and the pipeline enqueues email, export and analytics follow-ups.
"""

import os
import time
from typing import Dict, Any, Optional

import psutil

from quiz_lead_processor import __version__
from quiz_lead_processor.config import AppConfig, config as default_config
from quiz_lead_processor.errors import ErrorKind, QueueError
from quiz_lead_processor.orchestration.orchestrator import AIOrchestrator
from quiz_lead_processor.pipeline.collaborators import LeadRepository, PromptRenderer
from quiz_lead_processor.pipeline.processor import CampaignProcessingPipeline
from quiz_lead_processor.queueing.base import JobHandler
from quiz_lead_processor.queueing.models import Job
from quiz_lead_processor.queueing.policies import AI_PROCESSING_QUEUE, ANALYTICS_QUEUE, PROCESS_LEAD_JOB
from quiz_lead_processor.queueing.service import QueueService
from quiz_lead_processor.utils.logger import configure_logging, get_logger, log_queue_event

# Configure logger
logger = get_logger(__name__)


class LeadProcessingService:
    """Entry point of the processing core."""

    def __init__(
        self,
        repository: LeadRepository,
        app_config: Optional[AppConfig] = None,
        orchestrator: Optional[AIOrchestrator] = None,
        queue_service: Optional[QueueService] = None,
        renderer: Optional[PromptRenderer] = None,
        follow_up_handlers: Optional[Dict[str, JobHandler]] = None,
    ):
        """
        Initialize the service.

        Args:
            repository: Lead and campaign persistence
            app_config: Configuration, the module default when omitted
            orchestrator: AI orchestrator, built from the configuration when omitted
            queue_service: Queue service, built from the configuration when omitted
            renderer: Prompt renderer for the pipeline
            follow_up_handlers: Handlers by queue name for email-sending and
                sheets-export jobs; analytics jobs are logged by default
        """
        self.config = app_config or default_config
        configure_logging(self.config.log_level, self.config.log_file_path, self.config.json_logs)

        self.repository = repository
        self.orchestrator = orchestrator or AIOrchestrator(app_config=self.config)
        self.queues = queue_service or QueueService(app_config=self.config)
        self.pipeline = CampaignProcessingPipeline(
            self.orchestrator,
            repository,
            scheduler=self.queues,
            renderer=renderer,
            app_config=self.config,
        )
        self.follow_up_handlers: Dict[str, JobHandler] = {ANALYTICS_QUEUE: self.track_event}
        self.follow_up_handlers.update(follow_up_handlers or {})
        self.start_time: Optional[float] = None
        self.is_initialized = False

    async def initialize(self) -> None:
        """Register providers, select the queue backend and start consuming jobs."""
        if self.is_initialized:
            return

        if not self.orchestrator.is_initialized:
            providers = await self.orchestrator.initialize()
            if not providers:
                logger.warning("No AI providers registered; processing jobs will fail until one is added")

        await self.queues.initialize()
        await self.queues.process(AI_PROCESSING_QUEUE, PROCESS_LEAD_JOB, self.handle_process_lead_job)

        for queue_name, handler in self.follow_up_handlers.items():
            policy = self.queues.policies.get(queue_name)
            if policy is None:
                raise QueueError(f"Queue {queue_name} not found", kind=ErrorKind.INVALID_REQUEST)
            await self.queues.process(queue_name, policy.job_type, handler)

        self.start_time = time.monotonic()
        self.is_initialized = True
        logger.info(f"Lead processing service started (backend: {self.queues.backend.value})")

    async def handle_process_lead_job(self, job: Job) -> Dict[str, Any]:
        """
        Run the pipeline for a process-lead job.

        Queued jobs leave retries to the queue. Jobs run inline after an
        enqueue failure get no retry, since the retry job would run inline
        again at once; the lead is left failed for reprocessing.

        Args:
            job: process-lead job with leadId in its payload

        Returns:
            Dict: Final pipeline result
        """
        lead_id = job.payload.get("leadId")
        if lead_id is None:
            raise QueueError(f"Job {job.id} has no leadId", kind=ErrorKind.INVALID_REQUEST, job_id=job.id)

        previous_retries = int(job.payload.get("retryCount") or 0)
        options = {"ai_provider": job.payload.get("aiProvider"), "retry_count": previous_retries}

        async def report_progress(progress: int) -> None:
            await self.queues.update_progress(job, progress)

        return await self.pipeline.process_lead(
            lead_id,
            options,
            progress_callback=report_progress,
            queue_managed=not job.transient,
            attempt=previous_retries + job.attempts,
            schedule_retry=not job.transient,
        )

    async def track_event(self, job: Job) -> Dict[str, Any]:
        """Default analytics handler: log the event."""
        log_queue_event(
            ANALYTICS_QUEUE, job.payload.get("type", "event"),
            f"quality={job.payload.get('qualityScore')} provider={job.payload.get('provider')} "
            f"time={job.payload.get('processingTime')}",
            job_id=job.id, lead_id=job.payload.get("leadId"),
        )
        return {"tracked": True}

    async def submit_lead(self, lead_id: Any, options: Optional[Dict[str, Any]] = None) -> Job:
        """
        Queue a lead for AI processing.

        Args:
            lead_id: Lead to process
            options: priority (high, normal, low or a number), ai_provider

        Returns:
            Job: Queued job, or the finished inline job if enqueueing failed
        """
        options = options or {}
        payload = {"leadId": lead_id}
        if options.get("ai_provider"):
            payload["aiProvider"] = options["ai_provider"]
        return await self.queues.add_ai_processing_job(payload, {"priority": options.get("priority")})

    async def reprocess_lead(self, lead_id: Any, options: Optional[Dict[str, Any]] = None) -> Job:
        """Reset a lead's processing state and queue it with high priority."""
        await self.repository.update_lead(lead_id, {
            "aiProcessingStatus": "pending",
            "aiProcessingError": None,
            "retryCount": 0,
        })
        options = dict(options or {})
        options.setdefault("priority", "high")
        logger.info(f"Reprocessing lead {lead_id}")
        return await self.submit_lead(lead_id, options)

    async def process_lead_now(self, lead_id: Any, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Run the pipeline directly, outside the queue."""
        return await self.pipeline.process_lead(lead_id, options)

    def _system_status(self) -> Dict[str, Any]:
        process = psutil.Process()
        return {
            "pid": os.getpid(),
            "cpu_percent": process.cpu_percent(interval=None),
            "memory_mb": process.memory_info().rss / (1024 * 1024),
            "threads": process.num_threads(),
            "system_memory_percent": psutil.virtual_memory().percent,
        }

    async def get_status(self) -> Dict[str, Any]:
        """
        Status snapshot of every component.

        Returns:
            Dict: Orchestrator, pipeline, queue and process status
        """
        uptime = time.monotonic() - self.start_time if self.start_time is not None else 0.0
        status = {
            "version": __version__,
            "running": self.is_initialized,
            "uptime_seconds": uptime,
            "orchestrator": self.orchestrator.get_status(),
            "pipeline": self.pipeline.get_status(),
            "queues": await self.queues.get_all_stats() if self.queues.is_initialized else {},
            "queue_backend": self.queues.backend.value if self.queues.backend else None,
        }
        try:
            status["system"] = self._system_status()
        except psutil.Error as e:
            logger.warning(f"Could not read process statistics: {e}")
            status["system"] = {}
        return status

    async def shutdown(self) -> None:
        """Stop dispatching jobs and release provider clients."""
        await self.queues.close()
        await self.orchestrator.close()
        self.is_initialized = False
        logger.info("Lead processing service stopped")
