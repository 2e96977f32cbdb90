#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Campaign Processing Pipeline

Drives one lead through the processing stages:

    INITIALIZATION -> ANALYSIS -> RESPONSE_GENERATION -> EMAIL_GENERATION
    -> VALIDATION -> FINALIZATION

Analysis and response generation are critical: a failure aborts the run and is
raised to the caller. Email generation and validation degrade to fallback
content and warnings. Initialization and finalization failures abort as well.
"""

import inspect
import logging
import time
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Dict, Any, Awaitable, Callable, Optional, Union

from quiz_lead_processor.config import AppConfig, config as default_config
from quiz_lead_processor.errors import (
    ErrorKind,
    PersistenceError,
    PipelineStageError,
    classify_error,
)
from quiz_lead_processor.metrics import StageCounters
from quiz_lead_processor.orchestration.orchestrator import AIOrchestrator
from quiz_lead_processor.pipeline.collaborators import JobScheduler, LeadRepository, PromptRenderer
from quiz_lead_processor.pipeline.context import (
    CRITICAL_STAGES,
    STAGE_ORDER,
    ProcessingContext,
    ProcessingStage,
    StageResult,
    stage_progress,
)
from quiz_lead_processor.pipeline.prompts import PromptTemplateEngine
from quiz_lead_processor.pipeline import validation
from quiz_lead_processor.providers.base import AIResponse
from quiz_lead_processor.queueing.policies import (
    AI_PROCESSING_QUEUE,
    ANALYTICS_QUEUE,
    EMAIL_QUEUE,
    EXPORT_LEAD_JOB,
    PROCESS_LEAD_JOB,
    SEND_EMAIL_JOB,
    SHEETS_EXPORT_QUEUE,
    TRACK_EVENT_JOB,
)
from quiz_lead_processor.utils.logger import get_logger, log_pipeline_event
from quiz_lead_processor.utils.timeout import run_with_timeout

# Configure logger
logger = get_logger(__name__)

# Stages whose failure is recorded as a warning instead of aborting the run
RECOVERABLE_STAGES = frozenset({ProcessingStage.EMAIL_GENERATION, ProcessingStage.VALIDATION})

# Generation settings per stage: (max_tokens, temperature)
ANALYSIS_STRUCTURED_SETTINGS = (2000, 0.3)
ANALYSIS_TEXT_SETTINGS = (2000, 0.7)
RESPONSE_SETTINGS = (1500, 0.7)
EMAIL_SETTINGS = (1000, 0.6)

ProgressCallback = Callable[[int], Union[None, Awaitable[None]]]
StageHandler = Callable[[ProcessingContext], Awaitable[StageResult]]


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _campaign_ref(lead: Dict[str, Any]) -> Any:
    campaign = lead.get("campaign")
    if isinstance(campaign, dict):
        return campaign.get("id")
    if campaign is not None:
        return campaign
    return lead.get("campaignId")


class CampaignProcessingPipeline:
    """Multi-stage lead processing."""

    def __init__(
        self,
        orchestrator: AIOrchestrator,
        repository: LeadRepository,
        scheduler: Optional[JobScheduler] = None,
        renderer: Optional[PromptRenderer] = None,
        app_config: Optional[AppConfig] = None,
    ):
        """
        Initialize the pipeline.

        Args:
            orchestrator: AI orchestrator used by the generation stages
            repository: Lead and campaign persistence
            scheduler: Enqueues follow-up and retry jobs; follow-ups are skipped when omitted
            renderer: Prompt renderer, the default template engine when omitted
            app_config: Configuration, the module default when omitted
        """
        self.orchestrator = orchestrator
        self.repository = repository
        self.scheduler = scheduler
        self.renderer = renderer or PromptTemplateEngine()
        self.config = app_config or default_config

        self.metrics = StageCounters()
        self.stage_metrics: Dict[ProcessingStage, StageCounters] = {
            stage: StageCounters() for stage in STAGE_ORDER
        }
        self.active: Dict[str, ProcessingContext] = {}

        self.stage_handlers: Dict[ProcessingStage, StageHandler] = {
            ProcessingStage.INITIALIZATION: self._initialize,
            ProcessingStage.ANALYSIS: self._analyze,
            ProcessingStage.RESPONSE_GENERATION: self._generate_response,
            ProcessingStage.EMAIL_GENERATION: self._generate_email,
            ProcessingStage.VALIDATION: self._validate,
            ProcessingStage.FINALIZATION: self._finalize,
        }

    async def process_lead(
        self,
        lead_id: Any,
        options: Optional[Dict[str, Any]] = None,
        progress_callback: Optional[ProgressCallback] = None,
        queue_managed: bool = False,
        attempt: int = 0,
        schedule_retry: bool = True,
    ) -> Dict[str, Any]:
        """
        Run every stage for one lead.

        Args:
            lead_id: Lead to process
            options: ai_provider (preferred provider) and retry_count for
                runs outside the queue
            progress_callback: Receives the progress percentage before each stage
            queue_managed: True when the job queue owns retries of this run
            attempt: Attempts already made by the queue for this lead
            schedule_retry: False when a retry job cannot be queued, as in
                runs made inline because the queue rejected the job

        Returns:
            Dict: Final result record

        Raises:
            Exception: The error that aborted the run, after the failure is persisted
        """
        context = ProcessingContext(
            id=f"{lead_id}-{int(time.time() * 1000)}",
            lead_id=lead_id,
            options=dict(options or {}),
        )
        self.active[context.id] = context
        log_pipeline_event("pipeline", "start", f"Processing started ({context.id})", lead_id=lead_id)

        try:
            for stage in STAGE_ORDER:
                await self._run_stage(context, stage, progress_callback)
        except Exception as e:
            context.current_stage = ProcessingStage.FAILED
            self.metrics.record(False, context.elapsed_ms())
            await self.handle_processing_error(context, e, queue_managed=queue_managed, attempt=attempt,
                                              schedule_retry=schedule_retry)
            raise
        finally:
            self.active.pop(context.id, None)

        context.current_stage = ProcessingStage.COMPLETED
        self.metrics.record(True, context.elapsed_ms())
        log_pipeline_event(
            "pipeline", "complete",
            f"Processing completed in {context.elapsed_ms():.0f}ms with {len(context.warnings)} warnings",
            lead_id=lead_id,
        )
        return context.result_of(ProcessingStage.FINALIZATION)

    async def _run_stage(
        self,
        context: ProcessingContext,
        stage: ProcessingStage,
        progress_callback: Optional[ProgressCallback],
    ) -> None:
        context.enter_stage(stage)
        progress = stage_progress(stage)

        if progress_callback is not None:
            outcome = progress_callback(progress)
            if inspect.isawaitable(outcome):
                await outcome

        if stage != ProcessingStage.INITIALIZATION:
            await self.repository.update_lead(context.lead_id, {
                "aiProcessingStatus": "processing",
                "processingMetadata": {
                    "processingId": context.id,
                    "currentStage": stage.value,
                    "progress": progress,
                },
            })

        log_pipeline_event(stage.value, "start", f"Stage started ({progress}%)", logging.DEBUG,
                           lead_id=context.lead_id)
        start_time = time.monotonic()
        try:
            result = await self.stage_handlers[stage](context)
        except Exception as e:
            elapsed_ms = (time.monotonic() - start_time) * 1000
            self.stage_metrics[stage].record(False, elapsed_ms)
            context.add_error(stage, e)

            if stage in RECOVERABLE_STAGES:
                log_pipeline_event(stage.value, "error", f"Stage failed, continuing: {e}", logging.WARNING,
                                   lead_id=context.lead_id, provider=context.ai_provider)
                context.add_warning(stage, f"{stage.value} failed: {e}")
                context.record(stage, StageResult(processing_time_ms=elapsed_ms, fallback=True))
                return

            log_pipeline_event(stage.value, "error", f"Stage failed: {e}", logging.ERROR,
                               lead_id=context.lead_id, provider=context.ai_provider)
            if isinstance(e, (PipelineStageError, PersistenceError)):
                raise
            raise PipelineStageError(
                f"{stage.value} stage failed: {e}",
                stage=stage.value,
                critical=stage in CRITICAL_STAGES,
                kind=classify_error(e),
            ) from e

        elapsed_ms = (time.monotonic() - start_time) * 1000
        result.processing_time_ms = result.processing_time_ms or elapsed_ms
        self.stage_metrics[stage].record(not result.fallback, elapsed_ms)
        context.record(stage, result)
        log_pipeline_event(stage.value, "complete", f"Stage completed in {elapsed_ms:.0f}ms", logging.DEBUG,
                           lead_id=context.lead_id, provider=result.provider)

    # Stages

    async def _initialize(self, context: ProcessingContext) -> StageResult:
        stage = ProcessingStage.INITIALIZATION.value
        lead = await self.repository.get_lead(context.lead_id)
        if not lead:
            raise PipelineStageError(f"Lead {context.lead_id} not found", stage=stage, kind=ErrorKind.FATAL)

        campaign_id = _campaign_ref(lead)
        campaign = await self.repository.get_campaign(campaign_id) if campaign_id is not None else None
        if not campaign:
            raise PipelineStageError(
                f"Campaign not found for lead {context.lead_id}", stage=stage, kind=ErrorKind.FATAL
            )

        context.lead = lead
        context.campaign = campaign

        await self.repository.update_lead(context.lead_id, {
            "aiProcessingStatus": "processing",
            "processingMetadata": {
                "processingId": context.id,
                "currentStage": stage,
                "startedAt": _utc_now(),
                "progress": 0,
            },
        })

        return StageResult(result={
            "leadId": context.lead_id,
            "campaignId": campaign.get("id"),
            "campaignType": campaign.get("campaignType"),
        })

    def _ai_options(self, context: ProcessingContext, stage: ProcessingStage, settings) -> Dict[str, Any]:
        max_tokens, temperature = settings
        options = {
            "max_tokens": max_tokens,
            "temperature": temperature,
            "stage": stage.value,
            "lead_id": context.lead_id,
        }
        if context.ai_provider:
            options["provider"] = context.ai_provider
        return options

    async def _call(self, awaitable: Awaitable[AIResponse], stage: ProcessingStage) -> AIResponse:
        return await run_with_timeout(awaitable, self.config.ai_processing_timeout_seconds, f"{stage.value} stage")

    @staticmethod
    def _from_response(response: AIResponse, result: Dict[str, Any]) -> StageResult:
        return StageResult(
            result=result,
            provider=response.provider,
            model=response.model,
            usage=asdict(response.usage),
        )

    async def _analyze(self, context: ProcessingContext) -> StageResult:
        stage = ProcessingStage.ANALYSIS
        campaign = context.campaign
        prompt = self.renderer.render("analysis", context.lead, campaign, {"options": context.options})

        structured = validation.requires_structured_output(campaign)
        if structured:
            options = self._ai_options(context, stage, ANALYSIS_STRUCTURED_SETTINGS)
            response = await self._call(
                self.orchestrator.generate_structured(prompt, validation.analysis_schema(campaign), options), stage
            )
        else:
            options = self._ai_options(context, stage, ANALYSIS_TEXT_SETTINGS)
            response = await self._call(self.orchestrator.generate_text(prompt, options), stage)

        return self._from_response(response, {
            "prompt": prompt,
            "raw": response.content,
            "parsed": validation.parse_analysis(response.content),
            "structured": structured,
        })

    async def _generate_response(self, context: ProcessingContext) -> StageResult:
        stage = ProcessingStage.RESPONSE_GENERATION
        analysis = context.result_of(ProcessingStage.ANALYSIS)
        if not analysis:
            raise PipelineStageError("Analysis stage result not available", stage=stage.value)

        prompt = self.renderer.render(
            "response", context.lead, context.campaign,
            {"analysis": analysis["parsed"], "options": context.options},
        )
        response = await self._call(
            self.orchestrator.generate_text(prompt, self._ai_options(context, stage, RESPONSE_SETTINGS)), stage
        )
        content = response.content if isinstance(response.content, str) else str(response.content)

        return self._from_response(response, {
            "prompt": prompt,
            "formatted": validation.format_response(content, context.lead, context.campaign),
        })

    async def _generate_email(self, context: ProcessingContext) -> StageResult:
        stage = ProcessingStage.EMAIL_GENERATION
        try:
            analysis = context.result_of(ProcessingStage.ANALYSIS) or {}
            response_result = context.result_of(ProcessingStage.RESPONSE_GENERATION) or {}
            prompt = self.renderer.render(
                "email", context.lead, context.campaign,
                {
                    "analysis": analysis.get("parsed"),
                    "response": response_result.get("formatted"),
                    "options": context.options,
                },
            )
            response = await self._call(
                self.orchestrator.generate_text(prompt, self._ai_options(context, stage, EMAIL_SETTINGS)), stage
            )
            email = validation.parse_email(str(response.content))
            return self._from_response(response, {"email": email})
        except Exception as e:
            log_pipeline_event(stage.value, "fallback", f"Email generation failed, using fallback email: {e}",
                               logging.WARNING, lead_id=context.lead_id, provider=context.ai_provider)
            context.add_error(stage, e)
            context.add_warning(stage, f"Email generation failed, fallback email used: {e}")
            return StageResult(
                result={"email": validation.fallback_email(context.lead, context.campaign)},
                fallback=True,
            )

    async def _validate(self, context: ProcessingContext) -> StageResult:
        analysis = context.result_of(ProcessingStage.ANALYSIS) or {}
        response_result = context.stage_results.get(ProcessingStage.RESPONSE_GENERATION)
        email = (context.result_of(ProcessingStage.EMAIL_GENERATION) or {}).get("email")

        total_tokens = response_result.usage.get("total_tokens", 0) if response_result else 0
        formatted = (response_result.result or {}).get("formatted") if response_result else None

        analysis_score = validation.score_analysis(analysis.get("parsed"))
        response_score = validation.score_response(formatted, total_tokens)
        email_score = validation.score_email(email)
        overall = validation.overall_quality(analysis_score, response_score, email_score)
        threshold = self.config.quality_warning_threshold

        if overall < threshold:
            context.add_warning(ProcessingStage.VALIDATION, f"Low quality score: {overall}")
            log_pipeline_event(ProcessingStage.VALIDATION.value, "low_quality", f"Quality score {overall}",
                               logging.WARNING, lead_id=context.lead_id)

        return StageResult(result={
            "analysisScore": analysis_score,
            "responseScore": response_score,
            "emailScore": email_score,
            "overallQuality": overall,
            "valid": overall >= threshold,
        })

    async def _finalize(self, context: ProcessingContext) -> StageResult:
        analysis_result = context.stage_results[ProcessingStage.ANALYSIS]
        response_result = context.stage_results[ProcessingStage.RESPONSE_GENERATION]
        email_result = context.stage_results.get(ProcessingStage.EMAIL_GENERATION) or StageResult()
        quality = (context.result_of(ProcessingStage.VALIDATION) or {}).get("overallQuality")

        email = (email_result.result or {}).get("email") or validation.fallback_email(context.lead, context.campaign)
        content = response_result.result["formatted"]
        processing_time = context.elapsed_ms()
        processed_at = _utc_now()

        def metadata(stage_result: StageResult) -> Dict[str, Any]:
            return {
                "provider": stage_result.provider,
                "model": stage_result.model,
                "usage": dict(stage_result.usage),
                "processingTime": stage_result.processing_time_ms,
                "fallback": stage_result.fallback,
            }

        result = {
            "leadId": context.lead_id,
            "processingId": context.id,
            "campaignId": context.campaign_id,
            "campaignType": context.campaign.get("campaignType"),
            "analysis": analysis_result.result["parsed"],
            "analysisMetadata": metadata(analysis_result),
            "content": content,
            "contentMetadata": metadata(response_result),
            "email": email,
            "emailMetadata": metadata(email_result),
            "validation": context.result_of(ProcessingStage.VALIDATION),
            "processedAt": processed_at,
            "processingTime": processing_time,
            "stageMetrics": {
                stage.value: stage_result.processing_time_ms
                for stage, stage_result in context.stage_results.items()
            },
            "errors": list(context.errors),
            "warnings": list(context.warnings),
        }

        await self.repository.update_lead(context.lead_id, {
            "aiProcessingStatus": "completed",
            "aiResult": content,
            "aiAnalysis": result["analysis"],
            "aiEmailContent": email.get("body"),
            "aiProcessedAt": processed_at,
            "aiProvider": analysis_result.provider,
            "aiModel": analysis_result.model,
            "processingMetadata": {
                "processingId": context.id,
                "totalTime": processing_time,
                "qualityScore": quality,
                "stageCount": len(context.stage_results) + 1,
                "warnings": len(context.warnings),
            },
        })

        await self.queue_follow_ups(context, result)
        result["warnings"] = list(context.warnings)
        return StageResult(result=result)

    async def queue_follow_ups(self, context: ProcessingContext, result: Dict[str, Any]) -> None:
        """
        Enqueue the email, export and analytics jobs of a finished lead.

        Each enqueue failure is logged and recorded as a warning.

        Args:
            context: Processing context
            result: Final result record
        """
        if self.scheduler is None:
            logger.debug("No job scheduler configured, skipping follow-up jobs")
            return

        campaign = context.campaign
        campaign_config = validation.campaign_config(campaign)
        jobs = []

        if campaign_config.get("sendResultEmail") is not False:
            jobs.append((EMAIL_QUEUE, SEND_EMAIL_JOB, {
                "type": "ai_result_email",
                "leadId": context.lead_id,
                "campaignId": context.campaign_id,
                "emailContent": result["email"],
            }, {"priority": "normal"}))

        if campaign.get("googleSheetId"):
            jobs.append((SHEETS_EXPORT_QUEUE, EXPORT_LEAD_JOB, {
                "leadId": context.lead_id,
                "campaignId": context.campaign_id,
                "includeAIResults": True,
            }, {"priority": "low"}))

        jobs.append((ANALYTICS_QUEUE, TRACK_EVENT_JOB, {
            "type": "ai_processing_completed",
            "leadId": context.lead_id,
            "campaignId": context.campaign_id,
            "processingTime": result["processingTime"],
            "qualityScore": (result.get("validation") or {}).get("overallQuality"),
            "provider": result["analysisMetadata"]["provider"],
        }, None))

        for queue_name, job_type, payload, options in jobs:
            try:
                await self.scheduler.add_job(queue_name, job_type, payload, options)
            except Exception as e:
                log_pipeline_event(ProcessingStage.FINALIZATION.value, "follow_up_failed",
                                   f"Could not enqueue {job_type} on {queue_name}: {e}", logging.WARNING,
                                   lead_id=context.lead_id)
                context.add_warning(ProcessingStage.FINALIZATION, f"Follow-up {job_type} not queued: {e}")

    async def handle_processing_error(
        self,
        context: ProcessingContext,
        error: BaseException,
        queue_managed: bool = False,
        attempt: int = 0,
        schedule_retry: bool = True,
    ) -> None:
        """
        Persist a failed run and schedule a retry when appropriate.

        Queue-managed runs leave retries to the queue, whose attempt count is
        mirrored into the lead's retryCount. Other runs enqueue a delayed
        retry job while the retry budget lasts.

        Args:
            context: Context of the failed run
            error: Error that aborted the run
            queue_managed: True when the job queue owns retries
            attempt: Attempts already made by the queue
            schedule_retry: Whether a retry job may be queued
        """
        kind = classify_error(error)
        retry_count = attempt if queue_managed else int(context.options.get("retry_count") or 0)
        message = str(error)

        log_pipeline_event(context.current_stage.value, "failed",
                           f"Processing failed ({kind.value}, retryable={kind.retryable}): {message}",
                           logging.ERROR, lead_id=context.lead_id, provider=context.ai_provider)

        try:
            await self.repository.update_lead(context.lead_id, {
                "aiProcessingStatus": "failed",
                "aiProcessingError": message,
                "aiProcessedAt": _utc_now(),
                "retryCount": retry_count,
                "processingMetadata": {
                    "processingId": context.id,
                    "totalTime": context.elapsed_ms(),
                    "failed": True,
                    "errorMessage": message,
                    "errorKind": kind.value,
                    "retryable": kind.retryable,
                    "retryCount": retry_count,
                },
            })
        except Exception as update_error:
            logger.error(f"Failed to record processing failure for lead {context.lead_id}: {update_error}")

        if queue_managed or not kind.retryable or self.scheduler is None:
            return

        if not schedule_retry:
            log_pipeline_event(context.current_stage.value, "retry_skipped",
                               "Queue unavailable, retry not scheduled", logging.WARNING,
                               lead_id=context.lead_id)
            return

        if retry_count >= self.config.max_processing_retries:
            log_pipeline_event(context.current_stage.value, "retry_exhausted",
                               f"Retry budget of {self.config.max_processing_retries} spent", logging.WARNING,
                               lead_id=context.lead_id)
            return

        try:
            await self.scheduler.add_job(
                AI_PROCESSING_QUEUE,
                PROCESS_LEAD_JOB,
                {
                    "leadId": context.lead_id,
                    "retry": True,
                    "retryCount": retry_count + 1,
                    "previousError": message,
                    "aiProvider": context.ai_provider,
                },
                {"delay": int(self.config.retry_delay_seconds * 1000)},
            )
            log_pipeline_event(context.current_stage.value, "retry_scheduled",
                               f"Retry {retry_count + 1} in {self.config.retry_delay_seconds}s",
                               lead_id=context.lead_id)
        except Exception as retry_error:
            logger.error(f"Failed to schedule retry for lead {context.lead_id}: {retry_error}")

    # Status

    def get_status(self) -> Dict[str, Any]:
        """JSON snapshot of pipeline counters."""
        return {
            "active_processing": len(self.active),
            "metrics": {
                "total_processed": self.metrics.processed,
                "successful": self.metrics.successful,
                "failed": self.metrics.failed,
                "average_processing_time": self.metrics.average_time,
            },
            "stage_metrics": {stage.value: counters.to_dict() for stage, counters in self.stage_metrics.items()},
            "stages": [stage.value for stage in STAGE_ORDER],
            "critical_stages": sorted(stage.value for stage in CRITICAL_STAGES),
        }

    def reset_metrics(self) -> None:
        self.metrics = StageCounters()
        self.stage_metrics = {stage: StageCounters() for stage in STAGE_ORDER}
        logger.info("Pipeline metrics reset")
