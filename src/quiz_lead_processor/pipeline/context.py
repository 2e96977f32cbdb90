#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Processing Context

Per-invocation state of the lead processing pipeline.
"""

import time
from enum import Enum
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional

from quiz_lead_processor.errors import ErrorKind, PipelineStageError


class ProcessingStage(str, Enum):
    """Pipeline stages, in execution order, plus the two terminal states."""
    INITIALIZATION = "initialization"
    ANALYSIS = "analysis"
    RESPONSE_GENERATION = "response_generation"
    EMAIL_GENERATION = "email_generation"
    VALIDATION = "validation"
    FINALIZATION = "finalization"
    COMPLETED = "completed"
    FAILED = "failed"


STAGE_ORDER = (
    ProcessingStage.INITIALIZATION,
    ProcessingStage.ANALYSIS,
    ProcessingStage.RESPONSE_GENERATION,
    ProcessingStage.EMAIL_GENERATION,
    ProcessingStage.VALIDATION,
    ProcessingStage.FINALIZATION,
)

# A failure in these stages aborts the pipeline
CRITICAL_STAGES = frozenset({ProcessingStage.ANALYSIS, ProcessingStage.RESPONSE_GENERATION})


def stage_progress(stage: ProcessingStage) -> int:
    """Progress percentage when a stage starts: stage index / total stages x 100."""
    return round(STAGE_ORDER.index(stage) / len(STAGE_ORDER) * 100)


@dataclass
class StageResult:
    """Output of one stage."""
    result: Any = None
    provider: Optional[str] = None
    model: Optional[str] = None
    usage: Dict[str, int] = field(default_factory=dict)
    processing_time_ms: float = 0.0
    fallback: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "result": self.result,
            "provider": self.provider,
            "model": self.model,
            "usage": dict(self.usage),
            "processing_time_ms": self.processing_time_ms,
            "fallback": self.fallback,
        }


@dataclass
class ProcessingContext:
    """State owned by one pipeline invocation."""
    id: str
    lead_id: Any
    options: Dict[str, Any] = field(default_factory=dict)
    lead: Optional[Dict[str, Any]] = None
    campaign: Optional[Dict[str, Any]] = None
    current_stage: ProcessingStage = ProcessingStage.INITIALIZATION
    stage_results: Dict[ProcessingStage, StageResult] = field(default_factory=dict)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[Dict[str, Any]] = field(default_factory=list)
    start_time: float = field(default_factory=time.monotonic)
    entered: List[ProcessingStage] = field(default_factory=list)

    @property
    def campaign_id(self) -> Any:
        return (self.campaign or {}).get("id")

    @property
    def ai_provider(self) -> Optional[str]:
        return self.options.get("ai_provider")

    def enter_stage(self, stage: ProcessingStage) -> None:
        """
        Move to a stage.

        Raises:
            PipelineStageError: If the stage was already entered in this invocation
        """
        if stage in self.entered:
            raise PipelineStageError(
                f"Stage {stage.value} already entered for processing {self.id}",
                stage=stage.value,
                kind=ErrorKind.FATAL,
            )
        self.entered.append(stage)
        self.current_stage = stage

    def record(self, stage: ProcessingStage, result: StageResult) -> None:
        self.stage_results[stage] = result

    def result_of(self, stage: ProcessingStage) -> Any:
        stage_result = self.stage_results.get(stage)
        return stage_result.result if stage_result else None

    def add_warning(self, stage: ProcessingStage, message: str) -> None:
        self.warnings.append({"stage": stage.value, "message": message})

    def add_error(self, stage: ProcessingStage, error: BaseException) -> None:
        self.errors.append({"stage": stage.value, "message": str(error), "type": type(error).__name__})

    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.start_time) * 1000
