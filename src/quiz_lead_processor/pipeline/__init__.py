"""
Lead processing pipeline: stage state machine, prompt rendering and quality
scoring.
"""

from quiz_lead_processor.pipeline.collaborators import JobScheduler, LeadRepository, PromptRenderer
from quiz_lead_processor.pipeline.context import ProcessingContext, ProcessingStage, StageResult
from quiz_lead_processor.pipeline.processor import CampaignProcessingPipeline
from quiz_lead_processor.pipeline.prompts import PromptTemplateEngine

__all__ = [
    "CampaignProcessingPipeline",
    "JobScheduler",
    "LeadRepository",
    "ProcessingContext",
    "ProcessingStage",
    "PromptRenderer",
    "PromptTemplateEngine",
    "StageResult",
]
