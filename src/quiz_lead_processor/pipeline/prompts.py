#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Prompt Template Engine

Default PromptRenderer. Templates use ``{lead.firstName}`` style placeholders
resolved against the lead, the campaign and earlier stage outputs. A campaign
can override any stage template under ``config.prompts.<stage>``.
"""

import json
import re
from typing import Dict, Any, Optional

from quiz_lead_processor.errors import TemplateNotFoundError
from quiz_lead_processor.utils.logger import get_logger

# Configure logger
logger = get_logger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{([A-Za-z_][\w]*(?:\.[\w]+)*)\}")

DEFAULT_TEMPLATES = {
    "analysis": (
        "Analyze the following lead who completed the {campaign.title} {campaign.campaignType}.\n\n"
        "Name: {lead.firstName} {lead.lastName}\n"
        "Email: {lead.email}\n"
        "Company: {lead.company}\n"
        "Responses:\n{lead.quizAnswers}\n\n"
        "Provide a lead score from 0 to 100, a qualification (hot, warm, cold or unqualified), "
        "key insights, recommendations and a short summary."
    ),
    "response": (
        "Write a personalized response for {lead.firstName} based on their {campaign.title} results.\n\n"
        "Summary: {analysis.summary}\n"
        "Qualification: {analysis.qualification}\n"
        "Insights: {analysis.insights}\n"
        "Recommendations: {analysis.recommendations}\n\n"
        "Address {lead.firstName} directly and keep the tone helpful and specific."
    ),
    "email": (
        "Write an email to {lead.firstName} {lead.lastName} presenting their {campaign.title} results.\n"
        "Begin with a line of the form 'Subject: <subject>' followed by the email body.\n\n"
        "Results:\n{response.content}"
    ),
}


def _resolve(path: str, values: Dict[str, Any]) -> Any:
    current: Any = values
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        else:
            current = getattr(current, part, None)
        if current is None:
            return None
    return current


def _format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, indent=2, default=str)
    return str(value)


class PromptTemplateEngine:
    """Renders per-stage prompt templates."""

    def __init__(self, templates: Optional[Dict[str, str]] = None):
        self.templates = dict(DEFAULT_TEMPLATES)
        if templates:
            self.templates.update(templates)

    def get_template(self, stage: str, campaign: Optional[Dict[str, Any]] = None) -> str:
        """
        Template of a stage, preferring the campaign override.

        Args:
            stage: analysis, response or email
            campaign: Campaign record

        Returns:
            str: Template text

        Raises:
            TemplateNotFoundError: If no template exists for the stage
        """
        overrides = ((campaign or {}).get("config") or {}).get("prompts") or {}
        template = overrides.get(stage) or self.templates.get(stage)
        if not template:
            raise TemplateNotFoundError(f"No prompt template for stage {stage}", stage=stage)
        return template

    def render(
        self,
        stage: str,
        lead: Dict[str, Any],
        campaign: Dict[str, Any],
        stage_context: Dict[str, Any],
    ) -> str:
        template = self.get_template(stage, campaign)
        values = {"lead": lead or {}, "campaign": campaign or {}}
        values.update(stage_context or {})
        prompt = PLACEHOLDER_PATTERN.sub(lambda match: _format_value(_resolve(match.group(1), values)), template)
        logger.debug(f"Rendered {stage} prompt ({len(prompt)} chars)")
        return prompt
