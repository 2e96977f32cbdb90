#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Pipeline Collaborators

Narrow interfaces the pipeline depends on. Lead and campaign records are plain
dicts with camelCase keys (aiProcessingStatus, campaignType, googleSheetId).
"""

from typing import Dict, Any, Optional, Protocol, runtime_checkable


@runtime_checkable
class LeadRepository(Protocol):
    """Read/update access to lead records and read access to campaigns.

    Implementations raise PersistenceError; the pipeline passes it through.
    """

    async def get_lead(self, lead_id: Any) -> Optional[Dict[str, Any]]:
        """Lead record including its campaign id, or None if it does not exist."""

    async def get_campaign(self, campaign_id: Any) -> Optional[Dict[str, Any]]:
        ...

    async def update_lead(self, lead_id: Any, data: Dict[str, Any]) -> None:
        ...


@runtime_checkable
class PromptRenderer(Protocol):
    """Builds the prompt of a stage. May raise TemplateNotFoundError."""

    def render(
        self,
        stage: str,
        lead: Dict[str, Any],
        campaign: Dict[str, Any],
        stage_context: Dict[str, Any],
    ) -> str:
        ...


@runtime_checkable
class JobScheduler(Protocol):
    """Enqueues follow-up and retry jobs."""

    async def add_job(
        self,
        queue_name: str,
        job_type: str,
        payload: Dict[str, Any],
        options: Optional[Dict[str, Any]] = None,
    ) -> Any:
        ...
