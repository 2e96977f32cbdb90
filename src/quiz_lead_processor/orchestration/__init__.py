#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Orchestration Package

Multi-provider AI orchestration: provider selection, fallback, response
caching and usage metrics.
"""

from quiz_lead_processor.orchestration.orchestrator import AIOrchestrator, ProviderDescriptor
from quiz_lead_processor.orchestration.scoring import ScoringPolicy

__all__ = ["AIOrchestrator", "ProviderDescriptor", "ScoringPolicy"]
