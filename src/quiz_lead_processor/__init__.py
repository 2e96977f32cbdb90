#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Quiz Lead Processor

Asynchronous AI processing core for quiz lead-generation campaigns: provider
orchestration, the multi-stage lead processing pipeline and the job queue
that drives it.
"""

__version__ = "0.1.0"
