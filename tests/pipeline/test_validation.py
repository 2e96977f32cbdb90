#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Tests for stage output parsing and quality scoring.
"""

import pytest

from quiz_lead_processor.pipeline import validation

from conftest import ANALYSIS_RESULT, SAMPLE_CAMPAIGN, SAMPLE_LEAD


class TestParsing:
    """Tests for the output parsers."""

    def test_structured_campaign_types(self):
        assert validation.requires_structured_output({"campaignType": "quiz"}) is True
        assert validation.requires_structured_output({"campaignType": "textOnly"}) is True
        assert validation.requires_structured_output({"campaignType": "survey"}) is False
        assert validation.requires_structured_output(
            {"campaignType": "survey", "config": {"requireStructuredOutput": True}}
        ) is True

    def test_campaign_schema_override(self):
        schema = {"type": "object", "required": ["fit"]}
        assert validation.analysis_schema({"config": {"analysisSchema": schema}}) is schema
        assert validation.analysis_schema({}) is validation.DEFAULT_ANALYSIS_SCHEMA

    def test_parse_analysis_dict_and_json(self):
        assert validation.parse_analysis(ANALYSIS_RESULT) is ANALYSIS_RESULT
        assert validation.parse_analysis('{"leadScore": 10}') == {"leadScore": 10}

    def test_parse_analysis_free_text(self):
        text = (
            "A hot lead. Score: 88. "
            "The company is actively experimenting with automation tools today."
        )

        parsed = validation.parse_analysis(text)

        assert parsed["leadScore"] == 88
        assert parsed["qualification"] == "hot"
        assert parsed["summary"] == text
        assert parsed["insights"] == ["The company is actively experimenting with automation tools today"]

    def test_parse_analysis_defaults(self):
        parsed = validation.parse_analysis("Nothing useful")
        assert parsed["leadScore"] == 50
        assert parsed["qualification"] == "warm"

    def test_parse_email_with_subject(self):
        email = validation.parse_email("Subject: Your results are in\n\nDear Ada,\nGreat job.")

        assert email["subject"] == "Your results are in"
        assert email["body"] == "Dear Ada,\nGreat job."
        assert email["sender"] == {"name": "GoAIX Team", "email": "noreply@quiz.goaiex.com"}

    def test_parse_email_without_subject(self):
        email = validation.parse_email("Dear Ada, thanks.")
        assert email["subject"] == "Your GoAIX Results"
        assert email["body"] == "Dear Ada, thanks."

    def test_fallback_email(self):
        email = validation.fallback_email(SAMPLE_LEAD, SAMPLE_CAMPAIGN)

        assert email["subject"] == "Your AI Readiness Quiz Results"
        assert email["body"].startswith("Dear Ada,")

    def test_format_response(self):
        formatted = validation.format_response("Hello Ada", SAMPLE_LEAD, SAMPLE_CAMPAIGN)

        assert formatted["content"] == "Hello Ada"
        assert formatted["leadInfo"]["email"] == "ada@example.com"
        assert formatted["campaign"] == {"title": "AI Readiness Quiz", "type": "quiz"}
        assert formatted["generatedAt"]


class TestScoring:
    """Tests for the quality heuristics."""

    def test_score_analysis(self):
        assert validation.score_analysis(ANALYSIS_RESULT) == 1.0
        assert validation.score_analysis({"leadScore": 0, "summary": "x"}) == 0.6
        assert validation.score_analysis(None) == 0.0

    def test_score_response(self):
        long_personalized = {"content": "personalized " + "x" * 100}
        assert validation.score_response(long_personalized, total_tokens=30) == 1.0
        assert validation.score_response({"content": "short"}, total_tokens=0) == 0.0
        assert validation.score_response({"content": "short"}, total_tokens=10) == 0.3

    def test_score_email(self):
        email = validation.parse_email("Subject: Your results\n\n" + "Body text " * 10)
        assert validation.score_email(email) == 1.0
        assert validation.score_email({"subject": "Hi", "body": "", "sender": None}) == 0.0

    def test_overall_quality_weights(self):
        assert validation.overall_quality(1.0, 1.0, 1.0) == 1.0
        assert validation.overall_quality(1.0, 0.5, 0.0) == pytest.approx(0.6)
        assert validation.overall_quality(0.5, 0.5, 0.5) == pytest.approx(0.5)

    def test_overall_quality_is_clamped(self):
        assert validation.overall_quality(2.0, 2.0, 2.0) == 1.0
        assert validation.overall_quality(-1.0, 0.0, 0.0) == 0.0
