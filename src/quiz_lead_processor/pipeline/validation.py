#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Stage Output Parsing and Quality Scoring

Helpers that turn raw model output into analysis, response and email records,
and the presence/length heuristics used by the validation stage.
"""

import re
import json
from datetime import datetime, timezone
from typing import Dict, List, Any, Optional

# Quality weights
ANALYSIS_WEIGHT = 0.4
RESPONSE_WEIGHT = 0.4
EMAIL_WEIGHT = 0.2

DEFAULT_LEAD_SCORE = 50
DEFAULT_QUALIFICATION = "warm"
QUALIFICATIONS = ("hot", "warm", "cold", "unqualified")
STRUCTURED_CAMPAIGN_TYPES = ("quiz", "textOnly")

DEFAULT_EMAIL_SUBJECT = "Your GoAIX Results"
DEFAULT_SENDER = {"name": "GoAIX Team", "email": "noreply@quiz.goaiex.com"}

SCORE_PATTERN = re.compile(r"score[:\s]*(\d+)", re.IGNORECASE)
SUBJECT_PATTERN = re.compile(r"Subject:\s*(.+)", re.IGNORECASE)
SUBJECT_LINE_PATTERN = re.compile(r"Subject:\s*.+\n?", re.IGNORECASE)
SENTENCE_SPLIT = re.compile(r"[.!?]+")

DEFAULT_ANALYSIS_SCHEMA = {
    "type": "object",
    "properties": {
        "leadScore": {"type": "number", "minimum": 0, "maximum": 100},
        "qualification": {"type": "string", "enum": list(QUALIFICATIONS)},
        "insights": {"type": "array", "items": {"type": "string"}},
        "recommendations": {"type": "array", "items": {"type": "string"}},
        "summary": {"type": "string"},
    },
    "required": ["leadScore", "qualification", "summary"],
}


def campaign_config(campaign: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return (campaign or {}).get("config") or {}


def requires_structured_output(campaign: Dict[str, Any]) -> bool:
    return (
        campaign.get("campaignType") in STRUCTURED_CAMPAIGN_TYPES
        or campaign_config(campaign).get("requireStructuredOutput") is True
    )


def analysis_schema(campaign: Dict[str, Any]) -> Dict[str, Any]:
    return campaign_config(campaign).get("analysisSchema") or DEFAULT_ANALYSIS_SCHEMA


def extract_lead_score(text: str) -> int:
    match = SCORE_PATTERN.search(text)
    return int(match.group(1)) if match else DEFAULT_LEAD_SCORE


def extract_qualification(text: str) -> str:
    lowered = text.lower()
    for qualification in QUALIFICATIONS:
        if qualification in lowered:
            return qualification
    return DEFAULT_QUALIFICATION


def extract_insights(text: str, limit: int = 3) -> List[str]:
    sentences = [s.strip() for s in SENTENCE_SPLIT.split(text) if len(s.strip()) > 20]
    return sentences[:limit]


def parse_analysis(content: Any) -> Dict[str, Any]:
    """
    Turn an analysis response into a record.

    Dicts are used as-is, JSON text is decoded, and anything else is read
    with keyword heuristics.

    Args:
        content: Response content, structured or free text

    Returns:
        Dict: leadScore, qualification, summary and insights at least
    """
    if isinstance(content, dict):
        return content

    text = str(content or "")
    try:
        parsed = json.loads(text)
        if isinstance(parsed, dict):
            return parsed
    except ValueError:
        pass

    return {
        "leadScore": extract_lead_score(text),
        "qualification": extract_qualification(text),
        "summary": text,
        "insights": extract_insights(text),
    }


def format_response(content: str, lead: Dict[str, Any], campaign: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "content": content,
        "leadInfo": {
            "firstName": lead.get("firstName"),
            "lastName": lead.get("lastName"),
            "email": lead.get("email"),
        },
        "campaign": {
            "title": campaign.get("title"),
            "type": campaign.get("campaignType"),
        },
        "generatedAt": datetime.now(timezone.utc).isoformat(),
    }


def parse_email(content: str) -> Dict[str, Any]:
    """Split model output into subject and body."""
    subject = DEFAULT_EMAIL_SUBJECT
    body = content
    match = SUBJECT_PATTERN.search(content)
    if match:
        subject = match.group(1).strip()
        body = SUBJECT_LINE_PATTERN.sub("", content, count=1).strip()

    return {
        "subject": subject,
        "body": body,
        "recipient": None,
        "sender": dict(DEFAULT_SENDER),
    }


def fallback_email(lead: Dict[str, Any], campaign: Dict[str, Any]) -> Dict[str, Any]:
    """Deterministic email used when email generation fails."""
    title = campaign.get("title") or "quiz"
    return {
        "subject": f"Your {title} Results",
        "body": (
            f"Dear {lead.get('firstName') or 'there'},\n\n"
            f"Thank you for completing our {title}. We're currently processing your results "
            f"and will send them to you shortly.\n\n"
            f"Best regards,\nThe GoAIX Team"
        ),
        "recipient": None,
        "sender": dict(DEFAULT_SENDER),
    }


# Sub-scores, each in [0, 1]

def score_analysis(analysis: Optional[Dict[str, Any]]) -> float:
    if not analysis:
        return 0.0
    score = 0.0
    if analysis.get("leadScore") is not None:
        score += 0.3
    if analysis.get("qualification"):
        score += 0.2
    if analysis.get("summary"):
        score += 0.3
    if analysis.get("insights"):
        score += 0.2
    return round(score, 4)


def score_response(response: Optional[Dict[str, Any]], total_tokens: int = 0) -> float:
    if not response:
        return 0.0
    content = response.get("content") or ""
    score = 0.0
    if len(content) > 100:
        score += 0.5
    if "personalized" in content:
        score += 0.2
    if total_tokens > 0:
        score += 0.3
    return round(score, 4)


def score_email(email: Optional[Dict[str, Any]]) -> float:
    if not email:
        return 0.0
    score = 0.0
    if len(email.get("subject") or "") > 5:
        score += 0.3
    if len(email.get("body") or "") > 50:
        score += 0.5
    if email.get("sender"):
        score += 0.2
    return round(score, 4)


def overall_quality(analysis_score: float, response_score: float, email_score: float) -> float:
    """Weighted quality: 0.4 analysis + 0.4 response + 0.2 email."""
    score = (
        analysis_score * ANALYSIS_WEIGHT
        + response_score * RESPONSE_WEIGHT
        + email_score * EMAIL_WEIGHT
    )
    return round(min(max(score, 0.0), 1.0), 4)
