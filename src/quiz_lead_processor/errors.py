#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Error taxonomy for the lead processing core.

Every error raised by the core carries an ErrorKind assigned where it is
raised. Retry decisions (queue backoff, delayed retry jobs) are taken from the
kind, never from parsing vendor error text. Errors that reach the core without
a kind are classified by a small keyword set as a last resort.
"""

import asyncio
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Failure category assigned at the throw site."""
    RATE_LIMITED = "rate_limited"
    OVERLOADED = "overloaded"
    TIMEOUT = "timeout"
    INVALID_REQUEST = "invalid_request"
    AUTH = "auth"
    FATAL = "fatal"

    @property
    def retryable(self) -> bool:
        return self in (ErrorKind.RATE_LIMITED, ErrorKind.OVERLOADED, ErrorKind.TIMEOUT)


# Fallback classification for errors raised outside the core
RETRYABLE_KEYWORDS = {
    "timeout": ErrorKind.TIMEOUT,
    "rate_limit": ErrorKind.RATE_LIMITED,
    "temporary_failure": ErrorKind.OVERLOADED,
}


class QuizProcessingError(Exception):
    """Base class for all errors raised by the processing core."""

    default_kind = ErrorKind.FATAL

    def __init__(self, message: str, kind: Optional[ErrorKind] = None, **context: Any):
        super().__init__(message)
        self.message = message
        self.kind = kind or self.default_kind
        self.context: Dict[str, Any] = context

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": type(self).__name__,
            "message": self.message,
            "kind": self.kind.value,
            "retryable": self.retryable,
            "context": self.context,
        }


class ProviderError(QuizProcessingError):
    """Upstream AI provider failure (rate limited, overloaded, bad request, auth)."""

    def __init__(
        self,
        message: str,
        kind: Optional[ErrorKind] = None,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        **context: Any,
    ):
        super().__init__(message, kind=kind, provider=provider, status_code=status_code, **context)
        self.provider = provider
        self.status_code = status_code


class NoSuitableProviderError(ProviderError):
    """No registered provider satisfies the request's capability requirements."""

    default_kind = ErrorKind.INVALID_REQUEST


class AllProvidersFailedError(ProviderError):
    """Every provider in the fallback chain failed."""

    def __init__(self, message: str, last_error: Optional[BaseException] = None, attempts: Optional[list] = None):
        kind = classify_error(last_error) if last_error is not None else ErrorKind.FATAL
        super().__init__(message, kind=kind, attempts=attempts or [])
        self.last_error = last_error
        self.attempts = attempts or []


class ValidationError(QuizProcessingError):
    """Structured response was malformed or could not be parsed."""

    default_kind = ErrorKind.INVALID_REQUEST


class PipelineStageError(QuizProcessingError):
    """A pipeline stage failed. Critical stage failures abort the pipeline."""

    def __init__(
        self,
        message: str,
        stage: str,
        critical: bool = True,
        kind: Optional[ErrorKind] = None,
        **context: Any,
    ):
        super().__init__(message, kind=kind, stage=stage, critical=critical, **context)
        self.stage = stage
        self.critical = critical


class ProcessingTimeoutError(QuizProcessingError):
    """An awaited operation exceeded its time budget."""

    default_kind = ErrorKind.TIMEOUT


class TemplateNotFoundError(QuizProcessingError):
    """A prompt template required by a stage is missing."""


class QueueError(QuizProcessingError):
    """Broker unavailable, unknown queue, or a job handler failure."""

    default_kind = ErrorKind.OVERLOADED


class PersistenceError(QuizProcessingError):
    """Raised by persistence collaborators. The core passes it through unchanged."""


def classify_error(error: Optional[BaseException]) -> ErrorKind:
    """
    Determine the ErrorKind of an arbitrary exception.

    Typed errors report their own kind. Timeouts raised by asyncio map to
    TIMEOUT. Anything else is matched against RETRYABLE_KEYWORDS and is FATAL
    when nothing matches.

    Args:
        error: Exception to classify

    Returns:
        ErrorKind: Kind of the error
    """
    if error is None:
        return ErrorKind.FATAL

    if isinstance(error, QuizProcessingError):
        return error.kind

    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return ErrorKind.TIMEOUT

    message = str(error).lower()
    for keyword, kind in RETRYABLE_KEYWORDS.items():
        if keyword in message:
            return kind

    return ErrorKind.FATAL


def is_retryable(error: Optional[BaseException]) -> bool:
    """Whether an error is worth retrying."""
    return classify_error(error).retryable
