#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Configuration management for the Quiz Lead Processor.

This module loads configuration from environment variables (and a .env file
when present) and provides sensible defaults. It also validates configuration
values.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Log levels
LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Provider selection strategies
SELECTION_STRATEGIES = ("characteristics", "round_robin", "cost")

# Queue backends
QUEUE_BACKENDS = ("auto", "redis", "memory")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def _default_selection_strategy() -> str:
    strategy = os.getenv("AI_SELECTION_STRATEGY")
    if strategy:
        return strategy.lower()
    # Legacy switches, load balancing wins over cost optimization
    if _env_bool("AI_LOAD_BALANCING", "false"):
        return "round_robin"
    if _env_bool("AI_COST_OPTIMIZATION", "false"):
        return "cost"
    return "characteristics"


def _default_redis_url() -> str:
    url = os.getenv("QUEUE_REDIS_URL")
    if url:
        return url
    host = os.getenv("QUEUE_REDIS_HOST") or os.getenv("REDIS_HOST", "localhost")
    port = os.getenv("QUEUE_REDIS_PORT") or os.getenv("REDIS_PORT", "6379")
    db = os.getenv("QUEUE_REDIS_DB", "1")
    password = os.getenv("QUEUE_REDIS_PASSWORD") or os.getenv("REDIS_PASSWORD")
    auth = f":{password}@" if password else ""
    return f"redis://{auth}{host}:{port}/{db}"


@dataclass
class AppConfig:
    """Application configuration."""

    # Logging
    log_level: int = field(
        default_factory=lambda: LOG_LEVELS.get(
            os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO
        )
    )
    log_file_path: Optional[Path] = field(
        default_factory=lambda: Path(os.environ["LOG_FILE_PATH"]) if os.getenv("LOG_FILE_PATH") else None
    )
    json_logs: bool = field(default_factory=lambda: _env_bool("LOG_JSON", "false"))

    # OpenAI
    openai_api_key: Optional[str] = field(default_factory=lambda: os.getenv("OPENAI_API_KEY"))
    openai_model: str = field(default_factory=lambda: os.getenv("OPENAI_DEFAULT_MODEL", "gpt-4o"))
    openai_organization: Optional[str] = field(default_factory=lambda: os.getenv("OPENAI_ORGANIZATION"))
    openai_timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("OPENAI_TIMEOUT_SECONDS", "30"))
    )

    # Anthropic Claude
    anthropic_api_key: Optional[str] = field(default_factory=lambda: os.getenv("ANTHROPIC_API_KEY"))
    claude_model: str = field(
        default_factory=lambda: os.getenv("CLAUDE_DEFAULT_MODEL", "claude-3-5-sonnet-20241022")
    )
    claude_timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("CLAUDE_TIMEOUT_SECONDS", "60"))
    )

    # Google Gemini
    google_ai_api_key: Optional[str] = field(default_factory=lambda: os.getenv("GOOGLE_AI_API_KEY"))
    gemini_model: str = field(default_factory=lambda: os.getenv("GEMINI_DEFAULT_MODEL", "gemini-1.5-flash"))
    gemini_timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("GEMINI_TIMEOUT_SECONDS", "30"))
    )

    # Orchestrator
    ai_enable_fallback: bool = field(default_factory=lambda: _env_bool("AI_ENABLE_FALLBACK", "true"))
    ai_enable_caching: bool = field(default_factory=lambda: _env_bool("AI_ENABLE_CACHING", "true"))
    ai_cache_ttl_seconds: int = field(default_factory=lambda: int(os.getenv("AI_CACHE_TTL", "3600")))
    ai_cache_max_entries: int = field(default_factory=lambda: int(os.getenv("AI_CACHE_MAX_KEYS", "1000")))
    ai_selection_strategy: str = field(default_factory=_default_selection_strategy)
    ai_health_check_on_register: bool = field(
        default_factory=lambda: _env_bool("AI_HEALTH_CHECK_ON_REGISTER", "true")
    )
    scoring_policy_path: Optional[Path] = field(
        default_factory=lambda: Path(os.environ["AI_SCORING_POLICY_PATH"])
        if os.getenv("AI_SCORING_POLICY_PATH") else None
    )

    # Processing pipeline
    ai_processing_timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("AI_PROCESSING_TIMEOUT", "60"))
    )
    retry_delay_seconds: float = field(
        default_factory=lambda: float(os.getenv("AI_RETRY_DELAY_SECONDS", "30"))
    )
    max_processing_retries: int = field(
        default_factory=lambda: int(os.getenv("AI_PROCESSING_MAX_RETRIES", "3"))
    )
    quality_warning_threshold: float = field(
        default_factory=lambda: float(os.getenv("AI_QUALITY_WARNING_THRESHOLD", "0.6"))
    )

    # Queue
    queue_backend: str = field(default_factory=lambda: os.getenv("QUEUE_BACKEND", "auto").lower())
    redis_url: str = field(default_factory=_default_redis_url)
    redis_connect_timeout: float = field(
        default_factory=lambda: float(os.getenv("REDIS_CONNECT_TIMEOUT", "2"))
    )
    queue_concurrency: int = field(default_factory=lambda: int(os.getenv("QUEUE_CONCURRENCY", "5")))
    queue_key_prefix: str = field(default_factory=lambda: os.getenv("QUEUE_KEY_PREFIX", "quiz"))
    queue_poll_interval: float = field(
        default_factory=lambda: float(os.getenv("QUEUE_POLL_INTERVAL", "0.5"))
    )
    queue_lease_ms: int = field(default_factory=lambda: int(os.getenv("QUEUE_LEASE_MS", "30000")))

    # Debug options
    debug_mode: bool = field(default_factory=lambda: _env_bool("DEBUG_MODE", "false"))

    def validate(self) -> List[str]:
        """
        Validate configuration values.

        Returns:
            List[str]: List of validation errors, empty if valid
        """
        errors = []

        if self.log_file_path is not None and not self.log_file_path.parent.exists():
            errors.append(f"Log file path parent does not exist: {self.log_file_path.parent}")

        if not any([self.openai_api_key, self.anthropic_api_key, self.google_ai_api_key]):
            errors.append(
                "At least one of OPENAI_API_KEY, ANTHROPIC_API_KEY or GOOGLE_AI_API_KEY is required"
            )

        if self.ai_selection_strategy not in SELECTION_STRATEGIES:
            errors.append(
                f"AI_SELECTION_STRATEGY must be one of {', '.join(SELECTION_STRATEGIES)}"
            )

        if self.queue_backend not in QUEUE_BACKENDS:
            errors.append(f"QUEUE_BACKEND must be one of {', '.join(QUEUE_BACKENDS)}")

        if self.ai_cache_ttl_seconds <= 0:
            errors.append("AI_CACHE_TTL must be positive")

        if self.ai_cache_max_entries <= 0:
            errors.append("AI_CACHE_MAX_KEYS must be positive")

        if self.ai_processing_timeout_seconds <= 0:
            errors.append("AI_PROCESSING_TIMEOUT must be positive")

        if self.retry_delay_seconds < 0:
            errors.append("AI_RETRY_DELAY_SECONDS must not be negative")

        if self.queue_concurrency <= 0:
            errors.append("QUEUE_CONCURRENCY must be positive")

        if self.queue_lease_ms <= 0:
            errors.append("QUEUE_LEASE_MS must be positive")

        if not 0.0 <= self.quality_warning_threshold <= 1.0:
            errors.append("AI_QUALITY_WARNING_THRESHOLD must be between 0 and 1")

        return errors

    def provider_settings(self) -> Dict[str, Dict[str, Any]]:
        """
        Provider configurations for every provider with an API key.

        Returns:
            Dict: Provider name to adapter configuration, in registration order
        """
        settings: Dict[str, Dict[str, Any]] = {}

        if self.openai_api_key:
            settings["openai"] = {
                "api_key": self.openai_api_key,
                "model": self.openai_model,
                "organization": self.openai_organization,
                "timeout": self.openai_timeout_seconds,
            }

        if self.anthropic_api_key:
            settings["claude"] = {
                "api_key": self.anthropic_api_key,
                "model": self.claude_model,
                "timeout": self.claude_timeout_seconds,
            }

        if self.google_ai_api_key:
            settings["gemini"] = {
                "api_key": self.google_ai_api_key,
                "model": self.gemini_model,
                "timeout": self.gemini_timeout_seconds,
            }

        return settings

    def load_json_config(self, path: Path) -> Dict[str, Any]:
        """
        Load a JSON configuration file (scoring policy overrides).

        Args:
            path: Path to the configuration file

        Returns:
            Dict: Loaded configuration or empty dict if file doesn't exist
        """
        try:
            if path.exists():
                with open(path, "r", encoding="utf-8") as f:
                    return json.load(f)
            else:
                return {}
        except Exception as e:
            logging.error(f"Error loading configuration from {path}: {str(e)}")
            return {}


# Default config instance, used when no configuration is injected
config = AppConfig()
