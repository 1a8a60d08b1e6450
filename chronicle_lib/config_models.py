"""Pydantic models for configuration validation.

This module provides validated configuration models for Chronicle: the LLM
connection settings and the tuning knobs and keyword tables used by the
consistency heuristics.
"""

# Standard library imports
from typing import Literal, Optional, Tuple

# Third party imports
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Local imports
from chronicle_lib.core.constants import (
    CORE_ACTION_WORDS,
    DEATH_KEYWORDS,
    DEATH_STATUS_KEY,
    DEATH_STATUS_VALUE,
    RETROSPECTIVE_MARKERS,
    SUMMARY_ACTION_WORDS,
    WORLD_SETTING_KEYWORDS,
    ConfigDefaults,
)

ProviderName = Literal["gemini", "openai", "anthropic"]


class LLMConfig(BaseModel):
    """Configuration for Language Model settings.

    One instance is passed to every ``TextGenerator``; there is no
    process-wide model selection.
    """

    model_config = ConfigDict(extra="forbid")

    provider: ProviderName = Field(
        default=ConfigDefaults.DEFAULT_MODEL_PROVIDER,
        description="LLM provider to use"
    )
    model: Optional[str] = Field(
        default=None,
        description="Specific model to use (defaults to provider's default)"
    )
    temperature: float = Field(
        default=ConfigDefaults.DEFAULT_TEMPERATURE,
        ge=0.0, le=2.0,
        description="Temperature for text generation"
    )
    max_tokens: int = Field(
        default=ConfigDefaults.DEFAULT_MAX_TOKENS,
        ge=100, le=1000000,
        description="Maximum tokens for generation"
    )
    api_key: Optional[str] = Field(
        default=None,
        description="API key for the provider (loaded from environment if not provided)"
    )
    timeout_seconds: float = Field(
        default=ConfigDefaults.DEFAULT_TIMEOUT_SECONDS,
        gt=0,
        description="Wall-clock timeout for a single request"
    )
    max_retries: int = Field(
        default=ConfigDefaults.DEFAULT_MAX_RETRIES,
        ge=0, le=10,
        description="Extra attempts after the first failed request"
    )
    retry_base_delay: float = Field(
        default=ConfigDefaults.DEFAULT_RETRY_BASE_DELAY,
        ge=0,
        description="Delay before the first retry, grows linearly per attempt"
    )
    retry_max_delay: float = Field(
        default=ConfigDefaults.DEFAULT_RETRY_MAX_DELAY,
        ge=0,
        description="Upper bound for the delay between retries"
    )
    batch_delay: float = Field(
        default=ConfigDefaults.DEFAULT_BATCH_DELAY,
        ge=0,
        description="Pause between sequential calls of a batch operation"
    )

    def retry_delay(self, attempt: int) -> float:
        """Delay to wait after the given zero-based failed attempt."""
        return min(self.retry_base_delay * (attempt + 1), self.retry_max_delay)


class HeuristicThresholds(BaseModel):
    """Tuning knobs of the consistency heuristics.

    The defaults are empirically chosen values, not derived ones.
    """

    model_config = ConfigDict(frozen=True)

    # Forbidden-event matcher tiers
    short_event_max_keywords: int = Field(default=3, ge=1)
    short_event_ratio: float = Field(default=1.0, ge=0.0, le=1.0)
    medium_event_max_keywords: int = Field(default=6, ge=1)
    medium_event_ratio: float = Field(default=0.75, ge=0.0, le=1.0)
    long_event_ratio: float = Field(default=0.70, ge=0.0, le=1.0)

    # Outline duplicate detection
    duplicate_error_similarity: float = Field(default=0.7, ge=0.0, le=1.0)
    duplicate_warning_similarity: float = Field(default=0.5, ge=0.0, le=1.0)
    must_complete_coverage: float = Field(default=0.3, ge=0.0, le=1.0)

    # Mortality guard
    context_window: int = Field(default=20, ge=0)
    max_violation_contexts: int = Field(default=3, ge=1)
    death_keyword_distance: int = Field(default=50, ge=0)

    # Plot thread scheduling
    imminent_window: int = Field(default=5, ge=0)
    must_resolve_window: int = Field(default=2, ge=0)
    hint_stale_chapters: int = Field(default=10, ge=1)
    critical_neglect_chapters: int = Field(default=10, ge=0)
    default_min_offset: int = Field(default=5, ge=0)
    default_horizon: int = Field(default=30, ge=1)

    # Context compression
    world_setting_budget: int = Field(default=200, ge=1)
    world_setting_max_output: int = Field(default=250, ge=1)
    summary_excerpt_length: int = Field(default=50, ge=1)
    neighbour_excerpt_length: int = Field(default=100, ge=1)

    @model_validator(mode="after")
    def check_ordering(self) -> "HeuristicThresholds":
        """Keep the tier and duplicate thresholds in a consistent order."""
        if self.medium_event_max_keywords < self.short_event_max_keywords:
            raise ValueError("medium_event_max_keywords must be >= short_event_max_keywords")
        if self.duplicate_warning_similarity > self.duplicate_error_similarity:
            raise ValueError("duplicate_warning_similarity must be <= duplicate_error_similarity")
        return self


class HeuristicVocabulary(BaseModel):
    """Keyword tables consulted by the heuristics."""

    model_config = ConfigDict(frozen=True)

    core_action_words: Tuple[str, ...] = CORE_ACTION_WORDS
    summary_action_words: Tuple[str, ...] = SUMMARY_ACTION_WORDS
    retrospective_markers: Tuple[str, ...] = RETROSPECTIVE_MARKERS
    death_keywords: Tuple[str, ...] = DEATH_KEYWORDS
    world_setting_keywords: Tuple[str, ...] = WORLD_SETTING_KEYWORDS
    death_status_key: str = DEATH_STATUS_KEY
    death_status_value: str = DEATH_STATUS_VALUE

    @field_validator(
        "core_action_words",
        "summary_action_words",
        "retrospective_markers",
        "death_keywords",
        "world_setting_keywords",
    )
    @classmethod
    def drop_blank_words(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        """Strip whitespace and drop empty entries."""
        return tuple(word.strip() for word in v if word and word.strip())


DEFAULT_THRESHOLDS = HeuristicThresholds()
DEFAULT_VOCABULARY = HeuristicVocabulary()
