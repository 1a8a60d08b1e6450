"""
Chronicle - Outline boundary validation.

This module checks freshly generated chapter outlines against the temporal
boundary of their volume before they are saved:

* events the previous volume already completed must not happen again
* events of the next volume must not be written early
* outlines must not duplicate chapters of the previous volume or of the
  current one
* the volume's own key events should be covered somewhere

All checks are offline text heuristics. Only high-severity errors make a
result invalid; everything else is advice for the author.
"""

# Standard library imports
import re
from typing import Iterable, List, Literal, Optional, Protocol, Sequence

# Third party imports
from pydantic import BaseModel, Field

# Local imports
from chronicle_lib.analysis.matching import (
    event_keywords,
    keyword_coverage,
    matches_forbidden_event,
    similarity,
)
from chronicle_lib.config_models import (
    DEFAULT_THRESHOLDS,
    DEFAULT_VOCABULARY,
    HeuristicThresholds,
    HeuristicVocabulary,
)
from chronicle_lib.core.constants import (
    MAIN_PLOT_CLAUSE_SEPARATORS,
    SUMMARY_CLAUSE_SEPARATORS,
    Severity,
)
from chronicle_lib.core.logger import get_logger
from chronicle_lib.models import GeneratedOutline, Volume

logger = get_logger(__name__)

MAX_KEY_EVENTS = 5


class OutlineLike(Protocol):
    title: str
    outline: str


class VolumeBoundary(BaseModel):
    """What a volume must do, must not repeat and must not anticipate."""

    volume_index: int
    volume_title: str
    must_complete_events: List[str] = Field(default_factory=list)
    forbidden_events: List[str] = Field(default_factory=list)
    completed_events: List[str] = Field(default_factory=list)
    starting_state: Optional[str] = None
    ending_state: Optional[str] = None


class ValidationError(BaseModel):
    type: Literal["past_repeat", "future_leak", "boundary_violation"]
    chapter_number: int
    chapter_title: str
    description: str
    conflict_source: Optional[str] = None
    severity: Literal["high", "medium", "low"]


class ValidationWarning(BaseModel):
    type: Literal["similar_content", "potential_overlap"]
    chapter_number: int
    description: str


class ValidationResult(BaseModel):
    is_valid: bool = True
    errors: List[ValidationError] = Field(default_factory=list)
    warnings: List[ValidationWarning] = Field(default_factory=list)

    @property
    def high_severity_errors(self) -> List[ValidationError]:
        return [e for e in self.errors if e.severity == Severity.HIGH]


def extract_key_events(
    summary: str,
    explicit_key_events: Optional[Iterable[str]] = None,
    main_plot: Optional[str] = None,
    vocabulary: HeuristicVocabulary = DEFAULT_VOCABULARY,
) -> List[str]:
    """
    Extract up to five key events of a volume.

    Sources are consulted from most to least reliable: curated events, then
    main plot clauses of reasonable length, then summary clauses that contain
    an action word. Summary clauses are only used while fewer than three
    events were found.

    Args:
        summary: The volume summary
        explicit_key_events: Curated events, used verbatim
        main_plot: The volume's main plot text
        vocabulary: Provides the summary action words

    Returns:
        Distinct events in priority order
    """
    events: List[str] = list(explicit_key_events or [])

    if main_plot:
        for clause in re.split(MAIN_PLOT_CLAUSE_SEPARATORS, main_plot):
            clause = clause.strip()
            if 5 < len(clause) < 50:
                events.append(clause)

    if summary and len(events) < 3:
        for clause in re.split(SUMMARY_CLAUSE_SEPARATORS, summary):
            clause = clause.strip()
            if len(clause) <= 4 or len(clause) >= 40:
                continue
            if any(word in clause for word in vocabulary.summary_action_words):
                events.append(clause)

    return list(dict.fromkeys(events))[:MAX_KEY_EVENTS]


def _volume_events(volume: Volume, vocabulary: HeuristicVocabulary) -> List[str]:
    if volume.key_events:
        return list(volume.key_events)
    if volume.key_points:
        return list(volume.key_points)
    return extract_key_events(volume.summary, None, volume.main_plot, vocabulary)


def build_volume_boundary(
    current: Volume,
    volume_index: int,
    previous: Optional[Volume] = None,
    next_volume: Optional[Volume] = None,
    vocabulary: HeuristicVocabulary = DEFAULT_VOCABULARY,
) -> VolumeBoundary:
    """
    Derive the boundary of a volume from its neighbours.

    Each volume contributes its curated key events, else its key points,
    else events extracted from its summary and main plot. The result
    depends only on the three volumes.
    """
    boundary = VolumeBoundary(
        volume_index=volume_index,
        volume_title=current.title,
        must_complete_events=_volume_events(current, vocabulary),
    )

    if previous is not None:
        boundary.completed_events = _volume_events(previous, vocabulary)
        boundary.starting_state = f"承接《{previous.title}》结尾"

    if next_volume is not None:
        boundary.forbidden_events = _volume_events(next_volume, vocabulary)
        boundary.ending_state = f"为《{next_volume.title}》做铺垫"

    return boundary


def _full_text(chapter: OutlineLike) -> str:
    return f"{chapter.title} {chapter.outline}"


def _percent(value: float) -> int:
    return int(value * 100 + 0.5)


def validate_generated_outlines(
    generated: Sequence[GeneratedOutline],
    boundary: VolumeBoundary,
    existing_chapters: Optional[Sequence[OutlineLike]] = None,
    previous_volume_chapters: Optional[Sequence[OutlineLike]] = None,
    thresholds: HeuristicThresholds = DEFAULT_THRESHOLDS,
    vocabulary: HeuristicVocabulary = DEFAULT_VOCABULARY,
) -> ValidationResult:
    """
    Validate generated chapter outlines against a volume boundary.

    Each outline is checked as ``title + " " + outline``:

    1. a completed event reappears: ``past_repeat``, high
    2. a forbidden event appears early: ``future_leak``, high
    3. similarity to a previous-volume chapter above the error threshold:
       ``past_repeat``, high; above the warning threshold: a warning
    4. similarity to an existing chapter of this volume above the error
       threshold: ``past_repeat``, medium

    Finally every must-complete event whose keyword coverage over all
    outlines combined stays below ``must_complete_coverage`` produces a
    warning with chapter number 0.

    Args:
        generated: The outlines to check
        boundary: The volume boundary
        existing_chapters: Chapters already saved in this volume
        previous_volume_chapters: Chapters of the previous volume
        thresholds: Similarity and coverage thresholds
        vocabulary: Provides the core action words for event matching

    Returns:
        The validation result; ``is_valid`` is False iff a high-severity
        error exists
    """
    errors: List[ValidationError] = []
    warnings: List[ValidationWarning] = []

    for chapter in generated:
        full_text = _full_text(chapter)

        if boundary.completed_events:
            conflict = matches_forbidden_event(
                full_text, boundary.completed_events, thresholds, vocabulary
            )
            if conflict:
                errors.append(
                    ValidationError(
                        type="past_repeat",
                        chapter_number=chapter.chapter_number,
                        chapter_title=chapter.title,
                        description="疑似重复上一卷已完成的事件",
                        conflict_source=conflict,
                        severity=Severity.HIGH,
                    )
                )

        if boundary.forbidden_events:
            conflict = matches_forbidden_event(
                full_text, boundary.forbidden_events, thresholds, vocabulary
            )
            if conflict:
                errors.append(
                    ValidationError(
                        type="future_leak",
                        chapter_number=chapter.chapter_number,
                        chapter_title=chapter.title,
                        description="疑似提前写了下一卷的内容",
                        conflict_source=conflict,
                        severity=Severity.HIGH,
                    )
                )

        for prev_chapter in previous_volume_chapters or []:
            score = similarity(full_text, _full_text(prev_chapter))
            if score > thresholds.duplicate_error_similarity:
                errors.append(
                    ValidationError(
                        type="past_repeat",
                        chapter_number=chapter.chapter_number,
                        chapter_title=chapter.title,
                        description=f"与上一卷《{prev_chapter.title}》高度相似({_percent(score)}%)",
                        conflict_source=prev_chapter.title,
                        severity=Severity.HIGH,
                    )
                )
            elif score > thresholds.duplicate_warning_similarity:
                warnings.append(
                    ValidationWarning(
                        type="similar_content",
                        chapter_number=chapter.chapter_number,
                        description=f"与上一卷《{prev_chapter.title}》有一定相似度({_percent(score)}%)",
                    )
                )

        for existing in existing_chapters or []:
            score = similarity(full_text, _full_text(existing))
            if score > thresholds.duplicate_error_similarity:
                errors.append(
                    ValidationError(
                        type="past_repeat",
                        chapter_number=chapter.chapter_number,
                        chapter_title=chapter.title,
                        description=f"与本卷已有章节《{existing.title}》高度相似",
                        conflict_source=existing.title,
                        severity=Severity.MEDIUM,
                    )
                )

    all_text = " ".join(_full_text(c) for c in generated)
    for event in boundary.must_complete_events:
        if not event_keywords(event):
            continue
        if keyword_coverage(all_text, event) < thresholds.must_complete_coverage:
            warnings.append(
                ValidationWarning(
                    type="potential_overlap",
                    chapter_number=0,
                    description=f"本卷可能未完成关键事件：{event}",
                )
            )

    result = ValidationResult(
        is_valid=not any(e.severity == Severity.HIGH for e in errors),
        errors=errors,
        warnings=warnings,
    )
    logger.info(
        f"Validated {len(generated)} outline(s) of volume {boundary.volume_index + 1}: "
        f"{len(errors)} error(s), {len(warnings)} warning(s)"
    )
    return result


def build_boundary_constraint_prompt(boundary: VolumeBoundary) -> str:
    """Render the boundary as a bordered constraint block for outline prompts."""
    prompt = "\n\n╔══════════════════════════════════════════════╗\n"
    prompt += "║           【🚨 内容边界强制约束】              ║\n"
    prompt += "╚══════════════════════════════════════════════╝\n\n"

    if boundary.completed_events:
        prompt += "🔴【禁区一：过去已完成】以下事件已在上一卷完成，本卷严禁重写：\n"
        for i, event in enumerate(boundary.completed_events, 1):
            prompt += f"   {i}. ❌ {event}\n"
        prompt += "   → 这些是历史，不可改变，不可重演\n\n"

    if boundary.forbidden_events:
        prompt += "🔴【禁区二：未来不可触碰】以下事件属于下一卷，本卷严禁提前写：\n"
        for i, event in enumerate(boundary.forbidden_events, 1):
            prompt += f"   {i}. ⛔ {event}\n"
        prompt += "   → 这些是未来，只能埋伏笔，不能直接写出\n\n"

    if boundary.must_complete_events:
        prompt += "🟢【本卷核心任务】以下事件必须在本卷中完成或推进：\n"
        for i, event in enumerate(boundary.must_complete_events, 1):
            prompt += f"   {i}. ✅ {event}\n"
        prompt += "   → 这些是本卷的主线，必须聚焦\n\n"

    if boundary.starting_state:
        prompt += f"📍【起始状态】{boundary.starting_state}\n"
    if boundary.ending_state:
        prompt += f"🎯【目标状态】{boundary.ending_state}\n"

    prompt += "\n⚠️ 每一章大纲都会被系统自动检测，如果违反上述约束将被标记为错误！\n"
    return prompt


_ERROR_ICONS = {"past_repeat": "🔙", "future_leak": "⏩"}


def format_validation_result(result: ValidationResult) -> str:
    """Human-readable validation summary."""
    if not result.errors and not result.warnings:
        return "✅ 大纲验证通过，无边界冲突"

    message = ""
    if result.errors:
        message += "❌ 发现以下边界问题：\n\n"
        for error in result.errors:
            icon = _ERROR_ICONS.get(error.type, "⚠️")
            message += f"{icon} 第{error.chapter_number}章《{error.chapter_title}》\n"
            message += f"   问题：{error.description}\n"
            if error.conflict_source:
                message += f"   冲突来源：{error.conflict_source}\n"
            message += "\n"

    if result.warnings:
        message += "⚠️ 警告：\n"
        for warning in result.warnings:
            if warning.chapter_number > 0:
                message += f"   - 第{warning.chapter_number}章：{warning.description}\n"
            else:
                message += f"   - {warning.description}\n"

    return message
