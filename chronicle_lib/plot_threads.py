"""
Chronicle - Plot thread tracking and management.

This module tracks planted narrative setups (伏笔) through their lifecycle
and tells the writer which ones are due, overdue or drifting out of the
reader's memory.

Lifecycle::

    active --hint--> hinted --hint--> hinted
    active|hinted --resolve--> resolved    (terminal)
    active|hinted --abandon--> abandoned   (terminal)

Every operation returns a new ``PlotThread``; terminal threads are returned
unchanged. The tracker only advises: it never resolves or abandons a thread
on its own.
"""

from typing import Dict, Iterable, List, Optional

from chronicle_lib.config_models import DEFAULT_THRESHOLDS, HeuristicThresholds
from chronicle_lib.core.constants import ThreadImportance, ThreadStatus
from chronicle_lib.core.exceptions import PlotThreadError
from chronicle_lib.core.logger import get_logger
from chronicle_lib.models import (
    ConsistencyWarning,
    PlotDetection,
    PlotHint,
    PlotThread,
    ResolutionRange,
    ResolutionSuggestions,
)

logger = get_logger(__name__)


def create_plot_thread(
    description: str,
    planted_chapter: int,
    importance: str = ThreadImportance.MAJOR,
    related_characters: Optional[List[str]] = None,
    expected_chapters_to_resolve: Optional[int] = None,
    expected_resolution_range: Optional[ResolutionRange] = None,
    thresholds: HeuristicThresholds = DEFAULT_THRESHOLDS,
) -> PlotThread:
    """
    Create a new active plot thread.

    Without an explicit range the thread is expected to resolve between
    ``planted + default_min_offset`` and ``planted + horizon``, where the
    horizon is ``expected_chapters_to_resolve`` or the configured default.
    """
    if expected_resolution_range is None:
        horizon = expected_chapters_to_resolve or thresholds.default_horizon
        earliest = planted_chapter + thresholds.default_min_offset
        expected_resolution_range = ResolutionRange(
            min=earliest, max=max(earliest, planted_chapter + horizon)
        )

    return PlotThread(
        description=description,
        planted_chapter=planted_chapter,
        expected_resolution_range=expected_resolution_range,
        status=ThreadStatus.ACTIVE,
        related_characters=list(related_characters or []),
        importance=importance,
    )


def _with_hint(thread: PlotThread, chapter: int, content: str) -> PlotThread:
    if thread.is_terminal:
        logger.debug(f"Ignoring hint for {thread.status} thread {thread.id}")
        return thread
    return thread.model_copy(
        update={
            "hints": thread.hints + [PlotHint(chapter=chapter, content=content)],
            "status": ThreadStatus.HINTED,
        }
    )


def add_hint(thread: PlotThread, chapter: int, content: str) -> PlotThread:
    """Record a hint; an active thread becomes hinted."""
    return _with_hint(thread, chapter, content)


def resolve_thread(thread: PlotThread, chapter: int) -> PlotThread:
    """Mark the thread resolved at ``chapter``."""
    if thread.is_terminal:
        logger.debug(f"Ignoring resolution for {thread.status} thread {thread.id}")
        return thread
    return thread.model_copy(
        update={"status": ThreadStatus.RESOLVED, "resolved_chapter": chapter}
    )


def abandon_thread(thread: PlotThread) -> PlotThread:
    """Mark the thread abandoned."""
    if thread.is_terminal:
        return thread
    return thread.model_copy(update={"status": ThreadStatus.ABANDONED})


def update_plot_thread(
    thread: PlotThread,
    add_hint: Optional[PlotHint] = None,
    resolve: Optional[int] = None,
    abandon: bool = False,
) -> PlotThread:
    """Apply a hint, a resolution and an abandonment, in that order."""
    updated = thread
    if add_hint is not None:
        updated = _with_hint(updated, add_hint.chapter, add_hint.content)
    if resolve is not None:
        updated = resolve_thread(updated, resolve)
    if abandon:
        updated = abandon_thread(updated)
    return updated


def check_plot_consistency(
    chapter_index: int,
    threads: Iterable[PlotThread],
    thresholds: HeuristicThresholds = DEFAULT_THRESHOLDS,
) -> List[ConsistencyWarning]:
    """
    Check open plot threads against their schedule.

    Produces a warning when a thread is past its window, when its window
    closes within ``imminent_window`` chapters, and when a critical thread
    has gone more than ``critical_neglect_chapters`` chapters without a hint.

    Args:
        chapter_index: The chapter about to be written or just written
        threads: All threads of the project

    Returns:
        Advisory warnings, never raised
    """
    warnings: List[ConsistencyWarning] = []

    for thread in threads:
        if not thread.is_open:
            continue
        window = thread.expected_resolution_range

        if chapter_index > window.max:
            warnings.append(
                ConsistencyWarning(
                    type="timeline_conflict",
                    chapter=chapter_index,
                    thread_id=thread.id,
                    description=f'伏笔"{thread.description}"已超过预期揭晓时间（预期在第{window.max}章前揭晓）',
                    suggestion="建议在近期章节揭晓此伏笔，或标记为放弃",
                )
            )
        elif window.contains(chapter_index):
            remaining = window.max - chapter_index
            if remaining <= thresholds.imminent_window:
                warnings.append(
                    ConsistencyWarning(
                        type="timeline_conflict",
                        chapter=chapter_index,
                        thread_id=thread.id,
                        description=f'伏笔"{thread.description}"即将到期，剩余{remaining}章',
                        suggestion="建议尽快安排揭晓",
                    )
                )

        chapters_since_planting = chapter_index - thread.planted_chapter
        if (
            thread.importance == ThreadImportance.CRITICAL
            and not thread.hints
            and chapters_since_planting > thresholds.critical_neglect_chapters
        ):
            warnings.append(
                ConsistencyWarning(
                    type="timeline_conflict",
                    chapter=chapter_index,
                    thread_id=thread.id,
                    description=f'关键伏笔"{thread.description}"已埋设{chapters_since_planting}章，但无任何暗示',
                    suggestion="建议添加线索暗示，让读者保持期待",
                )
            )

    return warnings


def get_plot_resolution_suggestions(
    chapter_index: int,
    threads: Iterable[PlotThread],
    thresholds: HeuristicThresholds = DEFAULT_THRESHOLDS,
) -> ResolutionSuggestions:
    """
    Sort open threads into what the next chapter must, should or may do.

    Membership is decided in priority order, so the three lists never share
    a thread:

    * must_resolve: within ``must_resolve_window`` chapters of the window's
      end, or past it
    * should_hint: inside the window, more than ``imminent_window`` chapters
      from its end, with no hint in the last ``hint_stale_chapters`` chapters
    * can_resolve: any other thread inside its window
    """
    suggestions = ResolutionSuggestions()

    for thread in threads:
        if not thread.is_open:
            continue
        window = thread.expected_resolution_range

        if chapter_index >= window.max - thresholds.must_resolve_window:
            suggestions.must_resolve.append(thread)
            continue

        recent_hint = any(
            hint.chapter > chapter_index - thresholds.hint_stale_chapters for hint in thread.hints
        )
        if (
            window.min <= chapter_index < window.max - thresholds.imminent_window
            and not recent_hint
        ):
            suggestions.should_hint.append(thread)
        elif window.contains(chapter_index):
            suggestions.can_resolve.append(thread)

    return suggestions


def generate_plot_reminder(
    chapter_index: int,
    threads: Iterable[PlotThread],
    thresholds: HeuristicThresholds = DEFAULT_THRESHOLDS,
) -> str:
    """Render the plot thread reminder block for the next chapter's prompt."""
    suggestions = get_plot_resolution_suggestions(chapter_index, threads, thresholds)
    parts = []

    if suggestions.must_resolve:
        lines = []
        for t in suggestions.must_resolve:
            state = "已超期" if chapter_index > t.expected_resolution_range.max else "即将到期"
            lines.append(f"- {t.description}（埋设于第{t.planted_chapter}章，{state}）")
        parts.append("【必须揭晓的伏笔】\n" + "\n".join(lines))

    if suggestions.should_hint:
        parts.append(
            "【建议添加暗示的伏笔】\n"
            + "\n".join(
                f"- {t.description}（预期在第{t.expected_resolution_range.min}-{t.expected_resolution_range.max}章揭晓）"
                for t in suggestions.should_hint
            )
        )

    if suggestions.can_resolve:
        parts.append(
            "【可选揭晓的伏笔】\n" + "\n".join(f"- {t.description}" for t in suggestions.can_resolve)
        )

    return "\n\n".join(parts)


def generate_plot_report(threads: List[PlotThread]) -> str:
    """Markdown status report of all plot threads."""
    by_status: Dict[str, List[PlotThread]] = {status: [] for status in (
        ThreadStatus.ACTIVE, ThreadStatus.HINTED, ThreadStatus.RESOLVED, ThreadStatus.ABANDONED
    )}
    for thread in threads:
        by_status[thread.status].append(thread)

    open_critical = [t for t in threads if t.importance == ThreadImportance.CRITICAL and t.is_open]
    open_major = [t for t in threads if t.importance == ThreadImportance.MAJOR and t.is_open]

    lines = [
        "## 伏笔追踪报告",
        "",
        "### 状态统计",
        f"- 活跃伏笔: {len(by_status[ThreadStatus.ACTIVE])}",
        f"- 已暗示: {len(by_status[ThreadStatus.HINTED])}",
        f"- 已揭晓: {len(by_status[ThreadStatus.RESOLVED])}",
        f"- 已放弃: {len(by_status[ThreadStatus.ABANDONED])}",
        "",
        "### 重要伏笔（未揭晓）",
    ]
    lines.extend(f"- [关键] {t.description}" for t in open_critical)
    lines.extend(f"- [重要] {t.description}" for t in open_major)
    if not open_critical and not open_major:
        lines.append("无")

    lines.extend(["", "### 详细列表"])
    for t in threads:
        lines.extend([
            "",
            f"**{t.description}**",
            f"- 状态: {t.status}",
            f"- 埋设: 第{t.planted_chapter}章",
            f"- 预期揭晓: 第{t.expected_resolution_range.min}-{t.expected_resolution_range.max}章",
            f"- 相关角色: {'、'.join(t.related_characters) or '无'}",
            f"- 暗示次数: {len(t.hints)}",
        ])
        if t.resolved_chapter is not None:
            lines.append(f"- 揭晓于: 第{t.resolved_chapter}章")

    return "\n".join(lines).strip()


class PlotThreadRegistry:
    """Registry of the plot threads of one project, keyed by id.

    The registry holds immutable thread values; each operation replaces the
    stored value with the updated copy.
    """

    def __init__(self, threads: Optional[Iterable[PlotThread]] = None):
        self.threads: Dict[str, PlotThread] = {}
        for thread in threads or []:
            self.add_thread(thread)

    def add_thread(self, thread: PlotThread) -> None:
        self.threads[thread.id] = thread

    def get_thread(self, thread_id: str) -> Optional[PlotThread]:
        return self.threads.get(thread_id)

    def require_thread(self, thread_id: str) -> PlotThread:
        thread = self.threads.get(thread_id)
        if thread is None:
            raise PlotThreadError(f"Unknown plot thread: {thread_id}", thread_id=thread_id)
        return thread

    def list_threads(self) -> List[PlotThread]:
        return list(self.threads.values())

    def list_open_threads(self) -> List[PlotThread]:
        """Threads that are neither resolved nor abandoned."""
        return [thread for thread in self.threads.values() if thread.is_open]

    def hint(self, thread_id: str, chapter: int, content: str) -> PlotThread:
        thread = add_hint(self.require_thread(thread_id), chapter, content)
        self.threads[thread_id] = thread
        return thread

    def resolve(self, thread_id: str, chapter: int) -> PlotThread:
        thread = resolve_thread(self.require_thread(thread_id), chapter)
        self.threads[thread_id] = thread
        return thread

    def abandon(self, thread_id: str) -> PlotThread:
        thread = abandon_thread(self.require_thread(thread_id))
        self.threads[thread_id] = thread
        return thread

    def apply_detection(
        self,
        detection: PlotDetection,
        chapter_index: int,
        thresholds: HeuristicThresholds = DEFAULT_THRESHOLDS,
    ) -> List[PlotThread]:
        """
        Apply a chapter's detection result.

        Hints and resolutions that name unknown thread ids are skipped with
        a warning, since they come from model output.

        Returns:
            The newly created threads
        """
        created = []
        for detected in detection.new_threads:
            if not detected.description:
                continue
            thread = create_plot_thread(
                detected.description,
                chapter_index,
                importance=detected.importance,
                related_characters=detected.related_characters,
                expected_chapters_to_resolve=detected.expected_chapters_to_resolve,
                thresholds=thresholds,
            )
            self.add_thread(thread)
            created.append(thread)

        for detected_hint in detection.hints:
            if detected_hint.thread_id not in self.threads:
                logger.warning(f"Hint for unknown plot thread {detected_hint.thread_id} ignored")
                continue
            self.hint(detected_hint.thread_id, chapter_index, detected_hint.hint)

        for thread_id in detection.resolved:
            if thread_id not in self.threads:
                logger.warning(f"Resolution of unknown plot thread {thread_id} ignored")
                continue
            self.resolve(thread_id, chapter_index)

        logger.info(
            f"Chapter {chapter_index}: {len(created)} new thread(s), "
            f"{len(detection.hints)} hint(s), {len(detection.resolved)} resolution(s)"
        )
        return created


def apply_plot_detection(
    threads: Iterable[PlotThread],
    detection: PlotDetection,
    chapter_index: int,
    thresholds: HeuristicThresholds = DEFAULT_THRESHOLDS,
) -> List[PlotThread]:
    """Functional wrapper around ``PlotThreadRegistry.apply_detection``."""
    registry = PlotThreadRegistry(threads)
    registry.apply_detection(detection, chapter_index, thresholds)
    return registry.list_threads()
