"""
Chronicle - Layered story memory.

Long novels forget their own past. This module keeps three tiers of memory
for prompt construction:

* ``CoreMemory``: the fixed setting (world rules, power system, core
  conflict). Never changes once written.
* ``WorldState``: the current state of the story. It is the single source
  of truth for who is alive, which factions are at war and which plot
  threads are still open, and is replaced after every chapter.
* ``RecentMemory``: a bounded rolling window of chapter summaries, events
  and the emotional arc, derived for prompts only.
"""

# Standard library imports
from typing import Iterable, List, Literal, Optional

# Third party imports
from pydantic import BaseModel, Field

# Local imports
from chronicle_lib.core.logger import get_logger
from chronicle_lib.models import PlotThread, utc_now

logger = get_logger(__name__)

RECENT_CHAPTER_WINDOW = 5
RECENT_EVENT_LIMIT = 20
EMOTIONAL_ARC_LIMIT = 20
TREND_WINDOW = 5

EmotionalTrend = Literal["rising", "falling", "fluctuating", "stable"]


class CoreMemory(BaseModel):
    world_rules: str = ""
    power_system: str = ""
    main_conflict: str = ""
    key_locations: List[str] = Field(default_factory=list)
    factions: List[str] = Field(default_factory=list)


class CharacterState(BaseModel):
    character_id: str = ""
    name: str
    is_alive: bool = True
    death_chapter: Optional[int] = None
    death_cause: Optional[str] = None
    current_power: str = ""
    current_location: str = ""
    current_mood: str = ""
    recent_events: List[str] = Field(default_factory=list)


class FactionRelation(BaseModel):
    faction_a: str
    faction_b: str
    relation: Literal["ally", "neutral", "hostile", "war"] = "neutral"
    description: str = ""
    changed_at: Optional[int] = None


class ActiveConflict(BaseModel):
    id: str
    description: str
    participants: List[str] = Field(default_factory=list)
    start_chapter: int = 0
    status: Literal["ongoing", "escalating", "resolving"] = "ongoing"
    urgency: Literal["low", "medium", "high", "critical"] = "medium"


class WorldState(BaseModel):
    character_states: List[CharacterState] = Field(default_factory=list)
    faction_relations: List[FactionRelation] = Field(default_factory=list)
    active_conflicts: List[ActiveConflict] = Field(default_factory=list)
    unresolved_plots: List[PlotThread] = Field(default_factory=list)
    last_updated_chapter: int = 0


class ChapterSummary(BaseModel):
    chapter_index: int
    title: str
    summary: str = ""
    key_events: List[str] = Field(default_factory=list)
    characters_appeared: List[str] = Field(default_factory=list)
    emotional_tone: str = ""
    has_major_turn: bool = False


class RecentEvent(BaseModel):
    chapter: int
    description: str
    importance: Literal["low", "medium", "high"] = "medium"
    related_characters: List[str] = Field(default_factory=list)


class EmotionPoint(BaseModel):
    """Emotional reading of one chapter.

    ``intensity`` and ``tension`` range from 0 to 10, ``hope`` from -10
    (despair) to 10.
    """

    chapter: int
    emotion: str = ""
    intensity: float = Field(default=5, ge=0, le=10)
    tension: float = Field(default=5, ge=0, le=10)
    hope: float = Field(default=0, ge=-10, le=10)


class RecentMemory(BaseModel):
    last_chapters: List[ChapterSummary] = Field(default_factory=list)
    recent_events: List[RecentEvent] = Field(default_factory=list)
    emotional_arc: List[EmotionPoint] = Field(default_factory=list)


class LayeredMemory(BaseModel):
    core: CoreMemory = Field(default_factory=CoreMemory)
    world_state: WorldState = Field(default_factory=WorldState)
    recent: RecentMemory = Field(default_factory=RecentMemory)
    version: int = 1
    last_updated: str = Field(default_factory=utc_now)


class EmotionSuggestion(BaseModel):
    suggestion: str
    target_intensity: int
    target_tension: int
    reason: str


def create_empty_layered_memory() -> LayeredMemory:
    return LayeredMemory()


def apply_chapter_to_world_state(
    state: WorldState,
    chapter_index: int,
    deaths: Iterable[str] = (),
    plot_threads: Optional[Iterable[PlotThread]] = None,
    death_cause: Optional[str] = None,
) -> WorldState:
    """
    Produce the world state after a chapter.

    Characters named in ``deaths`` are marked dead at ``chapter_index``;
    a character already dead keeps its original death chapter, and unknown
    names get a new state entry. When ``plot_threads`` is given the
    unresolved plots are replaced with its open threads.

    Returns:
        A new ``WorldState``; ``state`` is left untouched
    """
    dead = list(dict.fromkeys(name for name in deaths if name))
    character_states = []
    known = set()

    for char_state in state.character_states:
        known.add(char_state.name)
        if char_state.name in dead and char_state.is_alive:
            char_state = char_state.model_copy(
                update={
                    "is_alive": False,
                    "death_chapter": chapter_index,
                    "death_cause": death_cause,
                }
            )
        character_states.append(char_state)

    for name in dead:
        if name not in known:
            character_states.append(
                CharacterState(
                    name=name, is_alive=False, death_chapter=chapter_index, death_cause=death_cause
                )
            )

    unresolved = state.unresolved_plots
    if plot_threads is not None:
        unresolved = [thread for thread in plot_threads if thread.is_open]

    if dead:
        logger.info(f"Chapter {chapter_index}: recorded death of {', '.join(dead)}")

    return state.model_copy(
        update={
            "character_states": character_states,
            "unresolved_plots": unresolved,
            "last_updated_chapter": max(state.last_updated_chapter, chapter_index),
        }
    )


def push_chapter_summary(
    recent: RecentMemory, summary: ChapterSummary, window: int = RECENT_CHAPTER_WINDOW
) -> RecentMemory:
    """Append a chapter summary, keeping only the newest ``window`` entries."""
    chapters = (recent.last_chapters + [summary])[-window:] if window > 0 else []
    return recent.model_copy(update={"last_chapters": chapters})


def push_recent_event(
    recent: RecentMemory, event: RecentEvent, limit: int = RECENT_EVENT_LIMIT
) -> RecentMemory:
    return recent.model_copy(update={"recent_events": (recent.recent_events + [event])[-limit:]})


def push_emotion_point(
    recent: RecentMemory, point: EmotionPoint, limit: int = EMOTIONAL_ARC_LIMIT
) -> RecentMemory:
    return recent.model_copy(update={"emotional_arc": (recent.emotional_arc + [point])[-limit:]})


def calculate_emotional_trend(arc: List[EmotionPoint]) -> EmotionalTrend:
    """
    Classify the intensity trend of the last five chapters.

    An intensity change of more than one point counts as a rise or a fall.
    The trend is rising or falling when one direction outnumbers the other
    by more than one, fluctuating when both occur, stable otherwise.
    """
    if len(arc) < 3:
        return "stable"

    intensities = [point.intensity for point in arc[-TREND_WINDOW:]]
    rises = falls = 0
    for previous, current in zip(intensities, intensities[1:]):
        diff = current - previous
        if diff > 1:
            rises += 1
        elif diff < -1:
            falls += 1

    if rises > falls + 1:
        return "rising"
    if falls > rises + 1:
        return "falling"
    if rises > 0 and falls > 0:
        return "fluctuating"
    return "stable"


def suggest_next_emotion(arc: List[EmotionPoint]) -> Optional[EmotionSuggestion]:
    """Suggest an emotional target for the next chapter, if the pacing needs one."""
    if len(arc) < 3:
        return None

    recent = arc[-TREND_WINDOW:]

    if all(p.intensity > 7 for p in recent):
        return EmotionSuggestion(
            suggestion="建议降低情绪强度，给读者喘息空间",
            target_intensity=4,
            target_tension=3,
            reason="连续高强度场景，需要节奏调整",
        )
    if all(p.intensity < 4 for p in recent):
        return EmotionSuggestion(
            suggestion="建议增加冲突，提升情绪张力",
            target_intensity=7,
            target_tension=6,
            reason="连续低强度场景，需要制造爽点",
        )
    if all(p.tension > 7 for p in recent):
        return EmotionSuggestion(
            suggestion="建议适当放松张力，避免读者疲劳",
            target_intensity=5,
            target_tension=3,
            reason="持续高张力，需要舒缓",
        )
    if all(p.hope < -3 for p in recent):
        return EmotionSuggestion(
            suggestion="建议加入希望元素，避免过度压抑",
            target_intensity=6,
            target_tension=5,
            reason="持续绝望氛围，需要转机",
        )
    return None


def build_memory_digest(memory: LayeredMemory) -> str:
    """Render the three memory tiers as a prompt section."""
    sections = []

    core = memory.core
    core_lines = [
        f"世界规则：{core.world_rules}" if core.world_rules else "",
        f"力量体系：{core.power_system}" if core.power_system else "",
        f"核心矛盾：{core.main_conflict}" if core.main_conflict else "",
        f"重要地点：{'、'.join(core.key_locations)}" if core.key_locations else "",
        f"主要势力：{'、'.join(core.factions)}" if core.factions else "",
    ]
    core_lines = [line for line in core_lines if line]
    if core_lines:
        sections.append("【核心设定】\n" + "\n".join(core_lines))

    state = memory.world_state
    state_lines = []
    for char_state in state.character_states:
        if char_state.is_alive:
            details = "，".join(
                part for part in (char_state.current_power, char_state.current_location) if part
            )
            state_lines.append(f"- {char_state.name}" + (f"：{details}" if details else ""))
        else:
            state_lines.append(f"- {char_state.name}（已死亡，第{char_state.death_chapter}章）")
    for relation in state.faction_relations:
        state_lines.append(f"- {relation.faction_a} 与 {relation.faction_b}：{relation.relation}")
    for conflict in state.active_conflicts:
        state_lines.append(f"- 冲突：{conflict.description}（{conflict.status}）")
    if state.unresolved_plots:
        state_lines.append(f"- 未解决伏笔：{len(state.unresolved_plots)}个")
    if state_lines:
        sections.append(f"【当前局势】（截至第{state.last_updated_chapter}章）\n" + "\n".join(state_lines))

    recent = memory.recent
    if recent.last_chapters:
        sections.append(
            "【近期章节】\n"
            + "\n".join(f"- 第{c.chapter_index}章《{c.title}》：{c.summary}" for c in recent.last_chapters)
        )

    suggestion = suggest_next_emotion(recent.emotional_arc)
    if suggestion is not None:
        sections.append(f"【节奏建议】{suggestion.suggestion}（{suggestion.reason}）")

    return "\n\n".join(sections)
