"""
Chronicle - Chapter workflow.

This module wires the consistency engine around the text generator:

* before generation it composes prompts from the compressed context, the
  deceased-character warning, the plot reminder and the volume boundary
* after a chapter is written it runs the extraction passes, folds their
  results into a new ``StoryState`` and collects advisory findings
* generated volume outlines are validated against the volume boundary
  before anyone saves them

The workflow never writes to the store itself. ``load_story_state`` and
``save_story_state`` move snapshots in and out.
"""

# Standard library imports
from typing import Dict, List, Optional, Sequence

# Third party imports
from pydantic import BaseModel, Field

# Local imports
from chronicle_lib.codex import detect_entity_conflicts, merge_extraction
from chronicle_lib.compression import (
    CompressedContext,
    build_compressed_context,
    calculate_compression_stats,
)
from chronicle_lib.config_models import (
    DEFAULT_THRESHOLDS,
    DEFAULT_VOCABULARY,
    HeuristicThresholds,
    HeuristicVocabulary,
)
from chronicle_lib.core.logger import get_logger
from chronicle_lib.extraction import (
    analyze_chapter_for_characters,
    detect_plot_threads,
    extract_entities_from_chapter,
)
from chronicle_lib.llm import TextGenerator
from chronicle_lib.memory import (
    LayeredMemory,
    apply_chapter_to_world_state,
    build_memory_digest,
    create_empty_layered_memory,
)
from chronicle_lib.models import (
    Chapter,
    Character,
    CharacterAnalysis,
    CharacterRelation,
    CharacterUpdate,
    Codex,
    CodexExtraction,
    ConsistencyWarning,
    EntityConflict,
    GeneratedOutline,
    GeneratedOutlineList,
    PlotDetection,
    PlotThread,
    Project,
    Volume,
)
from chronicle_lib.mortality import (
    DeathAnalysis,
    MortalityReport,
    apply_character_updates,
    build_deceased_warning,
    detect_deceased_in_content,
    get_active_characters,
    quick_analyze_deaths,
)
from chronicle_lib.outline_validator import (
    ValidationResult,
    VolumeBoundary,
    build_boundary_constraint_prompt,
    build_volume_boundary,
    validate_generated_outlines,
)
from chronicle_lib.persistence import StoryStore
from chronicle_lib.plot_threads import (
    apply_plot_detection,
    check_plot_consistency,
    generate_plot_reminder,
)
from chronicle_lib.prompts import render_prompt

logger = get_logger(__name__)


class StoryState(BaseModel):
    """Snapshot of everything the engine knows about one project."""

    project: Project
    volumes: List[Volume] = Field(default_factory=list)
    characters: List[Character] = Field(default_factory=list)
    codex: Codex = Field(default_factory=Codex)
    plot_threads: List[PlotThread] = Field(default_factory=list)
    memory: LayeredMemory = Field(default_factory=create_empty_layered_memory)


def load_story_state(store: StoryStore, project_id: str) -> StoryState:
    """Load the state of a project from the store."""
    return StoryState(
        project=store.get_project(project_id),
        volumes=store.list_volumes(project_id),
        characters=store.list_characters(project_id),
        codex=store.get_codex(project_id),
        plot_threads=store.list_plot_threads(project_id),
        memory=store.get_memory(project_id),
    )


def save_story_state(store: StoryStore, state: StoryState) -> None:
    """Save every record of a state snapshot."""
    project_id = state.project.id
    store.save_project(state.project)
    for volume in state.volumes:
        store.save_volume(volume)
    store.save_characters(state.characters)
    store.save_codex(project_id, state.codex)
    store.save_plot_threads(project_id, state.plot_threads)
    store.save_memory(project_id, state.memory)
    logger.info(f"Saved story state of project {project_id}")


def build_context(
    state: StoryState,
    volume_index: int,
    thresholds: HeuristicThresholds = DEFAULT_THRESHOLDS,
    vocabulary: HeuristicVocabulary = DEFAULT_VOCABULARY,
) -> CompressedContext:
    """Compressed context for a volume; the savings are logged at debug level."""
    context = build_compressed_context(
        state.project.world_setting,
        state.characters,
        state.volumes,
        volume_index,
        thresholds,
        vocabulary,
    )
    calculate_compression_stats(state.project.world_setting, len(state.characters), context)
    return context


def build_chapter_prompt(
    state: StoryState,
    volume_index: int,
    chapter_index: int,
    chapter_title: str,
    outline: str,
    previous_content: str = "",
    style: str = "",
    thresholds: HeuristicThresholds = DEFAULT_THRESHOLDS,
    vocabulary: HeuristicVocabulary = DEFAULT_VOCABULARY,
) -> str:
    """
    Compose the generation prompt for one chapter.

    Args:
        state: The project state
        volume_index: Zero-based index of the chapter's volume
        chapter_index: Index of the chapter in the whole book
        chapter_title: Title of the chapter
        outline: The chapter outline
        previous_content: Tail of the previous chapter
        style: Writing style instructions

    Returns:
        The prompt text
    """
    return render_prompt(
        "write_chapter",
        project_title=state.project.title,
        context=build_context(state, volume_index, thresholds, vocabulary),
        memory_digest=build_memory_digest(state.memory),
        deceased_warning=build_deceased_warning(state.characters),
        plot_reminder=generate_plot_reminder(chapter_index, state.plot_threads, thresholds),
        chapter_title=chapter_title,
        outline=outline,
        previous_content=previous_content,
        style=style,
    )


def volume_boundary(
    state: StoryState,
    volume_index: int,
    vocabulary: HeuristicVocabulary = DEFAULT_VOCABULARY,
) -> VolumeBoundary:
    volumes = state.volumes
    return build_volume_boundary(
        volumes[volume_index],
        volume_index,
        volumes[volume_index - 1] if volume_index > 0 else None,
        volumes[volume_index + 1] if volume_index + 1 < len(volumes) else None,
        vocabulary,
    )


def build_outline_prompt(
    state: StoryState,
    volume_index: int,
    chapter_count: int,
    start_chapter: int = 1,
    thresholds: HeuristicThresholds = DEFAULT_THRESHOLDS,
    vocabulary: HeuristicVocabulary = DEFAULT_VOCABULARY,
) -> str:
    """Compose the prompt that generates the chapter outlines of a volume."""
    volume = state.volumes[volume_index]
    boundary = volume_boundary(state, volume_index, vocabulary)
    return render_prompt(
        "generate_outlines",
        project_title=state.project.title,
        volume_number=volume_index + 1,
        volume_title=volume.title,
        volume_summary=volume.summary,
        context=build_context(state, volume_index, thresholds, vocabulary),
        deceased_warning=build_deceased_warning(state.characters),
        boundary_prompt=build_boundary_constraint_prompt(boundary),
        chapter_count=chapter_count,
        start_chapter=start_chapter,
    )


class ChapterDraft(BaseModel):
    content: str
    mortality: MortalityReport


def draft_chapter(
    generator: TextGenerator,
    state: StoryState,
    volume_index: int,
    chapter_index: int,
    chapter_title: str,
    outline: str,
    previous_content: str = "",
    style: str = "",
    thresholds: HeuristicThresholds = DEFAULT_THRESHOLDS,
    vocabulary: HeuristicVocabulary = DEFAULT_VOCABULARY,
) -> ChapterDraft:
    """Generate a chapter and check it for deceased characters."""
    prompt = build_chapter_prompt(
        state, volume_index, chapter_index, chapter_title, outline,
        previous_content, style, thresholds, vocabulary,
    )
    content = generator.generate(prompt)
    mortality = detect_deceased_in_content(content, state.characters, thresholds, vocabulary)
    return ChapterDraft(content=content, mortality=mortality)


def character_updates_from_analysis(
    analysis: CharacterAnalysis, chapter_title: str, character_names: Sequence[str]
) -> List[CharacterUpdate]:
    """Translate one chapter's character analysis into archive updates."""
    known = set(character_names)
    updates: Dict[str, CharacterUpdate] = {}

    def entry(name: str) -> CharacterUpdate:
        if name not in updates:
            updates[name] = CharacterUpdate(name=name)
        return updates[name]

    for name in analysis.appearances:
        if name in known:
            entry(name).appearances.append(chapter_title)
    for name in analysis.deaths:
        if name in known:
            update = entry(name)
            update.is_dead = True
            update.death_chapter = chapter_title
    for rel in analysis.relationships:
        if rel.char1 in known:
            entry(rel.char1).relationships.append(
                CharacterRelation(target_name=rel.char2, relation=rel.relation)
            )
        if rel.char2 in known:
            entry(rel.char2).relationships.append(
                CharacterRelation(target_name=rel.char1, relation=rel.relation)
            )
    return list(updates.values())


class ChapterAnalysis(BaseModel):
    """Everything learned from one finished chapter."""

    chapter_index: int
    state: StoryState
    extraction: CodexExtraction
    plot_detection: PlotDetection
    character_analysis: CharacterAnalysis
    codex_conflicts: List[EntityConflict] = Field(default_factory=list)
    mortality: MortalityReport = Field(default_factory=MortalityReport)
    plot_warnings: List[ConsistencyWarning] = Field(default_factory=list)
    potential_deaths: DeathAnalysis = Field(default_factory=DeathAnalysis)

    @property
    def has_issues(self) -> bool:
        return bool(self.codex_conflicts or self.mortality.has_violation or self.plot_warnings)


def analyze_chapter(
    generator: TextGenerator,
    state: StoryState,
    chapter_index: int,
    content: str,
    chapter_title: str = "",
    thresholds: HeuristicThresholds = DEFAULT_THRESHOLDS,
    vocabulary: HeuristicVocabulary = DEFAULT_VOCABULARY,
) -> ChapterAnalysis:
    """
    Fold a finished chapter into the story state.

    Runs codex extraction, plot detection and character analysis, then
    checks the chapter against the state as it was before the chapter: a
    character who dies in this chapter is not a violation of it.

    Args:
        generator: The text generator
        state: The state before the chapter
        chapter_index: Index of the chapter in the whole book
        content: Chapter text
        chapter_title: Title used for character appearances and deaths

    Returns:
        The new state and the advisory findings; ``state`` is left untouched
    """
    chapter_title = chapter_title or f"第{chapter_index}章"
    character_names = [c.name for c in state.characters]

    mortality = detect_deceased_in_content(content, state.characters, thresholds, vocabulary)
    potential_deaths = quick_analyze_deaths(
        content, [c.name for c in get_active_characters(state.characters)], thresholds, vocabulary
    )

    extraction = extract_entities_from_chapter(
        generator, content, chapter_index, state.codex.entities, vocabulary
    )
    codex = merge_extraction(
        state.codex,
        extraction.new_entities,
        extraction.updated_entities,
        extraction.new_relations,
        chapter_index,
    )
    codex_conflicts = detect_entity_conflicts(codex, content, chapter_index, vocabulary)

    detection = detect_plot_threads(generator, content, chapter_index, state.plot_threads)
    threads = apply_plot_detection(state.plot_threads, detection, chapter_index, thresholds)
    plot_warnings = check_plot_consistency(chapter_index, threads, thresholds)

    character_analysis = analyze_chapter_for_characters(
        generator, chapter_title, content, character_names
    )
    characters = apply_character_updates(
        state.characters,
        character_updates_from_analysis(character_analysis, chapter_title, character_names),
    )

    world_state = apply_chapter_to_world_state(
        state.memory.world_state,
        chapter_index,
        deaths=[name for name in character_analysis.deaths if name in character_names],
        plot_threads=threads,
    )
    memory = state.memory.model_copy(
        update={"world_state": world_state, "version": state.memory.version + 1}
    )

    new_state = state.model_copy(
        update={"codex": codex, "plot_threads": threads, "characters": characters, "memory": memory}
    )
    analysis = ChapterAnalysis(
        chapter_index=chapter_index,
        state=new_state,
        extraction=extraction,
        plot_detection=detection,
        character_analysis=character_analysis,
        codex_conflicts=codex_conflicts,
        mortality=mortality,
        plot_warnings=plot_warnings,
        potential_deaths=potential_deaths,
    )
    logger.info(
        f"Analyzed chapter {chapter_index}: {len(codex_conflicts)} codex conflict(s), "
        f"{len(mortality.violations)} mortality violation(s), {len(plot_warnings)} plot warning(s)"
    )
    return analysis


class OutlineGeneration(BaseModel):
    outlines: List[GeneratedOutline] = Field(default_factory=list)
    validation: ValidationResult = Field(default_factory=ValidationResult)
    # Keyed by chapter number; only outlines that bring back a deceased character
    deceased_mentions: Dict[int, MortalityReport] = Field(default_factory=dict)


def generate_volume_outlines(
    generator: TextGenerator,
    state: StoryState,
    volume_index: int,
    chapter_count: int = 10,
    start_chapter: int = 1,
    existing_chapters: Optional[Sequence[Chapter]] = None,
    previous_volume_chapters: Optional[Sequence[Chapter]] = None,
    thresholds: HeuristicThresholds = DEFAULT_THRESHOLDS,
    vocabulary: HeuristicVocabulary = DEFAULT_VOCABULARY,
) -> OutlineGeneration:
    """
    Generate and validate the chapter outlines of a volume.

    Nothing is saved: the caller decides what to do with an invalid result.
    """
    prompt = build_outline_prompt(
        state, volume_index, chapter_count, start_chapter, thresholds, vocabulary
    )
    generated = generator.generate_structured(prompt, GeneratedOutlineList, GeneratedOutlineList())

    boundary = volume_boundary(state, volume_index, vocabulary)
    validation = validate_generated_outlines(
        generated.chapters,
        boundary,
        existing_chapters,
        previous_volume_chapters,
        thresholds,
        vocabulary,
    )
    if not validation.is_valid:
        logger.warning(
            f"Generated outlines for volume {volume_index + 1} violate the volume boundary"
        )

    deceased_mentions: Dict[int, MortalityReport] = {}
    for outline in generated.chapters:
        report = detect_deceased_in_content(
            f"{outline.title} {outline.outline}", state.characters, thresholds, vocabulary
        )
        if report.has_violation:
            deceased_mentions[outline.chapter_number] = report
            names = "、".join(v.name for v in report.violations)
            logger.warning(
                f"Outline of chapter {outline.chapter_number} uses deceased character(s): {names}"
            )

    return OutlineGeneration(
        outlines=generated.chapters, validation=validation, deceased_mentions=deceased_mentions
    )
