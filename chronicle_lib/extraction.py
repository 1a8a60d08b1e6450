"""
Chronicle - LLM-backed chapter analysis.

This module turns chapter text into the structured candidates the
consistency engine consumes: codex entities, plot thread changes, character
appearances and deaths, and volume key points. Every call renders a prompt
template, asks the text generator and parses the JSON reply tolerantly.
An unreadable reply yields an empty result; service errors propagate.
"""

# Standard library imports
import re
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Sequence

# Third party imports
from pydantic import BaseModel, Field, field_validator

# Local imports
from chronicle_lib.codex import find_entity_by_name
from chronicle_lib.config_models import DEFAULT_VOCABULARY, HeuristicVocabulary
from chronicle_lib.core.constants import SENTENCE_SEPARATORS, EntityTypes
from chronicle_lib.core.exceptions import StructuredOutputError
from chronicle_lib.core.logger import get_logger, log_function_call
from chronicle_lib.llm import TextGenerator
from chronicle_lib.models import (
    LLM_PAYLOAD_CONFIG,
    CharacterAnalysis,
    CharacterRelation,
    CharacterUpdate,
    CodexExtraction,
    Entity,
    EntityAttribute,
    EntityUpdate,
    PlotDetection,
    PlotThread,
    RelationCandidate,
    Volume,
    VolumeKeyPoints,
)
from chronicle_lib.prompts import render_prompt
from chronicle_lib.utils.parser import parse_json_payload

logger = get_logger(__name__)

# Chapter text sent to analysis prompts is cut to this many characters
ANALYSIS_CONTENT_LIMIT = 3000
MIN_SUMMARY_LENGTH = 50
FALLBACK_KEY_POINTS = 3
FALLBACK_KEY_POINT_LENGTH = 20

ProgressCallback = Callable[[int, int], None]


class ChapterText(Protocol):
    title: str
    content: str


# ==================== Entity extraction payload ====================


class ExtractedEntity(BaseModel):
    model_config = LLM_PAYLOAD_CONFIG

    name: str
    type: str = EntityTypes.CONCEPT
    aliases: List[str] = Field(default_factory=list)
    description: str = ""

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v):
        """Unknown entity types are filed as concepts."""
        v = str(v or "").strip().lower()
        return v if v in EntityTypes.ALL else EntityTypes.CONCEPT


class AttributeChange(BaseModel):
    key: str
    value: str


class ExtractedEntityUpdate(BaseModel):
    model_config = LLM_PAYLOAD_CONFIG

    name: str
    attribute_changes: List[AttributeChange] = Field(default_factory=list)


class ExtractedRelation(BaseModel):
    source: str
    target: str
    relation: str


class EntityExtractionPayload(BaseModel):
    model_config = LLM_PAYLOAD_CONFIG

    new_entities: List[ExtractedEntity] = Field(default_factory=list)
    entity_updates: List[ExtractedEntityUpdate] = Field(default_factory=list)
    new_relations: List[ExtractedRelation] = Field(default_factory=list)


# ==================== Codex ====================


@log_function_call(logger)
def extract_entities_from_chapter(
    generator: TextGenerator,
    content: str,
    chapter_index: int,
    existing_entities: Sequence[Entity],
    vocabulary: HeuristicVocabulary = DEFAULT_VOCABULARY,
) -> CodexExtraction:
    """
    Extract codex candidates from a chapter.

    New entities get fresh ids and the chapter as first appearance. Updates
    and relations refer to entities by name or alias; names that match no
    known or newly found entity are dropped.

    Args:
        generator: The text generator
        content: Chapter text
        chapter_index: Index of the chapter
        existing_entities: The codex entities known so far
        vocabulary: Provides the death status attribute shown to the model

    Returns:
        Merge-ready extraction, empty if the reply cannot be read
    """
    prompt = render_prompt(
        "extract_entities",
        content=content[:ANALYSIS_CONTENT_LIMIT],
        existing_names="、".join(e.name for e in existing_entities),
        death_status_key=vocabulary.death_status_key,
        death_status_value=vocabulary.death_status_value,
    )
    payload = generator.generate_structured(prompt, EntityExtractionPayload, EntityExtractionPayload())

    new_entities = []
    for extracted in payload.new_entities:
        if not extracted.name or find_entity_by_name(existing_entities, extracted.name):
            continue
        new_entities.append(
            Entity(
                name=extracted.name,
                type=extracted.type,
                aliases=extracted.aliases,
                description=extracted.description,
                first_appearance=chapter_index,
                appearances=[chapter_index],
            )
        )

    updates = []
    for update in payload.entity_updates:
        existing = find_entity_by_name(existing_entities, update.name)
        if existing is None:
            logger.debug(f"Dropping update for unknown entity '{update.name}'")
            continue
        updates.append(
            EntityUpdate(
                id=existing.id,
                appearances=[chapter_index],
                attributes=[
                    EntityAttribute(chapter=chapter_index, key=change.key, value=change.value)
                    for change in update.attribute_changes
                ],
            )
        )

    known = list(existing_entities) + new_entities
    relations = []
    for rel in payload.new_relations:
        source = find_entity_by_name(known, rel.source)
        target = find_entity_by_name(known, rel.target)
        if source is None or target is None:
            continue
        relations.append(
            RelationCandidate(source_id=source.id, target_id=target.id, relation=rel.relation)
        )

    logger.info(
        f"Chapter {chapter_index}: {len(new_entities)} new entities, "
        f"{len(updates)} updates, {len(relations)} relations"
    )
    return CodexExtraction(new_entities=new_entities, updated_entities=updates, new_relations=relations)


# ==================== Plot threads ====================


@log_function_call(logger)
def detect_plot_threads(
    generator: TextGenerator,
    content: str,
    chapter_index: int,
    existing_threads: Iterable[PlotThread],
) -> PlotDetection:
    """Ask the model for new, hinted and resolved plot threads in a chapter."""
    prompt = render_prompt(
        "detect_plot_threads",
        content=content[:ANALYSIS_CONTENT_LIMIT],
        open_threads=[t for t in existing_threads if t.is_open],
    )
    detection = generator.generate_structured(prompt, PlotDetection, PlotDetection())
    logger.debug(
        f"Chapter {chapter_index}: detected {len(detection.new_threads)} new plot thread(s)"
    )
    return detection


# ==================== Characters ====================


def analyze_chapter_for_characters(
    generator: TextGenerator,
    chapter_title: str,
    content: str,
    character_names: List[str],
) -> CharacterAnalysis:
    """Find which known characters appear, die or form relationships in a chapter."""
    prompt = render_prompt(
        "analyze_characters",
        chapter_title=chapter_title,
        character_names=character_names,
        content=content[:ANALYSIS_CONTENT_LIMIT],
    )
    return generator.generate_structured(prompt, CharacterAnalysis, CharacterAnalysis())


def analyze_all_chapters_for_archive(
    generator: TextGenerator,
    chapters: Sequence[ChapterText],
    character_names: List[str],
    on_progress: Optional[ProgressCallback] = None,
) -> List[CharacterUpdate]:
    """
    Rebuild the character archive from every chapter.

    Chapters are analysed one at a time with a pause between calls. Empty
    chapters are skipped. The first chapter reporting a death is the death
    chapter; relationships are recorded for both characters; appearances
    are chapter titles.

    Args:
        generator: The text generator
        chapters: Chapters in reading order
        character_names: Names of the known characters
        on_progress: Called with ``(current, total)`` before each chapter

    Returns:
        One update per known character
    """
    archive: Dict[str, CharacterUpdate] = {name: CharacterUpdate(name=name) for name in character_names}
    relations: Dict[str, Dict[str, str]] = {name: {} for name in character_names}
    total = len(chapters)
    called = False

    for i, chapter in enumerate(chapters):
        if on_progress:
            on_progress(i + 1, total)
        if not chapter.content or not chapter.content.strip():
            continue

        if called:
            generator.pause_between_calls()
        result = analyze_chapter_for_characters(
            generator, chapter.title, chapter.content, character_names
        )
        called = True

        for name in result.appearances:
            entry = archive.get(name)
            if entry is not None and chapter.title not in entry.appearances:
                entry.appearances.append(chapter.title)

        for name in result.deaths:
            entry = archive.get(name)
            if entry is not None and not entry.is_dead:
                entry.is_dead = True
                entry.death_chapter = chapter.title

        for rel in result.relationships:
            if rel.char1 in relations:
                relations[rel.char1][rel.char2] = rel.relation
            if rel.char2 in relations:
                relations[rel.char2][rel.char1] = rel.relation

    for name, entry in archive.items():
        entry.relationships = [
            CharacterRelation(target_name=target, relation=relation)
            for target, relation in relations[name].items()
        ]

    logger.info(f"Archive analysis finished for {total} chapter(s), {len(archive)} character(s)")
    return list(archive.values())


# ==================== Volume key points ====================


def _fallback_key_points(summary: str) -> List[str]:
    sentences = [s.strip() for s in re.split(SENTENCE_SEPARATORS, summary) if s.strip()]
    return [s[:FALLBACK_KEY_POINT_LENGTH] for s in sentences[:FALLBACK_KEY_POINTS]]


def extract_volume_key_points(
    generator: TextGenerator,
    volume_title: str,
    volume_summary: str,
    volume_index: int,
) -> List[str]:
    """
    Extract three to five key points from a volume summary.

    Summaries shorter than 50 characters yield no key points. When the reply
    cannot be read, the first three sentences of the summary, cut to 20
    characters, are used instead.
    """
    if not volume_summary or len(volume_summary) < MIN_SUMMARY_LENGTH:
        return []

    prompt = render_prompt(
        "extract_volume_key_points",
        volume_number=volume_index + 1,
        volume_title=volume_title,
        volume_summary=volume_summary,
    )
    response = generator.generate(prompt)
    try:
        return parse_json_payload(response, VolumeKeyPoints).key_points
    except StructuredOutputError as e:
        logger.warning(f"Key point extraction for volume {volume_index + 1} unreadable: {e}")
        return _fallback_key_points(volume_summary)


def extract_all_volume_key_points(
    generator: TextGenerator,
    volumes: Sequence[Volume],
    on_progress: Optional[ProgressCallback] = None,
) -> List[Volume]:
    """Fill in missing key points volume by volume; volumes that have them are kept."""
    updated = []
    called = False

    for i, volume in enumerate(volumes):
        if on_progress:
            on_progress(i + 1, len(volumes))
        if volume.key_points:
            updated.append(volume)
            continue

        if called:
            generator.pause_between_calls()
        key_points = extract_volume_key_points(generator, volume.title, volume.summary, i)
        called = True
        updated.append(volume.model_copy(update={"key_points": key_points}))

    return updated
