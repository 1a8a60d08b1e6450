"""
Chronicle - Codex entity registry.

The codex keeps every named entity of a story (characters, locations,
items, factions, concepts) with aliases, an append-only attribute log,
relations and the chapters it appeared in. Nothing is ever removed:
conflict detection needs the full history.

All functions are pure. ``merge_extraction`` returns a new ``Codex`` with a
bumped version and leaves its input untouched.
"""

from typing import Dict, Iterable, List, Optional

from chronicle_lib.config_models import DEFAULT_VOCABULARY, HeuristicVocabulary
from chronicle_lib.core.constants import EntityTypes
from chronicle_lib.core.logger import get_logger
from chronicle_lib.models import (
    Codex,
    Entity,
    EntityConflict,
    EntityRelation,
    EntityUpdate,
    RelationCandidate,
    utc_now,
)

logger = get_logger(__name__)


def create_empty_codex() -> Codex:
    """Create an empty codex at version 1."""
    return Codex(entities=[], version=1)


def _union_preserving_order(existing: Iterable[int], new: Iterable[int]) -> List[int]:
    result = list(dict.fromkeys(existing))
    seen = set(result)
    for value in new:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


def merge_extraction(
    codex: Codex,
    new_entities: Iterable[Entity],
    updated_entities: Iterable[EntityUpdate],
    new_relations: Iterable[RelationCandidate],
    chapter_index: int,
) -> Codex:
    """
    Merge the result of a chapter extraction into the codex.

    New entities are appended as given. Updates union the appearance set and
    append attribute entries. A relation is added to its source entity only
    if the same ``(target_id, relation)`` pair is not recorded yet.

    Applying the same extraction twice leaves appearances, attributes and
    relations unchanged the second time; only the version moves.

    Args:
        codex: The current codex
        new_entities: Entities seen for the first time
        updated_entities: Appearance and attribute changes of known entities
        new_relations: Relations between known entities
        chapter_index: The chapter the extraction came from

    Returns:
        A new codex with ``version`` incremented
    """
    entities: List[Entity] = [entity.model_copy(deep=True) for entity in codex.entities]
    index_by_id: Dict[str, int] = {entity.id: i for i, entity in enumerate(entities)}

    for entity in new_entities:
        if entity.id in index_by_id:
            logger.debug(f"Skipping already registered entity {entity.name} ({entity.id})")
            continue
        index_by_id[entity.id] = len(entities)
        entities.append(entity.model_copy(deep=True))

    for update in updated_entities:
        idx = index_by_id.get(update.id)
        if idx is None:
            logger.warning(f"Ignoring update for unknown entity id {update.id}")
            continue
        current = entities[idx]
        attributes = list(current.attributes)
        for attr in update.attributes:
            if attr not in attributes:
                attributes.append(attr)
        entities[idx] = current.model_copy(
            update={
                "appearances": _union_preserving_order(current.appearances, update.appearances),
                "attributes": attributes,
            }
        )

    for rel in new_relations:
        idx = index_by_id.get(rel.source_id)
        if idx is None:
            continue
        source = entities[idx]
        already_known = any(
            existing.target_id == rel.target_id and existing.relation == rel.relation
            for existing in source.relations
        )
        if not already_known:
            entities[idx] = source.model_copy(
                update={
                    "relations": source.relations
                    + [EntityRelation(target_id=rel.target_id, relation=rel.relation, since=chapter_index)]
                }
            )

    logger.debug(f"Codex merged chapter {chapter_index}: {len(entities)} entities")
    return Codex(entities=entities, version=codex.version + 1, last_updated=utc_now())


def get_entity(codex: Codex, entity_id: str) -> Optional[Entity]:
    """Look up an entity by id."""
    for entity in codex.entities:
        if entity.id == entity_id:
            return entity
    return None


def find_entity_by_name(entities: Iterable[Entity], name: str) -> Optional[Entity]:
    """Find the first entity whose name or alias equals ``name``."""
    for entity in entities:
        if entity.matches_name(name):
            return entity
    return None


def search_entities(
    codex: Codex, query: str, entity_type: Optional[str] = None
) -> List[Entity]:
    """
    Search entities by case-insensitive substring.

    Args:
        codex: The codex to search
        query: Substring to look for in name, aliases or description
        entity_type: Optional type filter

    Returns:
        Matching entities in registry order
    """
    lowered = query.lower()
    results = []
    for entity in codex.entities:
        if entity_type and entity.type != entity_type:
            continue
        if (
            lowered in entity.name.lower()
            or any(lowered in alias.lower() for alias in entity.aliases)
            or lowered in entity.description.lower()
        ):
            results.append(entity)
    return results


def get_entities_in_chapter(codex: Codex, chapter_index: int) -> List[Entity]:
    return [entity for entity in codex.entities if chapter_index in entity.appearances]


def _death_chapter(entity: Entity, vocabulary: HeuristicVocabulary) -> Optional[int]:
    """Chapter of the entity's death, if its latest status says dead."""
    status = entity.latest_attribute(vocabulary.death_status_key)
    if status is None or status.value != vocabulary.death_status_value:
        return None
    return status.chapter


def detect_entity_conflicts(
    codex: Codex,
    chapter_content: str,
    chapter_index: int,
    vocabulary: HeuristicVocabulary = DEFAULT_VOCABULARY,
) -> List[EntityConflict]:
    """
    Flag dead characters that are mentioned in a later chapter.

    A character counts as dead when its latest status attribute is the death
    value; the chapter of that attribute is the death chapter. Each name or
    alias found in the content produces one conflict.

    Args:
        codex: The current codex
        chapter_content: Text of the chapter being checked
        chapter_index: Index of that chapter
        vocabulary: Provides the status key and death value

    Returns:
        Conflicts with a suggestion to check for a flashback
    """
    conflicts: List[EntityConflict] = []

    for entity in codex.entities:
        if entity.type != EntityTypes.CHARACTER:
            continue
        death_chapter = _death_chapter(entity, vocabulary)
        if death_chapter is None or chapter_index <= death_chapter:
            continue

        for name in entity.names():
            if name in chapter_content:
                conflicts.append(
                    EntityConflict(
                        entity=entity.name,
                        issue=f'角色"{entity.name}"已在第{death_chapter}章死亡，但在本章内容中出现（"{name}"）',
                        suggestion="请检查是否为回忆场景，若非回忆请移除该角色的出场",
                    )
                )

    if conflicts:
        logger.info(f"Chapter {chapter_index}: {len(conflicts)} codex conflict(s)")
    return conflicts


def _format_latest_attributes(entity: Entity, separator: str) -> str:
    return "，".join(
        f"{key}{separator}{attr.value}" for key, attr in entity.latest_attributes().items()
    )


def get_entity_info(codex: Codex, entity_id: str) -> Optional[str]:
    """Render everything known about one entity."""
    entity = get_entity(codex, entity_id)
    if entity is None:
        return None

    parts = [f"【{entity.name}】({entity.type})"]
    if entity.aliases:
        parts.append(f"别名：{'、'.join(entity.aliases)}")
    parts.append(f"简介：{entity.description}")
    parts.append(f"首次出现：第{entity.first_appearance}章")
    parts.append(f"出场次数：{len(entity.appearances)}章")

    latest = _format_latest_attributes(entity, "=")
    if latest:
        parts.append(f"当前状态：{latest}")

    related = _format_relations(codex, entity, "（{relation}）")
    if related:
        parts.append(f"关联：{'、'.join(related)}")

    return "\n".join(parts)


def _format_relations(codex: Codex, entity: Entity, pattern: str) -> List[str]:
    names = {other.id: other.name for other in codex.entities}
    return [
        names[rel.target_id] + pattern.format(relation=rel.relation)
        for rel in entity.relations
        if rel.target_id in names
    ]


def generate_entity_brief(codex: Codex, entity_names: Iterable[str]) -> str:
    """One line per named entity, for writing prompts."""
    briefs = []
    for name in entity_names:
        entity = find_entity_by_name(codex.entities, name)
        if entity is None:
            continue
        latest = _format_latest_attributes(entity, ":")
        briefs.append(f"【{entity.name}】{entity.description}{f'（{latest}）' if latest else ''}")
    return "\n".join(briefs)


def generate_codex_report(codex: Codex) -> str:
    """Markdown report of the codex grouped by entity type."""
    by_type: Dict[str, List[Entity]] = {}
    for entity in codex.entities:
        by_type.setdefault(entity.type, []).append(entity)

    lines = [
        "# Codex 索引报告",
        "",
        f"总实体数：{len(codex.entities)}",
        f"最后更新：{codex.last_updated}",
        "",
    ]

    for entity_type, entities in by_type.items():
        lines.append(f"## {EntityTypes.LABELS.get(entity_type, entity_type)}（{len(entities)}）")
        lines.append("")
        for entity in entities:
            lines.append(f"### {entity.name}")
            if entity.aliases:
                lines.append(f"- 别名：{'、'.join(entity.aliases)}")
            lines.append(f"- {entity.description}")
            lines.append(f"- 首次出现：第{entity.first_appearance}章")
            lines.append(f"- 出场：{len(entity.appearances)}章")
            related = _format_relations(codex, entity, "({relation})")
            if related:
                lines.append(f"- 关联：{'、'.join(related)}")
            lines.append("")

    return "\n".join(lines)
