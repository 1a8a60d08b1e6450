"""
Chronicle - Character mortality guard.

Keeps dead characters dead. The guard works on three fronts:

1. ``build_deceased_warning`` lists deceased characters in the generation
   prompt so the model is told not to use them.
2. ``detect_deceased_in_content`` scans generated text for their names and
   reports every mention that is not framed as a memory or flashback.
3. ``quick_analyze_deaths`` spots likely deaths in a finished chapter
   without calling the model, so the author can confirm them.

Everything here is a pure read. Callers decide whether a violation blocks
saving, warns the author, or triggers a rewrite.
"""

import re
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from chronicle_lib.config_models import (
    DEFAULT_THRESHOLDS,
    DEFAULT_VOCABULARY,
    HeuristicThresholds,
    HeuristicVocabulary,
)
from chronicle_lib.core.constants import CharacterRoles, CharacterStatus
from chronicle_lib.core.logger import get_logger
from chronicle_lib.models import Character, CharacterRelation, CharacterUpdate

logger = get_logger(__name__)


class DeceasedViolation(BaseModel):
    """Non-flashback mentions of one deceased character."""

    name: str
    death_chapter: Optional[str] = None
    occurrences: int
    contexts: List[str] = Field(default_factory=list)


class MortalityReport(BaseModel):
    has_violation: bool = False
    violations: List[DeceasedViolation] = Field(default_factory=list)


class DeathAnalysis(BaseModel):
    potential_deaths: List[str] = Field(default_factory=list)
    confidence: str = "low"


def get_deceased_characters(characters: Iterable[Character]) -> List[Character]:
    return [c for c in characters if c.status == CharacterStatus.DECEASED]


def get_active_characters(characters: Iterable[Character]) -> List[Character]:
    """Every character that is not deceased, pending ones included."""
    return [c for c in characters if c.status != CharacterStatus.DECEASED]


def build_deceased_warning(characters: Iterable[Character]) -> str:
    """
    Build the "forbidden to appear" prompt block for deceased characters.

    Args:
        characters: All project characters

    Returns:
        The warning block, or an empty string when nobody has died
    """
    deceased = get_deceased_characters(characters)
    if not deceased:
        return ""

    deceased_list = "\n".join(
        f"- {c.name}" + (f"（死于：{c.death_chapter}）" if c.death_chapter else "")
        for c in deceased
    )

    return f"""
【🚨 已故角色名单 - 绝对禁止出场】
以下角色已在之前的剧情中死亡，在后续章节中绝对不能：
1. 让他们说话或出现
2. 提及他们的现在时态活动
3. 安排他们与其他角色互动
4. 以任何形式让他们"复活"

{deceased_list}

⚠️ 可以做的：回忆/闪回、其他角色提及已故者、墓碑/遗物等
❌ 禁止的：已故角色有任何新的动作、对话、出场
"""


def build_character_briefing(characters: List[Character], max_active: int = 8) -> str:
    """Character roster for prompts: living characters first, then the dead."""
    active = get_active_characters(characters)
    deceased = get_deceased_characters(characters)

    briefing = "【角色档案】\n\n"

    if active:
        lines = []
        for c in active[:max_active]:
            role = CharacterRoles.LABELS.get(c.role, CharacterRoles.LABELS[CharacterRoles.SUPPORTING])
            info = f"• {c.name}（{role}）：{c.identity}"
            if c.relationships:
                rels = "、".join(f"{r.target_name}:{r.relation}" for r in c.relationships[:2])
                info += f" [关系：{rels}]"
            lines.append(info)
        briefing += "▶ 存活角色：\n" + "\n".join(lines) + "\n\n"

    if deceased:
        lines = [
            f"• {c.name}（已死亡" + (f"于{c.death_chapter}" if c.death_chapter else "") + "）"
            for c in deceased
        ]
        briefing += "▶ 已故角色（禁止出场）：\n" + "\n".join(lines) + "\n"

    return briefing


def _retrospective_pattern(vocabulary: HeuristicVocabulary) -> Optional[re.Pattern]:
    if not vocabulary.retrospective_markers:
        return None
    return re.compile("|".join(re.escape(m) for m in vocabulary.retrospective_markers))


def detect_deceased_in_content(
    content: str,
    characters: Iterable[Character],
    thresholds: HeuristicThresholds = DEFAULT_THRESHOLDS,
    vocabulary: HeuristicVocabulary = DEFAULT_VOCABULARY,
) -> MortalityReport:
    """
    Find mentions of deceased characters that are not flashbacks.

    Every occurrence of a deceased character's name gets a context window
    of ``thresholds.context_window`` characters on each side. A window that
    contains a retrospective marker (曾经, 回忆, 已故 ...) is exempt.

    Args:
        content: Generated text to check
        characters: All project characters
        thresholds: Window size and number of contexts to keep
        vocabulary: Retrospective markers

    Returns:
        A report with one violation per offending character
    """
    retrospective = _retrospective_pattern(vocabulary)
    window = thresholds.context_window
    violations: List[DeceasedViolation] = []

    for character in get_deceased_characters(characters):
        if not character.name:
            continue

        contexts = []
        for match in re.finditer(re.escape(character.name), content):
            start = max(0, match.start() - window)
            end = min(len(content), match.end() + window)
            context = content[start:end]
            if retrospective is not None and retrospective.search(context):
                continue
            contexts.append(f"...{context}...")

        if contexts:
            violations.append(
                DeceasedViolation(
                    name=character.name,
                    death_chapter=character.death_chapter,
                    occurrences=len(contexts),
                    contexts=contexts[: thresholds.max_violation_contexts],
                )
            )

    if violations:
        logger.warning(
            f"Deceased characters appear in content: {', '.join(v.name for v in violations)}"
        )
    return MortalityReport(has_violation=bool(violations), violations=violations)


def format_violation_warning(violations: List[DeceasedViolation]) -> str:
    """Human-readable summary of mortality violations."""
    if not violations:
        return ""

    warning = "⚠️ 检测到已故角色出场：\n\n"
    for v in violations:
        warning += f"【{v.name}】"
        if v.death_chapter:
            warning += f"（已故于：{v.death_chapter}）"
        warning += f"\n出现 {v.occurrences} 次：\n"
        for ctx in v.contexts:
            warning += f'  "{ctx}"\n'
        warning += "\n"

    warning += "建议：请检查这些内容是否需要修改，确保已故角色不会在现在时态出场。"
    return warning


def quick_analyze_deaths(
    content: str,
    character_names: Iterable[str],
    thresholds: HeuristicThresholds = DEFAULT_THRESHOLDS,
    vocabulary: HeuristicVocabulary = DEFAULT_VOCABULARY,
) -> DeathAnalysis:
    """
    Spot characters that may have died in a chapter without calling the model.

    A name within ``death_keyword_distance`` characters of a death keyword,
    on either side, marks a potential death. Confidence grows with the
    number of distinct death keywords in the chapter.
    """
    distance = thresholds.death_keyword_distance
    potential_deaths: List[str] = []

    for name in character_names:
        if not name or name in potential_deaths:
            continue
        escaped_name = re.escape(name)
        for keyword in vocabulary.death_keywords:
            escaped_keyword = re.escape(keyword)
            pattern = (
                f"{escaped_name}.{{0,{distance}}}{escaped_keyword}"
                f"|{escaped_keyword}.{{0,{distance}}}{escaped_name}"
            )
            if re.search(pattern, content, re.DOTALL):
                potential_deaths.append(name)
                break

    confidence = "low"
    if potential_deaths:
        keyword_count = sum(1 for kw in vocabulary.death_keywords if kw in content)
        if keyword_count >= 3:
            confidence = "high"
        elif keyword_count >= 1:
            confidence = "medium"

    return DeathAnalysis(potential_deaths=potential_deaths, confidence=confidence)


def build_death_confirmation_prompt(potential_deaths: List[str], chapter_title: str) -> str:
    """Ask the author to confirm detected deaths."""
    if not potential_deaths:
        return ""

    names = "\n".join(f"• {name}" for name in potential_deaths)
    return f"""📝 在「{chapter_title}」中检测到可能的角色死亡事件：

{names}

是否将这些角色标记为已故？
（标记后，AI写作时将自动避免让他们出场）"""


def apply_character_updates(
    characters: List[Character], updates: Iterable[CharacterUpdate]
) -> List[Character]:
    """
    Apply archive updates to the character list.

    Appearances are unioned, relationships are upserted by target name, and
    deaths only move forward: a deceased character is never revived here.

    Returns:
        New character instances in the original order
    """
    updates_by_name: Dict[str, CharacterUpdate] = {u.name: u for u in updates}
    result = []

    for character in characters:
        update = updates_by_name.get(character.name)
        if update is None:
            result.append(character)
            continue

        appearances = list(character.appearances)
        for chapter in update.appearances:
            if chapter not in appearances:
                appearances.append(chapter)

        relations = {r.target_name: r.relation for r in character.relationships}
        for rel in update.relationships:
            relations[rel.target_name] = rel.relation

        updated = character.model_copy(
            update={
                "appearances": appearances,
                "relationships": [
                    CharacterRelation(target_name=target, relation=relation)
                    for target, relation in relations.items()
                ],
            }
        )
        if update.is_dead:
            updated = updated.mark_deceased(update.death_chapter or None)
        result.append(updated)

    return result
