"""
Chronicle - Context compression.

This module reduces the world setting, character roster and volume outlines
of a long novel to a small digest that fits in every generation prompt. The
size of the digest does not grow with the length of the world setting.
"""

# Standard library imports
import math
from typing import Iterable, List, Protocol, Sequence

# Third party imports
from pydantic import BaseModel

# Local imports
from chronicle_lib.config_models import (
    DEFAULT_THRESHOLDS,
    DEFAULT_VOCABULARY,
    HeuristicThresholds,
    HeuristicVocabulary,
)
from chronicle_lib.core.constants import CharacterStatus
from chronicle_lib.core.logger import get_logger
from chronicle_lib.models import CharacterRelation, Volume

logger = get_logger(__name__)

# Rough size of one full character profile and of the remaining context
CHARACTER_PROFILE_CHARS = 150
BASE_CONTEXT_CHARS = 500
# Chinese text averages about 1.5 characters per token
CHARS_PER_TOKEN = 1.5


class CharacterLike(Protocol):
    """The character fields the compressor reads."""

    name: str
    identity: str
    status: str
    relationships: List[CharacterRelation]


class CompressedContext(BaseModel):
    """Bounded digest of the story so far for one volume."""

    compressed_world_setting: str = ""
    compressed_characters: str = ""
    volume_index: str = ""
    previous_volume_key_points: str = ""
    next_volume_key_points: str = ""

    def total_length(self) -> int:
        return (
            len(self.compressed_world_setting)
            + len(self.compressed_characters)
            + len(self.volume_index)
            + len(self.previous_volume_key_points)
            + len(self.next_volume_key_points)
        )


class CompressionStats(BaseModel):
    original_tokens: int
    compressed_tokens: int
    saved_tokens: int
    saved_percentage: int


def compress_world_setting(
    full_world_setting: str,
    thresholds: HeuristicThresholds = DEFAULT_THRESHOLDS,
    vocabulary: HeuristicVocabulary = DEFAULT_VOCABULARY,
) -> str:
    """
    Keep the lines of a world setting that describe its core rules.

    Settings shorter than the budget are returned unchanged. Otherwise lines
    mentioning a world-setting keyword are collected until the budget is
    exceeded and joined with ``；``. Without any such line the text is
    truncated to the budget with an ellipsis.

    Args:
        full_world_setting: The complete world setting text
        thresholds: Provides the budget and the output cap
        vocabulary: Provides the world-setting keywords

    Returns:
        The compressed setting
    """
    budget = thresholds.world_setting_budget
    if not full_world_setting or len(full_world_setting) < budget:
        return full_world_setting

    core_lines: List[str] = []
    for line in full_world_setting.split("\n"):
        line = line.strip()
        if not line:
            continue
        if any(keyword in line for keyword in vocabulary.world_setting_keywords):
            core_lines.append(line)
            if len("".join(core_lines)) > budget:
                break

    if not core_lines:
        return full_world_setting[:budget] + "..."

    return "；".join(core_lines)[: thresholds.world_setting_max_output]


def _character_label(character: CharacterLike) -> str:
    return f"{character.name}({character.identity})"


def compress_characters(characters: Sequence[CharacterLike], max_count: int = 3) -> str:
    """
    One-line roster of the leading active characters.

    Each entry is ``name(identity)`` followed by ``-target:relation`` for the
    first relationship. Without active characters the first two characters
    are listed regardless of status, so the digest is never empty while
    characters exist.
    """
    active = [c for c in characters if c.status == CharacterStatus.ACTIVE][:max_count]

    if not active:
        return "、".join(_character_label(c) for c in characters[:2])

    entries = []
    for character in active:
        info = _character_label(character)
        if character.relationships:
            main_rel = character.relationships[0]
            info += f"-{main_rel.target_name}:{main_rel.relation}"
        entries.append(info)
    return "、".join(entries)


def build_volume_index(
    volumes: Iterable[Volume], thresholds: HeuristicThresholds = DEFAULT_THRESHOLDS
) -> str:
    """One line per volume: number, title and key points or a summary excerpt."""
    lines = []
    for idx, volume in enumerate(volumes):
        line = f"第{idx + 1}卷《{volume.title}》"
        if volume.key_points:
            line += f": {'、'.join(volume.key_points)}"
        elif volume.summary:
            line += f": {volume.summary[: thresholds.summary_excerpt_length]}"
        lines.append(line)
    return "\n".join(lines)


def build_compressed_context(
    world_setting: str,
    characters: Sequence[CharacterLike],
    all_volumes: Sequence[Volume],
    current_volume_index: int,
    thresholds: HeuristicThresholds = DEFAULT_THRESHOLDS,
    vocabulary: HeuristicVocabulary = DEFAULT_VOCABULARY,
) -> CompressedContext:
    """
    Build the compressed generation context for one volume.

    The neighbouring volumes contribute their key points, or a summary
    excerpt when they have none. There is no previous volume at index 0 and
    no next volume at the last index.

    Args:
        world_setting: The project's full world setting
        characters: Project characters
        all_volumes: Volumes in reading order
        current_volume_index: Zero-based index of the volume being written

    Returns:
        The five digest fields
    """
    excerpt = thresholds.neighbour_excerpt_length

    previous_key_points = ""
    if 0 < current_volume_index <= len(all_volumes):
        prev_vol = all_volumes[current_volume_index - 1]
        if prev_vol.key_points:
            previous_key_points = f"第{current_volume_index}卷已完成：{'、'.join(prev_vol.key_points)}"
        else:
            previous_key_points = f"第{current_volume_index}卷：{prev_vol.summary[:excerpt]}"

    next_key_points = ""
    if 0 <= current_volume_index < len(all_volumes) - 1:
        next_vol = all_volumes[current_volume_index + 1]
        if next_vol.key_points:
            next_key_points = f"第{current_volume_index + 2}卷预告：{'、'.join(next_vol.key_points)}"
        else:
            next_key_points = f"第{current_volume_index + 2}卷：{next_vol.summary[:excerpt]}"

    return CompressedContext(
        compressed_world_setting=compress_world_setting(world_setting, thresholds, vocabulary),
        compressed_characters=compress_characters(characters, 3),
        volume_index=build_volume_index(all_volumes, thresholds),
        previous_volume_key_points=previous_key_points,
        next_volume_key_points=next_key_points,
    )


def calculate_compression_stats(
    original_world_setting: str,
    original_character_count: int,
    context: CompressedContext,
) -> CompressionStats:
    """Estimate the tokens saved by compression."""
    original_tokens = math.ceil(
        (
            len(original_world_setting)
            + original_character_count * CHARACTER_PROFILE_CHARS
            + BASE_CONTEXT_CHARS
        )
        / CHARS_PER_TOKEN
    )
    compressed_tokens = math.ceil(context.total_length() / CHARS_PER_TOKEN)
    saved_tokens = original_tokens - compressed_tokens
    saved_percentage = math.floor(saved_tokens / original_tokens * 100 + 0.5)

    stats = CompressionStats(
        original_tokens=original_tokens,
        compressed_tokens=compressed_tokens,
        saved_tokens=saved_tokens,
        saved_percentage=saved_percentage,
    )
    logger.debug(
        f"Context compression: {original_tokens} -> {compressed_tokens} tokens "
        f"({saved_percentage}% saved)"
    )
    return stats
