"""
Chronicle - Consistency guards for long-form novel writing.
"""

# Export public API
from chronicle_lib.llm import TextGenerator
from chronicle_lib.workflow import (
    StoryState,
    analyze_chapter,
    build_chapter_prompt,
    build_outline_prompt,
    draft_chapter,
    generate_volume_outlines,
)

__all__ = [
    "TextGenerator",
    "StoryState",
    "analyze_chapter",
    "build_chapter_prompt",
    "build_outline_prompt",
    "draft_chapter",
    "generate_volume_outlines",
]
