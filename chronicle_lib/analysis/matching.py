"""Text similarity and keyword matching primitives.

Pure functions with no I/O. Chinese text has no word boundaries, so the
similarity tokenizer turns each run of CJK characters into overlapping
character bigrams and keeps other runs as lowercase words. Event keyword
matching keeps the event's own punctuation-delimited phrases and looks
them up as substrings of the candidate text.
"""

import re
from typing import Iterable, List, Optional, Set

from chronicle_lib.config_models import (
    DEFAULT_THRESHOLDS,
    DEFAULT_VOCABULARY,
    HeuristicThresholds,
    HeuristicVocabulary,
)
from chronicle_lib.core.constants import EVENT_KEYWORD_SEPARATORS
from chronicle_lib.core.logger import get_logger

logger = get_logger(__name__)

_CJK_CHARS = r"\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff"
_TOKEN_PATTERN = re.compile(rf"([{_CJK_CHARS}]+)|([^\W_{_CJK_CHARS}]+)")


def _cjk_bigrams(run: str) -> List[str]:
    if len(run) < 2:
        return []
    return [run[i:i + 2] for i in range(len(run) - 1)]


def tokenize(text: str) -> Set[str]:
    """Split text into a set of comparison tokens.

    Punctuation and whitespace separate tokens. CJK runs become character
    bigrams, other runs become lowercase words. Single-character tokens are
    dropped.
    """
    if not text:
        return set()

    tokens: Set[str] = set()
    for cjk_run, word in _TOKEN_PATTERN.findall(text):
        if cjk_run:
            tokens.update(_cjk_bigrams(cjk_run))
        elif len(word) > 1:
            tokens.add(word.lower())
    return tokens


def similarity(text_a: str, text_b: str) -> float:
    """Token-set overlap ``|A ∩ B| / min(|A|, |B|)``.

    Returns 0.0 when either text has no tokens.
    """
    tokens_a = tokenize(text_a)
    tokens_b = tokenize(text_b)
    if not tokens_a or not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / min(len(tokens_a), len(tokens_b))


def event_keywords(event: str) -> List[str]:
    """Keyword phrases of an event description, in order."""
    if not event:
        return []
    return [word for word in re.split(EVENT_KEYWORD_SEPARATORS, event) if len(word) > 1]


def keyword_coverage(text: str, event: str) -> float:
    """Fraction of the event's keywords found in ``text``.

    Returns 0.0 for events without keywords.
    """
    keywords = event_keywords(event)
    if not keywords:
        return 0.0
    lowered = text.lower()
    matched = sum(1 for keyword in keywords if keyword.lower() in lowered)
    return matched / len(keywords)


def _contains_core_word(keyword: str, core_words: Iterable[str]) -> bool:
    """A keyword anchors a match when it is, or contains, a core action word."""
    return any(word in keyword for word in core_words)


def _required_ratio(keyword_count: int, thresholds: HeuristicThresholds) -> tuple:
    """Ratio and core-word requirement for an event of the given size."""
    if keyword_count <= thresholds.short_event_max_keywords:
        return thresholds.short_event_ratio, False
    if keyword_count <= thresholds.medium_event_max_keywords:
        return thresholds.medium_event_ratio, True
    return thresholds.long_event_ratio, True


def matches_forbidden_event(
    candidate_text: str,
    event_descriptions: Iterable[str],
    thresholds: HeuristicThresholds = DEFAULT_THRESHOLDS,
    vocabulary: HeuristicVocabulary = DEFAULT_VOCABULARY,
) -> Optional[str]:
    """Return the first event the candidate text appears to contain.

    Short events need every keyword present. Longer events need a high
    keyword ratio and at least one matched core action word, because
    partial overlap with long descriptions happens by chance.

    Args:
        candidate_text: Text to check, usually a chapter title and outline
        event_descriptions: Events that must not appear, in priority order
        thresholds: Tier sizes and ratios
        vocabulary: Provides the core action words

    Returns:
        The matching event description, or None
    """
    lowered = candidate_text.lower()
    core_words = vocabulary.core_action_words

    for event in event_descriptions:
        keywords = event_keywords(event)
        if not keywords:
            continue

        match_count = 0
        core_word_matched = False
        for keyword in keywords:
            if keyword.lower() in lowered:
                match_count += 1
                if _contains_core_word(keyword, core_words):
                    core_word_matched = True

        match_ratio = match_count / len(keywords)
        required_ratio, needs_core_word = _required_ratio(len(keywords), thresholds)

        if match_ratio >= required_ratio and (core_word_matched or not needs_core_word):
            logger.debug(f"Event matched ({match_count}/{len(keywords)} keywords): {event}")
            return event

    return None
