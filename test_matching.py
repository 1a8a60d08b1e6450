"""Tests for the similarity tokenizer and the forbidden-event matcher."""

import pytest

from chronicle_lib.analysis.matching import (
    event_keywords,
    keyword_coverage,
    matches_forbidden_event,
    similarity,
    tokenize,
)
from chronicle_lib.config_models import HeuristicThresholds


def test_tokenize_splits_cjk_runs_into_bigrams():
    assert tokenize("主角击败") == {"主角", "角击", "击败"}


def test_tokenize_lowercases_words_and_drops_single_characters():
    assert tokenize("Hello, World a 剑") == {"hello", "world"}


def test_tokenize_empty_text():
    assert tokenize("") == set()


def test_similarity_of_partially_overlapping_sentences():
    score = similarity("主角击败了血魔宗的长老", "主角大战血魔宗获胜")
    assert score == pytest.approx(0.375)
    assert 0 < score < 1


def test_similarity_does_not_drop_when_shared_tokens_are_added():
    base = similarity("主角击败了血魔宗的长老", "主角大战血魔宗获胜")
    more_shared = similarity("主角击败了血魔宗的长老", "主角大战血魔宗获胜长老")
    assert more_shared >= base


def test_similarity_identical_and_empty():
    assert similarity("林风进入秘境", "林风进入秘境") == 1.0
    assert similarity("", "林风") == 0.0
    assert similarity("。。。", "林风") == 0.0


def test_event_keywords_drop_single_characters():
    assert event_keywords("林风，击败、 赵天。a") == ["林风", "击败", "赵天"]
    assert event_keywords("") == []


def test_keyword_coverage():
    assert keyword_coverage("血魔宗长老来袭", "血魔宗，长老，决战") == pytest.approx(2 / 3)
    assert keyword_coverage("任何文本", "") == 0.0


def test_short_event_needs_every_keyword():
    event = "血魔宗，长老"
    assert matches_forbidden_event("血魔宗来袭", [event]) is None
    assert matches_forbidden_event("血魔宗长老现身", [event]) == event


def test_medium_event_matches_with_ratio_and_core_word():
    event = "林风，进入，秘境，发现宝物"
    assert matches_forbidden_event("林风进入秘境", [event]) == event


def test_multi_keyword_event_without_core_word_does_not_match():
    # 4 of 5 keywords present, but the only core action word is missing
    event = "林风，秘境，宝物，长老，发现"
    assert matches_forbidden_event("林风在秘境遇见长老，得到宝物", [event]) is None


LONG_EVENT = "林风，青云宗，后山，禁地，击败，长老，夺宝"


def test_long_event_matches_below_the_medium_ratio_with_core_word():
    # 5 of 7 keywords (about 0.71) including the core word 击败
    assert len(event_keywords(LONG_EVENT)) == 7
    assert matches_forbidden_event("林风在青云宗后山击败长老", [LONG_EVENT]) == LONG_EVENT


def test_long_event_without_core_word_does_not_match():
    # Same 5 of 7 ratio, but 击败 is not among the matched keywords
    assert matches_forbidden_event("林风在青云宗后山禁地遇见长老", [LONG_EVENT]) is None


def test_long_event_below_ratio_does_not_match():
    # 4 of 7 keywords, core word included
    assert matches_forbidden_event("林风在后山击败长老", [LONG_EVENT]) is None


def test_first_matching_event_is_returned():
    events = ["赵天，败北", "林风", "林风进入"]
    assert matches_forbidden_event("林风进入秘境", events) == "林风"


def test_thresholds_are_configurable():
    lenient = HeuristicThresholds(short_event_ratio=0.5)
    assert matches_forbidden_event("血魔宗来袭", ["血魔宗，长老"], lenient) == "血魔宗，长老"
