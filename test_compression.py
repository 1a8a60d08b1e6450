"""Tests for context compression."""

from chronicle_lib.compression import (
    CompressedContext,
    build_compressed_context,
    build_volume_index,
    calculate_compression_stats,
    compress_characters,
    compress_world_setting,
)
from chronicle_lib.models import Character, CharacterRelation, Volume

SETTING_LINE = "修炼境界分为炼气、筑基、金丹、元婴四个大境界，每个境界九层。"


def test_short_setting_is_returned_unchanged():
    assert compress_world_setting("天元大陆") == "天元大陆"
    assert compress_world_setting("") == ""


def test_setting_without_keywords_is_truncated():
    text = "山" * 300
    assert compress_world_setting(text) == "山" * 200 + "..."


def test_compressed_setting_stays_bounded():
    exactly_200 = (SETTING_LINE + "\n") * 10
    exactly_200 = exactly_200[:200]
    huge = (SETTING_LINE + "\n") * 2000
    assert len(huge) >= 50000

    for text in (exactly_200, huge):
        compressed = compress_world_setting(text)
        assert 0 < len(compressed) <= 260


def test_keyword_lines_are_joined():
    text = "\n".join(["序章", "世界由九州组成" + "。" * 120, "闲话" * 40, "修炼需要灵石" + "。" * 120])
    compressed = compress_world_setting(text)
    assert compressed.startswith("世界由九州组成")
    assert "；修炼需要灵石" in compressed
    assert "闲话" not in compressed
    assert len(compressed) <= 250


def test_characters_are_compressed_to_active_leads():
    characters = [
        Character(
            name="林风",
            identity="青云宗弟子",
            relationships=[CharacterRelation(target_name="苏瑶", relation="师姐")],
        ),
        Character(name="老李", identity="杂役", status="deceased"),
        Character(name="苏瑶", identity="师姐"),
        Character(name="赵天", identity="宿敌"),
        Character(name="云长老", identity="长老"),
    ]
    assert compress_characters(characters) == "林风(青云宗弟子)-苏瑶:师姐、苏瑶(师姐)、赵天(宿敌)"


def test_characters_fall_back_to_first_two():
    characters = [
        Character(name="老李", identity="杂役", status="deceased"),
        Character(name="小刚", identity="学徒", status="pending"),
        Character(name="阿福", identity="管家", status="deceased"),
    ]
    assert compress_characters(characters) == "老李(杂役)、小刚(学徒)"
    assert compress_characters([]) == ""


def _volumes():
    return [
        Volume(title="宗门风云", summary="林风拜入青云宗。", key_points=["拜入青云宗", "宗门大比夺魁"]),
        Volume(title="秘境探险", summary="林风进入天元秘境" + "，历经磨难" * 30),
        Volume(title="魔宗来袭", summary="血魔宗大举进攻。", key_points=["血魔宗进攻"]),
    ]


def test_volume_index():
    index = build_volume_index(_volumes())
    lines = index.split("\n")
    assert lines[0] == "第1卷《宗门风云》: 拜入青云宗、宗门大比夺魁"
    assert lines[1].startswith("第2卷《秘境探险》: 林风进入天元秘境")
    assert len(lines[1]) == len("第2卷《秘境探险》: ") + 50
    assert lines[2] == "第3卷《魔宗来袭》: 血魔宗进攻"


def test_context_neighbours():
    volumes = _volumes()

    first = build_compressed_context("", [], volumes, 0)
    assert first.previous_volume_key_points == ""
    assert first.next_volume_key_points.startswith("第2卷：林风进入天元秘境")
    assert len(first.next_volume_key_points) == len("第2卷：") + 100

    middle = build_compressed_context("", [], volumes, 1)
    assert middle.previous_volume_key_points == "第1卷已完成：拜入青云宗、宗门大比夺魁"
    assert middle.next_volume_key_points == "第3卷预告：血魔宗进攻"

    last = build_compressed_context("", [], volumes, 2)
    assert last.next_volume_key_points == ""
    assert last.previous_volume_key_points.startswith("第2卷：")


def test_compression_stats():
    stats = calculate_compression_stats("", 0, CompressedContext())
    assert stats.original_tokens == 334
    assert stats.compressed_tokens == 0
    assert stats.saved_tokens == 334
    assert stats.saved_percentage == 100

    context = CompressedContext(compressed_world_setting="修" * 150)
    stats = calculate_compression_stats("修" * 1000, 4, context)
    assert stats.original_tokens == 1400
    assert stats.compressed_tokens == 100
    assert stats.saved_percentage == 93
