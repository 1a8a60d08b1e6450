"""Tests for the layered story memory."""

from chronicle_lib.memory import (
    ChapterSummary,
    CharacterState,
    CoreMemory,
    EmotionPoint,
    FactionRelation,
    LayeredMemory,
    RecentEvent,
    RecentMemory,
    WorldState,
    apply_chapter_to_world_state,
    build_memory_digest,
    calculate_emotional_trend,
    create_empty_layered_memory,
    push_chapter_summary,
    push_emotion_point,
    push_recent_event,
    suggest_next_emotion,
)
from chronicle_lib.plot_threads import create_plot_thread, resolve_thread


def _arc(*intensities, tension=5, hope=0):
    return [
        EmotionPoint(chapter=i + 1, intensity=value, tension=tension, hope=hope)
        for i, value in enumerate(intensities)
    ]


def test_empty_memory():
    memory = create_empty_layered_memory()
    assert memory.version == 1
    assert memory.world_state.character_states == []
    assert memory.recent.last_chapters == []


def test_deaths_are_recorded_once():
    state = WorldState(character_states=[CharacterState(name="林风"), CharacterState(name="老李")])

    after = apply_chapter_to_world_state(state, 5, deaths=["老李", "路人甲"], death_cause="中毒")
    by_name = {s.name: s for s in after.character_states}
    assert not by_name["老李"].is_alive
    assert by_name["老李"].death_chapter == 5
    assert by_name["老李"].death_cause == "中毒"
    assert by_name["路人甲"].death_chapter == 5
    assert by_name["林风"].is_alive
    assert after.last_updated_chapter == 5

    again = apply_chapter_to_world_state(after, 9, deaths=["老李"])
    assert {s.name: s for s in again.character_states}["老李"].death_chapter == 5

    assert all(s.is_alive for s in state.character_states)
    assert state.last_updated_chapter == 0


def test_unresolved_plots_follow_open_threads():
    open_thread = create_plot_thread("玉佩之谜", 1)
    closed = resolve_thread(create_plot_thread("宗门危机", 1), 4)
    state = apply_chapter_to_world_state(WorldState(), 4, plot_threads=[open_thread, closed])
    assert state.unresolved_plots == [open_thread]

    kept = apply_chapter_to_world_state(state, 5)
    assert kept.unresolved_plots == [open_thread]


def test_last_updated_chapter_never_moves_back():
    state = apply_chapter_to_world_state(WorldState(), 8)
    assert apply_chapter_to_world_state(state, 3).last_updated_chapter == 8


def test_recent_windows_are_bounded():
    recent = RecentMemory()
    for i in range(1, 8):
        recent = push_chapter_summary(recent, ChapterSummary(chapter_index=i, title=f"第{i}章"))
    assert [c.chapter_index for c in recent.last_chapters] == [3, 4, 5, 6, 7]

    for i in range(25):
        recent = push_recent_event(recent, RecentEvent(chapter=i, description=f"事件{i}"))
        recent = push_emotion_point(recent, EmotionPoint(chapter=i))
    assert len(recent.recent_events) == 20
    assert recent.recent_events[0].description == "事件5"
    assert len(recent.emotional_arc) == 20


def test_emotional_trend():
    assert calculate_emotional_trend(_arc(5, 6)) == "stable"
    assert calculate_emotional_trend(_arc(2, 4, 6, 8, 10)) == "rising"
    assert calculate_emotional_trend(_arc(10, 8, 6, 4, 2)) == "falling"
    assert calculate_emotional_trend(_arc(2, 5, 2, 5, 2)) == "fluctuating"
    assert calculate_emotional_trend(_arc(5, 5, 6, 5)) == "stable"


def test_emotion_suggestions():
    assert suggest_next_emotion(_arc(9, 9)) is None

    calm_down = suggest_next_emotion(_arc(8, 9, 9))
    assert calm_down.target_intensity == 4
    assert calm_down.target_tension == 3

    heat_up = suggest_next_emotion(_arc(1, 2, 3))
    assert heat_up.target_intensity == 7

    relax = suggest_next_emotion(_arc(5, 5, 5, tension=9))
    assert relax.suggestion == "建议适当放松张力，避免读者疲劳"

    hope = suggest_next_emotion(_arc(5, 5, 5, hope=-6))
    assert hope.reason == "持续绝望氛围，需要转机"

    assert suggest_next_emotion(_arc(5, 6, 5)) is None


def test_memory_digest():
    memory = LayeredMemory(
        core=CoreMemory(power_system="炼气、筑基、金丹", factions=["青云宗", "血魔宗"]),
        world_state=WorldState(
            character_states=[
                CharacterState(name="林风", current_power="筑基", current_location="青云宗"),
                CharacterState(name="老李", is_alive=False, death_chapter=3),
            ],
            faction_relations=[FactionRelation(faction_a="青云宗", faction_b="血魔宗", relation="war")],
            unresolved_plots=[create_plot_thread("玉佩之谜", 1)],
            last_updated_chapter=3,
        ),
        recent=RecentMemory(
            last_chapters=[ChapterSummary(chapter_index=3, title="夜袭", summary="血魔宗夜袭青云宗")],
            emotional_arc=_arc(9, 9, 9),
        ),
    )
    digest = build_memory_digest(memory)
    assert "【核心设定】\n力量体系：炼气、筑基、金丹\n主要势力：青云宗、血魔宗" in digest
    assert "【当前局势】（截至第3章）" in digest
    assert "- 林风：筑基，青云宗" in digest
    assert "- 老李（已死亡，第3章）" in digest
    assert "- 青云宗 与 血魔宗：war" in digest
    assert "- 未解决伏笔：1个" in digest
    assert "- 第3章《夜袭》：血魔宗夜袭青云宗" in digest
    assert "【节奏建议】建议降低情绪强度" in digest

    assert build_memory_digest(create_empty_layered_memory()) == ""
