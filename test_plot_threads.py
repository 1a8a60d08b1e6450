"""Tests for plot thread tracking."""

import pytest

from chronicle_lib.core.exceptions import PlotThreadError
from chronicle_lib.models import (
    DetectedHint,
    DetectedThread,
    PlotDetection,
    PlotHint,
    ResolutionRange,
)
from chronicle_lib.plot_threads import (
    PlotThreadRegistry,
    abandon_thread,
    add_hint,
    apply_plot_detection,
    check_plot_consistency,
    create_plot_thread,
    generate_plot_reminder,
    generate_plot_report,
    get_plot_resolution_suggestions,
    resolve_thread,
    update_plot_thread,
)


def _thread(importance="major"):
    return create_plot_thread(
        "神秘玉佩的来历",
        planted_chapter=10,
        importance=importance,
        expected_resolution_range=ResolutionRange(min=15, max=40),
    )


def test_default_resolution_range():
    thread = create_plot_thread("血魔宗的阴谋", planted_chapter=10)
    assert thread.status == "active"
    assert thread.expected_resolution_range == ResolutionRange(min=15, max=40)

    short = create_plot_thread("小事", planted_chapter=10, expected_chapters_to_resolve=3)
    assert short.expected_resolution_range == ResolutionRange(min=15, max=15)


def test_resolution_range_rejects_inverted_bounds():
    with pytest.raises(ValueError):
        ResolutionRange(min=20, max=10)


def test_hint_resolve_and_abandon():
    thread = add_hint(_thread(), 12, "玉佩微微发光")
    assert thread.status == "hinted"
    assert thread.hints == [PlotHint(chapter=12, content="玉佩微微发光")]

    resolved = resolve_thread(thread, 30)
    assert resolved.status == "resolved"
    assert resolved.resolved_chapter == 30

    assert abandon_thread(_thread()).status == "abandoned"


def test_terminal_threads_do_not_change():
    resolved = resolve_thread(_thread(), 30)
    assert add_hint(resolved, 31, "又一次暗示") == resolved
    assert resolve_thread(resolved, 35).resolved_chapter == 30
    assert abandon_thread(resolved).status == "resolved"

    abandoned = abandon_thread(_thread())
    assert resolve_thread(abandoned, 30).status == "abandoned"
    assert add_hint(abandoned, 30, "暗示").hints == []


def test_update_applies_hint_then_resolution():
    thread = update_plot_thread(_thread(), add_hint=PlotHint(chapter=20, content="线索"), resolve=25)
    assert thread.status == "resolved"
    assert len(thread.hints) == 1
    assert update_plot_thread(thread, abandon=True).status == "resolved"


def test_updates_do_not_mutate_the_input():
    original = _thread()
    add_hint(original, 12, "暗示")
    assert original.hints == []
    assert original.status == "active"


def test_resolution_suggestions_scenarios():
    thread = _thread()

    at_38 = get_plot_resolution_suggestions(38, [thread])
    assert at_38.must_resolve == [thread]
    assert at_38.should_hint == [] and at_38.can_resolve == []

    at_20 = get_plot_resolution_suggestions(20, [thread])
    assert at_20.should_hint == [thread]
    assert at_20.must_resolve == [] and at_20.can_resolve == []

    hinted = add_hint(thread, 25, "玉佩上的纹路")
    at_30 = get_plot_resolution_suggestions(30, [hinted])
    assert at_30.can_resolve == [hinted]
    assert at_30.must_resolve == [] and at_30.should_hint == []


def test_suggestions_ignore_terminal_and_out_of_window_threads():
    assert get_plot_resolution_suggestions(38, [resolve_thread(_thread(), 20)]).must_resolve == []
    early = get_plot_resolution_suggestions(12, [_thread()])
    assert early.must_resolve == [] and early.should_hint == [] and early.can_resolve == []


def test_consistency_overdue_thread():
    warnings = check_plot_consistency(41, [_thread()])
    assert len(warnings) == 1
    assert warnings[0].type == "timeline_conflict"
    assert "已超过预期揭晓时间（预期在第40章前揭晓）" in warnings[0].description


def test_consistency_imminent_thread():
    warnings = check_plot_consistency(36, [_thread()])
    assert [w.description for w in warnings] == ['伏笔"神秘玉佩的来历"即将到期，剩余4章']


def test_consistency_neglected_critical_thread():
    warnings = check_plot_consistency(25, [_thread("critical")])
    assert len(warnings) == 1
    assert "已埋设15章，但无任何暗示" in warnings[0].description

    hinted = add_hint(_thread("critical"), 12, "暗示")
    assert check_plot_consistency(25, [hinted]) == []


def test_consistency_ignores_terminal_threads():
    assert check_plot_consistency(60, [abandon_thread(_thread())]) == []


def test_plot_reminder_sections():
    thread = _thread()
    reminder = generate_plot_reminder(38, [thread])
    assert reminder == "【必须揭晓的伏笔】\n- 神秘玉佩的来历（埋设于第10章，即将到期）"

    assert "已超期" in generate_plot_reminder(45, [thread])
    assert generate_plot_reminder(20, [thread]) == (
        "【建议添加暗示的伏笔】\n- 神秘玉佩的来历（预期在第15-40章揭晓）"
    )
    assert generate_plot_reminder(5, [thread]) == ""


def test_plot_report():
    threads = [_thread("critical"), resolve_thread(_thread(), 30)]
    report = generate_plot_report(threads)
    assert report.startswith("## 伏笔追踪报告")
    assert "- 活跃伏笔: 1" in report
    assert "- 已揭晓: 1" in report
    assert "- [关键] 神秘玉佩的来历" in report
    assert "- 揭晓于: 第30章" in report

    quiet = generate_plot_report([resolve_thread(_thread(), 30)])
    assert "### 重要伏笔（未揭晓）\n无" in quiet


def test_registry_applies_detection():
    existing = _thread()
    registry = PlotThreadRegistry([existing])
    detection = PlotDetection(
        new_threads=[
            DetectedThread(description="黑衣人的身份", importance="critical"),
            DetectedThread(description=""),
        ],
        hints=[
            DetectedHint(thread_id=existing.id, hint="玉佩发光"),
            DetectedHint(thread_id="plot_missing", hint="无效"),
        ],
        resolved=["plot_missing"],
    )

    created = registry.apply_detection(detection, 12)

    assert [t.description for t in created] == ["黑衣人的身份"]
    assert created[0].planted_chapter == 12
    assert created[0].expected_resolution_range == ResolutionRange(min=17, max=42)
    assert registry.get_thread(existing.id).status == "hinted"
    assert len(registry.list_threads()) == 2
    assert len(registry.list_open_threads()) == 2


def test_registry_rejects_unknown_ids():
    registry = PlotThreadRegistry()
    with pytest.raises(PlotThreadError) as exc_info:
        registry.resolve("plot_missing", 3)
    assert exc_info.value.thread_id == "plot_missing"


def test_apply_plot_detection_resolves_threads():
    existing = _thread()
    detection = PlotDetection.model_validate({"resolved": [existing.id]})
    threads = apply_plot_detection([existing], detection, 33)
    assert threads[0].status == "resolved"
    assert threads[0].resolved_chapter == 33
    assert existing.status == "active"


def test_detection_payload_accepts_camel_case_and_unknown_importance():
    detection = PlotDetection.model_validate(
        {
            "newThreads": [
                {
                    "description": "古老预言",
                    "importance": "huge",
                    "relatedCharacters": ["林风"],
                    "expectedChaptersToResolve": 12,
                }
            ],
            "hints": [{"threadId": "plot_1", "hint": "线索"}],
        }
    )
    thread = detection.new_threads[0]
    assert thread.importance == "major"
    assert thread.related_characters == ["林风"]
    assert thread.expected_chapters_to_resolve == 12
    assert detection.hints[0].thread_id == "plot_1"
