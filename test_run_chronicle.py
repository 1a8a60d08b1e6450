"""Tests for the command line entry point."""

import json
import logging

import pytest

from chronicle_lib.core.logger import ROOT_LOGGER_NAME
from chronicle_lib.persistence import StoryStore
from chronicle_lib.workflow import save_story_state
from run_chronicle import main


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    logging.getLogger(ROOT_LOGGER_NAME).handlers.clear()


@pytest.fixture
def state_file(tmp_path, story_state):
    path = tmp_path / "state.json"
    path.write_text(story_state.model_dump_json(), encoding="utf-8")
    return str(path)


def _run(*argv):
    return main(["--log-level", "ERROR", *argv])


def test_check_deaths_reports_violation(tmp_path, state_file, capsys):
    chapter = tmp_path / "chapter.txt"
    chapter.write_text("老李推门而入，笑道：回来了？", encoding="utf-8")

    assert _run("check-deaths", "--state", state_file, "--chapter", str(chapter)) == 1
    out = capsys.readouterr().out
    assert "【老李】（已故于：第三章）" in out


def test_check_deaths_clean_chapter(tmp_path, state_file, capsys):
    chapter = tmp_path / "chapter.txt"
    chapter.write_text("林风想起当年老李的教诲。", encoding="utf-8")

    assert _run("check-deaths", "--state", state_file, "--chapter", str(chapter)) == 0
    assert "✅ 未检测到已故角色出场" in capsys.readouterr().out


def test_validate_outlines(tmp_path, state_file, capsys):
    outlines = tmp_path / "outlines.json"
    outlines.write_text(
        json.dumps(
            {"chapters": [{"chapterNumber": 3, "title": "秘境", "outline": "林风进入天元秘境"}]},
            ensure_ascii=False,
        ),
        encoding="utf-8",
    )

    code = _run("validate-outlines", "--state", state_file, "--volume", "1", "--outlines", str(outlines))
    assert code == 1
    assert "⏩" in capsys.readouterr().out


def test_plot_report_warns_about_overdue_threads(state_file, capsys):
    assert _run("plot-report", "--state", state_file, "--chapter", "40") == 1
    out = capsys.readouterr().out
    assert "神秘玉佩的来历" in out
    assert "已超过预期揭晓时间" in out


def test_unknown_volume_is_an_error(state_file, capsys):
    assert _run("compress-context", "--state", state_file, "--volume", "9") == 2
    assert "Volume 9 does not exist" in capsys.readouterr().err


def test_project_from_store(tmp_path, story_state, capsys):
    db = str(tmp_path / "chronicle.db")
    with StoryStore(db) as store:
        save_story_state(store, story_state)

    assert _run("codex-report", "--project", "project_test", "--db", db) == 0
    assert "# Codex 索引报告" in capsys.readouterr().out
