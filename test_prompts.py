"""Tests for the prompt template manager."""

import pytest
from jinja2 import UndefinedError

from chronicle_lib.core.exceptions import ConfigurationError
from chronicle_lib.prompts import get_template_manager, render_prompt
from chronicle_lib.prompts.renderer import PromptTemplateManager


def test_templates_are_listed():
    assert get_template_manager().list_available_templates() == [
        "analyze_characters",
        "detect_plot_threads",
        "extract_entities",
        "extract_volume_key_points",
        "generate_outlines",
        "write_chapter",
    ]


def test_render_joins_names():
    prompt = render_prompt(
        "analyze_characters", chapter_title="出山", character_names=["林风", "苏瑶"], content="正文"
    )
    assert prompt.startswith("分析章节，找出角色信息。")
    assert "已知角色：林风、苏瑶" in prompt


def test_missing_variable_is_an_error():
    with pytest.raises(UndefinedError):
        render_prompt("analyze_characters", chapter_title="出山", content="正文")


def test_missing_template(tmp_path):
    manager = PromptTemplateManager(tmp_path)
    assert manager.list_available_templates() == []
    with pytest.raises(ConfigurationError):
        manager.render("write_chapter")


def test_custom_template_directory(tmp_path):
    (tmp_path / "greeting.jinja2").write_text("你好，{{ name }}！\n", encoding="utf-8")
    manager = PromptTemplateManager(tmp_path)
    assert manager.render("greeting", name="林风") == "你好，林风！"
