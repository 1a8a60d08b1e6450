"""Prompt templates for Chronicle."""

from chronicle_lib.prompts.renderer import get_template_manager, render_prompt

__all__ = ["get_template_manager", "render_prompt"]
