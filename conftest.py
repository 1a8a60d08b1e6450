"""Shared pytest fixtures for the Chronicle tests."""

import time
from typing import Any, List, Optional

import pytest
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage
from langchain_core.outputs import ChatGeneration, ChatResult

from chronicle_lib.config_models import LLMConfig
from chronicle_lib.llm import TextGenerator
from chronicle_lib.models import Character, CharacterRelation, Project, Volume
from chronicle_lib.plot_threads import create_plot_thread
from chronicle_lib.workflow import StoryState


class ScriptedChatModel(BaseChatModel):
    """Chat model that plays back a script of replies.

    Exception instances in the script are raised instead of returned. The
    last entry repeats once the script is used up. With ``slow_calls`` set,
    only that many first calls wait ``delay`` seconds.
    """

    script: List[Any]
    delay: float = 0.0
    slow_calls: Optional[int] = None
    calls: int = 0
    prompts: List[str] = []

    @property
    def _llm_type(self) -> str:
        return "scripted"

    def _generate(
        self,
        messages: List[BaseMessage],
        stop: Optional[List[str]] = None,
        run_manager: Any = None,
        **kwargs: Any,
    ) -> ChatResult:
        call = self.calls
        item = self.script[min(call, len(self.script) - 1)]
        self.calls += 1
        self.prompts.append(str(messages[-1].content))
        if self.delay and (self.slow_calls is None or call < self.slow_calls):
            time.sleep(self.delay)
        if isinstance(item, Exception):
            raise item
        return ChatResult(generations=[ChatGeneration(message=AIMessage(content=item))])


@pytest.fixture
def llm_config():
    """Configuration without waits between attempts."""
    return LLMConfig(
        provider="gemini",
        api_key="test-key",
        timeout_seconds=5,
        max_retries=2,
        retry_base_delay=0,
        retry_max_delay=0,
        batch_delay=0,
    )


@pytest.fixture
def make_generator(llm_config):
    """Build a ``TextGenerator`` around a scripted chat model."""
    def factory(*script, delay=0.0, slow_calls=None, **config_overrides):
        config = llm_config.model_copy(update=config_overrides)
        model = ScriptedChatModel(
            script=list(script), delay=delay, slow_calls=slow_calls, prompts=[]
        )
        return TextGenerator(config, chat_model=model), model

    return factory


@pytest.fixture
def story_state():
    """A small two-volume project with one dead character and one open thread."""
    project = Project(
        id="project_test",
        title="剑破苍穹",
        world_setting="修炼境界分为炼气、筑基、金丹三重。\n天元大陆由三大宗门统治。",
    )
    volumes = [
        Volume(
            id="volume_1",
            project_id=project.id,
            title="宗门风云",
            summary="林风拜入青云宗，参加宗门大比，击败宿敌赵天。",
            order=0,
            key_events=["林风击败赵天"],
        ),
        Volume(
            id="volume_2",
            project_id=project.id,
            title="秘境探险",
            summary="林风进入天元秘境，发现上古传承。",
            order=1,
            key_events=["林风进入天元秘境"],
        ),
    ]
    characters = [
        Character(
            id="char_linfeng",
            project_id=project.id,
            name="林风",
            role="protagonist",
            identity="青云宗弟子",
            relationships=[CharacterRelation(target_name="苏瑶", relation="师姐")],
        ),
        Character(id="char_suyao", project_id=project.id, name="苏瑶", identity="青云宗师姐"),
        Character(
            id="char_laoli",
            project_id=project.id,
            name="老李",
            identity="杂役",
            status="deceased",
            death_chapter="第三章",
        ),
    ]
    thread = create_plot_thread("神秘玉佩的来历", planted_chapter=2).model_copy(
        update={"id": "plot_jade"}
    )
    return StoryState(
        project=project,
        volumes=volumes,
        characters=characters,
        plot_threads=[thread],
    )
