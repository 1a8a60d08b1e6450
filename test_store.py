"""Tests for the SQLite record store."""

import pytest

from chronicle_lib.codex import merge_extraction
from chronicle_lib.core.exceptions import DatabaseQueryError, RecordNotFoundError
from chronicle_lib.memory import create_empty_layered_memory
from chronicle_lib.models import Chapter, Character, Entity, Project, Volume
from chronicle_lib.persistence import StoryStore
from chronicle_lib.plot_threads import create_plot_thread, resolve_thread


@pytest.fixture
def store(tmp_path):
    store = StoryStore(str(tmp_path / "nested" / "chronicle.db"))
    yield store
    store.close()


@pytest.fixture
def project(store):
    return store.save_project(Project(id="project_1", title="剑破苍穹"))


def test_database_file_is_created(tmp_path, store):
    assert (tmp_path / "nested" / "chronicle.db").exists()


def test_project_round_trip(store, project):
    loaded = store.get_project("project_1")
    assert loaded.title == "剑破苍穹"
    assert [p.id for p in store.list_projects()] == ["project_1"]

    store.save_project(loaded.model_copy(update={"title": "剑破九天"}))
    assert store.get_project("project_1").title == "剑破九天"
    assert len(store.list_projects()) == 1


def test_missing_record_raises(store):
    with pytest.raises(RecordNotFoundError) as exc_info:
        store.get_project("project_missing")
    assert exc_info.value.table == "projects"
    assert exc_info.value.record_id == "project_missing"


def test_volumes_and_chapters_are_ordered(store, project):
    store.save_volume(Volume(id="volume_b", project_id=project.id, title="第二卷", order=1))
    store.save_volume(Volume(id="volume_a", project_id=project.id, title="第一卷", order=0))
    assert [v.title for v in store.list_volumes(project.id)] == ["第一卷", "第二卷"]

    store.save_chapters(
        [
            Chapter(id="chapter_2", volume_id="volume_a", title="下山", order=2),
            Chapter(id="chapter_1", volume_id="volume_a", title="出山", order=1),
        ]
    )
    store.save_chapter(Chapter(id="chapter_3", volume_id="volume_a", title="入城", order=3))
    assert [c.title for c in store.list_chapters("volume_a")] == ["出山", "下山", "入城"]
    assert store.get_chapter("chapter_3").title == "入城"

    store.delete_chapter("chapter_3")
    assert len(store.list_chapters("volume_a")) == 2


def test_saving_a_volume_again_keeps_its_chapters(store, project):
    volume = store.save_volume(Volume(id="volume_a", project_id=project.id, title="第一卷"))
    store.save_chapter(Chapter(id="chapter_1", volume_id="volume_a", title="出山"))

    store.save_volume(volume.model_copy(update={"summary": "林风下山"}))
    assert store.get_volume("volume_a").summary == "林风下山"
    assert len(store.list_chapters("volume_a")) == 1


def test_deleting_a_volume_deletes_its_chapters(store, project):
    store.save_volume(Volume(id="volume_a", project_id=project.id, title="第一卷"))
    store.save_chapter(Chapter(id="chapter_1", volume_id="volume_a", title="出山"))

    store.delete_volume("volume_a")
    assert store.list_volumes(project.id) == []
    with pytest.raises(RecordNotFoundError):
        store.get_chapter("chapter_1")


def test_records_need_their_parent(store):
    with pytest.raises(DatabaseQueryError):
        store.save_volume(Volume(id="volume_x", project_id="project_missing", title="孤卷"))


def test_characters(store, project):
    store.save_characters(
        [
            Character(id="char_1", project_id=project.id, name="林风"),
            Character(id="char_2", project_id=project.id, name="老李", status="deceased"),
        ]
    )
    store.save_character(Character(id="char_1", project_id=project.id, name="林风", identity="剑修"))

    assert sorted(c.name for c in store.list_characters(project.id)) == sorted(["林风", "老李"])
    assert store.get_character("char_1").identity == "剑修"
    assert store.get_character("char_2").is_deceased


def test_codex_round_trip(store, project):
    empty = store.get_codex(project.id)
    assert empty.entities == []
    assert empty.version == 1

    codex = merge_extraction(
        store.get_codex(project.id), [Entity(name="青云宗", type="faction")], [], [], 1
    )
    store.save_codex(project.id, codex)
    loaded = store.get_codex(project.id)
    assert loaded.version == 2
    assert loaded.entities[0].name == "青云宗"


def test_plot_threads_by_status(store, project):
    open_thread = create_plot_thread("玉佩之谜", 3)
    closed = resolve_thread(create_plot_thread("宗门危机", 1), 5)
    store.save_plot_threads(project.id, [open_thread, closed])

    assert [t.description for t in store.list_plot_threads(project.id)] == ["宗门危机", "玉佩之谜"]
    assert [t.id for t in store.list_plot_threads(project.id, status="active")] == [open_thread.id]
    assert store.get_plot_thread(closed.id).resolved_chapter == 5


def test_memory_round_trip(store, project):
    assert store.get_memory(project.id).version == 1

    memory = create_empty_layered_memory().model_copy(update={"version": 4})
    store.save_memory(project.id, memory)
    assert store.get_memory(project.id).version == 4


def test_deleting_a_project_cascades(store, project):
    store.save_volume(Volume(id="volume_a", project_id=project.id, title="第一卷"))
    store.save_plot_threads(project.id, [create_plot_thread("玉佩之谜", 3)])
    store.delete_project(project.id)
    assert store.list_volumes(project.id) == []
    assert store.list_plot_threads(project.id) == []


def test_in_memory_store_keeps_data_between_calls():
    with StoryStore(":memory:") as store:
        store.save_project(Project(id="project_mem", title="内存"))
        assert store.get_project("project_mem").title == "内存"
