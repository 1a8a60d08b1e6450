"""
Chronicle - SQLite record store.

This module provides ``StoryStore``, a keyed-record store for projects,
volumes, chapters, characters, the codex, plot threads and layered memory.
Each record is kept as the JSON dump of its pydantic model; the extra
columns only serve lookups and ordering.

The consistency engine never touches the store. The workflow and the CLI
load snapshots from it and save the updated records back.
"""

# Standard library imports
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Type, TypeVar

# Third party imports
from pydantic import BaseModel, ValidationError

# Local imports
from chronicle_lib.codex import create_empty_codex
from chronicle_lib.core.exceptions import (
    DatabaseConnectionError,
    DatabaseError,
    DatabaseQueryError,
    RecordNotFoundError,
)
from chronicle_lib.core.logger import store_logger as logger
from chronicle_lib.memory import LayeredMemory, create_empty_layered_memory
from chronicle_lib.models import Chapter, Character, Codex, PlotThread, Project, Volume, utc_now

ModelT = TypeVar("ModelT", bound=BaseModel)

SCHEMA_PATH = Path(__file__).parent / "schema.sql"


class StoryStore:
    """
    Record store for one SQLite database file.

    Args:
        db_path: Path to the database file, or ``:memory:``
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._memory_conn: Optional[sqlite3.Connection] = None
        self._init_database()

    def _init_database(self) -> None:
        """Create the tables from schema.sql if needed."""
        if self.db_path != ":memory:":
            db_dir = Path(self.db_path).expanduser().parent
            if not db_dir.exists():
                db_dir.mkdir(parents=True, exist_ok=True)
                logger.info(f"Created database directory: {db_dir}")

        try:
            schema_sql = SCHEMA_PATH.read_text(encoding="utf-8")
            with self._get_connection() as conn:
                conn.executescript(schema_sql)
        except (OSError, sqlite3.Error) as e:
            raise DatabaseError(f"Failed to initialize database: {e}") from e
        logger.info(f"Database initialized at {self.db_path}")

    def _connect(self) -> sqlite3.Connection:
        if self.db_path == ":memory:":
            # An in-memory database only lives as long as its connection
            if self._memory_conn is None:
                self._memory_conn = sqlite3.connect(":memory:")
            return self._memory_conn
        return sqlite3.connect(str(Path(self.db_path).expanduser()))

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """
        Context manager for database connections.

        Commits on success and rolls back on error.

        Yields:
            sqlite3.Connection: Database connection with row factory set
        """
        try:
            conn = self._connect()
        except sqlite3.Error as e:
            raise DatabaseConnectionError(f"Cannot open database {self.db_path}: {e}") from e

        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise DatabaseQueryError(f"Database query failed: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            if conn is not self._memory_conn:
                conn.close()

    def __enter__(self) -> "StoryStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self) -> None:
        if self._memory_conn is not None:
            self._memory_conn.close()
            self._memory_conn = None

    @staticmethod
    def _load(schema: Type[ModelT], payload: str) -> ModelT:
        try:
            return schema.model_validate_json(payload)
        except ValidationError as e:
            raise DatabaseError(f"Corrupt {schema.__name__} record: {e}") from e

    def _fetch_one(self, table: str, key: str, value: str, schema: Type[ModelT]) -> Optional[ModelT]:
        with self._get_connection() as conn:
            row = conn.execute(f"SELECT payload FROM {table} WHERE {key} = ?", (value,)).fetchone()
        return self._load(schema, row["payload"]) if row else None

    def _require(self, table: str, record_id: str, schema: Type[ModelT]) -> ModelT:
        record = self._fetch_one(table, "id", record_id, schema)
        if record is None:
            raise RecordNotFoundError(
                f"No {table[:-1]} with id {record_id}", table=table, record_id=record_id
            )
        return record

    # Projects

    def save_project(self, project: Project) -> Project:
        project = project.model_copy(update={"updated_at": utc_now()})
        with self._get_connection() as conn:
            conn.execute(
                "INSERT INTO projects (id, title, payload, updated_at) VALUES (?, ?, ?, CURRENT_TIMESTAMP) "
                "ON CONFLICT(id) DO UPDATE SET title = excluded.title, payload = excluded.payload, "
                "updated_at = CURRENT_TIMESTAMP",
                (project.id, project.title, project.model_dump_json()),
            )
        logger.debug(f"Saved project {project.id}")
        return project

    def get_project(self, project_id: str) -> Project:
        return self._require("projects", project_id, Project)

    def list_projects(self) -> List[Project]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT payload FROM projects ORDER BY updated_at DESC").fetchall()
        return [self._load(Project, row["payload"]) for row in rows]

    def delete_project(self, project_id: str) -> None:
        with self._get_connection() as conn:
            conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        logger.info(f"Deleted project {project_id}")

    # Volumes

    def save_volume(self, volume: Volume) -> Volume:
        # An upsert; REPLACE would delete the row and cascade to its chapters
        with self._get_connection() as conn:
            conn.execute(
                "INSERT INTO volumes (id, project_id, sort_order, payload) VALUES (?, ?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET project_id = excluded.project_id, "
                "sort_order = excluded.sort_order, payload = excluded.payload",
                (volume.id, volume.project_id, volume.order, volume.model_dump_json()),
            )
        return volume

    def get_volume(self, volume_id: str) -> Volume:
        return self._require("volumes", volume_id, Volume)

    def list_volumes(self, project_id: str) -> List[Volume]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT payload FROM volumes WHERE project_id = ? ORDER BY sort_order, rowid",
                (project_id,),
            ).fetchall()
        return [self._load(Volume, row["payload"]) for row in rows]

    def delete_volume(self, volume_id: str) -> None:
        """Delete a volume together with its chapters."""
        with self._get_connection() as conn:
            conn.execute("DELETE FROM volumes WHERE id = ?", (volume_id,))
        logger.info(f"Deleted volume {volume_id}")

    # Chapters

    def save_chapter(self, chapter: Chapter) -> Chapter:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO chapters (id, volume_id, sort_order, payload) VALUES (?, ?, ?, ?)",
                (chapter.id, chapter.volume_id, chapter.order, chapter.model_dump_json()),
            )
        return chapter

    def save_chapters(self, chapters: Iterable[Chapter]) -> None:
        with self._get_connection() as conn:
            conn.executemany(
                "INSERT OR REPLACE INTO chapters (id, volume_id, sort_order, payload) VALUES (?, ?, ?, ?)",
                [(c.id, c.volume_id, c.order, c.model_dump_json()) for c in chapters],
            )

    def get_chapter(self, chapter_id: str) -> Chapter:
        return self._require("chapters", chapter_id, Chapter)

    def list_chapters(self, volume_id: str) -> List[Chapter]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT payload FROM chapters WHERE volume_id = ? ORDER BY sort_order, rowid",
                (volume_id,),
            ).fetchall()
        return [self._load(Chapter, row["payload"]) for row in rows]

    def delete_chapter(self, chapter_id: str) -> None:
        with self._get_connection() as conn:
            conn.execute("DELETE FROM chapters WHERE id = ?", (chapter_id,))

    # Characters

    def save_character(self, character: Character) -> Character:
        self.save_characters([character])
        return character

    def save_characters(self, characters: Iterable[Character]) -> None:
        with self._get_connection() as conn:
            conn.executemany(
                "INSERT OR REPLACE INTO characters (id, project_id, name, status, payload) "
                "VALUES (?, ?, ?, ?, ?)",
                [(c.id, c.project_id, c.name, c.status, c.model_dump_json()) for c in characters],
            )

    def get_character(self, character_id: str) -> Character:
        return self._require("characters", character_id, Character)

    def list_characters(self, project_id: str) -> List[Character]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT payload FROM characters WHERE project_id = ? ORDER BY rowid", (project_id,)
            ).fetchall()
        return [self._load(Character, row["payload"]) for row in rows]

    # Codex

    def save_codex(self, project_id: str, codex: Codex) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO codex (project_id, version, payload) VALUES (?, ?, ?)",
                (project_id, codex.version, codex.model_dump_json()),
            )
        logger.debug(f"Saved codex v{codex.version} for project {project_id}")

    def get_codex(self, project_id: str) -> Codex:
        """The project's codex, or an empty one if none was saved yet."""
        codex = self._fetch_one("codex", "project_id", project_id, Codex)
        return codex if codex is not None else create_empty_codex()

    # Plot threads

    def save_plot_threads(self, project_id: str, threads: Iterable[PlotThread]) -> None:
        with self._get_connection() as conn:
            conn.executemany(
                "INSERT OR REPLACE INTO plot_threads (id, project_id, status, planted_chapter, payload) "
                "VALUES (?, ?, ?, ?, ?)",
                [
                    (t.id, project_id, t.status, t.planted_chapter, t.model_dump_json())
                    for t in threads
                ],
            )

    def get_plot_thread(self, thread_id: str) -> PlotThread:
        return self._require("plot_threads", thread_id, PlotThread)

    def list_plot_threads(self, project_id: str, status: Optional[str] = None) -> List[PlotThread]:
        query = "SELECT payload FROM plot_threads WHERE project_id = ?"
        params = [project_id]
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY planted_chapter, rowid"
        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._load(PlotThread, row["payload"]) for row in rows]

    # Layered memory

    def save_memory(self, project_id: str, memory: LayeredMemory) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO memories (project_id, version, payload) VALUES (?, ?, ?)",
                (project_id, memory.version, memory.model_dump_json()),
            )

    def get_memory(self, project_id: str) -> LayeredMemory:
        memory = self._fetch_one("memories", "project_id", project_id, LayeredMemory)
        return memory if memory is not None else create_empty_layered_memory()
