"""
Chronicle - Data models.

Records are pydantic models. The consistency modules never mutate a
caller's instance: every update returns a new copy, so logs such as entity
attributes or plot hints can only grow.
"""

# Standard library imports
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

# Third party imports
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

# Local imports
from chronicle_lib.core.constants import CharacterStatus, ThreadStatus

EntityType = Literal["character", "location", "item", "faction", "concept"]
CharacterRole = Literal["protagonist", "supporting", "antagonist"]
CharacterStatusName = Literal["active", "pending", "deceased"]
ThreadStatusName = Literal["active", "hinted", "resolved", "abandoned"]
ThreadImportanceName = Literal["minor", "major", "critical"]

# Extraction payloads arrive with camelCase keys from the model
LLM_PAYLOAD_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def new_id(prefix: str) -> str:
    """Generate a record id such as ``plot_3f2a9c1b``."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def utc_now() -> str:
    """Current time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


# ==================== Codex ====================


class EntityAttribute(BaseModel):
    """One entry of an entity's attribute log."""

    model_config = ConfigDict(frozen=True)

    chapter: int
    key: str
    value: str


class EntityRelation(BaseModel):
    """A directed relation from one entity to another."""

    model_config = ConfigDict(frozen=True)

    target_id: str
    relation: str
    since: int


class Entity(BaseModel):
    """A named story element tracked by the codex."""

    id: str = Field(default_factory=lambda: new_id("entity"))
    name: str
    type: EntityType = "character"
    aliases: List[str] = Field(default_factory=list)
    description: str = ""
    first_appearance: int = 0
    appearances: List[int] = Field(default_factory=list)
    attributes: List[EntityAttribute] = Field(default_factory=list)
    relations: List[EntityRelation] = Field(default_factory=list)

    def names(self) -> List[str]:
        """The entity's name followed by its aliases."""
        return [self.name] + [alias for alias in self.aliases if alias]

    def matches_name(self, name: str) -> bool:
        """Whether ``name`` is this entity's name or one of its aliases."""
        return name == self.name or name in self.aliases

    def latest_attributes(self) -> Dict[str, EntityAttribute]:
        """Latest attribute entry per key, chapter order deciding ties."""
        latest: Dict[str, EntityAttribute] = {}
        for attr in self.attributes:
            current = latest.get(attr.key)
            if current is None or attr.chapter >= current.chapter:
                latest[attr.key] = attr
        return latest

    def latest_attribute(self, key: str) -> Optional[EntityAttribute]:
        return self.latest_attributes().get(key)


class Codex(BaseModel):
    """The registry of named entities of one project."""

    entities: List[Entity] = Field(default_factory=list)
    version: int = 1
    last_updated: str = Field(default_factory=utc_now)


class EntityUpdate(BaseModel):
    """Appearances and attribute changes detected for an existing entity."""

    id: str
    appearances: List[int] = Field(default_factory=list)
    attributes: List[EntityAttribute] = Field(default_factory=list)


class RelationCandidate(BaseModel):
    """A relation detected between two known entities."""

    source_id: str
    target_id: str
    relation: str


class CodexExtraction(BaseModel):
    """Structured result of an entity extraction pass over one chapter."""

    new_entities: List[Entity] = Field(default_factory=list)
    updated_entities: List[EntityUpdate] = Field(default_factory=list)
    new_relations: List[RelationCandidate] = Field(default_factory=list)


class EntityConflict(BaseModel):
    """A codex entity that appears where it should not."""

    entity: str
    issue: str
    suggestion: str


# ==================== Characters ====================


class CharacterRelation(BaseModel):
    target_name: str
    relation: str


class Character(BaseModel):
    """A project character with life status and relationships."""

    id: str = Field(default_factory=lambda: new_id("char"))
    project_id: str = ""
    name: str
    role: CharacterRole = "supporting"
    gender: str = ""
    age: str = ""
    identity: str = ""
    description: str = ""
    arc: str = ""
    status: CharacterStatusName = "active"
    death_chapter: Optional[str] = None
    appearances: List[str] = Field(default_factory=list)
    relationships: List[CharacterRelation] = Field(default_factory=list)

    @property
    def is_deceased(self) -> bool:
        return self.status == CharacterStatus.DECEASED

    def mark_deceased(self, chapter: Optional[str] = None) -> "Character":
        """Return a deceased copy; an already recorded death chapter is kept."""
        if self.is_deceased:
            return self
        return self.model_copy(
            update={"status": CharacterStatus.DECEASED, "death_chapter": self.death_chapter or chapter}
        )

    def revive(self) -> "Character":
        """Explicit user correction of a wrongly recorded death."""
        return self.model_copy(update={"status": CharacterStatus.ACTIVE, "death_chapter": None})


# ==================== Plot threads ====================


class ResolutionRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    min: int
    max: int

    @model_validator(mode="after")
    def check_bounds(self) -> "ResolutionRange":
        if self.max < self.min:
            raise ValueError("resolution range max must be >= min")
        return self

    def contains(self, chapter_index: int) -> bool:
        return self.min <= chapter_index <= self.max


class PlotHint(BaseModel):
    model_config = ConfigDict(frozen=True)

    chapter: int
    content: str


class PlotThread(BaseModel):
    """A planted narrative setup awaiting resolution."""

    id: str = Field(default_factory=lambda: new_id("plot"))
    description: str
    planted_chapter: int
    expected_resolution_range: ResolutionRange
    status: ThreadStatusName = "active"
    resolved_chapter: Optional[int] = None
    related_characters: List[str] = Field(default_factory=list)
    hints: List[PlotHint] = Field(default_factory=list)
    importance: ThreadImportanceName = "major"

    @property
    def is_open(self) -> bool:
        return self.status in ThreadStatus.OPEN

    @property
    def is_terminal(self) -> bool:
        return self.status in ThreadStatus.TERMINAL


class DetectedThread(BaseModel):
    """A new plot thread proposed by the extraction model."""

    model_config = LLM_PAYLOAD_CONFIG

    description: str
    importance: ThreadImportanceName = "major"
    related_characters: List[str] = Field(default_factory=list)
    expected_chapters_to_resolve: Optional[int] = None

    @field_validator("importance", mode="before")
    @classmethod
    def default_unknown_importance(cls, v):
        """Treat missing or unknown importance labels as major."""
        if v in ("minor", "major", "critical"):
            return v
        return "major"


class DetectedHint(BaseModel):
    model_config = LLM_PAYLOAD_CONFIG

    thread_id: str
    hint: str


class PlotDetection(BaseModel):
    """Structured result of a plot thread detection pass over one chapter."""

    model_config = LLM_PAYLOAD_CONFIG

    new_threads: List[DetectedThread] = Field(default_factory=list)
    hints: List[DetectedHint] = Field(default_factory=list)
    resolved: List[str] = Field(default_factory=list)


class ConsistencyWarning(BaseModel):
    type: Literal[
        "character_revival",
        "timeline_conflict",
        "power_inconsistency",
        "location_error",
        "personality_shift",
    ]
    severity: Literal["warning", "error"] = "warning"
    chapter: int
    description: str
    suggestion: str
    thread_id: Optional[str] = None


class ResolutionSuggestions(BaseModel):
    must_resolve: List[PlotThread] = Field(default_factory=list)
    should_hint: List[PlotThread] = Field(default_factory=list)
    can_resolve: List[PlotThread] = Field(default_factory=list)


# ==================== Projects, volumes, chapters ====================


class Project(BaseModel):
    id: str = Field(default_factory=lambda: new_id("project"))
    title: str
    inspiration: str = ""
    constraints: str = ""
    scale: Literal["micro", "million"] = "million"
    genres: List[str] = Field(default_factory=list)
    styles: List[str] = Field(default_factory=list)
    world_setting: str = ""
    summary: str = ""
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)


class Volume(BaseModel):
    id: str = Field(default_factory=lambda: new_id("volume"))
    project_id: str = ""
    title: str
    summary: str = ""
    main_plot: str = ""
    order: int = 0
    key_points: List[str] = Field(default_factory=list)
    key_events: List[str] = Field(default_factory=list)


class Chapter(BaseModel):
    id: str = Field(default_factory=lambda: new_id("chapter"))
    volume_id: str = ""
    title: str
    outline: str = ""
    content: str = ""
    word_count: int = 0
    order: int = 0


class GeneratedOutline(BaseModel):
    """A freshly generated chapter outline awaiting validation."""

    model_config = LLM_PAYLOAD_CONFIG

    chapter_number: int
    title: str
    outline: str = ""


class GeneratedOutlineList(BaseModel):
    model_config = LLM_PAYLOAD_CONFIG

    chapters: List[GeneratedOutline] = Field(default_factory=list)


# ==================== Character analysis ====================


class RelationshipMention(BaseModel):
    char1: str
    char2: str
    relation: str


class CharacterAnalysis(BaseModel):
    """Structured result of a character analysis pass over one chapter."""

    appearances: List[str] = Field(default_factory=list)
    deaths: List[str] = Field(default_factory=list)
    relationships: List[RelationshipMention] = Field(default_factory=list)


class CharacterUpdate(BaseModel):
    """Accumulated archive changes for one character."""

    name: str
    appearances: List[str] = Field(default_factory=list)
    is_dead: bool = False
    death_chapter: str = ""
    relationships: List[CharacterRelation] = Field(default_factory=list)


class VolumeKeyPoints(BaseModel):
    model_config = LLM_PAYLOAD_CONFIG

    key_points: List[str] = Field(default_factory=list)
