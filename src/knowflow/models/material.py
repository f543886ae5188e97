"""Import material, fragment and draft models."""

from enum import StrEnum

from pydantic import BaseModel, Field


class MaterialKind(StrEnum):
    """Kinds of raw material a user can paste."""

    TEXT = "text"
    URL = "url"
    CODE = "code"
    MARKDOWN = "markdown"


class Material(BaseModel):
    """One raw source handed to the ingester."""

    kind: MaterialKind = MaterialKind.TEXT
    body: str = ""
    url: str | None = None
    title: str | None = None
    tags: list[str] = Field(default_factory=list)


class Fragment(BaseModel):
    """A contiguous span of a material body with a salience weight."""

    index: int
    start: int
    end: int
    text: str
    salience: float = Field(default=0.0, ge=0.0, le=1.0)


class SourceRef(BaseModel):
    """Where a draft came from; becomes card evidence on commit."""

    kind: MaterialKind
    excerpt: str
    url: str | None = None
    title: str | None = None


class DirectionContext(BaseModel):
    """What the synthesizer knows about the target direction."""

    direction_id: str | None = None
    name: str = ""
    language: str = "en"
    vocabulary: list[str] = Field(default_factory=list)


class DraftCluster(BaseModel):
    """A scored group of fragments judged to be one idea."""

    id: str
    title: str
    tags: list[str] = Field(default_factory=list)
    body: str
    confidence: float = Field(ge=0.0, le=1.0)
    fragment_indices: list[int] = Field(default_factory=list)
    topic_key: str | None = None


class ImportDraft(BaseModel):
    """An uncommitted candidate card owned by an import session."""

    id: str
    cluster_id: str
    title: str
    tags: list[str] = Field(default_factory=list)
    body: str
    confidence: float = Field(ge=0.0, le=1.0)
    source: SourceRef
    selected: bool = False
