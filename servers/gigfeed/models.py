"""
Pydantic models for the collection pipeline.

These models define the core data types used throughout the package:
- Show: Individual event listing produced by a source handler
- Feed: The aggregate document published after each collection run
- EventCacheEntry: Last good result for one source
- CachedImage: Outcome of an image cache request
- StoredItem: What a storage backend knows about one key
- RunDiagnostics: Per-run bookkeeping persisted beside the feed
"""

from enum import Enum
from typing import Any, Optional
import re

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator


TEXT_LIMIT = 200


class Category(str, Enum):
    """Kinds of show listed in the feed."""

    FILM = "film"
    QUIZ = "quiz"
    BROADCAST = "broadcast"
    LIVE = "live"


# Checked in order; the first match wins
CATEGORY_PATTERNS = [
    (Category.FILM, re.compile(r"film|cinema|movie|screening")),
    (Category.QUIZ, re.compile(r"quiz|trivia")),
    (Category.BROADCAST, re.compile(r"broadcast|ntlive|nt live|live stream")),
]


def infer_category(title: Optional[str], text: Optional[str]) -> Category:
    """Guess a category from the title and description."""
    combined = f"{title or ''} {text or ''}".lower()
    for category, pattern in CATEGORY_PATTERNS:
        if pattern.search(combined):
            return category
    return Category.LIVE


class Show(BaseModel):
    """A single event listing."""

    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    title: str
    venue: str = ""
    date: str = ""  # Display string, e.g. "Fri 17 Jan 20:00"
    dt: int = 0  # Epoch milliseconds, 0 when unknown

    # Media
    image: str = ""  # Source URL, or /pix/<name> once cached
    imagesource: str = ""  # Original URL kept after the rewrite

    url: str = ""
    text: str = ""
    category: Category = Category.LIVE
    promoter: str = ""  # Source id

    @model_validator(mode="before")
    @classmethod
    def _fill_category(cls, data: Any) -> Any:
        if isinstance(data, dict):
            category = data.get("category")
            if isinstance(category, Category):
                return data
            valid = {c.value for c in Category}
            data = dict(data)
            if not category or str(category).lower() not in valid:
                data["category"] = infer_category(data.get("title"), data.get("text"))
            else:
                data["category"] = str(category).lower()
        return data

    @field_validator("dt", mode="before")
    @classmethod
    def _coerce_dt(cls, value: Any) -> int:
        if value in (None, ""):
            return 0
        return int(value)

    @field_validator("venue", "date", "image", "imagesource", "url", "text", "promoter", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("text")
    @classmethod
    def _truncate_text(cls, value: str) -> str:
        return value[:TEXT_LIMIT]


class Feed(BaseModel):
    """The published aggregate of one collection run."""

    model_config = ConfigDict(populate_by_name=True)

    promoters: dict[str, Any] = Field(default_factory=dict)
    categories: dict[str, int] = Field(default_factory=dict)
    shows: list[Show] = Field(default_factory=list)
    to_do: list[str] = Field(default_factory=list, alias="toDo")
    faults: list[str] = Field(default_factory=list)
    date: int = 0
    platform: str = "local"

    def to_json(self) -> str:
        """Serialize in the published document format."""
        return self.model_dump_json(by_alias=True, indent=2)


class EventCacheEntry(BaseModel):
    """Last non-empty result fetched from one source."""

    events: list[Show]
    cached: int
    count: int


class CachedImage(BaseModel):
    """Result of an image cache request."""

    name: str = ""
    was_cached: bool = False
    url: str = ""
    content_type: Optional[str] = None
    error: Optional[str] = None

    @computed_field
    @property
    def ok(self) -> bool:
        """Whether the image is available in the cache."""
        return bool(self.name)


class StoredItem(BaseModel):
    """An entry found in a blob store."""

    name: str
    length: Optional[int] = None
    modified_at: Optional[float] = None  # Epoch milliseconds
    content_type: Optional[str] = None


class SourceOutcome(BaseModel):
    """How one source contributed to a run."""

    source: str
    status: str  # fresh, fallback, empty, error
    count: int = 0
    error: Optional[str] = None


class RunDiagnostics(BaseModel):
    """Bookkeeping for one collection run, persisted beside the feed."""

    started: int
    finished: int = 0
    sources: list[SourceOutcome] = Field(default_factory=list)
    image_failures: list[str] = Field(default_factory=list)
    images_cached: int = 0
    images_reused: int = 0
    original_count: int = 0
    duplicates_removed: int = 0
    dedup_rate: float = 0.0
    unhealthy: list[str] = Field(default_factory=list)
    health: dict[str, Any] = Field(default_factory=dict)


class DedupeResult(BaseModel):
    """Result of the sort and adjacent deduplication pass."""

    shows: list[Show]
    original_count: int
    duplicates_removed: int

    @computed_field
    @property
    def dedup_rate(self) -> float:
        """Percentage of shows that were duplicates."""
        if self.original_count == 0:
            return 0.0
        return self.duplicates_removed / self.original_count * 100


class TriggerResult(BaseModel):
    """Response returned by the trigger surface."""

    status: str
    detail: Optional[str] = None
