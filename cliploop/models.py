from datetime import datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ClipFilter(str, Enum):
    """Coarse recency buckets understood by the clips API."""
    LAST_DAY = "LAST_DAY"
    LAST_WEEK = "LAST_WEEK"
    LAST_MONTH = "LAST_MONTH"
    ALL_TIME = "ALL_TIME"


class Curator(BaseModel):
    model_config = ConfigDict(frozen=True)

    display_name: str
    login: Optional[str] = None


class Game(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    name: str


class Broadcaster(BaseModel):
    model_config = ConfigDict(frozen=True)

    display_name: str
    login: Optional[str] = None


class Clip(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    slug: Optional[str] = None
    title: str = ""
    created_at: Optional[datetime] = None
    view_count: int = Field(default=0, ge=0)
    duration_seconds: float = 0
    thumbnail_url: str = ""
    url: str = ""
    curator: Optional[Curator] = None
    game: Optional[Game] = None
    broadcaster: Optional[Broadcaster] = None

    @property
    def playback_slug(self) -> Optional[str]:
        """Slug for playback lookups, falling back to the last segment of the watch URL."""
        if self.slug:
            return self.slug
        tail = self.url.rstrip("/").split("/")[-1] if self.url else ""
        return tail.split("?")[0] or None


class FetchResult(BaseModel):
    clips: List[Clip] = Field(default_factory=list)
    has_next_page: bool = False
    end_cursor: Optional[str] = None
    filter: Optional[ClipFilter] = None


class ChannelResult(BaseModel):
    channel: str
    result: FetchResult


# Shuffle strategies (closed set, dispatched on `kind`)

class UniformShuffle(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["uniform"] = "uniform"


class StratifiedShuffle(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["stratified"] = "stratified"


class WeightedShuffle(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["weighted"] = "weighted"
    diversity: float = Field(default=0.4, ge=0.0, le=1.0)


class SmartShuffle(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["smart"] = "smart"


ShuffleStrategy = Annotated[
    Union[UniformShuffle, StratifiedShuffle, WeightedShuffle, SmartShuffle],
    Field(discriminator="kind"),
]


def parse_strategy(name: Optional[str]) -> ShuffleStrategy:
    """Maps a config string (uniform/random, stratified, weighted, smart) to a strategy."""
    key = (name or "smart").strip().lower()
    if key in ("uniform", "random"):
        return UniformShuffle()
    if key == "stratified":
        return StratifiedShuffle()
    if key == "weighted":
        return WeightedShuffle(diversity=0.4)
    return SmartShuffle()


class PlaylistState(BaseModel):
    """Immutable snapshot of the playback queue. Replaced whole, never edited."""
    model_config = ConfigDict(frozen=True)

    sequence: Tuple[Clip, ...] = ()
    cursor: int = 0
    version: int = 0


class PlaylistStats(BaseModel):
    total_clips: int
    current_index: int
    remaining_clips: int
    strategy: str
    background_loading: bool = False


class PlayerConfig(BaseModel):
    channel_name: str
    days: float = 900
    views: int = Field(default=0, ge=0)
    shuffle: str = "smart"
    volume: float = Field(default=0.5, ge=0.0, le=1.0)
    show_logo: bool = True
    show_info: bool = True
    show_timer: bool = True

    @field_validator("channel_name")
    @classmethod
    def channel_required(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("channelName is required")
        return value.strip()

    @property
    def channels(self) -> List[str]:
        return [c.strip().lower() for c in self.channel_name.split(",") if c.strip()]

    @property
    def strategy(self) -> ShuffleStrategy:
        return parse_strategy(self.shuffle)
