from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class AnimeStatus(str, Enum):
    NOT_YET_RELEASED = "NOT_YET_RELEASED"
    RELEASING = "RELEASING"
    FINISHED = "FINISHED"
    CANCELLED = "CANCELLED"
    HIATUS = "HIATUS"


class RelationType(str, Enum):
    PREQUEL = "PREQUEL"
    SEQUEL = "SEQUEL"
    PARENT = "PARENT"
    SIDE_STORY = "SIDE_STORY"
    SPIN_OFF = "SPIN_OFF"
    ALTERNATIVE = "ALTERNATIVE"
    ADAPTATION = "ADAPTATION"
    SUMMARY = "SUMMARY"
    CHARACTER = "CHARACTER"
    OTHER = "OTHER"


class EpisodeSource(BaseModel):
    scraper: str
    locator: str


class Episode(BaseModel):
    id: str
    number: int
    title: Optional[str] = None
    sources: List[EpisodeSource] = Field(default_factory=list)


class Relation(BaseModel):
    anime_id: str
    related_anime_id: str
    type: RelationType


class CatalogEntry(BaseModel):
    id: str
    status: AnimeStatus
    current_episode: int = 0
    last_episode_update: Optional[float] = None
    anilist_id: Optional[int] = None
    title_romaji: Optional[str] = None
    title_english: Optional[str] = None
    title_native: Optional[str] = None
    synonyms: List[str] = Field(default_factory=list)
    episodes: List[Episode] = Field(default_factory=list)

    @property
    def titles(self) -> List[str]:
        titles = [self.title_english, self.title_romaji, self.title_native]
        return [title for title in titles if title]


class EntryCondition(BaseModel):
    """
    Declarative filter over catalog entries.

    `last_episode_update_null` restricts to entries with (True) or without
    (False) a recorded episode update; None leaves it unconstrained.
    `relations_incomplete` keeps entries that have no relation at all, or miss
    a PREQUEL, or miss a SEQUEL.
    `episodes_missing_title` keeps entries owning at least one untitled episode.
    """

    statuses: Optional[List[AnimeStatus]] = None
    last_episode_update_null: Optional[bool] = None
    relations_incomplete: bool = False
    episodes_missing_title: bool = False
