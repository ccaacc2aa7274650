from typing import Optional

from pydantic import BaseModel


class ScraperDescriptor(BaseModel):
    name: str
    enabled: bool = True
    info_only: bool = False


class MatchCandidate(BaseModel):
    title: str
    locator: str  # Site specific path or identifier


class EpisodeInfo(BaseModel):
    # Produced by info-only plugins, never counted as a playable source
    number: int
    title: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
