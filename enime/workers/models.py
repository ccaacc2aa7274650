from enum import Enum
from typing import List

from pydantic import BaseModel, Field

from enime.core.constants import RECHECK_PRIORITY


class JobKind(str, Enum):
    REFETCH = "refetch"
    RESYNC = "resync"
    FETCH_RELATION = "fetch-relation"
    SCRAPE = "scrape"


class Job(BaseModel):
    kind: JobKind = JobKind.SCRAPE
    anime_ids: List[str] = Field(default_factory=list)
    info_only: bool = False
    priority: int = RECHECK_PRIORITY

    def payload(self):
        return {"animeIds": self.anime_ids, "infoOnly": self.info_only}


class WorkerResult(BaseModel):
    mode: JobKind
    processed: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    duration: float = 0.0
