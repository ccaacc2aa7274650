from typing import Iterable, List

from enime.catalog.models import CatalogEntry, EntryCondition, RelationType
from enime.catalog.store import CatalogStore, catalog_store
from enime.core.logger import logger
from enime.scrapers.manager import ScraperManager, scraper_manager


def covered_episodes(entry: CatalogEntry, full_coverage: int) -> int:
    return sum(1 for episode in entry.episodes if len(episode.sources) >= full_coverage)


def is_stale(entry: CatalogEntry, full_coverage: int) -> bool:
    return entry.current_episode != covered_episodes(entry, full_coverage)


def needs_relation_refresh(relation_types: Iterable[RelationType]) -> bool:
    relation_types = set(relation_types)
    return (
        not relation_types
        or RelationType.PREQUEL not in relation_types
        or RelationType.SEQUEL not in relation_types
    )


class StalenessDetector:
    def __init__(
        self,
        store: CatalogStore = catalog_store,
        registry: ScraperManager = scraper_manager,
    ):
        self.store = store
        self.registry = registry

    async def detect_stale(self, condition: EntryCondition) -> List[CatalogEntry]:
        entries = await self.store.find_entries(condition)
        full_coverage = self.registry.full_coverage()

        stale = [entry for entry in entries if is_stale(entry, full_coverage)]
        logger.log(
            "SCHEDULER",
            f"Staleness check {condition.model_dump(mode='json', exclude_defaults=True)}: {len(stale)}/{len(entries)} stale (full coverage = {full_coverage})",
        )
        return stale

    async def detect_relation_refresh(self) -> List[str]:
        ids = await self.store.find_ids(EntryCondition(relations_incomplete=True))
        logger.log("SCHEDULER", f"{len(ids)} entries need a relation refresh")
        return ids
