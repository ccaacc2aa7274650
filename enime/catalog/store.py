import uuid
from typing import Dict, Iterable, List, Optional, Tuple

import orjson
from databases import Database

from enime.catalog.models import (AnimeStatus, CatalogEntry, Episode,
                                  EpisodeSource, EntryCondition, Relation,
                                  RelationType)
from enime.core.execution import now
from enime.core.logger import logger
from enime.core.models import database


def in_clause(prefix: str, values: Iterable) -> Tuple[str, dict]:
    params = {f"{prefix}_{i}": value for i, value in enumerate(values)}
    return ", ".join(f":{key}" for key in params), params


class CatalogStore:
    def __init__(self, db: Database = database):
        self.db = db

    def _build_where(self, condition: EntryCondition):
        clauses = []
        params = {}

        if condition.statuses is not None:
            if not condition.statuses:
                clauses.append("1 = 0")
            else:
                placeholders, status_params = in_clause(
                    "status", [status.value for status in condition.statuses]
                )
                clauses.append(f"a.status IN ({placeholders})")
                params.update(status_params)

        if condition.last_episode_update_null is True:
            clauses.append("a.last_episode_update IS NULL")
        elif condition.last_episode_update_null is False:
            clauses.append("a.last_episode_update IS NOT NULL")

        if condition.relations_incomplete:
            clauses.append(
                """(
                    NOT EXISTS (SELECT 1 FROM relations r WHERE r.anime_id = a.id)
                    OR NOT EXISTS (SELECT 1 FROM relations r WHERE r.anime_id = a.id AND r.type = :prequel)
                    OR NOT EXISTS (SELECT 1 FROM relations r WHERE r.anime_id = a.id AND r.type = :sequel)
                )"""
            )
            params["prequel"] = RelationType.PREQUEL.value
            params["sequel"] = RelationType.SEQUEL.value

        if condition.episodes_missing_title:
            clauses.append(
                "EXISTS (SELECT 1 FROM episodes e WHERE e.anime_id = a.id AND e.title IS NULL)"
            )

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    async def find_ids(self, condition: EntryCondition) -> List[str]:
        where, params = self._build_where(condition)
        rows = await self.db.fetch_all(
            f"SELECT a.id FROM anime a {where} ORDER BY a.id", params
        )
        return [row["id"] for row in rows]

    async def find_entries(
        self, condition: EntryCondition, with_sources: bool = True
    ) -> List[CatalogEntry]:
        where, params = self._build_where(condition)
        rows = await self.db.fetch_all(
            f"""
            SELECT a.id, a.status, a.current_episode, a.last_episode_update
            FROM anime a {where}
            ORDER BY a.id
            """,
            params,
        )

        entries: Dict[str, CatalogEntry] = {
            row["id"]: CatalogEntry(
                id=row["id"],
                status=row["status"],
                current_episode=row["current_episode"] or 0,
                last_episode_update=row["last_episode_update"],
            )
            for row in rows
        }
        if not entries or not with_sources:
            return list(entries.values())

        episode_rows = await self.db.fetch_all(
            f"""
            SELECT e.id, e.anime_id, e.number, e.title, s.scraper, s.locator
            FROM episodes e
            LEFT JOIN sources s ON s.episode_id = e.id
            WHERE e.anime_id IN (SELECT a.id FROM anime a {where})
            ORDER BY e.anime_id, e.number
            """,
            params,
        )

        episodes: Dict[str, Episode] = {}
        for row in episode_rows:
            episode = episodes.get(row["id"])
            if episode is None:
                entry = entries.get(row["anime_id"])
                if entry is None:
                    continue

                episode = Episode(id=row["id"], number=row["number"], title=row["title"])
                episodes[row["id"]] = episode
                entry.episodes.append(episode)

            if row["scraper"] is not None:
                episode.sources.append(
                    EpisodeSource(scraper=row["scraper"], locator=row["locator"])
                )

        return list(entries.values())

    async def get_entry(self, anime_id: str) -> Optional[CatalogEntry]:
        row = await self.db.fetch_one(
            "SELECT * FROM anime WHERE id = :id", {"id": anime_id}
        )
        if row is None:
            return None

        episode_rows = await self.db.fetch_all(
            "SELECT id, number, title FROM episodes WHERE anime_id = :id ORDER BY number",
            {"id": anime_id},
        )
        return CatalogEntry(
            id=row["id"],
            status=row["status"],
            current_episode=row["current_episode"] or 0,
            last_episode_update=row["last_episode_update"],
            anilist_id=row["anilist_id"],
            title_romaji=row["title_romaji"],
            title_english=row["title_english"],
            title_native=row["title_native"],
            synonyms=orjson.loads(row["synonyms"]) if row["synonyms"] else [],
            episodes=[
                Episode(id=ep["id"], number=ep["number"], title=ep["title"])
                for ep in episode_rows
            ],
        )

    async def get_anilist_ids(self, anime_ids: Optional[List[str]] = None):
        if anime_ids is None:
            rows = await self.db.fetch_all(
                "SELECT id, anilist_id FROM anime WHERE anilist_id IS NOT NULL"
            )
        else:
            if not anime_ids:
                return {}
            placeholders, params = in_clause("id", anime_ids)
            rows = await self.db.fetch_all(
                f"SELECT id, anilist_id FROM anime WHERE anilist_id IS NOT NULL AND id IN ({placeholders})",
                params,
            )
        return {row["id"]: row["anilist_id"] for row in rows}

    async def upsert_anime(
        self,
        anilist_id: int,
        status: AnimeStatus,
        current_episode: int,
        title_romaji: Optional[str] = None,
        title_english: Optional[str] = None,
        title_native: Optional[str] = None,
        synonyms: Optional[List[str]] = None,
    ) -> str:
        values = {
            "anilist_id": anilist_id,
            "status": AnimeStatus(status).value,
            "current_episode": max(0, current_episode or 0),
            "title_romaji": title_romaji,
            "title_english": title_english,
            "title_native": title_native,
            "synonyms": orjson.dumps(synonyms or []).decode("utf-8"),
            "updated_at": now(),
        }

        existing = await self.db.fetch_val(
            "SELECT id FROM anime WHERE anilist_id = :anilist_id",
            {"anilist_id": anilist_id},
        )
        if existing:
            await self.db.execute(
                """
                UPDATE anime SET
                    status = :status,
                    current_episode = :current_episode,
                    title_romaji = :title_romaji,
                    title_english = :title_english,
                    title_native = :title_native,
                    synonyms = :synonyms,
                    updated_at = :updated_at
                WHERE anilist_id = :anilist_id
                """,
                values,
            )
            return existing

        anime_id = str(uuid.uuid4())
        await self.db.execute(
            """
            INSERT INTO anime (id, anilist_id, title_romaji, title_english, title_native, synonyms, status, current_episode, last_episode_update, updated_at)
            VALUES (:id, :anilist_id, :title_romaji, :title_english, :title_native, :synonyms, :status, :current_episode, NULL, :updated_at)
            """,
            {"id": anime_id, **values},
        )
        logger.log("DATABASE", f"Created catalog entry {anime_id} (AniList {anilist_id})")
        return anime_id

    async def _ensure_episode(self, anime_id: str, number: int) -> Tuple[str, bool]:
        episode_id = await self.db.fetch_val(
            "SELECT id FROM episodes WHERE anime_id = :anime_id AND number = :number",
            {"anime_id": anime_id, "number": number},
        )
        if episode_id:
            return episode_id, False

        episode_id = str(uuid.uuid4())
        await self.db.execute(
            """
            INSERT INTO episodes (id, anime_id, number, title, created_at)
            VALUES (:id, :anime_id, :number, NULL, :created_at)
            ON CONFLICT DO NOTHING
            """,
            {"id": episode_id, "anime_id": anime_id, "number": number, "created_at": now()},
        )
        # Another worker may have won the insert
        return (
            await self.db.fetch_val(
                "SELECT id FROM episodes WHERE anime_id = :anime_id AND number = :number",
                {"anime_id": anime_id, "number": number},
            ),
            True,
        )

    async def add_episode_source(
        self, anime_id: str, number: int, scraper: str, locator: str
    ) -> bool:
        episode_id, _ = await self._ensure_episode(anime_id, number)

        inserted = await self.db.fetch_val(
            "SELECT COUNT(*) FROM sources WHERE episode_id = :episode_id AND scraper = :scraper",
            {"episode_id": episode_id, "scraper": scraper},
        )
        if inserted:
            return False

        await self.db.execute(
            """
            INSERT INTO sources (id, episode_id, scraper, locator, created_at)
            VALUES (:id, :episode_id, :scraper, :locator, :created_at)
            ON CONFLICT DO NOTHING
            """,
            {
                "id": str(uuid.uuid4()),
                "episode_id": episode_id,
                "scraper": scraper,
                "locator": locator,
                "created_at": now(),
            },
        )
        await self.db.execute(
            "UPDATE anime SET last_episode_update = :timestamp WHERE id = :id",
            {"timestamp": now(), "id": anime_id},
        )
        return True

    async def set_episode_title(self, anime_id: str, number: int, title: str):
        episode_id, _ = await self._ensure_episode(anime_id, number)
        await self.db.execute(
            "UPDATE episodes SET title = :title WHERE id = :id",
            {"title": title, "id": episode_id},
        )

    async def source_numbers(self, anime_id: str, scraper: str) -> set:
        rows = await self.db.fetch_all(
            """
            SELECT e.number FROM episodes e
            JOIN sources s ON s.episode_id = e.id
            WHERE e.anime_id = :anime_id AND s.scraper = :scraper
            """,
            {"anime_id": anime_id, "scraper": scraper},
        )
        return {row["number"] for row in rows}

    async def replace_relations(
        self, anime_id: str, relations: List[Tuple[int, RelationType]]
    ) -> int:
        """
        Replace the relations of an entry. Relations are given as AniList ids
        and only kept when the related title is already in the catalog.
        """
        related = {}
        if relations:
            placeholders, params = in_clause(
                "anilist", {anilist_id for anilist_id, _ in relations}
            )
            rows = await self.db.fetch_all(
                f"SELECT id, anilist_id FROM anime WHERE anilist_id IN ({placeholders})",
                params,
            )
            related = {row["anilist_id"]: row["id"] for row in rows}

        async with self.db.transaction():
            await self.db.execute(
                "DELETE FROM relations WHERE anime_id = :anime_id",
                {"anime_id": anime_id},
            )

            stored = 0
            for anilist_id, relation_type in relations:
                related_id = related.get(anilist_id)
                if related_id is None:
                    continue

                await self.db.execute(
                    """
                    INSERT INTO relations (anime_id, related_anime_id, type)
                    VALUES (:anime_id, :related_anime_id, :type)
                    ON CONFLICT DO NOTHING
                    """,
                    {
                        "anime_id": anime_id,
                        "related_anime_id": related_id,
                        "type": RelationType(relation_type).value,
                    },
                )
                stored += 1

        return stored

    async def get_relations(self, anime_id: str) -> List[Relation]:
        rows = await self.db.fetch_all(
            "SELECT related_anime_id, type FROM relations WHERE anime_id = :anime_id",
            {"anime_id": anime_id},
        )
        return [
            Relation(
                anime_id=anime_id,
                related_anime_id=row["related_anime_id"],
                type=row["type"],
            )
            for row in rows
        ]

    async def get_mapping(self, anime_id: str, scraper: str) -> Optional[str]:
        return await self.db.fetch_val(
            "SELECT locator FROM scraper_mappings WHERE anime_id = :anime_id AND scraper = :scraper",
            {"anime_id": anime_id, "scraper": scraper},
        )

    async def set_mapping(
        self, anime_id: str, scraper: str, locator: str, matched_title: str = None
    ):
        await self.db.execute(
            """
            INSERT INTO scraper_mappings (anime_id, scraper, locator, matched_title, timestamp)
            VALUES (:anime_id, :scraper, :locator, :matched_title, :timestamp)
            ON CONFLICT (anime_id, scraper) DO UPDATE SET
                locator = :locator, matched_title = :matched_title, timestamp = :timestamp
            """,
            {
                "anime_id": anime_id,
                "scraper": scraper,
                "locator": locator,
                "matched_title": matched_title,
                "timestamp": now(),
            },
        )


catalog_store = CatalogStore()
