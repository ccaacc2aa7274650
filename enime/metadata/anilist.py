from typing import List, Optional

import aiohttp

from enime.catalog.models import AnimeStatus, RelationType
from enime.core.constants import ANILIST_TIMEOUT
from enime.core.logger import logger
from enime.core.models import settings

MEDIA_FIELDS = """
    id
    status
    episodes
    synonyms
    title { romaji english native }
    nextAiringEpisode { episode }
"""

PAGE_QUERY = f"""
query ($page: Int, $perPage: Int, $status: [MediaStatus], $ids: [Int]) {{
    Page(page: $page, perPage: $perPage) {{
        pageInfo {{ hasNextPage }}
        media(type: ANIME, status_in: $status, id_in: $ids) {{ {MEDIA_FIELDS} }}
    }}
}}
"""

RELATIONS_QUERY = """
query ($id: Int) {
    Media(id: $id, type: ANIME) {
        relations {
            edges {
                relationType
                node { id type }
            }
        }
    }
}
"""


def parse_media(media: dict) -> Optional[dict]:
    try:
        status = AnimeStatus(media["status"])
    except (KeyError, ValueError):
        return None

    next_airing = media.get("nextAiringEpisode") or {}
    if next_airing.get("episode"):
        current_episode = next_airing["episode"] - 1
    elif status == AnimeStatus.FINISHED:
        current_episode = media.get("episodes") or 0
    else:
        current_episode = 0

    title = media.get("title") or {}
    return {
        "anilist_id": media["id"],
        "status": status,
        "current_episode": current_episode,
        "title_romaji": title.get("romaji"),
        "title_english": title.get("english"),
        "title_native": title.get("native"),
        "synonyms": media.get("synonyms") or [],
    }


def parse_relations(data: dict) -> List[tuple]:
    relations = []
    edges = (((data or {}).get("Media") or {}).get("relations") or {}).get("edges", [])
    for edge in edges:
        node = edge.get("node") or {}
        if node.get("type") != "ANIME" or not node.get("id"):
            continue

        try:
            relation_type = RelationType(edge.get("relationType"))
        except ValueError:
            relation_type = RelationType.OTHER
        relations.append((node["id"], relation_type))
    return relations


class AnilistApi:
    def __init__(self, session: aiohttp.ClientSession, url: str = None):
        self.session = session
        self.url = url or settings.ANILIST_URL

    async def query(self, query: str, variables: dict):
        try:
            async with self.session.post(
                self.url,
                json={"query": query, "variables": variables},
                timeout=ANILIST_TIMEOUT,
            ) as response:
                if response.status != 200:
                    logger.warning(f"AniList: HTTP {response.status} for {variables}")
                    return None

                payload = await response.json()
        except Exception as e:
            logger.warning(f"AniList: Error querying with {variables}: {e}")
            return None

        if payload.get("errors"):
            logger.warning(f"AniList: {payload['errors']}")
            return None
        return payload.get("data")

    async def iter_media(
        self, statuses: List[AnimeStatus] = None, ids: List[int] = None
    ):
        page = 1
        while True:
            variables = {"page": page, "perPage": settings.ANILIST_PAGE_SIZE}
            if statuses:
                variables["status"] = [status.value for status in statuses]
            if ids:
                variables["ids"] = ids

            data = await self.query(PAGE_QUERY, variables)
            if data is None:
                return

            for media in data["Page"]["media"]:
                parsed = parse_media(media)
                if parsed:
                    yield parsed

            if not data["Page"]["pageInfo"]["hasNextPage"]:
                return
            page += 1

    async def get_relations(self, anilist_id: int):
        data = await self.query(RELATIONS_QUERY, {"id": anilist_id})
        if data is None:
            return None
        return parse_relations(data)
