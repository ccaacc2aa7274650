import aiohttp

from enime.core.models import settings

MAX_BATCH_SIZE = 50

# Lower value is claimed first by the job queue
FULL_SCRAPE_PRIORITY = 5
RECHECK_PRIORITY = 6
EPISODE_INFO_PRIORITY = 7

ANILIST_TIMEOUT = aiohttp.ClientTimeout(total=settings.HTTP_TIMEOUT)
