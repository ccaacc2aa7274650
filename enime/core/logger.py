import sys

from loguru import logger

from enime.core.log_levels import CUSTOM_LOG_LEVELS, STANDARD_LOG_LEVELS

# Worker processes log through the same sink, so the process name is part of every line
LOG_FORMAT = (
    "<white>{time:YYYY-MM-DD HH:mm:ss}</white> <magenta>{process.name: <16}</magenta> | "
    "<level>{level.icon} {level: <9}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def register_levels():
    for name, config in CUSTOM_LOG_LEVELS.items():
        try:
            logger.level(name)
        except ValueError:
            logger.level(
                name, no=config["no"], icon=config["icon"], color=config["loguru_color"]
            )

    for name, config in STANDARD_LOG_LEVELS.items():
        logger.level(name, icon=config["icon"], color=config["loguru_color"])


def setupLogger(level: str):
    register_levels()
    logger.configure(
        handlers=[
            dict(
                sink=sys.stderr,
                level=level,
                format=LOG_FORMAT,
                backtrace=False,
                diagnose=False,
                enqueue=True,
            )
        ]
    )


setupLogger("DEBUG")


def log_scraper_error(scraper_name: str, anime_id: str, error: Exception):
    logger.warning(
        f"Exception while scraping {anime_id} with {scraper_name}, the site layout may have changed or you are being ratelimited: {error}"
    )


def log_startup_info(settings):
    logger.log(
        "ENIME",
        f"Server started on http://{settings.FASTAPI_HOST}:{settings.FASTAPI_PORT}",
    )
    logger.log(
        "ENIME",
        f"Database ({settings.DATABASE_TYPE}): {settings.DATABASE_PATH if settings.DATABASE_TYPE == 'sqlite' else settings.DATABASE_URL}",
    )
    logger.log(
        "ENIME",
        f"Scrapers: Gogoanime={bool(settings.SCRAPE_GOGOANIME)} - Zoro={bool(settings.SCRAPE_ZORO)} - Kitsu (info only)={bool(settings.SCRAPE_KITSU)}",
    )
    logger.log(
        "ENIME",
        f"Proxies: {len(settings.PROXY_URLS)} configured - Ethos: {settings.PROXY_ETHOS}",
    )
    logger.log(
        "ENIME",
        f"Queue: concurrency={settings.QUEUE_CONCURRENCY} - max attempts={settings.QUEUE_MAX_ATTEMPTS} - worker timeout={settings.WORKER_TIMEOUT}s",
    )
    logger.log(
        "ENIME",
        f"Scheduler: {'enabled' if settings.SCHEDULER_ENABLED else 'disabled'} - Deterministic time mode: {bool(settings.DETERMINISTIC_TIME_MODE)}",
    )
