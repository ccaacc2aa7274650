import os
import traceback

from databases import Database

from enime.core.logger import logger
from enime.core.models import database, settings

DATABASE_VERSION = "1.0"


async def setup_database(db: Database = database):
    try:
        if settings.DATABASE_TYPE == "sqlite" and db is database:
            directory = os.path.dirname(settings.DATABASE_PATH)
            if directory:
                os.makedirs(directory, exist_ok=True)

            if not os.path.exists(settings.DATABASE_PATH):
                open(settings.DATABASE_PATH, "a").close()

        if not db.is_connected:
            await db.connect()

        await create_tables(db)

        logger.log("DATABASE", f"Database: schema version {DATABASE_VERSION} ready")
    except Exception as e:
        logger.error(f"Error setting up the database: {e}")
        logger.exception(traceback.format_exc())
        raise


async def create_tables(db: Database):
    await db.execute(
        """
            CREATE TABLE IF NOT EXISTS db_version (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                version TEXT
            )
        """
    )

    await db.execute(
        """
            INSERT INTO db_version VALUES (1, :version)
            ON CONFLICT (id) DO UPDATE SET version = :version
        """,
        {"version": DATABASE_VERSION},
    )

    await db.execute(
        """
            CREATE TABLE IF NOT EXISTS anime (
                id TEXT PRIMARY KEY,
                anilist_id INTEGER UNIQUE,
                title_romaji TEXT,
                title_english TEXT,
                title_native TEXT,
                synonyms TEXT,
                status TEXT NOT NULL,
                current_episode INTEGER NOT NULL DEFAULT 0,
                last_episode_update REAL,
                updated_at REAL
            )
        """
    )

    await db.execute(
        """
            CREATE TABLE IF NOT EXISTS episodes (
                id TEXT PRIMARY KEY,
                anime_id TEXT NOT NULL,
                number INTEGER NOT NULL,
                title TEXT,
                created_at REAL,
                UNIQUE (anime_id, number)
            )
        """
    )

    await db.execute(
        """
            CREATE TABLE IF NOT EXISTS sources (
                id TEXT PRIMARY KEY,
                episode_id TEXT NOT NULL,
                scraper TEXT NOT NULL,
                locator TEXT NOT NULL,
                created_at REAL,
                UNIQUE (episode_id, scraper)
            )
        """
    )

    await db.execute(
        """
            CREATE TABLE IF NOT EXISTS relations (
                anime_id TEXT NOT NULL,
                related_anime_id TEXT NOT NULL,
                type TEXT NOT NULL,
                PRIMARY KEY (anime_id, related_anime_id, type)
            )
        """
    )

    await db.execute(
        """
            CREATE TABLE IF NOT EXISTS scraper_mappings (
                anime_id TEXT NOT NULL,
                scraper TEXT NOT NULL,
                locator TEXT NOT NULL,
                matched_title TEXT,
                timestamp REAL,
                PRIMARY KEY (anime_id, scraper)
            )
        """
    )

    await db.execute(
        """
            CREATE TABLE IF NOT EXISTS jobs (
                id TEXT PRIMARY KEY,
                kind TEXT NOT NULL,
                payload TEXT NOT NULL,
                priority INTEGER NOT NULL,
                remove_on_complete BOOLEAN NOT NULL,
                status TEXT NOT NULL,
                attempts INTEGER NOT NULL DEFAULT 0,
                last_error TEXT,
                created_at REAL NOT NULL,
                seq INTEGER NOT NULL,
                locked_until REAL,
                claimed_by TEXT
            )
        """
    )

    await db.execute(
        "CREATE INDEX IF NOT EXISTS idx_episodes_anime ON episodes (anime_id)"
    )
    await db.execute(
        "CREATE INDEX IF NOT EXISTS idx_sources_episode ON sources (episode_id)"
    )
    await db.execute(
        "CREATE INDEX IF NOT EXISTS idx_anime_status ON anime (status)"
    )
    await db.execute(
        "CREATE INDEX IF NOT EXISTS idx_jobs_claim ON jobs (status, priority, seq)"
    )


async def teardown_database(db: Database = database):
    try:
        await db.disconnect()
    except Exception as e:
        logger.error(f"Error tearing down the database: {e}")
        logger.exception(traceback.format_exc())
