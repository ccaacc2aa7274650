class ScraperError(Exception):
    """Base exception for scraper plugin errors."""

    def __init__(self, scraper_name: str, message: str):
        self.scraper_name = scraper_name
        self.message = message
        super().__init__(f"{scraper_name}: {message}")


class MatchNotFound(ScraperError):
    """Raised when a plugin finds no candidate for a title."""

    def __init__(self, scraper_name: str, title: str):
        self.title = title
        super().__init__(scraper_name, f"no match found for '{title}'")


class FetchFailure(ScraperError):
    """Raised when a plugin cannot resolve an episode (network, parse or site change)."""

    def __init__(self, scraper_name: str, locator: str, episode_number: int, reason: str):
        self.locator = locator
        self.episode_number = episode_number
        super().__init__(
            scraper_name, f"episode {episode_number} of {locator} failed: {reason}"
        )
