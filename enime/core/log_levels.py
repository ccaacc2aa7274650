STANDARD_LOG_LEVELS = {
    "DEBUG": {"icon": "🔍", "loguru_color": "<fg #8a8f98>"},
    "INFO": {"icon": "📺", "loguru_color": "<fg #e8a0bf>"},
    "WARNING": {"icon": "⚠️", "loguru_color": "<fg #f2b134>"},
    "ERROR": {"icon": "❌", "loguru_color": "<fg #e5484d>"},
    "CRITICAL": {"icon": "💀", "loguru_color": "<fg #e5484d>"},
}

# Ordered by severity number, workers and queue sit between scrapers and cadences
CUSTOM_LOG_LEVELS = {
    "ENIME": {"icon": "🌸", "loguru_color": "<fg #f38ba8>", "no": 50},
    "API": {"icon": "👾", "loguru_color": "<fg #0b7fab>", "no": 45},
    "SCRAPER": {"icon": "🕷️", "loguru_color": "<fg #c9a227>", "no": 40},
    "WORKER": {"icon": "🏭", "loguru_color": "<fg #b370d1>", "no": 35},
    "DATABASE": {"icon": "💾", "loguru_color": "<fg #4f9cd9>", "no": 32},
    "QUEUE": {"icon": "📬", "loguru_color": "<fg #3fb8af>", "no": 30},
    "SCHEDULER": {"icon": "⏰", "loguru_color": "<fg #6cc070>", "no": 25},
    "PROXY": {"icon": "🛰️", "loguru_color": "<fg #7a8cf0>", "no": 20},
}
