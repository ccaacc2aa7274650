import traceback

import uvicorn

from enime.api.app import app
from enime.core.logger import log_startup_info, logger, setupLogger
from enime.core.models import settings


def run_with_uvicorn():
    config = uvicorn.Config(
        app,
        host=settings.FASTAPI_HOST,
        port=settings.FASTAPI_PORT,
        proxy_headers=True,
        forwarded_allow_ips="*",
        log_config=None,
    )
    server = uvicorn.Server(config=config)

    setupLogger(settings.LOG_LEVEL)
    log_startup_info(settings)
    try:
        server.run()
    except KeyboardInterrupt:
        logger.log("ENIME", "Server stopped by user")
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        logger.exception(traceback.format_exc())
    finally:
        logger.log("ENIME", "Server Shutdown")


if __name__ == "__main__":
    run_with_uvicorn()
