import uvicorn

from enime.core.models import settings

if __name__ == "__main__":
    uvicorn.run(
        "enime.api.app:app",
        host=settings.FASTAPI_HOST,
        port=settings.FASTAPI_PORT,
        log_config=None,
    )
