from fastapi import APIRouter, Request

from enime.scrapers.manager import scraper_manager
from enime.services.job_queue import job_queue
from enime.utils.network_manager import network_manager

router = APIRouter()


@router.get(
    "/status",
    tags=["General"],
    summary="Reconciliation Status",
    description="Scheduler cadences, worker dispatchers, queue depth and scraper registry.",
)
async def status(request: Request):
    scheduler = getattr(request.app.state, "scheduler", None)
    consumer = getattr(request.app.state, "consumer", None)
    queue = getattr(request.app.state, "queue", job_queue)

    return {
        "scheduler": scheduler.status() if scheduler else None,
        "consumer": consumer.status() if consumer else None,
        "queue": await queue.counts(),
        "scrapers": {
            "total": scraper_manager.total_count(),
            "full_coverage": scraper_manager.full_coverage(),
            "plugins": [
                descriptor.model_dump() for descriptor in scraper_manager.descriptors()
            ],
        },
        "egress": network_manager.provider.status(),
    }
