import logging

from celery import Celery
from celery.schedules import crontab

from .config import GENERATION_CONCURRENCY, REDIS_URL
from .db import SessionLocal, init_db
from .services.generation import run_generation
from .services.stuck_orders import check_and_cancel_stuck_orders

logger = logging.getLogger(__name__)

celery_app = Celery("storybook_builder", broker=REDIS_URL, backend=REDIS_URL)
# one worker process, GENERATION_CONCURRENCY threads: they share storybook_generation_limiter
celery_app.conf.worker_pool = "threads"
celery_app.conf.worker_concurrency = GENERATION_CONCURRENCY
celery_app.conf.beat_schedule = {
    "check-stuck-orders-hourly": {
        "task": "storybook_builder.worker.check_stuck_orders",
        "schedule": crontab(minute=0),
    },
}


@celery_app.on_after_configure.connect
def _setup(sender, **kwargs):
    init_db()


@celery_app.task(name="storybook_builder.worker.generate_storybook")
def generate_storybook(job_id: str) -> str:
    return run_generation(job_id)


@celery_app.task(name="storybook_builder.worker.check_stuck_orders")
def check_stuck_orders() -> dict:
    db = SessionLocal()
    try:
        return check_and_cancel_stuck_orders(db)
    finally:
        db.close()
