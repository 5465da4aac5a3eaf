import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..db import SessionLocal
from ..models import GenerationJob, Storybook
from . import images, llm, storage
from .cover_text import add_text_to_cover_image
from .limiter import storybook_generation_limiter

logger = logging.getLogger(__name__)

MIN_PROMPT_CHARS = 10
MIN_PAGES, MAX_PAGES = 1, 50


def enqueue(job_id: str) -> None:
    from ..worker import generate_storybook
    generate_storybook.delay(job_id)


def start_generation(
    db: Session,
    user_id: str,
    prompt: str,
    author: Optional[str] = None,
    page_count: int = 8,
    orientation: str = "portrait",
) -> GenerationJob:
    prompt = (prompt or "").strip()
    if len(prompt) < MIN_PROMPT_CHARS:
        raise ValueError(f"prompt must be at least {MIN_PROMPT_CHARS} characters")
    if not MIN_PAGES <= page_count <= MAX_PAGES:
        raise ValueError(f"page_count must be between {MIN_PAGES} and {MAX_PAGES}")
    job = GenerationJob(
        user_id=user_id, prompt=prompt, author=author, page_count=page_count,
        orientation=orientation, step="processing_images", progress=0, message="Queued",
    )
    db.add(job)
    db.commit()
    enqueue(job.id)
    logger.info("🪄 Generation queued session=%s user=%s pages=%d", job.id, user_id, page_count)
    return job


def _progress(db: Session, job: GenerationJob, step: str, progress: int, message: str) -> None:
    job.step, job.progress, job.message = step, int(progress), message
    db.commit()


def run_generation(job_id: str, session_factory: Callable[[], Session] = SessionLocal) -> str:
    """Full pipeline for one session; returns the new storybook id."""
    db = session_factory()
    try:
        job = db.get(GenerationJob, job_id)
        if job is None:
            raise LookupError(f"unknown generation session {job_id}")
        orientation = job.orientation or "portrait"
        with storybook_generation_limiter:
            try:
                return _generate(db, job, orientation)
            except Exception as e:
                db.rollback()
                job.step, job.progress = "processing_images", 0
                job.message, job.error = f"Generation failed: {e}", str(e)
                db.commit()
                logger.warning("⚠️ Generation failed session=%s: %s", job_id, e)
                raise
    finally:
        db.close()


def _generate(db: Session, job: GenerationJob, orientation: str) -> str:
    _progress(db, job, "processing_images", 10, "Preparing your story...")
    _progress(db, job, "generating_story", 30, "Generating story outline...")
    story = llm.generate_story(job.prompt, job.page_count)

    _progress(db, job, "generating_illustrations", 50, "Creating beautiful illustrations...")
    cover_art = images.generate_illustration(story["cover_image_prompt"], orientation)
    try:
        cover_url = storage.put_image(add_text_to_cover_image(cover_art, story["title"], job.author), ext="jpg")
    except Exception as e:
        logger.warning("⚠️ cover text failed, using plain art: %s", e)
        cover_url = storage.put_image(cover_art, ext="png")

    pages = []
    total = len(story["pages"])
    for i, page in enumerate(story["pages"]):
        url = storage.put_image(images.generate_illustration(page["image_prompt"], orientation), ext="png")
        pages.append({
            "page_number": page["page_number"],
            "text": page["text"],
            "image_url": url,
            "image_prompt": page["image_prompt"],
        })
        _progress(db, job, "generating_illustrations", 50 + (i + 1) * 40 // total,
                  f"Generated illustration {i + 1} of {total}")

    _progress(db, job, "finalizing", 95, "Finalizing your storybook...")
    book = Storybook(
        user_id=job.user_id, title=story["title"], author=job.author, prompt=job.prompt,
        pages=pages, cover_image_url=cover_url, orientation=orientation,
    )
    db.add(book)
    db.flush()
    job.storybook_id = book.id
    _progress(db, job, "finalizing", 100, f'Complete! Your storybook "{book.title}" is ready.')
    logger.info("📘 Composed storybook id=%s title=%r pages=%d", book.id, book.title, len(pages))
    return book.id
