import logging
import math
import mimetypes
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from pydantic import BaseModel, Field, constr
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..config import PUBLIC_BASE_URL
from ..db import get_db
from ..deps import current_user, optional_user
from ..models import GenerationJob, Storybook, User, utcnow
from ..services import generation, storage
from ..services.book_sizes import DEFAULT_TRIM, is_supported
from ..services.compression import compress_data, generate_shareable_url
from ..services.epub import generate_epub
from ..services.print_pdf import PageCountError, generate_print_pdf
from ..services.purchases import owns_digital
from ..services.reader_pdf import generate_reader_pdf

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


# ---------- Models ----------
class CreateStorybookRequest(BaseModel):
    prompt: constr(strip_whitespace=True, min_length=10, max_length=2000)
    author: Optional[constr(strip_whitespace=True, max_length=120)] = None
    page_count: int = Field(8, ge=1, le=50)
    orientation: str = Field("portrait", pattern="^(portrait|landscape|square)$")


class VisibilityRequest(BaseModel):
    isPublic: bool


class PageOut(BaseModel):
    page_number: int
    text: str
    image_url: Optional[str] = None


class StorybookOut(BaseModel):
    id: str
    title: str
    author: Optional[str] = None
    pages: List[PageOut]
    cover_image_url: Optional[str] = None
    orientation: str
    is_public: bool
    share_url: Optional[str] = None
    view_count: int
    created_at: str


def _out(book: Storybook) -> StorybookOut:
    return StorybookOut(
        id=book.id, title=book.title, author=book.author,
        pages=[PageOut(page_number=p.get("page_number") or i, text=p.get("text") or "", image_url=p.get("image_url"))
               for i, p in enumerate(book.pages or [], start=1)],
        cover_image_url=book.cover_image_url, orientation=book.orientation or "portrait",
        is_public=bool(book.is_public), share_url=book.share_url, view_count=book.view_count or 0,
        created_at=book.created_at.isoformat() if book.created_at else "",
    )


def _live_book(db: Session, storybook_id: str) -> Storybook:
    book = db.get(Storybook, storybook_id)
    if book is None or book.deleted_at is not None:
        raise HTTPException(status_code=404, detail="Storybook not found")
    return book


def _owned_book(db: Session, storybook_id: str, user: User) -> Storybook:
    book = _live_book(db, storybook_id)
    if book.user_id != user.id:
        raise HTTPException(status_code=403, detail="Not your storybook")
    return book


def _pdf_response(pdf: bytes, filename: str) -> Response:
    safe = "".join(c if c.isalnum() or c in "-_" else "_" for c in filename)[:80] or "storybook"
    return Response(content=pdf, media_type="application/pdf",
                    headers={"Content-Disposition": f'attachment; filename="{safe}.pdf"'})


# ===== Generation =====
@router.post("/storybooks", tags=["Storybooks"])
def create_storybook(req: CreateStorybookRequest, user: User = Depends(current_user), db: Session = Depends(get_db)):
    try:
        job = generation.start_generation(db, user.id, req.prompt, req.author, req.page_count, req.orientation)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"sessionId": job.id}


@router.get("/generation/{session_id}/progress", tags=["Storybooks"])
def generation_progress(session_id: str, user: User = Depends(current_user), db: Session = Depends(get_db)):
    job = db.get(GenerationJob, session_id)
    if job is None or job.user_id != user.id:
        raise HTTPException(status_code=404, detail="Generation session not found")
    return {
        "step": job.step, "progress": job.progress, "message": job.message,
        "error": job.error, "storybookId": job.storybook_id,
    }


# ===== Library =====
@router.get("/storybooks", response_model=List[StorybookOut], tags=["Storybooks"])
def list_storybooks(user: User = Depends(current_user), db: Session = Depends(get_db)):
    books = db.scalars(
        select(Storybook)
        .where(Storybook.user_id == user.id, Storybook.deleted_at.is_(None))
        .order_by(Storybook.created_at.desc())
    )
    return [_out(b) for b in books]


@router.get("/storybooks/{storybook_id}", response_model=StorybookOut, tags=["Storybooks"])
def get_storybook(storybook_id: str, user: Optional[User] = Depends(optional_user), db: Session = Depends(get_db)):
    book = _live_book(db, storybook_id)
    if not book.is_public and (user is None or user.id != book.user_id):
        raise HTTPException(status_code=403, detail="This storybook is private")
    return _out(book)


@router.delete("/storybooks/{storybook_id}", tags=["Storybooks"])
def delete_storybook(storybook_id: str, user: User = Depends(current_user), db: Session = Depends(get_db)):
    book = _owned_book(db, storybook_id, user)
    urls = [book.cover_image_url, book.back_cover_image_url] + [p.get("image_url") for p in book.pages or []]
    removed = sum(1 for u in urls if storage.delete(u))
    book.deleted_at = utcnow()
    book.is_public = False
    db.commit()
    logger.info("🗑️ Storybook deleted id=%s images_removed=%d", storybook_id, removed)
    return {"ok": True, "deleted_id": storybook_id}


# ===== Sharing =====
@router.post("/storybooks/{storybook_id}/share", tags=["Sharing"])
def share_storybook(storybook_id: str, user: User = Depends(current_user), db: Session = Depends(get_db)):
    book = _owned_book(db, storybook_id, user)
    if not book.share_url:
        book.share_url = uuid.uuid4().hex[:12]
        db.commit()
    return {"shareUrl": f"{PUBLIC_BASE_URL}/shared/{book.share_url}", "shareId": book.share_url}


@router.get("/shared/{share_url}", response_model=StorybookOut, tags=["Sharing"])
def get_shared(share_url: str, db: Session = Depends(get_db)):
    book = db.scalars(select(Storybook).where(Storybook.share_url == share_url)).first()
    if book is None or book.deleted_at is not None:
        raise HTTPException(status_code=404, detail="Shared storybook not found")
    book.view_count = (book.view_count or 0) + 1
    db.commit()
    return _out(book)


@router.patch("/storybooks/{storybook_id}/visibility", tags=["Sharing"])
def set_visibility(storybook_id: str, req: VisibilityRequest, user: User = Depends(current_user), db: Session = Depends(get_db)):
    book = _owned_book(db, storybook_id, user)
    book.is_public = req.isPublic
    db.commit()
    return {"id": book.id, "isPublic": book.is_public}


@router.get("/storybooks/{storybook_id}/share-payload", tags=["Sharing"])
def share_payload(storybook_id: str, user: User = Depends(current_user), db: Session = Depends(get_db)):
    book = _owned_book(db, storybook_id, user)
    data = {
        "title": book.title, "author": book.author, "cover": book.cover_image_url,
        "pages": [{"text": p.get("text"), "image": p.get("image_url")} for p in book.pages or []],
    }
    return {"payload": compress_data(data), "url": generate_shareable_url(data, f"{PUBLIC_BASE_URL}/view")}


@router.get("/gallery", tags=["Sharing"])
def gallery(page: int = Query(1, ge=1), limit: int = Query(12), db: Session = Depends(get_db)):
    limit = max(1, min(limit, 50))
    where = (Storybook.is_public.is_(True), Storybook.deleted_at.is_(None))
    total = db.scalar(select(func.count()).select_from(Storybook).where(*where)) or 0
    books = db.scalars(
        select(Storybook).where(*where).order_by(Storybook.created_at.desc())
        .offset((page - 1) * limit).limit(limit)
    )
    return {
        "items": [_out(b).model_dump() for b in books],
        "page": page, "limit": limit, "total": total,
        "totalPages": math.ceil(total / limit) if total else 0,
    }


# ===== PDFs =====
@router.get("/storybooks/{storybook_id}/pdf", tags=["PDF"])
def reader_pdf(storybook_id: str, user: User = Depends(current_user), db: Session = Depends(get_db)):
    book = _live_book(db, storybook_id)
    if book.user_id != user.id and not owns_digital(db, user.id, book.id):
        raise HTTPException(status_code=403, detail="Purchase required")
    return _pdf_response(generate_reader_pdf(book), book.title)


@router.get("/storybooks/{storybook_id}/print-pdf", tags=["PDF"])
def print_pdf(
    storybook_id: str,
    book_size: str = Query(DEFAULT_TRIM),
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    book = _owned_book(db, storybook_id, user)
    if not is_supported(book_size):
        raise HTTPException(status_code=400, detail=f"Unsupported book size: {book_size}")
    try:
        pdf = generate_print_pdf(book, book_size)
    except PageCountError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _pdf_response(pdf, f"{book.title}_print_{book_size}")


@router.get("/storybooks/{storybook_id}/epub", tags=["PDF"])
def epub_download(storybook_id: str, user: User = Depends(current_user), db: Session = Depends(get_db)):
    book = _live_book(db, storybook_id)
    if book.user_id != user.id and not owns_digital(db, user.id, book.id):
        raise HTTPException(status_code=403, detail="Purchase required")
    if not book.pages:
        raise HTTPException(status_code=400, detail="Storybook has no pages")
    try:
        data = generate_epub(book)
    except Exception as e:
        logger.error("❌ EPUB generation failed for %s: %s", book.id, e)
        raise HTTPException(status_code=500, detail="Failed to generate EPUB")
    safe = "".join(c if c.isalnum() or c in "-_" else "_" for c in book.title)[:80] or "storybook"
    return Response(content=data, media_type="application/epub+zip",
                    headers={"Content-Disposition": f'attachment; filename="{safe.lower()}.epub"'})


# ===== Object storage passthrough =====
@router.get("/storage/{key:path}", tags=["Media"])
def storage_object(key: str):
    try:
        data = storage.get_bytes(f"{storage.STORAGE_PREFIX}{key}")
    except Exception as e:
        logger.warning("⚠️ storage read failed for %s: %s", key, e)
        raise HTTPException(status_code=404, detail="not found")
    mt, _ = mimetypes.guess_type(key)
    return Response(content=data, media_type=mt or "application/octet-stream")
