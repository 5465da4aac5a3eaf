import io
import os
import tempfile
from types import SimpleNamespace

# must be set before storybook_builder.config is imported
_MEDIA = tempfile.mkdtemp(prefix="storybook-media-")
os.environ["MEDIA_ROOT"] = _MEDIA
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
for _k in ("OPENAI_API_KEY", "S3_BUCKET", "STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET",
           "RESEND_API_KEY", "PRODIGI_API_KEY", "PDF_FONT_TTF", "PDF_FONT_BOLD_TTF"):
    os.environ.pop(_k, None)

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from storybook_builder.db import Base, SessionLocal, engine
from storybook_builder.models import AdminUser, Storybook, User


def png_bytes(w: int = 60, h: int = 90, color=(120, 180, 220)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (w, h), color).save(buf, format="PNG")
    return buf.getvalue()


def book_stub(n_pages: int, text: str = "Once upon a time a small fox found a lantern.", **kw):
    return SimpleNamespace(
        title=kw.get("title", "The Fox and the Lantern"),
        author=kw.get("author", "Ada"),
        cover_image_url=kw.get("cover_image_url"),
        pages=[{"page_number": i + 1, "text": text, "image_url": kw.get("image_url")} for i in range(n_pages)],
    )


@pytest.fixture(autouse=True)
def _fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(monkeypatch):
    from storybook_builder.main import app
    from storybook_builder.services import generation, purchases

    monkeypatch.setattr(generation, "enqueue", lambda job_id: None)
    monkeypatch.setattr(purchases, "generate_reader_pdf", lambda book: b"%PDF-reader")
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_user(db):
    def _make(email="reader@example.com", first="Ada", last="Lovelace"):
        u = User(email=email, first_name=first, last_name=last)
        db.add(u)
        db.commit()
        return u
    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def other_user(make_user):
    return make_user(email="other@example.com", first="Grace", last="Hopper")


@pytest.fixture
def admin(db):
    a = AdminUser(email="admin@example.com", first_name="Root", is_super_admin=True)
    db.add(a)
    db.commit()
    return a


@pytest.fixture
def make_book(db):
    def _make(owner, n_pages=3, title="The Fox and the Lantern", is_public=False):
        b = Storybook(
            user_id=owner.id, title=title, author="Ada", prompt="a fox who finds a lantern",
            pages=[{"page_number": i + 1, "text": f"Page {i + 1} text.", "image_url": None} for i in range(n_pages)],
            is_public=is_public,
        )
        db.add(b)
        db.commit()
        return b
    return _make


@pytest.fixture
def storybook(make_book, user):
    return make_book(user)


def auth(user) -> dict:
    return {"X-User-Id": user.id}
