# storybook_builder/config.py
import os
from pathlib import Path

SERVICE_NAME = "AI Storybook Builder"
APP_VERSION  = "1.2.0"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# ------- MEDIA ROOT -------
DEFAULT_MEDIA = Path(__file__).resolve().parent.parent / "data"
DATA_ROOT = Path(os.getenv("MEDIA_ROOT", "/data"))
if not DATA_ROOT.exists():
    DATA_ROOT = DEFAULT_MEDIA
DATA_ROOT.mkdir(parents=True, exist_ok=True)

IMAGES_DIR = DATA_ROOT / "images"
IMAGES_DIR.mkdir(parents=True, exist_ok=True)

DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{(DATA_ROOT / 'storybooks.db').as_posix()}")
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000")

# -------- OpenAI --------
OPENAI_API_KEY     = os.getenv("OPENAI_API_KEY", "")
OPENAI_ORG_ID      = os.getenv("OPENAI_ORG_ID", "")
OPENAI_TEXT_MODEL  = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_IMAGE_MODEL = os.getenv("IMAGE_MODEL", "gpt-image-1")

# -------- Object storage (S3 / MinIO); empty bucket = local media dir --------
S3_ENDPOINT = os.getenv("S3_ENDPOINT", "")
S3_KEY      = os.getenv("S3_KEY", "")
S3_SECRET   = os.getenv("S3_SECRET", "")
S3_BUCKET   = os.getenv("S3_BUCKET", "")
S3_PUBLIC   = os.getenv("S3_PUBLIC", "")

# -------- Worker --------
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
GENERATION_CONCURRENCY = int(os.getenv("GENERATION_CONCURRENCY", "20"))
STUCK_ORDER_MAX_AGE_MINUTES = int(os.getenv("STUCK_ORDER_MAX_AGE_MINUTES", "60"))

# -------- Payments / email / fulfillment --------
STRIPE_SECRET_KEY     = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
EMAIL_FROM     = os.getenv("EMAIL_FROM", "AI Storybook Builder <orders@storybook.local>")
PRODIGI_API_KEY  = os.getenv("PRODIGI_API_KEY", "")
PRODIGI_BASE_URL = os.getenv("PRODIGI_BASE_URL", "https://api.sandbox.prodigi.com/v4.0")

# -------- PDF fonts (optional TrueType overrides) --------
PDF_FONT_TTF      = os.getenv("PDF_FONT_TTF", "")
PDF_FONT_BOLD_TTF = os.getenv("PDF_FONT_BOLD_TTF", "")

# Server-side prices in cents; client-sent prices are never trusted.
PRICES = {
    "digital": 399,
    "print":   2499,
}
PRODUCT_TYPES = tuple(PRICES)
