# storybook_builder/main.py
import logging
import os
import time

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from .config import APP_VERSION, DATA_ROOT, LOG_LEVEL, SERVICE_NAME
from .db import init_db
from .routers.admin import router as admin_router
from .routers.commerce import router as commerce_router
from .routers.print_orders import router as print_orders_router
from .routers.storybooks import router as storybooks_router

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

logger.info("📂 MEDIA ROOT = %s", DATA_ROOT.resolve())
logger.info("📦 Writable? %s", os.access(DATA_ROOT, os.W_OK))

app = FastAPI(
    title=SERVICE_NAME,
    version=APP_VERSION,
    description="Create, sell and print AI-illustrated children's storybooks.",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)

# Serve generated images and print files
app.mount("/media", StaticFiles(directory=str(DATA_ROOT)), name="media")


# ---------- Simple health/root ----------
@app.get("/", tags=["Root"])
def root():
    return {"service": SERVICE_NAME, "docs": "/docs", "health": "/health"}


@app.get("/health", tags=["Root"])
def health():
    return {"ok": True, "ts": int(time.time())}


app.include_router(storybooks_router)
app.include_router(commerce_router)
app.include_router(print_orders_router)
app.include_router(admin_router)


@app.on_event("startup")
def _startup():
    init_db()
    paths = sorted({getattr(r, "path", "") for r in app.routes})
    logger.info("📚 Registered routes:")
    for p in paths:
        if p:
            logger.info("  • %s", p)
