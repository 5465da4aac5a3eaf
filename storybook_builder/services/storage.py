import logging
import uuid
from pathlib import Path
from typing import Optional

import boto3
import requests
from botocore.client import Config

from ..config import DATA_ROOT, IMAGES_DIR, PUBLIC_BASE_URL, S3_BUCKET, S3_ENDPOINT, S3_KEY, S3_PUBLIC, S3_SECRET

logger = logging.getLogger(__name__)

STORAGE_PREFIX = "/api/storage/"
MEDIA_PREFIX = "/media/"

_s3 = None


def _client():
    global _s3
    if _s3 is None:
        _s3 = boto3.client(
            "s3",
            endpoint_url=S3_ENDPOINT or None,
            aws_access_key_id=S3_KEY or None,
            aws_secret_access_key=S3_SECRET or None,
            config=Config(signature_version="s3v4"),
            region_name="us-east-1",
        )
    return _s3


def _use_s3() -> bool:
    return bool(S3_BUCKET)


def _media_url_to_abs(media_url: str) -> Path:
    rel = Path(media_url[len(MEDIA_PREFIX):])
    if rel.is_absolute() or ".." in rel.parts:
        raise ValueError(f"bad media path: {media_url}")
    return DATA_ROOT / rel


def put_bytes(data: bytes, folder: str, ext: str, content_type: str) -> str:
    key = f"{folder}/{uuid.uuid4()}.{ext}"
    if _use_s3():
        _client().put_object(Bucket=S3_BUCKET, Key=key, Body=data, ContentType=content_type)
        if S3_PUBLIC:
            return f"{S3_PUBLIC}/{S3_BUCKET}/{key}"
        return f"{STORAGE_PREFIX}{key}"
    out_dir = IMAGES_DIR if folder == "images" else DATA_ROOT / folder
    out_dir.mkdir(parents=True, exist_ok=True)
    out = out_dir / Path(key).name
    out.write_bytes(data)
    return f"{MEDIA_PREFIX}{out.relative_to(DATA_ROOT).as_posix()}"


def put_image(data: bytes, ext: str = "png") -> str:
    return put_bytes(data, "images", ext, f"image/{'jpeg' if ext == 'jpg' else ext}")


def put_pdf(data: bytes) -> str:
    return put_bytes(data, "print", "pdf", "application/pdf")


def absolute_url(url: str) -> str:
    """Fulfillment partners need a fully qualified URL to fetch print files."""
    if url.startswith(("http://", "https://")):
        return url
    return f"{PUBLIC_BASE_URL.rstrip('/')}{url}"


def get_bytes(url: str) -> bytes:
    """Resolve any image reference we hand out back to its bytes."""
    if not url:
        raise ValueError("empty image url")
    if url.startswith(MEDIA_PREFIX):
        return _media_url_to_abs(url).read_bytes()
    if url.startswith(STORAGE_PREFIX):
        if not _use_s3():
            raise ValueError("object storage is not configured")
        obj = _client().get_object(Bucket=S3_BUCKET, Key=url[len(STORAGE_PREFIX):])
        return obj["Body"].read()
    if url.startswith(("http://", "https://")):
        r = requests.get(url, timeout=60)
        r.raise_for_status()
        return r.content
    raise ValueError(f"unsupported image url: {url}")


def delete(url: Optional[str]) -> bool:
    if not url:
        return False
    try:
        if url.startswith(MEDIA_PREFIX):
            p = _media_url_to_abs(url)
            if p.exists():
                p.unlink()
                return True
            return False
        if url.startswith(STORAGE_PREFIX):
            _client().delete_object(Bucket=S3_BUCKET, Key=url[len(STORAGE_PREFIX):])
            return True
        if S3_PUBLIC and url.startswith(f"{S3_PUBLIC}/{S3_BUCKET}/"):
            _client().delete_object(Bucket=S3_BUCKET, Key=url[len(f"{S3_PUBLIC}/{S3_BUCKET}/"):])
            return True
    except Exception as e:
        logger.warning("⚠️ failed to delete %s: %s", url, e)
    return False
