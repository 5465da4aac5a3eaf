import base64
import json
import logging
import zlib
from typing import Any
from urllib.parse import quote

logger = logging.getLogger(__name__)


def compress_data(data: Any) -> str:
    """JSON -> deflate -> URL-safe base64 (padding stripped)."""
    try:
        raw = json.dumps(data, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        return base64.urlsafe_b64encode(zlib.compress(raw, 9)).decode("ascii").rstrip("=")
    except (TypeError, ValueError) as e:
        logger.warning("⚠️ compression failed: %s", e)
        raise ValueError("Failed to compress data") from e


def decompress_data(payload: str) -> Any:
    try:
        padded = payload + "=" * (-len(payload) % 4)
        raw = zlib.decompress(base64.urlsafe_b64decode(padded.encode("ascii")))
        return json.loads(raw.decode("utf-8"))
    except (ValueError, zlib.error, UnicodeError) as e:
        logger.warning("⚠️ decompression failed: %s", e)
        raise ValueError("Failed to decompress data") from e


def generate_shareable_url(data: Any, base_url: str) -> str:
    sep = "&" if "?" in base_url else "?"
    return f"{base_url}{sep}data={quote(compress_data(data))}"
