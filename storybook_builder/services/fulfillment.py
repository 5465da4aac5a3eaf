"""Prodigi print-on-demand client (REST, X-API-Key auth)."""
import logging
from typing import Any, Dict, List, Optional

import requests

from ..config import PRODIGI_API_KEY, PRODIGI_BASE_URL, PUBLIC_BASE_URL
from .book_sizes import orientation_of

logger = logging.getLogger(__name__)

SKUS = {
    "portrait":  "BOOK-FE-A5-P-HARD-G",
    "landscape": "BOOK-FE-A5-L-HARD-G",
    "square":    "BOOK-FE-A5-S-HARD-G",
}
LARGE_SKUS = {
    "portrait":  "BOOK-FE-A4-P-HARD-G",
    "landscape": "BOOK-FE-A4-L-HARD-G",
    "square":    "BOOK-FE-A4-S-HARD-G",
}
LARGE_TRIMS = {"8x10", "8.5x11"}

# provider stage -> our print order status
STAGE_TO_STATUS = {
    "InProgress": "in_progress",
    "Complete":   "shipped",
    "Cancelled":  "cancelled",
}


class FulfillmentError(RuntimeError):
    pass


def product_sku(book_size: str) -> str:
    table = LARGE_SKUS if (book_size or "").lower() in LARGE_TRIMS else SKUS
    return table[orientation_of(book_size)]


def status_for_stage(stage: Optional[str]) -> Optional[str]:
    return STAGE_TO_STATUS.get(stage or "")


def _request(method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    if not PRODIGI_API_KEY:
        raise FulfillmentError("PRODIGI_API_KEY is not set")
    r = requests.request(
        method, f"{PRODIGI_BASE_URL}{path}", json=json,
        headers={"X-API-Key": PRODIGI_API_KEY, "Content-Type": "application/json"},
        timeout=60,
    )
    if r.status_code >= 400:
        raise FulfillmentError(f"Prodigi {method} {path} -> {r.status_code}: {r.text[:300]}")
    return r.json() if r.content else {}


def create_order(
    merchant_reference: str,
    recipient: Dict[str, Any],
    book_size: str,
    pdf_url: str,
    copies: int = 1,
    shipping_method: str = "Standard",
) -> Dict[str, Any]:
    body = {
        "merchantReference": merchant_reference,
        "shippingMethod": shipping_method,
        "recipient": recipient,
        "callbackUrl": f"{PUBLIC_BASE_URL}/api/webhook/prodigi",
        "items": [{
            "sku": product_sku(book_size),
            "copies": copies,
            "sizing": "fillPrintArea",
            "assets": [{"printArea": "default", "url": pdf_url}],
        }],
        "metadata": {"bookSize": book_size},
    }
    data = _request("POST", "/orders", body)
    order = data.get("order") or data
    logger.info("📦 Prodigi order created ref=%s id=%s", merchant_reference, order.get("id"))
    return order


def cancel_order(order_id: str) -> None:
    _request("POST", f"/orders/{order_id}/actions/cancel")
    logger.info("🛑 Prodigi order cancelled id=%s", order_id)


def first_shipment(order: Dict[str, Any]) -> Dict[str, Optional[str]]:
    shipments: List[Dict[str, Any]] = order.get("shipments") or []
    if not shipments:
        return {}
    s = shipments[0]
    return {
        "carrier": (s.get("carrier") or {}).get("name"),
        "tracking_number": (s.get("tracking") or {}).get("number"),
        "tracking_url": (s.get("tracking") or {}).get("url"),
    }
