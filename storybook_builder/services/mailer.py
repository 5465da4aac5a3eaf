import base64
import logging
from typing import Dict, List, Optional, Tuple

import requests

from ..config import EMAIL_FROM, PUBLIC_BASE_URL, RESEND_API_KEY, SERVICE_NAME

logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"

Attachment = Tuple[str, bytes]  # (filename, content)


class EmailError(RuntimeError):
    pass


def send_email(to: str, subject: str, text: str, attachments: Optional[List[Attachment]] = None) -> bool:
    """Send through Resend. Returns False (and logs) when no API key is configured."""
    if not RESEND_API_KEY:
        logger.info("✉️ RESEND_API_KEY not set; skipping email to=%s subject=%r", to, subject)
        return False
    payload: Dict = {"from": EMAIL_FROM, "to": [to], "subject": subject, "text": text}
    if attachments:
        payload["attachments"] = [
            {"filename": name, "content": base64.b64encode(data).decode("ascii")}
            for name, data in attachments
        ]
    r = requests.post(
        RESEND_URL, json=payload,
        headers={"Authorization": f"Bearer {RESEND_API_KEY}"}, timeout=30,
    )
    if r.status_code >= 400:
        raise EmailError(f"Resend {r.status_code}: {r.text[:200]}")
    logger.info("✉️ Email sent to=%s subject=%r", to, subject)
    return True


def send_invoice_email(to: str, name: str, order_id: str, invoice_pdf: bytes) -> bool:
    short = order_id[-8:].upper()
    text = (
        f"Hi {name},\n\n"
        f"Thank you for your order! Your invoice for order #{short} is attached.\n\n"
        f"You can find your storybooks any time at {PUBLIC_BASE_URL}/purchases\n\n"
        f"- {SERVICE_NAME}"
    )
    return send_email(to, f"Your {SERVICE_NAME} invoice #{short}", text, [(f"invoice-{short}.pdf", invoice_pdf)])


def send_print_purchase_email(to: str, name: str, title: str, reader_pdf: Optional[bytes]) -> bool:
    text = (
        f"Hi {name},\n\n"
        f"Your printed copy of \"{title}\" is being prepared. We'll email you tracking details "
        "as soon as it ships.\n\n"
        "A digital copy is included with your purchase"
        + (" and attached to this email." if reader_pdf else ".")
        + f"\n\n- {SERVICE_NAME}"
    )
    attachments = [(f"{title[:60]}.pdf", reader_pdf)] if reader_pdf else None
    return send_email(to, f"Your print order for \"{title}\"", text, attachments)


def send_order_cancelled_email(to: str, name: str, title: str, order_id: str, payment_intent_id: str) -> bool:
    text = (
        f"Hi {name},\n\n"
        f"Unfortunately we had to cancel your print order for \"{title}\" (order {order_id}). "
        "Our print partner could not retrieve the book files.\n\n"
        f"A full refund has been issued to your original payment method (reference {payment_intent_id}). "
        "Refunds usually appear within 5-10 business days.\n\n"
        f"We're sorry for the trouble. - {SERVICE_NAME}"
    )
    return send_email(to, f"Your print order for \"{title}\" was cancelled", text)
