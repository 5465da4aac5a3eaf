"""Stripe payment intents and refunds."""
import json
import logging
from typing import Any, Dict, List, Optional

import stripe

from ..config import STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET

logger = logging.getLogger(__name__)

stripe.api_key = STRIPE_SECRET_KEY


class PaymentError(RuntimeError):
    pass


def _require_key() -> None:
    if not stripe.api_key:
        raise PaymentError("STRIPE_SECRET_KEY is not set")


def create_payment_intent(
    amount: int,
    user_id: str,
    items: List[Dict[str, Any]],
    shipping: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    _require_key()
    metadata = {"userId": user_id, "items": json.dumps(items, separators=(",", ":"))}
    if shipping:
        metadata["shipping"] = json.dumps(shipping, separators=(",", ":"))
    intent = stripe.PaymentIntent.create(
        amount=amount,
        currency="usd",
        automatic_payment_methods={"enabled": True},
        metadata=metadata,
    )
    logger.info("💳 PaymentIntent created id=%s amount=%d", intent["id"], amount)
    return {"id": intent["id"], "client_secret": intent["client_secret"], "amount": amount}


def retrieve_payment_intent(payment_intent_id: str) -> Dict[str, Any]:
    _require_key()
    pi = stripe.PaymentIntent.retrieve(payment_intent_id)
    return {
        "id": pi["id"],
        "status": pi["status"],
        "amount": pi["amount"],
        "amount_received": pi.get("amount_received") or 0,
        "metadata": dict(pi.get("metadata") or {}),
    }


def refund(payment_intent_id: str, metadata: Dict[str, str], amount: Optional[int] = None) -> str:
    """Refund ``amount`` cents of the intent, or all of it when ``amount`` is None."""
    _require_key()
    params: Dict[str, Any] = {"payment_intent": payment_intent_id, "reason": "requested_by_customer", "metadata": metadata}
    if amount is not None:
        params["amount"] = amount
    r = stripe.Refund.create(**params)
    logger.info("💸 Refund created id=%s for %s amount=%s", r["id"], payment_intent_id, amount if amount is not None else "full")
    return r["id"]


def construct_event(payload: bytes, signature: str) -> Dict[str, Any]:
    """Verify the webhook signature when a secret is configured, else parse as-is."""
    if STRIPE_WEBHOOK_SECRET:
        event = stripe.Webhook.construct_event(payload, signature, STRIPE_WEBHOOK_SECRET)
        return event.to_dict() if hasattr(event, "to_dict") else dict(event)
    return json.loads(payload or b"{}")
