import logging
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import PRICES
from ..models import CartItem
from .book_sizes import DEFAULT_TRIM, is_supported

logger = logging.getLogger(__name__)


class CartConflict(ValueError):
    pass


def list_items(db: Session, user_id: str) -> List[CartItem]:
    return list(db.scalars(
        select(CartItem).where(CartItem.user_id == user_id).order_by(CartItem.created_at)
    ))


def _drop_digital(db: Session, user_id: str, storybook_id: str) -> None:
    db.execute(delete(CartItem).where(
        CartItem.user_id == user_id, CartItem.storybook_id == storybook_id, CartItem.product_type == "digital",
    ))
    db.commit()


def add_item(db: Session, user_id: str, storybook_id: str, product_type: str, book_size: Optional[str] = None) -> CartItem:
    """
    A print copy includes the digital edition: adding print drops a digital
    line for the same book, and digital cannot be added while print is in the cart.
    """
    if product_type not in PRICES:
        raise CartConflict(f"unknown product type: {product_type}")
    if product_type == "print":
        size = (book_size or DEFAULT_TRIM).lower()
        if not is_supported(size):
            raise CartConflict(f"unsupported book size: {book_size}")
    else:
        size = ""

    same_book = [i for i in list_items(db, user_id) if i.storybook_id == storybook_id]
    if product_type == "digital" and any(i.product_type == "print" for i in same_book):
        raise CartConflict("Print edition in cart already includes the digital copy")
    for existing in same_book:
        if existing.product_type == product_type and existing.book_size == size:
            return existing
    if product_type == "print":
        for existing in same_book:
            if existing.product_type == "digital":
                db.delete(existing)

    item = CartItem(user_id=user_id, storybook_id=storybook_id, product_type=product_type, book_size=size)
    db.add(item)
    try:
        db.commit()
    except IntegrityError:
        # raced with another request adding the same line; the rollback undid our digital delete too
        db.rollback()
        if product_type == "print":
            _drop_digital(db, user_id, storybook_id)
        return db.scalars(select(CartItem).where(
            CartItem.user_id == user_id, CartItem.storybook_id == storybook_id,
            CartItem.product_type == product_type, CartItem.book_size == size,
        )).one()
    logger.info("🛒 Cart add user=%s book=%s type=%s size=%s", user_id, storybook_id, product_type, size or "-")
    return item


def remove_item(db: Session, user_id: str, item_id: str) -> bool:
    item = db.get(CartItem, item_id)
    if item is None or item.user_id != user_id:
        return False
    db.delete(item)
    db.commit()
    return True


def clear(db: Session, user_id: str, storybook_ids: Optional[List[str]] = None) -> int:
    stmt = delete(CartItem).where(CartItem.user_id == user_id)
    if storybook_ids is not None:
        stmt = stmt.where(CartItem.storybook_id.in_(storybook_ids))
    n = db.execute(stmt).rowcount
    db.commit()
    return n or 0


def cart_total(items: List[CartItem]) -> int:
    return sum(PRICES[i.product_type] for i in items)
