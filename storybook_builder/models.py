import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[Optional[str]] = mapped_column(String(255))
    first_name: Mapped[Optional[str]] = mapped_column(String(120))
    last_name: Mapped[Optional[str]] = mapped_column(String(120))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    @property
    def display_name(self) -> str:
        full = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return full or "Valued Customer"


class Storybook(Base):
    __tablename__ = "storybooks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    title: Mapped[str] = mapped_column(Text)
    author: Mapped[Optional[str]] = mapped_column(Text)
    prompt: Mapped[str] = mapped_column(Text, default="")
    # [{page_number, text, image_url, image_prompt}]
    pages: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list)
    cover_image_url: Mapped[Optional[str]] = mapped_column(Text)
    back_cover_image_url: Mapped[Optional[str]] = mapped_column(Text)
    orientation: Mapped[str] = mapped_column(String(16), default="portrait")
    is_public: Mapped[bool] = mapped_column(Boolean, default=False)
    share_url: Mapped[Optional[str]] = mapped_column(String(32), unique=True)
    view_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class GenerationJob(Base):
    __tablename__ = "generation_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    prompt: Mapped[str] = mapped_column(Text)
    author: Mapped[Optional[str]] = mapped_column(Text)
    page_count: Mapped[int] = mapped_column(Integer, default=8)
    orientation: Mapped[str] = mapped_column(String(16), default="portrait")
    step: Mapped[str] = mapped_column(String(32), default="processing_images")
    progress: Mapped[int] = mapped_column(Integer, default=0)
    message: Mapped[str] = mapped_column(Text, default="Queued")
    error: Mapped[Optional[str]] = mapped_column(Text)
    storybook_id: Mapped[Optional[str]] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Purchase(Base):
    __tablename__ = "purchases"
    __table_args__ = (
        UniqueConstraint("payment_intent_id", "storybook_id", "type", name="uq_purchase_intent_book_type"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    storybook_id: Mapped[str] = mapped_column(ForeignKey("storybooks.id", ondelete="CASCADE"), index=True)
    type: Mapped[str] = mapped_column(String(16))
    price: Mapped[int] = mapped_column(Integer)
    payment_intent_id: Mapped[str] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(16), default="pending")
    book_size: Mapped[Optional[str]] = mapped_column(String(16))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    storybook: Mapped[Storybook] = relationship()


class CartItem(Base):
    __tablename__ = "cart_items"
    __table_args__ = (
        UniqueConstraint("user_id", "storybook_id", "product_type", "book_size", name="uq_cart_item"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    storybook_id: Mapped[str] = mapped_column(ForeignKey("storybooks.id", ondelete="CASCADE"))
    product_type: Mapped[str] = mapped_column(String(16))
    # digital items carry "" so the unique constraint still applies
    book_size: Mapped[str] = mapped_column(String(16), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    storybook: Mapped[Storybook] = relationship()


class PrintOrder(Base):
    __tablename__ = "print_orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    order_reference: Mapped[str] = mapped_column(String(16), unique=True)
    purchase_id: Mapped[str] = mapped_column(ForeignKey("purchases.id", ondelete="CASCADE"))
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    storybook_id: Mapped[str] = mapped_column(ForeignKey("storybooks.id", ondelete="CASCADE"))
    book_size: Mapped[str] = mapped_column(String(16), default="6x9")
    status: Mapped[str] = mapped_column(String(16), default="creating", index=True)
    provider_order_id: Mapped[Optional[str]] = mapped_column(String(64))
    carrier: Mapped[Optional[str]] = mapped_column(String(120))
    tracking_number: Mapped[Optional[str]] = mapped_column(String(120))
    tracking_url: Mapped[Optional[str]] = mapped_column(Text)
    webhook_data: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    ship_name: Mapped[Optional[str]] = mapped_column(String(255))
    ship_line1: Mapped[Optional[str]] = mapped_column(String(255))
    ship_line2: Mapped[Optional[str]] = mapped_column(String(255))
    ship_city: Mapped[Optional[str]] = mapped_column(String(120))
    ship_state: Mapped[Optional[str]] = mapped_column(String(120))
    ship_postal_code: Mapped[Optional[str]] = mapped_column(String(32))
    ship_country: Mapped[Optional[str]] = mapped_column(String(2))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    purchase: Mapped[Purchase] = relationship()
    storybook: Mapped[Storybook] = relationship()
    user: Mapped[User] = relationship()
    notes: Mapped[List["OrderNote"]] = relationship(order_by="OrderNote.created_at")
    history: Mapped[List["OrderStatusHistory"]] = relationship(order_by="OrderStatusHistory.id")


class OrderNote(Base):
    __tablename__ = "order_notes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    print_order_id: Mapped[str] = mapped_column(ForeignKey("print_orders.id", ondelete="CASCADE"), index=True)
    admin_id: Mapped[Optional[str]] = mapped_column(ForeignKey("admin_users.id"))
    body: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class OrderStatusHistory(Base):
    __tablename__ = "order_status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    print_order_id: Mapped[str] = mapped_column(ForeignKey("print_orders.id", ondelete="CASCADE"), index=True)
    from_status: Mapped[Optional[str]] = mapped_column(String(16))
    to_status: Mapped[str] = mapped_column(String(16))
    changed_by: Mapped[str] = mapped_column(String(64), default="system")
    reason: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class AdminUser(Base):
    __tablename__ = "admin_users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(255), unique=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(120))
    last_name: Mapped[Optional[str]] = mapped_column(String(120))
    is_super_admin: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class AdminAuditLog(Base):
    __tablename__ = "admin_audit_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    admin_id: Mapped[str] = mapped_column(ForeignKey("admin_users.id", ondelete="CASCADE"), index=True)
    action: Mapped[str] = mapped_column(Text)
    resource_type: Mapped[Optional[str]] = mapped_column(Text)
    resource_id: Mapped[Optional[str]] = mapped_column(String(36))
    changes: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
