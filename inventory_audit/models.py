"""
SQLAlchemy ORM models for the Inventory Audit service.

Defines the database schema for inventory items, audit events, users and
password reset tokens.
"""
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base, SKU_CONSTRAINT


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InventoryItem(Base):
    """
    Inventory item model representing a product in stock.

    Attributes:
        id (int): Primary key, auto-incremented inventory item ID
        sku (str): Stock Keeping Unit (unique across all items)
        name (str): Product name
        qty (int): Quantity available in inventory, never negative
        location (str): Where the item is stored
        updated_at (datetime): Timestamp of the last create or update
    """
    __tablename__ = "inventory_items"
    __table_args__ = (
        UniqueConstraint("sku", name=SKU_CONSTRAINT),
        Index("idx_location_updated", "location", "updated_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    sku = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    qty = Column(Integer, nullable=False, default=0)
    location = Column(String, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)


class AuditEvent(Base):
    """
    AuditEvent model, one row per recorded change.

    entity_id references the audited row by value only: there is no foreign
    key, so events outlive the items they describe.

    Attributes:
        id (int): Primary key, assigned at append time
        event_type (str): CREATE, UPDATE, DELETE or READ
        entity_type (str): Kind of entity, e.g. "InventoryItem"
        entity_id (int): ID of the audited entity
        user_id (str): Actor who caused the change (optional)
        details (str): Free-text description of the change
        timestamp (datetime): Server time when the event was appended
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        Index("idx_entity_type_id", "entity_type", "entity_id"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    event_type = Column(String, nullable=False, index=True)
    entity_type = Column(String, nullable=False)
    entity_id = Column(Integer, nullable=False)
    user_id = Column(String, nullable=True, index=True)
    details = Column(Text, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)


class User(Base):
    """
    User model representing an account that can sign in.

    Attributes:
        id (int): Primary key, auto-incremented user ID
        username (str): Login name (unique)
        email (str): Email address (unique)
        password_hash (str): Hashed password
        role (str): USER, MANAGER or ADMIN
        enabled (bool): Whether the account may sign in
        created_at (datetime): Timestamp when the user was created
        updated_at (datetime): Timestamp of the last change
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(100), unique=True, index=True, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    role = Column(String, default="USER", nullable=False)
    enabled = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    reset_tokens = relationship("PasswordResetToken", back_populates="user", cascade="all, delete-orphan")


class PasswordResetToken(Base):
    """
    Single-use token that lets a user choose a new password.

    Attributes:
        id (int): Primary key
        user_id (int): Owner of the token
        token (str): Opaque token sent by email (unique)
        expires_at (datetime): Moment after which the token is rejected
        used (bool): Set once the token has been redeemed or invalidated
        created_at (datetime): Timestamp when the token was issued
    """
    __tablename__ = "password_reset_tokens"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    token = Column(String, unique=True, index=True, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    used = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    user = relationship("User", back_populates="reset_tokens")

    def is_expired(self, now: datetime = None) -> bool:
        now = now or utcnow()
        expires_at = self.expires_at
        # SQLite hands back naive datetimes
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return now > expires_at

    def is_valid(self, now: datetime = None) -> bool:
        return not self.used and not self.is_expired(now)
