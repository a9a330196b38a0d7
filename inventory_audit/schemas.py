"""
Pydantic schemas for request/response validation in the Inventory Audit service.

These schemas define the structure of data for API requests and responses,
plus the explicit mapping from ORM rows to the detached records handed out
by the service layer.
"""
from datetime import datetime, timezone
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, EmailStr, Field

from . import models

T = TypeVar("T")


class InventoryItemRequest(BaseModel):
    """
    Schema for creating or replacing an inventory item.

    Fields are optional at the schema level so that missing and blank values
    are both reported by the service as the same validation error.
    """
    sku: Optional[str] = None
    name: Optional[str] = None
    qty: Optional[int] = None
    location: Optional[str] = None


class InventoryItem(BaseModel):
    """
    Schema for inventory item responses, includes all database fields.

    Attributes:
        id (int): Inventory item's unique identifier
        sku (str): Stock Keeping Unit
        name (str): Product name
        qty (int): Quantity available
        location (str): Storage location
        updated_at (datetime): When the item was last written
    """
    id: int
    sku: str
    name: str
    qty: int
    location: str
    updated_at: datetime

    class Config:
        from_attributes = True


class LocationSummary(BaseModel):
    """One row of the per-location aggregate."""
    location: str
    item_count: int
    total_quantity: int


class AuditEventRequest(BaseModel):
    """Schema for submitting an audit event by hand."""
    event_type: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[int] = None
    user_id: Optional[str] = None
    details: Optional[str] = None


class AuditEvent(BaseModel):
    """
    Schema for audit event responses.

    Attributes:
        id (int): Event identifier, increasing in append order
        event_type (str): CREATE, UPDATE, DELETE or READ
        entity_type (str): Kind of audited entity
        entity_id (int): ID of the audited entity (may no longer exist)
        user_id (str): Actor, absent for unauthenticated or system changes
        details (str): Description of the change
        timestamp (datetime): When the event was appended
    """
    id: int
    event_type: str
    entity_type: str
    entity_id: int
    user_id: Optional[str] = None
    details: Optional[str] = None
    timestamp: datetime

    class Config:
        from_attributes = True


class Page(BaseModel, Generic[T]):
    """
    A bounded slice of an ordered result set.

    Attributes:
        content (list): Records on this page
        page (int): Zero-based page number
        size (int): Requested page size
        total_elements (int): Number of records across all pages
        total_pages (int): Number of pages of this size
    """
    content: List[T]
    page: int
    size: int
    total_elements: int
    total_pages: int


class RegisterRequest(BaseModel):
    """Schema for user registration. Password strength is checked by the service."""
    username: str = Field(..., min_length=3, max_length=100)
    email: EmailStr
    password: str
    role: Optional[str] = None


class LoginRequest(BaseModel):
    """Schema for user login."""
    username: str
    password: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str
    new_password: str


class AdminResetPasswordRequest(BaseModel):
    username: str
    new_password: str


class User(BaseModel):
    """
    Schema for user responses, excludes the password hash.
    """
    id: int
    username: str
    email: str
    role: str
    enabled: bool
    created_at: datetime

    class Config:
        from_attributes = True


class AuthResponse(BaseModel):
    """Schema for the login response: JWT access token plus the user's identity."""
    token: str
    token_type: str = "bearer"
    id: int
    username: str
    email: str
    roles: List[str]


class TokenData(BaseModel):
    """Schema for data stored in JWT token."""
    username: Optional[str] = None
    role: Optional[str] = None


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def inventory_item_from_row(row: models.InventoryItem) -> InventoryItem:
    """Copy an ORM row into a detached record that is safe to keep after the session closes."""
    return InventoryItem(
        id=row.id,
        sku=row.sku,
        name=row.name,
        qty=row.qty,
        location=row.location,
        updated_at=_as_utc(row.updated_at),
    )


def audit_event_from_row(row: models.AuditEvent) -> AuditEvent:
    return AuditEvent(
        id=row.id,
        event_type=row.event_type,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        user_id=row.user_id,
        details=row.details,
        timestamp=_as_utc(row.timestamp),
    )
