"""
CRUD (Create, Read, Update, Delete) operations for inventory items.

This module contains all database operations on the inventory_items table.
Writes flush inside the caller's session and never commit; the caller's
unit of work decides whether they become visible.
"""
from typing import Dict, List

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models, schemas
from .database import is_sku_violation
from .errors import InvalidArgument, NotFound
from .pagination import INVENTORY_SORT_FIELDS, PageRequest, paginate

DEFAULT_SORT = "updatedAt"


def get_inventory_item(db: Session, item_id: int) -> models.InventoryItem:
    """
    Retrieve a single inventory item by ID.

    Args:
        db: Database session
        item_id: ID of the inventory item to retrieve

    Returns:
        InventoryItem row

    Raises:
        NotFound: if no item has that ID
    """
    if item_id is None:
        raise InvalidArgument("ID cannot be null")
    item = db.query(models.InventoryItem).filter(models.InventoryItem.id == item_id).first()
    if item is None:
        raise NotFound("Item not found")
    return item


def get_inventory_item_by_sku(db: Session, sku: str) -> models.InventoryItem:
    """
    Retrieve an inventory item by SKU.

    Args:
        db: Database session
        sku: SKU to search for

    Returns:
        InventoryItem row

    Raises:
        InvalidArgument: if sku is blank
        NotFound: if no item has that SKU
    """
    if sku is None or not sku.strip():
        raise InvalidArgument("SKU cannot be null or empty")
    item = db.query(models.InventoryItem).filter(models.InventoryItem.sku == sku).first()
    if item is None:
        raise NotFound(f"Item not found with SKU: {sku}")
    return item


def sku_exists(db: Session, sku: str) -> bool:
    return db.query(models.InventoryItem.id).filter(models.InventoryItem.sku == sku).first() is not None


def _page(db: Session, page_request: PageRequest, *criteria) -> schemas.Page:
    query = db.query(models.InventoryItem)
    if criteria:
        query = query.filter(*criteria)
    return paginate(query, page_request, INVENTORY_SORT_FIELDS, DEFAULT_SORT, schemas.inventory_item_from_row)


def get_inventory_items(db: Session, page_request: PageRequest) -> schemas.Page:
    """
    Retrieve a page of inventory items.

    Args:
        db: Database session
        page_request: Page, size and ordering

    Returns:
        Page of InventoryItem records
    """
    return _page(db, page_request)


def find_by_location(db: Session, location: str, page_request: PageRequest) -> schemas.Page:
    """Retrieve a page of the items stored at exactly this location."""
    return _page(db, page_request, models.InventoryItem.location == location)


def search_by_sku(db: Session, pattern: str, page_request: PageRequest) -> schemas.Page:
    """Retrieve a page of items whose SKU contains pattern, ignoring case."""
    return _page(db, page_request, models.InventoryItem.sku.icontains(pattern or "", autoescape=True))


def search_by_name(db: Session, pattern: str, page_request: PageRequest) -> schemas.Page:
    """Retrieve a page of items whose name contains pattern, ignoring case."""
    return _page(db, page_request, models.InventoryItem.name.icontains(pattern or "", autoescape=True))


def location_summary(db: Session) -> List[schemas.LocationSummary]:
    """
    Aggregate current items per location.

    Returns:
        One LocationSummary per distinct location, ordered by location
    """
    rows = (
        db.query(
            models.InventoryItem.location,
            func.count(models.InventoryItem.id),
            func.coalesce(func.sum(models.InventoryItem.qty), 0),
        )
        .group_by(models.InventoryItem.location)
        .order_by(models.InventoryItem.location)
        .all()
    )
    return [
        schemas.LocationSummary(location=location, item_count=count, total_quantity=total)
        for location, count, total in rows
    ]


def _flush(db: Session) -> None:
    try:
        db.flush()
    except IntegrityError as exc:
        if is_sku_violation(exc):
            raise InvalidArgument("SKU already exists") from exc
        raise


def insert_inventory_item(db: Session, fields: Dict) -> models.InventoryItem:
    """
    Insert a new inventory item.

    The existence check only produces a friendly error in the common case;
    the unique constraint on sku is what actually guards concurrent writers,
    and its violation is reported the same way.

    Args:
        db: Database session
        fields: sku, name, qty and location of the new item

    Returns:
        Inserted InventoryItem row with its ID assigned

    Raises:
        InvalidArgument: if the SKU is already taken
    """
    if sku_exists(db, fields["sku"]):
        raise InvalidArgument("SKU already exists")

    db_item = models.InventoryItem(
        sku=fields["sku"],
        name=fields["name"],
        qty=fields["qty"],
        location=fields["location"],
        updated_at=models.utcnow(),
    )
    db.add(db_item)
    _flush(db)
    return db_item


def replace_inventory_item(db: Session, item_id: int, fields: Dict) -> models.InventoryItem:
    """
    Overwrite the fields of an existing inventory item.

    Args:
        db: Database session
        item_id: ID of the inventory item to update
        fields: New sku, name, qty and location

    Returns:
        Updated InventoryItem row

    Raises:
        NotFound: if no item has that ID
        InvalidArgument: if the new SKU belongs to a different item
    """
    db_item = get_inventory_item(db, item_id)

    new_sku = fields["sku"]
    if new_sku != db_item.sku:
        existing = db.query(models.InventoryItem).filter(models.InventoryItem.sku == new_sku).first()
        if existing is not None and existing.id != db_item.id:
            raise InvalidArgument("SKU already exists on another item")

    for key in ("sku", "name", "qty", "location"):
        setattr(db_item, key, fields[key])
    db_item.updated_at = models.utcnow()

    _flush(db)
    return db_item


def remove_inventory_item(db: Session, item_id: int) -> None:
    """
    Delete an inventory item.

    Raises:
        NotFound: if no item has that ID
    """
    db_item = get_inventory_item(db, item_id)
    db.delete(db_item)
    db.flush()
