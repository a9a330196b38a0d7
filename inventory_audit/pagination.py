"""
Pagination and sorting shared by every list-style query.

A PageRequest is checked against the bounds and the entity's sortable
columns before any SQL is issued.
"""
import math
from typing import Callable, Dict, Optional

from pydantic import BaseModel
from sqlalchemy.orm import Query

from . import models, schemas
from .errors import InvalidArgument

MAX_PAGE_SIZE = 1000
DEFAULT_PAGE_SIZE = 50

INVENTORY_SORT_FIELDS = {
    "id": models.InventoryItem.id,
    "sku": models.InventoryItem.sku,
    "name": models.InventoryItem.name,
    "qty": models.InventoryItem.qty,
    "location": models.InventoryItem.location,
    "updatedAt": models.InventoryItem.updated_at,
}

AUDIT_SORT_FIELDS = {
    "id": models.AuditEvent.id,
    "eventType": models.AuditEvent.event_type,
    "entityType": models.AuditEvent.entity_type,
    "entityId": models.AuditEvent.entity_id,
    "userId": models.AuditEvent.user_id,
    "timestamp": models.AuditEvent.timestamp,
}


class PageRequest(BaseModel):
    """
    Which page of a result set to fetch and how to order it.

    Attributes:
        page (int): Zero-based page number
        size (int): Records per page, 1 to 1000
        sort_by (str): Sort field name, None for the query's default
        sort_dir (str): "asc" or "desc", case-insensitive
    """
    page: int = 0
    size: int = DEFAULT_PAGE_SIZE
    sort_by: Optional[str] = None
    sort_dir: str = "desc"


def validate_page_request(page_request: PageRequest, sort_fields: Dict[str, object]) -> None:
    """
    Check pagination bounds and the sort field.

    Raises:
        InvalidArgument: if any parameter is out of range
    """
    if page_request.page < 0:
        raise InvalidArgument("Page number must be non-negative")
    if page_request.size <= 0:
        raise InvalidArgument("Page size must be greater than 0")
    if page_request.size > MAX_PAGE_SIZE:
        raise InvalidArgument(f"Page size cannot exceed {MAX_PAGE_SIZE}")
    if page_request.sort_by is not None and page_request.sort_by not in sort_fields:
        raise InvalidArgument(
            f"Invalid sort field: {page_request.sort_by}. Valid fields are: {', '.join(sort_fields)}"
        )
    if page_request.sort_dir.lower() not in ("asc", "desc"):
        raise InvalidArgument(f"Invalid sort direction: {page_request.sort_dir}. Use asc or desc")


def paginate(
    query: Query,
    page_request: PageRequest,
    sort_fields: Dict[str, object],
    default_sort: str,
    mapper: Callable,
) -> schemas.Page:
    """
    Run a query for one page of results.

    Rows are ordered by the requested field with the id as tie-breaker, so
    pages are stable even when many rows share a sort value.

    Args:
        query: Filtered query over one entity
        page_request: Page, size and ordering to apply
        sort_fields: Sortable field names mapped to columns
        default_sort: Field used when the request names none
        mapper: Converts each row into its response record

    Returns:
        Page of mapped records with total counts

    Raises:
        InvalidArgument: if the page request is out of bounds
    """
    validate_page_request(page_request, sort_fields)

    column = sort_fields[page_request.sort_by or default_sort]
    tie_breaker = sort_fields["id"]
    if page_request.sort_dir.lower() == "asc":
        order = [column.asc(), tie_breaker.asc()]
    else:
        order = [column.desc(), tie_breaker.desc()]

    total = query.count()
    rows = (
        query.order_by(*order)
        .offset(page_request.page * page_request.size)
        .limit(page_request.size)
        .all()
    )
    return schemas.Page(
        content=[mapper(row) for row in rows],
        page=page_request.page,
        size=page_request.size,
        total_elements=total,
        total_pages=math.ceil(total / page_request.size),
    )
