"""
Inventory Audit Service API

This module implements a FastAPI application for managing inventory items with
full CRUD operations, where every change is recorded in an append-only audit
trail that stays queryable after the items themselves are deleted.

The service exposes:
- /api/inventory: CRUD, batch create, search and per-location summary
- /api/audit-events: paginated audit trail lookups and manual event submission
- /api/auth: registration, login and password reset
- /healthz: service health status for monitoring and orchestration

Attributes:
    app (FastAPI): The FastAPI application instance configured with the title "inventory-audit-service".
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from http import HTTPStatus
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from . import audit, auth, config, models, schemas, users
from .cache import create_item_cache
from .coordinator import InventoryCoordinator
from .database import SessionLocal, engine, get_db
from .errors import ServiceError, Unauthorized
from .mailer import create_email_sender
from .pagination import DEFAULT_PAGE_SIZE, PageRequest

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# Create database tables
models.Base.metadata.create_all(bind=engine)

item_cache = create_item_cache()
inventory_coordinator = InventoryCoordinator(SessionLocal, item_cache)
email_sender = create_email_sender()


def get_coordinator() -> InventoryCoordinator:
    """Dependency providing the process-wide inventory coordinator."""
    return inventory_coordinator


def get_email_sender():
    """Dependency providing the password reset mail sender."""
    return email_sender


@asynccontextmanager
async def lifespan(app: FastAPI):
    db = SessionLocal()
    try:
        users.ensure_default_admin(db)
    finally:
        db.close()
    yield


app = FastAPI(title="inventory-audit-service", lifespan=lifespan)


def error_body(status_code: int, message: str, path: str) -> dict:
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "status": status_code,
        "error": HTTPStatus(status_code).phrase,
        "message": message,
        "path": path,
    }


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    """Render service exceptions with their status code and a uniform error body."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.message}")
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.status_code, exc.message, request.url.path),
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Report the first schema violation as a 400, like every other bad input."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field} {first.get('msg', 'is invalid')}".strip()
    else:
        message = "Validation error"
    logger.warning(f"{request.method} {request.url.path} rejected: {message}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body(status.HTTP_400_BAD_REQUEST, message, request.url.path),
    )


@app.exception_handler(OperationalError)
async def store_error_handler(request: Request, exc: OperationalError):
    """Database outages on routes that use get_db directly are retryable, like those inside a unit of work."""
    logger.error(f"{request.method} {request.url.path} failed, database unavailable: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=error_body(status.HTTP_503_SERVICE_UNAVAILABLE, "Database unavailable, please retry", request.url.path),
    )


def page_params(
    page: int = 0,
    size: int = DEFAULT_PAGE_SIZE,
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    sort_dir: str = Query("DESC", alias="sortDir"),
) -> PageRequest:
    """Collect the standard pagination query parameters."""
    return PageRequest(page=page, size=size, sort_by=sort_by, sort_dir=sort_dir)


@app.get("/healthz", response_model=dict)
def health():
    """
    Health check endpoint for the inventory audit service.

    Returns:
        dict: A dictionary containing the health status of the service.
            - status (str): "healthy" if the service is operational.

    Example:
        GET /healthz
        Response: {"status": "healthy"}
    """
    return {"status": "healthy"}


# Inventory

@app.get("/api/inventory", response_model=schemas.Page[schemas.InventoryItem])
def list_inventory_items(
    page_request: PageRequest = Depends(page_params),
    coordinator: InventoryCoordinator = Depends(get_coordinator),
    current_user: models.User = Depends(auth.get_current_user)
):
    """
    List inventory items, newest change first by default (authenticated users only).

    Args:
        page_request: page, size, sortBy (id, sku, name, qty, location, updatedAt) and sortDir
        coordinator: Inventory coordinator (injected)
        current_user: Current authenticated user (injected)

    Returns:
        Page of inventory items
    """
    return coordinator.list(page_request)


@app.get("/api/inventory/location/{location}", response_model=schemas.Page[schemas.InventoryItem])
def list_inventory_items_by_location(
    location: str,
    page_request: PageRequest = Depends(page_params),
    coordinator: InventoryCoordinator = Depends(get_coordinator),
    current_user: models.User = Depends(auth.get_current_user)
):
    """List the items stored at one location (authenticated users only)."""
    return coordinator.find_by_location(location, page_request)


@app.get("/api/inventory/search/sku", response_model=schemas.Page[schemas.InventoryItem])
def search_inventory_by_sku(
    pattern: str,
    page_request: PageRequest = Depends(page_params),
    coordinator: InventoryCoordinator = Depends(get_coordinator),
    current_user: models.User = Depends(auth.get_current_user)
):
    """Find items whose SKU contains the pattern, ignoring case."""
    return coordinator.search_by_sku(pattern, page_request)


@app.get("/api/inventory/search/name", response_model=schemas.Page[schemas.InventoryItem])
def search_inventory_by_name(
    pattern: str,
    page_request: PageRequest = Depends(page_params),
    coordinator: InventoryCoordinator = Depends(get_coordinator),
    current_user: models.User = Depends(auth.get_current_user)
):
    """Find items whose name contains the pattern, ignoring case."""
    return coordinator.search_by_name(pattern, page_request)


@app.get("/api/inventory/summary/location", response_model=List[schemas.LocationSummary])
def get_location_summary(
    coordinator: InventoryCoordinator = Depends(get_coordinator),
    current_user: models.User = Depends(auth.get_current_user)
):
    """
    Item count and total quantity per location (authenticated users only).

    Returns:
        list: one {location, item_count, total_quantity} per distinct location
    """
    return coordinator.location_summary()


@app.get("/api/inventory/sku/{sku}", response_model=schemas.InventoryItem)
def get_inventory_item_by_sku(
    sku: str,
    coordinator: InventoryCoordinator = Depends(get_coordinator),
    current_user: models.User = Depends(auth.get_current_user)
):
    """Get a single inventory item by SKU (authenticated users only)."""
    return coordinator.get_by_sku(sku)


@app.get("/api/inventory/{item_id}", response_model=schemas.InventoryItem)
def get_inventory_item(
    item_id: int,
    coordinator: InventoryCoordinator = Depends(get_coordinator),
    current_user: models.User = Depends(auth.get_current_user)
):
    """
    Get a single inventory item by ID (authenticated users only).

    Args:
        item_id: ID of the inventory item to retrieve
        coordinator: Inventory coordinator (injected)
        current_user: Current authenticated user (injected)

    Returns:
        Inventory item object

    Raises:
        NotFound: 404 if item not found
    """
    return coordinator.get(item_id)


@app.post("/api/inventory", response_model=schemas.InventoryItem, status_code=status.HTTP_201_CREATED)
def create_inventory_item(
    item: schemas.InventoryItemRequest,
    coordinator: InventoryCoordinator = Depends(get_coordinator),
    actor: str = Depends(auth.get_actor)
):
    """
    Create a new inventory item and record a CREATE audit event.

    Args:
        item: Inventory item data to create
        coordinator: Inventory coordinator (injected)
        actor: Username of the caller (injected)

    Returns:
        Created inventory item object

    Raises:
        InvalidArgument: 400 if a field is blank, qty is negative or the SKU already exists
    """
    return coordinator.create(item, actor)


@app.post("/api/inventory/batch", response_model=List[schemas.InventoryItem], status_code=status.HTTP_201_CREATED)
def create_inventory_items(
    items: List[schemas.InventoryItemRequest],
    coordinator: InventoryCoordinator = Depends(get_coordinator),
    actor: str = Depends(auth.get_actor)
):
    """
    Create several inventory items at once; nothing is created if any item is rejected.
    """
    return coordinator.create_batch(items, actor)


@app.put("/api/inventory/{item_id}", response_model=schemas.InventoryItem)
def update_inventory_item(
    item_id: int,
    item: schemas.InventoryItemRequest,
    coordinator: InventoryCoordinator = Depends(get_coordinator),
    actor: str = Depends(auth.get_actor)
):
    """
    Replace an inventory item's fields and record an UPDATE audit event.

    Raises:
        NotFound: 404 if item not found
        InvalidArgument: 400 if the request is invalid or the SKU belongs to another item
    """
    return coordinator.update(item_id, item, actor)


@app.delete("/api/inventory/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_inventory_item(
    item_id: int,
    coordinator: InventoryCoordinator = Depends(get_coordinator),
    actor: str = Depends(auth.get_actor)
):
    """
    Delete an inventory item and record a DELETE audit event.

    Returns:
        None (204 No Content)

    Raises:
        NotFound: 404 if item not found
    """
    coordinator.delete(item_id, actor)


# Audit events

@app.get("/api/audit-events", response_model=schemas.Page[schemas.AuditEvent])
def list_audit_events(
    page_request: PageRequest = Depends(page_params),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user)
):
    """
    List audit events, most recent first by default.

    sortBy accepts id, eventType, entityType, entityId, userId and timestamp.
    """
    return audit.list_audit_events(db, page_request)


@app.get("/api/audit-events/entity/{entity_type}/{entity_id}", response_model=schemas.Page[schemas.AuditEvent])
def list_audit_events_for_entity(
    entity_type: str,
    entity_id: int,
    page_request: PageRequest = Depends(page_params),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user)
):
    """History of one entity, still available after the entity is deleted."""
    return audit.find_by_entity(db, entity_type, entity_id, page_request)


@app.get("/api/audit-events/entity-type/{entity_type}", response_model=schemas.Page[schemas.AuditEvent])
def list_audit_events_by_entity_type(
    entity_type: str,
    page_request: PageRequest = Depends(page_params),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user)
):
    return audit.find_by_entity_type(db, entity_type, page_request)


@app.get("/api/audit-events/event-type/{event_type}", response_model=schemas.Page[schemas.AuditEvent])
def list_audit_events_by_event_type(
    event_type: str,
    page_request: PageRequest = Depends(page_params),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user)
):
    return audit.find_by_event_type(db, event_type, page_request)


@app.get("/api/audit-events/user/{user_id}", response_model=schemas.Page[schemas.AuditEvent])
def list_audit_events_by_user(
    user_id: str,
    page_request: PageRequest = Depends(page_params),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user)
):
    return audit.find_by_user_id(db, user_id, page_request)


@app.get("/api/audit-events/{event_id}", response_model=schemas.AuditEvent)
def get_audit_event(
    event_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user)
):
    """
    Get a single audit event by ID.

    Raises:
        NotFound: 404 if the event does not exist
    """
    return schemas.audit_event_from_row(audit.get_audit_event(db, event_id))


@app.post("/api/audit-events", response_model=schemas.AuditEvent, status_code=status.HTTP_201_CREATED)
def create_audit_event(
    event: schemas.AuditEventRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user)
):
    """
    Append an audit event by hand.

    Raises:
        InvalidArgument: 400 if event_type or entity_type is blank or entity_id is missing
    """
    db_event = audit.create_audit_event(db, event)
    db.commit()
    db.refresh(db_event)
    return schemas.audit_event_from_row(db_event)


# Authentication

@app.post("/api/auth/register", response_model=dict, status_code=status.HTTP_201_CREATED)
def register(request: schemas.RegisterRequest, db: Session = Depends(get_db)):
    """
    Register a new user account with role USER (default) or MANAGER.

    Raises:
        InvalidArgument: 400 if the username or email is taken, the password is weak
            or ADMIN is requested
    """
    user = users.register(db, request)
    return {
        "message": "User registered successfully",
        "user": schemas.User.model_validate(user).model_dump(mode="json"),
    }


@app.post("/api/auth/login", response_model=schemas.AuthResponse)
def login(request: schemas.LoginRequest, db: Session = Depends(get_db)):
    """
    Authenticate and return a JWT access token.

    Raises:
        InvalidArgument: 400 if credentials are invalid
    """
    return users.login(db, request)


@app.get("/api/auth/me", response_model=schemas.User)
def get_current_user_info(current_user: models.User = Depends(auth.get_current_user)):
    """Get current authenticated user information."""
    return current_user


@app.post("/api/auth/logout", response_model=dict)
def logout(current_user: models.User = Depends(auth.get_current_user)):
    """Tokens are stateless; clients sign out by discarding theirs."""
    return {"message": "Logged out successfully"}


@app.post("/api/auth/forgot-password", response_model=dict)
def forgot_password(
    request: schemas.ForgotPasswordRequest,
    db: Session = Depends(get_db),
    sender=Depends(get_email_sender)
):
    """Email a reset link. The answer is the same whether or not the email is registered."""
    users.forgot_password(db, request, sender)
    return {"message": "If the email is registered, a password reset link has been sent"}


@app.post("/api/auth/reset-password", response_model=dict)
def reset_password(request: schemas.ResetPasswordRequest, db: Session = Depends(get_db)):
    """
    Set a new password using a reset token.

    Raises:
        InvalidArgument: 400 if the token is invalid or expired, or the password is weak
    """
    users.reset_password(db, request)
    return {"message": "Password has been reset successfully"}


@app.post("/api/auth/admin/reset-password", response_model=dict)
def admin_reset_password(
    request: schemas.AdminResetPasswordRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    """Reset another user's password (admin only)."""
    users.admin_reset_password(db, request, current_user.username)
    return {"message": f"Password reset for user {request.username}"}
