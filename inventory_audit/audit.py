"""
Audit ledger: append-only store of audit events.

Events are only ever inserted. Appends flush inside the caller's session and
are committed together with whatever change they describe.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from . import models, schemas
from .errors import InvalidArgument, NotFound
from .pagination import AUDIT_SORT_FIELDS, PageRequest, paginate

logger = logging.getLogger(__name__)

EVENT_CREATE = "CREATE"
EVENT_UPDATE = "UPDATE"
EVENT_DELETE = "DELETE"
EVENT_READ = "READ"

DEFAULT_SORT = "timestamp"


def _require(value: Optional[str], label: str) -> None:
    if value is None or not value.strip():
        raise InvalidArgument(f"{label} cannot be null or empty")


def record(
    db: Session,
    event_type: str,
    entity_type: str,
    entity_id: int,
    user_id: Optional[str] = None,
    details: Optional[str] = None,
) -> models.AuditEvent:
    """
    Append an audit event.

    Every call inserts a new row with a fresh id and the current server
    time; identical content is never deduplicated. The row is flushed but
    not committed.

    Args:
        db: Database session of the enclosing unit of work
        event_type: CREATE, UPDATE, DELETE or READ
        entity_type: Kind of entity the event describes
        entity_id: ID of the entity
        user_id: Actor, None for unauthenticated or system changes
        details: Free-text description of the change

    Returns:
        The appended AuditEvent row

    Raises:
        InvalidArgument: if event_type or entity_type is blank or entity_id is missing
    """
    _require(event_type, "Event type")
    _require(entity_type, "Entity type")
    if entity_id is None:
        raise InvalidArgument("Entity ID cannot be null")

    event = models.AuditEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=user_id,
        details=details,
        timestamp=models.utcnow(),
    )
    db.add(event)
    db.flush()
    logger.debug(f"Recorded {event_type} audit event {event.id} for {entity_type} {entity_id}")
    return event


def create_audit_event(db: Session, request: schemas.AuditEventRequest) -> models.AuditEvent:
    """Append an event submitted through the API."""
    return record(
        db,
        event_type=request.event_type,
        entity_type=request.entity_type,
        entity_id=request.entity_id,
        user_id=request.user_id,
        details=request.details,
    )


def get_audit_event(db: Session, event_id: int) -> models.AuditEvent:
    """
    Retrieve a single audit event by ID.

    Raises:
        NotFound: if no event has that ID
    """
    event = db.query(models.AuditEvent).filter(models.AuditEvent.id == event_id).first()
    if event is None:
        raise NotFound("Audit event not found")
    return event


def _page(db: Session, page_request: PageRequest, *criteria) -> schemas.Page:
    query = db.query(models.AuditEvent)
    if criteria:
        query = query.filter(*criteria)
    return paginate(query, page_request, AUDIT_SORT_FIELDS, DEFAULT_SORT, schemas.audit_event_from_row)


def list_audit_events(db: Session, page_request: PageRequest) -> schemas.Page:
    """Page through every audit event."""
    return _page(db, page_request)


def find_by_entity(db: Session, entity_type: str, entity_id: int, page_request: PageRequest) -> schemas.Page:
    """
    Page through the history of one entity, including events recorded after
    the entity itself was deleted.
    """
    _require(entity_type, "Entity type")
    if entity_id is None:
        raise InvalidArgument("Entity ID cannot be null")
    return _page(
        db,
        page_request,
        models.AuditEvent.entity_type == entity_type,
        models.AuditEvent.entity_id == entity_id,
    )


def find_by_entity_type(db: Session, entity_type: str, page_request: PageRequest) -> schemas.Page:
    _require(entity_type, "Entity type")
    return _page(db, page_request, models.AuditEvent.entity_type == entity_type)


def find_by_event_type(db: Session, event_type: str, page_request: PageRequest) -> schemas.Page:
    _require(event_type, "Event type")
    return _page(db, page_request, models.AuditEvent.event_type == event_type)


def find_by_user_id(db: Session, user_id: str, page_request: PageRequest) -> schemas.Page:
    _require(user_id, "User ID")
    return _page(db, page_request, models.AuditEvent.user_id == user_id)
