"""
Inventory service: couples every inventory change to its audit event.

Each mutating call validates its input, changes the inventory table,
describes the change and appends the matching audit event inside a single
unit of work, so a committed change always has its audit event and a failed
one leaves neither behind. The read cache is cleared after every mutation,
whether it committed or not.
"""
import logging
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from . import audit, config, crud, models, schemas
from .cache import id_key, sku_key
from .database import read_scope, unit_of_work
from .errors import InvalidArgument, StoreUnavailable
from .pagination import PageRequest

logger = logging.getLogger(__name__)

ENTITY_TYPE = "InventoryItem"


def describe(item: models.InventoryItem) -> str:
    """Render the audited fields of an item, e.g. 'SKU=A-1, Name=Bolt, Qty=3, Location=X'."""
    return f"SKU={item.sku}, Name={item.name}, Qty={item.qty}, Location={item.location}"


def validate_request(request: schemas.InventoryItemRequest) -> Dict:
    """
    Check a create/update request before the database is touched.

    Returns:
        The request's fields as a dict ready for the store

    Raises:
        InvalidArgument: if sku, name or location is blank, or qty is missing or negative
    """
    for field in ("sku", "name", "location"):
        value = getattr(request, field)
        if value is None or not value.strip():
            raise InvalidArgument(f"{field} must not be blank")
    if request.qty is None:
        raise InvalidArgument("qty must not be null")
    if request.qty < 0:
        raise InvalidArgument("qty must be greater than or equal to 0")
    return {
        "sku": request.sku,
        "name": request.name,
        "qty": request.qty,
        "location": request.location,
    }


class InventoryCoordinator:
    """
    Entry point for every inventory operation.

    Args:
        session_factory: Factory for the sessions each call runs in
        cache: Read cache for get() and get_by_sku()
    """

    def __init__(self, session_factory: sessionmaker, cache, max_batch_size: int = config.MAX_BATCH_SIZE):
        self._session_factory = session_factory
        self._cache = cache
        self.max_batch_size = max_batch_size

    @contextmanager
    def _mutation(self) -> Iterator[Session]:
        """
        One unit of work followed by a cache clear.

        When the mutation fails, a failing clear is only logged and the
        mutation's own error propagates. When the mutation has committed, a
        failing clear raises StoreUnavailable even though the change and its
        audit event are already stored.
        """
        try:
            with unit_of_work(self._session_factory) as db:
                yield db
        except BaseException:
            try:
                self._cache.clear()
            except StoreUnavailable as e:
                logger.error(f"Cache clear after failed mutation: {e.message}")
            raise
        self._cache.clear()

    @contextmanager
    def _read(self) -> Iterator[Session]:
        with read_scope(self._session_factory) as db:
            yield db

    # Reads

    def get(self, item_id: int) -> schemas.InventoryItem:
        """
        Get an item by ID, from the cache when possible.

        Raises:
            NotFound: if no item has that ID
        """
        key = id_key(item_id)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        generation = self._cache.generation
        with self._read() as db:
            item = schemas.inventory_item_from_row(crud.get_inventory_item(db, item_id))
        self._cache.put(key, item, generation)
        return item

    def get_by_sku(self, sku: str) -> schemas.InventoryItem:
        """
        Get an item by SKU, from the cache when possible.

        Raises:
            InvalidArgument: if sku is blank
            NotFound: if no item has that SKU
        """
        if sku is None or not sku.strip():
            raise InvalidArgument("SKU cannot be null or empty")
        key = sku_key(sku)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        generation = self._cache.generation
        with self._read() as db:
            item = schemas.inventory_item_from_row(crud.get_inventory_item_by_sku(db, sku))
        self._cache.put(key, item, generation)
        return item

    def list(self, page_request: PageRequest) -> schemas.Page:
        with self._read() as db:
            return crud.get_inventory_items(db, page_request)

    def find_by_location(self, location: str, page_request: PageRequest) -> schemas.Page:
        with self._read() as db:
            return crud.find_by_location(db, location, page_request)

    def search_by_sku(self, pattern: str, page_request: PageRequest) -> schemas.Page:
        with self._read() as db:
            return crud.search_by_sku(db, pattern, page_request)

    def search_by_name(self, pattern: str, page_request: PageRequest) -> schemas.Page:
        with self._read() as db:
            return crud.search_by_name(db, pattern, page_request)

    def location_summary(self) -> List[schemas.LocationSummary]:
        with self._read() as db:
            return crud.location_summary(db)

    # Mutations

    def create(self, request: schemas.InventoryItemRequest, actor: Optional[str]) -> schemas.InventoryItem:
        """
        Create an item and record a CREATE event.

        Args:
            request: Fields of the new item
            actor: Username of the caller, None if unauthenticated

        Returns:
            The created item

        Raises:
            InvalidArgument: if the request is invalid or the SKU is taken
        """
        fields = validate_request(request)
        with self._mutation() as db:
            item = crud.insert_inventory_item(db, fields)
            audit.record(db, audit.EVENT_CREATE, ENTITY_TYPE, item.id, actor, f"Created item: {describe(item)}")
            created = schemas.inventory_item_from_row(item)
        logger.info(f"Created inventory item {created.id} (SKU {created.sku}) by {actor}")
        return created

    def create_batch(
        self, requests: List[schemas.InventoryItemRequest], actor: Optional[str]
    ) -> List[schemas.InventoryItem]:
        """
        Create several items in one transaction, one CREATE event each.

        Either every item is created or none is: an invalid request or a SKU
        collision anywhere in the batch rejects the whole batch.

        Raises:
            InvalidArgument: if the batch is empty or too large, any request is
                invalid, or any SKU is taken or repeated within the batch
        """
        if not requests:
            raise InvalidArgument("Batch must contain at least one item")
        if len(requests) > self.max_batch_size:
            raise InvalidArgument(f"Batch cannot contain more than {self.max_batch_size} items")

        batch = [validate_request(request) for request in requests]
        skus = [fields["sku"] for fields in batch]
        if len(skus) != len(set(skus)):
            raise InvalidArgument("Batch contains duplicate SKUs")

        with self._mutation() as db:
            items = [crud.insert_inventory_item(db, fields) for fields in batch]
            for item in items:
                audit.record(db, audit.EVENT_CREATE, ENTITY_TYPE, item.id, actor, f"Created item: {describe(item)}")
            created = [schemas.inventory_item_from_row(item) for item in items]
        logger.info(f"Created {len(created)} inventory items in batch by {actor}")
        return created

    def update(
        self, item_id: int, request: schemas.InventoryItemRequest, actor: Optional[str]
    ) -> schemas.InventoryItem:
        """
        Replace an item's fields and record an UPDATE event holding the old
        and new state.

        Raises:
            InvalidArgument: if the request is invalid or the new SKU belongs to another item
            NotFound: if no item has that ID
        """
        fields = validate_request(request)
        with self._mutation() as db:
            before = describe(crud.get_inventory_item(db, item_id))
            item = crud.replace_inventory_item(db, item_id, fields)
            after = describe(item)
            audit.record(db, audit.EVENT_UPDATE, ENTITY_TYPE, item.id, actor, f"Old: {before} | New: {after}")
            updated = schemas.inventory_item_from_row(item)
        logger.info(f"Updated inventory item {item_id} by {actor}")
        return updated

    def delete(self, item_id: int, actor: Optional[str]) -> None:
        """
        Delete an item and record a DELETE event under its original ID.

        Raises:
            NotFound: if no item has that ID
        """
        with self._mutation() as db:
            snapshot = describe(crud.get_inventory_item(db, item_id))
            crud.remove_inventory_item(db, item_id)
            audit.record(db, audit.EVENT_DELETE, ENTITY_TYPE, item_id, actor, f"Deleted item: {snapshot}")
        logger.info(f"Deleted inventory item {item_id} by {actor}")
