import pytest

from inventory_audit import audit, schemas
from inventory_audit.database import unit_of_work
from inventory_audit.errors import InvalidArgument, NotFound
from inventory_audit.pagination import PageRequest


def _append(session_factory, *events):
    with unit_of_work(session_factory) as db:
        return [audit.record(db, *event).id for event in events]


def test_record_assigns_id_and_timestamp(session_factory):
    with unit_of_work(session_factory) as db:
        event = audit.record(db, "CREATE", "InventoryItem", 7, "alice", "Created item")
        event_id = event.id
        assert event_id is not None
        assert event.timestamp is not None

    with session_factory() as db:
        stored = audit.get_audit_event(db, event_id)
        assert stored.event_type == "CREATE"
        assert stored.entity_type == "InventoryItem"
        assert stored.entity_id == 7
        assert stored.user_id == "alice"
        assert stored.details == "Created item"


def test_record_allows_missing_actor_and_details(session_factory):
    (event_id,) = _append(session_factory, ("DELETE", "InventoryItem", 1))
    with session_factory() as db:
        stored = audit.get_audit_event(db, event_id)
        assert stored.user_id is None
        assert stored.details is None


def test_identical_events_are_not_deduplicated(session_factory):
    ids = _append(
        session_factory,
        ("UPDATE", "InventoryItem", 1, "bob", "same"),
        ("UPDATE", "InventoryItem", 1, "bob", "same"),
    )
    assert len(set(ids)) == 2


@pytest.mark.parametrize(
    "event_type, entity_type, entity_id",
    [
        ("", "InventoryItem", 1),
        ("   ", "InventoryItem", 1),
        (None, "InventoryItem", 1),
        ("CREATE", "", 1),
        ("CREATE", "InventoryItem", None),
    ],
)
def test_record_rejects_missing_fields(db, event_type, entity_type, entity_id):
    with pytest.raises(InvalidArgument):
        audit.record(db, event_type, entity_type, entity_id)


def test_create_audit_event_from_request(session_factory):
    request = schemas.AuditEventRequest(event_type="READ", entity_type="Report", entity_id=3, details="exported")
    with unit_of_work(session_factory) as db:
        event_id = audit.create_audit_event(db, request).id
    with session_factory() as db:
        assert audit.get_audit_event(db, event_id).event_type == "READ"


def test_get_missing_event_raises_not_found(db):
    with pytest.raises(NotFound):
        audit.get_audit_event(db, 999)


def test_list_sorted_by_ascending_id(session_factory):
    ids = _append(
        session_factory,
        ("CREATE", "InventoryItem", 1),
        ("UPDATE", "InventoryItem", 1),
        ("DELETE", "InventoryItem", 1),
    )
    with session_factory() as db:
        page = audit.list_audit_events(db, PageRequest(page=0, size=50, sort_by="id", sort_dir="asc"))

    assert [event.id for event in page.content] == sorted(ids)
    assert page.total_elements == 3
    assert page.total_pages == 1


def test_list_defaults_to_newest_first(session_factory):
    ids = _append(session_factory, ("CREATE", "A", 1), ("CREATE", "A", 2))
    with session_factory() as db:
        page = audit.list_audit_events(db, PageRequest())
    assert [event.id for event in page.content] == sorted(ids, reverse=True)


def test_list_pages_through_results(session_factory):
    _append(session_factory, *[("CREATE", "InventoryItem", n) for n in range(5)])
    with session_factory() as db:
        page = audit.list_audit_events(db, PageRequest(page=2, size=2, sort_by="entityId", sort_dir="asc"))
    assert [event.entity_id for event in page.content] == [4]
    assert page.total_elements == 5
    assert page.total_pages == 3


@pytest.mark.parametrize(
    "page_request",
    [
        PageRequest(page=-1),
        PageRequest(size=0),
        PageRequest(size=1001),
        PageRequest(sort_by="details"),
        PageRequest(sort_dir="sideways"),
    ],
)
def test_list_rejects_bad_page_requests(db, page_request):
    with pytest.raises(InvalidArgument):
        audit.list_audit_events(db, page_request)


def test_filtered_lookups(session_factory):
    _append(
        session_factory,
        ("CREATE", "InventoryItem", 1, "alice"),
        ("UPDATE", "InventoryItem", 1, "bob"),
        ("CREATE", "InventoryItem", 2, "alice"),
        ("CREATE", "Supplier", 1, None),
    )
    request = PageRequest(sort_by="id", sort_dir="asc")
    with session_factory() as db:
        by_entity = audit.find_by_entity(db, "InventoryItem", 1, request)
        by_entity_type = audit.find_by_entity_type(db, "Supplier", request)
        by_event_type = audit.find_by_event_type(db, "CREATE", request)
        by_user = audit.find_by_user_id(db, "alice", request)

    assert [e.event_type for e in by_entity.content] == ["CREATE", "UPDATE"]
    assert [e.entity_type for e in by_entity_type.content] == ["Supplier"]
    assert by_event_type.total_elements == 3
    assert [e.entity_id for e in by_user.content] == [1, 2]


def test_filtered_lookups_reject_blank_filters(db):
    with pytest.raises(InvalidArgument):
        audit.find_by_entity(db, "", 1, PageRequest())
    with pytest.raises(InvalidArgument):
        audit.find_by_entity(db, "InventoryItem", None, PageRequest())
    with pytest.raises(InvalidArgument):
        audit.find_by_user_id(db, " ", PageRequest())
    with pytest.raises(InvalidArgument):
        audit.find_by_event_type(db, "", PageRequest())
