import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATA_DIR", str(ROOT / "data"))

from stockroom.db.session import Base
from stockroom.core.domain_types import Condition, TagStatus, TagType
from stockroom.core.exceptions import InvalidStateError
from stockroom.crud.catalog import create_category, create_sku
from stockroom.crud.instances import receive_stock
from stockroom.models.audit import AuditEvent
from stockroom.models.instance import Instance
from stockroom.models.tag import Tag
from stockroom.services import lifecycle
from stockroom.services.allocation import LineDraft, TagDraft, allocate, checkout_tools
from stockroom.services.availability import compute_availability
from stockroom.services.conditions import change_instance_condition, current_condition


@pytest.fixture()
def db_session():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False})
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def drill(db_session):
    tools = create_category(db_session, {"name": "Power tools", "type": "tool"})
    sku = create_sku(
        db_session,
        {"code": "DRILL-01", "name": "Hammer drill", "category_id": tools.id, "unit_cost": 120, "is_lendable": True},
    )
    receive_stock(db_session, sku_id=sku.id, quantity=5, actor="tester")
    return sku


def _counts(db, sku_id):
    counts = compute_availability(db, sku_id)
    return {"available": counts.available, "loaned": counts.loaned, "reserved": counts.reserved, "broken": counts.broken}


def _checkout(db, sku_id, quantity):
    return checkout_tools(db, customer_name="Site crew", lines=[LineDraft(sku_id=sku_id, quantity=quantity)], actor="tester")


def test_drill_checkout_maintenance_return_and_repair(db_session, drill):
    loan = _checkout(db_session, drill.id, 2)
    assert _counts(db_session, drill.id) == {"available": 3, "loaned": 2, "reserved": 0, "broken": 0}

    lifecycle.fulfill(db_session, loan.id, actor="tester", condition=Condition.NEEDS_MAINTENANCE)
    assert _counts(db_session, drill.id) == {"available": 3, "loaned": 0, "reserved": 2, "broken": 0}

    maintenance = db_session.query(Tag).filter(Tag.condition_class == Condition.NEEDS_MAINTENANCE.value).one()
    assert maintenance.tag_type == TagType.RESERVED.value
    assert maintenance.status == TagStatus.ACTIVE.value
    repaired_id = maintenance.lines[0].instance_ids[0]

    repaired = change_instance_condition(db_session, repaired_id, Condition.FUNCTIONAL, actor="tech", notes="Serviced")

    assert repaired.tag_id is None
    assert current_condition(repaired) == Condition.FUNCTIONAL.value
    assert _counts(db_session, drill.id) == {"available": 4, "loaned": 0, "reserved": 1, "broken": 0}
    db_session.refresh(maintenance)
    assert maintenance.remaining_quantity == 1
    assert maintenance.status == TagStatus.ACTIVE.value


def test_last_instance_leaving_condition_tag_settles_it(db_session, drill):
    unit = db_session.query(Instance).filter(Instance.sku_id == drill.id).first()

    flagged = change_instance_condition(db_session, unit.id, Condition.BROKEN, actor="tech", reason="Cracked housing")
    broken_tag = db_session.get(Tag, flagged.tag_id)
    assert broken_tag.condition_class == Condition.BROKEN.value
    assert broken_tag.customer_name == "Maintenance - Hammer drill"
    assert broken_tag.lines[0].notes == "Cracked housing"
    assert current_condition(flagged) == Condition.BROKEN.value

    moved = change_instance_condition(db_session, unit.id, Condition.NEEDS_MAINTENANCE, actor="tech")
    db_session.refresh(broken_tag)
    assert broken_tag.status == TagStatus.FULFILLED.value
    assert moved.tag_id != broken_tag.id
    assert current_condition(moved) == Condition.NEEDS_MAINTENANCE.value
    assert _counts(db_session, drill.id)["reserved"] == 1


def test_same_condition_is_a_no_op(db_session, drill):
    unit = db_session.query(Instance).filter(Instance.sku_id == drill.id).first()

    result = change_instance_condition(db_session, unit.id, Condition.FUNCTIONAL, actor="tech")

    assert result.tag_id is None
    assert db_session.query(Tag).count() == 0


def test_loaned_instances_only_accept_broken(db_session, drill):
    loan = _checkout(db_session, drill.id, 2)
    first, second = loan.lines[0].instance_ids

    with pytest.raises(InvalidStateError):
        change_instance_condition(db_session, first, Condition.NEEDS_MAINTENANCE, actor="tech")
    with pytest.raises(InvalidStateError):
        change_instance_condition(db_session, first, Condition.FUNCTIONAL, actor="tech")

    broken = change_instance_condition(db_session, first, Condition.BROKEN, actor="tech", reason="Dropped on site")

    db_session.refresh(loan)
    assert loan.lines[0].instance_ids == [second]
    assert loan.remaining_quantity == 1
    assert loan.status == TagStatus.ACTIVE.value
    assert db_session.get(Tag, broken.tag_id).tag_type == TagType.BROKEN.value
    assert _counts(db_session, drill.id) == {"available": 3, "loaned": 1, "reserved": 0, "broken": 1}

    event = db_session.query(AuditEvent).filter(AuditEvent.event_type == "instance_condition_changed").one()
    assert event.severity == "medium"
    assert event.details["old_condition"] == "allocated"


def test_reserved_instances_are_not_released_by_condition_change(db_session, drill):
    draft = TagDraft(customer_name="Acme", tag_type=TagType.RESERVED, lines=[LineDraft(sku_id=drill.id, quantity=1)])
    tag = allocate(db_session, draft, actor="tester")
    unit_id = tag.lines[0].instance_ids[0]

    with pytest.raises(InvalidStateError):
        change_instance_condition(db_session, unit_id, Condition.FUNCTIONAL, actor="tech")

    flagged = change_instance_condition(db_session, unit_id, Condition.NEEDS_MAINTENANCE, actor="tech")
    db_session.refresh(tag)
    assert tag.status == TagStatus.FULFILLED.value
    assert flagged.tag_id != tag.id
