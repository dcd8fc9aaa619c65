import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATA_DIR", str(ROOT / "data"))

from stockroom.db.session import Base
from stockroom.core.domain_types import Condition, TagStatus, TagType
from stockroom.crud.catalog import create_category, create_sku
from stockroom.crud.instances import receive_stock
from stockroom.models.instance import Instance
from stockroom.models.tag import Tag
from stockroom.services import lifecycle
from stockroom.services.allocation import LineDraft, TagDraft, allocate, checkout_tools
from stockroom.services.availability import compute_availability
from stockroom.services.conditions import change_instance_condition


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
def stocked(db_session):
    tools = create_category(db_session, {"name": "Tools", "type": "tool"})
    parts = create_category(db_session, {"name": "Plumbing", "type": "product"})
    drill = create_sku(
        db_session,
        {"code": "DRILL-01", "name": "Hammer drill", "category_id": tools.id, "unit_cost": 120, "is_lendable": True},
    )
    valve = create_sku(db_session, {"code": "VALVE-2", "name": "Ball valve", "category_id": parts.id, "unit_cost": 8})
    receive_stock(db_session, sku_id=drill.id, quantity=6, actor="tester")
    receive_stock(db_session, sku_id=valve.id, quantity=5, actor="tester")
    return {"drill": drill.id, "valve": valve.id}


def assert_invariants(db):
    """Every unit has at most one owner, and the tag lines agree with the instance table."""

    db.expire_all()
    owners = dict(db.execute(select(Instance.id, Instance.tag_id)).all())
    listed: dict[int, int] = {}
    for tag in db.execute(select(Tag)).scalars().all():
        for line in tag.lines:
            ids = list(line.instance_ids or [])
            assert len(ids) == line.remaining_quantity, f"tag {tag.id} line {line.id} count drifted"
            assert len(set(ids)) == len(ids)
            if not tag.is_active:
                assert ids == [], f"closed tag {tag.id} still lists {ids}"
            for instance_id in ids:
                assert instance_id not in listed, f"instance {instance_id} on tags {listed[instance_id]} and {tag.id}"
                listed[instance_id] = tag.id
                assert owners.get(instance_id) == tag.id, f"instance {instance_id} is not owned by tag {tag.id}"

    for instance_id, tag_id in owners.items():
        if tag_id is not None:
            assert listed.get(instance_id) == tag_id, f"instance {instance_id} is owned but not listed"

    sku_ids = set(db.execute(select(Instance.sku_id)).scalars().all())
    for sku_id in sku_ids:
        counts = compute_availability(db, sku_id)
        assert counts.is_balanced
        free = db.execute(
            select(Instance.id).where(Instance.sku_id == sku_id, Instance.tag_id.is_(None))
        ).scalars().all()
        assert counts.available == len(free)


def test_ownership_holds_through_a_mixed_sequence(db_session, stocked):
    drill, valve = stocked["drill"], stocked["valve"]
    assert_invariants(db_session)

    reservation = allocate(
        db_session,
        TagDraft(customer_name="Acme", tag_type=TagType.RESERVED, lines=[LineDraft(sku_id=valve, quantity=2)]),
        actor="tester",
    )
    loan = checkout_tools(db_session, customer_name="Crew A", lines=[LineDraft(sku_id=drill, quantity=4)], actor="tester")
    assert_invariants(db_session)

    loan_line = loan.lines[0]
    to_service, on_site, *_ = loan_line.instance_ids
    lifecycle.partial_return(
        db_session, loan.id, {loan_line.id: [to_service]}, actor="tester", condition=Condition.NEEDS_MAINTENANCE
    )
    assert_invariants(db_session)

    change_instance_condition(db_session, to_service, Condition.BROKEN, actor="inspector", reason="Cracked housing")
    assert_invariants(db_session)

    change_instance_condition(db_session, on_site, Condition.BROKEN, actor="crew-lead", reason="Dropped on site")
    assert_invariants(db_session)

    lifecycle.cancel(db_session, reservation.id, actor="tester", reason="Order withdrawn")
    assert_invariants(db_session)

    lifecycle.fulfill(db_session, loan.id, actor="tester")
    assert_invariants(db_session)

    consumption = allocate(
        db_session,
        TagDraft(customer_name="Acme", tag_type=TagType.RESERVED, lines=[LineDraft(sku_id=valve, quantity=3)]),
        actor="tester",
    )
    line = consumption.lines[0]
    lifecycle.partial_fulfill(db_session, consumption.id, {line.id: line.instance_ids[:1]}, actor="tester")
    assert_invariants(db_session)

    lifecycle.fulfill(db_session, consumption.id, actor="tester")
    assert_invariants(db_session)

    drills = compute_availability(db_session, drill)
    assert (drills.total, drills.available, drills.broken, drills.loaned) == (6, 4, 2, 0)
    valves = compute_availability(db_session, valve)
    assert (valves.total, valves.available) == (2, 2)
    assert db_session.get(Tag, loan.id).status == TagStatus.FULFILLED.value
