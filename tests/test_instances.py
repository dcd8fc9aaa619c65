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
from stockroom.core.config import settings
from stockroom.core.domain_types import TagType
from stockroom.core.exceptions import BindConflictError, InsufficientStockError
from stockroom.crud.catalog import create_category, create_sku
from stockroom.crud.instances import (
    adjust_quantity,
    bind_instance,
    instances_for_tag,
    list_instances,
    receive_stock,
    release_instances,
    update_instance,
)
from stockroom.models.audit import AuditEvent
from stockroom.models.instance import Instance
from stockroom.services.allocation import LineDraft, TagDraft, allocate
from stockroom.services.availability import compute_availability, cost_breakdown, inventory_summary


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
def sku(db_session):
    category = create_category(db_session, {"name": "Consumables", "type": "product"})
    return create_sku(db_session, {"code": "TAPE-48", "name": "Packing tape", "category_id": category.id, "unit_cost": 2.5})


def test_receive_stock_creates_available_instances(db_session, sku):
    created = receive_stock(
        db_session,
        sku_id=sku.id,
        quantity=3,
        unit_cost=2.0,
        actor="receiver",
        supplier="  Tape Co ",
        reference_number="PO-77",
        acquisition_date="2024-02-10",
    )

    assert len(created) == 3
    first = created[0]
    assert first.tag_id is None
    assert first.version == 0
    assert first.acquisition_date == "2024-02-10T00:00:00Z"
    assert first.supplier == "Tape Co"
    assert first.location == settings.DEFAULT_LOCATION
    assert first.added_by == "receiver"
    event = db_session.query(AuditEvent).filter(AuditEvent.event_type == "stock_received").one()
    assert event.details["quantity"] == 3


def test_receive_stock_defaults_to_sku_cost_and_rejects_bad_input(db_session, sku):
    created = receive_stock(db_session, sku_id=sku.id, quantity=1, actor="receiver")
    assert created[0].acquisition_cost == 2.5

    with pytest.raises(ValueError):
        receive_stock(db_session, sku_id=sku.id, quantity=0, actor="receiver")
    with pytest.raises(ValueError):
        receive_stock(db_session, sku_id=sku.id, quantity=1, unit_cost=-1, actor="receiver")


def test_adjust_quantity_up_and_down(db_session, sku):
    older = receive_stock(db_session, sku_id=sku.id, quantity=2, actor="tester", acquisition_date="2023-01-01")
    receive_stock(db_session, sku_id=sku.id, quantity=2, actor="tester", acquisition_date="2024-01-01")

    up = adjust_quantity(db_session, sku_id=sku.id, adjustment=3, actor="tester", reason="Found a box")
    assert up["action"] == "increased"
    assert len(up["instance_ids"]) == 3
    assert compute_availability(db_session, sku.id).total == 7

    down = adjust_quantity(db_session, sku_id=sku.id, adjustment=-2, actor="tester", reason="Water damage")
    assert down["action"] == "decreased"
    assert sorted(down["instance_ids"]) == sorted(instance.id for instance in older)
    assert compute_availability(db_session, sku.id).total == 5

    with pytest.raises(ValueError):
        adjust_quantity(db_session, sku_id=sku.id, adjustment=0, actor="tester")


def test_negative_adjustment_never_touches_held_units(db_session, sku):
    receive_stock(db_session, sku_id=sku.id, quantity=3, actor="tester")
    draft = TagDraft(customer_name="Acme", tag_type=TagType.RESERVED, lines=[LineDraft(sku_id=sku.id, quantity=2)])
    allocate(db_session, draft, actor="tester")

    with pytest.raises(InsufficientStockError):
        adjust_quantity(db_session, sku_id=sku.id, adjustment=-2, actor="tester")

    counts = compute_availability(db_session, sku.id)
    assert (counts.total, counts.available, counts.reserved) == (3, 1, 2)


def test_owner_reference_writes_are_guarded(db_session, sku):
    unit = receive_stock(db_session, sku_id=sku.id, quantity=1, actor="tester")[0]
    draft = TagDraft(customer_name="Acme", tag_type=TagType.RESERVED, lines=[LineDraft(sku_id=sku.id, quantity=1)])
    tag = allocate(db_session, draft, actor="tester")

    with pytest.raises(BindConflictError):
        bind_instance(db_session, unit.id, tag.id + 1)
    db_session.rollback()
    with pytest.raises(BindConflictError):
        release_instances(db_session, [unit.id], tag.id + 1)
    db_session.rollback()

    assert [instance.id for instance in instances_for_tag(db_session, tag.id)] == [unit.id]
    assert db_session.get(Instance, unit.id).version == 1


def test_update_instance_only_edits_descriptive_fields(db_session, sku):
    unit = receive_stock(db_session, sku_id=sku.id, quantity=1, actor="tester")[0]

    updated = update_instance(
        db_session, unit, {"location": "Shelf B", "notes": "", "tag_id": 99, "acquisition_cost": 0}, actor="clerk"
    )

    assert updated.location == "Shelf B"
    assert updated.notes is None
    assert updated.tag_id is None
    assert updated.acquisition_cost == 2.5


def test_listing_breakdown_and_summary(db_session, sku):
    receive_stock(db_session, sku_id=sku.id, quantity=2, unit_cost=1.0, actor="tester", location="Shelf A")
    receive_stock(db_session, sku_id=sku.id, quantity=1, unit_cost=3.0, actor="tester", supplier="Tape Co")
    draft = TagDraft(customer_name="Acme", tag_type=TagType.RESERVED, lines=[LineDraft(sku_id=sku.id, quantity=1)])
    allocate(db_session, draft, actor="tester")

    assert len(list_instances(db_session, sku.id)) == 3
    assert len(list_instances(db_session, sku.id, available_only=True)) == 2

    groups = cost_breakdown(db_session, sku.id)
    assert [(group["acquisition_cost"], group["count"]) for group in groups] == [(1.0, 1), (3.0, 1)]
    assert groups[1]["suppliers"] == ["Tape Co"]

    (row,) = inventory_summary(db_session)
    assert row["sku_code"] == "TAPE-48"
    assert (row["total"], row["available"], row["reserved"]) == (3, 2, 1)
    assert row["total_value"] == 5.0
