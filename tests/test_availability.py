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
from stockroom.core.domain_types import CategoryType, TagType
from stockroom.crud.catalog import create_category, create_sku
from stockroom.crud.instances import receive_stock
from stockroom.models.inventory import InventorySummary
from stockroom.services.allocation import LineDraft, TagDraft, allocate
from stockroom.services.availability import compute_availability, compute_availability_many, inventory_summary


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
def skus(db_session):
    products = create_category(db_session, {"name": "Monitors", "type": "product"})
    tools = create_category(db_session, {"name": "Ladders", "type": "tool"})
    monitor = create_sku(db_session, {"code": "MON-27", "name": "27in monitor", "category_id": products.id})
    ladder = create_sku(
        db_session, {"code": "LAD-3", "name": "3m ladder", "category_id": tools.id, "is_lendable": True}
    )
    receive_stock(db_session, sku_id=monitor.id, quantity=10, unit_cost=100, actor="tester")
    receive_stock(db_session, sku_id=ladder.id, quantity=2, unit_cost=50, actor="tester")
    return {"monitor": monitor, "ladder": ladder}


def _tag(db, sku_id, quantity, tag_type):
    draft = TagDraft(customer_name="Acme", tag_type=tag_type, lines=[LineDraft(sku_id=sku_id, quantity=quantity)])
    return allocate(db, draft, actor="tester")


def test_each_tag_type_lands_in_its_bucket(db_session, skus):
    monitor = skus["monitor"].id
    _tag(db_session, monitor, 1, TagType.RESERVED)
    _tag(db_session, monitor, 2, TagType.STOCK)
    _tag(db_session, monitor, 1, TagType.BROKEN)
    _tag(db_session, monitor, 1, TagType.IMPERFECT)
    _tag(db_session, skus["ladder"].id, 1, TagType.LOANED)

    counts = compute_availability(db_session, monitor)

    assert counts.total == 10
    assert counts.available == 5
    assert counts.reserved == 3
    assert counts.broken == 2
    assert counts.loaned == 0
    assert counts.is_balanced
    assert counts.average_cost == 100.0
    assert compute_availability(db_session, skus["ladder"].id).loaned == 1


def test_unknown_sku_has_zero_counts(db_session, skus):
    counts = compute_availability_many(db_session, [skus["monitor"].id, 777])

    assert counts[777].total == 0
    assert counts[777].is_balanced
    assert counts[skus["monitor"].id].available == 10


def test_summary_filters_by_category_type(db_session, skus):
    rows = inventory_summary(db_session)
    assert [row["sku_code"] for row in rows] == ["LAD-3", "MON-27"]

    tools = inventory_summary(db_session, CategoryType.TOOL)
    assert [row["sku_code"] for row in tools] == ["LAD-3"]


def test_summary_cache_can_be_disabled(db_session, skus, monkeypatch):
    monkeypatch.setattr(settings, "SUMMARY_CACHE_ENABLED", False)
    before = db_session.get(InventorySummary, skus["monitor"].id).available

    _tag(db_session, skus["monitor"].id, 3, TagType.RESERVED)

    db_session.expire_all()
    assert db_session.get(InventorySummary, skus["monitor"].id).available == before
    assert compute_availability(db_session, skus["monitor"].id).available == 7
