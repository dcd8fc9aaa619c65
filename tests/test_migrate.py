import os
import sys
from pathlib import Path

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATA_DIR", str(ROOT / "data"))

from stockroom.db.migrate import INDEXES, run_migrations
from stockroom.db.session import Base
from stockroom.core.domain_types import TagType
from stockroom.models.tag import Tag


def test_backfills_condition_tags_and_adds_indexes(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'imported.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    db = TestingSessionLocal()
    try:
        for project in ("Tool condition: broken", "Tool condition: needs_maintenance", "Spring refit"):
            db.add(Tag.open(customer_name="Imported", tag_type=TagType.RESERVED, actor="import", project_name=project))
        db.commit()

        run_migrations(engine)
        run_migrations(engine)

        db.expire_all()
        classes = {tag.project_name: tag.condition_class for tag in db.query(Tag).all()}
        assert classes == {
            "Tool condition: broken": "broken",
            "Tool condition: needs_maintenance": "needs_maintenance",
            "Spring refit": None,
        }
        with engine.connect() as conn:
            names = set(conn.execute(text("SELECT name FROM sqlite_master WHERE type = 'index'")).scalars().all())
        assert {name for _, name, _ in INDEXES} <= names
    finally:
        db.close()
        engine.dispose()
