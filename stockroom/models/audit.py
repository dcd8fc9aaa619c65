"""Audit trail rows written after each engine state transition."""

from __future__ import annotations

from sqlalchemy import JSON, Column, Integer, Text

from ..db.session import Base


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True, index=True)
    event_type = Column(Text, nullable=False, index=True)
    entity_type = Column(Text, nullable=False)
    entity_id = Column(Text, nullable=False, index=True)
    actor = Column(Text, nullable=False)
    description = Column(Text, nullable=False)
    # ``metadata`` is reserved by the declarative base.
    details = Column("metadata", JSON, nullable=True)
    severity = Column(Text, nullable=False, default="low")
    request_id = Column(Text, nullable=True)
    created_at = Column(Text, nullable=False)


__all__ = ["AuditEvent"]
