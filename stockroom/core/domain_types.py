"""Closed vocabularies shared by the catalog, tags and instances.

Every value that used to travel around as a loose string (tag types, tag
states, returned conditions, category kinds) lives here as a ``str`` enum so
that the database keeps storing plain text while Python code compares against
a fixed set of members.
"""

from __future__ import annotations

from enum import Enum


class CategoryType(str, Enum):
    PRODUCT = "product"
    TOOL = "tool"


class SkuStatus(str, Enum):
    ACTIVE = "active"
    DISCONTINUED = "discontinued"


class TagType(str, Enum):
    RESERVED = "reserved"
    BROKEN = "broken"
    IMPERFECT = "imperfect"
    LOANED = "loaned"
    STOCK = "stock"


class TagStatus(str, Enum):
    ACTIVE = "active"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"


class Condition(str, Enum):
    FUNCTIONAL = "functional"
    NEEDS_MAINTENANCE = "needs_maintenance"
    BROKEN = "broken"


class SelectionMethod(str, Enum):
    FIFO = "fifo"
    COST_LOWEST = "cost_lowest"
    COST_HIGHEST = "cost_highest"
    MANUAL = "manual"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Loan tags are returned on fulfilment; everything else is consumed.
LOAN_TAG_TYPES = frozenset({TagType.LOANED})

# Availability bucket that an owned instance counts towards, keyed by the
# owning tag's type. ``stock`` tags are held pending consumption.
AVAILABILITY_BUCKETS = {
    TagType.RESERVED: "reserved",
    TagType.STOCK: "reserved",
    TagType.BROKEN: "broken",
    TagType.IMPERFECT: "broken",
    TagType.LOANED: "loaned",
}

# Tag type created by the condition router for each non-functional condition.
CONDITION_TAG_TYPES = {
    Condition.NEEDS_MAINTENANCE: TagType.RESERVED,
    Condition.BROKEN: TagType.BROKEN,
}

ALLOCATED = "allocated"


__all__ = [
    "ALLOCATED",
    "AVAILABILITY_BUCKETS",
    "CONDITION_TAG_TYPES",
    "CategoryType",
    "Condition",
    "LOAN_TAG_TYPES",
    "SelectionMethod",
    "Severity",
    "SkuStatus",
    "TagStatus",
    "TagType",
]
