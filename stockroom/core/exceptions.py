"""Domain exceptions raised by the allocation engine.

Each exception carries a class-level ``code`` so API handlers and logs can
identify the failure without parsing the message, and keeps its context
(SKU, quantities, tag, instance IDs) as attributes.
"""

from __future__ import annotations

from typing import Any, Iterable


class StockroomError(Exception):
    """Base exception for every engine failure."""

    code: str = "STOCKROOM_ERROR"
    status_code: int = 400

    def details(self) -> dict[str, Any] | None:
        return None


class NotFoundError(StockroomError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")

    def details(self) -> dict[str, Any]:
        return {"entity": self.entity, "entity_id": self.entity_id}


class InsufficientStockError(StockroomError):
    """Requested quantity exceeds the instances available for a SKU."""

    code = "INSUFFICIENT_STOCK"
    status_code = 409

    def __init__(self, sku_id: int, requested: int, available: int):
        self.sku_id = sku_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"SKU {sku_id}: requested {requested}, only {available} available"
        )

    @property
    def shortfall(self) -> int:
        return max(self.requested - self.available, 0)

    def details(self) -> dict[str, Any]:
        return {
            "sku_id": self.sku_id,
            "requested": self.requested,
            "available": self.available,
            "shortfall": self.shortfall,
        }


class InvalidBundleError(StockroomError):
    """Bundle definition is structurally invalid (nested or missing component)."""

    code = "INVALID_BUNDLE"
    status_code = 422

    def __init__(self, bundle_sku_id: int, reason: str, component_sku_id: int | None = None):
        self.bundle_sku_id = bundle_sku_id
        self.component_sku_id = component_sku_id
        self.reason = reason
        super().__init__(f"Bundle {bundle_sku_id}: {reason}")

    def details(self) -> dict[str, Any]:
        return {
            "bundle_sku_id": self.bundle_sku_id,
            "component_sku_id": self.component_sku_id,
            "reason": self.reason,
        }


class InvalidStateError(StockroomError):
    """Transition attempted from a terminal or incompatible state."""

    code = "INVALID_STATE"
    status_code = 409

    def __init__(self, message: str, *, entity: str = "tag", entity_id: Any = None, state: str | None = None):
        self.entity = entity
        self.entity_id = entity_id
        self.state = state
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        return {"entity": self.entity, "entity_id": self.entity_id, "state": self.state}


class InvalidSelectionError(StockroomError):
    """Instance IDs in a partial return/fulfil are not bound to the tag line."""

    code = "INVALID_SELECTION"
    status_code = 422

    def __init__(self, tag_id: int | None, message: str, instance_ids: Iterable[int] = ()):
        self.tag_id = tag_id
        self.instance_ids = sorted(instance_ids)
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        return {"tag_id": self.tag_id, "instance_ids": self.instance_ids}


class CatalogMismatchError(StockroomError):
    """SKU cannot take part in this kind of allocation."""

    code = "CATALOG_MISMATCH"
    status_code = 422

    def __init__(self, sku_id: int, message: str):
        self.sku_id = sku_id
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        return {"sku_id": self.sku_id}


class BindConflictError(StockroomError):
    """Another writer changed the instance's owner reference first."""

    code = "BIND_CONFLICT"
    status_code = 409

    def __init__(self, instance_id: int, expected_tag_id: int | None):
        self.instance_id = instance_id
        self.expected_tag_id = expected_tag_id
        super().__init__(
            f"Instance {instance_id} is no longer owned by {expected_tag_id or 'nobody'}"
        )

    def details(self) -> dict[str, Any]:
        return {"instance_id": self.instance_id, "expected_tag_id": self.expected_tag_id}


class ConcurrentUpdateError(StockroomError):
    """A record changed underneath the request between its read and its write."""

    code = "CONCURRENT_UPDATE"
    status_code = 409

    def __init__(self, entity: str, message: str | None = None):
        self.entity = entity
        super().__init__(message or f"{entity} was changed by another request; reload and retry")

    def details(self) -> dict[str, Any]:
        return {"entity": self.entity}


__all__ = [
    "BindConflictError",
    "CatalogMismatchError",
    "ConcurrentUpdateError",
    "InsufficientStockError",
    "InvalidBundleError",
    "InvalidSelectionError",
    "InvalidStateError",
    "NotFoundError",
    "StockroomError",
]
