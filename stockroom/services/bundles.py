from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from ..core.exceptions import InvalidBundleError, NotFoundError
from ..models.catalog import Sku


@dataclass(frozen=True)
class Requirement:
    """A concrete (non-bundle) SKU and how many units of it are needed."""

    sku_id: int
    quantity: int


def expand(db: Session, sku_id: int, quantity: int) -> list[Requirement]:
    """Resolve a SKU request into physical component requirements.

    Bundles are one level deep: each component's per-bundle quantity is
    multiplied by the requested bundle quantity. A component that is itself a
    bundle, a component missing from the catalog, or an empty bundle raises
    ``InvalidBundleError``.
    """

    if quantity < 1:
        raise ValueError("quantity must be a positive integer")
    sku = db.get(Sku, sku_id)
    if sku is None:
        raise NotFoundError("SKU", sku_id)
    if not sku.is_bundle:
        return [Requirement(sku.id, quantity)]
    if not sku.bundle_items:
        raise InvalidBundleError(sku.id, "bundle has no components")

    requirements = []
    for item in sku.bundle_items:
        component = db.get(Sku, item.component_sku_id)
        if component is None:
            raise InvalidBundleError(sku.id, "component missing from catalog", item.component_sku_id)
        if component.is_bundle:
            raise InvalidBundleError(sku.id, "bundles cannot contain other bundles", component.id)
        requirements.append(Requirement(component.id, item.quantity * quantity))
    return requirements


def merge_requirements(requirements: list[Requirement]) -> dict[int, int]:
    """Total demand per SKU, keeping first-seen order."""

    totals: dict[int, int] = {}
    for requirement in requirements:
        totals[requirement.sku_id] = totals.get(requirement.sku_id, 0) + requirement.quantity
    return totals
