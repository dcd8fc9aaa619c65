"""Read side of the catalog plus the small write helpers used for seeding."""

from __future__ import annotations

from sqlalchemy.orm import Session

from ..core.domain_types import CategoryType, SkuStatus
from ..core.exceptions import NotFoundError
from ..models.catalog import BundleItem, Category, Sku
from ..services.timecalc import utcnow


def get_sku(db: Session, sku_id: int) -> Sku | None:
    return db.get(Sku, sku_id)


def require_sku(db: Session, sku_id: int) -> Sku:
    sku = get_sku(db, sku_id)
    if sku is None:
        raise NotFoundError("SKU", sku_id)
    return sku


def get_category_type(db: Session, category_id: int | None) -> CategoryType | None:
    """Return ``product`` or ``tool`` for a category, ``None`` when unset."""

    if category_id is None:
        return None
    category = db.get(Category, category_id)
    if category is None:
        raise NotFoundError("Category", category_id)
    return category.category_type


def create_category(db: Session, payload: dict) -> Category:
    name = (payload.get("name") or "").strip().lower()
    if not name:
        raise ValueError("name is required")
    category_type = CategoryType(payload.get("type") or CategoryType.PRODUCT.value)
    category = Category(
        name=name,
        type=category_type.value,
        status=payload.get("status") or "active",
        created_at=utcnow(),
    )
    db.add(category)
    db.commit()
    db.refresh(category)
    return category


def create_sku(db: Session, payload: dict) -> Sku:
    """Persist a SKU from a payload dict.

    ``bundle_items`` may be given as a list of ``{"sku_id", "quantity"}``
    dicts; supplying it marks the SKU as a bundle.
    """

    code = (payload.get("code") or "").strip().upper()
    if not code:
        raise ValueError("code is required")
    name = (payload.get("name") or "").strip()
    if not name:
        raise ValueError("name is required")
    status = SkuStatus(payload.get("status") or SkuStatus.ACTIVE.value)
    components = payload.get("bundle_items") or []
    sku = Sku(
        code=code,
        name=name,
        category_id=payload.get("category_id"),
        unit_cost=float(payload.get("unit_cost") or 0),
        is_bundle=bool(payload.get("is_bundle") or components),
        is_lendable=bool(payload.get("is_lendable")),
        status=status.value,
        created_at=utcnow(),
    )
    db.add(sku)
    db.flush()
    for component in components:
        sku.bundle_items.append(_bundle_item(sku, component))
    db.commit()
    db.refresh(sku)
    return sku


def set_bundle_items(db: Session, sku: Sku, components: list[dict]) -> Sku:
    sku.bundle_items = [_bundle_item(sku, component) for component in components]
    sku.is_bundle = bool(components)
    db.commit()
    db.refresh(sku)
    return sku


def _bundle_item(sku: Sku, component: dict) -> BundleItem:
    quantity = int(component.get("quantity") or 0)
    if quantity < 1:
        raise ValueError("bundle component quantity must be positive")
    component_id = component.get("sku_id")
    if component_id is None:
        raise ValueError("bundle component sku_id is required")
    if component_id == sku.id:
        raise ValueError("a bundle cannot contain itself")
    return BundleItem(component_sku_id=int(component_id), quantity=quantity)
