"""Value types shared by the reconcile and propagate stages."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def utcnow_iso() -> str:
    return utcnow().isoformat()


def vendor_id(value: Any) -> str | None:
    """Normalize a vendor id (int, numeric string or GID) to a plain string."""
    if value is None or value == "":
        return None
    text = str(value)
    if text.startswith("gid://"):
        text = text.rsplit("/", 1)[-1]
    return text


@dataclass
class StockStatus:
    """Product-level stock flags derived from variant data."""

    total_stock: int = 0
    has_in_stock_variants: bool = False
    in_stock_variant_count: int = 0
    total_variant_count: int = 0

    def to_fields(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class InventoryLevel:
    """Available quantity of one inventory item at one location."""

    location_id: str
    available: int = 0
    location_name: str | None = None
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class InventoryLevels:
    """All location levels for one inventory item, as fetched from the vendor."""

    inventory_item_id: str
    levels: list[InventoryLevel] = field(default_factory=list)

    @property
    def total_available(self) -> int:
        return sum(level.available for level in self.levels)

    def as_dicts(self) -> list[dict[str, Any]]:
        return [level.to_dict() for level in self.levels]


@dataclass
class PropagationResult:
    """Outcome of one reconcile + propagate pass.

    ``source_updated`` counts authoritative documents written; ``storefronts``
    maps storefront -> number of denormalized documents written there;
    ``errors`` maps storefront -> error message for storefronts that failed.
    """

    entity_id: str
    source_updated: int = 0
    storefronts: dict[str, int] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def storefront_updated(self) -> int:
        return sum(self.storefronts.values())

    @property
    def total_updated(self) -> int:
        return self.source_updated + self.storefront_updated

    @property
    def ok(self) -> bool:
        return not self.errors

    def record(self, storefront: str, count: int = 1) -> None:
        self.storefronts[storefront] = self.storefronts.get(storefront, 0) + count

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "source_updated": self.source_updated,
            "storefront_updated": self.storefront_updated,
            "total_updated": self.total_updated,
            "storefronts": dict(self.storefronts),
            "errors": dict(self.errors),
        }


@dataclass
class JobSummary:
    """Counters reported by the batch jobs (sync, recalculate, import)."""

    updated: int = 0
    skipped: int = 0
    errors: int = 0
    variant_updates: int = 0
    details: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.errors == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
            "variant_updates": self.variant_updates,
            "ok": self.ok,
        }
