# app/inventory/adapters.py
"""
Provider payload adapters.

Each provider type answers with its own JSON shape. An adapter pulls the item
list out of a page and projects every raw item onto NormalizedInventoryItem.
The raw dict is carried along untouched in `raw_data` and nothing else in the
core looks inside it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict

from app.core.exceptions import ExternalProviderError
from app.models.inventory import ProviderType
from app.utils.datetime_utils import as_utc

logger = logging.getLogger(__name__)


class NormalizedInventoryItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    external_id: str
    name: str
    description: str | None = None
    ndc: str | None = None
    quantity: int = 0
    unit: str | None = None
    price: Decimal | None = None
    wholesale_price: Decimal | None = None
    retail_price: Decimal | None = None
    in_stock: bool = False
    location: str | None = None
    expiration_date: datetime | None = None
    reorder_point: int | None = None
    reorder_quantity: int | None = None
    supplier_info: str | None = None
    raw_data: dict[str, Any] = {}


@dataclass(frozen=True)
class ProviderFormat:
    collection_keys: tuple[str, ...]
    total_keys: tuple[str, ...]
    fields: dict[str, tuple[str, ...]]
    in_stock_keys: tuple[str, ...] = ()
    list_payload_allowed: bool = False


PROVIDER_FORMATS: dict[str, ProviderFormat] = {
    ProviderType.RXWARE.value: ProviderFormat(
        collection_keys=("data",),
        total_keys=("totalCount",),
        fields={
            "external_id": ("inventoryId", "id"),
            "name": ("productName", "name"),
            "description": ("description",),
            "ndc": ("ndcNumber",),
            "quantity": ("quantityOnHand",),
            "unit": ("dosageForm",),
            "price": ("awp",),
            "wholesale_price": ("acquisitionCost",),
            "retail_price": ("retailPrice",),
            "location": ("shelfLocation",),
            "expiration_date": ("expirationDate",),
            "reorder_point": ("reorderPoint",),
            "reorder_quantity": ("reorderQuantity",),
            "supplier_info": ("primaryVendor",),
        },
    ),
    ProviderType.MCKESSON.value: ProviderFormat(
        collection_keys=("inventory",),
        total_keys=("totalResults",),
        fields={
            "external_id": ("sku", "productId"),
            "name": ("productName",),
            "description": ("productDescription",),
            "ndc": ("ndc",),
            "quantity": ("quantity",),
            "unit": ("unitOfMeasure",),
            "price": ("listPrice",),
            "wholesale_price": ("wholesalePrice",),
            "retail_price": ("suggestedRetailPrice",),
            "location": ("warehouseLocation",),
            "expiration_date": ("expirationDate",),
            "reorder_point": ("minimumOrderQuantity",),
            "reorder_quantity": ("standardOrderQuantity",),
            "supplier_info": ("manufacturer",),
        },
        in_stock_keys=("inStock",),
    ),
    ProviderType.PIONEERRX.value: ProviderFormat(
        collection_keys=("items",),
        total_keys=("totalItems",),
        fields={
            "external_id": ("itemId", "id"),
            "name": ("drugName", "name"),
            "description": ("description",),
            "ndc": ("nationalDrugCode",),
            "quantity": ("stockQuantity",),
            "unit": ("packageSize",),
            "price": ("awpPrice",),
            "wholesale_price": ("costPrice",),
            "retail_price": ("sellingPrice",),
            "location": ("binLocation",),
            "expiration_date": ("expirationDate",),
            "reorder_point": ("reorderLevel",),
            "reorder_quantity": ("orderQuantity",),
            "supplier_info": ("primaryVendor",),
        },
        in_stock_keys=("hasStock",),
    ),
    ProviderType.CARDINAL.value: ProviderFormat(
        collection_keys=("products",),
        total_keys=("totalCount",),
        fields={
            "external_id": ("productId", "id"),
            "name": ("name",),
            "description": ("description",),
            "ndc": ("ndcNumber",),
            "quantity": ("inventoryLevel",),
            "unit": ("unitOfMeasure",),
            "price": ("contractPrice",),
            "wholesale_price": ("wholesaleAcquisitionCost",),
            "retail_price": ("suggestedRetailPrice",),
            "location": ("storageLocation",),
            "expiration_date": ("expirationDate",),
            "reorder_point": ("parLevel",),
            "reorder_quantity": ("orderQuantity",),
            "supplier_info": ("manufacturer",),
        },
        in_stock_keys=("available",),
    ),
    ProviderType.GENERIC.value: ProviderFormat(
        collection_keys=("data", "items"),
        total_keys=("totalCount", "totalItems"),
        fields={
            "external_id": ("id", "inventoryId", "productId"),
            "name": ("name", "productName", "drugName"),
            "description": ("description",),
            "ndc": ("ndc", "ndcNumber", "nationalDrugCode"),
            "quantity": ("quantity", "stockQuantity", "inventoryLevel"),
            "unit": ("unit", "unitOfMeasure", "packageSize"),
            "price": ("price", "listPrice", "awpPrice"),
            "wholesale_price": ("wholesalePrice", "costPrice"),
            "retail_price": ("retailPrice", "sellingPrice", "suggestedRetailPrice"),
            "location": ("location",),
            "expiration_date": ("expirationDate",),
            "reorder_point": ("reorderPoint",),
            "reorder_quantity": ("reorderQuantity",),
            "supplier_info": ("supplierInfo",),
        },
        in_stock_keys=("inStock", "hasStock", "available"),
        list_payload_allowed=True,
    ),
}

# The simulated provider produces generic-format items.
PROVIDER_FORMATS[ProviderType.SIMULATION.value] = PROVIDER_FORMATS[ProviderType.GENERIC.value]


def get_format(provider_type: str) -> ProviderFormat:
    fmt = PROVIDER_FORMATS.get((provider_type or "").lower())
    if fmt is None:
        logger.warning("Unknown provider type %r, using generic format", provider_type)
        return PROVIDER_FORMATS[ProviderType.GENERIC.value]
    return fmt


def _first(raw: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = raw.get(key)
        if value not in (None, ""):
            return value
    return None


def _to_int(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError, OverflowError):
        return 0


def _to_optional_int(value: Any) -> int | None:
    return None if value is None else _to_int(value)


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value).strip()).quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError):
        return None


def _to_datetime(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def _to_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value).strip() or None


def extract_items(provider_type: str, payload: Any) -> tuple[list[dict[str, Any]], int | None]:
    """
    Pull the raw item list and the provider-reported total out of one page.
    Raises ExternalProviderError if the page has no recognizable item list.
    """
    fmt = get_format(provider_type)

    if isinstance(payload, list):
        if not fmt.list_payload_allowed:
            raise ExternalProviderError(f"Unexpected list payload from {provider_type} provider")
        return [item for item in payload if isinstance(item, dict)], None

    if not isinstance(payload, dict):
        raise ExternalProviderError(f"Malformed payload from {provider_type} provider")

    for key in fmt.collection_keys:
        items = payload.get(key)
        if isinstance(items, list):
            total = _first(payload, fmt.total_keys)
            return [item for item in items if isinstance(item, dict)], _to_optional_int(total)

    raise ExternalProviderError(
        f"Payload from {provider_type} provider has none of {', '.join(fmt.collection_keys)}"
    )


def normalize_item(provider_type: str, raw: dict[str, Any]) -> NormalizedInventoryItem | None:
    """
    Project one raw provider item. Items without an id or a name are dropped
    (None) since they cannot be tracked across syncs.
    """
    fmt = get_format(provider_type)
    f = fmt.fields

    external_id = _to_str(_first(raw, f["external_id"]))
    name = _to_str(_first(raw, f["name"]))
    if not external_id or not name:
        return None

    quantity = max(_to_int(_first(raw, f["quantity"])), 0)
    flagged = any(raw.get(key) is True for key in fmt.in_stock_keys)

    return NormalizedInventoryItem(
        external_id=external_id,
        name=name,
        description=_to_str(_first(raw, f["description"])),
        ndc=_to_str(_first(raw, f["ndc"])),
        quantity=quantity,
        unit=_to_str(_first(raw, f["unit"])),
        price=_to_decimal(_first(raw, f["price"])),
        wholesale_price=_to_decimal(_first(raw, f["wholesale_price"])),
        retail_price=_to_decimal(_first(raw, f["retail_price"])),
        in_stock=flagged or quantity > 0,
        location=_to_str(_first(raw, f["location"])),
        expiration_date=_to_datetime(_first(raw, f["expiration_date"])),
        reorder_point=_to_optional_int(_first(raw, f["reorder_point"])),
        reorder_quantity=_to_optional_int(_first(raw, f["reorder_quantity"])),
        supplier_info=_to_str(_first(raw, f["supplier_info"])),
        raw_data=raw,
    )


def normalize_items(provider_type: str, raw_items: list[dict[str, Any]]) -> list[NormalizedInventoryItem]:
    normalized: list[NormalizedInventoryItem] = []
    skipped = 0
    for raw in raw_items:
        item = normalize_item(provider_type, raw)
        if item is None:
            skipped += 1
            continue
        normalized.append(item)
    if skipped:
        logger.warning("Dropped %s %s items without id or name", skipped, provider_type)
    return normalized
