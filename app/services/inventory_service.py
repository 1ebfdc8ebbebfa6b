# app/services/inventory_service.py
"""
Inventory reconciler.

Owns the provider feeds and the medication -> provider item mappings:

- ingest_snapshot / sync_provider: replace a provider's items as one snapshot
  (generation swap, see app.models.inventory)
- resolve_primary: the single authoritative item for a medication
- promote / record_automatic_match / map_item_manually / update_mapping:
  every write that can touch `is_primary` runs under the per-medication lock
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable

import httpx
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.exceptions import (
    ConcurrencyConflict,
    ExternalProviderError,
    InvalidTransition,
    NoMappingAvailable,
    NotFoundError,
    ValidationError,
)
from app.core.redis import named_lock
from app.inventory.adapters import NormalizedInventoryItem, normalize_items
from app.inventory.client import ProviderConnection, check_status, fetch_inventory_pages
from app.inventory.simulation import simulate_inventory
from app.models.inventory import (
    ConnectionStatus,
    InventoryItem,
    InventoryMapping,
    InventoryProvider,
    MappingStatus,
    MappingType,
    ProviderType,
)
from app.models.medication import Medication
from app.utils.datetime_utils import as_utc, utc_now

logger = logging.getLogger(__name__)


def medication_lock_name(medication_id: int) -> str:
    return f"inventory-mapping:medication:{medication_id}"


def snapshot_lock_name(provider_id: int) -> str:
    return f"inventory-snapshot:{provider_id}"


@dataclass
class SnapshotResult:
    provider_id: int
    generation: int
    item_count: int


@dataclass
class SyncResult:
    provider_id: int
    success: bool
    item_count: int = 0
    generation: int | None = None
    discarded: bool = False
    error: str | None = None


@dataclass
class AvailabilitySource:
    mapping_id: int
    inventory_item_id: int
    provider_id: int
    provider_name: str
    quantity: int
    in_stock: bool
    location: str | None
    price: Decimal | None
    retail_price: Decimal | None
    is_primary: bool


@dataclass
class MedicationAvailability:
    medication_id: int
    sources: list[AvailabilitySource] = field(default_factory=list)
    total_quantity: int = 0
    in_stock: bool = False
    primary: AvailabilitySource | None = None


# ----------------------------------------------------------------------
# Providers
# ----------------------------------------------------------------------


def create_provider(
    db: Session,
    *,
    name: str,
    provider_type: str,
    api_endpoint: str | None = None,
    api_key: str | None = None,
    is_active: bool = True,
    sync_frequency: int = 60,
) -> InventoryProvider:
    if provider_type not in {t.value for t in ProviderType}:
        raise ValidationError(f"Unknown provider type '{provider_type}'")
    if sync_frequency <= 0:
        raise ValidationError("sync_frequency must be a positive number of minutes")
    if provider_type != ProviderType.SIMULATION.value and not api_endpoint:
        raise ValidationError("api_endpoint is required for remote providers")

    existing = db.query(InventoryProvider).filter(InventoryProvider.name == name).first()
    if existing:
        raise ValidationError(f"Provider '{name}' already exists")

    provider = InventoryProvider(
        name=name,
        provider_type=provider_type,
        api_endpoint=api_endpoint,
        api_key=api_key,
        is_active=is_active,
        connection_status=ConnectionStatus.DISCONNECTED.value,
        sync_frequency=sync_frequency,
        sync_generation=0,
    )
    try:
        db.add(provider)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    db.refresh(provider)
    logger.info("Registered inventory provider %s (%s)", provider.name, provider.provider_type)
    return provider


def get_provider(db: Session, provider_id: int) -> InventoryProvider:
    provider = (
        db.query(InventoryProvider)
        .filter(InventoryProvider.id == provider_id)
        .populate_existing()
        .first()
    )
    if not provider:
        raise NotFoundError(f"Inventory provider {provider_id} not found")
    return provider


def list_providers(db: Session) -> list[InventoryProvider]:
    return db.query(InventoryProvider).order_by(InventoryProvider.id.asc()).all()


def due_providers(db: Session, now: datetime | None = None) -> list[InventoryProvider]:
    """Active providers whose last sync is older than their sync frequency."""
    now = now or utc_now()
    due: list[InventoryProvider] = []
    for provider in db.query(InventoryProvider).filter(InventoryProvider.is_active.is_(True)).all():
        if provider.last_sync_date is None:
            due.append(provider)
            continue
        next_sync = as_utc(provider.last_sync_date) + timedelta(minutes=provider.sync_frequency)
        if next_sync <= now:
            due.append(provider)
    return due


def _connection_for(provider: InventoryProvider) -> ProviderConnection:
    return ProviderConnection(
        provider_id=provider.id,
        name=provider.name,
        provider_type=provider.provider_type,
        api_endpoint=provider.api_endpoint,
        api_key=provider.api_key,
    )


def _mark_provider(
    db: Session,
    provider_id: int,
    *,
    status: ConnectionStatus,
    error: str | None = None,
    attempted_sync: bool = False,
) -> None:
    provider = get_provider(db, provider_id)
    provider.connection_status = status.value
    provider.last_error = error[:1000] if error else None
    if attempted_sync:
        # Failed syncs wait a full interval before the next attempt.
        provider.last_sync_date = utc_now()
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise


def check_provider_connection(
    db: Session, provider_id: int, *, client: httpx.Client | None = None
) -> InventoryProvider:
    provider = get_provider(db, provider_id)
    if provider.provider_type == ProviderType.SIMULATION.value:
        _mark_provider(db, provider_id, status=ConnectionStatus.CONNECTED)
        return get_provider(db, provider_id)

    conn = _connection_for(provider)
    db.commit()

    try:
        check_status(conn, client=client)
    except ExternalProviderError as exc:
        logger.warning("Connection check failed for provider %s: %s", conn.name, exc.detail)
        _mark_provider(db, provider_id, status=ConnectionStatus.ERROR, error=exc.detail)
    else:
        _mark_provider(db, provider_id, status=ConnectionStatus.CONNECTED)
    return get_provider(db, provider_id)


# ----------------------------------------------------------------------
# Snapshots
# ----------------------------------------------------------------------


def _apply_item_fields(row: InventoryItem, item: NormalizedInventoryItem) -> None:
    row.external_ndc = item.ndc
    row.name = item.name
    row.description = item.description
    row.quantity = item.quantity
    row.unit = item.unit
    row.price = item.price
    row.wholesale_price = item.wholesale_price
    row.retail_price = item.retail_price
    row.in_stock = item.in_stock
    row.location = item.location
    row.expiration_date = item.expiration_date
    row.reorder_point = item.reorder_point
    row.reorder_quantity = item.reorder_quantity
    row.supplier_info = item.supplier_info
    row.raw_data = item.raw_data


def ingest_snapshot(
    db: Session,
    provider_id: int,
    items: Iterable[NormalizedInventoryItem],
    *,
    expected_generation: int | None = None,
) -> SnapshotResult:
    """
    Replace every item owned by the provider with `items`.

    Rows are upserted by external id and stamped with the next generation;
    the provider's generation flips in the same commit, so readers see either
    the whole previous snapshot or the whole new one. Items missing from the
    snapshot keep their old generation and drop out of view.

    If `expected_generation` is given and another snapshot was committed
    since, ConcurrencyConflict is raised and nothing is written.
    """
    by_external_id: dict[str, NormalizedInventoryItem] = {}
    for item in items:
        by_external_id[item.external_id] = item

    with named_lock(snapshot_lock_name(provider_id)):
        try:
            provider = (
                db.query(InventoryProvider)
                .filter(InventoryProvider.id == provider_id)
                .with_for_update()
                .populate_existing()
                .first()
            )
            if not provider:
                raise NotFoundError(f"Inventory provider {provider_id} not found")

            if expected_generation is not None and provider.sync_generation != expected_generation:
                raise ConcurrencyConflict(
                    f"Snapshot for provider {provider_id} superseded "
                    f"(generation {provider.sync_generation}, expected {expected_generation})"
                )

            generation = provider.sync_generation + 1
            now = utc_now()

            existing = {
                row.external_id: row
                for row in db.query(InventoryItem).filter(InventoryItem.provider_id == provider_id)
            }
            for external_id, item in by_external_id.items():
                row = existing.get(external_id)
                if row is None:
                    row = InventoryItem(provider_id=provider_id, external_id=external_id)
                    db.add(row)
                _apply_item_fields(row, item)
                row.sync_generation = generation
                row.last_updated = now

            provider.sync_generation = generation
            provider.last_sync_date = now
            provider.connection_status = ConnectionStatus.CONNECTED.value
            provider.last_error = None
            db.commit()
        except Exception:
            db.rollback()
            raise

    logger.info(
        "Provider %s snapshot generation %s applied with %s items",
        provider_id,
        generation,
        len(by_external_id),
    )
    return SnapshotResult(provider_id=provider_id, generation=generation, item_count=len(by_external_id))


def sync_provider(db: Session, provider_id: int, *, client: httpx.Client | None = None) -> SyncResult:
    """
    Fetch, normalize and ingest one provider's inventory.

    Provider failures are recorded on the provider (connection_status=error,
    last_error) and reported in the result; they never propagate.
    """
    settings = get_settings()
    provider = get_provider(db, provider_id)

    if not provider.is_active:
        _mark_provider(db, provider_id, status=ConnectionStatus.DISCONNECTED)
        return SyncResult(provider_id=provider_id, success=False, error="Provider is inactive")

    conn = _connection_for(provider)
    start_generation = provider.sync_generation
    # No transaction stays open across the network call.
    db.commit()

    try:
        if conn.provider_type == ProviderType.SIMULATION.value:
            raw_items = simulate_inventory(db, provider_id, conn.provider_type)
            db.commit()
        else:
            raw_items = fetch_inventory_pages(
                conn,
                page_size=settings.provider_page_size,
                timeout=settings.provider_request_timeout_seconds,
                client=client,
            )
        normalized = normalize_items(conn.provider_type, raw_items)
        snapshot = ingest_snapshot(db, provider_id, normalized, expected_generation=start_generation)
    except ExternalProviderError as exc:
        db.rollback()
        logger.warning("Sync failed for provider %s: %s", conn.name, exc.detail)
        _mark_provider(
            db,
            provider_id,
            status=ConnectionStatus.ERROR,
            error=exc.detail,
            attempted_sync=True,
        )
        return SyncResult(provider_id=provider_id, success=False, error=exc.detail)
    except ConcurrencyConflict as exc:
        logger.info("Discarding sync for provider %s: %s", conn.name, exc.detail)
        return SyncResult(provider_id=provider_id, success=False, discarded=True, error=exc.detail)

    return SyncResult(
        provider_id=provider_id,
        success=True,
        item_count=snapshot.item_count,
        generation=snapshot.generation,
    )


def visible_items_query(db: Session):
    """Items of the current snapshot of every active provider."""
    return (
        db.query(InventoryItem)
        .join(InventoryProvider, InventoryProvider.id == InventoryItem.provider_id)
        .filter(
            InventoryProvider.is_active.is_(True),
            InventoryItem.sync_generation == InventoryProvider.sync_generation,
        )
    )


def list_provider_items(db: Session, provider_id: int) -> list[InventoryItem]:
    get_provider(db, provider_id)
    return (
        visible_items_query(db)
        .filter(InventoryItem.provider_id == provider_id)
        .order_by(InventoryItem.id.asc())
        .all()
    )


# ----------------------------------------------------------------------
# Resolution
# ----------------------------------------------------------------------


def resolve_primary_mapping(db: Session, medication_id: int) -> tuple[InventoryMapping, InventoryItem]:
    """
    Pick the authoritative mapping among active mappings whose item is in
    its provider's current snapshot: the primary if one exists, otherwise
    the highest confidence, ties going to the lowest provider id.
    """
    stmt = (
        select(InventoryMapping, InventoryItem)
        .join(InventoryItem, InventoryItem.id == InventoryMapping.inventory_item_id)
        .join(InventoryProvider, InventoryProvider.id == InventoryItem.provider_id)
        .where(
            InventoryMapping.medication_id == medication_id,
            InventoryMapping.mapping_status == MappingStatus.ACTIVE.value,
            InventoryProvider.is_active.is_(True),
            InventoryItem.sync_generation == InventoryProvider.sync_generation,
        )
        .order_by(
            InventoryMapping.is_primary.desc(),
            func.coalesce(InventoryMapping.mapping_confidence, 0).desc(),
            InventoryItem.provider_id.asc(),
            InventoryMapping.id.asc(),
        )
        .limit(1)
        .execution_options(populate_existing=True)
    )
    row = db.execute(stmt).first()
    if row is None:
        raise NoMappingAvailable(f"No active inventory mapping for medication {medication_id}")
    return row[0], row[1]


def resolve_primary(db: Session, medication_id: int) -> InventoryItem:
    _, item = resolve_primary_mapping(db, medication_id)
    return item


def medication_availability(db: Session, medication_id: int) -> MedicationAvailability:
    if db.get(Medication, medication_id) is None:
        raise NotFoundError(f"Medication {medication_id} not found")

    rows = db.execute(
        select(InventoryMapping, InventoryItem, InventoryProvider)
        .join(InventoryItem, InventoryItem.id == InventoryMapping.inventory_item_id)
        .join(InventoryProvider, InventoryProvider.id == InventoryItem.provider_id)
        .where(
            InventoryMapping.medication_id == medication_id,
            InventoryMapping.mapping_status == MappingStatus.ACTIVE.value,
            InventoryProvider.is_active.is_(True),
            InventoryItem.sync_generation == InventoryProvider.sync_generation,
        )
        .order_by(InventoryItem.provider_id.asc(), InventoryMapping.id.asc())
    ).all()

    result = MedicationAvailability(medication_id=medication_id)
    for mapping, item, provider in rows:
        result.sources.append(
            AvailabilitySource(
                mapping_id=mapping.id,
                inventory_item_id=item.id,
                provider_id=provider.id,
                provider_name=provider.name,
                quantity=item.quantity,
                in_stock=item.in_stock,
                location=item.location,
                price=item.price,
                retail_price=item.retail_price,
                is_primary=mapping.is_primary,
            )
        )
        result.total_quantity += item.quantity
        result.in_stock = result.in_stock or item.in_stock

    try:
        primary_mapping, _ = resolve_primary_mapping(db, medication_id)
    except NoMappingAvailable:
        primary_mapping = None
    if primary_mapping is not None:
        result.primary = next((s for s in result.sources if s.mapping_id == primary_mapping.id), None)
    return result


# ----------------------------------------------------------------------
# Mappings
# ----------------------------------------------------------------------


def get_mapping(db: Session, mapping_id: int) -> InventoryMapping:
    mapping = (
        db.query(InventoryMapping)
        .filter(InventoryMapping.id == mapping_id)
        .populate_existing()
        .first()
    )
    if not mapping:
        raise NotFoundError(f"Inventory mapping {mapping_id} not found")
    return mapping


def list_mappings_for_medication(db: Session, medication_id: int) -> list[InventoryMapping]:
    return (
        db.query(InventoryMapping)
        .filter(InventoryMapping.medication_id == medication_id)
        .order_by(InventoryMapping.id.asc())
        .all()
    )


def _current_primary(db: Session, medication_id: int) -> InventoryMapping | None:
    return (
        db.query(InventoryMapping)
        .filter(
            InventoryMapping.medication_id == medication_id,
            InventoryMapping.mapping_status == MappingStatus.ACTIVE.value,
            InventoryMapping.is_primary.is_(True),
        )
        .populate_existing()
        .first()
    )


def _apply_primary(db: Session, mapping: InventoryMapping) -> None:
    """
    Clear every other primary for the medication, then flag `mapping`.
    The clearing statement runs first so the partial unique index never
    sees two primaries. Caller holds the medication lock and commits.
    """
    db.execute(
        update(InventoryMapping)
        .where(
            InventoryMapping.medication_id == mapping.medication_id,
            InventoryMapping.id != mapping.id,
            InventoryMapping.is_primary.is_(True),
        )
        .values(is_primary=False)
        .execution_options(synchronize_session="fetch")
    )
    mapping.is_primary = True
    db.flush()


def _load_mapping_locked(db: Session, mapping_id: int) -> InventoryMapping:
    mapping = (
        db.query(InventoryMapping)
        .filter(InventoryMapping.id == mapping_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not mapping:
        raise NotFoundError(f"Inventory mapping {mapping_id} not found")
    return mapping


def promote(db: Session, mapping_id: int) -> InventoryMapping:
    """
    Make the mapping the primary for its medication and clear the flag on
    every other mapping, in one transaction under the medication lock.
    Promoting the current primary is a no-op.
    """
    medication_id = get_mapping(db, mapping_id).medication_id
    db.rollback()

    with named_lock(medication_lock_name(medication_id)):
        try:
            mapping = _load_mapping_locked(db, mapping_id)
            if mapping.mapping_status != MappingStatus.ACTIVE.value:
                raise InvalidTransition(
                    f"Mapping {mapping_id} is {mapping.mapping_status}; only active mappings can be primary"
                )
            if mapping.is_primary:
                db.rollback()
                return get_mapping(db, mapping_id)

            _apply_primary(db, mapping)
            db.commit()
        except Exception:
            db.rollback()
            raise

    logger.info("Mapping %s promoted to primary for medication %s", mapping_id, medication_id)
    return get_mapping(db, mapping_id)


def update_mapping(
    db: Session,
    mapping_id: int,
    *,
    is_primary: bool | None = None,
    mapping_status: str | None = None,
) -> InventoryMapping:
    """
    Admin edit of a mapping. `is_primary=True` promotes, `False` demotes.
    A mapping that stops being active also stops being primary.
    """
    if mapping_status is not None and mapping_status not in {s.value for s in MappingStatus}:
        raise ValidationError(f"Unknown mapping status '{mapping_status}'")

    if is_primary and mapping_status is None:
        return promote(db, mapping_id)

    medication_id = get_mapping(db, mapping_id).medication_id
    db.rollback()

    with named_lock(medication_lock_name(medication_id)):
        try:
            mapping = _load_mapping_locked(db, mapping_id)

            if mapping_status is not None:
                mapping.mapping_status = mapping_status
                if mapping_status != MappingStatus.ACTIVE.value:
                    mapping.is_primary = False

            if is_primary is False:
                mapping.is_primary = False
            elif is_primary:
                if mapping.mapping_status != MappingStatus.ACTIVE.value:
                    raise InvalidTransition(
                        f"Mapping {mapping_id} is {mapping.mapping_status}; only active mappings can be primary"
                    )
                db.flush()
                _apply_primary(db, mapping)

            db.commit()
        except Exception:
            db.rollback()
            raise

    logger.info(
        "Mapping %s updated (is_primary=%s, mapping_status=%s)", mapping_id, is_primary, mapping_status
    )
    return get_mapping(db, mapping_id)


def _check_mapping_targets(db: Session, medication_id: int, inventory_item_id: int) -> None:
    if db.get(Medication, medication_id) is None:
        raise NotFoundError(f"Medication {medication_id} not found")
    if db.get(InventoryItem, inventory_item_id) is None:
        raise NotFoundError(f"Inventory item {inventory_item_id} not found")


def _find_mapping(db: Session, medication_id: int, inventory_item_id: int) -> InventoryMapping | None:
    return (
        db.query(InventoryMapping)
        .filter(
            InventoryMapping.medication_id == medication_id,
            InventoryMapping.inventory_item_id == inventory_item_id,
        )
        .populate_existing()
        .first()
    )


def record_automatic_match(
    db: Session,
    *,
    medication_id: int,
    inventory_item_id: int,
    confidence: float,
) -> InventoryMapping:
    """
    Store a matcher result as an automatic mapping.

    Manual mappings are never overwritten. The mapping becomes primary only
    when its confidence reaches auto_promote_min_confidence and there is no
    primary yet, or the current primary is automatic with lower confidence.
    An automatic primary re-matched below that floor loses the primary flag.
    """
    if confidence is None or not 0.0 <= float(confidence) <= 1.0:
        raise ValidationError("Automatic mappings need a confidence between 0 and 1")
    confidence = float(confidence)
    _check_mapping_targets(db, medication_id, inventory_item_id)
    min_confidence = get_settings().auto_promote_min_confidence

    promoted = False
    demoted = False
    with named_lock(medication_lock_name(medication_id)):
        try:
            mapping = _find_mapping(db, medication_id, inventory_item_id)
            if mapping is not None and mapping.mapping_type == MappingType.MANUAL.value:
                db.rollback()
                return get_mapping(db, mapping.id)

            if mapping is None:
                mapping = InventoryMapping(
                    medication_id=medication_id,
                    inventory_item_id=inventory_item_id,
                    is_primary=False,
                    mapping_type=MappingType.AUTOMATIC.value,
                    mapping_status=MappingStatus.ACTIVE.value,
                    mapping_confidence=confidence,
                )
                db.add(mapping)
            else:
                mapping.mapping_confidence = confidence
                if mapping.is_primary and confidence < min_confidence:
                    mapping.is_primary = False
                    demoted = True
            db.flush()

            if (
                confidence >= min_confidence
                and mapping.mapping_status == MappingStatus.ACTIVE.value
                and not mapping.is_primary
            ):
                current = _current_primary(db, medication_id)
                if current is None or (
                    current.mapping_type == MappingType.AUTOMATIC.value
                    and (current.mapping_confidence or 0.0) < confidence
                ):
                    _apply_primary(db, mapping)
                    promoted = True

            db.commit()
        except Exception:
            db.rollback()
            raise

    logger.info(
        "Automatic mapping %s for medication %s (confidence %.2f, promoted=%s, demoted=%s)",
        mapping.id,
        medication_id,
        confidence,
        promoted,
        demoted,
    )
    return get_mapping(db, mapping.id)


def map_item_manually(
    db: Session,
    *,
    medication_id: int,
    inventory_item_id: int,
    is_primary: bool = False,
) -> InventoryMapping:
    _check_mapping_targets(db, medication_id, inventory_item_id)

    with named_lock(medication_lock_name(medication_id)):
        try:
            mapping = _find_mapping(db, medication_id, inventory_item_id)
            if mapping is None:
                mapping = InventoryMapping(
                    medication_id=medication_id,
                    inventory_item_id=inventory_item_id,
                    is_primary=False,
                    mapping_type=MappingType.MANUAL.value,
                    mapping_status=MappingStatus.ACTIVE.value,
                    mapping_confidence=1.0,
                )
                db.add(mapping)
            else:
                mapping.mapping_type = MappingType.MANUAL.value
                mapping.mapping_status = MappingStatus.ACTIVE.value
                mapping.mapping_confidence = 1.0
            db.flush()

            if is_primary:
                _apply_primary(db, mapping)
            db.commit()
        except Exception:
            db.rollback()
            raise

    logger.info("Manual mapping %s for medication %s (primary=%s)", mapping.id, medication_id, is_primary)
    return get_mapping(db, mapping.id)
